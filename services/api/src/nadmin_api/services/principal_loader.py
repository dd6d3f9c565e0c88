"""认证主体加载。

令牌声明只用于定位用户，是否超级管理员、状态等以数据库为准；不做跨请求缓存。
"""

from dataclasses import dataclass
import logging
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from nadmin_api.core.config import get_settings
from nadmin_api.core.security import TokenClaims, is_session_active
from nadmin_api.exceptions import DisabledPrincipal, UnknownPrincipal
from nadmin_api.models.enums import UserStatus
from nadmin_api.models.permission import Role
from nadmin_api.models.tenant import Tenant, User

logger = logging.getLogger("nadmin_api.auth")


@dataclass
class Principal:
    """已认证主体。"""

    user_id: UUID
    tenant_id: UUID
    role_id: UUID | None
    is_super_admin: bool
    email: str
    username: str
    status: str
    display_name: str | None = None
    role: Role | None = None
    tenant: Tenant | None = None

    @property
    def tenant_code(self) -> str | None:
        return self.tenant.code if self.tenant is not None else None


def load_principal(db: Session, claims: TokenClaims) -> Principal:
    """根据已校验的令牌声明加载主体，并附带角色与租户。"""
    try:
        user_id = UUID(claims.principal_id)
    except ValueError as exc:
        raise UnknownPrincipal(principal_id=claims.principal_id) from exc

    user = db.execute(
        select(User).where(User.id == user_id).where(User.is_deleted.is_(False))
    ).scalar_one_or_none()
    if user is None:
        raise UnknownPrincipal(principal_id=str(user_id))

    if user.status != UserStatus.ACTIVE:
        logger.warning("disabled principal rejected user_id=%s tenant_id=%s status=%s", user.id, user.tenant_id, user.status)
        raise DisabledPrincipal(principal_id=str(user.id))

    if claims.session_id and get_settings().auth_session_tracking:
        if not is_session_active(session_id=claims.session_id, principal_id=str(user.id)):
            raise UnknownPrincipal("会话已失效，请重新登录。", principal_id=str(user.id))

    role = None
    if user.role_id is not None:
        role = db.execute(
            select(Role).where(Role.id == user.role_id).where(Role.is_deleted.is_(False))
        ).scalar_one_or_none()
    tenant = db.execute(
        select(Tenant).where(Tenant.id == user.tenant_id).where(Tenant.is_deleted.is_(False))
    ).scalar_one_or_none()

    return Principal(
        user_id=user.id,
        tenant_id=user.tenant_id,
        role_id=user.role_id,
        is_super_admin=bool(user.is_super_admin or (role is not None and role.is_super)),
        email=user.email,
        username=user.username,
        status=user.status,
        display_name=user.display_name,
        role=role,
        tenant=tenant,
    )
