"""租户初始化与生命周期服务。"""

from collections.abc import Iterable
from datetime import datetime, timezone
from enum import StrEnum
import logging
import re
from typing import Any
from uuid import UUID

from fastapi import HTTPException, status
from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from nadmin_api.core.config import get_settings
from nadmin_api.exceptions import ImmutableSystemEntity, TenantNotFound
from nadmin_api.models.audit import AuditLog
from nadmin_api.models.enums import TenantStatus, UserStatus
from nadmin_api.models.permission import Role, RolePermission
from nadmin_api.models.tenant import Tenant, User

logger = logging.getLogger("nadmin_api.tenants")


def normalize_tenant_code(raw: str) -> str:
    """规范化租户编码，可直接用作子域名标签。"""
    normalized = re.sub(r"[^a-z0-9-]+", "-", raw.strip().lower())
    normalized = re.sub(r"-{2,}", "-", normalized).strip("-")
    return normalized[:100]


def is_default_tenant(tenant: Tenant) -> bool:
    return tenant.code == get_settings().default_tenant_code


def serialize_tenant(tenant: Tenant) -> dict[str, Any]:
    return {
        "id": tenant.id,
        "name": tenant.name,
        "code": tenant.code,
        "status": tenant.status,
        "settings": tenant.settings or {},
        "is_default": is_default_tenant(tenant),
    }


def ensure_default_tenant(db: Session) -> Tenant:
    """确保系统默认租户存在。"""
    code = get_settings().default_tenant_code
    tenant = db.execute(select(Tenant).where(Tenant.code == code)).scalar_one_or_none()
    if tenant is None:
        tenant = Tenant(name="默认租户", code=code, status=TenantStatus.ACTIVE, settings={})
        db.add(tenant)
        db.flush()
        logger.info("default tenant created tenant_id=%s code=%s", tenant.id, code)
    elif tenant.is_deleted:
        tenant.is_deleted = False
        tenant.deleted_at = None
        db.flush()
    return tenant


def get_tenant_or_404(db: Session, tenant_id) -> Tenant:
    tenant = db.execute(
        select(Tenant).where(Tenant.id == tenant_id).where(Tenant.is_deleted.is_(False))
    ).scalar_one_or_none()
    if tenant is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="tenant not found")
    return tenant


def _ensure_code_available(db: Session, code: str, *, exclude_id=None) -> None:
    stmt = select(Tenant.id).where(Tenant.code == code)
    if exclude_id is not None:
        stmt = stmt.where(Tenant.id != exclude_id)
    if db.execute(stmt).scalar_one_or_none():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="tenant code already exists")


def create_tenant(db: Session, *, name: str, code: str, settings: dict[str, Any] | None = None) -> Tenant:
    normalized = normalize_tenant_code(code)
    if not normalized:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_CONTENT, detail="invalid tenant code")
    _ensure_code_available(db, normalized)
    tenant = Tenant(name=name.strip(), code=normalized, status=TenantStatus.ACTIVE, settings=settings or {})
    db.add(tenant)
    db.flush()
    return tenant


def update_tenant(db: Session, tenant: Tenant, *, changes: dict[str, Any]) -> Tenant:
    """更新租户基础信息；默认租户编码不可变更。"""
    if "code" in changes:
        normalized = normalize_tenant_code(changes["code"])
        if normalized != tenant.code:
            if is_default_tenant(tenant):
                raise ImmutableSystemEntity("默认租户编码不可修改。", tenant_id=str(tenant.id))
            if not normalized:
                raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_CONTENT, detail="invalid tenant code")
            _ensure_code_available(db, normalized, exclude_id=tenant.id)
        changes = {**changes, "code": normalized}
    for field, value in changes.items():
        setattr(tenant, field, value)
    db.flush()
    return tenant


def change_tenant_status(db: Session, tenant: Tenant, *, status_value: TenantStatus) -> Tenant:
    if is_default_tenant(tenant):
        raise ImmutableSystemEntity("默认租户状态不可修改。", tenant_id=str(tenant.id))
    tenant.status = status_value
    db.flush()
    return tenant


def delete_tenant(db: Session, tenant: Tenant, *, hard: bool = False) -> None:
    """删除租户：默认逻辑删除，`hard` 为真时物理删除并清理租户级角色权限关联。"""
    if is_default_tenant(tenant):
        raise ImmutableSystemEntity("默认租户不可删除。", tenant_id=str(tenant.id))
    if hard:
        db.execute(delete(RolePermission).where(RolePermission.tenant_id == tenant.id))
        db.delete(tenant)
    else:
        tenant.is_deleted = True
        tenant.deleted_at = datetime.now(timezone.utc)
    db.flush()


class TenantBatchOperation(StrEnum):
    """租户批量操作。"""

    ACTIVATE = "activate"
    DEACTIVATE = "deactivate"
    SUSPEND = "suspend"
    DELETE = "delete"


_BATCH_STATUS = {
    TenantBatchOperation.ACTIVATE: TenantStatus.ACTIVE,
    TenantBatchOperation.DEACTIVATE: TenantStatus.INACTIVE,
    TenantBatchOperation.SUSPEND: TenantStatus.SUSPENDED,
}


def batch_update_tenants(db: Session, *, tenant_ids: Iterable[UUID], operation: TenantBatchOperation) -> list[Tenant]:
    """批量变更状态或逻辑删除。

    任一租户不存在或包含默认租户时整体拒绝，不做部分执行。
    """
    wanted = list(dict.fromkeys(tenant_ids))
    tenants = db.execute(
        select(Tenant).where(Tenant.id.in_(wanted)).where(Tenant.is_deleted.is_(False))
    ).scalars().all()
    by_id = {tenant.id: tenant for tenant in tenants}
    missing = [str(item) for item in wanted if item not in by_id]
    if missing:
        raise TenantNotFound("部分租户不存在或已删除。", tenant_ids=missing)
    protected = [str(tenant.id) for tenant in tenants if is_default_tenant(tenant)]
    if protected:
        raise ImmutableSystemEntity("默认租户不可批量变更或删除。", tenant_ids=protected)

    ordered = [by_id[item] for item in wanted]
    for tenant in ordered:
        if operation == TenantBatchOperation.DELETE:
            tenant.is_deleted = True
            tenant.deleted_at = datetime.now(timezone.utc)
        else:
            tenant.status = _BATCH_STATUS[operation]
    db.flush()
    logger.info("tenant batch operation=%s count=%s", operation, len(ordered))
    return ordered


def tenant_overview(db: Session) -> dict[str, int]:
    """全局租户与用户数量统计，均不含已删除记录。"""
    by_status = dict(
        db.execute(
            select(Tenant.status, func.count(Tenant.id)).where(Tenant.is_deleted.is_(False)).group_by(Tenant.status)
        ).all()
    )
    users_by_status = dict(
        db.execute(
            select(User.status, func.count(User.id)).where(User.is_deleted.is_(False)).group_by(User.status)
        ).all()
    )
    return {
        "total_tenants": sum(by_status.values()),
        "active_tenants": by_status.get(TenantStatus.ACTIVE, 0),
        "inactive_tenants": by_status.get(TenantStatus.INACTIVE, 0),
        "suspended_tenants": by_status.get(TenantStatus.SUSPENDED, 0),
        "total_users": sum(users_by_status.values()),
        "active_users": users_by_status.get(UserStatus.ACTIVE, 0),
    }


def tenant_statistics(db: Session, tenant: Tenant) -> dict[str, Any]:
    """单个租户的用户、角色、角色权限关联与审计统计。"""
    users_by_status = dict(
        db.execute(
            select(User.status, func.count(User.id))
            .where(User.tenant_id == tenant.id)
            .where(User.is_deleted.is_(False))
            .group_by(User.status)
        ).all()
    )
    roles_by_kind = dict(
        db.execute(
            select(Role.is_super, func.count(Role.id))
            .where(Role.tenant_id == tenant.id)
            .where(Role.is_deleted.is_(False))
            .group_by(Role.is_super)
        ).all()
    )
    role_permission_count = db.execute(
        select(func.count(RolePermission.id)).where(RolePermission.tenant_id == tenant.id)
    ).scalar_one()
    audit_count = db.execute(select(func.count(AuditLog.id)).where(AuditLog.tenant_id == tenant.id)).scalar_one()

    total_users = sum(users_by_status.values())
    active_users = users_by_status.get(UserStatus.ACTIVE, 0)
    healthy = tenant.status == TenantStatus.ACTIVE
    return {
        "tenant": serialize_tenant(tenant),
        "users": {
            "total": total_users,
            "active": active_users,
            "inactive": users_by_status.get(UserStatus.INACTIVE, 0),
            "locked": users_by_status.get(UserStatus.LOCKED, 0),
            "active_rate": f"{active_users / total_users * 100:.2f}%" if total_users else "0%",
        },
        "roles": {
            "total": sum(roles_by_kind.values()),
            "super": roles_by_kind.get(True, 0),
            "regular": roles_by_kind.get(False, 0),
        },
        "role_permission_count": int(role_permission_count),
        "audit_log_count": int(audit_count),
        "health": {
            "status": "healthy" if healthy else "warning",
            "issues": [] if healthy else ["tenant_not_active"],
        },
    }
