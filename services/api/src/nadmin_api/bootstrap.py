"""部署初始化：默认租户、内置权限目录、内置权限模板，以及可选的首个超级管理员。

所有步骤幂等，可在每次发布后重复执行：

    nadmin-bootstrap --admin-email root@example.com --admin-password '...'
"""

import argparse
from dataclasses import dataclass
import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from nadmin_api.core.config import get_settings
from nadmin_api.db.session import SessionLocal
from nadmin_api.models.enums import UserStatus
from nadmin_api.models.permission import Role
from nadmin_api.models.tenant import Tenant, User
from nadmin_api.services.local_auth import hash_password
from nadmin_api.services.permission_catalog import seed_default_permissions
from nadmin_api.services.permission_templates import seed_default_templates
from nadmin_api.services.tenant_bootstrap import ensure_default_tenant

logger = logging.getLogger("nadmin_api.bootstrap")

SUPER_ROLE_CODE = "super_admin"


@dataclass
class BootstrapSummary:
    default_tenant_code: str
    permissions_created: int
    templates_created: int
    admin_created: bool = False


def ensure_super_role(db: Session) -> Role:
    """系统级超级角色（tenant_id 为空）。"""
    role = db.execute(
        select(Role).where(Role.code == SUPER_ROLE_CODE).where(Role.tenant_id.is_(None))
    ).scalar_one_or_none()
    if role is None:
        role = Role(name="超级管理员", code=SUPER_ROLE_CODE, is_super=True, is_system=True)
        db.add(role)
        db.flush()
    return role


def ensure_super_admin(db: Session, tenant: Tenant, *, email: str, username: str, password: str) -> bool:
    """在默认租户下创建超级管理员；同邮箱用户已存在时不改动。返回是否新建。"""
    email = email.strip().lower()
    exists = db.execute(
        select(User.id).where(User.tenant_id == tenant.id).where(User.email == email)
    ).scalar_one_or_none()
    if exists is not None:
        return False
    role = ensure_super_role(db)
    user = User(
        tenant_id=tenant.id,
        role_id=role.id,
        email=email,
        username=username.strip(),
        display_name=username.strip(),
        password_hash=hash_password(password),
        is_super_admin=True,
        status=UserStatus.ACTIVE,
    )
    db.add(user)
    db.flush()
    logger.info("super admin created user_id=%s tenant_id=%s", user.id, tenant.id)
    return True


def bootstrap(
    db: Session,
    *,
    admin_email: str | None = None,
    admin_username: str | None = None,
    admin_password: str | None = None,
) -> BootstrapSummary:
    """执行全部初始化步骤，由调用方提交事务。"""
    tenant = ensure_default_tenant(db)
    summary = BootstrapSummary(
        default_tenant_code=tenant.code,
        permissions_created=seed_default_permissions(db),
        templates_created=seed_default_templates(db),
    )
    if admin_email and admin_password:
        summary.admin_created = ensure_super_admin(
            db,
            tenant,
            email=admin_email,
            username=admin_username or admin_email.split("@", 1)[0],
            password=admin_password,
        )
    return summary


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="初始化默认租户、内置权限与权限模板")
    parser.add_argument("--admin-email", help="首个超级管理员邮箱，需与 --admin-password 同时提供")
    parser.add_argument("--admin-username", help="首个超级管理员用户名，默认取邮箱前缀")
    parser.add_argument("--admin-password", help="首个超级管理员密码")
    args = parser.parse_args(argv)
    if bool(args.admin_email) != bool(args.admin_password):
        parser.error("--admin-email and --admin-password must be given together")

    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    db = SessionLocal()
    try:
        summary = bootstrap(
            db,
            admin_email=args.admin_email,
            admin_username=args.admin_username,
            admin_password=args.admin_password,
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("bootstrap failed")
        return 1
    finally:
        db.close()

    logger.info(
        "bootstrap done default_tenant=%s permissions_created=%s templates_created=%s admin_created=%s",
        summary.default_tenant_code,
        summary.permissions_created,
        summary.templates_created,
        summary.admin_created,
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
