"""权限模板服务。系统模板不可修改、不可删除。"""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
import logging
from typing import Any
from uuid import UUID

from fastapi import HTTPException, status
from sqlalchemy import delete, or_, select
from sqlalchemy.orm import Session

from nadmin_api.exceptions import ImmutableSystemEntity
from nadmin_api.models.permission import Permission, PermissionTemplate, Role, TemplatePermission
from nadmin_api.services.permission_catalog import PermissionCode
from nadmin_api.services.permissions import list_role_permission_ids, set_role_permissions

logger = logging.getLogger("nadmin_api.permissions")


def template_permission_ids(db: Session, template_id: UUID) -> list[UUID]:
    rows = db.execute(
        select(TemplatePermission.permission_id)
        .join(Permission, Permission.id == TemplatePermission.permission_id)
        .where(TemplatePermission.template_id == template_id)
        .where(Permission.is_deleted.is_(False))
    ).scalars().all()
    return sorted(set(rows), key=str)


def serialize_template(db: Session, template: PermissionTemplate) -> dict[str, Any]:
    return {
        "id": template.id,
        "name": template.name,
        "description": template.description,
        "tenant_id": template.tenant_id,
        "is_system": template.is_system,
        "permission_ids": template_permission_ids(db, template.id),
    }


def list_templates(db: Session, *, tenant_id: UUID | None) -> list[PermissionTemplate]:
    """返回系统模板与当前租户自有模板。"""
    stmt = select(PermissionTemplate).where(PermissionTemplate.is_deleted.is_(False))
    if tenant_id is not None:
        stmt = stmt.where(or_(PermissionTemplate.tenant_id == tenant_id, PermissionTemplate.tenant_id.is_(None)))
    return list(db.execute(stmt.order_by(PermissionTemplate.name)).scalars().all())


def get_template_or_404(db: Session, template_id: UUID) -> PermissionTemplate:
    template = db.execute(
        select(PermissionTemplate)
        .where(PermissionTemplate.id == template_id)
        .where(PermissionTemplate.is_deleted.is_(False))
    ).scalar_one_or_none()
    if template is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="template not found")
    return template


def _replace_template_permissions(db: Session, template_id: UUID, permission_ids: Iterable[UUID]) -> None:
    wanted = set(permission_ids)
    if wanted:
        found = set(
            db.execute(
                select(Permission.id).where(Permission.id.in_(wanted)).where(Permission.is_deleted.is_(False))
            ).scalars().all()
        )
        missing = sorted(str(item) for item in wanted - found)
        if missing:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
                detail={"code": "UNKNOWN_PERMISSION", "message": "存在无效的权限 ID。", "permission_ids": missing},
            )
    db.execute(delete(TemplatePermission).where(TemplatePermission.template_id == template_id))
    for permission_id in wanted:
        db.add(TemplatePermission(template_id=template_id, permission_id=permission_id))


def create_template(
    db: Session,
    *,
    tenant_id: UUID | None,
    name: str,
    description: str | None,
    permission_ids: Iterable[UUID],
) -> PermissionTemplate:
    template = PermissionTemplate(tenant_id=tenant_id, name=name.strip(), description=description, is_system=False)
    db.add(template)
    db.flush()
    _replace_template_permissions(db, template.id, permission_ids)
    db.flush()
    return template


def update_template(
    db: Session,
    template: PermissionTemplate,
    *,
    name: str | None = None,
    description: str | None = None,
    permission_ids: Iterable[UUID] | None = None,
) -> PermissionTemplate:
    if template.is_system:
        raise ImmutableSystemEntity("系统模板不可修改。", template_id=str(template.id))
    if name is not None:
        template.name = name.strip()
    if description is not None:
        template.description = description
    if permission_ids is not None:
        _replace_template_permissions(db, template.id, permission_ids)
    db.flush()
    return template


def delete_template(db: Session, template: PermissionTemplate) -> None:
    if template.is_system:
        raise ImmutableSystemEntity("系统模板不可删除。", template_id=str(template.id))
    db.execute(delete(TemplatePermission).where(TemplatePermission.template_id == template.id))
    template.is_deleted = True
    template.deleted_at = datetime.now(timezone.utc)
    db.flush()


def apply_template(
    db: Session,
    template: PermissionTemplate,
    role: Role,
    *,
    tenant_id: UUID | None,
    merge: bool = False,
) -> list[UUID]:
    """将模板权限应用到角色；`merge` 为真时与角色现有权限合并，否则覆盖。"""
    wanted = set(template_permission_ids(db, template.id))
    if merge:
        wanted |= set(list_role_permission_ids(db, role_id=role.id, tenant_id=tenant_id))
    return set_role_permissions(db, role=role, tenant_id=tenant_id, permission_ids=wanted)


@dataclass(frozen=True)
class TemplateSpec:
    """内置模板定义。`codes` 为 None 表示包含全部有效权限。"""

    name: str
    description: str
    is_system: bool
    codes: tuple[str, ...] | None


DEFAULT_TEMPLATES: tuple[TemplateSpec, ...] = (
    TemplateSpec("超级管理员模板", "包含所有系统权限的完整模板", True, None),
    TemplateSpec(
        "用户管理模板",
        "用户管理相关权限，适合用户管理员",
        False,
        (
            PermissionCode.USER_READ,
            PermissionCode.USER_CREATE,
            PermissionCode.USER_UPDATE,
            PermissionCode.PERMISSION_READ,
            PermissionCode.ORGANIZATION_READ,
        ),
    ),
    TemplateSpec(
        "只读用户模板",
        "只读权限，适合查看数据的用户",
        False,
        (
            PermissionCode.USER_READ,
            PermissionCode.ROLE_READ,
            PermissionCode.PERMISSION_READ,
            PermissionCode.ORGANIZATION_READ,
            PermissionCode.LOG_READ,
        ),
    ),
    TemplateSpec(
        "角色管理员模板",
        "角色和权限管理权限",
        False,
        (
            PermissionCode.ROLE_READ,
            PermissionCode.ROLE_CREATE,
            PermissionCode.ROLE_UPDATE,
            PermissionCode.PERMISSION_READ,
            PermissionCode.ORGANIZATION_READ,
            PermissionCode.USER_READ,
        ),
    ),
    TemplateSpec(
        "系统管理员模板",
        "系统管理相关权限",
        False,
        (
            PermissionCode.USER_READ,
            PermissionCode.ROLE_READ,
            PermissionCode.PERMISSION_READ,
            PermissionCode.ORGANIZATION_READ,
            PermissionCode.LOG_READ,
            PermissionCode.LOG_DELETE,
            PermissionCode.LOG_EXPORT,
        ),
    ),
)


def seed_default_templates(db: Session) -> int:
    """写入内置的全局模板，同名模板已存在时跳过。返回新增数量。"""
    permission_ids = dict(
        db.execute(select(Permission.code, Permission.id).where(Permission.is_deleted.is_(False))).all()
    )
    existing = set(
        db.execute(
            select(PermissionTemplate.name)
            .where(PermissionTemplate.tenant_id.is_(None))
            .where(PermissionTemplate.is_deleted.is_(False))
        ).scalars().all()
    )
    created = 0
    for spec in DEFAULT_TEMPLATES:
        if spec.name in existing:
            continue
        codes = permission_ids.keys() if spec.codes is None else spec.codes
        template = PermissionTemplate(tenant_id=None, name=spec.name, description=spec.description, is_system=spec.is_system)
        db.add(template)
        db.flush()
        # 目录中不存在的编码忽略。
        _replace_template_permissions(db, template.id, [permission_ids[code] for code in codes if code in permission_ids])
        created += 1
    if created:
        db.flush()
        logger.info("seeded default permission templates count=%s", created)
    return created
