"""权限判定与权限配置服务。

超级管理员放行只在 PermissionEvaluator 中实现一次，所有鉴权入口共用。
"""

from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from fastapi import HTTPException, status
from sqlalchemy import delete, or_, select
from sqlalchemy.orm import Session

from nadmin_api.exceptions import ImmutableSystemEntity, PermissionCycle
from nadmin_api.models.enums import PermissionStatus, RoleStatus
from nadmin_api.models.permission import Permission, Role, RolePermission
from nadmin_api.services.principal_loader import Principal

# 系统权限允许修改的字段。
SYSTEM_PERMISSION_MUTABLE_FIELDS = frozenset({"description", "sort_order"})


class PermissionEvaluator:
    """单请求内的权限判定器，按主体缓存已授予的权限编码集合。"""

    def __init__(self, db: Session) -> None:
        self._db = db
        self._granted: dict[tuple[UUID, UUID], frozenset[str]] = {}

    def granted_codes(self, principal: Principal) -> frozenset[str]:
        """主体角色在当前租户下（含系统级关联）被授予的有效权限编码。"""
        if principal.role_id is None:
            return frozenset()
        key = (principal.role_id, principal.tenant_id)
        cached = self._granted.get(key)
        if cached is not None:
            return cached

        if principal.role is not None and principal.role.status != RoleStatus.ACTIVE:
            codes: frozenset[str] = frozenset()
        else:
            rows = self._db.execute(
                select(Permission.code)
                .join(RolePermission, RolePermission.permission_id == Permission.id)
                .where(RolePermission.role_id == principal.role_id)
                .where(or_(RolePermission.tenant_id == principal.tenant_id, RolePermission.tenant_id.is_(None)))
                .where(Permission.is_deleted.is_(False))
                .where(Permission.status == PermissionStatus.ACTIVE)
            ).scalars().all()
            codes = frozenset(rows)
        self._granted[key] = codes
        return codes

    def has(self, principal: Principal, code: str) -> bool:
        if principal.is_super_admin:
            return True
        return code in self.granted_codes(principal)

    def has_any(self, principal: Principal, codes: Iterable[str]) -> bool:
        """超级管理员恒为 True；普通主体空列表返回 False。"""
        if principal.is_super_admin:
            return True
        codes = list(codes)
        if not codes:
            return False
        granted = self.granted_codes(principal)
        return any(code in granted for code in codes)

    def has_all(self, principal: Principal, codes: Iterable[str]) -> bool:
        """空列表返回 True。"""
        codes = list(codes)
        if principal.is_super_admin or not codes:
            return True
        granted = self.granted_codes(principal)
        return all(code in granted for code in codes)

    def check_many(self, principal: Principal, codes: Iterable[str]) -> dict[str, bool]:
        return {code: self.has(principal, code) for code in codes}


def summarize_checks(results: dict[str, bool]) -> dict[str, Any]:
    """生成权限检查汇总，授予率保留两位小数。"""
    total = len(results)
    granted = sum(1 for allowed in results.values() if allowed)
    rate = f"{granted / total * 100:.2f}%" if total else "0%"
    return {"total": total, "granted": granted, "denied": total - granted, "grantedRate": rate}


def serialize_permission(permission: Permission) -> dict[str, Any]:
    return {
        "id": permission.id,
        "code": permission.code,
        "name": permission.name,
        "type": permission.type,
        "parent_id": permission.parent_id,
        "sort_order": permission.sort_order,
        "is_system": permission.is_system,
        "front_path": permission.front_path,
        "api_path": permission.api_path,
        "method": permission.method,
        "resource_type": permission.resource_type,
        "description": permission.description,
        "status": permission.status,
    }


def get_permission_or_404(db: Session, permission_id: UUID) -> Permission:
    permission = db.execute(
        select(Permission).where(Permission.id == permission_id).where(Permission.is_deleted.is_(False))
    ).scalar_one_or_none()
    if permission is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="permission not found")
    return permission


def ensure_acyclic_parent(db: Session, *, permission_id: UUID | None, parent_id: UUID | None) -> None:
    """校验父节点存在且设置后父链无环。"""
    if parent_id is None:
        return
    if permission_id is not None and parent_id == permission_id:
        raise PermissionCycle(permission_id=str(permission_id), parent_id=str(parent_id))

    parents = dict(
        db.execute(select(Permission.id, Permission.parent_id).where(Permission.is_deleted.is_(False))).all()
    )
    if parent_id not in parents:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="parent permission not found")

    seen: set[UUID] = set()
    cursor: UUID | None = parent_id
    while cursor is not None and cursor not in seen:
        if cursor == permission_id:
            raise PermissionCycle(permission_id=str(permission_id), parent_id=str(parent_id))
        seen.add(cursor)
        cursor = parents.get(cursor)


def create_permission(db: Session, *, values: dict[str, Any]) -> Permission:
    """新建权限，编码全局唯一。"""
    code = values["code"].strip()
    exists = db.execute(select(Permission.id).where(Permission.code == code)).scalar_one_or_none()
    if exists:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="permission code already exists")
    ensure_acyclic_parent(db, permission_id=None, parent_id=values.get("parent_id"))
    permission = Permission(**{**values, "code": code, "is_system": False})
    db.add(permission)
    db.flush()
    return permission


def update_permission(db: Session, permission: Permission, *, changes: dict[str, Any]) -> Permission:
    """更新权限。系统权限只允许修改描述与排序。"""
    if permission.is_system:
        blocked = sorted(
            field
            for field, value in changes.items()
            if field not in SYSTEM_PERMISSION_MUTABLE_FIELDS and getattr(permission, field) != value
        )
        if blocked:
            raise ImmutableSystemEntity(
                "系统权限只允许修改描述与排序。", permission_id=str(permission.id), fields=blocked
            )

    if "code" in changes and changes["code"] != permission.code:
        duplicate = db.execute(
            select(Permission.id).where(Permission.code == changes["code"]).where(Permission.id != permission.id)
        ).scalar_one_or_none()
        if duplicate:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="permission code already exists")
    if "parent_id" in changes and changes["parent_id"] != permission.parent_id:
        ensure_acyclic_parent(db, permission_id=permission.id, parent_id=changes["parent_id"])

    for field, value in changes.items():
        setattr(permission, field, value)
    db.flush()
    return permission


def delete_permission(db: Session, permission: Permission) -> None:
    """逻辑删除权限并解除角色关联；系统权限与仍有子节点的权限不可删除。"""
    if permission.is_system:
        raise ImmutableSystemEntity("系统权限不可删除。", permission_id=str(permission.id))
    child = db.execute(
        select(Permission.id).where(Permission.parent_id == permission.id).where(Permission.is_deleted.is_(False))
    ).scalars().first()
    if child is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="permission has children")

    db.execute(delete(RolePermission).where(RolePermission.permission_id == permission.id))
    permission.is_deleted = True
    permission.deleted_at = datetime.now(timezone.utc)
    db.flush()


def permission_usage(db: Session, permission_id: UUID) -> list[dict[str, Any]]:
    """列出引用该权限的角色。"""
    rows = db.execute(
        select(Role, RolePermission.tenant_id)
        .join(RolePermission, RolePermission.role_id == Role.id)
        .where(RolePermission.permission_id == permission_id)
        .where(Role.is_deleted.is_(False))
        .order_by(Role.name)
    ).all()
    return [
        {"role_id": role.id, "role_code": role.code, "role_name": role.name, "tenant_id": tenant_id}
        for role, tenant_id in rows
    ]


def get_role_or_404(db: Session, role_id: UUID) -> Role:
    role = db.execute(select(Role).where(Role.id == role_id).where(Role.is_deleted.is_(False))).scalar_one_or_none()
    if role is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="role not found")
    return role


def list_role_permission_ids(db: Session, *, role_id: UUID, tenant_id: UUID | None) -> list[UUID]:
    """读取角色在指定租户作用域下的权限 ID。"""
    stmt = select(RolePermission.permission_id).where(RolePermission.role_id == role_id)
    if tenant_id is None:
        stmt = stmt.where(RolePermission.tenant_id.is_(None))
    else:
        stmt = stmt.where(RolePermission.tenant_id == tenant_id)
    return sorted(set(db.execute(stmt).scalars().all()), key=str)


def set_role_permissions(
    db: Session,
    *,
    role: Role,
    tenant_id: UUID | None,
    permission_ids: Iterable[UUID],
) -> list[UUID]:
    """覆盖设置角色在指定租户作用域下的权限集合。"""
    if role.is_system:
        raise ImmutableSystemEntity("系统角色不可修改。", role_id=str(role.id))

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

    stmt = delete(RolePermission).where(RolePermission.role_id == role.id)
    if tenant_id is None:
        stmt = stmt.where(RolePermission.tenant_id.is_(None))
    else:
        stmt = stmt.where(RolePermission.tenant_id == tenant_id)
    db.execute(stmt)
    for permission_id in wanted:
        db.add(RolePermission(role_id=role.id, permission_id=permission_id, tenant_id=tenant_id))
    db.flush()
    return sorted(wanted, key=str)


def resolve_role_scope(principal: Principal, *, tenant_id: UUID | None, system: bool) -> UUID | None:
    """确定角色权限的作用租户。只有超级管理员可操作系统级或其他租户的关联。"""
    if system or (tenant_id is not None and tenant_id != principal.tenant_id):
        if not principal.is_super_admin:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="forbidden")
        return None if system else tenant_id
    return principal.tenant_id
