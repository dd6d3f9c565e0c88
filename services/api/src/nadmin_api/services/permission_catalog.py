"""内置权限目录与路由权限映射。"""

from dataclasses import dataclass
from enum import StrEnum
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from nadmin_api.models.enums import PermissionStatus, PermissionType
from nadmin_api.models.permission import Permission

logger = logging.getLogger("nadmin_api.permissions")


class PermissionCode(StrEnum):
    """系统内置权限编码。"""

    USER_READ = "account.user.read"
    USER_CREATE = "account.user.create"
    USER_UPDATE = "account.user.update"
    USER_DELETE = "account.user.delete"

    ROLE_READ = "account.role.read"
    ROLE_CREATE = "account.role.create"
    ROLE_UPDATE = "account.role.update"
    ROLE_DELETE = "account.role.delete"
    ROLE_ASSIGN = "account.role.assign"

    PERMISSION_READ = "account.permission.read"
    PERMISSION_CREATE = "account.permission.create"
    PERMISSION_UPDATE = "account.permission.update"
    PERMISSION_DELETE = "account.permission.delete"

    ORGANIZATION_READ = "account.organization.read"
    ORGANIZATION_CREATE = "account.organization.create"
    ORGANIZATION_UPDATE = "account.organization.update"
    ORGANIZATION_DELETE = "account.organization.delete"

    LOG_READ = "system.log.read"
    LOG_DELETE = "system.log.delete"
    LOG_EXPORT = "system.log.export"

    TENANT_READ = "admin.tenant.read"
    TENANT_CREATE = "admin.tenant.create"
    TENANT_UPDATE = "admin.tenant.update"
    TENANT_DELETE = "admin.tenant.delete"
    TENANT_CONFIG = "admin.tenant.config"
    SYSTEM_CONFIG = "admin.system.config"

    SERVICE_RECORD_READ = "data.service_record.read"
    SERVICE_RECORD_CREATE = "data.service_record.create"
    SERVICE_RECORD_UPDATE = "data.service_record.update"
    SERVICE_RECORD_DELETE = "data.service_record.delete"
    SERVICE_RECORD_EXPORT = "data.service_record.export"

    HEALTH_RECORD_READ = "data.health_record.read"
    HEALTH_RECORD_CREATE = "data.health_record.create"
    HEALTH_RECORD_UPDATE = "data.health_record.update"
    HEALTH_RECORD_DELETE = "data.health_record.delete"
    HEALTH_RECORD_EXPORT = "data.health_record.export"
    HEALTH_RECORD_VIEW_TRENDS = "data.health_record.view_trends"


# 页面路由前缀 -> 进入该页面必须同时具备的权限编码。
ROUTE_PERMISSIONS: dict[str, tuple[str, ...]] = {
    "/admin/dashboard/account/user": (PermissionCode.USER_READ,),
    "/admin/dashboard/account/role": (PermissionCode.ROLE_READ,),
    "/admin/dashboard/account/permission": (PermissionCode.PERMISSION_READ,),
    "/admin/dashboard/account/organization": (PermissionCode.ORGANIZATION_READ,),
    "/admin/dashboard/account/tenant": (PermissionCode.TENANT_READ,),
    "/admin/dashboard/system/logs": (PermissionCode.LOG_READ,),
    "/admin/dashboard/data/service-record": (PermissionCode.SERVICE_RECORD_READ,),
    "/admin/dashboard/data/health-record": (PermissionCode.HEALTH_RECORD_READ,),
}


def required_route_permissions(path: str) -> tuple[str, ...]:
    """返回路径命中的最长前缀所要求的权限编码。"""
    matched = ""
    for prefix in ROUTE_PERMISSIONS:
        if (path == prefix or path.startswith(prefix + "/")) and len(prefix) > len(matched):
            matched = prefix
    return ROUTE_PERMISSIONS.get(matched, ())


@dataclass(frozen=True)
class CatalogEntry:
    code: str
    name: str
    type: PermissionType
    parent_code: str | None = None
    sort_order: int = 0
    front_path: str | None = None


_MODULES: tuple[CatalogEntry, ...] = (
    CatalogEntry("account", "账户管理", PermissionType.MENU, sort_order=10),
    CatalogEntry("system", "系统管理", PermissionType.MENU, sort_order=20),
    CatalogEntry("admin", "平台管理", PermissionType.MENU, sort_order=30),
    CatalogEntry("data", "数据管理", PermissionType.MENU, sort_order=40),
)

_PAGES: tuple[CatalogEntry, ...] = (
    CatalogEntry("account.user", "用户管理", PermissionType.PAGE, "account", 1, "/admin/dashboard/account/user"),
    CatalogEntry("account.role", "角色管理", PermissionType.PAGE, "account", 2, "/admin/dashboard/account/role"),
    CatalogEntry(
        "account.permission", "权限管理", PermissionType.PAGE, "account", 3, "/admin/dashboard/account/permission"
    ),
    CatalogEntry(
        "account.organization", "组织管理", PermissionType.PAGE, "account", 4, "/admin/dashboard/account/organization"
    ),
    CatalogEntry("system.log", "操作日志", PermissionType.PAGE, "system", 1, "/admin/dashboard/system/logs"),
    CatalogEntry("admin.tenant", "租户管理", PermissionType.PAGE, "admin", 1, "/admin/dashboard/account/tenant"),
    CatalogEntry("admin.system", "系统配置", PermissionType.PAGE, "admin", 2),
    CatalogEntry(
        "data.service_record", "服务记录", PermissionType.PAGE, "data", 1, "/admin/dashboard/data/service-record"
    ),
    CatalogEntry(
        "data.health_record", "健康记录", PermissionType.PAGE, "data", 2, "/admin/dashboard/data/health-record"
    ),
)

_ACTION_NAMES = {
    "read": "查看",
    "create": "新增",
    "update": "编辑",
    "delete": "删除",
    "assign": "分配",
    "export": "导出",
    "config": "配置",
    "view_trends": "查看趋势",
}


def default_catalog() -> list[CatalogEntry]:
    """返回内置权限森林（模块 -> 页面 -> 操作），父节点总在子节点之前。"""
    entries = list(_MODULES) + list(_PAGES)
    page_names = {page.code: page.name for page in _PAGES}
    for index, code in enumerate(PermissionCode):
        parent_code, _, action = code.value.rpartition(".")
        action_type = PermissionType.BUTTON if action in {"read", "export", "view_trends"} else PermissionType.API
        entries.append(
            CatalogEntry(
                code=code.value,
                name=f"{page_names.get(parent_code, parent_code)}{_ACTION_NAMES.get(action, action)}",
                type=action_type,
                parent_code=parent_code,
                sort_order=index,
            )
        )
    return entries


def seed_default_permissions(db: Session) -> int:
    """写入内置系统权限，已存在的编码跳过。返回新增数量。"""
    existing = {
        code: permission_id
        for code, permission_id in db.execute(select(Permission.code, Permission.id)).all()
    }
    created = 0
    for entry in default_catalog():
        if entry.code in existing:
            continue
        permission = Permission(
            code=entry.code,
            name=entry.name,
            type=entry.type,
            parent_id=existing.get(entry.parent_code) if entry.parent_code else None,
            sort_order=entry.sort_order,
            is_system=True,
            front_path=entry.front_path,
            status=PermissionStatus.ACTIVE,
        )
        db.add(permission)
        db.flush()
        existing[entry.code] = permission.id
        created += 1
    if created:
        logger.info("seeded default permissions count=%s", created)
    return created
