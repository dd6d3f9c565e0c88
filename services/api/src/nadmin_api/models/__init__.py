"""ORM 模型导出集合。"""

from nadmin_api.models.audit import AuditLog
from nadmin_api.models.permission import (
    Permission,
    PermissionTemplate,
    Role,
    RolePermission,
    TemplatePermission,
)
from nadmin_api.models.tenant import Tenant, User

__all__ = [
    "AuditLog",
    "Permission",
    "PermissionTemplate",
    "Role",
    "RolePermission",
    "TemplatePermission",
    "Tenant",
    "User",
]
