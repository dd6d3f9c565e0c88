"""路由模块导出集合。"""

from . import auth, health, permission_templates, permissions, tenants

__all__ = ["auth", "health", "permission_templates", "permissions", "tenants"]
