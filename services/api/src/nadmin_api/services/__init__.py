"""服务层能力导出集合。"""

from nadmin_api.services.audit import AuditAction, audit_log
from nadmin_api.services.permission_catalog import (
    ROUTE_PERMISSIONS,
    PermissionCode,
    required_route_permissions,
    seed_default_permissions,
)
from nadmin_api.services.permission_tree import build_permission_tree, flatten_tree
from nadmin_api.services.permissions import PermissionEvaluator, summarize_checks
from nadmin_api.services.principal_loader import Principal, load_principal
from nadmin_api.services.tenant_bootstrap import ensure_default_tenant, normalize_tenant_code
from nadmin_api.services.tenant_resolver import ResolutionMethod, TenantResolution, lookup_tenant, resolve_tenant

__all__ = [
    "AuditAction",
    "audit_log",
    "PermissionCode",
    "ROUTE_PERMISSIONS",
    "required_route_permissions",
    "seed_default_permissions",
    "build_permission_tree",
    "flatten_tree",
    "PermissionEvaluator",
    "summarize_checks",
    "Principal",
    "load_principal",
    "ensure_default_tenant",
    "normalize_tenant_code",
    "ResolutionMethod",
    "TenantResolution",
    "lookup_tenant",
    "resolve_tenant",
]
