"""接口成功响应 `data` 字段结构定义。

说明：
1. 所有业务接口统一返回 `SuccessResponse[data=...]`。
2. 会话与权限检查接口面向前端，字段输出为驼峰命名；其余管理接口保持下划线命名。
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import Field

from nadmin_api.schemas.common import BaseSchema, CamelSchema


class HealthStatusData(BaseSchema):
    """健康检查返回结构。"""

    status: str = Field(description="健康状态值，常见为 ok 或 ready。")


class AuthLoginData(BaseSchema):
    """登录结果结构。"""

    access_token: str = Field(description="访问令牌。")
    token_type: str = Field(default="bearer", description="令牌类型。")
    expires_at: datetime = Field(description="令牌过期时间（UTC）。")
    expires_in: int = Field(description="距过期剩余秒数。")
    client_type: str = Field(description="登录端类型。")


class AuthLogoutData(BaseSchema):
    """登出结果结构。"""

    logged_out: bool = Field(description="是否已完成登出。")
    cleared_cookies: list[str] = Field(description="本次清理的 Cookie 名称。")


class SessionUserData(CamelSchema):
    """会话用户信息。ID 一律以字符串输出。"""

    id: str = Field(description="用户 ID。")
    tenant_id: str = Field(description="所属租户 ID。")
    role_id: str | None = Field(default=None, description="角色 ID。")
    is_super_admin: bool = Field(description="是否超级管理员。")
    email: str = Field(description="邮箱。")
    username: str = Field(description="用户名。")
    display_name: str | None = Field(default=None, description="展示名。")
    tenant_code: str | None = Field(default=None, description="所属租户编码。")
    client_type: str = Field(description="令牌来源端。")


class SessionData(CamelSchema):
    """`/auth/session` 返回结构。"""

    user: SessionUserData = Field(description="当前会话用户。")


class GrantedPermissionsData(BaseSchema):
    """当前主体已授予的权限编码。"""

    is_super_admin: bool = Field(description="是否超级管理员（拥有全部权限）。")
    permissions: list[str] = Field(description="已授予的权限编码列表。")


class TenantContextData(BaseSchema):
    """当前请求的租户解析结果。"""

    tenant_id: str = Field(description="解析得到的租户 ID 或编码。")
    method: str = Field(description="解析来源：jwt/header/subdomain/query/default。")
    tenant: dict[str, Any] | None = Field(default=None, description="匹配到的租户记录。")


class PermissionCheckSummary(CamelSchema):
    """权限检查汇总。"""

    total: int = Field(description="检查总数。")
    granted: int = Field(description="通过数。")
    denied: int = Field(description="拒绝数。")
    granted_rate: str = Field(description="通过率，保留两位小数的百分比字符串。")


class PermissionCheckData(CamelSchema):
    """权限检查结果。"""

    permissions: dict[str, bool] = Field(description="权限编码 -> 是否具备。")
    summary: PermissionCheckSummary = Field(description="汇总信息。")
    resource_id: str | None = Field(default=None, description="请求中携带的资源 ID。")


class PermissionTreeData(BaseSchema):
    """权限树结构。节点字段为驼峰命名，含 roleUsageCount 与 children。"""

    tree: list[dict[str, Any]] = Field(description="权限森林。")
    total: int = Field(description="树中节点总数。")


class PermissionData(BaseSchema):
    """权限详情结构。"""

    id: UUID = Field(description="权限 ID。")
    code: str = Field(description="权限编码。")
    name: str = Field(description="权限名称。")
    type: str = Field(description="节点类型。")
    parent_id: UUID | None = Field(default=None, description="父权限 ID。")
    sort_order: int = Field(description="同级排序值。")
    is_system: bool = Field(description="是否系统权限。")
    front_path: str | None = Field(default=None, description="前端路由。")
    api_path: str | None = Field(default=None, description="后端接口路径。")
    method: str | None = Field(default=None, description="HTTP 方法。")
    resource_type: str | None = Field(default=None, description="资源类型。")
    description: str | None = Field(default=None, description="描述。")
    status: str = Field(description="权限状态。")


class PermissionUsageItem(BaseSchema):
    """引用某权限的角色。"""

    role_id: UUID = Field(description="角色 ID。")
    role_code: str = Field(description="角色编码。")
    role_name: str = Field(description="角色名称。")
    tenant_id: UUID | None = Field(default=None, description="关联所属租户，空表示系统级关联。")


class PermissionUsageData(BaseSchema):
    """权限使用情况。"""

    permission_id: UUID = Field(description="权限 ID。")
    role_count: int = Field(description="引用该权限的不同角色数量。")
    roles: list[PermissionUsageItem] = Field(description="引用明细。")


class RolePermissionData(BaseSchema):
    """角色权限集合。"""

    role_id: UUID = Field(description="角色 ID。")
    tenant_id: UUID | None = Field(default=None, description="作用租户，空表示系统级。")
    permission_ids: list[UUID] = Field(description="权限 ID 列表。")


class PermissionTemplateData(BaseSchema):
    """权限模板结构。"""

    id: UUID = Field(description="模板 ID。")
    name: str = Field(description="模板名称。")
    description: str | None = Field(default=None, description="模板描述。")
    tenant_id: UUID | None = Field(default=None, description="所属租户，空表示平台级模板。")
    is_system: bool = Field(description="是否系统模板。")
    permission_ids: list[UUID] = Field(description="模板包含的权限 ID。")


class TenantData(BaseSchema):
    """租户详情结构。"""

    id: UUID = Field(description="租户 ID。")
    name: str = Field(description="租户名称。")
    code: str = Field(description="租户编码。")
    status: str = Field(description="租户状态。")
    settings: dict[str, Any] = Field(default_factory=dict, description="租户自定义配置。")
    is_default: bool = Field(description="是否系统默认租户。")


class DeletedData(BaseSchema):
    """删除结果结构。"""

    id: UUID = Field(description="被删除资源 ID。")
    deleted: bool = Field(description="是否删除成功。")
    hard: bool = Field(default=False, description="是否物理删除。")


class TenantBatchData(BaseSchema):
    """租户批量操作结果。"""

    operation: str = Field(description="执行的批量操作。")
    success: int = Field(description="处理成功的租户数量。")
    tenant_ids: list[UUID] = Field(description="已处理的租户 ID。")


class TenantOverviewData(BaseSchema):
    """全局租户统计。"""

    total_tenants: int = Field(description="租户总数。")
    active_tenants: int = Field(description="正常租户数。")
    inactive_tenants: int = Field(description="未启用租户数。")
    suspended_tenants: int = Field(description="暂停租户数。")
    total_users: int = Field(description="用户总数。")
    active_users: int = Field(description="正常用户数。")


class TenantStatisticsData(BaseSchema):
    """单个租户统计。"""

    tenant: TenantData = Field(description="租户详情。")
    users: dict[str, Any] = Field(description="用户数量，按状态拆分，含活跃率。")
    roles: dict[str, int] = Field(description="租户角色数量，区分超级角色与普通角色。")
    role_permission_count: int = Field(description="租户级角色权限关联数。")
    audit_log_count: int = Field(description="租户审计记录数。")
    health: dict[str, Any] = Field(description="健康状态与问题列表。")


class SessionItemData(BaseSchema):
    """当前用户的一个登录会话。"""

    session_id: str = Field(description="会话 ID。")
    client_type: str | None = Field(default=None, description="登录端类型。")
    ip: str | None = Field(default=None, description="登录 IP。")
    user_agent: str | None = Field(default=None, description="登录客户端标识。")
    issued_at: datetime | None = Field(default=None, description="签发时间（UTC）。")
    expires_at: datetime | None = Field(default=None, description="过期时间（UTC）。")
    is_current: bool = Field(description="是否为本次请求所用会话。")


class SessionListData(BaseSchema):
    """会话列表。"""

    sessions: list[SessionItemData] = Field(description="未过期的会话。")
    current_session_id: str | None = Field(default=None, description="本次请求所用会话 ID。")
    total: int = Field(description="会话数量。")


class SessionRevokeData(BaseSchema):
    """会话撤销结果。"""

    revoked_count: int = Field(description="撤销的会话数量。")
    current_session_id: str | None = Field(default=None, description="本次请求所用会话 ID。")
