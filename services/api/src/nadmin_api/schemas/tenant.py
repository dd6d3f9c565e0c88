"""租户管理请求结构。"""

from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from nadmin_api.models.enums import TenantStatus
from nadmin_api.services.tenant_bootstrap import TenantBatchOperation


class TenantCreateRequest(BaseModel):
    """创建租户请求体。"""

    name: str = Field(min_length=2, max_length=200, description="租户展示名称。", examples=["示例机构"])
    code: str = Field(
        min_length=2,
        max_length=100,
        pattern=r"^[a-z0-9-]+$",
        description="租户唯一编码，同时用作子域名，只允许小写字母、数字和中划线。",
        examples=["acme"],
    )
    settings: dict[str, Any] = Field(default_factory=dict, description="租户自定义配置。")


class TenantUpdateRequest(BaseModel):
    """更新租户请求体。"""

    name: str | None = Field(default=None, min_length=2, max_length=200)
    code: str | None = Field(default=None, min_length=2, max_length=100, pattern=r"^[a-z0-9-]+$")
    settings: dict[str, Any] | None = None


class TenantStatusUpdateRequest(BaseModel):
    """租户状态变更请求体。"""

    status: TenantStatus = Field(description="目标状态。")


class TenantBatchRequest(BaseModel):
    """租户批量操作请求体。"""

    operation: TenantBatchOperation = Field(description="批量操作：activate/deactivate/suspend/delete。")
    tenant_ids: list[UUID] = Field(min_length=1, max_length=200, description="目标租户 ID 列表。")
