"""权限、角色权限与权限模板请求结构。"""

from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from nadmin_api.models.enums import PermissionStatus, PermissionType


def _dedupe_codes(value: list[str]) -> list[str]:
    normalized: list[str] = []
    seen: set[str] = set()
    for item in value:
        code = item.strip()
        if not code or code in seen:
            continue
        seen.add(code)
        normalized.append(code)
    return normalized


class PermissionCheckRequest(BaseModel):
    """批量权限检查请求。"""

    permissions: list[str] = Field(
        default_factory=list,
        description="待检查的权限编码列表。",
        examples=[["account.user.read", "admin.tenant.update"]],
    )
    resource_id: str | None = Field(default=None, alias="resourceId", description="可选资源 ID，原样回显。")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("permissions")
    @classmethod
    def normalize_codes(cls, value: list[str]) -> list[str]:
        return _dedupe_codes(value)


class PermissionCreateRequest(BaseModel):
    """新建权限请求。"""

    code: str = Field(
        min_length=1,
        max_length=100,
        pattern=r"^[a-z0-9_]+(\.[a-z0-9_]+)*$",
        description="点分命名空间编码。",
        examples=["account.user.read"],
    )
    name: str = Field(min_length=1, max_length=50, description="权限名称。")
    type: PermissionType = Field(default=PermissionType.API, description="权限节点类型。")
    parent_id: UUID | None = Field(default=None, description="父权限 ID。")
    sort_order: int = Field(default=0, description="同级排序值。")
    front_path: str | None = Field(default=None, max_length=255, description="前端路由。")
    api_path: str | None = Field(default=None, max_length=255, description="后端接口路径。")
    method: str | None = Field(default=None, max_length=20, description="HTTP 方法。")
    resource_type: str | None = Field(default=None, max_length=100, description="资源类型。")
    description: str | None = Field(default=None, max_length=255, description="描述。")
    status: PermissionStatus = Field(default=PermissionStatus.ACTIVE, description="权限状态。")


class PermissionUpdateRequest(BaseModel):
    """更新权限请求，仅提交需要修改的字段。"""

    code: str | None = Field(default=None, min_length=1, max_length=100, pattern=r"^[a-z0-9_]+(\.[a-z0-9_]+)*$")
    name: str | None = Field(default=None, min_length=1, max_length=50)
    type: PermissionType | None = None
    parent_id: UUID | None = None
    sort_order: int | None = None
    front_path: str | None = Field(default=None, max_length=255)
    api_path: str | None = Field(default=None, max_length=255)
    method: str | None = Field(default=None, max_length=20)
    resource_type: str | None = Field(default=None, max_length=100)
    description: str | None = Field(default=None, max_length=255)
    status: PermissionStatus | None = None


class RolePermissionUpdateRequest(BaseModel):
    """角色权限覆盖设置请求。"""

    permission_ids: list[UUID] = Field(default_factory=list, description="角色权限 ID 列表。")


class PermissionTemplateCreateRequest(BaseModel):
    """新建权限模板请求。"""

    name: str = Field(min_length=1, max_length=100, description="模板名称。")
    description: str | None = Field(default=None, max_length=255, description="模板描述。")
    permission_ids: list[UUID] = Field(default_factory=list, description="模板包含的权限 ID。")


class PermissionTemplateUpdateRequest(BaseModel):
    """更新权限模板请求。"""

    name: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=255)
    permission_ids: list[UUID] | None = None


class PermissionTemplateApplyRequest(BaseModel):
    """模板应用请求。"""

    merge: bool = Field(default=False, description="是否与角色已有权限合并，默认覆盖。")
