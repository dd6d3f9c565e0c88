"""登录、会话与租户切换请求结构。"""

from enum import StrEnum
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field, model_validator


class AuthLoginRequest(BaseModel):
    """本地账号登录请求，邮箱与用户名二选一。"""

    email: str | None = Field(default=None, max_length=255, description="登录邮箱。", examples=["admin@example.com"])
    username: str | None = Field(default=None, max_length=50, description="登录用户名。", examples=["admin"])
    password: str = Field(min_length=1, max_length=128, description="登录密码。")
    client_type: Literal["admin", "h5"] = Field(default="admin", description="登录端类型。")
    remember_me: bool = Field(default=False, description="是否延长登录有效期。")

    @model_validator(mode="after")
    def require_account(self) -> "AuthLoginRequest":
        if not (self.email or "").strip() and not (self.username or "").strip():
            raise ValueError("email or username is required")
        return self

    @property
    def account(self) -> str:
        return (self.email or self.username or "").strip()


class SwitchTenantRequest(BaseModel):
    """超级管理员切换租户请求。"""

    tenant_id: UUID = Field(description="目标租户 ID。")


class SessionRevokeScope(StrEnum):
    """批量撤销范围。"""

    ALL = "all"  # 全部会话，含本次请求所用会话。
    OTHERS = "others"  # 除本次请求所用会话外的全部会话。
