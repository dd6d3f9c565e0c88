"""租户与用户模型。"""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import Boolean, DateTime, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from nadmin_api.models.base import Base, SoftDeleteMixin, TimestampMixin, UUIDPrimaryKeyMixin
from nadmin_api.models.enums import TenantStatus, UserStatus


class Tenant(Base, UUIDPrimaryKeyMixin, TimestampMixin, SoftDeleteMixin):
    """租户实体，系统最高数据隔离边界。

    编码为 `default` 的系统默认租户不可删除、不可变更状态。
    """

    __tablename__ = "tenants"

    # 面向用户展示的租户名称。
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    # 全局唯一短编码，同时用作子域名。
    code: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    # 租户状态（active/inactive/suspended）。
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=TenantStatus.ACTIVE)
    # 租户自定义配置。
    settings: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)


class User(Base, UUIDPrimaryKeyMixin, TimestampMixin, SoftDeleteMixin):
    """用户实体。任一时刻只属于一个租户、一个角色。"""

    __tablename__ = "users"
    __table_args__ = (
        UniqueConstraint("tenant_id", "email", name="uk_users_tenant_email"),
        UniqueConstraint("tenant_id", "username", name="uk_users_tenant_username"),
    )

    # 所属租户 ID（逻辑关联 tenants.id）。
    tenant_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    # 角色 ID（逻辑关联 roles.id）。
    role_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    username: Mapped[str] = mapped_column(String(50), nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(100))
    # 口令哈希（PBKDF2），不存明文。
    password_hash: Mapped[str] = mapped_column(String(256), nullable=False, default="")
    # 超级管理员标记，所有权限判定直接放行。
    is_super_admin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # 用户状态（active/inactive/locked）。
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=UserStatus.ACTIVE)
    # 最近一次登录时间。
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
