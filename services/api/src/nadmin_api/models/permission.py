"""角色、权限与权限模板模型。"""

from uuid import UUID

from sqlalchemy import Boolean, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from nadmin_api.models.base import Base, SoftDeleteMixin, TimestampMixin, UUIDPrimaryKeyMixin
from nadmin_api.models.enums import PermissionStatus, PermissionType, RoleStatus


class Role(Base, UUIDPrimaryKeyMixin, TimestampMixin, SoftDeleteMixin):
    """角色。tenant_id 为空表示跨租户共享的系统级角色。"""

    __tablename__ = "roles"
    __table_args__ = (UniqueConstraint("tenant_id", "code", name="uk_roles_tenant_code"),)

    tenant_id: Mapped[UUID | None] = mapped_column(index=True)
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    code: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(String(255))
    # 超级角色：持有者视同超级管理员。
    is_super: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # 系统角色不允许常规流程修改或删除。
    is_system: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=RoleStatus.ACTIVE)


class Permission(Base, UUIDPrimaryKeyMixin, TimestampMixin, SoftDeleteMixin):
    """权限节点，通过 parent_id 组成森林。

    父链必须无环（写入时校验）；系统权限只允许修改 description 与 sort_order，且不可删除。
    """

    __tablename__ = "permissions"

    # 点分命名空间编码，例如 account.user.read。
    code: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    # 节点类型（menu/page/button/api/data）。
    type: Mapped[str] = mapped_column(String(16), nullable=False, default=PermissionType.API)
    # 父权限 ID，为空表示顶级模块。
    parent_id: Mapped[UUID | None] = mapped_column(index=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_system: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    front_path: Mapped[str | None] = mapped_column(String(255))
    api_path: Mapped[str | None] = mapped_column(String(255))
    method: Mapped[str | None] = mapped_column(String(20))
    resource_type: Mapped[str | None] = mapped_column(String(100))
    description: Mapped[str | None] = mapped_column(String(255))
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=PermissionStatus.ACTIVE)


class RolePermission(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """角色-权限多对多关联。tenant_id 为空表示与租户无关的系统关联。"""

    __tablename__ = "role_permissions"
    __table_args__ = (
        UniqueConstraint("tenant_id", "role_id", "permission_id", name="uk_role_permission_tenant"),
    )

    role_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    permission_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    tenant_id: Mapped[UUID | None] = mapped_column(index=True)


class PermissionTemplate(Base, UUIDPrimaryKeyMixin, TimestampMixin, SoftDeleteMixin):
    """可复用的权限集合。系统模板不可修改、不可删除。"""

    __tablename__ = "permission_templates"
    __table_args__ = (UniqueConstraint("tenant_id", "name", name="uk_permission_templates_tenant_name"),)

    tenant_id: Mapped[UUID | None] = mapped_column(index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(String(255))
    is_system: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class TemplatePermission(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """模板-权限关联。"""

    __tablename__ = "template_permissions"
    __table_args__ = (UniqueConstraint("template_id", "permission_id", name="uk_template_permission"),)

    template_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    permission_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
