"""领域枚举定义。"""

from enum import StrEnum


class TenantStatus(StrEnum):
    """租户状态。"""

    ACTIVE = "active"  # 正常可用。
    INACTIVE = "inactive"  # 未启用，保留数据。
    SUSPENDED = "suspended"  # 暂停服务。


class UserStatus(StrEnum):
    """用户状态。非 active 的用户即使持有合法令牌也不能通过认证。"""

    ACTIVE = "active"
    INACTIVE = "inactive"
    LOCKED = "locked"


class RoleStatus(StrEnum):
    """角色状态。"""

    ACTIVE = "active"
    INACTIVE = "inactive"


class PermissionType(StrEnum):
    """权限节点类型。"""

    MENU = "menu"  # 菜单。
    PAGE = "page"  # 页面。
    BUTTON = "button"  # 按钮。
    API = "api"  # 后端接口。
    DATA = "data"  # 数据范围。


class PermissionStatus(StrEnum):
    """权限状态。停用的权限不参与授权判定。"""

    ACTIVE = "active"
    INACTIVE = "inactive"
