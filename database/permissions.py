"""角色与权限模型。

每个角色对应一组固定的权限（capability），请求进入时解析一次为 Caller，
之后各处只通过 ``caller.can(...)`` / ``caller.require(...)`` 判断，
不在业务代码里散落角色字符串比较。
"""
from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, Optional

from loguru import logger

from .errors import PermissionDenied, ValidationError


class Role(str, Enum):
    """用户角色（封闭集合）。"""
    ADMIN = "admin"
    SUPPORT = "support"
    USER = "user"
    TEST = "test"


class Capability(str, Enum):
    """功能权限。"""
    VIEW_ALL_DATA = "view_all_data"
    MANAGE_USERS = "manage_users"
    MANAGE_NUMBERS = "manage_numbers"
    MANAGE_NUMBER_REQUESTS = "manage_number_requests"
    MANAGE_PAYOUTS = "manage_payouts"
    MANAGE_PROVIDERS = "manage_providers"
    VIEW_REVENUE_REPORTS = "view_revenue_reports"
    REQUEST_NUMBERS = "request_numbers"
    REQUEST_PAYOUTS = "request_payouts"


ROLE_CAPABILITIES = {
    Role.ADMIN: frozenset(Capability),
    Role.SUPPORT: frozenset({
        Capability.VIEW_ALL_DATA,
        Capability.VIEW_REVENUE_REPORTS,
        Capability.MANAGE_NUMBER_REQUESTS,
    }),
    Role.USER: frozenset({
        Capability.REQUEST_NUMBERS,
        Capability.REQUEST_PAYOUTS,
        Capability.VIEW_REVENUE_REPORTS,
    }),
    Role.TEST: frozenset({
        Capability.REQUEST_NUMBERS,
    }),
}


def parse_role(value: str) -> Role:
    """把字符串解析为 Role。

    Raises:
        ValidationError: 不在角色集合内。
    """
    try:
        return Role(str(value).lower())
    except ValueError:
        raise ValidationError(f"Unknown role: {value}")


def capabilities_for(role: Role) -> FrozenSet[Capability]:
    """返回角色拥有的权限集合。"""
    return ROLE_CAPABILITIES[role]


@dataclass(frozen=True)
class Caller:
    """已认证的调用者（由 HTTP/会话层提供）。

    Attributes:
        user_id: 用户ID。
        role: 角色。
    """
    user_id: int
    role: Role

    @property
    def capabilities(self) -> FrozenSet[Capability]:
        return capabilities_for(self.role)

    def can(self, capability: Capability) -> bool:
        return capability in self.capabilities

    def require(self, capability: Capability) -> None:
        """断言拥有权限。

        Raises:
            PermissionDenied: 缺少该权限。
        """
        if not self.can(capability):
            logger.warning(
                f"User {self.user_id} ({self.role.value}) denied {capability.value}"
            )
            raise PermissionDenied(self.role.value, capability.value)

    @property
    def scope_user_id(self) -> Optional[int]:
        """数据可见范围：None 表示可见全部用户，否则只能看自己的数据。"""
        if self.can(Capability.VIEW_ALL_DATA):
            return None
        return self.user_id
