"""核心领域异常。

所有异常均为确定性的本地错误，不会被重试；存储层（SQLAlchemy）的异常原样向上抛出。
"""
from typing import Optional


class PRNError(Exception):
    """领域异常基类。"""


class NotFound(PRNError):
    """引用的用户/号码/提现等记录不存在。"""

    def __init__(self, entity: str, entity_id) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class InsufficientBalance(PRNError):
    """提现金额超过可用余额。"""

    def __init__(self, requested, available) -> None:
        self.requested = requested
        self.available = available
        super().__init__(
            f"Requested {requested} exceeds available balance {available}"
        )


class InvalidTransition(PRNError):
    """状态变更不符合生命周期图。"""

    def __init__(self, entity: str, current: str, target: str) -> None:
        self.entity = entity
        self.current = current
        self.target = target
        super().__init__(f"{entity} cannot move from {current} to {target}")


class InconsistentAggregate(PRNError):
    """汇总结果自相矛盾（数据完整性问题），不应被静默掩盖。"""

    def __init__(self, message: str, expected=None, actual=None) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(message)


class PermissionDenied(PRNError):
    """调用者缺少所需权限。"""

    def __init__(self, role: str, capability: Optional[str] = None) -> None:
        self.role = role
        self.capability = capability
        detail = f" ({capability})" if capability else ""
        super().__init__(f"Role '{role}' is not allowed{detail}")


class ValidationError(PRNError):
    """输入数据格式或取值无效。"""
