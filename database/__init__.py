"""数据库模块 —— 记录存储、仓库与提现账本。

使用示例::

    from database import DatabaseManager

    db = DatabaseManager("sqlite:///data/prn.db")
    db.create_tables()
"""
from .manager import DatabaseManager
from .errors import (
    PRNError, NotFound, InsufficientBalance, InvalidTransition,
    InconsistentAggregate, PermissionDenied, ValidationError
)
from .permissions import Role, Capability, Caller

__all__ = [
    "DatabaseManager",
    "PRNError",
    "NotFound",
    "InsufficientBalance",
    "InvalidTransition",
    "InconsistentAggregate",
    "PermissionDenied",
    "ValidationError",
    "Role",
    "Capability",
    "Caller",
]
