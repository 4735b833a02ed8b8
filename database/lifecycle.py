"""各业务记录的状态机定义。

图中只列出允许的前进方向；终态对应空集合。
"""
from typing import Dict, FrozenSet

from loguru import logger

from .errors import InvalidTransition, ValidationError

PAYOUT_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "pending": frozenset({"processing", "rejected"}),
    "processing": frozenset({"completed", "failed"}),
    "completed": frozenset(),
    "failed": frozenset(),
    "rejected": frozenset(),
}

NUMBER_REQUEST_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "pending": frozenset({"approved", "rejected"}),
    "approved": frozenset({"fulfilled"}),
    "fulfilled": frozenset(),
    "rejected": frozenset(),
}

# reset（回到 pending）是显式操作，不在图中
MESSAGE_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "pending": frozenset({"responded", "archived"}),
    "responded": frozenset(),
    "archived": frozenset(),
}


def ensure_transition(entity: str, graph: Dict[str, FrozenSet[str]],
                      current: str, target: str) -> None:
    """校验状态变更是否合法。

    Raises:
        ValidationError: 目标状态不在状态集合内。
        InvalidTransition: 目标状态从当前状态不可达。
    """
    if target not in graph:
        raise ValidationError(f"Unknown {entity} status: {target}")
    if target not in graph.get(current, frozenset()):
        logger.warning(f"Rejected {entity} transition {current} -> {target}")
        raise InvalidTransition(entity, current, target)


def is_terminal(graph: Dict[str, FrozenSet[str]], status: str) -> bool:
    return not graph.get(status)
