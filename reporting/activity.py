"""活动归一化 —— 把通话与短信事件合并为统一的活动流。

通话和短信被投影为带 ``kind`` 标签的两种变体（CallActivity / SmsActivity），
共享号码、国家、业务类别、收入、时间等字段。``length`` 对通话是秒数，
对短信是字符数，两者单位不同，不能混合汇总。

排序规则：时间倒序；时间相同时 id 大者在前；时间与 id 都相同时短信在前。
该规则与输入顺序无关，保证分页结果在重复查询间稳定。
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, ClassVar, Dict, Iterable, List, Optional, Union

from database.models import CallLog, SmsLog


@dataclass(frozen=True)
class ActivityBase:
    """通话/短信共享的字段。"""
    id: int
    number_id: int
    number_value: str
    number_name: Optional[str]
    country_code: str
    service_type: str
    channel_type: str
    revenue: Decimal
    timestamp: datetime
    user_id: Optional[int]
    status: Optional[str]


@dataclass(frozen=True)
class CallActivity(ActivityBase):
    duration_seconds: int = 0
    caller: Optional[str] = None

    kind: ClassVar[str] = "call"

    @property
    def length(self) -> int:
        """通话时长（秒）。"""
        return self.duration_seconds


@dataclass(frozen=True)
class SmsActivity(ActivityBase):
    message_length: int = 0
    sender: Optional[str] = None
    message: Optional[str] = None

    kind: ClassVar[str] = "sms"

    @property
    def length(self) -> int:
        """短信长度（字符数）。"""
        return self.message_length


Activity = Union[CallActivity, SmsActivity]

CENT = Decimal("0.01")

# 同一时间、同一 id 时短信排在通话前
_KIND_RANK = {"call": 0, "sms": 1}


def from_call_log(log: CallLog) -> CallActivity:
    return CallActivity(
        id=log.id,
        number_id=log.number_id,
        number_value=log.number_value,
        number_name=log.number_name,
        country_code=log.country_code,
        service_type=log.service_type,
        channel_type=log.channel_type,
        revenue=Decimal(log.revenue or 0),
        timestamp=log.start_time,
        user_id=log.user_id,
        status=log.status,
        duration_seconds=log.duration or 0,
        caller=log.caller,
    )


def from_sms_log(log: SmsLog) -> SmsActivity:
    return SmsActivity(
        id=log.id,
        number_id=log.number_id,
        number_value=log.number_value,
        number_name=log.number_name,
        country_code=log.country_code,
        service_type=log.service_type,
        channel_type=log.channel_type,
        revenue=Decimal(log.revenue or 0),
        timestamp=log.timestamp,
        user_id=log.user_id,
        status=log.status,
        message_length=log.message_length or 0,
        sender=log.sender,
        message=log.message,
    )


def _sort_key(activity: Activity):
    return (activity.timestamp, activity.id, _KIND_RANK[activity.kind])


def normalize(calls: Iterable[Union[CallLog, CallActivity]],
              sms: Iterable[Union[SmsLog, SmsActivity]],
              limit: Optional[int] = None,
              offset: int = 0) -> List[Activity]:
    """合并通话与短信为按时间倒序排列的活动列表。

    Args:
        calls: 通话记录（ORM 行或已投影的 CallActivity）。
        sms: 短信记录（ORM 行或已投影的 SmsActivity）。
        limit: 最多返回条数（可选）。
        offset: 跳过的条数。

    Returns:
        活动列表；空输入返回空列表。
    """
    merged: List[Activity] = [
        c if isinstance(c, CallActivity) else from_call_log(c) for c in calls
    ]
    merged.extend(
        s if isinstance(s, SmsActivity) else from_sms_log(s) for s in sms
    )
    merged.sort(key=_sort_key, reverse=True)
    if offset:
        merged = merged[offset:]
    if limit is not None:
        merged = merged[:limit]
    return merged


def activity_to_dict(activity: Activity) -> Dict[str, Any]:
    """扁平化为可序列化的字典（展示层边界，收入保留两位小数）。"""
    if isinstance(activity, CallActivity):
        extra = {
            "length_unit": "seconds",
            "contact_number": activity.caller,
        }
    elif isinstance(activity, SmsActivity):
        extra = {
            "length_unit": "characters",
            "contact_number": activity.sender,
            "message_content": activity.message,
        }
    else:
        raise TypeError(f"Unknown activity type: {type(activity).__name__}")

    data: Dict[str, Any] = {
        "kind": activity.kind,
        "id": activity.id,
        "number_id": activity.number_id,
        "number_value": activity.number_value,
        "number_name": activity.number_name,
        "country_code": activity.country_code,
        "service_type": activity.service_type,
        "channel_type": activity.channel_type,
        "revenue": float(activity.revenue.quantize(CENT, rounding=ROUND_HALF_UP)),
        "timestamp": activity.timestamp.isoformat(),
        "status": activity.status,
        "length": activity.length,
    }
    data.update(extra)
    return data
