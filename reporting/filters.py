"""报表过滤条件与时间粒度。"""
from dataclasses import dataclass, replace
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

from database.errors import ValidationError


class Granularity(str, Enum):
    """时间序列的分桶粒度。"""
    DAY = "day"
    WEEK = "week"
    MONTH = "month"

    @classmethod
    def parse(cls, value: Any) -> "Granularity":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValidationError(f"Unknown granularity: {value}")

    def bucket(self, moment: datetime) -> Tuple[date, str]:
        """返回时间点所属桶的 (起始日期, 标签)。

        标签格式：日 ``YYYY-MM-DD``，周 ``YYYY-Www``（ISO 周），月 ``YYYY-MM``。
        """
        day = moment.date()
        if self is Granularity.DAY:
            return day, day.isoformat()
        if self is Granularity.WEEK:
            iso_year, iso_week, iso_weekday = day.isocalendar()
            start = day - timedelta(days=iso_weekday - 1)
            return start, f"{iso_year}-W{iso_week:02d}"
        start = day.replace(day=1)
        return start, start.strftime("%Y-%m")


def _parse_date(value: Any, field_name: str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return datetime.strptime(value[:10], "%Y-%m-%d").date()
        except ValueError:
            raise ValidationError(
                f"Invalid date format: {value}, expected YYYY-MM-DD"
            )
    raise ValidationError(f"{field_name} is required")


@dataclass(frozen=True)
class ReportFilter:
    """报表过滤条件。

    Attributes:
        date_from: 起始日期（含）。
        date_to: 结束日期（含）。
        country: 国家代码等值过滤（可选）。
        service_type: 业务类别等值过滤（可选）。
        user_id: 数据范围限定到某个用户（可选，由调用者权限决定）。
    """
    date_from: date
    date_to: date
    country: Optional[str] = None
    service_type: Optional[str] = None
    user_id: Optional[int] = None

    def __post_init__(self) -> None:
        if self.date_from > self.date_to:
            raise ValidationError(
                f"date_from {self.date_from} is after date_to {self.date_to}"
            )
        if self.country:
            object.__setattr__(self, "country", self.country.strip().upper())

    @classmethod
    def parse(cls, data: Mapping[str, Any]) -> "ReportFilter":
        """从 ``{dateFrom, dateTo, country?, serviceType?}`` 形式的字典构造。

        同时接受 snake_case 键名。
        """
        date_from = data.get("dateFrom", data.get("date_from"))
        date_to = data.get("dateTo", data.get("date_to"))
        return cls(
            date_from=_parse_date(date_from, "dateFrom"),
            date_to=_parse_date(date_to, "dateTo"),
            country=data.get("country") or None,
            service_type=(
                data.get("serviceType") or data.get("service_type") or None
            ),
        )

    @property
    def start(self) -> datetime:
        return datetime.combine(self.date_from, time.min)

    @property
    def end(self) -> datetime:
        """结束时间（不含），即 date_to 次日零点。"""
        return datetime.combine(self.date_to + timedelta(days=1), time.min)

    @property
    def days(self) -> int:
        return (self.date_to - self.date_from).days + 1

    def previous(self) -> "ReportFilter":
        """紧邻的上一个等长周期（其余条件不变）。"""
        prev_to = self.date_from - timedelta(days=1)
        prev_from = prev_to - timedelta(days=self.days - 1)
        return replace(self, date_from=prev_from, date_to=prev_to)

    def scoped(self, user_id: Optional[int]) -> "ReportFilter":
        return replace(self, user_id=user_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dateFrom": self.date_from.isoformat(),
            "dateTo": self.date_to.isoformat(),
            "country": self.country,
            "serviceType": self.service_type,
        }
