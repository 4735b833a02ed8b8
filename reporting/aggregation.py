"""汇总引擎 —— 收入指标计算。

本模块分两层：

1. 纯函数（``channel_breakdown``、``country_breakdown`` 等）：
   只接收活动列表，不访问数据库，所有运算都在未舍入的 Decimal 上进行。
2. ``AggregationEngine``：从记录存储加载活动（同一个快照内），
   组合纯函数生成仪表盘、收入报表、提现报表等结果。

舍入只发生在结果对象的 ``to_dict()``（展示层边界）：
收入两位小数，百分比一位小数，国家占峰值比例取整。
"""
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Optional

from loguru import logger
from sqlalchemy.orm import Session

from config.settings import settings
from database.errors import InconsistentAggregate
from database.manager import DatabaseManager
from database.models import User
from .activity import Activity, CallActivity, SmsActivity, normalize, activity_to_dict
from .filters import Granularity, ReportFilter

ZERO = Decimal("0")
HUNDRED = Decimal("100")

COUNTRY_NAMES = {
    "UK": "United Kingdom",
    "US": "United States",
    "DE": "Germany",
    "FR": "France",
    "AU": "Australia",
    "JP": "Japan",
    "RU": "Russia",
    "NG": "Nigeria",
    "ZA": "South Africa",
}


def _round(value: Optional[Decimal], places: int) -> Optional[float]:
    if value is None:
        return None
    quantum = Decimal(1).scaleb(-places)
    return float(value.quantize(quantum, rounding=ROUND_HALF_UP))


def country_name(code: str) -> str:
    return COUNTRY_NAMES.get(code, code)


# ================================================================
# 结果对象
# ================================================================

@dataclass
class ChannelBreakdown:
    """按通道类型拆分的收入；三项之和必须严格等于 total。"""
    voice: Decimal
    sms: Decimal
    combined: Decimal
    total: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "voice": _round(self.voice, 2),
            "sms": _round(self.sms, 2),
            "combined": _round(self.combined, 2),
            "total": _round(self.total, 2),
        }


@dataclass
class CountryShare:
    """国家收入及其相对峰值（最高国家）的百分比。"""
    country_code: str
    revenue: Decimal
    percent_of_peak: Decimal

    @property
    def country_name(self) -> str:
        return country_name(self.country_code)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "country": self.country_code,
            "country_name": self.country_name,
            "revenue": _round(self.revenue, 2),
            "percentage": int(self.percent_of_peak.quantize(
                Decimal(1), rounding=ROUND_HALF_UP
            )),
        }


@dataclass
class PeriodRevenue:
    period: str
    start: date
    voice: Decimal = ZERO
    sms: Decimal = ZERO
    combined: Decimal = ZERO

    @property
    def total(self) -> Decimal:
        return self.voice + self.sms + self.combined

    def to_dict(self) -> Dict[str, Any]:
        return {
            "period": self.period,
            "voice": _round(self.voice, 2),
            "sms": _round(self.sms, 2),
            "combined": _round(self.combined, 2),
            "total": _round(self.total, 2),
        }


@dataclass
class PeriodChange:
    """环比变化；上期为 0 时 change 为 None（展示为 N/A）。"""
    current: Decimal
    previous: Decimal
    change: Optional[Decimal]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current": _round(self.current, 2),
            "previous": _round(self.previous, 2),
            "change": _round(self.change, 1),
        }


@dataclass
class ServicePerformance:
    name: str
    kind: str
    revenue: Decimal
    usage: int
    performance: str
    change: Optional[Decimal]
    share_of_total: Optional[Decimal]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "type": self.kind,
            "revenue": _round(self.revenue, 2),
            "usage": self.usage,
            "performance": self.performance,
            "change": _round(self.change, 1),
            "share_of_total": _round(self.share_of_total, 1),
        }


@dataclass
class RevenueReport:
    filter: ReportFilter
    granularity: Granularity
    total: Decimal
    by_kind: Dict[str, Decimal]
    by_channel: ChannelBreakdown
    by_country: List[CountryShare]
    over_time: List[PeriodRevenue]
    change: PeriodChange
    services: List[ServicePerformance]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "filter": self.filter.to_dict(),
            "granularity": self.granularity.value,
            "total_revenue": _round(self.total, 2),
            "call_revenue": _round(self.by_kind["call"], 2),
            "sms_revenue": _round(self.by_kind["sms"], 2),
            "revenue_by_channel": self.by_channel.to_dict(),
            "revenue_by_country": [c.to_dict() for c in self.by_country],
            "revenue_over_time": [p.to_dict() for p in self.over_time],
            "period_change": self.change.to_dict(),
            "service_performance": [s.to_dict() for s in self.services],
        }


@dataclass
class DashboardSummary:
    total_revenue: Decimal
    call_minutes: int
    sms_count: int
    active_numbers: int
    pending_payouts: int
    unread_messages: int
    recent_activity: List[Activity] = field(default_factory=list)
    top_countries: List[CountryShare] = field(default_factory=list)
    services: List[ServicePerformance] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_revenue": _round(self.total_revenue, 2),
            "call_minutes": self.call_minutes,
            "sms_count": self.sms_count,
            "active_numbers": self.active_numbers,
            "pending_payouts": self.pending_payouts,
            "unread_messages": self.unread_messages,
            "recent_activity": [activity_to_dict(a) for a in self.recent_activity],
            "top_countries": [c.to_dict() for c in self.top_countries],
            "service_performance": [s.to_dict() for s in self.services],
        }


# ================================================================
# 纯函数
# ================================================================

def sum_revenue(activities: Iterable[Activity]) -> Decimal:
    return sum((a.revenue for a in activities), ZERO)


def revenue_by_kind(activities: Iterable[Activity]) -> Dict[str, Decimal]:
    totals = {"call": ZERO, "sms": ZERO}
    for a in activities:
        totals[a.kind] += a.revenue
    return totals


def channel_breakdown(activities: List[Activity]) -> ChannelBreakdown:
    """按号码通道类型（voice / sms / combined）拆分收入。

    combined 是独立的通道分类，不是 voice 与 sms 之和。

    Raises:
        InconsistentAggregate: 三项之和不等于总收入（存在未知通道类型的事件）。
    """
    buckets = {"voice": ZERO, "sms": ZERO, "combined": ZERO}
    total = ZERO
    for a in activities:
        total += a.revenue
        if a.channel_type in buckets:
            buckets[a.channel_type] += a.revenue

    breakdown = ChannelBreakdown(total=total, **buckets)
    accounted = breakdown.voice + breakdown.sms + breakdown.combined
    if accounted != total:
        logger.error(
            f"Channel breakdown {accounted} does not match total revenue {total}"
        )
        raise InconsistentAggregate(
            "Revenue by channel does not sum to total revenue",
            expected=total, actual=accounted
        )
    return breakdown


def country_breakdown(activities: Iterable[Activity]) -> List[CountryShare]:
    """按国家汇总收入，并计算相对最高国家的百分比。

    最高国家恒为 100；其余为 ``revenue / peak * 100``（未舍入）。
    结果按收入倒序、国家代码升序排列。
    """
    totals: Dict[str, Decimal] = {}
    for a in activities:
        totals[a.country_code] = totals.get(a.country_code, ZERO) + a.revenue
    if not totals:
        return []

    peak = max(totals.values())
    shares = []
    for code, revenue in totals.items():
        if peak == 0 or revenue == peak:
            percent = HUNDRED
        else:
            percent = revenue / peak * HUNDRED
        shares.append(CountryShare(code, revenue, percent))
    shares.sort(key=lambda s: (-s.revenue, s.country_code))
    return shares


def time_series(activities: Iterable[Activity],
                granularity: Granularity) -> List[PeriodRevenue]:
    """按粒度分桶，每桶拆分 voice / sms / combined，按时间升序。无事件的桶不输出。

    Raises:
        InconsistentAggregate: 存在未知通道类型的事件（与 channel_breakdown 一致）。
    """
    buckets: Dict[date, PeriodRevenue] = {}
    for a in activities:
        if a.channel_type not in ("voice", "sms", "combined"):
            logger.error(
                f"{a.kind} {a.id} has unknown channel type {a.channel_type!r}; "
                f"revenue {a.revenue} cannot be bucketed"
            )
            raise InconsistentAggregate(
                f"Activity {a.kind} {a.id} has unknown channel type",
                expected=a.revenue, actual=ZERO
            )
        start, label = granularity.bucket(a.timestamp)
        bucket = buckets.get(start)
        if bucket is None:
            bucket = buckets[start] = PeriodRevenue(period=label, start=start)
        setattr(bucket, a.channel_type, getattr(bucket, a.channel_type) + a.revenue)
    return [buckets[key] for key in sorted(buckets)]


def percent_change(current: Decimal, previous: Decimal) -> Optional[Decimal]:
    """环比 ``(current - previous) / previous * 100``；上期为 0 时返回 None。"""
    if previous == 0:
        return None
    return (current - previous) / previous * HUNDRED


def performance_tier(revenue: Decimal,
                     high: Optional[float] = None,
                     medium: Optional[float] = None) -> str:
    high = Decimal(str(settings.high_performance_threshold if high is None else high))
    medium = Decimal(str(
        settings.medium_performance_threshold if medium is None else medium
    ))
    if revenue > high:
        return "High Performance"
    if revenue > medium:
        return "Medium Performance"
    return "Low Performance"


def service_breakdown(current: List[Activity],
                      previous: Optional[List[Activity]] = None,
                      high: Optional[float] = None,
                      medium: Optional[float] = None) -> List[ServicePerformance]:
    """按业务类别汇总收入与用量，并给出真实的环比变化。

    previous 为 None 时（没有可比周期）change 为 None。
    用量：有通话的业务记为 voice，用量为通话分钟数（总秒数向下取整）；
    否则记为 sms，用量为短信条数。
    """
    total = sum_revenue(current)
    stats: Dict[str, Dict[str, Any]] = {}
    for a in current:
        entry = stats.setdefault(a.service_type, {
            "revenue": ZERO, "seconds": 0, "sms": 0, "has_calls": False,
        })
        entry["revenue"] += a.revenue
        if isinstance(a, CallActivity):
            entry["seconds"] += a.duration_seconds
            entry["has_calls"] = True
        elif isinstance(a, SmsActivity):
            entry["sms"] += 1
        else:
            raise TypeError(f"Unknown activity type: {type(a).__name__}")

    previous_totals: Dict[str, Decimal] = {}
    for a in previous or []:
        previous_totals[a.service_type] = (
            previous_totals.get(a.service_type, ZERO) + a.revenue
        )

    results = []
    for name, entry in stats.items():
        kind = "voice" if entry["has_calls"] else "sms"
        change = None
        if previous is not None:
            change = percent_change(
                entry["revenue"], previous_totals.get(name, ZERO)
            )
        results.append(ServicePerformance(
            name=name,
            kind=kind,
            revenue=entry["revenue"],
            usage=entry["seconds"] // 60 if kind == "voice" else entry["sms"],
            performance=performance_tier(entry["revenue"], high, medium),
            change=change,
            share_of_total=(
                entry["revenue"] / total * HUNDRED if total else None
            ),
        ))
    results.sort(key=lambda s: (-s.revenue, s.name))
    return results


# ================================================================
# 引擎
# ================================================================

class AggregationEngine:
    """汇总引擎。

    每个公开方法都在一个数据库快照内完成全部读取，因此仪表盘中的
    收入、待处理提现数等数字彼此一致。

    Example::

        engine = AggregationEngine(db)
        flt = ReportFilter(date(2024, 1, 1), date(2024, 1, 31))
        report = engine.revenue_report(flt, Granularity.WEEK)
        payload = report.to_dict()
    """

    def __init__(self, db: DatabaseManager,
                 recent_limit: Optional[int] = None,
                 top_countries: Optional[int] = None,
                 top_services: Optional[int] = None,
                 high_threshold: Optional[float] = None,
                 medium_threshold: Optional[float] = None) -> None:
        self.db = db
        self.recent_limit = recent_limit or settings.recent_activity_limit
        self.top_countries = top_countries or settings.top_countries_limit
        self.top_services = top_services or settings.top_services_limit
        self.high_threshold = high_threshold
        self.medium_threshold = medium_threshold

    def _load(self, session: Session,
              flt: Optional[ReportFilter] = None,
              user_id: Optional[int] = None) -> List[Activity]:
        if flt is not None:
            criteria = {
                "start": flt.start,
                "end": flt.end,
                "country": flt.country,
                "service_type": flt.service_type,
                "user_id": flt.user_id,
            }
        else:
            criteria = {"user_id": user_id}
        calls = self.db.calls.query_range(session=session, **criteria)
        sms = self.db.sms.query_range(session=session, **criteria)
        return normalize(calls, sms)

    # ------------------------------------------------------------
    # 单项指标
    # ------------------------------------------------------------

    def activities(self, flt: Optional[ReportFilter] = None,
                   user_id: Optional[int] = None,
                   limit: Optional[int] = None,
                   offset: int = 0) -> List[Activity]:
        """合并后的活动流（时间倒序，可分页）。"""
        with self.db.snapshot() as session:
            merged = self._load(session, flt, user_id)
        if offset:
            merged = merged[offset:]
        if limit is not None:
            merged = merged[:limit]
        return merged

    def total_revenue(self, flt: ReportFilter) -> Decimal:
        with self.db.snapshot() as session:
            return sum_revenue(self._load(session, flt))

    def revenue_by_channel(self, flt: ReportFilter) -> ChannelBreakdown:
        with self.db.snapshot() as session:
            return channel_breakdown(self._load(session, flt))

    def revenue_by_country(self, flt: ReportFilter) -> List[CountryShare]:
        with self.db.snapshot() as session:
            return country_breakdown(self._load(session, flt))

    def revenue_over_time(self, flt: ReportFilter,
                          granularity: Granularity = Granularity.DAY
                          ) -> List[PeriodRevenue]:
        with self.db.snapshot() as session:
            return time_series(self._load(session, flt), Granularity.parse(granularity))

    def period_change(self, flt: ReportFilter) -> PeriodChange:
        """当前周期与紧邻上一个等长周期的收入环比。"""
        with self.db.snapshot() as session:
            current = sum_revenue(self._load(session, flt))
            previous = sum_revenue(self._load(session, flt.previous()))
        return PeriodChange(current, previous, percent_change(current, previous))

    def service_performance(self, flt: ReportFilter) -> List[ServicePerformance]:
        with self.db.snapshot() as session:
            current = self._load(session, flt)
            previous = self._load(session, flt.previous())
        return service_breakdown(
            current, previous, self.high_threshold, self.medium_threshold
        )[:self.top_services]

    # ------------------------------------------------------------
    # 组合报表
    # ------------------------------------------------------------

    def revenue_report(self, flt: ReportFilter,
                       granularity: Granularity = Granularity.DAY
                       ) -> RevenueReport:
        """收入报表：总额、通道/国家拆分、时间序列、环比、业务表现。"""
        granularity = Granularity.parse(granularity)
        with self.db.snapshot() as session:
            current = self._load(session, flt)
            previous = self._load(session, flt.previous())

        total = sum_revenue(current)
        previous_total = sum_revenue(previous)
        return RevenueReport(
            filter=flt,
            granularity=granularity,
            total=total,
            by_kind=revenue_by_kind(current),
            by_channel=channel_breakdown(current),
            by_country=country_breakdown(current),
            over_time=time_series(current, granularity),
            change=PeriodChange(
                total, previous_total, percent_change(total, previous_total)
            ),
            services=service_breakdown(
                current, previous, self.high_threshold, self.medium_threshold
            )[:self.top_services],
        )

    def dashboard(self, user_id: Optional[int] = None,
                  flt: Optional[ReportFilter] = None) -> DashboardSummary:
        """仪表盘汇总。

        Args:
            user_id: 数据范围（None 表示全部用户）。
            flt: 可选的时间窗口；不提供时统计全部历史。
        """
        if flt is not None and user_id is not None:
            flt = flt.scoped(user_id)
        with self.db.snapshot() as session:
            current = self._load(session, flt, user_id)
            previous = self._load(session, flt.previous()) if flt else None
            active_numbers = self.db.numbers.count_active(
                owner_id=user_id, session=session
            )
            pending_payouts = len(self.db.payouts.list_payouts(
                user_id=user_id, status="pending", session=session
            ))
            unread = self.db.messages.unread_count(user_id=user_id, session=session)

        calls = [a for a in current if isinstance(a, CallActivity)]
        return DashboardSummary(
            total_revenue=sum_revenue(current),
            call_minutes=sum(a.duration_seconds for a in calls) // 60,
            sms_count=len(current) - len(calls),
            active_numbers=active_numbers,
            pending_payouts=pending_payouts,
            unread_messages=unread,
            recent_activity=current[:self.recent_limit],
            top_countries=country_breakdown(current)[:self.top_countries],
            services=service_breakdown(
                current, previous, self.high_threshold, self.medium_threshold
            )[:self.top_services],
        )

    def payment_report(self, user_id: Optional[int] = None) -> Dict[str, Any]:
        """提现报表：各状态笔数与金额。"""
        with self.db.snapshot() as session:
            summary = self.db.payouts.status_summary(user_id=user_id, session=session)
        return {
            status: {"count": item["count"], "amount": _round(item["amount"], 2)}
            for status, item in summary.items()
        }

    def verify_balance(self, user_id: int) -> Decimal:
        """核对余额：归属收入合计 - 已完成提现合计 必须等于当前余额。

        Returns:
            核对通过的余额。

        Raises:
            NotFound: 用户不存在。
            InconsistentAggregate: 余额与流水不一致。
        """
        with self.db.snapshot() as session:
            user = self.db.users.require(User, user_id, session=session)
            earned = sum_revenue(self._load(session, user_id=user_id))
            paid = self.db.payouts.completed_total(user_id, session=session)
            balance = user.balance or ZERO

        expected = earned - paid
        if expected != balance:
            logger.error(
                f"Balance mismatch for user {user_id}: stored {balance}, "
                f"expected {expected}"
            )
            raise InconsistentAggregate(
                f"Balance of user {user_id} does not match its ledger",
                expected=expected, actual=balance
            )
        return balance
