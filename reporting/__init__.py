"""报表模块 —— 活动归一化与收入汇总。"""
from .activity import (
    Activity, CallActivity, SmsActivity, normalize, activity_to_dict
)
from .aggregation import (
    AggregationEngine, ChannelBreakdown, CountryShare, PeriodRevenue,
    PeriodChange, ServicePerformance, RevenueReport, DashboardSummary,
    channel_breakdown, country_breakdown, time_series, percent_change,
    service_breakdown
)
from .filters import Granularity, ReportFilter

__all__ = [
    "Activity",
    "CallActivity",
    "SmsActivity",
    "normalize",
    "activity_to_dict",
    "AggregationEngine",
    "ChannelBreakdown",
    "CountryShare",
    "PeriodRevenue",
    "PeriodChange",
    "ServicePerformance",
    "RevenueReport",
    "DashboardSummary",
    "channel_breakdown",
    "country_breakdown",
    "time_series",
    "percent_change",
    "service_breakdown",
    "Granularity",
    "ReportFilter",
]
