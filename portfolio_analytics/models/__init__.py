from portfolio_analytics.models.event import (
    AnalyticsEvent,
    DeviceClass,
    EventCreate,
    EventKind,
    as_utc,
    utcnow,
)
from portfolio_analytics.models.session import VisitSession
from portfolio_analytics.models.summary import (
    AnalyticsSummary,
    CampaignStat,
    CountryStat,
    DailyPoint,
    DeviceStat,
    HourlyPoint,
    PageStat,
    SourceStat,
)
from portfolio_analytics.models.auth import (
    AdminPasswordRequest,
    AuthUser,
    LoginRequest,
    LoginResponse,
    TokenScope,
)

__all__ = [
    "AnalyticsEvent",
    "DeviceClass",
    "EventCreate",
    "EventKind",
    "as_utc",
    "utcnow",
    "VisitSession",
    "AnalyticsSummary",
    "CampaignStat",
    "CountryStat",
    "DailyPoint",
    "DeviceStat",
    "HourlyPoint",
    "PageStat",
    "SourceStat",
    "AdminPasswordRequest",
    "AuthUser",
    "LoginRequest",
    "LoginResponse",
    "TokenScope",
]
