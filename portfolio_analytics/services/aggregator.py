import logging
import random
from collections import Counter
from datetime import date, datetime, timedelta
from typing import Iterable, List, Optional, Sequence, Tuple
from urllib.parse import urlparse

from sqlmodel import Session, select

from portfolio_analytics.models import (
    AnalyticsEvent,
    AnalyticsSummary,
    CampaignStat,
    CountryStat,
    DailyPoint,
    DeviceStat,
    EventKind,
    HourlyPoint,
    PageStat,
    SourceStat,
    VisitSession,
    as_utc,
    utcnow,
)

logger = logging.getLogger("AnalyticsAPI.Aggregator")

RANGES = {
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
    "90d": timedelta(days=90),
}
DEFAULT_RANGE = "7d"

TOP_PAGES_LIMIT = 10

# Referrer host fragment -> display name, checked in order
KNOWN_REFERRERS = (
    ("google", "Google Search"),
    ("instagram", "Instagram"),
    ("youtube", "YouTube"),
    ("linkedin", "LinkedIn"),
)

# Stubbed metrics, reported as-is until real rules exist
PLACEHOLDER_BOUNCE_RATE = 34.2
PLACEHOLDER_AVG_SESSION_DURATION = "2m 34s"
PLACEHOLDER_CONVERSION_RATE = 0.1
PLACEHOLDER_FIELDS = [
    "bounceRate",
    "avgSessionDuration",
    "utmCampaigns.conversions",
    "hourlyTraffic",
    "dailyTraffic",
]


def resolve_window(time_range: Optional[str], now: datetime) -> datetime:
    """Start of the summary window; unknown ranges fall back to 7 days."""
    span = RANGES.get(time_range or DEFAULT_RANGE, RANGES[DEFAULT_RANGE])
    return as_utc(now) - span


def fetch_window(
    db: Session,
    window_start: datetime,
    event_kind: Optional[str] = None,
) -> Tuple[List[AnalyticsEvent], List[VisitSession]]:
    """Load the raw rows a summary needs."""
    window_start = as_utc(window_start)
    event_query = select(AnalyticsEvent).where(AnalyticsEvent.timestamp >= window_start)
    if event_kind:
        event_query = event_query.where(AnalyticsEvent.event == event_kind)
    event_query = event_query.order_by(AnalyticsEvent.timestamp)

    session_query = select(VisitSession).where(VisitSession.started_at >= window_start)

    events = list(db.exec(event_query).all())
    sessions = list(db.exec(session_query).all())
    return events, sessions


def classify_source(event: AnalyticsEvent) -> str:
    """UTM source first, then the referrer host, else Direct."""
    if event.utm_source:
        return event.utm_source
    if not event.referrer:
        return "Direct"

    try:
        host = urlparse(event.referrer).hostname or ""
    except ValueError:
        return "Other"

    for fragment, name in KNOWN_REFERRERS:
        if fragment in host:
            return name
    return "Other"


def _percentage(count: int, total: int) -> float:
    if not total:
        return 0.0
    return round(count / total * 100, 2)


def _ranked(values: Iterable[str]) -> List[Tuple[str, int]]:
    # sorted() is stable, so ties keep first-seen order
    counts = Counter(values)
    return sorted(counts.items(), key=lambda item: item[1], reverse=True)


class Aggregator:
    """
    Turns a window of raw events and sessions into dashboard metrics.

    Everything derived from stored rows is deterministic. The hourly and
    daily series are random placeholders drawn from `rng`.
    """

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def summarize(
        self,
        window_start: datetime,
        events: Sequence[AnalyticsEvent],
        sessions: Sequence[VisitSession],
        today: Optional[date] = None,
    ) -> AnalyticsSummary:
        page_views = [e for e in events if e.event == EventKind.page_view.value]
        total = len(page_views)

        top_pages = [
            PageStat(page=page, views=views, percentage=_percentage(views, total))
            for page, views in _ranked(e.page for e in page_views)[:TOP_PAGES_LIMIT]
        ]

        traffic_sources = [
            SourceStat(source=source, visitors=count, percentage=_percentage(count, total))
            for source, count in _ranked(classify_source(e) for e in page_views)
        ]

        campaign_counts = Counter(e.utm_campaign for e in page_views if e.utm_campaign)
        utm_campaigns = [
            CampaignStat(
                campaign=campaign,
                visitors=visitors,
                conversions=int(visitors * PLACEHOLDER_CONVERSION_RATE),
            )
            for campaign, visitors in campaign_counts.items()
        ]

        device_types = [
            DeviceStat(device=device, visitors=count, percentage=_percentage(count, total))
            for device, count in _ranked(e.device for e in page_views)
        ]

        countries = [
            CountryStat(country=country, visitors=count, percentage=_percentage(count, total))
            for country, count in _ranked(e.country for e in page_views)
        ]

        window_start = as_utc(window_start)
        unique_visitors = len({s.ip_hash for s in sessions if as_utc(s.started_at) >= window_start})

        return AnalyticsSummary(
            total_visitors=total,
            total_page_views=total,
            unique_visitors=unique_visitors,
            bounce_rate=PLACEHOLDER_BOUNCE_RATE,
            avg_session_duration=PLACEHOLDER_AVG_SESSION_DURATION,
            top_pages=top_pages,
            traffic_sources=traffic_sources,
            utm_campaigns=utm_campaigns,
            device_types=device_types,
            countries=countries,
            hourly_traffic=self._hourly_series(),
            daily_traffic=self._daily_series(today or utcnow().date()),
            placeholder_fields=list(PLACEHOLDER_FIELDS),
        )

    def _hourly_series(self) -> List[HourlyPoint]:
        return [HourlyPoint(hour=hour, visitors=self.rng.randint(50, 149)) for hour in range(24)]

    def _daily_series(self, today: date) -> List[DailyPoint]:
        return [
            DailyPoint(
                date=(today - timedelta(days=6 - offset)).isoformat(),
                visitors=self.rng.randint(200, 699),
                page_views=self.rng.randint(400, 1399),
            )
            for offset in range(7)
        ]
