from typing import List

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class SummaryModel(BaseModel):
    """Base for the dashboard payload: camelCase on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PageStat(SummaryModel):
    page: str
    views: int
    percentage: float


class SourceStat(SummaryModel):
    source: str
    visitors: int
    percentage: float


class CampaignStat(SummaryModel):
    campaign: str
    visitors: int
    # Placeholder: a flat 10% of visitors, not tracked conversions
    conversions: int


class DeviceStat(SummaryModel):
    device: str
    visitors: int
    percentage: float


class CountryStat(SummaryModel):
    country: str
    visitors: int
    percentage: float


class HourlyPoint(SummaryModel):
    hour: int
    visitors: int


class DailyPoint(SummaryModel):
    date: str
    visitors: int
    page_views: int


class AnalyticsSummary(SummaryModel):
    """
    Aggregated metrics for one summary window.

    Fields named in `placeholder_fields` are stubbed values (constants or
    random series) rather than figures derived from stored events.
    """
    total_visitors: int = 0
    total_page_views: int = 0
    unique_visitors: int = 0
    bounce_rate: float
    avg_session_duration: str
    top_pages: List[PageStat] = Field(default_factory=list)
    traffic_sources: List[SourceStat] = Field(default_factory=list)
    utm_campaigns: List[CampaignStat] = Field(default_factory=list)
    device_types: List[DeviceStat] = Field(default_factory=list)
    countries: List[CountryStat] = Field(default_factory=list)
    hourly_traffic: List[HourlyPoint] = Field(default_factory=list)
    daily_traffic: List[DailyPoint] = Field(default_factory=list)
    placeholder_fields: List[str] = Field(default_factory=list)
