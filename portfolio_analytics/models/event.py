import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field as PydanticField, field_validator
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    """Timezone-aware UTC now; every stored timestamp is aware UTC."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Aware UTC view of `value`; naive input is taken to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class EventKind(str, Enum):
    page_view = "page_view"
    external_link_click = "external_link_click"
    scroll_depth = "scroll_depth"
    time_on_page = "time_on_page"


class DeviceClass(str, Enum):
    mobile = "Mobile"
    tablet = "Tablet"
    desktop = "Desktop"


class AnalyticsEvent(SQLModel, table=True):
    """
    Represents a single tracked event, enriched server-side.
    Rows are append-only: nothing in the service updates or deletes them.
    """
    __tablename__ = "analytics_events"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
        nullable=False
    )

    event: str = Field(index=True)
    page: str = Field(index=True)

    # Client supplied, not checked against the server clock
    timestamp: datetime = Field(nullable=False, index=True)

    user_agent: str = ""
    referrer: str = ""

    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None
    utm_campaign: Optional[str] = Field(default=None, index=True)
    utm_term: Optional[str] = None
    utm_content: Optional[str] = None

    session_id: Optional[str] = Field(default=None, index=True)

    # Derived fields
    device: str = DeviceClass.desktop.value
    country: str = "Unknown"
    ip_hash: str = Field(index=True)

    received_at: datetime = Field(default_factory=utcnow, nullable=False)


class EventCreate(BaseModel):
    """
    The data model the browser tracker sends to POST /api/analytics.
    Field names follow the tracker (`userAgent`, `sessionId`); snake_case
    names are accepted as well.
    """
    model_config = ConfigDict(populate_by_name=True, use_enum_values=True)

    event: EventKind
    page: str = PydanticField(..., min_length=1, max_length=2048)
    timestamp: datetime = PydanticField(
        ..., description="Epoch milliseconds or ISO-8601 instant"
    )
    user_agent: Optional[str] = PydanticField(None, alias="userAgent")
    referrer: Optional[str] = ""

    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None
    utm_campaign: Optional[str] = None
    utm_term: Optional[str] = None
    utm_content: Optional[str] = None

    session_id: Optional[str] = PydanticField(None, alias="sessionId", max_length=128)

    @field_validator("timestamp")
    @classmethod
    def to_utc(cls, value: datetime) -> datetime:
        return as_utc(value)

    @field_validator(
        "utm_source", "utm_medium", "utm_campaign", "utm_term", "utm_content", "session_id"
    )
    @classmethod
    def blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            return None
        return value
