import uuid
from datetime import datetime

from sqlmodel import Field, SQLModel

from portfolio_analytics.models.event import utcnow


class VisitSession(SQLModel, table=True):
    """
    One browsing visit, keyed by the client-generated session id.
    page_count only grows and ended_at never moves backwards.
    """
    __tablename__ = "analytics_sessions"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        nullable=False
    )
    session_id: str = Field(unique=True, index=True, nullable=False)

    ip_hash: str
    user_agent: str = ""
    device: str
    country: str

    first_page: str
    last_page: str
    page_count: int = Field(default=1, ge=1)

    started_at: datetime = Field(default_factory=utcnow, nullable=False, index=True)
    ended_at: datetime = Field(default_factory=utcnow, nullable=False)
