import logging
from typing import Callable, Optional

from sqlmodel import Session

from portfolio_analytics.models import AnalyticsEvent, EventCreate, EventKind
from portfolio_analytics.services.enrichment import detect_device, hash_ip, lookup_country
from portfolio_analytics.services.sessions import SessionStitcher

logger = logging.getLogger("AnalyticsAPI.Recorder")

Dispatch = Callable[..., None]


def run_inline(func, *args, **kwargs) -> None:
    func(*args, **kwargs)


class EventRecorder:
    """
    Enriches and persists a single analytics event.

    Page views with a session id also hand the session bookkeeping to
    `dispatch` (FastAPI's BackgroundTasks.add_task in the HTTP layer).
    """

    def __init__(self, ip_salt: str, stitcher: SessionStitcher):
        self.ip_salt = ip_salt
        self.stitcher = stitcher

    def record(
        self,
        db: Session,
        payload: EventCreate,
        client_ip: str,
        user_agent: Optional[str] = None,
        dispatch: Dispatch = run_inline,
    ) -> AnalyticsEvent:
        ua = user_agent or payload.user_agent or ""
        device = detect_device(ua)
        country = lookup_country(client_ip)
        ip_hash = hash_ip(client_ip, self.ip_salt)

        db_event = AnalyticsEvent(
            event=payload.event,
            page=payload.page,
            timestamp=payload.timestamp,
            user_agent=ua,
            referrer=payload.referrer or "",
            utm_source=payload.utm_source,
            utm_medium=payload.utm_medium,
            utm_campaign=payload.utm_campaign,
            utm_term=payload.utm_term,
            utm_content=payload.utm_content,
            session_id=payload.session_id,
            device=device,
            country=country,
            ip_hash=ip_hash,
        )

        try:
            db.add(db_event)
            db.commit()
            db.refresh(db_event)
        except Exception:
            db.rollback()
            raise

        logger.info(f"Recorded {db_event.event} on {db_event.page} ({db_event.device}).")

        if db_event.event == EventKind.page_view.value and db_event.session_id:
            dispatch(
                self.stitcher.touch_quietly,
                db_event.session_id,
                db_event.page,
                ip_hash,
                ua,
                device,
                country,
            )

        return db_event
