import logging
from datetime import datetime
from typing import Callable

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from portfolio_analytics.models import VisitSession, as_utc, utcnow

logger = logging.getLogger("AnalyticsAPI.Sessions")


class SessionStitcher:
    """
    Upserts the per-visit session row for page views carrying a session id.

    Runs after the response has been sent, so it opens its own database
    session. The read-then-write is not isolated: two simultaneous page
    views in one session can lose an increment.
    """

    def __init__(self, engine: Engine, clock: Callable[[], datetime] = utcnow):
        self.engine = engine
        self.clock = clock

    def touch(
        self,
        session_id: str,
        page: str,
        ip_hash: str,
        user_agent: str,
        device: str,
        country: str,
    ) -> VisitSession:
        now = self.clock()

        with Session(self.engine) as db:
            visit = self._find(db, session_id)

            if visit is None:
                visit = VisitSession(
                    session_id=session_id,
                    ip_hash=ip_hash,
                    user_agent=user_agent,
                    device=device,
                    country=country,
                    first_page=page,
                    last_page=page,
                    page_count=1,
                    started_at=now,
                    ended_at=now,
                )
                db.add(visit)
                try:
                    db.commit()
                except IntegrityError:
                    # Another request created the row first
                    db.rollback()
                    visit = self._find(db, session_id)
                    if visit is None:
                        raise
                    self._advance(visit, page, now)
                    db.add(visit)
                    db.commit()
            else:
                self._advance(visit, page, now)
                db.add(visit)
                db.commit()

            db.refresh(visit)
            return visit

    def touch_quietly(self, *args, **kwargs) -> None:
        """Best-effort variant for background dispatch: errors are logged, never raised."""
        try:
            visit = self.touch(*args, **kwargs)
            logger.debug(f"Session {visit.session_id} now at {visit.page_count} page(s).")
        except Exception as e:
            logger.error(f"Failed to update visit session: {e}")

    @staticmethod
    def _find(db: Session, session_id: str):
        return db.exec(
            select(VisitSession).where(VisitSession.session_id == session_id)
        ).first()

    @staticmethod
    def _advance(visit: VisitSession, page: str, now: datetime):
        visit.last_page = page
        visit.page_count += 1
        if as_utc(now) > as_utc(visit.ended_at):
            visit.ended_at = now
