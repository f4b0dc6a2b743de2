import logging
from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    Query,
    Request,
    status,
    HTTPException
)
from sqlmodel import Session
from typing import Optional

from portfolio_analytics.db import get_session
from portfolio_analytics.models import AnalyticsSummary, AuthUser, EventCreate, utcnow
from portfolio_analytics.api.security import get_current_user
from portfolio_analytics.limiter import TRACK_POLICY, rate_limit
from portfolio_analytics.services.aggregator import Aggregator, fetch_window, resolve_window
from portfolio_analytics.services.enrichment import client_ip_from_headers
from portfolio_analytics.services.recorder import EventRecorder

# Create an APIRouter
router = APIRouter(
    prefix="/api/analytics",
    tags=["Analytics"]
)

logger = logging.getLogger("AnalyticsAPI.Events")


def get_event_recorder(request: Request) -> EventRecorder:
    return request.app.state.event_recorder


def get_aggregator(request: Request) -> Aggregator:
    return request.app.state.aggregator


# API Endpoints

@router.post(
    "",
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(rate_limit(TRACK_POLICY))]
)
def track_event(
    request: Request,
    event_data: EventCreate,
    background_tasks: BackgroundTasks,
    session: Session = Depends(get_session),
    recorder: EventRecorder = Depends(get_event_recorder)
):
    """
    Record one analytics event from the browser tracker.
    Session bookkeeping for page views runs as a background task after
    the response; its failures never fail this call.
    """

    client_ip = client_ip_from_headers(request)
    user_agent = request.headers.get("user-agent")

    try:
        recorder.record(
            session,
            event_data,
            client_ip=client_ip,
            user_agent=user_agent,
            dispatch=background_tasks.add_task,
        )
    except Exception as e:
        logger.error(f'Failed to persist analytics event: {e}')
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail='Failed to process analytics event'
        )

    return {"success": True}


@router.get("", response_model=AnalyticsSummary)
def get_analytics(
    time_range: str = Query("7d", alias="range", description="24h, 7d, 30d or 90d"),
    event: Optional[str] = Query(None, description="Only count events of this kind"),
    user: AuthUser = Depends(get_current_user),
    session: Session = Depends(get_session),
    aggregator: Aggregator = Depends(get_aggregator)
):
    """
    Summary metrics for the dashboard over the requested window.
    """

    window_start = resolve_window(time_range, utcnow())

    try:
        events, sessions = fetch_window(session, window_start, event)
        summary = aggregator.summarize(window_start, events, sessions)
    except Exception as e:
        logger.error(f'Failed to build analytics summary: {e}')
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail='Failed to fetch analytics data'
        )

    logger.info(f"Summary for {user.email}: {summary.total_page_views} page views since {window_start}.")
    return summary
