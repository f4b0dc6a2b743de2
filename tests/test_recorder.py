from datetime import datetime, timedelta, timezone

import pytest
from fastapi import Request
from sqlmodel import Session, select

from portfolio_analytics.db import engine
from portfolio_analytics.models import AnalyticsEvent, EventCreate, VisitSession
from portfolio_analytics.services.enrichment import (
    client_ip_from_headers,
    detect_device,
    hash_ip,
    lookup_country,
)
from portfolio_analytics.services.recorder import EventRecorder
from portfolio_analytics.services.sessions import SessionStitcher
from tests.conftest import IP_SALT

IPHONE_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_1 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.1 Mobile/15E148 Safari/604.1"
)
IPAD_UA = (
    "Mozilla/5.0 (iPad; CPU OS 17_1 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.1 Mobile/15E148 Safari/604.1"
)
DESKTOP_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class SteppingClock:
    """Returns the queued instants in order."""

    def __init__(self, *instants: datetime):
        self.instants = list(instants)

    def __call__(self) -> datetime:
        return self.instants.pop(0)


def make_payload(**overrides) -> EventCreate:
    data = {
        "event": "page_view",
        "page": "/",
        "timestamp": 1_700_000_000_000,
        "referrer": "",
    }
    data.update(overrides)
    return EventCreate(**data)


@pytest.mark.parametrize(
    "user_agent, expected",
    [
        (IPHONE_UA, "Mobile"),
        (IPAD_UA, "Tablet"),
        (DESKTOP_UA, "Desktop"),
        ("Mozilla/5.0 (Linux; Android 14; Pixel 8) Mobile Safari/537.36", "Mobile"),
        ("", "Desktop"),
    ],
)
def test_detect_device(user_agent, expected):
    assert detect_device(user_agent) == expected


def test_country_is_a_placeholder():
    assert lookup_country("8.8.8.8") == "Unknown"


def test_ip_hash_is_salted_and_stable():
    first = hash_ip("203.0.113.7", "salt-a")

    assert first == hash_ip("203.0.113.7", "salt-a")
    assert first != hash_ip("203.0.113.7", "salt-b")
    assert first != hash_ip("203.0.113.8", "salt-a")
    assert "203.0.113.7" not in first


def test_epoch_millisecond_timestamp_is_parsed():
    payload = make_payload(timestamp=1_700_000_000_000)

    assert payload.timestamp == datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)
    assert payload.timestamp.utcoffset() == timedelta(0)


def test_record_persists_enriched_event(db):
    recorder = EventRecorder(IP_SALT, SessionStitcher(engine))

    recorder.record(
        db,
        make_payload(page="/products/lut", utm_source="newsletter", referrer="https://www.google.com/"),
        client_ip="203.0.113.7",
        user_agent=IPHONE_UA,
    )

    stored = db.exec(select(AnalyticsEvent)).one()
    assert stored.event == "page_view"
    assert stored.page == "/products/lut"
    assert stored.device == "Mobile"
    assert stored.country == "Unknown"
    assert stored.ip_hash == hash_ip("203.0.113.7", IP_SALT)
    assert stored.utm_source == "newsletter"
    assert stored.referrer == "https://www.google.com/"


def test_stored_timestamps_are_aware_utc(db):
    recorder = EventRecorder(IP_SALT, SessionStitcher(engine))

    recorder.record(db, make_payload(timestamp="2024-05-01T12:00:00", sessionId="s-1"), client_ip="1.1.1.1")

    with Session(engine) as fresh:
        stored = fresh.exec(select(AnalyticsEvent)).one()
        visit = fresh.exec(select(VisitSession)).one()

    assert stored.timestamp == datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
    for value in (stored.timestamp, stored.received_at, visit.started_at, visit.ended_at):
        assert value.utcoffset() == timedelta(0)


def test_offset_timestamp_is_converted_to_utc():
    payload = make_payload(timestamp="2024-05-01T14:00:00+02:00")

    assert payload.timestamp == datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
    assert payload.timestamp.utcoffset() == timedelta(0)


def test_payload_user_agent_is_fallback(db):
    recorder = EventRecorder(IP_SALT, SessionStitcher(engine))

    event = recorder.record(db, make_payload(userAgent=IPAD_UA), client_ip="203.0.113.7")

    assert event.user_agent == IPAD_UA
    assert event.device == "Tablet"


def test_page_views_with_session_id_are_stitched(db):
    recorder = EventRecorder(IP_SALT, SessionStitcher(engine))

    for page in ["/", "/a", "/b"]:
        recorder.record(db, make_payload(page=page, sessionId="s-1"), client_ip="203.0.113.7")

    visit = db.exec(select(VisitSession)).one()
    assert visit.session_id == "s-1"
    assert visit.page_count == 3
    assert visit.first_page == "/"
    assert visit.last_page == "/b"
    assert visit.ip_hash == hash_ip("203.0.113.7", IP_SALT)


def test_other_event_kinds_do_not_touch_sessions(db):
    recorder = EventRecorder(IP_SALT, SessionStitcher(engine))

    recorder.record(db, make_payload(event="scroll_depth", referrer="50%", sessionId="s-1"), client_ip="1.1.1.1")
    recorder.record(db, make_payload(sessionId=None), client_ip="1.1.1.1")

    assert db.exec(select(VisitSession)).all() == []
    assert len(db.exec(select(AnalyticsEvent)).all()) == 2


def test_session_update_goes_through_dispatch(db):
    stitcher = SessionStitcher(engine)
    recorder = EventRecorder(IP_SALT, stitcher)
    dispatched = []

    recorder.record(
        db,
        make_payload(sessionId="s-1"),
        client_ip="1.1.1.1",
        dispatch=lambda func, *args: dispatched.append((func, args)),
    )

    assert len(dispatched) == 1
    func, args = dispatched[0]
    assert func == stitcher.touch_quietly
    assert args[:2] == ("s-1", "/")
    # Nothing ran yet
    assert db.exec(select(VisitSession)).all() == []


def test_stitcher_failure_does_not_fail_recording(db, monkeypatch):
    stitcher = SessionStitcher(engine)

    def explode(*args, **kwargs):
        raise RuntimeError("database went away")

    monkeypatch.setattr(stitcher, "touch", explode)
    recorder = EventRecorder(IP_SALT, stitcher)

    event = recorder.record(db, make_payload(sessionId="s-1"), client_ip="1.1.1.1")

    assert event.id is not None
    assert len(db.exec(select(AnalyticsEvent)).all()) == 1


def test_touch_keeps_creation_fields_and_advances(db):
    t0 = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
    stitcher = SessionStitcher(engine, clock=SteppingClock(t0, t0 + timedelta(minutes=2)))

    stitcher.touch("s-1", "/", "hash-a", DESKTOP_UA, "Desktop", "Unknown")
    visit = stitcher.touch("s-1", "/a", "hash-b", IPHONE_UA, "Mobile", "Unknown")

    assert visit.page_count == 2
    assert visit.first_page == "/"
    assert visit.last_page == "/a"
    assert visit.ip_hash == "hash-a"
    assert visit.device == "Desktop"
    assert visit.started_at == t0
    assert visit.ended_at == t0 + timedelta(minutes=2)


def test_ended_at_never_moves_backwards(db):
    t0 = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
    stitcher = SessionStitcher(engine, clock=SteppingClock(t0, t0 - timedelta(minutes=5)))

    stitcher.touch("s-1", "/", "hash-a", "", "Desktop", "Unknown")
    visit = stitcher.touch("s-1", "/a", "hash-a", "", "Desktop", "Unknown")

    assert visit.ended_at == t0
    assert visit.page_count == 2


def test_sessions_are_one_row_per_id(db):
    stitcher = SessionStitcher(engine)

    for page in ["/", "/a"]:
        stitcher.touch("s-1", page, "h", "", "Desktop", "Unknown")
    stitcher.touch("s-2", "/b", "h", "", "Desktop", "Unknown")

    visits = {v.session_id: v for v in db.exec(select(VisitSession)).all()}
    assert set(visits) == {"s-1", "s-2"}
    assert visits["s-1"].page_count == 2
    assert visits["s-2"].page_count == 1


def test_losing_the_insert_race_advances_the_winning_row(db):
    stitcher = SessionStitcher(engine)
    stitcher.touch("s-1", "/", "hash-a", "", "Desktop", "Unknown")

    # The second touch misses the row on its first read, as if the other
    # request's insert committed just after
    lookups = []

    def find_after_race(session, session_id):
        lookups.append(session_id)
        if len(lookups) == 1:
            return None
        return SessionStitcher._find(session, session_id)

    stitcher._find = find_after_race
    visit = stitcher.touch("s-1", "/a", "hash-b", "", "Mobile", "Unknown")

    assert len(lookups) == 2
    assert visit.page_count == 2
    assert visit.first_page == "/"
    assert visit.last_page == "/a"
    assert visit.ip_hash == "hash-a"
    assert len(db.exec(select(VisitSession)).all()) == 1


def make_request(headers=None, peer="10.9.9.9") -> Request:
    raw = [(name.lower().encode("latin-1"), value.encode("latin-1")) for name, value in (headers or {}).items()]
    return Request({"type": "http", "headers": raw, "client": (peer, 51000)})


def test_client_ip_ignores_headers_without_trusted_proxies():
    request = make_request({"X-Forwarded-For": "198.51.100.1", "X-Real-IP": "198.51.100.2"})

    assert client_ip_from_headers(request, trusted_hops=0) == "10.9.9.9"


@pytest.mark.parametrize(
    "forwarded, hops, expected",
    [
        ("198.51.100.1", 1, "198.51.100.1"),
        ("6.6.6.6, 198.51.100.1", 1, "198.51.100.1"),
        ("6.6.6.6, 198.51.100.1, 10.0.0.2", 2, "198.51.100.1"),
        ("198.51.100.1", 3, "198.51.100.1"),
        (" , ", 1, "10.9.9.9"),
    ],
)
def test_client_ip_takes_hop_added_by_trusted_proxy(forwarded, hops, expected):
    request = make_request({"X-Forwarded-For": forwarded})

    assert client_ip_from_headers(request, trusted_hops=hops) == expected


def test_client_ip_falls_back_to_proxy_headers_then_peer():
    assert client_ip_from_headers(make_request({"X-Real-IP": "198.51.100.7"}), trusted_hops=1) == "198.51.100.7"
    assert client_ip_from_headers(make_request(), trusted_hops=1) == "10.9.9.9"
