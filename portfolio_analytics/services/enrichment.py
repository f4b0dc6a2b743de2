import hashlib
import hmac
import logging
from typing import Optional

from fastapi import Request

from portfolio_analytics.config import settings
from portfolio_analytics.models import DeviceClass

logger = logging.getLogger("AnalyticsAPI.Enrichment")

TABLET_KEYWORDS = ("ipad", "tablet", "kindle", "silk/")
MOBILE_KEYWORDS = ("mobile", "android", "iphone", "ipod", "blackberry", "iemobile", "opera mini")

UNKNOWN_COUNTRY = "Unknown"


def detect_device(user_agent: str) -> str:
    """
    Coarse device class from the User-Agent.
    Tablet keywords win over mobile ones (iPad UAs also say "Mobile").
    """
    ua = (user_agent or "").lower()
    if any(keyword in ua for keyword in TABLET_KEYWORDS):
        return DeviceClass.tablet.value
    if any(keyword in ua for keyword in MOBILE_KEYWORDS):
        return DeviceClass.mobile.value
    return DeviceClass.desktop.value


def lookup_country(raw_ip: str) -> str:
    # No geolocation database wired in yet
    return UNKNOWN_COUNTRY


def hash_ip(raw_ip: str, salt: str) -> str:
    """
    HMAC the client IP with the server salt. The raw address is never stored.
    """
    return hmac.new(salt.encode("utf-8"), raw_ip.encode("utf-8"), hashlib.sha256).hexdigest()


def client_ip_from_headers(request: Request, trusted_hops: Optional[int] = None) -> str:
    """
    Visitor IP as seen through `trusted_hops` reverse proxies.

    Each trusted proxy appends the address it received the request from to
    X-Forwarded-For, so the client is the entry `trusted_hops` places from
    the right. Anything further left was written by the caller and is
    ignored. With no trusted proxies only the socket peer counts.
    """
    if trusted_hops is None:
        trusted_hops = settings.TRUSTED_PROXY_HOPS

    peer = request.client.host if request.client and request.client.host else "unknown"
    if trusted_hops <= 0:
        return peer

    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        hops = [hop.strip() for hop in forwarded.split(",") if hop.strip()]
        if hops:
            return hops[-min(trusted_hops, len(hops))]

    # Single-value headers set by the proxy itself
    for header in ("x-real-ip", "cf-connecting-ip"):
        value = request.headers.get(header)
        if value and value.strip():
            return value.strip()

    return peer
