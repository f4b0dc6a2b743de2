from portfolio_analytics.services.aggregator import Aggregator, fetch_window, resolve_window
from portfolio_analytics.services.credentials import CredentialVerifier, hash_password
from portfolio_analytics.services.recorder import EventRecorder
from portfolio_analytics.services.sessions import SessionStitcher
