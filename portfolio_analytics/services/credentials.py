import hmac
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import bcrypt
import jwt
from pydantic import ValidationError

from portfolio_analytics.models import AuthUser, TokenScope

logger = logging.getLogger("AnalyticsAPI.Credentials")


def hash_password(password: str, rounds: int = 12) -> str:
    """Salted bcrypt hash suitable for ANALYTICS_ADMIN_PASSWORD_HASH."""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def _now() -> datetime:
    return datetime.now(timezone.utc)


class CredentialVerifier:
    """
    Checks the admin credentials and issues / validates signed session tokens.

    Tokens are self-contained JWTs: there is no revocation list, and
    validation collapses every failure (bad signature, expired, malformed,
    wrong scope) into `None`.
    """

    def __init__(
        self,
        admin_email: str,
        password_hash: str,
        secret: str,
        ttl: timedelta = timedelta(hours=24),
        algorithm: str = "HS256",
        clock: Callable[[], datetime] = _now,
    ):
        self.admin_email = admin_email
        self.password_hash = password_hash
        self.secret = secret
        self.ttl = ttl
        self.algorithm = algorithm
        self.clock = clock

    def verify(self, password: str) -> bool:
        try:
            return bcrypt.checkpw(password.encode("utf-8"), self.password_hash.encode("utf-8"))
        except ValueError as e:
            logger.error(f"Stored admin password hash is unusable: {e}")
            return False

    def authenticate(self, email: str, password: str) -> Optional[AuthUser]:
        """
        Both checks always run so a wrong email costs as much as a wrong password.
        """
        email_ok = hmac.compare_digest(email.encode("utf-8"), self.admin_email.encode("utf-8"))
        password_ok = self.verify(password)
        if not (email_ok and password_ok):
            return None
        return AuthUser(email=self.admin_email)

    def issue_token(self, user: AuthUser, scope: TokenScope = TokenScope.analytics) -> str:
        issued_at = self.clock()
        claims = {
            "email": user.email,
            "role": user.role,
            "scope": scope.value,
            "iat": issued_at,
            "exp": issued_at + self.ttl,
        }
        return jwt.encode(claims, self.secret, algorithm=self.algorithm)

    def validate(self, token: str, scope: TokenScope = TokenScope.analytics) -> Optional[AuthUser]:
        try:
            claims = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                options={"require": ["exp", "iat"]},
            )
        except jwt.PyJWTError as e:
            logger.debug(f"Token rejected: {e}")
            return None

        if claims.get("scope") != scope.value:
            logger.debug("Token rejected: scope mismatch.")
            return None

        try:
            return AuthUser(email=claims.get("email"), role=claims.get("role"))
        except ValidationError:
            logger.debug("Token rejected: malformed identity claims.")
            return None
