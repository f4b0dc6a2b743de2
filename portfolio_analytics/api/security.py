from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from typing import Optional

from portfolio_analytics.models import AuthUser, TokenScope
from portfolio_analytics.services.credentials import CredentialVerifier

ANALYTICS_COOKIE = "analytics-token"
ADMIN_COOKIE = "admin_session"


def get_credential_verifier(request: Request) -> CredentialVerifier:
    return request.app.state.credential_verifier


def get_current_user(
    request: Request,
    verifier: CredentialVerifier = Depends(get_credential_verifier),
    auth: Optional[HTTPAuthorizationCredentials] = Depends(HTTPBearer(auto_error=False))
) -> AuthUser:
    """
    Resolve the dashboard admin from a Bearer token or the analytics cookie.
    Expired and invalid tokens get the same answer.
    """

    token = None
    if auth and auth.scheme.lower() == "bearer":
        token = auth.credentials
    else:
        token = request.cookies.get(ANALYTICS_COOKIE)

    user = verifier.validate(token, TokenScope.analytics) if token else None

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated"
        )

    return user


def get_content_admin(
    request: Request,
    verifier: CredentialVerifier = Depends(get_credential_verifier)
) -> Optional[AuthUser]:
    """The content-editor admin from the admin_session cookie, if any."""

    token = request.cookies.get(ADMIN_COOKIE)
    if not token:
        return None
    return verifier.validate(token, TokenScope.content)
