import hmac
import logging
from fastapi import APIRouter, Depends, HTTPException, Response, status
from typing import Optional

from portfolio_analytics.config import settings
from portfolio_analytics.models import (
    AdminPasswordRequest,
    AuthUser,
    LoginRequest,
    LoginResponse,
    TokenScope,
)
from portfolio_analytics.api.security import (
    ADMIN_COOKIE,
    ANALYTICS_COOKIE,
    get_content_admin,
    get_credential_verifier,
    get_current_user,
)
from portfolio_analytics.limiter import LOGIN_POLICY, rate_limit
from portfolio_analytics.services.credentials import CredentialVerifier

logger = logging.getLogger("AnalyticsAPI.Auth")

router = APIRouter(
    prefix="/api/auth",
    tags=["Auth"]
)

admin_router = APIRouter(
    prefix="/api/admin/auth",
    tags=["Admin"]
)


def _set_session_cookie(response: Response, name: str, token: str):
    response.set_cookie(
        key=name,
        value=token,
        max_age=settings.TOKEN_TTL_HOURS * 60 * 60,
        path="/",
        httponly=True,
        secure=settings.is_production,
        samesite="strict",
    )


@router.post(
    "/login",
    response_model=LoginResponse,
    dependencies=[Depends(rate_limit(LOGIN_POLICY, "Too many login attempts. Please try again later."))]
)
def login(
    credentials: LoginRequest,
    response: Response,
    verifier: CredentialVerifier = Depends(get_credential_verifier)
):
    """
    Exchange the admin email and password for a dashboard token.
    The token is returned in the body for bearer clients and set as an
    HTTP-only cookie for the browser.
    """

    user = verifier.authenticate(credentials.email, credentials.password)
    if not user:
        logger.warning("Rejected dashboard login attempt.")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials"
        )

    token = verifier.issue_token(user, TokenScope.analytics)
    _set_session_cookie(response, ANALYTICS_COOKIE, token)
    logger.info(f"Dashboard login for {user.email}.")

    return LoginResponse(user=user, token=token)


@router.post("/logout")
def logout(response: Response):
    """Tokens are not revoked server-side; dropping the cookie is all there is."""
    response.delete_cookie(ANALYTICS_COOKIE, path="/")
    return {"success": True}


@router.get("/me")
def who_am_i(user: AuthUser = Depends(get_current_user)):
    return {"user": user}


@admin_router.post("")
def admin_login(
    payload: AdminPasswordRequest,
    response: Response,
    verifier: CredentialVerifier = Depends(get_credential_verifier)
):
    """
    Password gate for the product content editor.
    Issues a content-scoped token in the admin_session cookie; it does not
    open the analytics dashboard.
    """

    admin_password = settings.ADMIN_PASSWORD
    if not admin_password:
        logger.error("ADMIN_PASSWORD is not configured.")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Admin password not configured"
        )

    if not hmac.compare_digest(payload.password.encode("utf-8"), admin_password.encode("utf-8")):
        logger.warning("Rejected content admin login attempt.")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid password"
        )

    token = verifier.issue_token(AuthUser(email=settings.ANALYTICS_ADMIN_EMAIL), TokenScope.content)
    _set_session_cookie(response, ADMIN_COOKIE, token)

    return {"success": True}


@admin_router.get("")
def admin_status(admin: Optional[AuthUser] = Depends(get_content_admin)):
    return {"authenticated": admin is not None}


@admin_router.delete("")
def admin_logout(response: Response):
    response.delete_cookie(ADMIN_COOKIE, path="/")
    return {"success": True}
