import logging
from datetime import timedelta

from fastapi import FastAPI, Request, status
from contextlib import asynccontextmanager
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from portfolio_analytics.config import settings
from portfolio_analytics.limiter import limiter, create_rate_limiter
from portfolio_analytics.db import create_db_and_tables, engine
from portfolio_analytics.api import auth, events
from portfolio_analytics.services import (
    Aggregator,
    CredentialVerifier,
    EventRecorder,
    SessionStitcher,
)

logging.basicConfig(level=settings.LOG_LEVEL.upper())
logger = logging.getLogger("AnalyticsAPI.Main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application startup...")

    # Initialize db
    logger.info("Initializing database...")
    create_db_and_tables()
    logger.info("Database initialization completed.")

    # Services shared by every request
    app.state.rate_limiter = create_rate_limiter()
    app.state.credential_verifier = CredentialVerifier(
        admin_email=settings.ANALYTICS_ADMIN_EMAIL,
        password_hash=settings.ANALYTICS_ADMIN_PASSWORD_HASH,
        secret=settings.ANALYTICS_JWT_SECRET,
        ttl=timedelta(hours=settings.TOKEN_TTL_HOURS),
        algorithm=settings.TOKEN_ALGORITHM,
    )
    app.state.event_recorder = EventRecorder(
        ip_salt=settings.ANALYTICS_IP_SALT,
        stitcher=SessionStitcher(engine),
    )
    app.state.aggregator = Aggregator()
    logger.info("Services initialized.")
    yield
    logger.info("Application shutdown.")


app = FastAPI(
    title="Portfolio Analytics API",
    lifespan=lifespan
)

# Initialize the limiter with app
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Missing or malformed request fields are a plain 400."""
    fields = sorted({
        str(err["loc"][-1]) for err in exc.errors() if err.get("loc")
    })
    detail = "Missing or invalid fields"
    if fields:
        detail = f"{detail}: {', '.join(fields)}"
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": detail}
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"}
    )


# Set up CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(events.router)
app.include_router(auth.router)
app.include_router(auth.admin_router)

@app.get("/")
def read_root():
    return {"message": "Welcome to the Portfolio Analytics API"}

@app.get("/healthz")
def healthz():
    return {"status": "ok"}
