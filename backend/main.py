"""
Cleany API - Main FastAPI Application
"""

import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import settings
from db import init_db
from gmail_client import GmailAPIError, GmailAuthError, GmailQuotaExceededError, GmailRateLimitError
from schemas import ErrorResponse, HealthResponse

# Load environment variables
load_dotenv()

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan event handler for FastAPI application.
    Handles startup and shutdown events.
    """
    logger.info("Starting up Cleany API...")
    await init_db()
    logger.info("Database initialized successfully")

    yield

    logger.info("Shutting down Cleany API...")


# Initialize FastAPI application
app = FastAPI(
    title="Cleany API",
    version="1.0.0",
    description="Inbox triage: unsubscribe discovery, bulk sender cleanup and learned preferences",
    lifespan=lifespan,
)

# Configure CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        settings.FRONTEND_URL,
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(GmailAuthError)
async def gmail_auth_error_handler(request: Request, exc: GmailAuthError) -> JSONResponse:
    """Expired or insufficient Gmail tokens require the user to sign in again."""
    logger.warning(f"Gmail authentication failed on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content=ErrorResponse(error="Re-authentication required", detail=str(exc)).model_dump(),
    )


@app.exception_handler(GmailAPIError)
async def gmail_api_error_handler(request: Request, exc: GmailAPIError) -> JSONResponse:
    logger.error(f"Gmail request failed on {request.url.path}: {exc}")
    rate_limited = isinstance(exc, (GmailRateLimitError, GmailQuotaExceededError))
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS if rate_limited else status.HTTP_502_BAD_GATEWAY,
        content=ErrorResponse(
            error="Gmail rate limit exceeded" if rate_limited else "Gmail request failed",
            detail=str(exc),
        ).model_dump(),
    )


# Basic error handling middleware
@app.middleware("http")
async def error_handling_middleware(request: Request, call_next):
    """
    Global error handling middleware.
    Catches unhandled exceptions and returns proper JSON responses.
    """
    try:
        response = await call_next(request)
        return response
    except Exception as exc:
        logger.exception(f"Unhandled exception: {exc}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=ErrorResponse(
                error="Internal server error",
                detail=str(exc) if not settings.is_production() else "An unexpected error occurred",
            ).model_dump(),
        )


# Health check endpoint
@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check() -> HealthResponse:
    """
    Health check endpoint to verify API is running.

    Returns:
        HealthResponse: Status and version information
    """
    return HealthResponse(
        status="healthy",
        version="1.0.0",
    )


# Root endpoint
@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    return {
        "message": "Welcome to Cleany API",
        "version": "1.0.0",
        "docs": "/docs",
    }


# Import routers
from routers import classification, inbox, preferences, senders, unsubscribe  # noqa: E402

# Include routers with prefixes
app.include_router(inbox.router, prefix="/api/inbox", tags=["Inbox"])
app.include_router(senders.router, prefix="/api/senders", tags=["Senders"])
app.include_router(unsubscribe.router, prefix="/api/unsubscribe", tags=["Unsubscribe"])
app.include_router(preferences.router, prefix="/api/preferences", tags=["Preferences"])
app.include_router(classification.router, prefix="/api/classification", tags=["Classification"])


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=not settings.is_production(),
    )
