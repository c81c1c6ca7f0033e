"""HTTP middleware stack for the EduPlay API."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from eduplay.config import Settings
from eduplay.middleware.error_handler import setup_error_handlers
from eduplay.middleware.logging import setup_logging
from eduplay.middleware.rate_limit import RateLimitMiddleware
from eduplay.middleware.request_id import REQUEST_ID_HEADER, RequestIdMiddleware

# Headers the web client reads from API responses
EXPOSED_HEADERS = [REQUEST_ID_HEADER, "X-RateLimit-Remaining", "X-RateLimit-Limit", "Retry-After"]


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Configure logging, error envelopes and the middleware chain.

    Starlette runs middleware last-added-first. Order, outermost first:
    CORS, request id, rate limit. CORS wraps everything so 429 and error
    envelopes still carry CORS headers; the request id is bound before the
    rate limiter logs anything.
    """
    setup_logging(settings)
    setup_error_handlers(app)

    app.add_middleware(
        RateLimitMiddleware,
        requests_per_window=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", REQUEST_ID_HEADER],
        expose_headers=EXPOSED_HEADERS,
    )
