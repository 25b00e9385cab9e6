"""Courier FastAPI application.

Processes commands synchronously via HTTP. Every request runs inside the
courier domain context.

Usage:
    uvicorn app:app --app-dir src --host 0.0.0.0 --port 8000 --reload
"""

# ---------------------------------------------------------------------------
# Domain initialization
# ---------------------------------------------------------------------------
# The domain is initialized at module level so uvicorn workers share it.
# PROTEAN_ENV controls which config overlay is applied:
#   - "test"       → sync processing, memory providers
#   - "production" → PostgreSQL
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from protean.integrations.fastapi import register_exception_handlers

from courier.domain import courier
from courier.utils.logging import configure_logging

configure_logging()
courier.init()

from courier.api import register_admission_handlers, router  # noqa: E402
from courier.channel import build_default_registry  # noqa: E402
from courier.directory import InMemoryDirectory  # noqa: E402
from courier.notification.dispatcher import Dispatcher  # noqa: E402
from courier.notification.enqueue import NotificationIntake  # noqa: E402
from courier.settings import load_settings  # noqa: E402
from courier.tracking.tracker import DeliveryTracker  # noqa: E402


def create_app(directory=None, channels=None) -> FastAPI:
    """Build the API around a recipient directory and a channel registry.

    Both default to the in-memory implementations used for local runs.
    """
    with courier.domain_context():
        settings = load_settings()

    @asynccontextmanager
    async def lifespan(application: FastAPI):
        yield
        application.state.dispatcher.close()

    application = FastAPI(
        title="Courier API",
        lifespan=lifespan,
        description="Notification delivery engine — enqueue, status, consent and webhooks",
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @application.middleware("http")
    async def domain_context_middleware(request: Request, call_next):
        """Push the courier domain context for each request."""
        with courier.domain_context():
            response = await call_next(request)
        return response

    tracker = DeliveryTracker()
    application.state.settings = settings
    application.state.tracker = tracker
    application.state.intake = NotificationIntake(directory or InMemoryDirectory(), settings, tracker=tracker)
    application.state.dispatcher = Dispatcher(channels or build_default_registry(), settings, tracker=tracker)

    application.include_router(router)
    register_exception_handlers(application)
    register_admission_handlers(application)

    @application.get("/health")
    async def health():
        return JSONResponse(content={"status": "ok", "domain": courier.name})

    return application


app = create_app()
