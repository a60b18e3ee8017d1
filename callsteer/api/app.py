"""
FastAPI application factory.

``create_app()`` wires one set of engine services per application, so tests
can build isolated apps with scripted metrics and probes.
"""

from contextlib import asynccontextmanager
from typing import Optional
import uuid

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from callsteer import __version__
from callsteer.api.dependencies import SteeringServices, build_services
from callsteer.api.exception_handlers import setup_exception_handlers
from callsteer.api.routes import actions, audit, dashboard, escalations, flows, health, sessions
from callsteer.config import Settings, get_settings
from callsteer.logging import bind_context, clear_context, get_logger

log = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class CorrelationIDMiddleware(BaseHTTPMiddleware):
    """
    Middleware that adds a correlation ID to each request.

    - Reuses the caller's X-Request-ID, or generates a UUID4
    - Binds it to structlog context for all logs in that request
    - Echoes it in the X-Request-ID response header
    """

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        bind_context(request_id=request_id)
        try:
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            clear_context()


def create_app(
    settings: Optional[Settings] = None,
    services: Optional[SteeringServices] = None,
) -> FastAPI:
    """Build the HTTP application.

    Args:
        settings: Process settings; read from the environment when omitted.
        services: Pre-built engine services; built from ``settings`` when
            omitted.
    """
    settings = settings or get_settings()
    services = services or build_services(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        log.info(
            "application_starting",
            debug=settings.debug,
            policy=services.store.policy.name,
            flows=len(services.flows),
        )
        yield
        log.info("application_shutting_down")

    app = FastAPI(
        title="CallSteer",
        description="Call-steering session engine for remote heart-failure check-in calls",
        version=__version__,
        lifespan=lifespan,
        debug=settings.debug,
    )
    app.state.services = services

    if settings.debug:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
    app.add_middleware(CorrelationIDMiddleware)

    setup_exception_handlers(app)

    app.include_router(health.router, tags=["system"])
    app.include_router(sessions.router)
    app.include_router(flows.router)
    app.include_router(actions.router)
    app.include_router(escalations.router)
    app.include_router(dashboard.router)
    app.include_router(audit.router)

    @app.get("/")
    def root():
        return {"name": "CallSteer", "version": __version__, "status": "running"}

    return app
