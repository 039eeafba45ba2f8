"""XnScore FastAPI application factory.

This module provides the create_app() factory for bootstrapping the XnScore API.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from xnscore import __version__
from xnscore.api.errors import (
    XnScoreHttpError,
    generic_exception_handler,
    http_exception_handler,
    request_validation_error_handler,
    xnscore_error_handler,
    xnscore_http_error_handler,
)
from xnscore.api.middleware.request_id import RequestIdMiddleware
from xnscore.api.routes.advances import router as advances_router
from xnscore.api.routes.circles import router as circles_router
from xnscore.api.routes.eligibility import router as eligibility_router
from xnscore.api.routes.endorsements import router as endorsements_router
from xnscore.api.routes.events import router as events_router
from xnscore.api.routes.health import router as health_router
from xnscore.api.routes.members import router as members_router
from xnscore.api.routes.vouches import router as vouches_router
from xnscore.audit.sink import AuditSink, JsonlFileAuditSink
from xnscore.config import EngineConfig, load_engine_config
from xnscore.errors import XnScoreError
from xnscore.service import XnScoreService
from xnscore.vouching.sweeper import VouchSweeper


def create_app(
    service: XnScoreService | None = None,
    audit_sink: AuditSink | None = None,
    config: EngineConfig | None = None,
) -> FastAPI:
    """Create and configure the XnScore FastAPI application.

    This factory:
    - Builds the XnScoreService from configuration unless one is injected
    - Registers RequestIdMiddleware (every response carries X-Request-Id)
    - Registers exception handlers producing the error envelope
    - Mounts the health router (no auth required) and the /v1 routers
    - Starts the vouch expiry sweeper when an interval is configured

    Args:
        service: Optional pre-built service for testing.
        audit_sink: Optional AuditSink; JSONL file sink when omitted.
        config: Optional EngineConfig; read from the environment when omitted.

    Returns:
        Configured FastAPI application instance.
    """
    config = config or load_engine_config()
    if service is None:
        service = XnScoreService.from_config(
            config, audit_sink=audit_sink or JsonlFileAuditSink()
        )

    sweeper: VouchSweeper | None = None
    if config.vouch_sweep_interval_seconds:
        sweeper = VouchSweeper(service.vouches, config.vouch_sweep_interval_seconds)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if sweeper is not None:
            await sweeper.start()
        try:
            yield
        finally:
            if sweeper is not None:
                await sweeper.stop()

    app = FastAPI(
        title="XnScore API",
        description="Trust scoring and eligibility for savings circles",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.service = service
    app.state.config = config
    app.state.vouch_sweeper = sweeper

    app.add_middleware(RequestIdMiddleware)

    app.add_exception_handler(XnScoreHttpError, xnscore_http_error_handler)
    app.add_exception_handler(XnScoreError, xnscore_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    app.include_router(health_router)
    app.include_router(members_router)
    app.include_router(events_router)
    app.include_router(vouches_router)
    app.include_router(endorsements_router)
    app.include_router(circles_router)
    app.include_router(eligibility_router)
    app.include_router(advances_router)

    return app
