# app/main.py

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.deps import TrustedHeaderAuthMiddleware
from app.api.invoices import router as invoices_router
from app.api.jobs import router as jobs_router
from app.api.portal import router as portal_router
from app.api.receipts import router as receipts_router
from app.api.recurring import router as recurring_router
from app.api.reminders import router as reminders_router
from app.api.terms import router as terms_router
from app.config import Settings, get_settings
from app.db.engine import get_engine
from app.db.seed import init_db
from app.errors import InvoicingError
from app.logging_config import configure_logging
from app.models.common import ErrorResponse
from app.services.container import InvoicingServices, build_services
from app.services.scheduler import SchedulerRunner

logger = logging.getLogger(__name__)

HTTP_CODES = {401: "INVALID_TOKEN", 403: "FORBIDDEN", 404: "NOT_FOUND", 405: "METHOD_NOT_ALLOWED"}


def _error(status_code: int, message: str, code: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=message, code=code).model_dump(),
    )


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(InvoicingError)
    async def invoicing_error_handler(request: Request, exc: InvoicingError):
        if exc.http_status >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return _error(exc.http_status, exc.message, exc.code)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        first = exc.errors()[0] if exc.errors() else {}
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = first.get("msg", "Invalid request")
        if field:
            message = f"{field}: {message}"
        return _error(400, message, "VALIDATION_ERROR")

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return _error(exc.status_code, str(exc.detail), HTTP_CODES.get(exc.status_code, "HTTP_ERROR"))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return _error(500, "Internal server error", "INTERNAL_ERROR")


def create_app(
    services: Optional[InvoicingServices] = None,
    settings: Optional[Settings] = None,
    init_database: bool = True,
) -> FastAPI:
    """
    Build the API. Tests pass a ready ``services`` container; otherwise one
    is wired to the configured database and the schema is created on startup.

    The lifespan starts the in-process scheduler unless ``SCHEDULER_ENABLED``
    is off; deployments that switch it off run ``scripts/run_jobs.py`` from cron.
    """
    settings = settings or (services.settings if services else get_settings())
    if services is None:
        configure_logging(settings.log_level)
        services = build_services(get_engine(), settings=settings)
    else:
        init_database = False

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if init_database:
            init_db(services.engine)
        runner = None
        if settings.scheduler_enabled:
            runner = SchedulerRunner(services.scheduler, settings.scheduler_poll_seconds)
            runner.start()
        app.state.scheduler_runner = runner
        try:
            yield
        finally:
            if runner is not None:
                runner.stop()

    app = FastAPI(
        title="Freelance Invoicing API",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.services = services
    app.state.scheduler_runner = None

    if settings.trust_auth_headers:
        app.add_middleware(TrustedHeaderAuthMiddleware)
    register_exception_handlers(app)

    @app.get("/health")
    def health_check():
        return {"status": "ok"}

    # static /invoices/<name> paths must be registered before /invoices/{invoice_id}
    app.include_router(recurring_router)
    app.include_router(terms_router)
    app.include_router(jobs_router)
    app.include_router(reminders_router)
    app.include_router(invoices_router)
    app.include_router(portal_router)
    app.include_router(receipts_router)
    return app


app = create_app()
