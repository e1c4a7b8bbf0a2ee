from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from sqlalchemy.exc import OperationalError

from salespipe.core.config import get_settings
from salespipe.events import event_bus
from salespipe.logging import configure_logging
from salespipe.middleware.correlation_id import CorrelationIdMiddleware
from salespipe.middleware.request_logging import RequestLoggingMiddleware
from salespipe.otel import get_fastapi_server_request_hook, setup_otel
from salespipe.pipeline.errors import (
    CreationFailedError,
    InvalidStateError,
    NotFoundError,
    PipelineError,
    StoreUnavailableError,
)
from salespipe.routes import router as api_router


configure_logging()
logger = logging.getLogger("salespipe.lifecycle")
_subscriptions_registered = False

RETRY_LATER_DETAIL = "service temporarily unavailable, retry later"


def _on_pipeline_event(envelope: dict) -> None:
    logger.info("pipeline_event", extra={"event_type": envelope.get("event_type")})


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _subscriptions_registered
    if not _subscriptions_registered:
        event_bus.subscribe("*", _on_pipeline_event)
        _subscriptions_registered = True
    logger.info("system_started", extra={"event_type": "system.started"})
    yield


app = FastAPI(title="Sales Pipeline API", version="0.1.0", lifespan=lifespan)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.include_router(api_router)


def _error_status(exc: PipelineError) -> int:
    if isinstance(exc, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, InvalidStateError):
        return status.HTTP_409_CONFLICT
    return status.HTTP_503_SERVICE_UNAVAILABLE


@app.exception_handler(PipelineError)
async def pipeline_error_handler(request: Request, exc: PipelineError) -> JSONResponse:
    status_code = _error_status(exc)
    if isinstance(exc, (CreationFailedError, StoreUnavailableError)):
        logger.error("pipeline_unavailable", extra={"path": request.url.path, "error": exc.detail})
        return JSONResponse(status_code=status_code, content={"detail": RETRY_LATER_DETAIL})
    return JSONResponse(status_code=status_code, content={"detail": exc.detail})


@app.exception_handler(OperationalError)
async def store_unavailable_handler(request: Request, exc: OperationalError) -> JSONResponse:
    logger.error("database_unavailable", extra={"path": request.url.path, "error": str(exc)})
    return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"detail": RETRY_LATER_DETAIL})


settings = get_settings()
if settings.otel_enabled:
    setup_otel("salespipe", True)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=get_fastapi_server_request_hook())
