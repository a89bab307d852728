import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request, Response, status
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from wa_webhook.config import settings
from wa_webhook.dispatcher import WebhookDispatcher
from wa_webhook.errors import AuthenticationFailure, MalformedPayload, WebhookError
from wa_webhook.logging_utils import setup_logging, RequestLoggingMiddleware, log_webhook_data
from wa_webhook.metrics import record_webhook_outcome, get_metrics, get_metrics_content_type
from wa_webhook.repository import SqlAlchemyWebhookRepository
from wa_webhook.schemas import ErrorResponse, HealthResponse, WebhookResponse
from wa_webhook.storage import init_db, check_db_health, get_db


# Setup structured JSON logging
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    - Startup: Initialize database and create tables
    """
    init_db()
    yield


app = FastAPI(
    title="WhatsApp Webhook Ingestion",
    description="Normalizes WhatsApp gateway webhook events into relational records",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)


@app.exception_handler(WebhookError)
async def webhook_error_handler(request: Request, exc: WebhookError) -> JSONResponse:
    """Render ingestion failures as {"error": ...} with the matching status."""
    return JSONResponse(status_code=exc.status_code, content={"error": exc.error})


# =============================================================================
# Dependencies
# =============================================================================

def get_dispatcher(db: Session = Depends(get_db)) -> WebhookDispatcher:
    """Dispatcher bound to this request's database session."""
    return WebhookDispatcher(SqlAlchemyWebhookRepository(db), settings)


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """
    Liveness probe - always returns 200 once the app is running.
    """
    return HealthResponse(status="ok")


@app.get("/health/ready", response_model=HealthResponse)
async def health_ready(response: Response) -> HealthResponse:
    """
    Readiness probe - returns 200 only if:
    1. DB is reachable and schema is applied
    2. WEBHOOK_SECRET is set (non-empty)

    Otherwise returns 503 (Service Unavailable).
    """
    if not settings.WEBHOOK_SECRET:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="WEBHOOK_SECRET not configured"
        )

    if not check_db_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="Database not reachable or schema not applied"
        )

    return HealthResponse(status="ready")


# =============================================================================
# Webhook Route
# =============================================================================

@app.post(
    "/webhook",
    response_model=WebhookResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Body is not a valid event"},
        401: {"model": ErrorResponse, "description": "Invalid signature"},
        500: {"model": ErrorResponse, "description": "Persistence failure"},
    }
)
async def webhook(
    request: Request,
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
) -> WebhookResponse:
    """
    Ingest a WhatsApp gateway event.

    - Validates the HMAC-SHA256 signature of the raw body
    - Classifies the event (message, ack, group participants, revoke, edit)
    - Persists it idempotently; redeliveries are safe
    - Unrecognized events are acknowledged without side effects

    Headers:
        - X-Hub-Signature-256 (configurable): sha256=<hex HMAC of raw body>
    """
    # Read raw body for signature verification
    raw_body = await request.body()
    signature = request.headers.get(settings.SIGNATURE_HEADER)
    logger.info(f"Webhook request received ({len(raw_body)} bytes)")

    try:
        # Database work runs off the event loop so deliveries proceed concurrently
        outcome = await run_in_threadpool(dispatcher.dispatch, raw_body, signature)
    except AuthenticationFailure:
        logger.error("Invalid or missing webhook signature")
        record_webhook_outcome("invalid_signature")
        log_webhook_data(request, result="invalid_signature")
        raise
    except MalformedPayload:
        record_webhook_outcome("invalid_json")
        log_webhook_data(request, result="invalid_json")
        raise
    except WebhookError as e:
        logger.error(f"Webhook processing failed: {e}")
        record_webhook_outcome("error")
        log_webhook_data(request, result="error")
        raise

    logger.info(f"Webhook processed: event={outcome.event_type}, result={outcome.result}")
    record_webhook_outcome(outcome.result)
    log_webhook_data(
        request,
        result=outcome.result,
        event_type=outcome.event_type,
        message_id=outcome.message_id,
        dup=outcome.duplicate,
    )

    return WebhookResponse(status="ok")


# =============================================================================
# Metrics Route
# =============================================================================

@app.get("/metrics")
async def metrics() -> Response:
    """
    Expose Prometheus-style metrics.
    """
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )
