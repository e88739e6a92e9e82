"""
Cron trigger endpoints for the reading reminder pipeline.
"""

import hmac
import json
import logging
from typing import Any, Callable, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.config.settings import Settings, get_settings
from app.domain.errors import ReminderPipelineError
from app.domain.reminder import DispatchRequest, EnqueueRequest
from app.infrastructure.database import get_session_factory
from app.infrastructure.smtp_channel import DeliveryChannel, build_delivery_channel
from app.usecases.dispatch_worker import DispatchWorker
from app.usecases.eligibility import parse_session
from app.usecases.enqueue_service import ReminderEnqueuer

logger = logging.getLogger(__name__)
router = APIRouter()


def get_channel_factory() -> Callable[[Settings], DeliveryChannel]:
    """Dependency returning the delivery channel constructor."""
    return build_delivery_channel


def error_response(message: str, status_code: int) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


async def read_json_body(request: Request) -> dict:
    """
    Parse the request body leniently.

    A missing or malformed body counts as empty, so it fails the
    credential check instead of the JSON parser.
    """
    raw = await request.body()
    if not raw:
        return {}
    try:
        body = json.loads(raw)
    except (ValueError, UnicodeDecodeError):
        return {}
    return body if isinstance(body, dict) else {}


def check_api_key(api_key: Any, settings: Settings) -> Optional[JSONResponse]:
    """
    Compare the supplied key with CRON_SECRET.

    Returns:
        An error response to send back, or None when authorized
    """
    if not settings.cron_secret:
        logger.error("CRON_SECRET is not configured, rejecting cron trigger")
        return error_response("Server misconfigured: CRON_SECRET missing", 500)
    if not isinstance(api_key, str) or not api_key:
        return error_response("Unauthorized", 401)
    if not hmac.compare_digest(api_key.encode(), settings.cron_secret.encode()):
        return error_response("Unauthorized", 401)
    return None


def _validation_message(e: ValidationError) -> str:
    first = e.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"Invalid {location}: {first.get('msg')}" if location else first.get("msg", "Invalid request")


@router.post("/api/cron/enqueue-reading-reminders")
async def enqueue_reading_reminders(
    request: Request,
    session: Optional[str] = None,
    settings: Settings = Depends(get_settings),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    """
    Enqueue today's reading reminders for one session.

    Safe to call repeatedly: existing (user, date, session) rows are kept.
    """
    try:
        session_type = parse_session(session)
    except ReminderPipelineError as e:
        return error_response(str(e), e.status_code)

    body = await read_json_body(request)
    denied = check_api_key(body.get("apiKey"), settings)
    if denied is not None:
        return denied

    try:
        EnqueueRequest.model_validate(body)
    except ValidationError as e:
        return error_response(_validation_message(e), 400)

    try:
        enqueuer = ReminderEnqueuer(session_factory, settings)
        outcome = await enqueuer.enqueue(session_type)
    except ReminderPipelineError as e:
        logger.error(f"[enqueue-reading-reminders] {e}")
        return error_response(str(e), e.status_code)
    except Exception as e:
        logger.exception(f"[enqueue-reading-reminders] error: {e}")
        return error_response("Failed to enqueue reading reminders", 500)

    return outcome.to_response()


@router.post("/api/cron/send-reading-reminders-worker")
async def send_reading_reminders_worker(
    request: Request,
    settings: Settings = Depends(get_settings),
    session_factory: async_sessionmaker = Depends(get_session_factory),
    channel_factory: Callable[[Settings], DeliveryChannel] = Depends(get_channel_factory),
):
    """
    Claim and send one batch of due reminders.

    Per-entry failures are recorded on the queue rows; only systemic
    failures produce an error response.
    """
    body = await read_json_body(request)
    denied = check_api_key(body.get("apiKey"), settings)
    if denied is not None:
        return denied

    try:
        payload = DispatchRequest.model_validate(body)
    except ValidationError as e:
        return error_response(_validation_message(e), 400)

    try:
        channel = None if payload.dry_run else channel_factory(settings)
        worker = DispatchWorker(session_factory, settings, channel=channel)
        summary = await worker.run(
            dry_run=payload.dry_run,
            batch_size=payload.batch_size,
            per_email_delay_ms=payload.per_email_delay_ms,
            max_retry=payload.max_retry,
        )
    except ReminderPipelineError as e:
        logger.error(f"[send-reading-reminders-worker] {e}")
        return error_response(str(e), e.status_code)
    except Exception as e:
        logger.exception(f"[send-reading-reminders-worker] error: {e}")
        return error_response("Failed to send reminders", 500)

    if summary.processed == 0:
        return {"message": "No pending reminders", "processed": 0, "dryRun": payload.dry_run}
    return summary.to_response()


@router.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "reading-reminders"}
