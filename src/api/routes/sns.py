"""Inbound webhook for SES bounce notifications delivered through SNS."""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from src.api.deps import enforce_rate_limit, get_app_settings, get_store, get_verifier
from src.core.config import Settings
from src.core.exceptions import BounceHandlerError, DecodeError
from src.services.decoder import decode_envelope, parse_envelope
from src.services.record_store import RecordStore
from src.utils.logger import logger
from src.utils.sns import Verifier, confirm_subscription

router = APIRouter(tags=["sns"], dependencies=[Depends(enforce_rate_limit)])


def _handle_subscription(envelope: dict[str, Any], settings: Settings) -> str:
    subscribe_url = envelope.get("SubscribeURL", "")
    if settings.sns_auto_confirm and confirm_subscription(subscribe_url, settings.sns_http_timeout_seconds):
        logger.info("Confirmed SNS subscription for %s", envelope.get("TopicArn"))
        return "Subscription confirmed"
    logger.info("Subscription confirmation received. Visit %s to confirm.", subscribe_url)
    return "Subscription confirmation received"


@router.post("/sns")
async def handle_sns_notification(
    request: Request,
    store: RecordStore = Depends(get_store),
    verifier: Verifier = Depends(get_verifier),
    settings: Settings = Depends(get_app_settings),
) -> Any:
    """Persist bounce notifications; acknowledge everything else."""

    raw_body = await request.body()
    try:
        envelope = parse_envelope(raw_body, request.headers.get("content-type"))
        await run_in_threadpool(verifier.verify, envelope)

        if envelope.get("Type") == "SubscriptionConfirmation":
            message = await run_in_threadpool(_handle_subscription, envelope, settings)
            return {"message": message}

        event = decode_envelope(envelope)
        if event is None:
            logger.info("Ignored SNS %s notification", envelope.get("Type") or "raw")
            return {"message": "Notification ignored"}

        records = event.to_records()
        added = await run_in_threadpool(store.append, records)
    except DecodeError as exc:
        logger.warning("Rejected SNS payload: %s", exc.message)
        raise
    except BounceHandlerError:
        raise
    except Exception:
        logger.exception("Unexpected error while processing SNS notification")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal server error"},
        )

    logger.info(
        "Bounce from %s stored: %s of %s recipient record(s) new",
        event.source_email,
        added,
        len(records),
    )
    return {"message": "Notification processed", "recorded": added}
