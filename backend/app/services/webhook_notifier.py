"""
Webhook delivery for terminal run events.

Exactly one POST is attempted per event. The outcome is recorded on the
run_webhooks row and never changes the run itself.
"""
from __future__ import annotations

import logging
import os
import time
from typing import Any, Optional

import httpx

from app.db.store import RunStore, utc_now_iso
from app.models.pipeline import Run, RunWebhook, WebhookEvent

logger = logging.getLogger(__name__)

DEFAULT_PUBLIC_BASE_URL = "http://localhost:8000"
DEFAULT_WEBHOOK_TIMEOUT_SECONDS = 10.0


def public_base_url() -> str:
    return os.getenv("PUBLIC_BASE_URL") or DEFAULT_PUBLIC_BASE_URL


def webhook_timeout() -> float:
    return float(os.getenv("WEBHOOK_TIMEOUT_SECONDS") or DEFAULT_WEBHOOK_TIMEOUT_SECONDS)


def build_payload(run: Run, event_type: WebhookEvent) -> dict[str, Any]:
    return {
        "type": event_type,
        "data": {"object": run.to_public(public_base_url())},
        "created": int(time.time()),
    }


async def _post_json(url: str, payload: dict[str, Any]) -> httpx.Response:
    async with httpx.AsyncClient(timeout=webhook_timeout()) as client:
        return await client.post(url, json=payload)


async def notify_run(run: Run, event_type: WebhookEvent, *, store: RunStore) -> Optional[RunWebhook]:
    """Deliver ``event_type`` for ``run`` to its webhook URL, if it has one."""
    if not run.webhook_url:
        return None

    payload = build_payload(run, event_type)
    row = store.insert_run_webhook({
        "run_id": run.id,
        "event_type": event_type,
        "payload": payload,
        "endpoint_url": run.webhook_url,
        "status": "pending",
        "attempt_count": 0,
    })

    try:
        response = await _post_json(run.webhook_url, payload)
        delivered = response.is_success
        error_message = None if delivered else f"HTTP {response.status_code}"
    except Exception as e:
        logger.warning("Webhook delivery to %s failed: %s", run.webhook_url, e)
        delivered = False
        error_message = str(e) or e.__class__.__name__

    updated = store.update_run_webhook(row["id"], {
        "status": "delivered" if delivered else "failed",
        "attempt_count": 1,
        "last_attempted_at": utc_now_iso(),
        "error_message": error_message,
    })
    logger.info(
        "Webhook %s for run %s %s",
        event_type,
        run.id,
        "delivered" if delivered else f"failed ({error_message})",
    )
    return RunWebhook.model_validate(updated)
