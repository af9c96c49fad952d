"""
Run orchestrator: executes every prompt of a run's flow in order.

Each step's output media becomes the next step's input. The first failing
step fails the whole run; there are no retries and no skipped steps.
PersistenceError from the store is not a step failure and propagates.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from app.db.store import PersistenceError, RunStore, utc_now_iso
from app.models.pipeline import Run, RunExecutionResult, WebhookEvent
from app.services.media_uploader import MediaUploader
from app.services.step_executor import execute_prompt_step
from app.services.webhook_notifier import notify_run
from app.storage.base import get_object_storage

logger = logging.getLogger(__name__)

ALREADY_PROCESSED = "Run already processed"
NO_PROMPTS = "No prompts found in flow"


class RunNotFoundError(LookupError):
    def __init__(self, run_id: str):
        super().__init__(f"Run {run_id} not found")
        self.run_id = run_id


async def execute_run(
    run_id: str,
    *,
    store: Optional[RunStore] = None,
    uploader: Optional[MediaUploader] = None,
) -> RunExecutionResult:
    store = store or RunStore()

    row = store.get_run_with_flow_and_prompts(run_id)
    if row is None:
        raise RunNotFoundError(run_id)
    run = Run.model_validate(row)

    if run.is_terminal:
        logger.info("Run %s already %s, skipping", run_id, run.status)
        return RunExecutionResult(
            run_id=run_id, status=run.status, data=run.data, message=ALREADY_PROCESSED
        )

    prompts = run.flow.prompts if run.flow else []
    if not prompts:
        logger.warning("Run %s has no prompts to execute", run_id)
        return await _fail_run(run, NO_PROMPTS, store=store)

    # sorted() is stable, so equal positions keep creation order
    prompts = sorted(prompts, key=lambda p: p.position or 0)

    if uploader is None:
        uploader = MediaUploader(store, get_object_storage())

    attachment_urls = run.attachment_urls
    input_image_url = attachment_urls[0] if attachment_urls else None
    input_media_ids = list(run.input_media_ids)
    last_output: dict[str, Any] = {}

    logger.info("Executing run %s: %d prompt(s)", run_id, len(prompts))

    for index, prompt in enumerate(prompts, start=1):
        logger.info(
            "Run %s step %d/%d: %s via %s",
            run_id,
            index,
            len(prompts),
            prompt.endpoint_type,
            prompt.selected_provider,
        )
        try:
            result = await execute_prompt_step(
                prompt,
                run,
                input_image_url,
                attachment_urls,
                store=store,
                uploader=uploader,
                input_media_ids=input_media_ids,
            )
        except PersistenceError:
            # Store failures propagate; they do not become a failed run
            raise
        except Exception as e:
            return await _fail_run(run, str(e) or e.__class__.__name__, store=store)

        if result.output_url:
            input_image_url = result.output_url
            if result.output_media_ids:
                input_media_ids = list(result.output_media_ids)
            elif result.output_media_id:
                input_media_ids = [result.output_media_id]

            if result.output_type == "image":
                last_output["image_url"] = result.output_url
            elif result.output_type == "video":
                last_output["video_url"] = result.output_url
        if result.text:
            last_output["text"] = result.text

    updated = store.update_run(run_id, {
        "status": "completed",
        "data": last_output,
        "completed_at": utc_now_iso(),
    })
    logger.info("Run %s completed", run_id)

    await _notify(_merge(run, updated), "run.completed", store=store)
    return RunExecutionResult(run_id=run_id, status="completed", data=last_output)


async def _fail_run(run: Run, message: str, *, store: RunStore) -> RunExecutionResult:
    data = {"error": message}
    updated = store.update_run(run.id, {
        "status": "failed",
        "data": data,
        "completed_at": utc_now_iso(),
    })
    logger.error("Run %s failed: %s", run.id, message)

    await _notify(_merge(run, updated), "run.failed", store=store)
    return RunExecutionResult(run_id=run.id, status="failed", data=data, message=message)


def _merge(run: Run, row: dict[str, Any]) -> Run:
    """Run state after a status update, for the webhook payload."""
    return Run.model_validate({**run.model_dump(exclude={"flow"}), **row})


async def _notify(run: Run, event_type: WebhookEvent, *, store: RunStore) -> None:
    try:
        await notify_run(run, event_type, store=store)
    except Exception:
        # Webhook bookkeeping never changes the outcome of the run.
        logger.exception("Failed to record %s webhook for run %s", event_type, run.id)
