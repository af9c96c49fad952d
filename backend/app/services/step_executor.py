"""
Executes a single prompt of a run and records it as a prompt run.
"""
from __future__ import annotations

import logging
from typing import Optional

from app.db.store import RunStore, utc_now_iso
from app.models.pipeline import Prompt, Run, StepResult
from app.runners.catalog import run_prompt
from app.runners.request import StepRequest
from app.services.media_uploader import MediaUploader
from app.services.templates import render_template

logger = logging.getLogger(__name__)

RENDERED_FIELDS = ("system_prompt", "background_prompt", "foreground_prompt", "negative_prompt")


def render_prompt(prompt: Prompt, variables: dict) -> Prompt:
    """Return a copy of the prompt with its text fields rendered against the run variables."""
    updates = {
        name: render_template(getattr(prompt, name), variables)
        for name in RENDERED_FIELDS
        if getattr(prompt, name)
    }
    return prompt.model_copy(update=updates)


async def execute_prompt_step(
    prompt: Prompt,
    run: Run,
    input_image_url: Optional[str],
    attachment_urls: list[str],
    *,
    store: RunStore,
    uploader: MediaUploader,
    input_media_ids: Optional[list[str]] = None,
) -> StepResult:
    """
    Run one prompt through its provider adapter.

    A pending prompt run is written before dispatch and updated exactly once
    afterwards: completed with the result, or failed with ``{"error": message}``.
    Adapter errors are re-raised after the failure has been recorded.
    """
    request = StepRequest(
        prompt=render_prompt(prompt, run.variables),
        run=run,
        input_image_url=input_image_url,
        attachment_urls=list(attachment_urls or []),
        uploader=uploader,
    )

    prompt_run = store.insert_prompt_run({
        "prompt_id": prompt.id,
        "run_id": run.id,
        "status": "pending",
        "selected_provider": prompt.selected_provider,
        "model": prompt.selected_model,
        "input_media_ids": list(input_media_ids or []),
        "source_attachment_urls": request.image_urls,
        "started_at": utc_now_iso(),
    })

    try:
        result = await run_prompt(request)
    except Exception as e:
        logger.exception(
            "Prompt %s (%s/%s) failed for run %s",
            prompt.id,
            prompt.endpoint_type,
            prompt.selected_provider,
            run.id,
        )
        store.update_prompt_run(prompt_run["id"], {
            "status": "failed",
            "response": {"error": str(e)},
            "completed_at": utc_now_iso(),
        })
        raise

    tokens = result.tokens
    store.update_prompt_run(prompt_run["id"], {
        "status": "completed",
        "response": result.response,
        "input_tokens": tokens.input if tokens else None,
        "output_tokens": tokens.output if tokens else None,
        "total_tokens": tokens.total if tokens else None,
        "attachment_urls": result.attachment_urls,
        "output_media_ids": result.output_media_ids,
        "completed_at": utc_now_iso(),
    })
    logger.info("Prompt %s completed for run %s", prompt.id, run.id)

    return result
