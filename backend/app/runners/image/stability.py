"""
Background replacement and relighting through Stability AI.

The edit endpoint can answer synchronously or hand back a generation id that
has to be polled on /results/{id}. A 404 from the results endpoint means the
generation is still running.
"""
import base64
import logging
import os
import time

import httpx

from app.models.pipeline import StepResult
from app.runners.errors import ConfigurationError, ProviderError
from app.runners.media import download_bytes
from app.runners.polling import poll_until_done
from app.runners.registry import runner
from app.runners.request import StepRequest

logger = logging.getLogger(__name__)

STABILITY_API_URL = "https://api.stability.ai/v2beta"
EDIT_PATH = "/stable-image/edit/replace-background-and-relight"
DEFAULT_OUTPUT_FORMAT = "webp"

POLL_INTERVAL_SECONDS = 5.0
MAX_POLL_ATTEMPTS = 60

REQUEST_TIMEOUT = httpx.Timeout(120.0, connect=20.0)


def extract_outputs(data: dict) -> list[dict]:
    """Outputs come either as an ``output`` list or inline on the body itself."""
    if data.get("output"):
        return data["output"]
    if data.get("image") or data.get("video"):
        return [data]
    return []


def build_form(request: StepRequest) -> dict[str, str]:
    prompt = request.prompt
    form: dict[str, str] = {}

    if prompt.background_prompt:
        form["background_prompt"] = prompt.background_prompt
    if prompt.foreground_prompt:
        form["foreground_prompt"] = prompt.foreground_prompt
    if prompt.negative_prompt:
        form["negative_prompt"] = prompt.negative_prompt

    if prompt.preserve_original_subject is not None:
        form["preserve_original_subject"] = str(prompt.preserve_original_subject)
    if prompt.original_background_depth is not None:
        form["original_background_depth"] = str(prompt.original_background_depth)
    if prompt.keep_original_background:
        form["keep_original_background"] = "true"
    if prompt.light_source_direction:
        form["light_source_direction"] = prompt.light_source_direction
    if prompt.light_source_strength is not None:
        form["light_source_strength"] = str(prompt.light_source_strength)
    if prompt.seed is not None:
        form["seed"] = str(int(prompt.seed))

    form["output_format"] = prompt.output_format or DEFAULT_OUTPUT_FORMAT
    return form


async def _store_output(
    request: StepRequest, generation_id: str | None, output: dict, output_format: str
) -> StepResult:
    if output.get("finish_reason") == "CONTENT_FILTERED":
        raise ProviderError("Image was filtered due to content policy")

    encoded = output.get("image") or output.get("video")
    if not encoded:
        raise ProviderError("No output data in response")

    is_video = not output.get("image") and bool(output.get("video"))
    extension = "mp4" if is_video else output_format
    mime_type = "video/mp4" if is_video else f"image/{output_format}"

    uploaded = await request.uploader.upload(
        base64.b64decode(encoded),
        f"stability_{int(time.time() * 1000)}.{extension}",
        mime_type,
    )

    return StepResult(
        response={
            "id": generation_id,
            "status": "complete",
            "finish_reason": output.get("finish_reason"),
        },
        output_url=uploaded.url,
        output_media_id=uploaded.media_id,
        output_type="video" if is_video else "image",
        attachment_urls=[uploaded.url],
        output_media_ids=[uploaded.media_id],
    )


async def _poll_result(client: httpx.AsyncClient, headers: dict, generation_id: str) -> dict:
    async def check(attempt: int) -> dict | None:
        response = await client.get(f"{STABILITY_API_URL}/results/{generation_id}", headers=headers)
        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise ProviderError(
                f"Stability polling error: {response.status_code} - {response.text[:500]}"
            )

        data = response.json()
        if data.get("status") == "failed":
            raise ProviderError("Stability generation failed")
        if extract_outputs(data):
            return data
        return None

    return await poll_until_done(
        check,
        max_attempts=MAX_POLL_ATTEMPTS,
        interval_seconds=POLL_INTERVAL_SECONDS,
        description="Stability generation",
    )


@runner("ImageToImage", "Stability")
async def run_image_stability(request: StepRequest) -> StepResult:
    api_key = os.getenv("STABILITY_API_KEY")
    if not api_key:
        raise ConfigurationError("STABILITY_API_KEY environment variable is not set")
    if not request.input_image_url:
        raise ProviderError("Input image URL is required for Stability AI")

    image_bytes, _ = await download_bytes(request.input_image_url)
    form = build_form(request)
    output_format = form["output_format"]
    headers = {"Authorization": f"Bearer {api_key}", "Accept": "application/json"}

    async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT) as client:
        response = await client.post(
            f"{STABILITY_API_URL}{EDIT_PATH}",
            headers=headers,
            data=form,
            files={"subject_image": ("input.png", image_bytes, "image/png")},
        )
        if response.status_code >= 400:
            logger.error("Stability image error: %s", response.text[:500])
            raise ProviderError(f"Stability API error: {response.status_code} - {response.text[:500]}")

        data = response.json()
        generation_id = data.get("id")

        if generation_id and not extract_outputs(data):
            logger.info("Stability generation %s pending, polling for result", generation_id)
            data = await _poll_result(client, headers, generation_id)

    outputs = extract_outputs(data)
    if not outputs:
        raise ProviderError("No output in Stability API response")
    return await _store_output(request, generation_id, outputs[0], output_format)
