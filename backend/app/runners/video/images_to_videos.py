"""
Batch image-to-video: one video per item in ``variables.items``.

Items are independent and run concurrently; the first failure cancels the
rest. A supplied ``video_url`` is used as-is; otherwise an existing video
generated from the same source image is reused unless ``regenerate`` is set.
"""
import asyncio
import logging
from dataclasses import replace

from pydantic import BaseModel

from app.models.pipeline import StepResult
from app.runners.errors import ProviderError
from app.runners.registry import runner
from app.runners.request import StepRequest
from app.runners.video import gemini as veo
from app.services.media_uploader import extract_media_id_from_url

logger = logging.getLogger(__name__)


class VideoItem(BaseModel):
    image_url: str
    video_url: str | None = None
    regenerate: bool = False


def parse_items(variables: dict) -> list[VideoItem]:
    items = variables.get("items")
    if not isinstance(items, list):
        raise ProviderError("ImagesToVideos requires items array in variables")
    return [VideoItem.model_validate(item) for item in items]


async def _video_for_item(request: StepRequest, item: VideoItem) -> tuple[str, str]:
    if item.video_url:
        return item.video_url, extract_media_id_from_url(item.video_url) or ""

    image_id = extract_media_id_from_url(item.image_url)
    if not image_id:
        raise ProviderError(f"Could not extract media ID from URL: {item.image_url}")

    if not item.regenerate:
        existing = request.uploader.store.find_video_for_source_image(image_id)
        if existing:
            logger.info("Reusing video %s for image %s", existing["id"], image_id)
            return existing["url"], existing["id"]

    result = await veo.run_video_gemini(
        replace(request, input_image_url=item.image_url),
        source_image_id=image_id,
    )
    url = result.output_url or (result.attachment_urls[0] if result.attachment_urls else "")
    media_id = result.output_media_id or (result.output_media_ids[0] if result.output_media_ids else "")
    return url, media_id


@runner("ImagesToVideos", "Gemini")
async def run_images_to_videos(request: StepRequest) -> StepResult:
    items = parse_items(request.variables)
    tasks = [asyncio.create_task(_video_for_item(request, item)) for item in items]
    try:
        results = await asyncio.gather(*tasks)
    except BaseException:
        # Cancel remaining items so nothing is uploaded after the step has failed
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise

    urls = [url for url, _ in results]
    media_ids = [media_id for _, media_id in results]

    return StepResult(
        response={"status": "complete", "videoCount": len(results)},
        output_url=urls[0] if urls else None,
        output_media_id=media_ids[0] if media_ids else None,
        output_type="video",
        attachment_urls=urls,
        output_media_ids=media_ids,
    )
