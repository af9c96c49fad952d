"""
Tests for the ImagesToVideos batch adapter.
"""

import asyncio
import sys
from pathlib import Path

import pytest

backend_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(backend_root))

from app.models.pipeline import Prompt, Run, StepResult
from app.runners.errors import ProviderError
from app.runners.request import StepRequest
from app.runners.video import gemini as veo
from app.runners.video.images_to_videos import run_images_to_videos

IMAGE_A = "https://cdn.test/library/20240101T000000000000/img_aaaa1111.png"
IMAGE_B = "https://cdn.test/library/20240101T000000000000/img_bbbb2222.png"


@pytest.fixture
def generated(monkeypatch):
    """Replace the Veo call; records (input_image_url, source_image_id) per generation."""
    seen = []

    async def fake_veo(request, *, source_image_id=None):
        seen.append((request.input_image_url, source_image_id))
        await asyncio.sleep(0)
        uploaded = await request.uploader.upload(
            b"mp4", "gemini_video.mp4", "video/mp4", source_image_id=source_image_id
        )
        return StepResult(
            response={"status": "complete"},
            output_url=uploaded.url,
            output_media_id=uploaded.media_id,
            output_type="video",
            attachment_urls=[uploaded.url],
            output_media_ids=[uploaded.media_id],
        )

    monkeypatch.setattr(veo, "run_video_gemini", fake_veo)
    return seen


def _request(uploader, items) -> StepRequest:
    return StepRequest(
        prompt=Prompt(id="p1", endpoint_type="ImagesToVideos", selected_provider="Gemini"),
        run=Run(id="r1", variables={"items": items}),
        input_image_url=None,
        uploader=uploader,
    )


@pytest.mark.asyncio
async def test_generates_one_video_per_item_in_order(store, uploader, generated):
    result = await run_images_to_videos(_request(uploader, [{"image_url": IMAGE_A}, {"image_url": IMAGE_B}]))

    assert sorted(generated) == [(IMAGE_A, "img_aaaa1111"), (IMAGE_B, "img_bbbb2222")]
    assert result.output_type == "video"
    assert result.response == {"status": "complete", "videoCount": 2}
    assert len(result.attachment_urls) == 2
    by_source = {row["source_image_id"]: row["id"] for row in store.media}
    assert result.output_media_ids == [by_source["img_aaaa1111"], by_source["img_bbbb2222"]]
    assert result.output_url == result.attachment_urls[0]
    assert result.output_media_id == result.output_media_ids[0]


@pytest.mark.asyncio
async def test_supplied_video_url_is_used_as_is(uploader, generated):
    video_url = "https://cdn.test/library/20240101T000000000000/vdo_cccc3333.mp4"

    result = await run_images_to_videos(_request(uploader, [{"image_url": IMAGE_A, "video_url": video_url}]))

    assert generated == []
    assert result.attachment_urls == [video_url]
    assert result.output_media_ids == ["vdo_cccc3333"]


@pytest.mark.asyncio
async def test_existing_video_for_image_is_reused(store, uploader, generated):
    store.media.append({
        "id": "vdo_dddd4444",
        "type": "video",
        "url": "https://cdn.test/existing.mp4",
        "source_image_id": "img_aaaa1111",
    })

    result = await run_images_to_videos(_request(uploader, [{"image_url": IMAGE_A}]))

    assert generated == []
    assert result.attachment_urls == ["https://cdn.test/existing.mp4"]
    assert result.output_media_ids == ["vdo_dddd4444"]


@pytest.mark.asyncio
async def test_regenerate_ignores_existing_video(store, uploader, generated):
    store.media.append({
        "id": "vdo_dddd4444",
        "type": "video",
        "url": "https://cdn.test/existing.mp4",
        "source_image_id": "img_aaaa1111",
    })

    result = await run_images_to_videos(_request(uploader, [{"image_url": IMAGE_A, "regenerate": True}]))

    assert generated == [(IMAGE_A, "img_aaaa1111")]
    assert result.output_media_ids != ["vdo_dddd4444"]


@pytest.mark.asyncio
async def test_missing_items_is_an_error(uploader, generated):
    request = StepRequest(
        prompt=Prompt(id="p1", endpoint_type="ImagesToVideos", selected_provider="Gemini"),
        run=Run(id="r1", variables={}),
        input_image_url=None,
        uploader=uploader,
    )
    with pytest.raises(ProviderError, match="requires items array"):
        await run_images_to_videos(request)


@pytest.mark.asyncio
async def test_image_without_media_id_is_an_error(uploader, generated):
    with pytest.raises(ProviderError, match="Could not extract media ID"):
        await run_images_to_videos(_request(uploader, [{"image_url": "https://example.com/cat.jpg"}]))


@pytest.mark.asyncio
async def test_failed_item_cancels_the_others(store, uploader, monkeypatch):
    cancelled = []

    async def fake_veo(request, *, source_image_id=None):
        if source_image_id == "img_aaaa1111":
            raise ProviderError("Video generation failed: quota")
        try:
            await asyncio.sleep(0.05)
        except asyncio.CancelledError:
            cancelled.append(source_image_id)
            raise
        await request.uploader.upload(b"mp4", "late.mp4", "video/mp4", source_image_id=source_image_id)

    monkeypatch.setattr(veo, "run_video_gemini", fake_veo)

    with pytest.raises(ProviderError, match="quota"):
        await run_images_to_videos(_request(uploader, [{"image_url": IMAGE_A}, {"image_url": IMAGE_B}]))

    await asyncio.sleep(0.1)
    assert cancelled == ["img_bbbb2222"]
    assert store.media == []
