"""
Image generation and editing through the OpenAI Images API.

gpt-image models accept several input images through the edit endpoint.
dall-e-2 can edit a single input image; every other model only generates.
"""
import base64
import logging
import time

from app.llm.openai_client import get_openai_client
from app.models.pipeline import StepResult
from app.runners.errors import ProviderError
from app.runners.image.gemini import image_prompt
from app.runners.media import download_bytes
from app.runners.registry import runner
from app.runners.request import StepRequest

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "dall-e-3"
DEFAULT_SIZE = "1024x1024"
DEFAULT_QUALITY = "standard"
MAX_GPT_IMAGE_INPUTS = 16


def is_gpt_image_model(model: str) -> bool:
    return model.startswith("gpt-image")


async def _input_file(url: str, index: int) -> tuple[str, bytes, str]:
    data, content_type = await download_bytes(url)
    ext = "jpg" if "jpeg" in content_type or "jpg" in content_type else "png"
    return (f"input_{index}.{ext}", data, content_type or "image/png")


async def _gpt_image(client, request: StepRequest, model: str, size: str, quality: str):
    urls = request.image_urls[:MAX_GPT_IMAGE_INPUTS]
    if urls:
        files = [await _input_file(url, index) for index, url in enumerate(urls)]
        return await client.images.edit(
            model=model,
            image=files[0] if len(files) == 1 else files,
            prompt=image_prompt(request),
            n=1,
            size=size,
        )
    return await client.images.generate(
        model=model,
        prompt=image_prompt(request),
        n=1,
        size=size,
        quality=quality,
    )


async def _dall_e(client, request: StepRequest, model: str, size: str, quality: str):
    if request.input_image_url and model == "dall-e-2":
        data, _ = await download_bytes(request.input_image_url)
        return await client.images.edit(
            model=model,
            image=("input.png", data, "image/png"),
            prompt=image_prompt(request),
            n=1,
            size=DEFAULT_SIZE if size in ("1792x1024", "1024x1792") else size,
            response_format="b64_json",
        )
    return await client.images.generate(
        model=model,
        prompt=image_prompt(request),
        n=1,
        size=size,
        quality=quality,
        response_format="b64_json",
    )


@runner("ImageToImage", "OpenAI")
async def run_image_openai(request: StepRequest) -> StepResult:
    client = get_openai_client()

    model = request.model or DEFAULT_MODEL
    size = request.prompt.size or DEFAULT_SIZE
    quality = request.prompt.quality or DEFAULT_QUALITY

    try:
        if is_gpt_image_model(model):
            response = await _gpt_image(client, request, model, size, quality)
        else:
            response = await _dall_e(client, request, model, size, quality)
    except Exception:
        logger.exception("OpenAI image error")
        raise

    image = response.data[0] if response.data else None
    if image is not None and image.b64_json:
        output = base64.b64decode(image.b64_json)
    elif image is not None and image.url:
        output, _ = await download_bytes(image.url)
    else:
        raise ProviderError("No image data in response")

    uploaded = await request.uploader.upload(
        output, f"openai_{int(time.time() * 1000)}.png", "image/png"
    )

    return StepResult(
        response={"created": response.created, "model": model},
        output_url=uploaded.url,
        output_media_id=uploaded.media_id,
        output_type="image",
        attachment_urls=[uploaded.url],
        output_media_ids=[uploaded.media_id],
    )
