"""
Image generation and editing through Gemini's native image output.
"""
import logging
import time

from google.genai import types

from app.llm.gemini import get_gemini_client
from app.models.pipeline import StepResult
from app.runners.chat.gemini import usage_tokens
from app.runners.errors import ProviderError
from app.runners.media import download_bytes, redact_base64
from app.runners.registry import runner
from app.runners.request import StepRequest

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.5-flash-image-preview"
# Primary input plus up to four reference images.
MAX_INPUT_IMAGES = 5


def image_prompt(request: StepRequest) -> str:
    prompt = request.prompt
    return prompt.system_prompt or prompt.background_prompt or "Generate an image"


@runner("ImageToImage", "Gemini")
async def run_image_gemini(request: StepRequest) -> StepResult:
    client = get_gemini_client()

    parts = [types.Part.from_text(text=image_prompt(request))]
    for url in request.image_urls[:MAX_INPUT_IMAGES]:
        data, mime_type = await download_bytes(url)
        parts.append(types.Part.from_bytes(data=data, mime_type=mime_type))

    try:
        response = await client.aio.models.generate_content(
            model=request.model or DEFAULT_MODEL,
            contents=[types.Content(role="user", parts=parts)],
            config=types.GenerateContentConfig(response_modalities=["IMAGE", "TEXT"]),
        )
    except Exception:
        logger.exception("Gemini image error")
        raise

    output_urls: list[str] = []
    output_media_ids: list[str] = []
    if response.candidates and response.candidates[0].content:
        for part in response.candidates[0].content.parts or []:
            if part.inline_data is None or not part.inline_data.data:
                continue
            mime_type = part.inline_data.mime_type or "image/png"
            extension = mime_type.split("/")[-1] or "png"
            uploaded = await request.uploader.upload(
                part.inline_data.data,
                f"gemini_{int(time.time() * 1000)}.{extension}",
                mime_type,
            )
            output_urls.append(uploaded.url)
            output_media_ids.append(uploaded.media_id)

    if not output_urls:
        raise ProviderError("No image generated in response")

    return StepResult(
        response=redact_base64(response.model_dump(mode="json", exclude_none=True)),
        tokens=usage_tokens(response),
        output_url=output_urls[0],
        output_media_id=output_media_ids[0],
        output_type="image",
        attachment_urls=output_urls,
        output_media_ids=output_media_ids,
    )
