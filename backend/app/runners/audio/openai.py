"""
Speech-to-text through OpenAI's transcription endpoint.
"""
import logging
from urllib.parse import urlparse

from app.llm.openai_client import get_openai_client
from app.models.pipeline import StepResult
from app.runners.errors import ProviderError
from app.runners.media import download_bytes
from app.runners.registry import runner
from app.runners.request import StepRequest

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "whisper-1"


@runner("AudioToText", "OpenAI")
async def run_audio_openai(request: StepRequest) -> StepResult:
    if not request.input_image_url:
        raise ProviderError("Input audio URL is required for transcription")

    client = get_openai_client()
    model = request.model or DEFAULT_MODEL

    data, content_type = await download_bytes(request.input_image_url)
    filename = urlparse(request.input_image_url).path.rsplit("/", 1)[-1] or "audio.mp3"

    kwargs = {"model": model, "file": (filename, data, content_type)}
    if request.prompt.system_prompt:
        kwargs["prompt"] = request.prompt.system_prompt

    try:
        transcription = await client.audio.transcriptions.create(**kwargs)
    except Exception:
        logger.exception("OpenAI transcription error")
        raise

    text = transcription.text
    logger.info("Transcribed %s (%d chars)", filename, len(text or ""))

    return StepResult(
        response={"model": model, "text": text},
        text=text or None,
        output_type="text",
    )
