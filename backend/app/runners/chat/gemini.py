"""
Chat through Gemini using the google-genai SDK.
"""
import logging

from google.genai import types

from app.llm.gemini import get_gemini_client
from app.models.pipeline import StepResult, TokenUsage
from app.runners.media import download_bytes, redact_base64
from app.runners.registry import runner
from app.runners.request import StepRequest

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.5-flash"
MAX_OUTPUT_TOKENS = 4096


async def build_parts(request: StepRequest) -> list[types.Part]:
    parts: list[types.Part] = []
    if request.run.message:
        parts.append(types.Part.from_text(text=request.run.message))

    for url in request.image_urls:
        data, mime_type = await download_bytes(url)
        parts.append(types.Part.from_bytes(data=data, mime_type=mime_type))

    if not parts:
        parts.append(types.Part.from_text(text="Hello"))
    return parts


def build_config(request: StepRequest) -> types.GenerateContentConfig:
    config = types.GenerateContentConfig(max_output_tokens=MAX_OUTPUT_TOKENS)
    if request.prompt.system_prompt:
        config.system_instruction = request.prompt.system_prompt
    if request.prompt.tools:
        config.tools = [
            types.Tool(function_declarations=[
                types.FunctionDeclaration(
                    name=tool.get("name"),
                    description=tool.get("description"),
                    parameters_json_schema=tool.get("parameters"),
                )
                for tool in request.prompt.tools
            ])
        ]
    return config


def usage_tokens(response: types.GenerateContentResponse) -> TokenUsage:
    usage = response.usage_metadata
    if usage is None:
        return TokenUsage()
    return TokenUsage(
        input=usage.prompt_token_count,
        output=usage.candidates_token_count,
        total=usage.total_token_count,
    )


@runner("Chat", "Gemini")
async def run_chat_gemini(request: StepRequest) -> StepResult:
    client = get_gemini_client()

    try:
        response = await client.aio.models.generate_content(
            model=request.model or DEFAULT_MODEL,
            contents=[types.Content(role="user", parts=await build_parts(request))],
            config=build_config(request),
        )
    except Exception:
        logger.exception("Gemini chat error")
        raise

    text = ""
    if response.candidates and response.candidates[0].content:
        for part in response.candidates[0].content.parts or []:
            if part.text:
                text += part.text

    dumped = response.model_dump(mode="json", exclude_none=True)
    return StepResult(
        response=redact_base64({
            "candidates": dumped.get("candidates"),
            "usage_metadata": dumped.get("usage_metadata"),
            "model_version": dumped.get("model_version"),
        }),
        tokens=usage_tokens(response),
        text=text or None,
        output_type="text",
    )
