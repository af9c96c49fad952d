"""
Chat through the Anthropic Messages API, called directly over HTTP.
"""
import logging
import os

import httpx

from app.models.pipeline import StepResult, TokenUsage
from app.runners.errors import ConfigurationError, ProviderError
from app.runners.media import content_type_from_url, url_to_base64
from app.runners.registry import runner
from app.runners.request import StepRequest

logger = logging.getLogger(__name__)

ANTHROPIC_API_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"
DEFAULT_MODEL = "claude-3-5-sonnet-20240620"
MAX_TOKENS = 1024


def convert_tools(tools: list[dict] | None) -> list[dict] | None:
    """Map function-style tool definitions onto Anthropic's input_schema form."""
    if not tools:
        return None
    return [
        {
            "name": tool.get("name"),
            "description": tool.get("description"),
            "input_schema": tool.get("parameters"),
        }
        for tool in tools
    ]


async def build_content(request: StepRequest) -> list[dict]:
    content: list[dict] = []
    if request.run.message:
        content.append({"type": "text", "text": request.run.message})

    for url in request.image_urls:
        content.append({
            "type": "image",
            "source": {
                "type": "base64",
                "media_type": content_type_from_url(url),
                "data": await url_to_base64(url),
            },
        })

    if not content:
        content.append({"type": "text", "text": "Hello"})
    return content


@runner("Chat", "Anthropic")
async def run_chat_anthropic(request: StepRequest) -> StepResult:
    api_key = os.getenv("ANTHROPIC_API_KEY")
    if not api_key:
        raise ConfigurationError("ANTHROPIC_API_KEY environment variable is not set")

    payload: dict = {
        "model": request.model or DEFAULT_MODEL,
        "max_tokens": MAX_TOKENS,
        "messages": [{"role": "user", "content": await build_content(request)}],
    }
    if request.prompt.system_prompt:
        payload["system"] = request.prompt.system_prompt
    tools = convert_tools(request.prompt.tools)
    if tools:
        payload["tools"] = tools

    headers = {
        "x-api-key": api_key,
        "anthropic-version": ANTHROPIC_VERSION,
        "content-type": "application/json",
    }

    timeout = httpx.Timeout(120.0, connect=20.0)
    async with httpx.AsyncClient(timeout=timeout) as client:
        response = await client.post(ANTHROPIC_API_URL, headers=headers, json=payload)
    if response.status_code >= 400:
        logger.error("Anthropic chat error: %s", response.text[:500])
        raise ProviderError(f"Anthropic API error: {response.status_code} - {response.text[:500]}")

    data = response.json()
    text = "".join(
        block.get("text", "") for block in data.get("content") or [] if block.get("type") == "text"
    )
    usage = data.get("usage") or {}
    input_tokens = usage.get("input_tokens")
    output_tokens = usage.get("output_tokens")
    total_tokens = None
    if input_tokens is not None or output_tokens is not None:
        total_tokens = (input_tokens or 0) + (output_tokens or 0)

    return StepResult(
        response={
            "id": data.get("id"),
            "model": data.get("model"),
            "content": data.get("content"),
            "usage": data.get("usage"),
            "stop_reason": data.get("stop_reason"),
        },
        tokens=TokenUsage(
            input=input_tokens,
            output=output_tokens,
            total=total_tokens,
        ),
        text=text or None,
        output_type="text",
    )
