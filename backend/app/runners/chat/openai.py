"""
Chat completions through the OpenAI API.
"""
import logging

from app.llm.openai_client import get_openai_client
from app.models.pipeline import StepResult, TokenUsage
from app.runners.registry import runner
from app.runners.request import StepRequest

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o"
MAX_TOKENS = 4096


def build_messages(request: StepRequest) -> list[dict]:
    messages: list[dict] = []

    system_prompt = request.prompt.system_prompt
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})

    user_content: list[dict] = []
    if request.run.message:
        user_content.append({"type": "text", "text": request.run.message})
    for url in request.image_urls:
        user_content.append({"type": "image_url", "image_url": {"url": url}})

    if user_content:
        messages.append({"role": "user", "content": user_content})
    return messages


@runner("Chat", "OpenAI")
async def run_chat_openai(request: StepRequest) -> StepResult:
    client = get_openai_client()

    kwargs = {
        "model": request.model or DEFAULT_MODEL,
        "messages": build_messages(request),
        "max_tokens": MAX_TOKENS,
    }
    if request.prompt.tools:
        kwargs["tools"] = request.prompt.tools

    try:
        completion = await client.chat.completions.create(**kwargs)
    except Exception:
        logger.exception("OpenAI chat error")
        raise

    usage = completion.usage
    message = completion.choices[0].message if completion.choices else None

    return StepResult(
        response={
            "id": completion.id,
            "model": completion.model,
            "choices": [choice.model_dump(mode="json") for choice in completion.choices],
            "usage": usage.model_dump(mode="json") if usage else None,
        },
        tokens=TokenUsage(
            input=usage.prompt_tokens if usage else None,
            output=usage.completion_tokens if usage else None,
            total=usage.total_tokens if usage else None,
        ),
        text=(message.content if message else None) or None,
        output_type="text",
    )
