"""
Tests for the chat adapters against faked provider clients and HTTP.
"""

import base64
import json
import sys
from pathlib import Path
from types import SimpleNamespace

import httpx
import pytest
from google.genai import types
from openai.types.chat import ChatCompletion

backend_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(backend_root))

from app.models.pipeline import Prompt, Run
from app.runners.chat import anthropic as chat_anthropic
from app.runners.chat import gemini as chat_gemini
from app.runners.chat import openai as chat_openai
from app.runners.errors import ConfigurationError, ProviderError
from app.runners.request import StepRequest

IMAGE_URL = "https://img.test/photo.jpg"
TOOLS = [{"name": "lookup", "description": "Look something up", "parameters": {"type": "object"}}]


def _request(uploader, provider, message="Hi", image=True, **prompt_fields) -> StepRequest:
    return StepRequest(
        prompt=Prompt(id="p1", endpoint_type="Chat", selected_provider=provider, **prompt_fields),
        run=Run(id="r1", message=message, attachment_urls=[IMAGE_URL] if image else []),
        input_image_url=IMAGE_URL if image else None,
        uploader=uploader,
        attachment_urls=[IMAGE_URL] if image else [],
    )


def _serve_image(request: httpx.Request):
    if request.url.host == "img.test":
        return httpx.Response(200, content=b"jpeg-bytes", headers={"content-type": "image/jpeg"})
    return None


# ---------------------------------------------------------------------------
# OpenAI
# ---------------------------------------------------------------------------

class _FakeCompletions:
    def __init__(self):
        self.kwargs = None

    async def create(self, **kwargs):
        self.kwargs = kwargs
        return ChatCompletion.model_validate({
            "id": "chatcmpl-1",
            "object": "chat.completion",
            "created": 1700000000,
            "model": "gpt-4o-2024-08-06",
            "choices": [{
                "index": 0,
                "finish_reason": "stop",
                "message": {"role": "assistant", "content": "A red bicycle."},
            }],
            "usage": {"prompt_tokens": 12, "completion_tokens": 4, "total_tokens": 16},
        })


@pytest.mark.asyncio
async def test_openai_chat_builds_messages_and_reports_usage(monkeypatch, uploader):
    completions = _FakeCompletions()
    fake_client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    monkeypatch.setattr(chat_openai, "get_openai_client", lambda: fake_client)

    result = await chat_openai.run_chat_openai(
        _request(uploader, "OpenAI", system_prompt="Describe the image", tools=TOOLS)
    )

    kwargs = completions.kwargs
    assert kwargs["model"] == "gpt-4o"
    assert kwargs["max_tokens"] == 4096
    assert kwargs["tools"] == TOOLS
    assert kwargs["messages"][0] == {"role": "system", "content": "Describe the image"}
    assert kwargs["messages"][1] == {
        "role": "user",
        "content": [
            {"type": "text", "text": "Hi"},
            {"type": "image_url", "image_url": {"url": IMAGE_URL}},
        ],
    }

    assert result.text == "A red bicycle."
    assert (result.tokens.input, result.tokens.output, result.tokens.total) == (12, 4, 16)
    assert result.response["id"] == "chatcmpl-1"
    assert result.response["usage"]["total_tokens"] == 16


@pytest.mark.asyncio
async def test_openai_chat_omits_tools_and_empty_user_message(monkeypatch, uploader):
    completions = _FakeCompletions()
    monkeypatch.setattr(
        chat_openai, "get_openai_client", lambda: SimpleNamespace(chat=SimpleNamespace(completions=completions))
    )

    await chat_openai.run_chat_openai(
        _request(uploader, "OpenAI", message=None, image=False, selected_model="gpt-4o-mini")
    )

    assert completions.kwargs["model"] == "gpt-4o-mini"
    assert "tools" not in completions.kwargs
    assert completions.kwargs["messages"] == []


def test_openai_client_requires_api_key(monkeypatch):
    from app.llm.openai_client import get_openai_client

    get_openai_client.cache_clear()
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(ConfigurationError):
        get_openai_client()


# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_anthropic_chat_request_and_result(monkeypatch, http_mock, uploader):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-test")
    sent = {}

    def handler(request):
        image = _serve_image(request)
        if image is not None:
            return image
        sent["headers"] = request.headers
        sent["body"] = json.loads(request.content)
        return httpx.Response(200, json={
            "id": "msg_1",
            "model": "claude-3-5-sonnet-20240620",
            "content": [{"type": "text", "text": "Hello "}, {"type": "text", "text": "there"}],
            "usage": {"input_tokens": 10, "output_tokens": 5},
            "stop_reason": "end_turn",
        })

    http_mock["handler"] = handler

    result = await chat_anthropic.run_chat_anthropic(
        _request(uploader, "Anthropic", system_prompt="Be brief", tools=TOOLS)
    )

    assert sent["headers"]["x-api-key"] == "sk-ant-test"
    assert sent["headers"]["anthropic-version"] == "2023-06-01"
    body = sent["body"]
    assert body["model"] == "claude-3-5-sonnet-20240620"
    assert body["max_tokens"] == 1024
    assert body["system"] == "Be brief"
    assert body["tools"] == [
        {"name": "lookup", "description": "Look something up", "input_schema": {"type": "object"}}
    ]
    content = body["messages"][0]["content"]
    assert content[0] == {"type": "text", "text": "Hi"}
    assert content[1]["source"] == {
        "type": "base64",
        "media_type": "image/jpeg",
        "data": base64.b64encode(b"jpeg-bytes").decode(),
    }

    assert result.text == "Hello there"
    assert (result.tokens.input, result.tokens.output, result.tokens.total) == (10, 5, 15)
    assert result.response["stop_reason"] == "end_turn"


@pytest.mark.asyncio
async def test_anthropic_sends_placeholder_when_there_is_no_content(monkeypatch, http_mock, uploader):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-test")
    bodies = []

    def handler(request):
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"id": "m", "model": "x", "content": [], "usage": {}})

    http_mock["handler"] = handler

    result = await chat_anthropic.run_chat_anthropic(_request(uploader, "Anthropic", message=None, image=False))

    assert bodies[0]["messages"][0]["content"] == [{"type": "text", "text": "Hello"}]
    assert "system" not in bodies[0]
    assert "tools" not in bodies[0]
    assert result.text is None
    assert result.tokens.input is None
    assert result.tokens.total is None


@pytest.mark.asyncio
async def test_anthropic_total_counts_reported_tokens_only(monkeypatch, http_mock, uploader):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-test")
    http_mock["handler"] = lambda request: httpx.Response(
        200, json={"id": "m", "model": "x", "content": [], "usage": {"input_tokens": 7}}
    )

    result = await chat_anthropic.run_chat_anthropic(_request(uploader, "Anthropic", image=False))

    assert result.tokens.output is None
    assert result.tokens.total == 7


@pytest.mark.asyncio
async def test_anthropic_error_status_raises(monkeypatch, http_mock, uploader):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-test")
    http_mock["handler"] = lambda request: httpx.Response(529, text="overloaded")

    with pytest.raises(ProviderError, match="Anthropic API error: 529"):
        await chat_anthropic.run_chat_anthropic(_request(uploader, "Anthropic", image=False))


@pytest.mark.asyncio
async def test_anthropic_requires_api_key(monkeypatch, uploader):
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)

    with pytest.raises(ConfigurationError):
        await chat_anthropic.run_chat_anthropic(_request(uploader, "Anthropic", image=False))


# ---------------------------------------------------------------------------
# Gemini
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_gemini_chat(monkeypatch, http_mock, uploader):
    http_mock["handler"] = _serve_image
    captured = {}

    async def generate_content(*, model, contents, config):
        captured.update(model=model, contents=contents, config=config)
        return types.GenerateContentResponse(
            candidates=[types.Candidate(
                content=types.Content(role="model", parts=[types.Part(text="Sunny "), types.Part(text="day")])
            )],
            usage_metadata=types.GenerateContentResponseUsageMetadata(
                prompt_token_count=7, candidates_token_count=2, total_token_count=9
            ),
        )

    fake_client = SimpleNamespace(aio=SimpleNamespace(models=SimpleNamespace(generate_content=generate_content)))
    monkeypatch.setattr(chat_gemini, "get_gemini_client", lambda: fake_client)

    result = await chat_gemini.run_chat_gemini(
        _request(uploader, "Gemini", system_prompt="Weather bot", tools=TOOLS)
    )

    assert captured["model"] == "gemini-2.5-flash"
    config = captured["config"]
    assert config.max_output_tokens == 4096
    assert config.system_instruction == "Weather bot"
    assert config.tools[0].function_declarations[0].name == "lookup"
    parts = captured["contents"][0].parts
    assert parts[0].text == "Hi"
    assert parts[1].inline_data.data == b"jpeg-bytes"
    assert parts[1].inline_data.mime_type == "image/jpeg"

    assert result.text == "Sunny day"
    assert (result.tokens.input, result.tokens.output, result.tokens.total) == (7, 2, 9)
