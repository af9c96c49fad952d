"""
Tests for adapter registration and dispatch.
"""

import sys
from pathlib import Path

import pytest

backend_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(backend_root))

import fakes  # noqa: F401  registers the mock adapters
from app.models.pipeline import Prompt, Run
from app.runners.catalog import get_runner, registered_providers, run_prompt, runner
from app.runners.errors import UnsupportedCombinationError
from app.runners.request import StepRequest


def _request(endpoint_type: str, provider: str, uploader) -> StepRequest:
    prompt = Prompt(id="p1", endpoint_type=endpoint_type, selected_provider=provider, system_prompt="hi")
    return StepRequest(prompt=prompt, run=Run(id="r1"), input_image_url=None, uploader=uploader)


def test_builtin_adapters_are_registered():
    assert {"OpenAI", "Anthropic", "Gemini"} <= set(registered_providers("Chat"))
    assert {"OpenAI", "Gemini", "Stability"} <= set(registered_providers("ImageToImage"))
    assert "Gemini" in registered_providers("ImageToVideo")
    assert "Gemini" in registered_providers("ImagesToVideos")
    assert "OpenAI" in registered_providers("AudioToText")


def test_unknown_endpoint_type():
    with pytest.raises(UnsupportedCombinationError, match="Unknown endpoint type: Telepathy"):
        get_runner("Telepathy", "OpenAI")


def test_unknown_provider_for_endpoint():
    with pytest.raises(UnsupportedCombinationError, match="Unknown provider Stability for endpoint Chat"):
        get_runner("Chat", "Stability")


@pytest.mark.parametrize("endpoint_type", ["VideoToVideo", "TextToAudio"])
def test_endpoint_types_without_adapters_fail(endpoint_type):
    with pytest.raises(UnsupportedCombinationError):
        get_runner(endpoint_type, "OpenAI")


def test_registering_unknown_endpoint_type_is_rejected():
    with pytest.raises(ValueError):
        runner("Telepathy", "Mock")


@pytest.mark.asyncio
async def test_run_prompt_dispatches_to_registered_adapter(uploader):
    result = await run_prompt(_request("Chat", "Mock", uploader))

    assert result.text == "reply to: hi"
    assert fakes.calls == [("p1", None, [])]


def test_image_urls_combine_chain_value_and_secondary_attachments(uploader):
    request = StepRequest(
        prompt=Prompt(id="p1"),
        run=Run(id="r1"),
        input_image_url="https://x/out.png",
        uploader=uploader,
        attachment_urls=["https://x/primary.png", "https://x/ref.png", "https://x/out.png"],
    )
    assert request.image_urls == ["https://x/out.png", "https://x/ref.png"]
