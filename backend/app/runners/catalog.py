"""
Every provider adapter, imported so their @runner registrations take effect.

Import dispatch helpers from here rather than from the registry directly.
"""
from app.runners.registry import get_runner, registered_providers, run_prompt, runner

from app.runners.chat import anthropic, gemini, openai  # noqa: F401
from app.runners.image import gemini as image_gemini, openai as image_openai, stability  # noqa: F401
from app.runners.video import gemini as video_gemini, images_to_videos  # noqa: F401
from app.runners.audio import openai as audio_openai  # noqa: F401

__all__ = ["get_runner", "registered_providers", "run_prompt", "runner"]
