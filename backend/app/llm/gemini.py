from functools import lru_cache

import os

from google import genai

from app.runners.errors import ConfigurationError


@lru_cache(maxsize=1)
def get_gemini_client() -> genai.Client:
  gemini_api_key = os.getenv("GEMINI_API_KEY")
  if not gemini_api_key:
    raise ConfigurationError("GEMINI_API_KEY environment variable is not set")
  return genai.Client(api_key=gemini_api_key)
