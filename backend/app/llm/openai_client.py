from functools import lru_cache

import os

from openai import AsyncOpenAI

from app.runners.errors import ConfigurationError


@lru_cache(maxsize=1)
def get_openai_client() -> AsyncOpenAI:
  api_key = os.getenv("OPENAI_API_KEY")
  if not api_key:
    raise ConfigurationError("OPENAI_API_KEY environment variable is not set")
  return AsyncOpenAI(api_key=api_key)
