"""Settings loaded from the environment (and a local ``.env`` file)."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

_PREFIX = "STRUCTURED_STREAM_"


@dataclass
class Settings:
    """Defaults for sessions and providers.

    API keys are not part of the settings; the provider SDKs read
    ``ANTHROPIC_API_KEY`` / ``OPENAI_API_KEY`` themselves.
    """

    provider: str = "anthropic"
    model: Optional[str] = None
    max_tokens: int = 4096
    temperature: Optional[float] = None
    max_retries: int = 3


def _env(name: str) -> Optional[str]:
    value = os.environ.get(_PREFIX + name)
    if value is None or not value.strip():
        return None
    return value.strip()


def load_settings() -> Settings:
    """Read settings from ``STRUCTURED_STREAM_*`` environment variables.

    Raises:
        ValueError: if a numeric variable cannot be parsed.
    """
    settings = Settings()
    provider = _env("PROVIDER")
    if provider is not None:
        settings.provider = provider.lower()
    settings.model = _env("MODEL")

    max_tokens = _env("MAX_TOKENS")
    if max_tokens is not None:
        settings.max_tokens = int(max_tokens)
    temperature = _env("TEMPERATURE")
    if temperature is not None:
        settings.temperature = float(temperature)
    max_retries = _env("MAX_RETRIES")
    if max_retries is not None:
        settings.max_retries = int(max_retries)
    return settings
