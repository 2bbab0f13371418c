from __future__ import annotations

import logging
from typing import Protocol

from openai import OpenAI

from .errors import ProviderUnavailable

logger = logging.getLogger(__name__)


class TextGenerator(Protocol):
    """External text-completion provider."""

    def complete(self, prompt: str) -> str:
        """Return the provider's completion for ``prompt``."""


class OpenAITextGenerator:
    """Text completion through the OpenAI Responses API."""

    def __init__(self, model: str = "gpt-4.1-mini", client: OpenAI | None = None):
        self.model = model
        self._client = client

    def complete(self, prompt: str) -> str:
        """Run one completion.

        Raises:
            ProviderUnavailable: If the API call fails or returns no text.
        """
        client = self._client or OpenAI()
        try:
            response = client.responses.create(model=self.model, input=prompt)
        except Exception as exc:
            raise ProviderUnavailable(f"OpenAI completion failed: {exc}") from exc
        text = response.output_text
        if not text:
            raise ProviderUnavailable("OpenAI completion returned no text")
        logger.debug("Completion from %s: %d characters", self.model, len(text))
        return text
