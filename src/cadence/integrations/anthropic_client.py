"""LLM completion client backed by the Anthropic Messages API."""

import logging
from typing import Any

import anthropic

from cadence.services.actions import Completion

logger = logging.getLogger(__name__)


class AnthropicCompletionClient:
    """Single-shot, single-message completions."""

    def __init__(
        self,
        api_key: str | None = None,
        client: anthropic.AsyncAnthropic | None = None,
    ) -> None:
        self._client = client or anthropic.AsyncAnthropic(api_key=api_key)

    async def complete(self, prompt: str, model: str, max_tokens: int) -> Completion:
        response = await self._client.messages.create(
            model=model,
            max_tokens=max_tokens,
            messages=[{"role": "user", "content": prompt}],
        )

        text = None
        if response.content and response.content[0].type == "text":
            text = response.content[0].text

        usage: dict[str, Any] = {}
        if response.usage is not None:
            usage = {
                "input_tokens": response.usage.input_tokens,
                "output_tokens": response.usage.output_tokens,
            }
        logger.debug(f"Completion from {model}: {usage}")
        return Completion(text=text, model=model, usage=usage)
