"""Anthropic Claude conversation client."""

from __future__ import annotations

from typing import List, Optional

import anthropic

from .base import AIClient, AISettings, LLMCallLog, Message, ProviderErrorKind, SleepFn

_CONTEXT_MARKERS = ("prompt is too long", "context length", "context window", "too many tokens")


class ClaudeClient(AIClient):
    provider_name = "claude"
    default_model = "claude-3-7-sonnet-20250219"

    def __init__(
        self,
        settings: AISettings,
        llm_log: Optional[LLMCallLog] = None,
        sleep: Optional[SleepFn] = None,
        client: Optional[anthropic.AsyncAnthropic] = None,
    ):
        super().__init__(settings, llm_log=llm_log, sleep=sleep)
        self._client = client or anthropic.AsyncAnthropic(api_key=settings.api_key)

    async def _complete(
        self,
        system: str,
        messages: List[Message],
        max_tokens: int,
        temperature: Optional[float],
    ) -> str:
        kwargs = {
            "model": self.model,
            "system": system,
            "messages": [message.to_dict() for message in messages],
            "max_tokens": max_tokens,
        }
        if temperature is not None:
            kwargs["temperature"] = temperature
        response = await self._client.messages.create(**kwargs)
        parts: List[str] = []
        for block in response.content:
            if getattr(block, "type", None) == "text":
                parts.append(block.text)
        return "".join(parts)

    def _classify_error(self, exc: Exception) -> Optional[ProviderErrorKind]:
        if isinstance(exc, anthropic.RateLimitError):
            return ProviderErrorKind.RATE_LIMIT
        if isinstance(exc, anthropic.BadRequestError):
            message = str(exc).lower()
            if any(marker in message for marker in _CONTEXT_MARKERS):
                return ProviderErrorKind.CONTEXT_LENGTH
            return None
        # 529 overloaded responses are throttling in all but name.
        if isinstance(exc, anthropic.APIStatusError) and exc.status_code == 529:
            return ProviderErrorKind.RATE_LIMIT
        return None
