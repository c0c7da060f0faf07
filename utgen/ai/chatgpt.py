"""OpenAI ChatGPT conversation client."""

from __future__ import annotations

from typing import Dict, List, Optional

import openai

from .base import AIClient, AISettings, LLMCallLog, Message, ProviderErrorKind, SleepFn


class ChatGPTClient(AIClient):
    provider_name = "chatgpt"
    default_model = "gpt-4o"

    def __init__(
        self,
        settings: AISettings,
        llm_log: Optional[LLMCallLog] = None,
        sleep: Optional[SleepFn] = None,
        client: Optional[openai.AsyncOpenAI] = None,
    ):
        super().__init__(settings, llm_log=llm_log, sleep=sleep)
        self._client = client or openai.AsyncOpenAI(api_key=settings.api_key)

    async def _complete(
        self,
        system: str,
        messages: List[Message],
        max_tokens: int,
        temperature: Optional[float],
    ) -> str:
        payload: List[Dict[str, str]] = [{"role": "system", "content": system}]
        payload.extend(message.to_dict() for message in messages)
        kwargs = {
            "model": self.model,
            "messages": payload,
            "max_tokens": max_tokens,
        }
        if temperature is not None:
            kwargs["temperature"] = temperature
        response = await self._client.chat.completions.create(**kwargs)
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""

    def _classify_error(self, exc: Exception) -> Optional[ProviderErrorKind]:
        if isinstance(exc, openai.RateLimitError):
            return ProviderErrorKind.RATE_LIMIT
        if isinstance(exc, openai.BadRequestError):
            code = getattr(exc, "code", None)
            if code == "context_length_exceeded" or "maximum context length" in str(exc).lower():
                return ProviderErrorKind.CONTEXT_LENGTH
        return None
