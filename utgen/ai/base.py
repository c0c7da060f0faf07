"""Conversation registry and provider-agnostic retry logic."""

from __future__ import annotations

import asyncio
import json
import re
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Set, Tuple

from ..errors import ConversationNotFound, FeedbackError, GenerationError, UtgenError
from .prompts import SYSTEM_PROMPT, build_feedback_prompt, build_initial_prompt

SleepFn = Callable[[float], Awaitable[None]]

DEFAULT_FENCE_LABELS = ("typescript", "ts", "javascript", "js")

_FENCE_RE = re.compile(r"```([A-Za-z0-9_+-]*)[^\S\n]*\n(.*?)```", re.DOTALL)


def extract_code_blocks(
    response: str, labels: Sequence[str] = DEFAULT_FENCE_LABELS
) -> List[str]:
    """Return the trimmed content of every fenced block labeled for the target language.

    Unlabeled fences are accepted as well; blocks keep their response order.
    """
    accepted = {label.lower() for label in labels}
    blocks: List[str] = []
    for match in _FENCE_RE.finditer(response):
        label = match.group(1).lower()
        if label and label not in accepted:
            continue
        blocks.append(match.group(2).strip())
    return blocks


class Role(Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass
class Message:
    role: Role
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role.value, "content": self.content}


@dataclass
class ConversationContext:
    file_location: str
    import_path: str
    unit_name: str
    unit_code: str
    referenced_types: str = ""
    import_context: str = ""
    test_framework: str = "jest"
    fence_label: str = "typescript"
    fence_labels: Sequence[str] = DEFAULT_FENCE_LABELS


@dataclass
class Conversation:
    id: str
    context: ConversationContext
    messages: List[Message] = field(default_factory=list)


class ProviderErrorKind(Enum):
    RATE_LIMIT = "rate_limit"
    CONTEXT_LENGTH = "context_length"


@dataclass
class AISettings:
    api_key: str
    model: str
    max_provider_attempts: int = 3
    backoff_seconds: float = 1.0
    initial_max_tokens: int = 4000
    feedback_max_tokens: int = 16000
    feedback_temperature: float = 0.1


class LLMCallLog:
    """Appends one JSON line per provider call."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def record(
        self,
        provider: str,
        model: str,
        conversation_id: str,
        messages: Sequence[Message],
        response: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(timespec="seconds"),
            "provider": provider,
            "model": model,
            "conversation_id": conversation_id,
            "messages": [message.to_dict() for message in messages],
            "response": response,
            "error": error,
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(entry) + "\n")


class AIClient(ABC):
    """Stateful conversations with a completion provider.

    The client exclusively owns its conversations; callers only ever hold the
    opaque id returned by start_conversation.
    """

    provider_name = ""
    default_model = ""

    def __init__(
        self,
        settings: AISettings,
        llm_log: Optional[LLMCallLog] = None,
        sleep: Optional[SleepFn] = None,
    ):
        self.settings = settings
        self.llm_log = llm_log
        self._sleep = sleep or asyncio.sleep
        self._conversations: Dict[str, Conversation] = {}
        self._issued_ids: Set[str] = set()

    @property
    def model(self) -> str:
        return self.settings.model

    # ===== Conversation lifecycle =====

    async def start_conversation(self, context: ConversationContext) -> str:
        conversation_id = self._new_id()
        self._conversations[conversation_id] = Conversation(
            id=conversation_id, context=context
        )
        return conversation_id

    async def stop_conversation(self, conversation_id: str) -> None:
        if conversation_id not in self._conversations:
            raise ConversationNotFound(conversation_id)
        del self._conversations[conversation_id]

    async def generate_initial_tests(self, conversation_id: str) -> List[str]:
        conversation = self._get(conversation_id)
        prompt = build_initial_prompt(conversation.context)
        return await self._exchange(
            conversation,
            prompt,
            max_tokens=self.settings.initial_max_tokens,
            temperature=None,
            error_type=GenerationError,
        )

    async def provide_feedback(self, conversation_id: str, feedback: str) -> List[str]:
        conversation = self._get(conversation_id)
        prompt = build_feedback_prompt(conversation.context, feedback)
        return await self._exchange(
            conversation,
            prompt,
            max_tokens=self.settings.feedback_max_tokens,
            temperature=self.settings.feedback_temperature,
            error_type=FeedbackError,
        )

    def history(self, conversation_id: str) -> List[Message]:
        return list(self._get(conversation_id).messages)

    def open_conversations(self) -> List[str]:
        return list(self._conversations)

    # ===== Provider hooks =====

    @abstractmethod
    async def _complete(
        self,
        system: str,
        messages: List[Message],
        max_tokens: int,
        temperature: Optional[float],
    ) -> str:
        """Send the full history to the provider and return the raw completion text."""

    @abstractmethod
    def _classify_error(self, exc: Exception) -> Optional[ProviderErrorKind]:
        """Return the transient error kind, or None when exc must not be retried."""

    # ===== Helpers =====

    async def _exchange(
        self,
        conversation: Conversation,
        prompt: str,
        max_tokens: int,
        temperature: Optional[float],
        error_type: type,
    ) -> List[str]:
        pending = Message(Role.USER, prompt)
        conversation.messages.append(pending)
        try:
            raw, attempt, last_error = await self._complete_with_retries(
                conversation, max_tokens, temperature
            )
        except (UtgenError, asyncio.CancelledError):
            self._rollback(conversation, pending)
            raise
        if raw is not None:
            conversation.messages.append(Message(Role.ASSISTANT, raw))
            return extract_code_blocks(raw, conversation.context.fence_labels)

        self._rollback(conversation, pending)
        action = (
            "generate tests" if error_type is GenerationError else "provide feedback"
        )
        raise error_type(
            f"{self.provider_name}: failed to {action} for "
            f"{conversation.context.unit_name} after {attempt} attempt(s): {last_error}"
        ) from last_error

    async def _complete_with_retries(
        self,
        conversation: Conversation,
        max_tokens: int,
        temperature: Optional[float],
    ) -> Tuple[Optional[str], int, Optional[Exception]]:
        last_error: Optional[Exception] = None
        attempt = 0
        while attempt < self.settings.max_provider_attempts:
            attempt += 1
            try:
                raw = await self._complete(
                    SYSTEM_PROMPT, list(conversation.messages), max_tokens, temperature
                )
            except UtgenError:
                raise
            except Exception as exc:
                self._log_call(conversation, error=str(exc))
                last_error = exc
                kind = self._classify_error(exc)
                if kind is None:
                    break
                if kind is ProviderErrorKind.CONTEXT_LENGTH:
                    if not self._prune_oldest(conversation):
                        break
                    continue
                if attempt < self.settings.max_provider_attempts:
                    await self._sleep(self.settings.backoff_seconds * 2 ** (attempt - 1))
                continue
            self._log_call(conversation, response=raw)
            return raw, attempt, None
        return None, attempt, last_error

    def _prune_oldest(self, conversation: Conversation) -> bool:
        # Index 0 is the initial prompt and the last entry is the pending message.
        if len(conversation.messages) <= 2:
            return False
        del conversation.messages[1]
        return True

    def _rollback(self, conversation: Conversation, pending: Message) -> None:
        if conversation.messages and conversation.messages[-1] is pending:
            conversation.messages.pop()

    def _get(self, conversation_id: str) -> Conversation:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            raise ConversationNotFound(conversation_id)
        return conversation

    def _new_id(self) -> str:
        while True:
            candidate = str(uuid.uuid4())
            if candidate not in self._issued_ids:
                self._issued_ids.add(candidate)
                return candidate

    def _log_call(
        self,
        conversation: Conversation,
        response: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        if self.llm_log is None:
            return
        self.llm_log.record(
            provider=self.provider_name,
            model=self.model,
            conversation_id=conversation.id,
            messages=conversation.messages,
            response=response,
            error=error,
        )
