"""Conversational AI clients."""

from .base import (
    AIClient,
    AISettings,
    Conversation,
    ConversationContext,
    LLMCallLog,
    Message,
    ProviderErrorKind,
    Role,
    extract_code_blocks,
)
from .chatgpt import ChatGPTClient
from .claude import ClaudeClient

PROVIDERS = {
    ChatGPTClient.provider_name: ChatGPTClient,
    ClaudeClient.provider_name: ClaudeClient,
}

__all__ = [
    "AIClient",
    "AISettings",
    "ChatGPTClient",
    "ClaudeClient",
    "Conversation",
    "ConversationContext",
    "LLMCallLog",
    "Message",
    "PROVIDERS",
    "ProviderErrorKind",
    "Role",
    "extract_code_blocks",
]
