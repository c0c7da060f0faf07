"""Exception types shared across utgen."""

from __future__ import annotations

from typing import Optional


class UtgenError(Exception):
    pass


class ConfigError(UtgenError):
    pass


class ConversationNotFound(UtgenError):
    def __init__(self, conversation_id: str = ""):
        message = "Conversation not found"
        if conversation_id:
            message = f"{message}: {conversation_id}"
        super().__init__(message)
        self.conversation_id = conversation_id


class GenerationError(UtgenError):
    """The provider could not produce an initial test candidate."""


class FeedbackError(UtgenError):
    """The provider could not produce a revised test candidate."""


class TestRunnerError(UtgenError):
    """The test runner itself failed (missing binary, permissions, ...)."""

    __test__ = False


class CollaboratorTimeout(UtgenError):
    def __init__(self, operation: str, timeout: float):
        super().__init__(f"{operation} timed out after {timeout:g}s")
        self.operation = operation
        self.timeout = timeout


class UnitFatalError(UtgenError):
    def __init__(self, unit_name: str, file_path: str, cause: Optional[BaseException]):
        super().__init__(f"Fatal error processing {unit_name} in {file_path}: {cause}")
        self.unit_name = unit_name
        self.file_path = file_path
        self.cause = cause
