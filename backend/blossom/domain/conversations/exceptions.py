"""Domain-level exceptions for the conversation policy."""

from __future__ import annotations


class ConversationPolicyError(Exception):
    """Base class for conversation policy errors."""

    reason: str = "unknown"

    def __init__(self, reason: str | None = None) -> None:
        super().__init__(reason or self.reason)
        if reason:
            self.reason = reason


class ConversationNotFound(ConversationPolicyError):
    reason = "not_found"


class ConversationForbidden(ConversationPolicyError):
    reason = "forbidden"


class ConversationLimitReached(ConversationPolicyError):
    """Raised when starting a conversation would exceed the active ceiling."""

    reason = "limit_reached"

    def __init__(self, active_count: int, max_conversations: int) -> None:
        super().__init__()
        self.active_count = active_count
        self.max_conversations = max_conversations


class InvalidTransition(ConversationPolicyError):
    reason = "invalid_transition"

    def __init__(self, current: str, event: str) -> None:
        super().__init__(f"{event}_from_{current}")
        self.current = current
        self.event = event


class InvalidClosure(ConversationPolicyError):
    reason = "invalid_closure"


class PauseBlocked(ConversationPolicyError):
    """Raised when pausing is attempted while conversations are still active."""

    reason = "active_conversations"

    def __init__(self, active_conversation_count: int) -> None:
        super().__init__()
        self.active_conversation_count = active_conversation_count


class InvalidPauseReason(ConversationPolicyError):
    reason = "invalid_pause_reason"
