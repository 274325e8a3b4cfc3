"""Conversation policy domain exports."""

from .models import (  # noqa: F401
	COUNTED_STATES,
	MAX_ACTIVE_CONVERSATIONS,
	ConversationState,
	NotificationKind,
)
