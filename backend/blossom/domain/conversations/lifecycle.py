"""Explicit conversation lifecycle transitions.

The state guard is what keeps the detector and the nudge jobs idempotent: a
conversation that has already been ghosted, closed or archived can never be
ghosted again, and only counted states accept a nudge.
"""

from __future__ import annotations

from enum import Enum

from blossom.domain.conversations.exceptions import InvalidTransition
from blossom.domain.conversations.models import ConversationState

_S = ConversationState


class LifecycleEvent(str, Enum):
	NUDGE = "nudge"
	REPLY = "reply"
	GHOST = "ghost"
	CLOSE = "close"
	ARCHIVE = "archive"


TRANSITIONS: dict[tuple[ConversationState, LifecycleEvent], ConversationState] = {
	(_S.ACTIVE, LifecycleEvent.NUDGE): _S.NUDGE_SENT,
	(_S.NUDGE_SENT, LifecycleEvent.NUDGE): _S.NUDGE_SENT,
	(_S.ACTIVE, LifecycleEvent.REPLY): _S.ACTIVE,
	(_S.NUDGE_SENT, LifecycleEvent.REPLY): _S.ACTIVE,
	(_S.ACTIVE, LifecycleEvent.GHOST): _S.GHOSTED,
	(_S.NUDGE_SENT, LifecycleEvent.GHOST): _S.GHOSTED,
	(_S.ACTIVE, LifecycleEvent.CLOSE): _S.CLOSED_GRACEFULLY,
	(_S.NUDGE_SENT, LifecycleEvent.CLOSE): _S.CLOSED_GRACEFULLY,
	(_S.ACTIVE, LifecycleEvent.ARCHIVE): _S.ARCHIVED,
	(_S.NUDGE_SENT, LifecycleEvent.ARCHIVE): _S.ARCHIVED,
	(_S.GHOSTED, LifecycleEvent.ARCHIVE): _S.ARCHIVED,
	(_S.CLOSED_GRACEFULLY, LifecycleEvent.ARCHIVE): _S.ARCHIVED,
}


def can_apply(current: ConversationState, event: LifecycleEvent) -> bool:
	return (ConversationState(current), LifecycleEvent(event)) in TRANSITIONS


def apply(current: ConversationState, event: LifecycleEvent) -> ConversationState:
	"""Return the next state or raise InvalidTransition."""
	state = ConversationState(current)
	evt = LifecycleEvent(event)
	try:
		return TRANSITIONS[(state, evt)]
	except KeyError:
		raise InvalidTransition(state.value, evt.value) from None


def source_states(event: LifecycleEvent) -> frozenset[ConversationState]:
	"""States from which the event is allowed; used to build guarded updates."""
	evt = LifecycleEvent(event)
	return frozenset(state for (state, candidate) in TRANSITIONS if candidate == evt)


def target_state(event: LifecycleEvent) -> ConversationState:
	"""Every event leads to a single state regardless of where it starts."""
	evt = LifecycleEvent(event)
	targets = {state for (_, candidate), state in TRANSITIONS.items() if candidate == evt}
	(target,) = targets
	return target
