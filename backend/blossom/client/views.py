"""View state for the limit banner, swipe overlay, pause dialog and paused overlay."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from blossom.client.gate import ConversationStatus, PauseGate, SwipeLimits
from blossom.domain.conversations.models import PauseReason, PauseState

CHAT_ROUTE = "/chat"

PAUSE_REASON_LABELS = {
	PauseReason.BREAK: "I need a break from dating",
	PauseReason.BUSY: "Life is busy right now",
	PauseReason.REFLECTING: "I'm reflecting on what I want",
	PauseReason.OTHER: "Other personal reasons",
}


def _reason_label(reason: Optional[str]) -> Optional[str]:
	try:
		return PAUSE_REASON_LABELS[PauseReason(reason)]
	except ValueError:
		return reason


def _plural(count: int, noun: str) -> str:
	return f"{count} {noun}{'' if count == 1 else 's'}"


class BannerKind(str, Enum):
	SLOTS_AVAILABLE = "slots_available"
	AT_LIMIT = "at_limit"


@dataclass(slots=True)
class LimitBanner:
	kind: BannerKind
	headline: str
	body: str


@dataclass(slots=True)
class SwipeOverlay:
	active_count: int
	max_conversations: int
	remaining_slots: int
	headline: str
	body: str
	action_route: str = CHAT_ROUTE


@dataclass(slots=True)
class PauseDialog:
	mode: str  # "resume" | "blocked" | "pause"
	pause_enabled: bool
	active_conversation_count: int
	message: str
	redirect: Optional[str] = None
	reasons: tuple[tuple[str, str], ...] = ()


@dataclass(slots=True)
class PausedOverlay:
	headline: str
	pause_reason: Optional[str]
	paused_since: Optional[str]


def conversation_limit_banner(status: ConversationStatus) -> Optional[LimitBanner]:
	"""Hidden with no active conversations."""
	if status.active_count <= 0:
		return None
	if status.is_at_limit:
		return LimitBanner(
			kind=BannerKind.AT_LIMIT,
			headline=f"You have {_plural(status.active_count, 'active conversation')}",
			body="To start new connections, close or archive an existing conversation first.",
		)
	return LimitBanner(
		kind=BannerKind.SLOTS_AVAILABLE,
		headline=f"{_plural(status.remaining_slots, 'conversation slot')} available",
		body="Blossom limits active conversations to help you build deeper connections.",
	)


def swipe_limit_overlay(limits: SwipeLimits) -> Optional[SwipeOverlay]:
	if limits.loading or limits.can_swipe:
		return None
	return SwipeOverlay(
		active_count=limits.active_count,
		max_conversations=limits.max_conversations,
		remaining_slots=limits.remaining_slots,
		headline="You've reached your connection limit",
		body=(
			f"You have {_plural(limits.active_count, 'active conversation')}. "
			"Focus on getting to know them before starting new ones."
		),
	)


def pause_dialog(gate: PauseGate, pause_state: PauseState) -> PauseDialog:
	if pause_state.is_paused:
		return PauseDialog(
			mode="resume",
			pause_enabled=False,
			active_conversation_count=gate.active_conversation_count,
			message="When you resume, you'll appear in discovery again.",
		)
	if not gate.can_pause:
		if gate.active_conversation_count > 0:
			message = (
				f"You have {_plural(gate.active_conversation_count, 'active conversation')}. "
				"Please close your conversations thoughtfully before pausing."
			)
		else:
			message = "We couldn't confirm your conversations right now. Please try again."
		return PauseDialog(
			mode="blocked",
			pause_enabled=False,
			active_conversation_count=gate.active_conversation_count,
			message=message,
			redirect=CHAT_ROUTE if gate.active_conversation_count > 0 else None,
		)
	return PauseDialog(
		mode="pause",
		pause_enabled=True,
		active_conversation_count=0,
		message="Taking a break is healthy. Pause matching while you focus on yourself.",
		reasons=tuple((reason.value, label) for reason, label in PAUSE_REASON_LABELS.items()),
	)


def paused_overlay(pause_state: PauseState) -> Optional[PausedOverlay]:
	if not pause_state.is_paused:
		return None
	return PausedOverlay(
		headline="Dating is paused",
		pause_reason=_reason_label(pause_state.pause_reason),
		paused_since=pause_state.paused_at.isoformat() if pause_state.paused_at else None,
	)
