"""Domain models and policy constants for conversations."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class ConversationState(str, Enum):
	"""Lifecycle states of a conversation."""

	ACTIVE = "active"
	NUDGE_SENT = "nudge_sent"
	GHOSTED = "ghosted"
	CLOSED_GRACEFULLY = "closed_gracefully"
	ARCHIVED = "archived"


# States that count against the active-conversation quota.
COUNTED_STATES = frozenset({ConversationState.ACTIVE, ConversationState.NUDGE_SENT})


class NotificationKind(str, Enum):
	NUDGE = "nudge"
	GHOSTING_REMINDER = "ghosting_reminder"


class ClosureReason(str, Enum):
	NO_CONNECTION = "no_connection"
	NOT_READY = "not_ready"
	TAKING_BREAK = "taking_break"
	CUSTOM = "custom"


class PauseReason(str, Enum):
	BREAK = "break"
	BUSY = "busy"
	REFLECTING = "reflecting"
	OTHER = "other"


MAX_ACTIVE_CONVERSATIONS = 3
ACTIVE_RECENCY_DAYS = 14
NUDGE_AFTER_HOURS = 48
REMINDER_AFTER_HOURS = 72
GHOSTING_AFTER_DAYS = 7
NUDGE_COOLDOWN_DAYS = 3
REMINDER_COOLDOWN_HOURS = 24
SNOOZE_HOURS = 24
TRUST_BATCH_SIZE = 100
GHOSTING_BATCH_SIZE = 500

MIN_CUSTOM_CLOSURE_CHARS = 140

CLOSURE_MESSAGES = {
	ClosureReason.NO_CONNECTION: "I didn't feel the connection I was hoping for, but I wish you the best.",
	ClosureReason.NOT_READY: "I'm not ready to continue this right now. Thank you for your time and openness.",
	ClosureReason.TAKING_BREAK: "I'm taking a break from dating to focus on myself. I hope you find what you're looking for.",
}


@dataclass(slots=True)
class Conversation:
	"""A conversation between the two users of a match."""

	id: str
	match_id: str
	user_a: str
	user_b: str
	status: ConversationState
	created_at: datetime
	updated_at: datetime
	reminder_sent_at: Optional[datetime] = None
	expected_responder_id: Optional[str] = None
	closed_at: Optional[datetime] = None
	closed_by: Optional[str] = None
	closure_reason: Optional[str] = None
	closure_message: Optional[str] = None
	ghosted_user_id: Optional[str] = None
	ghosted_at: Optional[datetime] = None

	def involves(self, user_id: str) -> bool:
		return str(user_id) in (self.user_a, self.user_b)

	def other_user(self, user_id: str) -> str:
		return self.user_b if str(user_id) == self.user_a else self.user_a

	@classmethod
	def from_record(cls, record) -> "Conversation":
		return cls(
			id=str(record["id"]),
			match_id=str(record["match_id"]),
			user_a=str(record["user1_id"]),
			user_b=str(record["user2_id"]),
			status=ConversationState(record["status"]),
			created_at=record["created_at"],
			updated_at=record["updated_at"],
			reminder_sent_at=record.get("reminder_sent_at"),
			expected_responder_id=_opt_str(record.get("expected_responder_id")),
			closed_at=record.get("closed_at"),
			closed_by=_opt_str(record.get("closed_by")),
			closure_reason=record.get("closure_reason"),
			closure_message=record.get("closure_message"),
			ghosted_user_id=_opt_str(record.get("ghosted_user_id")),
			ghosted_at=record.get("ghosted_at"),
		)


@dataclass(slots=True)
class Message:
	conversation_id: str
	sender_id: str
	created_at: datetime
	deleted: bool = False


@dataclass(slots=True)
class NudgeCandidate:
	"""Row of get_conversations_needing_nudge."""

	conversation_id: str
	user_to_nudge: str
	other_user_id: str
	other_user_name: Optional[str]
	last_message_at: datetime
	days_inactive: int

	def to_dict(self) -> dict:
		return {
			"conversation_id": self.conversation_id,
			"user_to_nudge": self.user_to_nudge,
			"other_user_id": self.other_user_id,
			"other_user_name": self.other_user_name,
			"last_message_at": self.last_message_at.isoformat(),
			"days_inactive": self.days_inactive,
		}


@dataclass(slots=True)
class OwedReply:
	"""Row of get_ghosted_conversations: a conversation waiting on this user."""

	conversation_id: str
	other_user_id: str
	other_user_name: Optional[str]
	hours_since_last_message: int

	def to_dict(self) -> dict:
		return {
			"conversation_id": self.conversation_id,
			"other_user_id": self.other_user_id,
			"other_user_name": self.other_user_name,
			"hours_since_last_message": self.hours_since_last_message,
		}


@dataclass(slots=True)
class AwaitingReply:
	"""A counted conversation whose latest message has not been answered."""

	conversation_id: str
	silent_user_id: str
	waiting_user_id: str
	waiting_user_name: Optional[str]
	last_message_at: datetime


@dataclass(slots=True)
class PauseCheck:
	can_pause: bool
	active_conversation_count: int

	def to_dict(self) -> dict:
		return {"can_pause": self.can_pause, "active_conversation_count": self.active_conversation_count}


@dataclass(slots=True)
class PauseState:
	is_paused: bool = False
	pause_reason: Optional[str] = None
	paused_at: Optional[datetime] = None


@dataclass(slots=True)
class ResponsePattern:
	"""Per-user behavioural history used for visibility and trust."""

	user_id: str
	ghosted_count: int = 0
	graceful_closures: int = 0
	total_conversations: int = 0
	visibility_score: float = 1.0
	last_calculated_at: Optional[datetime] = None

	@classmethod
	def from_record(cls, record) -> "ResponsePattern":
		return cls(
			user_id=str(record["user_id"]),
			ghosted_count=int(record["ghosted_count"] or 0),
			graceful_closures=int(record["graceful_closures"] or 0),
			total_conversations=int(record["total_conversations"] or 0),
			visibility_score=float(record["visibility_score"] if record["visibility_score"] is not None else 1.0),
			last_calculated_at=record.get("last_calculated_at"),
		)


@dataclass(slots=True)
class AccountFacts:
	"""Non-behavioural facts feeding trust signals."""

	verified_identity: bool = False
	report_count: int = 0
	profile_completeness: int = 0


@dataclass(slots=True)
class TrustSignals:
	user_id: str
	shows_up_consistently: bool = False
	communicates_with_care: bool = False
	community_trusted: bool = False
	verified_identity: bool = False
	thoughtful_closer: bool = False
	profile_completeness: int = 0
	last_calculated_at: Optional[datetime] = None

	def flags(self) -> dict[str, bool]:
		return {
			"shows_up_consistently": self.shows_up_consistently,
			"communicates_with_care": self.communicates_with_care,
			"community_trusted": self.community_trusted,
			"verified_identity": self.verified_identity,
			"thoughtful_closer": self.thoughtful_closer,
		}


@dataclass(slots=True)
class Notification:
	user_id: str
	kind: NotificationKind
	title: str
	message: str
	related_user_id: Optional[str] = None
	read: bool = False
	id: Optional[str] = None
	created_at: Optional[datetime] = None


def _opt_str(value) -> Optional[str]:
	return str(value) if value is not None else None
