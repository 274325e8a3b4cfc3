"""Pydantic schemas for conversation actions and policy reads."""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

from blossom.domain.conversations.models import Conversation, PauseState, ResponsePattern


class StartConversationRequest(BaseModel):
	match_id: str = Field(..., min_length=1, description="Match whose users start talking")


class CloseConversationRequest(BaseModel):
	reason: Literal["no_connection", "not_ready", "taking_break", "custom"]
	message: Optional[str] = Field(default=None, max_length=2000)


class PauseRequest(BaseModel):
	reason: Literal["break", "busy", "reflecting", "other"]


class ConversationOut(BaseModel):
	id: str
	match_id: str
	user_a: str
	user_b: str
	status: str
	created_at: datetime
	updated_at: datetime
	reminder_sent_at: Optional[datetime] = None
	closed_at: Optional[datetime] = None
	closure_reason: Optional[str] = None

	@classmethod
	def from_domain(cls, conversation: Conversation) -> "ConversationOut":
		return cls(
			id=conversation.id,
			match_id=conversation.match_id,
			user_a=conversation.user_a,
			user_b=conversation.user_b,
			status=conversation.status.value,
			created_at=conversation.created_at,
			updated_at=conversation.updated_at,
			reminder_sent_at=conversation.reminder_sent_at,
			closed_at=conversation.closed_at,
			closure_reason=conversation.closure_reason,
		)


class ResponsePatternOut(BaseModel):
	ghosted_count: int
	graceful_closures: int
	total_conversations: int
	visibility_score: float

	@classmethod
	def from_domain(cls, pattern: ResponsePattern) -> "ResponsePatternOut":
		return cls(
			ghosted_count=pattern.ghosted_count,
			graceful_closures=pattern.graceful_closures,
			total_conversations=pattern.total_conversations,
			visibility_score=pattern.visibility_score,
		)


class CloseConversationResponse(BaseModel):
	conversation: ConversationOut
	pattern: ResponsePatternOut


class SnoozeResponse(BaseModel):
	conversation_id: str
	snoozed_until: datetime


class ConversationLimits(BaseModel):
	active_count: int
	max_conversations: int
	remaining_slots: int
	can_start_new: bool
	is_at_limit: bool


class PauseStateOut(BaseModel):
	is_paused: bool
	pause_reason: Optional[str] = None
	paused_at: Optional[datetime] = None
	can_pause: Optional[bool] = None
	active_conversation_count: Optional[int] = None

	@classmethod
	def from_domain(cls, state: PauseState, **extra) -> "PauseStateOut":
		return cls(
			is_paused=state.is_paused,
			pause_reason=state.pause_reason,
			paused_at=state.paused_at,
			**extra,
		)
