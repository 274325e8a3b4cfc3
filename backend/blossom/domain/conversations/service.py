"""Authoritative conversation policy: counting, admission, closure and pause."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable, List, Optional

from blossom.domain.conversations.exceptions import (
	ConversationForbidden,
	ConversationLimitReached,
	ConversationNotFound,
	InvalidClosure,
	InvalidPauseReason,
	InvalidTransition,
	PauseBlocked,
)
from blossom.domain.conversations.lifecycle import LifecycleEvent
from blossom.domain.conversations.models import (
	CLOSURE_MESSAGES,
	MIN_CUSTOM_CLOSURE_CHARS,
	ClosureReason,
	Conversation,
	NudgeCandidate,
	OwedReply,
	PauseCheck,
	PauseReason,
	PauseState,
	ResponsePattern,
)
from blossom.domain.conversations.policy_config import PolicyConfig
from blossom.domain.conversations.repository import PolicyRepository
from blossom.domain.ghosting.visibility import visibility_score
from blossom.obs import metrics

if TYPE_CHECKING:  # pragma: no cover - type-only imports
	from blossom.domain.ghosting.trust import TrustSignalCalculator

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
	return datetime.now(timezone.utc)


class PolicyStore:
	"""Server-side procedures every client check is answered by."""

	def __init__(
		self,
		repository: PolicyRepository,
		policy: PolicyConfig,
		*,
		trust: Optional["TrustSignalCalculator"] = None,
		clock: Clock = _utcnow,
	) -> None:
		self._repo = repository
		self._policy = policy
		self._trust = trust
		self._clock = clock

	@property
	def policy(self) -> PolicyConfig:
		return self._policy

	def _active_since(self, now: datetime) -> datetime:
		return now - self._policy.active_window

	async def get_active_conversation_count(self, user_id: str) -> int:
		now = self._clock()
		count = await self._repo.count_active(str(user_id), active_since=self._active_since(now))
		return max(0, int(count))

	async def can_start_new_conversation(self, user_id: str) -> bool:
		count = await self.get_active_conversation_count(user_id)
		return count < self._policy.max_active_conversations

	async def can_pause_dating(self, user_id: str) -> PauseCheck:
		count = await self.get_active_conversation_count(user_id)
		return PauseCheck(can_pause=count == 0, active_conversation_count=count)

	async def get_conversations_needing_nudge(self) -> List[NudgeCandidate]:
		"""Counted conversations idle past the nudge threshold but not yet ghosted."""
		now = self._clock()
		rows = await self._repo.list_awaiting_reply(
			older_than=now - self._policy.nudge_after,
			newer_than=now - self._policy.ghosting_after,
		)
		return [
			NudgeCandidate(
				conversation_id=row.conversation_id,
				user_to_nudge=row.silent_user_id,
				other_user_id=row.waiting_user_id,
				other_user_name=row.waiting_user_name,
				last_message_at=row.last_message_at,
				days_inactive=(now - row.last_message_at).days,
			)
			for row in rows
		]

	async def get_ghosted_conversations(self, user_id: str) -> List[OwedReply]:
		"""Conversations in which ``user_id`` has owed a reply past the reminder threshold."""
		now = self._clock()
		rows = await self._repo.list_awaiting_reply(
			older_than=now - self._policy.reminder_after,
			silent_user_id=str(user_id),
		)
		return [
			OwedReply(
				conversation_id=row.conversation_id,
				other_user_id=row.waiting_user_id,
				other_user_name=row.waiting_user_name,
				hours_since_last_message=int((now - row.last_message_at).total_seconds() // 3600),
			)
			for row in rows
		]

	async def start_conversation(self, user_id: str, match_id: str) -> Conversation:
		user_id = str(user_id)
		pair = await self._repo.get_match(str(match_id))
		if pair is None:
			raise ConversationNotFound("match_not_found")
		if user_id not in pair:
			raise ConversationForbidden()
		now = self._clock()
		conversation, count = await self._repo.create_if_admitted(
			user_id,
			str(match_id),
			max_active=self._policy.max_active_conversations,
			active_since=self._active_since(now),
			now=now,
		)
		if conversation is None:
			metrics.inc_admission("rejected")
			logger.info(
				"conversation admission rejected",
				extra={"user_id": user_id, "active_count": count},
			)
			raise ConversationLimitReached(count, self._policy.max_active_conversations)
		metrics.inc_admission("admitted")
		return conversation

	async def record_message(self, user_id: str, conversation_id: str) -> Conversation:
		"""Register a message; replying to a nudged conversation reactivates it."""
		conversation = await self._load_for(user_id, conversation_id)
		return await self._repo.record_message(conversation.id, str(user_id), self._clock())

	async def close_conversation(
		self,
		user_id: str,
		conversation_id: str,
		reason: str,
		message: str | None = None,
	) -> tuple[Conversation, ResponsePattern]:
		try:
			closure = ClosureReason(reason)
		except ValueError:
			raise InvalidClosure("unknown_closure_reason") from None
		text = (message or "").strip()
		if closure is ClosureReason.CUSTOM:
			if len(text) < MIN_CUSTOM_CLOSURE_CHARS:
				raise InvalidClosure("closure_message_too_short")
		elif not text:
			text = CLOSURE_MESSAGES[closure]

		conversation = await self._load_for(user_id, conversation_id)
		result = await self._repo.close_gracefully(
			conversation.id,
			str(user_id),
			reason=closure.value,
			message=text,
			now=self._clock(),
			score=visibility_score,
		)
		if result is None:
			raise InvalidTransition(conversation.status.value, LifecycleEvent.CLOSE.value)
		closed, pattern = result
		if self._trust is not None:
			await self._trust.recalculate(str(user_id))
		return closed, pattern

	async def snooze_reminder(self, user_id: str, conversation_id: str) -> datetime:
		conversation = await self._load_for(user_id, conversation_id)
		until = self._clock() + self._policy.snooze
		await self._repo.set_reminder_sent_at(conversation.id, until)
		return until

	async def get_pause_state(self, user_id: str) -> PauseState:
		state = await self._repo.get_pause_state(str(user_id))
		return state or PauseState()

	async def pause_dating(self, user_id: str, reason: str) -> PauseState:
		try:
			pause_reason = PauseReason(reason)
		except ValueError:
			raise InvalidPauseReason() from None
		now = self._clock()
		paused, count = await self._repo.pause_if_idle(
			str(user_id),
			reason=pause_reason.value,
			now=now,
			active_since=self._active_since(now),
		)
		if not paused:
			raise PauseBlocked(count)
		return PauseState(is_paused=True, pause_reason=pause_reason.value, paused_at=now)

	async def resume_dating(self, user_id: str) -> PauseState:
		return await self._repo.resume(str(user_id))

	async def _load_for(self, user_id: str, conversation_id: str) -> Conversation:
		conversation = await self._repo.get_conversation(str(conversation_id))
		if conversation is None:
			raise ConversationNotFound()
		if not conversation.involves(str(user_id)):
			raise ConversationForbidden()
		return conversation
