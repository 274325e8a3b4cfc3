"""Dispatchers turning idle conversations into in-app notifications."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from blossom.domain.conversations.lifecycle import LifecycleEvent
from blossom.domain.conversations.models import NotificationKind, NudgeCandidate, Notification
from blossom.domain.conversations.policy_config import PolicyConfig
from blossom.domain.conversations.repository import PolicyRepository
from blossom.domain.conversations.service import PolicyStore
from blossom.domain.nudges import messages
from blossom.obs import metrics

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
	return datetime.now(timezone.utc)


@dataclass(slots=True)
class NudgeRunResult:
	conversations_checked: int = 0
	nudges_sent: int = 0
	skipped: int = 0
	failed: int = 0


@dataclass
class SoftNudgeDispatcher:
	"""Nudges the silent participant at most once per pair per cooldown."""

	store: PolicyStore
	repository: PolicyRepository
	policy: PolicyConfig
	clock: Callable[[], datetime] = field(default=_utcnow)

	async def run(self) -> NudgeRunResult:
		candidates = await self.store.get_conversations_needing_nudge()
		result = NudgeRunResult(conversations_checked=len(candidates))
		now = self.clock()
		since = now - self.policy.nudge_cooldown
		for candidate in candidates:
			try:
				sent = await self._nudge(candidate, since=since, now=now)
			except Exception:
				result.failed += 1
				logger.exception("nudge failed", extra={"conversation_id": candidate.conversation_id})
				continue
			if sent:
				result.nudges_sent += 1
				metrics.inc_nudge_sent(NotificationKind.NUDGE.value)
			else:
				result.skipped += 1
				metrics.inc_nudge_skipped(NotificationKind.NUDGE.value, "cooldown")
				logger.debug("nudge skipped", extra={"conversation_id": candidate.conversation_id})
		logger.info(
			"soft nudges dispatched",
			extra={
				"checked": result.conversations_checked,
				"sent": result.nudges_sent,
				"skipped": result.skipped,
				"failed": result.failed,
			},
		)
		return result

	async def _nudge(self, candidate: NudgeCandidate, *, since: datetime, now: datetime) -> bool:
		notification = Notification(
			user_id=candidate.user_to_nudge,
			kind=NotificationKind.NUDGE,
			title=messages.NUDGE_TITLE,
			message=messages.nudge_message(candidate.other_user_name),
			related_user_id=candidate.other_user_id,
			created_at=now,
		)
		created = await self.repository.create_nudge_unless_recent(notification, since=since)
		if created is None:
			return False
		await self.repository.transition(candidate.conversation_id, LifecycleEvent.NUDGE, now=now)
		return True


@dataclass
class GhostingReminderDispatcher:
	"""Escalated reminder, at most once per conversation per cooldown."""

	store: PolicyStore
	repository: PolicyRepository
	policy: PolicyConfig
	clock: Callable[[], datetime] = field(default=_utcnow)

	async def run(self) -> NudgeRunResult:
		candidates = [
			candidate
			for candidate in await self.store.get_conversations_needing_nudge()
			if candidate.days_inactive * 24 >= self.policy.reminder_after_hours
		]
		result = NudgeRunResult(conversations_checked=len(candidates))
		now = self.clock()
		for candidate in candidates:
			claimed, previous = await self._claim(candidate, now=now, result=result)
			if not claimed:
				continue
			try:
				await self.repository.insert_notification(
					Notification(
						user_id=candidate.user_to_nudge,
						kind=NotificationKind.GHOSTING_REMINDER,
						title=messages.REMINDER_TITLE,
						message=messages.reminder_message(candidate.other_user_name, candidate.days_inactive),
						created_at=now,
					)
				)
			except Exception:
				result.failed += 1
				logger.exception(
					"ghosting reminder insert failed",
					extra={"conversation_id": candidate.conversation_id},
				)
				await self._release(candidate, claimed_at=now, previous=previous)
				continue
			try:
				await self.repository.transition(candidate.conversation_id, LifecycleEvent.NUDGE, now=now)
			except Exception:
				logger.exception(
					"reminder state update failed",
					extra={"conversation_id": candidate.conversation_id},
				)
			result.nudges_sent += 1
			metrics.inc_nudge_sent(NotificationKind.GHOSTING_REMINDER.value)
		logger.info(
			"ghosting reminders dispatched",
			extra={
				"checked": result.conversations_checked,
				"sent": result.nudges_sent,
				"skipped": result.skipped,
				"failed": result.failed,
			},
		)
		return result

	async def _claim(
		self, candidate: NudgeCandidate, *, now: datetime, result: NudgeRunResult
	) -> tuple[bool, datetime | None]:
		try:
			claimed, previous = await self.repository.claim_reminder(
				candidate.conversation_id,
				now=now,
				cooldown=self.policy.reminder_cooldown,
			)
		except Exception:
			result.failed += 1
			logger.exception("reminder claim failed", extra={"conversation_id": candidate.conversation_id})
			return False, None
		if not claimed:
			result.skipped += 1
			metrics.inc_nudge_skipped(NotificationKind.GHOSTING_REMINDER.value, "cooldown")
			logger.debug("reminder skipped", extra={"conversation_id": candidate.conversation_id})
		return claimed, previous

	async def _release(self, candidate: NudgeCandidate, *, claimed_at: datetime, previous: datetime | None) -> None:
		try:
			await self.repository.release_reminder(
				candidate.conversation_id,
				claimed_at=claimed_at,
				previous=previous,
			)
		except Exception:
			logger.exception("reminder claim release failed", extra={"conversation_id": candidate.conversation_id})
