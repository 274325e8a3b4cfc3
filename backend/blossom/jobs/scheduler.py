"""APScheduler wrapper running the policy jobs in-process."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from blossom.jobs.send_conversation_nudges import ConversationNudgeJob
from blossom.jobs.send_ghosting_reminder import GhostingReminderJob
from blossom.jobs.update_ghosting_stats import GhostingStatsJob

logger = logging.getLogger(__name__)


class PolicyScheduler:
	"""Minimal wrapper around AsyncIOScheduler for the nudge and stats jobs."""

	def __init__(self) -> None:
		self._scheduler = AsyncIOScheduler(timezone="UTC")
		self._started = False

	@property
	def started(self) -> bool:
		return self._started

	def start(self) -> None:
		if not self._started:
			self._scheduler.start()
			self._started = True

	def shutdown(self) -> None:
		if self._started:
			self._scheduler.shutdown(wait=False)
			self._started = False

	def schedule(self, job_id: str, func: Callable[[], Awaitable[object]], *, hours: int) -> None:
		trigger = IntervalTrigger(hours=hours)
		self._scheduler.add_job(func, trigger=trigger, id=job_id, replace_existing=True)

	def job_ids(self) -> list[str]:
		return [job.id for job in self._scheduler.get_jobs()]

	def schedule_policy_jobs(self, *, hours: int) -> None:
		self.schedule("send-conversation-nudges", ConversationNudgeJob().run_once, hours=hours)
		self.schedule("send-ghosting-reminder", GhostingReminderJob().run_once, hours=hours)
		self.schedule("update-ghosting-stats", GhostingStatsJob().run_once, hours=hours * 4)
		logger.info("policy jobs scheduled", extra={"interval_hours": hours})


__all__ = ["PolicyScheduler"]
