"""Scheduled job sending escalated reminders to users who owe a reply."""

from __future__ import annotations

import logging

from blossom.domain import container
from blossom.domain.nudges.dispatcher import GhostingReminderDispatcher, NudgeRunResult
from blossom.obs import logging as obs_logging
from blossom.obs import metrics

logger = logging.getLogger(__name__)

_JOB_NAME = "send-ghosting-reminder"


class GhostingReminderJob:
	def __init__(self, *, dispatcher: GhostingReminderDispatcher | None = None) -> None:
		self._dispatcher = dispatcher

	async def run_once(self) -> NudgeRunResult:
		dispatcher = self._dispatcher or container.get_reminder_dispatcher()
		tokens = obs_logging.bind_context(job=_JOB_NAME)
		logger.info("ghosting reminder run started")
		try:
			result = await dispatcher.run()
		except Exception:
			metrics.inc_job_run(_JOB_NAME, "error")
			raise
		finally:
			obs_logging.reset_context(tokens)
		metrics.inc_job_run(_JOB_NAME, "success")
		return result
