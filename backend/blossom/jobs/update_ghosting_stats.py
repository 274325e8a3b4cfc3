"""Scheduled job recording ghosting, refreshing visibility stats and trust signals."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

from blossom.domain import container
from blossom.domain.conversations.models import ResponsePattern
from blossom.obs import logging as obs_logging
from blossom.obs import metrics

logger = logging.getLogger(__name__)

_JOB_NAME = "update-ghosting-stats"

_BUCKETS = (
	("0.1-0.3", 0.1, 0.3),
	("0.3-0.5", 0.3, 0.5),
	("0.5-0.7", 0.5, 0.7),
	("0.7-0.9", 0.7, 0.9),
	("0.9-1.0", 0.9, 1.0),
)


@dataclass(slots=True)
class GhostingStats:
	users_with_ghosting: int
	users_with_reduced_visibility: int
	trust_signals_updated: int
	ghosting_recorded: int

	def to_dict(self) -> dict[str, int]:
		return {
			"usersWithGhosting": self.users_with_ghosting,
			"usersWithReducedVisibility": self.users_with_reduced_visibility,
			"trustSignalsUpdated": self.trust_signals_updated,
			"ghostingRecorded": self.ghosting_recorded,
		}


def visibility_distribution(patterns: Sequence[ResponsePattern]) -> dict[str, int]:
	"""Histogram of reduced visibility scores, lower bound inclusive."""
	return {
		label: sum(1 for p in patterns if low <= p.visibility_score < high)
		for label, low, high in _BUCKETS
	}


class GhostingStatsJob:
	async def run_once(self) -> GhostingStats:
		tokens = obs_logging.bind_context(job=_JOB_NAME)
		try:
			stats = await self._run()
		except Exception:
			metrics.inc_job_run(_JOB_NAME, "error")
			raise
		finally:
			obs_logging.reset_context(tokens)
		metrics.inc_job_run(_JOB_NAME, "success")
		return stats

	async def _run(self) -> GhostingStats:
		logger.info("ghosting stats update started")
		recorded = await container.get_ghosting_detector().run()

		patterns = await container.get_repository().list_patterns_with_ghosting()
		reduced = [p for p in patterns if p.visibility_score < 1.0]
		metrics.set_reduced_visibility(len(reduced))
		if reduced:
			logger.info("visibility distribution", extra={"distribution": visibility_distribution(reduced)})

		updated = await container.get_trust_calculator().recalculate_batch(
			container.get_policy().trust_batch_size
		)
		stats = GhostingStats(
			users_with_ghosting=len(patterns),
			users_with_reduced_visibility=len(reduced),
			trust_signals_updated=updated,
			ghosting_recorded=recorded,
		)
		logger.info("ghosting stats update finished", extra=stats.to_dict())
		return stats
