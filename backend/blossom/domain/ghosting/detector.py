"""Detects conversations that lapsed beyond recovery and charges the silent party."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from blossom.domain.conversations.policy_config import PolicyConfig
from blossom.domain.conversations.repository import ConversationRepository
from blossom.domain.ghosting.visibility import visibility_score
from blossom.obs import metrics

logger = logging.getLogger(__name__)


@dataclass
class GhostingDetector:
    repository: ConversationRepository
    policy: PolicyConfig
    clock: Callable[[], datetime] = field(default=lambda: datetime.now(timezone.utc))

    async def run(self) -> int:
        """Record every newly lapsed conversation once; return how many were recorded.

        Candidates are re-checked inside the repository call, so overlapping or
        repeated runs never charge the same conversation twice.
        """

        now = self.clock()
        candidates = await self.repository.list_awaiting_reply(
            older_than=now - self.policy.ghosting_after,
            limit=self.policy.ghosting_batch_size,
        )
        recorded = 0
        for candidate in candidates:
            try:
                pattern = await self.repository.record_ghosting(candidate, now=now, score=visibility_score)
            except Exception:
                logger.exception(
                    "ghosting record failed",
                    extra={"conversation_id": candidate.conversation_id},
                )
                continue
            if pattern is None:
                continue
            recorded += 1
            logger.debug(
                "ghosting recorded",
                extra={
                    "conversation_id": candidate.conversation_id,
                    "ghosted_user_id": candidate.silent_user_id,
                    "visibility_score": pattern.visibility_score,
                },
            )
        if recorded:
            metrics.inc_ghosting_recorded(recorded)
        logger.info(
            "ghosting detection finished",
            extra={"candidates": len(candidates), "recorded": recorded},
        )
        return recorded
