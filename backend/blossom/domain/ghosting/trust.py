"""Trust signal derivation from response history and account facts."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Sequence

from blossom.domain.conversations.models import AccountFacts, ResponsePattern, TrustSignals
from blossom.domain.conversations.repository import ResponsePatternRepository
from blossom.obs import metrics

logger = logging.getLogger(__name__)

CONSISTENT_MIN_CONVERSATIONS = 3
CARE_MIN_VISIBILITY = 0.9
THOUGHTFUL_MIN_CLOSURES = 2


def calculate_trust_signals(
    pattern: ResponsePattern,
    facts: AccountFacts,
    *,
    now: datetime | None = None,
) -> TrustSignals:
    """Derive the trust badges for one user. Pure; no storage access."""

    consistent = pattern.ghosted_count == 0 and pattern.total_conversations >= CONSISTENT_MIN_CONVERSATIONS
    verified = bool(facts.verified_identity)
    return TrustSignals(
        user_id=pattern.user_id,
        shows_up_consistently=consistent,
        communicates_with_care=(
            pattern.visibility_score >= CARE_MIN_VISIBILITY and pattern.total_conversations >= 1
        ),
        community_trusted=verified and facts.report_count == 0 and consistent,
        verified_identity=verified,
        thoughtful_closer=(
            pattern.graceful_closures >= THOUGHTFUL_MIN_CLOSURES
            and pattern.graceful_closures >= pattern.ghosted_count
        ),
        profile_completeness=max(0, min(100, int(facts.profile_completeness))),
        last_calculated_at=now or datetime.now(timezone.utc),
    )


@dataclass
class TrustSignalCalculator:
    """Loads a user's history, recomputes their signals and stores them."""

    repository: ResponsePatternRepository
    clock: Callable[[], datetime] = field(default=lambda: datetime.now(timezone.utc))

    async def recalculate(self, user_id: str) -> TrustSignals:
        pattern = await self.repository.get_pattern(user_id) or ResponsePattern(user_id=user_id)
        facts = await self.repository.get_account_facts(user_id)
        signals = calculate_trust_signals(pattern, facts, now=self.clock())
        return await self.repository.upsert_trust_signals(signals)

    async def recalculate_batch(self, limit: int) -> int:
        """Recompute the ``limit`` most recently updated users; return how many succeeded."""

        user_ids: Sequence[str] = await self.repository.list_recent_pattern_users(limit)
        updated = 0
        for user_id in user_ids:
            try:
                await self.recalculate(user_id)
            except Exception:
                metrics.inc_trust_recalculated("error")
                logger.exception("trust recalculation failed", extra={"user_id": user_id})
                continue
            metrics.inc_trust_recalculated("ok")
            updated += 1
        return updated
