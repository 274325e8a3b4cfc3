from __future__ import annotations

from datetime import timedelta

import pytest

from blossom.domain.conversations.models import ResponsePattern
from blossom.jobs.update_ghosting_stats import GhostingStatsJob, visibility_distribution


def test_visibility_distribution_buckets() -> None:
    patterns = [ResponsePattern(user_id=str(i), visibility_score=s) for i, s in enumerate((0.1, 0.3, 0.55, 0.85, 0.95))]
    assert visibility_distribution(patterns) == {
        "0.1-0.3": 1,
        "0.3-0.5": 1,
        "0.5-0.7": 1,
        "0.7-0.9": 1,
        "0.9-1.0": 1,
    }


def test_visibility_distribution_empty() -> None:
    assert set(visibility_distribution([]).values()) == {0}


@pytest.mark.asyncio
async def test_stats_job_records_ghosting_and_refreshes_trust(seed, repo, now) -> None:
    seed("alice", "bob", sender="bob", hours_ago=24 * 8)
    repo.add_pattern(
        ResponsePattern(
            user_id="carol",
            ghosted_count=1,
            total_conversations=2,
            visibility_score=0.85,
            last_calculated_at=now - timedelta(days=1),
        )
    )
    repo.add_pattern(ResponsePattern(user_id="dan", total_conversations=4, last_calculated_at=now - timedelta(days=2)))

    stats = await GhostingStatsJob().run_once()

    assert stats.ghosting_recorded == 1
    assert stats.users_with_ghosting == 2
    assert stats.users_with_reduced_visibility == 2
    assert stats.trust_signals_updated == 3
    assert set(repo.trust) == {"alice", "carol", "dan"}
    assert stats.to_dict() == {
        "usersWithGhosting": 2,
        "usersWithReducedVisibility": 2,
        "trustSignalsUpdated": 3,
        "ghostingRecorded": 1,
    }


@pytest.mark.asyncio
async def test_stats_job_on_empty_database() -> None:
    stats = await GhostingStatsJob().run_once()
    assert stats.to_dict() == {
        "usersWithGhosting": 0,
        "usersWithReducedVisibility": 0,
        "trustSignalsUpdated": 0,
        "ghostingRecorded": 0,
    }
