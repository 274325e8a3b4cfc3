from __future__ import annotations

from datetime import timedelta

import pytest

from blossom.domain import container
from blossom.domain.conversations.models import AccountFacts, ResponsePattern
from blossom.domain.conversations.repository import InMemoryPolicyRepository
from blossom.domain.ghosting.trust import TrustSignalCalculator, calculate_trust_signals


def test_reliable_verified_user_earns_every_badge(now) -> None:
    pattern = ResponsePattern(user_id="alice", graceful_closures=2, total_conversations=4, visibility_score=1.0)
    facts = AccountFacts(verified_identity=True, report_count=0, profile_completeness=150)

    signals = calculate_trust_signals(pattern, facts, now=now)

    assert signals.flags() == {
        "shows_up_consistently": True,
        "communicates_with_care": True,
        "community_trusted": True,
        "verified_identity": True,
        "thoughtful_closer": True,
    }
    assert signals.profile_completeness == 100
    assert signals.last_calculated_at == now


def test_ghosting_breaks_consistency_and_community_trust(now) -> None:
    pattern = ResponsePattern(
        user_id="bob", ghosted_count=1, graceful_closures=1, total_conversations=5, visibility_score=0.85
    )
    facts = AccountFacts(verified_identity=True, report_count=0, profile_completeness=60)

    signals = calculate_trust_signals(pattern, facts, now=now)

    assert not signals.shows_up_consistently
    assert not signals.communicates_with_care
    assert not signals.community_trusted
    assert signals.verified_identity
    assert not signals.thoughtful_closer
    assert signals.profile_completeness == 60


def test_reports_block_community_trust(now) -> None:
    pattern = ResponsePattern(user_id="carol", total_conversations=3)
    facts = AccountFacts(verified_identity=True, report_count=1)
    signals = calculate_trust_signals(pattern, facts, now=now)
    assert signals.shows_up_consistently
    assert not signals.community_trusted


def test_new_user_has_no_badges(now) -> None:
    signals = calculate_trust_signals(ResponsePattern(user_id="dan"), AccountFacts(), now=now)
    assert not any(signals.flags().values())
    assert signals.profile_completeness == 0


def test_thoughtful_closer_needs_closures_to_outweigh_ghosting(now) -> None:
    pattern = ResponsePattern(user_id="erin", ghosted_count=3, graceful_closures=2, total_conversations=5)
    assert not calculate_trust_signals(pattern, AccountFacts(), now=now).thoughtful_closer
    pattern.graceful_closures = 3
    assert calculate_trust_signals(pattern, AccountFacts(), now=now).thoughtful_closer


@pytest.mark.asyncio
async def test_recalculate_persists_signals(repo, now) -> None:
    repo.add_profile("alice", verified=True, profile_completeness=80)
    repo.add_pattern(ResponsePattern(user_id="alice", total_conversations=3))

    signals = await container.get_trust_calculator().recalculate("alice")

    assert signals.community_trusted
    stored = repo.trust["alice"]
    assert stored.verified_identity
    assert stored.profile_completeness == 80
    assert stored.last_calculated_at == now


@pytest.mark.asyncio
async def test_recalculate_without_history_uses_empty_pattern(repo) -> None:
    signals = await container.get_trust_calculator().recalculate("ghost-town")
    assert not signals.shows_up_consistently
    assert "ghost-town" in repo.trust


@pytest.mark.asyncio
async def test_batch_takes_most_recently_updated_users(repo, now) -> None:
    for offset, user in enumerate(("alice", "bob", "carol")):
        repo.add_pattern(
            ResponsePattern(user_id=user, total_conversations=1, last_calculated_at=now - timedelta(hours=offset))
        )

    updated = await container.get_trust_calculator().recalculate_batch(2)

    assert updated == 2
    assert set(repo.trust) == {"alice", "bob"}


@pytest.mark.asyncio
async def test_batch_continues_past_failures(clock, now) -> None:
    class _Repository(InMemoryPolicyRepository):
        async def get_account_facts(self, user_id):
            if user_id == "bob":
                raise RuntimeError("profile lookup failed")
            return await super().get_account_facts(user_id)

    repository = _Repository()
    for user in ("alice", "bob", "carol"):
        repository.add_pattern(ResponsePattern(user_id=user, last_calculated_at=now))

    calculator = TrustSignalCalculator(repository=repository, clock=clock)

    assert await calculator.recalculate_batch(10) == 2
    assert set(repository.trust) == {"alice", "carol"}
