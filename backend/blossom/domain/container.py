"""Lightweight service container shared by the API, jobs and scheduler."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional

import asyncpg

from blossom.domain.conversations.policy_config import PolicyConfig, default_policy
from blossom.domain.conversations.repository import InMemoryPolicyRepository, PolicyRepository
from blossom.domain.conversations.service import PolicyStore
from blossom.domain.ghosting.detector import GhostingDetector
from blossom.domain.ghosting.trust import TrustSignalCalculator
from blossom.domain.nudges.dispatcher import GhostingReminderDispatcher, SoftNudgeDispatcher
from blossom.infra.conversation_repo import PostgresPolicyRepository


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


_repository: PolicyRepository = InMemoryPolicyRepository()
_policy: PolicyConfig = PolicyConfig()
_clock: Callable[[], datetime] = _utcnow
_trust = TrustSignalCalculator(repository=_repository, clock=_clock)
_store = PolicyStore(_repository, _policy, trust=_trust, clock=_clock)
_detector = GhostingDetector(repository=_repository, policy=_policy, clock=_clock)
_soft_nudges = SoftNudgeDispatcher(store=_store, repository=_repository, policy=_policy, clock=_clock)
_reminders = GhostingReminderDispatcher(store=_store, repository=_repository, policy=_policy, clock=_clock)


def configure(
    *,
    repository: Optional[PolicyRepository] = None,
    policy: Optional[PolicyConfig] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> None:
    global _repository, _policy, _clock, _trust, _store, _detector, _soft_nudges, _reminders
    if repository is not None:
        _repository = repository
    if policy is not None:
        _policy = policy
    if clock is not None:
        _clock = clock
    _trust = TrustSignalCalculator(repository=_repository, clock=_clock)
    _store = PolicyStore(_repository, _policy, trust=_trust, clock=_clock)
    _detector = GhostingDetector(repository=_repository, policy=_policy, clock=_clock)
    _soft_nudges = SoftNudgeDispatcher(store=_store, repository=_repository, policy=_policy, clock=_clock)
    _reminders = GhostingReminderDispatcher(store=_store, repository=_repository, policy=_policy, clock=_clock)


def configure_postgres(pool: asyncpg.Pool, *, policy: Optional[PolicyConfig] = None) -> None:
    configure(repository=PostgresPolicyRepository(pool), policy=policy or default_policy())


def get_repository() -> PolicyRepository:
    return _repository


def get_policy() -> PolicyConfig:
    return _policy


def get_policy_store() -> PolicyStore:
    return _store


def get_trust_calculator() -> TrustSignalCalculator:
    return _trust


def get_ghosting_detector() -> GhostingDetector:
    return _detector


def get_soft_nudge_dispatcher() -> SoftNudgeDispatcher:
    return _soft_nudges


def get_reminder_dispatcher() -> GhostingReminderDispatcher:
    return _reminders
