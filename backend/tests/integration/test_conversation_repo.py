from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from pathlib import Path
from typing import AsyncIterator, Iterator
from uuid import uuid4

import asyncpg
import pytest
import pytest_asyncio

from blossom.domain.conversations.models import ConversationState, NotificationKind
from blossom.domain.conversations.service import PolicyStore
from blossom.domain.ghosting.detector import GhostingDetector
from blossom.domain.ghosting.trust import TrustSignalCalculator
from blossom.domain.ghosting.visibility import visibility_score
from blossom.domain.nudges.dispatcher import GhostingReminderDispatcher, SoftNudgeDispatcher
from blossom.infra.conversation_repo import PostgresPolicyRepository

pytestmark = pytest.mark.asyncio

REPO_ROOT = Path(__file__).resolve().parents[3]

MIGRATIONS_DIR = REPO_ROOT / "infra" / "migrations"


@pytest.fixture(scope="module")
def postgres_container() -> Iterator["PostgresContainer"]:
    testcontainers = pytest.importorskip(
        "testcontainers.postgres",
        reason="testcontainers.postgres is required for integration tests",
    )
    PostgresContainer = testcontainers.PostgresContainer
    container = PostgresContainer("postgres:16-alpine")
    try:
        container.start()
    except Exception as exc:  # pragma: no cover - environment without docker
        pytest.skip(f"unable to start postgres container: {exc}")
    try:
        yield container
    finally:
        container.stop()


async def _run_migrations(pool: asyncpg.Pool) -> None:
    async with pool.acquire() as conn:
        await conn.execute("DROP SCHEMA IF EXISTS public CASCADE")
        await conn.execute("CREATE SCHEMA public")
        await conn.execute("GRANT ALL ON SCHEMA public TO PUBLIC")
        for path in sorted(MIGRATIONS_DIR.glob("*.sql")):
            await conn.execute(path.read_text(encoding="utf-8"))


@pytest_asyncio.fixture(scope="function")
async def postgres_pool(postgres_container) -> AsyncIterator[asyncpg.Pool]:
    url = postgres_container.get_connection_url().replace("postgresql+psycopg2", "postgresql")
    pool = await asyncpg.create_pool(dsn=url, min_size=1, max_size=6)
    await _run_migrations(pool)
    try:
        yield pool
    finally:
        await pool.close()


@pytest.fixture
def pg_repo(postgres_pool) -> PostgresPolicyRepository:
    return PostgresPolicyRepository(postgres_pool)


@pytest.fixture
def pg_store(pg_repo, policy, clock) -> PolicyStore:
    return PolicyStore(pg_repo, policy, trust=TrustSignalCalculator(repository=pg_repo, clock=clock), clock=clock)


async def _profile(pool: asyncpg.Pool, full_name: str | None = None) -> str:
    user_id = str(uuid4())
    await pool.execute("INSERT INTO profiles (id, full_name) VALUES ($1, $2)", user_id, full_name)
    return user_id


async def _match(pool: asyncpg.Pool, user_a: str, user_b: str) -> str:
    match_id = await pool.fetchval(
        "INSERT INTO matches (user1_id, user2_id) VALUES ($1, $2) RETURNING id",
        user_a,
        user_b,
    )
    return str(match_id)


async def _conversation(
    pool: asyncpg.Pool,
    user_a: str,
    user_b: str,
    *,
    sender: str,
    sent_at: datetime,
    status: str = "active",
) -> str:
    match_id = await _match(pool, user_a, user_b)
    conversation_id = await pool.fetchval(
        """
        INSERT INTO conversations (match_id, status, created_at, updated_at)
        VALUES ($1, $2, $3, $3)
        RETURNING id
        """,
        match_id,
        status,
        sent_at,
    )
    await pool.execute(
        "INSERT INTO messages (conversation_id, sender_id, created_at) VALUES ($1, $2, $3)",
        conversation_id,
        sender,
        sent_at,
    )
    return str(conversation_id)


@pytest.mark.integration
async def test_admission_stops_at_ceiling(postgres_pool, pg_repo, pg_store, policy, now):
    alice = await _profile(postgres_pool)
    for _ in range(3):
        other = await _profile(postgres_pool)
        await _conversation(postgres_pool, alice, other, sender=other, sent_at=now - timedelta(hours=1))
    erin = await _profile(postgres_pool)
    match_id = await _match(postgres_pool, alice, erin)

    assert await pg_store.get_active_conversation_count(alice) == 3
    assert not await pg_store.can_start_new_conversation(alice)
    created, count = await pg_repo.create_if_admitted(
        alice,
        match_id,
        max_active=policy.max_active_conversations,
        active_since=now - policy.active_window,
        now=now,
    )
    assert created is None
    assert count == 3


@pytest.mark.integration
async def test_concurrent_admission_never_exceeds_ceiling(postgres_pool, pg_repo, policy, now):
    alice = await _profile(postgres_pool)
    match_ids = [await _match(postgres_pool, alice, await _profile(postgres_pool)) for _ in range(5)]

    results = await asyncio.gather(
        *(
            pg_repo.create_if_admitted(
                alice,
                match_id,
                max_active=policy.max_active_conversations,
                active_since=now - policy.active_window,
                now=now,
            )
            for match_id in match_ids
        )
    )

    admitted = [conversation for conversation, _ in results if conversation is not None]
    assert len(admitted) == policy.max_active_conversations
    assert await pg_repo.count_active(alice, active_since=now - policy.active_window) == 3


@pytest.mark.integration
async def test_repeated_start_returns_open_conversation(postgres_pool, pg_store):
    alice = await _profile(postgres_pool)
    bob = await _profile(postgres_pool)
    match_id = await _match(postgres_pool, alice, bob)

    first = await pg_store.start_conversation(alice, match_id)
    again = await pg_store.start_conversation(alice, match_id)
    from_partner = await pg_store.start_conversation(bob, match_id)

    assert again.id == first.id == from_partner.id
    assert await pg_store.get_active_conversation_count(alice) == 1
    with pytest.raises(asyncpg.UniqueViolationError):
        await postgres_pool.execute(
            "INSERT INTO conversations (match_id, status) VALUES ($1, 'active')",
            match_id,
        )


@pytest.mark.integration
async def test_ghosting_detector_charges_once(postgres_pool, pg_repo, policy, clock, now):
    alice = await _profile(postgres_pool)
    bob = await _profile(postgres_pool)
    conversation_id = await _conversation(postgres_pool, alice, bob, sender=bob, sent_at=now - timedelta(days=8))
    detector = GhostingDetector(repository=pg_repo, policy=policy, clock=clock)

    assert await detector.run() == 1
    assert await detector.run() == 0

    stored = await pg_repo.get_conversation(conversation_id)
    assert stored.status is ConversationState.GHOSTED
    assert stored.ghosted_user_id == alice
    pattern = await pg_repo.get_pattern(alice)
    assert pattern.ghosted_count == 1
    assert pattern.total_conversations == 1
    assert pattern.visibility_score == pytest.approx(0.85)
    assert await pg_repo.get_pattern(bob) is None


@pytest.mark.integration
async def test_reply_after_selection_blocks_ghosting(postgres_pool, pg_repo, now):
    alice = await _profile(postgres_pool)
    bob = await _profile(postgres_pool)
    conversation_id = await _conversation(postgres_pool, alice, bob, sender=bob, sent_at=now - timedelta(days=8))
    [candidate] = await pg_repo.list_awaiting_reply(older_than=now - timedelta(days=7))
    assert candidate.silent_user_id == alice

    await pg_repo.record_message(conversation_id, alice, now - timedelta(minutes=5))

    assert await pg_repo.record_ghosting(candidate, now=now, score=visibility_score) is None
    stored = await pg_repo.get_conversation(conversation_id)
    assert stored.status is ConversationState.ACTIVE


@pytest.mark.integration
async def test_awaiting_reply_uses_latest_message(postgres_pool, pg_repo, now):
    alice = await _profile(postgres_pool)
    bob = await _profile(postgres_pool, full_name="Bob")
    conversation_id = await _conversation(postgres_pool, alice, bob, sender=alice, sent_at=now - timedelta(hours=60))
    await postgres_pool.execute(
        "INSERT INTO messages (conversation_id, sender_id, created_at) VALUES ($1, $2, $3)",
        conversation_id,
        bob,
        now - timedelta(hours=50),
    )
    await postgres_pool.execute(
        "INSERT INTO messages (conversation_id, sender_id, created_at, deleted) VALUES ($1, $2, $3, TRUE)",
        conversation_id,
        alice,
        now - timedelta(hours=1),
    )

    [row] = await pg_repo.list_awaiting_reply(older_than=now - timedelta(hours=48))

    assert row.silent_user_id == alice
    assert row.waiting_user_id == bob
    assert row.waiting_user_name == "Bob"


@pytest.mark.integration
async def test_soft_nudge_pair_cooldown(postgres_pool, pg_repo, pg_store, policy, clock, now):
    alice = await _profile(postgres_pool)
    bob = await _profile(postgres_pool, full_name="Bob")
    conversation_id = await _conversation(postgres_pool, alice, bob, sender=bob, sent_at=now - timedelta(hours=50))
    dispatcher = SoftNudgeDispatcher(store=pg_store, repository=pg_repo, policy=policy, clock=clock)

    first = await dispatcher.run()
    second = await dispatcher.run()

    assert first.nudges_sent == 1
    assert second.nudges_sent == 0
    assert second.skipped == 1
    [notification] = await pg_repo.list_notifications(alice, kind=NotificationKind.NUDGE)
    assert notification.related_user_id == bob
    assert notification.created_at == now
    stored = await pg_repo.get_conversation(conversation_id)
    assert stored.status is ConversationState.NUDGE_SENT


@pytest.mark.integration
async def test_reminder_claim_and_release(postgres_pool, pg_repo, policy, now):
    carol = await _profile(postgres_pool)
    dan = await _profile(postgres_pool)
    conversation_id = await _conversation(postgres_pool, carol, dan, sender=carol, sent_at=now - timedelta(hours=80))
    cooldown = policy.reminder_cooldown

    assert await pg_repo.claim_reminder(conversation_id, now=now, cooldown=cooldown) == (True, None)
    assert await pg_repo.claim_reminder(conversation_id, now=now + timedelta(hours=1), cooldown=cooldown) == (
        False,
        now,
    )

    await pg_repo.release_reminder(conversation_id, claimed_at=now, previous=None)
    assert (await pg_repo.get_conversation(conversation_id)).reminder_sent_at is None

    later = now + timedelta(hours=25)
    assert await pg_repo.claim_reminder(conversation_id, now=now, cooldown=cooldown) == (True, None)
    assert await pg_repo.claim_reminder(conversation_id, now=later, cooldown=cooldown) == (True, now)


@pytest.mark.integration
async def test_reminder_dispatch_respects_cooldown(postgres_pool, pg_repo, pg_store, policy, clock, now):
    carol = await _profile(postgres_pool, full_name="Carol")
    dan = await _profile(postgres_pool)
    await _conversation(postgres_pool, carol, dan, sender=carol, sent_at=now - timedelta(hours=80))
    dispatcher = GhostingReminderDispatcher(store=pg_store, repository=pg_repo, policy=policy, clock=clock)

    first = await dispatcher.run()
    second = await dispatcher.run()

    assert first.nudges_sent == 1
    assert second.skipped == 1
    [reminder] = await pg_repo.list_notifications(dan, kind=NotificationKind.GHOSTING_REMINDER)
    assert reminder.related_user_id is None
    assert reminder.message.startswith("Carol reached out 3 days ago")


@pytest.mark.integration
async def test_pause_only_when_idle(postgres_pool, pg_repo, policy, now):
    busy = await _profile(postgres_pool)
    other = await _profile(postgres_pool)
    idle = await _profile(postgres_pool)
    await _conversation(postgres_pool, busy, other, sender=other, sent_at=now - timedelta(hours=2))
    active_since = now - policy.active_window

    assert await pg_repo.pause_if_idle(busy, reason="busy", now=now, active_since=active_since) == (False, 1)
    assert not (await pg_repo.get_pause_state(busy)).is_paused

    assert await pg_repo.pause_if_idle(idle, reason="break", now=now, active_since=active_since) == (True, 0)
    state = await pg_repo.get_pause_state(idle)
    assert state.is_paused
    assert state.pause_reason == "break"
    assert state.paused_at == now

    await pg_repo.resume(idle)
    assert not (await pg_repo.get_pause_state(idle)).is_paused


@pytest.mark.integration
async def test_first_reply_and_closure_count_conversation_once(postgres_pool, pg_repo, pg_store, now):
    alice = await _profile(postgres_pool)
    bob = await _profile(postgres_pool)
    conversation_id = await _conversation(postgres_pool, alice, bob, sender=bob, sent_at=now - timedelta(hours=3))

    await pg_store.record_message(alice, conversation_id)
    await pg_store.record_message(alice, conversation_id)
    assert (await pg_repo.get_pattern(alice)).total_conversations == 1

    closed, pattern = await pg_store.close_conversation(alice, conversation_id, "no_connection")

    assert closed.status is ConversationState.CLOSED_GRACEFULLY
    assert pattern.graceful_closures == 1
    assert pattern.total_conversations == 1
    signals = await pg_repo.get_trust_signals(alice)
    assert signals is not None
    assert not signals.shows_up_consistently
