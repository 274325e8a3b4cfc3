"""PostgreSQL-backed repository for the conversation policy."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Sequence

import asyncpg

from blossom.domain.conversations import lifecycle
from blossom.domain.conversations.exceptions import ConversationNotFound
from blossom.domain.conversations.lifecycle import LifecycleEvent
from blossom.domain.conversations.models import (
    COUNTED_STATES,
    AccountFacts,
    AwaitingReply,
    Conversation,
    Notification,
    NotificationKind,
    PauseState,
    ResponsePattern,
    TrustSignals,
)
from blossom.domain.conversations.repository import PolicyRepository, ScoreFn

_COUNTED = [state.value for state in COUNTED_STATES]

_CONVERSATION_SELECT = """
SELECT c.id, c.match_id, m.user1_id, m.user2_id, c.status, c.created_at, c.updated_at,
       c.reminder_sent_at, c.expected_responder_id, c.closed_at, c.closed_by,
       c.closure_reason, c.closure_message, c.ghosted_user_id, c.ghosted_at
FROM conversations c
JOIN matches m ON m.id = c.match_id
"""

_AWAITING_REPLY_SQL = """
WITH last_message AS (
    SELECT DISTINCT ON (msg.conversation_id) msg.conversation_id, msg.sender_id, msg.created_at
    FROM messages msg
    WHERE msg.deleted = FALSE
    ORDER BY msg.conversation_id, msg.created_at DESC
), awaiting AS (
    SELECT c.id AS conversation_id,
           lm.sender_id AS waiting_user_id,
           CASE WHEN lm.sender_id = m.user1_id THEN m.user2_id ELSE m.user1_id END AS silent_user_id,
           lm.created_at AS last_message_at
    FROM conversations c
    JOIN matches m ON m.id = c.match_id
    JOIN last_message lm ON lm.conversation_id = c.id
    WHERE c.status = ANY($1::text[])
)
SELECT a.conversation_id, a.waiting_user_id, a.silent_user_id, a.last_message_at,
       p.full_name AS waiting_user_name
FROM awaiting a
LEFT JOIN profiles p ON p.id = a.waiting_user_id
WHERE a.last_message_at < $2
  AND ($3::timestamptz IS NULL OR a.last_message_at >= $3)
  AND ($4::uuid IS NULL OR a.silent_user_id = $4::uuid)
ORDER BY a.last_message_at ASC
LIMIT $5
"""

_COUNT_ACTIVE_SQL = """
SELECT COUNT(*)
FROM conversations c
JOIN matches m ON m.id = c.match_id
WHERE (m.user1_id = $1 OR m.user2_id = $1)
  AND c.status = ANY($2::text[])
  AND c.updated_at >= $3
"""

_PATTERN_COLUMNS = "user_id, ghosted_count, graceful_closures, total_conversations, visibility_score, last_calculated_at"

_TRUST_COLUMNS = (
    "user_id, shows_up_consistently, communicates_with_care, community_trusted, "
    "verified_identity, thoughtful_closer, profile_completeness, last_calculated_at"
)


def _row_to_awaiting(row: asyncpg.Record) -> AwaitingReply:
    return AwaitingReply(
        conversation_id=str(row["conversation_id"]),
        silent_user_id=str(row["silent_user_id"]),
        waiting_user_id=str(row["waiting_user_id"]),
        waiting_user_name=row.get("waiting_user_name"),
        last_message_at=row["last_message_at"],
    )


def _row_to_notification(row: asyncpg.Record) -> Notification:
    related = row.get("related_user_id")
    return Notification(
        id=str(row["id"]),
        user_id=str(row["user_id"]),
        kind=NotificationKind(row["type"]),
        title=row["title"],
        message=row["message"],
        related_user_id=str(related) if related is not None else None,
        read=bool(row["read"]),
        created_at=row["created_at"],
    )


def _row_to_trust(row: asyncpg.Record) -> TrustSignals:
    return TrustSignals(
        user_id=str(row["user_id"]),
        shows_up_consistently=bool(row["shows_up_consistently"]),
        communicates_with_care=bool(row["communicates_with_care"]),
        community_trusted=bool(row["community_trusted"]),
        verified_identity=bool(row["verified_identity"]),
        thoughtful_closer=bool(row["thoughtful_closer"]),
        profile_completeness=int(row["profile_completeness"] or 0),
        last_calculated_at=row.get("last_calculated_at"),
    )


def _rowcount(status: str) -> int:
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (ValueError, IndexError):
        return 0


async def _lock(conn: asyncpg.Connection, key: str) -> None:
    await conn.execute("SELECT pg_advisory_xact_lock(hashtext($1))", key)


def _admission_key(user_id: str) -> str:
    return f"conversation_admission:{user_id}"


# Taken before the admission lock whenever both are held.
def _match_key(match_id: str) -> str:
    return f"conversation_match:{match_id}"


async def _has_written(conn: asyncpg.Connection, conversation_id: str, user_id: str) -> bool:
    found = await conn.fetchval(
        "SELECT 1 FROM messages WHERE conversation_id = $1 AND sender_id = $2 LIMIT 1",
        conversation_id,
        user_id,
    )
    return found is not None


class PostgresPolicyRepository(PolicyRepository):
    """Persists conversations, patterns, trust signals and notifications using asyncpg."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    # conversations

    async def get_match(self, match_id: str) -> tuple[str, str] | None:
        row = await self._pool.fetchrow("SELECT user1_id, user2_id FROM matches WHERE id = $1", match_id)
        if row is None:
            return None
        return str(row["user1_id"]), str(row["user2_id"])

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        row = await self._pool.fetchrow(_CONVERSATION_SELECT + " WHERE c.id = $1", conversation_id)
        return Conversation.from_record(row) if row else None

    async def count_active(self, user_id: str, *, active_since: datetime) -> int:
        value = await self._pool.fetchval(_COUNT_ACTIVE_SQL, user_id, _COUNTED, active_since)
        return int(value or 0)

    async def create_if_admitted(
        self,
        user_id: str,
        match_id: str,
        *,
        max_active: int,
        active_since: datetime,
        now: datetime,
    ) -> tuple[Conversation | None, int]:
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                await _lock(conn, _match_key(match_id))
                await _lock(conn, _admission_key(user_id))
                count = int(await conn.fetchval(_COUNT_ACTIVE_SQL, user_id, _COUNTED, active_since) or 0)
                existing = await conn.fetchrow(
                    _CONVERSATION_SELECT
                    + " WHERE c.match_id = $1 AND c.status = ANY($2::text[]) ORDER BY c.created_at DESC LIMIT 1",
                    match_id,
                    _COUNTED,
                )
                if existing is not None:
                    return Conversation.from_record(existing), count
                if count >= max_active:
                    return None, count
                new_id = await conn.fetchval(
                    """
                    INSERT INTO conversations (match_id, status, created_at, updated_at)
                    VALUES ($1, 'active', $2, $2)
                    RETURNING id
                    """,
                    match_id,
                    now,
                )
                row = await conn.fetchrow(_CONVERSATION_SELECT + " WHERE c.id = $1", new_id)
        return Conversation.from_record(row), count

    async def record_message(self, conversation_id: str, sender_id: str, sent_at: datetime) -> Conversation:
        reply_sources = [state.value for state in lifecycle.source_states(LifecycleEvent.REPLY)]
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                current = await conn.fetchrow(
                    _CONVERSATION_SELECT + " WHERE c.id = $1 FOR UPDATE OF c",
                    conversation_id,
                )
                if current is None:
                    raise ConversationNotFound()
                conversation = Conversation.from_record(current)
                if not await _has_written(conn, conversation_id, sender_id):
                    await conn.execute(
                        """
                        INSERT INTO user_response_patterns (user_id, total_conversations) VALUES ($1, 1)
                        ON CONFLICT (user_id) DO UPDATE
                        SET total_conversations = user_response_patterns.total_conversations + 1
                        """,
                        sender_id,
                    )
                await conn.execute(
                    "INSERT INTO messages (conversation_id, sender_id, created_at) VALUES ($1, $2, $3)",
                    conversation_id,
                    sender_id,
                    sent_at,
                )
                await conn.execute(
                    """
                    UPDATE conversations
                    SET updated_at = GREATEST(updated_at, $2),
                        expected_responder_id = $3,
                        status = CASE WHEN status = ANY($4::text[]) THEN $5 ELSE status END
                    WHERE id = $1
                    """,
                    conversation_id,
                    sent_at,
                    conversation.other_user(sender_id),
                    reply_sources,
                    lifecycle.target_state(LifecycleEvent.REPLY).value,
                )
                row = await conn.fetchrow(_CONVERSATION_SELECT + " WHERE c.id = $1", conversation_id)
        return Conversation.from_record(row)

    async def list_awaiting_reply(
        self,
        *,
        older_than: datetime,
        newer_than: datetime | None = None,
        silent_user_id: str | None = None,
        limit: int | None = None,
    ) -> Sequence[AwaitingReply]:
        rows = await self._pool.fetch(
            _AWAITING_REPLY_SQL,
            _COUNTED,
            older_than,
            newer_than,
            silent_user_id,
            limit,
        )
        return [_row_to_awaiting(row) for row in rows]

    async def transition(
        self, conversation_id: str, event: LifecycleEvent, *, now: datetime
    ) -> Conversation | None:
        sources = [state.value for state in lifecycle.source_states(event)]
        updated = await self._pool.fetchval(
            "UPDATE conversations SET status = $2 WHERE id = $1 AND status = ANY($3::text[]) RETURNING id",
            conversation_id,
            lifecycle.target_state(event).value,
            sources,
        )
        if updated is None:
            exists = await self._pool.fetchval("SELECT 1 FROM conversations WHERE id = $1", conversation_id)
            if exists is None:
                raise ConversationNotFound()
            return None
        return await self.get_conversation(conversation_id)

    async def close_gracefully(
        self,
        conversation_id: str,
        user_id: str,
        *,
        reason: str,
        message: str,
        now: datetime,
        score: ScoreFn,
    ) -> tuple[Conversation, ResponsePattern] | None:
        sources = [state.value for state in lifecycle.source_states(LifecycleEvent.CLOSE)]
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                updated = await conn.fetchval(
                    """
                    UPDATE conversations
                    SET status = $2, closed_at = $3, closed_by = $4, closure_reason = $5, closure_message = $6
                    WHERE id = $1 AND status = ANY($7::text[])
                    RETURNING id
                    """,
                    conversation_id,
                    lifecycle.target_state(LifecycleEvent.CLOSE).value,
                    now,
                    user_id,
                    reason,
                    message,
                    sources,
                )
                if updated is None:
                    return None
                pattern = await self._bump_pattern(
                    conn, user_id, conversation_id, graceful=1, now=now, score=score
                )
                row = await conn.fetchrow(_CONVERSATION_SELECT + " WHERE c.id = $1", conversation_id)
        return Conversation.from_record(row), pattern

    async def record_ghosting(
        self, candidate: AwaitingReply, *, now: datetime, score: ScoreFn
    ) -> ResponsePattern | None:
        sources = [state.value for state in lifecycle.source_states(LifecycleEvent.GHOST)]
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                updated = await conn.fetchval(
                    """
                    UPDATE conversations c
                    SET status = $2, ghosted_user_id = $3, ghosted_at = $4
                    WHERE c.id = $1
                      AND c.status = ANY($5::text[])
                      AND (
                        SELECT MAX(msg.created_at) FROM messages msg
                        WHERE msg.conversation_id = c.id AND msg.deleted = FALSE
                      ) = $6
                    RETURNING c.id
                    """,
                    candidate.conversation_id,
                    lifecycle.target_state(LifecycleEvent.GHOST).value,
                    candidate.silent_user_id,
                    now,
                    sources,
                    candidate.last_message_at,
                )
                if updated is None:
                    return None
                return await self._bump_pattern(
                    conn, candidate.silent_user_id, candidate.conversation_id, ghosted=1, now=now, score=score
                )

    async def _bump_pattern(
        self,
        conn: asyncpg.Connection,
        user_id: str,
        conversation_id: str,
        *,
        now: datetime,
        score: ScoreFn,
        ghosted: int = 0,
        graceful: int = 0,
    ) -> ResponsePattern:
        await conn.execute(
            "INSERT INTO user_response_patterns (user_id) VALUES ($1) ON CONFLICT (user_id) DO NOTHING",
            user_id,
        )
        row = await conn.fetchrow(
            f"SELECT {_PATTERN_COLUMNS} FROM user_response_patterns WHERE user_id = $1 FOR UPDATE",
            user_id,
        )
        current = ResponsePattern.from_record(row)
        ghosted_count = current.ghosted_count + ghosted
        graceful_closures = current.graceful_closures + graceful
        already_counted = await _has_written(conn, conversation_id, user_id)
        row = await conn.fetchrow(
            f"""
            UPDATE user_response_patterns
            SET ghosted_count = $2,
                graceful_closures = $3,
                total_conversations = total_conversations + $6::int,
                visibility_score = $4::double precision,
                last_calculated_at = $5
            WHERE user_id = $1
            RETURNING {_PATTERN_COLUMNS}
            """,
            user_id,
            ghosted_count,
            graceful_closures,
            score(ghosted_count, graceful_closures),
            now,
            0 if already_counted else 1,
        )
        return ResponsePattern.from_record(row)

    async def claim_reminder(
        self, conversation_id: str, *, now: datetime, cooldown: timedelta
    ) -> tuple[bool, datetime | None]:
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    "SELECT reminder_sent_at FROM conversations WHERE id = $1 FOR UPDATE",
                    conversation_id,
                )
                if row is None:
                    raise ConversationNotFound()
                previous = row["reminder_sent_at"]
                if previous is not None and previous > now - cooldown:
                    return False, previous
                await conn.execute(
                    "UPDATE conversations SET reminder_sent_at = $2 WHERE id = $1",
                    conversation_id,
                    now,
                )
        return True, previous

    async def release_reminder(
        self, conversation_id: str, *, claimed_at: datetime, previous: datetime | None
    ) -> None:
        await self._pool.execute(
            "UPDATE conversations SET reminder_sent_at = $3 WHERE id = $1 AND reminder_sent_at = $2",
            conversation_id,
            claimed_at,
            previous,
        )

    async def set_reminder_sent_at(self, conversation_id: str, value: datetime | None) -> None:
        status = await self._pool.execute(
            "UPDATE conversations SET reminder_sent_at = $2 WHERE id = $1",
            conversation_id,
            value,
        )
        if _rowcount(status) == 0:
            raise ConversationNotFound()

    # notifications

    async def insert_notification(self, notification: Notification) -> Notification:
        return await self._insert_notification(self._pool, notification)

    async def _insert_notification(self, conn, notification: Notification) -> Notification:
        row = await conn.fetchrow(
            """
            INSERT INTO notifications (user_id, type, title, message, related_user_id, read, created_at)
            VALUES ($1, $2, $3, $4, $5, FALSE, COALESCE($6::timestamptz, NOW()))
            RETURNING id, user_id, type, title, message, related_user_id, read, created_at
            """,
            notification.user_id,
            notification.kind.value,
            notification.title,
            notification.message,
            notification.related_user_id,
            notification.created_at,
        )
        if row is None:  # pragma: no cover - asyncpg always returns a row for RETURNING
            raise RuntimeError("Failed to insert notification")
        return _row_to_notification(row)

    async def create_nudge_unless_recent(
        self, notification: Notification, *, since: datetime
    ) -> Notification | None:
        pair_key = f"nudge:{notification.kind.value}:{notification.user_id}:{notification.related_user_id or ''}"
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                await _lock(conn, pair_key)
                exists = await conn.fetchval(
                    """
                    SELECT 1 FROM notifications
                    WHERE user_id = $1
                      AND type = $2
                      AND related_user_id IS NOT DISTINCT FROM $3::uuid
                      AND created_at >= $4
                    LIMIT 1
                    """,
                    notification.user_id,
                    notification.kind.value,
                    notification.related_user_id,
                    since,
                )
                if exists is not None:
                    return None
                return await self._insert_notification(conn, notification)

    async def list_notifications(
        self, user_id: str, *, kind: NotificationKind | None = None
    ) -> Sequence[Notification]:
        rows = await self._pool.fetch(
            """
            SELECT id, user_id, type, title, message, related_user_id, read, created_at
            FROM notifications
            WHERE user_id = $1 AND ($2::text IS NULL OR type = $2)
            ORDER BY created_at DESC
            """,
            user_id,
            kind.value if kind is not None else None,
        )
        return [_row_to_notification(row) for row in rows]

    # patterns and trust

    async def get_pattern(self, user_id: str) -> ResponsePattern | None:
        row = await self._pool.fetchrow(
            f"SELECT {_PATTERN_COLUMNS} FROM user_response_patterns WHERE user_id = $1",
            user_id,
        )
        return ResponsePattern.from_record(row) if row else None

    async def list_patterns_with_ghosting(self) -> Sequence[ResponsePattern]:
        rows = await self._pool.fetch(
            f"SELECT {_PATTERN_COLUMNS} FROM user_response_patterns WHERE ghosted_count > 0"
        )
        return [ResponsePattern.from_record(row) for row in rows]

    async def list_recent_pattern_users(self, limit: int) -> Sequence[str]:
        rows = await self._pool.fetch(
            """
            SELECT user_id FROM user_response_patterns
            ORDER BY last_calculated_at DESC NULLS LAST
            LIMIT $1
            """,
            limit,
        )
        return [str(row["user_id"]) for row in rows]

    async def get_account_facts(self, user_id: str) -> AccountFacts:
        row = await self._pool.fetchrow(
            """
            SELECT p.verified, p.profile_completeness, COALESCE(r.report_count, 0) AS report_count
            FROM profiles p
            LEFT JOIN user_response_patterns r ON r.user_id = p.id
            WHERE p.id = $1
            """,
            user_id,
        )
        if row is None:
            return AccountFacts()
        return AccountFacts(
            verified_identity=bool(row["verified"]),
            report_count=int(row["report_count"] or 0),
            profile_completeness=int(row["profile_completeness"] or 0),
        )

    async def get_trust_signals(self, user_id: str) -> TrustSignals | None:
        row = await self._pool.fetchrow(
            f"SELECT {_TRUST_COLUMNS} FROM user_trust_signals WHERE user_id = $1",
            user_id,
        )
        return _row_to_trust(row) if row else None

    async def upsert_trust_signals(self, signals: TrustSignals) -> TrustSignals:
        row = await self._pool.fetchrow(
            f"""
            INSERT INTO user_trust_signals ({_TRUST_COLUMNS})
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
            ON CONFLICT (user_id) DO UPDATE SET
                shows_up_consistently = EXCLUDED.shows_up_consistently,
                communicates_with_care = EXCLUDED.communicates_with_care,
                community_trusted = EXCLUDED.community_trusted,
                verified_identity = EXCLUDED.verified_identity,
                thoughtful_closer = EXCLUDED.thoughtful_closer,
                profile_completeness = EXCLUDED.profile_completeness,
                last_calculated_at = EXCLUDED.last_calculated_at
            RETURNING {_TRUST_COLUMNS}
            """,
            signals.user_id,
            signals.shows_up_consistently,
            signals.communicates_with_care,
            signals.community_trusted,
            signals.verified_identity,
            signals.thoughtful_closer,
            signals.profile_completeness,
            signals.last_calculated_at,
        )
        if row is None:  # pragma: no cover - asyncpg always returns a row for RETURNING
            raise RuntimeError("Failed to upsert user_trust_signals")
        return _row_to_trust(row)

    # profiles

    async def get_pause_state(self, user_id: str) -> PauseState | None:
        row = await self._pool.fetchrow(
            "SELECT is_paused, pause_reason, paused_at FROM profiles WHERE id = $1",
            user_id,
        )
        if row is None:
            return None
        return PauseState(
            is_paused=bool(row["is_paused"]),
            pause_reason=row["pause_reason"],
            paused_at=row["paused_at"],
        )

    async def pause_if_idle(
        self, user_id: str, *, reason: str, now: datetime, active_since: datetime
    ) -> tuple[bool, int]:
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                await _lock(conn, _admission_key(user_id))
                count = int(await conn.fetchval(_COUNT_ACTIVE_SQL, user_id, _COUNTED, active_since) or 0)
                if count > 0:
                    return False, count
                await conn.execute(
                    "UPDATE profiles SET is_paused = TRUE, pause_reason = $2, paused_at = $3 WHERE id = $1",
                    user_id,
                    reason,
                    now,
                )
        return True, 0

    async def resume(self, user_id: str) -> PauseState:
        await self._pool.execute(
            "UPDATE profiles SET is_paused = FALSE, pause_reason = NULL, paused_at = NULL WHERE id = $1",
            user_id,
        )
        return PauseState()
