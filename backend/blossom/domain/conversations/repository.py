"""Storage contracts for the conversation policy and an in-memory reference store."""

from __future__ import annotations

import uuid
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Protocol, Sequence

from blossom.domain.conversations import lifecycle
from blossom.domain.conversations.exceptions import ConversationNotFound
from blossom.domain.conversations.lifecycle import LifecycleEvent
from blossom.domain.conversations.models import (
    COUNTED_STATES,
    AccountFacts,
    AwaitingReply,
    Conversation,
    ConversationState,
    Message,
    Notification,
    NotificationKind,
    PauseState,
    ResponsePattern,
    TrustSignals,
)

ScoreFn = Callable[[int, int], float]


class ConversationRepository(Protocol):
    """Conversations, messages and admission."""

    async def get_match(self, match_id: str) -> tuple[str, str] | None:
        ...

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        ...

    async def count_active(self, user_id: str, *, active_since: datetime) -> int:
        ...

    async def create_if_admitted(
        self,
        user_id: str,
        match_id: str,
        *,
        max_active: int,
        active_since: datetime,
        now: datetime,
    ) -> tuple[Conversation | None, int]:
        """Create a conversation unless ``user_id`` is at the ceiling.

        A match has at most one open conversation: when one exists it is
        returned as-is without consulting the ceiling. Returns the conversation
        (or None when rejected) and the active count observed when the decision
        was made.
        """
        ...

    async def record_message(self, conversation_id: str, sender_id: str, sent_at: datetime) -> Conversation:
        """Store a message; the sender's first message counts the conversation toward their history."""
        ...

    async def list_awaiting_reply(
        self,
        *,
        older_than: datetime,
        newer_than: datetime | None = None,
        silent_user_id: str | None = None,
        limit: int | None = None,
    ) -> Sequence[AwaitingReply]:
        ...

    async def transition(
        self, conversation_id: str, event: LifecycleEvent, *, now: datetime
    ) -> Conversation | None:
        """Apply ``event`` when the current state allows it, else return None."""
        ...

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
        """Close and credit the closer in one unit of work; None when not closable."""
        ...

    async def record_ghosting(
        self, candidate: AwaitingReply, *, now: datetime, score: ScoreFn
    ) -> ResponsePattern | None:
        """Mark the conversation ghosted and charge the silent user atomically.

        Returns None when the conversation is no longer in a counted state or
        has received a reply since it was selected.
        """
        ...

    async def claim_reminder(
        self, conversation_id: str, *, now: datetime, cooldown: timedelta
    ) -> tuple[bool, datetime | None]:
        """Set reminder_sent_at=now unless set within ``cooldown``.

        Returns whether the claim succeeded and the previous value.
        """
        ...

    async def release_reminder(
        self, conversation_id: str, *, claimed_at: datetime, previous: datetime | None
    ) -> None:
        ...

    async def set_reminder_sent_at(self, conversation_id: str, value: datetime | None) -> None:
        ...


class NotificationRepository(Protocol):
    async def insert_notification(self, notification: Notification) -> Notification:
        ...

    async def create_nudge_unless_recent(
        self, notification: Notification, *, since: datetime
    ) -> Notification | None:
        """Insert unless a notification of the same kind exists for the pair since ``since``."""
        ...

    async def list_notifications(self, user_id: str, *, kind: NotificationKind | None = None) -> Sequence[Notification]:
        ...


class ResponsePatternRepository(Protocol):
    async def get_pattern(self, user_id: str) -> ResponsePattern | None:
        ...

    async def list_patterns_with_ghosting(self) -> Sequence[ResponsePattern]:
        ...

    async def list_recent_pattern_users(self, limit: int) -> Sequence[str]:
        ...

    async def get_account_facts(self, user_id: str) -> AccountFacts:
        ...

    async def get_trust_signals(self, user_id: str) -> TrustSignals | None:
        ...

    async def upsert_trust_signals(self, signals: TrustSignals) -> TrustSignals:
        ...


class ProfileRepository(Protocol):
    async def get_pause_state(self, user_id: str) -> PauseState | None:
        ...

    async def pause_if_idle(
        self, user_id: str, *, reason: str, now: datetime, active_since: datetime
    ) -> tuple[bool, int]:
        """Pause the profile when it has no active conversations.

        Returns whether the pause was applied and the active count observed.
        """
        ...

    async def resume(self, user_id: str) -> PauseState:
        ...


class PolicyRepository(
    ConversationRepository,
    NotificationRepository,
    ResponsePatternRepository,
    ProfileRepository,
    Protocol,
):
    """Everything the policy store, detector, calculator and dispatchers need."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryPolicyRepository(PolicyRepository):
    """Reference repository used in tests and developer environments.

    Every method completes without yielding to the event loop, so each call is
    atomic with respect to concurrent callers in the same loop.
    """

    def __init__(self) -> None:
        self.profiles: dict[str, dict] = {}
        self.matches: dict[str, tuple[str, str]] = {}
        self.conversations: dict[str, Conversation] = {}
        self.messages: list[Message] = []
        self.patterns: dict[str, ResponsePattern] = {}
        self.trust: dict[str, TrustSignals] = {}
        self.notifications: list[Notification] = []

    # -- seeding helpers -------------------------------------------------

    def add_profile(
        self,
        user_id: str,
        *,
        full_name: str | None = None,
        verified: bool = False,
        report_count: int = 0,
        profile_completeness: int = 0,
    ) -> None:
        self.profiles[user_id] = {
            "full_name": full_name,
            "verified": verified,
            "report_count": report_count,
            "profile_completeness": profile_completeness,
            "pause": PauseState(),
        }

    def add_match(self, user_a: str, user_b: str, *, match_id: str | None = None) -> str:
        mid = match_id or str(uuid.uuid4())
        self.matches[mid] = (user_a, user_b)
        for uid in (user_a, user_b):
            if uid not in self.profiles:
                self.add_profile(uid)
        return mid

    def add_conversation(
        self,
        user_a: str,
        user_b: str,
        *,
        status: ConversationState = ConversationState.ACTIVE,
        created_at: datetime | None = None,
        updated_at: datetime | None = None,
        reminder_sent_at: datetime | None = None,
        conversation_id: str | None = None,
    ) -> Conversation:
        created = created_at or _utcnow()
        match_id = self.add_match(user_a, user_b)
        conversation = Conversation(
            id=conversation_id or str(uuid.uuid4()),
            match_id=match_id,
            user_a=user_a,
            user_b=user_b,
            status=status,
            created_at=created,
            updated_at=updated_at or created,
            reminder_sent_at=reminder_sent_at,
        )
        self.conversations[conversation.id] = conversation
        return conversation

    def add_message(self, conversation_id: str, sender_id: str, sent_at: datetime) -> None:
        conversation = self.conversations[conversation_id]
        self.messages.append(Message(conversation_id=conversation_id, sender_id=sender_id, created_at=sent_at))
        if sent_at > conversation.updated_at:
            conversation.updated_at = sent_at
        conversation.expected_responder_id = conversation.other_user(sender_id)

    def add_pattern(self, pattern: ResponsePattern) -> None:
        self.patterns[pattern.user_id] = pattern

    # -- conversations ---------------------------------------------------

    def _count_active(self, user_id: str, active_since: datetime) -> int:
        return sum(
            1
            for conv in self.conversations.values()
            if conv.involves(user_id) and conv.status in COUNTED_STATES and conv.updated_at >= active_since
        )

    def _last_message(self, conversation_id: str) -> Message | None:
        latest: Message | None = None
        for message in self.messages:
            if message.conversation_id != conversation_id or message.deleted:
                continue
            if latest is None or message.created_at > latest.created_at:
                latest = message
        return latest

    def _has_written(self, conversation_id: str, user_id: str) -> bool:
        return any(
            message.conversation_id == conversation_id and message.sender_id == user_id
            for message in self.messages
        )

    def _open_for_match(self, match_id: str) -> Conversation | None:
        for conversation in self.conversations.values():
            if conversation.match_id == match_id and conversation.status in COUNTED_STATES:
                return conversation
        return None

    def _require(self, conversation_id: str) -> Conversation:
        conversation = self.conversations.get(conversation_id)
        if conversation is None:
            raise ConversationNotFound()
        return conversation

    def _pattern(self, user_id: str) -> ResponsePattern:
        pattern = self.patterns.get(user_id)
        if pattern is None:
            pattern = ResponsePattern(user_id=user_id)
            self.patterns[user_id] = pattern
        return pattern

    async def get_match(self, match_id: str) -> tuple[str, str] | None:
        return self.matches.get(match_id)

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        conversation = self.conversations.get(conversation_id)
        return replace(conversation) if conversation else None

    async def count_active(self, user_id: str, *, active_since: datetime) -> int:
        return self._count_active(user_id, active_since)

    async def create_if_admitted(
        self,
        user_id: str,
        match_id: str,
        *,
        max_active: int,
        active_since: datetime,
        now: datetime,
    ) -> tuple[Conversation | None, int]:
        user_a, user_b = self.matches[match_id]
        count = self._count_active(user_id, active_since)
        existing = self._open_for_match(match_id)
        if existing is not None:
            return replace(existing), count
        if count >= max_active:
            return None, count
        conversation = Conversation(
            id=str(uuid.uuid4()),
            match_id=match_id,
            user_a=user_a,
            user_b=user_b,
            status=ConversationState.ACTIVE,
            created_at=now,
            updated_at=now,
        )
        self.conversations[conversation.id] = conversation
        return replace(conversation), count

    async def record_message(self, conversation_id: str, sender_id: str, sent_at: datetime) -> Conversation:
        conversation = self._require(conversation_id)
        if not self._has_written(conversation_id, sender_id):
            self._pattern(sender_id).total_conversations += 1
        self.add_message(conversation_id, sender_id, sent_at)
        if lifecycle.can_apply(conversation.status, LifecycleEvent.REPLY):
            conversation.status = lifecycle.apply(conversation.status, LifecycleEvent.REPLY)
        return replace(conversation)

    async def list_awaiting_reply(
        self,
        *,
        older_than: datetime,
        newer_than: datetime | None = None,
        silent_user_id: str | None = None,
        limit: int | None = None,
    ) -> Sequence[AwaitingReply]:
        rows: list[AwaitingReply] = []
        for conversation in self.conversations.values():
            if conversation.status not in COUNTED_STATES:
                continue
            last = self._last_message(conversation.id)
            if last is None or last.created_at >= older_than:
                continue
            if newer_than is not None and last.created_at < newer_than:
                continue
            silent = conversation.other_user(last.sender_id)
            if silent_user_id is not None and silent != silent_user_id:
                continue
            rows.append(
                AwaitingReply(
                    conversation_id=conversation.id,
                    silent_user_id=silent,
                    waiting_user_id=last.sender_id,
                    waiting_user_name=self.profiles.get(last.sender_id, {}).get("full_name"),
                    last_message_at=last.created_at,
                )
            )
        rows.sort(key=lambda row: row.last_message_at)
        return rows[:limit] if limit is not None else rows

    async def transition(
        self, conversation_id: str, event: LifecycleEvent, *, now: datetime
    ) -> Conversation | None:
        conversation = self._require(conversation_id)
        if not lifecycle.can_apply(conversation.status, event):
            return None
        conversation.status = lifecycle.apply(conversation.status, event)
        return replace(conversation)

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
        conversation = self._require(conversation_id)
        if not lifecycle.can_apply(conversation.status, LifecycleEvent.CLOSE):
            return None
        conversation.status = lifecycle.apply(conversation.status, LifecycleEvent.CLOSE)
        conversation.closed_at = now
        conversation.closed_by = user_id
        conversation.closure_reason = reason
        conversation.closure_message = message
        pattern = self._pattern(user_id)
        pattern.graceful_closures += 1
        if not self._has_written(conversation_id, user_id):
            pattern.total_conversations += 1
        pattern.visibility_score = score(pattern.ghosted_count, pattern.graceful_closures)
        pattern.last_calculated_at = now
        return replace(conversation), replace(pattern)

    async def record_ghosting(
        self, candidate: AwaitingReply, *, now: datetime, score: ScoreFn
    ) -> ResponsePattern | None:
        conversation = self.conversations.get(candidate.conversation_id)
        if conversation is None or not lifecycle.can_apply(conversation.status, LifecycleEvent.GHOST):
            return None
        last = self._last_message(conversation.id)
        if last is None or last.created_at != candidate.last_message_at:
            return None
        conversation.status = lifecycle.apply(conversation.status, LifecycleEvent.GHOST)
        conversation.ghosted_user_id = candidate.silent_user_id
        conversation.ghosted_at = now
        pattern = self._pattern(candidate.silent_user_id)
        pattern.ghosted_count += 1
        if not self._has_written(conversation.id, candidate.silent_user_id):
            pattern.total_conversations += 1
        pattern.visibility_score = score(pattern.ghosted_count, pattern.graceful_closures)
        pattern.last_calculated_at = now
        return replace(pattern)

    async def claim_reminder(
        self, conversation_id: str, *, now: datetime, cooldown: timedelta
    ) -> tuple[bool, datetime | None]:
        conversation = self._require(conversation_id)
        previous = conversation.reminder_sent_at
        if previous is not None and previous > now - cooldown:
            return False, previous
        conversation.reminder_sent_at = now
        return True, previous

    async def release_reminder(
        self, conversation_id: str, *, claimed_at: datetime, previous: datetime | None
    ) -> None:
        conversation = self._require(conversation_id)
        if conversation.reminder_sent_at == claimed_at:
            conversation.reminder_sent_at = previous

    async def set_reminder_sent_at(self, conversation_id: str, value: datetime | None) -> None:
        self._require(conversation_id).reminder_sent_at = value

    # -- notifications ---------------------------------------------------

    async def insert_notification(self, notification: Notification) -> Notification:
        stored = replace(
            notification,
            id=notification.id or str(uuid.uuid4()),
            created_at=notification.created_at or _utcnow(),
        )
        self.notifications.append(stored)
        return stored

    async def create_nudge_unless_recent(
        self, notification: Notification, *, since: datetime
    ) -> Notification | None:
        for existing in self.notifications:
            if (
                existing.user_id == notification.user_id
                and existing.kind == notification.kind
                and existing.related_user_id == notification.related_user_id
                and existing.created_at is not None
                and existing.created_at >= since
            ):
                return None
        return await self.insert_notification(notification)

    async def list_notifications(self, user_id: str, *, kind: NotificationKind | None = None) -> Sequence[Notification]:
        return [
            item
            for item in self.notifications
            if item.user_id == user_id and (kind is None or item.kind == kind)
        ]

    # -- patterns and trust ----------------------------------------------

    async def get_pattern(self, user_id: str) -> ResponsePattern | None:
        pattern = self.patterns.get(user_id)
        return replace(pattern) if pattern else None

    async def list_patterns_with_ghosting(self) -> Sequence[ResponsePattern]:
        return [replace(p) for p in self.patterns.values() if p.ghosted_count > 0]

    async def list_recent_pattern_users(self, limit: int) -> Sequence[str]:
        epoch = datetime.min.replace(tzinfo=timezone.utc)
        ordered = sorted(
            self.patterns.values(),
            key=lambda p: p.last_calculated_at or epoch,
            reverse=True,
        )
        return [p.user_id for p in ordered[:limit]]

    async def get_account_facts(self, user_id: str) -> AccountFacts:
        profile = self.profiles.get(user_id, {})
        return AccountFacts(
            verified_identity=bool(profile.get("verified", False)),
            report_count=int(profile.get("report_count", 0)),
            profile_completeness=int(profile.get("profile_completeness", 0)),
        )

    async def get_trust_signals(self, user_id: str) -> TrustSignals | None:
        signals = self.trust.get(user_id)
        return replace(signals) if signals else None

    async def upsert_trust_signals(self, signals: TrustSignals) -> TrustSignals:
        self.trust[signals.user_id] = replace(signals)
        return signals

    # -- profiles --------------------------------------------------------

    async def get_pause_state(self, user_id: str) -> PauseState | None:
        profile = self.profiles.get(user_id)
        return replace(profile["pause"]) if profile else None

    async def pause_if_idle(
        self, user_id: str, *, reason: str, now: datetime, active_since: datetime
    ) -> tuple[bool, int]:
        count = self._count_active(user_id, active_since)
        if count > 0:
            return False, count
        profile = self.profiles.setdefault(user_id, {"pause": PauseState()})
        profile["pause"] = PauseState(is_paused=True, pause_reason=reason, paused_at=now)
        return True, 0

    async def resume(self, user_id: str) -> PauseState:
        profile = self.profiles.setdefault(user_id, {"pause": PauseState()})
        profile["pause"] = PauseState()
        return replace(profile["pause"])
