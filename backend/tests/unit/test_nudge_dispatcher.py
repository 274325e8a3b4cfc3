from __future__ import annotations

from datetime import timedelta

import pytest

from blossom.domain import container
from blossom.domain.conversations.models import ConversationState, Notification, NotificationKind
from blossom.domain.conversations.repository import InMemoryPolicyRepository
from blossom.domain.conversations.service import PolicyStore
from blossom.domain.nudges import messages
from blossom.domain.nudges.dispatcher import GhostingReminderDispatcher


class _BrokenNotifications(InMemoryPolicyRepository):
    async def insert_notification(self, notification):
        raise RuntimeError("notifications table unavailable")


@pytest.mark.asyncio
async def test_soft_nudge_goes_to_silent_participant(seed, repo, now) -> None:
    repo.add_profile("bob", full_name="Bob")
    conversation = seed("alice", "bob", sender="bob", hours_ago=50)

    result = await container.get_soft_nudge_dispatcher().run()

    assert result.conversations_checked == 1
    assert result.nudges_sent == 1
    [notification] = repo.notifications
    assert notification.user_id == "alice"
    assert notification.kind is NotificationKind.NUDGE
    assert notification.title == messages.NUDGE_TITLE
    assert notification.message == "Bob is waiting to hear from you. Send a quick message!"
    assert notification.related_user_id == "bob"
    assert notification.created_at == now
    assert repo.conversations[conversation.id].status is ConversationState.NUDGE_SENT


@pytest.mark.asyncio
async def test_soft_nudge_respects_pair_cooldown(seed, repo) -> None:
    seed("alice", "bob", sender="bob", hours_ago=50)
    dispatcher = container.get_soft_nudge_dispatcher()
    await dispatcher.run()

    second = await dispatcher.run()

    assert second.conversations_checked == 1
    assert second.nudges_sent == 0
    assert second.skipped == 1
    assert len(repo.notifications) == 1


@pytest.mark.asyncio
async def test_soft_nudge_resumes_after_cooldown(seed, repo, now) -> None:
    seed("alice", "bob", sender="bob", hours_ago=50)
    repo.notifications.append(
        Notification(
            user_id="alice",
            kind=NotificationKind.NUDGE,
            title=messages.NUDGE_TITLE,
            message="old",
            related_user_id="bob",
            created_at=now - timedelta(days=4),
        )
    )
    result = await container.get_soft_nudge_dispatcher().run()
    assert result.nudges_sent == 1


@pytest.mark.asyncio
async def test_soft_nudge_falls_back_to_generic_name(seed, repo) -> None:
    seed("alice", "bob", sender="bob", hours_ago=50)
    await container.get_soft_nudge_dispatcher().run()
    assert repo.notifications[0].message.startswith("Someone is waiting")


@pytest.mark.asyncio
async def test_reminder_only_after_threshold(seed, repo, now) -> None:
    repo.add_profile("carol", full_name="Carol")
    seed("alice", "bob", sender="bob", hours_ago=50)
    owed = seed("carol", "dan", sender="carol", hours_ago=80)

    result = await container.get_reminder_dispatcher().run()

    assert result.conversations_checked == 1
    assert result.nudges_sent == 1
    [notification] = repo.notifications
    assert notification.user_id == "dan"
    assert notification.kind is NotificationKind.GHOSTING_REMINDER
    assert notification.title == messages.REMINDER_TITLE
    assert notification.message == (
        "Carol reached out 3 days ago. At Blossom, we believe everyone deserves a response."
    )
    assert notification.related_user_id is None
    stored = repo.conversations[owed.id]
    assert stored.reminder_sent_at == now
    assert stored.status is ConversationState.NUDGE_SENT


@pytest.mark.asyncio
async def test_reminder_not_repeated_within_cooldown(seed, repo) -> None:
    seed("carol", "dan", sender="carol", hours_ago=80)
    dispatcher = container.get_reminder_dispatcher()
    await dispatcher.run()

    second = await dispatcher.run()

    assert second.nudges_sent == 0
    assert second.skipped == 1
    assert len(repo.notifications) == 1


@pytest.mark.asyncio
async def test_reminder_sent_again_after_cooldown(seed, repo, now) -> None:
    owed = seed("carol", "dan", sender="carol", hours_ago=80)
    repo.conversations[owed.id].reminder_sent_at = now - timedelta(hours=25)
    result = await container.get_reminder_dispatcher().run()
    assert result.nudges_sent == 1


@pytest.mark.asyncio
async def test_snoozed_conversation_gets_no_reminder(seed, repo) -> None:
    owed = seed("carol", "dan", sender="carol", hours_ago=80)
    await container.get_policy_store().snooze_reminder("dan", owed.id)

    result = await container.get_reminder_dispatcher().run()

    assert result.nudges_sent == 0
    assert result.skipped == 1
    assert repo.notifications == []


@pytest.mark.asyncio
async def test_failed_reminder_releases_claim(policy, clock, now) -> None:
    repository = _BrokenNotifications()
    conversation = repository.add_conversation("carol", "dan", created_at=now - timedelta(hours=90))
    repository.add_message(conversation.id, "carol", now - timedelta(hours=80))
    store = PolicyStore(repository, policy, clock=clock)
    dispatcher = GhostingReminderDispatcher(store=store, repository=repository, policy=policy, clock=clock)

    result = await dispatcher.run()

    assert result.failed == 1
    assert result.nudges_sent == 0
    stored = repository.conversations[conversation.id]
    assert stored.reminder_sent_at is None
    assert stored.status is ConversationState.ACTIVE
