from __future__ import annotations

import pytest

from blossom.domain.conversations import lifecycle
from blossom.domain.conversations.exceptions import InvalidTransition
from blossom.domain.conversations.lifecycle import LifecycleEvent
from blossom.domain.conversations.models import COUNTED_STATES, ConversationState

S = ConversationState


@pytest.mark.parametrize(
    "current,event,expected",
    [
        (S.ACTIVE, LifecycleEvent.NUDGE, S.NUDGE_SENT),
        (S.NUDGE_SENT, LifecycleEvent.NUDGE, S.NUDGE_SENT),
        (S.NUDGE_SENT, LifecycleEvent.REPLY, S.ACTIVE),
        (S.ACTIVE, LifecycleEvent.GHOST, S.GHOSTED),
        (S.NUDGE_SENT, LifecycleEvent.CLOSE, S.CLOSED_GRACEFULLY),
        (S.GHOSTED, LifecycleEvent.ARCHIVE, S.ARCHIVED),
        (S.CLOSED_GRACEFULLY, LifecycleEvent.ARCHIVE, S.ARCHIVED),
    ],
)
def test_allowed_transitions(current, event, expected) -> None:
    assert lifecycle.can_apply(current, event)
    assert lifecycle.apply(current, event) is expected


@pytest.mark.parametrize(
    "current,event",
    [
        (S.GHOSTED, LifecycleEvent.GHOST),
        (S.CLOSED_GRACEFULLY, LifecycleEvent.GHOST),
        (S.ARCHIVED, LifecycleEvent.NUDGE),
        (S.GHOSTED, LifecycleEvent.REPLY),
        (S.CLOSED_GRACEFULLY, LifecycleEvent.CLOSE),
        (S.ARCHIVED, LifecycleEvent.ARCHIVE),
    ],
)
def test_rejected_transitions(current, event) -> None:
    assert not lifecycle.can_apply(current, event)
    with pytest.raises(InvalidTransition) as excinfo:
        lifecycle.apply(current, event)
    assert str(excinfo.value) == f"{event.value}_from_{current.value}"
    assert excinfo.value.reason == "invalid_transition"


def test_ghosting_only_starts_from_counted_states() -> None:
    assert lifecycle.source_states(LifecycleEvent.GHOST) == COUNTED_STATES


def test_each_event_has_one_target() -> None:
    assert lifecycle.target_state(LifecycleEvent.NUDGE) is S.NUDGE_SENT
    assert lifecycle.target_state(LifecycleEvent.REPLY) is S.ACTIVE
    assert lifecycle.target_state(LifecycleEvent.ARCHIVE) is S.ARCHIVED


def test_accepts_raw_values() -> None:
    assert lifecycle.apply("active", "close") is S.CLOSED_GRACEFULLY
