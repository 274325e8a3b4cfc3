"""Notification copy for nudges and reminders."""

from __future__ import annotations

from typing import Optional

NUDGE_TITLE = "Don't leave them hanging! \U0001f4ac"
REMINDER_TITLE = "Someone is waiting for you"
NO_REMINDERS_MESSAGE = "No conversations need reminders"

_FALLBACK_NAME = "Someone"


def nudge_message(other_user_name: Optional[str]) -> str:
	return f"{other_user_name or _FALLBACK_NAME} is waiting to hear from you. Send a quick message!"


def reminder_message(other_user_name: Optional[str], days_inactive: int) -> str:
	return (
		f"{other_user_name or _FALLBACK_NAME} reached out {days_inactive} days ago. "
		"At Blossom, we believe everyone deserves a response."
	)


def reminders_sent_message(count: int) -> str:
	return f"Sent {count} ghosting reminders"
