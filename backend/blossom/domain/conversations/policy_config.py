"""Loading of the shared conversation policy configuration."""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from datetime import timedelta
from functools import lru_cache
from pathlib import Path
from typing import Mapping

import yaml

from blossom.domain.conversations import models


@dataclass(frozen=True, slots=True)
class PolicyConfig:
	"""Thresholds shared by the server procedures, the jobs and the client gate."""

	max_active_conversations: int = models.MAX_ACTIVE_CONVERSATIONS
	active_recency_days: int = models.ACTIVE_RECENCY_DAYS
	nudge_after_hours: int = models.NUDGE_AFTER_HOURS
	reminder_after_hours: int = models.REMINDER_AFTER_HOURS
	ghosting_after_days: int = models.GHOSTING_AFTER_DAYS
	nudge_cooldown_days: int = models.NUDGE_COOLDOWN_DAYS
	reminder_cooldown_hours: int = models.REMINDER_COOLDOWN_HOURS
	snooze_hours: int = models.SNOOZE_HOURS
	trust_batch_size: int = models.TRUST_BATCH_SIZE
	ghosting_batch_size: int = models.GHOSTING_BATCH_SIZE

	@property
	def active_window(self) -> timedelta:
		return timedelta(days=self.active_recency_days)

	@property
	def nudge_after(self) -> timedelta:
		return timedelta(hours=self.nudge_after_hours)

	@property
	def reminder_after(self) -> timedelta:
		return timedelta(hours=self.reminder_after_hours)

	@property
	def ghosting_after(self) -> timedelta:
		return timedelta(days=self.ghosting_after_days)

	@property
	def nudge_cooldown(self) -> timedelta:
		return timedelta(days=self.nudge_cooldown_days)

	@property
	def reminder_cooldown(self) -> timedelta:
		return timedelta(hours=self.reminder_cooldown_hours)

	@property
	def snooze(self) -> timedelta:
		return timedelta(hours=self.snooze_hours)

	def validate(self) -> "PolicyConfig":
		for item in fields(self):
			if int(getattr(self, item.name)) <= 0:
				raise ValueError(f"{item.name} must be positive")
		if self.nudge_after >= self.ghosting_after:
			raise ValueError("nudge_after_hours must fall before the ghosting cutoff")
		if self.reminder_after >= self.ghosting_after:
			raise ValueError("reminder_after_hours must fall before the ghosting cutoff")
		return self


def policy_from_mapping(data: Mapping[str, object]) -> PolicyConfig:
	known = {item.name for item in fields(PolicyConfig)}
	overrides: dict[str, int] = {}
	for key, value in data.items():
		if key not in known:
			raise ValueError(f"unknown policy setting: {key}")
		try:
			overrides[key] = int(value)  # type: ignore[arg-type]
		except (TypeError, ValueError):
			raise ValueError(f"policy setting {key} must be an integer") from None
	return replace(PolicyConfig(), **overrides).validate()


def load_policy_config(path: str | Path) -> PolicyConfig:
	"""Read the YAML policy file; a missing file yields the built-in defaults."""

	target = Path(path)
	if not target.exists():
		return PolicyConfig()
	with open(target, "r", encoding="utf-8") as handle:
		loaded = yaml.safe_load(handle) or {}
	if not isinstance(loaded, dict):
		raise ValueError("conversation policy config must be a mapping")
	section = loaded.get("conversation_policy", loaded)
	if not isinstance(section, dict):
		raise ValueError("conversation_policy must be a mapping")
	return policy_from_mapping(section)


@lru_cache(maxsize=1)
def default_policy() -> PolicyConfig:
	from blossom.settings import settings

	return load_policy_config(settings.policy_config_path)
