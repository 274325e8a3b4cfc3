"""Redis-backed fixed-window budgets for policy RPC callers."""

from __future__ import annotations

import math
import time
from typing import Optional

from blossom.infra.redis import redis_client
from blossom.settings import settings


class RateLimitExceeded(Exception):
	"""Raised when a caller has spent its budget for the current window."""

	def __init__(self, reason: str = "rate_limited") -> None:
		super().__init__(reason)
		self.reason = reason


async def allow(
	kind: str,
	actor_id: str,
	*,
	limit: int,
	window_seconds: int = 60,
	now: Optional[float] = None,
) -> bool:
	"""Return True when the operation is still within the allowed budget."""

	if limit <= 0:
		return False
	now = now or time.time()
	window = max(1, int(window_seconds))
	slot = int(math.floor(now / window))
	key = f"rl:{kind}:{actor_id}:{slot}"
	async with redis_client.pipeline(transaction=True) as pipe:
		pipe.incr(key)
		pipe.expire(key, window)
		count, _ = await pipe.execute()
	return int(count) <= limit


async def enforce_rpc_budget(actor_id: str, *, now: Optional[float] = None) -> None:
	"""Count one policy RPC against the caller's per-minute budget."""

	if not await allow("rpc", actor_id, limit=settings.rpc_rate_limit_per_minute, now=now):
		raise RateLimitExceeded()
