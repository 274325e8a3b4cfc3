"""Liveness and readiness probes.

Readiness requires Redis (RPC budgets), Postgres with the policy schema applied,
and a loadable conversation policy.
"""

from __future__ import annotations

import asyncio
import logging
from time import perf_counter
from typing import Any, Dict, Tuple

from blossom.domain.conversations.policy_config import default_policy
from blossom.infra import postgres
from blossom.infra.redis import redis_client
from blossom.obs import metrics

LOGGER = logging.getLogger(__name__)

REQUIRED_MIGRATION = "0001"


def _elapsed_ms(start: float) -> float:
	return round((perf_counter() - start) * 1000, 2)


async def _redis_status(timeout: float = 0.2) -> Dict[str, Any]:
	start = perf_counter()
	try:
		await asyncio.wait_for(redis_client.ping(), timeout=timeout)
	except Exception as exc:  # pragma: no cover - depends on runtime
		metrics.mark_redis(False)
		LOGGER.warning("Redis readiness check failed", exc_info=True)
		return {"ok": False, "error": str(exc)}
	metrics.mark_redis(True)
	return {"ok": True, "latency_ms": _elapsed_ms(start)}


async def _postgres_status(timeout: float = 0.3) -> Dict[str, Any]:
	start = perf_counter()
	try:
		pool = await postgres.get_pool()
		async with pool.acquire() as conn:
			version = await asyncio.wait_for(
				conn.fetchval("SELECT MAX(version) FROM schema_migrations"),
				timeout=timeout,
			)
	except Exception as exc:  # pragma: no cover - depends on runtime
		metrics.mark_postgres(False)
		LOGGER.warning("Postgres readiness check failed", exc_info=True)
		return {"ok": False, "error": str(exc)}
	metrics.mark_postgres(True)
	current = str(version) if version is not None else None
	return {
		"ok": current is not None and current >= REQUIRED_MIGRATION,
		"latency_ms": _elapsed_ms(start),
		"migration": current,
		"required": REQUIRED_MIGRATION,
	}


def _policy_status() -> Dict[str, Any]:
	try:
		policy = default_policy()
	except (OSError, ValueError) as exc:
		LOGGER.error("conversation policy failed to load", exc_info=True)
		return {"ok": False, "error": str(exc)}
	return {"ok": True, "max_active_conversations": policy.max_active_conversations}


async def liveness() -> Dict[str, Any]:
	return {"status": "ok"}


async def readiness() -> Tuple[int, Dict[str, Any]]:
	checks = {
		"redis": await _redis_status(),
		"postgres": await _postgres_status(),
		"policy": _policy_status(),
	}
	ok = all(check.get("ok") for check in checks.values())
	return (200 if ok else 503, {"status": "ok" if ok else "degraded", "checks": checks})
