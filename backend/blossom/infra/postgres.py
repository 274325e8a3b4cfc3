"""AsyncPG pool shared by the policy repository and the readiness probe."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import asyncpg

from blossom.settings import settings

logger = logging.getLogger(__name__)

_pool: Optional[asyncpg.pool.Pool] = None


def _pool_options() -> Dict[str, Any]:
	return {
		"dsn": settings.postgres_url,
		"min_size": settings.postgres_min_pool_size,
		"max_size": settings.postgres_max_pool_size,
		"ssl": "require" if settings.postgres_ssl else "disable",
		"command_timeout": settings.postgres_command_timeout,
		"server_settings": {"application_name": settings.service_name, "timezone": "UTC"},
	}


async def init_pool() -> asyncpg.pool.Pool:
	global _pool
	if _pool is None:
		_pool = await asyncpg.create_pool(**_pool_options())
		logger.info(
			"postgres pool ready",
			extra={"min_size": settings.postgres_min_pool_size, "max_size": settings.postgres_max_pool_size},
		)
	return _pool


async def get_pool() -> asyncpg.pool.Pool:
	if _pool is None:
		return await init_pool()
	return _pool


async def close_pool() -> None:
	global _pool
	if _pool is not None:
		await _pool.close()
		_pool = None
