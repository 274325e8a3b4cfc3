"""Redis client holding the RPC rate-limit counters.

`redis_client` is a stable proxy; the client behind it can be swapped at
runtime (fakeredis in tests) without breaking references imported earlier.
"""

from __future__ import annotations

import redis.asyncio as redis

from blossom.settings import settings


class RedisProxy:
	"""Forwards attribute access to an underlying Redis client."""

	def __init__(self, client: redis.Redis):
		self._client: redis.Redis = client

	def set_client(self, client: redis.Redis) -> None:
		self._client = client

	@property
	def client(self) -> redis.Redis:
		return self._client

	def __getattr__(self, item):
		return getattr(self._client, item)


def _connect() -> redis.Redis:
	return redis.from_url(
		settings.redis_url,
		decode_responses=True,
		socket_timeout=settings.rpc_timeout_seconds,
		health_check_interval=30,
	)


redis_client: RedisProxy = RedisProxy(_connect())


def set_redis_client(client: redis.Redis) -> None:
	redis_client.set_client(client)


async def close_redis() -> None:
	await redis_client.client.aclose()
