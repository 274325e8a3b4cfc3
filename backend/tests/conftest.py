import asyncio
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from fakeredis.aioredis import FakeRedis

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from blossom.domain import container
from blossom.domain.conversations.models import ConversationState
from blossom.domain.conversations.policy_config import PolicyConfig
from blossom.domain.conversations.repository import InMemoryPolicyRepository
from blossom.infra import postgres
from blossom.main import app
from blossom.settings import settings

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)
SERVICE_KEY = "test-service-role-key"


# Ensure a selector-based event loop policy on Windows to avoid Proactor issues with async IO
if hasattr(asyncio, "WindowsSelectorEventLoopPolicy"):
	try:
		asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
	except Exception:
		# Non-fatal; proceed with default policy
		pass


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from blossom.infra.redis import redis_client, set_redis_client
	original = redis_client.client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		set_redis_client(original)
		await client.flushall()


@pytest.fixture(autouse=True)
def patch_postgres(monkeypatch):
	async def _noop():
		return None

	monkeypatch.setattr(postgres, "init_pool", _noop)
	monkeypatch.setattr(postgres, "close_pool", _noop)
	monkeypatch.setattr(container, "configure_postgres", lambda *args, **kwargs: None)


@pytest.fixture(autouse=True)
def force_test_settings():
	"""Ensure a consistent test environment.

	API tests authenticate via the X-User-Id header, which is only accepted in
	dev mode. No service key is configured unless a test asks for one.
	"""
	original_env = settings.environment
	original_key = settings.service_role_key
	original_limit = settings.rpc_rate_limit_per_minute
	settings.environment = "dev"
	settings.service_role_key = None
	settings.rpc_rate_limit_per_minute = 1000
	try:
		yield
	finally:
		settings.environment = original_env
		settings.service_role_key = original_key
		settings.rpc_rate_limit_per_minute = original_limit


@pytest.fixture
def now():
	return NOW


@pytest.fixture
def clock():
	return lambda: NOW


@pytest.fixture
def policy():
	return PolicyConfig()


@pytest.fixture(autouse=True)
def repo(clock, policy):
	repository = InMemoryPolicyRepository()
	container.configure(repository=repository, policy=policy, clock=clock)
	return repository


@pytest.fixture
def seed(repo):
	"""Create a conversation whose latest message was sent ``hours_ago`` by ``sender``."""

	def _seed(
		user_a: str,
		user_b: str,
		*,
		sender: str | None = None,
		hours_ago: float | None = None,
		status: ConversationState = ConversationState.ACTIVE,
	):
		age = timedelta(hours=hours_ago if hours_ago is not None else 1)
		conversation = repo.add_conversation(
			user_a,
			user_b,
			status=status,
			created_at=NOW - age - timedelta(hours=1),
		)
		if sender is not None:
			repo.add_message(conversation.id, sender, NOW - age)
		return conversation

	return _seed


@pytest.fixture
def service_key():
	settings.service_role_key = SERVICE_KEY
	return {"Authorization": f"Bearer {SERVICE_KEY}"}


@pytest_asyncio.fixture
async def api_client():
	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://testserver") as client:
		yield client
