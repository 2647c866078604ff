import asyncio
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from fakeredis.aioredis import FakeRedis

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from app.clubs.container import build_services
from app.clubs.domain.clock import FrozenClock
from app.clubs.domain.concurrency import RetryPolicy
from app.clubs.infra.memory_store import InMemoryItemStore
from app.infra import postgres
from app.infra.auth import AuthenticatedUser
from app.main import app
from app.settings import settings


# Ensure a selector-based event loop policy on Windows to avoid Proactor issues with async IO
if hasattr(asyncio, "WindowsSelectorEventLoopPolicy"):
	try:
		asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
	except Exception:
		# Non-fatal; proceed with default policy
		pass


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from app.infra.redis import redis_client, set_redis_client
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


@pytest.fixture(autouse=True)
def force_test_settings():
	"""Ensure a consistent test environment.

	API tests authenticate via X-User-Id/X-User-Roles headers, which are only
	accepted in dev mode.
	"""
	original_env = settings.environment
	original_backend = settings.clubs_store_backend
	original_workers = settings.clubs_workers_enabled
	settings.environment = "dev"
	settings.clubs_store_backend = "memory"
	settings.clubs_workers_enabled = False
	try:
		yield
	finally:
		settings.environment = original_env
		settings.clubs_store_backend = original_backend
		settings.clubs_workers_enabled = original_workers


@pytest.fixture
def clock() -> FrozenClock:
	return FrozenClock(datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def store() -> InMemoryItemStore:
	return InMemoryItemStore()


@pytest.fixture
def services(store, clock):
	return build_services(store=store, clock=clock, retry=RetryPolicy(max_attempts=5, backoff_seconds=0))


@pytest_asyncio.fixture
async def api_client(services):
	app.state.clubs = services
	transport = ASGITransport(app=app)
	try:
		async with AsyncClient(transport=transport, base_url="http://testserver") as client:
			yield client
	finally:
		app.state.clubs = None


class ClubSeeder:
	"""Writes clubs, memberships and rides straight through the services and repository."""

	def __init__(self, services, clock) -> None:
		self.services = services
		self.clock = clock

	@staticmethod
	def user(user_id: str, *, email: str | None = None, roles: tuple[str, ...] = ()) -> AuthenticatedUser:
		return AuthenticatedUser(id=user_id, email=email, roles=roles)

	async def club(self, owner_id: str = "owner", *, requires_approval: bool = False):
		club, _ = await self.services.clubs.create_club(
			self.user(owner_id),
			name="Hill Riders",
			requires_approval=requires_approval,
		)
		return club

	async def member(self, club_id: str, user_id: str, role: str = "member", status: str = "active"):
		from uuid import uuid4

		from app.clubs.domain import models

		now = self.clock.now()
		membership = models.Membership(
			membership_id=str(uuid4()),
			club_id=club_id,
			user_id=user_id,
			role=models.ClubRole(role),
			status=models.MembershipStatus(status),
			joined_at=now,
			updated_at=now,
		)
		repo = self.services.repository
		await repo.transact([repo.put_membership(membership)])
		return await repo.get_membership(club_id, user_id)

	async def ride(
		self,
		club_id: str,
		creator_id: str = "owner",
		*,
		max_participants: int | None = 3,
		allow_waitlist: bool = True,
		publish: bool = True,
	):
		ride, _ = await self.services.rides.create_ride(
			self.user(creator_id),
			club_id,
			title="Sunday loop",
			max_participants=max_participants,
			allow_waitlist=allow_waitlist,
			publish=publish,
		)
		return ride


@pytest.fixture
def seed(services, clock) -> ClubSeeder:
	return ClubSeeder(services, clock)
