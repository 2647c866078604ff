"""Wiring for the clubs core.

One ``ClubsServices`` bundle is built per application (or per test) so every
service shares the same store, authorization service, clock, event publisher
and retry policy.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from app.clubs.domain.authorization import AuthorizationService
from app.clubs.domain.clock import Clock, SystemClock
from app.clubs.domain.club_service import ClubService
from app.clubs.domain.concurrency import RetryPolicy
from app.clubs.domain.invitation_service import InvitationService
from app.clubs.domain.membership_service import MembershipService
from app.clubs.domain.participation_service import ParticipationService
from app.clubs.domain.repo import ClubsRepository
from app.clubs.domain.ride_service import RideService
from app.clubs.infra.memory_store import InMemoryItemStore
from app.clubs.infra.postgres_store import PostgresItemStore
from app.clubs.infra.redis_streams import ClubEventPublisher
from app.clubs.infra.store import ItemStore
from app.settings import settings


@dataclass(slots=True)
class ClubsServices:
	store: ItemStore
	repository: ClubsRepository
	authz: AuthorizationService
	clock: Clock
	publisher: ClubEventPublisher
	retry: RetryPolicy
	clubs: ClubService
	memberships: MembershipService
	invitations: InvitationService
	rides: RideService
	participations: ParticipationService

	async def close(self) -> None:
		await self.store.close()


def default_store() -> ItemStore:
	if settings.clubs_store_backend == "memory":
		return InMemoryItemStore()
	return PostgresItemStore()


def build_services(
	*,
	store: Optional[ItemStore] = None,
	clock: Optional[Clock] = None,
	publisher: Optional[ClubEventPublisher] = None,
	retry: Optional[RetryPolicy] = None,
) -> ClubsServices:
	store = store or default_store()
	repository = ClubsRepository(store)
	authz = AuthorizationService(repository)
	clock = clock or SystemClock()
	publisher = publisher or ClubEventPublisher()
	retry = retry or RetryPolicy()
	shared = dict(repository=repository, authz=authz, clock=clock, publisher=publisher, retry=retry)
	memberships = MembershipService(**shared)
	return ClubsServices(
		store=store,
		repository=repository,
		authz=authz,
		clock=clock,
		publisher=publisher,
		retry=retry,
		clubs=ClubService(**shared),
		memberships=memberships,
		invitations=InvitationService(memberships=memberships, **shared),
		rides=RideService(**shared),
		participations=ParticipationService(**shared),
	)


def get_services(request: Request) -> ClubsServices:
	"""FastAPI dependency returning the bundle installed on ``app.state``."""
	services = getattr(request.app.state, "clubs", None)
	if services is None:
		services = build_services()
		request.app.state.clubs = services
	return services


__all__ = ["ClubsServices", "build_services", "default_store", "get_services"]
