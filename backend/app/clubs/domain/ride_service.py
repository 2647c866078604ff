"""Ride lifecycle: proposals, publishing, start, completion and cancellation."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional
from uuid import uuid4

from app.clubs.domain import models, policies, repo as repo_module
from app.clubs.domain.authorization import Action, AuthorizationService, build_context
from app.clubs.domain.clock import Clock, SystemClock
from app.clubs.domain.concurrency import RetryPolicy
from app.clubs.domain.exceptions import ClubsError, ErrorCode
from app.clubs.domain.repo import committed
from app.clubs.infra.redis_streams import ClubEventPublisher
from app.infra.auth import AuthenticatedUser

_LOG = logging.getLogger(__name__)


class RideService:
	"""Creates rides and moves them through draft -> published -> active -> completed."""

	def __init__(
		self,
		*,
		repository: repo_module.ClubsRepository,
		authz: AuthorizationService | None = None,
		clock: Clock | None = None,
		publisher: ClubEventPublisher | None = None,
		retry: RetryPolicy | None = None,
	) -> None:
		self.repo = repository
		self.authz = authz or AuthorizationService(repository)
		self.clock = clock or SystemClock()
		self.publisher = publisher or ClubEventPublisher()
		self.retry = retry or RetryPolicy()

	async def _require_ride(self, ride_id: str) -> models.Ride:
		ride = await self.repo.get_ride(ride_id)
		if ride is None:
			raise ClubsError(ErrorCode.RIDE_NOT_FOUND, ride_id=ride_id)
		return ride

	async def _publish(self, event: str, ride: models.Ride, actor_id: str) -> None:
		_LOG.info("clubs.ride_transition", extra={"event": event, "ride_id": ride.ride_id, "club_id": ride.club_id})
		await self.publisher.publish_ride_event(
			event,
			ride_id=ride.ride_id,
			club_id=ride.club_id,
			status=ride.status.value,
			actor_id=actor_id,
		)

	async def create_ride(
		self,
		user: AuthenticatedUser,
		club_id: str,
		*,
		title: str,
		description: str = "",
		start_time: Optional[datetime] = None,
		max_participants: Optional[int] = None,
		allow_waitlist: bool = True,
		publish: bool = False,
	) -> tuple[models.Ride, models.RideParticipation]:
		"""Create a ride with the creator as its confirmed captain.

		Members without publish rights always get a draft proposal, whatever
		``publish`` says.
		"""
		clean_title = policies.clean_text(title, "title", max_length=200)
		if not clean_title:
			raise ClubsError(ErrorCode.VALIDATION_ERROR, "ride title is required", field="title")
		capacity = policies.ensure_capacity(max_participants)
		if await self.repo.get_club(club_id) is None:
			raise ClubsError(ErrorCode.CLUB_NOT_FOUND, club_id=club_id)
		membership = await self.repo.get_membership(club_id, user.id)
		context = build_context(user, club_id, membership=membership)
		self.authz.require(user, context, Action.CREATE_RIDE)

		now = self.clock.now()
		ride = models.Ride(
			ride_id=str(uuid4()),
			club_id=club_id,
			title=clean_title,
			description=policies.clean_text(description, "description", max_length=2000) or "",
			status=models.RideStatus.DRAFT,
			created_by=user.id,
			start_time=start_time,
			max_participants=capacity,
			current_participants=1,
			allow_waitlist=allow_waitlist,
			created_at=now,
			updated_at=now,
		)
		ride_context = build_context(user, club_id, membership=membership, ride=ride)
		if publish and self.authz.authorize(user, ride_context, Action.PUBLISH_RIDE):
			ride = ride.model_copy(
				update={"status": models.RideStatus.PUBLISHED, "published_at": now, "published_by": user.id}
			)
		captain = models.RideParticipation(
			participation_id=str(uuid4()),
			ride_id=ride.ride_id,
			club_id=club_id,
			user_id=user.id,
			role=models.RideRole.CAPTAIN,
			status=models.ParticipationStatus.CONFIRMED,
			joined_at=now,
			updated_at=now,
		)
		await self.repo.transact([self.repo.put_ride(ride), self.repo.put_participation(captain)])
		ride = committed(ride)
		await self._publish("created", ride, user.id)
		return ride, committed(captain)

	async def _transition(
		self,
		user: AuthenticatedUser,
		ride_id: str,
		target: models.RideStatus,
		*,
		reason: Optional[str] = None,
	) -> models.Ride:
		clean_reason = policies.clean_text(reason, "reason")

		async def attempt() -> models.Ride:
			ride = await self._require_ride(ride_id)
			context = await self.authz.load_context(user, ride.club_id, ride=ride)
			if target == models.RideStatus.PUBLISHED:
				action = Action.PUBLISH_RIDE
			elif target == models.RideStatus.CANCELLED and ride.status != models.RideStatus.DRAFT:
				action = Action.CANCEL_RIDE
			else:
				# drafts can be discarded by whoever may manage them, including their creator
				action = Action.MANAGE_RIDE
			self.authz.require(user, context, action)
			policies.ensure_ride_transition(ride.status, target)
			now = self.clock.now()
			changes: dict[str, object] = {"status": target, "updated_at": now}
			if target == models.RideStatus.PUBLISHED:
				changes.update(published_at=now, published_by=user.id)
			elif target == models.RideStatus.CANCELLED:
				changes.update(cancelled_at=now, cancellation_reason=clean_reason)
			updated = ride.model_copy(update=changes)
			await self.repo.transact([self.repo.put_ride(updated)])
			return committed(updated)

		ride = await self.retry.run(f"ride.{target.value}", attempt)
		await self._publish(target.value, ride, user.id)
		return ride

	async def publish_ride(self, user: AuthenticatedUser, ride_id: str) -> models.Ride:
		return await self._transition(user, ride_id, models.RideStatus.PUBLISHED)

	async def start_ride(self, user: AuthenticatedUser, ride_id: str) -> models.Ride:
		return await self._transition(user, ride_id, models.RideStatus.ACTIVE)

	async def complete_ride(self, user: AuthenticatedUser, ride_id: str) -> models.Ride:
		return await self._transition(user, ride_id, models.RideStatus.COMPLETED)

	async def cancel_ride(self, user: AuthenticatedUser, ride_id: str, *, reason: Optional[str] = None) -> models.Ride:
		return await self._transition(user, ride_id, models.RideStatus.CANCELLED, reason=reason)

	async def update_details(
		self,
		user: AuthenticatedUser,
		ride_id: str,
		*,
		title: Optional[str] = None,
		description: Optional[str] = None,
		start_time: Optional[datetime] = None,
		allow_waitlist: Optional[bool] = None,
	) -> models.Ride:
		async def attempt() -> models.Ride:
			ride = await self._require_ride(ride_id)
			context = await self.authz.load_context(user, ride.club_id, ride=ride)
			self.authz.require(user, context, Action.MANAGE_RIDE)
			if ride.status in (models.RideStatus.COMPLETED, models.RideStatus.CANCELLED):
				raise ClubsError(ErrorCode.RIDE_NOT_OPEN, ride_id=ride_id, status=ride.status.value)
			changes: dict[str, object] = {"updated_at": self.clock.now()}
			if title is not None:
				clean_title = policies.clean_text(title, "title", max_length=200)
				if not clean_title:
					raise ClubsError(ErrorCode.VALIDATION_ERROR, "ride title is required", field="title")
				changes["title"] = clean_title
			if description is not None:
				changes["description"] = policies.clean_text(description, "description", max_length=2000) or ""
			if start_time is not None:
				changes["start_time"] = start_time
			if allow_waitlist is not None:
				changes["allow_waitlist"] = allow_waitlist
			updated = ride.model_copy(update=changes)
			await self.repo.transact([self.repo.put_ride(updated)])
			return committed(updated)

		return await self.retry.run("ride.update", attempt)

	async def get_ride(self, user: AuthenticatedUser, ride_id: str) -> models.Ride:
		ride = await self._require_ride(ride_id)
		context = await self.authz.load_context(user, ride.club_id, ride=ride)
		if ride.status == models.RideStatus.DRAFT and ride.created_by != user.id:
			self.authz.require(user, context, Action.VIEW_DRAFT_RIDES)
		else:
			self.authz.require(user, context, Action.VIEW_RIDES)
		return ride

	async def list_club_rides(
		self,
		user: AuthenticatedUser,
		club_id: str,
		*,
		status: models.RideStatus | str | None = None,
		limit: Optional[int] = None,
	) -> list[models.Ride]:
		status_filter = models.RideStatus.parse(status) if status is not None else None
		if status is not None and status_filter is None:
			raise ClubsError(ErrorCode.VALIDATION_ERROR, "unknown ride status", status=status)
		context = await self.authz.load_context(user, club_id)
		self.authz.require(user, context, Action.VIEW_RIDES)
		sees_drafts = self.authz.authorize(user, context, Action.VIEW_DRAFT_RIDES).allow
		rides = [
			ride
			for ride in await self.repo.list_club_rides(club_id)
			if (status_filter is None or ride.status == status_filter)
			and (ride.status != models.RideStatus.DRAFT or sees_drafts or ride.created_by == user.id)
		]
		rides.sort(key=lambda r: r.created_at, reverse=True)
		return rides[: policies.clamp_limit(limit)]


__all__ = ["RideService"]
