"""Capacity-bounded ride participation with an ordered waitlist.

Every mutation reads the ride and its roster, computes the new participation
rows, recomputes the ride's confirmed and waitlisted counts from those rows and
writes everything in one transaction conditioned on the ride's version. Two
racing joins therefore cannot both take the last seat: the loser's write fails,
it reloads the roster and lands on the waitlist (or gets ``ride_full``).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional
from uuid import uuid4

from app.clubs.domain import models, policies, repo as repo_module
from app.clubs.domain.authorization import Action, AuthContext, AuthorizationService
from app.clubs.domain.capabilities import Capability
from app.clubs.domain.clock import Clock, SystemClock
from app.clubs.domain.concurrency import RetryPolicy
from app.clubs.domain.exceptions import ClubsError, ErrorCode
from app.clubs.domain.repo import committed
from app.clubs.infra.redis_streams import ClubEventPublisher
from app.clubs.infra.store import WriteOp
from app.infra.auth import AuthenticatedUser
from app.obs import metrics as obs_metrics

_LOG = logging.getLogger(__name__)

_CONFIRMED = models.ParticipationStatus.CONFIRMED
_WAITLISTED = models.ParticipationStatus.WAITLISTED


@dataclass(slots=True)
class _Roster:
	ride: models.Ride
	participations: dict[str, models.RideParticipation]

	def get(self, user_id: str) -> Optional[models.RideParticipation]:
		return self.participations.get(user_id)

	def waitlist(self) -> list[models.RideParticipation]:
		entries = [p for p in self.participations.values() if p.status == _WAITLISTED]
		return sorted(entries, key=lambda p: (p.waitlist_position or 0, p.joined_at))

	def next_waitlist_position(self) -> int:
		positions = [p.waitlist_position or 0 for p in self.participations.values() if p.status == _WAITLISTED]
		return max(positions, default=0) + 1

	def captain(self) -> Optional[models.RideParticipation]:
		for participation in self.participations.values():
			if participation.is_live and participation.role == models.RideRole.CAPTAIN:
				return participation
		return None

	def with_changes(self, changes: dict[str, models.RideParticipation]) -> "_Roster":
		return _Roster(self.ride, {**self.participations, **changes})


@dataclass(slots=True)
class ParticipationResult:
	"""Outcome of a participation change: the ride after the write and who moved."""

	ride: models.Ride
	participation: Optional[models.RideParticipation] = None
	promoted: list[models.RideParticipation] = field(default_factory=list)


def _counts(participations: Iterable[models.RideParticipation]) -> tuple[int, int]:
	confirmed = waitlisted = 0
	for participation in participations:
		if participation.status == _CONFIRMED:
			confirmed += 1
		elif participation.status == _WAITLISTED:
			waitlisted += 1
	return confirmed, waitlisted


class ParticipationService:
	"""Admits, withdraws, removes and promotes ride participants."""

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

	# ------------------------------------------------------------------
	# Helpers

	async def _load_roster(self, ride_id: str) -> _Roster:
		ride = await self.repo.get_ride(ride_id)
		if ride is None:
			raise ClubsError(ErrorCode.RIDE_NOT_FOUND, ride_id=ride_id)
		participations = await self.repo.list_participations(ride_id)
		return _Roster(ride, {p.user_id: p for p in participations})

	async def _context(self, user: AuthenticatedUser, roster: _Roster) -> AuthContext:
		return await self.authz.load_context(
			user,
			roster.ride.club_id,
			ride=roster.ride,
			participation=roster.get(user.id),
		)

	def _require_live(self, roster: _Roster, user_id: str) -> models.RideParticipation:
		participation = roster.get(user_id)
		if participation is None or not participation.is_live:
			raise ClubsError(ErrorCode.PARTICIPATION_NOT_FOUND, ride_id=roster.ride.ride_id, user_id=user_id)
		return participation

	def _ensure_exit_allowed(self, ride: models.Ride) -> None:
		if ride.status not in policies.RIDE_OPEN_FOR_EXIT:
			raise ClubsError(ErrorCode.RIDE_NOT_OPEN, ride_id=ride.ride_id, status=ride.status.value)

	def _promotions(self, roster: _Roster, now: datetime) -> dict[str, models.RideParticipation]:
		"""Move the earliest waitlisted entries into any free confirmed seats."""
		confirmed, _ = _counts(roster.participations.values())
		limit = roster.ride.max_participants
		promoted: dict[str, models.RideParticipation] = {}
		for entry in roster.waitlist():
			if limit is not None and confirmed >= limit:
				break
			promoted[entry.user_id] = entry.model_copy(
				update={"status": _CONFIRMED, "waitlist_position": None, "updated_at": now}
			)
			confirmed += 1
		return promoted

	def _transfer_ops(
		self,
		roster: _Roster,
		leaving: models.RideParticipation,
		transfer_captain_to: Optional[str],
		now: datetime,
	) -> dict[str, models.RideParticipation]:
		if leaving.role != models.RideRole.CAPTAIN:
			return {}
		if not transfer_captain_to or transfer_captain_to == leaving.user_id:
			raise ClubsError(
				ErrorCode.CANNOT_REMOVE_CAPTAIN,
				"transfer captaincy to another confirmed participant first",
				ride_id=roster.ride.ride_id,
			)
		successor = roster.get(transfer_captain_to)
		if successor is None or successor.status != _CONFIRMED:
			raise ClubsError(
				ErrorCode.INVALID_PARTICIPATION_STATUS,
				"the new captain must be a confirmed participant",
				user_id=transfer_captain_to,
			)
		return {
			successor.user_id: successor.model_copy(update={"role": models.RideRole.CAPTAIN, "updated_at": now}),
		}

	async def _commit(
		self,
		roster: _Roster,
		changes: dict[str, models.RideParticipation],
		now: datetime,
		*,
		ride_changes: Optional[dict[str, object]] = None,
	) -> tuple[models.Ride, dict[str, models.RideParticipation]]:
		"""Write ``changes`` plus the recounted ride in one ride-versioned transaction."""
		after = roster.with_changes(changes)
		confirmed, waitlisted = _counts(after.participations.values())
		update: dict[str, object] = {
			"current_participants": confirmed,
			"waitlist_count": waitlisted,
			"updated_at": now,
		}
		if ride_changes:
			update.update(ride_changes)
		ride = roster.ride.model_copy(update=update)
		if ride.max_participants is not None and confirmed > ride.max_participants:
			# unreachable unless a caller bypassed the seat check
			raise ClubsError(ErrorCode.RIDE_FULL, ride_id=ride.ride_id)
		ops: list[WriteOp] = [self.repo.put_ride(ride)]
		ops.extend(self.repo.put_participation(p) for p in changes.values())
		await self.repo.transact(ops)
		return committed(ride), {user_id: committed(p) for user_id, p in changes.items()}

	async def _announce(
		self,
		event: str,
		participation: models.RideParticipation,
		actor_id: Optional[str],
	) -> None:
		await self.publisher.publish_participation_event(
			event,
			ride_id=participation.ride_id,
			club_id=participation.club_id,
			user_id=participation.user_id,
			status=participation.status.value,
			actor_id=actor_id,
			waitlist_position=participation.waitlist_position,
		)

	async def _announce_promotions(self, promoted: list[models.RideParticipation], actor_id: Optional[str]) -> None:
		if not promoted:
			return
		obs_metrics.inc_waitlist_promotions(len(promoted))
		for participation in promoted:
			_LOG.info(
				"clubs.waitlist_promoted",
				extra={"ride_id": participation.ride_id, "member_id": participation.user_id},
			)
			await self._announce("promoted", participation, actor_id)

	# ------------------------------------------------------------------
	# Join

	async def join_ride(
		self,
		user: AuthenticatedUser,
		ride_id: str,
		*,
		message: Optional[str] = None,
	) -> ParticipationResult:
		note = policies.clean_text(message, "message")

		async def attempt() -> ParticipationResult:
			roster = await self._load_roster(ride_id)
			ride = roster.ride
			context = await self._context(user, roster)
			self.authz.require(user, context, Action.JOIN_RIDE)
			if ride.status != models.RideStatus.PUBLISHED:
				raise ClubsError(ErrorCode.RIDE_NOT_OPEN, ride_id=ride_id, status=ride.status.value)
			existing = roster.get(user.id)
			if existing is not None and existing.is_live:
				raise ClubsError(ErrorCode.ALREADY_PARTICIPATING, ride_id=ride_id, status=existing.status.value)
			if existing is not None and existing.status == models.ParticipationStatus.REMOVED:
				raise ClubsError(ErrorCode.PARTICIPANT_REMOVED, ride_id=ride_id)
			now = self.clock.now()
			confirmed, _ = _counts(roster.participations.values())
			if ride.max_participants is None or confirmed < ride.max_participants:
				status, position = _CONFIRMED, None
			elif ride.allow_waitlist:
				status, position = _WAITLISTED, roster.next_waitlist_position()
			else:
				raise ClubsError(ErrorCode.RIDE_FULL, ride_id=ride_id, max_participants=ride.max_participants)
			participation = models.RideParticipation(
				participation_id=str(uuid4()),
				ride_id=ride_id,
				club_id=ride.club_id,
				user_id=user.id,
				role=models.RideRole.PARTICIPANT,
				status=status,
				joined_at=now,
				updated_at=now,
				message=note,
				waitlist_position=position,
				version=existing.version if existing is not None else 0,
			)
			ride, written = await self._commit(roster, {user.id: participation}, now)
			return ParticipationResult(ride, written[user.id])

		result = await self.retry.run("participation.join", attempt)
		participation = result.participation
		assert participation is not None
		obs_metrics.inc_ride_join(participation.status.value)
		_LOG.info(
			"clubs.ride_joined",
			extra={
				"ride_id": ride_id,
				"status": participation.status.value,
				"waitlist_position": participation.waitlist_position,
			},
		)
		await self._announce("joined", participation, user.id)
		return result

	# ------------------------------------------------------------------
	# Leave / remove

	async def leave_ride(
		self,
		user: AuthenticatedUser,
		ride_id: str,
		*,
		transfer_captain_to: Optional[str] = None,
	) -> ParticipationResult:
		"""Withdraw the caller; a vacated confirmed seat goes to the waitlist head."""

		async def attempt() -> ParticipationResult:
			roster = await self._load_roster(ride_id)
			self._ensure_exit_allowed(roster.ride)
			participation = self._require_live(roster, user.id)
			return await self._vacate(
				roster,
				participation,
				models.ParticipationStatus.WITHDRAWN,
				actor_id=user.id,
				reason=None,
				transfer_captain_to=transfer_captain_to,
			)

		result = await self.retry.run("participation.leave", attempt)
		await self._after_exit(result, "withdrawn", user.id)
		return result

	async def remove_participant(
		self,
		user: AuthenticatedUser,
		ride_id: str,
		member_id: str,
		*,
		reason: Optional[str] = None,
		transfer_captain_to: Optional[str] = None,
	) -> ParticipationResult:
		if member_id == user.id:
			return await self.leave_ride(user, ride_id, transfer_captain_to=transfer_captain_to)
		clean_reason = policies.clean_text(reason, "reason")

		async def attempt() -> ParticipationResult:
			roster = await self._load_roster(ride_id)
			context = await self._context(user, roster)
			self.authz.require(user, context, Action.MANAGE_RIDE_PARTICIPANTS)
			self._ensure_exit_allowed(roster.ride)
			target = self._require_live(roster, member_id)
			self._ensure_outranks(context, target)
			return await self._vacate(
				roster,
				target,
				models.ParticipationStatus.REMOVED,
				actor_id=user.id,
				reason=clean_reason,
				transfer_captain_to=transfer_captain_to,
			)

		result = await self.retry.run("participation.remove", attempt)
		await self._after_exit(result, "removed", user.id)
		return result

	def _ensure_outranks(self, context: AuthContext, target: models.RideParticipation) -> None:
		"""Ride leaders without club-wide rights only manage participants ranked below them."""
		if context.site_admin:
			return
		if Capability.MANAGE_PARTICIPANTS in context.capabilities():
			return
		actor_role = context.ride_role
		if actor_role is None or target.role >= actor_role:
			raise ClubsError(
				ErrorCode.INSUFFICIENT_PRIVILEGES,
				f"cannot manage a ride {target.role.value}",
				target_role=target.role.value,
			)

	async def _vacate(
		self,
		roster: _Roster,
		participation: models.RideParticipation,
		status: models.ParticipationStatus,
		*,
		actor_id: str,
		reason: Optional[str],
		transfer_captain_to: Optional[str],
	) -> ParticipationResult:
		now = self.clock.now()
		changes = self._transfer_ops(roster, participation, transfer_captain_to, now)
		departing = participation.model_copy(
			update={
				"status": status,
				"waitlist_position": None,
				"updated_at": now,
				"removed_by": actor_id if status == models.ParticipationStatus.REMOVED else None,
				"reason": reason,
			}
		)
		if departing.role == models.RideRole.CAPTAIN:
			departing = departing.model_copy(update={"role": models.RideRole.LEADER})
		changes[participation.user_id] = departing
		promoted: dict[str, models.RideParticipation] = {}
		if participation.status == _CONFIRMED:
			promoted = self._promotions(roster.with_changes(changes), now)
			changes.update(promoted)
		ride, written = await self._commit(roster, changes, now)
		return ParticipationResult(
			ride,
			written[participation.user_id],
			[written[user_id] for user_id in promoted],
		)

	async def _after_exit(self, result: ParticipationResult, event: str, actor_id: str) -> None:
		participation = result.participation
		assert participation is not None
		obs_metrics.inc_participation_exit(participation.status.value)
		_LOG.info(
			"clubs.ride_exit",
			extra={"ride_id": participation.ride_id, "status": participation.status.value, "promoted": len(result.promoted)},
		)
		await self._announce(event, participation, actor_id)
		await self._announce_promotions(result.promoted, actor_id)

	# ------------------------------------------------------------------
	# Roles

	async def update_participant_role(
		self,
		user: AuthenticatedUser,
		ride_id: str,
		member_id: str,
		new_role: models.RideRole | str,
	) -> ParticipationResult:
		"""Change a ride role; promoting someone to captain hands over the captaincy."""
		role = policies.parse_ride_role(new_role)

		async def attempt() -> ParticipationResult:
			roster = await self._load_roster(ride_id)
			context = await self._context(user, roster)
			target = self._require_live(roster, member_id)
			captaincy = role == models.RideRole.CAPTAIN or target.role == models.RideRole.CAPTAIN
			self.authz.require(
				user,
				context,
				Action.ASSIGN_RIDE_ROLE if captaincy else Action.MANAGE_RIDE_PARTICIPANTS,
			)
			if target.role == role:
				return ParticipationResult(roster.ride, target)
			if target.status != _CONFIRMED:
				raise ClubsError(
					ErrorCode.INVALID_PARTICIPATION_STATUS,
					"only confirmed participants can hold a ride role",
					status=target.status.value,
				)
			if target.role == models.RideRole.CAPTAIN:
				raise ClubsError(
					ErrorCode.INVALID_ROLE_TRANSITION,
					"promote another participant to captain to hand over the captaincy",
					from_role=target.role.value,
					to_role=role.value,
				)
			policies.ensure_ride_role_transition(target.role, role)
			now = self.clock.now()
			changes = {target.user_id: target.model_copy(update={"role": role, "updated_at": now})}
			if role == models.RideRole.CAPTAIN:
				current = roster.captain()
				if current is not None:
					policies.ensure_ride_role_transition(current.role, models.RideRole.LEADER)
					changes[current.user_id] = current.model_copy(
						update={"role": models.RideRole.LEADER, "updated_at": now}
					)
			ride, written = await self._commit(roster, changes, now)
			return ParticipationResult(ride, written[target.user_id])

		result = await self.retry.run("participation.update_role", attempt)
		if result.participation is not None:
			await self._announce("role_changed", result.participation, user.id)
		return result

	# ------------------------------------------------------------------
	# Attendance

	async def update_attendance(
		self,
		user: AuthenticatedUser,
		ride_id: str,
		member_id: str,
		status: models.AttendanceStatus | str,
	) -> ParticipationResult:
		"""Record whether a confirmed participant turned up to a started ride."""
		attendance = policies.parse_attendance_status(status)

		async def attempt() -> ParticipationResult:
			roster = await self._load_roster(ride_id)
			context = await self._context(user, roster)
			self.authz.require(user, context, Action.MANAGE_RIDE_PARTICIPANTS)
			if roster.ride.status not in policies.RIDE_OPEN_FOR_ATTENDANCE:
				raise ClubsError(ErrorCode.RIDE_NOT_OPEN, ride_id=ride_id, status=roster.ride.status.value)
			target = roster.get(member_id)
			if target is None:
				raise ClubsError(ErrorCode.PARTICIPATION_NOT_FOUND, ride_id=ride_id, user_id=member_id)
			policies.ensure_participation_status(target.status, _CONFIRMED)
			if target.attendance_status == attendance:
				return ParticipationResult(roster.ride, target)
			now = self.clock.now()
			marked = target.model_copy(
				update={
					"attendance_status": attendance,
					"attendance_confirmed_by": user.id,
					"attendance_confirmed_at": now,
					"updated_at": now,
				}
			)
			ride, written = await self._commit(roster, {target.user_id: marked}, now)
			return ParticipationResult(ride, written[target.user_id])

		result = await self.retry.run("participation.attendance", attempt)
		participation = result.participation
		assert participation is not None
		_LOG.info(
			"clubs.attendance_updated",
			extra={"ride_id": ride_id, "member_id": member_id, "attendance": participation.attendance_status.value},
		)
		await self._announce("attendance_updated", participation, user.id)
		return result

	# ------------------------------------------------------------------
	# Capacity

	async def update_capacity(
		self,
		user: AuthenticatedUser,
		ride_id: str,
		*,
		max_participants: Optional[int],
		allow_waitlist: Optional[bool] = None,
	) -> ParticipationResult:
		"""Change the seat limit; new seats are filled from the waitlist in the same write."""
		capacity = policies.ensure_capacity(max_participants)

		async def attempt() -> ParticipationResult:
			roster = await self._load_roster(ride_id)
			context = await self._context(user, roster)
			self.authz.require(user, context, Action.MANAGE_RIDE)
			self._ensure_exit_allowed(roster.ride)
			confirmed, _ = _counts(roster.participations.values())
			if capacity is not None and capacity < confirmed:
				raise ClubsError(
					ErrorCode.CAPACITY_BELOW_CONFIRMED,
					f"{confirmed} participants are already confirmed",
					max_participants=capacity,
					confirmed=confirmed,
				)
			ride_changes: dict[str, object] = {"max_participants": capacity}
			if allow_waitlist is not None:
				ride_changes["allow_waitlist"] = allow_waitlist
			resized = _Roster(roster.ride.model_copy(update=ride_changes), roster.participations)
			now = self.clock.now()
			promoted = self._promotions(resized, now)
			ride, written = await self._commit(roster, promoted, now, ride_changes=ride_changes)
			return ParticipationResult(ride, None, list(written.values()))

		result = await self.retry.run("participation.update_capacity", attempt)
		await self._announce_promotions(result.promoted, user.id)
		return result

	async def promote_waitlist(
		self,
		ride_id: str,
		*,
		user: Optional[AuthenticatedUser] = None,
	) -> ParticipationResult:
		"""Fill free seats from the waitlist; without ``user`` this runs as the system."""

		async def attempt() -> ParticipationResult:
			roster = await self._load_roster(ride_id)
			if user is not None:
				context = await self._context(user, roster)
				self.authz.require(user, context, Action.MANAGE_RIDE_PARTICIPANTS)
			if roster.ride.status not in policies.RIDE_OPEN_FOR_EXIT:
				return ParticipationResult(roster.ride)
			now = self.clock.now()
			promoted = self._promotions(roster, now)
			if not promoted:
				return ParticipationResult(roster.ride)
			ride, written = await self._commit(roster, promoted, now)
			return ParticipationResult(ride, None, list(written.values()))

		result = await self.retry.run("participation.promote", attempt)
		await self._announce_promotions(result.promoted, user.id if user else None)
		return result

	async def recount(self, ride_id: str) -> tuple[ParticipationResult, bool]:
		"""Rebuild the ride's counters from its participation rows.

		Returns the result and whether the stored counters had drifted.
		"""

		async def attempt() -> tuple[ParticipationResult, bool]:
			roster = await self._load_roster(ride_id)
			confirmed, waitlisted = _counts(roster.participations.values())
			drifted = (confirmed, waitlisted) != (roster.ride.current_participants, roster.ride.waitlist_count)
			now = self.clock.now()
			promoted: dict[str, models.RideParticipation] = {}
			if roster.ride.status in policies.RIDE_OPEN_FOR_EXIT:
				promoted = self._promotions(roster, now)
			if not drifted and not promoted:
				return ParticipationResult(roster.ride), False
			ride, written = await self._commit(roster, promoted, now)
			return ParticipationResult(ride, None, list(written.values())), drifted

		result, drifted = await self.retry.run("participation.recount", attempt)
		if drifted:
			obs_metrics.inc_capacity_drift()
			_LOG.warning("clubs.capacity_drift_repaired", extra={"ride_id": ride_id})
		await self._announce_promotions(result.promoted, None)
		return result, drifted

	# ------------------------------------------------------------------
	# Reads

	async def get_participation(
		self,
		user: AuthenticatedUser,
		ride_id: str,
		member_id: str,
	) -> models.RideParticipation:
		roster = await self._load_roster(ride_id)
		if member_id != user.id:
			context = await self._context(user, roster)
			self.authz.require(user, context, Action.VIEW_RIDE_PARTICIPANTS)
		participation = roster.get(member_id)
		if participation is None:
			raise ClubsError(ErrorCode.PARTICIPATION_NOT_FOUND, ride_id=ride_id, user_id=member_id)
		return participation

	async def list_participants(
		self,
		user: AuthenticatedUser,
		ride_id: str,
		*,
		status: models.ParticipationStatus | str | None = None,
	) -> list[models.RideParticipation]:
		"""Confirmed riders by ride rank then join time, followed by the waitlist in order."""
		status_filter = models.ParticipationStatus.parse(status) if status is not None else None
		if status is not None and status_filter is None:
			raise ClubsError(ErrorCode.VALIDATION_ERROR, "unknown participation status", status=status)
		roster = await self._load_roster(ride_id)
		context = await self._context(user, roster)
		self.authz.require(user, context, Action.VIEW_RIDE_PARTICIPANTS)
		if status_filter is None:
			confirmed = [p for p in roster.participations.values() if p.status == _CONFIRMED]
			confirmed.sort(key=lambda p: (-p.role.rank, p.joined_at))
			return confirmed + roster.waitlist()
		if status_filter == _WAITLISTED:
			return roster.waitlist()
		selected = [p for p in roster.participations.values() if p.status == status_filter]
		selected.sort(key=lambda p: (-p.role.rank, p.joined_at))
		return selected

	async def list_my_participations(self, user: AuthenticatedUser) -> list[models.RideParticipation]:
		participations = await self.repo.list_user_participations(user.id)
		return [p for p in participations if p.is_live]


__all__ = ["ParticipationResult", "ParticipationService"]
