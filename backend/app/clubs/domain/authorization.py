"""Authorization decisions for club- and ride-scoped actions.

``load_context`` performs the only reads (membership, ride, participation);
``authorize`` is a pure function of that context so one request can evaluate
several actions against a single consistent snapshot.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from app.clubs.domain import models, repo as repo_module
from app.clubs.domain.capabilities import Capability, club_capabilities, ride_capabilities
from app.clubs.domain.exceptions import ClubsError, ErrorCode
from app.infra.auth import AuthenticatedUser
from app.obs import metrics as obs_metrics

_LOG = logging.getLogger(__name__)


class Action(str, Enum):
	VIEW_CLUB = "view_club"
	VIEW_PUBLIC_MEMBERS = "view_public_members"
	VIEW_MEMBERS = "view_members"
	MANAGE_CLUB_SETTINGS = "manage_club_settings"
	PROCESS_JOIN_REQUEST = "process_join_request"
	REMOVE_MEMBER = "remove_member"
	SUSPEND_MEMBER = "suspend_member"
	ASSIGN_CLUB_ROLE = "assign_club_role"
	MANAGE_ADMINS = "manage_admins"
	INVITE_MEMBER = "invite_member"
	INVITE_LEADERSHIP = "invite_leadership"
	CANCEL_INVITATION = "cancel_invitation"
	VIEW_RIDES = "view_rides"
	VIEW_DRAFT_RIDES = "view_draft_rides"
	CREATE_RIDE = "create_ride"
	PUBLISH_RIDE = "publish_ride"
	MANAGE_RIDE = "manage_ride"
	CANCEL_RIDE = "cancel_ride"
	JOIN_RIDE = "join_ride"
	LEAVE_RIDE = "leave_ride"
	VIEW_RIDE_PARTICIPANTS = "view_ride_participants"
	MANAGE_RIDE_PARTICIPANTS = "manage_ride_participants"
	ASSIGN_RIDE_ROLE = "assign_ride_role"


@dataclass(frozen=True, slots=True)
class _Rule:
	capabilities: frozenset[Capability]
	ride_scoped: bool = False


def _club(*caps: Capability) -> _Rule:
	return _Rule(frozenset(caps))


def _ride(*caps: Capability) -> _Rule:
	return _Rule(frozenset(caps), ride_scoped=True)


# Ride-scoped actions accept either the club-wide capability or its ride-role analogue.
_RULES: dict[Action, _Rule] = {
	Action.VIEW_CLUB: _club(Capability.VIEW_CLUB_DETAILS),
	Action.VIEW_PUBLIC_MEMBERS: _club(Capability.VIEW_PUBLIC_MEMBERS),
	Action.VIEW_MEMBERS: _club(Capability.VIEW_CLUB_MEMBERS),
	Action.MANAGE_CLUB_SETTINGS: _club(Capability.MANAGE_CLUB_SETTINGS),
	Action.PROCESS_JOIN_REQUEST: _club(Capability.MANAGE_PARTICIPANTS),
	Action.REMOVE_MEMBER: _club(Capability.MANAGE_PARTICIPANTS),
	Action.SUSPEND_MEMBER: _club(Capability.REMOVE_MEMBERS),
	Action.ASSIGN_CLUB_ROLE: _club(Capability.ASSIGN_LEADERSHIP),
	Action.MANAGE_ADMINS: _club(Capability.MANAGE_ADMINS),
	Action.INVITE_MEMBER: _club(Capability.MANAGE_PARTICIPANTS),
	Action.INVITE_LEADERSHIP: _club(Capability.ASSIGN_LEADERSHIP),
	Action.CANCEL_INVITATION: _club(Capability.INVITE_MEMBERS),
	Action.VIEW_RIDES: _club(Capability.VIEW_CLUB_RIDES),
	Action.VIEW_DRAFT_RIDES: _club(Capability.VIEW_DRAFT_RIDES),
	Action.CREATE_RIDE: _club(Capability.CREATE_RIDE_PROPOSALS),
	Action.PUBLISH_RIDE: _ride(Capability.PUBLISH_OFFICIAL_RIDES),
	Action.MANAGE_RIDE: _ride(Capability.MANAGE_RIDES, Capability.MANAGE_RIDE),
	Action.CANCEL_RIDE: _ride(Capability.CANCEL_RIDES),
	Action.JOIN_RIDE: _ride(Capability.JOIN_RIDES),
	Action.LEAVE_RIDE: _ride(Capability.LEAVE_RIDE),
	Action.VIEW_RIDE_PARTICIPANTS: _ride(Capability.VIEW_CLUB_RIDES, Capability.VIEW_RIDE_PARTICIPANTS),
	Action.MANAGE_RIDE_PARTICIPANTS: _ride(Capability.MANAGE_PARTICIPANTS, Capability.MANAGE_RIDE_PARTICIPANTS),
	Action.ASSIGN_RIDE_ROLE: _ride(Capability.ASSIGN_LEADERSHIP, Capability.ASSIGN_RIDE_LEADERSHIP),
}


def required_capabilities(action: Action) -> frozenset[Capability]:
	return _RULES[action].capabilities


@dataclass(frozen=True, slots=True)
class Decision:
	allow: bool
	reason: Optional[str] = None

	def __bool__(self) -> bool:
		return self.allow


@dataclass(frozen=True, slots=True)
class AuthContext:
	"""Snapshot of what the actor is to one club (and optionally one ride)."""

	user_id: str
	club_id: str
	membership: Optional[models.Membership] = None
	ride: Optional[models.Ride] = None
	participation: Optional[models.RideParticipation] = None
	site_admin: bool = False

	@property
	def club_role(self) -> Optional[models.ClubRole]:
		"""The actor's effective club role; suspended, pending or removed members have none."""
		if self.membership is None or not self.membership.is_active:
			return None
		return self.membership.role

	@property
	def ride_role(self) -> Optional[models.RideRole]:
		if self.participation is None or not self.participation.is_live:
			return None
		return self.participation.role

	def capabilities(self) -> frozenset[Capability]:
		caps = club_capabilities(self.club_role)
		if self.ride is not None:
			caps = caps | ride_capabilities(self.ride_role)
		return caps


def build_context(
	user: AuthenticatedUser,
	club_id: str,
	*,
	membership: Optional[models.Membership],
	ride: Optional[models.Ride] = None,
	participation: Optional[models.RideParticipation] = None,
) -> AuthContext:
	return AuthContext(
		user_id=user.id,
		club_id=club_id,
		membership=membership,
		ride=ride,
		participation=participation,
		site_admin=user.is_site_admin,
	)


def authorize(user: AuthenticatedUser, context: AuthContext, action: Action) -> Decision:
	rule = _RULES[action]
	if context.user_id != user.id:
		return Decision(False, "context_user_mismatch")
	if rule.ride_scoped and context.ride is None:
		return Decision(False, "ride_context_required")
	if context.ride is not None and context.ride.club_id != context.club_id:
		return Decision(False, "ride_not_in_club")
	if context.site_admin:
		return Decision(True, "site_admin")
	if rule.capabilities & context.capabilities():
		return Decision(True, None)
	ride = context.ride
	if (
		action == Action.MANAGE_RIDE
		and ride is not None
		and ride.created_by == user.id
		and ride.status == models.RideStatus.DRAFT
	):
		return Decision(True, "ride_creator_draft")
	if context.membership is None:
		return Decision(False, "not_a_member")
	if not context.membership.is_active:
		return Decision(False, f"membership_{context.membership.status.value}")
	return Decision(False, "missing_capability:" + ",".join(sorted(c.value for c in rule.capabilities)))


class AuthorizationService:
	"""Loads authorization context and turns denials into ``ClubsError``."""

	def __init__(self, repository: repo_module.ClubsRepository) -> None:
		self.repo = repository

	async def load_context(
		self,
		user: AuthenticatedUser,
		club_id: str,
		*,
		ride_id: Optional[str] = None,
		ride: Optional[models.Ride] = None,
		membership: Optional[models.Membership] = None,
		participation: Optional[models.RideParticipation] = None,
	) -> AuthContext:
		"""Fetch the actor's membership (and ride participation) once for a request.

		Callers that already hold the ride or membership pass them in so the
		decision is made against the same snapshot they will write from.
		"""
		if membership is None:
			membership = await self.repo.get_membership(club_id, user.id)
		if ride is None and ride_id is not None:
			ride = await self.repo.get_ride(ride_id)
			if ride is None:
				raise ClubsError(ErrorCode.RIDE_NOT_FOUND, ride_id=ride_id)
		if ride is not None and participation is None:
			participation = await self.repo.get_participation(ride.ride_id, user.id)
		return build_context(user, club_id, membership=membership, ride=ride, participation=participation)

	def authorize(self, user: AuthenticatedUser, context: AuthContext, action: Action) -> Decision:
		decision = authorize(user, context, action)
		obs_metrics.inc_authz_decision(action.value, decision.allow)
		return decision

	def require(self, user: AuthenticatedUser, context: AuthContext, action: Action) -> Decision:
		decision = self.authorize(user, context, action)
		if not decision.allow:
			_LOG.info(
				"clubs.authz_denied",
				extra={"action": action.value, "club_id": context.club_id, "reason": decision.reason},
			)
			raise ClubsError(
				ErrorCode.INSUFFICIENT_PRIVILEGES,
				f"not allowed to {action.value.replace('_', ' ')}",
				action=action.value,
				reason=decision.reason,
			)
		return decision

	async def check(
		self,
		user: AuthenticatedUser,
		club_id: str,
		action: Action,
		*,
		ride_id: Optional[str] = None,
	) -> Decision:
		context = await self.load_context(user, club_id, ride_id=ride_id)
		return self.authorize(user, context, action)


__all__ = [
	"Action",
	"AuthContext",
	"AuthorizationService",
	"Decision",
	"authorize",
	"build_context",
	"required_capabilities",
]
