"""Policy helpers for club membership, invitation and ride rules."""

from __future__ import annotations

import re
from typing import Optional

from app.clubs.domain.exceptions import ClubsError, ErrorCode
from app.clubs.domain.models import (
	AttendanceStatus,
	ClubRole,
	MembershipStatus,
	ParticipationStatus,
	RideRole,
	RideStatus,
)
from app.settings import settings

MEMBERSHIP_STATUS_EDGES: dict[MembershipStatus, frozenset[MembershipStatus]] = {
	MembershipStatus.PENDING: frozenset({MembershipStatus.ACTIVE, MembershipStatus.REMOVED}),
	MembershipStatus.ACTIVE: frozenset({MembershipStatus.SUSPENDED, MembershipStatus.REMOVED}),
	MembershipStatus.SUSPENDED: frozenset({MembershipStatus.ACTIVE, MembershipStatus.REMOVED}),
	MembershipStatus.REMOVED: frozenset(),
}

RIDE_STATUS_EDGES: dict[RideStatus, frozenset[RideStatus]] = {
	RideStatus.DRAFT: frozenset({RideStatus.PUBLISHED, RideStatus.CANCELLED}),
	RideStatus.PUBLISHED: frozenset({RideStatus.ACTIVE, RideStatus.CANCELLED}),
	RideStatus.ACTIVE: frozenset({RideStatus.COMPLETED, RideStatus.CANCELLED}),
	RideStatus.COMPLETED: frozenset(),
	RideStatus.CANCELLED: frozenset(),
}

# Captains only step down as part of a captaincy transfer.
RIDE_ROLE_EDGES: dict[RideRole, frozenset[RideRole]] = {
	RideRole.PARTICIPANT: frozenset({RideRole.LEADER, RideRole.CAPTAIN}),
	RideRole.LEADER: frozenset({RideRole.PARTICIPANT, RideRole.CAPTAIN}),
	RideRole.CAPTAIN: frozenset({RideRole.LEADER}),
}

# Participants may still drop out of a ride that is under way.
RIDE_OPEN_FOR_EXIT = frozenset({RideStatus.DRAFT, RideStatus.PUBLISHED, RideStatus.ACTIVE})

# Attendance is recorded once a ride has started.
RIDE_OPEN_FOR_ATTENDANCE = frozenset({RideStatus.ACTIVE, RideStatus.COMPLETED})

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def ensure_membership_transition(current: MembershipStatus, target: MembershipStatus) -> None:
	if target not in MEMBERSHIP_STATUS_EDGES[current]:
		raise ClubsError(
			ErrorCode.INVALID_MEMBERSHIP_STATUS_TRANSITION,
			f"cannot move membership from {current.value} to {target.value}",
			from_status=current.value,
			to_status=target.value,
		)


def ensure_ride_transition(current: RideStatus, target: RideStatus) -> None:
	if target not in RIDE_STATUS_EDGES[current]:
		raise ClubsError(
			ErrorCode.INVALID_RIDE_STATUS_TRANSITION,
			f"cannot move ride from {current.value} to {target.value}",
			from_status=current.value,
			to_status=target.value,
		)


def ensure_ride_role_transition(current: RideRole, target: RideRole) -> None:
	if target not in RIDE_ROLE_EDGES[current]:
		raise ClubsError(
			ErrorCode.INVALID_ROLE_TRANSITION,
			f"cannot change ride role from {current.value} to {target.value}",
			from_role=current.value,
			to_role=target.value,
		)


def ensure_participation_status(current: ParticipationStatus, *allowed: ParticipationStatus) -> None:
	if current not in allowed:
		raise ClubsError(
			ErrorCode.INVALID_PARTICIPATION_STATUS,
			f"participation is {current.value}",
			status=current.value,
		)


def ensure_can_act_on(actor_role: Optional[ClubRole], target_role: ClubRole, *, site_admin: bool = False) -> None:
	"""An actor never manages someone ranked above them; only owners manage owners."""
	if site_admin:
		return
	if actor_role is None:
		raise ClubsError(ErrorCode.INSUFFICIENT_PRIVILEGES, "no active membership")
	if target_role > actor_role or (target_role == ClubRole.OWNER and actor_role != ClubRole.OWNER):
		raise ClubsError(
			ErrorCode.ROLE_RANK_EXCEEDED,
			f"a {actor_role.value} cannot manage a {target_role.value}",
			actor_role=actor_role.value,
			target_role=target_role.value,
		)


def ensure_can_grant(actor_role: Optional[ClubRole], role: ClubRole, *, site_admin: bool = False) -> None:
	if site_admin:
		return
	if actor_role is None or role > actor_role:
		raise ClubsError(
			ErrorCode.ROLE_RANK_EXCEEDED,
			f"cannot grant {role.value}",
			role=role.value,
			actor_role=actor_role.value if actor_role else None,
		)


def ensure_owner_remains(active_owner_count: int, *, losing_owner: bool) -> None:
	if losing_owner and active_owner_count <= 1:
		raise ClubsError(
			ErrorCode.CANNOT_REMOVE_OWNER,
			"a club must keep at least one active owner",
			active_owners=active_owner_count,
		)


def parse_club_role(value: object) -> ClubRole:
	role = ClubRole.parse(value)
	if role is None:
		raise ClubsError(ErrorCode.VALIDATION_ERROR, "unknown club role", role=value)
	return role


def parse_ride_role(value: object) -> RideRole:
	role = RideRole.parse(value)
	if role is None:
		raise ClubsError(ErrorCode.VALIDATION_ERROR, "unknown ride role", role=value)
	return role


def parse_attendance_status(value: object) -> AttendanceStatus:
	status = AttendanceStatus.parse(value)
	if status is None:
		raise ClubsError(ErrorCode.VALIDATION_ERROR, "unknown attendance status", attendance_status=value)
	return status


def clean_text(value: Optional[str], field: str, *, max_length: Optional[int] = None) -> Optional[str]:
	if value is None:
		return None
	text = value.strip()
	if not text:
		return None
	limit = max_length or settings.clubs_text_max_length
	if len(text) > limit:
		raise ClubsError(ErrorCode.VALIDATION_ERROR, f"{field} exceeds {limit} characters", field=field)
	return text


def normalise_email(value: str) -> str:
	email = value.strip().lower()
	if not _EMAIL_RE.match(email):
		raise ClubsError(ErrorCode.VALIDATION_ERROR, "invalid email address", field="email")
	return email


def ensure_capacity(max_participants: Optional[int]) -> Optional[int]:
	if max_participants is None:
		return None
	if isinstance(max_participants, bool) or not isinstance(max_participants, int) or max_participants < 1:
		raise ClubsError(
			ErrorCode.VALIDATION_ERROR,
			"max_participants must be a positive integer",
			field="max_participants",
		)
	return max_participants


def clamp_limit(limit: Optional[int]) -> int:
	if limit is None:
		return settings.clubs_default_list_limit
	return max(1, min(int(limit), settings.clubs_max_list_limit))
