"""Static role-to-capability mapping for clubs and rides.

Lookups are total: anything that is not a recognised role maps to the empty
set so callers fail closed.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional, Union

from app.clubs.domain.models import ClubRole, RideRole


class Capability(str, Enum):
	# club scope
	VIEW_CLUB_DETAILS = "view_club_details"
	VIEW_PUBLIC_MEMBERS = "view_public_members"
	LEAVE_CLUB = "leave_club"
	VIEW_CLUB_RIDES = "view_club_rides"
	JOIN_RIDES = "join_rides"
	CREATE_RIDE_PROPOSALS = "create_ride_proposals"
	VIEW_DRAFT_RIDES = "view_draft_rides"
	PUBLISH_OFFICIAL_RIDES = "publish_official_rides"
	MANAGE_RIDES = "manage_rides"
	MANAGE_PARTICIPANTS = "manage_participants"
	VIEW_CLUB_MEMBERS = "view_club_members"
	INVITE_MEMBERS = "invite_members"
	REMOVE_MEMBERS = "remove_members"
	MANAGE_JOIN_REQUESTS = "manage_join_requests"
	CANCEL_RIDES = "cancel_rides"
	ASSIGN_LEADERSHIP = "assign_leadership"
	MANAGE_CLUB_SETTINGS = "manage_club_settings"
	MANAGE_ADMINS = "manage_admins"
	# ride scope
	VIEW_RIDE_PARTICIPANTS = "view_ride_participants"
	LEAVE_RIDE = "leave_ride"
	MANAGE_RIDE_PARTICIPANTS = "manage_ride_participants"
	MANAGE_RIDE = "manage_ride"
	ASSIGN_RIDE_LEADERSHIP = "assign_ride_leadership"


_MEMBER = frozenset(
	{
		Capability.VIEW_CLUB_DETAILS,
		Capability.VIEW_PUBLIC_MEMBERS,
		Capability.LEAVE_CLUB,
		Capability.VIEW_CLUB_RIDES,
		Capability.JOIN_RIDES,
		Capability.CREATE_RIDE_PROPOSALS,
	}
)
_CAPTAIN = _MEMBER | {
	Capability.VIEW_DRAFT_RIDES,
	Capability.PUBLISH_OFFICIAL_RIDES,
	Capability.MANAGE_RIDES,
	Capability.MANAGE_PARTICIPANTS,
}
_ADMIN = _CAPTAIN | {
	Capability.VIEW_CLUB_MEMBERS,
	Capability.INVITE_MEMBERS,
	Capability.REMOVE_MEMBERS,
	Capability.MANAGE_JOIN_REQUESTS,
	Capability.CANCEL_RIDES,
	Capability.ASSIGN_LEADERSHIP,
}
_OWNER = _ADMIN | {
	Capability.MANAGE_CLUB_SETTINGS,
	Capability.MANAGE_ADMINS,
}

CLUB_CAPABILITIES: dict[ClubRole, frozenset[Capability]] = {
	ClubRole.MEMBER: _MEMBER,
	ClubRole.CAPTAIN: frozenset(_CAPTAIN),
	ClubRole.ADMIN: frozenset(_ADMIN),
	ClubRole.OWNER: frozenset(_OWNER),
}

_PARTICIPANT = frozenset({Capability.VIEW_RIDE_PARTICIPANTS, Capability.LEAVE_RIDE})
_LEADER = _PARTICIPANT | {Capability.MANAGE_RIDE_PARTICIPANTS}
_RIDE_CAPTAIN = _LEADER | {Capability.MANAGE_RIDE, Capability.ASSIGN_RIDE_LEADERSHIP}

RIDE_CAPABILITIES: dict[RideRole, frozenset[Capability]] = {
	RideRole.PARTICIPANT: _PARTICIPANT,
	RideRole.LEADER: frozenset(_LEADER),
	RideRole.CAPTAIN: frozenset(_RIDE_CAPTAIN),
}

_EMPTY: frozenset[Capability] = frozenset()


def club_capabilities(role: Union[ClubRole, str, None]) -> frozenset[Capability]:
	parsed = ClubRole.parse(role) if not isinstance(role, RideRole) else None
	if parsed is None:
		return _EMPTY
	return CLUB_CAPABILITIES[parsed]


def ride_capabilities(role: Union[RideRole, str, None]) -> frozenset[Capability]:
	parsed = RideRole.parse(role) if not isinstance(role, ClubRole) else None
	if parsed is None:
		return _EMPTY
	return RIDE_CAPABILITIES[parsed]


def capabilities_for(role: Union[ClubRole, RideRole, str, None]) -> frozenset[Capability]:
	"""Capabilities granted by a club role or a ride role.

	A bare string is tried as a club role first, then as a ride role; the only
	shared spelling is "captain", which resolves to the club captain.
	"""
	if isinstance(role, RideRole):
		return RIDE_CAPABILITIES[role]
	caps = club_capabilities(role)
	if caps:
		return caps
	return ride_capabilities(role)


def minimum_club_role_for(capability: Capability) -> Optional[ClubRole]:
	for role in ClubRole:
		if capability in CLUB_CAPABILITIES[role]:
			return role
	return None


def minimum_ride_role_for(capability: Capability) -> Optional[RideRole]:
	for role in RideRole:
		if capability in RIDE_CAPABILITIES[role]:
			return role
	return None


__all__ = [
	"Capability",
	"CLUB_CAPABILITIES",
	"RIDE_CAPABILITIES",
	"capabilities_for",
	"club_capabilities",
	"ride_capabilities",
	"minimum_club_role_for",
	"minimum_ride_role_for",
]
