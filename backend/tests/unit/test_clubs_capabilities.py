from __future__ import annotations

import pytest

from app.clubs.domain.capabilities import (
	CLUB_CAPABILITIES,
	RIDE_CAPABILITIES,
	Capability,
	capabilities_for,
	club_capabilities,
	minimum_club_role_for,
	minimum_ride_role_for,
	ride_capabilities,
)
from app.clubs.domain.models import ClubRole, RideRole


def test_club_capabilities_grow_with_rank():
	roles = list(ClubRole)
	for lower, higher in zip(roles, roles[1:]):
		assert CLUB_CAPABILITIES[lower] < CLUB_CAPABILITIES[higher]


def test_ride_capabilities_grow_with_rank():
	roles = list(RideRole)
	for lower, higher in zip(roles, roles[1:]):
		assert RIDE_CAPABILITIES[lower] < RIDE_CAPABILITIES[higher]


@pytest.mark.parametrize("role", [None, "", "superuser", "OWNERS", 42])
def test_unknown_roles_have_no_capabilities(role):
	assert capabilities_for(role) == frozenset()


def test_role_strings_fold_case_and_aliases():
	assert club_capabilities("Admin") == CLUB_CAPABILITIES[ClubRole.ADMIN]
	assert club_capabilities("club_owner") == CLUB_CAPABILITIES[ClubRole.OWNER]
	assert ride_capabilities("ride_leader") == RIDE_CAPABILITIES[RideRole.LEADER]


def test_shared_captain_spelling_resolves_to_club_role():
	assert capabilities_for("captain") == CLUB_CAPABILITIES[ClubRole.CAPTAIN]
	assert capabilities_for(RideRole.CAPTAIN) == RIDE_CAPABILITIES[RideRole.CAPTAIN]


def test_club_and_ride_lookups_do_not_cross():
	assert club_capabilities(RideRole.LEADER) == frozenset()
	assert ride_capabilities(ClubRole.ADMIN) == frozenset()


def test_minimum_roles():
	assert minimum_club_role_for(Capability.JOIN_RIDES) == ClubRole.MEMBER
	assert minimum_club_role_for(Capability.PUBLISH_OFFICIAL_RIDES) == ClubRole.CAPTAIN
	assert minimum_club_role_for(Capability.MANAGE_ADMINS) == ClubRole.OWNER
	assert minimum_club_role_for(Capability.MANAGE_RIDE) is None
	assert minimum_ride_role_for(Capability.MANAGE_RIDE_PARTICIPANTS) == RideRole.LEADER
	assert minimum_ride_role_for(Capability.INVITE_MEMBERS) is None


def test_ranked_roles_compare_within_their_own_kind():
	assert ClubRole.MEMBER < ClubRole.OWNER
	assert RideRole.CAPTAIN > RideRole.PARTICIPANT
	assert ClubRole.ADMIN.at_least(ClubRole.CAPTAIN)
	assert not RideRole.PARTICIPANT.at_least(RideRole.LEADER)
