from __future__ import annotations

import pytest

from app.clubs.domain import models
from app.clubs.domain.exceptions import ClubsError, ErrorCode


@pytest.mark.asyncio
async def test_member_proposal_stays_draft_with_creator_as_captain(services, seed):
	club = await seed.club()
	await seed.member(club.club_id, "bob")
	ride, captain = await services.rides.create_ride(
		seed.user("bob"),
		club.club_id,
		title="  Gravel day  ",
		max_participants=6,
		publish=True,
	)
	assert ride.status == models.RideStatus.DRAFT
	assert ride.title == "Gravel day"
	assert ride.current_participants == 1
	assert captain.role == models.RideRole.CAPTAIN
	assert captain.status == models.ParticipationStatus.CONFIRMED


@pytest.mark.asyncio
async def test_captain_can_publish_on_create(services, seed):
	club = await seed.club()
	await seed.member(club.club_id, "cap", role="captain")
	ride, _ = await services.rides.create_ride(seed.user("cap"), club.club_id, title="Tempo", publish=True)
	assert ride.status == models.RideStatus.PUBLISHED
	assert ride.published_by == "cap"


@pytest.mark.asyncio
async def test_non_member_cannot_create_ride(services, seed):
	club = await seed.club()
	with pytest.raises(ClubsError) as exc:
		await services.rides.create_ride(seed.user("stranger"), club.club_id, title="Nope")
	assert exc.value.code == ErrorCode.INSUFFICIENT_PRIVILEGES


@pytest.mark.asyncio
async def test_creator_can_cancel_but_not_publish_own_draft(services, seed):
	club = await seed.club()
	await seed.member(club.club_id, "bob")
	bob = seed.user("bob")
	ride, _ = await services.rides.create_ride(bob, club.club_id, title="Proposal")
	with pytest.raises(ClubsError) as exc:
		await services.rides.publish_ride(bob, ride.ride_id)
	assert exc.value.code == ErrorCode.INSUFFICIENT_PRIVILEGES

	cancelled = await services.rides.cancel_ride(bob, ride.ride_id, reason="rain")
	assert cancelled.status == models.RideStatus.CANCELLED
	assert cancelled.cancellation_reason == "rain"


@pytest.mark.asyncio
async def test_ride_lifecycle(services, seed):
	club = await seed.club()
	owner = seed.user("owner")
	ride = await seed.ride(club.club_id, publish=False)
	ride = await services.rides.publish_ride(owner, ride.ride_id)
	assert ride.status == models.RideStatus.PUBLISHED
	ride = await services.rides.start_ride(owner, ride.ride_id)
	assert ride.status == models.RideStatus.ACTIVE
	ride = await services.rides.complete_ride(owner, ride.ride_id)
	assert ride.status == models.RideStatus.COMPLETED

	with pytest.raises(ClubsError) as exc:
		await services.rides.cancel_ride(owner, ride.ride_id)
	assert exc.value.code == ErrorCode.INVALID_RIDE_STATUS_TRANSITION


@pytest.mark.asyncio
async def test_ride_captain_needs_club_rights_to_cancel_published(services, seed):
	club = await seed.club()
	await seed.member(club.club_id, "cap", role="captain")
	ride, _ = await services.rides.create_ride(seed.user("cap"), club.club_id, title="Tempo", publish=True)
	with pytest.raises(ClubsError) as exc:
		await services.rides.cancel_ride(seed.user("cap"), ride.ride_id)
	assert exc.value.code == ErrorCode.INSUFFICIENT_PRIVILEGES
	cancelled = await services.rides.cancel_ride(seed.user("owner"), ride.ride_id)
	assert cancelled.status == models.RideStatus.CANCELLED


@pytest.mark.asyncio
async def test_update_details(services, seed):
	club = await seed.club()
	ride = await seed.ride(club.club_id)
	updated = await services.rides.update_details(
		seed.user("owner"),
		ride.ride_id,
		title="Sunday long loop",
		allow_waitlist=False,
	)
	assert updated.title == "Sunday long loop"
	assert updated.allow_waitlist is False
	assert updated.version == ride.version + 1

	with pytest.raises(ClubsError) as exc:
		await services.rides.update_details(seed.user("owner"), ride.ride_id, title="   ")
	assert exc.value.code == ErrorCode.VALIDATION_ERROR


@pytest.mark.asyncio
async def test_drafts_are_hidden_from_other_members(services, seed):
	club = await seed.club()
	await seed.member(club.club_id, "bob")
	await seed.member(club.club_id, "carol")
	published = await seed.ride(club.club_id)
	draft, _ = await services.rides.create_ride(seed.user("bob"), club.club_id, title="Idea")

	carol = seed.user("carol")
	assert [r.ride_id for r in await services.rides.list_club_rides(carol, club.club_id)] == [published.ride_id]
	with pytest.raises(ClubsError):
		await services.rides.get_ride(carol, draft.ride_id)

	assert (await services.rides.get_ride(seed.user("bob"), draft.ride_id)).ride_id == draft.ride_id
	owner_view = await services.rides.list_club_rides(seed.user("owner"), club.club_id, status="draft")
	assert [r.ride_id for r in owner_view] == [draft.ride_id]


@pytest.mark.asyncio
async def test_unknown_ride(services, seed):
	with pytest.raises(ClubsError) as exc:
		await services.rides.get_ride(seed.user("owner"), "missing")
	assert exc.value.code == ErrorCode.RIDE_NOT_FOUND
	assert exc.value.status_code == 404
