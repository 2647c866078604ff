from __future__ import annotations

import asyncio

import pytest

from app.clubs.container import build_services
from app.clubs.domain import models
from app.clubs.domain.concurrency import RetryPolicy
from app.clubs.domain.exceptions import ClubsError, ErrorCode
from app.clubs.infra.memory_store import InMemoryItemStore
from app.clubs.infra.store import VersionConflict
from app.infra.auth import AuthenticatedUser

_P = models.ParticipationStatus


class _YieldingStore(InMemoryItemStore):
	"""Gives other tasks a turn on every read so concurrent writers interleave."""

	async def get(self, pk, sk):
		await asyncio.sleep(0)
		return await super().get(pk, sk)

	async def query(self, pk, sk_prefix=""):
		await asyncio.sleep(0)
		return await super().query(pk, sk_prefix)


class _AlwaysConflictingStore(InMemoryItemStore):
	"""Lets setup writes through, then loses every race."""

	def __init__(self) -> None:
		super().__init__()
		self.armed = False
		self.attempts = 0

	async def transact(self, ops):
		if self.armed:
			self.attempts += 1
			raise VersionConflict(ops[0].pk, ops[0].sk, 1, 2)
		await super().transact(ops)


async def _members(seed, club_id, *user_ids):
	for user_id in user_ids:
		await seed.member(club_id, user_id)


@pytest.mark.asyncio
async def test_joins_fill_seats_then_waitlist_in_order(services, seed):
	club = await seed.club()
	await _members(seed, club.club_id, "a", "b", "c", "d")
	ride = await seed.ride(club.club_id, max_participants=3)

	results = [await services.participations.join_ride(seed.user(u), ride.ride_id) for u in ("a", "b", "c", "d")]
	statuses = [r.participation.status for r in results]
	assert statuses == [_P.CONFIRMED, _P.CONFIRMED, _P.WAITLISTED, _P.WAITLISTED]
	assert [r.participation.waitlist_position for r in results[2:]] == [1, 2]

	ride = results[-1].ride
	assert ride.current_participants == 3
	assert ride.waitlist_count == 2
	assert ride.is_full


@pytest.mark.asyncio
async def test_full_ride_without_waitlist_rejects(services, seed):
	club = await seed.club()
	await _members(seed, club.club_id, "a", "b")
	ride = await seed.ride(club.club_id, max_participants=2, allow_waitlist=False)
	await services.participations.join_ride(seed.user("a"), ride.ride_id)
	with pytest.raises(ClubsError) as exc:
		await services.participations.join_ride(seed.user("b"), ride.ride_id)
	assert exc.value.code == ErrorCode.RIDE_FULL
	assert exc.value.status_code == 409


@pytest.mark.asyncio
async def test_unlimited_ride_never_waitlists(services, seed):
	club = await seed.club()
	await _members(seed, club.club_id, "a", "b", "c")
	ride = await seed.ride(club.club_id, max_participants=None)
	for user_id in ("a", "b", "c"):
		result = await services.participations.join_ride(seed.user(user_id), ride.ride_id)
		assert result.participation.status == _P.CONFIRMED
	assert result.ride.current_participants == 4


@pytest.mark.asyncio
async def test_join_rules(services, seed):
	club = await seed.club()
	await _members(seed, club.club_id, "a")
	draft = await seed.ride(club.club_id, publish=False)
	with pytest.raises(ClubsError) as exc:
		await services.participations.join_ride(seed.user("a"), draft.ride_id)
	assert exc.value.code == ErrorCode.RIDE_NOT_OPEN

	ride = await seed.ride(club.club_id)
	await services.participations.join_ride(seed.user("a"), ride.ride_id)
	with pytest.raises(ClubsError) as exc:
		await services.participations.join_ride(seed.user("a"), ride.ride_id)
	assert exc.value.code == ErrorCode.ALREADY_PARTICIPATING

	with pytest.raises(ClubsError) as exc:
		await services.participations.join_ride(seed.user("stranger"), ride.ride_id)
	assert exc.value.code == ErrorCode.INSUFFICIENT_PRIVILEGES


@pytest.mark.asyncio
async def test_leaving_promotes_waitlist_head_atomically(services, seed):
	club = await seed.club()
	await _members(seed, club.club_id, "a", "b", "c", "d")
	ride = await seed.ride(club.club_id, max_participants=3)
	for user_id in ("a", "b", "c", "d"):
		await services.participations.join_ride(seed.user(user_id), ride.ride_id)

	result = await services.participations.leave_ride(seed.user("a"), ride.ride_id)
	assert result.participation.status == _P.WITHDRAWN
	assert [p.user_id for p in result.promoted] == ["c"]
	assert result.promoted[0].status == _P.CONFIRMED
	assert result.promoted[0].waitlist_position is None
	assert result.ride.current_participants == 3
	assert result.ride.waitlist_count == 1

	stored_d = await services.repository.get_participation(ride.ride_id, "d")
	assert stored_d.status == _P.WAITLISTED


@pytest.mark.asyncio
async def test_leaving_waitlist_promotes_nobody(services, seed):
	club = await seed.club()
	await _members(seed, club.club_id, "a", "b")
	ride = await seed.ride(club.club_id, max_participants=2)
	await services.participations.join_ride(seed.user("a"), ride.ride_id)
	await services.participations.join_ride(seed.user("b"), ride.ride_id)

	result = await services.participations.leave_ride(seed.user("b"), ride.ride_id)
	assert result.promoted == []
	assert result.ride.current_participants == 2
	assert result.ride.waitlist_count == 0
	assert result.participation.waitlist_position is None


@pytest.mark.asyncio
async def test_captain_must_hand_over_before_leaving(services, seed):
	club = await seed.club()
	await _members(seed, club.club_id, "a")
	ride = await seed.ride(club.club_id)
	await services.participations.join_ride(seed.user("a"), ride.ride_id)
	owner = seed.user("owner")

	with pytest.raises(ClubsError) as exc:
		await services.participations.leave_ride(owner, ride.ride_id)
	assert exc.value.code == ErrorCode.CANNOT_REMOVE_CAPTAIN

	result = await services.participations.leave_ride(owner, ride.ride_id, transfer_captain_to="a")
	assert result.participation.status == _P.WITHDRAWN
	new_captain = await services.repository.get_participation(ride.ride_id, "a")
	assert new_captain.role == models.RideRole.CAPTAIN


@pytest.mark.asyncio
async def test_removed_rider_cannot_rejoin_but_withdrawn_can(services, seed):
	club = await seed.club()
	await _members(seed, club.club_id, "a", "b")
	ride = await seed.ride(club.club_id, max_participants=5)
	await services.participations.join_ride(seed.user("a"), ride.ride_id)
	await services.participations.join_ride(seed.user("b"), ride.ride_id)

	removed = await services.participations.remove_participant(seed.user("owner"), ride.ride_id, "a", reason="no helmet")
	assert removed.participation.status == _P.REMOVED
	assert removed.participation.removed_by == "owner"
	with pytest.raises(ClubsError) as exc:
		await services.participations.join_ride(seed.user("a"), ride.ride_id)
	assert exc.value.code == ErrorCode.PARTICIPANT_REMOVED

	await services.participations.leave_ride(seed.user("b"), ride.ride_id)
	again = await services.participations.join_ride(seed.user("b"), ride.ride_id)
	assert again.participation.status == _P.CONFIRMED


@pytest.mark.asyncio
async def test_removing_confirmed_rider_promotes_waitlist_head(services, seed):
	club = await seed.club()
	await _members(seed, club.club_id, "a", "b")
	ride = await seed.ride(club.club_id, max_participants=2)
	await services.participations.join_ride(seed.user("a"), ride.ride_id)
	queued = await services.participations.join_ride(seed.user("b"), ride.ride_id)
	assert queued.participation.status == _P.WAITLISTED

	result = await services.participations.remove_participant(seed.user("owner"), ride.ride_id, "a")

	assert result.participation.status == _P.REMOVED
	assert [p.user_id for p in result.promoted] == ["b"]
	assert result.ride.current_participants == 2
	assert result.ride.waitlist_count == 0
	promoted = await services.repository.get_participation(ride.ride_id, "b")
	assert promoted.status == _P.CONFIRMED
	assert promoted.waitlist_position is None


@pytest.mark.asyncio
async def test_ride_leader_manages_only_lower_ranks(services, seed):
	club = await seed.club()
	await _members(seed, club.club_id, "lead", "lead2", "rider")
	ride = await seed.ride(club.club_id, max_participants=6)
	for user_id in ("lead", "lead2", "rider"):
		await services.participations.join_ride(seed.user(user_id), ride.ride_id)
	owner = seed.user("owner")
	await services.participations.update_participant_role(owner, ride.ride_id, "lead", "leader")
	await services.participations.update_participant_role(owner, ride.ride_id, "lead2", "ride_leader")

	lead = seed.user("lead")
	with pytest.raises(ClubsError) as exc:
		await services.participations.remove_participant(lead, ride.ride_id, "lead2")
	assert exc.value.code == ErrorCode.INSUFFICIENT_PRIVILEGES

	result = await services.participations.remove_participant(lead, ride.ride_id, "rider")
	assert result.participation.status == _P.REMOVED


@pytest.mark.asyncio
async def test_participant_cannot_remove_others(services, seed):
	club = await seed.club()
	await _members(seed, club.club_id, "a", "b")
	ride = await seed.ride(club.club_id)
	await services.participations.join_ride(seed.user("a"), ride.ride_id)
	await services.participations.join_ride(seed.user("b"), ride.ride_id)
	with pytest.raises(ClubsError) as exc:
		await services.participations.remove_participant(seed.user("a"), ride.ride_id, "b")
	assert exc.value.code == ErrorCode.INSUFFICIENT_PRIVILEGES


@pytest.mark.asyncio
async def test_promoting_to_captain_transfers_captaincy(services, seed):
	club = await seed.club()
	await _members(seed, club.club_id, "a")
	ride = await seed.ride(club.club_id)
	await services.participations.join_ride(seed.user("a"), ride.ride_id)

	result = await services.participations.update_participant_role(seed.user("owner"), ride.ride_id, "a", "captain")
	assert result.participation.role == models.RideRole.CAPTAIN
	previous = await services.repository.get_participation(ride.ride_id, "owner")
	assert previous.role == models.RideRole.LEADER

	with pytest.raises(ClubsError) as exc:
		await services.participations.update_participant_role(seed.user("owner"), ride.ride_id, "a", "participant")
	assert exc.value.code == ErrorCode.INVALID_ROLE_TRANSITION


@pytest.mark.asyncio
async def test_waitlisted_rider_cannot_hold_role(services, seed):
	club = await seed.club()
	await _members(seed, club.club_id, "a")
	ride = await seed.ride(club.club_id, max_participants=1)
	await services.participations.join_ride(seed.user("a"), ride.ride_id)
	with pytest.raises(ClubsError) as exc:
		await services.participations.update_participant_role(seed.user("owner"), ride.ride_id, "a", "leader")
	assert exc.value.code == ErrorCode.INVALID_PARTICIPATION_STATUS


@pytest.mark.asyncio
async def test_capacity_increase_promotes_in_order(services, seed):
	club = await seed.club()
	await _members(seed, club.club_id, "a", "b", "c")
	ride = await seed.ride(club.club_id, max_participants=1)
	for user_id in ("a", "b", "c"):
		await services.participations.join_ride(seed.user(user_id), ride.ride_id)

	result = await services.participations.update_capacity(seed.user("owner"), ride.ride_id, max_participants=3)
	assert [p.user_id for p in result.promoted] == ["a", "b"]
	assert result.ride.max_participants == 3
	assert result.ride.current_participants == 3
	assert result.ride.waitlist_count == 1

	with pytest.raises(ClubsError) as exc:
		await services.participations.update_capacity(seed.user("owner"), ride.ride_id, max_participants=2)
	assert exc.value.code == ErrorCode.CAPACITY_BELOW_CONFIRMED

	unlimited = await services.participations.update_capacity(seed.user("owner"), ride.ride_id, max_participants=None)
	assert [p.user_id for p in unlimited.promoted] == ["c"]
	assert unlimited.ride.waitlist_count == 0


@pytest.mark.asyncio
async def test_promote_waitlist_without_free_seats_writes_nothing(services, seed):
	club = await seed.club()
	await _members(seed, club.club_id, "a")
	ride = await seed.ride(club.club_id, max_participants=1)
	await services.participations.join_ride(seed.user("a"), ride.ride_id)
	before = await services.repository.get_ride(ride.ride_id)
	result = await services.participations.promote_waitlist(ride.ride_id)
	assert result.promoted == []
	assert (await services.repository.get_ride(ride.ride_id)).version == before.version


@pytest.mark.asyncio
async def test_recount_repairs_drifted_counters(services, seed):
	club = await seed.club()
	await _members(seed, club.club_id, "a")
	ride = await seed.ride(club.club_id)
	await services.participations.join_ride(seed.user("a"), ride.ride_id)
	repo = services.repository
	stored = await repo.get_ride(ride.ride_id)
	await repo.transact([repo.put_ride(stored.model_copy(update={"current_participants": 9, "waitlist_count": 4}))])

	result, drifted = await services.participations.recount(ride.ride_id)
	assert drifted is True
	assert result.ride.current_participants == 2
	assert result.ride.waitlist_count == 0

	_, drifted_again = await services.participations.recount(ride.ride_id)
	assert drifted_again is False


@pytest.mark.asyncio
async def test_concurrent_joins_never_oversell(clock):
	services = build_services(store=_YieldingStore(), clock=clock, retry=RetryPolicy(max_attempts=10, backoff_seconds=0))
	owner = AuthenticatedUser(id="owner")
	club, _ = await services.clubs.create_club(owner, name="Hill Riders")
	riders = [AuthenticatedUser(id=f"r{i}") for i in range(5)]
	for rider in riders:
		await services.memberships.request_join(rider, club.club_id)
	ride, _ = await services.rides.create_ride(owner, club.club_id, title="Race", max_participants=3, publish=True)

	results = await asyncio.gather(*(services.participations.join_ride(r, ride.ride_id) for r in riders))
	statuses = [r.participation.status for r in results]
	assert statuses.count(_P.CONFIRMED) == 2
	assert statuses.count(_P.WAITLISTED) == 3
	positions = sorted(r.participation.waitlist_position for r in results if r.participation.status == _P.WAITLISTED)
	assert positions == [1, 2, 3]

	stored = await services.repository.get_ride(ride.ride_id)
	assert stored.current_participants == 3
	assert stored.waitlist_count == 3


@pytest.mark.asyncio
async def test_exhausted_retries_surface_retryable_conflict(clock):
	store = _AlwaysConflictingStore()
	services = build_services(store=store, clock=clock, retry=RetryPolicy(max_attempts=3, backoff_seconds=0))
	owner = AuthenticatedUser(id="owner")
	club, _ = await services.clubs.create_club(owner, name="Hill Riders")
	await services.memberships.request_join(AuthenticatedUser(id="a"), club.club_id)
	ride, _ = await services.rides.create_ride(owner, club.club_id, title="Race", max_participants=3, publish=True)

	store.armed = True
	with pytest.raises(ClubsError) as exc:
		await services.participations.join_ride(AuthenticatedUser(id="a"), ride.ride_id)
	assert exc.value.code == ErrorCode.CONCURRENT_MODIFICATION
	assert exc.value.retryable is True
	assert exc.value.status_code == 409
	assert store.attempts == 3


@pytest.mark.asyncio
async def test_list_participants_orders_confirmed_then_waitlist(services, seed):
	club = await seed.club()
	await _members(seed, club.club_id, "a", "b", "c")
	ride = await seed.ride(club.club_id, max_participants=2)
	for user_id in ("a", "b", "c"):
		await services.participations.join_ride(seed.user(user_id), ride.ride_id)

	listed = await services.participations.list_participants(seed.user("a"), ride.ride_id)
	assert [p.user_id for p in listed] == ["owner", "a", "b", "c"]
	waitlist = await services.participations.list_participants(seed.user("a"), ride.ride_id, status="waitlist")
	assert [p.user_id for p in waitlist] == ["b", "c"]

	mine = await services.participations.list_my_participations(seed.user("b"))
	assert [p.ride_id for p in mine] == [ride.ride_id]
	assert (await services.participations.get_participation(seed.user("c"), ride.ride_id, "c")).waitlist_position == 2


@pytest.mark.asyncio
async def test_attendance_is_recorded_for_confirmed_riders_once_started(services, seed, clock):
	club = await seed.club()
	await _members(seed, club.club_id, "a", "b")
	ride = await seed.ride(club.club_id, max_participants=2)
	await services.participations.join_ride(seed.user("a"), ride.ride_id)
	await services.participations.join_ride(seed.user("b"), ride.ride_id)
	owner = seed.user("owner")

	with pytest.raises(ClubsError) as exc:
		await services.participations.update_attendance(owner, ride.ride_id, "a", "attended")
	assert exc.value.code == ErrorCode.RIDE_NOT_OPEN

	await services.rides.start_ride(owner, ride.ride_id)
	clock.advance(minutes=90)
	marked = await services.participations.update_attendance(owner, ride.ride_id, "a", "attended")
	assert marked.participation.attendance_status == models.AttendanceStatus.ATTENDED
	assert marked.participation.attendance_confirmed_by == "owner"
	assert marked.participation.attendance_confirmed_at == clock.now()
	assert marked.ride.current_participants == 2

	await services.rides.complete_ride(owner, ride.ride_id)
	corrected = await services.participations.update_attendance(owner, ride.ride_id, "a", "absent")
	assert corrected.participation.attendance_status == models.AttendanceStatus.NO_SHOW
	stored = await services.repository.get_participation(ride.ride_id, "a")
	assert stored.attendance_status == models.AttendanceStatus.NO_SHOW


@pytest.mark.asyncio
async def test_attendance_rules(services, seed):
	club = await seed.club()
	await _members(seed, club.club_id, "a", "b")
	ride = await seed.ride(club.club_id, max_participants=2)
	await services.participations.join_ride(seed.user("a"), ride.ride_id)
	await services.participations.join_ride(seed.user("b"), ride.ride_id)
	owner = seed.user("owner")
	await services.rides.start_ride(owner, ride.ride_id)

	with pytest.raises(ClubsError) as exc:
		await services.participations.update_attendance(owner, ride.ride_id, "b", "attended")
	assert exc.value.code == ErrorCode.INVALID_PARTICIPATION_STATUS

	with pytest.raises(ClubsError) as exc:
		await services.participations.update_attendance(seed.user("a"), ride.ride_id, "owner", "no_show")
	assert exc.value.code == ErrorCode.INSUFFICIENT_PRIVILEGES

	with pytest.raises(ClubsError) as exc:
		await services.participations.update_attendance(owner, ride.ride_id, "nobody", "attended")
	assert exc.value.code == ErrorCode.PARTICIPATION_NOT_FOUND

	with pytest.raises(ClubsError) as exc:
		await services.participations.update_attendance(owner, ride.ride_id, "a", "maybe")
	assert exc.value.code == ErrorCode.VALIDATION_ERROR

	untouched = await services.repository.get_participation(ride.ride_id, "b")
	assert untouched.attendance_status == models.AttendanceStatus.UNKNOWN
