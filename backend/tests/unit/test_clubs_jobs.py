from __future__ import annotations

import pytest

from app.clubs.domain import models
from app.clubs.infra.scheduler import CAPACITY_INTEGRITY_JOB, INVITATION_EXPIRY_JOB, ClubsMaintenanceScheduler
from app.clubs.jobs.capacity_integrity import CapacityIntegrityJob
from app.clubs.jobs.invitation_expiry import InvitationExpiryJob
from app.clubs.workers.waitlist_promoter import WaitlistPromoter
from app.settings import settings


async def _bypass_write(services, ride_id, **changes):
	repo = services.repository
	stored = await repo.get_ride(ride_id)
	await repo.transact([repo.put_ride(stored.model_copy(update=changes))])


@pytest.mark.asyncio
async def test_invitation_expiry_job(services, seed, clock):
	club = await seed.club()
	await services.invitations.invite(seed.user("owner"), club.club_id, invited_user_id="bob", expires_in_days=1)
	job = InvitationExpiryJob(invitations=services.invitations)
	assert await job.run_once() == 0
	clock.advance(days=2)
	assert await job.run_once() == 1
	assert await job.run_once() == 0


@pytest.mark.asyncio
async def test_capacity_integrity_job_repairs_open_rides_only(services, seed):
	club = await seed.club()
	await seed.member(club.club_id, "a")
	open_ride = await seed.ride(club.club_id)
	done_ride = await seed.ride(club.club_id)
	await services.participations.join_ride(seed.user("a"), open_ride.ride_id)
	await _bypass_write(services, open_ride.ride_id, current_participants=0)
	await _bypass_write(services, done_ride.ride_id, status=models.RideStatus.COMPLETED, current_participants=5)

	job = CapacityIntegrityJob(participations=services.participations)
	assert await job.run_once() == 1
	assert (await services.repository.get_ride(open_ride.ride_id)).current_participants == 2
	assert (await services.repository.get_ride(done_ride.ride_id)).current_participants == 5
	assert await job.run_once() == 0


@pytest.mark.asyncio
async def test_waitlist_promoter_fills_seats_opened_outside_the_service(services, seed):
	club = await seed.club()
	await seed.member(club.club_id, "a")
	ride = await seed.ride(club.club_id, max_participants=1)
	await services.participations.join_ride(seed.user("a"), ride.ride_id)
	await _bypass_write(services, ride.ride_id, max_participants=2)

	promoter = WaitlistPromoter(participations=services.participations, poll_interval=0)
	assert await promoter.process_once() == 1
	participation = await services.repository.get_participation(ride.ride_id, "a")
	assert participation.status == models.ParticipationStatus.CONFIRMED
	assert await promoter.process_once() == 0


class _Tick:
	async def run_once(self) -> int:
		return 0


@pytest.mark.asyncio
async def test_maintenance_scheduler_registers_both_jobs_once():
	scheduler = ClubsMaintenanceScheduler()
	scheduler.register(invitation_expiry=_Tick(), capacity_integrity=_Tick(), expiry_minutes=5, integrity_minutes=15)
	scheduler.register(invitation_expiry=_Tick(), capacity_integrity=_Tick(), expiry_minutes=10, integrity_minutes=15)
	scheduler.start()
	try:
		assert scheduler.started
		assert scheduler.intervals() == {INVITATION_EXPIRY_JOB: 10, CAPACITY_INTEGRITY_JOB: 15}
	finally:
		scheduler.shutdown()
	assert not scheduler.started


def test_maintenance_scheduler_defaults_to_configured_intervals():
	scheduler = ClubsMaintenanceScheduler()
	scheduler.register(invitation_expiry=_Tick(), capacity_integrity=_Tick())
	assert scheduler.intervals() == {
		INVITATION_EXPIRY_JOB: settings.clubs_invitation_expiry_interval_minutes,
		CAPACITY_INTEGRITY_JOB: settings.clubs_capacity_integrity_interval_minutes,
	}
