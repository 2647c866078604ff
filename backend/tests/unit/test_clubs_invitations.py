from __future__ import annotations

import pytest

from app.clubs.domain import models
from app.clubs.domain.exceptions import ClubsError, ErrorCode


@pytest.mark.asyncio
async def test_invite_and_accept_grants_offered_role(services, seed):
	club = await seed.club()
	invitation = await services.invitations.invite(
		seed.user("owner"),
		club.club_id,
		invited_user_id="bob",
		role="captain",
		message="join the A group",
	)
	assert invitation.status == models.InvitationStatus.PENDING

	membership = await services.invitations.respond(seed.user("bob"), invitation.invitation_id, accept=True)
	assert membership is not None
	assert membership.role == models.ClubRole.CAPTAIN
	assert membership.status == models.MembershipStatus.ACTIVE
	assert membership.invited_by == "owner"

	stored = await services.repository.get_invitation(invitation.invitation_id)
	assert stored.status == models.InvitationStatus.ACCEPTED
	assert await services.repository.get_invite_slot(club.club_id, "user:bob") is None


@pytest.mark.asyncio
async def test_default_expiry_is_seven_days(services, seed):
	club = await seed.club()
	invitation = await services.invitations.invite(seed.user("owner"), club.club_id, invited_user_id="bob")
	assert (invitation.expires_at - invitation.created_at).days == 7


@pytest.mark.asyncio
async def test_decline_returns_no_membership(services, seed):
	club = await seed.club()
	invitation = await services.invitations.invite(seed.user("owner"), club.club_id, invited_user_id="bob")
	assert await services.invitations.respond(seed.user("bob"), invitation.invitation_id, accept=False) is None
	assert await services.repository.get_membership(club.club_id, "bob") is None


@pytest.mark.asyncio
async def test_expired_invitation_cannot_be_accepted(services, seed, clock):
	club = await seed.club()
	invitation = await services.invitations.invite(
		seed.user("owner"),
		club.club_id,
		invited_user_id="bob",
		expires_in_days=1,
	)
	clock.advance(days=1, seconds=1)
	with pytest.raises(ClubsError) as exc:
		await services.invitations.respond(seed.user("bob"), invitation.invitation_id, accept=True)
	assert exc.value.code == ErrorCode.INVITATION_EXPIRED
	assert exc.value.status_code == 410


@pytest.mark.asyncio
async def test_processed_invitation_cannot_be_answered_twice(services, seed):
	club = await seed.club()
	invitation = await services.invitations.invite(seed.user("owner"), club.club_id, invited_user_id="bob")
	await services.invitations.respond(seed.user("bob"), invitation.invitation_id, accept=False)
	with pytest.raises(ClubsError) as exc:
		await services.invitations.respond(seed.user("bob"), invitation.invitation_id, accept=True)
	assert exc.value.code == ErrorCode.INVITATION_ALREADY_PROCESSED


@pytest.mark.asyncio
async def test_invitation_is_only_for_its_target(services, seed):
	club = await seed.club()
	invitation = await services.invitations.invite(seed.user("owner"), club.club_id, invited_email="Bob@Example.com")
	with pytest.raises(ClubsError) as exc:
		await services.invitations.respond(seed.user("mallory", email="m@example.com"), invitation.invitation_id, accept=True)
	assert exc.value.code == ErrorCode.INVITATION_NOT_FOR_USER

	membership = await services.invitations.respond(
		seed.user("bob", email="bob@example.com"),
		invitation.invitation_id,
		accept=True,
	)
	assert membership.user_id == "bob"


@pytest.mark.asyncio
async def test_one_pending_invitation_per_target(services, seed, clock):
	club = await seed.club()
	owner = seed.user("owner")
	first = await services.invitations.invite(owner, club.club_id, invited_user_id="bob", expires_in_days=1)
	with pytest.raises(ClubsError) as exc:
		await services.invitations.invite(owner, club.club_id, invited_user_id="bob")
	assert exc.value.code == ErrorCode.USER_ALREADY_INVITED

	clock.advance(days=2)
	second = await services.invitations.invite(owner, club.club_id, invited_user_id="bob")
	assert second.invitation_id != first.invitation_id
	lapsed = await services.repository.get_invitation(first.invitation_id)
	assert lapsed.status == models.InvitationStatus.EXPIRED


@pytest.mark.asyncio
async def test_cannot_invite_existing_member(services, seed):
	club = await seed.club()
	await seed.member(club.club_id, "bob")
	with pytest.raises(ClubsError) as exc:
		await services.invitations.invite(seed.user("owner"), club.club_id, invited_user_id="bob")
	assert exc.value.code == ErrorCode.CANNOT_INVITE_EXISTING_MEMBER


@pytest.mark.asyncio
async def test_captain_cannot_invite_leadership(services, seed):
	club = await seed.club()
	await seed.member(club.club_id, "cap", role="captain")
	cap = seed.user("cap")
	await services.invitations.invite(cap, club.club_id, invited_user_id="bob")
	with pytest.raises(ClubsError) as exc:
		await services.invitations.invite(cap, club.club_id, invited_user_id="dan", role="admin")
	assert exc.value.code == ErrorCode.INSUFFICIENT_PRIVILEGES


@pytest.mark.asyncio
async def test_invite_requires_exactly_one_target(services, seed):
	club = await seed.club()
	with pytest.raises(ClubsError) as exc:
		await services.invitations.invite(seed.user("owner"), club.club_id)
	assert exc.value.code == ErrorCode.VALIDATION_ERROR
	with pytest.raises(ClubsError):
		await services.invitations.invite(seed.user("owner"), club.club_id, invited_user_id="bob", invited_email="b@x.io")


@pytest.mark.asyncio
async def test_accept_activates_pending_join_request(services, seed):
	club = await seed.club(requires_approval=True)
	invitation = await services.invitations.invite(seed.user("owner"), club.club_id, invited_user_id="bob")
	pending = await services.memberships.request_join(seed.user("bob"), club.club_id)
	with pytest.raises(ClubsError) as exc:
		await services.invitations.invite(seed.user("owner"), club.club_id, invited_user_id="bob")
	assert exc.value.code == ErrorCode.CANNOT_INVITE_EXISTING_MEMBER
	membership = await services.invitations.respond(seed.user("bob"), invitation.invitation_id, accept=True)
	assert membership.membership_id == pending.membership_id
	assert membership.status == models.MembershipStatus.ACTIVE


@pytest.mark.asyncio
async def test_cancel_frees_the_slot(services, seed):
	club = await seed.club()
	owner = seed.user("owner")
	invitation = await services.invitations.invite(owner, club.club_id, invited_user_id="bob")
	cancelled = await services.invitations.cancel(owner, invitation.invitation_id)
	assert cancelled.status == models.InvitationStatus.CANCELLED
	again = await services.invitations.invite(owner, club.club_id, invited_user_id="bob")
	assert again.status == models.InvitationStatus.PENDING


@pytest.mark.asyncio
async def test_expire_stale_and_listings(services, seed, clock):
	club = await seed.club()
	owner = seed.user("owner")
	stale = await services.invitations.invite(owner, club.club_id, invited_user_id="bob", expires_in_days=1)
	clock.advance(hours=12)
	fresh = await services.invitations.invite(owner, club.club_id, invited_user_id="carol", expires_in_days=3)
	clock.advance(days=1)

	listed = await services.invitations.list_club_invitations(owner, club.club_id, status="expired")
	assert [i.invitation_id for i in listed] == [stale.invitation_id]
	assert await services.invitations.list_my_invitations(seed.user("bob")) == []
	assert [i.invitation_id for i in await services.invitations.list_my_invitations(seed.user("carol"))] == [
		fresh.invitation_id
	]

	assert await services.invitations.expire_stale() == 1
	assert await services.invitations.expire_stale() == 0
	stored = await services.repository.get_invitation(stale.invitation_id)
	assert stored.status == models.InvitationStatus.EXPIRED


@pytest.mark.asyncio
async def test_expiry_window_is_bounded(services, seed):
	club = await seed.club()
	with pytest.raises(ClubsError) as exc:
		await services.invitations.invite(seed.user("owner"), club.club_id, invited_user_id="bob", expires_in_days=31)
	assert exc.value.code == ErrorCode.VALIDATION_ERROR
