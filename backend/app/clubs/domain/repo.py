"""Typed access to club items in the item store.

Key layout::

	CLUB#<club>        METADATA                       club
	CLUB#<club>        MEMBER#<user>                  current membership   (gsi USER#<user> / CLUB#<club>)
	CLUB#<club>        MEMBER_HISTORY#<user>#<id>     removed memberships superseded by a rejoin
	CLUB#<club>        PENDING_INVITE#<target>        one open invitation per target (gsi INVITEE#<target>)
	INVITATION#<id>    METADATA                       invitation           (gsi CLUB#<club> / INVITATION#<created>#<id>)
	RIDE#<ride>        METADATA                       ride                 (gsi CLUB#<club> / RIDE#<created>#<ride>)
	RIDE#<ride>        PARTICIPANT#<user>             participation        (gsi USER#<user> / RIDE#<ride>)

A model whose ``version`` is 0 has never been stored and is written with
``if_absent``; any other model is written conditionally on its loaded version.
"""

from __future__ import annotations

from typing import Optional, Sequence, TypeVar

from pydantic import BaseModel

from app.clubs.domain import models
from app.clubs.infra.store import Delete, Item, ItemStore, Put, WriteOp

_M = TypeVar("_M", bound=BaseModel)

METADATA = "METADATA"


def club_pk(club_id: str) -> str:
	return f"CLUB#{club_id}"


def ride_pk(ride_id: str) -> str:
	return f"RIDE#{ride_id}"


def user_pk(user_id: str) -> str:
	return f"USER#{user_id}"


def member_sk(user_id: str) -> str:
	return f"MEMBER#{user_id}"


def participant_sk(user_id: str) -> str:
	return f"PARTICIPANT#{user_id}"


def invitation_pk(invitation_id: str) -> str:
	return f"INVITATION#{invitation_id}"


def invite_slot_sk(target: str) -> str:
	return f"PENDING_INVITE#{target}"


def committed(model: _M) -> _M:
	"""The in-memory view of ``model`` after a successful write."""
	return model.model_copy(update={"version": model.version + 1})  # type: ignore[attr-defined]


def _load(model_cls: type[_M], item: Optional[Item]) -> Optional[_M]:
	if item is None:
		return None
	return model_cls.model_validate({**item.data, "version": item.version})


def _put(pk: str, sk: str, model: BaseModel, *, gsi1pk: str | None = None, gsi1sk: str | None = None) -> Put:
	data = model.model_dump(mode="json", exclude={"version"})
	version = getattr(model, "version", 0)
	if version == 0:
		return Put(pk, sk, data, if_absent=True, gsi1pk=gsi1pk, gsi1sk=gsi1sk)
	return Put(pk, sk, data, expected_version=version, gsi1pk=gsi1pk, gsi1sk=gsi1sk)


class ClubsRepository:
	"""Reads return models stamped with their stored version; writes are op builders."""

	def __init__(self, store: ItemStore) -> None:
		self.store = store

	async def transact(self, ops: Sequence[WriteOp]) -> None:
		await self.store.transact(ops)

	# clubs -----------------------------------------------------------------

	async def get_club(self, club_id: str) -> Optional[models.Club]:
		return _load(models.Club, await self.store.get(club_pk(club_id), METADATA))

	def put_club(self, club: models.Club) -> Put:
		return _put(club_pk(club.club_id), METADATA, club)

	# memberships -----------------------------------------------------------

	async def get_membership(self, club_id: str, user_id: str) -> Optional[models.Membership]:
		return _load(models.Membership, await self.store.get(club_pk(club_id), member_sk(user_id)))

	async def get_membership_by_id(self, club_id: str, membership_id: str) -> Optional[models.Membership]:
		for membership in await self.list_memberships(club_id):
			if membership.membership_id == membership_id:
				return membership
		return None

	async def list_memberships(self, club_id: str) -> list[models.Membership]:
		items = await self.store.query(club_pk(club_id), "MEMBER#")
		return [m for m in (_load(models.Membership, item) for item in items) if m is not None]

	async def list_membership_history(self, club_id: str, user_id: str) -> list[models.Membership]:
		items = await self.store.query(club_pk(club_id), f"MEMBER_HISTORY#{user_id}#")
		return [m for m in (_load(models.Membership, item) for item in items) if m is not None]

	async def list_user_memberships(self, user_id: str) -> list[models.Membership]:
		items = await self.store.query_index(user_pk(user_id), "CLUB#")
		return [m for m in (_load(models.Membership, item) for item in items) if m is not None]

	async def count_active_owners(self, club_id: str) -> int:
		return sum(1 for m in await self.list_memberships(club_id) if m.is_active_owner)

	def put_membership(self, membership: models.Membership) -> Put:
		return _put(
			club_pk(membership.club_id),
			member_sk(membership.user_id),
			membership,
			gsi1pk=user_pk(membership.user_id),
			gsi1sk=club_pk(membership.club_id),
		)

	def archive_membership(self, membership: models.Membership) -> Put:
		data = membership.model_dump(mode="json", exclude={"version"})
		sk = f"MEMBER_HISTORY#{membership.user_id}#{membership.membership_id}"
		return Put(club_pk(membership.club_id), sk, data, if_absent=True)

	# invitations -----------------------------------------------------------

	async def get_invitation(self, invitation_id: str) -> Optional[models.Invitation]:
		return _load(models.Invitation, await self.store.get(invitation_pk(invitation_id), METADATA))

	async def list_club_invitations(self, club_id: str) -> list[models.Invitation]:
		items = await self.store.query_index(club_pk(club_id), "INVITATION#")
		return [i for i in (_load(models.Invitation, item) for item in items) if i is not None]

	async def list_invitations(self) -> list[models.Invitation]:
		items = await self.store.scan("INVITATION#", METADATA)
		return [i for i in (_load(models.Invitation, item) for item in items) if i is not None]

	async def get_invite_slot(self, club_id: str, target: str) -> Optional[Item]:
		return await self.store.get(club_pk(club_id), invite_slot_sk(target))

	async def list_invite_slots_for(self, target: str) -> list[Item]:
		return await self.store.query_index(f"INVITEE#{target}", "CLUB#")

	def put_invitation(self, invitation: models.Invitation) -> Put:
		return _put(
			invitation_pk(invitation.invitation_id),
			METADATA,
			invitation,
			gsi1pk=club_pk(invitation.club_id),
			gsi1sk=f"INVITATION#{invitation.created_at.isoformat()}#{invitation.invitation_id}",
		)

	def claim_invite_slot(self, invitation: models.Invitation, *, replacing: Optional[Item] = None) -> Put:
		data = {
			"invitation_id": invitation.invitation_id,
			"expires_at": invitation.expires_at.isoformat(),
		}
		pk = club_pk(invitation.club_id)
		sk = invite_slot_sk(invitation.target)
		gsi1pk = f"INVITEE#{invitation.target}"
		if replacing is None:
			return Put(pk, sk, data, if_absent=True, gsi1pk=gsi1pk, gsi1sk=pk)
		return Put(pk, sk, data, expected_version=replacing.version, gsi1pk=gsi1pk, gsi1sk=pk)

	def release_invite_slot(self, invitation: models.Invitation, slot: Item) -> Delete:
		return Delete(club_pk(invitation.club_id), invite_slot_sk(invitation.target), expected_version=slot.version)

	# rides -----------------------------------------------------------------

	async def get_ride(self, ride_id: str) -> Optional[models.Ride]:
		return _load(models.Ride, await self.store.get(ride_pk(ride_id), METADATA))

	async def list_club_rides(self, club_id: str) -> list[models.Ride]:
		items = await self.store.query_index(club_pk(club_id), "RIDE#")
		return [r for r in (_load(models.Ride, item) for item in items) if r is not None]

	async def list_rides(self) -> list[models.Ride]:
		items = await self.store.scan("RIDE#", METADATA)
		return [r for r in (_load(models.Ride, item) for item in items) if r is not None]

	def put_ride(self, ride: models.Ride) -> Put:
		return _put(
			ride_pk(ride.ride_id),
			METADATA,
			ride,
			gsi1pk=club_pk(ride.club_id),
			gsi1sk=f"RIDE#{ride.created_at.isoformat()}#{ride.ride_id}",
		)

	# participations --------------------------------------------------------

	async def get_participation(self, ride_id: str, user_id: str) -> Optional[models.RideParticipation]:
		return _load(models.RideParticipation, await self.store.get(ride_pk(ride_id), participant_sk(user_id)))

	async def list_participations(self, ride_id: str) -> list[models.RideParticipation]:
		items = await self.store.query(ride_pk(ride_id), "PARTICIPANT#")
		return [p for p in (_load(models.RideParticipation, item) for item in items) if p is not None]

	async def list_user_participations(self, user_id: str) -> list[models.RideParticipation]:
		items = await self.store.query_index(user_pk(user_id), "RIDE#")
		return [p for p in (_load(models.RideParticipation, item) for item in items) if p is not None]

	def put_participation(self, participation: models.RideParticipation) -> Put:
		return _put(
			ride_pk(participation.ride_id),
			participant_sk(participation.user_id),
			participation,
			gsi1pk=user_pk(participation.user_id),
			gsi1sk=ride_pk(participation.ride_id),
		)


__all__ = ["ClubsRepository", "committed"]
