"""Club creation and settings."""

from __future__ import annotations

import logging
from typing import Optional
from uuid import uuid4

from app.clubs.domain import models, policies, repo as repo_module
from app.clubs.domain.authorization import Action, AuthorizationService
from app.clubs.domain.clock import Clock, SystemClock
from app.clubs.domain.concurrency import RetryPolicy
from app.clubs.domain.exceptions import ClubsError, ErrorCode
from app.clubs.domain.repo import committed
from app.clubs.infra.redis_streams import ClubEventPublisher
from app.infra.auth import AuthenticatedUser
from app.obs import metrics as obs_metrics

_LOG = logging.getLogger(__name__)


class ClubService:
	"""Bootstraps clubs together with their first owner."""

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

	async def create_club(
		self,
		user: AuthenticatedUser,
		*,
		name: str,
		description: str = "",
		requires_approval: bool = False,
	) -> tuple[models.Club, models.Membership]:
		clean_name = policies.clean_text(name, "name", max_length=120)
		if not clean_name:
			raise ClubsError(ErrorCode.VALIDATION_ERROR, "club name is required", field="name")
		clean_description = policies.clean_text(description, "description") or ""
		now = self.clock.now()
		club = models.Club(
			club_id=str(uuid4()),
			name=clean_name,
			description=clean_description,
			requires_approval=requires_approval,
			created_by=user.id,
			created_at=now,
			updated_at=now,
		)
		owner = models.Membership(
			membership_id=str(uuid4()),
			club_id=club.club_id,
			user_id=user.id,
			role=models.ClubRole.OWNER,
			status=models.MembershipStatus.ACTIVE,
			joined_at=now,
			updated_at=now,
		)
		await self.repo.transact([self.repo.put_club(club), self.repo.put_membership(owner)])
		owner = committed(owner)
		obs_metrics.inc_membership_transition("created_owner")
		_LOG.info("clubs.club_created", extra={"club_id": club.club_id, "owner_id": user.id})
		await self.publisher.publish_membership_event(
			"created",
			club_id=club.club_id,
			user_id=user.id,
			membership_id=owner.membership_id,
			role=owner.role.value,
			status=owner.status.value,
			actor_id=user.id,
		)
		return committed(club), owner

	async def get_club(self, club_id: str) -> models.Club:
		club = await self.repo.get_club(club_id)
		if club is None:
			raise ClubsError(ErrorCode.CLUB_NOT_FOUND, club_id=club_id)
		return club

	async def update_settings(
		self,
		user: AuthenticatedUser,
		club_id: str,
		*,
		name: Optional[str] = None,
		description: Optional[str] = None,
		requires_approval: Optional[bool] = None,
	) -> models.Club:
		async def attempt() -> models.Club:
			club = await self.get_club(club_id)
			context = await self.authz.load_context(user, club_id)
			self.authz.require(user, context, Action.MANAGE_CLUB_SETTINGS)
			changes: dict[str, object] = {"updated_at": self.clock.now()}
			if name is not None:
				clean_name = policies.clean_text(name, "name", max_length=120)
				if not clean_name:
					raise ClubsError(ErrorCode.VALIDATION_ERROR, "club name is required", field="name")
				changes["name"] = clean_name
			if description is not None:
				changes["description"] = policies.clean_text(description, "description") or ""
			if requires_approval is not None:
				changes["requires_approval"] = requires_approval
			updated = club.model_copy(update=changes)
			await self.repo.transact([self.repo.put_club(updated)])
			return committed(updated)

		return await self.retry.run("club.update_settings", attempt)


__all__ = ["ClubService"]
