"""Invitation lifecycle: issue, respond, cancel and expire."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional
from uuid import uuid4

from app.clubs.domain import models, policies, repo as repo_module
from app.clubs.domain.authorization import Action, AuthorizationService
from app.clubs.domain.clock import Clock, SystemClock
from app.clubs.domain.concurrency import RetryPolicy
from app.clubs.domain.exceptions import ClubsError, ErrorCode
from app.clubs.domain.membership_service import MembershipService
from app.clubs.domain.repo import committed
from app.clubs.infra.redis_streams import ClubEventPublisher
from app.clubs.infra.store import VersionConflict, WriteOp
from app.infra.auth import AuthenticatedUser
from app.obs import metrics as obs_metrics
from app.settings import settings

_LOG = logging.getLogger(__name__)


class InvitationService:
	"""Issues invitations and turns accepted ones into active memberships."""

	def __init__(
		self,
		*,
		repository: repo_module.ClubsRepository,
		memberships: MembershipService | None = None,
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
		self.memberships = memberships or MembershipService(
			repository=repository,
			authz=self.authz,
			clock=self.clock,
			publisher=self.publisher,
			retry=self.retry,
		)

	def _ttl(self, expires_in_days: Optional[int]) -> timedelta:
		days = settings.clubs_invitation_ttl_days if expires_in_days is None else expires_in_days
		if days < 1 or days > settings.clubs_invitation_max_ttl_days:
			raise ClubsError(
				ErrorCode.VALIDATION_ERROR,
				f"expiry must be between 1 and {settings.clubs_invitation_max_ttl_days} days",
				field="expires_in_days",
			)
		return timedelta(days=days)

	async def _require_invitation(self, invitation_id: str) -> models.Invitation:
		invitation = await self.repo.get_invitation(invitation_id)
		if invitation is None:
			raise ClubsError(ErrorCode.INVITATION_NOT_FOUND, invitation_id=invitation_id)
		return invitation

	async def _close_ops(self, invitation: models.Invitation) -> list[WriteOp]:
		"""Ops that free the invitee's pending slot if it still points at ``invitation``."""
		slot = await self.repo.get_invite_slot(invitation.club_id, invitation.target)
		if slot is None or slot.data.get("invitation_id") != invitation.invitation_id:
			return []
		return [self.repo.release_invite_slot(invitation, slot)]

	async def _publish(self, event: str, invitation: models.Invitation, actor_id: str | None) -> None:
		obs_metrics.inc_invitation_transition(event)
		_LOG.info(
			"clubs.invitation_transition",
			extra={"event": event, "invitation_id": invitation.invitation_id, "club_id": invitation.club_id},
		)
		await self.publisher.publish_invitation_event(
			event,
			invitation_id=invitation.invitation_id,
			club_id=invitation.club_id,
			status=invitation.status.value,
			actor_id=actor_id,
		)

	# ------------------------------------------------------------------
	# Issue

	async def invite(
		self,
		user: AuthenticatedUser,
		club_id: str,
		*,
		invited_user_id: Optional[str] = None,
		invited_email: Optional[str] = None,
		role: models.ClubRole | str = models.ClubRole.MEMBER,
		message: Optional[str] = None,
		expires_in_days: Optional[int] = None,
	) -> models.Invitation:
		if bool(invited_user_id) == bool(invited_email):
			raise ClubsError(
				ErrorCode.VALIDATION_ERROR,
				"invite either a user id or an email address",
				field="target",
			)
		email = policies.normalise_email(invited_email) if invited_email else None
		offered = policies.parse_club_role(role)
		note = policies.clean_text(message, "message")
		ttl = self._ttl(expires_in_days)

		async def attempt() -> models.Invitation:
			if await self.repo.get_club(club_id) is None:
				raise ClubsError(ErrorCode.CLUB_NOT_FOUND, club_id=club_id)
			context = await self.authz.load_context(user, club_id)
			action = Action.INVITE_MEMBER if offered == models.ClubRole.MEMBER else Action.INVITE_LEADERSHIP
			self.authz.require(user, context, action)
			policies.ensure_can_grant(context.club_role, offered, site_admin=context.site_admin)
			if invited_user_id:
				existing = await self.repo.get_membership(club_id, invited_user_id)
				if existing is not None and existing.status != models.MembershipStatus.REMOVED:
					raise ClubsError(
						ErrorCode.CANNOT_INVITE_EXISTING_MEMBER,
						club_id=club_id,
						user_id=invited_user_id,
					)
			now = self.clock.now()
			invitation = models.Invitation(
				invitation_id=str(uuid4()),
				club_id=club_id,
				invited_user_id=invited_user_id,
				invited_email=email,
				invited_by=user.id,
				role=offered,
				status=models.InvitationStatus.PENDING,
				message=note,
				created_at=now,
				expires_at=now + ttl,
			)
			ops: list[WriteOp] = []
			slot = await self.repo.get_invite_slot(club_id, invitation.target)
			if slot is not None:
				prior = await self.repo.get_invitation(str(slot.data.get("invitation_id")))
				if prior is not None and prior.status == models.InvitationStatus.PENDING:
					if not prior.is_expired(now):
						raise ClubsError(
							ErrorCode.USER_ALREADY_INVITED,
							club_id=club_id,
							invitation_id=prior.invitation_id,
						)
					ops.append(
						self.repo.put_invitation(
							prior.model_copy(update={"status": models.InvitationStatus.EXPIRED, "processed_at": now})
						)
					)
			ops.append(self.repo.claim_invite_slot(invitation, replacing=slot))
			ops.append(self.repo.put_invitation(invitation))
			await self.repo.transact(ops)
			return committed(invitation)

		invitation = await self.retry.run("invitation.invite", attempt)
		await self._publish("created", invitation, user.id)
		return invitation

	# ------------------------------------------------------------------
	# Respond

	async def respond(
		self,
		user: AuthenticatedUser,
		invitation_id: str,
		*,
		accept: bool,
	) -> Optional[models.Membership]:
		"""Accept or decline; returns the resulting membership on accept."""

		async def attempt() -> tuple[models.Invitation, Optional[models.Membership]]:
			invitation = await self._require_invitation(invitation_id)
			now = self.clock.now()
			if invitation.is_expired(now):
				raise ClubsError(
					ErrorCode.INVITATION_EXPIRED,
					invitation_id=invitation_id,
					expires_at=invitation.expires_at.isoformat(),
				)
			if invitation.status != models.InvitationStatus.PENDING:
				raise ClubsError(
					ErrorCode.INVITATION_ALREADY_PROCESSED,
					invitation_id=invitation_id,
					status=invitation.status.value,
				)
			if not invitation.addressed_to(user.id, user.email):
				raise ClubsError(ErrorCode.INVITATION_NOT_FOR_USER, invitation_id=invitation_id)
			ops = await self._close_ops(invitation)
			updated = invitation.model_copy(
				update={
					"status": models.InvitationStatus.ACCEPTED if accept else models.InvitationStatus.DECLINED,
					"processed_at": now,
					"processed_by": user.id,
				}
			)
			ops.append(self.repo.put_invitation(updated))
			membership: Optional[models.Membership] = None
			if accept:
				existing = await self.repo.get_membership(invitation.club_id, user.id)
				if existing is not None and existing.status == models.MembershipStatus.PENDING:
					membership = existing.model_copy(
						update={
							"status": models.MembershipStatus.ACTIVE,
							"role": invitation.role,
							"invited_by": invitation.invited_by,
							"processed_by": invitation.invited_by,
							"processed_at": now,
							"updated_at": now,
						}
					)
					ops.append(self.repo.put_membership(membership))
				else:
					membership, admission = self.memberships.admission_ops(
						existing,
						models.Membership(
							membership_id=str(uuid4()),
							club_id=invitation.club_id,
							user_id=user.id,
							role=invitation.role,
							status=models.MembershipStatus.ACTIVE,
							joined_at=now,
							updated_at=now,
							invited_by=invitation.invited_by,
						),
					)
					ops.extend(admission)
			await self.repo.transact(ops)
			return committed(updated), committed(membership) if membership is not None else None

		invitation, membership = await self.retry.run("invitation.respond", attempt)
		await self._publish(invitation.status.value, invitation, user.id)
		if membership is not None:
			obs_metrics.inc_membership_transition("invitation_accepted")
			await self.publisher.publish_membership_event(
				"joined",
				club_id=membership.club_id,
				user_id=membership.user_id,
				membership_id=membership.membership_id,
				role=membership.role.value,
				status=membership.status.value,
				actor_id=user.id,
			)
		return membership

	# ------------------------------------------------------------------
	# Cancel / expire

	async def cancel(self, user: AuthenticatedUser, invitation_id: str) -> models.Invitation:
		async def attempt() -> models.Invitation:
			invitation = await self._require_invitation(invitation_id)
			if invitation.invited_by != user.id:
				context = await self.authz.load_context(user, invitation.club_id)
				self.authz.require(user, context, Action.CANCEL_INVITATION)
			now = self.clock.now()
			if invitation.is_expired(now):
				raise ClubsError(ErrorCode.INVITATION_EXPIRED, invitation_id=invitation_id)
			if invitation.status != models.InvitationStatus.PENDING:
				raise ClubsError(
					ErrorCode.INVITATION_ALREADY_PROCESSED,
					invitation_id=invitation_id,
					status=invitation.status.value,
				)
			ops = await self._close_ops(invitation)
			updated = invitation.model_copy(
				update={
					"status": models.InvitationStatus.CANCELLED,
					"processed_at": now,
					"processed_by": user.id,
				}
			)
			ops.append(self.repo.put_invitation(updated))
			await self.repo.transact(ops)
			return committed(updated)

		invitation = await self.retry.run("invitation.cancel", attempt)
		await self._publish("cancelled", invitation, user.id)
		return invitation

	async def expire_stale(self, now: Optional[datetime] = None) -> int:
		"""Mark lapsed pending invitations ``expired`` and free their slots.

		Expiry is already enforced lazily on every read; this only keeps stored
		statuses honest for listings. Invitations answered concurrently are skipped.
		"""
		cutoff = now or self.clock.now()
		expired = 0
		for invitation in await self.repo.list_invitations():
			if invitation.status != models.InvitationStatus.PENDING or cutoff <= invitation.expires_at:
				continue
			ops = await self._close_ops(invitation)
			updated = invitation.model_copy(update={"status": models.InvitationStatus.EXPIRED, "processed_at": cutoff})
			ops.append(self.repo.put_invitation(updated))
			try:
				await self.repo.transact(ops)
			except VersionConflict:
				_LOG.debug("clubs.invitation_expiry_skipped", extra={"invitation_id": invitation.invitation_id})
				continue
			expired += 1
			await self._publish("expired", committed(updated), None)
		return expired

	# ------------------------------------------------------------------
	# Reads

	def _as_seen(self, invitation: models.Invitation, now: datetime) -> models.Invitation:
		if invitation.status == models.InvitationStatus.PENDING and invitation.is_expired(now):
			return invitation.model_copy(update={"status": models.InvitationStatus.EXPIRED})
		return invitation

	async def get_invitation(self, user: AuthenticatedUser, invitation_id: str) -> models.Invitation:
		invitation = await self._require_invitation(invitation_id)
		if not invitation.addressed_to(user.id, user.email) and invitation.invited_by != user.id:
			context = await self.authz.load_context(user, invitation.club_id)
			self.authz.require(user, context, Action.INVITE_MEMBER)
		return self._as_seen(invitation, self.clock.now())

	async def list_club_invitations(
		self,
		user: AuthenticatedUser,
		club_id: str,
		*,
		status: models.InvitationStatus | str | None = None,
		limit: Optional[int] = None,
	) -> list[models.Invitation]:
		status_filter = models.InvitationStatus.parse(status) if status is not None else None
		if status is not None and status_filter is None:
			raise ClubsError(ErrorCode.VALIDATION_ERROR, "unknown invitation status", status=status)
		context = await self.authz.load_context(user, club_id)
		self.authz.require(user, context, Action.INVITE_MEMBER)
		now = self.clock.now()
		seen = [self._as_seen(i, now) for i in await self.repo.list_club_invitations(club_id)]
		if status_filter is not None:
			seen = [i for i in seen if i.status == status_filter]
		seen.sort(key=lambda i: i.created_at, reverse=True)
		return seen[: policies.clamp_limit(limit)]

	async def list_my_invitations(self, user: AuthenticatedUser) -> list[models.Invitation]:
		targets = [f"user:{user.id}"]
		if user.email:
			targets.append(f"email:{user.email.strip().lower()}")
		now = self.clock.now()
		pending: list[models.Invitation] = []
		for target in targets:
			for slot in await self.repo.list_invite_slots_for(target):
				invitation = await self.repo.get_invitation(str(slot.data.get("invitation_id")))
				if invitation is not None and invitation.status == models.InvitationStatus.PENDING and not invitation.is_expired(now):
					pending.append(invitation)
		pending.sort(key=lambda i: i.created_at, reverse=True)
		return pending


__all__ = ["InvitationService"]
