"""Membership lifecycle: join requests, approvals, role changes and removal."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional
from uuid import uuid4

from app.clubs.domain import models, policies, repo as repo_module
from app.clubs.domain.authorization import Action, AuthContext, AuthorizationService
from app.clubs.domain.clock import Clock, SystemClock
from app.clubs.domain.concurrency import RetryPolicy
from app.clubs.domain.exceptions import ClubsError, ErrorCode
from app.clubs.domain.repo import committed
from app.clubs.infra.redis_streams import ClubEventPublisher
from app.clubs.infra.store import WriteOp
from app.infra.auth import AuthenticatedUser
from app.obs import metrics as obs_metrics

_LOG = logging.getLogger(__name__)

_ADMIN_ROLES = frozenset({models.ClubRole.ADMIN, models.ClubRole.OWNER})


class MembershipService:
	"""Applies membership transitions under per-key conditional writes.

	Transitions that take an active owner out of circulation also rewrite the
	club item, so two concurrent demotions of the last two owners cannot both
	pass the owner count check.
	"""

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

	# ------------------------------------------------------------------
	# Helpers

	async def _require_club(self, club_id: str) -> models.Club:
		club = await self.repo.get_club(club_id)
		if club is None:
			raise ClubsError(ErrorCode.CLUB_NOT_FOUND, club_id=club_id)
		return club

	async def _require_membership(self, club_id: str, user_id: str) -> models.Membership:
		membership = await self.repo.get_membership(club_id, user_id)
		if membership is None:
			raise ClubsError(ErrorCode.MEMBERSHIP_NOT_FOUND, club_id=club_id, user_id=user_id)
		return membership

	def admission_ops(
		self,
		existing: Optional[models.Membership],
		admitted: models.Membership,
	) -> tuple[models.Membership, list[WriteOp]]:
		"""Write ops that make ``admitted`` the current membership for its (club, user).

		A previous ``removed`` record is archived rather than overwritten so the
		history survives the rejoin.
		"""
		if existing is None:
			return admitted, [self.repo.put_membership(admitted)]
		if existing.status != models.MembershipStatus.REMOVED:
			raise ClubsError(ErrorCode.ALREADY_MEMBER, club_id=existing.club_id, user_id=existing.user_id)
		replacement = admitted.model_copy(update={"version": existing.version})
		return replacement, [self.repo.archive_membership(existing), self.repo.put_membership(replacement)]

	async def _owner_guard_ops(
		self,
		club: models.Club,
		target: models.Membership,
		*,
		next_role: models.ClubRole,
		next_status: models.MembershipStatus,
		now: datetime,
	) -> list[WriteOp]:
		losing_owner = target.is_active_owner and (
			next_role != models.ClubRole.OWNER or next_status != models.MembershipStatus.ACTIVE
		)
		if not losing_owner:
			return []
		policies.ensure_owner_remains(await self.repo.count_active_owners(club.club_id), losing_owner=True)
		return [self.repo.put_club(club.model_copy(update={"updated_at": now}))]

	def _ensure_can_manage(self, context: AuthContext, target: models.Membership) -> None:
		policies.ensure_can_act_on(context.club_role, target.role, site_admin=context.site_admin)

	async def _publish(self, event: str, membership: models.Membership, actor_id: str) -> None:
		obs_metrics.inc_membership_transition(event)
		_LOG.info(
			"clubs.membership_transition",
			extra={
				"event": event,
				"club_id": membership.club_id,
				"member_id": membership.user_id,
				"role": membership.role.value,
				"status": membership.status.value,
			},
		)
		await self.publisher.publish_membership_event(
			event,
			club_id=membership.club_id,
			user_id=membership.user_id,
			membership_id=membership.membership_id,
			role=membership.role.value,
			status=membership.status.value,
			actor_id=actor_id,
		)

	# ------------------------------------------------------------------
	# Join requests

	async def request_join(
		self,
		user: AuthenticatedUser,
		club_id: str,
		*,
		message: Optional[str] = None,
	) -> models.Membership:
		join_message = policies.clean_text(message, "message")

		async def attempt() -> models.Membership:
			club = await self._require_club(club_id)
			existing = await self.repo.get_membership(club_id, user.id)
			now = self.clock.now()
			status = models.MembershipStatus.PENDING if club.requires_approval else models.MembershipStatus.ACTIVE
			membership, ops = self.admission_ops(
				existing,
				models.Membership(
					membership_id=str(uuid4()),
					club_id=club_id,
					user_id=user.id,
					role=models.ClubRole.MEMBER,
					status=status,
					joined_at=now,
					updated_at=now,
					join_message=join_message,
				),
			)
			await self.repo.transact(ops)
			return committed(membership)

		membership = await self.retry.run("membership.request_join", attempt)
		event = "requested" if membership.status == models.MembershipStatus.PENDING else "joined"
		await self._publish(event, membership, user.id)
		return membership

	async def approve(self, user: AuthenticatedUser, club_id: str, membership_id: str) -> models.Membership:
		return await self._process_request(user, club_id, membership_id, approve=True, reason=None)

	async def reject(
		self,
		user: AuthenticatedUser,
		club_id: str,
		membership_id: str,
		*,
		reason: Optional[str] = None,
	) -> models.Membership:
		return await self._process_request(user, club_id, membership_id, approve=False, reason=reason)

	async def _process_request(
		self,
		user: AuthenticatedUser,
		club_id: str,
		membership_id: str,
		*,
		approve: bool,
		reason: Optional[str],
	) -> models.Membership:
		clean_reason = policies.clean_text(reason, "reason")
		target_status = models.MembershipStatus.ACTIVE if approve else models.MembershipStatus.REMOVED

		async def attempt() -> models.Membership:
			await self._require_club(club_id)
			context = await self.authz.load_context(user, club_id)
			self.authz.require(user, context, Action.PROCESS_JOIN_REQUEST)
			target = await self.repo.get_membership_by_id(club_id, membership_id)
			if target is None:
				raise ClubsError(ErrorCode.MEMBERSHIP_NOT_FOUND, club_id=club_id, membership_id=membership_id)
			if target.status != models.MembershipStatus.PENDING:
				raise ClubsError(
					ErrorCode.INVALID_MEMBERSHIP_STATUS_TRANSITION,
					f"membership is {target.status.value}, not pending",
					from_status=target.status.value,
					to_status=target_status.value,
				)
			now = self.clock.now()
			updated = target.model_copy(
				update={
					"status": target_status,
					"updated_at": now,
					"processed_by": user.id,
					"processed_at": now,
					"reason": clean_reason,
				}
			)
			await self.repo.transact([self.repo.put_membership(updated)])
			return committed(updated)

		membership = await self.retry.run("membership.approve" if approve else "membership.reject", attempt)
		await self._publish("approved" if approve else "rejected", membership, user.id)
		return membership

	# ------------------------------------------------------------------
	# Roles

	async def update_role(
		self,
		user: AuthenticatedUser,
		club_id: str,
		member_id: str,
		new_role: models.ClubRole | str,
		*,
		reason: Optional[str] = None,
	) -> models.Membership:
		role = policies.parse_club_role(new_role)
		clean_reason = policies.clean_text(reason, "reason")

		async def attempt() -> models.Membership:
			club = await self._require_club(club_id)
			context = await self.authz.load_context(user, club_id)
			self.authz.require(user, context, Action.ASSIGN_CLUB_ROLE)
			target = await self._require_membership(club_id, member_id)
			if target.status == models.MembershipStatus.REMOVED:
				raise ClubsError(
					ErrorCode.INVALID_MEMBERSHIP_STATUS_TRANSITION,
					"membership is removed",
					from_status=target.status.value,
				)
			if target.role == role:
				return target
			self._ensure_can_manage(context, target)
			policies.ensure_can_grant(context.club_role, role, site_admin=context.site_admin)
			stepping_down = member_id == user.id and role < target.role
			if not stepping_down and (role in _ADMIN_ROLES or target.role in _ADMIN_ROLES):
				self.authz.require(user, context, Action.MANAGE_ADMINS)
			now = self.clock.now()
			ops = await self._owner_guard_ops(club, target, next_role=role, next_status=target.status, now=now)
			updated = target.model_copy(
				update={
					"role": role,
					"updated_at": now,
					"processed_by": user.id,
					"processed_at": now,
					"reason": clean_reason,
				}
			)
			ops.append(self.repo.put_membership(updated))
			await self.repo.transact(ops)
			return committed(updated)

		membership = await self.retry.run("membership.update_role", attempt)
		await self._publish("role_changed", membership, user.id)
		return membership

	# ------------------------------------------------------------------
	# Status

	async def remove(
		self,
		user: AuthenticatedUser,
		club_id: str,
		member_id: str,
		*,
		reason: Optional[str] = None,
	) -> models.Membership:
		"""Remove a member, or leave the club when ``member_id`` is the caller."""
		clean_reason = policies.clean_text(reason, "reason")
		leaving = member_id == user.id

		async def attempt() -> models.Membership:
			club = await self._require_club(club_id)
			target = await self._require_membership(club_id, member_id)
			if not leaving:
				context = await self.authz.load_context(user, club_id)
				self.authz.require(user, context, Action.REMOVE_MEMBER)
				self._ensure_can_manage(context, target)
			policies.ensure_membership_transition(target.status, models.MembershipStatus.REMOVED)
			now = self.clock.now()
			ops = await self._owner_guard_ops(
				club,
				target,
				next_role=target.role,
				next_status=models.MembershipStatus.REMOVED,
				now=now,
			)
			updated = target.model_copy(
				update={
					"status": models.MembershipStatus.REMOVED,
					"updated_at": now,
					"processed_by": user.id,
					"processed_at": now,
					"reason": clean_reason,
				}
			)
			ops.append(self.repo.put_membership(updated))
			await self.repo.transact(ops)
			return committed(updated)

		membership = await self.retry.run("membership.leave" if leaving else "membership.remove", attempt)
		await self._publish("left" if leaving else "removed", membership, user.id)
		return membership

	async def leave(self, user: AuthenticatedUser, club_id: str) -> models.Membership:
		return await self.remove(user, club_id, user.id)

	async def suspend(
		self,
		user: AuthenticatedUser,
		club_id: str,
		member_id: str,
		*,
		reason: Optional[str] = None,
	) -> models.Membership:
		return await self._set_status(user, club_id, member_id, models.MembershipStatus.SUSPENDED, reason)

	async def reinstate(self, user: AuthenticatedUser, club_id: str, member_id: str) -> models.Membership:
		return await self._set_status(user, club_id, member_id, models.MembershipStatus.ACTIVE, None)

	async def _set_status(
		self,
		user: AuthenticatedUser,
		club_id: str,
		member_id: str,
		status: models.MembershipStatus,
		reason: Optional[str],
	) -> models.Membership:
		clean_reason = policies.clean_text(reason, "reason")

		async def attempt() -> models.Membership:
			club = await self._require_club(club_id)
			context = await self.authz.load_context(user, club_id)
			self.authz.require(user, context, Action.SUSPEND_MEMBER)
			target = await self._require_membership(club_id, member_id)
			self._ensure_can_manage(context, target)
			# pending -> active goes through approve(), not reinstate()
			if status == models.MembershipStatus.ACTIVE and target.status != models.MembershipStatus.SUSPENDED:
				raise ClubsError(
					ErrorCode.INVALID_MEMBERSHIP_STATUS_TRANSITION,
					f"membership is {target.status.value}, not suspended",
					from_status=target.status.value,
					to_status=status.value,
				)
			policies.ensure_membership_transition(target.status, status)
			now = self.clock.now()
			ops = await self._owner_guard_ops(club, target, next_role=target.role, next_status=status, now=now)
			updated = target.model_copy(
				update={
					"status": status,
					"updated_at": now,
					"processed_by": user.id,
					"processed_at": now,
					"reason": clean_reason,
				}
			)
			ops.append(self.repo.put_membership(updated))
			await self.repo.transact(ops)
			return committed(updated)

		event = "suspended" if status == models.MembershipStatus.SUSPENDED else "reinstated"
		membership = await self.retry.run(f"membership.{event}", attempt)
		await self._publish(event, membership, user.id)
		return membership

	# ------------------------------------------------------------------
	# Reads

	async def get_membership(self, user: AuthenticatedUser, club_id: str, member_id: str) -> models.Membership:
		membership = await self.repo.get_membership(club_id, member_id)
		if member_id != user.id:
			context = await self.authz.load_context(user, club_id)
			self.authz.require(user, context, Action.VIEW_MEMBERS)
		if membership is None:
			raise ClubsError(ErrorCode.MEMBERSHIP_NOT_FOUND, club_id=club_id, user_id=member_id)
		return membership

	async def list_members(
		self,
		user: AuthenticatedUser,
		club_id: str,
		*,
		status: models.MembershipStatus | str | None = None,
		role: models.ClubRole | str | None = None,
		limit: Optional[int] = None,
	) -> list[models.Membership]:
		"""Active members are visible to every member; other statuses need view_club_members."""
		await self._require_club(club_id)
		status_filter = models.MembershipStatus.parse(status) if status is not None else models.MembershipStatus.ACTIVE
		if status_filter is None:
			raise ClubsError(ErrorCode.VALIDATION_ERROR, "unknown membership status", status=status)
		role_filter = policies.parse_club_role(role) if role is not None else None
		context = await self.authz.load_context(user, club_id)
		if status_filter == models.MembershipStatus.ACTIVE:
			self.authz.require(user, context, Action.VIEW_PUBLIC_MEMBERS)
		else:
			self.authz.require(user, context, Action.VIEW_MEMBERS)
		members = [
			m
			for m in await self.repo.list_memberships(club_id)
			if m.status == status_filter and (role_filter is None or m.role == role_filter)
		]
		members.sort(key=lambda m: (-m.role.rank, m.joined_at))
		return members[: policies.clamp_limit(limit)]

	async def list_user_memberships(self, user: AuthenticatedUser) -> list[models.Membership]:
		memberships = await self.repo.list_user_memberships(user.id)
		return [m for m in memberships if m.status != models.MembershipStatus.REMOVED]


__all__ = ["MembershipService"]
