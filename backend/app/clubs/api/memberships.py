"""Membership API endpoints: join requests, approvals, roles and removal."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.clubs.api._errors import to_http_error
from app.clubs.container import ClubsServices, get_services
from app.clubs.domain.exceptions import ClubsError
from app.clubs.schemas import dto
from app.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(tags=["clubs:memberships"])


@router.post("/clubs/{club_id}/join", response_model=dto.MembershipResponse)
async def request_join_endpoint(
	club_id: str,
	payload: dto.JoinRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: ClubsServices = Depends(get_services),
) -> dto.MembershipResponse:
	try:
		membership = await services.memberships.request_join(auth_user, club_id, message=payload.message)
	except ClubsError as exc:
		raise to_http_error(exc) from exc
	return dto.MembershipResponse.model_validate(membership)


@router.post("/clubs/{club_id}/leave", response_model=dto.MembershipResponse)
async def leave_club_endpoint(
	club_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: ClubsServices = Depends(get_services),
) -> dto.MembershipResponse:
	try:
		membership = await services.memberships.leave(auth_user, club_id)
	except ClubsError as exc:
		raise to_http_error(exc) from exc
	return dto.MembershipResponse.model_validate(membership)


@router.get("/clubs/{club_id}/members", response_model=dto.MembershipListResponse)
async def list_members_endpoint(
	club_id: str,
	status: Optional[str] = Query(default=None),
	role: Optional[str] = Query(default=None),
	limit: Optional[int] = Query(default=None, ge=1),
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: ClubsServices = Depends(get_services),
) -> dto.MembershipListResponse:
	try:
		members = await services.memberships.list_members(auth_user, club_id, status=status, role=role, limit=limit)
	except ClubsError as exc:
		raise to_http_error(exc) from exc
	return dto.MembershipListResponse(items=[dto.MembershipResponse.model_validate(m) for m in members])


@router.get("/clubs/{club_id}/members/{user_id}", response_model=dto.MembershipResponse)
async def get_member_endpoint(
	club_id: str,
	user_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: ClubsServices = Depends(get_services),
) -> dto.MembershipResponse:
	try:
		membership = await services.memberships.get_membership(auth_user, club_id, user_id)
	except ClubsError as exc:
		raise to_http_error(exc) from exc
	return dto.MembershipResponse.model_validate(membership)


@router.post("/clubs/{club_id}/requests/{membership_id}/approve", response_model=dto.MembershipResponse)
async def approve_request_endpoint(
	club_id: str,
	membership_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: ClubsServices = Depends(get_services),
) -> dto.MembershipResponse:
	try:
		membership = await services.memberships.approve(auth_user, club_id, membership_id)
	except ClubsError as exc:
		raise to_http_error(exc) from exc
	return dto.MembershipResponse.model_validate(membership)


@router.post("/clubs/{club_id}/requests/{membership_id}/reject", response_model=dto.MembershipResponse)
async def reject_request_endpoint(
	club_id: str,
	membership_id: str,
	payload: dto.ReasonRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: ClubsServices = Depends(get_services),
) -> dto.MembershipResponse:
	try:
		membership = await services.memberships.reject(auth_user, club_id, membership_id, reason=payload.reason)
	except ClubsError as exc:
		raise to_http_error(exc) from exc
	return dto.MembershipResponse.model_validate(membership)


@router.patch("/clubs/{club_id}/members/{user_id}/role", response_model=dto.MembershipResponse)
async def update_member_role_endpoint(
	club_id: str,
	user_id: str,
	payload: dto.RoleUpdateRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: ClubsServices = Depends(get_services),
) -> dto.MembershipResponse:
	try:
		membership = await services.memberships.update_role(
			auth_user,
			club_id,
			user_id,
			payload.role,
			reason=payload.reason,
		)
	except ClubsError as exc:
		raise to_http_error(exc) from exc
	return dto.MembershipResponse.model_validate(membership)


@router.post("/clubs/{club_id}/members/{user_id}/suspend", response_model=dto.MembershipResponse)
async def suspend_member_endpoint(
	club_id: str,
	user_id: str,
	payload: dto.ReasonRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: ClubsServices = Depends(get_services),
) -> dto.MembershipResponse:
	try:
		membership = await services.memberships.suspend(auth_user, club_id, user_id, reason=payload.reason)
	except ClubsError as exc:
		raise to_http_error(exc) from exc
	return dto.MembershipResponse.model_validate(membership)


@router.post("/clubs/{club_id}/members/{user_id}/reinstate", response_model=dto.MembershipResponse)
async def reinstate_member_endpoint(
	club_id: str,
	user_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: ClubsServices = Depends(get_services),
) -> dto.MembershipResponse:
	try:
		membership = await services.memberships.reinstate(auth_user, club_id, user_id)
	except ClubsError as exc:
		raise to_http_error(exc) from exc
	return dto.MembershipResponse.model_validate(membership)


@router.delete("/clubs/{club_id}/members/{user_id}", response_model=dto.MembershipResponse)
async def remove_member_endpoint(
	club_id: str,
	user_id: str,
	reason: Optional[str] = Query(default=None, max_length=500),
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: ClubsServices = Depends(get_services),
) -> dto.MembershipResponse:
	try:
		membership = await services.memberships.remove(auth_user, club_id, user_id, reason=reason)
	except ClubsError as exc:
		raise to_http_error(exc) from exc
	return dto.MembershipResponse.model_validate(membership)
