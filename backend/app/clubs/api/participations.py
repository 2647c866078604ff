"""Ride participation API endpoints: join, leave, removal, attendance and the waitlist."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.clubs.api._errors import to_http_error
from app.clubs.container import ClubsServices, get_services
from app.clubs.domain.exceptions import ClubsError
from app.clubs.schemas import dto
from app.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(tags=["clubs:participations"])


@router.post("/rides/{ride_id}/join", response_model=dto.ParticipationChangeResponse)
async def join_ride_endpoint(
	ride_id: str,
	payload: dto.RideJoinRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: ClubsServices = Depends(get_services),
) -> dto.ParticipationChangeResponse:
	try:
		result = await services.participations.join_ride(auth_user, ride_id, message=payload.message)
	except ClubsError as exc:
		raise to_http_error(exc) from exc
	return dto.ParticipationChangeResponse.model_validate(result, from_attributes=True)


@router.post("/rides/{ride_id}/leave", response_model=dto.ParticipationChangeResponse)
async def leave_ride_endpoint(
	ride_id: str,
	payload: dto.RideLeaveRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: ClubsServices = Depends(get_services),
) -> dto.ParticipationChangeResponse:
	try:
		result = await services.participations.leave_ride(
			auth_user,
			ride_id,
			transfer_captain_to=payload.transfer_captain_to,
		)
	except ClubsError as exc:
		raise to_http_error(exc) from exc
	return dto.ParticipationChangeResponse.model_validate(result, from_attributes=True)


@router.get("/rides/{ride_id}/participants", response_model=dto.ParticipationListResponse)
async def list_participants_endpoint(
	ride_id: str,
	status: Optional[str] = Query(default=None),
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: ClubsServices = Depends(get_services),
) -> dto.ParticipationListResponse:
	try:
		participants = await services.participations.list_participants(auth_user, ride_id, status=status)
	except ClubsError as exc:
		raise to_http_error(exc) from exc
	return dto.ParticipationListResponse(items=[dto.ParticipationResponse.model_validate(p) for p in participants])


@router.get("/rides/{ride_id}/participants/{user_id}", response_model=dto.ParticipationResponse)
async def get_participant_endpoint(
	ride_id: str,
	user_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: ClubsServices = Depends(get_services),
) -> dto.ParticipationResponse:
	try:
		participation = await services.participations.get_participation(auth_user, ride_id, user_id)
	except ClubsError as exc:
		raise to_http_error(exc) from exc
	return dto.ParticipationResponse.model_validate(participation)


@router.post("/rides/{ride_id}/participants/{user_id}/remove", response_model=dto.ParticipationChangeResponse)
async def remove_participant_endpoint(
	ride_id: str,
	user_id: str,
	payload: dto.ParticipantRemoveRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: ClubsServices = Depends(get_services),
) -> dto.ParticipationChangeResponse:
	try:
		result = await services.participations.remove_participant(
			auth_user,
			ride_id,
			user_id,
			reason=payload.reason,
			transfer_captain_to=payload.transfer_captain_to,
		)
	except ClubsError as exc:
		raise to_http_error(exc) from exc
	return dto.ParticipationChangeResponse.model_validate(result, from_attributes=True)


@router.patch("/rides/{ride_id}/participants/{user_id}/role", response_model=dto.ParticipationChangeResponse)
async def update_participant_role_endpoint(
	ride_id: str,
	user_id: str,
	payload: dto.RideRoleUpdateRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: ClubsServices = Depends(get_services),
) -> dto.ParticipationChangeResponse:
	try:
		result = await services.participations.update_participant_role(auth_user, ride_id, user_id, payload.role)
	except ClubsError as exc:
		raise to_http_error(exc) from exc
	return dto.ParticipationChangeResponse.model_validate(result, from_attributes=True)


@router.patch("/rides/{ride_id}/participants/{user_id}/attendance", response_model=dto.ParticipationChangeResponse)
async def update_attendance_endpoint(
	ride_id: str,
	user_id: str,
	payload: dto.AttendanceUpdateRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: ClubsServices = Depends(get_services),
) -> dto.ParticipationChangeResponse:
	try:
		result = await services.participations.update_attendance(auth_user, ride_id, user_id, payload.status)
	except ClubsError as exc:
		raise to_http_error(exc) from exc
	return dto.ParticipationChangeResponse.model_validate(result, from_attributes=True)


@router.post("/rides/{ride_id}/waitlist/promote", response_model=dto.ParticipationChangeResponse)
async def promote_waitlist_endpoint(
	ride_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: ClubsServices = Depends(get_services),
) -> dto.ParticipationChangeResponse:
	try:
		result = await services.participations.promote_waitlist(ride_id, user=auth_user)
	except ClubsError as exc:
		raise to_http_error(exc) from exc
	return dto.ParticipationChangeResponse.model_validate(result, from_attributes=True)


@router.get("/me/rides", response_model=dto.ParticipationListResponse)
async def my_rides_endpoint(
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: ClubsServices = Depends(get_services),
) -> dto.ParticipationListResponse:
	participations = await services.participations.list_my_participations(auth_user)
	return dto.ParticipationListResponse(items=[dto.ParticipationResponse.model_validate(p) for p in participations])
