"""Ride API endpoints."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, status as http_status

from app.clubs.api._errors import to_http_error
from app.clubs.container import ClubsServices, get_services
from app.clubs.domain.exceptions import ClubsError
from app.clubs.schemas import dto
from app.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(tags=["clubs:rides"])


@router.post(
	"/clubs/{club_id}/rides",
	response_model=dto.RideCreatedResponse,
	status_code=http_status.HTTP_201_CREATED,
)
async def create_ride_endpoint(
	club_id: str,
	payload: dto.RideCreateRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: ClubsServices = Depends(get_services),
) -> dto.RideCreatedResponse:
	try:
		ride, participation = await services.rides.create_ride(
			auth_user,
			club_id,
			title=payload.title,
			description=payload.description,
			start_time=payload.start_time,
			max_participants=payload.max_participants,
			allow_waitlist=payload.allow_waitlist,
			publish=payload.publish,
		)
	except ClubsError as exc:
		raise to_http_error(exc) from exc
	return dto.RideCreatedResponse(
		ride=dto.RideResponse.model_validate(ride),
		participation=dto.ParticipationResponse.model_validate(participation),
	)


@router.get("/clubs/{club_id}/rides", response_model=dto.RideListResponse)
async def list_club_rides_endpoint(
	club_id: str,
	status: Optional[str] = Query(default=None),
	limit: Optional[int] = Query(default=None, ge=1),
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: ClubsServices = Depends(get_services),
) -> dto.RideListResponse:
	try:
		rides = await services.rides.list_club_rides(auth_user, club_id, status=status, limit=limit)
	except ClubsError as exc:
		raise to_http_error(exc) from exc
	return dto.RideListResponse(items=[dto.RideResponse.model_validate(r) for r in rides])


@router.get("/rides/{ride_id}", response_model=dto.RideResponse)
async def get_ride_endpoint(
	ride_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: ClubsServices = Depends(get_services),
) -> dto.RideResponse:
	try:
		ride = await services.rides.get_ride(auth_user, ride_id)
	except ClubsError as exc:
		raise to_http_error(exc) from exc
	return dto.RideResponse.model_validate(ride)


@router.patch("/rides/{ride_id}", response_model=dto.RideResponse)
async def update_ride_endpoint(
	ride_id: str,
	payload: dto.RideUpdateRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: ClubsServices = Depends(get_services),
) -> dto.RideResponse:
	try:
		ride = await services.rides.update_details(
			auth_user,
			ride_id,
			title=payload.title,
			description=payload.description,
			start_time=payload.start_time,
			allow_waitlist=payload.allow_waitlist,
		)
	except ClubsError as exc:
		raise to_http_error(exc) from exc
	return dto.RideResponse.model_validate(ride)


@router.post("/rides/{ride_id}/publish", response_model=dto.RideResponse)
async def publish_ride_endpoint(
	ride_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: ClubsServices = Depends(get_services),
) -> dto.RideResponse:
	try:
		ride = await services.rides.publish_ride(auth_user, ride_id)
	except ClubsError as exc:
		raise to_http_error(exc) from exc
	return dto.RideResponse.model_validate(ride)


@router.post("/rides/{ride_id}/start", response_model=dto.RideResponse)
async def start_ride_endpoint(
	ride_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: ClubsServices = Depends(get_services),
) -> dto.RideResponse:
	try:
		ride = await services.rides.start_ride(auth_user, ride_id)
	except ClubsError as exc:
		raise to_http_error(exc) from exc
	return dto.RideResponse.model_validate(ride)


@router.post("/rides/{ride_id}/complete", response_model=dto.RideResponse)
async def complete_ride_endpoint(
	ride_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: ClubsServices = Depends(get_services),
) -> dto.RideResponse:
	try:
		ride = await services.rides.complete_ride(auth_user, ride_id)
	except ClubsError as exc:
		raise to_http_error(exc) from exc
	return dto.RideResponse.model_validate(ride)


@router.post("/rides/{ride_id}/cancel", response_model=dto.RideResponse)
async def cancel_ride_endpoint(
	ride_id: str,
	payload: dto.ReasonRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: ClubsServices = Depends(get_services),
) -> dto.RideResponse:
	try:
		ride = await services.rides.cancel_ride(auth_user, ride_id, reason=payload.reason)
	except ClubsError as exc:
		raise to_http_error(exc) from exc
	return dto.RideResponse.model_validate(ride)


@router.put("/rides/{ride_id}/capacity", response_model=dto.ParticipationChangeResponse)
async def update_capacity_endpoint(
	ride_id: str,
	payload: dto.CapacityUpdateRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: ClubsServices = Depends(get_services),
) -> dto.ParticipationChangeResponse:
	try:
		result = await services.participations.update_capacity(
			auth_user,
			ride_id,
			max_participants=payload.max_participants,
			allow_waitlist=payload.allow_waitlist,
		)
	except ClubsError as exc:
		raise to_http_error(exc) from exc
	return dto.ParticipationChangeResponse.model_validate(result, from_attributes=True)
