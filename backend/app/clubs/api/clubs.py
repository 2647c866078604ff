"""Club API endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from app.clubs.api._errors import to_http_error
from app.clubs.container import ClubsServices, get_services
from app.clubs.domain.exceptions import ClubsError
from app.clubs.schemas import dto
from app.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(tags=["clubs"])


@router.post("/clubs", response_model=dto.ClubCreatedResponse, status_code=status.HTTP_201_CREATED)
async def create_club_endpoint(
	payload: dto.ClubCreateRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: ClubsServices = Depends(get_services),
) -> dto.ClubCreatedResponse:
	try:
		club, membership = await services.clubs.create_club(
			auth_user,
			name=payload.name,
			description=payload.description,
			requires_approval=payload.requires_approval,
		)
	except ClubsError as exc:
		raise to_http_error(exc) from exc
	return dto.ClubCreatedResponse(
		club=dto.ClubResponse.model_validate(club),
		membership=dto.MembershipResponse.model_validate(membership),
	)


@router.get("/clubs/{club_id}", response_model=dto.ClubResponse)
async def get_club_endpoint(
	club_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: ClubsServices = Depends(get_services),
) -> dto.ClubResponse:
	try:
		club = await services.clubs.get_club(club_id)
	except ClubsError as exc:
		raise to_http_error(exc) from exc
	return dto.ClubResponse.model_validate(club)


@router.patch("/clubs/{club_id}", response_model=dto.ClubResponse)
async def update_club_endpoint(
	club_id: str,
	payload: dto.ClubUpdateRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: ClubsServices = Depends(get_services),
) -> dto.ClubResponse:
	try:
		club = await services.clubs.update_settings(
			auth_user,
			club_id,
			name=payload.name,
			description=payload.description,
			requires_approval=payload.requires_approval,
		)
	except ClubsError as exc:
		raise to_http_error(exc) from exc
	return dto.ClubResponse.model_validate(club)


@router.get("/me/clubs", response_model=dto.MembershipListResponse)
async def my_clubs_endpoint(
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: ClubsServices = Depends(get_services),
) -> dto.MembershipListResponse:
	memberships = await services.memberships.list_user_memberships(auth_user)
	return dto.MembershipListResponse(items=[dto.MembershipResponse.model_validate(m) for m in memberships])
