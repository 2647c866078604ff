"""Invitation API endpoints."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, status as http_status

from app.clubs.api._errors import to_http_error
from app.clubs.container import ClubsServices, get_services
from app.clubs.domain.exceptions import ClubsError
from app.clubs.schemas import dto
from app.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(tags=["clubs:invitations"])


@router.post(
	"/clubs/{club_id}/invitations",
	response_model=dto.InvitationResponse,
	status_code=http_status.HTTP_201_CREATED,
)
async def create_invitation_endpoint(
	club_id: str,
	payload: dto.InvitationCreateRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: ClubsServices = Depends(get_services),
) -> dto.InvitationResponse:
	try:
		invitation = await services.invitations.invite(
			auth_user,
			club_id,
			invited_user_id=payload.user_id,
			invited_email=str(payload.email) if payload.email else None,
			role=payload.role,
			message=payload.message,
			expires_in_days=payload.expires_in_days,
		)
	except ClubsError as exc:
		raise to_http_error(exc) from exc
	return dto.InvitationResponse.model_validate(invitation)


@router.get("/clubs/{club_id}/invitations", response_model=dto.InvitationListResponse)
async def list_club_invitations_endpoint(
	club_id: str,
	status: Optional[str] = Query(default=None),
	limit: Optional[int] = Query(default=None, ge=1),
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: ClubsServices = Depends(get_services),
) -> dto.InvitationListResponse:
	try:
		invitations = await services.invitations.list_club_invitations(auth_user, club_id, status=status, limit=limit)
	except ClubsError as exc:
		raise to_http_error(exc) from exc
	return dto.InvitationListResponse(items=[dto.InvitationResponse.model_validate(i) for i in invitations])


@router.get("/me/invitations", response_model=dto.InvitationListResponse)
async def my_invitations_endpoint(
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: ClubsServices = Depends(get_services),
) -> dto.InvitationListResponse:
	invitations = await services.invitations.list_my_invitations(auth_user)
	return dto.InvitationListResponse(items=[dto.InvitationResponse.model_validate(i) for i in invitations])


@router.get("/invitations/{invitation_id}", response_model=dto.InvitationResponse)
async def get_invitation_endpoint(
	invitation_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: ClubsServices = Depends(get_services),
) -> dto.InvitationResponse:
	try:
		invitation = await services.invitations.get_invitation(auth_user, invitation_id)
	except ClubsError as exc:
		raise to_http_error(exc) from exc
	return dto.InvitationResponse.model_validate(invitation)


@router.post("/invitations/{invitation_id}/respond", response_model=dto.InvitationRespondResponse)
async def respond_invitation_endpoint(
	invitation_id: str,
	payload: dto.InvitationRespondRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: ClubsServices = Depends(get_services),
) -> dto.InvitationRespondResponse:
	try:
		membership = await services.invitations.respond(auth_user, invitation_id, accept=payload.accept)
	except ClubsError as exc:
		raise to_http_error(exc) from exc
	return dto.InvitationRespondResponse(
		accepted=payload.accept,
		membership=dto.MembershipResponse.model_validate(membership) if membership else None,
	)


@router.post("/invitations/{invitation_id}/cancel", response_model=dto.InvitationResponse)
async def cancel_invitation_endpoint(
	invitation_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	services: ClubsServices = Depends(get_services),
) -> dto.InvitationResponse:
	try:
		invitation = await services.invitations.cancel(auth_user, invitation_id)
	except ClubsError as exc:
		raise to_http_error(exc) from exc
	return dto.InvitationResponse.model_validate(invitation)
