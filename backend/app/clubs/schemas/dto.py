"""Pydantic schemas for the clubs API."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

from app.clubs.domain.models import (
	AttendanceStatus,
	ClubRole,
	InvitationStatus,
	MembershipStatus,
	ParticipationStatus,
	RideRole,
	RideStatus,
)


class _Response(BaseModel):
	model_config = ConfigDict(from_attributes=True)


# ---------------------------------------------------------------------------
# Clubs


class ClubCreateRequest(BaseModel):
	name: str = Field(..., min_length=1, max_length=120)
	description: str = Field(default="", max_length=500)
	requires_approval: bool = False


class ClubUpdateRequest(BaseModel):
	name: Optional[str] = Field(default=None, min_length=1, max_length=120)
	description: Optional[str] = Field(default=None, max_length=500)
	requires_approval: Optional[bool] = None


class ClubResponse(_Response):
	club_id: str
	name: str
	description: str
	requires_approval: bool
	created_by: str
	created_at: datetime
	updated_at: datetime
	version: int


# ---------------------------------------------------------------------------
# Memberships


class JoinRequest(BaseModel):
	message: Optional[str] = Field(default=None, max_length=500)


class ReasonRequest(BaseModel):
	reason: Optional[str] = Field(default=None, max_length=500)


class RoleUpdateRequest(BaseModel):
	role: str
	reason: Optional[str] = Field(default=None, max_length=500)


class MembershipResponse(_Response):
	membership_id: str
	club_id: str
	user_id: str
	role: ClubRole
	status: MembershipStatus
	joined_at: datetime
	updated_at: datetime
	join_message: Optional[str] = None
	invited_by: Optional[str] = None
	processed_by: Optional[str] = None
	processed_at: Optional[datetime] = None
	reason: Optional[str] = None


class MembershipListResponse(BaseModel):
	items: List[MembershipResponse]


class ClubCreatedResponse(BaseModel):
	club: ClubResponse
	membership: MembershipResponse


# ---------------------------------------------------------------------------
# Invitations


class InvitationCreateRequest(BaseModel):
	user_id: Optional[str] = None
	email: Optional[EmailStr] = None
	role: str = "member"
	message: Optional[str] = Field(default=None, max_length=500)
	expires_in_days: Optional[int] = Field(default=None, ge=1)

	@model_validator(mode="after")
	def _one_target(self) -> "InvitationCreateRequest":
		if bool(self.user_id) == bool(self.email):
			raise ValueError("provide exactly one of user_id or email")
		return self


class InvitationRespondRequest(BaseModel):
	accept: bool


class InvitationResponse(_Response):
	invitation_id: str
	club_id: str
	invited_user_id: Optional[str] = None
	invited_email: Optional[str] = None
	invited_by: str
	role: ClubRole
	status: InvitationStatus
	message: Optional[str] = None
	created_at: datetime
	expires_at: datetime
	processed_at: Optional[datetime] = None
	processed_by: Optional[str] = None


class InvitationListResponse(BaseModel):
	items: List[InvitationResponse]


class InvitationRespondResponse(BaseModel):
	accepted: bool
	membership: Optional[MembershipResponse] = None


# ---------------------------------------------------------------------------
# Rides


class RideCreateRequest(BaseModel):
	title: str = Field(..., min_length=1, max_length=200)
	description: str = Field(default="", max_length=2000)
	start_time: Optional[datetime] = None
	max_participants: Optional[int] = Field(default=None, ge=1)
	allow_waitlist: bool = True
	publish: bool = False


class RideUpdateRequest(BaseModel):
	title: Optional[str] = Field(default=None, min_length=1, max_length=200)
	description: Optional[str] = Field(default=None, max_length=2000)
	start_time: Optional[datetime] = None
	allow_waitlist: Optional[bool] = None


class CapacityUpdateRequest(BaseModel):
	max_participants: Optional[int] = Field(default=None, ge=1)
	allow_waitlist: Optional[bool] = None


class RideResponse(_Response):
	ride_id: str
	club_id: str
	title: str
	description: str
	status: RideStatus
	created_by: str
	start_time: Optional[datetime] = None
	max_participants: Optional[int] = None
	current_participants: int
	waitlist_count: int
	available_seats: Optional[int] = None
	allow_waitlist: bool
	created_at: datetime
	updated_at: datetime
	published_at: Optional[datetime] = None
	cancelled_at: Optional[datetime] = None
	cancellation_reason: Optional[str] = None
	version: int


class RideListResponse(BaseModel):
	items: List[RideResponse]


# ---------------------------------------------------------------------------
# Participation


class RideJoinRequest(BaseModel):
	message: Optional[str] = Field(default=None, max_length=500)


class RideLeaveRequest(BaseModel):
	transfer_captain_to: Optional[str] = None


class ParticipantRemoveRequest(BaseModel):
	reason: Optional[str] = Field(default=None, max_length=500)
	transfer_captain_to: Optional[str] = None


class RideRoleUpdateRequest(BaseModel):
	role: str


class AttendanceUpdateRequest(BaseModel):
	status: str


class ParticipationResponse(_Response):
	participation_id: str
	ride_id: str
	club_id: str
	user_id: str
	role: RideRole
	status: ParticipationStatus
	joined_at: datetime
	updated_at: datetime
	message: Optional[str] = None
	waitlist_position: Optional[int] = None
	removed_by: Optional[str] = None
	reason: Optional[str] = None
	attendance_status: AttendanceStatus = AttendanceStatus.UNKNOWN
	attendance_confirmed_by: Optional[str] = None
	attendance_confirmed_at: Optional[datetime] = None


class ParticipationListResponse(BaseModel):
	items: List[ParticipationResponse]


class ParticipationChangeResponse(BaseModel):
	ride: RideResponse
	participation: Optional[ParticipationResponse] = None
	promoted: List[ParticipationResponse] = Field(default_factory=list)


class RideCreatedResponse(BaseModel):
	ride: RideResponse
	participation: ParticipationResponse
