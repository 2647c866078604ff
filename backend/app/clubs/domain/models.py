"""Domain models for clubs, memberships, invitations, rides and participations."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict

# Legacy spellings still found in stored items and identity-provider claims.
_ALIASES: dict[str, dict[str, str]] = {
	"ClubRole": {
		"club_member": "member",
		"club_captain": "captain",
		"club_admin": "admin",
		"administrator": "admin",
		"club_owner": "owner",
	},
	"RideRole": {
		"rider": "participant",
		"ride_participant": "participant",
		"ride_leader": "leader",
		"ride_captain": "captain",
	},
	"MembershipStatus": {"approved": "active", "left": "removed"},
	"InvitationStatus": {"canceled": "cancelled"},
	"RideStatus": {"canceled": "cancelled", "in_progress": "active"},
	"ParticipationStatus": {"joined": "confirmed", "waitlist": "waitlisted", "left": "withdrawn"},
	"AttendanceStatus": {"present": "attended", "absent": "no_show"},
}


class _Vocabulary(str, Enum):
	"""String enum that folds case and legacy aliases onto the canonical value."""

	@classmethod
	def _missing_(cls, value):
		if not isinstance(value, str):
			return None
		key = value.strip().lower().replace("-", "_")
		key = _ALIASES.get(cls.__name__, {}).get(key, key)
		for member in cls:
			if member.value == key:
				return member
		return None

	@classmethod
	def parse(cls, value):
		"""Return the member for ``value`` or ``None`` when it is not recognised."""
		if value is None:
			return None
		if isinstance(value, cls):
			return value
		try:
			return cls(value)
		except (TypeError, ValueError):
			return None

	def __str__(self) -> str:
		return self.value


class _RankedRole(_Vocabulary):
	"""Roles ordered by declaration, lowest first."""

	@property
	def rank(self) -> int:
		return list(type(self)).index(self) + 1

	def at_least(self, other: "_RankedRole") -> bool:
		return self.rank >= other.rank

	def __lt__(self, other):
		if isinstance(other, type(self)):
			return self.rank < other.rank
		return NotImplemented

	def __le__(self, other):
		if isinstance(other, type(self)):
			return self.rank <= other.rank
		return NotImplemented

	def __gt__(self, other):
		if isinstance(other, type(self)):
			return self.rank > other.rank
		return NotImplemented

	def __ge__(self, other):
		if isinstance(other, type(self)):
			return self.rank >= other.rank
		return NotImplemented

	__hash__ = str.__hash__


class ClubRole(_RankedRole):
	MEMBER = "member"
	CAPTAIN = "captain"
	ADMIN = "admin"
	OWNER = "owner"


class RideRole(_RankedRole):
	PARTICIPANT = "participant"
	LEADER = "leader"
	CAPTAIN = "captain"


class MembershipStatus(_Vocabulary):
	PENDING = "pending"
	ACTIVE = "active"
	SUSPENDED = "suspended"
	REMOVED = "removed"


class InvitationStatus(_Vocabulary):
	PENDING = "pending"
	ACCEPTED = "accepted"
	DECLINED = "declined"
	EXPIRED = "expired"
	CANCELLED = "cancelled"


class RideStatus(_Vocabulary):
	DRAFT = "draft"
	PUBLISHED = "published"
	ACTIVE = "active"
	COMPLETED = "completed"
	CANCELLED = "cancelled"


class ParticipationStatus(_Vocabulary):
	CONFIRMED = "confirmed"
	WAITLISTED = "waitlisted"
	WITHDRAWN = "withdrawn"
	REMOVED = "removed"


class AttendanceStatus(_Vocabulary):
	UNKNOWN = "unknown"
	ATTENDED = "attended"
	NO_SHOW = "no_show"


class Club(BaseModel):
	"""A club; the join policy decides whether requests start pending."""

	club_id: str
	name: str
	description: str = ""
	requires_approval: bool = False
	created_by: str
	created_at: datetime
	updated_at: datetime
	version: int = 0

	model_config = ConfigDict(from_attributes=True)


class Membership(BaseModel):
	"""A user's relationship to a club."""

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
	version: int = 0

	model_config = ConfigDict(from_attributes=True)

	@property
	def is_active(self) -> bool:
		return self.status == MembershipStatus.ACTIVE

	@property
	def is_active_owner(self) -> bool:
		return self.is_active and self.role == ClubRole.OWNER


class Invitation(BaseModel):
	"""A time-bounded offer of membership with a role."""

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
	version: int = 0

	model_config = ConfigDict(from_attributes=True)

	@property
	def target(self) -> str:
		if self.invited_user_id:
			return f"user:{self.invited_user_id}"
		return f"email:{self.invited_email}"

	def is_expired(self, now: datetime) -> bool:
		if self.status == InvitationStatus.EXPIRED:
			return True
		return self.status == InvitationStatus.PENDING and now > self.expires_at

	def addressed_to(self, user_id: str, email: Optional[str]) -> bool:
		if self.invited_user_id:
			return self.invited_user_id == user_id
		return bool(email) and self.invited_email == email.strip().lower()


class Ride(BaseModel):
	"""Participation-relevant view of a ride."""

	ride_id: str
	club_id: str
	title: str
	description: str = ""
	status: RideStatus
	created_by: str
	start_time: Optional[datetime] = None
	max_participants: Optional[int] = None
	current_participants: int = 0
	waitlist_count: int = 0
	allow_waitlist: bool = True
	created_at: datetime
	updated_at: datetime
	published_at: Optional[datetime] = None
	published_by: Optional[str] = None
	cancelled_at: Optional[datetime] = None
	cancellation_reason: Optional[str] = None
	version: int = 0

	model_config = ConfigDict(from_attributes=True)

	@property
	def is_full(self) -> bool:
		return self.max_participants is not None and self.current_participants >= self.max_participants

	@property
	def available_seats(self) -> Optional[int]:
		if self.max_participants is None:
			return None
		return max(0, self.max_participants - self.current_participants)


class RideParticipation(BaseModel):
	"""A user's relationship to one ride."""

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
	version: int = 0

	model_config = ConfigDict(from_attributes=True)

	@property
	def is_live(self) -> bool:
		return self.status in (ParticipationStatus.CONFIRMED, ParticipationStatus.WAITLISTED)
