"""Error taxonomy for the clubs core.

Every failure raised by the clubs services is a single ``ClubsError`` tagged with
an ``ErrorCode``; the code determines the ``ErrorKind`` and therefore the HTTP
status the API layer answers with.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from fastapi import status

if hasattr(status, "HTTP_422_UNPROCESSABLE_CONTENT"):
	_HTTP_422 = status.HTTP_422_UNPROCESSABLE_CONTENT
else:  # pragma: no cover - fallback for older Starlette builds
	_HTTP_422 = status.HTTP_422_UNPROCESSABLE_ENTITY


class ErrorKind(str, Enum):
	NOT_FOUND = "not_found"
	CONFLICT = "conflict"
	INVALID_TRANSITION = "invalid_transition"
	FORBIDDEN = "forbidden"
	VALIDATION = "validation"


class ErrorCode(str, Enum):
	CLUB_NOT_FOUND = "club_not_found"
	MEMBERSHIP_NOT_FOUND = "membership_not_found"
	INVITATION_NOT_FOUND = "invitation_not_found"
	RIDE_NOT_FOUND = "ride_not_found"
	PARTICIPATION_NOT_FOUND = "participation_not_found"

	ALREADY_MEMBER = "already_member"
	USER_ALREADY_INVITED = "user_already_invited"
	CANNOT_INVITE_EXISTING_MEMBER = "cannot_invite_existing_member"
	ALREADY_PARTICIPATING = "already_participating"
	RIDE_FULL = "ride_full"
	CONCURRENT_MODIFICATION = "concurrent_modification"

	INVALID_MEMBERSHIP_STATUS_TRANSITION = "invalid_membership_status_transition"
	INVITATION_EXPIRED = "invitation_expired"
	INVITATION_ALREADY_PROCESSED = "invitation_already_processed"
	INVALID_PARTICIPATION_STATUS = "invalid_participation_status"
	INVALID_ROLE_TRANSITION = "invalid_role_transition"
	INVALID_RIDE_STATUS_TRANSITION = "invalid_ride_status_transition"
	RIDE_NOT_OPEN = "ride_not_open"

	INSUFFICIENT_PRIVILEGES = "insufficient_privileges"
	ROLE_RANK_EXCEEDED = "role_rank_exceeded"
	CANNOT_REMOVE_OWNER = "cannot_remove_owner"
	CANNOT_REMOVE_CAPTAIN = "cannot_remove_captain"
	PARTICIPANT_REMOVED = "participant_removed"
	INVITATION_NOT_FOR_USER = "invitation_not_for_user"

	VALIDATION_ERROR = "validation_error"
	CAPACITY_BELOW_CONFIRMED = "capacity_below_confirmed"


_CODE_KIND: dict[ErrorCode, ErrorKind] = {
	ErrorCode.CLUB_NOT_FOUND: ErrorKind.NOT_FOUND,
	ErrorCode.MEMBERSHIP_NOT_FOUND: ErrorKind.NOT_FOUND,
	ErrorCode.INVITATION_NOT_FOUND: ErrorKind.NOT_FOUND,
	ErrorCode.RIDE_NOT_FOUND: ErrorKind.NOT_FOUND,
	ErrorCode.PARTICIPATION_NOT_FOUND: ErrorKind.NOT_FOUND,
	ErrorCode.ALREADY_MEMBER: ErrorKind.CONFLICT,
	ErrorCode.USER_ALREADY_INVITED: ErrorKind.CONFLICT,
	ErrorCode.CANNOT_INVITE_EXISTING_MEMBER: ErrorKind.CONFLICT,
	ErrorCode.ALREADY_PARTICIPATING: ErrorKind.CONFLICT,
	ErrorCode.RIDE_FULL: ErrorKind.CONFLICT,
	ErrorCode.CONCURRENT_MODIFICATION: ErrorKind.CONFLICT,
	ErrorCode.INVALID_MEMBERSHIP_STATUS_TRANSITION: ErrorKind.INVALID_TRANSITION,
	ErrorCode.INVITATION_EXPIRED: ErrorKind.INVALID_TRANSITION,
	ErrorCode.INVITATION_ALREADY_PROCESSED: ErrorKind.INVALID_TRANSITION,
	ErrorCode.INVALID_PARTICIPATION_STATUS: ErrorKind.INVALID_TRANSITION,
	ErrorCode.INVALID_ROLE_TRANSITION: ErrorKind.INVALID_TRANSITION,
	ErrorCode.INVALID_RIDE_STATUS_TRANSITION: ErrorKind.INVALID_TRANSITION,
	ErrorCode.RIDE_NOT_OPEN: ErrorKind.INVALID_TRANSITION,
	ErrorCode.INSUFFICIENT_PRIVILEGES: ErrorKind.FORBIDDEN,
	ErrorCode.ROLE_RANK_EXCEEDED: ErrorKind.FORBIDDEN,
	ErrorCode.CANNOT_REMOVE_OWNER: ErrorKind.FORBIDDEN,
	ErrorCode.CANNOT_REMOVE_CAPTAIN: ErrorKind.FORBIDDEN,
	ErrorCode.PARTICIPANT_REMOVED: ErrorKind.FORBIDDEN,
	ErrorCode.INVITATION_NOT_FOR_USER: ErrorKind.FORBIDDEN,
	ErrorCode.VALIDATION_ERROR: ErrorKind.VALIDATION,
	ErrorCode.CAPACITY_BELOW_CONFIRMED: ErrorKind.VALIDATION,
}

_KIND_STATUS: dict[ErrorKind, int] = {
	ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
	ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
	ErrorKind.INVALID_TRANSITION: status.HTTP_409_CONFLICT,
	ErrorKind.FORBIDDEN: status.HTTP_403_FORBIDDEN,
	ErrorKind.VALIDATION: _HTTP_422,
}

# Expired invitations are gone for good; clients treat 410 differently from 409.
_STATUS_OVERRIDES: dict[ErrorCode, int] = {
	ErrorCode.INVITATION_EXPIRED: status.HTTP_410_GONE,
}

_RETRYABLE = frozenset({ErrorCode.CONCURRENT_MODIFICATION})


class ClubsError(Exception):
	"""Single error type for the clubs core, tagged by code and kind."""

	def __init__(self, code: ErrorCode, message: str | None = None, **fields: Any) -> None:
		self.code = code
		self.kind = _CODE_KIND[code]
		self.message = message or code.value.replace("_", " ")
		self.fields = fields
		super().__init__(self.message)

	@property
	def status_code(self) -> int:
		return _STATUS_OVERRIDES.get(self.code, _KIND_STATUS[self.kind])

	@property
	def detail(self) -> str:
		return self.code.value

	@property
	def retryable(self) -> bool:
		return self.code in _RETRYABLE

	def to_dict(self) -> dict[str, Any]:
		payload: dict[str, Any] = {
			"code": self.code.value,
			"kind": self.kind.value,
			"message": self.message,
			"retryable": self.retryable,
		}
		if self.fields:
			payload["fields"] = {key: str(value) for key, value in self.fields.items()}
		return payload

	def __repr__(self) -> str:
		return f"ClubsError(code={self.code.value!r}, kind={self.kind.value!r}, fields={self.fields!r})"


__all__ = ["ClubsError", "ErrorCode", "ErrorKind"]
