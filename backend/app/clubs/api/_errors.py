"""Error translation helpers for the clubs API."""

from __future__ import annotations

from fastapi import HTTPException

from app.clubs.domain.exceptions import ClubsError


def to_http_error(exc: ClubsError) -> HTTPException:
	"""Translate a clubs error into a FastAPI HTTP error carrying its code."""
	headers = {"Retry-After": "1"} if exc.retryable else None
	return HTTPException(status_code=exc.status_code, detail=exc.detail, headers=headers)
