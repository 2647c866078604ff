"""FastAPI routers for the clubs domain."""

from __future__ import annotations

from fastapi import APIRouter

from app.clubs.api import (
	clubs,
	invitations,
	memberships,
	participations,
	rides,
)

router = APIRouter(prefix="/api/clubs/v1")

router.include_router(clubs.router)
router.include_router(memberships.router)
router.include_router(invitations.router)
router.include_router(rides.router)
router.include_router(participations.router)

__all__ = ["router"]
