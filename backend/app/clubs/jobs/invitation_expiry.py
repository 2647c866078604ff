"""Background job that expires pending invitations past their deadline."""

from __future__ import annotations

from datetime import datetime, timezone

from app.clubs.domain.invitation_service import InvitationService
from app.obs import metrics as obs_metrics

_JOB_NAME = "clubs-invitation-expiry"


class InvitationExpiryJob:
	"""Marks lapsed invitations expired and frees their pending slot."""

	def __init__(self, *, invitations: InvitationService) -> None:
		self.invitations = invitations

	async def run_once(self) -> int:
		started = datetime.now(timezone.utc)
		try:
			expired = await self.invitations.expire_stale(self.invitations.clock.now())
			obs_metrics.BACKGROUND_RUNS.labels(name=_JOB_NAME, result="success").inc()
			return expired
		except Exception:  # pragma: no cover - defensive logging
			obs_metrics.BACKGROUND_RUNS.labels(name=_JOB_NAME, result="error").inc()
			raise
		finally:
			duration = (datetime.now(timezone.utc) - started).total_seconds()
			obs_metrics.BACKGROUND_DURATION.labels(name=_JOB_NAME).observe(duration)


__all__ = ["InvitationExpiryJob"]
