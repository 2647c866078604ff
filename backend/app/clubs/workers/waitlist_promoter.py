"""Background worker to promote ride waitlists when seats free up."""

from __future__ import annotations

import asyncio
import logging

from app.clubs.domain import models
from app.clubs.domain.participation_service import ParticipationService
from app.settings import settings

_LOG = logging.getLogger(__name__)

_PROMOTABLE = (models.RideStatus.PUBLISHED, models.RideStatus.ACTIVE)


class WaitlistPromoter:
	"""Promotes waitlisted riders into available seats.

	Exits already promote in the same write, so this only catches seats opened
	some other way, such as a capacity change made before a waitlist formed.
	"""

	def __init__(
		self,
		*,
		participations: ParticipationService,
		batch_size: int = 10,
		poll_interval: float | None = None,
	) -> None:
		self.participations = participations
		self.batch_size = batch_size
		self.poll_interval = settings.clubs_waitlist_poll_seconds if poll_interval is None else poll_interval
		self._running = False

	async def run_forever(self) -> None:
		self._running = True
		while self._running:
			promoted = await self.process_once()
			if promoted == 0:
				await asyncio.sleep(self.poll_interval)

	def stop(self) -> None:
		self._running = False

	async def _candidates(self) -> list[str]:
		rides = await self.participations.repo.list_rides()
		ride_ids = [
			ride.ride_id
			for ride in rides
			if ride.status in _PROMOTABLE and ride.waitlist_count > 0 and not ride.is_full
		]
		return ride_ids[: self.batch_size]

	async def process_once(self) -> int:
		total_promoted = 0
		for ride_id in await self._candidates():
			try:
				result = await self.participations.promote_waitlist(ride_id)
			except Exception:  # pragma: no cover - defensive logging
				_LOG.exception("waitlist_promoter.failed", extra={"ride_id": ride_id})
				continue
			total_promoted += len(result.promoted)
		return total_promoted


__all__ = ["WaitlistPromoter"]
