"""Background job that recounts ride seats from participation rows.

Counters only drift if a write bypassed the participation service; the job
repairs them and fills any seats that drift left empty.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from app.clubs.domain import policies
from app.clubs.domain.exceptions import ClubsError
from app.clubs.domain.participation_service import ParticipationService
from app.obs import metrics as obs_metrics

_JOB_NAME = "clubs-capacity-integrity"
_LOG = logging.getLogger(__name__)


class CapacityIntegrityJob:
	def __init__(self, *, participations: ParticipationService) -> None:
		self.participations = participations

	async def run_once(self) -> int:
		"""Return the number of rides whose counters were repaired."""
		started = datetime.now(timezone.utc)
		repaired = 0
		try:
			for ride in await self.participations.repo.list_rides():
				if ride.status not in policies.RIDE_OPEN_FOR_EXIT:
					continue
				try:
					_, drifted = await self.participations.recount(ride.ride_id)
				except ClubsError as exc:
					# another writer kept the ride busy; the next run picks it up
					_LOG.warning(
						"clubs.capacity_recount_skipped",
						extra={"ride_id": ride.ride_id, "code": exc.code.value},
					)
					continue
				if drifted:
					repaired += 1
			obs_metrics.BACKGROUND_RUNS.labels(name=_JOB_NAME, result="success").inc()
			return repaired
		except Exception:  # pragma: no cover - defensive logging
			obs_metrics.BACKGROUND_RUNS.labels(name=_JOB_NAME, result="error").inc()
			raise
		finally:
			duration = (datetime.now(timezone.utc) - started).total_seconds()
			obs_metrics.BACKGROUND_DURATION.labels(name=_JOB_NAME).observe(duration)


__all__ = ["CapacityIntegrityJob"]
