"""Bounded optimistic retry for read-modify-write operations on the item store."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from app.clubs.domain.exceptions import ClubsError, ErrorCode
from app.clubs.infra.store import VersionConflict
from app.obs import metrics as obs_metrics
from app.settings import settings

_LOG = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy:
	"""How many times a conflicting write is re-attempted, and how long to wait between tries."""

	__slots__ = ("max_attempts", "backoff_seconds")

	def __init__(self, max_attempts: int | None = None, backoff_seconds: float | None = None) -> None:
		self.max_attempts = max(1, max_attempts if max_attempts is not None else settings.clubs_write_retry_attempts)
		self.backoff_seconds = max(
			0.0,
			backoff_seconds if backoff_seconds is not None else settings.clubs_write_retry_backoff_seconds,
		)

	async def run(self, operation: str, attempt_fn: Callable[[], Awaitable[T]]) -> T:
		"""Run ``attempt_fn`` until it commits or the attempt budget is spent.

		``attempt_fn`` must reload everything it depends on; it is re-entered from
		scratch after each ``VersionConflict``.
		"""
		last: VersionConflict | None = None
		for attempt in range(1, self.max_attempts + 1):
			try:
				return await attempt_fn()
			except VersionConflict as exc:
				last = exc
				obs_metrics.inc_write_conflict(operation)
				_LOG.debug(
					"clubs.write_conflict",
					extra={"operation": operation, "attempt": attempt, "pk": exc.pk, "sk": exc.sk},
				)
				if attempt < self.max_attempts:
					await asyncio.sleep(self.backoff_seconds * attempt)
		obs_metrics.inc_write_conflict(operation, exhausted=True)
		_LOG.warning(
			"clubs.write_conflict_exhausted",
			extra={"operation": operation, "attempts": self.max_attempts},
		)
		raise ClubsError(
			ErrorCode.CONCURRENT_MODIFICATION,
			"the resource was modified concurrently, retry the request",
			operation=operation,
			attempts=self.max_attempts,
		) from last


__all__ = ["RetryPolicy"]
