"""Injectable time source for expiry checks and timestamps."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Protocol


class Clock(Protocol):
	def now(self) -> datetime:
		...


class SystemClock:
	def now(self) -> datetime:
		return datetime.now(timezone.utc)


class FrozenClock:
	"""Clock that only moves when told to."""

	def __init__(self, at: datetime | None = None) -> None:
		self._now = at or datetime.now(timezone.utc)

	def now(self) -> datetime:
		return self._now

	def advance(self, **delta: float) -> datetime:
		self._now = self._now + timedelta(**delta)
		return self._now

	def set(self, at: datetime) -> None:
		self._now = at


__all__ = ["Clock", "FrozenClock", "SystemClock"]
