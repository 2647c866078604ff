"""Redis stream fan-out for committed club transitions."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from redis.exceptions import RedisError

from app.infra.redis import redis_client
from app.obs import metrics as obs_metrics
from app.settings import settings

_LOG = logging.getLogger(__name__)

STREAM_MEMBERSHIP = "clubs:membership"
STREAM_INVITATION = "clubs:invitation"
STREAM_PARTICIPATION = "clubs:participation"
STREAM_RIDE = "clubs:ride"

_MAXLEN = 10_000


def _now_ts() -> str:
	return datetime.now(timezone.utc).isoformat()


class ClubEventPublisher:
	"""Publishes events after commit; a failed publish is logged, never raised."""

	def __init__(self, client: Any = None, *, enabled: Optional[bool] = None) -> None:
		self._client = client
		self._enabled = enabled

	@property
	def enabled(self) -> bool:
		return settings.clubs_events_enabled if self._enabled is None else self._enabled

	async def _publish(self, stream: str, payload: dict[str, Any]) -> None:
		if not self.enabled:
			return
		fields = {key: str(value) for key, value in payload.items() if value is not None}
		fields["ts"] = _now_ts()
		client = self._client if self._client is not None else redis_client
		try:
			await client.xadd(stream, fields, maxlen=_MAXLEN, approximate=True)
		except (RedisError, OSError):
			obs_metrics.inc_stream_publish_failure(stream)
			_LOG.warning("clubs.stream_publish_failed", extra={"stream": stream, "event": payload.get("event")})

	async def publish_membership_event(
		self,
		event: str,
		*,
		club_id: str,
		user_id: str,
		membership_id: str,
		role: str,
		status: str,
		actor_id: str | None = None,
	) -> None:
		await self._publish(
			STREAM_MEMBERSHIP,
			{
				"event": event,
				"entity": "membership",
				"id": membership_id,
				"club_id": club_id,
				"user_id": user_id,
				"role": role,
				"status": status,
				"actor_id": actor_id,
			},
		)

	async def publish_invitation_event(
		self,
		event: str,
		*,
		invitation_id: str,
		club_id: str,
		status: str,
		actor_id: str | None = None,
	) -> None:
		await self._publish(
			STREAM_INVITATION,
			{
				"event": event,
				"entity": "invitation",
				"id": invitation_id,
				"club_id": club_id,
				"status": status,
				"actor_id": actor_id,
			},
		)

	async def publish_participation_event(
		self,
		event: str,
		*,
		ride_id: str,
		club_id: str,
		user_id: str,
		status: str,
		actor_id: str | None = None,
		waitlist_position: int | None = None,
	) -> None:
		await self._publish(
			STREAM_PARTICIPATION,
			{
				"event": event,
				"entity": "participation",
				"ride_id": ride_id,
				"club_id": club_id,
				"user_id": user_id,
				"status": status,
				"actor_id": actor_id,
				"waitlist_position": waitlist_position,
			},
		)

	async def publish_ride_event(self, event: str, *, ride_id: str, club_id: str, status: str, actor_id: str | None = None) -> None:
		await self._publish(
			STREAM_RIDE,
			{
				"event": event,
				"entity": "ride",
				"id": ride_id,
				"club_id": club_id,
				"status": status,
				"actor_id": actor_id,
			},
		)


__all__ = [
	"ClubEventPublisher",
	"STREAM_INVITATION",
	"STREAM_MEMBERSHIP",
	"STREAM_PARTICIPATION",
	"STREAM_RIDE",
]
