import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from app.clubs.infra.redis_streams import STREAM_PARTICIPATION, STREAM_RIDE, ClubEventPublisher
from app.infra.redis import redis_client


class _BrokenRedis:
    async def xadd(self, *args, **kwargs):
        raise RedisConnectionError("redis down")


@pytest.mark.asyncio
async def test_participation_events_reach_the_stream(services, seed):
    club = await seed.club()
    await seed.member(club.club_id, "a")
    ride = await seed.ride(club.club_id, max_participants=1)
    await services.participations.join_ride(seed.user("a"), ride.ride_id)

    entries = await redis_client.xrange(STREAM_PARTICIPATION, count=10)
    assert len(entries) == 1
    _, fields = entries[0]
    assert fields["event"] == "joined"
    assert fields["status"] == "waitlisted"
    assert fields["waitlist_position"] == "1"
    assert "ts" in fields

    rides = await redis_client.xrange(STREAM_RIDE, count=10)
    assert [f["event"] for _, f in rides] == ["created"]


@pytest.mark.asyncio
async def test_disabled_publisher_writes_nothing():
    publisher = ClubEventPublisher(enabled=False)
    await publisher.publish_ride_event("created", ride_id="r1", club_id="c1", status="draft")
    assert await redis_client.xlen(STREAM_RIDE) == 0


@pytest.mark.asyncio
async def test_publish_failure_is_swallowed():
    publisher = ClubEventPublisher(_BrokenRedis(), enabled=True)
    await publisher.publish_ride_event("created", ride_id="r1", club_id="c1", status="draft")
