"""Infrastructure helpers scoped to the clubs domain."""

from . import memory_store, postgres_store, redis_streams, scheduler, store  # noqa: F401

__all__ = [
	"memory_store",
	"postgres_store",
	"redis_streams",
	"scheduler",
	"store",
]
