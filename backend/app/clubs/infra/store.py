"""Partition/sort-key item store used by the clubs core.

Items carry a monotonically increasing ``version``. Writes are grouped into an
all-or-nothing ``transact`` call whose operations may each carry a condition on
the current version; a failed condition aborts the whole group with
``VersionConflict`` and nothing is written.
"""

from __future__ import annotations

import abc
from dataclasses import dataclass
from typing import Any, Optional, Sequence, Union


@dataclass(slots=True)
class Item:
	pk: str
	sk: str
	data: dict[str, Any]
	version: int = 1
	gsi1pk: Optional[str] = None
	gsi1sk: Optional[str] = None


@dataclass(slots=True)
class Put:
	"""Write an item.

	``if_absent`` requires that no item exists under the key; otherwise
	``expected_version`` (when set) must equal the stored version.
	"""

	pk: str
	sk: str
	data: dict[str, Any]
	expected_version: Optional[int] = None
	if_absent: bool = False
	gsi1pk: Optional[str] = None
	gsi1sk: Optional[str] = None


@dataclass(slots=True)
class Delete:
	pk: str
	sk: str
	expected_version: Optional[int] = None


@dataclass(slots=True)
class ConditionCheck:
	"""Assert an item's state without writing it.

	With ``expected_version=None`` the item must be absent.
	"""

	pk: str
	sk: str
	expected_version: Optional[int] = None


WriteOp = Union[Put, Delete, ConditionCheck]


class VersionConflict(Exception):
	"""A conditional write lost the race; the caller may reload and retry."""

	def __init__(self, pk: str, sk: str, expected: Optional[int] = None, actual: Optional[int] = None) -> None:
		self.pk = pk
		self.sk = sk
		self.expected = expected
		self.actual = actual
		super().__init__(f"version conflict on {pk}/{sk} (expected={expected}, actual={actual})")


def check_condition(op: WriteOp, current: Optional[Item]) -> None:
	"""Raise ``VersionConflict`` unless ``op``'s condition holds against ``current``."""
	actual = current.version if current is not None else None
	if isinstance(op, Put):
		if op.if_absent:
			if current is not None:
				raise VersionConflict(op.pk, op.sk, None, actual)
			return
		if op.expected_version is not None and actual != op.expected_version:
			raise VersionConflict(op.pk, op.sk, op.expected_version, actual)
		return
	if isinstance(op, Delete):
		if op.expected_version is not None and actual != op.expected_version:
			raise VersionConflict(op.pk, op.sk, op.expected_version, actual)
		return
	if actual != op.expected_version:
		raise VersionConflict(op.pk, op.sk, op.expected_version, actual)


class ItemStore(abc.ABC):
	"""Key-value store with conditional multi-item writes."""

	@abc.abstractmethod
	async def get(self, pk: str, sk: str) -> Optional[Item]:
		...

	@abc.abstractmethod
	async def query(self, pk: str, sk_prefix: str = "") -> list[Item]:
		"""Items in one partition whose sort key starts with ``sk_prefix``, by sort key."""

	@abc.abstractmethod
	async def query_index(self, gsi1pk: str, sk_prefix: str = "") -> list[Item]:
		"""Items sharing a secondary partition key, ordered by ``gsi1sk``."""

	@abc.abstractmethod
	async def scan(self, pk_prefix: str, sk: str) -> list[Item]:
		"""Items whose partition key starts with ``pk_prefix`` and whose sort key equals ``sk``."""

	@abc.abstractmethod
	async def transact(self, ops: Sequence[WriteOp]) -> None:
		...

	async def compare_and_swap(
		self,
		pk: str,
		sk: str,
		expected_version: int,
		data: dict[str, Any],
		*,
		gsi1pk: Optional[str] = None,
		gsi1sk: Optional[str] = None,
	) -> Item:
		"""Replace one item if it is still at ``expected_version``."""
		await self.transact(
			[Put(pk, sk, data, expected_version=expected_version, gsi1pk=gsi1pk, gsi1sk=gsi1sk)]
		)
		return Item(pk, sk, data, expected_version + 1, gsi1pk, gsi1sk)

	async def close(self) -> None:
		return None


__all__ = [
	"ConditionCheck",
	"Delete",
	"Item",
	"ItemStore",
	"Put",
	"VersionConflict",
	"WriteOp",
	"check_condition",
]
