"""In-process item store for tests and single-process development runs."""

from __future__ import annotations

import asyncio
import copy
from typing import Optional, Sequence

from app.clubs.infra.store import Delete, Item, ItemStore, Put, WriteOp, check_condition


class InMemoryItemStore(ItemStore):
	"""Dict-backed store; ``transact`` applies all conditions before any write."""

	def __init__(self) -> None:
		self._items: dict[tuple[str, str], Item] = {}
		self._lock = asyncio.Lock()

	@staticmethod
	def _copy(item: Item) -> Item:
		return Item(item.pk, item.sk, copy.deepcopy(item.data), item.version, item.gsi1pk, item.gsi1sk)

	async def get(self, pk: str, sk: str) -> Optional[Item]:
		item = self._items.get((pk, sk))
		return self._copy(item) if item is not None else None

	async def query(self, pk: str, sk_prefix: str = "") -> list[Item]:
		matches = [
			self._copy(item)
			for (item_pk, item_sk), item in self._items.items()
			if item_pk == pk and item_sk.startswith(sk_prefix)
		]
		return sorted(matches, key=lambda item: item.sk)

	async def query_index(self, gsi1pk: str, sk_prefix: str = "") -> list[Item]:
		matches = [
			self._copy(item)
			for item in self._items.values()
			if item.gsi1pk == gsi1pk and (item.gsi1sk or "").startswith(sk_prefix)
		]
		return sorted(matches, key=lambda item: (item.gsi1sk or "", item.pk, item.sk))

	async def scan(self, pk_prefix: str, sk: str) -> list[Item]:
		matches = [
			self._copy(item)
			for (item_pk, item_sk), item in self._items.items()
			if item_pk.startswith(pk_prefix) and item_sk == sk
		]
		return sorted(matches, key=lambda item: item.pk)

	async def transact(self, ops: Sequence[WriteOp]) -> None:
		async with self._lock:
			for op in ops:
				check_condition(op, self._items.get((op.pk, op.sk)))
			for op in ops:
				key = (op.pk, op.sk)
				if isinstance(op, Put):
					current = self._items.get(key)
					version = current.version + 1 if current is not None else 1
					self._items[key] = Item(
						op.pk,
						op.sk,
						copy.deepcopy(op.data),
						version,
						op.gsi1pk,
						op.gsi1sk,
					)
				elif isinstance(op, Delete):
					self._items.pop(key, None)

	def clear(self) -> None:
		self._items.clear()

	def __len__(self) -> int:
		return len(self._items)


__all__ = ["InMemoryItemStore"]
