"""asyncpg-backed item store.

All club items live in one ``club_item`` table keyed by ``(pk, sk)`` with a
JSONB body. Conditional writes run inside a single transaction; the first
statement that matches no row raises ``VersionConflict`` which rolls the
transaction back.
"""

from __future__ import annotations

import json
from typing import Any, Optional, Sequence

import asyncpg

from app.clubs.infra.store import ConditionCheck, Delete, Item, ItemStore, VersionConflict, WriteOp
from app.infra.postgres import get_pool

SCHEMA = """
CREATE TABLE IF NOT EXISTS club_item (
	pk TEXT NOT NULL,
	sk TEXT NOT NULL,
	version INTEGER NOT NULL,
	data JSONB NOT NULL,
	gsi1pk TEXT,
	gsi1sk TEXT,
	updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
	PRIMARY KEY (pk, sk)
);
CREATE INDEX IF NOT EXISTS club_item_gsi1_idx ON club_item (gsi1pk, gsi1sk) WHERE gsi1pk IS NOT NULL;
CREATE INDEX IF NOT EXISTS club_item_sk_idx ON club_item (sk, pk);
"""


def _affected(result: str) -> int:
	return int(result.split()[-1])


def _to_item(row: asyncpg.Record) -> Item:
	data = row["data"]
	if isinstance(data, str):
		data = json.loads(data)
	return Item(
		pk=row["pk"],
		sk=row["sk"],
		data=dict(data),
		version=int(row["version"]),
		gsi1pk=row["gsi1pk"],
		gsi1sk=row["gsi1sk"],
	)


def _escape_like(prefix: str) -> str:
	return prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class PostgresItemStore(ItemStore):
	"""Item store on the shared asyncpg pool."""

	def __init__(self, pool: Optional[asyncpg.pool.Pool] = None) -> None:
		self._pool = pool

	async def _get_pool(self) -> asyncpg.pool.Pool:
		if self._pool is None:
			self._pool = await get_pool()
		return self._pool

	async def ensure_schema(self) -> None:
		pool = await self._get_pool()
		async with pool.acquire() as conn:
			await conn.execute(SCHEMA)

	async def get(self, pk: str, sk: str) -> Optional[Item]:
		pool = await self._get_pool()
		async with pool.acquire() as conn:
			row = await conn.fetchrow(
				"SELECT pk, sk, version, data, gsi1pk, gsi1sk FROM club_item WHERE pk = $1 AND sk = $2",
				pk,
				sk,
			)
		return _to_item(row) if row else None

	async def query(self, pk: str, sk_prefix: str = "") -> list[Item]:
		pool = await self._get_pool()
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				"""
				SELECT pk, sk, version, data, gsi1pk, gsi1sk
				FROM club_item
				WHERE pk = $1 AND sk LIKE $2 ESCAPE '\\'
				ORDER BY sk
				""",
				pk,
				f"{_escape_like(sk_prefix)}%",
			)
		return [_to_item(row) for row in rows]

	async def query_index(self, gsi1pk: str, sk_prefix: str = "") -> list[Item]:
		pool = await self._get_pool()
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				"""
				SELECT pk, sk, version, data, gsi1pk, gsi1sk
				FROM club_item
				WHERE gsi1pk = $1 AND gsi1sk LIKE $2 ESCAPE '\\'
				ORDER BY gsi1sk, pk, sk
				""",
				gsi1pk,
				f"{_escape_like(sk_prefix)}%",
			)
		return [_to_item(row) for row in rows]

	async def scan(self, pk_prefix: str, sk: str) -> list[Item]:
		pool = await self._get_pool()
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				"""
				SELECT pk, sk, version, data, gsi1pk, gsi1sk
				FROM club_item
				WHERE sk = $1 AND pk LIKE $2 ESCAPE '\\'
				ORDER BY pk
				""",
				sk,
				f"{_escape_like(pk_prefix)}%",
			)
		return [_to_item(row) for row in rows]

	async def transact(self, ops: Sequence[WriteOp]) -> None:
		pool = await self._get_pool()
		async with pool.acquire() as conn:
			async with conn.transaction():
				for op in ops:
					await self._apply(conn, op)

	async def _apply(self, conn: asyncpg.Connection, op: WriteOp) -> None:
		if isinstance(op, ConditionCheck):
			row = await conn.fetchrow(
				"SELECT version FROM club_item WHERE pk = $1 AND sk = $2 FOR UPDATE",
				op.pk,
				op.sk,
			)
			actual = int(row["version"]) if row else None
			if actual != op.expected_version:
				raise VersionConflict(op.pk, op.sk, op.expected_version, actual)
			return
		if isinstance(op, Delete):
			if op.expected_version is None:
				await conn.execute("DELETE FROM club_item WHERE pk = $1 AND sk = $2", op.pk, op.sk)
				return
			result = await conn.execute(
				"DELETE FROM club_item WHERE pk = $1 AND sk = $2 AND version = $3",
				op.pk,
				op.sk,
				op.expected_version,
			)
			if _affected(result) != 1:
				raise VersionConflict(op.pk, op.sk, op.expected_version)
			return
		body = json.dumps(op.data)
		args: list[Any] = [op.pk, op.sk, body, op.gsi1pk, op.gsi1sk]
		if op.if_absent:
			result = await conn.execute(
				"""
				INSERT INTO club_item (pk, sk, version, data, gsi1pk, gsi1sk)
				VALUES ($1, $2, 1, $3::jsonb, $4, $5)
				ON CONFLICT (pk, sk) DO NOTHING
				""",
				*args,
			)
			if _affected(result) != 1:
				raise VersionConflict(op.pk, op.sk, None)
			return
		if op.expected_version is not None:
			result = await conn.execute(
				"""
				UPDATE club_item
				SET data = $3::jsonb, gsi1pk = $4, gsi1sk = $5, version = version + 1, updated_at = now()
				WHERE pk = $1 AND sk = $2 AND version = $6
				""",
				*args,
				op.expected_version,
			)
			if _affected(result) != 1:
				raise VersionConflict(op.pk, op.sk, op.expected_version)
			return
		await conn.execute(
			"""
			INSERT INTO club_item (pk, sk, version, data, gsi1pk, gsi1sk)
			VALUES ($1, $2, 1, $3::jsonb, $4, $5)
			ON CONFLICT (pk, sk) DO UPDATE
			SET data = EXCLUDED.data,
				gsi1pk = EXCLUDED.gsi1pk,
				gsi1sk = EXCLUDED.gsi1sk,
				version = club_item.version + 1,
				updated_at = now()
			""",
			*args,
		)


__all__ = ["PostgresItemStore", "SCHEMA"]
