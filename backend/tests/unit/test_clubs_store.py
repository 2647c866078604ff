from __future__ import annotations

import pytest

from app.clubs.infra.memory_store import InMemoryItemStore
from app.clubs.infra.store import ConditionCheck, Delete, Put, VersionConflict


@pytest.mark.asyncio
async def test_put_if_absent_then_versioned_update():
	store = InMemoryItemStore()
	await store.transact([Put("CLUB#1", "META", {"name": "a"}, if_absent=True)])
	item = await store.get("CLUB#1", "META")
	assert item.version == 1

	with pytest.raises(VersionConflict):
		await store.transact([Put("CLUB#1", "META", {"name": "b"}, if_absent=True)])

	await store.transact([Put("CLUB#1", "META", {"name": "b"}, expected_version=1)])
	with pytest.raises(VersionConflict) as exc:
		await store.transact([Put("CLUB#1", "META", {"name": "c"}, expected_version=1)])
	assert (exc.value.expected, exc.value.actual) == (1, 2)
	assert (await store.get("CLUB#1", "META")).data == {"name": "b"}


@pytest.mark.asyncio
async def test_failed_condition_writes_nothing():
	store = InMemoryItemStore()
	await store.transact([Put("RIDE#1", "META", {"seats": 1}, if_absent=True)])
	with pytest.raises(VersionConflict):
		await store.transact(
			[
				Put("RIDE#1", "PART#a", {"status": "confirmed"}, if_absent=True),
				Put("RIDE#1", "META", {"seats": 0}, expected_version=7),
			]
		)
	assert await store.get("RIDE#1", "PART#a") is None
	assert (await store.get("RIDE#1", "META")).data == {"seats": 1}


@pytest.mark.asyncio
async def test_condition_check_and_delete():
	store = InMemoryItemStore()
	await store.transact([Put("CLUB#1", "SLOT#x", {"invitation_id": "i1"}, if_absent=True)])

	with pytest.raises(VersionConflict):
		await store.transact([ConditionCheck("CLUB#1", "SLOT#x")])
	await store.transact([ConditionCheck("CLUB#1", "SLOT#y")])
	await store.transact([ConditionCheck("CLUB#1", "SLOT#x", expected_version=1)])

	with pytest.raises(VersionConflict):
		await store.transact([Delete("CLUB#1", "SLOT#x", expected_version=2)])
	await store.transact([Delete("CLUB#1", "SLOT#x", expected_version=1)])
	assert await store.get("CLUB#1", "SLOT#x") is None
	assert len(store) == 0


@pytest.mark.asyncio
async def test_queries_are_ordered():
	store = InMemoryItemStore()
	await store.transact(
		[
			Put("CLUB#1", "MEMBER#b", {}, if_absent=True, gsi1pk="USER#b", gsi1sk="CLUB#1"),
			Put("CLUB#1", "MEMBER#a", {}, if_absent=True, gsi1pk="USER#a", gsi1sk="CLUB#1"),
			Put("CLUB#2", "MEMBER#a", {}, if_absent=True, gsi1pk="USER#a", gsi1sk="CLUB#2"),
			Put("CLUB#1", "META", {}, if_absent=True),
		]
	)
	assert [i.sk for i in await store.query("CLUB#1", "MEMBER#")] == ["MEMBER#a", "MEMBER#b"]
	assert [i.pk for i in await store.query_index("USER#a")] == ["CLUB#1", "CLUB#2"]
	assert [i.pk for i in await store.scan("CLUB#", "META")] == ["CLUB#1"]


@pytest.mark.asyncio
async def test_returned_items_are_copies():
	store = InMemoryItemStore()
	await store.transact([Put("CLUB#1", "META", {"tags": ["road"]}, if_absent=True)])
	item = await store.get("CLUB#1", "META")
	item.data["tags"].append("gravel")
	assert (await store.get("CLUB#1", "META")).data == {"tags": ["road"]}


@pytest.mark.asyncio
async def test_compare_and_swap():
	store = InMemoryItemStore()
	await store.transact([Put("CLUB#1", "META", {"n": 1}, if_absent=True)])
	item = await store.compare_and_swap("CLUB#1", "META", 1, {"n": 2})
	assert item.version == 2
	with pytest.raises(VersionConflict):
		await store.compare_and_swap("CLUB#1", "META", 1, {"n": 3})
