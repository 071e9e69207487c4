from __future__ import annotations

import asyncio
import json
import re

import pytest

from bizstore.errors import DocumentNotFoundError, MalformedDataError, SubstrateIOError
from bizstore.store import DocumentStore, document_key, index_key


def test_create_then_get_returns_document_with_managed_fields(store):
    async def _run():
        doc_id = await store.create("orders", {"amount": 100, "status": "completed"})
        assert re.fullmatch(r"doc_\d+_[0-9a-z]{9}", doc_id)

        doc = await store.get("orders", doc_id)
        assert doc is not None
        assert doc["id"] == doc_id
        assert doc["amount"] == 100
        assert doc["status"] == "completed"
        assert doc["createdAt"]
        assert doc["createdAt"] == doc["updatedAt"]
        assert doc["createdAt"].endswith("Z")

    asyncio.run(_run())


def test_create_overrides_caller_supplied_managed_fields(store):
    async def _run():
        doc_id = await store.create(
            "orders",
            {"id": "spoof", "createdAt": "1999-01-01T00:00:00Z", "updatedAt": "x", "amount": 1},
            "real",
        )
        assert doc_id == "real"
        doc = await store.get("orders", "real")
        assert doc["id"] == "real"
        assert doc["createdAt"] != "1999-01-01T00:00:00Z"
        assert doc["updatedAt"] == doc["createdAt"]

    asyncio.run(_run())


def test_substrate_layout_uses_composite_and_index_keys(store, kv):
    async def _run():
        await store.create("orders", {"amount": 5}, "a")
        await store.create("orders", {"amount": 6}, "b")
        raw = kv.snapshot()
        assert json.loads(raw["collection_orders"]) == ["a", "b"]
        assert json.loads(raw["orders_a"])["amount"] == 5
        assert index_key("orders") == "collection_orders"
        assert document_key("orders", "b") == "orders_b"

    asyncio.run(_run())


def test_generated_ids_are_unique(store):
    async def _run():
        ids = [await store.create("orders", {"n": i}) for i in range(200)]
        assert len(set(ids)) == len(ids)
        assert await store.list_ids("orders") == ids

    asyncio.run(_run())


def test_generated_id_collision_is_redrawn(kv, clock):
    async def _run():
        drawn = iter(["dup", "dup", "fresh"])
        store = DocumentStore(kv, clock=clock, id_factory=lambda: next(drawn))
        assert await store.create("orders", {}) == "dup"
        assert await store.create("orders", {}) == "fresh"

    asyncio.run(_run())


def test_query_equality_filter_returns_matching_subset(store):
    async def _run():
        await store.create("orders", {"status": "completed"}, "a")
        await store.create("orders", {"status": "pending"}, "b")
        await store.create("orders", {"status": "completed"}, "c")

        docs = await store.query("orders", [{"field": "status", "operator": "==", "value": "completed"}])
        assert sorted(d["id"] for d in docs) == ["a", "c"]

    asyncio.run(_run())


def test_update_merges_patch_and_refreshes_updated_at(store):
    async def _run():
        await store.create("orders", {"amount": 100, "status": "completed", "note": "keep"}, "a")
        before = await store.get("orders", "a")

        assert await store.update("orders", "a", {"status": "cancelled"}) is True

        after = await store.get("orders", "a")
        assert after["status"] == "cancelled"
        assert after["amount"] == 100
        assert after["note"] == "keep"
        assert after["createdAt"] == before["createdAt"]
        # frozen clock: still strictly later
        assert after["updatedAt"] > before["updatedAt"]

    asyncio.run(_run())


def test_update_cannot_rewrite_id_or_created_at(store, clock):
    async def _run():
        await store.create("orders", {"amount": 1}, "a")
        created = (await store.get("orders", "a"))["createdAt"]
        clock.advance(seconds=5)

        await store.update("orders", "a", {"id": "other", "createdAt": "1999-01-01T00:00:00Z", "amount": 2})

        doc = await store.get("orders", "a")
        assert doc["id"] == "a"
        assert doc["createdAt"] == created
        assert doc["amount"] == 2
        assert await store.get("orders", "other") is None

    asyncio.run(_run())


def test_update_missing_document_returns_false_and_creates_nothing(store, kv):
    async def _run():
        assert await store.update("orders", "missing-id", {"status": "x"}) is False
        assert await store.get("orders", "missing-id") is None
        assert kv.snapshot() == {}

    asyncio.run(_run())


def test_require_raises_not_found(store):
    async def _run():
        with pytest.raises(DocumentNotFoundError) as exc_info:
            await store.require("orders", "nope")
        assert exc_info.value.collection == "orders"
        assert exc_info.value.doc_id == "nope"

    asyncio.run(_run())


def test_delete_removes_document_and_index_entry(store):
    async def _run():
        for doc_id in ("a", "b"):
            await store.create("orders", {"amount": 1}, doc_id)

        assert await store.delete("orders", "a") is True
        assert await store.get("orders", "a") is None
        assert [d["id"] for d in await store.query("orders", [])] == ["b"]

    asyncio.run(_run())


def test_delete_is_idempotent(store):
    async def _run():
        await store.create("orders", {"amount": 1}, "a")
        assert await store.delete("orders", "a") is True
        assert await store.get("orders", "a") is None
        assert await store.delete("orders", "a") is True
        assert await store.get("orders", "a") is None
        assert await store.delete("orders", "never-existed") is True

    asyncio.run(_run())


def test_query_orders_descending_and_limits(store):
    async def _run():
        for i, amount in enumerate([10, 50, 30, 80, 20]):
            await store.create("orders", {"amount": amount}, f"o{i}")

        docs = await store.query("orders", [], "amount", 2)
        assert [d["amount"] for d in docs] == [80, 50]

    asyncio.run(_run())


def test_query_missing_collection_is_empty(store):
    async def _run():
        assert await store.query("nothing-here") == []
        assert await store.list_ids("nothing-here") == []

    asyncio.run(_run())


def test_query_rejects_bad_limit_and_operator(store):
    async def _run():
        with pytest.raises(ValueError):
            await store.query("orders", limit=-1)
        with pytest.raises(ValueError):
            await store.query("orders", [("amount", "~=", 1)])

    asyncio.run(_run())


def test_query_limit_zero_returns_nothing(store):
    async def _run():
        await store.create("orders", {"amount": 1})
        assert await store.query("orders", limit=0) == []

    asyncio.run(_run())


def test_index_matches_present_documents_after_mixed_operations(store):
    async def _run():
        created = [await store.create("orders", {"n": i}) for i in range(6)]
        for doc_id in created[::2]:
            await store.delete("orders", doc_id)
        await store.create("orders", {"n": 99}, "explicit")
        await store.delete("orders", "ghost")

        listed = {d["id"] for d in await store.query("orders")}
        present = {i for i in [*created, "explicit", "ghost"] if await store.get("orders", i) is not None}
        assert listed == present == {*created[1::2], "explicit"}

    asyncio.run(_run())


def test_collections_are_isolated(store):
    async def _run():
        await store.create("orders", {"amount": 1}, "same")
        await store.create("expenses", {"amount": 2}, "same")
        assert (await store.get("orders", "same"))["amount"] == 1
        assert (await store.get("expenses", "same"))["amount"] == 2
        await store.delete("orders", "same")
        assert await store.get("expenses", "same") is not None

    asyncio.run(_run())


def test_create_with_existing_id_replaces_without_duplicating_index(store):
    async def _run():
        await store.create("orders", {"amount": 1, "old": True}, "a")
        await store.create("orders", {"amount": 2}, "a")
        doc = await store.get("orders", "a")
        assert doc["amount"] == 2
        assert "old" not in doc
        assert await store.list_ids("orders") == ["a"]

    asyncio.run(_run())


def test_concurrent_creates_with_same_id_register_once(store):
    async def _run():
        await asyncio.gather(*(store.create("orders", {"n": i}, "same") for i in range(10)))
        assert await store.list_ids("orders") == ["same"]

    asyncio.run(_run())


def test_concurrent_updates_with_disjoint_patches_all_survive(store):
    async def _run():
        await store.create("orders", {}, "a")
        await asyncio.gather(*(store.update("orders", "a", {f"f{i}": i}) for i in range(10)))
        doc = await store.get("orders", "a")
        assert all(doc[f"f{i}"] == i for i in range(10))

    asyncio.run(_run())


def test_failed_index_write_rolls_back_new_document(flaky_kv, clock):
    async def _run():
        store = DocumentStore(flaky_kv, clock=clock)
        flaky_kv.fail_set.add("collection_orders")

        with pytest.raises(SubstrateIOError):
            await store.create("orders", {"amount": 1}, "a")

        assert await store.get("orders", "a") is None
        flaky_kv.fail_set.clear()
        assert await store.query("orders") == []

    asyncio.run(_run())


def test_failed_index_write_restores_replaced_document(flaky_kv, clock):
    async def _run():
        store = DocumentStore(flaky_kv, clock=clock)
        await store.create("orders", {"amount": 1}, "a")
        await flaky_kv.remove("collection_orders")
        flaky_kv.fail_set.add("collection_orders")

        with pytest.raises(SubstrateIOError):
            await store.create("orders", {"amount": 2}, "a")

        assert (await store.get("orders", "a"))["amount"] == 1

    asyncio.run(_run())


def test_failed_document_write_leaves_index_untouched(flaky_kv, clock):
    async def _run():
        store = DocumentStore(flaky_kv, clock=clock)
        flaky_kv.fail_set.add("orders_a")

        with pytest.raises(SubstrateIOError):
            await store.create("orders", {"amount": 1}, "a")

        assert await store.list_ids("orders") == []

    asyncio.run(_run())


def test_read_failures_propagate(flaky_kv, clock):
    async def _run():
        store = DocumentStore(flaky_kv, clock=clock)
        await store.create("orders", {"amount": 1}, "a")
        flaky_kv.fail_get.add("orders_a")

        with pytest.raises(SubstrateIOError):
            await store.get("orders", "a")
        with pytest.raises(SubstrateIOError):
            await store.query("orders")
        with pytest.raises(SubstrateIOError):
            await store.update("orders", "a", {"amount": 2})

    asyncio.run(_run())


def test_malformed_values_surface_as_errors(kv, clock):
    async def _run():
        store = DocumentStore(kv, clock=clock)
        await kv.set("orders_bad", "{not json")
        await kv.set("orders_list", "[1, 2]")
        await kv.set("collection_broken", '{"a": 1}')

        with pytest.raises(MalformedDataError):
            await store.get("orders", "bad")
        with pytest.raises(MalformedDataError):
            await store.get("orders", "list")
        with pytest.raises(MalformedDataError):
            await store.query("broken")

    asyncio.run(_run())


def test_dangling_index_ids_are_skipped(kv, clock):
    async def _run():
        store = DocumentStore(kv, clock=clock)
        await store.create("orders", {"amount": 1}, "a")
        await kv.set("collection_orders", json.dumps(["a", "ghost"]))
        assert [d["id"] for d in await store.query("orders")] == ["a"]

    asyncio.run(_run())


def test_unserializable_data_is_rejected_before_any_write(store, kv):
    async def _run():
        with pytest.raises(SubstrateIOError):
            await store.create("orders", {"amount": float("nan")}, "a")
        assert kv.snapshot() == {}

    asyncio.run(_run())


def test_invalid_names_are_rejected(store):
    async def _run():
        with pytest.raises(ValueError):
            await store.create("", {})
        with pytest.raises(ValueError):
            await store.create("orders", {}, "")
        with pytest.raises(ValueError):
            await store.get("orders", "")

    asyncio.run(_run())


def test_reserved_collection_name_cannot_clobber_an_index(store):
    async def _run():
        await store.create("orders", {"amount": 1}, "x")

        with pytest.raises(ValueError):
            await store.create("collection", {"amount": 2}, "orders")
        with pytest.raises(ValueError):
            await store.query("collection")

        assert [d["id"] for d in await store.query("orders")] == ["x"]

    asyncio.run(_run())


def test_failed_rollback_still_surfaces_the_index_error(flaky_kv, clock):
    async def _run():
        store = DocumentStore(flaky_kv, clock=clock)
        flaky_kv.fail_set.add("collection_orders")
        flaky_kv.fail_remove.add("orders_a")

        with pytest.raises(SubstrateIOError) as exc_info:
            await store.create("orders", {"amount": 1}, "a")
        assert exc_info.value.key == "collection_orders"

    asyncio.run(_run())


def test_recreating_an_id_keeps_created_at(store, clock):
    async def _run():
        await store.create("orders", {"amount": 1}, "a")
        first = await store.get("orders", "a")

        clock.advance(seconds=30)
        await store.create("orders", {"amount": 2}, "a")
        second = await store.get("orders", "a")

        assert second["amount"] == 2
        assert second["createdAt"] == first["createdAt"]
        assert second["updatedAt"] > first["updatedAt"]

    asyncio.run(_run())
