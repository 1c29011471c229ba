import asyncio

import pytest

from wellball.errors import DocumentNotFound, TransactionConflict
from wellball.store.documents import InMemoryDocumentStore, Transaction


def test_set_get_and_merge() -> None:
    async def scenario() -> None:
        store = InMemoryDocumentStore(clock=lambda: 100.0)
        await store.set("games/g1", {"a": 1, "b": {"c": 2}})
        await store.set("games/g1", {"d": 3}, merge=True)
        snap = await store.get("games/g1")
        assert snap.exists
        assert snap.id == "g1"
        assert snap.data == {"a": 1, "b": {"c": 2}, "d": 3}

        missing = await store.get("games/nope")
        assert not missing.exists

    asyncio.run(scenario())


def test_update_dotted_fields_and_missing_doc() -> None:
    async def scenario() -> None:
        store = InMemoryDocumentStore()
        await store.set("games/g1", {"trackerLocks": {"A": {"uid": "u1", "updatedAt": 1}}})
        await store.update("games/g1", {"trackerLocks.A.updatedAt": 5})
        snap = await store.get("games/g1")
        assert snap.data["trackerLocks"]["A"] == {"uid": "u1", "updatedAt": 5}

        with pytest.raises(DocumentNotFound) as exc:
            await store.update("games/missing", {"x": 1})
        assert exc.value.path == "games/missing"
        assert not (await store.get("games/missing")).exists

    asyncio.run(scenario())


def test_query_filters_orders_and_limits() -> None:
    async def scenario() -> None:
        store = InMemoryDocumentStore()
        for i, status in enumerate(["pending", "ingested", "pending", "pending"]):
            await store.set(f"games/g1/auto_events/e{i}", {"status": status, "ts": 10 - i})
        snaps = await store.query(
            "games/g1/auto_events", where=[("status", "==", "pending")], order_by=("ts", "asc"), limit=2
        )
        assert [s.id for s in snaps] == ["e3", "e2"]

    asyncio.run(scenario())


def test_transaction_is_all_or_nothing() -> None:
    async def scenario() -> None:
        store = InMemoryDocumentStore()
        await store.set("games/g1", {"score": 1})

        async def body(tx: Transaction) -> None:
            snap = await tx.get("games/g1")
            tx.update("games/g1", {"score": snap.data["score"] + 1})
            tx.set("games/g1/logs/l1", {"made": True})
            raise ValueError("rejected")

        with pytest.raises(ValueError):
            await store.run_transaction(body)

        assert (await store.get("games/g1")).data == {"score": 1}
        assert not (await store.get("games/g1/logs/l1")).exists

    asyncio.run(scenario())


def test_concurrent_increments_retry_and_all_land() -> None:
    async def scenario() -> None:
        store = InMemoryDocumentStore(max_attempts=20)
        await store.set("games/g1", {"n": 0})

        async def increment(tx: Transaction) -> None:
            snap = await tx.get("games/g1")
            tx.update("games/g1", {"n": snap.data["n"] + 1})

        await asyncio.gather(*(store.run_transaction(increment) for _ in range(5)))
        assert (await store.get("games/g1")).data["n"] == 5

    asyncio.run(scenario())


def test_conflict_exhaustion_raises() -> None:
    async def scenario() -> None:
        store = InMemoryDocumentStore(max_attempts=2)
        await store.set("games/g1", {"n": 0})

        async def always_loses(tx: Transaction) -> None:
            await tx.get("games/g1")
            # Someone else writes between our read and our commit.
            await store.update("games/g1", {"n": 1})
            tx.update("games/g1", {"n": 2})

        with pytest.raises(TransactionConflict):
            await store.run_transaction(always_loses)

    asyncio.run(scenario())


def test_collection_query_conflicts_when_collection_changes() -> None:
    async def scenario() -> None:
        store = InMemoryDocumentStore(max_attempts=3)
        runs = []

        async def body(tx: Transaction) -> None:
            runs.append(1)
            await tx.query("games/g1/logs")
            if len(runs) == 1:
                await store.set("games/g1/logs/x", {"made": True})
            tx.set("games/g1", {"seen": len(runs)})

        await store.run_transaction(body)
        assert len(runs) == 2
        assert (await store.get("games/g1")).data == {"seen": 2}

    asyncio.run(scenario())


def test_on_snapshot_reports_added_modified_removed() -> None:
    async def scenario() -> None:
        store = InMemoryDocumentStore()
        await store.set("games/g1/auto_events/old", {"status": "pending"})
        seen = []
        unsubscribe = store.on_snapshot(
            "games/g1/auto_events",
            lambda changes: seen.extend((c.type, c.id) for c in changes),
            where=[("status", "==", "pending")],
        )
        assert seen == [("added", "old")]

        await store.set("games/g1/auto_events/new", {"status": "pending"})
        await store.update("games/g1/auto_events/old", {"status": "processing"})
        await store.set("games/g1/auto_events/other", {"status": "ingested"})
        assert seen == [("added", "old"), ("added", "new"), ("removed", "old")]

        unsubscribe()
        await store.set("games/g1/auto_events/later", {"status": "pending"})
        assert ("added", "later") not in seen

    asyncio.run(scenario())


def test_failing_listener_does_not_break_commit() -> None:
    async def scenario() -> None:
        store = InMemoryDocumentStore()

        def boom(changes) -> None:
            raise RuntimeError("listener bug")

        store.on_snapshot("games/g1", boom)
        await store.set("games/g1", {"ok": True})
        assert (await store.get("games/g1")).data == {"ok": True}

    asyncio.run(scenario())
