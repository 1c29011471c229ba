"""
In-memory hierarchical document store with optimistic transactions and push
subscriptions.

Paths alternate collection / document segments, e.g. ``games/g1`` (document)
and ``games/g1/logs`` (collection). Documents are plain JSON-like dicts.
"""

from __future__ import annotations

import asyncio
import copy
import itertools
import time
from dataclasses import dataclass
from threading import RLock
from typing import Any, Awaitable, Callable, Iterable, Literal, Sequence, TypeVar
from uuid import uuid4

from wellball.config import get_settings
from wellball.errors import DocumentNotFound, TransactionConflict
from wellball.logger import setup_logger

logger = setup_logger(__name__)

T = TypeVar("T")

Where = tuple[str, str, Any]
OrderBy = tuple[str, Literal["asc", "desc"]]

_MISSING = object()


def _segments(path: str) -> list[str]:
    parts = [p for p in path.strip("/").split("/") if p]
    if not parts:
        raise ValueError("path must not be empty")
    return parts


def split_doc_path(path: str) -> tuple[str, str]:
    parts = _segments(path)
    if len(parts) % 2 != 0:
        raise ValueError(f"{path!r} is not a document path")
    return "/".join(parts[:-1]), parts[-1]


def get_field(data: dict | None, field: str) -> Any:
    """Read a dotted field path, returning a sentinel when absent."""
    cur: Any = data
    for key in field.split("."):
        if not isinstance(cur, dict) or key not in cur:
            return _MISSING
        cur = cur[key]
    return cur


def _set_field(data: dict, field: str, value: Any) -> None:
    keys = field.split(".")
    cur = data
    for key in keys[:-1]:
        nxt = cur.get(key)
        if not isinstance(nxt, dict):
            nxt = {}
            cur[key] = nxt
        cur = nxt
    cur[keys[-1]] = value


def _compare(op: str, left: Any, right: Any) -> bool:
    if left is _MISSING:
        return op == "!=" and right is not None
    try:
        if op == "==":
            return left == right
        if op == "!=":
            return left != right
        if op == "<":
            return left < right
        if op == "<=":
            return left <= right
        if op == ">":
            return left > right
        if op == ">=":
            return left >= right
        if op == "in":
            return left in right
    except TypeError:
        return False
    raise ValueError(f"unsupported operator {op!r}")


def matches_where(data: dict | None, where: Iterable[Where]) -> bool:
    if data is None:
        return False
    return all(_compare(op, get_field(data, field), value) for field, op, value in where)


def _sort_key(field: str):
    def key(snap: DocumentSnapshot):
        value = get_field(snap.data, field)
        # Missing and null values sort last in ascending order.
        if value is _MISSING or value is None:
            return (1, 0)
        return (0, value)

    return key


@dataclass(frozen=True)
class DocumentSnapshot:
    path: str
    data: dict | None
    version: int

    @property
    def id(self) -> str:
        return split_doc_path(self.path)[1]

    @property
    def exists(self) -> bool:
        return self.data is not None


@dataclass(frozen=True)
class DocumentChange:
    type: Literal["added", "modified", "removed"]
    path: str
    data: dict | None

    @property
    def id(self) -> str:
        return split_doc_path(self.path)[1]


@dataclass(frozen=True)
class _Write:
    kind: Literal["set", "update", "delete"]
    path: str
    data: dict | None = None
    merge: bool = False


class Transaction:
    """
    Read-then-write unit of work.

    Reads see committed state and record the version they observed. Writes
    are buffered and applied atomically at commit, which fails if any read
    document (or queried collection) changed in the meantime.
    """

    def __init__(self, store: InMemoryDocumentStore) -> None:
        self._store = store
        self._doc_reads: dict[str, int] = {}
        self._collection_reads: dict[str, int] = {}
        self._writes: list[_Write] = []

    async def get(self, path: str) -> DocumentSnapshot:
        await asyncio.sleep(0)
        snap = self._store._snapshot(path)
        self._doc_reads.setdefault(path, snap.version)
        return snap

    async def query(
        self,
        collection: str,
        where: Sequence[Where] = (),
        order_by: OrderBy | str | None = None,
        limit: int | None = None,
    ) -> list[DocumentSnapshot]:
        await asyncio.sleep(0)
        version, snaps = self._store._query(collection, where, order_by, limit)
        self._collection_reads.setdefault(collection, version)
        return snaps

    def new_id(self) -> str:
        return self._store.new_id()

    def create(self, collection: str, data: dict) -> str:
        doc_id = self.new_id()
        self.set(f"{collection}/{doc_id}", data)
        return doc_id

    def set(self, path: str, data: dict, *, merge: bool = False) -> None:
        split_doc_path(path)
        self._writes.append(_Write("set", path, copy.deepcopy(data), merge))

    def update(self, path: str, patch: dict) -> None:
        split_doc_path(path)
        self._writes.append(_Write("update", path, copy.deepcopy(patch)))

    def delete(self, path: str) -> None:
        split_doc_path(path)
        self._writes.append(_Write("delete", path))


@dataclass
class _Listener:
    path: str
    is_collection: bool
    where: tuple[Where, ...]
    callback: Callable[[list[DocumentChange]], None]
    matched: set[str]


class InMemoryDocumentStore:
    """
    Strongly-consistent in-memory document database.

    Thread-safe: commits are serialized with a lock, so routes served from a
    threadpool and coroutines on the event loop see the same atomic commits.
    """

    def __init__(self, *, clock: Callable[[], float] | None = None, max_attempts: int | None = None) -> None:
        self._lock = RLock()
        self._clock = clock or time.time
        self._max_attempts = max_attempts or get_settings().transaction_attempts
        self._docs: dict[str, tuple[int, dict]] = {}
        self._collections: dict[str, dict[str, None]] = {}
        self._collection_versions: dict[str, int] = {}
        self._seq = itertools.count(1)
        self._listeners: list[_Listener] = []

    # --- housekeeping ---

    def now(self) -> float:
        """Authoritative server time (epoch seconds)."""
        return self._clock()

    def new_id(self) -> str:
        return uuid4().hex[:20]

    def clear(self) -> None:
        with self._lock:
            self._docs.clear()
            self._collections.clear()
            self._collection_versions.clear()
            self._listeners.clear()

    # --- reads ---

    def _snapshot(self, path: str) -> DocumentSnapshot:
        split_doc_path(path)
        with self._lock:
            entry = self._docs.get(path)
            if entry is None:
                return DocumentSnapshot(path=path, data=None, version=0)
            version, data = entry
            return DocumentSnapshot(path=path, data=copy.deepcopy(data), version=version)

    def _query(
        self,
        collection: str,
        where: Sequence[Where],
        order_by: OrderBy | str | None,
        limit: int | None,
    ) -> tuple[int, list[DocumentSnapshot]]:
        with self._lock:
            version = self._collection_versions.get(collection, 0)
            snaps = []
            for doc_id in self._collections.get(collection, {}):
                path = f"{collection}/{doc_id}"
                doc_version, data = self._docs[path]
                if matches_where(data, where):
                    snaps.append(DocumentSnapshot(path=path, data=copy.deepcopy(data), version=doc_version))
        if order_by is not None:
            field, direction = (order_by, "asc") if isinstance(order_by, str) else order_by
            snaps.sort(key=_sort_key(field), reverse=direction == "desc")
        if limit is not None:
            snaps = snaps[:limit]
        return version, snaps

    async def get(self, path: str) -> DocumentSnapshot:
        await asyncio.sleep(0)
        return self._snapshot(path)

    async def query(
        self,
        collection: str,
        where: Sequence[Where] = (),
        order_by: OrderBy | str | None = None,
        limit: int | None = None,
    ) -> list[DocumentSnapshot]:
        await asyncio.sleep(0)
        return self._query(collection, where, order_by, limit)[1]

    # --- single-document writes (never conflict) ---

    async def set(self, path: str, data: dict, *, merge: bool = False) -> None:
        tx = Transaction(self)
        tx.set(path, data, merge=merge)
        self._commit_unconditionally(tx)

    async def update(self, path: str, patch: dict) -> None:
        """Patch an existing document. Dotted keys address nested fields."""
        tx = Transaction(self)
        tx.update(path, patch)
        self._commit_unconditionally(tx)

    async def delete(self, path: str) -> None:
        tx = Transaction(self)
        tx.delete(path)
        self._commit_unconditionally(tx)

    async def add(self, collection: str, data: dict) -> str:
        tx = Transaction(self)
        doc_id = tx.create(collection, data)
        self._commit_unconditionally(tx)
        return doc_id

    # --- transactions ---

    async def run_transaction(
        self, fn: Callable[[Transaction], Awaitable[T]], *, max_attempts: int | None = None
    ) -> T:
        """
        Run ``fn`` as an optimistic transaction, re-running it on conflict.

        Any exception raised by ``fn`` aborts the attempt with no writes applied.
        """
        attempts = max_attempts or self._max_attempts
        for attempt in range(1, attempts + 1):
            tx = Transaction(self)
            result = await fn(tx)
            changes = self._commit(tx)
            if changes is not None:
                self._notify(changes)
                return result
            logger.debug("transaction conflict (attempt %d/%d), retrying", attempt, attempts)
        raise TransactionConflict(attempts)

    def _commit_unconditionally(self, tx: Transaction) -> None:
        changes = self._commit(tx)
        if changes is None:
            # A transaction without reads cannot conflict.
            raise RuntimeError("unconditional commit conflicted")
        self._notify(changes)

    def _commit(self, tx: Transaction) -> list[tuple[str, dict | None, dict | None]] | None:
        with self._lock:
            for path, seen in tx._doc_reads.items():
                entry = self._docs.get(path)
                if (entry[0] if entry else 0) != seen:
                    return None
            for collection, seen in tx._collection_reads.items():
                if self._collection_versions.get(collection, 0) != seen:
                    return None

            staged: dict[str, dict | None] = {}

            def current(path: str) -> dict | None:
                if path in staged:
                    return staged[path]
                entry = self._docs.get(path)
                return copy.deepcopy(entry[1]) if entry else None

            for w in tx._writes:
                if w.kind == "delete":
                    staged[w.path] = None
                elif w.kind == "set":
                    base = current(w.path) if w.merge else None
                    merged = base or {}
                    for key, value in (w.data or {}).items():
                        merged[key] = value
                    staged[w.path] = merged
                else:
                    base = current(w.path)
                    if base is None:
                        raise DocumentNotFound(w.path)
                    for key, value in (w.data or {}).items():
                        _set_field(base, key, value)
                    staged[w.path] = base

            changes = []
            for path, data in staged.items():
                collection, doc_id = split_doc_path(path)
                before = self._docs.get(path)
                version = next(self._seq)
                if data is None:
                    if before is None:
                        continue
                    del self._docs[path]
                    self._collections.get(collection, {}).pop(doc_id, None)
                else:
                    self._docs[path] = (version, data)
                    self._collections.setdefault(collection, {})[doc_id] = None
                self._collection_versions[collection] = version
                changes.append((path, copy.deepcopy(before[1]) if before else None, copy.deepcopy(data)))
            return changes

    # --- subscriptions ---

    def on_snapshot(
        self,
        path: str,
        callback: Callable[[list[DocumentChange]], None],
        *,
        where: Sequence[Where] = (),
    ) -> Callable[[], None]:
        """
        Subscribe to a document or a (filtered) collection.

        The callback first receives ``added`` changes for everything currently
        matching, then one batch per commit that touches a match. Returns an
        unsubscribe callable.
        """
        is_collection = len(_segments(path)) % 2 == 1
        listener = _Listener(path=path, is_collection=is_collection, where=tuple(where), callback=callback, matched=set())

        if is_collection:
            initial = [DocumentChange("added", s.path, s.data) for s in self._query(path, where, None, None)[1]]
        else:
            snap = self._snapshot(path)
            initial = [DocumentChange("added", path, snap.data)] if snap.exists else []
        listener.matched.update(c.path for c in initial)

        with self._lock:
            self._listeners.append(listener)
        if initial:
            self._dispatch(listener, initial)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, changes: list[tuple[str, dict | None, dict | None]]) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            batch: list[DocumentChange] = []
            for path, _before, after in changes:
                if listener.is_collection:
                    if split_doc_path(path)[0] != listener.path:
                        continue
                elif path != listener.path:
                    continue
                was = path in listener.matched
                now = matches_where(after, listener.where)
                if now and not was:
                    listener.matched.add(path)
                    batch.append(DocumentChange("added", path, copy.deepcopy(after)))
                elif now and was:
                    batch.append(DocumentChange("modified", path, copy.deepcopy(after)))
                elif was:
                    listener.matched.discard(path)
                    batch.append(DocumentChange("removed", path, copy.deepcopy(after)))
            if batch:
                self._dispatch(listener, batch)

    def _dispatch(self, listener: _Listener, batch: list[DocumentChange]) -> None:
        try:
            listener.callback(batch)
        except Exception:
            logger.exception("snapshot listener on %s failed", listener.path)


_STORE: InMemoryDocumentStore | None = None


def get_store() -> InMemoryDocumentStore:
    global _STORE
    if _STORE is None:
        _STORE = InMemoryDocumentStore()
    return _STORE
