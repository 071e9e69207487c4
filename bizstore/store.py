from __future__ import annotations

import logging
import random
import string
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable, Mapping

from json_store import dump_json, load_json

from .errors import DocumentNotFoundError, MalformedDataError, SubstrateIOError
from .interfaces import KeyValueStore
from .locks import KeyLockRegistry
from .models import (
    CREATED_AT_FIELD,
    ID_FIELD,
    MANAGED_FIELDS,
    UPDATED_AT_FIELD,
    Document,
    FilterInput,
    coerce_filters,
)
from .query import execute

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.digits + string.ascii_lowercase
_ID_SUFFIX_LEN = 9
# Upper bound on redraws when a generated id is already taken.
_MAX_ID_ATTEMPTS = 16


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds").replace("+00:00", "Z")


def parse_timestamp(raw: str) -> datetime:
    return datetime.fromisoformat(raw.replace("Z", "+00:00"))


def generate_doc_id(now: datetime | None = None) -> str:
    """`doc_<epoch millis>_<9 base36 chars>`. Unique in practice, not cryptographically."""
    ts = now or utc_now()
    millis = int(ts.timestamp() * 1000)
    suffix = "".join(random.choices(_ID_ALPHABET, k=_ID_SUFFIX_LEN))
    return f"doc_{millis}_{suffix}"


def document_key(collection: str, doc_id: str) -> str:
    return f"{collection}_{doc_id}"


RESERVED_COLLECTION = "collection"


def index_key(collection: str) -> str:
    return f"collection_{collection}"


def _require_name(kind: str, value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{kind} must be a non-empty string")
    # "collection_<id>" would alias the index key of collection <id>.
    if kind == "collection" and value == RESERVED_COLLECTION:
        raise ValueError(f"collection name {value!r} is reserved")
    return value


class DocumentStore:
    """
    Collection-scoped document persistence over an async key-value substrate.

    Layout on the substrate:
      "<collection>_<id>"       -> JSON object (the document)
      "collection_<collection>" -> JSON array of ids in insertion order

    Every read goes to the substrate; nothing is cached across calls. Index
    mutations are serialized per collection and update's read-merge-write is
    serialized per document, both only within this instance. Read-modify-write
    sequences spanning several calls (e.g. incrementing a counter read via
    get) remain last-write-wins and are the caller's responsibility.
    """

    def __init__(
        self,
        kv: KeyValueStore,
        *,
        clock: Callable[[], datetime] = utc_now,
        id_factory: Callable[[], str] | None = None,
    ):
        self._kv = kv
        self._clock = clock
        self._id_factory = id_factory or (lambda: generate_doc_id(self._clock()))
        self._index_locks = KeyLockRegistry()
        self._doc_locks = KeyLockRegistry()

    # ---- encoding ----

    @staticmethod
    def _encode(key: str, payload: Any) -> str:
        try:
            return dump_json(payload)
        except (TypeError, ValueError) as e:
            raise SubstrateIOError(f"cannot serialize value for key {key!r}: {e}", key=key) from e

    @staticmethod
    def _decode_document(key: str, raw: str) -> Document:
        try:
            doc = load_json(raw)
        except ValueError as e:
            raise MalformedDataError(f"value for key {key!r} is not valid JSON", key=key) from e
        if not isinstance(doc, dict):
            raise MalformedDataError(f"value for key {key!r} is not a JSON object", key=key)
        return doc

    @staticmethod
    def _decode_index(key: str, raw: str) -> list[str]:
        try:
            ids = load_json(raw)
        except ValueError as e:
            raise MalformedDataError(f"index {key!r} is not valid JSON", key=key) from e
        if not isinstance(ids, list) or not all(isinstance(i, str) for i in ids):
            raise MalformedDataError(f"index {key!r} is not a list of ids", key=key)
        return ids

    async def _read_index(self, collection: str) -> list[str]:
        key = index_key(collection)
        raw = await self._kv.get(key)
        if raw is None:
            return []
        return self._decode_index(key, raw)

    async def _write_index(self, collection: str, ids: list[str]) -> None:
        key = index_key(collection)
        await self._kv.set(key, self._encode(key, ids))

    def _timestamp_after(self, previous: str | None) -> str:
        now = self._clock()
        if previous:
            try:
                prev = parse_timestamp(previous)
            except ValueError:
                prev = None
            if prev is not None and now <= prev:
                now = prev + timedelta(microseconds=1)
        return format_timestamp(now)

    # ---- operations ----

    async def list_ids(self, collection: str) -> list[str]:
        return await self._read_index(_require_name("collection", collection))

    async def create(
        self,
        collection: str,
        data: Mapping[str, Any],
        doc_id: str | None = None,
    ) -> str:
        """
        Create (or replace) a document and register it in the collection index.

        Returns the id used. If the index write fails the document write is
        undone before the error propagates.
        """
        _require_name("collection", collection)
        if doc_id is not None:
            _require_name("doc_id", doc_id)

        async with self._index_locks.lock_for(collection):
            ids = await self._read_index(collection)
            if doc_id is None:
                doc_id = self._new_id(ids)
            key = document_key(collection, doc_id)

            async with self._doc_locks.lock_for(key):
                previous = await self._kv.get(key)
                now = format_timestamp(self._clock())
                doc: Document = {
                    ID_FIELD: doc_id,
                    **{k: v for k, v in data.items() if k not in MANAGED_FIELDS},
                    CREATED_AT_FIELD: self._created_at_of(key, previous) or now,
                    UPDATED_AT_FIELD: now,
                }
                await self._kv.set(key, self._encode(key, doc))
                if doc_id not in ids:
                    try:
                        await self._write_index(collection, [*ids, doc_id])
                    except Exception:
                        logger.warning("CREATE %s/%s: index write failed, rolling back document", collection, doc_id)
                        await self._rollback(key, previous)
                        raise

        logger.debug("CREATE %s/%s", collection, doc_id)
        return doc_id

    def _created_at_of(self, key: str, previous: str | None) -> str | None:
        # A replaced document keeps its original createdAt.
        if previous is None:
            return None
        try:
            created = self._decode_document(key, previous).get(CREATED_AT_FIELD)
        except MalformedDataError:
            logger.warning("CREATE %s: replacing malformed document", key)
            return None
        return created if isinstance(created, str) and created else None

    async def _rollback(self, key: str, previous: str | None) -> None:
        """Undo a document write; failures are logged so the caller sees the original error."""
        try:
            if previous is None:
                await self._kv.remove(key)
            else:
                await self._kv.set(key, previous)
        except Exception:
            logger.error("CREATE %s: rollback failed, document may be orphaned", key, exc_info=True)

    def _new_id(self, existing: list[str]) -> str:
        taken = set(existing)
        for _ in range(_MAX_ID_ATTEMPTS):
            candidate = self._id_factory()
            if candidate not in taken:
                return candidate
        raise RuntimeError("id factory kept producing ids that already exist")

    async def get(self, collection: str, doc_id: str) -> Document | None:
        """Return the document, or None when it does not exist."""
        key = document_key(_require_name("collection", collection), _require_name("doc_id", doc_id))
        raw = await self._kv.get(key)
        if raw is None:
            return None
        return self._decode_document(key, raw)

    async def require(self, collection: str, doc_id: str) -> Document:
        doc = await self.get(collection, doc_id)
        if doc is None:
            raise DocumentNotFoundError(collection, doc_id)
        return doc

    async def query(
        self,
        collection: str,
        filters: Iterable[FilterInput] | None = None,
        order_by: str | None = None,
        limit: int | None = None,
    ) -> list[Document]:
        """
        Full scan of the collection: filter (AND), order descending by `order_by`,
        truncate to `limit`. Ids in the index without a stored document are skipped.
        """
        _require_name("collection", collection)
        parsed = coerce_filters(filters)
        if limit is not None and (isinstance(limit, bool) or not isinstance(limit, int) or limit < 0):
            raise ValueError("limit must be a non-negative int")

        docs: list[Document] = []
        for doc_id in await self._read_index(collection):
            doc = await self.get(collection, doc_id)
            if doc is not None:
                docs.append(doc)
        result = execute(docs, parsed, order_by=order_by, limit=limit)
        logger.debug("QUERY %s: scanned=%d returned=%d", collection, len(docs), len(result))
        return result

    async def update(self, collection: str, doc_id: str, patch: Mapping[str, Any]) -> bool:
        """
        Shallow-merge `patch` into an existing document and refresh updatedAt.

        Returns False without writing anything when the document does not exist.
        `id` and `createdAt` in the patch are ignored.
        """
        key = document_key(_require_name("collection", collection), _require_name("doc_id", doc_id))
        async with self._doc_locks.lock_for(key):
            raw = await self._kv.get(key)
            if raw is None:
                logger.info("UPDATE %s/%s: document not found", collection, doc_id)
                return False
            existing = self._decode_document(key, raw)

            merged: Document = {**existing, **{k: v for k, v in patch.items() if k not in MANAGED_FIELDS}}
            merged[ID_FIELD] = existing.get(ID_FIELD, doc_id)
            previous = existing.get(UPDATED_AT_FIELD)
            merged[UPDATED_AT_FIELD] = self._timestamp_after(previous if isinstance(previous, str) else None)

            await self._kv.set(key, self._encode(key, merged))

        logger.debug("UPDATE %s/%s: fields=%s", collection, doc_id, sorted(patch.keys()))
        return True

    async def delete(self, collection: str, doc_id: str) -> bool:
        """Remove the document and its index entry. Deleting an absent id succeeds."""
        key = document_key(_require_name("collection", collection), _require_name("doc_id", doc_id))
        async with self._index_locks.lock_for(collection):
            async with self._doc_locks.lock_for(key):
                await self._kv.remove(key)
            ids = await self._read_index(collection)
            if doc_id in ids:
                await self._write_index(collection, [i for i in ids if i != doc_id])

        logger.debug("DELETE %s/%s", collection, doc_id)
        return True
