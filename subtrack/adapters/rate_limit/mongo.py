"""MongoDB fixed-window rate limit store.

Each policy owns one collection. Documents look like::

    {"key": "ip:203.0.113.7", "totalHits": 3, "resetTime": ISODate(...)}

``key`` carries a unique index and ``resetTime`` a TTL index with
``expireAfterSeconds=0``, so MongoDB reaps expired windows on its own; lazy
deletion in ``get`` and ``cleanup`` cover the gap until the TTL monitor runs.

Counting never reads a document and writes it back. ``increment`` is a short
sequence of single-document atomic operations, each conditioned on the window
state it expects:

1. ``$inc`` on a live window.
2. ``$set`` a fresh window over an expired one.
3. ``insert_one`` a fresh window; the unique index turns a concurrent insert
   into ``DuplicateKeyError`` and the sequence is retried.
"""

from __future__ import annotations

import hashlib
import logging
import time
from datetime import datetime, timezone
from typing import Callable

from pymongo import ASCENDING, ReturnDocument
from pymongo.collection import Collection
from pymongo.errors import DuplicateKeyError, PyMongoError

from subtrack.adapters.rate_limit.base import AbstractRateLimitStore, RateLimitRecord
from subtrack.core.errors import RateLimitStoreError

logger = logging.getLogger(__name__)


def _to_datetime(epoch_seconds: float) -> datetime:
    """Convert epoch seconds to the naive UTC datetime BSON stores.

    BSON dates hold milliseconds, so sub-millisecond precision is dropped here
    rather than silently by the driver.
    """
    value = datetime.fromtimestamp(epoch_seconds, tz=timezone.utc).replace(tzinfo=None)
    return value.replace(microsecond=value.microsecond // 1000 * 1000)


def _to_epoch(value: datetime) -> float:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


def _hash_key(key: str) -> str:
    return hashlib.sha256(key.encode()).hexdigest()[:16]


class MongoRateLimitStore(AbstractRateLimitStore):
    """Counter store shared by every process connected to the same collection."""

    def __init__(
        self,
        collection: Collection,
        *,
        window_seconds: int,
        clock: Callable[[], float] = time.time,
        max_attempts: int = 3,
    ) -> None:
        """Initialize the store around an existing collection.

        Args:
            collection: pymongo collection dedicated to one policy.
            window_seconds: Size of the fixed window in seconds.
            clock: Time source function returning UNIX time in seconds.
            max_attempts: Bound on increment retries after insert races.

        Raises:
            ValueError: If window_seconds or max_attempts are invalid.
        """
        super().__init__(window_seconds=window_seconds)
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._collection = collection
        self._clock = clock
        self._max_attempts = max_attempts

    @property
    def collection_name(self) -> str:
        return self._collection.name

    def ensure_indexes(self) -> None:
        """Create the unique key index and the resetTime TTL index."""
        try:
            self._collection.create_index(
                [("key", ASCENDING)],
                unique=True,
                name="key_unique",
            )
            self._collection.create_index(
                [("resetTime", ASCENDING)],
                expireAfterSeconds=0,
                name="resetTime_ttl",
            )
        except PyMongoError as exc:
            self._log_store_error("ensure_indexes", exc)

    def increment(self, key: str) -> RateLimitRecord:
        self._validate_key(key)
        now = self._clock()

        try:
            return self._increment_atomic(key, now)
        except (PyMongoError, RateLimitStoreError) as exc:
            self._log_store_error("increment", exc, key=key)
            return self.fallback_record(now)

    def _increment_atomic(self, key: str, now: float) -> RateLimitRecord:
        now_dt = _to_datetime(now)
        reset_dt = _to_datetime(now + self._window_seconds)

        for _ in range(self._max_attempts):
            doc = self._collection.find_one_and_update(
                {"key": key, "resetTime": {"$gt": now_dt}},
                {"$inc": {"totalHits": 1}},
                return_document=ReturnDocument.AFTER,
            )
            if doc is not None:
                return self._to_record(doc)

            doc = self._collection.find_one_and_update(
                {"key": key, "resetTime": {"$lte": now_dt}},
                {"$set": {"totalHits": 1, "resetTime": reset_dt}},
                return_document=ReturnDocument.AFTER,
            )
            if doc is not None:
                return self._to_record(doc)

            try:
                self._collection.insert_one(
                    {"key": key, "totalHits": 1, "resetTime": reset_dt}
                )
            except DuplicateKeyError:
                # Another request created the window first; count against it.
                continue
            return RateLimitRecord(total_hits=1, reset_time=_to_epoch(reset_dt))

        raise RateLimitStoreError(
            code="rate_limit_contention",
            message="Could not apply rate limit increment",
            details={"collection": self.collection_name, "attempts": self._max_attempts},
        )

    def decrement(self, key: str) -> None:
        now_dt = _to_datetime(self._clock())
        try:
            self._collection.update_one(
                {"key": key, "resetTime": {"$gt": now_dt}, "totalHits": {"$gt": 0}},
                {"$inc": {"totalHits": -1}},
            )
        except PyMongoError as exc:
            self._log_store_error("decrement", exc, key=key)

    def reset_key(self, key: str) -> None:
        try:
            self._collection.delete_one({"key": key})
        except PyMongoError as exc:
            self._log_store_error("reset_key", exc, key=key)

    def get(self, key: str) -> RateLimitRecord | None:
        now = self._clock()
        try:
            doc = self._collection.find_one({"key": key})
            if doc is None:
                return None

            record = self._to_record(doc)
            if now >= record.reset_time:
                # Conditional so a window reset by a concurrent increment survives.
                self._collection.delete_one(
                    {"key": key, "resetTime": {"$lte": _to_datetime(now)}}
                )
                return None
            return record
        except PyMongoError as exc:
            self._log_store_error("get", exc, key=key)
            return None
        except (KeyError, TypeError, ValueError) as exc:
            # A document without a usable resetTime reads as absent.
            self._log_store_error("get", exc, key=key)
            return None

    def cleanup(self) -> int:
        now_dt = _to_datetime(self._clock())
        try:
            result = self._collection.delete_many({"resetTime": {"$lte": now_dt}})
        except PyMongoError as exc:
            self._log_store_error("cleanup", exc)
            return 0

        removed = result.deleted_count
        if removed:
            logger.debug(
                "rate_limit.cleanup",
                extra={"collection": self.collection_name, "removed": removed},
            )
        return removed

    @staticmethod
    def _to_record(doc: dict) -> RateLimitRecord:
        reset_time = doc["resetTime"]
        if not isinstance(reset_time, datetime):
            raise TypeError(f"resetTime is {type(reset_time).__name__}, expected datetime")
        return RateLimitRecord(
            total_hits=max(0, int(doc.get("totalHits", 0))),
            reset_time=_to_epoch(reset_time),
        )

    def _log_store_error(self, operation: str, exc: Exception, *, key: str | None = None) -> None:
        extra = {
            "operation": operation,
            "collection": self.collection_name,
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
        }
        if key is not None:
            extra["key_hash"] = _hash_key(key)
        logger.error("rate_limit.store_error", extra=extra)
