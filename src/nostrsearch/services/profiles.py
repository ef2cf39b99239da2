"""Bounded, coalescing cache of author profiles.

[ProfileCache][nostrsearch.services.profiles.ProfileCache] resolves kind-0
metadata through a
[MetadataLookup][nostrsearch.services.protocols.MetadataLookup] and keeps
the result in a least-recently-used table keyed by author key.

* Concurrent requests for the same uncached key share one fetch.
* A failed, timed-out or empty lookup stores a negative
  [ProfileRecord][nostrsearch.models.profile.ProfileRecord]; the key is not
  retried until the cache is cleared or the entry is evicted.
* Within capacity an entry, once written, is never overwritten.
* ``clear()`` (logout) cancels in-flight fetches; a fetch that completes
  afterwards never writes into the cleared table.

Examples:
    ```python
    cache = ProfileCache(transport, registry.urls, capacity=10_000, concurrency=20)
    record = await cache.get(author_key)
    if record.found:
        print(record.best_name)
    profiles = await cache.fetch_many(keys)
    ```
"""

from __future__ import annotations

import asyncio
from collections import OrderedDict
from typing import TYPE_CHECKING

from nostrsearch.core.logger import Logger
from nostrsearch.core.metrics import SearchMetrics
from nostrsearch.models import ProfileRecord

from .protocols import TRANSPORT_ERRORS


if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Sequence

    from .protocols import MetadataLookup


DEFAULT_CAPACITY = 10_000
DEFAULT_CONCURRENCY = 20
DEFAULT_FETCH_TIMEOUT = 5.0


class ProfileCache:
    """LRU profile cache with in-flight request coalescing.

    Args:
        lookup: Metadata source.
        relays: Callable returning the relays to query, evaluated per fetch
            so the cache follows registry changes.
        capacity: Maximum number of entries (negative markers included).
        concurrency: Maximum simultaneous metadata fetches.
        fetch_timeout: Seconds before a single fetch counts as failed.
        metrics: Optional Prometheus recorder.
    """

    def __init__(
        self,
        lookup: MetadataLookup,
        relays: Callable[[], Sequence[str]],
        *,
        capacity: int = DEFAULT_CAPACITY,
        concurrency: int = DEFAULT_CONCURRENCY,
        fetch_timeout: float = DEFAULT_FETCH_TIMEOUT,
        metrics: SearchMetrics | None = None,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be positive")
        if concurrency < 1:
            raise ValueError("concurrency must be positive")
        self._lookup = lookup
        self._relays = relays
        self._capacity = capacity
        self._concurrency = concurrency
        self._fetch_timeout = fetch_timeout
        self._metrics = metrics or SearchMetrics()
        self._entries: OrderedDict[str, ProfileRecord] = OrderedDict()
        self._inflight: dict[str, asyncio.Task[ProfileRecord]] = {}
        self._semaphore = asyncio.Semaphore(concurrency)
        self._epoch = 0
        self._logger = Logger("profile_cache")

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def in_flight(self) -> int:
        """Number of fetches currently outstanding."""
        return len(self._inflight)

    def peek(self, key: str) -> ProfileRecord | None:
        """Return the cached record for *key* without fetching."""
        record = self._entries.get(key)
        if record is not None:
            self._entries.move_to_end(key)
        return record

    def snapshot(self) -> dict[str, ProfileRecord]:
        """Return a copy of every cached record."""
        return dict(self._entries)

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    async def get(self, key: str) -> ProfileRecord:
        """Return the profile of *key*, fetching it at most once.

        Never raises for lookup failures: the negative marker is returned
        instead. Cancelling one caller does not cancel a fetch shared with
        other callers.
        """
        cached = self.peek(key)
        if cached is not None:
            return cached

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.create_task(self._fetch(key, self._epoch), name=f"profile:{key[:8]}")
            self._inflight[key] = task
            task.add_done_callback(lambda t, k=key: self._forget(k, t))

        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if task.cancelled() and (current is None or current.cancelling() == 0):
                # the shared fetch was dropped by clear(), not this caller
                return ProfileRecord.missing(key)
            raise

    async def fetch_many(
        self, keys: Iterable[str], concurrency_limit: int | None = None
    ) -> dict[str, ProfileRecord]:
        """Resolve a batch of keys with bounded parallelism.

        Duplicates are collapsed. Cached keys are answered from the table
        and keys already in flight are awaited without a new fetch.

        Args:
            keys: Author keys to resolve.
            concurrency_limit: Window size for this batch (defaults to the
                cache's ``concurrency``).

        Returns:
            ``{key: record}`` for every requested key.
        """
        unique = list(dict.fromkeys(keys))
        results: dict[str, ProfileRecord] = {}
        pending: list[str] = []
        for key in unique:
            cached = self.peek(key)
            if cached is not None:
                results[key] = cached
            else:
                pending.append(key)
        if not pending:
            return results

        window = asyncio.Semaphore(concurrency_limit or self._concurrency)

        async def resolve(key: str) -> ProfileRecord:
            if key in self._inflight:
                return await self.get(key)
            async with window:
                return await self.get(key)

        records = await asyncio.gather(*(resolve(k) for k in pending))
        results.update(zip(pending, records, strict=True))
        self._logger.debug("profiles_resolved", requested=len(unique), fetched=len(pending))
        return results

    async def _fetch(self, key: str, epoch: int) -> ProfileRecord:
        async with self._semaphore:
            result = "found"
            try:
                async with asyncio.timeout(self._fetch_timeout):
                    data = await self._lookup.fetch_metadata(key, self._relays())
            except TRANSPORT_ERRORS as e:
                self._logger.debug("profile_fetch_failed", key=key, error=str(e))
                record = ProfileRecord.missing(key)
                result = "error"
            except Exception as e:
                self._logger.exception("profile_fetch_crashed", key=key, error=str(e))
                record = ProfileRecord.missing(key)
                result = "error"
            else:
                if data is None:
                    record = ProfileRecord.missing(key)
                    result = "missing"
                else:
                    record = ProfileRecord.from_metadata(key, data)

        self._metrics.profile_fetched(result)
        if epoch != self._epoch:
            return record
        return self._store(record)

    def _store(self, record: ProfileRecord) -> ProfileRecord:
        existing = self._entries.get(record.key)
        if existing is not None:
            self._entries.move_to_end(record.key)
            return existing
        self._entries[record.key] = record
        if len(self._entries) > self._capacity:
            evicted, _ = self._entries.popitem(last=False)
            self._logger.debug("profile_evicted", key=evicted)
        self._metrics.profile_cache_size(len(self._entries))
        return record

    def _forget(self, key: str, task: asyncio.Task[ProfileRecord]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def clear(self) -> None:
        """Drop every entry and cancel outstanding fetches."""
        self._epoch += 1
        tasks = list(self._inflight.values())
        self._inflight.clear()
        for task in tasks:
            task.cancel()
        self._entries.clear()
        self._metrics.profile_cache_size(0)
        if tasks:
            self._logger.debug("profile_fetches_cancelled", count=len(tasks))
