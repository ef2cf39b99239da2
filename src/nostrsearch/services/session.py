"""Search session: fan-out, streaming aggregation, cancellation and timeout.

A [SearchSession][nostrsearch.services.session.SearchSession] is long-lived
and runs one search generation at a time:

```text
IDLE -> DISPATCHING -> STREAMING -> COMPLETED | CANCELLED | TIMED_OUT
                  \\-> NO_CONNECTIVITY
```

``start()`` opens one subscription per registry endpoint. Each
subscription is drained by its own pump task into a per-generation
``asyncio.Queue``; the ``start()`` coroutine itself is the single consumer
that feeds the [ResultAggregator][nostrsearch.services.aggregator.ResultAggregator].
A generation settles when:

* a quorum of endpoints reached end-of-stream or failed (``COMPLETED``,
  after author profiles are resolved), or every endpoint failed without a
  single item (``NO_CONNECTIVITY``);
* the absolute deadline elapsed (``TIMED_OUT``);
* ``stop()`` was called or a newer ``start()`` superseded it
  (``CANCELLED``).

Every exit closes all subscriptions of the generation. Items that arrive
for a superseded or settled generation are dropped by the aggregator.

Examples:
    ```python
    session = SearchSession(registry, transport, profiles, contacts, timeout=10.0)
    result = await session.start(SearchQuery("bitcoin"), self_key=user_key,
                                 on_snapshot=lambda snap: render(snap.items))
    result.outcome        # SessionState.COMPLETED
    ```
"""

from __future__ import annotations

import asyncio
import math
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Final

from nostrsearch.core.logger import Logger
from nostrsearch.core.metrics import SearchMetrics
from nostrsearch.models import (
    EventKind,
    Item,
    ProfileRecord,
    RankedSnapshot,
    SearchFilter,
    SearchQuery,
    SearchResult,
    SessionState,
)

from .aggregator import DEFAULT_MAX_RESULTS, ResultAggregator
from .protocols import TRANSPORT_ERRORS


if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

    from .contacts import ContactGraph
    from .profiles import ProfileCache
    from .protocols import RelayTransport
    from .registry import RelayRegistry


DEFAULT_TIMEOUT = 10.0
DEFAULT_LIMIT = 100
TEARDOWN_TIMEOUT = 1.0

_STOPPED: Final = object()


@dataclass(frozen=True, slots=True)
class _EndOfStream:
    url: str
    failed: bool


@dataclass(slots=True)
class _Run:
    """Mutable bookkeeping of one generation."""

    generation: int
    query: SearchQuery
    started: float
    deadline: float
    endpoints: int
    queue: asyncio.Queue[Item | _EndOfStream] = field(default_factory=asyncio.Queue)
    stopped: asyncio.Event = field(default_factory=asyncio.Event)
    tasks: list[asyncio.Task[None]] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    finished: int = 0
    succeeded: int = 0
    result: SearchResult | None = None


class SearchSession:
    """Generation-based search state machine.

    Args:
        registry: Source of the endpoints to fan out to.
        transport: Opens relay subscriptions.
        profiles: Resolves authors after natural completion.
        contacts: Follow set used for the ranking tier.
        timeout: Absolute deadline of a search, in seconds from ``start()``.
        quorum: Fraction of endpoints that must finish for completion.
        limit: Per-relay result limit.
        kinds: Event kinds to search.
        max_results: Display cap of the aggregator.
        metrics: Optional Prometheus recorder.
    """

    def __init__(
        self,
        registry: RelayRegistry,
        transport: RelayTransport,
        profiles: ProfileCache,
        contacts: ContactGraph,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        quorum: float = 1.0,
        limit: int = DEFAULT_LIMIT,
        kinds: Sequence[int] = (EventKind.TEXT_NOTE,),
        max_results: int = DEFAULT_MAX_RESULTS,
        metrics: SearchMetrics | None = None,
    ) -> None:
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        if not 0 < quorum <= 1:
            raise ValueError("quorum must be in (0, 1]")
        self._registry = registry
        self._transport = transport
        self._profiles = profiles
        self._contacts = contacts
        self._timeout = timeout
        self._quorum = quorum
        self._limit = limit
        self._kinds = tuple(kinds)
        self._metrics = metrics or SearchMetrics()
        self._aggregator = ResultAggregator(max_results=max_results)
        self._state = SessionState.IDLE
        self._generation = 0
        self._run: _Run | None = None
        self._last_result: SearchResult | None = None
        self._logger = Logger("search_session")

    # -------------------------------------------------------------------------
    # Observers
    # -------------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def is_searching(self) -> bool:
        return self._state.is_live

    @property
    def query(self) -> SearchQuery | None:
        """Query of the current (or last settled) generation."""
        return self._run.query if self._run is not None else None

    @property
    def last_result(self) -> SearchResult | None:
        return self._last_result

    @property
    def aggregator(self) -> ResultAggregator:
        return self._aggregator

    def snapshot(self) -> RankedSnapshot:
        """Current ranked view (live while searching, final once settled)."""
        return self._aggregator.snapshot()

    # -------------------------------------------------------------------------
    # Control
    # -------------------------------------------------------------------------

    async def start(
        self,
        query: SearchQuery,
        *,
        self_key: str | None = None,
        on_snapshot: Callable[[RankedSnapshot], Any] | None = None,
    ) -> SearchResult:
        """Run a search generation to its settle.

        A search already in flight is cancelled first; its own ``start()``
        call returns the ``CANCELLED`` result captured at that moment.

        Args:
            query: What to search for.
            self_key: Current user's key (self tier, ``scope_to_self``).
            on_snapshot: Called with the ranked view after every accepted
                item and once with the final view.

        Returns:
            The settled [SearchResult][nostrsearch.models.results.SearchResult].

        Raises:
            ValueError: If ``query.scope_to_self`` is set without ``self_key``.
        """
        search_filter = SearchFilter.for_query(
            query, kinds=self._kinds, limit=self._limit, self_key=self_key
        )

        if self._run is not None and self._state.is_live:
            self._cancel(self._run, reason="superseded")

        self._generation += 1
        loop = asyncio.get_running_loop()
        endpoints = self._registry.active_endpoints()
        run = _Run(
            generation=self._generation,
            query=query,
            started=time.monotonic(),
            deadline=loop.time() + self._timeout,
            endpoints=len(endpoints),
        )
        self._run = run
        self._aggregator.reset(
            run.generation, self_key=self_key, follows=self._contacts, sort_mode=query.sort_mode
        )
        self._state = SessionState.DISPATCHING
        self._logger.info(
            "search_started",
            generation=run.generation,
            query=query.text,
            relays=len(endpoints),
            sort=query.sort_mode,
            mine=query.scope_to_self,
        )

        if not endpoints:
            result = self._settle(run, SessionState.NO_CONNECTIVITY)
            self._emit_final(result, on_snapshot)
            return result

        outcome = SessionState.CANCELLED
        profiles: dict[str, ProfileRecord] = {}
        try:
            async with asyncio.timeout_at(run.deadline) as deadline:
                try:
                    outcome = await self._collect(
                        run, search_filter, [e.url for e in endpoints], on_snapshot
                    )
                    if outcome == SessionState.COMPLETED:
                        resolved = await self._race(run, self._resolve_authors())
                        if resolved is _STOPPED:
                            outcome = SessionState.CANCELLED
                        else:
                            profiles = resolved
                finally:
                    await self._teardown(run)
        except BaseException as e:
            if isinstance(e, TimeoutError) and deadline.expired():
                outcome = SessionState.TIMED_OUT
            else:
                if run.result is None:
                    self._cancel(run, reason="aborted")
                raise

        result = self._settle(run, outcome, profiles)
        self._emit_final(result, on_snapshot)
        return result

    def stop(self) -> SearchResult | None:
        """Cancel the search in flight and return what it accumulated.

        Returns immediately, without waiting for profile resolution. The
        awaiting ``start()`` call returns the same result.

        Returns:
            The ``CANCELLED`` result, or ``None`` if nothing was running.
        """
        if self._run is None or not self._state.is_live:
            return None
        return self._cancel(self._run, reason="stopped")

    def reset(self) -> None:
        """Cancel any search and return to ``IDLE`` with an empty view."""
        self.stop()
        self._generation += 1
        self._aggregator.reset(self._generation)
        self._run = None
        self._last_result = None
        self._state = SessionState.IDLE

    # -------------------------------------------------------------------------
    # Fan-out
    # -------------------------------------------------------------------------

    async def _collect(
        self,
        run: _Run,
        search_filter: SearchFilter,
        urls: list[str],
        on_snapshot: Callable[[RankedSnapshot], Any] | None,
    ) -> SessionState:
        for url in urls:
            task = asyncio.create_task(
                self._pump(run, url, search_filter), name=f"pump:{run.generation}:{url}"
            )
            run.tasks.append(task)

        total = len(urls)
        needed = max(1, math.ceil(self._quorum * total))
        while run.finished < needed or (run.succeeded == 0 and run.finished < total):
            message = await self._race(run, run.queue.get())
            if message is _STOPPED:
                return SessionState.CANCELLED
            if isinstance(message, _EndOfStream):
                run.finished += 1
                if not message.failed:
                    run.succeeded += 1
                continue
            if self._aggregator.ingest(message, run.generation):
                if self._state == SessionState.DISPATCHING:
                    self._state = SessionState.STREAMING
                if on_snapshot is not None:
                    on_snapshot(self._aggregator.snapshot())

        if run.succeeded == 0 and len(self._aggregator) == 0:
            return SessionState.NO_CONNECTIVITY
        return SessionState.COMPLETED

    async def _pump(self, run: _Run, url: str, search_filter: SearchFilter) -> None:
        """Drain one relay subscription into the generation's queue."""
        subscription = None
        failed = False
        try:
            subscription = await self._transport.subscribe(url, search_filter)
            async for item in subscription:
                if run.stopped.is_set():
                    break
                run.queue.put_nowait(item)
        except TRANSPORT_ERRORS as e:
            failed = True
            run.failed.append(url)
            self._logger.warning(
                "relay_failed",
                generation=run.generation,
                url=url,
                error=str(e),
                error_type=type(e).__name__,
            )
        except Exception as e:
            failed = True
            run.failed.append(url)
            self._logger.exception(
                "relay_pump_crashed", generation=run.generation, url=url, error=str(e)
            )
        finally:
            if subscription is not None:
                await subscription.close()

        self._metrics.subscription_finished("error" if failed else "eose")
        if not failed:
            self._logger.debug("relay_eose", generation=run.generation, url=url)
        run.queue.put_nowait(_EndOfStream(url, failed))

    async def _resolve_authors(self) -> dict[str, ProfileRecord]:
        return await self._profiles.fetch_many(self._aggregator.authors())

    @staticmethod
    async def _race(run: _Run, aw: Awaitable[Any]) -> Any:
        """Await *aw* unless the generation is stopped first."""
        work = asyncio.ensure_future(aw)
        if run.stopped.is_set():
            work.cancel()
            return _STOPPED
        stopper = asyncio.ensure_future(run.stopped.wait())
        try:
            await asyncio.wait({work, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for fut in (work, stopper):
                if not fut.done():
                    fut.cancel()
        if work.done() and not work.cancelled():
            return work.result()
        return _STOPPED

    async def _teardown(self, run: _Run) -> None:
        """Cancel the pumps of *run*; each closes its own subscription.

        Waits at most ``TEARDOWN_TIMEOUT`` seconds for the closes to finish.
        """
        pending = [t for t in run.tasks if not t.done()]
        for task in pending:
            task.cancel()
        if not pending:
            return
        _, stuck = await asyncio.wait(pending, timeout=TEARDOWN_TIMEOUT)
        if stuck:
            self._logger.warning(
                "subscriptions_not_closed", generation=run.generation, count=len(stuck)
            )

    # -------------------------------------------------------------------------
    # Settle
    # -------------------------------------------------------------------------

    def _build_result(
        self,
        run: _Run,
        outcome: SessionState,
        profiles: dict[str, ProfileRecord] | None = None,
    ) -> SearchResult:
        snapshot = self._aggregator.snapshot()
        return SearchResult(
            generation=run.generation,
            query=run.query,
            outcome=outcome,
            items=snapshot.items,
            total=snapshot.total,
            profiles=profiles or {},
            failed_relays=tuple(run.failed),
            duration=time.monotonic() - run.started,
        )

    def _cancel(self, run: _Run, *, reason: str) -> SearchResult:
        """Capture the accumulated view of *run*, then stop it."""
        self._aggregator.seal()
        result = self._build_result(run, SessionState.CANCELLED)
        run.result = result
        run.stopped.set()
        for task in run.tasks:
            if not task.done():
                task.cancel()
        if self._run is run:
            self._state = SessionState.CANCELLED
            self._last_result = result
        self._record(result, reason=reason)
        return result

    def _settle(
        self,
        run: _Run,
        outcome: SessionState,
        profiles: dict[str, ProfileRecord] | None = None,
    ) -> SearchResult:
        if run.result is not None:
            return run.result
        self._aggregator.seal()
        result = self._build_result(run, outcome, profiles)
        run.result = result
        if self._run is run:
            self._state = outcome
            self._last_result = result
        self._record(result)
        return result

    def _record(self, result: SearchResult, *, reason: str | None = None) -> None:
        self._metrics.search_settled(result.outcome, result.duration)
        log = self._logger.warning if result.is_no_connectivity else self._logger.info
        fields: dict[str, Any] = {
            "generation": result.generation,
            "outcome": result.outcome,
            "items": result.total,
            "failed_relays": len(result.failed_relays),
            "duration": round(result.duration, 3),
        }
        if reason is not None:
            fields["reason"] = reason
        log("search_settled", **fields)

    @staticmethod
    def _emit_final(
        result: SearchResult, on_snapshot: Callable[[RankedSnapshot], Any] | None
    ) -> None:
        if on_snapshot is not None:
            on_snapshot(RankedSnapshot(result.generation, result.items, result.total))
