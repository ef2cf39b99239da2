"""
Unit tests for services.session module.

Tests:
- Natural completion with deduplication, ranking and profile resolution
- Snapshot callbacks while streaming
- Absolute deadline (TIMED_OUT) with relays that never finish
- stop() and supersede (CANCELLED) with stale items dropped
- NO_CONNECTIVITY versus an empty result
- Quorum completion and per-relay failures
- Subscriptions closed on every exit path
"""

import asyncio
import time
from collections.abc import Callable

import pytest

from nostrsearch.models import EventKind, RankedSnapshot, SearchQuery, SessionState, SortMode
from nostrsearch.services import ContactGraph, ProfileCache, RelayRegistry, SearchSession
from tests.conftest import (
    FOLLOWED_KEY,
    OTHER_KEY,
    RELAY_A,
    RELAY_B,
    SELF_KEY,
    FakeTransport,
    make_contacts,
    make_item,
)


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Yield to the loop until *predicate* holds."""
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.005)


def _all_closed(transport: FakeTransport) -> bool:
    return all(sub.closed for sub in transport.subscriptions)


# ============================================================================
# Construction
# ============================================================================


class TestInit:
    """Tests for SearchSession construction."""

    def test_starts_idle(self, session: SearchSession) -> None:
        """Test a new session is idle with an empty view."""
        assert session.state == SessionState.IDLE
        assert session.generation == 0
        assert session.is_searching is False
        assert session.last_result is None
        assert len(session.snapshot()) == 0

    @pytest.mark.parametrize("kwargs", [{"timeout": 0}, {"quorum": 0}, {"quorum": 1.5}])
    def test_invalid_limits(
        self,
        registry: RelayRegistry,
        transport: FakeTransport,
        profiles: ProfileCache,
        contacts: ContactGraph,
        kwargs: dict[str, float],
    ) -> None:
        """Test non-positive timeout and out-of-range quorum are rejected."""
        with pytest.raises(ValueError):
            SearchSession(registry, transport, profiles, contacts, **kwargs)


# ============================================================================
# Completion
# ============================================================================


class TestCompletion:
    """Tests for natural completion."""

    async def test_completes_with_deduplicated_items(
        self, session: SearchSession, transport: FakeTransport
    ) -> None:
        """Test items from every relay are merged and deduplicated."""
        transport.script(RELAY_A, [make_item(1, created_at=10), make_item(2, created_at=20)])
        transport.script(RELAY_B, [make_item(2, created_at=20), make_item(3, created_at=30)])

        result = await session.start(SearchQuery("nostr"))

        assert result.outcome == SessionState.COMPLETED
        assert [i.id for i in result.items] == [make_item(n).id for n in (3, 2, 1)]
        assert result.total == 3
        assert result.failed_relays == ()
        assert session.state == SessionState.COMPLETED
        assert session.last_result is result

    async def test_filter_sent_to_every_relay(
        self, session: SearchSession, transport: FakeTransport
    ) -> None:
        """Test one subscription per endpoint with the query's filter."""
        await session.start(SearchQuery("zaps"))

        assert sorted(url for url, _ in transport.filters) == [RELAY_A, RELAY_B]
        assert all(f.search == "zaps" and f.authors is None for _, f in transport.filters)

    async def test_resolves_author_profiles(
        self, session: SearchSession, transport: FakeTransport
    ) -> None:
        """Test completion resolves every displayed author."""
        transport.script(RELAY_A, [make_item(1, author=OTHER_KEY), make_item(2, author=SELF_KEY)])
        transport.metadata[OTHER_KEY] = {"name": "carol"}

        result = await session.start(SearchQuery("nostr"))

        assert set(result.profiles) == {OTHER_KEY, SELF_KEY}
        assert result.profiles[OTHER_KEY].best_name == "carol"
        assert result.profiles[SELF_KEY].found is False

    async def test_ranks_by_trust_tier(
        self, session: SearchSession, transport: FakeTransport, contacts: ContactGraph
    ) -> None:
        """Test self, followed and other tiers with the recent sort inside."""
        transport.records[(SELF_KEY, EventKind.CONTACTS)] = make_contacts(SELF_KEY, [FOLLOWED_KEY])
        await contacts.load(transport, SELF_KEY, [RELAY_A])
        mine = make_item(1, author=SELF_KEY, created_at=100)
        followed = make_item(2, author=FOLLOWED_KEY, created_at=200)
        stranger = make_item(3, author=OTHER_KEY, created_at=300)
        transport.script(RELAY_A, [stranger, followed])
        transport.script(RELAY_B, [mine])

        result = await session.start(SearchQuery("nostr"), self_key=SELF_KEY)

        assert list(result.items) == [mine, followed, stranger]

    async def test_oldest_sort(self, session: SearchSession, transport: FakeTransport) -> None:
        """Test OLDEST sorts ascending inside a tier."""
        transport.script(RELAY_A, [make_item(1, created_at=20), make_item(2, created_at=10)])

        result = await session.start(SearchQuery("nostr", sort_mode=SortMode.OLDEST))

        assert [i.created_at for i in result.items] == [10, 20]

    async def test_empty_result_is_not_no_connectivity(
        self, session: SearchSession, transport: FakeTransport
    ) -> None:
        """Test relays that answer with nothing produce an empty COMPLETED."""
        result = await session.start(SearchQuery("nothing matches"))

        assert result.outcome == SessionState.COMPLETED
        assert result.items == ()
        assert result.is_no_connectivity is False

    async def test_snapshots_emitted(
        self, session: SearchSession, transport: FakeTransport
    ) -> None:
        """Test a snapshot per accepted item plus the final view."""
        transport.script(RELAY_A, [make_item(1), make_item(2)])
        transport.script(RELAY_B, [make_item(2)])
        snapshots: list[RankedSnapshot] = []

        result = await session.start(SearchQuery("nostr"), on_snapshot=snapshots.append)

        assert [len(s) for s in snapshots] == [1, 2, 2]
        assert snapshots[-1].items == result.items
        assert all(s.generation == result.generation for s in snapshots)

    async def test_all_subscriptions_closed(
        self, session: SearchSession, transport: FakeTransport
    ) -> None:
        """Test every subscription is closed exactly once after completion."""
        transport.script(RELAY_A, [make_item(1)])

        await session.start(SearchQuery("nostr"))

        assert len(transport.subscriptions) == 2
        assert all(sub.close_calls == 1 for sub in transport.subscriptions)

    async def test_scope_to_self_restricts_authors(
        self, session: SearchSession, transport: FakeTransport
    ) -> None:
        """Test a self-scoped query sends the user's key as author."""
        await session.start(SearchQuery("notes", scope_to_self=True), self_key=SELF_KEY)

        assert all(f.authors == (SELF_KEY,) for _, f in transport.filters)

    async def test_scope_to_self_needs_key(self, session: SearchSession) -> None:
        """Test a self-scoped query without a key is rejected before fan-out."""
        with pytest.raises(ValueError):
            await session.start(SearchQuery("notes", scope_to_self=True))

        assert session.state == SessionState.IDLE
        assert session.generation == 0


# ============================================================================
# Failures and Connectivity
# ============================================================================


class TestFailures:
    """Tests for per-relay failures and connectivity loss."""

    async def test_partial_failure_completes(
        self, session: SearchSession, transport: FakeTransport
    ) -> None:
        """Test a failing relay degrades the search without aborting it."""
        transport.script(RELAY_A, error=OSError("refused"))
        transport.script(RELAY_B, [make_item(1)])

        result = await session.start(SearchQuery("nostr"))

        assert result.outcome == SessionState.COMPLETED
        assert len(result.items) == 1
        assert result.failed_relays == (RELAY_A,)

    async def test_all_relays_fail(self, session: SearchSession, transport: FakeTransport) -> None:
        """Test total failure settles as NO_CONNECTIVITY."""
        transport.script(RELAY_A, error=OSError("refused"))
        transport.script(RELAY_B, error=TimeoutError())

        result = await session.start(SearchQuery("nostr"))

        assert result.outcome == SessionState.NO_CONNECTIVITY
        assert result.is_no_connectivity is True
        assert set(result.failed_relays) == {RELAY_A, RELAY_B}
        assert session.state == SessionState.NO_CONNECTIVITY

    async def test_empty_registry(
        self, session: SearchSession, transport: FakeTransport, registry: RelayRegistry
    ) -> None:
        """Test an empty registry settles immediately as NO_CONNECTIVITY."""
        registry.bootstrap_defaults([])

        result = await session.start(SearchQuery("nostr"))

        assert result.outcome == SessionState.NO_CONNECTIVITY
        assert transport.subscriptions == []

    async def test_failure_after_items_keeps_items(
        self, session: SearchSession, transport: FakeTransport
    ) -> None:
        """Test items delivered before a relay error are kept."""
        transport.script(RELAY_A, [make_item(1)], fail_after=OSError("reset"))
        transport.script(RELAY_B, error=OSError("refused"))

        result = await session.start(SearchQuery("nostr"))

        assert result.outcome == SessionState.COMPLETED
        assert len(result.items) == 1
        assert set(result.failed_relays) == {RELAY_A, RELAY_B}

    async def test_unexpected_error_is_contained(
        self, session: SearchSession, transport: FakeTransport
    ) -> None:
        """Test an unexpected pump error counts as a relay failure."""
        transport.script(RELAY_A, [make_item(1)], fail_after=RuntimeError("bug"))
        transport.script(RELAY_B, [make_item(2)])

        result = await session.start(SearchQuery("nostr"))

        assert result.outcome == SessionState.COMPLETED
        assert result.failed_relays == (RELAY_A,)
        assert all(sub.closed for sub in transport.subscriptions)

    async def test_profile_lookup_crash_keeps_results(
        self, session: SearchSession, transport: FakeTransport
    ) -> None:
        """Test an unexpected metadata error leaves the search completed."""
        transport.script(RELAY_A, [make_item(1, author=OTHER_KEY)])
        transport.metadata[OTHER_KEY] = RuntimeError("boom")

        result = await session.start(SearchQuery("nostr"))

        assert result.outcome == SessionState.COMPLETED
        assert len(result.items) == 1
        assert result.profiles[OTHER_KEY].found is False
        assert session.state == SessionState.COMPLETED


# ============================================================================
# Quorum
# ============================================================================


class TestQuorum:
    """Tests for quorum completion."""

    async def test_quorum_completes_without_stragglers(
        self,
        registry: RelayRegistry,
        transport: FakeTransport,
        profiles: ProfileCache,
        contacts: ContactGraph,
    ) -> None:
        """Test half the relays finishing is enough with quorum 0.5."""
        session = SearchSession(registry, transport, profiles, contacts, timeout=2.0, quorum=0.5)
        transport.script(RELAY_A, [make_item(1)])
        transport.script(RELAY_B, eose=False)

        result = await session.start(SearchQuery("nostr"))

        assert result.outcome == SessionState.COMPLETED
        assert _all_closed(transport)

    async def test_quorum_waits_for_a_success(
        self,
        registry: RelayRegistry,
        transport: FakeTransport,
        profiles: ProfileCache,
        contacts: ContactGraph,
    ) -> None:
        """Test a failure alone does not satisfy the quorum."""
        session = SearchSession(registry, transport, profiles, contacts, timeout=2.0, quorum=0.5)
        transport.script(RELAY_A, error=OSError("refused"))
        transport.script(RELAY_B, [make_item(1)], delay=0.05)

        result = await session.start(SearchQuery("nostr"))

        assert result.outcome == SessionState.COMPLETED
        assert len(result.items) == 1


# ============================================================================
# Timeout
# ============================================================================


class TestTimeout:
    """Tests for the absolute deadline."""

    async def test_times_out_with_partial_results(
        self,
        registry: RelayRegistry,
        transport: FakeTransport,
        profiles: ProfileCache,
        contacts: ContactGraph,
    ) -> None:
        """Test a relay that never finishes forces TIMED_OUT at the deadline."""
        session = SearchSession(registry, transport, profiles, contacts, timeout=0.2)
        transport.script(RELAY_A, [make_item(1)], eose=False)
        transport.script(RELAY_B, [make_item(2)])
        started = time.monotonic()

        result = await session.start(SearchQuery("nostr"))

        elapsed = time.monotonic() - started
        assert result.outcome == SessionState.TIMED_OUT
        assert 0.15 <= elapsed < 1.0
        assert len(result.items) == 2
        assert len(result.profiles) == 0
        assert _all_closed(transport)
        assert session.state == SessionState.TIMED_OUT

    async def test_late_items_dropped_after_timeout(
        self,
        registry: RelayRegistry,
        transport: FakeTransport,
        profiles: ProfileCache,
        contacts: ContactGraph,
    ) -> None:
        """Test the settled view does not change after the deadline."""
        session = SearchSession(registry, transport, profiles, contacts, timeout=0.1)
        transport.script(RELAY_A, eose=False)
        transport.script(RELAY_B, eose=False)

        result = await session.start(SearchQuery("nostr"))
        session.aggregator.ingest(make_item(9), result.generation)

        assert result.items == ()
        assert session.snapshot().items == ()

    async def test_hanging_close_does_not_block_settle(
        self,
        registry: RelayRegistry,
        transport: FakeTransport,
        profiles: ProfileCache,
        contacts: ContactGraph,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """Test a subscription whose close never returns cannot hold start() open."""
        monkeypatch.setattr("nostrsearch.services.session.TEARDOWN_TIMEOUT", 0.05)
        gate = asyncio.Event()
        session = SearchSession(registry, transport, profiles, contacts, timeout=0.1)
        transport.script(RELAY_A, [make_item(1)], eose=False, close_gate=gate)
        transport.script(RELAY_B, [make_item(2)])
        started = time.monotonic()

        result = await session.start(SearchQuery("nostr"))

        elapsed = time.monotonic() - started
        assert result.outcome == SessionState.TIMED_OUT
        assert len(result.items) == 2
        assert elapsed < 0.5

        gate.set()
        await asyncio.sleep(0.01)


# ============================================================================
# Stop and Supersede
# ============================================================================


class TestCancellation:
    """Tests for stop(), supersede and reset()."""

    async def test_stop_when_idle(self, session: SearchSession) -> None:
        """Test stop() without a running search returns None."""
        assert session.stop() is None

    async def test_stop_returns_accumulated(
        self, session: SearchSession, transport: FakeTransport
    ) -> None:
        """Test stop() cancels and returns the items seen so far."""
        transport.script(RELAY_A, [make_item(1)], eose=False)
        transport.script(RELAY_B, eose=False)

        task = asyncio.create_task(session.start(SearchQuery("nostr")))
        await wait_until(lambda: session.state == SessionState.STREAMING)

        stopped = session.stop()
        result = await task

        assert stopped is not None
        assert stopped.outcome == SessionState.CANCELLED
        assert len(stopped.items) == 1
        assert result is stopped
        assert session.state == SessionState.CANCELLED
        assert _all_closed(transport)

    async def test_stop_during_dispatch(
        self, session: SearchSession, transport: FakeTransport
    ) -> None:
        """Test stop() before any item arrives yields an empty CANCELLED."""
        transport.script(RELAY_A, eose=False)
        transport.script(RELAY_B, eose=False)

        task = asyncio.create_task(session.start(SearchQuery("nostr")))
        await wait_until(lambda: len(transport.subscriptions) == 2)

        stopped = session.stop()
        await task

        assert stopped is not None
        assert stopped.items == ()
        assert stopped.outcome == SessionState.CANCELLED

    async def test_supersede_cancels_previous(
        self, session: SearchSession, transport: FakeTransport
    ) -> None:
        """Test a new search cancels the old one and ignores its items."""
        transport.script(RELAY_A, [make_item(1)], eose=False)
        transport.script(RELAY_B, eose=False)
        first = asyncio.create_task(session.start(SearchQuery("first")))
        await wait_until(lambda: session.state == SessionState.STREAMING)
        first_subs = list(transport.subscriptions)

        transport.script(RELAY_A, [make_item(2)])
        transport.script(RELAY_B, [make_item(3)])
        second = await session.start(SearchQuery("second"))
        first_result = await first

        assert first_result.outcome == SessionState.CANCELLED
        assert [i.id for i in first_result.items] == [make_item(1).id]
        assert second.outcome == SessionState.COMPLETED
        assert second.generation == first_result.generation + 1
        assert {i.id for i in second.items} == {make_item(2).id, make_item(3).id}
        assert second.query is not None and second.query.text == "second"
        assert all(sub.closed for sub in first_subs)
        assert session.last_result is second

    async def test_old_callback_never_sees_new_generation(
        self, session: SearchSession, transport: FakeTransport
    ) -> None:
        """Test snapshots for a superseded search stay on its generation."""
        transport.script(RELAY_A, [make_item(1)], eose=False)
        transport.script(RELAY_B, eose=False)
        seen: list[int] = []
        first = asyncio.create_task(
            session.start(SearchQuery("first"), on_snapshot=lambda s: seen.append(s.generation))
        )
        await wait_until(lambda: session.state == SessionState.STREAMING)

        transport.script(RELAY_A, [make_item(2)])
        transport.script(RELAY_B)
        await session.start(SearchQuery("second"))
        await first

        assert seen and set(seen) == {1}

    async def test_reset_returns_to_idle(
        self, session: SearchSession, transport: FakeTransport
    ) -> None:
        """Test reset() clears results and state."""
        transport.script(RELAY_A, [make_item(1)])
        await session.start(SearchQuery("nostr"))

        session.reset()

        assert session.state == SessionState.IDLE
        assert session.snapshot().items == ()
        assert session.last_result is None
        assert session.query is None

    async def test_outer_cancellation_propagates(
        self, session: SearchSession, transport: FakeTransport
    ) -> None:
        """Test cancelling the awaiting task cancels the search and closes relays."""
        transport.script(RELAY_A, eose=False)
        transport.script(RELAY_B, eose=False)
        task = asyncio.create_task(session.start(SearchQuery("nostr")))
        await wait_until(lambda: len(transport.subscriptions) == 2)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert session.state == SessionState.CANCELLED
        assert _all_closed(transport)
