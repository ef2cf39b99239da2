"""
Unit tests for services.aggregator module.

Tests:
- First-seen deduplication by item id
- Generation isolation and sealing
- Trust tiers (self, followed, other) and secondary ordering
- Display cap versus dedup table size
"""

import pytest

from nostrsearch.models import SortMode
from nostrsearch.services import ResultAggregator
from nostrsearch.services.aggregator import TIER_FOLLOWED, TIER_OTHER, TIER_SELF
from tests.conftest import FOLLOWED_KEY, OTHER_KEY, SELF_KEY, make_item


@pytest.fixture
def aggregator() -> ResultAggregator:
    agg = ResultAggregator(max_results=420)
    agg.reset(1, self_key=SELF_KEY, follows=frozenset({FOLLOWED_KEY}))
    return agg


# ============================================================================
# Deduplication
# ============================================================================


class TestIngest:
    """Tests for ingest() deduplication and generation checks."""

    def test_accepts_new_item(self, aggregator: ResultAggregator) -> None:
        """Test a new id is added."""
        assert aggregator.ingest(make_item(1), 1) is True
        assert len(aggregator) == 1

    def test_duplicate_id_first_seen_wins(self, aggregator: ResultAggregator) -> None:
        """Test the same id from another relay is dropped."""
        first = make_item(1, content="from relay a")
        second = make_item(1, content="from relay b")

        aggregator.ingest(first, 1)
        assert aggregator.ingest(second, 1) is False

        assert aggregator.ranked() == [first]

    def test_stale_generation_dropped(self, aggregator: ResultAggregator) -> None:
        """Test items tagged with another generation are ignored."""
        assert aggregator.ingest(make_item(1), 0) is False
        assert aggregator.ingest(make_item(2), 2) is False
        assert len(aggregator) == 0

    def test_sealed_drops_items(self, aggregator: ResultAggregator) -> None:
        """Test nothing is accepted once sealed."""
        aggregator.seal()

        assert aggregator.is_sealed is True
        assert aggregator.ingest(make_item(1), 1) is False

    def test_reset_clears_and_unseals(self, aggregator: ResultAggregator) -> None:
        """Test reset() starts a fresh generation."""
        aggregator.ingest(make_item(1), 1)
        aggregator.seal()

        aggregator.reset(2)

        assert aggregator.generation == 2
        assert aggregator.is_sealed is False
        assert aggregator.snapshot().items == ()
        assert aggregator.ingest(make_item(1), 2) is True

    def test_max_results_positive(self) -> None:
        """Test a zero display cap is rejected."""
        with pytest.raises(ValueError):
            ResultAggregator(max_results=0)


# ============================================================================
# Ranking
# ============================================================================


class TestRanking:
    """Tests for tier and secondary ordering."""

    def test_tiers(self, aggregator: ResultAggregator) -> None:
        """Test tier assignment."""
        assert aggregator.tier(make_item(1, author=SELF_KEY)) == TIER_SELF
        assert aggregator.tier(make_item(2, author=FOLLOWED_KEY)) == TIER_FOLLOWED
        assert aggregator.tier(make_item(3, author=OTHER_KEY)) == TIER_OTHER

    def test_tier_beats_recency(self, aggregator: ResultAggregator) -> None:
        """Test self, then followed, then others regardless of timestamps."""
        mine = make_item(1, author=SELF_KEY, created_at=100)
        followed = make_item(2, author=FOLLOWED_KEY, created_at=200)
        stranger = make_item(3, author=OTHER_KEY, created_at=300)

        for item in (stranger, followed, mine):
            aggregator.ingest(item, 1)

        assert [i.id for i in aggregator.ranked()] == [mine.id, followed.id, stranger.id]

    def test_recent_first_within_tier(self, aggregator: ResultAggregator) -> None:
        """Test RECENT orders newest first inside a tier."""
        old = make_item(1, created_at=100)
        new = make_item(2, created_at=200)
        aggregator.ingest(old, 1)
        aggregator.ingest(new, 1)

        assert aggregator.ranked() == [new, old]

    def test_oldest_first_within_tier(self) -> None:
        """Test OLDEST orders oldest first inside a tier."""
        agg = ResultAggregator()
        agg.reset(1, sort_mode=SortMode.OLDEST)
        old = make_item(1, created_at=100)
        new = make_item(2, created_at=200)
        agg.ingest(new, 1)
        agg.ingest(old, 1)

        assert agg.ranked() == [old, new]

    def test_arrival_breaks_ties(self, aggregator: ResultAggregator) -> None:
        """Test equal keys keep arrival order."""
        a = make_item(1, created_at=100)
        b = make_item(2, created_at=100)
        c = make_item(3, created_at=100)
        for item in (b, c, a):
            aggregator.ingest(item, 1)

        assert aggregator.ranked() == [b, c, a]

    def test_anonymous_has_no_self_tier(self) -> None:
        """Test without a self key nobody lands in the self tier."""
        agg = ResultAggregator()
        agg.reset(1)

        assert agg.tier(make_item(1, author=SELF_KEY)) == TIER_OTHER

    def test_follows_read_live(self) -> None:
        """Test the follow container is consulted at ingest time."""
        follows: set[str] = set()
        agg = ResultAggregator()
        agg.reset(1, follows=follows)
        follows.add(FOLLOWED_KEY)

        assert agg.tier(make_item(1, author=FOLLOWED_KEY)) == TIER_FOLLOWED


# ============================================================================
# Snapshot
# ============================================================================


class TestSnapshot:
    """Tests for snapshot() and authors()."""

    def test_cap_applies_to_display_only(self) -> None:
        """Test the snapshot is capped while the dedup table is not."""
        agg = ResultAggregator(max_results=2)
        agg.reset(1)
        for n in range(5):
            agg.ingest(make_item(n, created_at=n), 1)

        snapshot = agg.snapshot()
        assert len(snapshot) == 2
        assert snapshot.total == 5
        assert [i.created_at for i in snapshot.items] == [4, 3]
        assert len(agg.ranked()) == 5

    def test_snapshot_generation(self, aggregator: ResultAggregator) -> None:
        """Test the snapshot carries the generation."""
        assert aggregator.snapshot().generation == 1

    def test_authors_distinct_in_rank_order(self, aggregator: ResultAggregator) -> None:
        """Test authors() lists each displayed author once."""
        aggregator.ingest(make_item(1, author=OTHER_KEY, created_at=3), 1)
        aggregator.ingest(make_item(2, author=SELF_KEY, created_at=1), 1)
        aggregator.ingest(make_item(3, author=OTHER_KEY, created_at=2), 1)

        assert aggregator.authors() == [SELF_KEY, OTHER_KEY]

    def test_authors_limited_to_display(self) -> None:
        """Test authors beyond the cap are not listed."""
        agg = ResultAggregator(max_results=1)
        agg.reset(1)
        agg.ingest(make_item(1, author=SELF_KEY, created_at=2), 1)
        agg.ingest(make_item(2, author=OTHER_KEY, created_at=1), 1)

        assert agg.authors() == [SELF_KEY]
