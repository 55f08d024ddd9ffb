"""
Unit Tests for ScoredNode composite scoring and the ResultPool
"""

from datetime import datetime, timedelta

import pytest
from pydantic import ValidationError

from focusrank.modules.priority.models import EventNode
from focusrank.modules.retrieval.models import CompositeWeights, RetrievalContext, ScoredNode
from focusrank.modules.retrieval.result_pool import ResultPool

NOW = datetime(2024, 5, 10, 9, 0, 0)


def scored(node_id, embedding_score=0.5, constraint=0.0, at=NOW):
    return ScoredNode(
        node=EventNode(id=node_id, name=node_id),
        embedding_score=embedding_score,
        constraint_scores={"TemporalProximity": constraint},
        last_updated=at,
    )


class TestScoredNode:
    """Test the composite score formula."""

    def test_composite_score(self):
        """0.4 * embedding + 0.5 * constraints + 0.1 * recency."""
        entry = scored("a", embedding_score=0.8, constraint=0.6)
        assert entry.compute_composite_score(CompositeWeights(), NOW) == pytest.approx(0.4 * 0.8 + 0.5 * 0.6 + 0.1)

    def test_recency_factor_decays(self):
        """1 / (1 + hours / staleness)."""
        entry = scored("a", at=NOW - timedelta(hours=24))
        assert entry.recency_factor(24.0, NOW) == pytest.approx(0.5)

    def test_weights_validation(self):
        """Negative weights and non-positive staleness are rejected."""
        with pytest.raises(ValidationError):
            CompositeWeights(embedding_weight=-0.1)
        with pytest.raises(ValidationError):
            CompositeWeights(staleness_hours=0)

    def test_context_strictness(self):
        """Any hard requirement makes a context strict."""
        assert not RetrievalContext().is_strict
        assert RetrievalContext(target_entity_ids=["p1"]).is_strict
        assert RetrievalContext(time_window_end=NOW).is_strict


class TestResultPool:
    """Test merge, eviction and reweighting."""

    def test_invalid_size(self):
        """A pool must hold at least one entry."""
        with pytest.raises(ValueError):
            ResultPool(max_size=0)

    @pytest.mark.asyncio
    async def test_merge_orders_by_score(self):
        """Entries come back best first."""
        pool = ResultPool(max_size=5)
        result = await pool.merge([scored("a", 0.2), scored("b", 0.9), scored("c", 0.5)], NOW)
        assert [e.node.id for e in result] == ["b", "c", "a"]
        assert pool.merge_count == 1

    @pytest.mark.asyncio
    async def test_bounded_and_unique(self):
        """Never more than max_size entries, never a duplicate id."""
        pool = ResultPool(max_size=3)
        for round_number in range(4):
            await pool.merge([scored(f"n{i}", 0.1 * i + 0.01 * round_number) for i in range(6)], NOW)
        ids = pool.ids()
        assert len(ids) == 3
        assert len(set(ids)) == 3
        assert ids == ["n5", "n4", "n3"]

    @pytest.mark.asyncio
    async def test_higher_score_replaces(self):
        """A strictly better entry replaces the held one."""
        pool = ResultPool(max_size=5)
        await pool.merge([scored("a", 0.3)], NOW)
        await pool.merge([scored("a", 0.6)], NOW)
        assert pool.get("a").embedding_score == 0.6
        assert len(pool) == 1

    @pytest.mark.asyncio
    async def test_equal_or_lower_keeps_existing(self):
        """The held entry keeps its timestamp unless beaten."""
        pool = ResultPool(max_size=5)
        await pool.merge([scored("a", 0.6, at=NOW)], NOW)
        later = NOW + timedelta(minutes=1)
        await pool.merge([scored("a", 0.3, at=later)], later)
        assert pool.get("a").last_updated == NOW

    @pytest.mark.asyncio
    async def test_equal_score_remerge_keeps_entry(self):
        """Re-retrieving a node with the same score keeps the held entry and timestamp."""
        pool = ResultPool(max_size=5)
        await pool.merge([scored("a", 0.5, at=NOW)], NOW)
        held_score = pool.get("a").composite_score
        later = NOW + timedelta(hours=1)
        await pool.merge([scored("a", 0.5, at=later)], later)

        entry = pool.get("a")
        assert entry.last_updated == NOW
        assert entry.composite_score == held_score

    @pytest.mark.asyncio
    async def test_merge_does_not_rescore_held_entries(self):
        """A held entry keeps its stored score across merges of other nodes."""
        pool = ResultPool(max_size=5)
        await pool.merge([scored("a", 0.5, at=NOW)], NOW)
        held_score = pool.get("a").composite_score
        await pool.merge([scored("b", 0.2, at=NOW)], NOW + timedelta(hours=48))
        assert pool.get("a").composite_score == held_score

    @pytest.mark.asyncio
    async def test_snapshot_is_a_copy(self):
        """Mutating a snapshot does not touch the pool."""
        pool = ResultPool(max_size=5)
        await pool.merge([scored("a", 0.5)], NOW)
        pool.snapshot()[0].composite_score = 99.0
        assert pool.get("a").composite_score != 99.0
        assert pool.get("missing") is None

    @pytest.mark.asyncio
    async def test_reweight(self):
        """New weights rescore held entries."""
        pool = ResultPool(max_size=5)
        await pool.merge([scored("a", 1.0, constraint=0.0), scored("b", 0.0, constraint=1.0)], NOW)
        assert pool.ids() == ["b", "a"]
        await pool.reweight(CompositeWeights(embedding_weight=1.0, constraint_weight=0.0, recency_weight=0.0), NOW)
        assert pool.ids() == ["a", "b"]
        assert pool.get("a").composite_score == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_clear(self):
        """Clear empties the pool."""
        pool = ResultPool(max_size=5)
        await pool.merge([scored("a")], NOW)
        await pool.clear()
        assert len(pool) == 0
