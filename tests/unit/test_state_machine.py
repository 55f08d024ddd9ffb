"""
Unit Tests for FocusStateMachine

Tests merging, scoring, tiering, pruning and the read-only views.
"""

from datetime import datetime, timedelta

import pytest
from unittest.mock import AsyncMock, MagicMock

from focusrank.config.settings import FocusSettings
from focusrank.modules.focus.models import ConversationTurn, FocusCandidate, FocusState, FocusType
from focusrank.modules.focus.state_machine import FocusStateMachine

T0 = datetime(2024, 5, 1, 12, 0, 0)


def turn(content="something to talk about", at=T0, **kwargs):
    return ConversationTurn(content=content, timestamp=at, **kwargs)


def extractor_returning(*batches):
    """Mock extractor yielding one batch of candidates per call."""
    extractor = MagicMock()
    extractor.extract_focuses = AsyncMock(side_effect=[list(b) for b in batches])
    return extractor


def topic(label, **kwargs):
    return FocusCandidate(type=FocusType.TOPIC, label=label, **kwargs)


class TestIngestMerging:
    """Test how candidates become foci."""

    @pytest.mark.asyncio
    async def test_new_candidates_are_added(self):
        """Unmatched candidates become new foci and are reported as added."""
        machine = FocusStateMachine(extractor_returning([topic("Flutter"), topic("AI")]))
        delta = await machine.ingest(turn())
        assert sorted(f.canonical_label for f in delta.added) == ["AI", "Flutter"]
        assert delta.updated == []
        assert delta.extraction_outcome == "extracted"
        assert len(machine.get_all_focuses()) == 2

    @pytest.mark.asyncio
    async def test_repeat_mention_updates(self):
        """A repeated label merges into the existing focus."""
        machine = FocusStateMachine(extractor_returning(
            [topic("Flutter", emotional_score=0.5)],
            [topic("flutter", emotional_score=1.0, aliases={"Flutter SDK"})],
        ))
        await machine.ingest(turn(at=T0))
        delta = await machine.ingest(turn(at=T0 + timedelta(seconds=30)))

        assert delta.added == []
        assert [f.canonical_label for f in delta.updated] == ["Flutter"]
        focus = machine.get_all_focuses()[0]
        assert focus.mention_count == 2
        assert focus.aliases == {"Flutter SDK"}
        assert focus.emotional_score == pytest.approx(0.65)
        assert focus.last_updated == T0 + timedelta(seconds=30)

    @pytest.mark.asyncio
    async def test_co_mentioned_foci_are_linked(self):
        """Foci mentioned in the same turn link to each other."""
        machine = FocusStateMachine(extractor_returning([topic("Flutter"), topic("AI"), topic("Dart")]))
        await machine.ingest(turn())
        foci = {f.canonical_label: f for f in machine.get_all_focuses()}
        assert foci["Flutter"].linked_focus_ids == {foci["AI"].id, foci["Dart"].id}
        assert foci["Flutter"].causal_connectivity_score == pytest.approx(min(1.0, 2 / 3 ** 0.5))

    @pytest.mark.asyncio
    async def test_linked_labels_create_causal_links(self):
        """Extractor-named links connect to existing foci in both directions."""
        machine = FocusStateMachine(extractor_returning(
            [topic("Flutter")],
            [FocusCandidate(type=FocusType.EVENT, label="App release", linked_labels=["flutter", "unknown"])],
        ))
        await machine.ingest(turn(at=T0))
        await machine.ingest(turn(at=T0 + timedelta(seconds=10)))
        foci = {f.canonical_label: f for f in machine.get_all_focuses()}
        assert foci["App release"].linked_focus_ids == {foci["Flutter"].id}
        assert foci["Flutter"].linked_focus_ids == {foci["App release"].id}

    @pytest.mark.asyncio
    async def test_extractor_failure_does_not_raise(self):
        """A broken collaborator degrades to the rule-based fallback."""
        extractor = MagicMock()
        extractor.extract_focuses = AsyncMock(side_effect=ConnectionError("offline"))
        machine = FocusStateMachine(extractor)
        delta = await machine.ingest(turn("Working on my Flutter project", entities=["Flutter"]))
        assert delta.extraction_outcome == "fallback"
        assert "Flutter" in [f.canonical_label for f in machine.get_all_focuses()]
        assert machine.get_statistics()["extraction_outcomes"] == {"fallback": 1}


class TestTiering:
    """Test reclassification, forced promotion and pruning."""

    @pytest.mark.asyncio
    async def test_fresh_foci_are_active(self):
        """Newly mentioned foci clear the base threshold."""
        machine = FocusStateMachine(extractor_returning([topic("Flutter"), topic("AI")]))
        await machine.ingest(turn())
        assert {f.canonical_label for f in machine.get_active_focuses()} == {"Flutter", "AI"}
        assert all(f.state == FocusState.ACTIVE for f in machine.get_active_focuses())

    @pytest.mark.asyncio
    async def test_active_tier_capped(self):
        """No more than max_active foci are active."""
        config = FocusSettings(max_active=3, min_active=2)
        machine = FocusStateMachine(extractor_returning([topic(f"topic {i}") for i in range(6)]), config)
        await machine.ingest(turn())
        stats = machine.get_statistics()
        assert stats["active_focuses_count"] == 3
        assert stats["total_focuses_count"] == 6

    @pytest.mark.asyncio
    async def test_forced_promotion_keeps_floor(self):
        """Old, weak foci are promoted back up to the active floor."""
        machine = FocusStateMachine(extractor_returning(
            [topic("Flutter"), topic("AI"), topic("Dart")],
            [],
        ), FocusSettings(active_salience_threshold=0.5))
        await machine.ingest(turn(at=T0))
        assert len(machine.get_active_focuses()) == 3

        delta = await machine.ingest(turn(at=T0 + timedelta(minutes=90)))
        assert delta.extraction_outcome == "empty"
        assert all(f.salience_score < 0.5 for f in machine.get_all_focuses())
        assert len(machine.get_active_focuses()) == 3

    @pytest.mark.asyncio
    async def test_stale_non_active_foci_pruned(self):
        """Foci idle past the prune window and outside the active tier are removed."""
        config = FocusSettings(max_active=2, min_active=1)
        machine = FocusStateMachine(extractor_returning(
            [topic("old one"), topic("old two"), topic("old three")],
            [topic("fresh one"), topic("fresh two")],
        ), config)
        await machine.ingest(turn(at=T0))
        delta = await machine.ingest(turn(at=T0 + timedelta(hours=3)))

        labels = {f.canonical_label for f in machine.get_all_focuses()}
        assert labels == {"fresh one", "fresh two"}
        assert len(delta.removed) == 3

    @pytest.mark.asyncio
    async def test_trajectory_transition_reported(self):
        """The first turn starts the drift trajectory."""
        machine = FocusStateMachine(extractor_returning([topic("Flutter")]))
        delta = await machine.ingest(turn())
        assert len(delta.transitions) == 1
        assert delta.transitions[0].reason == "trajectory_start"
        assert machine.get_drift_stats()["total_transitions"] == 1


async def two_turn_machine():
    machine = FocusStateMachine(extractor_returning(
        [topic("Flutter"), topic("AI")],
        [topic("Flutter")],
    ))
    await machine.ingest(turn(at=T0))
    await machine.ingest(turn(at=T0 + timedelta(seconds=20)))
    return machine


class TestViews:
    """Test read-only accessors."""

    @pytest.mark.asyncio
    async def test_views_are_copies(self):
        """Mutating a returned focus does not touch internal state."""
        machine = await two_turn_machine()
        focus = machine.get_active_focuses()[0]
        focus.canonical_label = "changed"
        assert "changed" not in machine.get_top_labels(5)

    @pytest.mark.asyncio
    async def test_top_labels_ordered_by_salience(self):
        """The repeated focus leads."""
        machine = await two_turn_machine()
        assert machine.get_top_labels(1) == ["Flutter"]
        assert machine.get_top_labels(0) == []

    @pytest.mark.asyncio
    async def test_get_focus(self):
        """Lookup by id, None when unknown."""
        machine = await two_turn_machine()
        focus = machine.get_all_focuses()[0]
        assert machine.get_focus(focus.id).canonical_label == focus.canonical_label
        assert machine.get_focus("missing") is None

    @pytest.mark.asyncio
    async def test_statistics(self):
        """Statistics cover tiers, types, outcomes and history."""
        machine = await two_turn_machine()
        stats = machine.get_statistics()
        assert stats["total_focuses_count"] == 2
        assert stats["focus_type_distribution"] == {"event": 0, "topic": 2, "entity": 0}
        assert stats["extraction_outcomes"] == {"extracted": 2}
        assert stats["history_size"] == 2
        assert 0.0 < stats["avg_salience_score"] <= 1.0

    @pytest.mark.asyncio
    async def test_compute_delta(self):
        """Snapshot delta lists active foci and recent transitions."""
        machine = await two_turn_machine()
        delta = machine.compute_delta()
        assert delta.added == []
        assert {f.canonical_label for f in delta.updated} == {"Flutter", "AI"}
        assert len(delta.transitions) >= 1

    @pytest.mark.asyncio
    async def test_reset(self):
        """Reset clears foci, history and drift."""
        machine = await two_turn_machine()
        machine.reset()
        assert machine.get_all_focuses() == []
        assert machine.get_history() == []
        assert machine.get_drift_stats()["total_transitions"] == 0

    @pytest.mark.asyncio
    async def test_history_bounded(self):
        """Only the configured number of turns is kept."""
        machine = FocusStateMachine(extractor_returning(*[[] for _ in range(5)]), FocusSettings(history_size=3))
        for i in range(5):
            await machine.ingest(turn(f"turn {i}", at=T0 + timedelta(seconds=i)))
        assert [t.content for t in machine.get_history()] == ["turn 2", "turn 3", "turn 4"]
