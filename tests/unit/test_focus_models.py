"""
Unit Tests for focus models, label matching and text utilities
"""

from datetime import datetime, timedelta

import pytest

from focusrank.modules.focus.matching import (
    AliasMatch,
    ExactMatch,
    FuzzyMatch,
    NoMatch,
    resolve_match,
)
from focusrank.modules.focus.models import (
    MAX_MENTION_TIMESTAMPS,
    FocusCandidate,
    FocusPoint,
    FocusState,
    FocusTransition,
    FocusType,
)
from focusrank.utils.text_utils import (
    jaccard_similarity,
    normalize_label,
    script_aware_tokens,
    whitespace_tokens,
)

T0 = datetime(2024, 5, 1, 12, 0, 0)


class TestTextUtils:
    """Test label normalisation and tokenisation."""

    def test_normalize_label(self):
        """Should lowercase, trim and collapse whitespace."""
        assert normalize_label("  Flutter   App ") == "flutter app"
        assert normalize_label("") == ""

    def test_script_aware_tokens_split_cjk(self):
        """Should keep latin words whole and split CJK per character."""
        assert script_aware_tokens("Flutter开发") == {"flutter", "开", "发"}

    def test_whitespace_tokens(self):
        """Should split on whitespace only."""
        assert whitespace_tokens("Flutter 开发") == {"flutter", "开发"}

    def test_jaccard_empty(self):
        """Two empty sets have similarity 0."""
        assert jaccard_similarity(set(), set()) == 0.0

    def test_jaccard_partial(self):
        """Should be intersection over union."""
        assert jaccard_similarity({"a", "b"}, {"b", "c"}) == pytest.approx(1 / 3)


class TestFocusPoint:
    """Test FocusPoint bookkeeping."""

    def test_defaults(self):
        """New focus starts emerging with one mention."""
        focus = FocusPoint(type=FocusType.TOPIC, canonical_label="Flutter", last_updated=T0)
        assert focus.state == FocusState.EMERGING
        assert focus.mention_count == 1
        assert list(focus.mention_timestamps) == [T0]

    def test_canonical_label_not_kept_as_alias(self):
        """Aliases equal to the canonical label are dropped."""
        focus = FocusPoint(type=FocusType.TOPIC, canonical_label="Flutter", aliases={"flutter", "Dart UI"})
        assert focus.aliases == {"Dart UI"}
        focus.add_alias("FLUTTER")
        assert focus.aliases == {"Dart UI"}

    def test_add_alias_deduplicates_case_insensitively(self):
        """Should not add an alias twice with different case."""
        focus = FocusPoint(type=FocusType.TOPIC, canonical_label="Flutter")
        focus.add_alias("Dart UI")
        focus.add_alias("dart ui")
        assert len(focus.aliases) == 1

    def test_record_mention_moves_last_updated(self):
        """A later mention advances last_updated and the count."""
        focus = FocusPoint(type=FocusType.TOPIC, canonical_label="x", first_seen=T0, last_updated=T0)
        focus.record_mention(T0 + timedelta(minutes=5))
        assert focus.mention_count == 2
        assert focus.last_updated == T0 + timedelta(minutes=5)

    def test_out_of_order_mention_keeps_sorted_timestamps(self):
        """An older mention is inserted in order without moving last_updated."""
        focus = FocusPoint(type=FocusType.TOPIC, canonical_label="x", last_updated=T0)
        focus.record_mention(T0 - timedelta(minutes=1))
        assert list(focus.mention_timestamps) == [T0 - timedelta(minutes=1), T0]
        assert focus.last_updated == T0

    def test_mention_timestamps_bounded(self):
        """Only the newest timestamps are kept."""
        focus = FocusPoint(type=FocusType.TOPIC, canonical_label="x", last_updated=T0)
        for i in range(MAX_MENTION_TIMESTAMPS + 20):
            focus.record_mention(T0 + timedelta(seconds=i + 1))
        assert len(focus.mention_timestamps) == MAX_MENTION_TIMESTAMPS
        assert focus.mention_count == MAX_MENTION_TIMESTAMPS + 21

    def test_update_state_does_not_touch_last_updated(self):
        """Tier changes are not mentions."""
        focus = FocusPoint(type=FocusType.TOPIC, canonical_label="x", last_updated=T0)
        focus.update_state(FocusState.ACTIVE)
        assert focus.state == FocusState.ACTIVE
        assert focus.last_updated == T0

    def test_merge_with(self):
        """Merging absorbs aliases, counts, links and the time span."""
        a = FocusPoint(type=FocusType.TOPIC, canonical_label="Flutter", first_seen=T0, last_updated=T0)
        b = FocusPoint(
            type=FocusType.TOPIC,
            canonical_label="Flutter app",
            aliases={"FL"},
            first_seen=T0 - timedelta(hours=1),
            last_updated=T0 + timedelta(hours=1),
            linked_focus_ids={a.id, "other"},
        )
        a.merge_with(b)
        assert a.aliases == {"FL", "Flutter app"}
        assert a.mention_count == 2
        assert a.first_seen == T0 - timedelta(hours=1)
        assert a.last_updated == T0 + timedelta(hours=1)
        assert a.linked_focus_ids == {"other"}

    def test_to_dict(self):
        """Serialises enums and timestamps as plain values."""
        data = FocusPoint(type=FocusType.ENTITY, canonical_label="Beijing", last_updated=T0).to_dict()
        assert data["type"] == "entity"
        assert data["state"] == "emerging"
        assert data["mention_timestamps"] == [T0.isoformat()]


class TestFocusCandidateAndTransition:
    """Test candidate conversion and transition clamping."""

    def test_to_focus_point(self):
        """Candidate becomes a focus stamped with the ingest time."""
        candidate = FocusCandidate(type=FocusType.EVENT, label=" Launch ", emotional_score=1.4, source="llm_extraction")
        focus = candidate.to_focus_point(T0)
        assert focus.canonical_label == "Launch"
        assert focus.emotional_score == 1.0
        assert focus.first_seen == T0
        assert focus.metadata["source"] == "llm_extraction"

    def test_transition_strength_clamped(self):
        """Strength is kept inside [0, 1]."""
        assert FocusTransition(timestamp=T0, to_focus_id="a", transition_strength=1.7).transition_strength == 1.0
        assert FocusTransition(timestamp=T0, to_focus_id="a", transition_strength=-1).transition_strength == 0.0


class TestResolveMatch:
    """Test merge target resolution."""

    @pytest.fixture
    def foci(self):
        return [
            FocusPoint(type=FocusType.TOPIC, canonical_label="Flutter performance tuning", aliases={"perf work"}),
            FocusPoint(type=FocusType.ENTITY, canonical_label="Beijing"),
        ]

    def test_exact_match_is_case_insensitive(self, foci):
        """Should match the canonical label ignoring case and spacing."""
        decision = resolve_match("flutter  PERFORMANCE tuning", FocusType.TOPIC, foci)
        assert decision == ExactMatch(foci[0].id)

    def test_alias_match(self, foci):
        """Should match a known alias."""
        assert resolve_match("Perf Work", FocusType.TOPIC, foci) == AliasMatch(foci[0].id)

    def test_exact_match_across_types(self, foci):
        """An entity label can merge into a topic of the same name."""
        assert resolve_match("beijing", FocusType.TOPIC, foci) == ExactMatch(foci[1].id)

    def test_fuzzy_match_above_threshold(self, foci):
        """Jaccard overlap >= threshold is a fuzzy match."""
        decision = resolve_match("Flutter performance tuning tips", FocusType.TOPIC, foci, threshold=0.7)
        assert isinstance(decision, FuzzyMatch)
        assert decision.focus_id == foci[0].id
        assert decision.score == pytest.approx(0.75)

    def test_fuzzy_match_same_type_only(self, foci):
        """Fuzzy matching never crosses focus types."""
        decision = resolve_match("Flutter performance tuning tips", FocusType.ENTITY, foci, threshold=0.7)
        assert decision == NoMatch()

    def test_below_threshold(self, foci):
        """Weak overlap is no match."""
        assert resolve_match("Flutter", FocusType.TOPIC, foci) == NoMatch()

    def test_blank_label(self, foci):
        """Blank labels never match."""
        assert resolve_match("   ", None, foci) == NoMatch()

    def test_cjk_fuzzy_match(self):
        """CJK labels are compared per character."""
        focus = FocusPoint(type=FocusType.TOPIC, canonical_label="性能优化")
        decision = resolve_match("性能优化啊", FocusType.TOPIC, [focus], threshold=0.7)
        assert isinstance(decision, FuzzyMatch)
