"""
Merge-target resolution for incoming focus candidates.

resolve_match() is a pure function: it inspects existing foci and returns a
tagged decision, leaving the actual merge to the state machine.
"""

from dataclasses import dataclass
from typing import Iterable, Optional, Union

from focusrank.modules.focus.models import FocusPoint, FocusType
from focusrank.utils.text_utils import (
    Tokenizer,
    jaccard_similarity,
    normalize_label,
    script_aware_tokens,
)


@dataclass(frozen=True)
class ExactMatch:
    focus_id: str


@dataclass(frozen=True)
class AliasMatch:
    focus_id: str


@dataclass(frozen=True)
class FuzzyMatch:
    focus_id: str
    score: float


@dataclass(frozen=True)
class NoMatch:
    pass


MatchDecision = Union[ExactMatch, AliasMatch, FuzzyMatch, NoMatch]


def resolve_match(
    label: str,
    focus_type: Optional[FocusType],
    existing: Iterable[FocusPoint],
    threshold: float = 0.70,
    tokenizer: Tokenizer = script_aware_tokens,
) -> MatchDecision:
    """
    Find the focus a candidate label should merge into.

    Precedence: exact canonical label, then alias, then fuzzy Jaccard token
    overlap >= threshold. Foci of the same type are preferred; exact and
    alias matches fall back to any type so an entity "Flutter" and a topic
    "flutter" do not split into two foci.
    """
    target = normalize_label(label)
    if not target:
        return NoMatch()

    foci = list(existing)
    same_type = [f for f in foci if focus_type is None or f.type == focus_type]

    for pool in (same_type, foci):
        for focus in pool:
            if focus.normalized_label == target:
                return ExactMatch(focus.id)
        for focus in pool:
            if focus.has_alias(target):
                return AliasMatch(focus.id)

    candidate_tokens = tokenizer(target)
    best: Optional[FuzzyMatch] = None
    for focus in same_type:
        score = jaccard_similarity(candidate_tokens, tokenizer(focus.canonical_label))
        if score >= threshold and (best is None or score > best.score):
            best = FuzzyMatch(focus.id, score)

    return best if best is not None else NoMatch()
