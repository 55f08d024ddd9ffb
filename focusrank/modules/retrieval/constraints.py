"""
Retrieval constraints
Hard constraints filter candidates out; soft constraints always pass and add score
"""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

from focusrank.config.settings import RetrievalSettings, settings
from focusrank.modules.priority.models import EventNode
from focusrank.modules.retrieval.models import RetrievalContext

logger = logging.getLogger(__name__)

_LOCATION_SEPARATORS = re.compile(r'[,，。、;/\s]+')


@dataclass(frozen=True)
class ConstraintResult:
    passes: bool
    score_contribution: float = 0.0
    reason: Optional[str] = None

    @classmethod
    def ok(cls, score: float = 0.0, reason: Optional[str] = None) -> "ConstraintResult":
        return cls(passes=True, score_contribution=max(0.0, score), reason=reason)

    @classmethod
    def fail(cls, reason: Optional[str] = None) -> "ConstraintResult":
        return cls(passes=False, score_contribution=0.0, reason=reason)


class Constraint(ABC):
    name: str = "Constraint"
    is_hard: bool = False

    def __init__(self, weight: float = 1.0):
        self.weight = weight

    @abstractmethod
    def evaluate(self, node: EventNode, context: RetrievalContext) -> ConstraintResult:
        pass

    def __repr__(self) -> str:
        return f"{type(self).__name__}(weight={self.weight})"


class HardConstraint(Constraint):
    """Pass/fail. Missing data fails."""
    is_hard = True


class SoftConstraint(Constraint):
    """Always passes. Missing data contributes 0."""
    is_hard = False


# ----------------------------------------------------------------------
# Hard constraints
# ----------------------------------------------------------------------

class TimeWindowConstraint(HardConstraint):
    name = "TimeWindow"

    def __init__(self, start_time: Optional[datetime] = None, end_time: Optional[datetime] = None, weight: float = 1.0):
        super().__init__(weight)
        self.start_time = start_time
        self.end_time = end_time

    def evaluate(self, node: EventNode, context: RetrievalContext) -> ConstraintResult:
        if node.start_time is None:
            return ConstraintResult.fail("node has no start time")
        if self.start_time is not None and node.start_time < self.start_time:
            return ConstraintResult.fail("before window start")
        if self.end_time is not None and node.start_time > self.end_time:
            return ConstraintResult.fail("after window end")
        return ConstraintResult.ok(reason="inside time window")


class LocationMatchConstraint(HardConstraint):
    name = "LocationMatch"

    def __init__(self, required_location: str, weight: float = 1.0):
        super().__init__(weight)
        self.required_location = required_location

    def evaluate(self, node: EventNode, context: RetrievalContext) -> ConstraintResult:
        if not node.location:
            return ConstraintResult.fail("node has no location")
        location = node.location.strip().lower()
        required = self.required_location.strip().lower()
        if required in location or location in required:
            return ConstraintResult.ok(reason="location matches")
        return ConstraintResult.fail("location mismatch")


class EntityPresenceConstraint(HardConstraint):
    """Every required entity id must be attached to the node."""
    name = "EntityPresence"

    def __init__(self, required_entity_ids: Sequence[str], weight: float = 1.0):
        super().__init__(weight)
        self.required_entity_ids = list(required_entity_ids)

    def evaluate(self, node: EventNode, context: RetrievalContext) -> ConstraintResult:
        if not self.required_entity_ids:
            return ConstraintResult.ok(reason="no entities required")
        if not node.entity_ids:
            return ConstraintResult.fail("node has no entities")
        missing = set(self.required_entity_ids) - set(node.entity_ids)
        if missing:
            return ConstraintResult.fail(f"missing entities: {sorted(missing)}")
        return ConstraintResult.ok(reason="all entities present")


# ----------------------------------------------------------------------
# Soft constraints
# ----------------------------------------------------------------------

class TemporalProximityConstraint(SoftConstraint):
    """Linear decay from 1 at the target time to 0 at max_distance."""
    name = "TemporalProximity"

    def __init__(self, target_time: Optional[datetime] = None, max_distance: timedelta = timedelta(days=7), weight: float = 1.0):
        super().__init__(weight)
        self.target_time = target_time
        self.max_distance = max_distance

    def evaluate(self, node: EventNode, context: RetrievalContext) -> ConstraintResult:
        if node.start_time is None:
            return ConstraintResult.ok(0.0, "node has no start time")
        target = self.target_time or context.query_time
        distance = abs((node.start_time - target).total_seconds())
        max_seconds = self.max_distance.total_seconds()
        if max_seconds <= 0 or distance > max_seconds:
            return ConstraintResult.ok(0.0, "outside proximity window")
        score = 1.0 - distance / max_seconds
        return ConstraintResult.ok(score * self.weight, f"{distance / 3600:.1f}h from target time")


def location_similarity(node_location: str, target: str) -> float:
    """1.0 exact, 0.7 substring either way, else 0.5 * shared tokens / target tokens."""
    a = node_location.strip().lower()
    b = target.strip().lower()
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0
    if a in b or b in a:
        return 0.7
    node_tokens = {t for t in _LOCATION_SEPARATORS.split(a) if t}
    target_tokens = [t for t in _LOCATION_SEPARATORS.split(b) if t]
    if not target_tokens:
        return 0.0
    common = sum(1 for t in target_tokens if t in node_tokens)
    return 0.5 * common / len(target_tokens)


class LocationSimilarityConstraint(SoftConstraint):
    name = "LocationSimilarity"

    def __init__(self, target_location: Optional[str] = None, weight: float = 1.0):
        super().__init__(weight)
        self.target_location = target_location

    def evaluate(self, node: EventNode, context: RetrievalContext) -> ConstraintResult:
        target = self.target_location or context.target_location
        if not target:
            return ConstraintResult.ok(0.0, "no target location")
        if not node.location:
            return ConstraintResult.ok(0.0, "node has no location")
        similarity = location_similarity(node.location, target)
        return ConstraintResult.ok(similarity * self.weight, f"location similarity {similarity:.0%}")


class FreshnessBoostConstraint(SoftConstraint):
    """Linear decay from 1 for a node seen at query time to 0 at the end of the window."""
    name = "FreshnessBoost"

    def __init__(self, recent_window: timedelta = timedelta(hours=24), weight: float = 1.0):
        super().__init__(weight)
        self.recent_window = recent_window

    def evaluate(self, node: EventNode, context: RetrievalContext) -> ConstraintResult:
        last_seen = node.last_seen_time or node.last_updated
        if last_seen is None:
            return ConstraintResult.ok(0.0, "node has no activity time")
        hours = max(0.0, (context.query_time - last_seen).total_seconds() / 3600.0)
        window_hours = self.recent_window.total_seconds() / 3600.0
        if window_hours <= 0 or hours > window_hours:
            return ConstraintResult.ok(0.0, "outside freshness window")
        freshness = 1.0 - hours / window_hours
        return ConstraintResult.ok(freshness * self.weight, f"freshness {freshness:.0%}")


class SemanticDriftPenaltyConstraint(SoftConstraint):
    """
    Extension point for penalising nodes whose relevance to the current topic
    is dropping. Contributes nothing until a penalty formula is chosen.
    """
    name = "SemanticDriftPenalty"

    def __init__(self, similarity_threshold: float = 0.3, weight: float = 1.0):
        super().__init__(weight)
        self.similarity_threshold = similarity_threshold

    def evaluate(self, node: EventNode, context: RetrievalContext) -> ConstraintResult:
        return ConstraintResult.ok(0.0, "semantic drift penalty not applied")


# ----------------------------------------------------------------------
# Presets
# ----------------------------------------------------------------------

def create_default_constraints(
    context: Optional[RetrievalContext] = None,
    config: Optional[RetrievalSettings] = None,
) -> List[Constraint]:
    """Soft-only set for general retrieval."""
    config = config or settings.retrieval
    target_time = context.query_time if context else None
    target_location = context.target_location if context else None

    constraints: List[Constraint] = [
        TemporalProximityConstraint(
            target_time=target_time,
            max_distance=timedelta(days=config.temporal_proximity_days),
            weight=config.temporal_proximity_weight,
        ),
    ]
    if target_location:
        constraints.append(LocationSimilarityConstraint(target_location, weight=config.location_similarity_weight))
    constraints.append(FreshnessBoostConstraint(
        recent_window=timedelta(hours=config.freshness_window_hours),
        weight=config.freshness_weight,
    ))
    return constraints


def create_strict_constraints(
    start_time: Optional[datetime] = None,
    end_time: Optional[datetime] = None,
    required_location: Optional[str] = None,
    required_entity_ids: Sequence[str] = (),
) -> List[Constraint]:
    """Hard-only set for precise queries."""
    constraints: List[Constraint] = []
    if start_time is not None or end_time is not None:
        constraints.append(TimeWindowConstraint(start_time, end_time))
    if required_location:
        constraints.append(LocationMatchConstraint(required_location))
    if required_entity_ids:
        constraints.append(EntityPresenceConstraint(required_entity_ids))
    return constraints


def constraints_for_context(
    context: RetrievalContext,
    config: Optional[RetrievalSettings] = None,
) -> List[Constraint]:
    """Default soft constraints, plus the strict hard ones the context asks for."""
    constraints = create_default_constraints(context, config)
    if context.is_strict:
        constraints = create_strict_constraints(
            context.time_window_start,
            context.time_window_end,
            context.required_location,
            context.target_entity_ids,
        ) + constraints
    return constraints
