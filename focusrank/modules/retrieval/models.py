"""
Retrieval data model
Query context, composite-score weights and the scored wrapper held by the result pool
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from focusrank.config.settings import RetrievalSettings
from focusrank.modules.priority.models import EventNode

SECONDS_PER_HOUR = 3600.0


@dataclass
class RetrievalContext:
    """
    What the current query cares about. time_window_* and required_location
    feed the strict (hard) constraint preset; the rest feeds soft scoring.
    """
    query_time: datetime = field(default_factory=datetime.now)
    focus_topics: List[str] = field(default_factory=list)
    target_location: Optional[str] = None
    target_entity_ids: List[str] = field(default_factory=list)
    additional_context: Dict[str, Any] = field(default_factory=dict)
    time_window_start: Optional[datetime] = None
    time_window_end: Optional[datetime] = None
    required_location: Optional[str] = None
    query_text: Optional[str] = None

    @property
    def is_strict(self) -> bool:
        return (
            self.time_window_start is not None
            or self.time_window_end is not None
            or bool(self.required_location)
            or bool(self.target_entity_ids)
        )


class CompositeWeights(BaseModel):
    """composite = embedding * wE + sum(soft constraints) * wC + recency * wR"""
    embedding_weight: float = Field(0.4, ge=0)
    constraint_weight: float = Field(0.5, ge=0)
    recency_weight: float = Field(0.1, ge=0)
    staleness_hours: float = Field(24.0, gt=0)

    model_config = {"frozen": True, "extra": "forbid"}

    @classmethod
    def from_settings(cls, config: RetrievalSettings) -> "CompositeWeights":
        return cls(
            embedding_weight=config.embedding_weight,
            constraint_weight=config.constraint_weight,
            recency_weight=config.recency_weight,
            staleness_hours=config.staleness_hours,
        )


@dataclass
class ScoredNode:
    """
    A candidate node as it sits in the pool. last_updated is the pool entry's
    own timestamp, not the node's last activation.
    """
    node: EventNode
    embedding_score: float = 0.0
    constraint_scores: Dict[str, float] = field(default_factory=dict)
    composite_score: float = 0.0
    last_updated: datetime = field(default_factory=datetime.now)
    matched_topic: Optional[str] = None
    priority: Optional[float] = None
    similarity: Optional[float] = None

    @property
    def constraint_total(self) -> float:
        return sum(self.constraint_scores.values())

    def recency_factor(self, staleness_hours: float, now: Optional[datetime] = None) -> float:
        now = now or datetime.now()
        hours = max(0.0, (now - self.last_updated).total_seconds() / SECONDS_PER_HOUR)
        return 1.0 / (1.0 + hours / staleness_hours)

    def compute_composite_score(self, weights: Optional[CompositeWeights] = None, now: Optional[datetime] = None) -> float:
        weights = weights or CompositeWeights()
        self.composite_score = (
            self.embedding_score * weights.embedding_weight
            + self.constraint_total * weights.constraint_weight
            + self.recency_factor(weights.staleness_hours, now) * weights.recency_weight
        )
        return self.composite_score

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node_id": self.node.id,
            "node_name": self.node.name,
            "embedding_score": self.embedding_score,
            "constraint_scores": dict(self.constraint_scores),
            "composite_score": self.composite_score,
            "last_updated": self.last_updated.isoformat(),
            "matched_topic": self.matched_topic,
            "priority": self.priority,
            "similarity": self.similarity,
        }
