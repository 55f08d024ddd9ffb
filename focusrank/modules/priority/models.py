"""
Event node data model
The candidate records ranked by the priority scorer and the retrieval pool
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Deque, Dict, Iterable, List, Optional

MAX_ACTIVATION_HISTORY = 100


@dataclass(frozen=True)
class ActivationRecord:
    timestamp: datetime
    similarity: float = 1.0

    def to_dict(self) -> Dict[str, Any]:
        return {"timestamp": self.timestamp.isoformat(), "similarity": self.similarity}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ActivationRecord":
        return cls(
            timestamp=datetime.fromisoformat(data["timestamp"]),
            similarity=float(data.get("similarity", 1.0)),
        )


def _activation_deque(items: Optional[Iterable[ActivationRecord]] = None) -> Deque[ActivationRecord]:
    # maxlen evicts the oldest entry at insertion time
    return deque(items or [], maxlen=MAX_ACTIVATION_HISTORY)


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass
class EventNode:
    """
    An event record from the knowledge store.

    last_seen_time and activation_history are the mutable memory state the
    scorer reads (f_time, f_react) and record_activation writes.
    """
    id: str
    name: str = ""
    embedding: Optional[List[float]] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    location: Optional[str] = None
    purpose: Optional[str] = None
    result: Optional[str] = None
    description: Optional[str] = None
    entity_ids: List[str] = field(default_factory=list)
    last_seen_time: Optional[datetime] = None
    last_updated: Optional[datetime] = None
    activation_history: Deque[ActivationRecord] = field(default_factory=_activation_deque)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not isinstance(self.activation_history, deque) or self.activation_history.maxlen != MAX_ACTIVATION_HISTORY:
            self.activation_history = _activation_deque(self.activation_history)

    def add_activation(self, timestamp: datetime, similarity: float = 1.0) -> ActivationRecord:
        record = ActivationRecord(timestamp=timestamp, similarity=similarity)
        self.activation_history.append(record)
        if self.last_seen_time is None or timestamp > self.last_seen_time:
            self.last_seen_time = timestamp
        return record

    def set_activation_state(self, history: Iterable[ActivationRecord], last_seen_time: Optional[datetime]) -> None:
        self.activation_history = _activation_deque(history)
        if last_seen_time is not None:
            self.last_seen_time = last_seen_time

    @property
    def reference_time(self) -> Optional[datetime]:
        """Anchor for temporal decay: last seen, then start time, then last update."""
        return self.last_seen_time or self.start_time or self.last_updated

    @property
    def text(self) -> str:
        parts = [self.name, self.description, self.purpose, self.result]
        return " ".join(p for p in parts if p)

    def to_dict(self, include_embedding: bool = False) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "name": self.name,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "location": self.location,
            "purpose": self.purpose,
            "result": self.result,
            "description": self.description,
            "entity_ids": list(self.entity_ids),
            "last_seen_time": self.last_seen_time.isoformat() if self.last_seen_time else None,
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
            "activation_count": len(self.activation_history),
            "metadata": self.metadata,
        }
        if include_embedding:
            data["embedding"] = list(self.embedding) if self.embedding is not None else None
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EventNode":
        return cls(
            id=str(data["id"]),
            name=data.get("name") or "",
            embedding=data.get("embedding"),
            start_time=_parse_time(data.get("start_time")),
            end_time=_parse_time(data.get("end_time")),
            location=data.get("location"),
            purpose=data.get("purpose"),
            result=data.get("result"),
            description=data.get("description"),
            entity_ids=list(data.get("entity_ids") or []),
            last_seen_time=_parse_time(data.get("last_seen_time")),
            last_updated=_parse_time(data.get("last_updated")),
            metadata=dict(data.get("metadata") or {}),
        )


class RelationType:
    REVISIT = "revisit"
    PROGRESS_OF = "progress_of"
    CAUSAL = "causal"
    CONTAINS = "contains"
    TEMPORAL_SEQUENCE = "temporal_sequence"


EDGE_WEIGHTS: Dict[str, float] = {
    RelationType.REVISIT: 1.0,
    RelationType.PROGRESS_OF: 1.0,
    RelationType.CAUSAL: 0.8,
    RelationType.CONTAINS: 0.7,
    RelationType.TEMPORAL_SEQUENCE: 0.6,
}
DEFAULT_EDGE_WEIGHT = 0.5


def edge_weight(relation_type: str) -> float:
    return EDGE_WEIGHTS.get(relation_type, DEFAULT_EDGE_WEIGHT)


@dataclass(frozen=True)
class EventRelation:
    """Directed edge source -> target."""
    source_id: str
    target_id: str
    relation_type: str
    created_at: datetime = field(default_factory=datetime.now)
    description: Optional[str] = None

    @property
    def key(self):
        return (self.source_id, self.target_id, self.relation_type)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_id": self.source_id,
            "target_id": self.target_id,
            "relation_type": self.relation_type,
            "created_at": self.created_at.isoformat(),
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EventRelation":
        return cls(
            source_id=str(data["source_id"]),
            target_id=str(data["target_id"]),
            relation_type=data["relation_type"],
            created_at=_parse_time(data.get("created_at")) or datetime.now(),
            description=data.get("description"),
        )


@dataclass(frozen=True)
class PriorityComponents:
    f_time: float
    f_react: float
    f_sem: float
    f_diff: float

    def to_dict(self) -> Dict[str, float]:
        return {"f_time": self.f_time, "f_react": self.f_react, "f_sem": self.f_sem, "f_diff": self.f_diff}


@dataclass
class RankedEvent:
    node: EventNode
    priority: float
    cosine_similarity: float
    final_score: float
    components: PriorityComponents
    attention_weight: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node_id": self.node.id,
            "name": self.node.name,
            "priority": self.priority,
            "cosine_similarity": self.cosine_similarity,
            "final_score": self.final_score,
            "components": self.components.to_dict(),
            "attention_weight": self.attention_weight,
        }
