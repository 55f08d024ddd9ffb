"""
Focus data model
Tracks what the user is attending to across an open-ended conversation
"""

import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Deque, Dict, List, Optional, Set

from focusrank.utils.text_utils import normalize_label

MAX_MENTION_TIMESTAMPS = 100


class FocusType(Enum):
    EVENT = "event"    # Something that happened or will happen
    TOPIC = "topic"    # A subject being discussed
    ENTITY = "entity"  # Person, place, object, tool


class FocusState(Enum):
    EMERGING = "emerging"      # Just appeared
    ACTIVE = "active"          # Currently discussed
    BACKGROUND = "background"  # Discussed before, no longer in focus
    LATENT = "latent"          # Likely to come back soon
    FADING = "fading"          # On its way out


def _mention_deque(items=None) -> Deque[datetime]:
    return deque(sorted(items or []), maxlen=MAX_MENTION_TIMESTAMPS)


@dataclass
class FocusPoint:
    """
    One tracked unit of user attention (event, topic or entity).

    Holds multi-dimensional scores; salience is the weighted composite the
    state machine uses to place the focus in a tier.
    """
    type: FocusType
    canonical_label: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    aliases: Set[str] = field(default_factory=set)

    first_seen: datetime = field(default_factory=datetime.now)
    last_updated: datetime = field(default_factory=datetime.now)
    state: FocusState = FocusState.EMERGING

    salience_score: float = 0.5
    recency_score: float = 1.0
    repetition_score: float = 0.0
    emotional_score: float = 0.5
    causal_connectivity_score: float = 0.0
    drift_predictive_score: float = 0.0

    constraint_features: Dict[str, Any] = field(default_factory=dict)
    linked_focus_ids: Set[str] = field(default_factory=set)
    mention_count: int = 1
    mention_timestamps: Deque[datetime] = field(default_factory=deque)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.mention_timestamps:
            self.mention_timestamps = [self.last_updated]
        self.mention_timestamps = _mention_deque(self.mention_timestamps)
        self.mention_count = max(1, self.mention_count)
        self.linked_focus_ids = set(self.linked_focus_ids)
        self.aliases = {a for a in self.aliases if a and not self._is_canonical(a)}

    def _is_canonical(self, label: str) -> bool:
        return normalize_label(label) == normalize_label(self.canonical_label)

    @property
    def normalized_label(self) -> str:
        return normalize_label(self.canonical_label)

    def has_alias(self, label: str) -> bool:
        target = normalize_label(label)
        return any(normalize_label(alias) == target for alias in self.aliases)

    def add_alias(self, label: str) -> None:
        if label and not self._is_canonical(label) and not self.has_alias(label):
            self.aliases.add(label)

    def record_mention(self, timestamp: Optional[datetime] = None) -> None:
        """Record a new mention; the deque keeps the newest 100 timestamps."""
        time = timestamp or datetime.now()
        self.mention_count += 1
        if self.mention_timestamps and time < self.mention_timestamps[-1]:
            self.mention_timestamps = _mention_deque(list(self.mention_timestamps) + [time])
        else:
            self.mention_timestamps.append(time)
        if time > self.last_updated:
            self.last_updated = time

    def update_state(self, new_state: FocusState) -> None:
        # Tier changes are not mentions; last_updated drives recency and must not move here.
        self.state = new_state

    def merge_with(self, other: "FocusPoint") -> None:
        """Absorb a duplicate focus (alias, repeated mention or fuzzy match)."""
        for alias in other.aliases:
            self.add_alias(alias)
        self.add_alias(other.canonical_label)

        self.mention_count += other.mention_count
        self.mention_timestamps = _mention_deque(
            list(self.mention_timestamps) + list(other.mention_timestamps)
        )

        if other.first_seen < self.first_seen:
            self.first_seen = other.first_seen
        if other.last_updated > self.last_updated:
            self.last_updated = other.last_updated

        self.constraint_features.update(other.constraint_features)
        self.linked_focus_ids |= other.linked_focus_ids
        self.linked_focus_ids.discard(self.id)
        self.metadata.update(other.metadata)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "canonical_label": self.canonical_label,
            "aliases": sorted(self.aliases),
            "first_seen": self.first_seen.isoformat(),
            "last_updated": self.last_updated.isoformat(),
            "state": self.state.value,
            "salience_score": self.salience_score,
            "recency_score": self.recency_score,
            "repetition_score": self.repetition_score,
            "emotional_score": self.emotional_score,
            "causal_connectivity_score": self.causal_connectivity_score,
            "drift_predictive_score": self.drift_predictive_score,
            "constraint_features": self.constraint_features,
            "linked_focus_ids": sorted(self.linked_focus_ids),
            "mention_count": self.mention_count,
            "mention_timestamps": [t.isoformat() for t in self.mention_timestamps],
            "metadata": self.metadata,
        }


@dataclass(frozen=True)
class FocusTransition:
    """Append-only record of attention moving from one focus to another."""
    timestamp: datetime
    to_focus_id: str
    from_focus_id: Optional[str] = None
    transition_strength: float = 0.5
    reason: str = ""

    def __post_init__(self):
        # frozen: clamp through object.__setattr__
        object.__setattr__(self, "transition_strength", min(1.0, max(0.0, self.transition_strength)))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "from_focus_id": self.from_focus_id,
            "to_focus_id": self.to_focus_id,
            "transition_strength": self.transition_strength,
            "reason": self.reason,
        }


@dataclass
class FocusCandidate:
    """A focus proposed by an extractor, before it is merged into state."""
    type: FocusType
    label: str
    aliases: Set[str] = field(default_factory=set)
    emotional_score: float = 0.5
    linked_labels: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    source: str = "extractor"

    def to_focus_point(self, timestamp: datetime) -> FocusPoint:
        metadata = dict(self.metadata)
        metadata.setdefault("source", self.source)
        return FocusPoint(
            type=self.type,
            canonical_label=self.label.strip(),
            aliases=set(self.aliases),
            first_seen=timestamp,
            last_updated=timestamp,
            emotional_score=min(1.0, max(0.0, self.emotional_score)),
            mention_timestamps=[timestamp],
            metadata=metadata,
        )


@dataclass
class ConversationTurn:
    """One conversational turn as delivered by the upstream understanding pipeline."""
    content: str
    timestamp: datetime = field(default_factory=datetime.now)
    entities: List[str] = field(default_factory=list)
    intent: str = ""
    emotion: str = "neutral"
    additional_context: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
            "entities": list(self.entities),
            "intent": self.intent,
            "emotion": self.emotion,
            "additional_context": self.additional_context,
        }


@dataclass
class FocusUpdateDelta:
    """What changed in focus state during one ingest call."""
    added: List[FocusPoint]
    updated: List[FocusPoint]
    removed: List[str]
    transitions: List[FocusTransition]
    extraction_outcome: str = "extracted"
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "added": [f.to_dict() for f in self.added],
            "updated": [f.to_dict() for f in self.updated],
            "removed": list(self.removed),
            "transitions": [t.to_dict() for t in self.transitions],
            "extraction_outcome": self.extraction_outcome,
            "timestamp": self.timestamp.isoformat(),
        }
