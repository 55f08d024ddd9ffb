"""
Dynamic Event Priority Scoring
P = theta1 * f_time + theta2 * f_react + theta3 * f_sem + theta4 * f_diff

f_time   temporal decay from the node's last activation
f_react  reinstatement signal from the node's activation history
f_sem    semantic alignment with the query vector
f_diff   attention diffused from graph neighbours
"""

import logging
import math
import re
from collections import defaultdict
from datetime import datetime
from typing import Any, Dict, Iterable, List, Literal, Optional, Sequence, Tuple

import numpy as np
from pydantic import BaseModel, Field, ValidationError, model_validator

from focusrank.config.settings import PrioritySettings, settings
from focusrank.core.interfaces.node_state_store_interface import NodeStateStoreInterface
from focusrank.modules.priority.models import (
    EventNode,
    EventRelation,
    PriorityComponents,
    RankedEvent,
    RelationType,
    edge_weight,
)
from focusrank.utils.exceptions import ParameterValidationError

logger = logging.getLogger(__name__)

ScoringStrategy = Literal["multiplicative", "softmax"]
SECONDS_PER_DAY = 86400.0
THETA_TOLERANCE = 1e-6

# Relative time expressions, most specific first. Each tier maps to a lambda multiplier.
_IMMEDIATE_EXPRESSIONS = [
    r"\bjust now\b", r"\ba moment ago\b", r"\bmoments ago\b", r"\ba few minutes ago\b", r"\bjust a minute ago\b",
    "刚才", "刚刚",
]
_DAY_EXPRESSIONS = [
    r"\btoday\b", r"\byesterday\b", r"\btomorrow\b", r"\btonight\b", r"\blast night\b",
    r"\bthis (?:morning|afternoon|evening)\b",
    "今天", "昨天", "明天", "前天", "后天", "早上", "中午", "晚上",
]
_PERIOD_EXPRESSIONS = [
    r"\b(?:this|last|next|past) (?:week|month)\b", r"\brecently\b", r"\blately\b", r"\bthese days\b",
    "上周", "本周", "下周", "上月", "本月", "下月", "最近", "近期",
]
DAY_LEVEL_BOOST = 3.0


def _compile(expressions: List[str]) -> re.Pattern:
    return re.compile("|".join(expressions), re.IGNORECASE)


_IMMEDIATE_PATTERN = _compile(_IMMEDIATE_EXPRESSIONS)
_DAY_PATTERN = _compile(_DAY_EXPRESSIONS)
_PERIOD_PATTERN = _compile(_PERIOD_EXPRESSIONS)


class PriorityParameters(BaseModel):
    """Validated, immutable scorer configuration. Swapped as a whole on update."""
    decay_lambda: float = Field(0.01, ge=0)
    alpha: float = Field(1.0, ge=0)
    beta: float = Field(0.01, ge=0)
    gamma: float = Field(0.5, ge=0)
    max_hops: int = Field(1, ge=1)
    theta1: float = Field(0.3, ge=0)
    theta2: float = Field(0.4, ge=0)
    theta3: float = Field(0.2, ge=0)
    theta4: float = Field(0.1, ge=0)
    strategy: ScoringStrategy = "multiplicative"
    temporal_boost_min: float = Field(2.0, ge=1)
    temporal_boost_max: float = Field(5.0, ge=1)

    model_config = {"frozen": True, "extra": "forbid"}

    @model_validator(mode="after")
    def _check_weights(self) -> "PriorityParameters":
        total = self.theta1 + self.theta2 + self.theta3 + self.theta4
        if abs(total - 1.0) > THETA_TOLERANCE:
            raise ValueError(f"theta1..theta4 must sum to 1.0, got {total:.6f}")
        if self.temporal_boost_min > self.temporal_boost_max:
            raise ValueError("temporal_boost_min must not exceed temporal_boost_max")
        return self

    @classmethod
    def from_settings(cls, config: PrioritySettings) -> "PriorityParameters":
        return cls(**config.model_dump())


def cosine_similarity(a: Optional[Sequence[float]], b: Optional[Sequence[float]]) -> Optional[float]:
    """Cosine of two vectors, or None when either is missing, empty, zero or the sizes differ."""
    if a is None or b is None:
        return None
    va = np.asarray(a, dtype=float)
    vb = np.asarray(b, dtype=float)
    if va.size == 0 or va.shape != vb.shape:
        return None
    norm = np.linalg.norm(va) * np.linalg.norm(vb)
    if norm == 0:
        return None
    return float(np.clip(np.dot(va, vb) / norm, -1.0, 1.0))


def _days_between(earlier: datetime, now: datetime) -> float:
    return max(0.0, (now - earlier).total_seconds() / SECONDS_PER_DAY)


class EventPriorityScorer:
    """
    Stateless apart from its parameters. Per-node memory state lives on the
    node and is persisted through the optional node-state store.
    """

    def __init__(
        self,
        config: Optional[PrioritySettings] = None,
        store: Optional[NodeStateStoreInterface] = None,
        parameters: Optional[PriorityParameters] = None,
    ):
        self._params = parameters or PriorityParameters.from_settings(config or settings.priority)
        self.store = store

    @property
    def parameters(self) -> PriorityParameters:
        return self._params

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------

    def detect_temporal_expression(self, query_text: Optional[str], params: Optional[PriorityParameters] = None) -> float:
        """
        Lambda multiplier for a query. Only lives for the scoring call it was computed for.
        """
        params = params or self._params
        if not query_text:
            return 1.0
        if _IMMEDIATE_PATTERN.search(query_text):
            boost = params.temporal_boost_max
        elif _DAY_PATTERN.search(query_text):
            boost = min(params.temporal_boost_max, max(params.temporal_boost_min, DAY_LEVEL_BOOST))
        elif _PERIOD_PATTERN.search(query_text):
            boost = params.temporal_boost_min
        else:
            return 1.0
        logger.debug(f"[PriorityScorer] Relative time expression in query, lambda x{boost}")
        return boost

    def temporal_decay(
        self,
        node: EventNode,
        now: Optional[datetime] = None,
        lambda_multiplier: float = 1.0,
        params: Optional[PriorityParameters] = None,
    ) -> float:
        params = params or self._params
        anchor = node.reference_time
        if anchor is None:
            return 0.0
        now = now or datetime.now()
        return math.exp(-params.decay_lambda * lambda_multiplier * _days_between(anchor, now))

    def reactivation_signal(
        self,
        node: EventNode,
        now: Optional[datetime] = None,
        params: Optional[PriorityParameters] = None,
    ) -> float:
        params = params or self._params
        if not node.activation_history:
            return 0.0
        now = now or datetime.now()
        return sum(
            params.alpha * record.similarity * math.exp(-params.beta * _days_between(record.timestamp, now))
            for record in node.activation_history
        )

    def semantic_alignment(self, query_vector: Optional[Sequence[float]], node: EventNode) -> float:
        cosine = cosine_similarity(query_vector, node.embedding)
        if cosine is None:
            return 0.0
        return (cosine + 1.0) / 2.0

    def attention_diffusion(
        self,
        node_id: str,
        base_priorities: Dict[str, float],
        adjacency: Dict[str, List[Tuple[str, str]]],
        params: Optional[PriorityParameters] = None,
    ) -> float:
        """
        Breadth-first over outgoing edges up to max_hops. A neighbour at hop h
        contributes gamma^h * (product of edge weights on the path) * its base
        priority. Neighbours outside the batch contribute nothing.
        """
        params = params or self._params
        visited = {node_id}
        frontier = [(node_id, 1.0)]
        total = 0.0

        for hop in range(1, params.max_hops + 1):
            next_frontier = []
            for current_id, path_weight in frontier:
                for target_id, relation_type in adjacency.get(current_id, []):
                    if target_id in visited:
                        continue
                    visited.add(target_id)
                    weight = path_weight * edge_weight(relation_type)
                    total += (params.gamma ** hop) * weight * base_priorities.get(target_id, 0.0)
                    next_frontier.append((target_id, weight))
            if not next_frontier:
                break
            frontier = next_frontier

        return total

    @staticmethod
    def build_adjacency(relations: Optional[Iterable[EventRelation]]) -> Dict[str, List[Tuple[str, str]]]:
        adjacency: Dict[str, List[Tuple[str, str]]] = defaultdict(list)
        seen = set()
        for relation in relations or []:
            if relation.key in seen or relation.source_id == relation.target_id:
                continue
            seen.add(relation.key)
            adjacency[relation.source_id].append((relation.target_id, relation.relation_type))
        return adjacency

    # ------------------------------------------------------------------
    # Priority
    # ------------------------------------------------------------------

    def _combine(self, components: PriorityComponents, params: PriorityParameters) -> float:
        return (
            params.theta1 * components.f_time
            + params.theta2 * components.f_react
            + params.theta3 * components.f_sem
            + params.theta4 * components.f_diff
        )

    def calculate_priority(
        self,
        node: EventNode,
        query_vector: Optional[Sequence[float]],
        now: Optional[datetime] = None,
        query_text: Optional[str] = None,
    ) -> Tuple[float, PriorityComponents]:
        """Single-node priority without graph diffusion (f_diff = 0)."""
        params = self._params
        now = now or datetime.now()
        boost = self.detect_temporal_expression(query_text, params)
        components = PriorityComponents(
            f_time=self.temporal_decay(node, now, boost, params),
            f_react=self.reactivation_signal(node, now, params),
            f_sem=self.semantic_alignment(query_vector, node),
            f_diff=0.0,
        )
        return self._combine(components, params), components

    def calculate_batch_priorities(
        self,
        nodes: Sequence[EventNode],
        query_vector: Optional[Sequence[float]],
        now: Optional[datetime] = None,
        query_text: Optional[str] = None,
        relations: Optional[Iterable[EventRelation]] = None,
        enable_diffusion: bool = True,
    ) -> Dict[str, Tuple[float, PriorityComponents]]:
        """
        Two passes: base priorities first, then diffusion computed only from
        those base values so no node sees its own in-progress score.
        """
        params = self._params
        now = now or datetime.now()
        boost = self.detect_temporal_expression(query_text, params)

        base_components: Dict[str, PriorityComponents] = {}
        base_priorities: Dict[str, float] = {}
        for node in nodes:
            components = PriorityComponents(
                f_time=self.temporal_decay(node, now, boost, params),
                f_react=self.reactivation_signal(node, now, params),
                f_sem=self.semantic_alignment(query_vector, node),
                f_diff=0.0,
            )
            base_components[node.id] = components
            base_priorities[node.id] = self._combine(components, params)

        if not enable_diffusion or params.theta4 <= 0:
            return {node_id: (base_priorities[node_id], c) for node_id, c in base_components.items()}

        adjacency = self.build_adjacency(relations)
        results: Dict[str, Tuple[float, PriorityComponents]] = {}
        for node_id, base in base_components.items():
            f_diff = self.attention_diffusion(node_id, base_priorities, adjacency, params)
            components = PriorityComponents(base.f_time, base.f_react, base.f_sem, f_diff)
            results[node_id] = (self._combine(components, params), components)
        return results

    def rank_events(
        self,
        candidates: Sequence[EventNode],
        query_vector: Optional[Sequence[float]],
        query_text: Optional[str] = None,
        relations: Optional[Iterable[EventRelation]] = None,
        top_k: Optional[int] = None,
        now: Optional[datetime] = None,
        enable_diffusion: bool = True,
    ) -> List[RankedEvent]:
        """
        multiplicative: score = cos * (1 + P)
        softmax:        score = cos * softmax(P over the batch)
        """
        if not candidates:
            return []

        params = self._params
        priorities = self.calculate_batch_priorities(
            candidates, query_vector, now, query_text, relations, enable_diffusion
        )

        ranked: List[RankedEvent] = []
        for node in candidates:
            priority, components = priorities[node.id]
            cosine = cosine_similarity(query_vector, node.embedding) or 0.0
            ranked.append(RankedEvent(
                node=node,
                priority=priority,
                cosine_similarity=cosine,
                final_score=cosine * (1.0 + priority),
                components=components,
            ))

        if params.strategy == "softmax":
            scores = np.array([r.priority for r in ranked], dtype=float)
            exp_scores = np.exp(scores - scores.max())
            attention = exp_scores / exp_scores.sum()
            for result, share in zip(ranked, attention):
                result.attention_weight = float(share)
                result.final_score = result.cosine_similarity * float(share)

        ranked.sort(key=lambda r: r.final_score, reverse=True)
        return ranked[:top_k] if top_k is not None else ranked

    # ------------------------------------------------------------------
    # Feedback and configuration
    # ------------------------------------------------------------------

    async def record_activation(
        self,
        node: EventNode,
        similarity: float,
        related_node: Optional[EventNode] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Append an activation, persist it, and link related_node -> node with a
        revisit edge unless a revisit or progress edge already exists.
        Returns False when persistence failed; the in-memory node is updated regardless.
        """
        now = now or datetime.now()
        node.add_activation(now, similarity)
        logger.info(f"[PriorityScorer] Activation recorded: {node.name or node.id}, similarity={similarity:.3f}")

        if self.store is None:
            return True

        try:
            await self.store.save_activation_state(node)
            if related_node is not None and related_node.id != node.id:
                existing = await self.store.get_relations(related_node.id)
                already_linked = any(
                    r.source_id == related_node.id
                    and r.target_id == node.id
                    and r.relation_type in (RelationType.REVISIT, RelationType.PROGRESS_OF)
                    for r in existing
                )
                if not already_linked:
                    await self.store.add_relation(EventRelation(
                        source_id=related_node.id,
                        target_id=node.id,
                        relation_type=RelationType.REVISIT,
                        created_at=now,
                        description="revisited from an earlier event",
                    ))
                    logger.info(f"[PriorityScorer] Revisit edge {related_node.id} -> {node.id}")
        except Exception as e:
            logger.warning(f"[PriorityScorer] Failed to persist activation for {node.id}: {e}")
            return False
        return True

    def validate_parameters(self, **changes: Any) -> PriorityParameters:
        """Current parameters with changes applied, validated but not installed."""
        merged = self._params.model_dump()
        merged.update({k: v for k, v in changes.items() if v is not None})
        try:
            return PriorityParameters(**merged)
        except ValidationError as e:
            logger.warning(f"[PriorityScorer] Rejected parameter update {changes}: {e.errors()}")
            raise ParameterValidationError(str(e)) from e

    def update_parameters(self, **changes: Any) -> PriorityParameters:
        """
        Validate the merged configuration and swap it in as a whole.
        Raises ParameterValidationError and keeps the previous parameters on rejection.
        """
        new_params = self.validate_parameters(**changes)
        self._params = new_params
        logger.info(f"[PriorityScorer] Parameters updated: {changes}")
        return new_params

    def get_configuration(self) -> Dict[str, Any]:
        params = self._params
        return {
            "temporal_decay": {
                "lambda": params.decay_lambda,
                "boost_range": [params.temporal_boost_min, params.temporal_boost_max],
            },
            "reactivation": {"alpha": params.alpha, "beta": params.beta},
            "graph_diffusion": {"gamma": params.gamma, "max_hops": params.max_hops},
            "weights": {
                "theta1_time": params.theta1,
                "theta2_react": params.theta2,
                "theta3_sem": params.theta3,
                "theta4_diff": params.theta4,
            },
            "strategy": params.strategy,
        }

    def analyze_distribution(
        self,
        nodes: Sequence[EventNode],
        query_vector: Optional[Sequence[float]],
        query_text: Optional[str] = None,
        relations: Optional[Iterable[EventRelation]] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Diagnostic summary of batch priorities, for tuning only."""
        if not nodes:
            return {
                "total_nodes": 0,
                "min_score": 0.0,
                "max_score": 0.0,
                "avg_score": 0.0,
                "median_score": 0.0,
                "score_distribution": {"low": 0, "medium": 0, "high": 0, "very_high": 0},
            }

        priorities = self.calculate_batch_priorities(nodes, query_vector, now, query_text, relations)
        scores = np.array([p for p, _ in priorities.values()], dtype=float)
        return {
            "total_nodes": len(nodes),
            "min_score": float(scores.min()),
            "max_score": float(scores.max()),
            "avg_score": float(scores.mean()),
            "median_score": float(np.median(scores)),
            "score_distribution": {
                "low": int(np.sum(scores < 0.2)),
                "medium": int(np.sum((scores >= 0.2) & (scores < 0.5))),
                "high": int(np.sum((scores >= 0.5) & (scores < 0.8))),
                "very_high": int(np.sum(scores >= 0.8)),
            },
        }
