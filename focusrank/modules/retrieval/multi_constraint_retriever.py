"""
Multi-Constraint Retriever
Turns topic labels into a ranked, constraint-filtered, pool-merged result set
"""

import asyncio
import logging
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from focusrank.config.settings import RetrievalSettings, settings
from focusrank.core.interfaces.embedding_service_interface import EmbeddingServiceInterface
from focusrank.core.interfaces.node_state_store_interface import NodeStateStoreInterface
from focusrank.core.interfaces.vector_index_interface import VectorIndexInterface
from focusrank.modules.priority.models import EventNode, EventRelation
from focusrank.modules.priority.priority_scorer import EventPriorityScorer
from focusrank.modules.retrieval.constraints import Constraint, constraints_for_context
from focusrank.modules.retrieval.models import CompositeWeights, RetrievalContext, ScoredNode
from focusrank.modules.retrieval.result_pool import ResultPool

logger = logging.getLogger(__name__)


class MultiConstraintRetriever:
    """
    Owns the result pool. Collaborator failures (embedding, index, store)
    produce an empty or partial round, never an exception.
    """

    def __init__(
        self,
        embedder: EmbeddingServiceInterface,
        index: VectorIndexInterface,
        scorer: Optional[EventPriorityScorer] = None,
        store: Optional[NodeStateStoreInterface] = None,
        pool: Optional[ResultPool] = None,
        config: Optional[RetrievalSettings] = None,
    ):
        self.config = config or settings.retrieval
        self.embedder = embedder
        self.index = index
        self.scorer = scorer
        self.store = store
        self.pool = pool or ResultPool(self.config.max_pool_size, CompositeWeights.from_settings(self.config))
        self._round_lock = asyncio.Lock()

    @property
    def weights(self) -> CompositeWeights:
        return self.pool.weights

    # ------------------------------------------------------------------
    # Collaborator calls
    # ------------------------------------------------------------------

    async def embed(self, text: str) -> Optional[List[float]]:
        try:
            vector = await self.embedder.embed_text(text)
        except Exception as e:
            logger.warning(f"[Retriever] Embedding failed for '{text}': {e}")
            return None
        if vector is None or len(vector) == 0:
            return None
        return [float(v) for v in vector]

    async def lookup(self, vector: List[float], top_k: int, threshold: float) -> List[Tuple[EventNode, float]]:
        try:
            return list(await self.index.top_k_by_embedding(vector, top_k, threshold))
        except Exception as e:
            logger.warning(f"[Retriever] Vector lookup failed: {e}")
            return []

    async def hydrate(self, nodes: Sequence[EventNode]) -> List[EventRelation]:
        """Load persisted activation state onto the nodes and collect their relations."""
        if self.store is None:
            return []

        relations: Dict[tuple, EventRelation] = {}
        for node in nodes:
            try:
                history, last_seen = await self.store.load_activation_state(node.id)
                if history or last_seen is not None:
                    node.set_activation_state(history, last_seen)
                for relation in await self.store.get_relations(node.id):
                    relations[relation.key] = relation
            except Exception as e:
                logger.warning(f"[Retriever] Could not load state for node {node.id}: {e}")
        return list(relations.values())

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    async def retrieve_and_score(
        self,
        topic: str,
        context: RetrievalContext,
        constraints: Optional[Sequence[Constraint]] = None,
        top_k: Optional[int] = None,
        similarity_threshold: Optional[float] = None,
    ) -> List[ScoredNode]:
        """One topic: embed, look up, rank with the priority scorer, filter, score."""
        now = context.query_time
        top_k = top_k or self.config.top_k
        threshold = self.config.similarity_threshold if similarity_threshold is None else similarity_threshold

        vector = await self.embed(topic)
        if vector is None:
            return []

        hits = await self.lookup(vector, top_k, threshold)
        if not hits:
            logger.debug(f"[Retriever] No candidates for topic '{topic}'")
            return []

        nodes: Dict[str, EventNode] = {}
        raw_similarity: Dict[str, float] = {}
        for node, similarity in hits:
            if node.id not in nodes:
                nodes[node.id] = node
                raw_similarity[node.id] = similarity

        relations = await self.hydrate(list(nodes.values()))

        priorities: Dict[str, float] = {}
        embedding_scores = dict(raw_similarity)
        if self.scorer is not None:
            ranked = self.scorer.rank_events(
                list(nodes.values()),
                vector,
                query_text=context.query_text or topic,
                relations=relations,
                now=now,
            )
            for result in ranked:
                embedding_scores[result.node.id] = result.final_score
                priorities[result.node.id] = result.priority

        if constraints is None:
            constraints = constraints_for_context(context, self.config)
        hard = [c for c in constraints if c.is_hard]
        soft = [c for c in constraints if not c.is_hard]

        scored: List[ScoredNode] = []
        rejected = 0
        for node_id, node in nodes.items():
            if any(not c.evaluate(node, context).passes for c in hard):
                rejected += 1
                continue

            entry = ScoredNode(
                node=node,
                embedding_score=embedding_scores[node_id],
                constraint_scores={c.name: c.evaluate(node, context).score_contribution for c in soft},
                last_updated=now,
                matched_topic=topic,
                priority=priorities.get(node_id),
                similarity=raw_similarity[node_id],
            )
            entry.compute_composite_score(self.weights, now)
            scored.append(entry)

        scored.sort(key=lambda s: s.composite_score, reverse=True)
        logger.info(f"[Retriever] Topic '{topic}': {len(scored)} scored, {rejected} rejected by hard constraints")
        return scored

    async def retrieve(
        self,
        topics: Sequence[str],
        context: RetrievalContext,
        constraints: Optional[Sequence[Constraint]] = None,
    ) -> List[ScoredNode]:
        """Run one round per topic in order, merging each into the pool. Returns the pool."""
        async with self._round_lock:
            for topic in dict.fromkeys(t.strip() for t in topics if t and t.strip()):
                scored = await self.retrieve_and_score(topic, context, constraints)
                await self.pool.merge(scored, context.query_time)
            return self.pool.snapshot()

    async def retrieve_multiple_topics(
        self,
        topics: Sequence[str],
        context: RetrievalContext,
        constraints: Optional[Sequence[Constraint]] = None,
        top_k_per_topic: int = 20,
        final_top_k: int = 20,
    ) -> List[ScoredNode]:
        """Stateless variant: merges topics by best score without touching the pool."""
        best: Dict[str, ScoredNode] = {}
        for topic in dict.fromkeys(t for t in topics if t):
            for entry in await self.retrieve_and_score(topic, context, constraints, top_k=top_k_per_topic):
                current = best.get(entry.node.id)
                if current is None or entry.composite_score > current.composite_score:
                    best[entry.node.id] = entry
        ordered = sorted(best.values(), key=lambda s: s.composite_score, reverse=True)
        return ordered[:final_top_k]

    async def update_weights(self, weights: CompositeWeights, now: Optional[datetime] = None) -> List[ScoredNode]:
        async with self._round_lock:
            return await self.pool.reweight(weights, now)

    def get_pool(self) -> List[ScoredNode]:
        return self.pool.snapshot()
