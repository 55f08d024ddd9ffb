"""
THE RELEVANCE ENGINE
Conversation in, currently relevant events out: focus tracking feeds topic retrieval
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Union

from pydantic import ValidationError

from focusrank.config.settings import Settings, settings as default_settings
from focusrank.core.interfaces.embedding_service_interface import EmbeddingServiceInterface
from focusrank.core.interfaces.focus_extractor_interface import FocusExtractorInterface
from focusrank.core.interfaces.node_state_store_interface import NodeStateStoreInterface
from focusrank.core.interfaces.vector_index_interface import VectorIndexInterface
from focusrank.modules.focus.llm_focus_extractor import LLMFocusExtractor
from focusrank.modules.focus.models import ConversationTurn, FocusUpdateDelta
from focusrank.modules.focus.state_machine import FocusStateMachine
from focusrank.modules.llm.ollama_client import OllamaClient
from focusrank.modules.priority.models import EventNode
from focusrank.modules.priority.priority_scorer import EventPriorityScorer
from focusrank.modules.retrieval.constraints import Constraint
from focusrank.modules.retrieval.models import CompositeWeights, RetrievalContext, ScoredNode
from focusrank.modules.retrieval.multi_constraint_retriever import MultiConstraintRetriever
from focusrank.modules.store.chromadb_event_index import ChromaEventIndex
from focusrank.modules.store.node_state_store import NodeStateStore
from focusrank.utils.exceptions import ParameterValidationError

logger = logging.getLogger(__name__)


class RelevanceEngine:
    """
    Wires the focus state machine, the priority scorer and the constrained
    retriever into one library boundary.

    Data flows between components by value: top focus labels become the
    retrieval topic list, node priorities feed the pool's composite score.

    Recoverable failures never surface here; the only exception a caller
    sees is ParameterValidationError from update_parameters().
    """

    def __init__(
        self,
        embedder: EmbeddingServiceInterface,
        index: VectorIndexInterface,
        extractor: Optional[FocusExtractorInterface] = None,
        store: Optional[NodeStateStoreInterface] = None,
        config: Optional[Settings] = None,
        state_machine: Optional[FocusStateMachine] = None,
        scorer: Optional[EventPriorityScorer] = None,
        retriever: Optional[MultiConstraintRetriever] = None,
    ):
        self.config = config or default_settings
        self.index = index
        # in-memory unless a persistent store is given
        self.store = store if store is not None else NodeStateStore()
        self.state_machine = state_machine or FocusStateMachine(extractor, self.config.focus)
        self.scorer = scorer or EventPriorityScorer(self.config.priority, self.store)
        self.retriever = retriever or MultiConstraintRetriever(
            embedder, index, self.scorer, self.store, config=self.config.retrieval
        )
        self._llm_client: Optional[OllamaClient] = None

        logger.info("[RelevanceEngine] Initialized")

    @classmethod
    async def create(
        cls,
        embedder: EmbeddingServiceInterface,
        config: Optional[Settings] = None,
        chroma_client: Optional[Any] = None,
    ) -> "RelevanceEngine":
        """
        Build an engine on the default adapters: Ollama for extraction,
        ChromaDB for the event index, a JSON file (or memory) for node state.
        """
        config = config or default_settings
        data_dir = config.storage.data_dir

        llm_client = OllamaClient()
        await llm_client.initialize({
            "ollama_base_url": config.llm.ollama_base_url,
            "ollama_model": config.llm.ollama_model,
            "request_timeout_seconds": config.llm.request_timeout_seconds,
        })

        index = ChromaEventIndex(
            persistence_directory=f"{data_dir}/chroma" if data_dir else None,
            collection_name=config.storage.chroma_collection,
            client=chroma_client,
        )
        await index.initialize()

        engine = cls(
            embedder=embedder,
            index=index,
            extractor=LLMFocusExtractor(llm_client),
            store=NodeStateStore(data_dir),
            config=config,
        )
        engine._llm_client = llm_client
        return engine

    async def close(self) -> None:
        if self._llm_client is not None:
            await self._llm_client.close()

    # ------------------------------------------------------------------
    # Inbound operations
    # ------------------------------------------------------------------

    async def ingest(self, turn: ConversationTurn) -> FocusUpdateDelta:
        return await self.state_machine.ingest(turn)

    async def retrieve(
        self,
        topics: Optional[Sequence[str]] = None,
        context: Optional[RetrievalContext] = None,
        constraints: Optional[Sequence[Constraint]] = None,
    ) -> List[ScoredNode]:
        """
        Run a retrieval round and return the merged pool.
        Without explicit topics the current top focus labels are used.
        """
        context = context or RetrievalContext()
        if topics is None:
            topics = self.get_top_focus_labels()
        topics = list(topics)
        context.focus_topics = topics

        if not topics:
            logger.debug("[RelevanceEngine] No topics to retrieve for; returning current pool")
            return self.retriever.get_pool()

        pool = await self.retriever.retrieve(topics, context, constraints)
        logger.info(f"[RelevanceEngine] Retrieved for {topics}: pool size {len(pool)}")
        return pool

    async def update_parameters(
        self,
        weights: Optional[Union[CompositeWeights, Dict[str, float]]] = None,
        **priority_changes: Any,
    ) -> Dict[str, Any]:
        """
        Update priority parameters (theta1..theta4, decay constants, strategy)
        and/or composite weights. Everything is validated before anything is
        applied, so a rejected call leaves the whole configuration unchanged.
        """
        new_params = self.scorer.validate_parameters(**priority_changes) if priority_changes else None

        new_weights: Optional[CompositeWeights] = None
        if weights is not None:
            if isinstance(weights, CompositeWeights):
                new_weights = weights
            else:
                try:
                    merged = self.retriever.weights.model_dump()
                    merged.update(weights)
                    new_weights = CompositeWeights(**merged)
                except ValidationError as e:
                    logger.warning(f"[RelevanceEngine] Rejected composite weights {weights}: {e.errors()}")
                    raise ParameterValidationError(str(e)) from e

        if new_params is not None:
            self.scorer.update_parameters(**new_params.model_dump())
        if new_weights is not None:
            await self.retriever.update_weights(new_weights)

        return self.get_configuration()

    async def record_activation(
        self,
        node_id: str,
        similarity: float,
        related_node_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Feedback from a consumer that node_id was actually relevant.
        Returns False when the node cannot be found.
        """
        node = await self._resolve_node(node_id)
        if node is None:
            logger.warning(f"[RelevanceEngine] record_activation: unknown node {node_id}")
            return False

        related = await self._resolve_node(related_node_id) if related_node_id else None
        if related_node_id and related is None:
            logger.warning(f"[RelevanceEngine] record_activation: unknown related node {related_node_id}")

        return await self.scorer.record_activation(node, similarity, related, now)

    async def _resolve_node(self, node_id: str) -> Optional[EventNode]:
        entry = self.retriever.pool.get(node_id)
        node = entry.node if entry is not None else None
        if node is None:
            try:
                node = await self.index.get_event(node_id)
            except Exception as e:
                logger.warning(f"[RelevanceEngine] Index lookup failed for {node_id}: {e}")
                return None
        if node is not None:
            # persisted state is the source of truth for activation history
            await self.retriever.hydrate([node])
        return node

    # ------------------------------------------------------------------
    # Outbound views
    # ------------------------------------------------------------------

    def get_pool(self) -> List[ScoredNode]:
        return self.retriever.get_pool()

    def get_top_focus_labels(self, n: Optional[int] = None) -> List[str]:
        return self.state_machine.get_top_labels(n or self.config.retrieval.default_top_topics)

    def get_configuration(self) -> Dict[str, Any]:
        return {
            "priority": self.scorer.get_configuration(),
            "composite_weights": self.retriever.weights.model_dump(),
            "max_pool_size": self.retriever.pool.max_size,
        }

    def get_diagnostics(self) -> Dict[str, Any]:
        pool = self.retriever.get_pool()
        return {
            "focus": self.state_machine.get_statistics(),
            "configuration": self.get_configuration(),
            "pool": {
                "size": len(pool),
                "merge_rounds": self.retriever.pool.merge_count,
                "top": [entry.to_dict() for entry in pool[:5]],
            },
            "store": self.store.stats() if isinstance(self.store, NodeStateStore) else None,
        }

    async def analyze_distribution(self, topic: str, context: Optional[RetrievalContext] = None) -> Dict[str, Any]:
        """Priority distribution of the candidates a topic would retrieve. Diagnostic only."""
        context = context or RetrievalContext()
        vector = await self.retriever.embed(topic)
        if vector is None:
            return self.scorer.analyze_distribution([], None)

        hits = await self.retriever.lookup(vector, self.config.retrieval.top_k, self.config.retrieval.similarity_threshold)
        nodes = list({node.id: node for node, _ in hits}.values())
        relations = await self.retriever.hydrate(nodes)
        return self.scorer.analyze_distribution(
            nodes, vector, query_text=context.query_text or topic, relations=relations, now=context.query_time
        )
