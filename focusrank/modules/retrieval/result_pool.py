"""
Result Pool
Bounded, continuity-preserving set of the currently most relevant nodes
"""

import asyncio
import copy
import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from focusrank.modules.retrieval.models import CompositeWeights, ScoredNode

logger = logging.getLogger(__name__)


class ResultPool:
    """
    Size-bounded cache whose eviction key is the lowest composite score.

    merge() is the only mutation point. Entries are keyed by node id, so the
    pool cannot hold duplicates, and it is truncated after every merge, so it
    cannot exceed max_size.
    """

    def __init__(self, max_size: int = 20, weights: Optional[CompositeWeights] = None):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self.weights = weights or CompositeWeights()
        self._entries: Dict[str, ScoredNode] = {}
        self._ordered: List[ScoredNode] = []
        self._lock = asyncio.Lock()
        self._merge_count = 0

    async def merge(self, new_nodes: Iterable[ScoredNode], now: Optional[datetime] = None) -> List[ScoredNode]:
        async with self._lock:
            return self._merge(list(new_nodes), now or datetime.now())

    def _merge(self, new_nodes: List[ScoredNode], now: datetime) -> List[ScoredNode]:
        # Held entries are compared on their stored score; only reweight() rescores them
        inserted = replaced = kept = 0
        for candidate in new_nodes:
            candidate.compute_composite_score(self.weights, now)
            node_id = candidate.node.id
            existing = self._entries.get(node_id)
            if existing is None:
                self._entries[node_id] = candidate
                inserted += 1
            elif candidate.composite_score > existing.composite_score:
                self._entries[node_id] = candidate
                replaced += 1
            else:
                # keep the old score and timestamp to avoid oscillation
                kept += 1

        ordered = sorted(self._entries.values(), key=lambda s: s.composite_score, reverse=True)
        evicted = ordered[self.max_size:]
        self._ordered = ordered[:self.max_size]
        self._entries = {entry.node.id: entry for entry in self._ordered}
        self._merge_count += 1

        logger.debug(
            f"[Pool] Merge #{self._merge_count}: +{inserted} replaced={replaced} kept={kept} "
            f"evicted={len(evicted)} size={len(self._ordered)}"
        )
        return self.snapshot()

    async def reweight(self, weights: CompositeWeights, now: Optional[datetime] = None) -> List[ScoredNode]:
        """Swap composite weights and rescore every held entry under them."""
        async with self._lock:
            self.weights = weights
            now = now or datetime.now()
            for entry in self._entries.values():
                entry.compute_composite_score(weights, now)
            return self._merge([], now)

    def snapshot(self) -> List[ScoredNode]:
        return copy.deepcopy(self._ordered)

    def ids(self) -> List[str]:
        return [entry.node.id for entry in self._ordered]

    def get(self, node_id: str) -> Optional[ScoredNode]:
        entry = self._entries.get(node_id)
        return copy.deepcopy(entry) if entry is not None else None

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()
            self._ordered = []

    @property
    def merge_count(self) -> int:
        return self._merge_count

    def __len__(self) -> int:
        return len(self._ordered)
