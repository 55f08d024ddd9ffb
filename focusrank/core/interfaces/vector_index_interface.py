# focusrank/core/interfaces/vector_index_interface.py
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence, Tuple

from focusrank.modules.priority.models import EventNode


class VectorIndexInterface(ABC):
    """
    Interface for the embedding-similarity lookup over stored event nodes.
    """

    @abstractmethod
    async def top_k_by_embedding(
        self,
        query_vector: Sequence[float],
        k: int = 30,
        threshold: float = 0.0
    ) -> List[Tuple[EventNode, float]]:
        """
        Returns up to k (node, raw cosine similarity) pairs with similarity >= threshold,
        best first.
        """
        pass

    @abstractmethod
    async def get_event(self, node_id: str) -> Optional[EventNode]:
        pass

    @abstractmethod
    async def upsert_events(self, nodes: Sequence[EventNode]) -> None:
        pass
