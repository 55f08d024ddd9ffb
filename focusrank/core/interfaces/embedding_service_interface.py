# focusrank/core/interfaces/embedding_service_interface.py
from abc import ABC, abstractmethod
from typing import List, Optional


class EmbeddingServiceInterface(ABC):
    """
    Interface for text embedding providers. The embedding model itself lives elsewhere.
    """

    @abstractmethod
    async def embed_text(self, text: str) -> Optional[List[float]]:
        """
        Returns the embedding for text, or None when none can be produced.
        """
        pass
