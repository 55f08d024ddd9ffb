from focusrank.core.interfaces.embedding_service_interface import EmbeddingServiceInterface
from focusrank.core.interfaces.focus_extractor_interface import FocusExtractorInterface
from focusrank.core.interfaces.node_state_store_interface import NodeStateStoreInterface
from focusrank.core.interfaces.vector_index_interface import VectorIndexInterface

__all__ = [
    "EmbeddingServiceInterface",
    "FocusExtractorInterface",
    "NodeStateStoreInterface",
    "VectorIndexInterface",
]
