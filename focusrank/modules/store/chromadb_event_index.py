import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

import chromadb
from chromadb.config import Settings as ChromaSettings

from focusrank.config.settings import settings
from focusrank.core.interfaces.vector_index_interface import VectorIndexInterface
from focusrank.modules.priority.models import EventNode

logger = logging.getLogger(__name__)

_TIME_FIELDS = ("start_time", "end_time", "last_seen_time", "last_updated")
_TEXT_FIELDS = ("name", "location", "purpose", "result", "description")


def node_to_metadata(node: EventNode) -> Dict[str, Any]:
    """Chroma metadata only holds scalars: drop None, JSON-encode lists and dicts."""
    metadata: Dict[str, Any] = {}
    for field_name in _TEXT_FIELDS:
        value = getattr(node, field_name)
        if value:
            metadata[field_name] = value
    for field_name in _TIME_FIELDS:
        value = getattr(node, field_name)
        if value is not None:
            metadata[field_name] = value.isoformat()
    if node.entity_ids:
        metadata["entity_ids"] = json.dumps(list(node.entity_ids))
    if node.metadata:
        metadata["extra"] = json.dumps(node.metadata, ensure_ascii=False, default=str)
    return metadata


def metadata_to_node(node_id: str, metadata: Optional[Dict[str, Any]], embedding: Any = None) -> EventNode:
    metadata = metadata or {}
    times = {
        f: datetime.fromisoformat(metadata[f]) if metadata.get(f) else None
        for f in _TIME_FIELDS
    }
    return EventNode(
        id=node_id,
        name=metadata.get("name", ""),
        embedding=[float(v) for v in embedding] if embedding is not None else None,
        location=metadata.get("location"),
        purpose=metadata.get("purpose"),
        result=metadata.get("result"),
        description=metadata.get("description"),
        entity_ids=json.loads(metadata["entity_ids"]) if metadata.get("entity_ids") else [],
        metadata=json.loads(metadata["extra"]) if metadata.get("extra") else {},
        **times,
    )


class ChromaEventIndex(VectorIndexInterface):
    """
    Event nodes in a cosine-space ChromaDB collection.
    Similarity is reported as 1 - cosine distance.
    """

    def __init__(
        self,
        persistence_directory: Optional[str] = None,
        collection_name: Optional[str] = None,
        client: Optional[Any] = None,
    ):
        self.db_path = persistence_directory
        self.collection_name = collection_name or settings.storage.chroma_collection
        self.client = client
        self.collection = None

    async def initialize(self) -> None:
        if self.client is None:
            if self.db_path:
                self.client = chromadb.PersistentClient(
                    path=self.db_path,
                    settings=ChromaSettings(anonymized_telemetry=False)
                )
                logger.info(f"ChromaDB client initialized for local path: {self.db_path}")
            else:
                self.client = chromadb.EphemeralClient(settings=ChromaSettings(anonymized_telemetry=False))
                logger.info("ChromaDB client initialized in memory")

        self.collection = self.client.get_or_create_collection(
            name=self.collection_name,
            metadata={"hnsw:space": "cosine"}
        )
        logger.info(f"ChromaDB collection '{self.collection_name}' ready with {self.collection.count()} items")

    async def _ensure_initialized(self) -> None:
        if self.collection is None:
            logger.warning("ChromaEventIndex auto-initializing collection on demand (explicit .initialize() was not called).")
            await self.initialize()

    async def upsert_events(self, nodes: Sequence[EventNode]) -> None:
        await self._ensure_initialized()
        nodes = [n for n in nodes if n.embedding]
        if not nodes:
            return

        logger.info(f"Upserting {len(nodes)} events into collection '{self.collection_name}'...")
        try:
            self.collection.upsert(
                ids=[n.id for n in nodes],
                embeddings=[list(map(float, n.embedding)) for n in nodes],
                metadatas=[node_to_metadata(n) for n in nodes],
                documents=[n.text or n.id for n in nodes],
            )
        except Exception as e:
            logger.error(f"Failed to upsert events into ChromaDB: {e}", exc_info=True)
            raise

    async def top_k_by_embedding(
        self,
        query_vector: Sequence[float],
        k: int = 30,
        threshold: float = 0.0
    ) -> List[Tuple[EventNode, float]]:
        await self._ensure_initialized()
        if not query_vector or any(v is None for v in query_vector):
            logger.warning("[ChromaDB] Invalid query vector")
            return []

        count = self.collection.count()
        if count == 0:
            return []

        results = self.collection.query(
            query_embeddings=[[float(v) for v in query_vector]],
            n_results=min(k, count),
            include=["embeddings", "metadatas", "distances"],
        )

        ids = (results.get("ids") or [[]])[0]
        metadatas = (results.get("metadatas") or [[]])[0] or []
        distances = (results.get("distances") or [[]])[0] or []
        embeddings = results.get("embeddings")
        embeddings = embeddings[0] if embeddings is not None and len(embeddings) else []

        hits: List[Tuple[EventNode, float]] = []
        for i, node_id in enumerate(ids):
            distance = distances[i] if i < len(distances) and distances[i] is not None else 2.0
            similarity = 1.0 - float(distance)
            if similarity < threshold:
                continue
            embedding = embeddings[i] if i < len(embeddings) else None
            metadata = metadatas[i] if i < len(metadatas) else {}
            hits.append((metadata_to_node(str(node_id), metadata, embedding), similarity))

        hits.sort(key=lambda h: h[1], reverse=True)
        logger.debug(f"[ChromaDB] top_k returned {len(hits)} of {len(ids)} above threshold {threshold}")
        return hits

    async def get_event(self, node_id: str) -> Optional[EventNode]:
        await self._ensure_initialized()
        result = self.collection.get(ids=[node_id], include=["embeddings", "metadatas"])
        ids = result.get("ids") or []
        if not ids:
            return None
        embeddings = result.get("embeddings")
        embedding = embeddings[0] if embeddings is not None and len(embeddings) else None
        metadatas = result.get("metadatas") or [{}]
        return metadata_to_node(str(ids[0]), metadatas[0], embedding)

    async def count(self) -> int:
        await self._ensure_initialized()
        return self.collection.count()
