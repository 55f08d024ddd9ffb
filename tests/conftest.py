"""
Root pytest configuration for focusrank tests.

Sets up Python path so all test files can import the package, and provides
in-memory collaborators shared by the unit and characterization suites.
"""

import sys
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import pytest

# Add repository root to path for all tests
repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from focusrank.core.interfaces import (  # noqa: E402
    EmbeddingServiceInterface,
    FocusExtractorInterface,
    VectorIndexInterface,
)
from focusrank.modules.focus.models import FocusCandidate, FocusType  # noqa: E402
from focusrank.modules.priority.priority_scorer import cosine_similarity  # noqa: E402


class FakeEmbedder(EmbeddingServiceInterface):
    """Looks vectors up in a dict; unknown text embeds to None."""

    def __init__(self, vectors: Optional[Dict[str, List[float]]] = None):
        self.vectors = vectors or {}
        self.calls: List[str] = []

    async def embed_text(self, text: str) -> Optional[List[float]]:
        self.calls.append(text)
        return self.vectors.get(text)


class FakeIndex(VectorIndexInterface):
    """Brute-force cosine search over a list of nodes."""

    def __init__(self, nodes=None):
        self.nodes = {n.id: n for n in (nodes or [])}

    async def top_k_by_embedding(self, query_vector: Sequence[float], k: int = 30, threshold: float = 0.0):
        hits = []
        for node in self.nodes.values():
            similarity = cosine_similarity(query_vector, node.embedding)
            if similarity is not None and similarity >= threshold:
                hits.append((node, similarity))
        hits.sort(key=lambda h: h[1], reverse=True)
        return hits[:k]

    async def get_event(self, node_id: str):
        return self.nodes.get(node_id)

    async def upsert_events(self, nodes) -> None:
        for node in nodes:
            self.nodes[node.id] = node


class ScriptedExtractor(FocusExtractorInterface):
    """Returns one scripted batch of labels per call, then nothing."""

    def __init__(self, batches: Sequence[Sequence[str]], focus_type: FocusType = FocusType.TOPIC):
        self.batches = [list(b) for b in batches]
        self.focus_type = focus_type
        self.calls = 0

    async def extract_focuses(self, turn, recent_history) -> List[FocusCandidate]:
        batch = self.batches[self.calls] if self.calls < len(self.batches) else []
        self.calls += 1
        return [FocusCandidate(type=self.focus_type, label=label) for label in batch]


@pytest.fixture
def fake_embedder():
    return FakeEmbedder()


@pytest.fixture
def fake_index():
    return FakeIndex()


@pytest.fixture
def scripted_extractor():
    """Factory: scripted_extractor([["Flutter", "AI"], []])"""
    return ScriptedExtractor
