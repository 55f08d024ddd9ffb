"""
Unit Tests for RelevanceEngine

Tests the wiring between focus tracking, scoring and retrieval.
"""

from datetime import datetime, timedelta

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from focusrank.config.settings import Settings
from focusrank.modules.focus.models import ConversationTurn
from focusrank.modules.priority.models import EventNode, RelationType
from focusrank.modules.relevance_engine import RelevanceEngine
from focusrank.modules.retrieval.models import CompositeWeights, RetrievalContext
from focusrank.modules.store.node_state_store import NodeStateStore
from focusrank.utils.exceptions import ParameterValidationError

NOW = datetime(2024, 5, 10, 9, 0, 0)


@pytest.fixture
def engine(fake_embedder, fake_index, scripted_extractor):
    fake_embedder.vectors.update({"Flutter": [1.0, 0.0], "AI": [0.0, 1.0]})
    fake_index.nodes.update({
        "flutter-talk": EventNode(id="flutter-talk", name="Flutter talk", embedding=[1.0, 0.1], start_time=NOW - timedelta(days=1)),
        "ml-course": EventNode(id="ml-course", name="ML course", embedding=[0.1, 1.0], start_time=NOW - timedelta(days=2)),
    })
    return RelevanceEngine(
        embedder=fake_embedder,
        index=fake_index,
        extractor=scripted_extractor([["Flutter", "AI"]]),
        store=NodeStateStore(),
        config=Settings(),
    )


class TestIngestAndRetrieve:
    """Test the conversation -> topics -> pool flow."""

    @pytest.mark.asyncio
    async def test_retrieve_uses_top_focus_labels(self, engine, fake_embedder):
        """Without explicit topics the top foci drive retrieval."""
        await engine.ingest(ConversationTurn(content="Flutter and AI", timestamp=NOW))
        assert set(engine.get_top_focus_labels()) == {"Flutter", "AI"}

        context = RetrievalContext(query_time=NOW)
        pool = await engine.retrieve(context=context)
        assert {e.node.id for e in pool} == {"flutter-talk", "ml-course"}
        assert set(context.focus_topics) == {"Flutter", "AI"}
        assert set(fake_embedder.calls) == {"Flutter", "AI"}

    @pytest.mark.asyncio
    async def test_no_topics_returns_current_pool(self, engine, fake_embedder):
        """No foci and no topics: nothing is embedded."""
        assert await engine.retrieve() == []
        assert fake_embedder.calls == []

    @pytest.mark.asyncio
    async def test_explicit_topics(self, engine):
        """Explicit topics bypass focus state."""
        pool = await engine.retrieve(["AI"], RetrievalContext(query_time=NOW))
        assert [e.node.id for e in pool][0] == "ml-course"
        assert engine.get_pool()[0].matched_topic == "AI"


class TestUpdateParameters:
    """Test validated configuration updates."""

    @pytest.mark.asyncio
    async def test_bad_thetas_leave_everything_unchanged(self, engine):
        """A rejected theta set does not apply the accompanying weights either."""
        before = engine.get_configuration()
        with pytest.raises(ParameterValidationError):
            await engine.update_parameters(
                weights={"embedding_weight": 0.9},
                theta1=0.25, theta2=0.4, theta3=0.2, theta4=0.1,
            )
        assert engine.get_configuration() == before

    @pytest.mark.asyncio
    async def test_bad_weights_leave_priority_unchanged(self, engine):
        """A rejected weight set does not apply the priority changes either."""
        with pytest.raises(ParameterValidationError):
            await engine.update_parameters(weights={"recency_weight": -1.0}, gamma=0.9)
        assert engine.scorer.parameters.gamma == 0.5

    @pytest.mark.asyncio
    async def test_valid_update(self, engine):
        """Valid changes are applied to both scorer and pool."""
        config = await engine.update_parameters(weights={"embedding_weight": 0.6}, strategy="softmax")
        assert config["priority"]["strategy"] == "softmax"
        assert config["composite_weights"]["embedding_weight"] == 0.6
        assert config["composite_weights"]["constraint_weight"] == 0.5

    @pytest.mark.asyncio
    async def test_weights_model_accepted(self, engine):
        """A CompositeWeights instance is installed as is."""
        weights = CompositeWeights(embedding_weight=1.0, constraint_weight=0.0, recency_weight=0.0)
        await engine.update_parameters(weights=weights)
        assert engine.retriever.weights == weights


class TestRecordActivation:
    """Test activation feedback through the facade."""

    @pytest.mark.asyncio
    async def test_unknown_node(self, engine):
        """Unknown ids return False."""
        assert await engine.record_activation("missing", 0.9) is False

    @pytest.mark.asyncio
    async def test_activation_persisted_with_revisit_edge(self, engine):
        """Activation is stored and a revisit edge links the related node."""
        assert await engine.record_activation("ml-course", 0.85, related_node_id="flutter-talk", now=NOW)

        history, last_seen = await engine.store.load_activation_state("ml-course")
        assert last_seen == NOW
        assert [r.similarity for r in history] == [0.85]
        relations = await engine.store.get_relations("ml-course")
        assert [(r.source_id, r.target_id, r.relation_type) for r in relations] == [
            ("flutter-talk", "ml-course", RelationType.REVISIT)
        ]

    @pytest.mark.asyncio
    async def test_activation_accumulates_from_store(self, engine):
        """Each activation builds on the persisted history."""
        await engine.record_activation("ml-course", 0.8, now=NOW - timedelta(days=1))
        await engine.record_activation("ml-course", 0.9, now=NOW)
        history, _ = await engine.store.load_activation_state("ml-course")
        assert [r.similarity for r in history] == [0.8, 0.9]


class TestDiagnostics:
    """Test outbound views."""

    @pytest.mark.asyncio
    async def test_diagnostics(self, engine):
        """Diagnostics bundle focus, configuration, pool and store state."""
        await engine.ingest(ConversationTurn(content="Flutter and AI", timestamp=NOW))
        await engine.retrieve(context=RetrievalContext(query_time=NOW))
        diagnostics = engine.get_diagnostics()
        assert diagnostics["focus"]["total_focuses_count"] == 2
        assert diagnostics["pool"]["size"] == 2
        assert diagnostics["pool"]["merge_rounds"] == 2
        assert diagnostics["store"] == {"nodes": 0, "relations": 0}
        assert "weights" in diagnostics["configuration"]["priority"]

    @pytest.mark.asyncio
    async def test_analyze_distribution(self, engine):
        """Distribution over the candidates a topic retrieves."""
        summary = await engine.analyze_distribution("Flutter", RetrievalContext(query_time=NOW))
        assert summary["total_nodes"] == 1
        assert (await engine.analyze_distribution("unknown topic"))["total_nodes"] == 0


class TestCreate:
    """Test construction on the default adapters."""

    @pytest.mark.asyncio
    async def test_create_wires_default_adapters(self, fake_embedder, tmp_path):
        """create() builds the Ollama extractor, Chroma index and file store."""
        settings = Settings()
        settings.storage.data_dir = str(tmp_path)
        chroma_client = MagicMock()
        chroma_client.get_or_create_collection.return_value.count.return_value = 0

        with patch("focusrank.modules.relevance_engine.OllamaClient") as client_cls:
            client_cls.return_value.initialize = AsyncMock()
            client_cls.return_value.close = AsyncMock()
            engine = await RelevanceEngine.create(fake_embedder, config=settings, chroma_client=chroma_client)
            await engine.close()

        assert engine.store.state_path == tmp_path / "node_state.json"
        assert engine.index.collection is not None
        client_cls.return_value.close.assert_awaited_once()


class TestDefaultStore:
    """Test activation feedback on an engine built without a store."""

    @pytest.mark.asyncio
    async def test_activation_survives_without_injected_store(self, fake_embedder, fake_index):
        """Activations recorded on a storeless engine reach later scoring."""
        fake_embedder.vectors["Flutter"] = [1.0, 0.0]
        fake_index.nodes["n"] = EventNode(id="n", name="Flutter talk", embedding=[1.0, 0.1], start_time=NOW - timedelta(days=1))
        engine = RelevanceEngine(fake_embedder, fake_index, config=Settings())
        assert isinstance(engine.store, NodeStateStore)

        later = RetrievalContext(query_time=NOW + timedelta(hours=1))
        before = (await engine.retriever.retrieve_and_score("Flutter", later))[0]

        await engine.retrieve(["Flutter"], RetrievalContext(query_time=NOW))
        assert await engine.record_activation("n", 0.9, now=NOW)

        after = (await engine.retriever.retrieve_and_score("Flutter", later))[0]
        assert len(after.node.activation_history) == 1
        assert engine.scorer.reactivation_signal(after.node, later.query_time) > 0
        assert after.priority > before.priority
        assert engine.get_diagnostics()["store"] == {"nodes": 1, "relations": 0}
