"""
Focus State Machine
Tracks, merges, scores and tiers what the user is attending to across a conversation
"""

import asyncio
import copy
import logging
from collections import Counter, deque
from datetime import datetime, timedelta
from typing import Any, Deque, Dict, List, Optional, Tuple

from focusrank.config.settings import FocusSettings, settings
from focusrank.core.interfaces.focus_extractor_interface import FocusExtractorInterface
from focusrank.modules.focus.drift_model import FocusDriftModel
from focusrank.modules.focus.extraction_chain import (
    ExtractionChain,
    ExtractionRequest,
    ExtractionResult,
)
from focusrank.modules.focus.matching import NoMatch, resolve_match
from focusrank.modules.focus.models import (
    ConversationTurn,
    FocusCandidate,
    FocusPoint,
    FocusState,
    FocusTransition,
    FocusType,
    FocusUpdateDelta,
)
from focusrank.modules.focus.salience import (
    blend_emotion,
    causal_connectivity_score,
    drift_score,
    recency_score,
    repetition_score,
    salience_score,
)
from focusrank.utils.text_utils import Tokenizer, script_aware_tokens, snippet

logger = logging.getLogger(__name__)


class FocusStateMachine:
    """
    Single owner of the focus set and the drift model.

    All mutation goes through ingest(), which is serialized by a lock so a
    turn is fully merged before the next turn's extraction result is.
    Readers only ever receive deep copies.
    """

    def __init__(
        self,
        extractor: Optional[FocusExtractorInterface] = None,
        config: Optional[FocusSettings] = None,
        tokenizer: Tokenizer = script_aware_tokens,
        extraction_chain: Optional[ExtractionChain] = None,
        drift_model: Optional[FocusDriftModel] = None,
    ):
        self.config = config or settings.focus
        self.tokenizer = tokenizer
        self.extraction_chain = extraction_chain or ExtractionChain.default(
            extractor, self.config.extraction_timeout_seconds
        )
        self._drift_model = drift_model or FocusDriftModel()

        self._focuses: Dict[str, FocusPoint] = {}
        self._history: Deque[ConversationTurn] = deque(maxlen=self.config.history_size)
        self._active_threshold = self.config.active_salience_threshold
        self._outcome_counts: Counter = Counter()
        self._last_delta: Optional[FocusUpdateDelta] = None
        self._lock = asyncio.Lock()

        logger.info(
            f"[FocusStateMachine] Initialized (strategies={self.extraction_chain.strategy_names}, "
            f"active={self.config.min_active}-{self.config.max_active})"
        )

    # ------------------------------------------------------------------
    # Ingest
    # ------------------------------------------------------------------

    async def ingest(self, turn: ConversationTurn) -> FocusUpdateDelta:
        """
        Ingest one conversational turn.

        Extraction failures and empty extractions never raise; the outcome is
        recorded on the returned delta and in the statistics.
        """
        async with self._lock:
            now = turn.timestamp
            logger.debug(f"[FocusStateMachine] Ingesting turn: {snippet(turn.content, 50)}")
            self._history.append(turn)

            request = ExtractionRequest(
                turn=turn,
                history=list(self._history),
                context_turns=self.config.context_turns,
                has_focuses=bool(self._focuses),
            )
            result: ExtractionResult = await self.extraction_chain.run(request)
            self._outcome_counts[result.outcome] += 1

            added_ids, updated_ids = self._merge_candidates(result.candidates, now)
            self._update_scores(now)
            self._reclassify()
            removed_ids = self._prune(now)

            transitions: List[FocusTransition] = []
            transition = self._drift_model.update_trajectory(self._sorted(FocusState.ACTIVE), now)
            if transition is not None:
                transitions.append(transition)

            delta = FocusUpdateDelta(
                added=[copy.deepcopy(self._focuses[i]) for i in added_ids if i in self._focuses],
                updated=[copy.deepcopy(self._focuses[i]) for i in updated_ids if i in self._focuses],
                removed=removed_ids,
                transitions=transitions,
                extraction_outcome=result.outcome,
                timestamp=now,
            )
            self._last_delta = delta

            logger.info(
                f"[FocusStateMachine] Turn processed ({result.outcome}): +{len(delta.added)} "
                f"~{len(delta.updated)} -{len(delta.removed)}, active={self._count(FocusState.ACTIVE)}, "
                f"latent={self._count(FocusState.LATENT)}"
            )
            return delta

    def _merge_candidates(self, candidates: List[FocusCandidate], now: datetime) -> Tuple[List[str], List[str]]:
        added_ids: List[str] = []
        updated_ids: List[str] = []
        touched: List[Tuple[FocusPoint, FocusCandidate]] = []

        for candidate in candidates:
            decision = resolve_match(
                candidate.label,
                candidate.type,
                self._focuses.values(),
                threshold=self.config.merge_similarity_threshold,
                tokenizer=self.tokenizer,
            )

            if isinstance(decision, NoMatch):
                focus = candidate.to_focus_point(now)
                self._focuses[focus.id] = focus
                added_ids.append(focus.id)
                logger.debug(f"[FocusStateMachine] New focus: {focus.canonical_label} ({focus.type.value})")
            else:
                focus = self._focuses[decision.focus_id]
                focus.record_mention(now)
                focus.emotional_score = blend_emotion(focus.emotional_score, candidate.emotional_score)
                focus.add_alias(candidate.label)
                for alias in candidate.aliases:
                    focus.add_alias(alias)
                focus.metadata.update(candidate.metadata)
                if focus.id not in added_ids and focus.id not in updated_ids:
                    updated_ids.append(focus.id)
                logger.debug(f"[FocusStateMachine] Merged '{candidate.label}' into {focus.canonical_label} ({type(decision).__name__})")

            touched.append((focus, candidate))

        # Co-occurrence: everything mentioned in the same turn is linked
        touched_ids = list(dict.fromkeys(f.id for f, _ in touched))
        for focus_id in touched_ids:
            self._focuses[focus_id].linked_focus_ids.update(i for i in touched_ids if i != focus_id)

        # Causal links named by the extractor
        for focus, candidate in touched:
            for label in candidate.linked_labels:
                decision = resolve_match(
                    label,
                    None,
                    self._focuses.values(),
                    threshold=self.config.merge_similarity_threshold,
                    tokenizer=self.tokenizer,
                )
                if isinstance(decision, NoMatch) or decision.focus_id == focus.id:
                    continue
                focus.linked_focus_ids.add(decision.focus_id)
                self._focuses[decision.focus_id].linked_focus_ids.add(focus.id)

        return added_ids, updated_ids

    def _update_scores(self, now: datetime) -> None:
        config = self.config
        total = len(self._focuses)

        for focus in self._focuses.values():
            focus.recency_score = recency_score(focus.last_updated, now, config.recency_tau_seconds, config.recency_beta)
            focus.repetition_score = repetition_score(focus.mention_count, config.repetition_saturation)
            focus.causal_connectivity_score = causal_connectivity_score(len(focus.linked_focus_ids), total)
            focus.drift_predictive_score = self._drift_model.calculate_drift_momentum(focus, now)

        for focus_id, prediction in self._drift_model.predict_emerging().items():
            focus = self._focuses.get(focus_id)
            if focus is not None:
                focus.drift_predictive_score = drift_score(focus.drift_predictive_score, prediction)

        for focus in self._focuses.values():
            focus.salience_score = salience_score(
                focus.recency_score,
                focus.repetition_score,
                focus.emotional_score,
                focus.causal_connectivity_score,
                focus.drift_predictive_score,
                config,
            )

    def _reclassify(self) -> None:
        config = self.config
        ranked = sorted(self._focuses.values(), key=lambda f: f.salience_score, reverse=True)

        # Adaptive threshold: with more foci than seats, the last seat sets the bar
        if len(ranked) > config.max_active:
            threshold = ranked[config.max_active - 1].salience_score
        else:
            threshold = config.active_salience_threshold
        self._active_threshold = threshold

        active_count = 0
        latent_count = 0
        for focus in ranked:
            if active_count < config.max_active and focus.salience_score >= threshold:
                focus.update_state(FocusState.ACTIVE)
                active_count += 1
            elif latent_count < config.max_latent and focus.salience_score >= config.latent_salience_threshold:
                focus.update_state(FocusState.LATENT)
                latent_count += 1
            elif focus.salience_score >= config.fading_salience_threshold:
                focus.update_state(FocusState.BACKGROUND)
            else:
                focus.update_state(FocusState.FADING)

        # Forced promotion: an empty or weak turn must not collapse established attention
        floor = min(config.min_active, config.max_active, len(ranked))
        if active_count < floor:
            promoted = []
            for focus in ranked:
                if active_count >= floor:
                    break
                if focus.state != FocusState.ACTIVE:
                    focus.update_state(FocusState.ACTIVE)
                    active_count += 1
                    promoted.append(focus.canonical_label)
            logger.info(f"[FocusStateMachine] Forced promotion to meet floor {floor}: {promoted}")

    def _prune(self, now: datetime) -> List[str]:
        cutoff = now - timedelta(seconds=self.config.prune_after_seconds)
        removed = [
            f.id for f in self._focuses.values()
            if f.last_updated < cutoff
            and f.salience_score < self._active_threshold
            and f.state != FocusState.ACTIVE
        ]
        if not removed:
            return []

        for focus_id in removed:
            del self._focuses[focus_id]
        for focus in self._focuses.values():
            focus.linked_focus_ids.difference_update(removed)
        self._drift_model.forget(removed)

        logger.info(f"[FocusStateMachine] Pruned {len(removed)} stale foci")
        return removed

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    def _sorted(self, state: Optional[FocusState] = None) -> List[FocusPoint]:
        foci = [f for f in self._focuses.values() if state is None or f.state == state]
        return sorted(foci, key=lambda f: f.salience_score, reverse=True)

    def _count(self, state: FocusState) -> int:
        return sum(1 for f in self._focuses.values() if f.state == state)

    def get_active_focuses(self) -> List[FocusPoint]:
        return copy.deepcopy(self._sorted(FocusState.ACTIVE))

    def get_latent_focuses(self) -> List[FocusPoint]:
        return copy.deepcopy(self._sorted(FocusState.LATENT))

    def get_all_focuses(self) -> List[FocusPoint]:
        return copy.deepcopy(self._sorted())

    def get_focus(self, focus_id: str) -> Optional[FocusPoint]:
        focus = self._focuses.get(focus_id)
        return copy.deepcopy(focus) if focus is not None else None

    def get_top(self, n: int) -> List[FocusPoint]:
        """Active foci first, then everything else; each group by salience."""
        if n <= 0:
            return []
        active = self._sorted(FocusState.ACTIVE)
        rest = [f for f in self._sorted() if f.state != FocusState.ACTIVE]
        return copy.deepcopy((active + rest)[:n])

    def get_top_labels(self, n: int) -> List[str]:
        return [f.canonical_label for f in self.get_top(n)]

    def get_history(self) -> List[ConversationTurn]:
        return copy.deepcopy(list(self._history))

    def get_drift_stats(self) -> Dict[str, Any]:
        return self._drift_model.get_transition_stats()

    def get_statistics(self) -> Dict[str, Any]:
        foci = list(self._focuses.values())
        type_distribution = {t.value: 0 for t in FocusType}
        for focus in foci:
            type_distribution[focus.type.value] += 1

        return {
            "active_focuses_count": self._count(FocusState.ACTIVE),
            "latent_focuses_count": self._count(FocusState.LATENT),
            "background_focuses_count": self._count(FocusState.BACKGROUND),
            "fading_focuses_count": self._count(FocusState.FADING),
            "total_focuses_count": len(foci),
            "active_threshold": self._active_threshold,
            "focus_type_distribution": type_distribution,
            "extraction_outcomes": dict(self._outcome_counts),
            "drift_stats": self._drift_model.get_transition_stats(),
            "history_size": len(self._history),
            "avg_salience_score": sum(f.salience_score for f in foci) / len(foci) if foci else 0.0,
        }

    def compute_delta(self) -> FocusUpdateDelta:
        """
        Current view as a delta: active foci as updated, plus the ten most
        recent transitions. Useful for a consumer that joins mid-conversation.
        """
        return FocusUpdateDelta(
            added=[],
            updated=self.get_active_focuses(),
            removed=[],
            transitions=self._drift_model.get_transition_history(limit=10),
            extraction_outcome=self._last_delta.extraction_outcome if self._last_delta else "empty",
        )

    def reset(self) -> None:
        self._focuses.clear()
        self._history.clear()
        self._drift_model.clear()
        self._outcome_counts.clear()
        self._active_threshold = self.config.active_salience_threshold
        self._last_delta = None
        logger.info("[FocusStateMachine] State reset")
