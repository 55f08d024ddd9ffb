"""
Focus Drift Model
Tracks how attention moves between foci and predicts which ones are emerging
"""

import logging
from collections import deque
from datetime import datetime, timedelta
from typing import Any, Deque, Dict, List, Optional, Sequence

from focusrank.modules.focus.models import FocusPoint, FocusTransition

logger = logging.getLogger(__name__)


class FocusDriftModel:
    """
    Markov-like transition model over focus ids.

    Keeps a bounded transition history, a bounded sequence of recently
    focused ids and an accumulated from -> to strength map. Owned by the
    focus state machine; nothing else mutates it.
    """

    MOMENTUM_WINDOW = timedelta(minutes=5)
    PREDICTION_LOOKBACK = 5

    def __init__(self, max_history: int = 200, max_sequence: int = 20):
        self._transition_matrix: Dict[str, Dict[str, float]] = {}
        self._transition_history: Deque[FocusTransition] = deque(maxlen=max_history)
        self._recent_sequence: Deque[str] = deque(maxlen=max_sequence)

    def record_transition(self, transition: FocusTransition) -> None:
        self._transition_history.append(transition)
        self._recent_sequence.append(transition.to_focus_id)

        if transition.from_focus_id is not None:
            row = self._transition_matrix.setdefault(transition.from_focus_id, {})
            row[transition.to_focus_id] = row.get(transition.to_focus_id, 0.0) + transition.transition_strength

    def update_trajectory(
        self,
        active_focuses: Sequence[FocusPoint],
        now: Optional[datetime] = None,
    ) -> Optional[FocusTransition]:
        """Record a transition when the dominant active focus changed."""
        if not active_focuses:
            return None

        now = now or datetime.now()
        leader = max(active_focuses, key=lambda f: f.salience_score)
        last = self._recent_sequence[-1] if self._recent_sequence else None
        if last == leader.id:
            return None

        transition = FocusTransition(
            timestamp=now,
            from_focus_id=last,
            to_focus_id=leader.id,
            transition_strength=leader.salience_score,
            reason="trajectory_update" if last else "trajectory_start",
        )
        self.record_transition(transition)
        logger.debug(f"[FocusDrift] {last} -> {leader.id} ({leader.canonical_label}), strength={leader.salience_score:.3f}")
        return transition

    def predict_emerging(self) -> Dict[str, float]:
        """
        Score focus ids likely to come up next, normalised so the best is 1.0.

        Outgoing transitions of the most recent sequence entries are summed,
        weighted by how close to the end of the sequence their source sits.
        """
        predictions: Dict[str, float] = {}
        if not self._recent_sequence:
            return predictions

        sequence = list(self._recent_sequence)
        recent_ids = list(dict.fromkeys(reversed(sequence)))[:self.PREDICTION_LOOKBACK]
        for focus_id in recent_ids:
            transitions = self._transition_matrix.get(focus_id)
            if not transitions:
                continue
            last_index = len(sequence) - 1 - sequence[::-1].index(focus_id)
            distance = len(sequence) - 1 - last_index
            weight = 1.0 / (1.0 + distance)
            for to_id, strength in transitions.items():
                predictions[to_id] = predictions.get(to_id, 0.0) + strength * weight

        max_score = max(predictions.values(), default=0.0)
        if max_score > 0:
            predictions = {k: v / max_score for k, v in predictions.items()}
        return predictions

    def calculate_drift_momentum(self, focus: FocusPoint, now: Optional[datetime] = None) -> float:
        """0.4 * recent mention rate + 0.3 * transition in-degree + 0.3 * sequence position."""
        now = now or datetime.now()
        cutoff = now - self.MOMENTUM_WINDOW
        recent_mentions = sum(1 for t in focus.mention_timestamps if t > cutoff)
        mention_score = min(1.0, recent_mentions / 5.0)

        in_degree = sum(1 for row in self._transition_matrix.values() if focus.id in row)
        in_degree_score = min(1.0, in_degree / 3.0)

        sequence_score = 0.0
        if focus.id in self._recent_sequence:
            sequence = list(self._recent_sequence)
            last_index = len(sequence) - 1 - sequence[::-1].index(focus.id)
            sequence_score = last_index / len(sequence)

        return 0.4 * mention_score + 0.3 * in_degree_score + 0.3 * sequence_score

    def forget(self, focus_ids: Sequence[str]) -> None:
        """Drop pruned foci from the transition map (history stays append-only)."""
        for focus_id in focus_ids:
            self._transition_matrix.pop(focus_id, None)
            for row in self._transition_matrix.values():
                row.pop(focus_id, None)

    def get_transition_stats(self) -> Dict[str, Any]:
        history = list(self._transition_history)
        return {
            "total_transitions": len(history),
            "unique_focuses": len(self._transition_matrix),
            "recent_sequence_length": len(self._recent_sequence),
            "avg_transition_strength": (
                sum(t.transition_strength for t in history) / len(history) if history else 0.0
            ),
        }

    def get_recent_sequence(self) -> List[str]:
        return list(self._recent_sequence)

    def get_transition_history(self, limit: int = 50) -> List[FocusTransition]:
        """Newest first."""
        return list(reversed(self._transition_history))[:limit]

    def clear(self) -> None:
        self._transition_matrix.clear()
        self._transition_history.clear()
        self._recent_sequence.clear()
