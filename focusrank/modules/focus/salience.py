"""
Salience scoring for focus points
Component scores are plain functions so they can be tuned and tested in isolation
"""

import math
from datetime import datetime
from typing import Optional

from focusrank.config.settings import FocusSettings


def recency_score(last_updated: datetime, now: datetime, tau_seconds: float = 300.0, beta: float = 0.7) -> float:
    """
    Slow-tail decay: 1 / (1 + (dt / tau) ** beta).

    Unlike a pure exponential, a focus an hour old still keeps a meaningful score.
    """
    elapsed = max(0.0, (now - last_updated).total_seconds())
    if elapsed == 0.0:
        return 1.0
    return 1.0 / (1.0 + (elapsed / tau_seconds) ** beta)


def repetition_score(mention_count: int, saturation: int = 20) -> float:
    """log(1 + n) / log(1 + saturation), capped at 1.0"""
    if mention_count <= 0:
        return 0.0
    return min(1.0, math.log(1 + mention_count) / math.log(1 + saturation))


def causal_connectivity_score(link_count: int, total_focuses: int) -> float:
    if link_count <= 0 or total_focuses <= 0:
        return 0.0
    return min(1.0, link_count / math.sqrt(total_focuses))


def blend_emotion(previous: float, incoming: float) -> float:
    return 0.7 * previous + 0.3 * incoming


def drift_score(momentum: float, prediction: Optional[float]) -> float:
    """Momentum alone, or an even blend with the drift model's prediction when it has one."""
    if prediction is None:
        return momentum
    return 0.5 * momentum + 0.5 * prediction


def salience_score(
    recency: float,
    repetition: float,
    emotion: float,
    causal: float,
    drift: float,
    config: Optional[FocusSettings] = None,
) -> float:
    config = config or FocusSettings()
    score = (
        config.weight_recency * recency
        + config.weight_repetition * repetition
        + config.weight_emotion * emotion
        + config.weight_causal * causal
        + config.weight_drift * drift
    )
    return min(1.0, max(0.0, score))
