"""
Focus extraction chain
Ordered, named degradation strategies: external collaborator first, rule-based fallback second
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Literal, Optional, Sequence

from focusrank.core.interfaces.focus_extractor_interface import FocusExtractorInterface
from focusrank.modules.focus.fallback_extractor import RuleBasedFocusExtractor
from focusrank.modules.focus.models import ConversationTurn, FocusCandidate

logger = logging.getLogger(__name__)

ExtractionOutcome = Literal["extracted", "empty", "failed", "fallback"]


@dataclass
class ExtractionRequest:
    """Everything a strategy may look at. history is oldest first and includes the current turn."""
    turn: ConversationTurn
    history: Sequence[ConversationTurn]
    context_turns: int = 5
    has_focuses: bool = False

    @property
    def prior_turns(self) -> List[ConversationTurn]:
        """The most recent prior turns, not the earliest ones."""
        prior = list(self.history)
        if prior and prior[-1] is self.turn:
            prior = prior[:-1]
        return prior[-self.context_turns:] if self.context_turns > 0 else []


@dataclass
class ExtractionResult:
    candidates: List[FocusCandidate] = field(default_factory=list)
    outcome: ExtractionOutcome = "empty"
    strategy: Optional[str] = None
    error: Optional[str] = None


class ExtractionStrategy(ABC):
    name: str = "strategy"

    @abstractmethod
    def applies(self, request: ExtractionRequest, previous: ExtractionResult) -> bool:
        pass

    @abstractmethod
    async def run(self, request: ExtractionRequest) -> ExtractionResult:
        pass


class CollaboratorStrategy(ExtractionStrategy):
    """
    Calls the external extractor once, bounded by a timeout.
    Timeouts and errors are reported as a failed outcome, never raised.
    """

    name = "collaborator"

    def __init__(self, extractor: Optional[FocusExtractorInterface], timeout_seconds: float = 10.0):
        self.extractor = extractor
        self.timeout_seconds = timeout_seconds

    def applies(self, request: ExtractionRequest, previous: ExtractionResult) -> bool:
        return self.extractor is not None

    async def run(self, request: ExtractionRequest) -> ExtractionResult:
        try:
            candidates = await asyncio.wait_for(
                self.extractor.extract_focuses(request.turn, request.prior_turns),
                timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError:
            logger.warning(f"[ExtractionChain] Extractor timed out after {self.timeout_seconds}s")
            return ExtractionResult(outcome="failed", strategy=self.name, error="timeout")
        except Exception as e:
            logger.warning(f"[ExtractionChain] Extractor failed: {e}")
            return ExtractionResult(outcome="failed", strategy=self.name, error=str(e))

        candidates = [c for c in (candidates or []) if c.label and c.label.strip()]
        if not candidates:
            logger.info("[ExtractionChain] Extractor returned no candidates")
            return ExtractionResult(outcome="empty", strategy=self.name)
        return ExtractionResult(candidates=candidates, outcome="extracted", strategy=self.name)


class RuleBasedFallbackStrategy(ExtractionStrategy):
    """
    Deterministic extraction from the most recent turn.
    Only used when nothing was extracted, no foci exist yet and there is history.
    """

    name = "rule_based_fallback"

    def __init__(self, extractor: Optional[RuleBasedFocusExtractor] = None):
        self.extractor = extractor or RuleBasedFocusExtractor()

    def applies(self, request: ExtractionRequest, previous: ExtractionResult) -> bool:
        return not previous.candidates and not request.has_focuses and bool(request.history)

    async def run(self, request: ExtractionRequest) -> ExtractionResult:
        latest = request.history[-1]
        candidates = self.extractor.extract(latest)
        if not candidates:
            return ExtractionResult(outcome="empty", strategy=self.name)
        logger.info(f"[ExtractionChain] Fallback produced {len(candidates)} candidates")
        return ExtractionResult(candidates=candidates, outcome="fallback", strategy=self.name)


class ExtractionChain:
    """
    Runs strategies in order. A later strategy sees the previous result and
    decides for itself whether it applies; the first non-empty result wins.
    """

    def __init__(self, strategies: Sequence[ExtractionStrategy]):
        self.strategies = list(strategies)

    @classmethod
    def default(cls, extractor: Optional[FocusExtractorInterface], timeout_seconds: float = 10.0) -> "ExtractionChain":
        return cls([
            CollaboratorStrategy(extractor, timeout_seconds),
            RuleBasedFallbackStrategy(),
        ])

    @property
    def strategy_names(self) -> List[str]:
        return [s.name for s in self.strategies]

    async def run(self, request: ExtractionRequest) -> ExtractionResult:
        result = ExtractionResult()
        for strategy in self.strategies:
            if not strategy.applies(request, result):
                continue
            attempt = await strategy.run(request)
            if attempt.candidates:
                return attempt
            # keep the first failure visible unless a later strategy succeeds
            if result.outcome != "failed":
                result = attempt
        return result
