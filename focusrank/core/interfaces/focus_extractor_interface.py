# focusrank/core/interfaces/focus_extractor_interface.py
from abc import ABC, abstractmethod
from typing import List, Sequence

from focusrank.modules.focus.models import ConversationTurn, FocusCandidate


class FocusExtractorInterface(ABC):
    """
    Interface for collaborators that turn a conversational turn into focus candidates.
    """

    @abstractmethod
    async def extract_focuses(
        self,
        turn: ConversationTurn,
        recent_history: Sequence[ConversationTurn]
    ) -> List[FocusCandidate]:
        """
        Returns candidate foci for the given turn.
        recent_history holds the most recent prior turns, oldest first.
        An empty list is a legitimate answer (short or content-free utterances).
        Implementations may raise on transport or parse failures; callers degrade.
        """
        pass
