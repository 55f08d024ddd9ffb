"""
LLMFocusExtractor - focus extraction through a local LLM
Asks for specific, fine-grained foci and parses them into candidates
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional, Sequence

from focusrank.core.interfaces.focus_extractor_interface import FocusExtractorInterface
from focusrank.modules.focus.models import ConversationTurn, FocusCandidate, FocusType
from focusrank.utils.exceptions import FocusExtractionError

logger = logging.getLogger(__name__)

MAX_CANDIDATES = 5
MIN_CONTENT_LENGTH = 3

_FENCED_JSON = re.compile(r'```(?:json)?\s*([\[{][\s\S]*?[\]}])\s*```', re.IGNORECASE)
_BARE_ARRAY = re.compile(r'\[[\s\S]*\]')
_BARE_OBJECT = re.compile(r'\{[\s\S]*\}')


class LLMFocusExtractor(FocusExtractorInterface):
    """
    Extraction collaborator backed by an LLM service exposing
    generate_response(prompt, format=...). Raises on malformed output so the
    extraction chain can record a failure.
    """

    def __init__(self, llm_service):
        self.llm_service = llm_service

    async def extract_focuses(
        self,
        turn: ConversationTurn,
        recent_history: Sequence[ConversationTurn]
    ) -> List[FocusCandidate]:
        if len(turn.content.strip()) < MIN_CONTENT_LENGTH:
            return []

        prompt = self._build_prompt(turn, recent_history)
        response = await self.llm_service.generate_response(prompt, format="json")
        candidates = self.parse_response(response)

        logger.info(f"[LLMFocusExtractor] Extracted {len(candidates)} foci: {[c.label for c in candidates]}")
        return candidates

    def _build_prompt(self, turn: ConversationTurn, recent_history: Sequence[ConversationTurn]) -> str:
        context = "\n".join(f"- {t.content[:300]}" for t in recent_history) or "(none)"

        return f"""You extract what the user is focusing on in a conversation. Extract SPECIFIC, fine-grained foci.

RULES:
1. Specific beats generic
   • BAD: "work", "chat", "casual_chat"
   • GOOD: "friend's relationship news", "Flutter app performance tuning", "next week's product launch"
2. Keep people, relations and time context in the label when it matters
3. Cover all three types where present:
   • event: something that happened or will happen (a meeting, a trip, a release)
   • topic: a specific subject under discussion ("Flutter performance tuning")
   • entity: a concrete person, place, object or tool ("Beijing", "VS Code")
4. At most {MAX_CANDIDATES} foci; skip low-confidence ones
5. If the utterance is very short or has no substance, return an empty list

RECENT CONTEXT:
{context}

CURRENT UTTERANCE:
{turn.content}

User emotion: {turn.emotion}
Entities: {', '.join(turn.entities) or '(none)'}
Intent: {turn.intent or '(none)'}

Return JSON only:
{{
    "focuses": [
        {{
            "type": "event|topic|entity",
            "label": "short but specific label",
            "aliases": ["other names"],
            "emotional_score": 0.0-1.0,
            "linked_labels": ["labels of related foci"],
            "metadata": {{"specific_context": "who/when/where", "temporal_info": "if any"}}
        }}
    ]
}}"""

    @staticmethod
    def parse_response(response: str) -> List[FocusCandidate]:
        """Parse fenced or bare JSON (array, or object with a "focuses" list)."""
        if response is None:
            raise FocusExtractionError("LLM returned no response")

        text = response.strip()
        if not text:
            return []

        fenced = _FENCED_JSON.search(text)
        if fenced:
            raw = fenced.group(1)
        else:
            pattern = _BARE_OBJECT if text.startswith("{") else _BARE_ARRAY
            match = pattern.search(text) or _BARE_OBJECT.search(text)
            if not match:
                raise FocusExtractionError(f"No JSON found in response: {text[:200]}")
            raw = match.group(0)

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise FocusExtractionError(f"Malformed JSON from LLM: {e}") from e

        if isinstance(data, dict):
            data = data.get("focuses", [])
        if not isinstance(data, list):
            raise FocusExtractionError(f"Expected a list of foci, got {type(data).__name__}")

        candidates = []
        for item in data:
            candidate = LLMFocusExtractor._to_candidate(item)
            if candidate is not None:
                candidates.append(candidate)
            if len(candidates) >= MAX_CANDIDATES:
                break
        return candidates

    @staticmethod
    def _to_candidate(item: Any) -> Optional[FocusCandidate]:
        if not isinstance(item, dict):
            return None

        label = item.get("label") or item.get("canonical_label") or item.get("canonicalLabel")
        if not isinstance(label, str) or not label.strip():
            return None

        type_str = str(item.get("type", "topic")).lower()
        focus_type = {"event": FocusType.EVENT, "entity": FocusType.ENTITY}.get(type_str, FocusType.TOPIC)

        try:
            emotional_score = float(item.get("emotional_score", item.get("emotionalScore", 0.5)))
        except (TypeError, ValueError):
            emotional_score = 0.5

        metadata: Dict[str, Any] = item.get("metadata") if isinstance(item.get("metadata"), dict) else {}
        return FocusCandidate(
            type=focus_type,
            label=label.strip(),
            aliases={str(a) for a in item.get("aliases") or [] if str(a).strip()},
            emotional_score=min(1.0, max(0.0, emotional_score)),
            linked_labels=[str(l) for l in item.get("linked_labels") or [] if str(l).strip()],
            metadata=metadata,
            source="llm_extraction",
        )
