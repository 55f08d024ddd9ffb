"""
Rule-based focus extraction
Deterministic degradation path used when the extraction collaborator returns nothing
"""

import logging
from typing import Dict, List

from focusrank.modules.focus.models import ConversationTurn, FocusCandidate, FocusType
from focusrank.utils.text_utils import script_aware_tokens, snippet

logger = logging.getLogger(__name__)

EMOTION_SCORES: Dict[str, float] = {
    "positive": 0.8,
    "happy": 0.8,
    "excited": 0.8,
    "curious": 0.6,
    "interested": 0.6,
    "neutral": 0.5,
    "frustrated": 0.4,
    "confused": 0.4,
    "negative": 0.3,
    "sad": 0.3,
    "angry": 0.3,
}

# Topic category -> trigger words. Latin words match whole tokens, CJK words match as substrings.
TOPIC_KEYWORDS: Dict[str, List[str]] = {
    "work": ["work", "project", "task", "develop", "design", "programming", "code",
             "工作", "项目", "任务", "开发", "设计", "编程", "代码"],
    "learning": ["learn", "learning", "study", "research", "tutorial", "course",
                 "学习", "研究", "了解", "教程", "课程", "知识"],
    "life": ["life", "daily", "family", "friend", "friends", "rest", "relax",
             "生活", "日常", "家庭", "朋友", "休息", "放松"],
    "health": ["health", "exercise", "workout", "diet", "sleep", "body",
               "健康", "运动", "锻炼", "饮食", "睡眠", "身体"],
    "feelings": ["feel", "feeling", "mood", "emotion", "emotions",
                 "感觉", "心情", "情绪", "想法", "感受", "体会"],
    "plans": ["plan", "plans", "schedule", "prepare", "arrange",
              "计划", "安排", "准备", "打算", "考虑", "想要"],
    "problems": ["problem", "issue", "difficulty", "challenge", "trouble", "bug",
                 "问题", "困难", "挑战", "障碍", "麻烦", "疑问"],
    "goals": ["goal", "goals", "dream", "hope", "wish", "ambition",
              "目标", "理想", "愿望", "期望", "希望", "梦想"],
}


def parse_emotion_score(emotion: str) -> float:
    """Map a coarse emotion label to [0, 1]; unknown labels are neutral."""
    return EMOTION_SCORES.get((emotion or "").strip().lower(), 0.5)


def extract_topic_keywords(content: str) -> List[str]:
    """Topic categories whose trigger words appear in content, in table order."""
    if not content:
        return []

    lowered = content.lower()
    tokens = script_aware_tokens(content)
    categories = []
    for category, words in TOPIC_KEYWORDS.items():
        for word in words:
            hit = word in tokens if word.isascii() else word in lowered
            if hit:
                categories.append(category)
                break
    return categories


class RuleBasedFocusExtractor:
    """
    Turns the upstream pipeline's own labels into focus candidates.

    intent -> event, each entity -> entity, matched keyword categories -> topic.
    Never calls an external collaborator.
    """

    SOURCE = "rule_based"

    def extract(self, turn: ConversationTurn) -> List[FocusCandidate]:
        emotion = parse_emotion_score(turn.emotion)
        context = snippet(turn.content)
        candidates: List[FocusCandidate] = []

        intent = (turn.intent or "").strip()
        if intent and intent.lower() != "unknown":
            candidates.append(self._candidate(FocusType.EVENT, intent, emotion, "intent", context))

        for entity in turn.entities:
            if entity and entity.strip():
                candidates.append(self._candidate(FocusType.ENTITY, entity.strip(), emotion, "entity", context))

        for keyword in extract_topic_keywords(turn.content):
            candidates.append(self._candidate(FocusType.TOPIC, keyword, emotion, "topic_extraction", context))

        logger.debug(f"[RuleBasedExtractor] {len(candidates)} candidates from turn: {[c.label for c in candidates]}")
        return candidates

    def _candidate(self, focus_type: FocusType, label: str, emotion: float, origin: str, context: str) -> FocusCandidate:
        return FocusCandidate(
            type=focus_type,
            label=label,
            emotional_score=emotion,
            metadata={"origin": origin, "content_snippet": context},
            source=self.SOURCE,
        )
