import re
from typing import Callable, Set

# CJK unified ideographs, kana and hangul are tokenized per character;
# everything else is split into word runs.
WORD_PATTERN = re.compile(r'[\u3040-\u30ff\u3400-\u4dbf\u4e00-\u9fff\uac00-\ud7af]|[^\W_\u3040-\u30ff\u3400-\u4dbf\u4e00-\u9fff\uac00-\ud7af]+')

Tokenizer = Callable[[str], Set[str]]


def normalize_label(label: str) -> str:
    """Lowercase, trim and collapse inner whitespace."""
    if not label:
        return ""
    return " ".join(label.strip().lower().split())


def whitespace_tokens(label: str) -> Set[str]:
    return set(normalize_label(label).split())


def script_aware_tokens(label: str) -> Set[str]:
    """
    Latin-script words stay whole, CJK text is split per character.

    "Flutter开发" -> {"flutter", "开", "发"}
    """
    return set(WORD_PATTERN.findall(normalize_label(label)))


def jaccard_similarity(a: Set[str], b: Set[str]) -> float:
    union = a | b
    if not union:
        return 0.0
    return len(a & b) / len(union)


def snippet(text: str, max_len: int = 100) -> str:
    if not text:
        return ""
    return text[:max_len]
