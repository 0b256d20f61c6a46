"""Language detection for inbound customer text: Urdu script, Roman Urdu or English."""

import re
from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, Optional, Tuple

from app.services.data_loader import load_data_table

URDU_SCRIPT_PATTERN = re.compile(r"[\u0600-\u06FF\u0750-\u077F\uFB50-\uFDFF\uFE70-\uFEFF]")
_NON_LETTERS = re.compile(r"[^a-z]")


class Language(str, Enum):
    URDU = "urdu"
    ROMAN_URDU = "roman_urdu"
    ENGLISH = "english"


@dataclass(frozen=True)
class LanguageTable:
    roman_urdu_words: FrozenSet[str]
    greetings: Tuple[str, ...]
    ratio: float
    min_matches: int
    names: dict


_table: Optional[LanguageTable] = None


def get_language_table() -> LanguageTable:
    global _table
    if _table is None:
        data = load_data_table("languages")
        _table = LanguageTable(
            roman_urdu_words=frozenset(data.get("roman_urdu_words") or []),
            greetings=tuple(data.get("greetings") or []),
            ratio=float(data.get("roman_urdu_ratio", 0.2)),
            min_matches=int(data.get("roman_urdu_min_matches", 2)),
            names=dict(data.get("names") or {}),
        )
    return _table


def _roman_urdu_matches(words: list[str], table: LanguageTable) -> int:
    return sum(1 for word in words if _NON_LETTERS.sub("", word) in table.roman_urdu_words)


def detect_language(text: Optional[str]) -> Language:
    if not text or not isinstance(text, str):
        return Language.ENGLISH

    if URDU_SCRIPT_PATTERN.search(text):
        return Language.URDU

    table = get_language_table()
    normalized = text.lower().strip()
    words = normalized.split()
    if not words:
        return Language.ENGLISH

    matches = _roman_urdu_matches(words, table)
    if matches / len(words) > table.ratio or matches >= table.min_matches:
        return Language.ROMAN_URDU

    if any(greeting in normalized for greeting in table.greetings):
        return Language.ROMAN_URDU

    return Language.ENGLISH


def language_name(language) -> str:
    code = language.value if isinstance(language, Language) else language
    return get_language_table().names.get(code, "Unknown")


def _confidence(text: str, language: Language) -> float:
    if not text:
        return 0.0
    if language == Language.URDU:
        urdu_chars = len(URDU_SCRIPT_PATTERN.findall(text))
        return min(100.0, urdu_chars / len(text) * 150)
    if language == Language.ROMAN_URDU:
        words = text.lower().split()
        if not words:
            return 0.0
        return min(100.0, _roman_urdu_matches(words, get_language_table()) / len(words) * 150)
    return 70.0


def detect_with_details(text: Optional[str]) -> dict:
    language = detect_language(text)
    text = text or ""
    return {
        "language": language.value,
        "language_name": language_name(language),
        "is_urdu_script": bool(URDU_SCRIPT_PATTERN.search(text)),
        "confidence": round(_confidence(text, language), 2),
        "analyzed_text": text[:100],
    }


def prefers_urdu(language) -> bool:
    """Anything other than English gets Urdu-variant prompts."""
    code = language.value if isinstance(language, Language) else language
    return code != Language.ENGLISH.value
