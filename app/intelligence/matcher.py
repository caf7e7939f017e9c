"""Description tokenizing, rule ordering and confidence scoring.

Everything here is pure: rules arrive as an in-memory snapshot so ordering
and tie-breaks can be checked without a database.
"""
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from rapidfuzz.distance import Levenshtein

# Whitespace plus the punctuation bank exports use as separators
TOKEN_SEPARATORS = re.compile(r"[\s*#!@$%^&()_+=\[\]{};:'\",.<>?/\\|-]+")

EXACT_BASE_CONFIDENCE = 0.9
EXACT_LENGTH_WEIGHT = 0.05
MAX_PRIORITY_BONUS = 0.1
FUZZY_MIN_SIMILARITY = 0.7
FUZZY_CONFIDENCE_SCALE = 0.7
FUZZY_MIN_WORD_LENGTH = 3

BANK_PREFIXES = re.compile(
    r"^(CARD\s+PAYMENT\s+TO|DIRECT\s+DEBIT\s+TO|STANDING\s+ORDER\s+TO|"
    r"FASTER\s+PAYMENT\s+TO|BANK\s+TRANSFER\s+TO|PAYMENT\s+TO)\s+"
)
DATE_FRAGMENT = re.compile(r"\d{1,2}[/\-.]\d{1,2}[/\-.]?\d{0,4}")
REFERENCE_CODE = re.compile(r"REF[:\s]*\w+")


@dataclass(frozen=True)
class RuleSnapshot:
    id: int
    pattern: str
    category_id: int
    priority: int = 0
    category_name: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def clean_pattern(self) -> str:
        return clean_pattern(self.pattern)


@dataclass(frozen=True)
class Suggestion:
    category_id: int
    category_name: Optional[str]
    confidence: float
    matched_rule: str


def extract_pattern(description: Optional[str]) -> Optional[str]:
    """First significant token of a description wrapped as ``%TOKEN%``.

    Significant means longer than three characters and not purely numeric.
    """
    if not description or not isinstance(description, str):
        return None

    for token in TOKEN_SEPARATORS.split(description.strip().upper()):
        if len(token) > 3 and not token.isdigit():
            return f"%{token}%"
    return None


def clean_pattern(pattern: str) -> str:
    return (pattern or "").replace("%", "").strip().upper()


def levenshtein_distance(a: str, b: str) -> int:
    return Levenshtein.distance(a, b)


def similarity(a: str, b: str) -> float:
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1 - levenshtein_distance(a, b) / longest


def order_rules(rules: Iterable[RuleSnapshot]) -> list[RuleSnapshot]:
    """Priority descending, then creation order (created_at, then id)."""
    return sorted(
        rules,
        key=lambda r: (-r.priority, r.created_at or datetime.min, r.id),
    )


def match_rule(description: Optional[str], rules: Iterable[RuleSnapshot]) -> Optional[RuleSnapshot]:
    normalized = (description or "").strip().upper()
    if not normalized:
        return None

    for rule in order_rules(rules):
        pattern = rule.clean_pattern
        if pattern and pattern in normalized:
            return rule
    return None


def score_rules(description: Optional[str], rules: Iterable[RuleSnapshot]) -> Optional[Suggestion]:
    normalized = (description or "").strip().upper()
    if not normalized:
        return None

    ordered = order_rules(rules)
    best_rule, best_confidence = None, 0.0

    for rule in ordered:
        pattern = rule.clean_pattern
        if not pattern or pattern not in normalized:
            continue
        length_ratio = len(pattern) / len(normalized)
        priority_bonus = min(rule.priority / 100, MAX_PRIORITY_BONUS)
        confidence = min(EXACT_BASE_CONFIDENCE + length_ratio * EXACT_LENGTH_WEIGHT + priority_bonus, 1.0)
        if confidence > best_confidence:
            best_rule, best_confidence = rule, confidence

    if best_rule is None:
        words = normalized.split()
        for rule in ordered:
            pattern = rule.clean_pattern
            if not pattern:
                continue
            for word in words:
                if len(word) < FUZZY_MIN_WORD_LENGTH:
                    continue
                score = similarity(word, pattern)
                if score < FUZZY_MIN_SIMILARITY:
                    continue
                confidence = score * FUZZY_CONFIDENCE_SCALE
                if confidence > best_confidence:
                    best_rule, best_confidence = rule, confidence

    if best_rule is None:
        return None

    return Suggestion(
        category_id=best_rule.category_id,
        category_name=best_rule.category_name,
        confidence=round(best_confidence, 2),
        matched_rule=best_rule.pattern,
    )


def merchant_signature(description: str) -> str:
    cleaned = re.sub(r"[^A-Z\s]", " ", (description or "").upper()).strip()
    words = [w for w in cleaned.split() if len(w) > 2]
    return words[0] if words else (description or "").upper()[:10]


def extract_merchant_name(description: Optional[str]) -> str:
    if not description:
        return ""

    name = BANK_PREFIXES.sub("", description.upper().strip())
    name = DATE_FRAGMENT.sub("", name)
    name = REFERENCE_CODE.sub("", name)
    name = re.sub(r"\s+", " ", name).strip()

    head = re.split(r"[,*\-/\\|]", name)[0].strip()
    if len(head) > 2:
        name = head

    return " ".join(word.capitalize() for word in name.split(" ") if word)
