from __future__ import annotations

import hashlib

NOVELTY_BASE = 0.5
LONG_CONTENT_CHARS = 1000
VERY_LONG_CONTENT_CHARS = 3000
LENGTH_BONUS = 0.1
KEYWORD_WEIGHT = 0.3


def content_fingerprint(content: str | None) -> str:
    raw = (content or "").encode("utf-8")
    return hashlib.sha256(raw).hexdigest()[:16]


def target_keywords(branch_target: str) -> list[str]:
    return [token for token in branch_target.lower().split() if token]


def keyword_coverage(keywords: list[str], content: str | None) -> float:
    if not keywords:
        return 0.0
    content_lower = (content or "").lower()
    hits = sum(1 for keyword in keywords if keyword in content_lower)
    return hits / len(keywords)


def assess_novelty(content: str | None, keywords: list[str]) -> float:
    text = content or ""
    novelty = NOVELTY_BASE
    if len(text) > LONG_CONTENT_CHARS:
        novelty += LENGTH_BONUS
    if len(text) > VERY_LONG_CONTENT_CHARS:
        novelty += LENGTH_BONUS
    novelty += keyword_coverage(keywords, text) * KEYWORD_WEIGHT
    return min(1.0, novelty)


def clamp_unit(value: float) -> float:
    return max(0.0, min(1.0, value))
