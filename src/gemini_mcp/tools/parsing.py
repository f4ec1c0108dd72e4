"""Heuristic extraction of structure from free-form model text.

The v2 tools ask the model for sectioned answers and then recover fields,
scores, bullet lists and numbered ideas from the reply line by line. These
helpers are pure functions of the text.
"""

from __future__ import annotations

import math
import re
from collections import Counter
from collections.abc import Sequence
from typing import Any

_SCORE = re.compile(r"(\d+\.?\d*)/10|score[:\s]+(\d+\.?\d*)", re.IGNORECASE)
_IDEA_LINE = re.compile(r"^\s*(\d+)\.?\s*(.+)$")
_WORD = re.compile(r"\b[a-zA-Z]{4,}\b")
_QUOTE = re.compile(r'"([^"]{20,})"')
_EDGE = re.compile(r"^[\W\d_]+|[\W\d_]+$")

EMOTIONS = ("joy", "sadness", "anger", "fear", "surprise", "trust")

_COMMON_STOP_WORDS = frozenset({
    "that", "this", "with", "from", "have", "will", "would", "could",
    "should", "about", "which", "their", "there", "these", "those",
    "been", "being", "were", "when", "where", "while", "after", "before",
})
_IDEA_STOP_WORDS = _COMMON_STOP_WORDS | {
    "using", "make", "more", "into", "over", "such", "also", "some",
    "than", "them", "then", "very", "well", "only", "just", "even",
}


def extract_field(text: str, name: str) -> str | None:
    """Value after the first ':' on the first line mentioning ``name``."""
    needle = name.lower()
    for line in text.splitlines():
        if needle in line.lower():
            parts = line.split(":")
            return parts[1].strip() if len(parts) > 1 else ""
    return None


def extract_score(text: str) -> float | None:
    """First ``N/10`` or ``score: N`` figure in the text."""
    if (m := _SCORE.search(text)) is None:
        return None
    return float(m.group(1) or m.group(2))


def extract_list(text: str, keyword: str) -> list[str]:
    """Bullet lines (``-``, ``*`` or ``•``) that mention ``keyword``."""
    needle = keyword.lower()
    return [
        line.lstrip("-").lstrip("*").lstrip("•").strip()
        for line in text.splitlines()
        if needle in line.lower() and (line.startswith(("-", "*")) or "•" in line)
    ]


def extract_issues(text: str) -> list[dict[str, Any]]:
    return [
        {"severity": "medium", "category": "general", "description": line.strip(), "location": None}
        for line in text.splitlines()
        if "issue" in (low := line.lower()) or "problem" in low
    ]


def extract_emotions(text: str) -> list[dict[str, Any]]:
    low = text.lower()
    return [{"name": e, "intensity": 0.5} for e in EMOTIONS if e in low]


def parse_ideas(text: str) -> list[dict[str, Any]]:
    """Numbered lines become ideas; other non-blank lines continue the previous one."""
    ideas: list[dict[str, Any]] = []
    for line in text.splitlines():
        if m := _IDEA_LINE.match(line):
            ideas.append({"id": len(ideas) + 1, "text": m.group(2).strip()})
        elif line.strip() and ideas:
            ideas[-1]["text"] += " " + line.strip()
    return ideas


def extract_consensus_themes(ideas: Sequence[dict[str, Any]], *, limit: int = 10) -> list[dict[str, Any]]:
    """Keywords shared by at least 30% of ideas, most frequent first."""
    by_word: dict[str, list[int]] = {}
    for idea in ideas:
        for word in dict.fromkeys(w.lower() for w in _WORD.findall(idea["text"])):
            by_word.setdefault(word, []).append(idea["id"])

    threshold = math.ceil(len(ideas) * 0.3)
    themes = [
        {"theme": word, "frequency": len(ids), "related_ideas": ids}
        for word, ids in by_word.items()
        if len(ids) >= threshold and word not in _IDEA_STOP_WORDS
    ]
    themes.sort(key=lambda t: t["frequency"], reverse=True)
    return themes[:limit]


def extract_key_topics(text: str, *, limit: int = 5) -> list[str]:
    """Most frequent words (4+ letters, seen at least twice, no stop words)."""
    counts: Counter[str] = Counter()
    for raw in text.split():
        word = _EDGE.sub("", raw).lower()
        if len(word) >= 4:
            counts[word] += 1
    return [w for w, n in counts.most_common() if n >= 2 and w not in _COMMON_STOP_WORDS][:limit]


def word_count(text: str) -> int:
    return len(text.split())


# ─── Search ───────────────────────────────────────────────────────────────

def extract_answer(text: str) -> str:
    """The ``Answer:`` line, else the first three lines joined."""
    for line in text.splitlines():
        if line.lower().startswith("answer:"):
            return line.split(":")[1].strip()
    return " ".join(text.splitlines()[:3]).strip()


def _excerpt_for(text: str, source: dict[str, Any]) -> str:
    title = source["title"].lower()
    for para in text.split("\n\n"):
        if title in para.lower():
            return para[:200]
    return source["content"][:100]


def extract_results(text: str, sources: Sequence[dict[str, Any]]) -> list[dict[str, Any]]:
    """Sources whose title or id the answer mentions, with an excerpt."""
    low = text.lower()
    return [
        {
            "source_id": s["id"],
            "source_title": s["title"],
            "excerpt": _excerpt_for(text, s),
            "relevance_score": 0.7,
        }
        for s in sources
        if s["title"].lower() in low or s["id"] in text
    ]


def extract_citations(text: str, sources: Sequence[dict[str, Any]]) -> list[dict[str, Any]]:
    """Quoted passages (20+ chars) attributed to the first source containing them."""
    citations: list[dict[str, Any]] = []
    for quote in _QUOTE.findall(text):
        q = quote.lower()
        if (src := next((s for s in sources if q in s["content"].lower()), None)) is not None:
            citations.append({"source_id": src["id"], "source_title": src["title"], "quote": quote})
    return citations
