# Portfolio Guard - AI Access-Control & Context-Assembly Engine
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""
Relevance Scoring

Term-overlap scoring between a query and candidate content. Title and
keyword hits outweigh body hits; per-section importance scales the raw
score. All scores are capped at 1.
"""

from .models import TYPE_PRIORITY, RelevantContent

MIN_TERM_LENGTH = 3


def query_terms(query: str) -> list[str]:
    """Lowercased whitespace-separated terms longer than two characters."""
    return [t for t in query.lower().split() if len(t) >= MIN_TERM_LENGTH]


def score_section(
    query: str,
    title: str,
    content: str,
    keywords: list[str],
    importance: float = 1.0,
) -> float:
    """
    Score an indexed section.

    Per term: +0.5 for a title hit, +0.3 for a keyword hit and
    min(occurrences * 0.1, 0.4) for occurrences anywhere in the text.
    """
    terms = query_terms(query)
    if not terms:
        return 0.0

    title_lower = title.lower()
    keywords_lower = [k.lower() for k in keywords]
    text = f"{title} {content} {' '.join(keywords)}".lower()

    score = 0.0
    for term in terms:
        if term in title_lower:
            score += 0.5
        if any(term in k for k in keywords_lower):
            score += 0.3
        score += min(text.count(term) * 0.1, 0.4)

    return min(score * importance, 1.0)


def score_text(query: str, content: str) -> float:
    """Score plain text: min(occurrences * 0.2, 0.6) per term."""
    terms = query_terms(query)
    if not terms:
        return 0.0
    lower = content.lower()
    score = sum(min(lower.count(term) * 0.2, 0.6) for term in terms)
    return min(score, 1.0)


def prioritize(items: list[RelevantContent]) -> list[RelevantContent]:
    """Highest relevance first; ties by content type, then shorter title."""
    return sorted(
        items,
        key=lambda c: (-c.relevance_score, -TYPE_PRIORITY.get(c.type, 0), len(c.title)),
    )


__all__ = ["query_terms", "score_section", "score_text", "prioritize"]
