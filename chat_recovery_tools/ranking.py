"""
Topic and file ranking by frequency with a recency bonus.

Copyright (c) 2026 Andrew Hundt
Licensed under the Apache License, Version 2.0
"""

import re
from typing import Callable, List

from .models import Message, RankedTerm, TopicRanking


def score_terms(
    terms: List[str],
    messages: List[Message],
    recency_weight: float,
    count_in: Callable[[str, str], int],
) -> List[RankedTerm]:
    """Score each term as ``freq + freq * recency * recency_weight``, highest first.

    ``recency`` is the last message index containing the term, normalised by
    ``max(1, len(messages) - 1)``. Equal scores keep input order.
    """
    texts = [m.text for m in messages]
    span = max(1, len(texts) - 1)
    ranked: List[RankedTerm] = []
    for term in terms:
        frequency = 0
        last_index = 0
        for index, text in enumerate(texts):
            hits = count_in(term, text)
            if hits:
                frequency += hits
                last_index = index
        score = frequency + frequency * (last_index / span) * recency_weight
        ranked.append(RankedTerm(term, frequency, last_index, score))
    return sorted(ranked, key=lambda r: r.score, reverse=True)


def _word_occurrences(term: str, text: str) -> int:
    return len(re.findall(rf"\b{re.escape(term)}\b", text, re.IGNORECASE))


def _mentioned(path: str, text: str) -> int:
    return 1 if path in text else 0


def rank_topics(topics: List[str], messages: List[Message], recency_weight: float = 0.5) -> TopicRanking:
    """Pick the main topic; remaining topics become subtopics in score order."""
    if not topics:
        return TopicRanking()
    ordered = [r.term for r in score_terms(topics, messages, recency_weight, _word_occurrences)]
    return TopicRanking(main_topic=ordered[0], subtopics=ordered[1:])


def rank_files(
    files: List[str],
    messages: List[Message],
    recency_weight: float = 2.0,
    limit: int = 10,
) -> List[str]:
    """Most active files: one mention per message that names the path, weighted toward recent ones."""
    if not files:
        return []
    return [r.term for r in score_terms(files, messages, recency_weight, _mentioned)][:limit]
