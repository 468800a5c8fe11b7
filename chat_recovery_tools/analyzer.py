"""
Content analysis: keywords, topics, entities, code blocks and key actions.

Copyright (c) 2026 Andrew Hundt
Licensed under the Apache License, Version 2.0
"""

import re
from collections import Counter
from typing import Dict, Iterable, List, Optional

from .models import (
    CodeSnippet,
    ContentAnalysis,
    EntitySet,
    Message,
    RecoverySettings,
    Role,
    Topic,
    ms_to_iso,
)

STOP_WORDS = frozenset([
    "a", "an", "the", "and", "or", "but", "is", "are", "was", "were", "be", "been", "being",
    "have", "has", "had", "do", "does", "did", "will", "would", "shall", "should", "can", "could",
    "may", "might", "must", "for", "of", "to", "in", "on", "at", "by", "with", "about", "against",
    "between", "into", "through", "during", "before", "after", "above", "below", "from", "up",
    "down", "this", "that", "these", "those", "it", "its", "they", "them", "their", "what", "which",
    "who", "whom", "when", "where", "why", "how", "all", "any", "both", "each", "few", "more",
    "most", "some", "such", "no", "nor", "not", "only", "own", "same", "so", "than", "too", "very",
    "just", "now", "also", "here", "there", "then", "always", "often", "once", "never", "ever",
])

#: File paths ending in a common source extension. Longer extensions come first
#: so ``.json`` and ``.tsx`` are not cut short at ``.js`` / ``.ts``.
FILE_PATH_RE = re.compile(
    r"[\w\-./]+\.(?:json|jsx|tsx|js|ts|py|java|rb|php|html|css|md)\b",
    re.IGNORECASE,
)
URL_RE = re.compile(r"https?://[^\s]+")
EMAIL_RE = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")

#: Fenced code block: opening fence, optional language tag, body, closing fence.
FENCED_CODE_RE = re.compile(r"```([\w+#.-]*)[ \t]*\n(.*?)```", re.DOTALL)

_NON_WORD_RE = re.compile(r"[^\w\s]")

FILE_OPERATION_MARKERS = ("write_to_file", "replace_in_file")
COMMAND_MARKERS = ("execute_command",)

#: Phrases that mark an assistant message as reporting completed work.
ACTION_TRIGGERS = (
    "I've created", "I've updated", "I've fixed",
    "I created", "I updated", "I fixed", "I implemented", "I added",
)
ACTION_PATTERNS = [
    re.compile(r"I've (created|updated|fixed|implemented|added) [^.!?]*", re.IGNORECASE),
    re.compile(r"I (created|updated|fixed|implemented|added) [^.!?]*", re.IGNORECASE),
    re.compile(r"(Created|Updated|Fixed|Implemented|Added) [^.!?]*", re.IGNORECASE),
]


def extract_keywords(text: str, limit: int = 20, min_length: int = 3) -> List[str]:
    """Most frequent non-stop-word tokens longer than ``min_length`` characters.

    Ties keep first-seen order.
    """
    words = _NON_WORD_RE.sub(" ", text.lower()).split()
    counts = Counter(w for w in words if len(w) > min_length and w not in STOP_WORDS)
    return [word for word, _ in counts.most_common(limit)]


def count_code_blocks(text: str) -> int:
    """Number of fenced code blocks in text."""
    return sum(1 for _ in FENCED_CODE_RE.finditer(text))


def extract_action_snippet(text: str) -> Optional[str]:
    """First "I created ..."-style clause in text, or None."""
    for pattern in ACTION_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(0).strip()
    return None


def _ordered_unique(items: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(items))


def analyze_messages(messages: List[Message], settings: Optional[RecoverySettings] = None) -> ContentAnalysis:
    """Aggregate counts, topics, file references and key actions over messages.

    Each message contributes its own top keywords once, so topic counts measure
    how many messages surfaced a keyword.
    """
    settings = settings or RecoverySettings()
    analysis = ContentAnalysis()
    topic_counts: Counter = Counter()
    files: Dict[str, None] = {}
    stamps: List[int] = []

    for message in messages:
        analysis.message_count += 1
        if message.role == Role.HUMAN:
            analysis.human_messages += 1
        elif message.role == Role.ASSISTANT:
            analysis.assistant_messages += 1
        if message.timestamp is not None:
            stamps.append(message.timestamp)

        text = message.text
        if not text:
            continue

        analysis.code_blocks += count_code_blocks(text)
        if any(marker in text for marker in FILE_OPERATION_MARKERS):
            analysis.file_operations += 1
        if any(marker in text for marker in COMMAND_MARKERS):
            analysis.commands_executed += 1
        for path in FILE_PATH_RE.findall(text):
            files.setdefault(path, None)
        topic_counts.update(extract_keywords(text, settings.keyword_limit, settings.min_keyword_length))

        if (
            message.role == Role.ASSISTANT
            and len(analysis.key_actions) < settings.max_key_actions
            and any(trigger in text for trigger in ACTION_TRIGGERS)
        ):
            snippet = extract_action_snippet(text)
            if snippet:
                analysis.key_actions.append(snippet)

    analysis.topics = [Topic(term, count) for term, count in topic_counts.most_common(settings.topic_limit)]
    analysis.files_referenced = list(files)
    if stamps:
        try:
            analysis.time_range = {"start": ms_to_iso(min(stamps)), "end": ms_to_iso(max(stamps))}
        except (OverflowError, OSError, ValueError):
            # Timestamps outside the platform's datetime range
            analysis.time_range = None
    return analysis


def extract_topics(messages: List[Message], limit: int = 10, min_length: int = 3) -> List[str]:
    """Keywords over the whole conversation text."""
    return extract_keywords(" ".join(m.text for m in messages), limit, min_length)


def extract_entities(messages: List[Message]) -> EntitySet:
    """File paths, URLs and email addresses, de-duplicated in first-seen order."""
    files: List[str] = []
    urls: List[str] = []
    emails: List[str] = []
    for message in messages:
        text = message.text
        files.extend(FILE_PATH_RE.findall(text))
        urls.extend(URL_RE.findall(text))
        emails.extend(EMAIL_RE.findall(text))
    return EntitySet(
        files=_ordered_unique(files),
        urls=_ordered_unique(urls),
        emails=_ordered_unique(emails),
    )


def extract_code_snippets(messages: List[Message], context_chars: int = 100) -> List[CodeSnippet]:
    """Every fenced code block with up to ``context_chars`` of preceding text."""
    snippets: List[CodeSnippet] = []
    for index, message in enumerate(messages):
        text = message.text
        for match in FENCED_CODE_RE.finditer(text):
            start = match.start()
            snippets.append(CodeSnippet(
                language=match.group(1) or "text",
                code=match.group(2).strip(),
                context=text[max(0, start - context_chars):start].strip(),
                message_index=index,
            ))
    return snippets
