"""
Narrative synthesis: open questions, decision points, timeline, status and summary.

Classification heuristics live in data tables (DEFAULT_DECISION_PATTERNS,
DEFAULT_STATUS_PATTERNS, NEXT_STEP_PATTERNS) so they can be extended without
touching the control flow below.

Copyright (c) 2026 Andrew Hundt
Licensed under the Apache License, Version 2.0
"""

import math
import re
import string
from dataclasses import dataclass
from typing import List, Optional, Pattern, Sequence, Tuple

from .analyzer import analyze_messages, extract_code_snippets, extract_topics
from .models import Message, RecentMessage, RecoverySettings, Role

#: Sentence boundary: terminal punctuation followed by whitespace, so "foo.js" or "v1.2" stay whole.
_SENTENCE_END_RE = re.compile(r"(?<=[.!?])\s+")
_QUESTION_LEAD_RE = re.compile(
    r"^(what|how|why|when|where|who|which|can|could|would|should|is|are|do|does|did|have|has|had)\s+",
    re.IGNORECASE,
)

NO_MESSAGES_STATUS = "No conversation data available."
NO_MESSAGES_TIMELINE = "No messages recovered."
NO_MESSAGES_STATE = "No messages were recovered, so the conversation state at the time of the crash is unknown."
CRASH_STATE_NOTE = "The conversation was in this state when it crashed."


def _tail(messages: Sequence[Message], count: int) -> List[Message]:
    return list(messages[max(0, len(messages) - count):])


def _last_by_role(messages: Sequence[Message], role: Role) -> Optional[Message]:
    for message in reversed(messages):
        if message.role == role:
            return message
    return None


# ── Original task / recent messages / latest state ────────────────────────────

def extract_original_task(messages: List[Message], max_chars: int = 500) -> str:
    """First ``max_chars`` characters of the first human message, or ``""``."""
    first = next((m for m in messages if m.role == Role.HUMAN), None)
    return first.text[:max_chars] if first else ""


def extract_recent_messages(messages: List[Message], count: int = 15) -> List[RecentMessage]:
    """Last ``count`` messages with their absolute index in the conversation."""
    offset = max(0, len(messages) - count)
    return [
        RecentMessage(role=m.role.value, content=m.text, index=offset + i, timestamp=m.timestamp)
        for i, m in enumerate(messages[offset:])
    ]


def extract_latest_state(messages: List[Message], count: int = 10, max_chars: int = 500) -> str:
    """Transcript fragment of the last ``count`` messages as they stood at the crash."""
    last = _tail(messages, count)
    if not last:
        return NO_MESSAGES_STATE
    blocks = [f"Last {len(last)} messages summary:"]
    for message in last:
        label = {Role.ASSISTANT: "Assistant", Role.SYSTEM: "System"}.get(message.role, "User")
        text = message.text
        if len(text) > max_chars:
            text = text[:max_chars] + "..."
        blocks.append(f"{label}: {text}")
    blocks.append(CRASH_STATE_NOTE)
    return "\n\n".join(blocks)


# ── Open questions ────────────────────────────────────────────────────────────

def _significant_words(question: str, min_length: int) -> List[str]:
    words = (w.strip(string.punctuation) for w in question.lower().split())
    return [w for w in words if len(w) > min_length]


def _is_answered(question: str, later: Sequence[Message], settings: RecoverySettings) -> bool:
    words = _significant_words(question, settings.significant_word_length)
    if not words:
        return False
    for message in later:
        if message.role != Role.ASSISTANT:
            continue
        reply = message.text.lower()
        shared = sum(1 for w in words if w in reply)
        if shared > len(words) * settings.answered_overlap_ratio:
            return True
    return False


def extract_open_questions(messages: List[Message], settings: Optional[RecoverySettings] = None) -> List[str]:
    """Questions from recent human messages that no later assistant message answered.

    A question counts as answered when a later assistant message in the window
    contains more than ``answered_overlap_ratio`` of its significant words.
    """
    settings = settings or RecoverySettings()
    window = _tail(messages, settings.open_question_window)
    questions: List[str] = []
    for i, message in enumerate(window):
        if message.role != Role.HUMAN:
            continue
        text = message.text
        if "?" not in text:
            continue
        for sentence in _SENTENCE_END_RE.split(text):
            if "?" not in sentence:
                continue
            question = sentence.strip().rstrip(string.punctuation + " ").strip()
            if question and not _is_answered(question, window[i + 1:], settings):
                questions.append(question)
    return list(dict.fromkeys(questions))[: settings.max_open_questions]


# ── Decision points ───────────────────────────────────────────────────────────

@dataclass(frozen=True)
class DecisionPattern:
    """One row of the decision-point table.

    Attributes:
        category: Short label for the kind of decision
        role: Role whose messages are inspected
        triggers: At least one must appear in the text (case-sensitive)
        extract: Regexes tried in order; the first match fills ``{match}``.
                 Empty means the template is used as-is once triggered.
        template: Output text
        requires: Every one must appear in the text
    """

    category: str
    role: Role
    triggers: Tuple[str, ...]
    extract: Tuple[Pattern, ...]
    template: str
    requires: Tuple[str, ...] = ()

    def describe(self, message: Message) -> Optional[str]:
        """Decision text for a message, or None when the pattern does not apply."""
        if message.role != self.role:
            return None
        text = message.text
        if not all(r in text for r in self.requires):
            return None
        if not any(t in text for t in self.triggers):
            return None
        if not self.extract:
            return self.template
        for pattern in self.extract:
            match = pattern.search(text)
            if match:
                return self.template.format(match=match.group(0))
        return None


DEFAULT_DECISION_PATTERNS: List[DecisionPattern] = [
    DecisionPattern(
        "decision", Role.HUMAN,
        triggers=("I decided", "we decided", "let's go with", "I'll choose", "I prefer"),
        extract=(
            re.compile(r"(I|we) decided to [^.]+", re.IGNORECASE),
            re.compile(r"let's go with [^.]+", re.IGNORECASE),
            re.compile(r"(I|we)'ll choose [^.]+", re.IGNORECASE),
            re.compile(r"(I|we) prefer [^.]+", re.IGNORECASE),
        ),
        template="Decision: {match}",
    ),
    DecisionPattern(
        "options", Role.ASSISTANT,
        triggers=("Option 1", "1.", "First"),
        extract=(),
        template="Assistant presented multiple options or approaches.",
        requires=("options",),
    ),
    DecisionPattern(
        "recommendation", Role.ASSISTANT,
        triggers=("recommend", "suggest", "best approach", "better option"),
        extract=(
            re.compile(r"I (recommend|suggest) [^.]+", re.IGNORECASE),
            re.compile(r"The (best|better) (approach|option) is [^.]+", re.IGNORECASE),
        ),
        template="Recommendation: {match}",
    ),
]

#: Phrases that make a human question a request for guidance between alternatives.
OPTION_SEEKING_PHRASES = ("should I", "could we", "what if", "options", "alternatives", "approach")


def _guided_question(messages: List[Message], index: int) -> Optional[str]:
    message = messages[index]
    if message.role != Role.HUMAN:
        return None
    text = message.text
    if "?" not in text or not any(p in text for p in OPTION_SEEKING_PHRASES):
        return None
    if index + 1 >= len(messages) or messages[index + 1].role != Role.ASSISTANT:
        return None
    question = text.split("?")[0] + "?"
    return f'Question: "{question[:100]}..." - Decision made based on assistant\'s guidance.'


def identify_decision_points(
    messages: List[Message],
    patterns: Optional[List[DecisionPattern]] = None,
    limit: int = 10,
) -> List[str]:
    """Decisions, recommendations and guided questions, de-duplicated in order."""
    patterns = DEFAULT_DECISION_PATTERNS if patterns is None else patterns
    found: List[str] = []
    for index, message in enumerate(messages):
        guided = _guided_question(messages, index)
        if guided:
            found.append(guided)
        for pattern in patterns:
            described = pattern.describe(message)
            if described:
                found.append(described)
    return list(dict.fromkeys(found))[:limit]


# ── Timeline ──────────────────────────────────────────────────────────────────

def generate_timeline(messages: List[Message], settings: Optional[RecoverySettings] = None) -> str:
    """One line per index range: topics, key actions and shared code blocks."""
    settings = settings or RecoverySettings()
    if not messages:
        return NO_MESSAGES_TIMELINE
    size = max(1, math.ceil(len(messages) / max(1, settings.timeline_segments)))
    lines: List[str] = []
    for start in range(0, len(messages), size):
        segment = messages[start:start + size]
        analysis = analyze_messages(segment, settings)
        parts = [f"Messages {start + 1}-{start + len(segment)}:"]
        topics = [t.term for t in analysis.topics[:3]]
        if topics:
            parts.append(f"Discussed {', '.join(topics)}.")
        actions = analysis.key_actions[:2]
        if actions:
            parts.append(". ".join(actions) + ".")
        if analysis.code_blocks:
            plural = "s" if analysis.code_blocks > 1 else ""
            parts.append(f"Shared {analysis.code_blocks} code block{plural}.")
        lines.append(" ".join(parts))
    return "\n".join(lines)


# ── Current status ────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class StatusPattern:
    """One row of the current-status table.

    ``template`` may use ``{question_topic}``, ``{code_context}`` and ``{topic}``.
    """

    category: str
    role: Role
    markers: Tuple[str, ...]
    template: str

    def applies(self, human_text: str, assistant_text: str) -> bool:
        text = human_text if self.role == Role.HUMAN else assistant_text
        return any(marker in text for marker in self.markers)


DEFAULT_STATUS_PATTERNS: List[StatusPattern] = [
    StatusPattern("answering", Role.HUMAN, ("?",), "I was answering your question about {question_topic}."),
    StatusPattern("coding", Role.ASSISTANT, ("```",), "I was implementing code for you.{code_context}"),
    StatusPattern(
        "explaining", Role.ASSISTANT, ("explain", "means", "works"),
        "I was explaining a concept or providing information.",
    ),
]
DEFAULT_STATUS_TEMPLATE = "we were discussing {topic}."

NEXT_STEP_PATTERNS: List[Pattern] = [
    re.compile(r"next,?\s+(we|you|I)\s+(should|could|will|would|can|need to)\s+([^.!?]+)", re.IGNORECASE),
    re.compile(r"then,?\s+(we|you|I)\s+(should|could|will|would|can|need to)\s+([^.!?]+)", re.IGNORECASE),
]
DEFAULT_NEXT_STEP = "continue with the implementation or discussion"


def extract_question_topic(question: str, max_chars: int = 50) -> str:
    """Question text without question marks or a leading question word, shortened."""
    cleaned = _QUESTION_LEAD_RE.sub("", question.replace("?", "").strip()).strip()
    if len(cleaned) < max_chars:
        return cleaned
    return cleaned[:max_chars] + "..."


def guess_next_step(assistant_text: str) -> str:
    """Next step announced by the assistant ("next, we should ..."), else a generic phrase."""
    for pattern in NEXT_STEP_PATTERNS:
        match = pattern.search(assistant_text)
        if match:
            return match.group(3).strip()
    return DEFAULT_NEXT_STEP


def determine_current_status(
    messages: List[Message],
    settings: Optional[RecoverySettings] = None,
    patterns: Optional[List[StatusPattern]] = None,
) -> str:
    """Describe what was happening when the conversation stopped."""
    settings = settings or RecoverySettings()
    patterns = DEFAULT_STATUS_PATTERNS if patterns is None else patterns
    if not messages:
        return NO_MESSAGES_STATUS

    window = _tail(messages, settings.status_window)
    assistant = _last_by_role(window, Role.ASSISTANT)
    human = _last_by_role(window, Role.HUMAN)
    prefix = "At the time of the crash, "

    if assistant is None and human is None:
        return prefix + "the conversation was ongoing."
    if human is None:
        return prefix + "I had just provided information or completed a task, and was waiting for your response."
    if assistant is None:
        return prefix + "you had just asked a question or provided information, and I was about to respond."

    human_text, assistant_text = human.text, assistant.text
    template = DEFAULT_STATUS_TEMPLATE
    for pattern in patterns:
        if pattern.applies(human_text, assistant_text):
            template = pattern.template
            break

    snippets = extract_code_snippets([assistant], settings.context_chars)
    code_context = ""
    if snippets and snippets[0].context:
        code_context = f" Specifically, I was working on {snippets[0].context}."
    topics = extract_topics(window, 1, settings.min_keyword_length)

    body = template.format(
        question_topic=extract_question_topic(human_text),
        code_context=code_context,
        topic=topics[0] if topics else "various topics",
    )
    return f"{prefix}{body} The next step was likely to {guess_next_step(assistant_text)}."


# ── Summary ───────────────────────────────────────────────────────────────────

def truncate(text: str, max_length: int) -> str:
    """Cut text to ``max_length`` characters, ending in ``...`` when shortened."""
    if len(text) <= max_length:
        return text
    if max_length < 3:
        return "..."[:max_length]
    return text[: max_length - 3] + "..."


def generate_summary(
    messages: List[Message],
    max_length: int = 2000,
    settings: Optional[RecoverySettings] = None,
) -> str:
    """Prose summary of counts, topics, operations and key actions.

    Raises:
        ValueError: If ``max_length`` is negative.
    """
    if max_length < 0:
        raise ValueError(f"max_length must be >= 0, got {max_length}")
    analysis = analyze_messages(messages, settings)
    parts = [
        f"This conversation had {len(messages)} messages "
        f"({analysis.human_messages} from human, {analysis.assistant_messages} from assistant)."
    ]
    if analysis.topics:
        parts.append(f"The main topics discussed were: {', '.join(t.term for t in analysis.topics[:5])}.")
    if analysis.file_operations:
        parts.append(f"There were {analysis.file_operations} file operations.")
    if analysis.commands_executed:
        parts.append(f"{analysis.commands_executed} commands were executed.")
    if analysis.code_blocks:
        parts.append(f"The conversation included {analysis.code_blocks} code blocks.")
    if analysis.key_actions:
        parts.append(f"Key actions: {'; '.join(analysis.key_actions)}.")
    return truncate(" ".join(parts), max_length)
