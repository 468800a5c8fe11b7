"""
Data models for conversation recovery - dataclasses, enums and a closed content union.

Copyright (c) 2026 Andrew Hundt
Licensed under the Apache License, Version 2.0
"""

import datetime
import math
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Tuple, Union

import orjson


class Role(str, Enum):
    """Conversation message roles."""

    HUMAN = "human"
    ASSISTANT = "assistant"
    SYSTEM = "system"


VALID_ROLES: Set[str] = {r.value for r in Role}


# ── Message content (closed tagged union) ─────────────────────────────────────

@dataclass(frozen=True)
class TextContent:
    """Plain string content."""

    text: str


@dataclass(frozen=True)
class PartsContent:
    """Ordered list of content parts: raw strings or blocks carrying a ``text`` field."""

    parts: Tuple[Any, ...]


@dataclass(frozen=True)
class StructuredContent:
    """Any other JSON value (object, number, bool or null)."""

    value: Any


MessageContent = Union[TextContent, PartsContent, StructuredContent]


def content_from_raw(raw: Any) -> MessageContent:
    """Classify a decoded JSON ``content`` value into the content union."""
    if isinstance(raw, str):
        return TextContent(raw)
    if isinstance(raw, list):
        return PartsContent(tuple(raw))
    return StructuredContent(raw)


def _part_text(part: Any) -> str:
    if isinstance(part, str):
        return part
    if isinstance(part, dict) and isinstance(part.get("text"), str):
        return part["text"]
    return ""


def extract_text(content: MessageContent) -> str:
    """Flatten message content to plain text.

    This is the only place that inspects the shape of message content:

    - ``TextContent``: the string itself
    - ``PartsContent``: parts joined by a single space; blocks without a
      string ``text`` field contribute an empty string
    - ``StructuredContent``: compact JSON, or ``""`` for null
    """
    if isinstance(content, TextContent):
        return content.text
    if isinstance(content, PartsContent):
        return " ".join(_part_text(p) for p in content.parts)
    if content.value is None:
        return ""
    return orjson.dumps(content.value).decode("utf-8")


@dataclass
class Message:
    """One recovered conversation message.

    Attributes:
        role: Who sent the message
        content: Classified message content
        timestamp: Epoch milliseconds, when the source carried one
        source_size: Size in bytes of the raw text the message was decoded from
    """

    role: Role
    content: MessageContent
    timestamp: Optional[int] = None
    source_size: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any], source_size: int = 0) -> "Message":
        """Build from an already-validated JSON object."""
        ts = data.get("timestamp")
        if isinstance(ts, bool) or not isinstance(ts, (int, float)) or not math.isfinite(ts):
            ts = None
        return cls(
            role=Role(data["role"]),
            content=content_from_raw(data["content"]),
            timestamp=int(ts) if ts is not None else None,
            source_size=source_size,
        )

    @property
    def text(self) -> str:
        """Message content flattened to plain text."""
        return extract_text(self.content)

    def preview(self, limit: int = 100) -> str:
        """Get preview of message text.

        Args:
            limit: Max characters to show. 0 = no limit (full content).
        """
        text = self.text.replace("\n", " ")
        if limit and len(text) > limit:
            return text[:limit]
        return text

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {"role": self.role.value, "content": self.text, "timestamp": self.timestamp}


# ── Analysis results ──────────────────────────────────────────────────────────

@dataclass(frozen=True)
class CodeSnippet:
    """A fenced code block plus the text that introduced it."""

    language: str
    code: str
    context: str
    message_index: int

    def to_dict(self) -> dict:
        return {
            "language": self.language,
            "code": self.code,
            "context": self.context,
            "message_index": self.message_index,
        }


@dataclass(frozen=True)
class CodeEvolution:
    """Successive versions of the same file, function or snippet.

    Attributes:
        file: Grouping key (a file path, ``function:<name>``, ``class:<name>``
              or ``snippet:<hash>``)
        language: Language tag of the latest version
        code: Latest version of the code
        description: Narrative comparing the first and latest versions
        iterations: Number of versions seen
        first_index: Message index of the first version
        last_index: Message index of the latest version
    """

    file: str
    language: str
    code: str
    description: str
    iterations: int
    first_index: int = 0
    last_index: int = 0

    def to_dict(self) -> dict:
        return {
            "file": self.file,
            "language": self.language,
            "code": self.code,
            "description": self.description,
            "iterations": self.iterations,
            "first_index": self.first_index,
            "last_index": self.last_index,
        }


@dataclass(frozen=True)
class Topic:
    """Keyword and how many messages surfaced it."""

    term: str
    frequency: int

    def to_dict(self) -> dict:
        return {"topic": self.term, "count": self.frequency}


@dataclass(frozen=True)
class RankedTerm:
    """Topic or file scored by frequency and recency."""

    term: str
    frequency: int
    recency: int
    score: float


@dataclass(frozen=True)
class TopicRanking:
    """Main topic plus the remaining topics in score order."""

    main_topic: str = "unknown"
    subtopics: List[str] = field(default_factory=list)


@dataclass
class ContentAnalysis:
    """Aggregate statistics over a list of messages."""

    message_count: int = 0
    human_messages: int = 0
    assistant_messages: int = 0
    topics: List[Topic] = field(default_factory=list)
    code_blocks: int = 0
    file_operations: int = 0
    commands_executed: int = 0
    files_referenced: List[str] = field(default_factory=list)
    key_actions: List[str] = field(default_factory=list)
    time_range: Optional[Dict[str, str]] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        data = {
            "message_count": self.message_count,
            "human_messages": self.human_messages,
            "assistant_messages": self.assistant_messages,
            "topics": [t.to_dict() for t in self.topics],
            "code_blocks": self.code_blocks,
            "file_operations": self.file_operations,
            "commands_executed": self.commands_executed,
            "files_referenced": self.files_referenced,
            "key_actions": self.key_actions,
        }
        if self.time_range is not None:
            data["time_range"] = self.time_range
        return data


@dataclass
class EntitySet:
    """Ordered, de-duplicated entities found in message text."""

    files: List[str] = field(default_factory=list)
    urls: List[str] = field(default_factory=list)
    emails: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class MessageCount:
    """Recovered vs. estimated message totals."""

    total: int = 0
    recovered: int = 0
    human: int = 0
    assistant: int = 0

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "recovered": self.recovered,
            "human": self.human,
            "assistant": self.assistant,
        }


@dataclass(frozen=True)
class RecentMessage:
    """Tail message as rendered into a recovery report."""

    role: str
    content: str
    index: int
    timestamp: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "role": self.role,
            "content": self.content,
            "index": self.index,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class RecoveryResult:
    """Structured, confidence-scored reconstruction of a crashed conversation."""

    original_task: str = ""
    summary: str = ""
    modified_files: List[str] = field(default_factory=list)
    key_topics: List[str] = field(default_factory=list)
    main_topic: str = "unknown"
    subtopics: List[str] = field(default_factory=list)
    urls: List[str] = field(default_factory=list)
    emails: List[str] = field(default_factory=list)
    code_snippets: List[CodeSnippet] = field(default_factory=list)
    code_evolution: List[CodeEvolution] = field(default_factory=list)
    timeline: str = ""
    decision_points: List[str] = field(default_factory=list)
    latest_state: str = ""
    recent_messages: List[RecentMessage] = field(default_factory=list)
    current_status: str = ""
    active_files: List[str] = field(default_factory=list)
    open_questions: List[str] = field(default_factory=list)
    recovery_confidence: float = 0.0
    message_count: MessageCount = field(default_factory=MessageCount)
    recovery_strategy: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "original_task": self.original_task,
            "summary": self.summary,
            "modified_files": self.modified_files,
            "key_topics": self.key_topics,
            "main_topic": self.main_topic,
            "subtopics": self.subtopics,
            "urls": self.urls,
            "emails": self.emails,
            "code_snippets": [s.to_dict() for s in self.code_snippets],
            "code_evolution": [e.to_dict() for e in self.code_evolution],
            "timeline": self.timeline,
            "decision_points": self.decision_points,
            "latest_state": self.latest_state,
            "recent_messages": [m.to_dict() for m in self.recent_messages],
            "current_status": self.current_status,
            "active_files": self.active_files,
            "open_questions": self.open_questions,
            "recovery_confidence": self.recovery_confidence,
            "message_count": self.message_count.to_dict(),
            "recovery_strategy": self.recovery_strategy,
        }


@dataclass(frozen=True)
class CrashReport:
    """Persistable summary of a crashed conversation.

    Only constructed here; writing it anywhere is the caller's job.
    """

    id: str
    task_id: str
    timestamp: int
    summary: str
    main_topic: str
    subtopics: List[str]
    active_files: List[str]
    open_questions: List[str]
    current_status: str
    formatted_message: str
    read: bool = False

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "task_id": self.task_id,
            "timestamp": self.timestamp,
            "summary": self.summary,
            "main_topic": self.main_topic,
            "subtopics": self.subtopics,
            "active_files": self.active_files,
            "open_questions": self.open_questions,
            "current_status": self.current_status,
            "formatted_message": self.formatted_message,
            "read": self.read,
        }


def ms_to_iso(ms: int) -> str:
    """Render epoch milliseconds as an ISO-8601 UTC string (``...Z``)."""
    moment = datetime.datetime.fromtimestamp(ms / 1000, tz=datetime.timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


# ── Filters and settings ──────────────────────────────────────────────────────

@dataclass
class FilterSpec:
    """Message filter specification.

    Plain data; ``MessageFilter.from_spec`` turns it into predicates.
    """

    # Epoch milliseconds; 0 disables. Messages without a timestamp are excluded when set.
    since: int = 0

    # Case-insensitive substring of message text
    search: Optional[str] = None

    # Empty set means every role
    roles: Set[Role] = field(default_factory=set)

    # Maximum number of messages kept after the other filters
    limit: Optional[int] = None

    def with_roles(self, *roles: Role) -> "FilterSpec":
        """Builder: restrict to the given roles."""
        self.roles = set(roles)
        return self


@dataclass(frozen=True)
class RecoverySettings:
    """Tunable heuristics for the recovery pipeline.

    Every field can be overridden from the config file; see ``cli.load_config``.
    """

    # Ranking
    topic_recency_weight: float = 0.5
    file_recency_weight: float = 2.0
    max_active_files: int = 10

    # Keywords / topics
    min_keyword_length: int = 3
    keyword_limit: int = 20
    topic_limit: int = 10
    max_key_actions: int = 10

    # Open questions: answered when overlap of significant words is strictly above the ratio
    answered_overlap_ratio: float = 0.5
    significant_word_length: int = 4
    open_question_window: int = 20
    max_open_questions: int = 5

    # Narrative
    max_decision_points: int = 10
    timeline_segments: int = 5
    status_window: int = 5
    recent_message_count: int = 15
    latest_state_count: int = 10
    latest_state_max_chars: int = 500
    original_task_max_chars: int = 500
    context_chars: int = 100

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "RecoverySettings":
        """Build settings from a config mapping; unknown keys are ignored.

        Raises:
            ValueError: If a known key holds a non-numeric, non-finite or negative
                value, or a fractional value for an integer setting.
        """
        if not data:
            return cls()
        kwargs: Dict[str, Any] = {}
        for f in fields(cls):
            if f.name not in data:
                continue
            value = data[f.name]
            if (
                isinstance(value, bool)
                or not isinstance(value, (int, float))
                or not math.isfinite(value)
                or value < 0
            ):
                raise ValueError(f"Setting {f.name!r} must be a non-negative number, got {value!r}")
            if isinstance(f.default, int) and not float(value).is_integer():
                raise ValueError(f"Setting {f.name!r} must be a whole number, got {value!r}")
            kwargs[f.name] = type(f.default)(value)
        return cls(**kwargs)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {f.name: getattr(self, f.name) for f in fields(self)}
