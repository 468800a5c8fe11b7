"""
Output formatters: recovery narrative, JSON, Rich tables and plain text.

Copyright (c) 2026 Andrew Hundt
Licensed under the Apache License, Version 2.0
"""

import json
from abc import ABC, abstractmethod
from typing import Any, List

from rich.console import Console
from rich.table import Table

from .models import ContentAnalysis, Message, RecoveryResult

#: Per-message character cap in the narrative's recent-conversation section.
NARRATIVE_MESSAGE_CHARS = 300

MEMORY_BANK_FILES = (
    ("/memory-bank/progress.md", "For progress tracking"),
    ("/memory-bank/techContext.md", "For technical context"),
    ("/memory-bank/productContext.md", "For product context"),
)


def format_recovered_context(result: RecoveryResult) -> str:
    """Render a recovery result as the narrative shown to the user after a crash.

    Pure template: every section is derived from ``result`` alone.
    """
    out: List[str] = []
    add = out.append

    add("📋 CONVERSATION RECOVERY\n\n")
    add(f"This is a recovered conversation primarily about {result.main_topic}.\n\n")

    add("📊 DISCUSSION TOPICS\n")
    add(f"Main focus: {result.main_topic}\n")
    if result.subtopics:
        add("Related topics:\n")
        for topic in result.subtopics[:10]:
            add(f"- {topic}\n")
    add("\nThe original conversation crashed, but I've analyzed its content to help us continue where you left off.\n\n")

    add("🎯 PROJECT CONTEXT\n")
    task = result.original_task or f"a project related to {result.main_topic}"
    add(f"You were working on {task}.\n")
    add(f"{result.summary}\n\n")

    if result.recent_messages:
        add("💬 RECENT CONVERSATION\n\n")
        for msg in result.recent_messages:
            speaker = "Claude" if msg.role == "assistant" else "You"
            content = msg.content
            if len(content) > NARRATIVE_MESSAGE_CHARS:
                content = content[:NARRATIVE_MESSAGE_CHARS] + "..."
            add(f"{speaker}: {content}\n\n")

    add("📍 CURRENT STATUS\n")
    add(f"{result.current_status}\n\n")

    if result.active_files or result.code_evolution:
        add("💻 ACTIVE CODE & FILES\n\n")
        if result.active_files:
            add("You were working with these key files:\n")
            for path in result.active_files[:5]:
                add(f"- {path}\n")
            add("\n")
        if result.code_evolution:
            latest = max(result.code_evolution, key=lambda e: e.last_index)
            add("Most recent code changes:\n")
            add(f"```{latest.language}\n{latest.code}\n```\n\n")

    if result.open_questions:
        add("❓ OPEN QUESTIONS\n")
        for question in result.open_questions:
            add(f"- {question}\n")
        add("\n")

    if result.decision_points:
        add("🔄 KEY DECISIONS\n")
        for decision in result.decision_points[:3]:
            add(f"- {decision}\n")
        add("\n")

    add("🧠 MEMORY BANK REFERENCE\n")
    add("This conversation may have memory bank files that contain additional context.\n")
    add("Check the following locations for relevant information:\n")
    for path, purpose in MEMORY_BANK_FILES:
        add(f"- {path} - {purpose}\n")
    add("\n")

    add("🔄 CONTINUATION\n")
    add(f"Would you like to continue working on {result.main_topic} or focus on a specific aspect of the project?")
    return "".join(out)


class ResultFormatter(ABC):
    """Base formatter protocol."""

    @abstractmethod
    def format(self, data: Any) -> str:
        """Format data for output."""
        pass

    @abstractmethod
    def format_many(self, items: List[Any]) -> str:
        """Format multiple items."""
        pass


def _as_dict(data: Any) -> Any:
    if hasattr(data, "to_dict"):
        return data.to_dict()
    return data


class NarrativeFormatter(ResultFormatter):
    """Format recovery results as the crash-recovery narrative."""

    def format(self, data: RecoveryResult) -> str:
        """Format single result."""
        return format_recovered_context(data)

    def format_many(self, items: List[RecoveryResult]) -> str:
        """Format several results separated by a rule."""
        return "\n\n---\n\n".join(format_recovered_context(item) for item in items)


class JsonFormatter(ResultFormatter):
    """Format results as JSON."""

    def format(self, data: Any) -> str:
        """Format single item."""
        return json.dumps(_as_dict(data), indent=2, ensure_ascii=False)

    def format_many(self, items: List[Any]) -> str:
        """Format multiple items as JSON array."""
        return json.dumps([_as_dict(item) for item in items], indent=2, ensure_ascii=False)


class TableFormatter(ResultFormatter):
    """Format results as tables using Rich."""

    def __init__(self, title: str = "Results"):
        """Initialize with title."""
        self.title = title

    @staticmethod
    def _render(table: Table) -> str:
        console = Console(width=120)
        with console.capture() as capture:
            console.print(table)
        return capture.get()

    def _result_rows(self, data: RecoveryResult) -> List[tuple]:
        count = data.message_count
        return [
            ("Strategy", data.recovery_strategy or "none"),
            ("Confidence", f"{data.recovery_confidence:.2f}"),
            ("Messages", f"{count.recovered} recovered / {count.total} estimated"),
            ("Human / Assistant", f"{count.human} / {count.assistant}"),
            ("Main topic", data.main_topic),
            ("Subtopics", ", ".join(data.subtopics[:5])),
            ("Active files", ", ".join(data.active_files[:5])),
            ("Code evolutions", str(len(data.code_evolution))),
            ("Open questions", str(len(data.open_questions))),
            ("Decision points", str(len(data.decision_points))),
        ]

    def _analysis_rows(self, data: ContentAnalysis) -> List[tuple]:
        rows = [
            ("Messages", str(data.message_count)),
            ("Human / Assistant", f"{data.human_messages} / {data.assistant_messages}"),
            ("Topics", ", ".join(f"{t.term} ({t.frequency})" for t in data.topics)),
            ("Code blocks", str(data.code_blocks)),
            ("File operations", str(data.file_operations)),
            ("Commands executed", str(data.commands_executed)),
            ("Files referenced", ", ".join(data.files_referenced[:10])),
            ("Key actions", "; ".join(data.key_actions)),
        ]
        if data.time_range:
            rows.append(("Time range", f"{data.time_range['start']} → {data.time_range['end']}"))
        return rows

    def format(self, data: Any) -> str:
        """Format a recovery result or content analysis as a two-column table."""
        if isinstance(data, RecoveryResult):
            rows = self._result_rows(data)
        elif isinstance(data, ContentAnalysis):
            rows = self._analysis_rows(data)
        else:
            raise TypeError(f"Cannot format {type(data).__name__} as a table")
        table = Table(title=self.title)
        table.add_column("Field", style="cyan", no_wrap=True)
        table.add_column("Value")
        for name, value in rows:
            table.add_row(name, value)
        return self._render(table)

    def format_many(self, items: List[Message]) -> str:
        """Format messages as a table."""
        table = Table(title=self.title)
        table.add_column("#", justify="right", style="dim")
        table.add_column("Role", style="magenta")
        table.add_column("Timestamp", style="blue")
        table.add_column("Preview")
        for index, item in enumerate(items):
            stamp = str(item.timestamp) if item.timestamp is not None else ""
            table.add_row(str(index), item.role.value, stamp, item.preview(80))
        return self._render(table)


class MessageFormatter(ResultFormatter):
    """Format recovered messages."""

    def __init__(self, max_chars: int = 0):
        """Initialize with max_chars. 0 = full content (no truncation)."""
        self.max_chars = max_chars

    def _text(self, message: Message) -> str:
        return message.preview(self.max_chars) if self.max_chars else message.text.replace("\n", " ")

    def format(self, data: Message) -> str:
        """Format single message."""
        return f"""Role:       {data.role.value}
Timestamp:  {data.timestamp if data.timestamp is not None else 'unknown'}
Content:    {self._text(data)}
Length:     {len(data.text)} chars"""

    def format_many(self, items: List[Message]) -> str:
        """Format multiple messages."""
        return "\n".join(f"[{msg.role.value}] {self._text(msg)}" for msg in items)


class PlainFormatter(ResultFormatter):
    """Simple plain text formatter."""

    def format(self, data: Any) -> str:
        """Format single item."""
        if isinstance(data, Message):
            return f"[{data.role.value}] {data.preview()}"
        if isinstance(data, RecoveryResult):
            return (
                f"{data.main_topic} - {data.message_count.recovered} messages "
                f"(confidence {data.recovery_confidence:.2f})"
            )
        return str(data)

    def format_many(self, items: List[Any]) -> str:
        """Format multiple items."""
        return "\n".join(self.format(item) for item in items)


def get_formatter(format_type: str, title: str = "Results") -> ResultFormatter:
    """Factory function to get formatter by type."""
    formatters = {
        "narrative": NarrativeFormatter,
        "table": TableFormatter,
        "json": JsonFormatter,
        "plain": PlainFormatter,
    }

    formatter_class = formatters.get(format_type.lower())
    if not formatter_class:
        raise ValueError(f"Unknown format: {format_type}")

    if formatter_class is TableFormatter:
        return formatter_class(title)
    return formatter_class()
