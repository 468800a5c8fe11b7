"""
Chat Recovery Tools - recover and analyze crashed or corrupted chat transcripts.

A library with a thin CLI layer: damaged JSON transcripts are parsed with a chain
of increasingly forgiving strategies, and the recovered messages are analyzed into
a confidence-scored recovery report and a human-readable narrative.

Copyright (c) 2026 Andrew Hundt
Licensed under the Apache License, Version 2.0

Example usage as library:
    from chat_recovery_tools import ChatRecoveryEngine, format_recovered_context

    engine = ChatRecoveryEngine()
    result = engine.recover("api_conversation_history.json", max_length=1000)
    print(result.recovery_confidence)
    print(format_recovered_context(result))
"""

try:
    from importlib.metadata import version
    __version__ = version("chat-recovery-tools")
except Exception:
    __version__ = "1.0.0"

__author__ = "Andrew Hundt"

from loguru import logger

# Silent as a library until configure_logging() installs sinks
logger.disable(__name__)

from .analyzer import (
    analyze_messages,
    extract_code_snippets,
    extract_entities,
    extract_keywords,
    extract_topics,
)
from .context import RecoveryContext
from .engine import (
    ChatRecoveryEngine,
    attempt_recovery,
    create_crash_report,
    recover_crashed_conversation,
)
from .evolution import extract_code_evolution
from .extractors import (
    DEFAULT_STRATEGIES,
    Strategy,
    StrategyChain,
    StrategyOutcome,
    parse_balanced_lines,
    parse_chunks,
    parse_direct,
    parse_object_literals,
)
from .filters import MessageFilter, is_message_like
from .formatters import (
    JsonFormatter,
    MessageFormatter,
    NarrativeFormatter,
    PlainFormatter,
    ResultFormatter,
    TableFormatter,
    format_recovered_context,
    get_formatter,
)
from .models import (
    CodeEvolution,
    CodeSnippet,
    ContentAnalysis,
    CrashReport,
    EntitySet,
    FilterSpec,
    Message,
    MessageCount,
    PartsContent,
    RecentMessage,
    RecoveryResult,
    RecoverySettings,
    Role,
    StructuredContent,
    TextContent,
    Topic,
    TopicRanking,
    content_from_raw,
    extract_text,
)
from .ranking import rank_files, rank_topics
from .synthesis import (
    determine_current_status,
    extract_latest_state,
    extract_open_questions,
    generate_summary,
    generate_timeline,
    identify_decision_points,
)
from .types import Formatter, ParseFunction, Recoverable

__all__ = [
    "ChatRecoveryEngine",
    "CodeEvolution",
    "CodeSnippet",
    "ContentAnalysis",
    "CrashReport",
    "DEFAULT_STRATEGIES",
    "EntitySet",
    "FilterSpec",
    "Formatter",
    "JsonFormatter",
    "Message",
    "MessageCount",
    "MessageFilter",
    "MessageFormatter",
    "NarrativeFormatter",
    "ParseFunction",
    "PartsContent",
    "PlainFormatter",
    "RecentMessage",
    "Recoverable",
    "RecoveryContext",
    "RecoveryResult",
    "RecoverySettings",
    "ResultFormatter",
    "Role",
    "Strategy",
    "StrategyChain",
    "StrategyOutcome",
    "StructuredContent",
    "TableFormatter",
    "TextContent",
    "Topic",
    "TopicRanking",
    "analyze_messages",
    "attempt_recovery",
    "content_from_raw",
    "create_crash_report",
    "determine_current_status",
    "extract_code_evolution",
    "extract_code_snippets",
    "extract_entities",
    "extract_keywords",
    "extract_latest_state",
    "extract_open_questions",
    "extract_text",
    "extract_topics",
    "format_recovered_context",
    "generate_summary",
    "generate_timeline",
    "get_formatter",
    "identify_decision_points",
    "is_message_like",
    "parse_balanced_lines",
    "parse_chunks",
    "parse_direct",
    "parse_object_literals",
    "rank_files",
    "rank_topics",
    "recover_crashed_conversation",
]
