"""
Core crash-recovery engine: strategy chain plus the analysis pipeline.

Copyright (c) 2026 Andrew Hundt
Licensed under the Apache License, Version 2.0
"""

import math
import time
import uuid
from pathlib import Path
from typing import List, Optional, Sequence, Union

from .analyzer import (
    analyze_messages,
    extract_code_snippets,
    extract_entities,
    extract_topics,
)
from .context import RecoveryContext
from .evolution import extract_code_evolution
from .extractors import DEFAULT_STRATEGIES, Strategy, StrategyChain, StrategyOutcome
from .formatters import format_recovered_context
from .log_config import log_timing
from .models import (
    ContentAnalysis,
    CrashReport,
    FilterSpec,
    Message,
    MessageCount,
    RecoveryResult,
    Role,
)
from .ranking import rank_files, rank_topics
from .synthesis import (
    determine_current_status,
    extract_latest_state,
    extract_open_questions,
    extract_original_task,
    extract_recent_messages,
    generate_summary,
    generate_timeline,
    identify_decision_points,
)

PathLike = Union[str, Path]


class ChatRecoveryEngine:
    """Recover and analyze a possibly-corrupt conversation transcript.

    The engine holds no state between calls beyond its context; every call
    reads the file afresh and builds new result objects.
    """

    def __init__(
        self,
        context: Optional[RecoveryContext] = None,
        strategies: Sequence[Strategy] = DEFAULT_STRATEGIES,
    ):
        """Initialize engine.

        Args:
            context: Logger and settings for this engine (default settings if omitted)
            strategies: Parsing strategies in the order they are tried
        """
        self.context = context or RecoveryContext()
        self.settings = self.context.settings
        self.log = self.context.log
        self.chain = StrategyChain(strategies, log=self.log)

    # ── Parsing ──────────────────────────────────────────────────────────────

    @staticmethod
    def read_transcript(path: PathLike) -> str:
        """Read the whole file; undecodable bytes become U+FFFD.

        Raises:
            OSError: If the file cannot be read.
        """
        return Path(path).read_bytes().decode("utf-8", errors="replace")

    def recover_messages(self, path: PathLike, filters: Optional[FilterSpec] = None) -> StrategyOutcome:
        """Run the strategy chain over a transcript file."""
        text = self.read_transcript(path)
        self.log.debug(f"Read {len(text)} characters from {path}")
        return self.chain.run(text, filters)

    def attempt_recovery(self, path: PathLike, filters: Optional[FilterSpec] = None) -> List[Message]:
        """Messages from the first strategy that yields any; empty when none does."""
        return self.recover_messages(path, filters).messages

    def estimate_total(self, path: PathLike, outcome: StrategyOutcome) -> int:
        """Estimate how many messages the intact file held.

        Exact when the direct parse succeeded. Otherwise the file size divided by
        the mean size of the recovered messages, never below the recovered count.
        """
        recovered = len(outcome.messages)
        if outcome.exact_total is not None:
            return max(outcome.exact_total, recovered)
        sizes = [m.source_size for m in outcome.messages if m.source_size > 0]
        if not sizes:
            return recovered
        average = sum(sizes) / len(sizes)
        try:
            file_size = Path(path).stat().st_size
        except OSError as exc:
            self.log.warning(f"Could not stat {path}: {exc}; using recovered count as total")
            return recovered
        return max(recovered, math.ceil(file_size / average))

    # ── Pipeline ─────────────────────────────────────────────────────────────

    def recover(
        self,
        path: PathLike,
        max_length: int = 2000,
        include_code_snippets: bool = True,
    ) -> RecoveryResult:
        """Recover a crashed conversation into a structured, confidence-scored result.

        Args:
            path: Transcript file (a JSON array of messages, possibly damaged)
            max_length: Upper bound on the summary length
            include_code_snippets: Also extract code snippets and their evolution

        Raises:
            OSError: If the file cannot be read at all.
            ValueError: If ``max_length`` is negative.
        """
        if max_length < 0:
            raise ValueError(f"max_length must be >= 0, got {max_length}")
        settings = self.settings

        with log_timing(f"Recovery of {path}", self.log):
            outcome = self.recover_messages(path)
            messages = outcome.messages

            recovered = len(messages)
            total = self.estimate_total(path, outcome)
            confidence = min(1.0, max(0.0, recovered / max(1, total)))
            count = MessageCount(
                total=total,
                recovered=recovered,
                human=sum(1 for m in messages if m.role == Role.HUMAN),
                assistant=sum(1 for m in messages if m.role == Role.ASSISTANT),
            )

            key_topics = extract_topics(messages, settings.topic_limit, settings.min_keyword_length)
            ranking = rank_topics(key_topics, messages, settings.topic_recency_weight)
            entities = extract_entities(messages)
            active_files = rank_files(
                entities.files, messages, settings.file_recency_weight, settings.max_active_files,
            )

            snippets, evolution = [], []
            if include_code_snippets:
                snippets = extract_code_snippets(messages, settings.context_chars)
                evolution = extract_code_evolution(messages, settings.context_chars)

            result = RecoveryResult(
                original_task=extract_original_task(messages, settings.original_task_max_chars),
                summary=generate_summary(messages, max_length, settings),
                modified_files=entities.files,
                key_topics=key_topics,
                main_topic=ranking.main_topic,
                subtopics=ranking.subtopics,
                urls=entities.urls,
                emails=entities.emails,
                code_snippets=snippets,
                code_evolution=evolution,
                timeline=generate_timeline(messages, settings),
                decision_points=identify_decision_points(messages, limit=settings.max_decision_points),
                latest_state=extract_latest_state(
                    messages, settings.latest_state_count, settings.latest_state_max_chars,
                ),
                recent_messages=extract_recent_messages(messages, settings.recent_message_count),
                current_status=determine_current_status(messages, settings),
                active_files=active_files,
                open_questions=extract_open_questions(messages, settings),
                recovery_confidence=confidence,
                message_count=count,
                recovery_strategy=outcome.strategy,
            )

        self.log.info(
            f"Recovered {recovered}/{total} messages from {path} "
            f"(confidence {confidence:.2f}, strategy {outcome.strategy})"
        )
        return result

    def analyze_file(
        self,
        path: PathLike,
        since: int = 0,
        search: Optional[str] = None,
    ) -> ContentAnalysis:
        """Content analysis of a transcript, optionally limited to messages at or after ``since`` (epoch ms)."""
        filters = FilterSpec(since=since, search=search)
        return analyze_messages(self.attempt_recovery(path, filters), self.settings)

    def create_crash_report(
        self,
        task_id: str,
        result: RecoveryResult,
        formatted_message: Optional[str] = None,
        *,
        report_id: Optional[str] = None,
        timestamp: Optional[int] = None,
    ) -> CrashReport:
        """See module-level ``create_crash_report``."""
        return create_crash_report(
            task_id, result, formatted_message, report_id=report_id, timestamp=timestamp,
        )


def create_crash_report(
    task_id: str,
    result: RecoveryResult,
    formatted_message: Optional[str] = None,
    *,
    report_id: Optional[str] = None,
    timestamp: Optional[int] = None,
) -> CrashReport:
    """Build a crash report from a recovery result.

    Args:
        task_id: Conversation the report belongs to
        result: Recovery result to summarise
        formatted_message: Narrative to embed; rendered from ``result`` when omitted
        report_id: Explicit id; generated as ``crash-<ms>-<hex>`` when omitted
        timestamp: Epoch milliseconds; now when omitted
    """
    now_ms = timestamp if timestamp is not None else int(time.time() * 1000)
    return CrashReport(
        id=report_id or f"crash-{now_ms}-{uuid.uuid4().hex[:9]}",
        task_id=task_id,
        timestamp=now_ms,
        summary=result.summary,
        main_topic=result.main_topic,
        subtopics=result.subtopics[:5],
        active_files=result.active_files[:5],
        open_questions=list(result.open_questions),
        current_status=result.current_status,
        formatted_message=formatted_message if formatted_message is not None else format_recovered_context(result),
    )


def attempt_recovery(
    path: PathLike,
    filters: Optional[FilterSpec] = None,
    context: Optional[RecoveryContext] = None,
) -> List[Message]:
    """Recover messages from a transcript file with the default strategy chain."""
    return ChatRecoveryEngine(context).attempt_recovery(path, filters)


def recover_crashed_conversation(
    path: PathLike,
    max_length: int = 2000,
    include_code_snippets: bool = True,
    context: Optional[RecoveryContext] = None,
) -> RecoveryResult:
    """Recover a crashed conversation file into a RecoveryResult."""
    return ChatRecoveryEngine(context).recover(path, max_length, include_code_snippets)
