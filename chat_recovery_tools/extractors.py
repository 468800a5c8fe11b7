"""
Extraction strategies for recovering messages from damaged transcript text.

Each strategy is a pure function ``(raw_text, filters) -> ParsedBatch``. The
StrategyChain folds over them in a fixed order and stops at the first one that
completes and yields at least one message.

Copyright (c) 2026 Andrew Hundt
Licensed under the Apache License, Version 2.0
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, List, NamedTuple, NoReturn, Optional, Sequence, Tuple

import orjson

from .filters import MessageFilter, is_message_like
from .log_config import get_logger
from .models import FilterSpec, Message

#: Array delimiters followed by a line break: ``[``, ``]`` or ``,`` then optional whitespace and newline.
_CHUNK_SPLIT_RE = re.compile(r"[\[\],]\s*\n")

#: Object literal with at most one level of nested braces.
_OBJECT_LITERAL_RE = re.compile(r"\{[^{}]*(?:\{[^{}]*\}[^{}]*)*\}")

#: Characters trimmed from both ends of a candidate before decoding.
_DELIMITER_CHARS = " \t\r\n[],"


class ParsedBatch(NamedTuple):
    """Messages a strategy produced plus how many candidates it looked at."""

    messages: List[Message]
    candidates: int
    skipped: int


def _byte_len(text: str) -> int:
    return len(text.encode("utf-8"))


def _reject_constant(name: str) -> NoReturn:
    raise ValueError(f"{name} is not valid JSON")


def _scrub_surrogates(value: Any) -> Any:
    """Replace lone UTF-16 surrogates (from escapes like ``\\ud83d``) with U+FFFD."""
    if isinstance(value, str):
        return value.encode("utf-16", "surrogatepass").decode("utf-16", "replace")
    if isinstance(value, list):
        return [_scrub_surrogates(v) for v in value]
    if isinstance(value, dict):
        return {_scrub_surrogates(k): _scrub_surrogates(v) for k, v in value.items()}
    return value


def json_loads(text: str) -> Any:
    """Decode JSON with orjson, retrying with the stdlib decoder on failure.

    orjson rejects lone surrogate escapes that the JSON grammar allows (a
    transcript cut inside a surrogate pair writes one); the stdlib decoder
    accepts them and the surrogates are then replaced.

    Raises:
        ValueError: If the text is not valid JSON.
    """
    try:
        return orjson.loads(text)
    except orjson.JSONDecodeError:
        return _scrub_surrogates(json.loads(text, parse_constant=_reject_constant))


def _build_batch(decoded: Iterable[Tuple[Any, int]], filters: Optional[FilterSpec], skipped: int = 0) -> ParsedBatch:
    """Validate decoded values, turn them into Messages and apply filters."""
    messages: List[Message] = []
    candidates = skipped
    for obj, size in decoded:
        candidates += 1
        if not is_message_like(obj):
            skipped += 1
            continue
        messages.append(Message.from_dict(obj, source_size=size))
    return ParsedBatch(MessageFilter.from_spec(filters).apply(messages), candidates, skipped)


def _decode_candidates(pieces: Iterable[str]) -> Tuple[List[Tuple[Any, int]], int]:
    """Decode each piece independently; undecodable pieces are counted, not raised."""
    decoded: List[Tuple[Any, int]] = []
    failed = 0
    for piece in pieces:
        candidate = piece.strip(_DELIMITER_CHARS)
        if not candidate:
            continue
        try:
            decoded.append((json_loads(candidate), _byte_len(piece)))
        except (ValueError, RecursionError):
            failed += 1
    return decoded, failed


# ── Strategies ────────────────────────────────────────────────────────────────

def parse_direct(text: str, filters: Optional[FilterSpec] = None) -> ParsedBatch:
    """Decode the whole text as one JSON array.

    Raises:
        ValueError: If the text is not valid JSON or not an array.
    """
    data = json_loads(text)
    if not isinstance(data, list):
        raise ValueError(f"expected a JSON array, got {type(data).__name__}")
    return _build_batch(((item, len(orjson.dumps(item))) for item in data), filters)


def parse_chunks(text: str, filters: Optional[FilterSpec] = None) -> ParsedBatch:
    """Split on array delimiters at line ends and decode each chunk on its own."""
    decoded, failed = _decode_candidates(_CHUNK_SPLIT_RE.split(text))
    return _build_batch(decoded, filters, skipped=failed)


def parse_balanced_lines(text: str, filters: Optional[FilterSpec] = None) -> ParsedBatch:
    """Accumulate lines until ``{``/``}`` counts balance, then decode the buffer.

    A negative running count means the buffer started mid-object; it is discarded.
    """
    pieces: List[str] = []
    buffer: List[str] = []
    depth = 0
    for line in text.split("\n"):
        depth += line.count("{") - line.count("}")
        buffer.append(line)
        if depth < 0:
            buffer, depth = [], 0
            continue
        if depth == 0 and "".join(buffer).strip():
            pieces.append("".join(buffer))
            buffer = []
    decoded, failed = _decode_candidates(pieces)
    return _build_batch(decoded, filters, skipped=failed)


def parse_object_literals(text: str, filters: Optional[FilterSpec] = None) -> ParsedBatch:
    """Scan for object literals anywhere in the text; last resort for binary damage."""
    decoded, failed = _decode_candidates(m.group(0) for m in _OBJECT_LITERAL_RE.finditer(text))
    return _build_batch(decoded, filters, skipped=failed)


# ── Chain ─────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Strategy:
    """Named parsing strategy.

    Attributes:
        name: Identifier reported in results and logs
        parse: Pure parsing function
        exact_total: True when a successful parse sees every element of the source,
                     so its candidate count is the true message total
    """

    name: str
    parse: Callable[[str, Optional[FilterSpec]], ParsedBatch]
    exact_total: bool = False


DEFAULT_STRATEGIES: Tuple[Strategy, ...] = (
    Strategy("direct", parse_direct, exact_total=True),
    Strategy("chunks", parse_chunks),
    Strategy("balanced_lines", parse_balanced_lines),
    Strategy("object_literals", parse_object_literals),
)


@dataclass(frozen=True)
class StrategyOutcome:
    """Tagged result of running one strategy (or the whole chain).

    ``strategy`` is None when no strategy produced messages.
    """

    strategy: Optional[str]
    messages: List[Message] = field(default_factory=list)
    error: Optional[str] = None
    exact_total: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        """True when the strategy completed and yielded at least one message."""
        return self.error is None and bool(self.messages)


class StrategyChain:
    """Ordered fallback over parsing strategies."""

    def __init__(self, strategies: Sequence[Strategy] = DEFAULT_STRATEGIES, log=None):
        """Initialize with strategies in the order they should be tried."""
        self.strategies = tuple(strategies)
        self.log = log or get_logger("chat_recovery_tools.extractors")

    def attempt(self, strategy: Strategy, text: str, filters: Optional[FilterSpec] = None) -> StrategyOutcome:
        """Run one strategy, converting a parse failure into a failed outcome."""
        try:
            batch = strategy.parse(text, filters)
        except (ValueError, TypeError) as exc:
            self.log.warning(f"{strategy.name} parsing failed: {exc}")
            return StrategyOutcome(strategy.name, error=str(exc))
        except Exception as exc:
            # A failing strategy never aborts the chain
            self.log.opt(exception=exc).error(f"{strategy.name} strategy raised {type(exc).__name__}: {exc}")
            return StrategyOutcome(strategy.name, error=f"{type(exc).__name__}: {exc}")
        if batch.skipped:
            self.log.debug(f"{strategy.name}: skipped {batch.skipped} of {batch.candidates} candidates")
        return StrategyOutcome(
            strategy.name,
            messages=batch.messages,
            exact_total=batch.candidates if strategy.exact_total else None,
        )

    def run(self, text: str, filters: Optional[FilterSpec] = None) -> StrategyOutcome:
        """Return the first successful outcome, or an empty outcome when every strategy comes up empty."""
        for strategy in self.strategies:
            outcome = self.attempt(strategy, text, filters)
            if outcome.succeeded:
                self.log.info(f"Recovered {len(outcome.messages)} messages with {strategy.name} strategy")
                return outcome
            if outcome.error is None:
                self.log.debug(f"{strategy.name} strategy yielded no messages")
        self.log.error("All recovery strategies failed; no messages recovered")
        return StrategyOutcome(None, error="no strategy recovered any messages")
