"""
Type protocols for pluggable parsing, analysis and output.

Copyright (c) 2026 Andrew Hundt
Licensed under the Apache License, Version 2.0
"""

from pathlib import Path
from typing import Any, List, Optional, Protocol, Union, runtime_checkable

from .extractors import ParsedBatch
from .models import FilterSpec, Message, RecoveryResult


@runtime_checkable
class ParseFunction(Protocol):
    """Protocol for a single recovery strategy."""

    def __call__(self, text: str, filters: Optional[FilterSpec] = None) -> ParsedBatch:
        """Parse raw transcript text into messages."""
        ...


@runtime_checkable
class Recoverable(Protocol):
    """Protocol for recovery backends (ChatRecoveryEngine implements it)."""

    def attempt_recovery(self, path: Union[str, Path], filters: Optional[FilterSpec] = None) -> List[Message]:
        """Recover messages from a transcript file."""
        ...

    def recover(self, path: Union[str, Path], max_length: int = 2000, include_code_snippets: bool = True) -> RecoveryResult:
        """Recover a full result from a transcript file."""
        ...


@runtime_checkable
class Formatter(Protocol):
    """Protocol for output formatting."""

    def format(self, data: Any) -> str:
        """Format data for output."""
        ...

    def format_many(self, items: List[Any]) -> str:
        """Format multiple items."""
        ...
