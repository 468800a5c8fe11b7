"""
Per-call recovery context: the logger and heuristics a pipeline run uses.

Copyright (c) 2026 Andrew Hundt
Licensed under the Apache License, Version 2.0
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from .log_config import get_logger
from .models import RecoverySettings


@dataclass(frozen=True)
class RecoveryContext:
    """Explicit dependencies for one recovery run, owned by the caller.

    Attributes:
        settings: Heuristic thresholds and weights
        log: Bound loguru logger
    """

    settings: RecoverySettings = field(default_factory=RecoverySettings)
    log: Any = field(default_factory=lambda: get_logger("chat_recovery_tools"))

    @classmethod
    def from_config(cls, config: Optional[dict], name: str = "chat_recovery_tools") -> "RecoveryContext":
        """Build a context from a loaded config mapping."""
        return cls(settings=RecoverySettings.from_dict(config), log=get_logger(name))
