"""
Message validation and composable message filters.

Copyright (c) 2026 Andrew Hundt
Licensed under the Apache License, Version 2.0
"""

from typing import Any, Callable, List, Optional

from .models import VALID_ROLES, FilterSpec, Message, Role


def is_message_like(obj: Any) -> bool:
    """Check that a decoded JSON value can become a Message.

    Rejects non-objects, a missing or empty ``role``, a role outside
    human/assistant/system, and a missing ``content`` key (``null`` content is allowed).
    """
    if not isinstance(obj, dict):
        return False
    role = obj.get("role")
    if not isinstance(role, str) or role not in VALID_ROLES:
        return False
    return "content" in obj


class MessageFilter:
    """Composable message filter."""

    def __init__(self):
        """Initialize filter."""
        self._predicates: List[Callable[[Message], bool]] = []
        self._limit: Optional[int] = None

    @classmethod
    def from_spec(cls, spec: Optional[FilterSpec]) -> "MessageFilter":
        """Build a filter equivalent to a FilterSpec."""
        mf = cls()
        if spec is None:
            return mf
        if spec.roles:
            mf.by_role(*spec.roles)
        if spec.since > 0:
            mf.since(spec.since)
        if spec.search:
            mf.by_content(spec.search)
        return mf.limit(spec.limit)

    def by_role(self, *roles: Role) -> "MessageFilter":
        """Keep messages from any of the given roles."""
        allowed = set(roles)

        def predicate(m: Message) -> bool:
            return m.role in allowed

        self._predicates.append(predicate)
        return self

    def by_content(self, pattern: str) -> "MessageFilter":
        """Filter by content substring (case-insensitive)."""
        needle = pattern.lower()

        def predicate(m: Message) -> bool:
            return needle in m.text.lower()

        self._predicates.append(predicate)
        return self

    def since(self, timestamp_ms: int) -> "MessageFilter":
        """Keep messages stamped at or after ``timestamp_ms``; unstamped messages are dropped."""

        def predicate(m: Message) -> bool:
            return m.timestamp is not None and m.timestamp >= timestamp_ms

        self._predicates.append(predicate)
        return self

    def limit(self, count: Optional[int]) -> "MessageFilter":
        """Cap the number of messages returned."""
        self._limit = count
        return self

    def apply(self, messages: List[Message]) -> List[Message]:
        """Apply all filters to message list."""
        result = messages
        for predicate in self._predicates:
            result = [m for m in result if predicate(m)]
        if self._limit is not None:
            result = result[: self._limit]
        return result

    def __call__(self, messages: List[Message]) -> List[Message]:
        """Support callable interface."""
        return self.apply(messages)
