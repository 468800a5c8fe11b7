"""
Code evolution tracking: group code snippets that look like versions of the same thing.

Copyright (c) 2026 Andrew Hundt
Licensed under the Apache License, Version 2.0
"""

import hashlib
import re
from typing import Dict, List

from .analyzer import FILE_PATH_RE, extract_code_snippets
from .models import CodeEvolution, CodeSnippet, Message

_FUNCTION_NAME_RE = re.compile(r"\b(?:function|def)\s+(\w+)", re.IGNORECASE)
_CLASS_NAME_RE = re.compile(r"\bclass\s+(\w+)", re.IGNORECASE)
_FUNCTION_DEF_RE = re.compile(r"\b(?:function|def)\s+\w+")
_CLASS_DEF_RE = re.compile(r"\bclass\s+\w+")

#: Single-version groups are kept only when the code is longer than this.
MIN_SINGLE_SNIPPET_CHARS = 50


def grouping_key(snippet: CodeSnippet) -> str:
    """Identify what a snippet is a version of.

    Priority: a file path in the context, then a function name, then a class
    name, then a stable hash of the first 100 characters of the code.
    """
    context = snippet.context
    path = FILE_PATH_RE.search(context)
    if path:
        return path.group(0)
    function = _FUNCTION_NAME_RE.search(context)
    if function:
        return f"function:{function.group(1)}"
    cls = _CLASS_NAME_RE.search(context)
    if cls:
        return f"class:{cls.group(1)}"
    digest = hashlib.sha1(snippet.code[:100].encode("utf-8")).hexdigest()[:8]
    return f"snippet:{digest}"


def describe_evolution(snippets: List[CodeSnippet]) -> str:
    """Narrate how the latest version differs from the first."""
    first, last = snippets[0], snippets[-1]
    parts = [f"This code evolved through {len(snippets)} iterations."]

    line_diff = len(last.code.split("\n")) - len(first.code.split("\n"))
    if line_diff > 0:
        parts.append(f"The code grew by {line_diff} lines.")
    elif line_diff < 0:
        parts.append(f"The code was refactored and reduced by {-line_diff} lines.")

    function_diff = len(_FUNCTION_DEF_RE.findall(last.code)) - len(_FUNCTION_DEF_RE.findall(first.code))
    if function_diff > 0:
        parts.append(f"{function_diff} new function{'s were' if function_diff > 1 else ' was'} added.")

    class_diff = len(_CLASS_DEF_RE.findall(last.code)) - len(_CLASS_DEF_RE.findall(first.code))
    if class_diff > 0:
        parts.append(f"{class_diff} new class{'es were' if class_diff > 1 else ' was'} added.")

    return " ".join(parts)


def extract_code_evolution(messages: List[Message], context_chars: int = 100) -> List[CodeEvolution]:
    """Group every fenced code block by what it appears to implement.

    Groups come out in order of first appearance. A group with a single
    snippet is kept only if the code is non-trivial or its key is a path.
    """
    groups: Dict[str, List[CodeSnippet]] = {}
    for snippet in extract_code_snippets(messages, context_chars):
        groups.setdefault(grouping_key(snippet), []).append(snippet)

    evolutions: List[CodeEvolution] = []
    for key, snippets in groups.items():
        snippets = sorted(snippets, key=lambda s: s.message_index)
        latest = snippets[-1]
        if len(snippets) > 1:
            description = describe_evolution(snippets)
        elif len(latest.code) > MIN_SINGLE_SNIPPET_CHARS or "/" in key:
            description = latest.context
        else:
            continue
        evolutions.append(CodeEvolution(
            file=key,
            language=latest.language,
            code=latest.code,
            description=description,
            iterations=len(snippets),
            first_index=snippets[0].message_index,
            last_index=latest.message_index,
        ))
    return evolutions
