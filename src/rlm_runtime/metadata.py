"""Truncation and rendering helpers.

The model must never see the full input or an unbounded amount of captured
output inside its context window.  These helpers describe content (length,
a short prefix) instead of copying it into the token budget.
"""

from __future__ import annotations

import json
from typing import Any


def make_metadata(content: str, prefix_chars: int = 2000) -> str:
    """Truncate *content* for display to the model.

    Content that fits within *prefix_chars* is returned in full; otherwise
    the first *prefix_chars* characters are shown with a ``[truncated]``
    marker.
    """
    if len(content) <= prefix_chars:
        return content

    return (
        f"[Output: {len(content):,} chars total] "
        f"First {prefix_chars:,} chars:\n"
        f"{content[:prefix_chars]}\n"
        f"[truncated]"
    )


def render_value(value: Any) -> str:
    """Render a sandbox value as answer / output text.

    Strings are returned verbatim, dicts and lists as indented JSON, anything
    else through ``str``.
    """
    if isinstance(value, str):
        return value
    if value is None:
        return "None"
    if isinstance(value, (dict, list, tuple)):
        try:
            return json.dumps(value, indent=2, ensure_ascii=False, default=str)
        except (TypeError, ValueError):
            return str(value)
    return str(value)


def context_type_label(context: str | list[str]) -> str:
    """Return a human-friendly label for the context type."""
    if isinstance(context, str):
        return "string"
    return f"list of {len(context)} strings"


def context_total_length(context: str | list[str]) -> int:
    """Return the total character count of the context."""
    if isinstance(context, str):
        return len(context)
    return sum(len(c) for c in context)


def context_chunk_lengths(context: str | list[str], limit: int = 20) -> list[int]:
    """Return per-chunk character lengths (at most *limit* of them)."""
    if isinstance(context, str):
        return [len(context)]
    return [len(c) for c in context[:limit]]
