"""Default text utilities bound into every sandbox namespace.

The table is an immutable mapping; pass a different mapping to
:class:`~rlm_runtime.sandbox.Sandbox` to change what sandboxed code sees.
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable, Iterable, Mapping
from types import MappingProxyType
from typing import Any


def chunk(text: str | list[str], size: int, overlap: int = 0) -> list[str]:
    """Split *text* into pieces of at most *size* characters.

    Consecutive pieces share *overlap* characters.  A list of strings is
    joined with newlines first.
    """
    if isinstance(text, list):
        text = "\n".join(text)
    if size <= 0:
        raise ValueError("size must be positive")
    if not 0 <= overlap < size:
        raise ValueError("overlap must be >= 0 and smaller than size")
    if not text:
        return []
    step = size - overlap
    return [text[i : i + size] for i in range(0, max(len(text) - overlap, 1), step)]


def grep(pattern: str, text: str | list[str], ignore_case: bool = False) -> list[str]:
    """Return the lines of *text* matching the regular expression *pattern*."""
    lines = text.splitlines() if isinstance(text, str) else list(text)
    regex = re.compile(pattern, re.IGNORECASE if ignore_case else 0)
    return [line for line in lines if regex.search(line)]


def extract_between(
    text: str, start: str, end: str, include_markers: bool = False
) -> list[str]:
    """Every non-overlapping span of *text* between *start* and *end* markers."""
    results: list[str] = []
    pos = 0
    while True:
        start_idx = text.find(start, pos)
        if start_idx == -1:
            break
        content_start = start_idx + len(start)
        end_idx = text.find(end, content_start)
        if end_idx == -1:
            break
        if include_markers:
            results.append(text[start_idx : end_idx + len(end)])
        else:
            results.append(text[content_start:end_idx])
        pos = end_idx + len(end)
    return results


def truncate(text: str, max_length: int, suffix: str = "...") -> str:
    if len(text) <= max_length:
        return text
    if max_length <= len(suffix):
        return text[:max_length]
    return text[: max_length - len(suffix)] + suffix


def text_stats(text: str) -> dict[str, int]:
    """Character, word, line and sentence counts for *text*."""
    return {
        "chars": len(text),
        "words": len(text.split()),
        "lines": len(text.splitlines()),
        "sentences": len([s for s in re.split(r"[.!?]+", text) if s.strip()]),
    }


def _key_of(item: Any, key: str | Callable[[Any], Any] | None) -> Any:
    if key is None:
        return item
    if callable(key):
        return key(item)
    if isinstance(item, Mapping):
        return item.get(key)
    return item


def count_by(
    items: Iterable[Any], key: str | Callable[[Any], Any] | None = None
) -> dict[str, int]:
    """Count occurrences of each value (or of ``item[key]`` / ``key(item)``)."""
    counts: dict[str, int] = {}
    for item in items:
        label = str(_key_of(item, key))
        counts[label] = counts.get(label, 0) + 1
    return counts


def dedupe(
    items: Iterable[Any], key: str | Callable[[Any], Any] | None = None
) -> list[Any]:
    """Drop repeated items, keeping first occurrences in order.

    Unhashable items (dicts, lists) are compared by their JSON form.
    """
    seen: set[Any] = set()
    out: list[Any] = []
    for item in items:
        marker = _key_of(item, key)
        try:
            hash(marker)
        except TypeError:
            marker = json.dumps(marker, sort_keys=True, default=str)
        if marker in seen:
            continue
        seen.add(marker)
        out.append(item)
    return out


DEFAULT_TOOLS: Mapping[str, Callable[..., Any]] = MappingProxyType(
    {
        "chunk": chunk,
        "grep": grep,
        "extract_between": extract_between,
        "truncate": truncate,
        "text_stats": text_stats,
        "count_by": count_by,
        "dedupe": dedupe,
    }
)
