"""Parse model output into thinking text, executable code and a FINAL signal.

Termination calls can wrap arbitrary expressions (``FINAL(str(40 + 2))``,
``FINAL("a ) inside a string")``), so they are located with a
balanced-delimiter scan rather than a regular expression.
"""

from __future__ import annotations

import re
import textwrap
from dataclasses import dataclass, field

from .types import TerminationKind, TerminationSignal

# A fenced region: ``` + optional language tag + newline + body + ```.
# finditer pairs fences left to right, so a closing fence is never mistaken
# for the opening of the next block.
_FENCE_RE = re.compile(r"```([\w+.-]*)[ \t]*\r?\n(.*?)```", re.DOTALL)

# Fence tags whose body is executed in the sandbox.
SCRIPT_TAGS: frozenset[str] = frozenset({"", "repl", "python", "py"})

# FINAL( / FINAL_VAR( as whole words.
_KEYWORD_RE = re.compile(r"(?<![\w.])(FINAL_VAR|FINAL)\s*\(")

_QUOTES = "\"'`"

# Lines left holding only statement terminators after a FINAL call is cut out.
_EMPTY_STATEMENT_RE = re.compile(r"^[ \t]*;[ \t]*(?:\r?\n|$)", re.MULTILINE)


@dataclass
class ParsedOutput:
    """Result of parsing a single model response."""

    raw: str

    thinking: str | None = None
    """Text before the first fenced region, if any."""

    code_blocks: list[str] = field(default_factory=list)
    """Bodies of the script fences, in order."""

    code: str | None = None
    """Script fences joined by blank lines; the code to run this turn."""

    termination: TerminationSignal | None = None
    """``FINAL``/``FINAL_VAR`` found in plain text (outside every fence)."""

    deferred_termination: bool = False
    """A ``FINAL``/``FINAL_VAR`` call sits inside script code and will be
    produced by running it."""

    @property
    def is_done(self) -> bool:
        return self.termination is not None


@dataclass(frozen=True)
class _Fence:
    start: int
    end: int
    tag: str
    body: str

    @property
    def is_script(self) -> bool:
        return self.tag.lower() in SCRIPT_TAGS

    def contains(self, index: int) -> bool:
        return self.start <= index < self.end


def _literal_end(text: str, start: int) -> int | None:
    """Index of the last character of the literal opened at *start*.

    Handles Python triple quotes and skips backslash-escaped characters.
    Returns ``None`` if the literal never closes.
    """
    quote = text[start]
    closer = quote * 3 if quote != "`" and text.startswith(quote * 3, start) else quote
    i = start + len(closer)
    n = len(text)
    while i < n:
        if text[i] == "\\":
            i += 2
            continue
        if text.startswith(closer, i):
            return i + len(closer) - 1
        i += 1
    return None


def find_closing_paren(text: str, open_index: int) -> int | None:
    """Return the index of the ``)`` balancing the ``(`` at *open_index*.

    Parentheses inside quoted literals do not count.  A quote character that
    never closes is treated as an ordinary character (an apostrophe in prose).
    Returns ``None`` when depth never returns to zero.
    """
    depth = 1
    i = open_index + 1
    n = len(text)
    while i < n:
        ch = text[i]
        if ch in _QUOTES:
            end = _literal_end(text, i)
            if end is not None:
                i = end + 1
                continue
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth == 0:
                return i
        i += 1
    return None


def _strip_quotes(value: str) -> str:
    """Remove one layer of quotes if *value* is wholly a single literal."""
    if not value or value[0] not in _QUOTES:
        return value
    end = _literal_end(value, 0)
    if end != len(value) - 1:
        return value
    width = 3 if len(value) >= 6 and value[:3] == value[0] * 3 and value[0] != "`" else 1
    return value[width : len(value) - width]


def _make_signal(keyword: str, inner: str) -> TerminationSignal:
    inner = inner.strip()
    if keyword == "FINAL_VAR":
        return TerminationSignal(TerminationKind.VARIABLE_REFERENCE, _strip_quotes(inner).strip())
    return TerminationSignal(TerminationKind.DIRECT_VALUE, _strip_quotes(inner).strip())


def _find_fences(text: str) -> list[_Fence]:
    return [
        _Fence(m.start(), m.end(), m.group(1), m.group(2))
        for m in _FENCE_RE.finditer(text)
    ]


def _clean_block(body: str) -> str:
    return textwrap.dedent(body).strip("\r\n").rstrip()


def _remove_call(code: str, full_match: str) -> str | None:
    if full_match not in code:
        return code
    code = code.replace(full_match, "", 1)
    code = _EMPTY_STATEMENT_RE.sub("", code).strip()
    return code or None


def parse_response(text: str) -> ParsedOutput:
    """Parse one model response.

    Extracts:

    1. Script fences (untagged, ``repl``, ``python``, ``py``), joined into the
       code for this turn.
    2. The first ``FINAL(...)`` / ``FINAL_VAR(...)`` outside every fence, as
       the authoritative termination signal.  Calls inside script fences are
       left in the code for the sandbox to execute.
    3. The thinking text before the first fence.
    """
    fences = _find_fences(text)
    parsed = ParsedOutput(raw=text)

    parsed.code_blocks = [
        block for block in (_clean_block(f.body) for f in fences if f.is_script) if block
    ]
    if parsed.code_blocks:
        parsed.code = "\n\n".join(parsed.code_blocks)

    if fences:
        thinking = text[: fences[0].start].strip()
        parsed.thinking = thinking or None

    for m in _KEYWORD_RE.finditer(text):
        fence = next((f for f in fences if f.contains(m.start())), None)
        if fence is not None:
            if fence.is_script:
                parsed.deferred_termination = True
            continue

        open_index = m.end() - 1
        close_index = find_closing_paren(text, open_index)
        if close_index is None:
            continue

        parsed.termination = _make_signal(m.group(1), text[open_index + 1 : close_index])
        if parsed.code is not None:
            parsed.code = _remove_call(parsed.code, text[m.start() : close_index + 1])
        break

    return parsed
