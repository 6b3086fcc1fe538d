"""Safe builtins and import whitelist for the sandbox namespace.

Sandboxed code can compute over the context but not reach the filesystem,
the network, subprocesses or the interpreter itself.  This is in-process
isolation only; it is not a security boundary against a hostile author.
"""

from __future__ import annotations

import builtins
from typing import Any

# Pure data-processing modules: no filesystem, network, clock or process access.
ALLOWED_MODULES: frozenset[str] = frozenset(
    {
        # text
        "re", "string", "textwrap", "difflib", "unicodedata", "html",
        "csv", "json", "base64", "hashlib",
        # numbers
        "math", "cmath", "statistics", "decimal", "fractions", "random",
        # containers and functional helpers
        "collections", "itertools", "functools", "operator",
        "heapq", "bisect", "copy", "pprint",
        # records
        "dataclasses", "enum", "typing", "datetime",
    }
)

# Code execution, file access and interpreter control.
BLOCKED_BUILTINS: frozenset[str] = frozenset(
    {
        "exec", "eval", "compile", "open", "input", "breakpoint",
        "exit", "quit", "globals", "vars", "memoryview", "help",
    }
)

_real_import = builtins.__import__


def _safe_import(
    name: str,
    globals: dict[str, Any] | None = None,  # noqa: A002
    locals: dict[str, Any] | None = None,  # noqa: A002
    fromlist: tuple[str, ...] = (),
    level: int = 0,
) -> Any:
    """``__import__`` replacement that only admits :data:`ALLOWED_MODULES`."""
    if level != 0:
        raise ImportError("Relative imports are not available in the sandbox")
    top_level = name.split(".")[0]
    if top_level not in ALLOWED_MODULES:
        raise ImportError(
            f"Module {name!r} is not available in the sandbox. "
            f"Allowed modules: {', '.join(sorted(ALLOWED_MODULES))}"
        )
    return _real_import(name, globals, locals, fromlist, level)


def build_safe_builtins(overrides: dict[str, Any] | None = None) -> dict[str, Any]:
    """Return a ``__builtins__`` dict with blocked entries removed.

    ``__import__`` is replaced by :func:`_safe_import`; *overrides* (for
    example a capturing ``print``) are applied last.
    """
    safe = {k: v for k, v in builtins.__dict__.items() if k not in BLOCKED_BUILTINS}
    safe["__import__"] = _safe_import
    if overrides:
        safe.update(overrides)
    return safe
