"""In-process sandbox that runs model-written code and bridges its sub-queries."""

from .core import CallKind, PendingCall, Sandbox, SandboxOptions, SubQuery
from .restricted import ALLOWED_MODULES, build_safe_builtins

__all__ = [
    "ALLOWED_MODULES",
    "CallKind",
    "PendingCall",
    "Sandbox",
    "SandboxOptions",
    "SubQuery",
    "build_safe_builtins",
]
