"""Public data types: messages, termination signals, trace entries, results."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any


@dataclass
class Message:
    """A single conversation turn sent to the model client."""

    role: str
    """One of ``system``, ``user``, ``assistant``."""

    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


class TerminationKind(str, enum.Enum):
    DIRECT_VALUE = "direct_value"
    VARIABLE_REFERENCE = "variable_reference"


@dataclass(frozen=True)
class TerminationSignal:
    """A ``FINAL(...)`` or ``FINAL_VAR(...)`` emitted by the model."""

    kind: TerminationKind
    payload: str
    """The answer text (``DIRECT_VALUE``) or the variable name to read."""

    @property
    def method(self) -> str:
        return "FINAL" if self.kind is TerminationKind.DIRECT_VALUE else "FINAL_VAR"


class TraceKind(str, enum.Enum):
    MODEL_CALL = "model_call"
    CODE_EXECUTION = "code_execution"
    SUB_MODEL_CALL = "sub_model_call"
    FINAL_OUTPUT = "final_output"
    ERROR = "error"


@dataclass(frozen=True)
class TraceEntry:
    """A single entry in the execution trace."""

    kind: TraceKind
    depth: int
    """Recursion level that produced the entry (0 = top level)."""

    timestamp: float
    """Wall-clock time (``time.time()``) the entry was recorded."""

    payload: dict[str, Any] = field(default_factory=dict)
    """Kind-specific details (response text, code, output, usage, ...)."""

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "depth": self.depth,
            "timestamp": self.timestamp,
            "payload": dict(self.payload),
        }


@dataclass
class Usage:
    """Token, call and cost totals across every depth of a run."""

    input_tokens: int = 0
    output_tokens: int = 0
    total_calls: int = 0
    estimated_cost: float = 0.0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def to_dict(self) -> dict[str, Any]:
        return {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
            "total_calls": self.total_calls,
            "estimated_cost": self.estimated_cost,
        }


@dataclass(frozen=True)
class SandboxResult:
    """Outcome of one :meth:`~rlm_runtime.sandbox.Sandbox.execute` call."""

    output: str
    """Everything the code printed during the run."""

    error: str | None = None
    """Rendered error (runtime error or timeout), ``None`` on success."""

    variables: dict[str, Any] = field(default_factory=dict)
    """Snapshot of the user-created bindings after the run."""

    elapsed_seconds: float = 0.0

    termination: TerminationSignal | None = None
    """Set when the code called ``FINAL(...)`` or ``FINAL_VAR(...)``."""

    timed_out: bool = False


@dataclass(frozen=True)
class ExecutionResult:
    """The terminal result of :meth:`~rlm_runtime.executor.Executor.execute`."""

    response: str
    """The final answer string."""

    trace: tuple[TraceEntry, ...]
    """Full execution trace, sub-query entries spliced in at their depth."""

    usage: Usage
    """Aggregated token / call / cost totals (root + sub-queries)."""

    elapsed_seconds: float

    iterations: int
    """Number of loop iterations used at this depth."""

    status: str = "completed"
    """``completed``, or ``partial`` when the cost ceiling stopped the loop."""

    variables: dict[str, str] = field(default_factory=dict)
    """Final sandbox state: variable names mapped to their ``repr``."""

    @property
    def partial(self) -> bool:
        return self.status == "partial"

    def count(self, kind: TraceKind) -> int:
        """Number of trace entries of *kind*."""
        return sum(1 for entry in self.trace if entry.kind is kind)

    def to_dict(self) -> dict[str, Any]:
        """JSON-serialisable form for persistence layers."""
        return {
            "response": self.response,
            "trace": [entry.to_dict() for entry in self.trace],
            "usage": self.usage.to_dict(),
            "elapsed_seconds": self.elapsed_seconds,
            "iterations": self.iterations,
            "status": self.status,
            "variables": dict(self.variables),
        }
