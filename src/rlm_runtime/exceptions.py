"""Custom exceptions for the RLM runtime."""

from __future__ import annotations

import traceback
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .types import TraceEntry, Usage

SANDBOX_FILENAME = "<sandbox>"


class RLMError(Exception):
    """Base exception for all RLM errors.

    When an :class:`~rlm_runtime.executor.Executor` fails, it attaches the
    trace and usage accumulated up to the failure point so callers can
    diagnose the run without re-executing it.
    """

    trace: list[TraceEntry]
    usage: Usage | None

    def __init__(self, *args: Any) -> None:
        super().__init__(*args)
        self.trace = []
        self.usage = None


class MaxIterationsExceeded(RLMError):
    """Raised when the REPL loop exceeds the maximum number of iterations."""

    def __init__(self, iterations: int, max_iterations: int) -> None:
        self.iterations = iterations
        self.max_iterations = max_iterations
        super().__init__(
            f"Reached {iterations}/{max_iterations} iterations without a final answer"
        )


class MaxDepthExceeded(RLMError):
    """Raised when a recursive sub-query would exceed the recursion limit.

    Fatal only to the sub-query: the sandboxed ``llm_query`` call that
    issued it is rejected with this error, the parent loop continues.
    """

    def __init__(self, depth: int, max_depth: int) -> None:
        self.depth = depth
        self.max_depth = max_depth
        super().__init__(
            f"Maximum recursion depth ({max_depth}) exceeded: "
            f"sub-query would run at depth {depth}"
        )


class SandboxTimeout(RLMError):
    """REPL code execution exceeded the configured timeout."""

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(f"SandboxTimeout: execution timed out after {timeout:g}s")


class SandboxRuntimeError(RLMError):
    """An uncaught error raised by sandboxed code.

    Recoverable: the message is fed back to the model as turn output.
    """

    def __init__(self, message: str, lineno: int | None = None) -> None:
        self.lineno = lineno
        super().__init__(message if lineno is None else f"{message} (line {lineno})")

    @classmethod
    def from_exception(cls, exc: BaseException) -> SandboxRuntimeError:
        """Build from an exception raised inside the sandbox.

        The line number is taken from the innermost frame that belongs to the
        sandboxed code (host frames are skipped).
        """
        text = str(exc)
        message = f"{type(exc).__name__}: {text}" if text else type(exc).__name__
        lineno: int | None = None
        if isinstance(exc, SyntaxError):
            message = f"{type(exc).__name__}: {exc.msg}"
            lineno = exc.lineno
        else:
            for frame, frame_lineno in traceback.walk_tb(exc.__traceback__):
                if frame.f_code.co_filename == SANDBOX_FILENAME:
                    lineno = frame_lineno
        return cls(message, lineno)


class ParseAmbiguity(RLMError):
    """The model produced neither code nor a termination signal.

    Treated as a recoverable stall: the model is nudged and the loop goes on,
    bounded by ``max_iterations``.
    """

    def __init__(self, iteration: int) -> None:
        self.iteration = iteration
        super().__init__(
            f"Iteration {iteration}: response contained no code and no FINAL/FINAL_VAR"
        )


class ModelClientError(RLMError):
    """The model-client collaborator raised; fatal to the invocation."""

    def __init__(self, model: str, cause: BaseException) -> None:
        self.model = model
        super().__init__(f"Model call to {model!r} failed: {cause}")
