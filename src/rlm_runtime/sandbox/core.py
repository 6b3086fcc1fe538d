"""Persistent sandbox for model-written code.

The context and every intermediate variable live here, never in the model's
context window.  Code runs on a dedicated interpreter thread with its own
event loop, so ``await llm_query(...)`` inside sandboxed code suspends only
that code while the real (async) sub-query runs on the host loop::

    interpreter thread                    host event loop
    ------------------                    ---------------
    await llm_query(p)  --PendingCall-->  queue  --poll 10ms-->  bridge task
                                                                     |
    resumes with answer <--future.set_result-- handler task  <-------+

Each call is settled exactly once.  Calls still in flight when the code
finishes, or when the timeout fires, are cancelled.
"""

from __future__ import annotations

import ast
import asyncio
import collections
import concurrent.futures
import enum
import inspect
import itertools
import json
import logging
import math
import queue
import re
import sys
import threading
import time
import types
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from ..exceptions import SANDBOX_FILENAME, SandboxRuntimeError, SandboxTimeout
from ..metadata import render_value
from ..tools import DEFAULT_TOOLS
from ..tracing import span
from ..types import SandboxResult, TerminationKind, TerminationSignal
from .restricted import build_safe_builtins

logger = logging.getLogger(__name__)

# Interval at which the host drains the pending-call queue.
POLL_INTERVAL = 0.01
# How long a timed-out run may take to unwind before it is abandoned.
ABORT_GRACE = 1.0

QueryHandler = Callable[[str, "str | list[str] | None"], Awaitable[str]]
ParallelHandler = Callable[[list["SubQuery"]], Awaitable[list[str]]]


@dataclass
class SandboxOptions:
    """Per-sandbox limits.

    Parameters
    ----------
    timeout:
        Wall-clock seconds one :meth:`Sandbox.execute` call may take.
    memory_limit_mb:
        Advisory only; an in-process interpreter cannot enforce it.
    max_timer_seconds:
        Upper bound applied to the sandbox's ``sleep(seconds)``.
    """

    timeout: float = 30.0
    memory_limit_mb: int = 128
    max_timer_seconds: float = 5.0


@dataclass(frozen=True)
class SubQuery:
    """One recursive query requested by sandboxed code."""

    prompt: str
    context: str | list[str] | None = None


class CallKind(str, enum.Enum):
    SINGLE = "single"
    PARALLEL = "parallel"


@dataclass
class PendingCall:
    """A host capability invocation waiting to be serviced.

    ``future`` is the settle handle shared between the interpreter thread
    (which awaits it) and the host loop (which resolves it).
    """

    id: int
    kind: CallKind
    request: SubQuery | list[SubQuery]
    loop: asyncio.AbstractEventLoop
    """Interpreter loop the caller is suspended on."""

    future: concurrent.futures.Future = field(default_factory=concurrent.futures.Future)

    def _deliverable(self) -> bool:
        return not self.future.done() and not self.loop.is_closed()

    def resolve(self, value: Any) -> None:
        if self._deliverable():
            try:
                self.future.set_result(value)
            except concurrent.futures.InvalidStateError:
                # The awaiting side cancelled between the check and the set.
                pass

    def reject(self, exc: BaseException) -> None:
        if self._deliverable():
            try:
                self.future.set_exception(exc)
            except concurrent.futures.InvalidStateError:
                pass

    def cancel(self) -> None:
        if self._deliverable():
            self.future.cancel()


class _SandboxAbort(BaseException):
    """Raised into sandboxed frames once a run has been aborted."""


class _Interpreter:
    """One run of compiled code on its own thread and event loop."""

    def __init__(self, code: types.CodeType, namespace: dict[str, Any]) -> None:
        self._code = code
        self._namespace = namespace
        self.finished = threading.Event()
        self.aborted = threading.Event()
        self.error: BaseException | None = None
        self.loop: asyncio.AbstractEventLoop | None = None
        self._task: asyncio.Task[Any] | None = None
        self._thread = threading.Thread(target=self._thread_main, name="rlm-sandbox", daemon=True)

    def start(self) -> None:
        self._thread.start()

    def is_alive(self) -> bool:
        return self._thread.is_alive()

    def abort(self) -> None:
        """Stop the run: cancel its main task and trip the line tracer."""
        self.aborted.set()
        loop, task = self.loop, self._task
        if loop is not None and task is not None and not loop.is_closed():
            try:
                loop.call_soon_threadsafe(task.cancel)
            except RuntimeError:
                # Loop closed after the check; the run is already over.
                pass

    # -- Interpreter thread --------------------------------------------------

    def _thread_main(self) -> None:
        previous = sys.gettrace()
        sys.settrace(self._trace_calls)
        try:
            asyncio.run(self._main())
        finally:
            sys.settrace(previous)
            self.finished.set()

    async def _main(self) -> None:
        self.loop = asyncio.get_running_loop()
        self._task = asyncio.current_task()
        try:
            result = eval(self._code, self._namespace)  # noqa: S307
            if inspect.iscoroutine(result):
                await result
        except BaseException as exc:  # noqa: BLE001
            if not self.aborted.is_set():
                self.error = exc

    def _trace_calls(self, frame: types.FrameType, event: str, arg: Any) -> Any:
        if frame.f_code.co_filename != SANDBOX_FILENAME:
            return None
        if self.aborted.is_set():
            raise _SandboxAbort
        return self._trace_lines

    def _trace_lines(self, frame: types.FrameType, event: str, arg: Any) -> Any:
        if self.aborted.is_set():
            raise _SandboxAbort
        return self._trace_lines


class Sandbox:
    """A persistent, isolated namespace for model-written Python.

    Parameters
    ----------
    context:
        The input value, bound as ``context``.
    query_handler:
        ``async (prompt, context) -> str`` servicing ``llm_query``.
    parallel_handler:
        ``async (list[SubQuery]) -> list[str]`` servicing
        ``llm_query_parallel``.  Without one, the single handler is gathered.
    options:
        Timeout and timer limits.
    tools:
        Mapping of extra names bound into the namespace.
    """

    def __init__(
        self,
        context: str | list[str],
        query_handler: QueryHandler,
        parallel_handler: ParallelHandler | None = None,
        *,
        options: SandboxOptions | None = None,
        tools: Mapping[str, Callable[..., Any]] = DEFAULT_TOOLS,
    ) -> None:
        self._context = context
        self._query_handler = query_handler
        self._parallel_handler = parallel_handler
        self.options = options or SandboxOptions()
        self._tools = tools
        self._queue: queue.Queue[PendingCall] = queue.Queue()
        self._ids = itertools.count(1)
        self._output: list[str] = []
        self._termination: TerminationSignal | None = None
        self._run_lock = asyncio.Lock()
        self._disposed = False
        self._namespace = self._fresh_namespace()
        self._injected = frozenset(self._namespace)

    # -- Namespace -----------------------------------------------------------

    def _fresh_namespace(self) -> dict[str, Any]:
        namespace: dict[str, Any] = {
            "__builtins__": build_safe_builtins({"print": self._print}),
            "__name__": "__sandbox__",
            "context": self._context,
            "FINAL": self._final,
            "FINAL_VAR": self._final_var,
            "llm_query": self._llm_query,
            "llm_query_parallel": self._llm_query_parallel,
            "sleep": self._sleep,
            "re": re,
            "json": json,
            "math": math,
            "collections": collections,
        }
        namespace.update(self._tools)
        return namespace

    def get_variable(self, name: str) -> Any:
        """Return a binding; raises ``KeyError`` when it is undefined."""
        return self._namespace[name]

    def has_variable(self, name: str) -> bool:
        return name in self._namespace

    def set_variable(self, name: str, value: Any) -> None:
        self._namespace[name] = value

    @property
    def variables(self) -> dict[str, Any]:
        """User-created bindings (injected names, modules and ``_private`` excluded)."""
        return {
            k: v
            for k, v in self._namespace.items()
            if k not in self._injected
            and not k.startswith("_")
            and not isinstance(v, types.ModuleType)
        }

    @property
    def variable_summaries(self) -> dict[str, str]:
        """Map user-created variable names to short ``repr`` strings."""
        out: dict[str, str] = {}
        for name, value in self.variables.items():
            r = repr(value)
            if len(r) > 200:
                r = r[:200] + "..."
            out[name] = r
        return out

    def reset(self) -> None:
        """Drop every user binding, keeping the context and capabilities."""
        self._namespace = self._fresh_namespace()
        self._termination = None

    def dispose(self) -> None:
        """Release the namespace.  The sandbox cannot be used afterwards."""
        self._disposed = True
        self._namespace.clear()
        self._cancel_queued()

    # -- Capabilities bound into the namespace -------------------------------

    def _print(self, *args: Any, sep: str | None = " ", end: str | None = "\n", **_: Any) -> None:
        sep = " " if sep is None else sep
        end = "\n" if end is None else end
        self._output.append(sep.join(str(a) for a in args) + end)

    def _final(self, value: Any) -> None:
        self._termination = TerminationSignal(TerminationKind.DIRECT_VALUE, render_value(value))

    def _final_var(self, name: Any) -> None:
        if not isinstance(name, str):
            # Passed the value rather than its name.
            self._final(name)
            return
        name = name.strip()
        if len(name) >= 2 and name[0] == name[-1] and name[0] in "\"'`":
            name = name[1:-1].strip()
        self._termination = TerminationSignal(TerminationKind.VARIABLE_REFERENCE, name)

    def _enqueue(self, kind: CallKind, request: SubQuery | list[SubQuery]) -> PendingCall:
        call = PendingCall(next(self._ids), kind, request, asyncio.get_running_loop())
        self._queue.put(call)
        logger.debug("Queued %s call #%d", kind.value, call.id)
        return call

    def _llm_query(self, prompt: Any, context: str | list[str] | None = None) -> asyncio.Future[str]:
        call = self._enqueue(CallKind.SINGLE, SubQuery(str(prompt), context))
        return asyncio.wrap_future(call.future, loop=call.loop)

    def _llm_query_parallel(self, queries: list[Any]) -> asyncio.Future[list[str]]:
        requests: list[SubQuery] = []
        for item in queries:
            if isinstance(item, Mapping):
                requests.append(SubQuery(str(item["prompt"]), item.get("context")))
            else:
                requests.append(SubQuery(str(item)))
        call = self._enqueue(CallKind.PARALLEL, requests)
        return asyncio.wrap_future(call.future, loop=call.loop)

    async def _sleep(self, seconds: float) -> None:
        await asyncio.sleep(min(max(float(seconds), 0.0), self.options.max_timer_seconds))

    # -- Execution -----------------------------------------------------------

    async def execute(self, code: str) -> SandboxResult:
        """Run *code* in the persistent namespace.

        Never raises for problems in the code itself: errors and timeouts are
        reported on the returned :class:`SandboxResult` so the model can
        correct them.
        """
        if self._disposed:
            raise RuntimeError("Sandbox has been disposed")

        async with self._run_lock:
            with span("rlm.sandbox.execute", {"rlm.code_length": len(code)}) as s:
                result = await self._run(code)
                s.set_attribute("rlm.timed_out", result.timed_out)
                s.set_attribute("rlm.had_error", result.error is not None)
            return result

    async def _run(self, code: str) -> SandboxResult:
        self._output = []
        self._termination = None
        started = time.monotonic()

        try:
            compiled = compile(
                code,
                SANDBOX_FILENAME,
                "exec",
                flags=ast.PyCF_ALLOW_TOP_LEVEL_AWAIT,
                dont_inherit=True,
            )
        except SyntaxError as exc:
            return self._result(started, error=str(SandboxRuntimeError.from_exception(exc)))

        interpreter = _Interpreter(compiled, self._namespace)
        interpreter.start()
        bridge = asyncio.create_task(self._bridge(interpreter))

        try:
            await asyncio.wait_for(asyncio.shield(bridge), timeout=self.options.timeout)
        except asyncio.TimeoutError:
            logger.warning("Sandbox execution timed out after %ss", self.options.timeout)
            await self._abort(interpreter, bridge)
            return self._result(started, error=str(SandboxTimeout(self.options.timeout)), timed_out=True)
        except asyncio.CancelledError:
            await self._abort(interpreter, bridge)
            raise

        error = None
        if interpreter.error is not None:
            error = str(SandboxRuntimeError.from_exception(interpreter.error))
        return self._result(started, error=error)

    def _result(self, started: float, *, error: str | None = None, timed_out: bool = False) -> SandboxResult:
        return SandboxResult(
            output="".join(self._output),
            error=error,
            variables=self.variables,
            elapsed_seconds=time.monotonic() - started,
            termination=self._termination,
            timed_out=timed_out,
        )

    async def _bridge(self, interpreter: _Interpreter) -> None:
        """Service pending calls until the interpreter is done and the queue is empty."""
        in_flight: set[asyncio.Task[None]] = set()
        try:
            while not interpreter.finished.is_set() or not self._queue.empty():
                while True:
                    try:
                        call = self._queue.get_nowait()
                    except queue.Empty:
                        break
                    task = asyncio.create_task(self._dispatch(call))
                    in_flight.add(task)
                    task.add_done_callback(in_flight.discard)
                await asyncio.sleep(POLL_INTERVAL)
        finally:
            if in_flight:
                logger.debug("Cancelling %d unfinished sandbox call(s)", len(in_flight))
                for task in in_flight:
                    task.cancel()
                await asyncio.gather(*in_flight, return_exceptions=True)

    async def _dispatch(self, call: PendingCall) -> None:
        try:
            if isinstance(call.request, SubQuery):
                value: Any = await self._query_handler(call.request.prompt, call.request.context)
            else:
                value = await self._run_parallel(call.request)
        except asyncio.CancelledError:
            call.cancel()
            raise
        except Exception as exc:
            logger.debug("Sandbox call #%d failed: %s", call.id, exc)
            call.reject(exc)
        else:
            call.resolve(value)

    async def _run_parallel(self, requests: list[SubQuery]) -> list[str]:
        if self._parallel_handler is not None:
            return list(await self._parallel_handler(requests))
        return list(
            await asyncio.gather(*(self._query_handler(r.prompt, r.context) for r in requests))
        )

    async def _abort(self, interpreter: _Interpreter, bridge: asyncio.Task[None]) -> None:
        interpreter.abort()
        self._cancel_queued()
        bridge.cancel()
        await asyncio.gather(bridge, return_exceptions=True)

        deadline = time.monotonic() + ABORT_GRACE
        while interpreter.is_alive() and time.monotonic() < deadline:
            await asyncio.sleep(POLL_INTERVAL)
        if interpreter.is_alive():
            logger.warning("Sandbox thread did not stop within %ss; abandoning it", ABORT_GRACE)

    def _cancel_queued(self) -> None:
        while True:
            try:
                call = self._queue.get_nowait()
            except queue.Empty:
                break
            call.cancel()
