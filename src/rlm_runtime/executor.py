"""The executor loop: model turn, parse, run code, feed back, repeat."""

from __future__ import annotations

import enum
import logging
import time
from collections.abc import Callable, Sequence
from typing import Any

from .budget import SharedBudget, UsageLedger
from .cache import SubQueryCache
from .client import CompletionResult, request_completion, wrap_if_needed
from .config import RLMConfig
from .exceptions import MaxIterationsExceeded, ModelClientError, ParseAmbiguity, RLMError
from .metadata import render_value
from .parser import parse_response
from .pricing import FlatPricing, PricingLookup
from .prompt import (
    build_missing_variable_prompt,
    build_nudge_prompt,
    build_system_prompt,
    build_user_prompt,
    format_execution_feedback,
)
from .sandbox import Sandbox, SandboxOptions
from .subquery import SubQueryDispatcher
from .tracing import span
from .types import (
    ExecutionResult,
    Message,
    TerminationKind,
    TerminationSignal,
    TraceEntry,
    TraceKind,
    Usage,
)

logger = logging.getLogger(__name__)

# Variables consulted, in order, for a best-effort answer when the loop stops early.
ANSWER_VARIABLES = ("final_answer", "answer", "result", "output")


class ExecutorState(str, enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    LIMIT_EXCEEDED = "limit_exceeded"


class _Invocation:
    """Mutable bookkeeping for one :meth:`Executor.execute` call."""

    def __init__(
        self,
        depth: int,
        ledger: UsageLedger,
        budget: SharedBudget,
        on_step: Callable[[TraceEntry], None] | None,
    ) -> None:
        self.depth = depth
        self.ledger = ledger
        self.budget = budget
        self.on_step = on_step
        self.trace: list[TraceEntry] = []
        self.messages: list[Message] = []
        self.last_text = ""

    def record(self, kind: TraceKind, payload: dict[str, Any]) -> TraceEntry:
        entry = TraceEntry(kind, self.depth, time.time(), payload)
        self._append(entry)
        return entry

    def splice(self, entries: Sequence[TraceEntry], usage: Usage | None) -> None:
        for entry in entries:
            self._append(entry)
        if usage is not None:
            self.ledger.absorb(usage)

    def _append(self, entry: TraceEntry) -> None:
        self.trace.append(entry)
        if self.on_step is not None:
            self.on_step(entry)

    def attach(self, exc: RLMError) -> None:
        exc.trace = list(self.trace)
        exc.usage = self.ledger.snapshot()


class Executor:
    """Runs the REPL loop for one query at one recursion depth.

    Parameters
    ----------
    client:
        Model client (see :class:`~rlm_runtime.client.LLMClient`); OpenAI
        clients are wrapped automatically.
    config:
        :class:`~rlm_runtime.config.RLMConfig` with the loop limits.
    model:
        Model used for this executor's own turns.
    sub_model:
        Model used by child executors (defaults to *model*).
    pricing:
        Pricing lookup; defaults to flat per-token prices from *config*.
    depth:
        Recursion level of this executor (0 = top level).
    cache:
        Sub-query answer cache shared with child executors.  When ``None``
        and ``config.cache_sub_queries`` is set, the top-level executor
        creates one per invocation.
    budget:
        Run-wide :class:`~rlm_runtime.budget.SharedBudget` enforcing
        ``config.max_cost`` and ``config.max_total_tokens`` across all
        depths.  When ``None`` each invocation creates its own, which is
        what the top-level executor does.
    """

    def __init__(
        self,
        client: Any,
        config: RLMConfig | None = None,
        *,
        model: str,
        sub_model: str | None = None,
        pricing: PricingLookup | None = None,
        depth: int = 0,
        cache: SubQueryCache | None = None,
        budget: SharedBudget | None = None,
    ) -> None:
        self._client = wrap_if_needed(client)
        self._config = config or RLMConfig()
        self._model = model
        self._sub_model = sub_model or model
        self._pricing = pricing or FlatPricing(
            self._config.cost_per_input_token, self._config.cost_per_output_token
        )
        self._depth = depth
        self._cache = cache
        self._budget = budget
        self.state = ExecutorState.IDLE

    @property
    def depth(self) -> int:
        return self._depth

    async def execute(
        self,
        query: str,
        context: str | list[str] = "",
        *,
        on_step: Callable[[TraceEntry], None] | None = None,
        on_token: Callable[[str], None] | None = None,
    ) -> ExecutionResult:
        """Answer *query* over *context*.

        Returns an :class:`~rlm_runtime.types.ExecutionResult` with
        ``status="partial"`` when the run-wide cost or token ceiling stopped
        the loop early.

        Raises
        ------
        MaxIterationsExceeded
            No answer within ``config.max_iterations`` turns.
        ModelClientError
            The model client raised.
        """
        if self.state is ExecutorState.RUNNING:
            raise RuntimeError("Executor is already running")

        config = self._config
        if config.verbose:
            logging.basicConfig(
                level=logging.INFO,
                format="%(name)s %(levelname)s: %(message)s",
            )
            logger.setLevel(logging.INFO)

        with span(
            "rlm.execute",
            {
                "rlm.model": self._model,
                "rlm.depth": self._depth,
                "rlm.query_length": len(query),
            },
        ) as s:
            self.state = ExecutorState.RUNNING
            try:
                result = await self._run(query, context, on_step, on_token)
            except RLMError as exc:
                if isinstance(exc, MaxIterationsExceeded):
                    self.state = ExecutorState.LIMIT_EXCEEDED
                else:
                    self.state = ExecutorState.FAILED
                s.set_attribute("rlm.error", type(exc).__name__)
                raise
            except BaseException:
                self.state = ExecutorState.FAILED
                raise
            self.state = (
                ExecutorState.LIMIT_EXCEEDED if result.partial else ExecutorState.COMPLETED
            )
            s.set_attribute("rlm.iterations", result.iterations)
            s.set_attribute("rlm.total_calls", result.usage.total_calls)
            s.set_attribute("rlm.status", result.status)
            return result

    async def _run(
        self,
        query: str,
        context: str | list[str],
        on_step: Callable[[TraceEntry], None] | None,
        on_token: Callable[[str], None] | None,
    ) -> ExecutionResult:
        config = self._config
        started = time.monotonic()
        budget = self._budget or SharedBudget(config.max_cost, config.max_total_tokens)
        inv = _Invocation(self._depth, UsageLedger(self._pricing), budget, on_step)

        cache = self._cache
        if cache is None and config.cache_sub_queries and self._depth == 0:
            cache = SubQueryCache()

        dispatcher = SubQueryDispatcher(
            self._child_factory(cache, budget),
            depth=self._depth,
            max_depth=config.max_depth,
            root_context=context,
            splice=inv.splice,
            cache=cache,
            model=self._sub_model,
        )
        sandbox = Sandbox(
            context,
            dispatcher.query,
            dispatcher.query_parallel,
            options=SandboxOptions(
                timeout=config.sandbox_timeout,
                memory_limit_mb=config.memory_limit_mb,
            ),
        )
        inv.messages = [
            Message(
                "system",
                build_system_prompt(context, depth=self._depth, max_depth=config.max_depth),
            ),
            Message("user", build_user_prompt(query)),
        ]

        try:
            for iteration in range(1, config.max_iterations + 1):
                with span("rlm.iteration", {"rlm.iteration": iteration, "rlm.depth": self._depth}):
                    outcome = await self._turn(inv, sandbox, iteration, on_token)
                if outcome is None:
                    continue

                answer, status = outcome
                # A partial stop happens before the turn's model call.
                completed = iteration - 1 if status == "partial" else iteration
                inv.record(
                    TraceKind.FINAL_OUTPUT,
                    {"iteration": completed, "response": answer, "status": status},
                )
                logger.info(
                    "depth %d finished in %d iteration(s) (%s)", self._depth, completed, status
                )
                return ExecutionResult(
                    response=answer,
                    trace=tuple(inv.trace),
                    usage=inv.ledger.snapshot(),
                    elapsed_seconds=time.monotonic() - started,
                    iterations=completed,
                    status=status,
                    variables=sandbox.variable_summaries,
                )

            exc = MaxIterationsExceeded(config.max_iterations, config.max_iterations)
            inv.record(TraceKind.ERROR, {"iteration": config.max_iterations, "error": str(exc)})
            logger.warning("depth %d: %s", self._depth, exc)
            inv.attach(exc)
            raise exc
        except ModelClientError as exc:
            inv.attach(exc)
            raise
        finally:
            sandbox.dispose()

    async def _turn(
        self,
        inv: _Invocation,
        sandbox: Sandbox,
        iteration: int,
        on_token: Callable[[str], None] | None,
    ) -> tuple[str, str] | None:
        """One loop iteration.  Returns ``(answer, status)`` once finished."""
        config = self._config

        # -- 1. Run-wide cost and token ceilings --------------------------------
        reason = inv.budget.exceeded_by(inv.ledger)
        if reason is not None:
            logger.warning("depth %d: %s; stopping", self._depth, reason)
            return self._best_answer(sandbox, inv), "partial"

        # -- 2. Model call -------------------------------------------------------
        result = await self._call_model(inv.messages, on_token)
        cost = inv.ledger.record_call(self._model, result.input_tokens, result.output_tokens)
        inv.budget.add(result.input_tokens, result.output_tokens, cost)
        text = result.content
        inv.last_text = text
        inv.record(
            TraceKind.MODEL_CALL,
            {
                "iteration": iteration,
                "model": self._model,
                "response": text,
                "input_tokens": result.input_tokens,
                "output_tokens": result.output_tokens,
                "cost": cost,
            },
        )
        logger.info("depth %d iter %d: model output (%d chars)", self._depth, iteration, len(text))

        # -- 3. Parse ------------------------------------------------------------
        parsed = parse_response(text)
        inv.messages.append(Message("assistant", text))

        # -- 4. Plain-text termination wins; the code is not run -----------------
        if parsed.termination is not None:
            answer = self._resolve(parsed.termination, sandbox, inv, iteration)
            if answer is not None:
                return answer, "completed"
            inv.messages.append(
                Message(
                    "user",
                    build_missing_variable_prompt(
                        parsed.termination.payload, list(sandbox.variables)
                    ),
                )
            )
            return None

        # -- 5. Run code ---------------------------------------------------------
        if parsed.code is not None:
            run = await sandbox.execute(parsed.code)
            inv.record(
                TraceKind.CODE_EXECUTION,
                {
                    "iteration": iteration,
                    "code": parsed.code,
                    "output": run.output,
                    "error": run.error,
                    "elapsed_seconds": run.elapsed_seconds,
                    "timed_out": run.timed_out,
                },
            )
            feedback = format_execution_feedback(run, config.metadata_prefix_chars)

            if run.termination is not None:
                answer = self._resolve(run.termination, sandbox, inv, iteration)
                if answer is not None:
                    return answer, "completed"
                feedback += "\n\n" + build_missing_variable_prompt(
                    run.termination.payload, list(sandbox.variables)
                )

            inv.messages.append(Message("user", feedback))
            return None

        # -- 6. Neither code nor answer ------------------------------------------
        stall = ParseAmbiguity(iteration)
        logger.info("depth %d: %s", self._depth, stall)
        inv.record(TraceKind.ERROR, {"iteration": iteration, "error": str(stall)})
        inv.messages.append(Message("user", build_nudge_prompt()))
        return None

    # -- Helpers ---------------------------------------------------------------

    async def _call_model(
        self,
        messages: list[Message],
        on_token: Callable[[str], None] | None,
    ) -> CompletionResult:
        try:
            return await request_completion(
                self._client,
                model=self._model,
                messages=[m.to_dict() for m in messages],
                temperature=self._config.temperature,
                max_tokens=self._config.max_tokens,
                on_token=on_token,
            )
        except Exception as exc:
            raise ModelClientError(self._model, exc) from exc

    def _resolve(
        self,
        signal: TerminationSignal,
        sandbox: Sandbox,
        inv: _Invocation,
        iteration: int,
    ) -> str | None:
        """Turn a termination signal into the answer text, or ``None``."""
        if signal.kind is TerminationKind.DIRECT_VALUE:
            return signal.payload

        name = signal.payload
        if sandbox.has_variable(name):
            return render_value(sandbox.get_variable(name))

        logger.info("depth %d: FINAL_VAR(%s) is undefined", self._depth, name)
        inv.record(
            TraceKind.ERROR,
            {
                "iteration": iteration,
                "error": f"FINAL_VAR({name}) refers to an undefined variable",
                "variable": name,
            },
        )
        return None

    def _best_answer(self, sandbox: Sandbox, inv: _Invocation) -> str:
        for name in ANSWER_VARIABLES:
            if sandbox.has_variable(name):
                return render_value(sandbox.get_variable(name))
        return inv.last_text

    def _child_factory(
        self, cache: SubQueryCache | None, budget: SharedBudget
    ) -> Callable[[int], Executor]:
        def make(child_depth: int) -> Executor:
            return Executor(
                self._client,
                self._config,
                model=self._sub_model,
                sub_model=self._sub_model,
                pricing=self._pricing,
                depth=child_depth,
                cache=cache,
                budget=budget,
            )

        return make
