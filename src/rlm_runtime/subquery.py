"""Recursive sub-queries issued from sandboxed code.

``llm_query`` inside the sandbox lands here.  Each sub-query runs a child
:class:`~rlm_runtime.executor.Executor` one level deeper, with its own
sandbox over its own context.  The child's trace and usage are handed back to
the parent through the ``splice`` callback, so the parent's trace shows the
whole tree and its usage covers every depth.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING, Any

from .cache import SubQueryCache
from .exceptions import MaxDepthExceeded, RLMError
from .metadata import render_value
from .sandbox import SubQuery
from .tracing import span
from .types import TraceEntry, TraceKind, Usage

if TYPE_CHECKING:
    from .executor import Executor

logger = logging.getLogger(__name__)

Splice = Callable[[Sequence[TraceEntry], "Usage | None"], None]


def retag_child_trace(entries: Sequence[TraceEntry]) -> list[TraceEntry]:
    """Copy a child trace, marking its model calls as sub-model calls.

    Entries are new objects; the child's own entries are left untouched and
    keep their recorded depth.
    """
    return [
        dataclasses.replace(entry, kind=TraceKind.SUB_MODEL_CALL)
        if entry.kind is TraceKind.MODEL_CALL
        else dataclasses.replace(entry)
        for entry in entries
    ]


def _coerce_context(context: Any) -> str | list[str]:
    if isinstance(context, str):
        return context
    if isinstance(context, (list, tuple)):
        return [item if isinstance(item, str) else render_value(item) for item in context]
    return render_value(context)


class SubQueryDispatcher:
    """Services ``llm_query`` / ``llm_query_parallel`` for one executor.

    Parameters
    ----------
    executor_factory:
        Builds the child executor for a given depth.
    depth:
        Depth of the executor that owns this dispatcher.
    max_depth:
        Deepest level a sub-query may run at.
    root_context:
        Context used when sandboxed code does not pass one.
    splice:
        ``(entries, usage)`` callback that appends child trace entries to the
        parent trace and folds child usage into the parent ledger.
    cache:
        Optional answer cache shared by every executor of one run.
    model:
        Sub-model identifier, used in cache keys.
    """

    def __init__(
        self,
        executor_factory: Callable[[int], Executor],
        depth: int,
        max_depth: int,
        root_context: str | list[str],
        splice: Splice,
        cache: SubQueryCache | None = None,
        model: str = "",
    ) -> None:
        self._factory = executor_factory
        self.depth = depth
        self.max_depth = max_depth
        self._root_context = root_context
        self._splice = splice
        self._cache = cache
        self._model = model
        self.call_count = 0

    async def query(self, prompt: str, context: Any = None) -> str:
        """Answer *prompt* with a child executor one level deeper."""
        child_depth = self.depth + 1
        with span("rlm.sub_query", {"rlm.depth": child_depth, "rlm.prompt_length": len(prompt)}) as s:
            if child_depth > self.max_depth:
                exc = MaxDepthExceeded(child_depth, self.max_depth)
                logger.warning("Rejected sub-query: %s", exc)
                self._splice(
                    [
                        TraceEntry(
                            TraceKind.ERROR,
                            self.depth,
                            time.time(),
                            {"error": str(exc), "prompt": prompt[:200]},
                        )
                    ],
                    None,
                )
                raise exc

            ctx = self._root_context if context is None else _coerce_context(context)

            cache_key: str | None = None
            if self._cache is not None:
                cache_key = self._cache.key(self._model, prompt, ctx)
                cached = self._cache.get(cache_key)
                if cached is not None:
                    s.set_attribute("rlm.cache_hit", True)
                    logger.debug("Sub-query cache hit at depth %d", child_depth)
                    return cached

            self.call_count += 1
            executor = self._factory(child_depth)
            try:
                result = await executor.execute(prompt, ctx)
            except RLMError as exc:
                self._splice(retag_child_trace(exc.trace), exc.usage)
                raise

            self._splice(retag_child_trace(result.trace), result.usage)
            s.set_attribute("rlm.iterations", result.iterations)

            if cache_key is not None:
                self._cache.put(cache_key, result.response)  # type: ignore[union-attr]
            return result.response

    async def query_parallel(self, items: Sequence[SubQuery]) -> list[str]:
        """Run every item concurrently; answers come back in request order.

        A failed item yields ``"[Error: <message>]"`` at its position instead
        of failing the whole batch.
        """
        results = await asyncio.gather(
            *(self.query(item.prompt, item.context) for item in items),
            return_exceptions=True,
        )
        answers: list[str] = []
        for item, outcome in zip(items, results):
            if isinstance(outcome, BaseException):
                logger.debug("Parallel sub-query %r failed: %s", item.prompt[:60], outcome)
                answers.append(f"[Error: {outcome}]")
            else:
                answers.append(outcome)
        return answers
