"""Public entry point: ``RLM``."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

from .config import RLMConfig
from .executor import Executor
from .pricing import PricingLookup
from .types import ExecutionResult, TraceEntry


class RLM:
    """Answer queries over long contexts with the recursive REPL loop.

    Parameters
    ----------
    client:
        A model client (``acomplete``/``complete``) or an OpenAI-compatible
        client such as ``openai.AsyncOpenAI(...)``.
    model:
        Model identifier for the top-level loop.
    sub_model:
        Model identifier for recursive sub-queries.  Defaults to *model*.
    config:
        Optional :class:`RLMConfig` with tuning knobs.
    pricing:
        Optional pricing lookup; defaults to the flat prices in *config*.

    Example
    -------
    >>> from openai import AsyncOpenAI
    >>> from rlm_runtime import RLM
    >>> rlm = RLM(AsyncOpenAI(), model="gpt-4.1-mini")
    >>> result = rlm.generate("Which clauses mention liability?", contract_text)
    >>> print(result.response)
    """

    def __init__(
        self,
        client: Any,
        model: str = "gpt-4.1",
        sub_model: str | None = None,
        config: RLMConfig | None = None,
        pricing: PricingLookup | None = None,
    ) -> None:
        self._client = client
        self._model = model
        self._sub_model = sub_model or model
        self._config = config or RLMConfig()
        self._pricing = pricing

    def _executor(self) -> Executor:
        return Executor(
            self._client,
            self._config,
            model=self._model,
            sub_model=self._sub_model,
            pricing=self._pricing,
        )

    async def agenerate(
        self,
        query: str,
        context: str | list[str] = "",
        on_step: Callable[[TraceEntry], None] | None = None,
        on_token: Callable[[str], None] | None = None,
    ) -> ExecutionResult:
        """Async version of :meth:`generate`."""
        return await self._executor().execute(
            query, context, on_step=on_step, on_token=on_token
        )

    def generate(
        self,
        query: str,
        context: str | list[str] = "",
        on_step: Callable[[TraceEntry], None] | None = None,
        on_token: Callable[[str], None] | None = None,
    ) -> ExecutionResult:
        """Process *query* over a (potentially very long) *context*.

        Parameters
        ----------
        query:
            The question or task.
        context:
            The long input, a single string or a list of strings.  It is
            bound in the sandbox and never placed in the model's context
            window.
        on_step:
            Called with every trace entry as it is recorded.
        on_token:
            Called with streamed content deltas of top-level model calls.

        Returns
        -------
        ExecutionResult
            The answer, the full trace and aggregated usage.

        Must not be called from a running event loop; use :meth:`agenerate`
        there.
        """
        return asyncio.run(self.agenerate(query, context, on_step=on_step, on_token=on_token))
