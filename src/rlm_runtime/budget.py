"""Usage accounting and run-wide spending limits.

Each :class:`~rlm_runtime.executor.Executor` invocation owns a
:class:`UsageLedger` that reports the tokens, calls and cost of its own turns
plus the usage its sub-queries hand back.  Limits are enforced separately by a
single :class:`SharedBudget` that the top-level invocation creates and every
child executor at every depth shares, so ``max_cost`` and
``max_total_tokens`` bound the whole run.
"""

from __future__ import annotations

import logging
import threading

from .pricing import PricingLookup
from .types import Usage

logger = logging.getLogger(__name__)


class UsageLedger:
    """Accumulates usage and estimated cost for reporting.

    Parameters
    ----------
    pricing:
        Lookup used to price each model call.  Unknown models cost 0.
    """

    def __init__(self, pricing: PricingLookup) -> None:
        self._pricing = pricing
        self._input_tokens: int = 0
        self._output_tokens: int = 0
        self._calls: int = 0
        self._cost: float = 0.0
        self._own_calls: int = 0
        self._own_tokens: int = 0
        self._own_cost: float = 0.0

    @property
    def total_calls(self) -> int:
        return self._calls

    @property
    def own_calls(self) -> int:
        """Model calls made at this depth, excluding absorbed sub-queries."""
        return self._own_calls

    @property
    def estimated_cost(self) -> float:
        return self._cost

    def record_call(self, model: str, input_tokens: int, output_tokens: int) -> float:
        """Record one model call made at this depth and return its cost."""
        pricing = self._pricing.price(model)
        if pricing is None:
            logger.debug("no pricing for model %r; counting cost as 0", model)
            cost = 0.0
        else:
            cost = pricing.cost(input_tokens, output_tokens)
        self._input_tokens += input_tokens
        self._output_tokens += output_tokens
        self._calls += 1
        self._cost += cost
        self._own_calls += 1
        self._own_tokens += input_tokens + output_tokens
        self._own_cost += cost
        return cost

    def absorb(self, usage: Usage) -> None:
        """Fold in the usage reported by a finished sub-query."""
        self._input_tokens += usage.input_tokens
        self._output_tokens += usage.output_tokens
        self._calls += usage.total_calls
        self._cost += usage.estimated_cost

    def projected_call(self) -> tuple[float, int]:
        """Expected ``(cost, tokens)`` of the next model call at this depth.

        The mean of the calls made so far; the conversation only grows, so
        this tends to underestimate rather than overshoot.
        """
        if self._own_calls == 0:
            return 0.0, 0
        return self._own_cost / self._own_calls, self._own_tokens // self._own_calls

    def snapshot(self) -> Usage:
        return Usage(
            input_tokens=self._input_tokens,
            output_tokens=self._output_tokens,
            total_calls=self._calls,
            estimated_cost=self._cost,
        )


class SharedBudget:
    """Thread-safe spend counters shared by every executor of one run.

    Parameters
    ----------
    max_cost:
        Ceiling on the estimated cost (USD) of the whole run, or ``None``.
    max_total_tokens:
        Ceiling on input plus output tokens of the whole run, or ``None``.
    """

    def __init__(
        self,
        max_cost: float | None = None,
        max_total_tokens: int | None = None,
    ) -> None:
        self.max_cost = max_cost
        self.max_total_tokens = max_total_tokens
        self._cost: float = 0.0
        self._tokens: int = 0
        self._calls: int = 0
        self._lock = threading.Lock()

    @property
    def spent(self) -> float:
        return self._cost

    @property
    def total_tokens(self) -> int:
        return self._tokens

    @property
    def call_count(self) -> int:
        return self._calls

    def add(self, input_tokens: int, output_tokens: int, cost: float) -> None:
        """Charge one model call made at any depth."""
        with self._lock:
            self._tokens += input_tokens + output_tokens
            self._cost += cost
            self._calls += 1

    def exceeded_by(self, ledger: UsageLedger) -> str | None:
        """Why the next call of *ledger*'s executor must not be made, or ``None``.

        The next call is projected from the executor's own calls.  An
        executor that has not called the model yet, typically a fresh
        sub-query, is projected from the run-wide mean instead.
        """
        with self._lock:
            if ledger.own_calls:
                cost, tokens = ledger.projected_call()
            elif self._calls:
                cost, tokens = self._cost / self._calls, self._tokens // self._calls
            else:
                cost, tokens = 0.0, 0

            if self.max_cost is not None and self._cost + cost > self.max_cost:
                return (
                    f"next call would exceed max_cost {self.max_cost:.4f} "
                    f"(spent {self._cost:.4f})"
                )
            if (
                self.max_total_tokens is not None
                and self._tokens + tokens > self.max_total_tokens
            ):
                return (
                    f"next call would exceed max_total_tokens {self.max_total_tokens} "
                    f"(used {self._tokens})"
                )
            return None
