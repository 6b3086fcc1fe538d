"""Pricing lookup used to turn token usage into an estimated cost.

The runtime does not ship a price list; it only consumes a lookup that maps
a model identifier to per-token prices.  :class:`FlatPricing` covers the
common case of one price pair configured on :class:`~rlm_runtime.config.RLMConfig`.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class ModelPricing:
    """Per-token prices in USD."""

    input_per_token: float = 0.0
    output_per_token: float = 0.0

    def cost(self, input_tokens: int, output_tokens: int) -> float:
        return input_tokens * self.input_per_token + output_tokens * self.output_per_token


@runtime_checkable
class PricingLookup(Protocol):
    """Anything that can price a model.  Returns ``None`` for unknown models."""

    def price(self, model: str) -> ModelPricing | None: ...


class FlatPricing:
    """Same prices for every model."""

    def __init__(self, input_per_token: float = 0.0, output_per_token: float = 0.0) -> None:
        self._pricing = ModelPricing(input_per_token, output_per_token)

    def price(self, model: str) -> ModelPricing | None:
        return self._pricing


class TablePricing:
    """Prices looked up by exact model identifier."""

    def __init__(
        self,
        table: Mapping[str, ModelPricing],
        default: ModelPricing | None = None,
    ) -> None:
        self._table = dict(table)
        self._default = default

    def price(self, model: str) -> ModelPricing | None:
        return self._table.get(model, self._default)
