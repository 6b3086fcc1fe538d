"""Tests for pricing lookups, the usage ledger and the shared budget."""

from __future__ import annotations

import pytest

from rlm_runtime.budget import SharedBudget, UsageLedger
from rlm_runtime.pricing import FlatPricing, ModelPricing, PricingLookup, TablePricing
from rlm_runtime.types import Usage


class TestPricing:
    def test_model_pricing_cost(self):
        assert ModelPricing(0.01, 0.02).cost(100, 10) == pytest.approx(1.2)

    def test_flat_pricing_same_for_every_model(self):
        pricing = FlatPricing(0.5, 1.0)
        assert pricing.price("a") == pricing.price("b") == ModelPricing(0.5, 1.0)

    def test_table_pricing_unknown_model(self):
        pricing = TablePricing({"known": ModelPricing(1.0, 1.0)})
        assert pricing.price("unknown") is None

    def test_table_pricing_default(self):
        default = ModelPricing(0.1, 0.1)
        assert TablePricing({}, default=default).price("any") is default

    def test_lookups_satisfy_protocol(self):
        assert isinstance(FlatPricing(), PricingLookup)
        assert isinstance(TablePricing({}), PricingLookup)


class TestUsageLedger:
    def test_record_call_accumulates(self):
        ledger = UsageLedger(FlatPricing(0.001, 0.002))
        cost = ledger.record_call("m", 100, 50)
        assert cost == pytest.approx(0.2)
        ledger.record_call("m", 100, 50)
        assert ledger.snapshot() == Usage(200, 100, 2, pytest.approx(0.4))

    def test_unknown_model_costs_zero(self):
        ledger = UsageLedger(TablePricing({}))
        assert ledger.record_call("mystery", 1000, 1000) == 0.0
        assert ledger.total_calls == 1
        assert ledger.estimated_cost == 0.0

    def test_absorb_adds_child_usage(self):
        ledger = UsageLedger(FlatPricing(0.001, 0.0))
        ledger.record_call("m", 100, 0)
        ledger.absorb(Usage(input_tokens=10, output_tokens=5, total_calls=3, estimated_cost=0.5))
        snap = ledger.snapshot()
        assert snap.input_tokens == 110
        assert snap.output_tokens == 5
        assert snap.total_calls == 4
        assert snap.estimated_cost == pytest.approx(0.6)

    def test_projection_uses_own_calls_only(self):
        ledger = UsageLedger(FlatPricing(0.001, 0.0))
        ledger.record_call("m", 100, 0)
        ledger.record_call("m", 300, 50)
        ledger.absorb(Usage(0, 0, 10, 5.0))
        assert ledger.own_calls == 2
        cost, tokens = ledger.projected_call()
        assert cost == pytest.approx(0.2)
        assert tokens == 225

    def test_projection_empty(self):
        assert UsageLedger(FlatPricing()).projected_call() == (0.0, 0)


class TestSharedBudget:
    def test_no_limits_never_exceeded(self):
        budget = SharedBudget()
        budget.add(10_000, 10_000, 100.0)
        assert budget.exceeded_by(UsageLedger(FlatPricing())) is None

    def test_first_call_always_allowed(self):
        assert SharedBudget(max_cost=0.0, max_total_tokens=0).exceeded_by(
            UsageLedger(FlatPricing())
        ) is None

    def test_cost_projected_from_own_calls(self):
        budget = SharedBudget(max_cost=0.25)
        ledger = UsageLedger(FlatPricing(0.001, 0.0))
        budget.add(100, 0, ledger.record_call("m", 100, 0))
        assert budget.exceeded_by(ledger) is None
        budget.add(100, 0, ledger.record_call("m", 100, 0))
        assert "max_cost" in budget.exceeded_by(ledger)

    def test_fresh_ledger_projected_from_run_mean(self):
        budget = SharedBudget(max_cost=0.15)
        budget.add(100, 50, 0.1)
        reason = budget.exceeded_by(UsageLedger(FlatPricing()))
        assert reason == "next call would exceed max_cost 0.1500 (spent 0.1000)"

    def test_spend_from_every_depth_counts(self):
        budget = SharedBudget(max_cost=0.9)
        for _ in range(4):
            budget.add(10, 10, 0.2)
        assert budget.call_count == 4
        assert budget.spent == pytest.approx(0.8)
        assert budget.total_tokens == 80
        assert budget.exceeded_by(UsageLedger(FlatPricing())) is not None

    def test_token_ceiling(self):
        budget = SharedBudget(max_total_tokens=250)
        budget.add(100, 50, 0.0)
        assert budget.exceeded_by(UsageLedger(FlatPricing())) == (
            "next call would exceed max_total_tokens 250 (used 150)"
        )

    def test_token_ceiling_allows_exact_fit(self):
        budget = SharedBudget(max_total_tokens=300)
        budget.add(100, 50, 0.0)
        assert budget.exceeded_by(UsageLedger(FlatPricing())) is None
