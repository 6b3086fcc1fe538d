"""Tests for OpenTelemetry tracing instrumentation."""

from __future__ import annotations

from typing import Any
from unittest.mock import MagicMock, patch

import pytest

from rlm_runtime.client import CompletionResult
from rlm_runtime.config import RLMConfig
from rlm_runtime.exceptions import MaxIterationsExceeded
from rlm_runtime.executor import Executor
from rlm_runtime.tracing import span

# ---------------------------------------------------------------------------
# Mock client
# ---------------------------------------------------------------------------


class MockClient:
    def __init__(self, responses: list[str], sub_responses: list[str] | None = None) -> None:
        self._scripts = {"root": list(responses), "sub": list(sub_responses or [])}

    async def acomplete(self, model, messages, temperature, max_tokens) -> CompletionResult:
        script = self._scripts[model]
        text = script.pop(0) if script else "FINAL(fallback)"
        return CompletionResult(content=text, input_tokens=100, output_tokens=50)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_mock_tracer() -> tuple[MagicMock, list[MagicMock]]:
    """Create a mock tracer that records spans.

    Returns (tracer, spans_list) where spans_list collects all created spans.
    """
    spans: list[MagicMock] = []
    tracer = MagicMock()

    def _start_span(name: str) -> MagicMock:
        mock_span = MagicMock()
        mock_span.name = name
        mock_span.attributes = {}

        def _set_attr(key: str, value: Any) -> None:
            mock_span.attributes[key] = value

        mock_span.set_attribute = _set_attr
        mock_span.__enter__ = lambda self: self
        mock_span.__exit__ = lambda self, *args: None
        spans.append(mock_span)
        return mock_span

    tracer.start_as_current_span = _start_span
    return tracer, spans


def _names(spans: list[MagicMock]) -> list[str]:
    return [s.name for s in spans]


# ---------------------------------------------------------------------------
# span() helper
# ---------------------------------------------------------------------------


class TestSpanHelper:
    def test_default_tracer_is_usable_without_sdk(self):
        with span("rlm.test", {"k": 1}) as s:
            s.set_attribute("other", 2)

    def test_attributes_set_on_span(self):
        tracer, spans = _make_mock_tracer()
        with patch("rlm_runtime.tracing._tracer", tracer):
            with span("rlm.test", {"a": 1, "b": "x"}):
                pass
        assert spans[0].name == "rlm.test"
        assert spans[0].attributes == {"a": 1, "b": "x"}


# ---------------------------------------------------------------------------
# Instrumented executor
# ---------------------------------------------------------------------------


class TestExecutorSpans:
    @pytest.mark.asyncio
    async def test_execute_and_iteration_spans(self):
        tracer, spans = _make_mock_tracer()
        client = MockClient(["```repl\nx = 1\n```", "FINAL_VAR(x)"])
        with patch("rlm_runtime.tracing._tracer", tracer):
            await Executor(client, RLMConfig(), model="root").execute("q", "ctx")

        names = _names(spans)
        assert names.count("rlm.execute") == 1
        assert names.count("rlm.iteration") == 2
        assert names.count("rlm.sandbox.execute") == 1

        root = spans[names.index("rlm.execute")]
        assert root.attributes["rlm.model"] == "root"
        assert root.attributes["rlm.depth"] == 0
        assert root.attributes["rlm.iterations"] == 2
        assert root.attributes["rlm.status"] == "completed"

    @pytest.mark.asyncio
    async def test_sandbox_span_reports_error(self):
        tracer, spans = _make_mock_tracer()
        client = MockClient(["```repl\n1 / 0\n```", "FINAL(done)"])
        with patch("rlm_runtime.tracing._tracer", tracer):
            await Executor(client, RLMConfig(), model="root").execute("q", "ctx")

        sandbox_span = spans[_names(spans).index("rlm.sandbox.execute")]
        assert sandbox_span.attributes["rlm.had_error"] is True
        assert sandbox_span.attributes["rlm.timed_out"] is False

    @pytest.mark.asyncio
    async def test_sub_query_spans(self):
        tracer, spans = _make_mock_tracer()
        client = MockClient(
            ['```repl\nanswer = await llm_query("inner")\nFINAL_VAR("answer")\n```'],
            sub_responses=["FINAL(child)"],
        )
        with patch("rlm_runtime.tracing._tracer", tracer):
            result = await Executor(client, RLMConfig(), model="root", sub_model="sub").execute(
                "q", "ctx"
            )

        assert result.response == "child"
        names = _names(spans)
        assert names.count("rlm.sub_query") == 1
        # The child executor opens its own rlm.execute span.
        assert names.count("rlm.execute") == 2
        sub = spans[names.index("rlm.sub_query")]
        assert sub.attributes["rlm.depth"] == 1
        assert sub.attributes["rlm.iterations"] == 1

    @pytest.mark.asyncio
    async def test_error_recorded_on_execute_span(self):
        tracer, spans = _make_mock_tracer()
        client = MockClient(["just prose"] * 5)
        with patch("rlm_runtime.tracing._tracer", tracer):
            with pytest.raises(MaxIterationsExceeded):
                await Executor(client, RLMConfig(max_iterations=2), model="root").execute("q", "ctx")

        root = spans[_names(spans).index("rlm.execute")]
        assert root.attributes["rlm.error"] == "MaxIterationsExceeded"
