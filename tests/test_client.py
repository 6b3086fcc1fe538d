"""Tests for the model-client collaborator layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import pytest

from rlm_runtime.client import (
    CompletionResult,
    ContentStream,
    OpenAIAdapter,
    request_completion,
    wrap_if_needed,
)

# ---------------------------------------------------------------------------
# Mock OpenAI SDK objects
# ---------------------------------------------------------------------------


@dataclass
class _Usage:
    prompt_tokens: int = 42
    completion_tokens: int = 17


@dataclass
class _Message:
    content: str | None = "hello from mock"


@dataclass
class _Choice:
    message: _Message


@dataclass
class _Response:
    choices: list[_Choice]
    usage: _Usage | None = field(default_factory=_Usage)


@dataclass
class _Delta:
    content: str | None


@dataclass
class _StreamChoice:
    delta: _Delta


@dataclass
class _Chunk:
    choices: list[_StreamChoice]
    usage: _Usage | None = None


class _Completions:
    """``chat.completions`` with a sync or async ``create``."""

    def __init__(self, response: _Response, *, is_async: bool, chunks: list[_Chunk] | None = None):
        self._response = response
        self._is_async = is_async
        self._chunks = chunks or []
        self.calls: list[dict[str, Any]] = []

    def create(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        if not self._is_async:
            return self._response
        return self._acreate(**kwargs)

    async def _acreate(self, **kwargs: Any) -> Any:
        if kwargs.get("stream"):
            return self._aiter_chunks()
        return self._response

    async def _aiter_chunks(self):
        for chunk in self._chunks:
            yield chunk


class _Chat:
    def __init__(self, completions: _Completions) -> None:
        self.completions = completions


class _MockOpenAI:
    def __init__(self, response: _Response | None = None, *, is_async: bool = False, chunks=None):
        response = response or _Response(choices=[_Choice(_Message())])
        self.chat = _Chat(_Completions(response, is_async=is_async, chunks=chunks))


# ---------------------------------------------------------------------------
# OpenAIAdapter
# ---------------------------------------------------------------------------


class TestOpenAIAdapter:
    def test_complete_extracts_content_and_tokens(self):
        result = OpenAIAdapter(_MockOpenAI()).complete(
            model="m", messages=[], temperature=0.5, max_tokens=100
        )
        assert result == CompletionResult("hello from mock", 42, 17)

    def test_missing_usage_counts_zero(self):
        client = _MockOpenAI(_Response(choices=[_Choice(_Message())], usage=None))
        result = OpenAIAdapter(client).complete(model="m", messages=[], temperature=0, max_tokens=1)
        assert (result.input_tokens, result.output_tokens) == (0, 0)

    def test_none_content_becomes_empty(self):
        client = _MockOpenAI(_Response(choices=[_Choice(_Message(content=None))]))
        result = OpenAIAdapter(client).complete(model="m", messages=[], temperature=0, max_tokens=1)
        assert result.content == ""

    def test_complete_passes_params(self):
        client = _MockOpenAI()
        messages = [{"role": "user", "content": "hi"}]
        OpenAIAdapter(client).complete(model="gpt-5", messages=messages, temperature=0.7, max_tokens=500)
        call = client.chat.completions.calls[0]
        assert call == {"model": "gpt-5", "messages": messages, "temperature": 0.7, "max_tokens": 500}

    @pytest.mark.asyncio
    async def test_acomplete(self):
        adapter = OpenAIAdapter(_MockOpenAI(is_async=True))
        result = await adapter.acomplete(model="m", messages=[], temperature=0, max_tokens=1)
        assert result.content == "hello from mock"

    @pytest.mark.asyncio
    async def test_acomplete_accepts_sync_client(self):
        adapter = OpenAIAdapter(_MockOpenAI(is_async=False))
        result = await adapter.acomplete(model="m", messages=[], temperature=0, max_tokens=1)
        assert result.output_tokens == 17

    @pytest.mark.asyncio
    async def test_astream_yields_deltas_and_usage(self):
        chunks = [
            _Chunk([_StreamChoice(_Delta("FIN"))]),
            _Chunk([_StreamChoice(_Delta(None))]),
            _Chunk([_StreamChoice(_Delta("AL(x)"))]),
            _Chunk([], usage=_Usage(prompt_tokens=5, completion_tokens=2)),
        ]
        adapter = OpenAIAdapter(_MockOpenAI(is_async=True, chunks=chunks))
        stream = adapter.astream(model="m", messages=[], temperature=0, max_tokens=1)
        deltas = [d async for d in stream]
        assert deltas == ["FIN", "AL(x)"]
        assert stream.result == CompletionResult("FINAL(x)", 5, 2)


class TestContentStream:
    @pytest.mark.asyncio
    async def test_result_before_consumption_raises(self):
        async def _gen():
            yield "a"

        stream = ContentStream(_gen())
        with pytest.raises(RuntimeError, match="not yet consumed"):
            stream.result


# ---------------------------------------------------------------------------
# wrap_if_needed / request_completion
# ---------------------------------------------------------------------------


class _Native:
    async def acomplete(self, model, messages, temperature, max_tokens):
        return CompletionResult("native", 1, 1)


class _SyncOnly:
    def complete(self, model, messages, temperature, max_tokens):
        return CompletionResult("sync", 2, 2)


class TestWrapIfNeeded:
    def test_native_client_returned_as_is(self):
        client = _Native()
        assert wrap_if_needed(client) is client

    def test_openai_client_wrapped(self):
        assert isinstance(wrap_if_needed(_MockOpenAI()), OpenAIAdapter)

    def test_unknown_object_rejected(self):
        with pytest.raises(TypeError, match="not a model client"):
            wrap_if_needed(object())


class TestRequestCompletion:
    @pytest.mark.asyncio
    async def test_prefers_acomplete(self):
        result = await request_completion(
            _Native(), model="m", messages=[], temperature=0, max_tokens=1
        )
        assert result.content == "native"

    @pytest.mark.asyncio
    async def test_sync_client_runs_in_thread(self):
        result = await request_completion(
            _SyncOnly(), model="m", messages=[], temperature=0, max_tokens=1
        )
        assert result.content == "sync"

    @pytest.mark.asyncio
    async def test_on_token_receives_whole_text_without_stream(self):
        seen: list[str] = []
        await request_completion(
            _Native(), model="m", messages=[], temperature=0, max_tokens=1, on_token=seen.append
        )
        assert seen == ["native"]
