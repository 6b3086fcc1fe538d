"""Model-client collaborator interface.

The runtime never talks to a provider directly.  It consumes any object that
satisfies :class:`LLMClient`; :class:`OpenAIAdapter` adapts an
``openai.AsyncOpenAI`` (or ``openai.OpenAI``) client to that shape.  Retry,
rate limiting and fallback chains may wrap the client transparently.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable


@dataclass
class CompletionResult:
    """The result of a single completion call."""

    content: str
    """The text response."""

    input_tokens: int
    """Number of input (prompt) tokens consumed."""

    output_tokens: int
    """Number of output (completion) tokens produced."""


class ContentStream:
    """Async stream of content deltas with post-consumption metadata.

    Iterate to receive deltas.  Once exhausted, :attr:`result` holds the
    full text and token counts::

        stream = adapter.astream(model=..., messages=..., ...)
        async for delta in stream:
            print(delta, end="", flush=True)
        full = stream.result
    """

    def __init__(self, deltas: AsyncIterator[str]) -> None:
        self._deltas = deltas
        self._parts: list[str] = []
        self._input_tokens = 0
        self._output_tokens = 0
        self._done = False

    def __aiter__(self) -> ContentStream:
        return self

    async def __anext__(self) -> str:
        try:
            delta = await self._deltas.__anext__()
        except StopAsyncIteration:
            self._done = True
            raise
        self._parts.append(delta)
        return delta

    def set_usage(self, input_tokens: int, output_tokens: int) -> None:
        self._input_tokens = input_tokens
        self._output_tokens = output_tokens

    @property
    def result(self) -> CompletionResult:
        """Full completion result; only available after iteration completes."""
        if not self._done:
            raise RuntimeError("Stream not yet consumed; iterate first")
        return CompletionResult(
            content="".join(self._parts),
            input_tokens=self._input_tokens,
            output_tokens=self._output_tokens,
        )


@runtime_checkable
class LLMClient(Protocol):
    """Protocol a model client must satisfy.

    Implement :meth:`acomplete` for native async use; a client exposing only
    :meth:`complete` is run on a worker thread.  ``astream`` is optional and
    only used when the caller asks for token streaming.
    """

    def complete(
        self, model: str, messages: list[dict[str, str]], temperature: float, max_tokens: int
    ) -> CompletionResult: ...

    async def acomplete(
        self, model: str, messages: list[dict[str, str]], temperature: float, max_tokens: int
    ) -> CompletionResult: ...


def _extract_result(response: Any) -> CompletionResult:
    """Pull content and token counts out of an OpenAI-style response."""
    content: str = response.choices[0].message.content or ""
    usage = getattr(response, "usage", None)
    return CompletionResult(
        content=content,
        input_tokens=getattr(usage, "prompt_tokens", 0) if usage else 0,
        output_tokens=getattr(usage, "completion_tokens", 0) if usage else 0,
    )


async def _aiter(chunks: Any) -> AsyncIterator[Any]:
    """Iterate a sync or async chunk stream."""
    if hasattr(chunks, "__aiter__"):
        async for chunk in chunks:
            yield chunk
    else:
        for chunk in chunks:
            yield chunk


class OpenAIAdapter:
    """Adapts an ``openai.OpenAI`` or ``openai.AsyncOpenAI`` client.

    Every method works with either client flavour: a sync client answers
    in place, an async one is awaited.

    Parameters
    ----------
    client:
        Any object exposing ``chat.completions.create(...)``.
    """

    def __init__(self, client: Any) -> None:
        self._client = client

    def _create(self, **params: Any) -> Any:
        return self._client.chat.completions.create(**params)

    def complete(
        self, model: str, messages: list[dict[str, str]], temperature: float, max_tokens: int
    ) -> CompletionResult:
        return _extract_result(
            self._create(
                model=model, messages=messages, temperature=temperature, max_tokens=max_tokens
            )
        )

    async def acomplete(
        self, model: str, messages: list[dict[str, str]], temperature: float, max_tokens: int
    ) -> CompletionResult:
        response = self._create(
            model=model, messages=messages, temperature=temperature, max_tokens=max_tokens
        )
        if inspect.isawaitable(response):
            response = await response
        return _extract_result(response)

    def astream(
        self, model: str, messages: list[dict[str, str]], temperature: float, max_tokens: int
    ) -> ContentStream:
        """Stream content deltas; usage is read from the final chunk."""

        async def _deltas() -> AsyncIterator[str]:
            chunks = self._create(
                model=model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
                stream=True,
                stream_options={"include_usage": True},
            )
            if inspect.isawaitable(chunks):
                chunks = await chunks
            async for chunk in _aiter(chunks):
                for choice in chunk.choices or ():
                    text = getattr(choice.delta, "content", None)
                    if text:
                        yield text
                usage = getattr(chunk, "usage", None)
                if usage:
                    stream.set_usage(
                        getattr(usage, "prompt_tokens", 0),
                        getattr(usage, "completion_tokens", 0),
                    )

        stream = ContentStream(_deltas())
        return stream


def wrap_if_needed(client: Any) -> Any:
    """Auto-wrap an OpenAI-style client in :class:`OpenAIAdapter` if needed.

    Objects that already have ``acomplete`` or ``complete`` are returned as-is.
    """
    if hasattr(client, "acomplete") or hasattr(client, "complete"):
        return client
    if hasattr(client, "chat"):
        return OpenAIAdapter(client)
    raise TypeError(
        f"{type(client).__name__} is not a model client: expected acomplete(), "
        "complete() or an OpenAI-style chat.completions API"
    )


async def request_completion(
    client: Any,
    *,
    model: str,
    messages: list[dict[str, str]],
    temperature: float,
    max_tokens: int,
    on_token: Callable[[str], None] | None = None,
) -> CompletionResult:
    """Run one completion against *client*, whatever calling style it supports.

    Streams through ``astream`` when *on_token* is given and the client can
    stream; otherwise prefers ``acomplete`` and falls back to running a sync
    ``complete`` on a worker thread.
    """
    kwargs: dict[str, Any] = dict(
        model=model,
        messages=messages,
        temperature=temperature,
        max_tokens=max_tokens,
    )
    if on_token is not None and hasattr(client, "astream"):
        stream: ContentStream = client.astream(**kwargs)
        async for delta in stream:
            on_token(delta)
        return stream.result

    if hasattr(client, "acomplete"):
        result = await client.acomplete(**kwargs)
    else:
        result = await asyncio.to_thread(client.complete, **kwargs)

    if on_token is not None and result.content:
        on_token(result.content)
    return result
