"""OpenTelemetry instrumentation.

Spans are emitted for:

- ``rlm.execute`` - one executor invocation (any depth)
- ``rlm.iteration`` - each loop iteration
- ``rlm.sandbox.execute`` - each sandbox run
- ``rlm.sub_query`` - each recursive sub-query

Only ``opentelemetry-api`` is required.  Until an SDK tracer provider is
installed by the application, the API hands out non-recording spans, so
instrumentation costs next to nothing.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace

_tracer: Any = trace.get_tracer("rlm_runtime")


@contextmanager
def span(name: str, attributes: dict[str, Any] | None = None) -> Iterator[Any]:
    """Context manager that opens a span on the module tracer.

    Callers can set further attributes on the yielded span::

        with span("rlm.execute", {"rlm.model": "gpt-4.1"}) as s:
            ...
            s.set_attribute("rlm.iterations", 5)
    """
    with _tracer.start_as_current_span(name) as s:
        if attributes:
            for key, value in attributes.items():
                s.set_attribute(key, value)
        yield s
