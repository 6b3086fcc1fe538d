"""Configuration for the RLM runtime."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class RLMConfig:
    """Configuration for an RLM execution.

    All fields have sensible defaults. Override only what you need.
    """

    max_iterations: int = 20
    """Max REPL loop iterations per invocation (applies at every depth)."""

    max_depth: int = 1
    """Deepest recursion level a sub-query may run at.

    The top-level invocation runs at depth 0.  With ``max_depth=1`` code at
    depth 0 may call ``llm_query``, but a call issued from depth 1 is
    rejected with :class:`~rlm_runtime.exceptions.MaxDepthExceeded`.
    ``max_depth=0`` disables recursion entirely.
    """

    sandbox_timeout: float = 30.0
    """Wall-clock timeout (seconds) per sandbox execution."""

    memory_limit_mb: int = 128
    """Advisory memory ceiling for the sandbox.  Not enforced."""

    temperature: float = 0.0
    """Model temperature."""

    max_tokens: int = 8_192
    """Max output tokens per model call."""

    metadata_prefix_chars: int = 2_000
    """Characters of captured output shown back to the model per turn."""

    max_cost: float | None = None
    """Optional cost ceiling in USD.

    Applies to the whole run, sub-queries included.  When the next model call
    at any depth is projected to push the running cost over this value, that
    executor stops and returns a ``partial`` result instead of raising.
    """

    max_total_tokens: int | None = None
    """Optional ceiling on input plus output tokens for the whole run.

    Enforced like :attr:`max_cost`: the executor about to cross it returns a
    ``partial`` result.
    """

    cost_per_input_token: float = 0.0
    """Cost per input token in USD, used by the default pricing lookup.

    Example: for a model charging $2.50 / 1M input tokens, set to ``2.50 / 1_000_000``.
    """

    cost_per_output_token: float = 0.0
    """Cost per output token in USD, used by the default pricing lookup."""

    cache_sub_queries: bool = False
    """Reuse answers of identical sub-queries within a single run."""

    verbose: bool = False
    """Log progress at INFO level to stderr."""

    def __post_init__(self) -> None:
        if self.max_iterations < 1:
            raise ValueError(f"max_iterations must be >= 1, got {self.max_iterations}")
        if self.max_depth < 0:
            raise ValueError(f"max_depth must be >= 0, got {self.max_depth}")
        if self.sandbox_timeout <= 0:
            raise ValueError(f"sandbox_timeout must be positive, got {self.sandbox_timeout}")
        if self.max_cost is not None and self.max_cost < 0:
            raise ValueError(f"max_cost must be >= 0, got {self.max_cost}")
        if self.max_total_tokens is not None and self.max_total_tokens < 0:
            raise ValueError(f"max_total_tokens must be >= 0, got {self.max_total_tokens}")
