"""Basic example: find a needle in a long text.

Requires an OpenAI API key in the OPENAI_API_KEY environment variable.

    OPENAI_API_KEY=sk-... python examples/basic_usage.py
"""

import os

from openai import AsyncOpenAI

from rlm_runtime import RLM, RLMConfig

rlm = RLM(
    AsyncOpenAI(api_key=os.environ["OPENAI_API_KEY"]),
    model="gpt-4.1-mini",
    config=RLMConfig(
        verbose=True,
        cost_per_input_token=0.40 / 1_000_000,
        cost_per_output_token=1.60 / 1_000_000,
        max_cost=0.50,
    ),
)

# Generate a synthetic long context for demonstration.
long_text = (
    "The quick brown fox jumps over the lazy dog. " * 5000
    + "SECRET: The magic number is 7. "
    + "The quick brown fox jumps over the lazy dog. " * 5000
)

result = rlm.generate(
    "What is the magic number hidden in the text?",
    long_text,
    on_step=lambda e: print(f"  [depth {e.depth}] {e.kind.value}"),
)

print(f"\nAnswer: {result.response}")
print(f"Status: {result.status}")
print(f"Iterations: {result.iterations}")
print(f"Model calls: {result.usage.total_calls}")
print(f"Tokens (in/out): {result.usage.input_tokens}/{result.usage.output_tokens}")
print(f"Estimated cost: ${result.usage.estimated_cost:.4f}")
