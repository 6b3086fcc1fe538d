"""Example: fan sub-queries out over a list of documents.

Passes ``context`` as a list of strings and lets the model use
``llm_query_parallel`` on batches of documents.  The trace shows the
sub-query model calls spliced in at depth 1.

Requires a .env file in this directory with OPENAI_API_KEY set.

    python examples/multi_document.py
"""

import asyncio
from pathlib import Path

from dotenv import load_dotenv
from openai import AsyncOpenAI

from rlm_runtime import RLM, RLMConfig, TraceKind

load_dotenv(Path(__file__).with_name(".env"))


async def main() -> None:
    rlm = RLM(
        AsyncOpenAI(),
        model="gpt-4.1-mini",
        sub_model="gpt-4.1-nano",
        config=RLMConfig(max_iterations=15, max_depth=1, cache_sub_queries=True, verbose=True),
    )

    documents = [f"Document {i}: {'Lorem ipsum dolor sit amet. ' * 200}" for i in range(50)]
    # Hide a fact in document 37.
    documents[37] = (
        "Document 37: The annual revenue of Acme Corp in 2024 was $4.2 billion. "
        + "This was driven primarily by growth in the cloud services division. " * 100
    )

    result = await rlm.agenerate(
        "What was the annual revenue of Acme Corp in 2024?",
        documents,
        on_token=lambda delta: print(delta, end="", flush=True),
    )

    print(f"\n\nAnswer: {result.response}")
    print(f"Iterations: {result.iterations}")
    print(f"Sub-model calls: {result.count(TraceKind.SUB_MODEL_CALL)}")
    print(f"Total model calls: {result.usage.total_calls}")


if __name__ == "__main__":
    asyncio.run(main())
