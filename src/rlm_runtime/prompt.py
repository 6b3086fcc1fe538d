"""Prompt templates for the executor loop.

The system prompt describes the context (type, size, chunk lengths) but
never includes it; the model reaches the content only through the sandbox.
"""

from __future__ import annotations

from .metadata import (
    context_chunk_lengths,
    context_total_length,
    context_type_label,
    make_metadata,
)
from .types import SandboxResult


def build_system_prompt(context: str | list[str], *, depth: int = 0, max_depth: int = 1) -> str:
    """Build the system prompt for a model call at *depth*."""
    lengths = context_chunk_lengths(context)
    can_recurse = depth < max_depth

    sub_query_help = (
        """\
3. `await llm_query(prompt, context=None)` asks a sub-model and returns its \
answer as a string.  Without `context` the sub-model works over the same \
`context` you have; pass a smaller piece to focus it.

4. `await llm_query_parallel(queries)` runs many sub-queries concurrently. \
`queries` is a list of prompt strings or of `{"prompt": ..., "context": ...}` \
dicts; the answers come back as a list in the same order.  A failed item is \
returned as "[Error: ...]" in its slot.
"""
        if can_recurse
        else """\
3. Sub-queries (`llm_query`, `llm_query_parallel`) are not available at this \
level; solve the task with code alone.
"""
    )

    example = (
        """\
parts = chunk(context, 20000)
answers = await llm_query_parallel(
    [{"prompt": "List every date mentioned.", "context": p} for p in parts]
)
dates = dedupe(line for a in answers for line in a.splitlines())
print(len(dates), dates[:10])"""
        if can_recurse
        else """\
dates = dedupe(re.findall(r"\\d{4}-\\d{2}-\\d{2}", str(context)))
print(len(dates), dates[:10])"""
    )

    return f"""\
You are answering a query over a context that is stored in a Python REPL \
environment instead of in this conversation.  Write Python code to inspect, \
slice and analyse it.  You will be called iteratively until you give a final \
answer.

Your context is a {context_type_label(context)} with \
{context_total_length(context):,} total characters, split into chunks of \
char lengths: {lengths}.

The REPL environment provides:

1. A `context` variable holding the full input.

2. `print()`, whose output is shown to you on the next turn (long output is \
truncated, so print summaries rather than raw text).

{sub_query_help}
Text helpers are pre-loaded: `chunk(text, size, overlap=0)`, \
`grep(pattern, text)`, `extract_between(text, start, end)`, \
`truncate(text, max_length)`, `text_stats(text)`, `count_by(items, key=None)`, \
`dedupe(items, key=None)`, plus the modules `re`, `json`, `math` and \
`collections`.  `await sleep(seconds)` pauses briefly.  Files, the network \
and most imports are unavailable.

Variables persist between turns.  Wrap code in triple backticks with the \
`repl` language tag:

```repl
{example}
```

When you are done, give the final answer in one of two ways:

1. `FINAL(your answer)` with the answer written directly.
2. `FINAL_VAR(variable_name)` to return a variable you built in the REPL.

Write either one in plain text outside any code block to finish immediately, \
or call it inside a code block to finish once that code has run.  Do not use \
them before the task is complete."""


def build_user_prompt(query: str) -> str:
    return query


def build_nudge_prompt() -> str:
    """Prompt sent after a response with neither code nor a final answer."""
    return (
        "Your last response contained no ```repl``` code block and no final "
        "answer.  Continue by writing code to run, or finish with "
        "FINAL(your answer) or FINAL_VAR(variable_name)."
    )


def build_missing_variable_prompt(name: str, available: list[str]) -> str:
    shown = ", ".join(available) if available else "(none)"
    return (
        f"FINAL_VAR({name}) refers to a variable that is not defined. "
        f"Defined variables: {shown}. Assign the answer to a variable first, "
        "or use FINAL(your answer)."
    )


def format_execution_feedback(result: SandboxResult, prefix_chars: int = 2000) -> str:
    """Render a sandbox run as the next user turn, truncated for the model."""
    sections: list[str] = []
    if result.output:
        sections.append("Output:\n" + make_metadata(result.output, prefix_chars))
    if result.error:
        sections.append("Error:\n" + make_metadata(result.error, prefix_chars))
    if not sections:
        return "Code executed successfully with no output."
    return "\n\n".join(sections)
