"""rlm_runtime: sandboxed recursive execution engine for language models.

A model answers a query by writing Python that runs in a persistent sandbox
holding the (possibly huge) context.  Sandboxed code can ``await`` recursive
sub-queries, each served by a child executor one level deeper.

Basic usage::

    from openai import AsyncOpenAI
    from rlm_runtime import RLM, RLMConfig

    rlm = RLM(AsyncOpenAI(), model="gpt-4.1", config=RLMConfig(max_depth=1))
    result = rlm.generate("Summarize this.", very_long_text)
    print(result.response)
"""

from .budget import SharedBudget, UsageLedger
from .cache import SubQueryCache
from .client import CompletionResult, ContentStream, LLMClient, OpenAIAdapter
from .config import RLMConfig
from .exceptions import (
    MaxDepthExceeded,
    MaxIterationsExceeded,
    ModelClientError,
    ParseAmbiguity,
    RLMError,
    SandboxRuntimeError,
    SandboxTimeout,
)
from .executor import Executor, ExecutorState
from .parser import ParsedOutput, parse_response
from .pricing import FlatPricing, ModelPricing, PricingLookup, TablePricing
from .sandbox import Sandbox, SandboxOptions
from .subquery import SubQueryDispatcher
from .types import (
    ExecutionResult,
    Message,
    SandboxResult,
    TerminationKind,
    TerminationSignal,
    TraceEntry,
    TraceKind,
    Usage,
)
from .wrapper import RLM

__all__ = [
    "RLM",
    "RLMConfig",
    "Executor",
    "ExecutorState",
    "ExecutionResult",
    "TraceEntry",
    "TraceKind",
    "Usage",
    "Message",
    "TerminationKind",
    "TerminationSignal",
    "ParsedOutput",
    "parse_response",
    "Sandbox",
    "SandboxOptions",
    "SandboxResult",
    "SubQueryDispatcher",
    "SubQueryCache",
    "SharedBudget",
    "UsageLedger",
    "ModelPricing",
    "PricingLookup",
    "FlatPricing",
    "TablePricing",
    "CompletionResult",
    "ContentStream",
    "LLMClient",
    "OpenAIAdapter",
    "RLMError",
    "MaxIterationsExceeded",
    "MaxDepthExceeded",
    "ModelClientError",
    "ParseAmbiguity",
    "SandboxRuntimeError",
    "SandboxTimeout",
]

__version__ = "0.1.0"
