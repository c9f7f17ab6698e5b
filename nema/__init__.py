"""Nema: a conversational neuron-state engine.

The package keeps a small model of motor and sensory neurons in step with a
language model's replies. It wires together

* the neuron state and reply schema,
* an append-only SQLite log of state snapshots and the prompts behind them,
* chat clients for hosted, locally hosted, and stubbed models, and
* a conversation manager that validates replies and applies state changes.
"""

from .clients import LLMClient, StubLLMClient, create_llm_client
from .errors import LLMError, NemaError, NotFoundError, ResponseFormatError, StorageError
from .manager import ConversationManager
from .prompts import INITIAL_PROMPT_TEMPLATE, render_initial_prompt
from .runtime import NemaRuntime, main as runtime_main
from .schemas import (
    ApplyUpdates,
    NeuroState,
    NeuronUpdate,
    NoChange,
    ParsedReply,
    Transcript,
    default_state,
    parse_reply,
)
from .storage import NeuroStateStore

__all__ = [
    "ApplyUpdates",
    "ConversationManager",
    "INITIAL_PROMPT_TEMPLATE",
    "LLMClient",
    "LLMError",
    "NemaError",
    "NemaRuntime",
    "NeuroState",
    "NeuroStateStore",
    "NeuronUpdate",
    "NoChange",
    "NotFoundError",
    "ParsedReply",
    "ResponseFormatError",
    "StorageError",
    "StubLLMClient",
    "Transcript",
    "create_llm_client",
    "default_state",
    "parse_reply",
    "render_initial_prompt",
    "runtime_main",
]
