"""Turn-by-turn orchestration between the model, the neuron state, and the store."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import List, Mapping, Optional, Protocol, Sequence

from .clients import ChunkCallback
from .errors import NotFoundError
from .prompts import INITIAL_PROMPT_TEMPLATE, render_initial_prompt
from .schemas import (
    ApplyUpdates,
    NeuroState,
    Transcript,
    TranscriptMessage,
    default_state,
    parse_reply,
)
from .storage import NeuroStateStore

logger = logging.getLogger(__name__)

FENCE_PREFIX = "```json\n"
FENCE_SUFFIX = "\n```"


class ChatClient(Protocol):
    def chat(
        self,
        messages: Sequence[Mapping[str, object]],
        *,
        temperature: float = ...,
        on_chunk: ChunkCallback | None = ...,
        cancel_event: threading.Event | None = ...,
        timeout: float | None = ...,
    ) -> str: ...


@dataclass
class ConversationManager:
    """Keep the transcript and neuron state in step with the model's replies.

    Construction loads the latest snapshot (or the default catalog when the
    store is empty) and seeds the transcript with the rendered initial prompt.
    :meth:`ask` then runs one turn at a time across all threads.
    """

    store: NeuroStateStore
    llm_client: ChatClient
    prompt_template: str = INITIAL_PROMPT_TEMPLATE
    temperature: float = 1.0
    log: logging.Logger = field(default=logger)

    def __post_init__(self) -> None:
        self._turn_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._state = self._load_state()
        self.initial_prompt = render_initial_prompt(self.prompt_template, self._state)
        self._transcript = Transcript()
        self._transcript.add_human(self.initial_prompt)

    def _load_state(self) -> NeuroState:
        try:
            state = self.store.get_latest_state()
        except NotFoundError:
            self.log.info("No state found, creating new Nema")
            return default_state()
        self.log.info("Loaded neural state (state_count=%s)", state.state_count)
        return state

    # ------------------------------------------------------------------
    # Read accessors
    # ------------------------------------------------------------------
    @property
    def state(self) -> NeuroState:
        with self._state_lock:
            return self._state.copy()

    @property
    def transcript(self) -> List[TranscriptMessage]:
        return list(self._transcript)

    # ------------------------------------------------------------------
    # Turns
    # ------------------------------------------------------------------
    def ask(
        self,
        prompt: str,
        *,
        on_chunk: Optional[ChunkCallback] = None,
        cancel_event: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
    ) -> str:
        """Run one turn for ``prompt`` and return the model's human message.

        Raises :class:`~nema.errors.LLMError` when the model call fails,
        :class:`~nema.errors.ResponseFormatError` when the reply does not
        parse, and :class:`~nema.errors.StorageError` when a changed state
        cannot be persisted. None of them undo the transcript.
        """

        with self._turn_lock:
            self._transcript.add_human(prompt)
            raw = self.llm_client.chat(
                self._transcript.to_chat(),
                temperature=self.temperature,
                on_chunk=on_chunk,
                cancel_event=cancel_event,
                timeout=timeout,
            )
            response = self._strip_fence(raw)
            self._transcript.add_assistant(response)
            self.log.debug("Model reply: %s", response)

            reply = parse_reply(response)
            if not isinstance(reply.command, ApplyUpdates):
                self.log.info("No neurons changed, skipping update")
                return reply.human_message

            self.log.info(
                "Neurons changed, updating state (motor=%s, sensory=%s)",
                len(reply.command.motor),
                len(reply.command.sensory),
            )
            with self._state_lock:
                self._state.apply(reply.command)
                snapshot = self._state.copy()
            # Two separate commits; a failure in between leaves a snapshot
            # without its prompt row.
            snapshot_id = self.store.save_state(snapshot)
            self.store.save_prompt(snapshot_id, prompt, response)
            return reply.human_message

    @staticmethod
    def _strip_fence(text: str) -> str:
        if text.startswith(FENCE_PREFIX):
            text = text[len(FENCE_PREFIX) :]
        if text.endswith(FENCE_SUFFIX):
            text = text[: -len(FENCE_SUFFIX)]
        return text


__all__ = ["ChatClient", "ConversationManager"]
