"""Chat-completion clients the conversation manager can talk to.

Two variants exist: :class:`LLMClient` wraps the OpenAI SDK and serves both
hosted providers and locally hosted OpenAI-compatible servers, and
:class:`StubLLMClient` replays canned replies for tests and offline runs.
Pick one at startup with :func:`create_llm_client`.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from copy import deepcopy
from typing import Any, Callable, List, Mapping, MutableMapping, Optional, Sequence

from openai import OpenAI, OpenAIError

from .errors import LLMError

logger = logging.getLogger(__name__)

ChunkCallback = Callable[[str], None]

REMOTE_PROVIDERS = frozenset({"openai", "deepseek"})
LOCAL_PROVIDERS = frozenset({"vllm", "ollama"})
PROVIDERS = tuple(sorted(REMOTE_PROVIDERS | LOCAL_PROVIDERS | {"stub"}))

DEFAULT_EXTRA_BODY: Mapping[str, Any] = {
    "extra_body": {"chat_template_kwargs": {"enable_thinking": False}}
}

# Reply used by the stub when nothing is queued: a valid no-op.
STUB_DEFAULT_REPLY = json.dumps(
    {
        "human_message": "Nothing changes.",
        "motor_neurons": [],
        "sensory_neurons": [],
        "changed": False,
    }
)


def _check_cancelled(cancel_event: Optional[threading.Event]) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise LLMError("Completion cancelled by caller")


class LLMClient:
    """Thin wrapper over :class:`openai.OpenAI` with provider defaults."""

    def __init__(
        self,
        *,
        model: str,
        base_url: str | None = None,
        provider: str = "openai",
        api_key: str | None = None,
        api_key_env: str | None = None,
        default_extra_body: Mapping[str, Any] | None = None,
    ) -> None:
        provider_key = provider.lower()
        if provider_key not in REMOTE_PROVIDERS | LOCAL_PROVIDERS:
            raise ValueError(f"Unsupported provider '{provider}'")

        if api_key is None:
            env_name = api_key_env or (
                "DEEPSEEK_API_KEY" if provider_key == "deepseek" else "OPENAI_API_KEY"
            )
            api_key = os.environ.get(env_name) or ""

        extra = default_extra_body
        if extra is None and provider_key == "vllm":
            extra = DEFAULT_EXTRA_BODY

        self._client = OpenAI(base_url=base_url, api_key=api_key)
        self.model = model
        self.provider = provider_key
        self.default_extra_body = dict(extra or {})

    def chat(
        self,
        messages: Sequence[Mapping[str, object]],
        *,
        temperature: float = 1.0,
        on_chunk: ChunkCallback | None = None,
        cancel_event: threading.Event | None = None,
        timeout: float | None = None,
    ) -> str:
        """Return the assistant text for ``messages``.

        When ``on_chunk`` is given the completion is streamed and every text
        delta is forwarded to it; the assembled text is still returned.
        """

        _check_cancelled(cancel_event)
        payload: MutableMapping[str, Any] = {
            "model": self.model,
            "messages": list(messages),
            "temperature": temperature,
        }
        if self.default_extra_body:
            payload.update(deepcopy(self.default_extra_body))

        client = self._client.with_options(timeout=timeout) if timeout is not None else self._client
        logger.debug("Dispatching chat request: %s", payload)
        try:
            if on_chunk is None:
                response = client.chat.completions.create(**payload)
                logger.debug("Chat raw response: %s", response)
                if not response.choices:
                    raise LLMError("Completion returned no choices")
                text = getattr(response.choices[0].message, "content", "") or ""
            else:
                text = self._stream(client, payload, on_chunk, cancel_event)
        except OpenAIError as exc:
            raise LLMError(f"{self.provider} completion failed: {exc}") from exc

        _check_cancelled(cancel_event)
        return text

    @staticmethod
    def _stream(
        client: OpenAI,
        payload: MutableMapping[str, Any],
        on_chunk: ChunkCallback,
        cancel_event: threading.Event | None,
    ) -> str:
        parts: List[str] = []
        stream = client.chat.completions.create(stream=True, **payload)
        try:
            for chunk in stream:
                _check_cancelled(cancel_event)
                if not chunk.choices:
                    continue
                delta = getattr(chunk.choices[0].delta, "content", None)
                if delta:
                    parts.append(delta)
                    on_chunk(delta)
        finally:
            stream.close()
        text = "".join(parts)
        logger.debug("Chat streamed response: %s", text)
        return text


class StubLLMClient:
    """Deterministic client that replays queued replies in order."""

    provider = "stub"

    def __init__(self, replies: Sequence[str] | None = None, *, default_reply: str | None = None) -> None:
        self.replies = list(replies or [])
        self.default_reply = STUB_DEFAULT_REPLY if default_reply is None else default_reply
        self.calls: List[Mapping[str, Any]] = []

    def queue(self, *replies: str) -> None:
        self.replies.extend(replies)

    def chat(
        self,
        messages: Sequence[Mapping[str, object]],
        *,
        temperature: float = 1.0,
        on_chunk: ChunkCallback | None = None,
        cancel_event: threading.Event | None = None,
        timeout: float | None = None,
    ) -> str:
        _check_cancelled(cancel_event)
        self.calls.append(
            {
                "messages": [dict(m) for m in messages],
                "temperature": temperature,
                "streamed": on_chunk is not None,
            }
        )
        reply = self.replies.pop(0) if self.replies else self.default_reply
        if on_chunk is not None:
            on_chunk(reply)
        return reply


def create_llm_client(
    provider: str,
    *,
    model: str = "gpt-4o-mini",
    base_url: str | None = None,
    api_key: str | None = None,
    api_key_env: str | None = None,
) -> LLMClient | StubLLMClient:
    """Build the client for ``provider``; called once at startup."""

    provider_key = provider.lower()
    if provider_key == "stub":
        return StubLLMClient()
    return LLMClient(
        model=model,
        base_url=base_url,
        provider=provider_key,
        api_key=api_key,
        api_key_env=api_key_env,
    )


__all__ = [
    "ChunkCallback",
    "LLMClient",
    "PROVIDERS",
    "STUB_DEFAULT_REPLY",
    "StubLLMClient",
    "create_llm_client",
]
