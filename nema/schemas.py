"""Typed data structures used by the neuron-state engine."""

from __future__ import annotations

import copy
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterator, List, Mapping, MutableMapping, Tuple, Union

from .errors import ResponseFormatError

MOTOR = "motor"
SENSORY = "sensory"

HUMAN = "human"
ASSISTANT = "assistant"

# Chat-completion role for each transcript role.
_CHAT_ROLES = {HUMAN: "user", ASSISTANT: "assistant"}

# Neurons pre-populated on first bootstrap. Groups stay open: replies may add
# names that are not listed here.
DEFAULT_MOTOR_NEURONS: Tuple[str, ...] = (
    "AS",
    "AVA",
    "AVB",
    "AVD",
    "DA",
    "DB",
    "DD",
    "PVC",
    "RMD",
    "SMD",
    "VA",
    "VB",
    "VD",
)
DEFAULT_SENSORY_NEURONS: Tuple[str, ...] = (
    "AFD",
    "ALM",
    "ASE",
    "ASH",
    "ASI",
    "AVM",
    "AWA",
    "AWC",
    "PLM",
    "PVD",
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class NeuroState:
    """Both neuron groups plus version metadata."""

    state_count: int = 0
    updated_at: datetime = field(default_factory=_utcnow)
    motor_neurons: MutableMapping[str, int] = field(default_factory=dict)
    sensory_neurons: MutableMapping[str, int] = field(default_factory=dict)

    def group(self, name: str) -> MutableMapping[str, int]:
        if name == MOTOR:
            return self.motor_neurons
        if name == SENSORY:
            return self.sensory_neurons
        raise ValueError(f"Unknown neuron group '{name}'")

    def set_neuron(self, group: str, neuron: str, value: int) -> bool:
        """Set ``neuron`` in ``group``, creating it if absent.

        Returns ``True`` when the stored value actually changed.
        """

        neurons = self.group(group)
        changed = neuron not in neurons or neurons[neuron] != value
        neurons[neuron] = value
        return changed

    def apply(self, command: "ReplyCommand") -> bool:
        """Merge an :class:`ApplyUpdates` command into the held maps.

        Only the named neurons are touched. The version counter advances only
        when some value differs from what was stored, so re-applying the same
        update list leaves the neurons and counter as they were. ``updated_at``
        is refreshed on every applied command.
        """

        if not isinstance(command, ApplyUpdates):
            return False
        changed = False
        for update in command.motor:
            changed = self.set_neuron(MOTOR, update.neuron, update.value) or changed
        for update in command.sensory:
            changed = self.set_neuron(SENSORY, update.neuron, update.value) or changed
        if changed:
            self.state_count += 1
        self.updated_at = _utcnow()
        return changed

    def copy(self) -> "NeuroState":
        return copy.deepcopy(self)

    def to_payload(self) -> Mapping[str, Any]:
        return {
            "state_count": self.state_count,
            "updated_at": self.updated_at.isoformat(),
            "motor_neurons": dict(sorted(self.motor_neurons.items())),
            "sensory_neurons": dict(sorted(self.sensory_neurons.items())),
        }

    def to_json(self) -> str:
        return dumps_payload(self.to_payload())


def default_state() -> NeuroState:
    """Build the first state from the default neuron catalog, all at rest."""

    return NeuroState(
        motor_neurons={name: 0 for name in DEFAULT_MOTOR_NEURONS},
        sensory_neurons={name: 0 for name in DEFAULT_SENSORY_NEURONS},
    )


@dataclass(frozen=True)
class NeuronUpdate:
    neuron: str
    value: int


@dataclass(frozen=True)
class NoChange:
    """The reply asks for no state change."""


@dataclass(frozen=True)
class ApplyUpdates:
    """The reply asks to set the listed neurons."""

    motor: Tuple[NeuronUpdate, ...] = ()
    sensory: Tuple[NeuronUpdate, ...] = ()


ReplyCommand = Union[NoChange, ApplyUpdates]


@dataclass(frozen=True)
class ParsedReply:
    human_message: str
    command: ReplyCommand


def _parse_updates(payload: Mapping[str, Any], key: str) -> Tuple[NeuronUpdate, ...]:
    entries = payload[key]
    if not isinstance(entries, list):
        raise ResponseFormatError(f"'{key}' must be a list")
    updates: List[NeuronUpdate] = []
    for idx, entry in enumerate(entries):
        if not isinstance(entry, Mapping):
            raise ResponseFormatError(f"'{key}[{idx}]' must be an object")
        neuron = entry.get("neuron")
        value = entry.get("value")
        if not isinstance(neuron, str):
            raise ResponseFormatError(f"'{key}[{idx}].neuron' must be a string")
        # bool is an int subclass; JSON true/false is not a neuron value.
        if not isinstance(value, int) or isinstance(value, bool):
            raise ResponseFormatError(f"'{key}[{idx}].value' must be an integer")
        updates.append(NeuronUpdate(neuron=neuron, value=value))
    return tuple(updates)


def parse_reply(text: str) -> ParsedReply:
    """Validate a model reply and turn it into a :class:`ParsedReply`."""

    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ResponseFormatError(f"Reply is not valid JSON: {exc}") from exc
    if not isinstance(payload, Mapping):
        raise ResponseFormatError("Reply must be a JSON object")

    missing = [
        key
        for key in ("human_message", "motor_neurons", "sensory_neurons", "changed")
        if key not in payload
    ]
    if missing:
        raise ResponseFormatError(f"Reply is missing keys: {', '.join(missing)}")

    human_message = payload["human_message"]
    if not isinstance(human_message, str):
        raise ResponseFormatError("'human_message' must be a string")
    changed = payload["changed"]
    if not isinstance(changed, bool):
        raise ResponseFormatError("'changed' must be a boolean")

    motor = _parse_updates(payload, "motor_neurons")
    sensory = _parse_updates(payload, "sensory_neurons")
    command: ReplyCommand = ApplyUpdates(motor=motor, sensory=sensory) if changed else NoChange()
    return ParsedReply(human_message=human_message, command=command)


@dataclass(frozen=True)
class TranscriptMessage:
    role: str
    content: str

    def to_chat(self) -> Mapping[str, str]:
        return {"role": _CHAT_ROLES[self.role], "content": self.content}


@dataclass
class Transcript:
    """Ordered human/assistant messages sent to the model on every turn."""

    messages: List[TranscriptMessage] = field(default_factory=list)

    def add_human(self, content: str) -> None:
        self.messages.append(TranscriptMessage(role=HUMAN, content=content))

    def add_assistant(self, content: str) -> None:
        self.messages.append(TranscriptMessage(role=ASSISTANT, content=content))

    def __iter__(self) -> Iterator[TranscriptMessage]:
        return iter(self.messages)

    def __len__(self) -> int:
        return len(self.messages)

    def to_chat(self) -> List[Mapping[str, str]]:
        return [message.to_chat() for message in self.messages]


def dumps_payload(data: Mapping[str, Any]) -> str:
    """Render ``data`` as formatted JSON for prompt injection."""

    return json.dumps(data, ensure_ascii=False, indent=2, sort_keys=True)


__all__ = [
    "ASSISTANT",
    "ApplyUpdates",
    "DEFAULT_MOTOR_NEURONS",
    "DEFAULT_SENSORY_NEURONS",
    "HUMAN",
    "MOTOR",
    "NeuroState",
    "NeuronUpdate",
    "NoChange",
    "ParsedReply",
    "ReplyCommand",
    "SENSORY",
    "Transcript",
    "TranscriptMessage",
    "default_state",
    "dumps_payload",
    "parse_reply",
]
