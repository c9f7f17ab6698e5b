from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Mapping

import pytest

from nema.errors import ResponseFormatError
from nema.schemas import (
    DEFAULT_MOTOR_NEURONS,
    DEFAULT_SENSORY_NEURONS,
    ApplyUpdates,
    NeuroState,
    NeuronUpdate,
    NoChange,
    Transcript,
    default_state,
    parse_reply,
)


def _reply(**overrides: Any) -> str:
    payload: dict[str, Any] = {
        "human_message": "Hello.",
        "motor_neurons": [],
        "sensory_neurons": [],
        "changed": False,
    }
    payload.update(overrides)
    return json.dumps(payload)


def _state(motor: Mapping[str, int], sensory: Mapping[str, int]) -> NeuroState:
    return NeuroState(motor_neurons=dict(motor), sensory_neurons=dict(sensory))


def test_default_state_uses_catalog_at_rest() -> None:
    state = default_state()

    assert state.state_count == 0
    assert set(state.motor_neurons) == set(DEFAULT_MOTOR_NEURONS)
    assert set(state.sensory_neurons) == set(DEFAULT_SENSORY_NEURONS)
    assert all(value == 0 for value in state.motor_neurons.values())
    assert "AVA" in state.motor_neurons
    assert "ASE" in state.sensory_neurons


def test_set_neuron_overwrites_or_creates() -> None:
    state = _state({"AVA": 0}, {"ASE": 0})

    assert state.set_neuron("motor", "AVA", 5) is True
    assert state.set_neuron("sensory", "NEW", -3) is True
    assert state.set_neuron("motor", "AVA", 5) is False

    assert state.motor_neurons == {"AVA": 5}
    assert state.sensory_neurons == {"ASE": 0, "NEW": -3}


def test_set_neuron_rejects_unknown_group() -> None:
    with pytest.raises(ValueError):
        default_state().set_neuron("cortex", "AVA", 1)


def test_apply_touches_only_named_neurons() -> None:
    state = _state({"AVA": 0, "AVB": 2}, {"ASE": 0, "AWC": 7})
    command = ApplyUpdates(
        motor=(NeuronUpdate("AVA", 5),),
        sensory=(NeuronUpdate("AWC", -1), NeuronUpdate("ASH", 3)),
    )

    assert state.apply(command) is True

    assert state.motor_neurons == {"AVA": 5, "AVB": 2}
    assert state.sensory_neurons == {"ASE": 0, "AWC": -1, "ASH": 3}
    assert state.state_count == 1


def test_apply_twice_matches_applying_once() -> None:
    command = ApplyUpdates(motor=(NeuronUpdate("AVA", 5),))
    once = _state({"AVA": 0}, {"ASE": 0})
    twice = _state({"AVA": 0}, {"ASE": 0})

    once.apply(command)
    twice.apply(command)
    assert twice.apply(command) is False

    assert twice.motor_neurons == once.motor_neurons
    assert twice.sensory_neurons == once.sensory_neurons
    assert twice.state_count == once.state_count


def test_apply_ignores_no_change() -> None:
    state = _state({"AVA": 1}, {})
    assert state.apply(NoChange()) is False
    assert state.motor_neurons == {"AVA": 1}
    assert state.state_count == 0


def test_copy_is_independent() -> None:
    state = _state({"AVA": 1}, {"ASE": 2})
    clone = state.copy()
    clone.set_neuron("motor", "AVA", 9)
    assert state.motor_neurons["AVA"] == 1


def test_to_json_is_canonical() -> None:
    first = _state({"B": 1, "A": 2}, {"Z": 0, "Y": 1})
    second = _state({"A": 2, "B": 1}, {"Y": 1, "Z": 0})
    second.updated_at = first.updated_at

    assert first.to_json() == second.to_json()
    payload = json.loads(first.to_json())
    assert set(payload) == {"state_count", "updated_at", "motor_neurons", "sensory_neurons"}
    assert payload["motor_neurons"] == {"A": 2, "B": 1}


def test_parse_reply_changed_builds_apply_command() -> None:
    reply = parse_reply(
        _reply(
            human_message="Moving forward.",
            motor_neurons=[{"neuron": "AVA", "value": 5}],
            changed=True,
        )
    )

    assert reply.human_message == "Moving forward."
    assert reply.command == ApplyUpdates(motor=(NeuronUpdate("AVA", 5),), sensory=())


def test_parse_reply_unchanged_builds_no_change() -> None:
    reply = parse_reply(_reply(motor_neurons=[{"neuron": "AVA", "value": 5}]))
    assert reply.command == NoChange()


@pytest.mark.parametrize(
    "text",
    [
        "not json",
        "[]",
        json.dumps({"human_message": "hi", "motor_neurons": [], "sensory_neurons": []}),
        _reply(changed="yes"),
        _reply(human_message=3),
        _reply(motor_neurons={"AVA": 1}),
        _reply(motor_neurons=["AVA"]),
        _reply(motor_neurons=[{"neuron": "AVA", "value": 1.5}]),
        _reply(motor_neurons=[{"neuron": "AVA", "value": "5"}]),
        _reply(sensory_neurons=[{"neuron": "ASE", "value": True}]),
        _reply(sensory_neurons=[{"neuron": 4, "value": 1}]),
    ],
)
def test_parse_reply_rejects_schema_violations(text: str) -> None:
    with pytest.raises(ResponseFormatError):
        parse_reply(text)


def test_transcript_maps_roles_for_chat() -> None:
    transcript = Transcript()
    transcript.add_human("hello")
    transcript.add_assistant("{}")

    assert len(transcript) == 2
    assert [message.role for message in transcript] == ["human", "assistant"]
    assert transcript.to_chat() == [
        {"role": "user", "content": "hello"},
        {"role": "assistant", "content": "{}"},
    ]


def test_apply_without_value_change_refreshes_timestamp() -> None:
    state = _state({"AVA": 5}, {})
    stale = datetime(2020, 1, 1, tzinfo=timezone.utc)
    state.updated_at = stale

    assert state.apply(ApplyUpdates(motor=(NeuronUpdate("AVA", 5),))) is False

    assert state.state_count == 0
    assert state.updated_at > stale
