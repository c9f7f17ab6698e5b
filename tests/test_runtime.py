from __future__ import annotations

import io
import json

from nema.clients import StubLLMClient
from nema.runtime import NemaRuntime, main


def test_console_loop_runs_turns_until_exit() -> None:
    runtime = NemaRuntime(db_path=":memory:", provider="stub")
    assert isinstance(runtime.llm_client, StubLLMClient)
    runtime.llm_client.queue(
        json.dumps(
            {
                "human_message": "Wiggling.",
                "motor_neurons": [{"neuron": "DB", "value": 2}],
                "sensory_neurons": [],
                "changed": True,
            }
        ),
        "garbage",
    )
    out = io.StringIO()

    code = runtime.run_console(io.StringIO("wiggle\n\nagain\nquit\nnever read\n"), out)

    assert code == 0
    text = out.getvalue()
    assert "Nema: Wiggling." in text
    assert "Goodbye!" in text
    assert runtime.manager.state.motor_neurons["DB"] == 2
    assert len(runtime.llm_client.calls) == 2


def test_console_loop_stops_at_eof() -> None:
    runtime = NemaRuntime(db_path=":memory:", provider="stub")
    out = io.StringIO()

    assert runtime.run_console(io.StringIO("hello\n"), out) == 0
    assert "Nema: Nothing changes." in out.getvalue()


def test_runtime_reuses_file_database(tmp_path) -> None:
    db_path = tmp_path / "nested" / "nema.sqlite"
    first = NemaRuntime(db_path=str(db_path), provider="stub")
    first.llm_client.queue(
        json.dumps(
            {
                "human_message": "ok",
                "motor_neurons": [],
                "sensory_neurons": [{"neuron": "AWC", "value": 4}],
                "changed": True,
            }
        )
    )
    first.manager.ask("smell")
    first.store.close()

    second = NemaRuntime(db_path=str(db_path), provider="stub")
    assert second.manager.state.sensory_neurons["AWC"] == 4
    assert second.manager.state.state_count == 1


def test_main_with_custom_prompt_file(tmp_path, monkeypatch) -> None:
    template = tmp_path / "prompt.txt"
    template.write_text("You are a worm. State: %s", encoding="utf-8")
    monkeypatch.setattr("sys.stdin", io.StringIO("exit\n"))

    code = main(
        [
            "--db",
            str(tmp_path / "nema.sqlite"),
            "--provider",
            "stub",
            "--prompt-file",
            str(template),
        ]
    )

    assert code == 0


def test_runtime_passes_api_key_env(monkeypatch) -> None:
    monkeypatch.setenv("NEMA_LOCAL_KEY", "local-secret")

    runtime = NemaRuntime(db_path=":memory:", provider="vllm", api_key_env="NEMA_LOCAL_KEY")

    assert runtime.llm_client._client.api_key == "local-secret"
