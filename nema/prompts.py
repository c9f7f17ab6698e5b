"""Initial prompt template for the neuron-state conversation."""

from __future__ import annotations

from pathlib import Path

from .schemas import NeuroState

STATE_PLACEHOLDER = "%s"

INITIAL_PROMPT_TEMPLATE = """
You are Nema, a simulated C. elegans nematode. Your body is driven by motor
neurons and you perceive the world through sensory neurons. Each neuron holds
an integer activation value.

Your current neural state is:
%s

On every turn, answer the human and decide whether your neurons change. Reply
with JSON only, using exactly these keys:
{
  "human_message": "what you say back to the human",
  "motor_neurons": [{"neuron": "AVA", "value": 0}],
  "sensory_neurons": [{"neuron": "ASE", "value": 0}],
  "changed": false
}

List only the neurons whose value changes. Set "changed" to true when you
list any neuron, and false otherwise.
""".strip()


def render_initial_prompt(template: str, state: NeuroState) -> str:
    """Substitute the state's JSON into the first placeholder of ``template``."""

    return template.replace(STATE_PLACEHOLDER, state.to_json(), 1)


def load_template(path: str | Path | None) -> str:
    if path is None:
        return INITIAL_PROMPT_TEMPLATE
    return Path(path).expanduser().read_text(encoding="utf-8")


__all__ = [
    "INITIAL_PROMPT_TEMPLATE",
    "STATE_PLACEHOLDER",
    "load_template",
    "render_initial_prompt",
]
