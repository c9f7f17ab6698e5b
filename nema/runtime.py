"""Runtime helpers for running Nema from the console or as an HTTP service."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional, TextIO

import uvicorn
from dotenv import load_dotenv

from .clients import PROVIDERS, create_llm_client
from .errors import NemaError
from .manager import ConversationManager
from .prompts import load_template
from .server import create_app
from .storage import NeuroStateStore

logger = logging.getLogger(__name__)

EXIT_COMMANDS = {"exit", "quit"}


@dataclass
class NemaRuntime:
    """Wire the store, model client, and conversation manager together."""

    db_path: str = "nema.sqlite"
    provider: str = "openai"
    llm_url: Optional[str] = None
    llm_model: str = "gpt-4o-mini"
    api_key_env: Optional[str] = None
    prompt_file: Optional[str] = None
    temperature: float = 1.0
    timeout: Optional[float] = None

    def __post_init__(self) -> None:
        if self.db_path != ":memory:":
            Path(self.db_path).expanduser().resolve().parent.mkdir(parents=True, exist_ok=True)
            self.db_path = str(Path(self.db_path).expanduser())

        self.store = NeuroStateStore(self.db_path)
        self.llm_client = create_llm_client(
            self.provider,
            model=self.llm_model,
            base_url=self.llm_url,
            api_key_env=self.api_key_env,
        )
        logger.info("Using %s model client", self.llm_client.provider)
        self.manager = ConversationManager(
            store=self.store,
            llm_client=self.llm_client,
            prompt_template=load_template(self.prompt_file),
            temperature=self.temperature,
        )

    def run_console(self, stream: Optional[TextIO] = None, out: Optional[TextIO] = None) -> int:
        """Interactive loop: read prompts until EOF or ``exit``/``quit``."""

        if stream is None:
            stream = sys.stdin
        if out is None:
            out = sys.stdout

        def _echo(chunk: str) -> None:
            out.write(chunk)
            out.flush()

        while True:
            out.write("\nYou: ")
            out.flush()
            line = stream.readline()
            if not line:
                return 0
            prompt = line.strip()
            if not prompt:
                continue
            if prompt in EXIT_COMMANDS:
                out.write("Goodbye!\n")
                return 0

            out.write("\nNema (raw): ")
            try:
                reply = self.manager.ask(prompt, on_chunk=_echo, timeout=self.timeout)
            except NemaError as exc:
                logger.error("Turn failed: %s", exc)
                continue
            out.write(f"\nNema: {reply}\n")

    def serve(self, host: str = "127.0.0.1", port: int = 8080) -> None:
        app = create_app(self.manager, turn_timeout=self.timeout)
        logger.info("Starting server on %s:%s", host, port)
        uvicorn.run(app, host=host, port=port)


def main(argv: Optional[Iterable[str]] = None) -> int:
    load_dotenv()

    parser = argparse.ArgumentParser(description="Run the Nema neuron-state agent")
    parser.add_argument(
        "--db",
        default=os.environ.get("NEMA_DB", "nema.sqlite"),
        help="SQLite file for the state log",
    )
    parser.add_argument(
        "--provider",
        choices=PROVIDERS,
        default=os.environ.get("NEMA_PROVIDER", "openai"),
        help="Model provider type",
    )
    parser.add_argument("--llm-url", default=os.environ.get("NEMA_LLM_URL"), help="Base URL of the LLM server")
    parser.add_argument(
        "--llm-model",
        default=os.environ.get("NEMA_LLM_MODEL", "gpt-4o-mini"),
        help="Model name exposed by the provider",
    )
    parser.add_argument(
        "--api-key-env",
        default=os.environ.get("NEMA_API_KEY_ENV"),
        help="Environment variable holding the provider API key",
    )
    parser.add_argument(
        "--prompt-file",
        default=os.environ.get("NEMA_PROMPT_FILE"),
        help="Initial prompt template; the first '%%s' is replaced by the state JSON",
    )
    parser.add_argument("--temperature", type=float, default=1.0, help="Sampling temperature")
    parser.add_argument("--timeout", type=float, default=None, help="Per-turn model timeout in seconds")
    parser.add_argument("--serve", action="store_true", help="Run the HTTP API instead of the console")
    parser.add_argument("--host", default="127.0.0.1", help="Bind address for --serve")
    parser.add_argument("--port", type=int, default=8080, help="Port for --serve")
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging to trace prompt/response payloads.",
    )

    args = parser.parse_args(list(argv) if argv is not None else None)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    runtime = NemaRuntime(
        db_path=str(args.db),
        provider=args.provider,
        llm_url=args.llm_url,
        llm_model=args.llm_model,
        api_key_env=args.api_key_env,
        prompt_file=args.prompt_file,
        temperature=args.temperature,
        timeout=args.timeout,
    )

    if args.serve:
        runtime.serve(host=args.host, port=args.port)
        return 0
    return runtime.run_console()


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    raise SystemExit(main())
