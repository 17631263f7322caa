from __future__ import annotations
import logging
import threading
from pathlib import Path
from typing import Any, Dict, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markdown import Markdown
from rich.table import Table

from .bootstrap import build_app
from .config_loader import ConfigError
from .core.chat_session import ChatSession
from .core.errors import ChatError
from .transport.http import CancelToken

app = typer.Typer(add_completion=False)

DEFAULT_CONFIG = Path("config/default.yaml")

HELP = "Commands: /help, /new, /list, /switch <id>, /delete <id>, /clear, /id, /exit, /quit"


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        force=True,
    )


def _load(config: Path) -> Dict[str, Any]:
    try:
        return build_app(config)
    except (ConfigError, FileNotFoundError) as e:
        typer.echo(f"[config] {e}", err=True)
        raise typer.Exit(code=2)


def _run_turn(console: Console, session: ChatSession, text: str, topic: Optional[str]) -> None:
    """Run one turn on a worker thread so Ctrl+C can cancel the stream cleanly."""
    cancel = CancelToken()
    streaming = session.settings.use_streaming
    outcome: Dict[str, Any] = {}

    def on_chunk(delta: str) -> None:
        console.print(delta, end="", markup=False, highlight=False, soft_wrap=True)

    def work() -> None:
        try:
            outcome["reply"] = session.send_message(
                text, topic=topic, on_chunk=on_chunk if streaming else None, cancel=cancel
            )
        except ChatError as e:
            outcome["error"] = e

    worker = threading.Thread(target=work, daemon=True)
    worker.start()
    while worker.is_alive():
        try:
            worker.join(0.1)
        except KeyboardInterrupt:
            cancel.cancel()
            console.print("\n[stream interrupted]", markup=False)

    if "error" in outcome:
        console.print(f"Error: {outcome['error']}", style="red", markup=False)
    elif streaming:
        console.print("")
    elif outcome.get("reply") is not None:
        console.print(Markdown(outcome["reply"]))


def _print_conversations(console: Console, session: ChatSession) -> None:
    table = Table("", "id", "title", "messages", "updated")
    for conv in session.store.sorted_conversations():
        mark = "*" if conv.id == session.store.active_id else ""
        table.add_row(mark, conv.id, conv.title, str(len(conv.messages)), conv.timestamp)
    console.print(table)


@app.command()
def chat(
    config: Path = typer.Option(DEFAULT_CONFIG, "--config", "-c"),
    provider: Optional[str] = typer.Option(None, "--provider", "-p"),
    stream: Optional[bool] = typer.Option(None, "--stream/--no-stream"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Interactive chat with the configured provider."""
    _setup_logging(verbose)
    console = Console()
    ctx = _load(config)
    session: ChatSession = ctx["session"]

    if provider:
        if provider not in ctx["registry"]:
            typer.echo(f"Unknown provider '{provider}'", err=True)
            raise typer.Exit(code=2)
        session.update_settings(provider=ctx["registry"].lookup(provider).id)
    if stream is not None:
        session.settings.use_streaming = stream

    console.print("prepchat. Type /help for commands. Ctrl+C to quit.", markup=False)
    while True:
        try:
            user_input = input("prep> ").strip()
        except (EOFError, KeyboardInterrupt):
            console.print("\nBye.")
            return

        if not user_input:
            continue

        if user_input in ("/exit", "/quit"):
            console.print("Bye.")
            return

        if user_input == "/help":
            console.print(HELP, markup=False)
            continue

        if user_input == "/id":
            console.print(session.store.active_id, markup=False)
            continue

        if user_input == "/new":
            console.print(session.new_conversation(), markup=False)
            continue

        if user_input == "/list":
            _print_conversations(console, session)
            continue

        if user_input == "/clear":
            session.store.clear_active()
            continue

        if user_input.startswith(("/switch ", "/delete ")):
            cmd, _, target = user_input.partition(" ")
            action = session.switch_conversation if cmd == "/switch" else session.delete_conversation
            if not action(target.strip()):
                console.print(f"No conversation '{target.strip()}'", markup=False)
            continue

        _run_turn(console, session, user_input, ctx["topic"])


@app.command()
def providers(config: Path = typer.Option(DEFAULT_CONFIG, "--config", "-c")):
    """List the providers this build knows about."""
    ctx = _load(config)
    table = Table("id", "label", "family", "model", "endpoint")
    for cfg in ctx["registry"]:
        table.add_row(cfg.id, cfg.label, cfg.family.value, cfg.model_id or "-", cfg.endpoint_url or "(custom)")
    Console().print(table)


@app.command()
def check(
    config: Path = typer.Option(DEFAULT_CONFIG, "--config", "-c"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Send a minimal request to verify the API key and endpoint."""
    _setup_logging(verbose)
    ctx = _load(config)
    s = ctx["session"].settings
    try:
        ctx["service"].test_connection(
            s.provider, s.api_key, s.custom_model or None, s.custom_endpoint or None, s.custom_headers or None
        )
    except ChatError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(code=1)
    typer.echo(f"OK: {s.provider}")


@app.command()
def proxy(
    host: str = typer.Option("127.0.0.1", "--host"),
    port: int = typer.Option(8000, "--port"),
    timeout: float = typer.Option(120.0, "--timeout"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Serve the relay used by proxied transport mode."""
    from .web.proxy import run

    _setup_logging(verbose)
    run(host=host, port=port, timeout=timeout)
