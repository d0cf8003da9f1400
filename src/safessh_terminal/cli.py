"""CLI entry point using typer."""

from __future__ import annotations

import asyncio
import logging
import subprocess
import sys
from collections import deque
from dataclasses import fields
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from safessh_terminal import __version__
from safessh_terminal.config import (
    CONFIG_FILE,
    AppConfig,
    InferenceConfig,
    PolicyConfig,
    ensure_config_dir,
    load_config,
    load_policy,
    save_config,
    save_policy,
)
from safessh_terminal.errors import PersistenceError
from safessh_terminal.services.inference import OllamaClient
from safessh_terminal.services.secagent import SafetyGate
from safessh_terminal.storage.checkpoint import CheckpointStore
from safessh_terminal.storage.models import SafetyVerdict
from safessh_terminal.utils.formatting import format_record_status, format_resume
from safessh_terminal.utils.system import check_inference_backend, check_policy_file

app = typer.Typer(
    name="safessh-terminal",
    help="Run remote commands over SSH behind a safety gate, as an MCP server.",
    add_completion=False,
)
console = Console()
# stdout carries the MCP protocol while the server runs
err_console = Console(stderr=True)


def _checkpoint_store(config: AppConfig) -> CheckpointStore:
    return CheckpointStore(config.storage.checkpoint_file, config.storage.history_file)


@app.command()
def init() -> None:
    """Interactive setup wizard."""
    console.print(f"\n[bold]safessh-terminal v{__version__}[/bold]")
    console.print("Interactive Setup\n")

    # 1. Inference backend
    console.print("[bold]Step 1:[/bold] Local inference backend (Ollama)")
    host = typer.prompt("  Host", default=InferenceConfig().host)
    reachable, info = check_inference_backend(host)
    if reachable:
        console.print(f"  Models: [green]{info}[/green]")
    else:
        console.print(f"  [yellow]Warning: {info}[/yellow]")
        console.print("  Commands will be checked with static patterns only until it is reachable.\n")

    # 2. Security policy
    console.print("\n[bold]Step 2:[/bold] Security agent")
    enabled = typer.confirm("  Enable the security agent?", default=True)
    use_llm = False
    static_only = False
    policy_text = PolicyConfig().security_policy
    if enabled:
        use_llm = typer.confirm("  Use the local model classifier?", default=reachable)
        static_only = not use_llm
        if use_llm:
            policy_text = typer.prompt("  Security policy for the classifier", default=policy_text)

    config = AppConfig(inference=InferenceConfig(host=host))
    save_config(config)
    policy = PolicyConfig(
        enabled=enabled,
        use_local_classifier=use_llm,
        static_only=static_only,
        security_policy=policy_text,
    )
    save_policy(policy, config.secagent.policy_file)

    console.print(f"\n[green]Configuration saved to {CONFIG_FILE}[/green]")
    console.print(f"[green]Security policy saved to {config.secagent.policy_file}[/green]")
    console.print("\nNext step: register [bold]safessh-terminal start[/bold] as a stdio MCP server in your client.\n")


@app.command()
def start() -> None:
    """Start the MCP server on stdio."""
    config = load_config()

    # Setup logging (file only: stdout is the protocol channel)
    ensure_config_dir()
    log_path = Path(config.logging.file).expanduser().resolve()
    log_path.parent.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=getattr(logging, config.logging.level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[logging.FileHandler(str(log_path))],
    )

    try:
        from safessh_terminal.server.app import run_server

        asyncio.run(run_server(config))
    except KeyboardInterrupt:
        pass
    except Exception:
        logging.getLogger(__name__).exception("Fatal error in server")
        err_console.print(f"[red]Server failed. See {log_path}[/red]")
        raise typer.Exit(1)


@app.command()
def status() -> None:
    """Show configuration, policy and backend status."""
    if not CONFIG_FILE.exists():
        console.print("[yellow]Not configured. Run 'safessh-terminal init'. Using defaults.[/yellow]")
    else:
        console.print(f"Config: {CONFIG_FILE}")

    config = load_config()
    ok, info = check_policy_file(config.secagent.policy_file)
    console.print(f"Policy: {'[green]' if ok else '[yellow]'}{info}{'[/green]' if ok else '[/yellow]'}")

    reachable, models = check_inference_backend(config.inference.host, timeout=2.0)
    if reachable:
        console.print(f"Inference: [green]{config.inference.host}[/green] ({models})")
    else:
        console.print(f"Inference: [yellow]{models}[/yellow]")

    store = _checkpoint_store(config)
    if store.exists():
        console.print(f"Checkpoint: {store.checkpoint_path}")
    else:
        console.print("[dim]No session checkpoint.[/dim]")


def _coerce(current: object, raw: str) -> object:
    """Convert ``raw`` to the type of the setting it replaces."""
    if isinstance(current, bool):
        return raw.strip().lower() in ("true", "1", "yes", "on")
    if isinstance(current, (int, float)):
        return type(current)(raw)
    return raw


@app.command()
def config(
    key: str = typer.Argument(None, help="Config key (e.g., ssh.exec_timeout)"),
    value: str = typer.Argument(None, help="New value"),
) -> None:
    """View or modify configuration."""
    if not CONFIG_FILE.exists():
        console.print("[red]Not configured. Run 'safessh-terminal init'.[/red]")
        raise typer.Exit(1)

    cfg = load_config()
    sections = {f.name: getattr(cfg, f.name) for f in fields(cfg)}

    if key is None:
        table = Table(title="safessh-terminal settings")
        table.add_column("Setting", style="cyan")
        table.add_column("Value", style="green")
        for name, section in sections.items():
            for f in fields(section):
                table.add_row(f"{name}.{f.name}", str(getattr(section, f.name)))
        console.print(table)
        return

    if value is None:
        console.print("[red]Usage: safessh-terminal config <key> <value>[/red]")
        raise typer.Exit(1)

    section_name, _, attr = key.partition(".")
    section = sections.get(section_name)
    if section is None or attr not in {f.name for f in fields(section)}:
        console.print(f"[red]Unknown setting: {key}[/red]")
        raise typer.Exit(1)

    try:
        new_value = _coerce(getattr(section, attr), value)
    except ValueError:
        console.print(f"[red]{key} expects a {type(getattr(section, attr)).__name__}, got {value!r}[/red]")
        raise typer.Exit(1)

    setattr(section, attr, new_value)
    save_config(cfg)
    console.print(f"[green]{key} = {new_value}[/green]")


@app.command()
def history() -> None:
    """Show the command history stored in the last checkpoint."""
    store = _checkpoint_store(load_config())
    if not store.exists():
        console.print("[dim]No session checkpoint found.[/dim]")
        return
    try:
        checkpoint = store.load()
    except PersistenceError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    if not checkpoint.commands:
        console.print("[dim]No commands have been executed yet.[/dim]")
        return

    table = Table(title="Command History")
    table.add_column("#", justify="right")
    table.add_column("Command", style="cyan")
    table.add_column("Executed at")
    table.add_column("Status", style="green")
    for i, record in enumerate(checkpoint.commands, 1):
        table.add_row(str(i), record.command, record.executed_at, format_record_status(record))
    console.print(table)


@app.command()
def resume() -> None:
    """Summarize the session stored in the last checkpoint."""
    store = _checkpoint_store(load_config())
    checkpoint = None
    if store.exists():
        try:
            checkpoint = store.load()
        except PersistenceError as e:
            console.print(f"[yellow]{e}[/yellow]")
    console.print(format_resume(checkpoint))


@app.command()
def check(
    command: str = typer.Argument(..., help="Command to evaluate"),
    classifier: bool = typer.Option(False, "--classifier", help="Allow the local model classifier"),
) -> None:
    """Evaluate a command against the security policy without running it."""
    config = load_config()
    policy = load_policy(config.secagent.policy_file)

    async def _evaluate() -> SafetyVerdict:
        if not classifier:
            return await SafetyGate(policy).evaluate(command)
        backend = OllamaClient(config.inference.host)
        gate = SafetyGate(
            policy,
            backend,
            max_retries=config.inference.max_retries,
            retry_delay=config.inference.retry_delay,
            request_timeout=config.inference.request_timeout,
        )
        try:
            await gate.discover_models()
            return await gate.evaluate(command)
        finally:
            await backend.aclose()

    verdict = asyncio.run(_evaluate())
    label = "[green]SAFE[/green]" if verdict.safe else "[red]UNSAFE[/red]"
    suffix = f" via {verdict.model}" if verdict.model else ""
    console.print(f"{label} ({verdict.source.value}{suffix})")
    if not verdict.safe:
        raise typer.Exit(2)


@app.command()
def logs(
    lines: int = typer.Option(50, "--lines", "-n", help="Number of lines"),
    follow: bool = typer.Option(False, "--follow", "-f", help="Follow log output"),
) -> None:
    """Show the tail of the server log."""
    log_path = Path(load_config().logging.file).expanduser()
    if not log_path.is_file():
        console.print(f"[dim]No log file at {log_path}.[/dim]")
        return

    if not follow:
        with log_path.open(encoding="utf-8", errors="replace") as f:
            for line in deque(f, maxlen=lines):
                console.print(line.rstrip("\n"), markup=False, highlight=False)
        return

    try:
        subprocess.run(["tail", "-n", str(lines), "-F", str(log_path)], check=False)
    except KeyboardInterrupt:
        pass


@app.command()
def version() -> None:
    """Show version information."""
    console.print(f"safessh-terminal v{__version__}")
    console.print(f"Python: {sys.version.split()[0]}")
    console.print(f"Config: {CONFIG_FILE}")


if __name__ == "__main__":
    app()
