"""Entry-point CLI that wraps a test command in a prepared BrowserStack session."""
from __future__ import annotations

import asyncio
import json
import logging
import os
import subprocess
from pathlib import Path
from typing import Any, List, Optional, Tuple

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from bstack_session.config import RunnerConfig, ServiceOptions
from bstack_session.errors import SevereServiceError, TunnelError
from bstack_session.launcher import BrowserStackLauncher
from bstack_session.tools.capabilities import (
    CapabilityFlag,
    read_app_capability,
    read_entry_flag,
    uses_vendor_options,
)

PREPARED_CAPABILITIES_ENV = "BROWSERSTACK_PREPARED_CAPABILITIES"

console = Console()
app = typer.Typer(help="Prepare a BrowserStack session, run a test command, then tear it down")


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def _load_json(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise typer.BadParameter(f"{path} is not valid JSON: {exc}") from exc


def _load_service_options(path: Path) -> ServiceOptions:
    try:
        return ServiceOptions.model_validate(_load_json(path))
    except ValidationError as exc:
        raise typer.BadParameter(f"{path} is not a valid service config: {exc}") from exc


@app.command()
def run(
    capabilities: Path = typer.Option(..., exists=True, help="JSON capabilities: a list or a multiremote map"),
    service_config: Optional[Path] = typer.Option(
        None, exists=True, help="JSON browserstack service options (app, browserstackLocal, opts, ...)"
    ),
    output: Path = typer.Option(
        Path("prepared-capabilities.json"), help="Where the prepared capabilities are written"
    ),
    user: Optional[str] = typer.Option(None, envvar="BROWSERSTACK_USERNAME", help="BrowserStack user"),
    key: Optional[str] = typer.Option(None, envvar="BROWSERSTACK_ACCESS_KEY", help="BrowserStack access key"),
    spec: List[str] = typer.Option([], "--spec", help="Spec handed to the test command (repeatable)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
    command: Optional[List[str]] = typer.Argument(None, help="Test command to run after preparation"),
):
    """Prepare the session, run COMMAND (if any), then complete the session."""
    _configure_logging(verbose)

    caps = _load_json(capabilities)
    options = _load_service_options(service_config) if service_config else ServiceOptions()
    config = RunnerConfig(user=user, key=key, specs=list(spec))

    try:
        launcher = BrowserStackLauncher(options=options, capabilities=caps, config=config)
        asyncio.run(launcher.on_prepare())
    except (SevereServiceError, TunnelError, TypeError) as exc:
        console.print(f"[bold red]Session preparation failed:[/bold red] {exc}")
        raise typer.Exit(code=1) from exc

    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(json.dumps(caps, indent=2), encoding="utf-8")
    _print_summary(caps)

    exit_code = 0
    try:
        if command:
            exit_code = _run_command(command, output, config.specs)
    finally:
        try:
            asyncio.run(launcher.on_complete())
        except TunnelError as exc:
            console.print(f"[bold red]Failed to stop BrowserStack Local:[/bold red] {exc}")
            exit_code = exit_code or 1

    console.print("\n[bold green]Session complete[/bold green]")
    if exit_code:
        raise typer.Exit(code=exit_code)


def _run_command(command: List[str], prepared: Path, specs: List[str]) -> int:
    env = dict(os.environ)
    env[PREPARED_CAPABILITIES_ENV] = str(prepared.resolve())
    cmd = list(command) + list(specs)
    console.log(f"Running {' '.join(cmd)}")
    try:
        result = subprocess.run(cmd, env=env, check=False)
    except FileNotFoundError:
        console.print(f"[bold red]Command not found:[/bold red] {cmd[0]}")
        return 127
    return result.returncode


def _named_entries(caps: Any) -> List[Tuple[str, dict]]:
    if isinstance(caps, list):
        return [(str(index), entry) for index, entry in enumerate(caps) if isinstance(entry, dict)]
    return [
        (name, instance["capabilities"])
        for name, instance in caps.items()
        if isinstance(instance, dict) and isinstance(instance.get("capabilities"), dict)
    ]


def _print_summary(caps: Any) -> None:
    table = Table(title="Prepared capabilities")
    table.add_column("Instance")
    table.add_column("Flags")
    table.add_column("App")
    table.add_column("Local")
    table.add_column("Build identifier")

    for name, entry in _named_entries(caps):
        table.add_row(
            name,
            "bstack:options" if uses_vendor_options(entry) else "legacy",
            str(read_app_capability(entry) or "-"),
            str(read_entry_flag(entry, CapabilityFlag.LOCAL) or False),
            str(read_entry_flag(entry, CapabilityFlag.BUILD_IDENTIFIER) or "-"),
        )

    console.print(table)


if __name__ == "__main__":
    app()
