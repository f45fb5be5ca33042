"""Typer-based CLI for inspecting breaker keys and effective configuration."""

import json
import logging
import os
from typing import List, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from hostbreaker.errors import BreakerKeyError
from hostbreaker.loader import load_manager_config
from hostbreaker.manager import BreakerManager, ManagerConfig

console = Console()
app = typer.Typer(help="hostbreaker: per-host circuit breakers")


def _setup_logging(verbose: bool) -> None:
    """Setup logging based on verbosity."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _load(config: Optional[str], include_port: Optional[bool] = None) -> ManagerConfig:
    try:
        return load_manager_config(config, env=os.environ, cli_include_port=include_port)
    except (OSError, ValueError) as e:
        console.print(f"[red]✗ Config error: {escape(str(e))}[/red]")
        raise typer.Exit(code=1)


def _config_doc(cfg: ManagerConfig) -> dict:
    return {
        "defaults": cfg.defaults.to_dict(),
        "include_port": cfg.include_port,
        "common_hosts": list(cfg.common_hosts),
        "hosts": {host: pol.to_dict() for host, pol in sorted(cfg.hosts.items())},
        "advanced": {
            "lock_timeout_s": cfg.lock_timeout_s,
            "max_cached_hosts": cfg.max_cached_hosts,
        },
    }


@app.command()
def keys(
    urls: List[str] = typer.Argument(..., help="Request URLs"),
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to breaker YAML",
        envvar="HOSTBREAKER_YAML",
    ),
    include_port: Optional[bool] = typer.Option(
        None, "--include-port/--no-include-port", help="Override include_port"
    ),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Verbose"),
) -> None:
    """Print the breaker key each URL maps to."""
    _setup_logging(verbose)
    manager = BreakerManager.from_config(_load(config, include_port))

    table = Table(title="Breaker keys")
    table.add_column("URL")
    table.add_column("Key")
    failed = False
    for url in urls:
        try:
            table.add_row(escape(url), escape(manager.extract_circuit_breaker_key(url)))
        except BreakerKeyError as e:
            failed = True
            table.add_row(escape(url), f"[red]{e.kind}[/red]")
    console.print(table)
    if failed:
        raise typer.Exit(code=2)


@app.command("config")
def show_config(
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to breaker YAML",
        envvar="HOSTBREAKER_YAML",
    ),
    raw: bool = typer.Option(False, "--raw", help="Raw JSON"),
) -> None:
    """Print merged effective config."""
    cfg = _load(config)
    doc = _config_doc(cfg)
    if raw:
        typer.echo(json.dumps(doc, indent=2))
        return

    table = Table(title="Breaker policies")
    table.add_column("Scope")
    table.add_column("failure_threshold", justify="right")
    table.add_column("success_threshold", justify="right")
    table.add_column("timeout_s", justify="right")
    table.add_column("window_size_s", justify="right")
    for scope, pol in [("defaults", cfg.defaults), *sorted(cfg.hosts.items())]:
        table.add_row(
            scope,
            str(pol.failure_threshold),
            str(pol.success_threshold),
            f"{pol.timeout_s:g}",
            f"{pol.window_size_s:g}",
        )
    console.print(table)
    console.print(f"include_port: {cfg.include_port}")
    console.print(f"common_hosts: {', '.join(cfg.common_hosts) or '-'}")
    console.print(f"lock_timeout_s: {cfg.lock_timeout_s}")
    console.print(f"max_cached_hosts: {cfg.max_cached_hosts}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
