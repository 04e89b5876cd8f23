"""kvsafe CLI entry point.

Works against a local store file so several shells can update the same
counters and balances concurrently:

    kvsafe set accounts/alice 100
    kvsafe transfer accounts/alice accounts/bob 30
    kvsafe incr visits/home --by 1
"""

import json
import logging
from pathlib import Path
from typing import Any, Optional

import typer
from rich.markup import escape

from ..client import SafeAtomicKv
from ..config import SafeAtomicsConfig
from ..errors import ConfigError
from ..occ.compute import Abort
from ..occ.reporting import SafeAtomicManyResponse, SafeAtomicResponse, UpdateStatus
from ..storage import LocalFileKvStore
from .display import console, error, info, info_dict, section, success, warning

app = typer.Typer(
    name="kvsafe",
    help="Optimistic, retrying updates on a local versioned key-value store",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)

config_app = typer.Typer(help="Manage safeatomics configuration")
app.add_typer(config_app, name="config")


def parse_key(raw: str) -> tuple[str, ...]:
    """Split a slash-separated key into parts."""
    parts = tuple(part for part in raw.split("/") if part)
    if not parts:
        raise typer.BadParameter(f"Empty key: {raw!r}")
    return parts


def parse_value(raw: str) -> Any:
    """Interpret a value as JSON, falling back to a plain string."""
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def _show(value: Any) -> str:
    return escape(json.dumps(value))


def _client(ctx: typer.Context) -> SafeAtomicKv:
    return ctx.obj["client"]


def _report(response: SafeAtomicResponse | SafeAtomicManyResponse) -> None:
    """Print the outcome, exiting 1 if nothing was committed."""
    if response.ok:
        return
    if response.status == UpdateStatus.EXHAUSTED:
        error(f"{response.error} after {response.attempts} attempts")
    else:
        warning(f"Aborted: {response.error or 'no reason given'}")
    raise typer.Exit(1)


@app.callback()
def main(
    ctx: typer.Context,
    store: Optional[Path] = typer.Option(
        None, "--store", "-s", help="Store file (defaults to the configured path)"
    ),
    config: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Configuration file (YAML)"
    ),
    retries: Optional[int] = typer.Option(
        None, "--retries", "-r", min=0, help="Retry budget for updates"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
):
    """Optimistic, retrying updates on a local versioned key-value store."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        settings = SafeAtomicsConfig.load(config)
    except ConfigError as e:
        if ctx.invoked_subcommand != "config":
            error(str(e))
            raise typer.Exit(1)
        # Let "config init --force" replace a broken file
        ctx.obj = {"settings": None, "config_error": str(e), "config_path": config}
        return

    if ctx.invoked_subcommand == "config":
        ctx.obj = {"settings": settings, "config_error": None, "config_path": config}
        return

    store_path = store or settings.backend.path
    client = SafeAtomicKv(
        LocalFileKvStore(store_path),
        retry_budget=settings.retry.retry_budget if retries is None else retries,
        initial_delay=settings.retry.initial_delay,
    )
    ctx.obj = {"settings": settings, "client": client}


@app.command()
def get(ctx: typer.Context, key: str = typer.Argument(..., help="Key, e.g. accounts/alice")):
    """Print the current value and version of a key."""
    entry = _client(ctx).get(parse_key(key))
    if not entry.exists:
        warning(f"{key} does not exist")
        raise typer.Exit(1)
    info(_show(entry.value))
    console.print(f"[dim]version {entry.version}[/dim]")


@app.command("set")
def set_value(
    ctx: typer.Context,
    key: str = typer.Argument(..., help="Key, e.g. accounts/alice"),
    value: str = typer.Argument(..., help="Value (JSON, or a plain string)"),
):
    """Write a value unconditionally."""
    _client(ctx).set(parse_key(key), parse_value(value))
    success(f"{key} = {_show(parse_value(value))}")


@app.command()
def delete(ctx: typer.Context, key: str = typer.Argument(..., help="Key to delete")):
    """Delete a key."""
    if not _client(ctx).delete(parse_key(key)):
        warning(f"{key} does not exist")
        raise typer.Exit(1)
    success(f"Deleted {key}")


@app.command()
def incr(
    ctx: typer.Context,
    key: str = typer.Argument(..., help="Counter key"),
    by: int = typer.Option(1, "--by", "-b", help="Amount to add"),
):
    """Add to a numeric value, treating a missing key as 0."""

    def add(value, abort):
        if value is None:
            value = 0
        if not isinstance(value, (int, float)) or isinstance(value, bool):
            return Abort(f"{key} is not a number")
        return value + by

    response = _client(ctx).update_one(parse_key(key), add)
    _report(response)
    success(f"{key} = {_show(response.value)}")


@app.command()
def transfer(
    ctx: typer.Context,
    source: str = typer.Argument(..., help="Key to take from"),
    target: str = typer.Argument(..., help="Key to add to"),
    amount: float = typer.Argument(..., help="Amount to move"),
):
    """Move an amount between two balances in one atomic update."""
    if amount <= 0:
        raise typer.BadParameter("amount must be positive")
    if amount.is_integer():
        amount = int(amount)
    source_key, target_key = parse_key(source), parse_key(target)
    if source_key == target_key:
        raise typer.BadParameter("source and target must be different keys")

    def move(values, abort):
        src, dst = values
        src = 0 if src is None else src
        dst = 0 if dst is None else dst
        for name, balance in ((source, src), (target, dst)):
            if not isinstance(balance, (int, float)) or isinstance(balance, bool):
                return Abort(f"{name} is not a number")
        if src < amount:
            abort("insufficient funds")
            return values
        return [src - amount, dst + amount]

    response = _client(ctx).update_many([source_key, target_key], move)
    _report(response)
    success(f"Moved {_show(amount)} from {source} to {target}")
    info_dict({source: _show(response.values[0]), target: _show(response.values[1])})


@config_app.command("show")
def config_show(ctx: typer.Context):
    """Show the effective configuration."""
    if ctx.obj["config_error"]:
        error(ctx.obj["config_error"])
        raise typer.Exit(1)
    settings: SafeAtomicsConfig = ctx.obj["settings"]
    section("Configuration")
    info(escape(settings.to_yaml_string()))


@config_app.command("init")
def config_init(
    ctx: typer.Context,
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing file"),
):
    """Write a configuration file with default values."""
    path = ctx.obj["config_path"] or SafeAtomicsConfig.default_path()
    if path.exists() and not force:
        warning(f"{path} already exists (use --force to overwrite)")
        raise typer.Exit(1)

    SafeAtomicsConfig().save(path)
    success(f"Configuration saved to {path}")


if __name__ == "__main__":
    app()
