"""
Thin CLI layer - orchestrates library components without business logic.

Copyright (c) 2026 Andrew Hundt
Licensed under the Apache License, Version 2.0
"""

import json
import os
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from .context import RecoveryContext
from .engine import ChatRecoveryEngine
from .formatters import MessageFormatter, get_formatter
from .log_config import DEFAULT_LOG_LEVEL, configure_logging
from .models import FilterSpec, RecoverySettings, Role

app = typer.Typer(
    help=(
        "Recover and analyze crashed or corrupted chat transcripts (JSON arrays of messages).\n\n"
        "Damaged files are parsed with progressively more forgiving strategies; the recovered "
        "messages are turned into a confidence-scored report of topics, files, code, decisions "
        "and open questions.\n\n"
        "Override defaults with environment variables:\n\n"
        "  CHAT_RECOVERY_CONFIG     Path to the config JSON file\n\n"
        "  CHAT_RECOVERY_LOG_LEVEL  Log level (default: WARNING)"
    ),
)
config_app = typer.Typer(
    help=(
        "View and manage the chat_recovery_tools config file.\n\n"
        "Config file location (priority order):\n\n"
        "  1. --config CLI flag\n"
        "  2. CHAT_RECOVERY_CONFIG env var\n"
        "  3. OS default: ~/Library/Application Support/chat_recovery_tools/config.json (macOS)\n"
        "               : ~/.config/chat_recovery_tools/config.json (Linux)"
    ),
)
app.add_typer(config_app, name="config", rich_help_panel="Configuration")

console = Console()
err_console = Console(stderr=True)


# Module-level overrides set by global options
_g_config_path: Optional[str] = None
_config_cache: Optional[dict] = None  # lazily loaded, reset per process


def _get_config_file_path() -> Path:
    """Return the resolved config file path based on current priority chain."""
    if _g_config_path:
        return Path(_g_config_path).expanduser()
    env_val = os.getenv("CHAT_RECOVERY_CONFIG")
    if env_val:
        return Path(env_val).expanduser()
    return Path(typer.get_app_dir("chat_recovery_tools")) / "config.json"


def load_config() -> dict:
    """Load app config from JSON file. Returns empty dict if not found or unreadable.

    Config file location priority:
      1. ``--config`` CLI flag (set on the root app callback)
      2. ``CHAT_RECOVERY_CONFIG`` environment variable
      3. OS-appropriate default via ``typer.get_app_dir("chat_recovery_tools")``

    Supported keys (all optional): every ``RecoverySettings`` field, e.g.
    ``topic_recency_weight``, ``file_recency_weight``, ``answered_overlap_ratio``,
    ``max_active_files``; plus ``log_level``.

    Example ``config.json``::

        {
            "log_level": "INFO",
            "topic_recency_weight": 0.5,
            "file_recency_weight": 2.0,
            "answered_overlap_ratio": 0.5
        }
    """
    global _config_cache
    if _config_cache is not None:
        return _config_cache

    config_file = _get_config_file_path()
    if config_file.exists():
        try:
            with open(config_file, encoding="utf-8") as f:
                loaded = json.load(f)
            _config_cache = loaded if isinstance(loaded, dict) else {}
        except (json.JSONDecodeError, OSError) as exc:
            err_console.print(f"[yellow]Warning: could not load config {config_file}: {exc}[/yellow]")
            _config_cache = {}
    else:
        _config_cache = {}

    return _config_cache


# ── Root app callback (global options) ────────────────────────────────────────

@app.callback(invoke_without_command=True)
def app_callback(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(
        None, "--config",
        help=(
            "Path to the chat_recovery_tools config JSON file. "
            "Default: OS config dir / chat_recovery_tools / config.json. "
            "Also overridable via CHAT_RECOVERY_CONFIG env var."
        ),
        envvar="CHAT_RECOVERY_CONFIG",
    ),
    log_level: Optional[str] = typer.Option(
        None, "--log-level",
        help="Log level: TRACE, DEBUG, INFO, WARNING, ERROR. Default: config 'log_level' or WARNING.",
        envvar="CHAT_RECOVERY_LOG_LEVEL",
    ),
    log_file: Optional[str] = typer.Option(
        None, "--log-file",
        help="Also write DEBUG logs to this file (rotated at 5 MB).",
        envvar="CHAT_RECOVERY_LOG_FILE",
    ),
) -> None:
    global _g_config_path, _config_cache
    if config != _g_config_path:
        _g_config_path = config
        _config_cache = None  # invalidate cache when path changes
    try:
        configure_logging(log_level or load_config().get("log_level"), log_file)
    except ValueError as exc:
        err_console.print(f"[red]Invalid log level: {exc}[/red]")
        raise typer.Exit(code=1)
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit(0)


# ── Engine factory ────────────────────────────────────────────────────────────

def get_engine() -> ChatRecoveryEngine:
    """Create a recovery engine whose settings come from the config file."""
    try:
        context = RecoveryContext.from_config(load_config())
    except ValueError as exc:
        err_console.print(f"[red]Invalid config: {exc}[/red]")
        raise typer.Exit(code=1)
    return ChatRecoveryEngine(context)


def _emit(text: str, output: Optional[str] = None) -> None:
    """Write text to stdout, or to a file when ``output`` is set."""
    if output:
        target = Path(output).expanduser()
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(text + "\n", encoding="utf-8")
        console.print(f"[green]Saved:[/green] {target}")
        return
    # Raw stdout: no Rich markup or ANSI codes
    sys.stdout.write(text + "\n")


def _check_format(fmt: str, allowed: tuple) -> str:
    fmt = fmt.lower()
    if fmt not in allowed:
        err_console.print(f"[red]Unknown format '{fmt}'. Choose from: {', '.join(allowed)}[/red]")
        raise typer.Exit(code=1)
    return fmt


# ── Commands ─────────────────────────────────────────────────────────────────

@app.command()
def recover(
    path: str = typer.Argument(..., help="Transcript file (JSON array of messages, possibly corrupt)."),
    max_length: int = typer.Option(2000, "--max-length", "-m", min=0, help="Maximum summary length."),
    code_snippets: bool = typer.Option(
        True, "--code-snippets/--no-code-snippets",
        help="Extract code snippets and track how code evolved.",
    ),
    fmt: str = typer.Option("narrative", "--format", "-f", help="Output format: narrative, json, table."),
    crash_report: Optional[str] = typer.Option(
        None, "--crash-report",
        help="Emit a crash report JSON object for this task ID instead of the result.",
    ),
    output: Optional[str] = typer.Option(None, "--output", "-o", help="Write output to this file."),
) -> None:
    """Recover a crashed conversation and print the recovery report.

    Examples:
        chatrec recover api_conversation_history.json
        chatrec recover broken.json --format json --max-length 500
        chatrec recover broken.json --crash-report task-123 -o report.json
    """
    fmt = _check_format(fmt, ("narrative", "json", "table"))
    engine = get_engine()
    try:
        result = engine.recover(path, max_length=max_length, include_code_snippets=code_snippets)
    except OSError as exc:
        err_console.print(f"[red]Error: cannot read {path}: {exc}[/red]")
        raise typer.Exit(code=1)

    if crash_report:
        report = engine.create_crash_report(crash_report, result)
        _emit(json.dumps(report.to_dict(), indent=2, ensure_ascii=False), output)
        return

    formatter = get_formatter(fmt, title=f"Recovery of {Path(path).name}")
    _emit(formatter.format(result).rstrip("\n"), output)


@app.command()
def messages(
    path: str = typer.Argument(..., help="Transcript file to recover messages from."),
    role: Optional[Role] = typer.Option(None, "--role", "-r", help="Only messages from this role."),
    since: int = typer.Option(0, "--since", min=0, help="Only messages at or after this epoch-ms timestamp."),
    search: Optional[str] = typer.Option(None, "--search", "-s", help="Case-insensitive text filter."),
    limit: Optional[int] = typer.Option(None, "--limit", "-n", min=0, help="Maximum messages to show."),
    max_chars: int = typer.Option(0, "--max-chars", min=0, help="Truncate message text (0 = full)."),
    fmt: str = typer.Option("plain", "--format", "-f", help="Output format: plain, json, table."),
) -> None:
    """List the messages the strategy chain could recover.

    Examples:
        chatrec messages broken.json --role human
        chatrec messages broken.json --search redux --format json
    """
    fmt = _check_format(fmt, ("plain", "json", "table"))
    filters = FilterSpec(since=since, search=search, limit=limit)
    if role is not None:
        filters.with_roles(role)
    try:
        recovered = get_engine().attempt_recovery(path, filters)
    except OSError as exc:
        err_console.print(f"[red]Error: cannot read {path}: {exc}[/red]")
        raise typer.Exit(code=1)

    if fmt == "json":
        sys.stdout.write(json.dumps([m.to_dict() for m in recovered], indent=2, ensure_ascii=False) + "\n")
        return
    if not recovered:
        console.print("[yellow]No messages recovered[/yellow]")
        return
    if fmt == "table":
        sys.stdout.write(get_formatter("table", title=f"Messages ({len(recovered)})").format_many(recovered))
        return
    sys.stdout.write(MessageFormatter(max_chars).format_many(recovered) + "\n")


@app.command()
def analyze(
    path: str = typer.Argument(..., help="Transcript file to analyze."),
    since: int = typer.Option(0, "--since", min=0, help="Only messages at or after this epoch-ms timestamp."),
    search: Optional[str] = typer.Option(None, "--search", "-s", help="Case-insensitive text filter."),
    fmt: str = typer.Option("table", "--format", "-f", help="Output format: table, json."),
) -> None:
    """Show content statistics: counts, topics, code blocks, file operations, key actions.

    Examples:
        chatrec analyze conversation.json
        chatrec analyze conversation.json --since 1700000000000 --format json
    """
    fmt = _check_format(fmt, ("table", "json"))
    try:
        analysis = get_engine().analyze_file(path, since=since, search=search)
    except OSError as exc:
        err_console.print(f"[red]Error: cannot read {path}: {exc}[/red]")
        raise typer.Exit(code=1)
    _emit(get_formatter(fmt, title=f"Analysis of {Path(path).name}").format(analysis).rstrip("\n"))


# ── Config app ───────────────────────────────────────────────────────────────

@config_app.command("path")
def config_path() -> None:
    """Print the config file path; a note on stderr says when it does not exist yet.

    Examples:
        chatrec config path
        chatrec --config /tmp/my.json config path   # show path after override
    """
    config_file = _get_config_file_path()
    sys.stdout.write(f"{config_file}\n")
    if not config_file.exists():
        err_console.print("[dim]Not created yet. Run 'chatrec config init'.[/dim]")


def _effective_settings(cfg: dict) -> list:
    """Rows of (key, value, source) for every setting the engine will use."""
    try:
        settings = RecoverySettings.from_dict(cfg)
    except ValueError as exc:
        err_console.print(f"[red]Invalid config: {exc}[/red]")
        raise typer.Exit(code=1)
    rows = [(
        "log_level",
        cfg.get("log_level") or os.getenv("CHAT_RECOVERY_LOG_LEVEL") or DEFAULT_LOG_LEVEL,
        "config" if "log_level" in cfg else "default",
    )]
    for key, value in settings.to_dict().items():
        rows.append((key, value, "config" if key in cfg else "default"))
    known = {key for key, _, _ in rows}
    rows.extend((key, value, "ignored") for key, value in cfg.items() if key not in known)
    return rows


@config_app.command("show")
def config_show(
    fmt: str = typer.Option("table", "--format", "-f", help="Output format: table, json."),
) -> None:
    """Show the effective recovery settings and where each value comes from.

    Every setting is listed: values from the config file are marked ``config``,
    built-in values ``default``, and unrecognised keys ``ignored``.

    Examples:
        chatrec config show
        chatrec config show --format json
    """
    fmt = _check_format(fmt, ("table", "json"))
    config_file = _get_config_file_path()
    cfg = load_config()
    rows = _effective_settings(cfg)

    if fmt == "json":
        sys.stdout.write(json.dumps({
            "config_file": str(config_file),
            "exists": config_file.exists(),
            "config": cfg,
            "effective": {key: value for key, value, source in rows if source != "ignored"},
            "ignored": sorted(key for key, _, source in rows if source == "ignored"),
        }, indent=2) + "\n")
        return

    status = "" if config_file.exists() else " [yellow](not created; showing defaults)[/yellow]"
    console.print(f"Config file: [cyan]{config_file}[/cyan]{status}")
    table = Table(title="Effective settings")
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    table.add_column("Source", style="dim")
    for key, value, source in rows:
        table.add_row(key, value if isinstance(value, str) else json.dumps(value), source)
    console.print(table)


@config_app.command("init")
def config_init(
    force: bool = typer.Option(
        False, "--force",
        help="Overwrite the config file if it already exists.",
    ),
) -> None:
    """Create a starter config.json holding every setting at its default value.

    Will NOT overwrite an existing config file unless --force is given.

    Examples:
        chatrec config init
        chatrec config init --force
    """
    config_file = _get_config_file_path()

    if config_file.exists() and not force:
        err_console.print(
            f"[yellow]Config file already exists:[/yellow] {config_file}\n"
            "Use --force to overwrite."
        )
        raise typer.Exit(code=1)

    template = {"log_level": "WARNING", **RecoverySettings().to_dict()}
    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(json.dumps(template, indent=2) + "\n", encoding="utf-8")

    # Invalidate cache so next command picks up the new file
    global _config_cache
    _config_cache = None

    console.print(f"[green]Created:[/green] {config_file}")
    console.print("[dim]Run 'chatrec config show' to verify the active configuration.[/dim]")


# ── Entry point ───────────────────────────────────────────────────────────────

def cli_main():
    """CLI entry point."""
    app()
