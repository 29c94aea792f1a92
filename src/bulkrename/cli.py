"""Command line interface for bulkrename."""

from __future__ import annotations

import difflib
import logging
import os
import shlex
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Callable, Iterable

import click
import yaml
from click.core import ParameterSource
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import BarColumn, Progress, TaskProgressColumn, TextColumn
from rich.syntax import Syntax
from rich.table import Table

from bulkrename.config import (
    BulkRenameConfig,
    ConfigError,
    ConfigManager,
    LoggingSettings,
    flatten_for_env,
    resolve_with_precedence,
)
from bulkrename.execution import ExecutionError, PlanHasErrorsError, RenameExecutor
from bulkrename.inputs import InputCollector
from bulkrename.planning import (
    FFProbe,
    MetadataCollector,
    PlanningError,
    RenameItem,
    RenamePlanner,
    RenameTable,
    TemplateError,
)
from bulkrename.planning.sorting import use_system_collation

console = Console()

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _handle_cli_error(
    message: str,
    *,
    code: str,
    json_output: bool,
    details: Any | None = None,
    original: Exception | None = None,
) -> None:
    """Emit a standardized error and terminate the command appropriately.

    Args:
        message: Human-readable error message.
        code: Machine-readable error identifier.
        json_output: Indicates whether JSON mode is active.
        details: Optional structured details to include in the payload.
        original: Original exception for chaining when not using JSON.

    Raises:
        SystemExit: When emitting JSON output to terminate the command.
        click.ClickException: For non-JSON flows to surface the error.
    """

    if json_output:
        payload: dict[str, Any] = {"error": {"code": code, "message": message}}
        if details is not None:
            payload["error"]["details"] = details
        console.print_json(data=payload)
        raise SystemExit(1)

    if isinstance(original, click.ClickException):
        raise original

    raise click.ClickException(message) from original


def _emit_message(message: Any, *, mode: str, quiet: bool, summary_only: bool) -> None:
    """Conditionally print CLI output according to quiet/summary settings.

    Args:
        message: Renderable or string to emit.
        mode: Output mode identifier (`detail`, `summary`, `warning`, or `error`).
        quiet: Whether quiet mode is active.
        summary_only: Whether only summary lines should be emitted.
    """

    if quiet and mode != "error":
        return

    important_modes = {"summary", "warning", "error"}
    if summary_only and mode not in important_modes:
        return

    console.print(message)


def _format_summary_line(command: str, root: Path | str, metrics: dict[str, Any]) -> str:
    """Return a consistent summary line for CLI commands.

    Args:
        command: Command name to include in the summary.
        root: Directory the batch is rooted at.
        metrics: Ordered mapping of metric names to values.

    Returns:
        str: Rich-formatted summary string.
    """

    parts = ", ".join(f"{key}={value}" for key, value in metrics.items())
    return f"[green]{command} summary for {root}: {parts}.[/green]"


def _configure_logging(settings: LoggingSettings) -> None:
    """Attach rich console and optional rotating file handlers to the package logger."""
    logger = logging.getLogger("bulkrename")
    for handler in list(logger.handlers):
        if getattr(handler, "_bulkrename_handler", False):
            logger.removeHandler(handler)
            handler.close()

    level = logging.getLevelName(settings.level.upper())
    if not isinstance(level, int):
        raise ConfigError(f"Unknown logging level: {settings.level}")
    logger.setLevel(level)

    handlers: list[logging.Handler] = [
        RichHandler(console=Console(stderr=True), show_path=False, rich_tracebacks=True)
    ]
    if settings.file:
        path = Path(settings.file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            path,
            maxBytes=settings.max_size_mb * 1024 * 1024,
            backupCount=settings.backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        handlers.append(file_handler)

    for handler in handlers:
        setattr(handler, "_bulkrename_handler", True)
        logger.addHandler(handler)


def _assign_nested(target: dict[str, Any], path: list[str], value: Any) -> None:
    """Assign a nested value within a dictionary for a dotted path.

    Raises:
        ConfigError: If a non-mapping value is encountered along the path.
    """

    node = target
    for segment in path[:-1]:
        existing = node.get(segment)
        if existing is None:
            existing = {}
            node[segment] = existing
        elif not isinstance(existing, dict):
            raise ConfigError(
                f"Cannot assign into '{segment}' because it is not a mapping in the config file."
            )
        node = existing
    node[path[-1]] = value


def _rename_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Attach the options shared by ``plan`` and ``apply``."""
    options = [
        click.argument(
            "paths", nargs=-1, required=True, type=click.Path(exists=True, path_type=str)
        ),
        click.option("-t", "--template", type=str, help="Template used to build new names."),
        click.option(
            "--sorting",
            type=click.Choice(["disabled", "lexicographical", "natural"]),
            help="Order in which inputs are numbered.",
        ),
        click.option(
            "--overwrite/--no-overwrite",
            default=None,
            help="Replace destinations that already exist.",
        ),
        click.option(
            "--on-missing-meta",
            type=click.Choice(["abort", "skip", "ignore"]),
            help="What to do when metadata is missing for a file.",
        ),
        click.option("--replacement", type=str, help="Text substituted for invalid characters."),
        click.option("--max-length", type=int, help="Maximum length of each path segment."),
        click.option(
            "--expand-directories/--no-expand-directories",
            default=None,
            help="Rename the files inside directories instead of the directories.",
        ),
        click.option("--ffprobe", "ffprobe_path", type=str, help="Path of the ffprobe executable."),
        click.option("--json", "json_output", is_flag=True, help="Emit JSON output."),
        click.option("--summary", "summary_mode", is_flag=True, help="Only emit summary lines."),
        click.option("--quiet", is_flag=True, help="Suppress non-error output."),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _load_config(overrides: dict[str, Any]) -> BulkRenameConfig:
    manager = ConfigManager()
    config = manager.load(cli_overrides=overrides)
    _configure_logging(config.logging)
    return config


def _cli_overrides(
    *,
    template: str | None,
    sorting: str | None,
    overwrite: bool | None,
    on_missing_meta: str | None,
    replacement: str | None,
    max_length: int | None,
    expand_directories: bool | None,
    ffprobe_path: str | None,
    emit: bool | None = None,
) -> dict[str, Any]:
    return {
        "rename.template": template,
        "rename.sorting": sorting,
        "rename.overwrite": overwrite,
        "rename.on_missing_meta": on_missing_meta,
        "rename.replacement": replacement,
        "rename.max_length": max_length,
        "rename.expand_directories": expand_directories,
        "rename.emit": emit,
        "probe.ffprobe_path": ffprobe_path,
    }


def _output_modes(
    ctx: click.Context,
    config: BulkRenameConfig,
    *,
    quiet: bool,
    summary_mode: bool,
    json_output: bool,
) -> tuple[bool, bool]:
    """Resolve quiet/summary flags against configured defaults.

    Returns:
        tuple[bool, bool]: Whether quiet mode and summary-only mode are active.

    Raises:
        click.ClickException: If the combination of flags is contradictory.
    """
    explicit_quiet = ctx.get_parameter_source("quiet") == ParameterSource.COMMANDLINE
    explicit_summary = ctx.get_parameter_source("summary_mode") == ParameterSource.COMMANDLINE

    quiet_enabled = quiet if explicit_quiet else config.cli.quiet_default
    summary_only = summary_mode if explicit_summary else config.cli.summary_default

    if json_output:
        if explicit_quiet and quiet_enabled:
            raise click.ClickException("--json cannot be combined with --quiet.")
        if explicit_summary and summary_only:
            raise click.ClickException("--json cannot be combined with --summary.")
        return False, False

    if quiet_enabled and summary_only:
        raise click.ClickException(
            "Quiet and summary modes cannot both be enabled. Adjust CLI defaults or flags."
        )
    return quiet_enabled, summary_only


def _build_table(
    paths: Iterable[str], config: BulkRenameConfig, *, show_progress: bool
) -> RenameTable:
    inputs = InputCollector(expand_directories=config.rename.expand_directories).collect(paths)
    planner = RenamePlanner(
        MetadataCollector(
            probe=FFProbe(config.probe.ffprobe_path),
            max_workers=config.probe.max_workers,
        )
    )
    if not show_progress:
        return planner.build_plan(inputs, config.rename)

    with Progress(
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task("Reading files", total=1.0)
        return planner.build_plan(
            inputs,
            config.rename,
            on_progress=lambda fraction: progress.update(task, completed=fraction),
        )


def _relative(path: Path | None, base: Path | None) -> str:
    if path is None:
        return "-"
    if base is None:
        return str(path)
    try:
        return os.path.relpath(path, base)
    except ValueError:
        return str(path)


def _status(item: RenameItem) -> str:
    if item.message is not None and item.message.variant == "error":
        return "[red]error[/red]"
    if item.skip:
        return "[yellow]skip[/yellow]"
    if item.is_noop:
        return "[dim]unchanged[/dim]"
    if item.message is not None:
        return "[yellow]warning[/yellow]"
    return "[green]rename[/green]"


def _render_table(table: RenameTable, *, quiet: bool, summary_only: bool) -> None:
    base = table.common_dir
    grid = Table(title=f"Rename plan ({base})" if base else "Rename plan")
    grid.add_column("Input")
    grid.add_column("Output")
    grid.add_column("Status")
    for item in table.items:
        grid.add_row(
            _relative(item.input_path, base), _relative(item.output_path, base), _status(item)
        )
    _emit_message(grid, mode="detail", quiet=quiet, summary_only=summary_only)

    for item in table.items:
        if item.message is None:
            continue
        color = "red" if item.message.variant == "error" else "yellow"
        _emit_message(
            f"[{color}]{_relative(item.input_path, base)}:[/{color}]\n{item.message.message}\n",
            mode=item.message.variant,
            quiet=quiet,
            summary_only=summary_only,
        )


def _plan_metrics(table: RenameTable) -> dict[str, int]:
    return {
        "items": len(table.items),
        "renames": sum(1 for item in table.actionable if not item.is_noop),
        "skipped": sum(1 for item in table.items if item.skip),
        "warnings": len(table.warnings),
        "errors": len(table.errors),
    }


def _table_payload(table: RenameTable) -> dict[str, Any]:
    payload = table.model_dump(mode="json")
    payload["summary"] = _plan_metrics(table)
    return payload


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(package_name="bulkrename")
def cli() -> None:
    """bulkrename renames batches of files from a template expression."""


@cli.command()
@_rename_options
@click.pass_context
def plan(
    ctx: click.Context,
    paths: tuple[str, ...],
    template: str | None,
    sorting: str | None,
    overwrite: bool | None,
    on_missing_meta: str | None,
    replacement: str | None,
    max_length: int | None,
    expand_directories: bool | None,
    ffprobe_path: str | None,
    json_output: bool,
    summary_mode: bool,
    quiet: bool,
) -> None:
    """Show how PATHS would be renamed without touching them."""

    try:
        config = _load_config(
            _cli_overrides(
                template=template,
                sorting=sorting,
                overwrite=overwrite,
                on_missing_meta=on_missing_meta,
                replacement=replacement,
                max_length=max_length,
                expand_directories=expand_directories,
                ffprobe_path=ffprobe_path,
            )
        )
        quiet_enabled, summary_only = _output_modes(
            ctx, config, quiet=quiet, summary_mode=summary_mode, json_output=json_output
        )
        table = _build_table(
            paths, config, show_progress=not (json_output or quiet_enabled or summary_only)
        )
    except ConfigError as exc:
        _handle_cli_error(str(exc), code="config_error", json_output=json_output, original=exc)
        return
    except TemplateError as exc:
        _handle_cli_error(str(exc), code="template_error", json_output=json_output, original=exc)
        return
    except PlanningError as exc:
        _handle_cli_error(str(exc), code="planning_error", json_output=json_output, original=exc)
        return

    if json_output:
        console.print_json(data=_table_payload(table))
        return

    _render_table(table, quiet=quiet_enabled, summary_only=summary_only)
    _emit_message(
        _format_summary_line("Plan", table.common_dir or Path.cwd(), _plan_metrics(table)),
        mode="summary",
        quiet=quiet_enabled,
        summary_only=summary_only,
    )


@cli.command()
@_rename_options
@click.option("--dry-run", is_flag=True, help="Preview changes without modifying files.")
@click.option(
    "--emit/--no-emit",
    default=None,
    help="Print every final path, one per line, instead of the usual output.",
)
@click.option("--allow-errors", is_flag=True, help="Rename what can be renamed despite errors.")
@click.pass_context
def apply(
    ctx: click.Context,
    paths: tuple[str, ...],
    template: str | None,
    sorting: str | None,
    overwrite: bool | None,
    on_missing_meta: str | None,
    replacement: str | None,
    max_length: int | None,
    expand_directories: bool | None,
    ffprobe_path: str | None,
    json_output: bool,
    summary_mode: bool,
    quiet: bool,
    dry_run: bool,
    emit: bool | None,
    allow_errors: bool,
) -> None:
    """Rename PATHS according to the template."""

    try:
        config = _load_config(
            _cli_overrides(
                template=template,
                sorting=sorting,
                overwrite=overwrite,
                on_missing_meta=on_missing_meta,
                replacement=replacement,
                max_length=max_length,
                expand_directories=expand_directories,
                ffprobe_path=ffprobe_path,
                emit=emit,
            )
        )
        quiet_enabled, summary_only = _output_modes(
            ctx, config, quiet=quiet, summary_mode=summary_mode, json_output=json_output
        )
        emit_enabled = config.rename.emit and not json_output
        if emit_enabled:
            quiet_enabled, summary_only = True, False
        table = _build_table(
            paths, config, show_progress=not (json_output or quiet_enabled or summary_only)
        )
    except ConfigError as exc:
        _handle_cli_error(str(exc), code="config_error", json_output=json_output, original=exc)
        return
    except TemplateError as exc:
        _handle_cli_error(str(exc), code="template_error", json_output=json_output, original=exc)
        return
    except PlanningError as exc:
        _handle_cli_error(str(exc), code="planning_error", json_output=json_output, original=exc)
        return

    if not json_output:
        _render_table(table, quiet=quiet_enabled, summary_only=summary_only)

    try:
        result = RenameExecutor().execute(table, dry_run=dry_run, allow_errors=allow_errors)
    except PlanHasErrorsError as exc:
        _handle_cli_error(
            f"{exc} Fix the template or pass --allow-errors.",
            code="plan_has_errors",
            json_output=json_output,
            details=_table_payload(table) if json_output else None,
            original=exc,
        )
        return
    except ExecutionError as exc:
        _handle_cli_error(
            f"{exc} All changes were rolled back.",
            code="execution_error",
            json_output=json_output,
            details={"rewind_failures": exc.rewind_failures} if exc.rewind_failures else None,
            original=exc,
        )
        return

    if json_output:
        payload = _table_payload(table)
        payload["result"] = result.model_dump(mode="json")
        console.print_json(data=payload)
        return

    if emit_enabled and not result.dry_run:
        for _, target in result.renamed:
            click.echo(str(target))

    for warning in result.warnings:
        _emit_message(
            f"[yellow]{warning}[/yellow]",
            mode="warning",
            quiet=quiet_enabled,
            summary_only=summary_only,
        )

    plan_metrics = _plan_metrics(table)
    metrics: dict[str, Any] = {
        "renamed": len(result.renamed),
        "skipped": plan_metrics["skipped"],
        "warnings": plan_metrics["warnings"],
        "errors": plan_metrics["errors"],
    }
    if result.removed_directories:
        metrics["removed_directories"] = len(result.removed_directories)
    _emit_message(
        _format_summary_line(
            "Dry run" if dry_run else "Apply", table.common_dir or Path.cwd(), metrics
        ),
        mode="summary",
        quiet=quiet_enabled,
        summary_only=summary_only,
    )


@cli.group()
def config() -> None:
    """Manage bulkrename configuration files and overrides."""


@config.command("view")
@click.option("--no-env", is_flag=True, help="Ignore environment overrides when displaying output.")
@click.option(
    "--env",
    "as_env",
    is_flag=True,
    help="Print shell exports of BULKRENAME__SECTION__KEY variables instead of YAML.",
)
def config_view(no_env: bool, as_env: bool) -> None:
    """Display the effective configuration after applying precedence rules.

    Raises:
        click.ClickException: If configuration cannot be loaded.
    """
    manager = ConfigManager()
    try:
        manager.ensure_exists()
        config = manager.load(include_env=not no_env)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    if as_env:
        for name, value in flatten_for_env(config).items():
            click.echo(f"export {name}={shlex.quote(value)}")
        return

    yaml_text = yaml.safe_dump(config.model_dump(mode="python"), sort_keys=False)
    console.print(Syntax(yaml_text, "yaml", word_wrap=True))


@config.command("set")
@click.argument("key")
@click.option("--value", required=True, help="Value to assign to KEY.")
def config_set(key: str, value: str) -> None:
    """Persist a configuration value expressed as a dotted KEY.

    Args:
        key: Dotted path describing the configuration field to update.
        value: YAML-literal value to write into the configuration file.

    Raises:
        click.ClickException: If parsing, assignment, or validation fails.
    """
    manager = ConfigManager()
    manager.ensure_exists()

    before = manager.read_text().splitlines()
    segments = [segment.strip() for segment in key.split(".") if segment.strip()]
    if not segments:
        raise click.ClickException("KEY must specify a dotted path such as 'rename.template'.")

    try:
        parsed_value = yaml.safe_load(value)
        file_data = manager.load_file_overrides()
        _assign_nested(file_data, segments, parsed_value)
        resolve_with_precedence(defaults=BulkRenameConfig(), file_overrides=file_data)
    except yaml.YAMLError as exc:
        raise click.ClickException(f"Unable to parse value: {exc}") from exc
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    manager.save(file_data)
    after = manager.read_text().splitlines()

    diff = [
        line
        for line in difflib.unified_diff(
            before,
            after,
            fromfile="config.yaml (before)",
            tofile="config.yaml (after)",
            lineterm="",
        )
        if "Last updated:" not in line
    ]

    changed = [
        line
        for line in diff
        if line.startswith(("+", "-")) and not line.startswith(("+++", "---"))
    ]
    if not changed:
        console.print("[yellow]No changes applied; value already up to date.[/yellow]")
        return

    console.print(Syntax("\n".join(diff), "diff", word_wrap=False))
    console.print(f"[green]Updated {'.'.join(segments)}.[/green]")


@config.command("edit")
def config_edit() -> None:
    """Open the configuration file in an interactive editor session.

    Raises:
        click.ClickException: If edited content is invalid or cannot be saved.
    """
    manager = ConfigManager()
    manager.ensure_exists()

    original = manager.read_text()
    edited = click.edit(original, extension=".yaml")

    if edited is None:
        console.print("[yellow]Edit cancelled; no changes applied.[/yellow]")
        return

    if edited == original:
        console.print("[yellow]No changes detected.[/yellow]")
        return

    try:
        parsed = yaml.safe_load(edited) or {}
    except yaml.YAMLError as exc:
        raise click.ClickException(f"Invalid YAML: {exc}") from exc

    if not isinstance(parsed, dict):
        raise click.ClickException("Configuration file must contain a top-level mapping.")

    try:
        resolve_with_precedence(defaults=BulkRenameConfig(), file_overrides=parsed)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    manager.save(parsed)
    console.print("[green]Configuration updated successfully.[/green]")


def main() -> None:
    """Invoke the Click CLI as the console script entry point."""
    use_system_collation()
    cli()


if __name__ == "__main__":
    main()
