"""
Command-line interface for inspecting and synchronizing a meta-repository.
"""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
import os
import sys
from pathlib import Path
from typing import List, Optional, Tuple
from datetime import datetime

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .models import FetchOutcome, MetaRepoError, Open, SyncReport, SyncStatus, TreeSource
from .sync_orchestrator import DEFAULT_PARALLEL, SyncOrchestrator
from . import __version__ as PACKAGE_VERSION


console = Console()
logger = logging.getLogger(__name__)


def _print_version(ctx, param, value):
    """Eager option callback to print version and exit."""
    if not value or ctx.resilient_parsing:
        return
    click.echo(f"gitmeta {PACKAGE_VERSION}")
    ctx.exit()


def _default_log_path() -> Path:
    """Determine default log file path (~/.gitmeta/gitmeta.log)."""
    env_path = os.environ.get("GITMETA_LOG")
    if env_path:
        return Path(env_path).expanduser()
    return Path.home() / ".gitmeta" / "gitmeta.log"


def setup_logging(verbose: bool = False, console_level: Optional[str] = None, log_file: Optional[Path] = None) -> Path:
    """Setup logging with a per-run file plus a rotating aggregate log.

    - Per-run log file: <stem>-YYYYMMDD_HHMMSS.log
    - Stable aggregate log: <stem>.log (rotated)
    - Console logging disabled by default; enable via --verbose or --log-level
    Returns the aggregate log path.
    """
    provided = Path(log_file) if log_file else _default_log_path()
    if provided.is_dir():
        base_dir, base_stem = provided, "gitmeta"
        aggregate_path = base_dir / "gitmeta.log"
    else:
        base_dir, base_stem = provided.parent, provided.stem or "gitmeta"
        aggregate_path = provided
    base_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    per_run_path = base_dir / f"{base_stem}-{timestamp}.log"

    root = logging.getLogger()
    # Clear existing handlers to avoid duplication in tests / repeated invocations
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.setLevel(logging.DEBUG)

    file_fmt = logging.Formatter(
        fmt="%(asctime)s %(levelname)s [%(threadName)s] [%(name)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    run_file_handler = logging.FileHandler(str(per_run_path), encoding="utf-8")
    run_file_handler.setLevel(logging.DEBUG)
    run_file_handler.setFormatter(file_fmt)
    root.addHandler(run_file_handler)

    aggregate_handler = RotatingFileHandler(
        str(aggregate_path), maxBytes=1_000_000, backupCount=3, encoding="utf-8"
    )
    aggregate_handler.setLevel(logging.DEBUG)
    aggregate_handler.setFormatter(file_fmt)
    root.addHandler(aggregate_handler)

    # GitPython logs every command at debug level; keep it out of the console
    logging.getLogger("git").setLevel(logging.INFO)

    if verbose or console_level:
        level_map = {
            "debug": logging.DEBUG,
            "info": logging.INFO,
            "warning": logging.WARNING,
            "error": logging.ERROR,
        }
        console_handler = RichHandler(console=console, rich_tracebacks=True)
        console_handler.setLevel(level_map.get((console_level or "info").lower(), logging.INFO))
        console_handler.setFormatter(logging.Formatter("%(message)s"))
        root.addHandler(console_handler)

    return aggregate_path


def _maybe_print_log_notice(ctx: click.Context) -> None:
    """Inform user about logging destination and how to enable console logs."""
    if ctx.obj.get("verbose") or ctx.obj.get("console_level"):
        return
    console.print(
        f"[dim]Logs are written to {ctx.obj.get('log_path')}. Use -v or --log-level to enable console logs.[/dim]"
    )


def _orchestrator(ctx: click.Context) -> SyncOrchestrator:
    _maybe_print_log_notice(ctx)
    return SyncOrchestrator(ctx.obj.get("repo_path"))


def _fail(title: str, error: Exception, ctx: click.Context) -> None:
    console.print(f"\n❌ **{title}:** {error}", style="bold red")
    if not isinstance(error, MetaRepoError) and ctx.obj.get("verbose"):
        console.print_exception()
    # Debug stack trace to file logs for diagnostics
    logger.debug(title, exc_info=True)
    sys.exit(1)


def _source_option(commit: Optional[str], branch: Optional[str]) -> None:
    if commit and branch:
        raise click.UsageError("--commit and --branch are mutually exclusive")


@click.group()
@click.option(
    "--version",
    "-V",
    is_flag=True,
    callback=_print_version,
    expose_value=False,
    is_eager=True,
    help="Show version and exit.",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose console logging (INFO)")
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    default=None,
    help="Console log level. By default, console logging is disabled.",
)
@click.option(
    "--log-file",
    type=click.Path(path_type=Path),
    envvar="GITMETA_LOG",
    help="Log file or directory (env: GITMETA_LOG)",
)
@click.option(
    "--repo-path",
    type=click.Path(exists=True, path_type=Path),
    help="Path to the meta-repository (defaults to current directory)",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    log_level: Optional[str],
    log_file: Optional[Path],
    repo_path: Optional[Path],
) -> None:
    """gitmeta - inspect and synchronize the submodules of a meta-repository."""
    log_path = setup_logging(verbose, console_level=log_level, log_file=log_file)

    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["console_level"] = log_level
    ctx.obj["log_path"] = log_path
    ctx.obj["repo_path"] = repo_path.resolve() if isinstance(repo_path, Path) else None
    logger.debug(f"CLI init: cwd={Path.cwd()} repo_path={ctx.obj['repo_path']}")


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show every submodule of the current state and whether it is open."""
    try:
        orchestrator = _orchestrator(ctx)
        descriptors = orchestrator.registry.describe_all()

        console.print("\n📊 **Submodule Status**")
        if not descriptors:
            console.print("No submodules found.")
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Submodule", style="cyan")
        table.add_column("Recorded", style="green")
        table.add_column("URL", style="dim")
        table.add_column("State", style="yellow")
        table.add_column("Local HEAD", style="blue")

        for d in descriptors:
            if isinstance(d.visibility, Open):
                sub = d.visibility.git_manager
                head = sub.head_commit()
                state = "✅ Open" if head == d.sha else "⚠️ Open (out of sync)"
                head_text = head[:8] if head else "unborn"
                if head and sub.is_detached():
                    head_text += " (detached)"
            else:
                state, head_text = "📦 Closed", ""
            table.add_row(d.name, d.sha[:8], d.url or "", state, head_text)

        console.print(table)
    except Exception as e:
        _fail("Error getting status", e, ctx)


@cli.command()
@click.option("--commit", "commit", help="Read names from this commit instead of the current state")
@click.option("--branch", "branch", help="Read names from the tip of this branch")
@click.pass_context
def names(ctx: click.Context, commit: Optional[str], branch: Optional[str]) -> None:
    """List submodule names (index layered over HEAD by default)."""
    _source_option(commit, branch)
    try:
        resolver = _orchestrator(ctx).resolver
        if branch:
            found = resolver.names_for_branch(branch)
        else:
            found = resolver.names_at(commit or TreeSource.CURRENT)
        for name in sorted(found):
            click.echo(name)
    except Exception as e:
        _fail("Error listing submodules", e, ctx)


@cli.command()
@click.argument("submodules", nargs=-1)
@click.option("--commit", "commit", help="Read shas from this commit instead of the current state")
@click.option("--branch", "branch", help="Read shas from the tip of this branch")
@click.pass_context
def shas(ctx: click.Context, submodules: Tuple[str, ...], commit: Optional[str], branch: Optional[str]) -> None:
    """Print the recorded commit of each SUBMODULE (all when none given)."""
    _source_option(commit, branch)
    try:
        resolver = _orchestrator(ctx).resolver
        requested: Optional[List[str]] = list(submodules) or None
        if branch:
            result = resolver.shas_for_branch(branch, requested)
        elif commit:
            result = resolver.shas_for_commit(requested or sorted(resolver.names_for_commit(commit)), commit)
        elif requested:
            result = resolver.current_shas(requested)
        else:
            result = resolver.all_current_shas()
        for name, sha in result.items():
            click.echo(f"{sha} {name}")
    except Exception as e:
        _fail("Error reading submodule shas", e, ctx)


@cli.command()
@click.argument("from_commit")
@click.option("--to", "to_commit", default="HEAD", show_default=True, help="Commit to compare against")
@click.option(
    "--introduced",
    is_flag=True,
    help="Show the changes FROM_COMMIT itself introduced (against its first parent)",
)
@click.pass_context
def changes(ctx: click.Context, from_commit: str, to_commit: str, introduced: bool) -> None:
    """Show submodules added, changed or removed between FROM_COMMIT and HEAD."""
    try:
        classifier = _orchestrator(ctx).classifier
        if introduced:
            result = classifier.changes_in_commit(from_commit)
        else:
            result = classifier.submodule_changes(from_commit, to_commit)
        if result.is_empty:
            console.print("No submodule changes.")
            return
        for label, style, bucket in (
            ("Added", "green", result.added),
            ("Changed", "yellow", result.changed),
            ("Removed", "red", result.removed),
        ):
            if bucket:
                console.print(f"\n{label}:", style=f"bold {style}")
                for name in sorted(bucket):
                    console.print(f"  • {name}")
    except Exception as e:
        _fail("Error classifying changes", e, ctx)


_jobs_option = click.option(
    "--jobs",
    "-j",
    type=click.IntRange(min=1),
    default=DEFAULT_PARALLEL,
    show_default=True,
    envvar="GITMETA_JOBS",
    help="Number of submodules processed concurrently (env: GITMETA_JOBS)",
)
_timeout_option = click.option(
    "--timeout",
    type=float,
    default=None,
    envvar="GITMETA_FETCH_TIMEOUT",
    help="Seconds before a fetch is killed (env: GITMETA_FETCH_TIMEOUT)",
)
_fail_fast_option = click.option(
    "--fail-fast", is_flag=True, help="Stop at the first submodule that fails"
)


@cli.command()
@click.argument("submodules", nargs=-1)
@_jobs_option
@_timeout_option
@_fail_fast_option
@click.pass_context
def fetch(
    ctx: click.Context,
    submodules: Tuple[str, ...],
    jobs: int,
    timeout: Optional[float],
    fail_fast: bool,
) -> None:
    """Fetch branches and tags of open SUBMODULES (all open ones when none given)."""
    try:
        orchestrator = _orchestrator(ctx)
        outcomes = orchestrator.fetch_submodules(
            list(submodules) or None, parallel=jobs, timeout=timeout, fail_fast=fail_fast
        )
        _display_fetch_outcomes(outcomes)
        if any(not o.ok for o in outcomes):
            sys.exit(1)
    except (click.Abort, KeyboardInterrupt):
        console.print("\n\n🚫 **Operation cancelled by user**", style="bold yellow")
        sys.exit(130)
    except Exception as e:
        _fail("Fetch Error", e, ctx)


@cli.command()
@click.argument("submodules", nargs=-1)
@_jobs_option
@_timeout_option
@_fail_fast_option
@click.option("--no-fetch", is_flag=True, help="Do not fetch before checking out recorded commits")
@click.option(
    "--force",
    is_flag=True,
    help="Discard uncommitted changes in submodules (requires confirmation unless --yes)",
)
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation with --force")
@click.pass_context
def sync(
    ctx: click.Context,
    submodules: Tuple[str, ...],
    jobs: int,
    timeout: Optional[float],
    fail_fast: bool,
    no_fetch: bool,
    force: bool,
    yes: bool,
) -> None:
    """
    Reset open SUBMODULES to the commits and URLs the meta-repository records.

    Example: gitmeta sync -j 8
    """
    try:
        orchestrator = _orchestrator(ctx)
        if force and not yes:
            if not click.confirm("Uncommitted changes in open submodules will be lost. Continue?", default=False):
                console.print("Operation cancelled.")
                return

        report = orchestrator.sync_submodules(
            list(submodules) or None,
            parallel=jobs,
            fetch=not no_fetch,
            force=force,
            fail_fast=fail_fast,
            timeout=timeout,
        )
        _display_sync_report(report)
        if not report.ok:
            sys.exit(1)
    except (click.Abort, KeyboardInterrupt):
        console.print("\n\n🚫 **Operation cancelled by user**", style="bold yellow")
        logger.debug("Operation cancelled by user", exc_info=True)
        sys.exit(130)
    except Exception as e:
        _fail("Sync Error", e, ctx)


@cli.command()
@click.argument("submodules", nargs=-1)
@click.option("--session", "session_id", help="Only show backups made by this sync session")
@click.pass_context
def backups(ctx: click.Context, submodules: Tuple[str, ...], session_id: Optional[str]) -> None:
    """List backup branches that sync left in open SUBMODULES."""
    try:
        orchestrator = _orchestrator(ctx)
        found = orchestrator.list_backups(list(submodules) or None, session_id=session_id)

        console.print("\n🗄️  **Backup Branches**")
        if not found:
            console.print("No backup branches found.")
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Submodule", style="cyan")
        table.add_column("Session", style="green")
        table.add_column("Branch", style="yellow")
        for name, entries in found.items():
            for entry in entries:
                table.add_row(name, entry.session, entry.backup_branch)
        console.print(table)
    except Exception as e:
        _fail("Error listing backups", e, ctx)


@cli.command()
def version() -> None:
    """Print the current gitmeta version."""
    console.print(f"gitmeta {PACKAGE_VERSION}")


def _display_fetch_outcomes(outcomes: List[FetchOutcome]) -> None:
    if not outcomes:
        console.print("No open submodules.")
        return
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Submodule", style="cyan")
    table.add_column("Remote", style="green")
    table.add_column("Result")
    for o in outcomes:
        result = "✅ Fetched" if o.ok else f"❌ {o.error}"
        table.add_row(o.name, o.remote or "", result)
    console.print(table)


def _display_sync_report(report: SyncReport) -> None:
    if not report.outcomes:
        console.print("No open submodules.")
        return
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Submodule", style="cyan")
    table.add_column("Recorded", style="green")
    table.add_column("Previous HEAD", style="dim")
    table.add_column("Result")
    table.add_column("Notes", style="yellow")

    icons = {SyncStatus.UNCHANGED: "✅ Up to date", SyncStatus.UPDATED: "🔄 Updated"}
    for o in report.outcomes:
        notes = []
        if o.url_updated:
            notes.append("URL rewritten")
        if o.backup_branch:
            notes.append(f"local commits kept on {o.backup_branch}")
        result = icons.get(o.status) or f"❌ {o.error}"
        table.add_row(
            o.name,
            (o.recorded_sha or "")[:8],
            (o.previous_head or "")[:8],
            result,
            "; ".join(notes),
        )
    console.print(table)

    if report.ok:
        console.print(f"\n🎉 **{len(report.updated)} submodule(s) updated**", style="bold green")
    else:
        console.print(f"\n❌ **{len(report.failed)} submodule(s) failed**", style="bold red")


def main() -> None:
    """Main entry point for the CLI."""
    try:
        cli()
    except KeyboardInterrupt:
        console.print("\n\n🚫 **Operation cancelled by user**", style="bold yellow")
        logger.debug("Top-level cancellation (KeyboardInterrupt)", exc_info=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
