"""Command-line interface for the unified activity log."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import List, Optional

import typer

from .config import ActivityLogSettings
from .db import database_connection
from .models import (
    ActivityFilters,
    ActivityKey,
    ConflictResolution,
    MergeStrategy,
    SourceType,
    activity_key,
)
from .paths import get_db_path, get_log_path
from .reporting import SummaryPrinter, format_activity, format_conflict, format_stats
from .service import UnifiedActivityService

app = typer.Typer(help="Unified log of manual, automatic and pomodoro activity.")

DB_OPTION_HELP = "Location of the activity SQLite database."


@app.callback(no_args_is_help=True)
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logs."),
    log_to_file: bool = typer.Option(
        False, "--log-file", help="Also write logs to the application log file."
    ),
) -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_to_file:
        handlers.append(logging.FileHandler(get_log_path(), encoding="utf-8"))
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        handlers=handlers,
    )


@app.command("list")
def list_activities(
    date: Optional[str] = typer.Option(
        None, "--date", help="Date (YYYY-MM-DD) to list. Defaults to today."
    ),
    source: Optional[List[SourceType]] = typer.Option(
        None, "--source", help="Restrict to one or more source types."
    ),
    db_path: Optional[Path] = typer.Option(None, "--db", path_type=Path, help=DB_OPTION_HELP),
) -> None:
    """List the activities of one day across every source."""
    start, end = _day_window(date)
    filters = ActivityFilters(source_types=source) if source else None
    with database_connection(db_path or get_db_path()) as conn:
        activities = UnifiedActivityService(conn).get_unified_activities(start, end, filters)
    if not activities:
        typer.echo("No activity recorded for the selected day.")
        return
    for activity in activities:
        typer.echo(format_activity(activity))


@app.command()
def summary(
    date: Optional[str] = typer.Option(
        None, "--date", help="Date (YYYY-MM-DD) to summarize. Defaults to today."
    ),
    db_path: Optional[Path] = typer.Option(None, "--db", path_type=Path, help=DB_OPTION_HELP),
) -> None:
    """Print a high-level summary for a specific day."""
    start, _ = _day_window(date)
    with database_connection(db_path or get_db_path()) as conn:
        SummaryPrinter(UnifiedActivityService(conn)).print_daily_summary(start)


@app.command()
def stats(
    start: str = typer.Option(..., "--start", help="Window start (ISO-8601)."),
    end: str = typer.Option(..., "--end", help="Window end (ISO-8601, exclusive)."),
    db_path: Optional[Path] = typer.Option(None, "--db", path_type=Path, help=DB_OPTION_HELP),
) -> None:
    """Print statistics for an arbitrary window."""
    with database_connection(db_path or get_db_path()) as conn:
        result = UnifiedActivityService(conn).get_unified_activity_stats(start, end)
    for line in format_stats(result):
        typer.echo(line)


@app.command()
def conflicts(
    date: Optional[str] = typer.Option(
        None, "--date", help="Date (YYYY-MM-DD) to check. Defaults to today."
    ),
    db_path: Optional[Path] = typer.Option(None, "--db", path_type=Path, help=DB_OPTION_HELP),
) -> None:
    """Show overlapping activities of the same source."""
    start, end = _day_window(date)
    with database_connection(db_path or get_db_path()) as conn:
        found = UnifiedActivityService(conn).get_activity_conflicts(start, end)
    if not found:
        typer.echo("No conflicts found.")
        return
    for conflict in found:
        typer.echo(format_conflict(conflict))


@app.command()
def merge(
    targets: List[str] = typer.Argument(..., help="Activities as SOURCE:ID, e.g. manual:12."),
    strategy: MergeStrategy = typer.Option(
        MergeStrategy.LONGEST, "--strategy", help="Which activity survives the merge."
    ),
    db_path: Optional[Path] = typer.Option(None, "--db", path_type=Path, help=DB_OPTION_HELP),
) -> None:
    """Merge activities of one source into a single record."""
    keys = [_parse_key(target) for target in targets]
    with database_connection(db_path or get_db_path()) as conn:
        result = UnifiedActivityService(conn).merge_activities_by_id(keys, strategy)
    if not result.success:
        typer.echo(f"Merge failed: {result.error}", err=True)
        raise typer.Exit(code=1)
    if result.merged_activity is not None:
        typer.echo(f"Merged into: {format_activity(result.merged_activity)}")


@app.command()
def resolve(
    targets: List[str] = typer.Argument(..., help="Conflicting activities as SOURCE:ID."),
    resolution: ConflictResolution = typer.Option(
        ConflictResolution.ADJUST_TIME, "--resolution", help="How to settle the overlap."
    ),
    db_path: Optional[Path] = typer.Option(None, "--db", path_type=Path, help=DB_OPTION_HELP),
) -> None:
    """Resolve an overlap by merging, deleting or trimming activities."""
    keys = [_parse_key(target) for target in targets]
    with database_connection(db_path or get_db_path()) as conn:
        result = UnifiedActivityService(conn).resolve_conflict(keys, resolution)
    if not result.success:
        typer.echo(f"Resolution failed: {result.error}", err=True)
        raise typer.Exit(code=1)
    for entry in result.resolved:
        typer.echo(f"{entry.action:<6} {format_activity(entry.activity)}")


@app.command()
def delete(
    targets: List[str] = typer.Argument(..., help="Activities as SOURCE:ID, e.g. automatic:7."),
    db_path: Optional[Path] = typer.Option(None, "--db", path_type=Path, help=DB_OPTION_HELP),
) -> None:
    """Delete one or more activities."""
    keys = [_parse_key(target) for target in targets]
    with database_connection(db_path or get_db_path()) as conn:
        result = UnifiedActivityService(conn).bulk_delete_activities(keys)
    typer.echo(f"Deleted {result.deleted}, failed {result.failed}.")
    if not result.success:
        raise typer.Exit(code=1)


@app.command()
def search(
    query: str = typer.Argument("", help="Text to look for in titles, apps and domains."),
    db_path: Optional[Path] = typer.Option(None, "--db", path_type=Path, help=DB_OPTION_HELP),
) -> None:
    """Search recent activities."""
    with database_connection(db_path or get_db_path()) as conn:
        activities = UnifiedActivityService(conn).search_activities(query)
    if not activities:
        typer.echo("No matching activities.")
        return
    for activity in activities:
        typer.echo(format_activity(activity))


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Interface to bind the API."),
    port: int = typer.Option(8765, "--port", min=1, max=65535, help="TCP port for the API."),
    db_path: Optional[Path] = typer.Option(None, "--db", path_type=Path, help=DB_OPTION_HELP),
    strict_bulk: bool = typer.Option(
        False,
        "--strict-bulk/--lenient-bulk",
        help="Roll back a whole bulk operation when any item fails.",
    ),
    browse_days: float = typer.Option(
        30.0, "--browse-days", min=0, help="Lookback in days for an empty search."
    ),
    search_days: float = typer.Option(
        90.0, "--search-days", min=0, help="Lookback in days for a text search."
    ),
    merge_gap: float = typer.Option(
        300.0, "--merge-gap", min=0, help="Largest gap in seconds inside a mergeable group."
    ),
    auto_merge_gap: float = typer.Option(
        60.0, "--auto-merge-gap", min=0, help="Largest gap in seconds joined by auto-merge."
    ),
) -> None:
    """Start the local JSON API."""
    from .server_runner import run_api

    run_api(
        host=host,
        port=port,
        db_path=db_path or get_db_path(),
        settings=ActivityLogSettings.from_options(
            strict_bulk=strict_bulk,
            browse_days=browse_days,
            search_days=search_days,
            merge_gap_seconds=merge_gap,
            auto_merge_seconds=auto_merge_gap,
        ),
    )


def _day_window(value: Optional[str]) -> tuple[datetime, datetime]:
    if value:
        try:
            day = datetime.strptime(value, "%Y-%m-%d")
        except ValueError as exc:
            raise typer.BadParameter("Expected a date in YYYY-MM-DD format.") from exc
    else:
        day = datetime.now()
    # Local midnight; naive values would be read as UTC.
    start = day.replace(hour=0, minute=0, second=0, microsecond=0).astimezone()
    return start, start + timedelta(days=1)


def _parse_key(value: str) -> ActivityKey:
    source, _, record_id = value.partition(":")
    try:
        return activity_key(int(record_id), source)
    except ValueError as exc:
        raise typer.BadParameter(f"Invalid activity reference {value!r}; use SOURCE:ID.") from exc
