"""CLI entry point for the Highlightly sync.

Usage:
    python -m hlsync.ingestion.runner sync
    python -m hlsync.ingestion.runner sync --league "Premier League" --season 2024
    python -m hlsync.ingestion.runner sync --date 2025-02-15 --days 3 --stage matches
    python -m hlsync.ingestion.runner form
    python -m hlsync.ingestion.runner status
"""

import logging
from datetime import date, datetime, timedelta
from typing import List, Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from hlsync.ingestion.highlightly_client import PRIORITY_LEAGUES

app = typer.Typer(help="Highlightly → Supabase football sync CLI")
console = Console()


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _load_settings():
    from hlsync.config import get_settings

    try:
        return get_settings()
    except ValidationError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        console.print("[dim]Set SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY (or a .env file).[/dim]")
        raise typer.Exit(1)


def _parse_dates(date_str: Optional[str], days: int) -> list[date]:
    if date_str is None:
        return []
    try:
        start = datetime.strptime(date_str, "%Y-%m-%d").date()
    except ValueError:
        console.print(f"[red]Invalid date format: {date_str}. Use YYYY-MM-DD[/red]")
        raise typer.Exit(1)
    return [start + timedelta(days=i) for i in range(max(days, 1))]


@app.command()
def sync(
    league: Optional[List[str]] = typer.Option(None, "--league", help="League id or name (repeatable, default: all priority leagues)"),
    season: Optional[List[str]] = typer.Option(None, "--season", help="Season start year, e.g. 2024 (repeatable, default: current)"),
    date_str: Optional[str] = typer.Option(None, "--date", help="Only fetch matches from this date YYYY-MM-DD"),
    days: int = typer.Option(1, help="Number of days from --date"),
    stage: Optional[List[str]] = typer.Option(None, "--stage", help="Stage to run (repeatable, default: all)"),
    force: bool = typer.Option(False, "--force", help="Refetch events/lineups/statistics/head-to-head already stored"),
    page_size: Optional[int] = typer.Option(None, "--page-size", help="API page size"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Logging level (default: LOG_LEVEL or INFO)"),
) -> None:
    """Sync leagues, teams, matches and match details into Supabase."""
    settings = _load_settings()
    _setup_logging(log_level or settings.log_level)

    from hlsync.ingestion.highlightly_client import HighlightlyClient
    from hlsync.ingestion.sync import STAGES, SyncContext, resolve_leagues, run
    from hlsync.ingestion.writer import UpsertWriter

    try:
        leagues = resolve_leagues(league)
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    dates = _parse_dates(date_str, days)

    stages = [s for s in STAGES if not stage or s in stage]
    if stage and set(stage) - set(STAGES):
        console.print(f"[red]Unknown stage(s): {', '.join(sorted(set(stage) - set(STAGES)))}. "
                      f"Available: {', '.join(STAGES)}[/red]")
        raise typer.Exit(1)

    def on_progress(stage_name: str, message: str) -> None:
        if message == "starting":
            console.print(f"[cyan]▶ {stage_name}...[/cyan]")
        else:
            console.print(f"  [dim]{stage_name}[/dim] {message}")

    # Without --season each date is fetched under the season it falls in
    ctx = SyncContext(
        client=HighlightlyClient(settings),
        writer=UpsertWriter(),
        leagues=leagues,
        seasons=list(season or []),
        dates=[d.isoformat() for d in dates],
        page_size=page_size or settings.page_size,
        max_pages=settings.max_pages,
        force=force,
        progress=on_progress,
    )

    console.print(f"[bold]Leagues:[/bold] {', '.join(lg.name for lg in leagues)}")
    console.print(f"[bold]Seasons:[/bold] {', '.join(ctx.seasons)}")
    if dates:
        console.print(f"[bold]Dates:[/bold]   {dates[0]} → {dates[-1]} ({len(dates)} day(s))")
    console.print(f"[bold]Stages:[/bold]  {' → '.join(stages)}")
    console.print()

    try:
        stats = run(ctx, stages)
    except Exception as e:
        logging.getLogger(__name__).error("Sync failed: %s", e, exc_info=True)
        console.print(f"[red]Sync failed: {e}[/red]")
        raise typer.Exit(1)

    # Per-stage summary
    console.print()
    table = Table(title="Sync Summary")
    table.add_column("Stage")
    table.add_column("Status")
    table.add_column("Records", justify="right")
    table.add_column("Total", justify="right")
    for name, s in stats["stages"].items():
        color = "green" if s["status"] == "completed" else "red"
        table.add_row(name, f"[{color}]{s['status']}[/{color}]", str(s["records"]), str(s["total"]))
    console.print(table)

    # Per-league breakdown
    if stats.get("per_league"):
        console.print()
        league_table = Table(title="Per-League Breakdown")
        league_table.add_column("League")
        league_table.add_column("Processed", justify="right")
        league_table.add_column("Saved", justify="right")
        league_table.add_column("Teams", justify="right")
        league_table.add_column("Success", justify="right")
        league_table.add_column("Highlights", justify="right")
        league_table.add_column("Events", justify="right")
        league_table.add_column("Lineups", justify="right")
        league_table.add_column("H2H", justify="right")
        league_table.add_column("Standings", justify="right")
        league_table.add_column("Skipped")

        for name, ls in stats["per_league"].items():
            skips = ", ".join(f"{k}={v}" for k, v in sorted(ls["skips"].items())) or "-"
            league_table.add_row(
                name,
                str(ls["matches_processed"]),
                str(ls["matches_saved"]),
                str(ls["unique_teams"]),
                f"{ls['success_rate']:.1f}%",
                str(ls["highlights"]),
                str(ls["events"]),
                str(ls["lineups"]),
                str(ls["h2h"]),
                str(ls["standings"]),
                skips,
            )
        console.print(league_table)

    if stats["skips"]:
        console.print(
            "[yellow]Skipped records: "
            + ", ".join(f"{k}={v}" for k, v in sorted(stats["skips"].items()))
            + "[/yellow]"
        )
    if stats["errors"] > 0:
        console.print(f"\n[yellow]⚠ {stats['errors']} stage(s) failed. Check the sync_status table.[/yellow]")
    else:
        console.print("\n[green]✓ Sync complete.[/green]")


@app.command()
def form(
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Logging level (default: LOG_LEVEL or INFO)"),
) -> None:
    """Recompute team form from finished matches."""
    settings = _load_settings()
    _setup_logging(log_level or settings.log_level)

    from hlsync.ingestion.form import recompute_team_form
    from hlsync.ingestion.writer import UpsertWriter

    console.print("[cyan]▶ Recomputing team form...[/cyan]")
    try:
        stats = recompute_team_form(UpsertWriter())
    except Exception as e:
        logging.getLogger(__name__).error("Team form failed: %s", e, exc_info=True)
        console.print(f"[red]Team form failed: {e}[/red]")
        raise typer.Exit(1)

    color = "green" if stats["errors"] == 0 else "yellow"
    console.print(
        f"  [{color}]✓ matches={stats['matches_scanned']} "
        f"forms={stats['forms']} "
        f"written={stats['written']}[/{color}]"
    )
    if stats["errors"] and not stats["written"]:
        raise typer.Exit(1)


@app.command()
def status(
    log_level: str = typer.Option("WARNING", "--log-level", help="Logging level"),
) -> None:
    """Show table row counts and the last sync status per table."""
    _setup_logging(log_level)
    _load_settings()

    from hlsync import db
    from hlsync.ingestion.writer import CONFLICT_KEYS

    try:
        counts = {t: db.count_rows(t) for t in CONFLICT_KEYS}
        sync_rows = db.select_rows("sync_status")
    except Exception as e:
        console.print(f"[red]Could not reach Supabase: {e}[/red]")
        raise typer.Exit(1)

    table = Table(title="Row Counts")
    table.add_column("Table")
    table.add_column("Rows", justify="right")
    for t, n in counts.items():
        table.add_row(t, str(n))
    console.print(table)

    if sync_rows:
        console.print()
        status_table = Table(title="Sync Status")
        status_table.add_column("Table")
        status_table.add_column("Status")
        status_table.add_column("Synced", justify="right")
        status_table.add_column("Total", justify="right")
        status_table.add_column("Last sync")
        status_table.add_column("Error")
        for r in sorted(sync_rows, key=lambda r: r["table_name"]):
            color = {"completed": "green", "failed": "red"}.get(r.get("status"), "yellow")
            status_table.add_row(
                r["table_name"],
                f"[{color}]{r.get('status')}[/{color}]",
                str(r.get("records_synced") or 0),
                str(r.get("total_records") or 0),
                str(r.get("last_sync") or "-"),
                (r.get("error_message") or "")[:80],
            )
        console.print(status_table)
    else:
        console.print("[dim]No sync runs recorded yet.[/dim]")


@app.command()
def leagues() -> None:
    """List the priority leagues the sync covers."""
    table = Table(title="Priority Leagues")
    table.add_column("#", justify="right")
    table.add_column("Id", justify="right")
    table.add_column("League")
    table.add_column("Country")
    for i, lg in enumerate(PRIORITY_LEAGUES, start=1):
        table.add_row(str(i), str(lg.id), lg.name, lg.country)
    console.print(table)


if __name__ == "__main__":
    app()
