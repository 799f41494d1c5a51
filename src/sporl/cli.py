"""CLI interface for sporl."""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Coroutine
from datetime import date
from typing import Any, TypeVar

import httpx
import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from sporl.config import AppConfig, config_exists, ensure_dirs, load_config, save_config
from sporl.logging import setup_logging
from sporl.releases.calendar import WeekOfYear, build_week, parse_date, week_range
from sporl.spotify.auth import SpotifyAuthError, authorize
from sporl.spotify.client import SpotifyAPIError
from sporl.storage import ArtistReleaseStore
from sporl.storage.models import ReleaseKinds, parse_release_kinds

app = typer.Typer(
    name="sporl",
    help="Track new releases from the artists you follow on Spotify, week by week.",
    add_completion=False,
)
console = Console()

T = TypeVar("T")


def main() -> None:
    """Entry point that wraps ``app()`` with a clean KeyboardInterrupt handler."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("Interrupted.")
        raise SystemExit(130) from None


@app.callback()
def _root(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Echo log events to stderr"),
) -> None:
    ensure_dirs()
    if not config_exists():
        defaults = AppConfig()
        save_config(defaults)
        console.print(
            f"[dim]Wrote default settings to {escape(str(defaults.base_dir / 'config.toml'))}.[/dim]  "
            "Set your Spotify app: sporl config set spotify.client_id <id>",
            highlight=False,
        )
    cfg = load_config()
    setup_logging(cfg.general.log_level, cfg.log_dir, verbose=verbose)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro: Coroutine[Any, Any, T]) -> T:
    """Run *coro*; a missing or unusable token ends the command with exit code 1."""
    try:
        return asyncio.run(coro)
    except SpotifyAuthError as exc:
        console.print(f"[red]Authentication failed:[/red] {escape(str(exc))}")
        console.print("Run [bold]sporl auth[/bold] to log in again.")
        raise typer.Exit(1) from None


def _kinds_option(value: str) -> ReleaseKinds:
    try:
        return parse_release_kinds(value)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from None


def _reference_date(value: str | None) -> date:
    """Parse a --release-date value; an empty or unparseable value means today."""
    return parse_date(value)


def _week_span(week: WeekOfYear) -> str:
    return f"{week.start.isoformat()} - {week.end.isoformat()}"


def _progress_printer(message: str) -> None:
    console.print(f"[dim]{escape(message)}[/dim]", highlight=False)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command()
def auth(
    no_browser: bool = typer.Option(False, "--no-browser", help="Only print the login URL"),
) -> None:
    """Log in to Spotify (Authorization Code flow with PKCE)."""
    cfg = load_config()
    if not cfg.is_spotify_configured():
        console.print("[red]spotify.client_id is not set.[/red]  Run: sporl config set spotify.client_id <id>")
        raise typer.Exit(1)

    def _show_url(url: str) -> None:
        console.print(f"Open this URL to log in:\n[bold]{url}[/bold]", soft_wrap=True)

    _run(authorize(cfg.spotify, cfg.token_path, open_browser=not no_browser, on_url=_show_url))
    console.print("[green]Authentication successful.[/green]")


artists_app = typer.Typer(name="artists", help="List and update followed artists.", add_completion=False)
app.add_typer(artists_app)


@artists_app.callback(invoke_without_command=True)
def artists_list(
    ctx: typer.Context,
    search: str = typer.Option("", "--search", "-s", help="Only show artists whose name contains TEXT"),
) -> None:
    """Show cached followed artists, sorted by name."""
    if ctx.invoked_subcommand is not None:
        return

    cfg = load_config()
    store = ArtistReleaseStore.load_or_empty(cfg.artists_path)
    artists = sorted(store.all_artists(), key=lambda a: a.name.lower())
    if search:
        term = search.lower()
        artists = [a for a in artists if term in a.name.lower()]

    if not artists:
        console.print("[yellow]No artists found.[/yellow]  Run: sporl artists update")
        return

    table = Table("Name", "Genres")
    for artist in artists:
        table.add_row(artist.name, ", ".join(artist.genres[:3]))
    console.print(table)


@artists_app.command(name="update")
def artists_update(
    force: bool = typer.Option(False, "--force", "-f", help="Refetch even when the cache looks current"),
) -> None:
    """Fetch followed artists from Spotify into the cache."""
    from sporl.sync.artists import ArtistSyncEngine

    cfg = load_config()
    try:
        with console.status("Fetching followed artists..."):
            summary = _run(ArtistSyncEngine(cfg).sync(force=force))
    except (SpotifyAPIError, httpx.HTTPError) as exc:
        console.print(f"[red]Spotify error:[/red] {escape(str(exc))}")
        raise typer.Exit(1) from None
    console.print(f"[green]{escape(summary.message)}[/green]")


releases_app = typer.Typer(name="releases", help="Show and update weekly releases.", add_completion=False)
app.add_typer(releases_app)


@releases_app.callback(invoke_without_command=True)
def releases_list(
    ctx: typer.Context,
    previous_weeks: int = typer.Option(0, "--previous-weeks", "-p", min=0, help="Also show N earlier weeks"),
    release_date: str = typer.Option("", "--release-date", "-d", help="Reference date (YYYY-MM-DD)"),
) -> None:
    """Show cached releases per release week, most recent week first."""
    if ctx.invoked_subcommand is not None:
        return
    from sporl.sync.engine import ReleaseSyncEngine

    cfg = load_config()
    engine = ReleaseSyncEngine(cfg)

    def _missing(week: WeekOfYear) -> None:
        console.print(
            f"[yellow]No releases cached for week {week.label()}.[/yellow]  Run: sporl releases update",
        )

    reference = _reference_date(release_date or None)
    for week, releases in engine.query_weeks(reference, previous_weeks, on_missing=_missing):
        table = Table("Date", "Name", "Artist", "Type", title=f"Week {week.label()}  ({_week_span(week)})")
        for release in releases:
            table.add_row(release.release_date, release.title, release.first_artist_name, str(release.kind))
        console.print(table)


@releases_app.command(name="update")
def releases_update(
    force: bool = typer.Option(False, "--force", "-f", help="Ignore saved progress and refetch every artist"),
    kinds: str = typer.Option(
        "album,single",
        "--type",
        "-t",
        help="Release types: album, single, appears_on, compilation or all (comma separated)",
    ),
) -> None:
    """Fetch the newest releases of every cached artist and rebuild the week cache."""
    from sporl.sync.engine import ReleaseSyncEngine

    selected = _kinds_option(kinds)
    cfg = load_config()
    engine = ReleaseSyncEngine(cfg, on_progress=_progress_printer)
    summary = _run(engine.sync(force=force, kinds=selected))

    color = "green" if summary.completed else "yellow"
    console.print(f"[{color}]{escape(summary.message)}[/{color}]")


@app.command()
def playlist(
    previous_weeks: int = typer.Option(0, "--previous-weeks", "-p", min=0, help="Also build N earlier weeks"),
    release_date: str = typer.Option("", "--release-date", "-d", help="Reference date (YYYY-MM-DD)"),
    kinds: str = typer.Option("album,single", "--type", "-t", help="Release types, one playlist per type"),
) -> None:
    """Create one playlist per release week and type from the cached releases."""
    from sporl.playlist import PlaylistBuilder, PlaylistStatus

    selected = _kinds_option(kinds)
    cfg = load_config()
    builder = PlaylistBuilder(cfg, on_progress=_progress_printer)
    reference = _reference_date(release_date or None)

    try:
        results = _run(builder.build(reference, previous_weeks, selected.ordered()))
    except (SpotifyAPIError, httpx.HTTPError) as exc:
        console.print(f"[red]Spotify error:[/red] {escape(str(exc))}")
        raise typer.Exit(1) from None

    created = [r for r in results if r.status == PlaylistStatus.CREATED]
    console.print(f"[green]{len(created)} playlist(s) created.[/green]")
    failed = [r.name for r in results if r.status == PlaylistStatus.FAILED]
    if failed:
        console.print(f"[yellow]Failed: {escape(', '.join(failed))}[/yellow]")


@app.command()
def info(
    release_week: bool = typer.Option(False, "--release-week", help="Show the current release week"),
    artists: bool = typer.Option(False, "--artists", help="Compare cached and followed artist counts"),
    previous_weeks: int = typer.Option(-1, "--previous-weeks", "-p", help="List the dates of N earlier weeks"),
    release_date: str = typer.Option("", "--release-date", "-d", help="Show the release week of a date"),
) -> None:
    """Show release-week and cache information."""
    today = date.today()

    if release_week:
        week = build_week(today)
        console.print(f"Current release week: [bold]{week.label()}[/bold]")
        console.print(f"Current release week dates: {_week_span(week)}")
        return

    if artists:
        from sporl.sync.engine import ReleaseSyncEngine

        cached, remote = _run(ReleaseSyncEngine(load_config()).artist_count())
        console.print(f"Artist count cache:  {cached}")
        console.print(f"Artist count remote: {remote}")
        if cached < remote:
            console.print(f"[yellow]Artist cache is outdated by {remote - cached}.[/yellow]  Run: sporl artists update")
        return

    if previous_weeks >= 0:
        for week in week_range(today, previous_weeks):
            console.print(f"Release week {week.label()}: {_week_span(week)}")
        return

    if release_date:
        day = _reference_date(release_date)
        console.print(f"{day.isoformat()} is in release week [bold]{build_week(day).label()}[/bold].")
        return

    console.print("[dim]Nothing to show. Try --release-week, --artists, --previous-weeks or --release-date.[/dim]")


# ---------------------------------------------------------------------------
# Logs
# ---------------------------------------------------------------------------


@app.command()
def logs(
    tail_lines: int = typer.Option(50, "--lines", "-n", help="Number of lines to show"),
    sync: bool = typer.Option(False, "--sync", help="Show sync.log (JSON) instead of sporl.log"),
) -> None:
    """Show recent log output."""
    filename = "sync.log" if sync else "sporl.log"
    log_file = load_config().log_dir / filename
    if not log_file.exists():
        console.print(f"[yellow]Log file not found:[/yellow] {log_file}")
        raise typer.Exit(1)

    with open(log_file, encoding="utf-8") as fh:
        last_lines = deque(fh, maxlen=tail_lines)

    if not last_lines:
        console.print("[dim]Log file is empty.[/dim]")
        return

    for line in last_lines:
        line = line.rstrip("\n")
        if line:
            console.print(line, style=_log_line_style(line), highlight=False, markup=False)


def _log_line_style(line: str) -> str | None:
    """Return a Rich style string based on the log level found in *line*.

    Matches structlog formats only:
    - ConsoleRenderer: ``[error    ]``
    - JSONRenderer: ``"level": "error"``
    """
    lower = line.lower()
    if "[error" in lower or "[critical" in lower or '"level": "error"' in lower or '"level": "critical"' in lower:
        return "red"
    if "[warning" in lower or '"level": "warning"' in lower:
        return "yellow"
    if "[debug" in lower or '"level": "debug"' in lower:
        return "dim"
    return None


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


config_app = typer.Typer(name="config", help="View and modify configuration.", add_completion=False)
app.add_typer(config_app)


def _sections(cfg: AppConfig) -> dict[str, Any]:
    return {"general": cfg.general, "spotify": cfg.spotify, "sync": cfg.sync}


@config_app.command(name="show")
def config_show() -> None:
    """Show current configuration."""
    cfg = load_config()

    console.print("\n[bold]Current Configuration[/bold]\n")
    for name, section in _sections(cfg).items():
        console.print(f"[bold cyan]\\[{name}][/bold cyan]")
        values = section.model_dump(mode="python")
        width = max(len(key) for key in values)
        for key, value in values.items():
            shown = value if value != "" else "[dim](not set)[/dim]"
            console.print(f"  {key:<{width}} = {shown}")
        console.print()


@config_app.command(name="set")
def config_set(
    key: str = typer.Argument(help="Dotted key, e.g. sync.batch_size"),
    value: str = typer.Argument(help="New value"),
) -> None:
    """Set a configuration value (e.g. sporl config set spotify.client_id abc123)."""
    parts = key.split(".", maxsplit=1)
    if len(parts) != 2:
        console.print("[red]Key must be in section.field format (e.g. sync.batch_size).[/red]")
        raise typer.Exit(1)

    section_name, field_name = parts

    cfg = load_config()
    section_map = _sections(cfg)

    if section_name not in section_map:
        console.print(f"[red]Unknown section:[/red] {section_name}")
        console.print(f"[dim]Valid sections: {', '.join(section_map)}[/dim]")
        raise typer.Exit(1)

    section_model = section_map[section_name]
    fields = type(section_model).model_fields
    if field_name not in fields:
        console.print(f"[red]Unknown field:[/red] {section_name}.{field_name}")
        console.print(f"[dim]Valid fields: {', '.join(fields)}[/dim]")
        raise typer.Exit(1)

    try:
        coerced = _coerce_value(value, fields[field_name].annotation)
        section_data = section_model.model_dump(mode="python")
        section_data[field_name] = coerced
        new_section = type(section_model)(**section_data)
    except (ValueError, TypeError) as exc:
        console.print(f"[red]Invalid value:[/red] {escape(str(exc))}")
        raise typer.Exit(1) from None

    setattr(cfg, section_name, new_section)
    save_config(cfg)
    console.print(f"[green]Set[/green] {key} = {coerced}")


def _coerce_value(raw: str, field_type: Any) -> object:
    """Coerce a string value to the expected field type."""
    if field_type is bool:
        if raw.lower() in ("true", "1", "yes"):
            return True
        if raw.lower() in ("false", "0", "no"):
            return False
        msg = f"Cannot convert '{raw}' to bool (use true/false)"
        raise ValueError(msg)

    if field_type is int:
        return int(raw)

    return raw
