from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from runhistory.core.config import ConfigView, HistoryConfig, default_config_path, load_history_config
from runhistory.core.logger import build_cli_logger, log_event
from runhistory.core.runlist import RunList
from runhistory.core.state.db import Db
from runhistory.core.state.models import RunRecord
from runhistory.utils.io import runs_to_feed, write_json, write_jsonl

app = typer.Typer(no_args_is_help=True)
console = Console()


def _load_config(config_path: Optional[Path]) -> HistoryConfig:
    path = config_path or default_config_path()
    if path is None:
        return HistoryConfig.default()
    return load_history_config(path)


def _require_db(db_path: Path) -> Path:
    if not db_path.exists():
        raise FileNotFoundError(f"history db not found: {db_path}")
    return db_path


def _parse_time_ms(value: str) -> int:
    """
    Accepts ISO dates/datetimes ("2024-05-01", "2024-05-01T10:00:00Z").
    Naive values are taken as UTC.
    """
    s = value.strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError as exc:
        raise ValueError(f"invalid timestamp: {value!r}") from exc
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def _build_runlist(db: Db, cfg: HistoryConfig, jobs: List[str], view: Optional[str]) -> RunList:
    if view:
        cview = ConfigView(view=cfg.get_view(view), db=db)
        if not jobs:
            return RunList.from_view(cview)
        names = cview.view.jobs + list(jobs)
    else:
        names = list(jobs) or db.list_jobs()
    # a job named twice would otherwise be merged twice
    names = list(dict.fromkeys(names))
    if len(names) == 1:
        return RunList.from_job(db.get_job(names[0]))
    return RunList.from_jobs(db.get_jobs(names))


def _render_runs_table(title: str, runs: List[RunRecord]) -> None:
    t = Table(title=title)
    t.add_column("job", style="cyan")
    t.add_column("#", justify="right")
    t.add_column("run_id")
    t.add_column("result")
    t.add_column("node")
    t.add_column("started_at_utc")
    t.add_column("regression")
    for r in runs:
        if r.building:
            result = "[yellow]building[/yellow]"
        elif r.result == "success":
            result = "[green]success[/green]"
        else:
            result = f"[red]{r.result}[/red]"
        t.add_row(
            r.job,
            str(r.number),
            r.run_id,
            result,
            r.node or "",
            r.started_at_iso,
            "yes" if r.is_worse else "",
        )
    console.print(t)


def _fail(exc: Exception) -> typer.Exit:
    msg = exc.args[0] if isinstance(exc, KeyError) and exc.args else str(exc)
    console.print(f"[red]Error:[/red] {msg}")
    return typer.Exit(code=2)


@app.command()
def runs(
    jobs: List[str] = typer.Argument(None, help="Job names (default: all jobs)"),
    view: Optional[str] = typer.Option(None, "--view", help="View name from history.yaml"),
    failures: bool = typer.Option(False, "--failures", help="Only non-successful runs"),
    regressions: bool = typer.Option(False, "--regressions", help="Only runs worse than their predecessor"),
    node: Optional[str] = typer.Option(None, "--node", help="Only runs executed on this node"),
    since: Optional[str] = typer.Option(None, "--since", help="Start time, inclusive (ISO)"),
    until: Optional[str] = typer.Option(None, "--until", help="End time, exclusive (ISO)"),
    new: bool = typer.Option(False, "--new", help="Only recent completed runs (feed window)"),
    limit: Optional[int] = typer.Option(None, "--limit", help="Max rows to show"),
    db_path: Optional[Path] = typer.Option(None, "--db", help="SQLite DB path"),
    config_path: Optional[Path] = typer.Option(None, "--config", help="Path to history.yaml"),
    verbose: bool = typer.Option(False, "--verbose", help="Verbose logging"),
):
    """
    List runs of one or more jobs, newest first.
    """
    try:
        cfg = _load_config(config_path)
        db_path = _require_db(db_path or cfg.db_path)
        logger = build_cli_logger(db_path.parent / "runhistory.log", verbose=verbose)

        with Db(db_path) as db:
            rl = _build_runlist(db, cfg, jobs or [], view)
            if new:
                rl.new_builds(min_count=cfg.feed.min_count, window_days=cfg.feed.window_days)
            if since or until:
                start = _parse_time_ms(since) if since else 0
                end = _parse_time_ms(until) if until else 2**63 - 1
                rl.by_timestamp(start, end)
            if failures:
                rl.failure_only()
            if regressions:
                rl.regression_only()
            if node:
                rl.node(node)
            if limit is not None:
                rl.limit(lambda index, r: index < limit)

            rows = list(rl)
            log_event(logger, {"event": "cli.runs", "jobs": jobs or [], "view": view, "rows": len(rows)})
    except (FileNotFoundError, KeyError, ValueError) as exc:
        raise _fail(exc)

    _render_runs_table("Runs", rows)


@app.command()
def jobs(
    db_path: Optional[Path] = typer.Option(None, "--db", help="SQLite DB path"),
    config_path: Optional[Path] = typer.Option(None, "--config", help="Path to history.yaml"),
):
    """
    List stored jobs with their run counts.
    """
    try:
        cfg = _load_config(config_path)
        db_path = _require_db(db_path or cfg.db_path)
    except (FileNotFoundError, ValueError) as exc:
        raise _fail(exc)

    t = Table(title="Jobs")
    t.add_column("job", style="cyan")
    t.add_column("runs", justify="right")
    t.add_column("last run")
    t.add_column("first run")
    with Db(db_path) as db:
        for name in db.list_jobs():
            rl = RunList.from_job(db.get_job(name))
            last = rl.get_last_build()
            first = rl.get_first_build()
            t.add_row(
                name,
                str(rl.size()),
                f"#{last.number} {last.started_at_iso}" if last else "",
                f"#{first.number} {first.started_at_iso}" if first else "",
            )
    console.print(t)


@app.command()
def feed(
    jobs: List[str] = typer.Argument(None, help="Job names (default: all jobs)"),
    view: Optional[str] = typer.Option(None, "--view", help="View name from history.yaml"),
    out: Optional[Path] = typer.Option(None, "--out", help="Write feed to this file instead of stdout"),
    jsonl: bool = typer.Option(False, "--jsonl", help="One JSON object per line"),
    db_path: Optional[Path] = typer.Option(None, "--db", help="SQLite DB path"),
    config_path: Optional[Path] = typer.Option(None, "--config", help="Path to history.yaml"),
):
    """
    Export recent completed runs (at least feed.min_count) as JSON.
    """
    try:
        cfg = _load_config(config_path)
        db_path = _require_db(db_path or cfg.db_path)
        logger = build_cli_logger(db_path.parent / "runhistory.log")

        with Db(db_path) as db:
            rl = _build_runlist(db, cfg, jobs or [], view)
            rl.new_builds(min_count=cfg.feed.min_count, window_days=cfg.feed.window_days)
            rows = list(rl)
    except (FileNotFoundError, KeyError, ValueError) as exc:
        raise _fail(exc)

    title = view or ",".join(jobs or []) or "all"
    log_event(logger, {"event": "cli.feed", "title": title, "entries": len(rows), "out": str(out) if out else None})

    if out is None:
        doc = runs_to_feed(title, rows)
        if jsonl:
            for entry in doc["entries"]:
                console.print_json(data=entry, indent=None)
        else:
            console.print_json(data=doc)
        return

    if jsonl:
        write_jsonl(out, rows)
    else:
        write_json(out, runs_to_feed(title, rows))
    console.print(f"[green]OK[/green] entries={len(rows)} out={out}")
