"""CLI interface for ggdu."""

from __future__ import annotations

import json
import logging
import sys
from dataclasses import dataclass
from pathlib import Path

import click

from ggdu.core.aggregator import StalenessPolicy
from ggdu.core.engine import RefreshEngine
from ggdu.core.lister import GDriveLister, Lister, ListerError
from ggdu.core.scheduler import EventKind, RefreshJob, RefreshScheduler
from ggdu.models.node import Folder
from ggdu.settings import DEFAULTS, RefreshConfig, Settings, SettingsError
from ggdu.storage import SnapshotStore
from ggdu.utils import format_date, format_relative_time, format_size, progressbar

log = logging.getLogger(__name__)

_BROWSE_HELP = "N enter  .. up  l N refresh  x N deep refresh  f force next  r refresh here  q quit"


def _setup_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")


@dataclass
class _Session:
    root: Folder
    engine: RefreshEngine
    store: SnapshotStore


def _build_lister(config: RefreshConfig) -> Lister:
    lister = GDriveLister(
        command=config.lister_command,
        max_entries=config.max_entries,
        timeout=config.lister_timeout,
    )
    if not lister.is_available():
        log.warning("%s not found on PATH, only cached data can be shown", config.lister_command)
    return lister


def _open_session(ctx: click.Context) -> _Session:
    config = RefreshConfig.from_settings(Settings.instance())
    snapshot = ctx.obj.get("snapshot") if ctx.obj else None
    store = SnapshotStore(snapshot or config.snapshot_path)
    policy = StalenessPolicy(horizon=config.staleness_horizon)
    root = store.load(policy)
    engine = RefreshEngine(_build_lister(config), policy)
    return _Session(root=root, engine=engine, store=store)


def _fail(message: str) -> None:
    click.echo(click.style(message, fg="red"), err=True)
    sys.exit(1)


def _navigate(session: _Session, path: str, fetch: bool) -> Folder:
    """Walk from the root to *path*, fetching stale folders on the way if asked."""
    current = session.root

    def fetch_step(folder: Folder) -> None:
        nonlocal current
        current = folder
        session.engine.ensure_data(folder)

    try:
        folder = session.root.resolve(path, fetch_step if fetch else None)
    except ListerError as exc:
        _fail(f"Failed to list {current.path}: {exc}")
    if folder is None:
        _fail(f"No such folder: {path}")
    return folder


def _share(part: int, whole: int) -> float:
    return part / whole if whole >= 1 else 0.0


def _format_row(size: int, total: int, name: str) -> str:
    return f"{format_size(size):>8s} {progressbar(_share(size, total), 10)} {name}"


def _folder_label(folder: Folder, policy: StalenessPolicy) -> str:
    label = folder.name + "/"
    if folder.never_fetched:
        return label + click.style(" ?", fg="bright_black")
    if policy.is_stale(folder):
        return label + click.style(" (stale)", fg="yellow")
    return label


def _echo_listing(folder: Folder, policy: StalenessPolicy, numbered: bool = False) -> None:
    click.echo(f"--- {folder.path} ({format_size(folder.size)}) ---")
    if numbered and folder.parent is not None:
        click.echo(f"   0 {'':8s} {'':10s} ..")
    for i, child in enumerate(folder.sorted_folders(), 1):
        row = _format_row(child.size, folder.size, _folder_label(child, policy))
        if numbered:
            marker = ">" if folder.cursor == i else " "
            row = f"{marker}{i:3d} {row}"
        click.echo(row)
    for file in folder.sorted_files():
        row = _format_row(file.size, folder.size, file.name)
        click.echo(f"     {row}" if numbered else row)


def _run_job(scheduler: RefreshScheduler, job: RefreshJob) -> RefreshJob:
    """Consume events for *job*, drawing deep progress on one line."""
    drew = False
    for event in scheduler.iter_events(job):
        if event.kind is EventKind.PROGRESS and job.deep is not None:
            deep = job.deep
            click.echo(
                f"\r{progressbar(event.fraction, 30)} {deep.completed}/{deep.planned} {event.folder.path}"[:120],
                nl=False,
            )
            drew = True
    if drew:
        click.echo()

    if job.error is not None and not isinstance(job.error, ListerError):
        raise job.error
    return job


def _report_job(job: RefreshJob) -> bool:
    """Print the outcome of *job*; return True if everything was listed."""
    if job.error is not None:
        click.echo(click.style(f"Failed to list {job.folder.path}: {job.error}", fg="red"), err=True)
        return False
    if job.cancelled:
        click.echo(click.style(f"Refresh of {job.folder.path} cancelled", fg="yellow"))
    failures = job.deep.failures if job.deep is not None else {}
    for path, exc in failures.items():
        click.echo(click.style(f"  ✗ {path}: {exc}", fg="red"), err=True)
    if job.deep is not None:
        skipped = job.deep.completed - job.deep.fetched - len(failures)
        click.echo(f"Refreshed {job.deep.fetched} folders, {skipped} up to date, {len(failures)} failed")
    elif job.fetched:
        click.echo(f"Refreshed {job.folder.path} ({format_size(job.folder.size) or '0b'})")
    else:
        click.echo(f"{job.folder.path} is up to date (use --force to refetch)")
    return not failures


@click.group()
@click.option("-v", "--verbose", count=True, help="Increase verbosity (-v info, -vv debug)")
@click.option(
    "--snapshot",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Snapshot file to use instead of the configured one",
)
@click.pass_context
def main(ctx: click.Context, verbose: int, snapshot: Path | None) -> None:
    """ggdu: disk usage explorer for Google Drive."""
    _setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["snapshot"] = snapshot


# ── ls ───────────────────────────────────────────────────────────────────

@main.command("ls")
@click.argument("path", default="/")
@click.option("--no-fetch", is_flag=True, help="Only show what is cached")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def ls_cmd(ctx: click.Context, path: str, no_fetch: bool, as_json: bool) -> None:
    """List a folder's children, largest first."""
    session = _open_session(ctx)
    folder = _navigate(session, path, fetch=not no_fetch)
    policy = session.engine.policy

    if as_json:
        data = {
            "path": folder.path,
            "id": folder.id,
            "size": folder.size,
            "last_refreshed": folder.last_refreshed,
            "folders": [
                {
                    "id": child.id,
                    "name": child.name,
                    "size": child.size,
                    "stale": policy.is_stale(child),
                }
                for child in folder.sorted_folders()
            ],
            "files": [
                {"id": f.id, "name": f.name, "size": f.size, "created": format_date(f.created)}
                for f in folder.sorted_files()
            ],
        }
        click.echo(json.dumps(data, indent=2))
        return

    _echo_listing(folder, policy)


# ── refresh ──────────────────────────────────────────────────────────────

@main.command()
@click.argument("path", default="/")
@click.option("--force", "-f", is_flag=True, help="Fetch even if the cache is fresh")
@click.option("--deep", "-d", is_flag=True, help="Refresh the whole subtree")
@click.pass_context
def refresh(ctx: click.Context, path: str, force: bool, deep: bool) -> None:
    """Fetch a folder (and with --deep, everything below it)."""
    session = _open_session(ctx)
    folder = _navigate(session, path, fetch=False)
    scheduler = RefreshScheduler(session.engine)
    try:
        job = _run_job(scheduler, scheduler.submit(folder, force=force, deep=deep))
    except KeyboardInterrupt:
        scheduler.cancel_current()
        click.echo("\nCancelling...")
        scheduler.close()
        sys.exit(130)
    scheduler.close()
    if not _report_job(job):
        sys.exit(1)


# ── stats ────────────────────────────────────────────────────────────────

@main.command()
@click.argument("path", default="/")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def stats(ctx: click.Context, path: str, as_json: bool) -> None:
    """Show totals for the cached subtree."""
    session = _open_session(ctx)
    folder = _navigate(session, path, fetch=False)
    policy = session.engine.policy

    folders = list(folder.walk())
    data = {
        "path": folder.path,
        "size": folder.size,
        "folders": len(folders) - 1,
        "files": sum(len(f.files) for f in folders),
        "stale_folders": sum(1 for f in folders if policy.is_stale(f)),
        "never_fetched": sum(1 for f in folders if f.never_fetched),
        "known": folder.known,
        "unknown": folder.unknown,
        "last_refreshed": folder.last_refreshed,
    }

    if as_json:
        click.echo(json.dumps(data, indent=2))
        return

    click.echo(f"\n  {click.style(folder.path, bold=True)}\n")
    click.echo(f"  Size:           {click.style(format_size(folder.size) or '0b', fg='green', bold=True)}")
    click.echo(f"  Folders:        {data['folders']:,}")
    click.echo(f"  Files:          {data['files']:,}")
    click.echo(f"  Stale folders:  {data['stale_folders']:,} ({data['never_fetched']:,} never fetched)")
    click.echo(f"  Children known: {folder.known}/{folder.known + folder.unknown}")
    click.echo(f"  Refreshed:      {format_relative_time(folder.last_refreshed)}")
    click.echo()


# ── browse ───────────────────────────────────────────────────────────────

def _pick_child(folder: Folder, arg: str) -> Folder | None:
    if not arg.strip().isdigit():
        return None
    index = int(arg)
    children = folder.sorted_folders()
    if 1 <= index <= len(children):
        folder.cursor = index
        return children[index - 1]
    return None


@main.command()
@click.pass_context
def browse(ctx: click.Context) -> None:
    """Explore the cached tree interactively."""
    session = _open_session(ctx)
    policy = session.engine.policy
    scheduler = RefreshScheduler(session.engine)

    def run(target: Folder, force: bool, deep: bool) -> None:
        click.echo(f"ensure data on {target.path}" + (" (force refresh)" if force else ""))
        job = scheduler.submit(target, force=force, deep=deep)
        try:
            _run_job(scheduler, job)
        except KeyboardInterrupt:
            job.cancel()
            click.echo("\nCancelling...")
            for _ in scheduler.iter_events(job):
                pass
            if job.error is not None and not isinstance(job.error, ListerError):
                raise job.error
        _report_job(job)

    folder = session.root
    run(folder, force=False, deep=False)
    force = False
    try:
        while True:
            _echo_listing(folder, policy, numbered=True)
            raw = click.prompt(f"[{'F' if force else ' '}]", default="", show_default=False)
            cmd, _, arg = raw.strip().partition(" ")
            match cmd:
                case "q":
                    break
                case "" | "?" | "h":
                    click.echo(_BROWSE_HELP)
                case "..":
                    if folder.parent is not None:
                        folder = folder.parent
                case "0" if folder.parent is not None:
                    folder = folder.parent
                case "f":
                    force = True
                    continue
                case "r":
                    run(folder, force=True, deep=False)
                case "l" | "x":
                    target = _pick_child(folder, arg)
                    if target is None:
                        click.echo(f"No folder number {arg!r}")
                    else:
                        run(target, force=force, deep=cmd == "x")
                case _ if cmd.isdigit():
                    target = _pick_child(folder, cmd)
                    if target is None:
                        click.echo(f"No folder number {cmd!r}")
                    else:
                        folder = target
                case _:
                    click.echo(_BROWSE_HELP)
            force = False
    finally:
        scheduler.cancel_current()
        scheduler.close()


# ── config ───────────────────────────────────────────────────────────────

@main.command("config")
@click.argument("key", required=False)
@click.argument("value", required=False)
def config_cmd(key: str | None, value: str | None) -> None:
    """Show or change settings, e.g. ``ggdu config refresh.staleness_days 3``."""
    settings = Settings.instance()
    if key is None:
        for name, current in settings.items():
            click.echo(f"{name} = {json.dumps(current)}")
        return
    if value is None:
        if key not in DEFAULTS:
            _fail(f"Unknown setting: {key}")
        click.echo(json.dumps(settings.get(key)))
        return
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError:
        parsed = value
    try:
        settings.set(key, parsed)
    except SettingsError as exc:
        _fail(str(exc))
    click.echo(f"{key} = {json.dumps(parsed)}")
