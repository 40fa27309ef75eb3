from __future__ import annotations

import asyncio
import os
from collections import Counter
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from rotwatch.config import RotwatchConfig, config_path, load_config, save_config
from rotwatch.errors import InvalidPathError
from rotwatch.health import ping_health_check
from rotwatch.identity import FileIdentity
from rotwatch.models import Result
from rotwatch.processor import FileProcessor
from rotwatch.recency_db import RecencyCache
from rotwatch.record_store import RecordStore
from rotwatch.run_log import RunLog, configure_logging


app = typer.Typer(help="Detect bit rot by re-verifying file checksums against stored baselines.")
console = Console()

CONFIG_OPTION = typer.Option(
    None,
    "--config",
    "-c",
    help="Path to rotwatch.json. Defaults to ./rotwatch.json.",
)


def _load_config_or_exit(path: Path | None) -> RotwatchConfig:
    try:
        return load_config(path)
    except (FileNotFoundError, ValueError) as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc


def _render_totals(totals: Counter[Result]) -> None:
    table = Table(title="Verification totals")
    table.add_column("Result")
    table.add_column("Files", justify="right")
    styles = {Result.PASS: "green", Result.FAIL: "red", Result.SKIP: "yellow"}
    for result in Result:
        table.add_row(f"[{styles[result]}]{result.value}[/{styles[result]}]", str(totals[result]))
    console.print(table)


async def _run_verification(config: RotwatchConfig, run_log: RunLog) -> FileProcessor:
    store = RecordStore.connect(config.mongo_connection_string, too_new_threshold=config.too_new_threshold)
    try:
        async with await RecencyCache.open(
            config.recency_db_path,
            skip_filter=config.skip_filter,
            skip_window=config.skip_window,
            retention=config.retention,
        ) as recency:
            run_log.info("%d existing rows in the recent verification database", await recency.count())
            removed = await recency.cleanup()
            run_log.info("Cleaned up %d old records from the recent verification database", removed)

            processor = FileProcessor(recency, store, run_log, workers=config.workers)
            run_log.log(f"Mutable paths: {config.mutable_paths}")
            run_log.log(f"Immutable paths: {config.immutable_paths}")
            run_log.log("--------------------------")

            try:
                for mutable_path in config.mutable_paths:
                    await processor.process_files(Path(mutable_path), False)
                for immutable_path in config.immutable_paths:
                    await processor.process_files(Path(immutable_path), True)
            except Exception as exc:
                # Already recorded through the run log by the processor.
                console.print(f"[red]Verification aborted:[/red] {exc}")

            processor.log_run_totals()
            return processor
    finally:
        store.close()


@app.command()
def init(
    mongo_connection_string: str,
    config: Path | None = CONFIG_OPTION,
) -> None:
    """Write a starter rotwatch.json."""
    path = config or config_path()
    if path.exists():
        console.print(f"[red]Config already exists: {path}[/red]")
        raise typer.Exit(code=1)
    save_config(RotwatchConfig(mongo_connection_string=mongo_connection_string), path)
    console.print(f"[green]Wrote config[/green] {path}")
    console.print("Add folders to `mutable_paths` / `immutable_paths` before running `rotwatch verify`.")


@app.command()
def verify(
    config: Path | None = CONFIG_OPTION,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Verify every configured root and ping the health check on a clean run."""
    settings = _load_config_or_exit(config)
    run_log = configure_logging(settings.log_dir_path, verbose=verbose, console=console)

    try:
        processor = asyncio.run(_run_verification(settings, run_log))
    except Exception as exc:
        run_log.exception(exc, f"Verification could not start: {exc}")
        raise typer.Exit(code=1) from exc

    _render_totals(processor.run_totals)

    if processor.no_failures() and not run_log.encountered_exception:
        ping_health_check(settings.health_check_url, run_log)
        return
    console.print("[red]Failures or errors were logged; skipping health check.[/red]")
    raise typer.Exit(code=1)


async def _clear_cache_async(settings: RotwatchConfig, absolute_path: str) -> int:
    async with await RecencyCache.open(settings.recency_db_path) as recency:
        return await recency.remove(absolute_path)


@app.command("clear-cache")
def clear_cache(
    absolute_path: str = typer.Argument(..., help="Absolute path exactly as it was verified."),
    config: Path | None = CONFIG_OPTION,
) -> None:
    """Forget when a file was last verified so the next run checks it again."""
    settings = _load_config_or_exit(config)
    console.print(f"Attempting to remove file from verification database: {absolute_path}")
    removed = asyncio.run(_clear_cache_async(settings, absolute_path))
    if removed:
        console.print(f"[green]Successfully removed file from verification database:[/green] {absolute_path}")
    else:
        console.print(f"[yellow]File not found in verification database:[/yellow] {absolute_path}")


@app.command("fix-timestamp")
def fix_timestamp(
    absolute_path: Path = typer.Argument(..., help="File whose modification time should be restored."),
    root: Path = typer.Argument(..., help="Configured root the file lives under."),
    config: Path | None = CONFIG_OPTION,
) -> None:
    """Write the baseline's stored modification time back onto a file."""
    settings = _load_config_or_exit(config)
    try:
        identity = FileIdentity.from_root(absolute_path, root, preload=True)
    except (InvalidPathError, OSError) as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc
    console.print(f"Relative path: {identity.relative_path}")

    store = RecordStore.connect(settings.mongo_connection_string, create_indexes=False)
    try:
        baseline = store.find_baseline(identity, is_immutable=True)
    finally:
        store.close()

    if baseline is None:
        console.print("[red]DB Document not found[/red]")
        raise typer.Exit(code=1)

    mtime_ns = baseline.mtime_s * 1_000_000_000 + (baseline.mtime_ns or 0)
    st = absolute_path.stat()
    os.utime(absolute_path, ns=(st.st_atime_ns, mtime_ns))
    console.print(f"[green]Fixed timestamp to be:[/green] {baseline.mtime_s}.{baseline.mtime_ns or 0:09d}")


@app.command("delete-records")
def delete_records(
    ids_file: Path = typer.Argument(..., help="Text file with one file_id per line."),
    config: Path | None = CONFIG_OPTION,
) -> None:
    """Delete every baseline whose file_id is listed in IDS_FILE."""
    if not ids_file.exists():
        console.print(f"[red]IDs file not found: {ids_file}[/red]")
        raise typer.Exit(code=1)
    settings = _load_config_or_exit(config)

    total_processed = 0
    deleted = 0
    not_found = 0
    store = RecordStore.connect(settings.mongo_connection_string, create_indexes=False)
    try:
        with ids_file.open("r", encoding="utf-8") as fh:
            for line in fh:
                file_id = line.strip()
                if not file_id:
                    continue
                total_processed += 1
                count = store.delete_by_file_id(file_id)
                console.print(f"Deleted {count} record(s) with file_id: {file_id}")
                if count:
                    deleted += 1
                else:
                    not_found += 1
    finally:
        store.close()

    console.print("\n=== Deletion Summary ===")
    console.print(f"Total IDs processed: {total_processed}")
    console.print(f"Successfully deleted: {deleted}")
    console.print(f"Not found in database: {not_found}")


def main() -> None:
    app()
