from __future__ import annotations

import logging
import time

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.progress import Progress, SpinnerColumn, TextColumn

from .compare import count_differences, create_session, diff_entries
from .config import MirrorSettings
from .cursor import StreamFetchError
from .endpoints import EndpointSpec, endpoint_to_string, open_lister, parse_endpoint
from .mirror import PlanOperation, build_mirror_plan, execute_plan
from .models import Difference, DiffRecord
from .streaming import ListingStream

app = typer.Typer(help="Compare and mirror directory trees, locally or over SSH")
console = Console()
logger = logging.getLogger(__name__)

DIFF_MARKERS = {
    Difference.ONLY_SOURCE: "[green]+[/green]",
    Difference.SIZE: "[yellow]![/yellow]",
    Difference.TYPE: "[red]![/red]",
    Difference.TIME_NEWER: "[cyan]>[/cyan]",
    Difference.TIME_OLDER: "[magenta]<[/magenta]",
}

DIFF_LABELS = {
    Difference.ONLY_SOURCE: "Only on source",
    Difference.SIZE: "Different size",
    Difference.TYPE: "Different type",
    Difference.TIME_NEWER: "Newer on source",
    Difference.TIME_OLDER: "Older on source",
    Difference.NONE: "Identical",
}


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def _parse_endpoints(source: str, target: str) -> tuple[EndpointSpec, EndpointSpec]:
    try:
        return parse_endpoint(source), parse_endpoint(target)
    except ValueError as exc:
        console.print(f"[red]Invalid endpoint:[/red] {exc}")
        raise typer.Exit(1)


def _collect_diffs(
    source_endpoint: EndpointSpec,
    target_endpoint: EndpointSpec,
    *,
    compress: bool,
) -> list[DiffRecord]:
    with Progress(
        SpinnerColumn(),
        TextColumn("{task.description}"),
        console=console,
        transient=True,
    ) as progress:
        task_id = progress.add_task("Listing...", total=None)
        last_rendered = 0.0

        def report(relpath: str, seen: int) -> None:
            nonlocal last_rendered
            now = time.monotonic()
            if (now - last_rendered) < 0.12:
                return
            progress.update(task_id, description=f"{escape(relpath)}  entries={seen}")
            last_rendered = now

        try:
            source_lister = open_lister(
                source_endpoint, peer=target_endpoint, compress=compress
            )
            target_lister = open_lister(
                target_endpoint, peer=source_endpoint, compress=compress
            )
            target_root = target_lister.resolve_root()
            with ListingStream(target_lister.iter_entries()) as target_stream:
                session = create_session(target_stream, target_root)
                return diff_entries(
                    source_lister.iter_entries(),
                    session,
                    source_lister.resolve_root(),
                    progress_cb=report,
                )
        except (StreamFetchError, FileNotFoundError) as exc:
            progress.stop()
            console.print(f"[red]Comparison failed:[/red] {exc}")
            raise typer.Exit(1)


def _print_summary(records: list[DiffRecord]) -> None:
    counts = count_differences(records)
    console.print()
    console.print(f"Compared entries: {len(records)}")
    for difference, label in DIFF_LABELS.items():
        console.print(f"{label}: {counts[difference]}")


@app.command()
def diff(
    source: str = typer.Argument(
        ..., help="Source endpoint (local path, local:/path, ssh://user@host/path, or user@host:path)"
    ),
    target: str = typer.Argument(..., help="Target endpoint, same forms as source"),
    ssh_compression: bool = typer.Option(
        False,
        "--ssh-compression/--no-ssh-compression",
        help="Enable SSH transport compression for remote listings.",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Show how every source entry relates to the target tree."""
    _configure_logging(verbose)
    source_endpoint, target_endpoint = _parse_endpoints(source, target)
    logger.debug(
        "diff %s -> %s",
        endpoint_to_string(source_endpoint),
        endpoint_to_string(target_endpoint),
    )
    records = _collect_diffs(
        source_endpoint, target_endpoint, compress=ssh_compression
    )
    for record in records:
        marker = DIFF_MARKERS.get(record.difference)
        if marker is None:
            continue
        console.print(f"{marker} {escape(record.relpath)}", highlight=False)
    _print_summary(records)


@app.command()
def mirror(
    source: str = typer.Argument(..., help="Source endpoint"),
    target: str = typer.Argument(..., help="Target endpoint"),
    overwrite: bool = typer.Option(
        False, help="Update target files that differ in size or time."
    ),
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Print the planned operations without applying them."
    ),
    ssh_compression: bool = typer.Option(
        False,
        "--ssh-compression/--no-ssh-compression",
        help="Enable SSH transport compression.",
    ),
    verify_uploads: bool = typer.Option(
        False,
        "--verify-uploads",
        help="Stat every SFTP upload to confirm its size.",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Copy entries missing on the target (and changed ones with --overwrite)."""
    _configure_logging(verbose)
    source_endpoint, target_endpoint = _parse_endpoints(source, target)
    records = _collect_diffs(
        source_endpoint, target_endpoint, compress=ssh_compression
    )
    plan = build_mirror_plan(records, overwrite=overwrite)

    for relpath in plan.conflicts:
        console.print(f"[red]Type conflict, not mirrored:[/red] {escape(relpath)}")
    if plan.skipped:
        console.print(
            f"Skipped {len(plan.skipped)} entries (use --overwrite to update changed files)."
        )

    if dry_run or not plan.operations:
        for op in plan.operations:
            console.print(f"{op.kind} {op.relpath}", highlight=False)
        console.print(f"Planned operations: {len(plan.operations)}")
        return

    with Progress(
        SpinnerColumn(),
        TextColumn("{task.description}"),
        console=console,
    ) as progress:
        task_id = progress.add_task("Mirroring...", total=len(plan.operations))

        def report(
            done: int, total: int, op: PlanOperation, ok: bool, error: str | None
        ) -> None:
            status = "ok" if ok else "failed"
            progress.update(
                task_id,
                completed=done,
                description=f"[{done}/{total}] {op.kind} {escape(op.relpath)} {status}",
            )

        result = execute_plan(
            source_endpoint,
            target_endpoint,
            plan.operations,
            progress_cb=report,
            settings=MirrorSettings(
                ssh_compression=ssh_compression,
                sftp_put_confirm=verify_uploads,
            ),
        )

    console.print(
        f"Applied {result.succeeded_operations}/{result.total_operations} operations"
    )
    if verbose and result.operation_seconds:
        slowest = sorted(
            result.operation_seconds.items(), key=lambda item: item[1], reverse=True
        )
        console.print(
            "Time by operation: "
            + ", ".join(f"{kind}={seconds:.2f}s" for kind, seconds in slowest)
        )
    if result.errors:
        for error in result.errors:
            console.print(f"[red]{escape(error)}[/red]")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
