"""
Resolution Workflow Console — progress and performance at a glance.

Reads the record store directly and prints the weighted progress of one
resolution, or the cross-resolution report overview.

Usage:
    resolution-workflow progress 42
    resolution-workflow --database-url sqlite:///workflow.db overview
    resolution-workflow --verbose progress 42
"""

from __future__ import annotations

import argparse
import sys

from rich.console import Console
from rich.table import Table

from resolution_workflow.config import settings
from resolution_workflow.store.service import RecordStore
from resolution_workflow.workflow.progress import ProgressAggregator

console = Console()


def run_progress(database_url: str, resolution_id: int, verbose: bool = False) -> bool:
    """
    Print the progress summary of one resolution.

    Returns:
        True if the resolution exists, False otherwise.
    """
    store = RecordStore(database_url)
    store.initialize(seed_distinguished_group=False)
    result = ProgressAggregator(store).progress(resolution_id)

    console.print(f"\n[bold blue]═══ Resolution {resolution_id} Progress ═══[/bold blue]")
    if not result.ok:
        console.print(f"[bold red]✗ {result.failure.detail}[/bold red]\n")
        return False

    summary = result.value
    console.print(f"  Overall progress: [bold]{summary.overall:.2f}%[/bold]")
    if summary.weights_balanced:
        console.print(f"  Assignment weights: [green]{summary.weight_total}%[/green]")
    else:
        console.print(
            f"  Assignment weights: [yellow]⚠ {summary.weight_total}% (expected 100%)[/yellow]"
        )

    table = Table(title="Assignments", show_lines=False)
    table.add_column("Group", style="green", width=30)
    table.add_column("Weight", style="cyan", width=8)
    table.add_column("Status", width=14)
    table.add_column("Assigned", width=20)
    for assignment in summary.assignments:
        table.add_row(
            assignment.group_name,
            f"{assignment.weight}%",
            assignment.status.value,
            str(assignment.assigned_at)[:19],
        )
    console.print(table)

    table = Table(title="Reports", show_lines=verbose)
    table.add_column("ID", style="cyan", width=6)
    table.add_column("Group", width=8)
    table.add_column("Performance", width=12)
    table.add_column("Status", style="yellow", width=22)
    table.add_column("Version", width=8)
    if verbose:
        table.add_column("Stage 1", width=30)
        table.add_column("Stage 2", width=30)
    for report in summary.reports:
        row = [
            str(report.id),
            str(report.group_id),
            f"{report.performance_percentage}%",
            report.status.value,
            str(report.version),
        ]
        if verbose:
            row.append(report.stage1_comments or "—")
            row.append(report.stage2_comments or "—")
        table.add_row(*row)
    console.print(table)

    console.print(f"\n[bold blue]═══ {summary.total_reports} reports ═══[/bold blue]\n")
    return True


def run_overview(database_url: str) -> None:
    """Print report counts per status and mean performance per group."""
    store = RecordStore(database_url)
    store.initialize(seed_distinguished_group=False)
    overview = ProgressAggregator(store).performance_overview()

    console.print("\n[bold blue]═══ Report Performance Overview ═══[/bold blue]")
    console.print(f"  Reports: [bold]{overview.total_reports}[/bold]")
    console.print(f"  Mean performance: [bold]{overview.average_performance:.2f}%[/bold]")

    table = Table(title="By status")
    table.add_column("Status", style="yellow", width=22)
    table.add_column("Count", style="cyan", width=8)
    for status, count in overview.status_counts.items():
        table.add_row(status.value, str(count))
    console.print(table)

    if overview.groups:
        table = Table(title="By group")
        table.add_column("Group", style="green", width=30)
        table.add_column("Reports", style="cyan", width=8)
        table.add_column("Mean performance", width=18)
        for group in overview.groups:
            table.add_row(
                group.group_name, str(group.report_count), f"{group.average_performance:.2f}%"
            )
        console.print(table)
    console.print()


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        description="Resolution workflow progress and report overview"
    )
    parser.add_argument(
        "--database-url",
        default=None,
        help="SQLAlchemy connection string (defaults to .env settings)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Show review comments for each report",
    )
    commands = parser.add_subparsers(dest="command", required=True)
    progress = commands.add_parser("progress", help="Weighted progress of one resolution")
    progress.add_argument("resolution_id", type=int)
    commands.add_parser("overview", help="Report counts and mean performance")
    args = parser.parse_args(argv)

    db_url = args.database_url or settings.effective_database_url
    if args.command == "progress":
        found = run_progress(db_url, args.resolution_id, verbose=args.verbose)
        sys.exit(0 if found else 1)
    run_overview(db_url)
    sys.exit(0)


if __name__ == "__main__":
    main()
