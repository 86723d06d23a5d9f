"""CLI rendering helpers for gitmem.

Every command produces a plain data structure first; these helpers either
dump it as JSON or render it with rich for a terminal.
"""

import json
from dataclasses import asdict
from typing import Any, Optional

import click
from rich.console import Console
from rich.table import Table

from .constants import CLASSIFICATIONS
from .errors import GitmemError
from .pipeline_types import IndexResult
from .types import EvalResult, EvalSummary, StatusInfo, TrendPeriod, TrendSummary

console = Console()


def emit_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def report_error(error: GitmemError, output_format: str) -> None:
    """Print a gitmem error as JSON on stdout or as text on stderr."""
    if output_format == "json":
        payload = {"success": False, **error.to_dict()}
        if error.suggestion:
            payload["hint"] = error.suggestion
        emit_json(payload)
    else:
        click.echo(f"❌ Error: {error}", err=True)


def _format_size(size: int) -> str:
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024 or unit == "GB":
            return f"{size:.1f} {unit}" if unit != "B" else f"{size} B"
        size /= 1024
    return f"{size} B"


def _fmt(value: Optional[float], digits: int = 1) -> str:
    return "-" if value is None else f"{value:.{digits}f}"


def coverage_note(coverage: dict[str, Any]) -> Optional[str]:
    """One-line warning when analytics only reflect part of the history."""
    if coverage.get("status") == "disabled":
        return "AI enrichment is disabled; classification counts are empty."
    if coverage.get("status") == "partial":
        return (
            f"Only {coverage['enriched']} of {coverage['total']} commits are enriched; "
            "classification-based numbers cover enriched commits only."
        )
    return None


def print_coverage(coverage: dict[str, Any]) -> None:
    note = coverage_note(coverage)
    if note:
        console.print(f"[yellow]⚠️  {note}[/yellow]")


def render_index_result(result: IndexResult) -> None:
    console.print(
        f"[green]✅ Indexed[/green] {result.discovered} new commits, "
        f"enriched {result.enriched} this run"
    )
    console.print(f"   {result.total_enriched}/{result.total_commits} commits enriched in total")
    if result.failed:
        console.print(f"[yellow]   {result.failed} commits failed and will be retried[/yellow]")
    if result.cancelled:
        console.print("[yellow]   Cancelled before all commits were enriched[/yellow]")
    if result.batch_id:
        console.print(f"   Batch {result.batch_id}: {result.batch_status}")
        if result.batch_submitted:
            console.print(f"   Submitted {result.batch_submitted} requests")
        if result.batch_remaining:
            console.print(
                f"   {result.batch_remaining} requests will be submitted by a later run"
            )
        if result.batch_status != "ended":
            console.print("   Run `gitmem index --batch` again to collect results.")


def render_hotspots(rows: list[dict[str, Any]], sort: str) -> None:
    if not rows:
        console.print("No hotspots found. Run `gitmem index` first.")
        return
    table = Table(title=f"Hotspots (by {sort})")
    table.add_column("File")
    table.add_column("Changes", justify="right")
    table.add_column("Bug fixes", justify="right")
    table.add_column("Features", justify="right")
    table.add_column("LOC", justify="right")
    table.add_column("Complexity", justify="right")
    if sort == "combined":
        table.add_column("Score", justify="right")
    for row in rows:
        cells = [
            row["file_path"],
            str(row["total_changes"]),
            str(row["bug_fix_count"]),
            str(row["feature_count"]),
            str(row["current_loc"] or "-"),
            _fmt(row["current_complexity"], 0),
        ]
        if sort == "combined":
            cells.append(_fmt(row["combined_score"], 2))
        table.add_row(*cells)
    console.print(table)


def render_file_stats(
    path: str, stats: Optional[dict[str, Any]], contributors: list[dict[str, Any]]
) -> None:
    if not stats:
        console.print(f"No statistics for {path}.")
        return
    console.print(f"[bold]{path}[/bold]")
    if "file_count" in stats:
        console.print(f"  Files: {stats['file_count']}")
    console.print(f"  Changes: {stats['total_changes']}")
    breakdown = ", ".join(
        f"{c}: {stats[c.replace('-', '_') + '_count']}"
        for c in CLASSIFICATIONS
        if stats[c.replace("-", "_") + "_count"]
    )
    if breakdown:
        console.print(f"  By type: {breakdown}")
    console.print(f"  First seen: {stats['first_seen']}  Last changed: {stats['last_changed']}")
    console.print(f"  +{stats['total_additions']} -{stats['total_deletions']}")
    console.print(
        f"  LOC: {stats['current_loc'] or '-'}  Complexity: {_fmt(stats['current_complexity'], 0)}"
    )
    if contributors:
        console.print("  Top contributors:")
        for c in contributors:
            console.print(f"    {c['author_name']} <{c['author_email']}>: {c['commit_count']}")


def render_recent_commits(commits: list[dict[str, Any]]) -> None:
    console.print("  Recent commits:")
    for c in commits:
        label = f" [cyan]{c['classification']}[/cyan]" if c["classification"] else ""
        subject = c["message"].split("\n", 1)[0]
        console.print(f"    {c['hash'][:8]} {c['committedAt'][:10]}{label} {subject}")


def render_coupled_files(path: str, rows: list[dict[str, Any]]) -> None:
    if not rows:
        console.print(f"No files are coupled with {path}.")
        return
    table = Table(title=f"Files changed together with {path}")
    table.add_column("File")
    table.add_column("Co-changes", justify="right")
    table.add_column("Ratio", justify="right")
    for row in rows:
        table.add_row(row["file"], str(row["co_change_count"]), _fmt(row["coupling_ratio"], 2))
    console.print(table)


def render_coupled_pairs(rows: list[dict[str, Any]]) -> None:
    if not rows:
        console.print("No coupled files found.")
        return
    table = Table(title="Most coupled file pairs")
    table.add_column("File A")
    table.add_column("File B")
    table.add_column("Co-changes", justify="right")
    for row in rows:
        table.add_row(row["file_a"], row["file_b"], str(row["co_change_count"]))
    console.print(table)


def trends_to_dict(
    path: str, window: str, periods: list[TrendPeriod], trend: Optional[TrendSummary]
) -> dict[str, Any]:
    return {
        "path": path,
        "window": window,
        "periods": [asdict(p) for p in periods],
        "trend": asdict(trend) if trend else None,
    }


def render_trends(
    path: str, window: str, periods: list[TrendPeriod], trend: Optional[TrendSummary]
) -> None:
    if not periods:
        console.print(f"No enriched activity for {path}.")
        return
    table = Table(title=f"{window.capitalize()} activity for {path}")
    table.add_column("Period")
    table.add_column("Changes", justify="right")
    table.add_column("Bug fixes", justify="right")
    table.add_column("Features", justify="right")
    table.add_column("+/-", justify="right")
    table.add_column("Avg complexity", justify="right")
    for p in periods:
        table.add_row(
            p.period,
            str(p.total_changes),
            str(p.bug_fix_count),
            str(p.feature_count),
            f"+{p.additions} -{p.deletions}",
            _fmt(p.avg_complexity),
        )
    console.print(table)
    if trend:
        console.print(
            f"Activity {trend.direction} ({trend.recent_avg} recent vs "
            f"{trend.historical_avg} historical avg), bug fixes {trend.bug_fix_trend}, "
            f"complexity {trend.complexity_trend}"
        )


def render_search(rows: list[dict[str, Any]]) -> None:
    if not rows:
        console.print("No matching commits.")
        return
    for row in rows:
        label = f"[cyan]{row['classification']}[/cyan] " if row["classification"] else ""
        subject = row["message"].split("\n", 1)[0]
        console.print(f"[bold]{row['hash'][:8]}[/bold] {label}{subject}")
        console.print(f"  {row['author_name']}, {row['committed_at'][:10]}")
        if row["summary"]:
            console.print(f"  {row['summary']}")


def render_status(status: StatusInfo) -> None:
    console.print("[bold]gitmem status[/bold]")
    console.print(f"  Commits indexed: {status.indexed_commits}")
    console.print(f"  Commits enriched: {status.enriched_commits}/{status.total_commits}")
    console.print(f"  Last run: {status.last_run or 'never'}")
    console.print(f"  Model: {status.model_used or '-'}")
    console.print(f"  Database: {status.db_path} ({_format_size(status.db_size)})")


def status_to_dict(status: StatusInfo) -> dict[str, Any]:
    return {
        "totalCommits": status.total_commits,
        "indexedCommits": status.indexed_commits,
        "enrichedCommits": status.enriched_commits,
        "lastRun": status.last_run,
        "modelUsed": status.model_used,
        "dbPath": status.db_path,
        "dbSize": status.db_size,
    }


def _verdict_mark(passed: bool) -> str:
    return "[green]✓[/green]" if passed else "[red]✗[/red]"


def render_eval_result(result: EvalResult) -> None:
    console.print(f"[bold]{result.hash[:8]}[/bold] {result.classification}: {result.summary}")
    verdicts = (
        ("Classification", result.classification_verdict),
        ("Accuracy", result.accuracy_verdict),
        ("Completeness", result.completeness_verdict),
    )
    for name, verdict in verdicts:
        line = f"  {_verdict_mark(verdict.passed)} {name}: {verdict.reasoning}"
        if verdict.suggested_classification:
            line += f" (suggested: {verdict.suggested_classification})"
        console.print(line)


def render_eval_summary(summary: EvalSummary) -> None:
    if not summary.total:
        console.print("No enriched commits to evaluate.")
        return

    def pct(count: int) -> str:
        return f"{count}/{summary.total} ({count / summary.total:.0%})"

    console.print("[bold]Quality check[/bold]")
    console.print(f"  Classification correct: {pct(summary.classification_correct)}")
    console.print(f"  Summary accurate: {pct(summary.summary_accurate)}")
    console.print(f"  Summary complete: {pct(summary.summary_complete)}")
