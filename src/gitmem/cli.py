"""Command-line interface for gitmem."""

import functools
import json
import logging
import signal
import threading
from collections.abc import Iterator
from contextlib import contextmanager, nullcontext
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional, Union

import click

from . import __version__
from .classification.batch_orchestrator import BatchOrchestrator
from .cli_formatting import (
    console,
    emit_json,
    print_coverage,
    render_coupled_files,
    render_coupled_pairs,
    render_eval_result,
    render_eval_summary,
    render_file_stats,
    render_hotspots,
    render_index_result,
    render_recent_commits,
    render_search,
    render_status,
    render_trends,
    report_error,
    status_to_dict,
    trends_to_dict,
)
from .cli_utils import setup_logging
from .config import (
    ConfigLoader,
    GitmemConfig,
    config_path,
    db_path,
    get_api_key,
    gitmem_dir,
)
from .constants import CLASSIFICATIONS
from .core.aggregates import SORT_FIELDS, WINDOW_FORMATS, AggregateRepository, compute_trend
from .core.batch_jobs import BatchJobRepository
from .core.commits import CommitRepository
from .core.git_service import GitService
from .core.index_lock import index_lock
from .core.measurer import ComplexityMeasurer
from .core.search import SearchService
from .errors import GitmemError, NotInitializedError
from .models.database import Database
from .pipeline_check import QualityCheckPipeline
from .pipeline_index import EnrichmentPipeline, collect_status
from .qualitative.classifiers.llm.anthropic_client import (
    AnthropicEnricher,
    AnthropicJudge,
    EnrichmentBatchClient,
    JudgeBatchClient,
)
from .ui.progress_display import create_progress_display

logger = logging.getLogger(__name__)


class CommandContext:
    """Per-invocation state shared by all commands."""

    def __init__(self, repo: Path, output_format: str):
        self.repo = repo
        self.output_format = output_format
        self._git: Optional[GitService] = None

    @property
    def json(self) -> bool:
        return self.output_format == "json"

    @property
    def git(self) -> GitService:
        if self._git is None:
            self._git = GitService(self.repo)
        return self._git

    @property
    def root(self) -> Path:
        return self.git.repo_root

    def load_config(self) -> GitmemConfig:
        return ConfigLoader.load(config_path(self.root))

    @contextmanager
    def open_db(self, must_exist: bool = True, lock: bool = False) -> Iterator[Database]:
        """Open the index database, optionally holding the index lock.

        Raises:
            NotInitializedError: If ``must_exist`` and there is no index yet
            LockError: If ``lock`` and another process holds the lock
        """
        path = db_path(self.root)
        if must_exist and not path.exists():
            raise NotInitializedError(self.root)

        with index_lock(gitmem_dir(self.root)) if lock else nullcontext():
            db = Database(path)
            try:
                yield db
            finally:
                db.close()


def handle_errors(func: Callable) -> Callable:
    """Report gitmem errors and exit with their code; anything else is internal."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        ctx = click.get_current_context()
        output_format = ctx.obj.output_format if ctx.obj else "text"
        try:
            return func(*args, **kwargs)
        except GitmemError as e:
            logger.debug(f"{type(e).__name__}: {e.message}")
            report_error(e, output_format)
            ctx.exit(e.exit_code)
        except (click.ClickException, click.exceptions.Exit):
            raise
        except Exception as e:
            logger.exception(f"Unexpected error in {func.__name__}")
            report_error(GitmemError(f"Internal error: {type(e).__name__}"), output_format)
            ctx.exit(1)

    return wrapper


def _parse_ai(value: Optional[str]) -> Union[bool, str, None]:
    if value is None:
        return None
    lowered = value.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    return value


def _directory_prefix(path: str) -> str:
    return path if path.endswith("/") else path + "/"


@contextmanager
def _cancel_on_interrupt() -> Iterator[threading.Event]:
    """Turn Ctrl-C into a cancellation request honoured between windows."""
    cancel = threading.Event()

    def request_cancel(signum: int, frame: Any) -> None:
        if cancel.is_set():
            raise KeyboardInterrupt
        console.print("[yellow]Finishing the current window, press Ctrl-C again to abort[/yellow]")
        cancel.set()

    previous = signal.signal(signal.SIGINT, request_cancel)
    try:
        yield cancel
    finally:
        signal.signal(signal.SIGINT, previous)


# ----------------------------------------------------------------------
# Command group
# ----------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="gitmem")
@click.help_option("-h", "--help")
@click.option(
    "--repo",
    "-C",
    type=click.Path(file_okay=False, path_type=Path),
    default=".",
    help="Repository to operate on (default: current directory)",
)
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["text", "json"]),
    default="text",
    help="Output format (default: text)",
)
@click.option(
    "--log",
    type=click.Choice(["none", "INFO", "DEBUG"], case_sensitive=False),
    default="none",
    help="Enable logging with specified level (default: none)",
)
@click.pass_context
def cli(ctx: click.Context, repo: Path, output_format: str, log: str) -> None:
    """gitmem - AI-enriched commit history and file analytics for a git repository."""
    setup_logging(log, __name__)
    ctx.obj = CommandContext(repo, output_format)


@cli.command()
@click.option("--ai", "ai", default=None, help='AI enrichment: "true", "false", or YYYY-MM-DD')
@click.option("--index-start-date", default=None, help="Only discover commits on/after this date")
@click.option("--index-model", default=None, help="Default model for gitmem index")
@click.option("--check-model", default=None, help="Default model for gitmem check")
@click.pass_obj
@handle_errors
def init(
    obj: CommandContext,
    ai: Optional[str],
    index_start_date: Optional[str],
    index_model: Optional[str],
    check_model: Optional[str],
) -> None:
    """Initialize gitmem in the current repository."""
    overrides: dict[str, Any] = {}
    if ai is not None:
        overrides["ai"] = _parse_ai(ai)
    if index_start_date is not None:
        overrides["index_start_date"] = index_start_date
    if index_model is not None:
        overrides["index_model"] = index_model
    if check_model is not None:
        overrides["check_model"] = check_model

    config = ConfigLoader.create(config_path(obj.root), overrides)
    Database(db_path(obj.root)).close()

    if obj.json:
        emit_json({"success": True, "config": config.to_dict()})
        return

    if config.ai is False:
        ai_display = "disabled"
    elif config.ai is True:
        ai_display = "enabled"
    else:
        ai_display = f"enabled for commits after {config.ai}"
    console.print("[bold green]✅ Initialized gitmem[/bold green]")
    console.print(f"   AI: {ai_display}")
    console.print(f"   Index start date: {config.index_start_date or 'all history'}")
    console.print(f"   Index model: {config.index_model}")
    console.print(f"   Check model: {config.check_model}")
    console.print("\nRun `gitmem index` to analyze your commit history.")


@cli.command()
@click.option("--batch", is_flag=True, help="Use the Message Batches API; re-run to collect results")
@click.option("--concurrency", "-c", type=click.IntRange(min=1), default=None)
@click.option(
    "--progress",
    "progress_style",
    type=click.Choice(["auto", "rich", "simple", "none"]),
    default="auto",
    help="Progress display style",
)
@click.pass_obj
@handle_errors
def index(
    obj: CommandContext, batch: bool, concurrency: Optional[int], progress_style: str
) -> None:
    """Discover new commits, enrich them and refresh analytics."""
    config = obj.load_config()
    if concurrency:
        config.enrichment.concurrency = concurrency
    api_key = get_api_key(required=config.ai_enabled)

    with obj.open_db(must_exist=False, lock=True) as db:
        commits = CommitRepository(db)
        pipeline = EnrichmentPipeline(
            obj.git,
            commits,
            AggregateRepository(db),
            SearchService(db),
            config,
            measurer=ComplexityMeasurer(obj.git, commits),
        )
        display = create_progress_display("none" if obj.json else progress_style)

        with display.progress_context():
            if batch and config.ai_enabled:
                batch_oracle = EnrichmentBatchClient(
                    api_key, config.index_model, config.enrichment.max_input_tokens
                )
                orchestrator = BatchOrchestrator(BatchJobRepository(db), batch_oracle, config.batch)
                result = pipeline.run_batch(orchestrator, batch_oracle, display.update)
            else:
                oracle = (
                    AnthropicEnricher(api_key, config.index_model, config.enrichment.max_input_tokens)
                    if config.ai_enabled
                    else None
                )
                with _cancel_on_interrupt() as cancel:
                    result = pipeline.run(oracle, display.update, cancel)

    if obj.json:
        emit_json(result.to_dict())
    else:
        render_index_result(result)


@cli.command()
@click.argument("commit", required=False)
@click.option("--sample", "-s", type=click.IntRange(min=1), default=None,
              help="Number of random enriched commits to evaluate")
@click.option("--batch", "-b", is_flag=True, help="Use the Message Batches API (needs --sample)")
@click.option("--model", "-m", default=None, help="Judge model (default: check_model)")
@click.option("--concurrency", "-c", type=click.IntRange(min=1), default=None)
@click.option("--output", "-o", type=click.Path(dir_okay=False, path_type=Path), default=None,
              help="Where to write detailed results")
@click.pass_obj
@handle_errors
def check(
    obj: CommandContext,
    commit: Optional[str],
    sample: Optional[int],
    batch: bool,
    model: Optional[str],
    concurrency: Optional[int],
    output: Optional[Path],
) -> None:
    """Evaluate enrichment quality with a judge model."""
    if not commit and not sample:
        raise click.UsageError("Provide a commit hash or use --sample N")
    if batch and not sample:
        raise click.UsageError("--batch requires --sample N")

    config = obj.load_config()
    if concurrency:
        config.check.concurrency = concurrency
    judge_model = model or config.check_model
    api_key = get_api_key()
    output = output or gitmem_dir(obj.root) / (
        f"check-{datetime.now(timezone.utc).strftime('%Y%m%dT%H%M%SZ')}.json"
    )

    with obj.open_db(lock=True) as db:
        commits = CommitRepository(db)
        display = create_progress_display("none" if obj.json else "auto")

        if batch:
            batch_judge = JudgeBatchClient(api_key, judge_model)
            pipeline = QualityCheckPipeline(obj.git, commits, config)
            orchestrator = BatchOrchestrator(BatchJobRepository(db), batch_judge, config.batch)
            with display.progress_context():
                outcome = pipeline.check_sample_batch(
                    orchestrator, batch_judge, output, sample, display.update
                )
            if obj.json:
                emit_json(outcome.to_dict())
            elif outcome.kind == "complete":
                render_eval_summary(outcome.summary)
                console.print(f"Details written to {outcome.output_path}")
            elif outcome.kind == "empty":
                console.print("No enriched commits to evaluate.")
            else:
                console.print(f"Batch {outcome.batch_id}: {outcome.batch_status}")
                console.print("Run the same command again to collect results.")
            return

        pipeline = QualityCheckPipeline(obj.git, commits, config, AnthropicJudge(api_key, judge_model))
        if commit:
            result = pipeline.check_one(commit)
            if result is None:
                raise GitmemError(
                    f"Commit {commit} is not indexed or not enriched",
                    suggestion="Run `gitmem index` first.",
                )
            if obj.json:
                emit_json(result.to_dict())
            else:
                render_eval_result(result)
            return

        with display.progress_context():
            results, summary = pipeline.check_sample(sample, display.update)

    detailed = [r.to_dict() for r in results]
    output.parent.mkdir(parents=True, exist_ok=True)
    with open(output, "w") as f:
        json.dump(detailed, f, indent=2)

    if obj.json:
        emit_json({"summary": summary.to_dict(), "results": detailed, "outputPath": str(output)})
    else:
        render_eval_summary(summary)
        console.print(f"Details written to {output}")


@cli.command()
@click.option("--sort", type=click.Choice(SORT_FIELDS), default="total", help="Ranking metric")
@click.option("--limit", "-l", type=click.IntRange(min=1), default=10)
@click.option("--path", "path_prefix", default=None, help="Only files under this prefix")
@click.pass_obj
@handle_errors
def hotspots(obj: CommandContext, sort: str, limit: int, path_prefix: Optional[str]) -> None:
    """Rank files by change frequency, classification or complexity."""
    config = obj.load_config()
    with obj.open_db() as db:
        commits = CommitRepository(db)
        rows = AggregateRepository(db).get_hotspots(limit, sort, path_prefix)
        coverage = config.ai_coverage(commits.enriched_count(), commits.total_count())

    if obj.json:
        emit_json({"sort": sort, "hotspots": rows, "aiCoverage": coverage})
        return
    print_coverage(coverage)
    render_hotspots(rows, sort)


@cli.command()
@click.argument("path", required=False)
@click.option("--limit", "-l", type=click.IntRange(min=1), default=5)
@click.pass_obj
@handle_errors
def stats(obj: CommandContext, path: Optional[str], limit: int) -> None:
    """Show change statistics for a file, a directory or the whole repository."""
    config = obj.load_config()
    with obj.open_db() as db:
        commits = CommitRepository(db)
        aggregates = AggregateRepository(db)
        coverage = config.ai_coverage(commits.enriched_count(), commits.total_count())

        file_stats = aggregates.get_file_stats(path) if path else None
        if file_stats:
            data = {
                "path": path,
                "type": "file",
                "stats": file_stats,
                "contributors": aggregates.get_top_contributors(path, limit),
                "recentCommits": [c.to_dict() for c in commits.recent_for_file(path, limit)],
            }
        else:
            prefix = _directory_prefix(path) if path else ""
            data = {
                "path": path or "(repository)",
                "type": "directory",
                "stats": aggregates.get_directory_stats(prefix),
                "contributors": aggregates.get_directory_contributors(prefix, limit),
                "topFiles": aggregates.get_hotspots(limit, "total", prefix or None),
            }

    if obj.json:
        emit_json({**data, "aiCoverage": coverage})
        return
    print_coverage(coverage)
    render_file_stats(data["path"], data["stats"], data["contributors"])
    if data.get("recentCommits"):
        render_recent_commits(data["recentCommits"])
    if data.get("topFiles"):
        render_hotspots(data["topFiles"], "total")


@cli.command()
@click.argument("path", required=False)
@click.option("--limit", "-l", type=click.IntRange(min=1), default=10)
@click.pass_obj
@handle_errors
def coupling(obj: CommandContext, path: Optional[str], limit: int) -> None:
    """Show files that change together."""
    with obj.open_db() as db:
        aggregates = AggregateRepository(db)
        if not path:
            pairs = aggregates.get_top_coupled_pairs(limit)
            if obj.json:
                emit_json({"pairs": pairs})
            else:
                render_coupled_pairs(pairs)
            return

        if aggregates.get_file_stats(path):
            rows = aggregates.get_coupled_files(path, limit)
            kind = "file"
        else:
            rows = aggregates.get_directory_coupled_files(_directory_prefix(path), limit)
            kind = "directory"

    if obj.json:
        emit_json({"path": path, "type": kind, "coupled": rows})
    else:
        render_coupled_files(path, rows)


@cli.command()
@click.argument("path")
@click.option("--window", "-w", type=click.Choice(list(WINDOW_FORMATS)), default="monthly")
@click.option("--limit", "-l", type=click.IntRange(min=1), default=12)
@click.pass_obj
@handle_errors
def trends(obj: CommandContext, path: str, window: str, limit: int) -> None:
    """Show change activity and classification mix over time."""
    with obj.open_db() as db:
        aggregates = AggregateRepository(db)
        directory = aggregates.get_file_stats(path) is None
        target = _directory_prefix(path) if directory else path
        periods = aggregates.get_trends(target, window, limit, directory=directory)

    trend = compute_trend(periods)
    if obj.json:
        emit_json(trends_to_dict(path, window, periods, trend))
    else:
        render_trends(path, window, periods, trend)


@cli.command()
@click.argument("text")
@click.option("--limit", "-l", type=click.IntRange(min=1), default=20)
@click.option("--classification", type=click.Choice(CLASSIFICATIONS), default=None)
@click.pass_obj
@handle_errors
def query(obj: CommandContext, text: str, limit: int, classification: Optional[str]) -> None:
    """Full-text search over commit messages and summaries."""
    with obj.open_db() as db:
        rows = SearchService(db).search(text, limit, classification)

    if obj.json:
        emit_json({"query": text, "results": rows})
    else:
        render_search(rows)


@cli.command()
@click.pass_obj
@handle_errors
def status(obj: CommandContext) -> None:
    """Show index status."""
    with obj.open_db() as db:
        info = collect_status(db, CommitRepository(db))

    if obj.json:
        emit_json(status_to_dict(info))
    else:
        render_status(info)


@cli.command()
@click.pass_obj
@handle_errors
def rebuild(obj: CommandContext) -> None:
    """Rebuild aggregates and the search index from stored commits."""
    with obj.open_db(lock=True) as db:
        AggregateRepository(db).rebuild_all()
        indexed = SearchService(db).rebuild()

    if obj.json:
        emit_json({"success": True, "indexedCommits": indexed})
    else:
        console.print(f"[green]✅ Rebuilt aggregates and search index ({indexed} commits)[/green]")


def main() -> None:
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
