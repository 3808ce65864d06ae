"""storyindex index / reindex: ingest a folder of stories into the corpus.

Accepted extensions (configurable): .txt .html .htm .rtf .doc .docx .pdf.
``index`` processes every file; ``reindex`` defaults to ``--changed-only``
and skips files whose bytes match the raw hash already on record.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn
from rich.table import Table

from storyindex.cli.errors import (
    err_config,
    err_folder_not_found,
    err_no_api_key,
    err_probe_failed,
    err_settings_mismatch,
    err_storage,
    warn_failed_files,
    warn_flagged_files,
)
from storyindex.config import ConfigError, IndexerConfig, load_config
from storyindex.db.repository import SqliteRepository
from storyindex.db.vectors import SqliteVecIndex
from storyindex.ingest.indexer import FileOutcome, OutcomeKind, RunOptions, RunResult, RunServices, run_indexing
from storyindex.ingest.source import discover
from storyindex.services.llm_client import (
    LiteLLMCompletionService,
    LiteLLMEmbeddingService,
    validate_api_key,
)
from storyindex.services.object_store import LocalObjectStore
from storyindex.utils.errors import EmbeddingProbeError, SettingsMismatchError, StorageError
from storyindex.utils.logging import configure_logging

console = Console()

_OUTCOME_STYLE = {
    OutcomeKind.INDEXED: "[green]+[/]",
    OutcomeKind.DUPLICATE: "[cyan]=[/]",
    OutcomeKind.SKIPPED: "[dim]·[/]",
    OutcomeKind.FAILED: "[red]✗[/]",
}


def index_cmd(
    folder: Annotated[Path, typer.Argument(help="Folder containing story files.")],
    changed_only: Annotated[
        bool,
        typer.Option("--changed-only", help="Skip files whose path and raw hash are unchanged."),
    ] = False,
    force_reindex: Annotated[
        bool,
        typer.Option("--force-reindex", help="Override embedding model/dimension mismatch checks."),
    ] = False,
    reprocess_existing: Annotated[
        bool,
        typer.Option(
            "--reprocess-existing",
            help="Run metadata, chunking and embedding again for already-known text.",
        ),
    ] = False,
    concurrency: Annotated[
        int | None,
        typer.Option("--concurrency", min=1, help="Files processed concurrently (default from config)."),
    ] = None,
    profile: Annotated[
        bool,
        typer.Option("--profile", help="Write timing_profile.json with per-stage timings."),
    ] = False,
    ai_metadata: Annotated[
        bool,
        typer.Option("--ai-metadata/--no-ai-metadata", help="Generate metadata with the completion model."),
    ] = True,
    config_dir: Annotated[
        Path | None,
        typer.Option("--config-dir", help="Directory holding storyindex.yaml (default: CWD)."),
    ] = None,
    json_logs: Annotated[
        bool,
        typer.Option("--json-logs", help="Emit JSON log lines on stderr."),
    ] = False,
) -> None:
    """Index every story file in FOLDER."""
    _run_cli(
        folder,
        RunOptions(
            changed_only=changed_only,
            force_reindex=force_reindex,
            reprocess_existing=reprocess_existing,
        ),
        concurrency=concurrency,
        profile=profile,
        ai_metadata=ai_metadata,
        config_dir=config_dir,
        json_logs=json_logs,
    )


def reindex_cmd(
    folder: Annotated[Path, typer.Argument(help="Folder containing story files.")],
    changed_only: Annotated[
        bool,
        typer.Option("--changed-only/--all", help="Only process new or changed files."),
    ] = True,
    force_reindex: Annotated[
        bool,
        typer.Option("--force-reindex", help="Override embedding model/dimension mismatch checks."),
    ] = False,
    concurrency: Annotated[
        int | None,
        typer.Option("--concurrency", min=1, help="Files processed concurrently (default from config)."),
    ] = None,
    config_dir: Annotated[
        Path | None,
        typer.Option("--config-dir", help="Directory holding storyindex.yaml (default: CWD)."),
    ] = None,
    json_logs: Annotated[
        bool,
        typer.Option("--json-logs", help="Emit JSON log lines on stderr."),
    ] = False,
) -> None:
    """Re-index FOLDER, skipping unchanged files by default."""
    _run_cli(
        folder,
        RunOptions(changed_only=changed_only, force_reindex=force_reindex),
        concurrency=concurrency,
        profile=False,
        ai_metadata=True,
        config_dir=config_dir,
        json_logs=json_logs,
    )


# ------------------------------------------------------------------
# Shared driver
# ------------------------------------------------------------------


def _run_cli(
    folder: Path,
    options: RunOptions,
    *,
    concurrency: int | None,
    profile: bool,
    ai_metadata: bool,
    config_dir: Path | None,
    json_logs: bool,
) -> None:
    configure_logging("INFO", json_output=json_logs)

    if not folder.is_dir():
        console.print(err_folder_not_found(str(folder)))
        raise typer.Exit(1)

    try:
        cfg = load_config(config_dir)
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from exc

    # CLI flags are the last config layer
    if concurrency is not None:
        cfg.run.story_concurrency = concurrency
    if profile:
        cfg.run.profile = True

    models = [(cfg.embedding.model, cfg.embedding.api_base)]
    if ai_metadata:
        models.append((cfg.metadata.model, cfg.metadata.api_base))
    for model, api_base in models:
        try:
            validate_api_key(model, api_base)
        except EnvironmentError as exc:
            provider = model.split("/")[0] if "/" in model else "openai"
            console.print(err_no_api_key(provider))
            raise typer.Exit(1) from exc

    total = len(discover(folder, cfg.extraction.accept_extensions))
    if total == 0:
        console.print(f"[yellow]No supported files found in:[/] {folder}")
        raise typer.Exit(0)

    console.print(f"\n[bold]→ {folder}[/]  [dim]({total} files)[/]")

    try:
        result = asyncio.run(_index(cfg, folder, options, ai_metadata=ai_metadata, total=total))
    except SettingsMismatchError as exc:
        console.print(err_settings_mismatch(exc.field, exc.stored, exc.current))
        raise typer.Exit(1) from exc
    except EmbeddingProbeError as exc:
        console.print(err_probe_failed(cfg.embedding.model, exc.message))
        raise typer.Exit(1) from exc
    except StorageError as exc:
        console.print(err_storage(exc.message))
        raise typer.Exit(1) from exc

    _show_summary(result)


async def _index(
    cfg: IndexerConfig,
    folder: Path,
    options: RunOptions,
    *,
    ai_metadata: bool,
    total: int,
) -> RunResult:
    repo = SqliteRepository(cfg.storage.db_path)
    await repo.initialize()
    embedding = LiteLLMEmbeddingService(cfg.embedding.model, api_base=cfg.embedding.api_base)
    services = RunServices(
        store=repo,
        objects=LocalObjectStore(cfg.storage.object_dir),
        vectors=SqliteVecIndex(repo, embedding.model_name),
        embedding=embedding,
        completion=(
            LiteLLMCompletionService(
                cfg.metadata.model,
                api_base=cfg.metadata.api_base,
                timeout_s=cfg.metadata.timeout_s,
            )
            if ai_metadata
            else None
        ),
    )

    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            transient=True,
            console=console,
        ) as prog:
            task = prog.add_task("Indexing…", total=total)

            def _on_file(outcome: FileOutcome) -> None:
                if outcome.kind is not OutcomeKind.SKIPPED:
                    prog.console.print(
                        f"  {_OUTCOME_STYLE[outcome.kind]} {outcome.source.source_path}"
                        + (f"  [dim]{outcome.error}[/]" if outcome.error else "")
                    )
                prog.advance(task)

            return await run_indexing(cfg, folder, services, options, on_file=_on_file)
    finally:
        await repo.close()


# ------------------------------------------------------------------
# Output
# ------------------------------------------------------------------


def _show_summary(result: RunResult) -> None:
    summary = result.summary

    table = Table(title="Index complete", show_header=False, box=None, padding=(0, 2))
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Scanned", str(summary.scanned_files))
    table.add_row("Indexed", f"[green]{summary.indexed_stories}[/]")
    table.add_row("Deduped", str(summary.deduped_sources))
    table.add_row("Skipped (unchanged)", str(summary.skipped_unchanged))
    table.add_row("Failed", f"[red]{summary.failed_files}[/]" if summary.failed_files else "0")
    table.add_row("Vectors upserted", str(summary.vectors_upserted))
    table.add_row("Vectors deleted", str(summary.vectors_deleted))
    table.add_row("Avg / median words", f"{summary.average_word_count} / {summary.median_word_count}")
    table.add_row(
        "Embedding model",
        f"{result.embedding_model} [dim]({result.embedding_dimension} dims)[/]",
    )
    console.print(table)

    if summary.counts_by_status:
        status_table = Table(title="Quality status", box=None, padding=(0, 2))
        status_table.add_column("Status")
        status_table.add_column("Files", justify="right")
        for status, count in sorted(summary.counts_by_status.items()):
            status_table.add_row(status, str(count))
        console.print(status_table)

    if result.reports is not None:
        if result.flagged:
            console.print(warn_flagged_files(len(result.flagged), str(result.reports.flagged_files)))
        if result.failures:
            console.print(
                warn_failed_files(len(result.failures), str(result.reports.extraction_failures))
            )
        console.print("\n[bold]Reports[/]")
        for path in result.reports.as_list():
            console.print(f"  [dim]{path}[/]")
