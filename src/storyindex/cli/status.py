"""storyindex status: corpus-level counts and embedding settings."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from storyindex.cli.errors import err_config, err_no_db
from storyindex.config import ConfigError, load_config
from storyindex.db.models import CorpusStatus
from storyindex.db.repository import SqliteRepository
from storyindex.db.vectors import SqliteVecIndex
from storyindex.ingest.persistence import SETTING_DIMENSION, SETTING_INDEXED_AT, SETTING_MODEL

console = Console()


@dataclass
class _StatusReport:
    corpus: CorpusStatus
    settings: dict[str, str]
    vector_count: int
    source_count: int


def status_cmd(
    config_dir: Annotated[
        Path | None,
        typer.Option("--config-dir", help="Directory holding storyindex.yaml (default: CWD)."),
    ] = None,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Corpus database path (default from config)."),
    ] = None,
) -> None:
    """Show corpus status: stories, words, tags, flagged files, embedding settings."""
    try:
        cfg = load_config(config_dir)
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from exc

    db_path = db if db is not None else Path(cfg.storage.db_path)
    if not db_path.exists():
        console.print(err_no_db(str(db_path)))
        raise typer.Exit(1)

    report = asyncio.run(_collect(db_path))
    _show_corpus_panel(db_path, report)
    _show_status_table(report.corpus)


async def _collect(db_path: Path) -> _StatusReport:
    repo = SqliteRepository(str(db_path))
    await repo.initialize()
    try:
        corpus = await repo.status()
        settings = await repo.get_settings()
        sources = await repo.list_sources()
        vector_count = await SqliteVecIndex(repo, settings.get(SETTING_MODEL, "")).count()
    finally:
        await repo.close()
    return _StatusReport(corpus, settings, vector_count, len(sources))


# ---------------------------------------------------------------------------
# Renderers
# ---------------------------------------------------------------------------


def _show_corpus_panel(db_path: Path, report: _StatusReport) -> None:
    corpus = report.corpus
    settings = report.settings
    size_mb = db_path.stat().st_size / (1024 * 1024)

    model = settings.get(SETTING_MODEL)
    dims = settings.get(SETTING_DIMENSION)
    lines = [
        f"Database:  {db_path} ({size_mb:.1f} MB)",
        f"Stories: [bold]{corpus.story_count}[/]  |  "
        f"Sources: [bold]{report.source_count}[/]  |  "
        f"Words: [bold]{corpus.total_words:,}[/]",
        f"Tags: [bold]{corpus.tag_count}[/]  |  "
        f"Flagged (non-OK): [bold]{corpus.flagged_count}[/]  |  "
        f"Vectors: [bold]{report.vector_count:,}[/]",
        f"Embedding: {model} ({dims} dims)" if model else "Embedding: [dim]not set (no run yet)[/]",
        f"Last indexed: [dim]{settings.get(SETTING_INDEXED_AT) or 'n/a'}[/]",
        f"Latest update: [dim]{corpus.latest_update or 'n/a'}[/]",
    ]
    console.print(Panel("\n".join(lines), title="[bold]Story corpus[/]", expand=False))


def _show_status_table(corpus: CorpusStatus) -> None:
    if not corpus.counts_by_status:
        console.print("[dim]No stories indexed yet.[/]")
        return
    table = Table(title="Stories by status", box=None, padding=(0, 2))
    table.add_column("Status")
    table.add_column("Stories", justify="right")
    for status, count in sorted(corpus.counts_by_status.items()):
        style = "green" if status == "OK" else "yellow"
        table.add_row(f"[{style}]{status}[/]", str(count))
    console.print(table)
