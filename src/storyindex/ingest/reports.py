"""Run reports: JSON summary, CSV detail files, optional timing profile."""

from __future__ import annotations

import csv
import json
import statistics
import time
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Iterator

from storyindex.db.models import DuplicateGroup

SUMMARY_FILE = "ingest_summary.json"
DUPLICATES_FILE = "duplicate_groups.csv"
FLAGGED_FILE = "flagged_files.csv"
FAILURES_FILE = "extraction_failures.csv"
PROFILE_FILE = "timing_profile.json"

_DUPLICATE_HEADER = ["canon_hash", "story_id", "source_count", "sample_source_paths"]
_FLAGGED_HEADER = [
    "source_path",
    "source_type",
    "status",
    "status_notes",
    "file_size_bytes",
    "extracted_chars",
    "extract_method",
]
_FAILURE_HEADER = ["source_path", "source_type", "error_message"]


@dataclass
class FlaggedFile:
    source_path: str
    source_type: str
    status: str
    status_notes: str | None
    file_size_bytes: int
    extracted_chars: int
    extract_method: str


@dataclass
class FailedFile:
    source_path: str
    source_type: str
    error_message: str


@dataclass
class ReportPaths:
    summary: Path
    duplicate_groups: Path
    flagged_files: Path
    extraction_failures: Path
    timing_profile: Path | None = None

    def as_list(self) -> list[Path]:
        paths = [self.summary, self.duplicate_groups, self.flagged_files, self.extraction_failures]
        return paths + ([self.timing_profile] if self.timing_profile else [])


# ---------------------------------------------------------------------------
# Timing
# ---------------------------------------------------------------------------


class StageTimer:
    """Accumulates wall-clock time per pipeline stage; a no-op when disabled."""

    def __init__(self, enabled: bool = False) -> None:
        self.enabled = enabled
        self._totals: dict[str, float] = defaultdict(float)
        self._calls: dict[str, int] = defaultdict(int)

    @contextmanager
    def stage(self, name: str) -> Iterator[None]:
        if not self.enabled:
            yield
            return
        started = time.perf_counter()
        try:
            yield
        finally:
            self._totals[name] += time.perf_counter() - started
            self._calls[name] += 1

    def profile(self) -> dict[str, dict[str, float | int]]:
        return {
            name: {
                "total_s": round(total, 4),
                "mean_s": round(total / self._calls[name], 4),
                "calls": self._calls[name],
            }
            for name, total in sorted(self._totals.items())
        }


# ---------------------------------------------------------------------------
# Summary
# ---------------------------------------------------------------------------


@dataclass
class RunSummary:
    generated_at: str = ""
    scanned_files: int = 0
    indexed_stories: int = 0
    deduped_sources: int = 0
    skipped_unchanged: int = 0
    failed_files: int = 0
    vectors_upserted: int = 0
    vectors_deleted: int = 0
    orphans_deleted: int = 0
    totals_by_source_type: dict[str, int] = field(default_factory=dict)
    counts_by_status: dict[str, int] = field(default_factory=dict)
    average_word_count: float = 0.0
    median_word_count: float = 0.0

    def count_source_type(self, source_type: str) -> None:
        self.totals_by_source_type[source_type] = self.totals_by_source_type.get(source_type, 0) + 1

    def count_status(self, status: str) -> None:
        self.counts_by_status[status] = self.counts_by_status.get(status, 0) + 1

    def set_word_stats(self, word_counts: list[int]) -> None:
        if not word_counts:
            self.average_word_count = self.median_word_count = 0.0
            return
        self.average_word_count = round(statistics.fmean(word_counts), 2)
        self.median_word_count = round(float(statistics.median(word_counts)), 2)

    def to_dict(self) -> dict:
        return asdict(self)


# ---------------------------------------------------------------------------
# Writers
# ---------------------------------------------------------------------------


def _write_csv(path: Path, header: list[str], rows: list[list]) -> None:
    with path.open("w", encoding="utf-8", newline="") as fh:
        writer = csv.writer(fh, lineterminator="\n")
        writer.writerow(header)
        writer.writerows(rows)


def write_reports(
    report_dir: Path,
    summary: RunSummary,
    duplicate_groups: list[DuplicateGroup],
    flagged: list[FlaggedFile],
    failures: list[FailedFile],
    profile: dict | None = None,
) -> ReportPaths:
    """Write every run report into *report_dir* (created if missing)."""
    report_dir.mkdir(parents=True, exist_ok=True)
    paths = ReportPaths(
        summary=report_dir / SUMMARY_FILE,
        duplicate_groups=report_dir / DUPLICATES_FILE,
        flagged_files=report_dir / FLAGGED_FILE,
        extraction_failures=report_dir / FAILURES_FILE,
    )

    paths.summary.write_text(json.dumps(summary.to_dict(), indent=2), encoding="utf-8")
    _write_csv(
        paths.duplicate_groups,
        _DUPLICATE_HEADER,
        [
            [g.canon_hash, g.story_id, g.source_count, " | ".join(g.sample_source_paths)]
            for g in duplicate_groups
        ],
    )
    _write_csv(
        paths.flagged_files,
        _FLAGGED_HEADER,
        [
            [
                f.source_path,
                f.source_type,
                f.status,
                f.status_notes or "",
                f.file_size_bytes,
                f.extracted_chars,
                f.extract_method,
            ]
            for f in flagged
        ],
    )
    _write_csv(
        paths.extraction_failures,
        _FAILURE_HEADER,
        [[f.source_path, f.source_type, f.error_message] for f in failures],
    )

    if profile is not None:
        paths.timing_profile = report_dir / PROFILE_FILE
        paths.timing_profile.write_text(json.dumps(profile, indent=2), encoding="utf-8")
    return paths
