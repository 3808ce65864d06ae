"""Tests for run reports and stage timing."""

from __future__ import annotations

import csv
import json

from storyindex.db.models import DuplicateGroup
from storyindex.ingest.reports import (
    FailedFile,
    FlaggedFile,
    RunSummary,
    StageTimer,
    write_reports,
)


def _rows(path):
    with path.open(encoding="utf-8", newline="") as fh:
        return list(csv.reader(fh))


def test_write_reports_creates_all_files(tmp_path):
    summary = RunSummary(generated_at="2026-01-01T00:00:00+00:00", scanned_files=3, indexed_stories=2)
    summary.count_source_type("txt")
    summary.count_source_type("txt")
    summary.count_status("OK")

    paths = write_reports(
        tmp_path / "reports",
        summary,
        [DuplicateGroup("s1", "h1", 2, "Title", ["a.txt", "b.html"])],
        [FlaggedFile("c.txt", "txt", "TOO_SHORT", None, 50, 50, "txt_utf8")],
        [FailedFile("d.doc", "doc", "antiword not installed")],
    )

    data = json.loads(paths.summary.read_text(encoding="utf-8"))
    assert data["scanned_files"] == 3
    assert data["indexed_stories"] == 2
    assert data["totals_by_source_type"] == {"txt": 2}
    assert data["counts_by_status"] == {"OK": 1}

    dupes = _rows(paths.duplicate_groups)
    assert dupes[0] == ["canon_hash", "story_id", "source_count", "sample_source_paths"]
    assert dupes[1] == ["h1", "s1", "2", "a.txt | b.html"]

    flagged = _rows(paths.flagged_files)
    assert flagged[0][0] == "source_path"
    assert flagged[1] == ["c.txt", "txt", "TOO_SHORT", "", "50", "50", "txt_utf8"]

    failures = _rows(paths.extraction_failures)
    assert failures == [
        ["source_path", "source_type", "error_message"],
        ["d.doc", "doc", "antiword not installed"],
    ]

    assert paths.timing_profile is None
    assert len(paths.as_list()) == 4


def test_empty_reports_have_headers_only(tmp_path):
    paths = write_reports(tmp_path, RunSummary(), [], [], [])
    assert len(_rows(paths.duplicate_groups)) == 1
    assert len(_rows(paths.flagged_files)) == 1
    assert len(_rows(paths.extraction_failures)) == 1


def test_profile_written_when_given(tmp_path):
    paths = write_reports(tmp_path, RunSummary(), [], [], [], profile={"extract": {"calls": 1}})
    assert paths.timing_profile is not None
    assert json.loads(paths.timing_profile.read_text(encoding="utf-8")) == {"extract": {"calls": 1}}
    assert paths.timing_profile in paths.as_list()


def test_word_stats():
    summary = RunSummary()
    summary.set_word_stats([1, 2, 3, 10])
    assert summary.average_word_count == 4.0
    assert summary.median_word_count == 2.5


def test_word_stats_empty():
    summary = RunSummary(average_word_count=9.0)
    summary.set_word_stats([])
    assert summary.average_word_count == 0.0
    assert summary.median_word_count == 0.0


def test_disabled_timer_records_nothing():
    timer = StageTimer(enabled=False)
    with timer.stage("extract"):
        pass
    assert timer.profile() == {}


def test_enabled_timer_counts_calls():
    timer = StageTimer(enabled=True)
    for _ in range(3):
        with timer.stage("embed"):
            pass
    with timer.stage("chunk"):
        pass
    profile = timer.profile()
    assert list(profile) == ["chunk", "embed"]
    assert profile["embed"]["calls"] == 3
    assert profile["embed"]["total_s"] >= 0.0
