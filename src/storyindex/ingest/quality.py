"""Quality classifier: one fixed-priority status per source file.

Priority, first match wins:

1. EXTRACTION_FAILED  decoder error or ``failed`` method
2. BINARY_GARBAGE     control/replacement characters above the ratio limit
3. PDF_SCANNED_IMAGE  PDF with little text, a non-trivial file size and a
                      very low characters-per-KB density (OCR is deferred)
4. NEEDS_REVIEW       html/rtf/doc whose text is implausibly small for the file
5. TOO_SHORT          canonical text below the configured minimum
6. OK
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from storyindex.config import QualityCfg
from storyindex.db.models import QualityStatus

# C0 controls other than tab/newline/CR, DEL, and the replacement character.
_GARBAGE_CHAR_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f\ufffd]")
# U+FFFD read back as windows-1252 bytes.
_MOJIBAKE_REPLACEMENT = "ï¿½"

_REVIEW_SOURCE_TYPES = frozenset(["html", "rtf", "doc"])

NOTE_GARBAGE = "Extracted text contains excessive control/replacement characters"
NOTE_SCANNED = "PDF appears scanned/image-based (OCR deferred)"
NOTE_REVIEW = "Extraction suspiciously short relative to file size"


@dataclass
class Classification:
    status: QualityStatus
    notes: list[str]

    @property
    def notes_text(self) -> str | None:
        return " | ".join(self.notes) if self.notes else None


def garbage_ratio(text: str) -> float:
    """Share of *text* made of control or replacement characters."""
    if not text:
        return 0.0
    bad = len(_GARBAGE_CHAR_RE.findall(text)) + text.count(_MOJIBAKE_REPLACEMENT)
    return bad / len(text)


def classify(
    *,
    source_type: str,
    extraction_failed: bool,
    extraction_error: str | None,
    extracted_text: str,
    canonical_text: str,
    file_size_bytes: int,
    cfg: QualityCfg,
) -> Classification:
    """Assign a QualityStatus.

    Args:
        source_type: ``txt``, ``html``, ``pdf``, ...
        extraction_failed: The decoder returned the ``failed`` method.
        extraction_error: Decoder error message, if any.
        extracted_text: Raw decoder output (before canonicalization).
        canonical_text: Canonicalized text.
        file_size_bytes: Size of the original file.
        cfg: Thresholds.
    """
    if extraction_failed:
        return Classification(QualityStatus.EXTRACTION_FAILED, [extraction_error or "Extraction failed"])

    if garbage_ratio(extracted_text) > cfg.binary_garbage_ratio:
        return Classification(QualityStatus.BINARY_GARBAGE, [NOTE_GARBAGE])

    chars = len(canonical_text)

    if source_type == "pdf" and chars < cfg.pdf_min_text_chars:
        chars_per_kb = chars / max(file_size_bytes / 1024, 1.0)
        if (
            file_size_bytes >= cfg.pdf_scanned_min_file_bytes
            and chars_per_kb < cfg.pdf_scanned_chars_per_kb
        ):
            return Classification(QualityStatus.PDF_SCANNED_IMAGE, [NOTE_SCANNED])

    if (
        source_type in _REVIEW_SOURCE_TYPES
        and chars < cfg.min_extract_chars
        and file_size_bytes > cfg.min_extract_chars * cfg.needs_review_size_multiplier
    ):
        return Classification(QualityStatus.NEEDS_REVIEW, [NOTE_REVIEW])

    if chars < cfg.min_extract_chars:
        return Classification(
            QualityStatus.TOO_SHORT,
            [f"Extracted text shorter than min_extract_chars ({cfg.min_extract_chars})"],
        )

    return Classification(QualityStatus.OK, [])
