"""Reading ModelSegments ``modelFinal.seg`` tables and writing called segments.

Format: optional SAM-style header lines starting with ``@``, a tab-separated
column header, then one row per segment. Missing posteriors are written as
``NaN`` by ModelSegments (e.g. segments without heterozygous sites).
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from .models import Classification, PosteriorSummary, Segment
from .utils import open_textmaybe_gzip
from .validation import DataError

logger = logging.getLogger(__name__)

CONTIG = "CONTIG"
START = "START"
END = "END"
NUM_POINTS_COPY_RATIO = "NUM_POINTS_COPY_RATIO"
NUM_POINTS_ALLELE_FRACTION = "NUM_POINTS_ALLELE_FRACTION"
LOG2_CR_COLUMNS = (
    "LOG2_COPY_RATIO_POSTERIOR_10",
    "LOG2_COPY_RATIO_POSTERIOR_50",
    "LOG2_COPY_RATIO_POSTERIOR_90",
)
MAF_COLUMNS = (
    "MINOR_ALLELE_FRACTION_POSTERIOR_10",
    "MINOR_ALLELE_FRACTION_POSTERIOR_50",
    "MINOR_ALLELE_FRACTION_POSTERIOR_90",
)
REQUIRED_COLUMNS = (CONTIG, START, END, NUM_POINTS_COPY_RATIO)

CALL_COLUMNS = ("CALL", "NORMAL_PEAK", "MAHALANOBIS_D2")


@dataclass
class SegmentTable:
    """Parsed segment file: header lines, column names and segments (plus their raw rows)."""

    header_lines: List[str]
    columns: List[str]
    segments: List[Segment]
    rows: List[List[str]] = field(default_factory=list)


def _parse_float(s: str) -> float:
    s = s.strip()
    if s == "" or s.lower() in {"nan", "na", "."}:
        return float("nan")
    return float(s)


def _parse_posterior(values: Sequence[float]) -> Optional[PosteriorSummary]:
    if all(math.isnan(v) for v in values):
        return None
    # partially missing percentiles are kept so that validation can reject them
    return PosteriorSummary(p10=values[0], p50=values[1], p90=values[2])


def read_modeled_segments(path: str | Path) -> SegmentTable:
    """Load segments from a modelFinal.seg file (plain or gzipped)."""
    header_lines: List[str] = []
    columns: Optional[List[str]] = None
    segments: List[Segment] = []
    rows: List[List[str]] = []

    with open_textmaybe_gzip(path, "rt") as fh:
        for lineno, raw in enumerate(fh, start=1):
            line = raw.rstrip("\n").rstrip("\r")
            if not line:
                continue
            if line.startswith("@"):
                header_lines.append(line)
                continue
            fields = line.split("\t")
            if columns is None:
                columns = fields
                missing = [c for c in REQUIRED_COLUMNS if c not in columns]
                if missing:
                    raise DataError(f"{path}: missing required column(s): {', '.join(missing)}")
                continue
            if len(fields) != len(columns):
                raise DataError(
                    f"{path}:{lineno}: expected {len(columns)} fields, found {len(fields)}"
                )
            rec: Dict[str, str] = dict(zip(columns, fields))
            try:
                seg = Segment(
                    contig=rec[CONTIG],
                    start=int(rec[START]),
                    end=int(rec[END]),
                    num_points_copy_ratio=int(rec[NUM_POINTS_COPY_RATIO]),
                    num_points_allele_fraction=int(rec.get(NUM_POINTS_ALLELE_FRACTION, "0") or 0),
                    log2_copy_ratio=(
                        _parse_posterior([_parse_float(rec[c]) for c in LOG2_CR_COLUMNS])
                        if all(c in rec for c in LOG2_CR_COLUMNS)
                        else None
                    ),
                    minor_allele_fraction=(
                        _parse_posterior([_parse_float(rec[c]) for c in MAF_COLUMNS])
                        if all(c in rec for c in MAF_COLUMNS)
                        else None
                    ),
                )
            except ValueError as e:
                raise DataError(f"{path}:{lineno}: {e}") from e
            segments.append(seg)
            rows.append(fields)

    if columns is None:
        raise DataError(f"{path}: no column header found")

    logger.info("Read %d segment(s) from %s", len(segments), path)
    return SegmentTable(header_lines=header_lines, columns=columns, segments=segments, rows=rows)


def write_called_segments(
    path: str | Path,
    table: SegmentTable,
    classifications: Sequence[Classification],
) -> Path:
    """Write the input table with CALL / NORMAL_PEAK / MAHALANOBIS_D2 columns appended."""
    if len(classifications) != len(table.segments):
        raise ValueError("one classification per segment is required")

    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    with open_textmaybe_gzip(out, "wt") as fh:
        for line in table.header_lines:
            fh.write(line + "\n")
        fh.write("\t".join(list(table.columns) + list(CALL_COLUMNS)) + "\n")
        for row, c in zip(table.rows, classifications):
            peak = "NA" if c.peak_index is None else str(c.peak_index)
            d2 = "NA" if c.distance2 is None else f"{c.distance2:.6f}"
            fh.write("\t".join(list(row) + [c.label.value, peak, d2]) + "\n")
    return out
