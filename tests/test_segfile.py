import gzip
from pathlib import Path

import pytest

from segcall.models import Classification, Label
from segcall.segfile import CALL_COLUMNS, read_modeled_segments, write_called_segments
from segcall.validation import DataError

HEADER = (
    "CONTIG\tSTART\tEND\tNUM_POINTS_COPY_RATIO\tNUM_POINTS_ALLELE_FRACTION\t"
    "LOG2_COPY_RATIO_POSTERIOR_10\tLOG2_COPY_RATIO_POSTERIOR_50\tLOG2_COPY_RATIO_POSTERIOR_90\t"
    "MINOR_ALLELE_FRACTION_POSTERIOR_10\tMINOR_ALLELE_FRACTION_POSTERIOR_50\tMINOR_ALLELE_FRACTION_POSTERIOR_90"
)
ROWS = [
    "chr1\t1\t1000\t120\t15\t-0.05\t0.0\t0.05\t0.46\t0.48\t0.49",
    "chr1\t1001\t5000\t4\t0\t0.95\t1.0\t1.05\tNaN\tNaN\tNaN",
]


def _write(path: Path, lines) -> Path:
    path.write_text("\n".join(lines) + "\n")
    return path


def test_read_modeled_segments(tmp_path: Path) -> None:
    path = _write(tmp_path / "t.modelFinal.seg", ["@HD\tVN:1.6", "@RG\tID:GATKCopyNumber\tSM:T", HEADER] + ROWS)
    table = read_modeled_segments(path)

    assert table.header_lines == ["@HD\tVN:1.6", "@RG\tID:GATKCopyNumber\tSM:T"]
    assert len(table.segments) == 2
    first, second = table.segments
    assert (first.contig, first.start, first.end) == ("chr1", 1, 1000)
    assert first.num_points_copy_ratio == 120
    assert first.num_points_allele_fraction == 15
    assert first.log2_copy_ratio.p50 == 0.0
    assert first.minor_allele_fraction.p90 == pytest.approx(0.49)
    assert second.minor_allele_fraction is None
    assert second.copy_ratio_mean == pytest.approx(2.0)


def test_read_gzipped(tmp_path: Path) -> None:
    path = tmp_path / "t.seg.gz"
    with gzip.open(path, "wt") as fh:
        fh.write("\n".join([HEADER] + ROWS) + "\n")
    assert len(read_modeled_segments(path).segments) == 2


def test_copy_ratio_only_file(tmp_path: Path) -> None:
    cols = HEADER.split("\t")[:8]
    rows = ["\t".join(r.split("\t")[:8]) for r in ROWS]
    table = read_modeled_segments(_write(tmp_path / "cr.seg", ["\t".join(cols)] + rows))
    assert all(s.minor_allele_fraction is None for s in table.segments)
    assert all(s.log2_copy_ratio is not None for s in table.segments)


def test_missing_column_is_reported(tmp_path: Path) -> None:
    path = _write(tmp_path / "bad.seg", ["CONTIG\tSTART\tEND", "chr1\t1\t10"])
    with pytest.raises(DataError, match="NUM_POINTS_COPY_RATIO"):
        read_modeled_segments(path)


def test_ragged_row_is_reported(tmp_path: Path) -> None:
    path = _write(tmp_path / "bad.seg", [HEADER, "chr1\t1\t1000\t120"])
    with pytest.raises(DataError, match="expected 11 fields"):
        read_modeled_segments(path)


def test_non_numeric_value_is_reported(tmp_path: Path) -> None:
    path = _write(tmp_path / "bad.seg", [HEADER, ROWS[0].replace("\t120\t", "\tmany\t")])
    with pytest.raises(DataError, match=":2:"):
        read_modeled_segments(path)


def test_no_header_is_reported(tmp_path: Path) -> None:
    path = _write(tmp_path / "empty.seg", ["@HD\tVN:1.6"])
    with pytest.raises(DataError, match="no column header"):
        read_modeled_segments(path)


def test_write_called_segments(tmp_path: Path) -> None:
    table = read_modeled_segments(_write(tmp_path / "t.seg", ["@HD\tVN:1.6", HEADER] + ROWS))
    calls = [
        Classification(segment=table.segments[0], label=Label.NORMAL, peak_index=1, distance2=0.25),
        Classification(segment=table.segments[1], label=Label.INDETERMINATE),
    ]
    out = write_called_segments(tmp_path / "out" / "t.called.seg", table, calls)

    lines = out.read_text().splitlines()
    assert lines[0] == "@HD\tVN:1.6"
    assert lines[1].split("\t")[-3:] == list(CALL_COLUMNS)
    assert lines[2].split("\t")[-3:] == ["NORMAL", "1", "0.250000"]
    assert lines[3].split("\t")[-3:] == ["INDETERMINATE", "NA", "NA"]
    assert lines[3].split("\t")[:3] == ["chr1", "1001", "5000"]


def test_write_requires_one_call_per_segment(tmp_path: Path) -> None:
    table = read_modeled_segments(_write(tmp_path / "t.seg", [HEADER] + ROWS))
    with pytest.raises(ValueError):
        write_called_segments(tmp_path / "x.seg", table, [])
