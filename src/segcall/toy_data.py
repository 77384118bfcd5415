from __future__ import annotations

import math
import random
from pathlib import Path
from typing import Any, Dict, List, Tuple

from .segfile import LOG2_CR_COLUMNS, MAF_COLUMNS
from .utils import ensure_outdir, write_json

# (name, linear copy ratio, minor allele fraction, relative frequency)
_STATES: List[Tuple[str, float, float, int]] = [
    ("normal", 1.0, 0.485, 6),
    ("loss", 0.5, 0.03, 2),
    ("gain", 1.5, 0.33, 2),
    ("cnloh", 1.0, 0.04, 1),
]

_CONTIGS = [("chr1", 2_000_000), ("chr2", 1_800_000), ("chr3", 1_500_000), ("chr4", 1_200_000)]

_HEADER = [
    "@HD\tVN:1.6",
    *[f"@SQ\tSN:{name}\tLN:{length}" for name, length in _CONTIGS],
    "@RG\tID:GATKCopyNumber\tSM:TOY",
]

_COLUMNS = [
    "CONTIG",
    "START",
    "END",
    "NUM_POINTS_COPY_RATIO",
    "NUM_POINTS_ALLELE_FRACTION",
    *LOG2_CR_COLUMNS,
    *MAF_COLUMNS,
]


def _fmt(x: float) -> str:
    return f"{x:.6f}"


def _maf_percentiles(center: float, spread: float) -> Tuple[float, float, float]:
    p10 = max(0.0, center - spread)
    p90 = min(0.5, center + spread)
    p50 = min(max(center, p10), p90)
    return p10, p50, p90


def make_toy_data(*, outdir: str | Path, seed: int = 7, segments_per_contig: int = 12) -> Dict[str, Any]:
    """Write a small synthetic ``modelFinal.seg`` with normal, loss, gain and CN-LOH segments.

    Returns
    -------
    dict
        Paths to the generated files and the number of segments per state.
    """
    outdir_p = ensure_outdir(outdir)
    rng = random.Random(seed)

    population = [s for s in _STATES for _ in range(s[3])]
    rows: List[List[str]] = []
    state_counts: Dict[str, int] = {s[0]: 0 for s in _STATES}

    for contig, length in _CONTIGS:
        step = length // segments_per_contig
        for i in range(segments_per_contig):
            name, cr, maf, _ = rng.choice(population)
            state_counts[name] += 1
            start = i * step + 1
            end = (i + 1) * step
            n_cr = rng.randint(5, 400)
            n_af = max(0, n_cr // 8)

            log2 = math.log2(cr) + rng.gauss(0.0, 0.02)
            log2_spread = 0.03 + 0.3 / math.sqrt(n_cr)
            log2_pct = (log2 - log2_spread, log2, log2 + log2_spread)

            if n_af == 0:
                maf_pct = ["NaN"] * 3
            else:
                maf_spread = 0.01 + 0.05 / math.sqrt(n_af)
                maf_pct = [_fmt(v) for v in _maf_percentiles(maf + rng.gauss(0.0, 0.005), maf_spread)]

            rows.append(
                [contig, str(start), str(end), str(n_cr), str(n_af)]
                + [_fmt(v) for v in log2_pct]
                + maf_pct
            )

    seg_path = outdir_p / "toy.modelFinal.seg"
    with open(seg_path, "wt", encoding="utf-8") as fh:
        for line in _HEADER:
            fh.write(line + "\n")
        fh.write("\t".join(_COLUMNS) + "\n")
        for row in rows:
            fh.write("\t".join(row) + "\n")

    summary = {
        "segments": str(seg_path),
        "outdir": str(outdir_p),
        "n_segments": len(rows),
        "states": state_counts,
    }
    write_json(outdir_p / "toy_summary.json", summary)
    return summary
