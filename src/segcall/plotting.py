from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Optional, Sequence

import matplotlib.pyplot as plt
import numpy as np
from scipy.stats import norm

from .clustering import project_points
from .models import (
    ALLELE_FRACTION,
    COPY_RATIO,
    Classification,
    Label,
    MixtureFit,
    NormalPeakSet,
    SampledPoints,
)

logger = logging.getLogger(__name__)

LABEL_COLORS: Dict[Label, str] = {
    Label.NORMAL: "tab:green",
    Label.NOT_NORMAL: "tab:red",
    Label.INDETERMINATE: "tab:gray",
}


def _contig_offsets(classifications: Sequence[Classification]) -> Dict[str, int]:
    """Cumulative x offsets per contig, in order of first appearance."""
    ends: Dict[str, int] = {}
    for c in classifications:
        seg = c.segment
        ends[seg.contig] = max(ends.get(seg.contig, 0), seg.end)
    offsets: Dict[str, int] = {}
    total = 0
    for contig, end in ends.items():
        offsets[contig] = total
        total += end
    return offsets


def plot_segments(
    *,
    classifications: Sequence[Classification],
    out_png: str | Path,
    title: str = "Called segments",
) -> None:
    """Genome-wide copy ratio and minor allele fraction, one line per segment coloured by call."""
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    offsets = _contig_offsets(classifications)
    fig, (ax_cr, ax_af) = plt.subplots(2, 1, sharex=True, figsize=(12, 6))

    for c in classifications:
        seg = c.segment
        x0 = offsets[seg.contig] + seg.start
        x1 = offsets[seg.contig] + seg.end
        color = LABEL_COLORS[c.label]
        if seg.copy_ratio_mean is not None:
            ax_cr.plot([x0, x1], [seg.copy_ratio_mean] * 2, color=color, linewidth=3)
        if seg.minor_allele_fraction is not None:
            ax_af.plot([x0, x1], [seg.minor_allele_fraction.mean] * 2, color=color, linewidth=3)

    for off in offsets.values():
        ax_cr.axvline(off, color="#cccccc", linewidth=0.5)
        ax_af.axvline(off, color="#cccccc", linewidth=0.5)

    ax_cr.set_ylabel("Copy ratio")
    ax_af.set_ylabel("Minor allele fraction")
    ax_af.set_ylim(0.0, 0.5)
    ax_af.set_xlabel("Genomic position (contigs concatenated)")
    ax_cr.set_title(title)
    handles = [plt.Line2D([0], [0], color=col, linewidth=3) for col in LABEL_COLORS.values()]
    ax_cr.legend(handles, [lab.value for lab in LABEL_COLORS], loc="upper right", fontsize="small")
    fig.tight_layout()
    fig.savefig(out_png, dpi=160)
    plt.close(fig)


def plot_copy_ratio_fit(
    *,
    points: SampledPoints,
    fit: MixtureFit,
    normal: Optional[NormalPeakSet],
    out_png: str | Path,
    title: str = "Copy ratio fit",
    nbins: int = 100,
) -> None:
    """Histogram of sampled copy ratios with the fitted components overlaid."""
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    plt.figure()
    if len(points) > 0 and COPY_RATIO in points.dims:
        cr = points.column(COPY_RATIO)
        plt.hist(cr, bins=nbins, density=True, color="#bbbbbb")
        xs = np.linspace(float(cr.min()), float(cr.max()), 500)
        usable = {p.index for p in fit.usable}
        normal_index = normal.peak.index if normal is not None and normal.peak is not None else None
        for peak in fit.peaks:
            mean = peak.copy_ratio_mean
            sd = peak.copy_ratio_sd
            if mean is None or sd is None or sd <= 0:
                continue
            style = "-" if peak.index in usable else ":"
            color = "tab:green" if peak.index == normal_index else "tab:blue"
            plt.plot(xs, peak.weight * norm.pdf(xs, mean, sd), style, color=color)
    plt.xlabel("Copy ratio")
    plt.ylabel("Density")
    plt.title(title)
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()


def plot_clusters(
    *,
    points: SampledPoints,
    fit: MixtureFit,
    normal: Optional[NormalPeakSet],
    out_png: str | Path,
    title: str = "Sampled points by cluster",
) -> None:
    """Scatter of sampled points coloured by mixture component (normal peak marked)."""
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    plt.figure()
    if len(points) > 0 and len(fit.labels) == len(points):
        if len(points.dims) == 2:
            xs = points.column(COPY_RATIO)
            ys = points.column(ALLELE_FRACTION)
            xlabel, ylabel = "Copy ratio", "Minor allele fraction"
        else:
            xs = points.values[:, 0]
            ys = np.random.default_rng(0).uniform(-0.4, 0.4, size=len(xs)) + fit.labels
            xlabel, ylabel = points.dims[0].replace("_", " ").capitalize(), "Cluster"
        plt.scatter(xs, ys, c=fit.labels, s=2, cmap="tab10", alpha=0.5)
        if normal is not None and normal.peak is not None and len(points.dims) == 2:
            plt.scatter([normal.peak.mean[0]], [normal.peak.mean[1]], marker="x", color="black", s=80)
        plt.xlabel(xlabel)
        plt.ylabel(ylabel)
    plt.title(title)
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()


def plot_classification(
    *,
    classifications: Sequence[Classification],
    normal: Optional[NormalPeakSet],
    out_png: str | Path,
    title: str = "Segment calls",
) -> None:
    """Segment posterior means in (copy ratio, minor allele fraction) space, coloured by call.

    Marker area scales with the number of copy ratio probes. Without allele
    fractions, segments are spread over one row per call.
    """
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    has_af = any(c.segment.minor_allele_fraction is not None for c in classifications)
    has_cr = any(c.segment.log2_copy_ratio is not None for c in classifications)
    rows = {lab: i for i, lab in enumerate(LABEL_COLORS)}

    plt.figure(figsize=(7, 5))
    for lab, color in LABEL_COLORS.items():
        xs, ys, sizes = [], [], []
        for c in classifications:
            if c.label is not lab:
                continue
            seg = c.segment
            x = seg.copy_ratio_mean if has_cr else None
            y = seg.minor_allele_fraction.mean if seg.minor_allele_fraction is not None else None
            if has_cr and has_af:
                if x is None or y is None:
                    continue
            elif has_cr:
                y = rows[lab]
            else:
                x, y = y, rows[lab]
            if x is None:
                continue
            xs.append(x)
            ys.append(y)
            sizes.append(4.0 + np.sqrt(max(seg.num_points_copy_ratio, 0)))
        if xs:
            plt.scatter(xs, ys, s=sizes, color=color, alpha=0.6, label=lab.value)

    if normal is not None and normal.peak is not None and len(normal.peak.dims) == 2 and has_af:
        plt.scatter([normal.peak.mean[0]], [normal.peak.mean[1]], marker="x", color="black", s=80)

    if has_cr and has_af:
        plt.xlabel("Copy ratio")
        plt.ylabel("Minor allele fraction")
    else:
        plt.xlabel("Copy ratio" if has_cr else "Minor allele fraction")
        plt.yticks(list(rows.values()), [lab.value for lab in rows])
    plt.title(title)
    if classifications:
        plt.legend(loc="best", fontsize="small")
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()


def plot_allele_fraction_candidates(
    *,
    points: SampledPoints,
    copy_ratio_fit: MixtureFit,
    reference: NormalPeakSet,
    threshold: float,
    out_png: str | Path,
    nbins: int = 50,
) -> None:
    """Allele fraction histograms of the copy-number-1 and copy-number-2 candidate peaks.

    The candidates are the two lowest non-zero copy-ratio peaks; the one
    with enough points in the balanced band (shaded) sets the normal copy
    ratio range.
    """
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    candidates = list(reference.candidates)
    n_panels = max(len(candidates), 1)
    fig, axes = plt.subplots(1, n_panels, figsize=(5 * n_panels, 4), squeeze=False)
    afs = points.column(ALLELE_FRACTION) if ALLELE_FRACTION in points.dims else np.zeros(0)
    chosen = reference.peak.index if reference.peak is not None else None

    for ax, peak in zip(axes[0], candidates):
        members = afs[copy_ratio_fit.member_mask(peak)] if afs.size else afs
        if members.size:
            ax.hist(members, bins=nbins, range=(0.0, 0.5), color="#bbbbbb")
        ax.axvspan(threshold, 0.5, color="tab:green", alpha=0.15)
        ax.axvline(threshold, color="tab:green", linestyle="--", linewidth=1)
        role = "normal" if peak.index == chosen else "not normal"
        ax.set_title(
            f"Copy ratio peak {peak.index} (mean {peak.copy_ratio_mean:.2f}, {role})", fontsize="small"
        )
        ax.set_xlabel("Minor allele fraction")
        ax.set_ylabel("Sampled points")
    if not candidates:
        axes[0][0].set_title("No copy ratio peaks")

    fig.tight_layout()
    fig.savefig(out_png, dpi=160)
    plt.close(fig)


def plot_summary(
    *,
    result,
    threshold: float,
    out_png: str | Path,
    nbins: int = 100,
) -> None:
    """Call counts next to sampled copy ratio and allele fraction histograms with the normal region."""
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    points = result.points
    fig, (ax_counts, ax_cr, ax_af) = plt.subplots(1, 3, figsize=(15, 4))

    labels = list(LABEL_COLORS)
    counts = [sum(1 for c in result.classifications if c.label is lab) for lab in labels]
    ax_counts.bar([lab.value for lab in labels], counts, color=[LABEL_COLORS[lab] for lab in labels])
    ax_counts.set_ylabel("Segments")
    ax_counts.set_title(f"Calls ({result.mode} mode)")

    if len(points) > 0 and COPY_RATIO in points.dims:
        ax_cr.hist(points.column(COPY_RATIO), bins=nbins, color="#bbbbbb")
        cr_range = result.normal.copy_ratio_range
        if cr_range is not None:
            ax_cr.axvspan(cr_range[0], cr_range[1], color="tab:green", alpha=0.2)
    ax_cr.set_xlabel("Copy ratio")
    ax_cr.set_title("Sampled copy ratio")

    if len(points) > 0 and ALLELE_FRACTION in points.dims:
        ax_af.hist(points.column(ALLELE_FRACTION), bins=nbins, range=(0.0, 0.5), color="#bbbbbb")
    ax_af.axvspan(threshold, 0.5, color="tab:green", alpha=0.15)
    ax_af.set_xlabel("Minor allele fraction")
    ax_af.set_title("Sampled minor allele fraction")

    fig.tight_layout()
    fig.savefig(out_png, dpi=160)
    plt.close(fig)


# output name -> file suffix appended to the prefix
DEFAULT_SUFFIXES: Dict[str, str] = {
    "segments": ".png",
    "classification": "_classification.png",
    "summary": "_summary_plot.png",
    "allele_fraction_candidates": "_allele_fraction_CN1_and_CN2_candidate_intervals.png",
    "copy_ratio_fit": "_copy_ratio_fit.png",
    "clusters": "_copy_ratio_clusters.png",
}


def plot_diagnostics(
    *,
    result,
    outdir: str | Path,
    prefix: str,
    suffixes: Optional[Dict[str, str]] = None,
    allele_fraction_threshold: float = 0.475,
) -> Dict[str, str]:
    """Write all diagnostic images; returns name -> path relative to ``outdir``."""
    outdir = Path(outdir)
    names = dict(DEFAULT_SUFFIXES)
    names.update(suffixes or {})
    written: Dict[str, str] = {}

    def _path(name: str) -> Path:
        p = outdir / f"{prefix}{names[name]}"
        written[name] = p.name
        return p

    plot_segments(classifications=result.classifications, out_png=_path("segments"))
    plot_classification(
        classifications=result.classifications, normal=result.normal, out_png=_path("classification")
    )
    plot_summary(result=result, threshold=allele_fraction_threshold, out_png=_path("summary"))

    if result.copy_ratio_fit is not None:
        normal = result.normal if result.mode == "copy_ratio" else result.copy_ratio_reference
        plot_copy_ratio_fit(
            points=result.points, fit=result.copy_ratio_fit, normal=normal, out_png=_path("copy_ratio_fit")
        )
        if result.copy_ratio_reference is not None:
            plot_allele_fraction_candidates(
                points=result.points,
                copy_ratio_fit=result.copy_ratio_fit,
                reference=result.copy_ratio_reference,
                threshold=allele_fraction_threshold,
                out_png=_path("allele_fraction_candidates"),
            )

    cluster_fit = result.joint_fit or result.allele_fraction_fit or result.copy_ratio_fit
    if cluster_fit is not None:
        plot_clusters(
            points=project_points(result.points, cluster_fit.dims),
            fit=cluster_fit,
            normal=result.normal,
            out_png=_path("clusters"),
        )

    logger.info("Wrote %d diagnostic image(s) to %s", len(written), outdir)
    return written
