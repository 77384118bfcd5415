from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional, Sequence

from .classifier import classify_segments
from .clustering import (
    GaussianMixtureFitter,
    MixtureFitter,
    fit_allele_fraction_peaks,
    fit_copy_ratio_peaks,
    fit_joint_peaks,
)
from .models import ALLELE_FRACTION, CallResult, Label, MixtureFit, NormalPeakSet, Segment
from .sampler import sample_segments
from .selector import SelectorThresholds, select_copy_ratio_reference, select_normal_peak
from .validation import validate_config, validate_segments

logger = logging.getLogger(__name__)

MODE_COPY_RATIO = "copy_ratio"
MODE_JOINT = "joint"
MODE_ALLELE_FRACTION = "allele_fraction"


@dataclass(frozen=True)
class CallerConfig:
    """Options of one calling run.

    Defaults follow the GATK CallModeledSegments tool where it defines them.
    """

    load_copy_ratio: bool = True
    load_allele_fraction: bool = True
    normal_minor_allele_fraction_threshold: float = 0.475
    copy_ratio_peak_min_weight: float = 0.03
    min_fraction_of_points_in_normal_allele_fraction_region: float = 0.15
    min_weight_first_cr_peak_cr_data_only: float = 0.35
    min_weight_second_cr_peak: float = 0.05
    zero_copy_ratio_threshold: float = 0.1
    classification_confidence: float = 0.99
    normal_range_sd: float = 2.0
    peak_merge_sd: float = 2.0
    max_components: int = 8
    max_sampled_points: int = 20_000
    min_points: int = 10
    seed: int = 1234

    @property
    def mode(self) -> str:
        if self.load_copy_ratio and self.load_allele_fraction:
            return MODE_JOINT
        if self.load_copy_ratio:
            return MODE_COPY_RATIO
        return MODE_ALLELE_FRACTION

    def thresholds(self) -> SelectorThresholds:
        return SelectorThresholds(
            normal_minor_allele_fraction_threshold=self.normal_minor_allele_fraction_threshold,
            min_fraction_of_points_in_normal_allele_fraction_region=(
                self.min_fraction_of_points_in_normal_allele_fraction_region
            ),
            min_weight_first_cr_peak_cr_data_only=self.min_weight_first_cr_peak_cr_data_only,
            min_weight_second_cr_peak=self.min_weight_second_cr_peak,
            zero_copy_ratio_threshold=self.zero_copy_ratio_threshold,
            normal_range_sd=self.normal_range_sd,
        )


def call_segments(
    segments: Sequence[Segment],
    config: Optional[CallerConfig] = None,
    *,
    fitter: Optional[MixtureFitter] = None,
    progress: bool = False,
) -> CallResult:
    """Main workhorse: sample, cluster, select the normal peak and classify.

    Configuration and data errors are raised before anything is sampled.
    Degenerate fits never raise; they yield indeterminate labels.
    """
    config = config or CallerConfig()
    validate_config(config)
    validate_segments(
        segments,
        load_copy_ratio=config.load_copy_ratio,
        load_allele_fraction=config.load_allele_fraction,
    )
    if fitter is None:
        fitter = GaussianMixtureFitter(max_components=config.max_components, random_state=config.seed)

    t0 = time.time()
    mode = config.mode
    logger.info("Calling %d segment(s) in %s mode.", len(segments), mode)

    points = sample_segments(
        segments,
        load_copy_ratio=config.load_copy_ratio,
        load_allele_fraction=config.load_allele_fraction,
        seed=config.seed,
        max_points=config.max_sampled_points,
        progress=progress,
    )

    fit_kwargs = dict(
        fitter=fitter,
        min_weight=config.copy_ratio_peak_min_weight,
        min_points=config.min_points,
        merge_sd=config.peak_merge_sd,
    )
    th = config.thresholds()
    allele_fractions = points.column(ALLELE_FRACTION) if config.load_allele_fraction else None
    copy_ratio_fit: Optional[MixtureFit] = None
    joint_fit: Optional[MixtureFit] = None
    allele_fraction_fit: Optional[MixtureFit] = None
    reference: Optional[NormalPeakSet] = None

    if mode == MODE_ALLELE_FRACTION:
        allele_fraction_fit = fit_allele_fraction_peaks(points, **fit_kwargs)
        selection_fit = allele_fraction_fit
    else:
        copy_ratio_fit = fit_copy_ratio_peaks(points, **fit_kwargs)
        selection_fit = copy_ratio_fit
    if mode == MODE_JOINT and copy_ratio_fit is not None and allele_fractions is not None:
        reference = select_copy_ratio_reference(copy_ratio_fit, allele_fractions, th)
        joint_fit = fit_joint_peaks(points, **fit_kwargs)
        selection_fit = joint_fit

    normal = select_normal_peak(selection_fit, allele_fractions, th, reference)
    classifications = classify_segments(segments, normal, confidence=config.classification_confidence)

    counts = {
        "segments_total": len(segments),
        "points_sampled": len(points),
        "peaks_fitted": len(selection_fit.peaks),
        "peaks_usable": len(selection_fit.usable),
        "normal_candidates": len(normal.candidates),
    }
    for label in Label:
        counts[f"class_{label.value}"] = sum(1 for c in classifications if c.label is label)

    logger.info("Calling finished in %.2fs.", time.time() - t0)
    return CallResult(
        classifications=classifications,
        normal=normal,
        points=points,
        copy_ratio_fit=copy_ratio_fit,
        joint_fit=joint_fit,
        allele_fraction_fit=allele_fraction_fit,
        copy_ratio_reference=reference,
        mode=mode,
        counts=counts,
    )


def _peak_dict(peak) -> Dict[str, Any]:
    return {
        "index": peak.index,
        "weight": peak.weight,
        "mean": list(peak.mean),
        "covariance": [list(row) for row in peak.covariance],
        "dims": list(peak.dims),
        "n_points": peak.n_points,
    }


def summarize(result: CallResult, config: CallerConfig) -> Dict[str, Any]:
    """JSON-serialisable run summary."""
    fits = {}
    for name, fit in (
        ("copy_ratio", result.copy_ratio_fit),
        ("joint", result.joint_fit),
        ("allele_fraction", result.allele_fraction_fit),
    ):
        if fit is not None:
            fits[name] = {
                "peaks": [_peak_dict(p) for p in fit.peaks],
                "usable": [p.index for p in fit.usable],
            }

    normal = result.normal
    reference = result.copy_ratio_reference
    reference_range = None
    if reference is not None and reference.copy_ratio_range is not None:
        reference_range = list(reference.copy_ratio_range)
    return {
        "mode": result.mode,
        "config": asdict(config),
        "counts": dict(result.counts),
        "fits": fits,
        "normal_peak": _peak_dict(normal.peak) if normal.peak is not None else None,
        "normal_tier": normal.tier,
        "normal_candidates": [p.index for p in normal.candidates],
        "normal_copy_ratio_range": list(normal.copy_ratio_range) if normal.copy_ratio_range else None,
        "copy_ratio_reference_range": reference_range,
    }
