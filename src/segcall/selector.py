"""Identification of the peak that represents normal (copy-number 2, balanced) segments.

Copy-ratio tier
    The lowest non-zero copy-ratio peak comes either from copy-number 1 or
    copy-number 2 events. It is taken as normal when it carries enough weight
    or when the next peak is too small to compete; otherwise the second peak
    is normal.

Joint tier
    Only peaks whose allele fraction is credibly balanced are candidates: the
    peak mean lies within one standard deviation of the band
    (threshold, 0.5) and enough of the peak's member points lie above the
    threshold. When a 1-D copy-ratio fit is available, candidates must also
    lie in its normal copy ratio range: the lowest non-zero copy-ratio peak
    is copy-number 2 if enough of its points are balanced, otherwise the
    second-lowest is. The copy-ratio tier's first-vs-second rule is then
    applied to the candidates.

Allele-fraction tier
    Without copy ratio there is no ordering by copy number; the heaviest
    balanced candidate wins.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .models import ALLELE_FRACTION, MixtureFit, NormalPeakSet, Peak

logger = logging.getLogger(__name__)

TIER_COPY_RATIO = "copy_ratio"
TIER_JOINT = "joint"
TIER_ALLELE_FRACTION = "allele_fraction"
TIER_COPY_RATIO_REFERENCE = "copy_ratio_reference"


@dataclass(frozen=True)
class SelectorThresholds:
    normal_minor_allele_fraction_threshold: float = 0.475
    min_fraction_of_points_in_normal_allele_fraction_region: float = 0.15
    min_weight_first_cr_peak_cr_data_only: float = 0.35
    min_weight_second_cr_peak: float = 0.05
    zero_copy_ratio_threshold: float = 0.1
    normal_range_sd: float = 2.0


def _nonzero_ordered(peaks: Sequence[Peak], zero_threshold: float) -> List[Peak]:
    ordered = sorted(peaks, key=lambda p: p.sort_key())
    kept = [p for p in ordered if (p.copy_ratio_mean or 0.0) > zero_threshold]
    if len(kept) < len(ordered):
        logger.info(
            "Ignoring %d peak(s) at copy ratio <= %.3f (homozygous deletions).",
            len(ordered) - len(kept),
            zero_threshold,
        )
    return kept


def first_or_second(peaks: Sequence[Peak], th: SelectorThresholds) -> Optional[Peak]:
    """Pick the normal peak among copy-ratio-ordered peaks."""
    if not peaks:
        return None
    if len(peaks) == 1:
        return peaks[0]
    first, second = peaks[0], peaks[1]
    if first.weight > th.min_weight_first_cr_peak_cr_data_only:
        logger.debug(
            "First peak weight %.3f above %.3f; first peak is normal.",
            first.weight,
            th.min_weight_first_cr_peak_cr_data_only,
        )
        return first
    if second.weight < th.min_weight_second_cr_peak:
        logger.debug(
            "Second peak weight %.3f below %.3f; first peak is normal.",
            second.weight,
            th.min_weight_second_cr_peak,
        )
        return first
    logger.debug("First peak treated as copy-number 1; second peak is normal.")
    return second


def is_balanced_mean(peak: Peak, threshold: float) -> bool:
    """True if the allele-fraction mean is within one sd of the band (threshold, 0.5)."""
    mean = peak.allele_fraction_mean
    sd = peak.allele_fraction_sd
    if mean is None or sd is None:
        return False
    return mean + sd >= threshold and mean - sd <= 0.5


def fraction_above_threshold(
    fit: MixtureFit, peak: Peak, allele_fractions: np.ndarray, threshold: float
) -> float:
    members = allele_fractions[fit.member_mask(peak)]
    if members.size == 0:
        return 0.0
    return float(np.mean(members > threshold))


def balanced_candidates(
    fit: MixtureFit,
    peaks: Sequence[Peak],
    allele_fractions: np.ndarray,
    th: SelectorThresholds,
) -> List[Peak]:
    out: List[Peak] = []
    threshold = th.normal_minor_allele_fraction_threshold
    for peak in peaks:
        if not is_balanced_mean(peak, threshold):
            logger.debug(
                "Peak %d: allele fraction %.3f not balanced.", peak.index, peak.allele_fraction_mean
            )
            continue
        frac = fraction_above_threshold(fit, peak, allele_fractions, threshold)
        if frac < th.min_fraction_of_points_in_normal_allele_fraction_region:
            logger.debug("Peak %d: only %.3f of points above allele fraction threshold.", peak.index, frac)
            continue
        out.append(peak)
    return out


def _copy_ratio_range(peak: Optional[Peak], n_sd: float) -> Optional[Tuple[float, float]]:
    if peak is None or peak.copy_ratio_mean is None or peak.copy_ratio_sd is None:
        return None
    half = n_sd * peak.copy_ratio_sd
    return (peak.copy_ratio_mean - half, peak.copy_ratio_mean + half)


def _result(
    peak: Optional[Peak], tier: str, candidates: Sequence[Peak], th: SelectorThresholds
) -> NormalPeakSet:
    if peak is None:
        logger.warning("No normal peak found (%s tier).", tier)
    else:
        logger.info(
            "Normal peak: #%d (%s tier), mean=%s, weight=%.3f.",
            peak.index,
            tier,
            ", ".join(f"{m:.3f}" for m in peak.mean),
            peak.weight,
        )
    return NormalPeakSet(
        peak=peak,
        tier=tier,
        candidates=tuple(candidates),
        copy_ratio_range=_copy_ratio_range(peak, th.normal_range_sd),
    )


def select_copy_ratio_peak(fit: MixtureFit, th: SelectorThresholds) -> NormalPeakSet:
    peaks = _nonzero_ordered(fit.usable, th.zero_copy_ratio_threshold)
    return _result(first_or_second(peaks, th), TIER_COPY_RATIO, peaks, th)


def select_copy_ratio_reference(
    fit: MixtureFit, allele_fractions: np.ndarray, th: SelectorThresholds
) -> NormalPeakSet:
    """Copy-number-2 peak of the 1-D copy-ratio fit, judged by allele balance.

    The lowest non-zero peak is copy-number 2 if enough of its points lie in
    the balanced allele-fraction band; otherwise the second-lowest peak is.
    ``candidates`` holds the copy-number-1 / copy-number-2 candidate pair and
    ``copy_ratio_range`` the normal copy ratio values.
    """
    peaks = _nonzero_ordered(fit.usable, th.zero_copy_ratio_threshold)
    candidates = peaks[:2]
    chosen: Optional[Peak] = None
    if len(peaks) == 1:
        chosen = peaks[0]
    elif peaks:
        frac = fraction_above_threshold(
            fit, peaks[0], allele_fractions, th.normal_minor_allele_fraction_threshold
        )
        if frac >= th.min_fraction_of_points_in_normal_allele_fraction_region:
            chosen = peaks[0]
        else:
            logger.debug("Lowest copy ratio peak has %.3f balanced points; taking the second.", frac)
            chosen = peaks[1]
    return _result(chosen, TIER_COPY_RATIO_REFERENCE, candidates, th)


def _in_range(peak: Peak, copy_ratio_range: Tuple[float, float]) -> bool:
    lo, hi = copy_ratio_range
    mean = peak.copy_ratio_mean
    return mean is not None and lo <= mean <= hi


def select_joint_peak(
    fit: MixtureFit,
    allele_fractions: np.ndarray,
    th: SelectorThresholds,
    reference: Optional[NormalPeakSet] = None,
) -> NormalPeakSet:
    peaks = _nonzero_ordered(fit.usable, th.zero_copy_ratio_threshold)
    candidates = balanced_candidates(fit, peaks, allele_fractions, th)
    if reference is not None and reference.copy_ratio_range is not None:
        copy_ratio_range = reference.copy_ratio_range
        kept = [p for p in candidates if _in_range(p, copy_ratio_range)]
        if len(kept) < len(candidates):
            logger.info(
                "Dropped %d balanced peak(s) outside the normal copy ratio range %.3f-%.3f.",
                len(candidates) - len(kept),
                copy_ratio_range[0],
                copy_ratio_range[1],
            )
        candidates = kept
    return _result(first_or_second(candidates, th), TIER_JOINT, candidates, th)


def select_allele_fraction_peak(
    fit: MixtureFit, allele_fractions: np.ndarray, th: SelectorThresholds
) -> NormalPeakSet:
    peaks = sorted(fit.usable, key=lambda p: p.sort_key())
    candidates = balanced_candidates(fit, peaks, allele_fractions, th)
    best = None
    if candidates:
        # heaviest wins; higher allele fraction, then lower index, break ties
        best = max(candidates, key=lambda p: (p.weight, p.allele_fraction_mean or 0.0, -p.index))
    return _result(best, TIER_ALLELE_FRACTION, candidates, th)


def select_normal_peak(
    fit: MixtureFit,
    allele_fractions: Optional[np.ndarray],
    th: SelectorThresholds,
    reference: Optional[NormalPeakSet] = None,
) -> NormalPeakSet:
    """Dispatch on the dimensions of ``fit``.

    ``allele_fractions`` are the sampled allele fractions aligned with
    ``fit.labels``; required for the joint and allele-fraction tiers.
    ``reference`` (from :func:`select_copy_ratio_reference`) restricts joint
    candidates to its normal copy ratio range.
    """
    if ALLELE_FRACTION not in fit.dims:
        return select_copy_ratio_peak(fit, th)
    if allele_fractions is None:
        raise ValueError("allele_fractions are required for allele-fraction peak selection")
    if len(fit.dims) == 1:
        return select_allele_fraction_peak(fit, allele_fractions, th)
    return select_joint_peak(fit, allele_fractions, th, reference)
