from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np
from scipy.stats import chi2

from .models import ALLELE_FRACTION, COPY_RATIO, Classification, Label, NormalPeakSet, Peak, Segment

logger = logging.getLogger(__name__)


def segment_moments(seg: Segment, dims: Sequence[str]) -> Optional[Tuple[np.ndarray, np.ndarray]]:
    """Posterior mean vector and per-dimension variances of a segment, or None if a dimension is missing."""
    means: List[float] = []
    variances: List[float] = []
    for d in dims:
        if d == COPY_RATIO:
            if seg.log2_copy_ratio is None:
                return None
            means.append(float(seg.copy_ratio_mean))
            variances.append(float(seg.copy_ratio_sd) ** 2)
        elif d == ALLELE_FRACTION:
            if seg.minor_allele_fraction is None:
                return None
            means.append(seg.minor_allele_fraction.mean)
            variances.append(seg.minor_allele_fraction.sd ** 2)
        else:
            raise ValueError(f"Unknown dimension: {d}")
    return np.asarray(means), np.asarray(variances)


def mahalanobis2(seg: Segment, peak: Peak) -> Optional[float]:
    """Squared Mahalanobis distance of the segment's posterior mean from the peak.

    The covariance is the peak covariance plus the segment's own posterior
    variances, so uncertain segments are not penalised for their width.
    """
    moments = segment_moments(seg, peak.dims)
    if moments is None:
        return None
    mean, var = moments
    diff = mean - np.asarray(peak.mean)
    cov = np.asarray(peak.covariance) + np.diag(var)
    return float(diff @ np.linalg.solve(cov, diff))


def distance_cutoff(confidence: float, n_dims: int) -> float:
    return float(chi2.ppf(confidence, df=n_dims))


def classify_segments(
    segments: Sequence[Segment],
    normal: NormalPeakSet,
    *,
    confidence: float = 0.99,
) -> List[Classification]:
    """Label every segment, preserving input order.

    A segment is NORMAL when its squared Mahalanobis distance from the normal
    peak is within the chi-square quantile at ``confidence``. Segments are
    INDETERMINATE if no normal peak was found or they lack one of the peak's
    data types.
    """
    if normal.peak is None:
        return [Classification(segment=s, label=Label.INDETERMINATE) for s in segments]

    peak = normal.peak
    cutoff = distance_cutoff(confidence, len(peak.dims))
    out: List[Classification] = []
    for seg in segments:
        d2 = mahalanobis2(seg, peak)
        if d2 is None:
            out.append(Classification(segment=seg, label=Label.INDETERMINATE))
            continue
        label = Label.NORMAL if d2 <= cutoff else Label.NOT_NORMAL
        peak_index = peak.index if label is Label.NORMAL else None
        out.append(Classification(segment=seg, label=label, peak_index=peak_index, distance2=d2))

    n_normal = sum(1 for c in out if c.label is Label.NORMAL)
    logger.info("Classified %d segment(s): %d normal (d2 cutoff %.3f).", len(out), n_normal, cutoff)
    return out
