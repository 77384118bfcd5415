"""Gaussian-mixture clustering of sampled segment points.

The actual fitting is behind :class:`MixtureFitter`, which takes a point set
and a maximum component count and returns weights, means, covariances and a
hard assignment of points to components. :class:`GaussianMixtureFitter` is the
default implementation (scikit-learn, component count chosen by BIC).

:func:`fit_copy_ratio_peaks` and :func:`fit_joint_peaks` wrap a fitter into
:class:`~segcall.models.MixtureFit` objects whose peaks are ordered by
ascending copy ratio and whose ``usable`` peaks passed the weight filter.
Components that overlap in every dimension are merged first, so one peak
stands for one population.
"""

from __future__ import annotations

import logging
import math
import warnings
from dataclasses import dataclass, replace
from typing import List, Protocol, Sequence, Tuple

import numpy as np
from sklearn.exceptions import ConvergenceWarning
from sklearn.mixture import GaussianMixture

from .models import ALLELE_FRACTION, COPY_RATIO, MixtureFit, Peak, SampledPoints
from .validation import check_allele_fraction_mean

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FittedMixture:
    weights: np.ndarray  # (k,)
    means: np.ndarray  # (k, d)
    covariances: np.ndarray  # (k, d, d)
    labels: np.ndarray  # (n,)


class MixtureFitter(Protocol):
    max_components: int

    def fit(self, values: np.ndarray) -> FittedMixture:
        ...


@dataclass
class GaussianMixtureFitter:
    """Full-covariance Gaussian mixture; picks the component count with the lowest BIC.

    Parameters
    ----------
    max_components:
        Upper bound on the number of components tried (1..max_components).
    random_state:
        Seed for k-means initialisation, passed to scikit-learn.
    n_init:
        Number of initialisations per component count.
    reg_covar:
        Added to covariance diagonals; keeps fits to near-constant data stable.
    """

    max_components: int = 8
    random_state: int = 1234
    n_init: int = 3
    reg_covar: float = 1e-6
    max_iter: int = 500

    def _fit_k(self, values: np.ndarray, k: int) -> GaussianMixture:
        gmm = GaussianMixture(
            n_components=k,
            covariance_type="full",
            n_init=self.n_init,
            reg_covar=self.reg_covar,
            max_iter=self.max_iter,
            random_state=self.random_state,
        )
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", ConvergenceWarning)
            gmm.fit(values)
        return gmm

    def fit(self, values: np.ndarray) -> FittedMixture:
        n_distinct = len(np.unique(values, axis=0))
        k_max = max(1, min(self.max_components, n_distinct))

        best = self._fit_k(values, 1)
        best_bic = best.bic(values)
        logger.debug("GMM k=1 BIC=%.2f", best_bic)
        for k in range(2, k_max + 1):
            gmm = self._fit_k(values, k)
            bic = gmm.bic(values)
            logger.debug("GMM k=%d BIC=%.2f", k, bic)
            # strict '<' keeps the smaller model on ties
            if bic < best_bic:
                best, best_bic = gmm, bic

        weights = np.asarray(best.weights_, dtype=float)
        weights = np.clip(weights, 0.0, None)
        weights = weights / weights.sum()
        return FittedMixture(
            weights=weights,
            means=np.asarray(best.means_, dtype=float),
            covariances=np.asarray(best.covariances_, dtype=float),
            labels=np.asarray(best.predict(values), dtype=np.int64),
        )


def _order_components(fitted: FittedMixture) -> List[int]:
    # ascending by first dimension (copy ratio when present), component id breaks ties
    return sorted(range(len(fitted.weights)), key=lambda j: (float(fitted.means[j, 0]), j))


def peaks_overlap(a: Peak, b: Peak, n_sd: float) -> bool:
    """True if the ``mean +/- n_sd * sd`` intervals of two peaks overlap in every dimension."""
    for i in range(len(a.dims)):
        sd_a = math.sqrt(max(a.covariance[i][i], 0.0))
        sd_b = math.sqrt(max(b.covariance[i][i], 0.0))
        if abs(a.mean[i] - b.mean[i]) > n_sd * (sd_a + sd_b):
            return False
    return True


def combine_peaks(a: Peak, b: Peak) -> Peak:
    """Moment-matched union of two components; keeps the smaller index."""
    wa, wb = a.weight, b.weight
    if wa + wb <= 0.0:
        wa = wb = 0.5
    w = wa + wb
    ma = np.asarray(a.mean)
    mb = np.asarray(b.mean)
    mean = (wa * ma + wb * mb) / w
    cov = (
        wa * (np.asarray(a.covariance) + np.outer(ma - mean, ma - mean))
        + wb * (np.asarray(b.covariance) + np.outer(mb - mean, mb - mean))
    ) / w
    return Peak(
        index=min(a.index, b.index),
        weight=a.weight + b.weight,
        mean=tuple(float(x) for x in mean),
        covariance=tuple(tuple(float(x) for x in row) for row in cov),
        dims=a.dims,
        n_points=a.n_points + b.n_points,
    )


def merge_overlapping_peaks(
    peaks: Sequence[Peak], labels: np.ndarray, n_sd: float
) -> Tuple[List[Peak], np.ndarray]:
    """Merge components that describe the same population.

    BIC readily splits one copy-number state into several narrow components
    when segment means scatter more than their posteriors are wide. Pairs of
    peaks whose ``n_sd`` intervals overlap in every dimension are merged
    (moment matching) until no pair overlaps. The result is re-indexed by
    ascending first-dimension mean and ``labels`` are remapped to match.
    ``n_sd <= 0`` disables merging.
    """
    if n_sd <= 0.0 or len(peaks) < 2:
        return list(peaks), labels

    merged: List[Peak] = list(peaks)
    groups: List[List[int]] = [[p.index] for p in peaks]
    changed = True
    while changed:
        changed = False
        for i in range(len(merged)):
            for j in range(i + 1, len(merged)):
                if peaks_overlap(merged[i], merged[j], n_sd):
                    merged[i] = combine_peaks(merged[i], merged[j])
                    groups[i].extend(groups[j])
                    del merged[j]
                    del groups[j]
                    changed = True
                    break
            if changed:
                break

    if len(merged) == len(peaks):
        return list(peaks), labels

    logger.info("Merged %d overlapping component(s) into %d peak(s).", len(peaks), len(merged))
    order = sorted(range(len(merged)), key=lambda g: (merged[g].mean[0], min(groups[g])))
    remap = np.empty(max(p.index for p in peaks) + 1, dtype=np.int64)
    out: List[Peak] = []
    for rank, g in enumerate(order):
        for old in groups[g]:
            remap[old] = rank
        out.append(replace(merged[g], index=rank))
    return out, remap[labels]


def fit_peaks(
    points: SampledPoints,
    *,
    fitter: MixtureFitter,
    min_weight: float,
    min_points: int = 10,
    merge_sd: float = 2.0,
) -> MixtureFit:
    """Fit a mixture over all columns of ``points`` and build ordered peaks.

    Peak indices are re-numbered by ascending first-dimension mean, so peak 0
    is the lowest copy ratio. Overlapping components are merged (see
    :func:`merge_overlapping_peaks`) before the weight filter. Returns an
    empty fit when fewer than ``min_points`` points are available.
    """
    dims = points.dims
    if len(points) < max(int(min_points), 1):
        logger.warning(
            "Only %d sampled point(s) for %s clustering; no usable peaks.", len(points), "+".join(dims)
        )
        return MixtureFit.empty(dims)

    fitted = fitter.fit(points.values)
    order = _order_components(fitted)
    remap = np.empty(len(order), dtype=np.int64)
    for rank, j in enumerate(order):
        remap[j] = rank
    labels = remap[fitted.labels]
    counts = np.bincount(labels, minlength=len(order))

    peaks: List[Peak] = []
    for rank, j in enumerate(order):
        peaks.append(
            Peak(
                index=rank,
                weight=float(fitted.weights[j]),
                mean=tuple(float(x) for x in fitted.means[j]),
                covariance=tuple(tuple(float(x) for x in row) for row in fitted.covariances[j]),
                dims=dims,
                n_points=int(counts[rank]),
            )
        )
    peaks, labels = merge_overlapping_peaks(peaks, labels, merge_sd)
    usable = tuple(p for p in peaks if p.weight >= min_weight)
    dropped = len(peaks) - len(usable)
    if dropped:
        logger.info(
            "Dropped %d of %d %s peak(s) with weight below %.3f.",
            dropped,
            len(peaks),
            "+".join(dims),
            min_weight,
        )
    return MixtureFit(peaks=tuple(peaks), usable=usable, labels=labels, dims=dims)


def project_points(points: SampledPoints, dims: Tuple[str, ...]) -> SampledPoints:
    if points.dims == dims:
        return points
    cols = [points.dims.index(d) for d in dims]
    return SampledPoints(values=points.values[:, cols], segment_index=points.segment_index, dims=dims)


def fit_copy_ratio_peaks(
    points: SampledPoints,
    *,
    fitter: MixtureFitter,
    min_weight: float,
    min_points: int = 10,
    merge_sd: float = 2.0,
) -> MixtureFit:
    """1-D clustering of the copy-ratio column."""
    return fit_peaks(
        project_points(points, (COPY_RATIO,)),
        fitter=fitter,
        min_weight=min_weight,
        min_points=min_points,
        merge_sd=merge_sd,
    )


def fit_allele_fraction_peaks(
    points: SampledPoints,
    *,
    fitter: MixtureFitter,
    min_weight: float,
    min_points: int = 10,
    merge_sd: float = 2.0,
) -> MixtureFit:
    """1-D clustering of the minor-allele-fraction column (no copy ratio loaded)."""
    fit = fit_peaks(
        project_points(points, (ALLELE_FRACTION,)),
        fitter=fitter,
        min_weight=min_weight,
        min_points=min_points,
        merge_sd=merge_sd,
    )
    for peak in fit.peaks:
        check_allele_fraction_mean(peak.mean[0], peak_index=peak.index)
    return fit


def fit_joint_peaks(
    points: SampledPoints,
    *,
    fitter: MixtureFitter,
    min_weight: float,
    min_points: int = 10,
    merge_sd: float = 2.0,
) -> MixtureFit:
    """2-D clustering in (copy ratio, allele fraction) space."""
    fit = fit_peaks(
        project_points(points, (COPY_RATIO, ALLELE_FRACTION)),
        fitter=fitter,
        min_weight=min_weight,
        min_points=min_points,
        merge_sd=merge_sd,
    )
    for peak in fit.peaks:
        check_allele_fraction_mean(peak.mean[1], peak_index=peak.index)
    return fit
