from __future__ import annotations

import enum
import math
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import numpy as np

# Phi^-1(0.9); the 10th/90th percentiles of a normal lie at mean -/+ Z90 * sd.
Z90 = 1.2815515655446004

COPY_RATIO = "copy_ratio"
ALLELE_FRACTION = "allele_fraction"


class Label(str, enum.Enum):
    NORMAL = "NORMAL"
    NOT_NORMAL = "NOT_NORMAL"
    INDETERMINATE = "INDETERMINATE"


@dataclass(frozen=True)
class PosteriorSummary:
    """A posterior distribution summarized by its 10th, 50th and 90th percentiles.

    This is the representation written by ModelSegments. The distribution is
    treated as normal with mean ``p50`` and a standard deviation recovered
    from the 10-90 inter-percentile range.
    """

    p10: float
    p50: float
    p90: float

    @property
    def mean(self) -> float:
        return self.p50

    @property
    def sd(self) -> float:
        return max(self.p90 - self.p10, 0.0) / (2.0 * Z90)


@dataclass(frozen=True)
class Segment:
    """A modeled genomic segment.

    Attributes
    ----------
    contig, start, end:
        Genomic interval (1-based, inclusive, as in .seg files).
    num_points_copy_ratio:
        Number of copy-ratio probes; used as the sampling weight.
    num_points_allele_fraction:
        Number of heterozygous sites contributing to the allele-fraction posterior.
    log2_copy_ratio:
        Posterior of the log2 copy ratio, if available.
    minor_allele_fraction:
        Posterior of the minor allele fraction, if available.
    """

    contig: str
    start: int
    end: int
    num_points_copy_ratio: int
    num_points_allele_fraction: int = 0
    log2_copy_ratio: Optional[PosteriorSummary] = None
    minor_allele_fraction: Optional[PosteriorSummary] = None

    @property
    def copy_ratio_mean(self) -> Optional[float]:
        if self.log2_copy_ratio is None:
            return None
        return 2.0 ** self.log2_copy_ratio.mean

    @property
    def copy_ratio_sd(self) -> Optional[float]:
        # delta method: d(2^x)/dx = ln(2) * 2^x
        if self.log2_copy_ratio is None:
            return None
        return math.log(2.0) * (2.0 ** self.log2_copy_ratio.mean) * self.log2_copy_ratio.sd


@dataclass(frozen=True)
class SampledPoints:
    """Pooled samples drawn from segment posteriors.

    ``values`` has one row per point and one column per entry of ``dims``;
    ``segment_index[i]`` is the position of the originating segment in the
    input list.
    """

    values: np.ndarray
    segment_index: np.ndarray
    dims: Tuple[str, ...]

    def __len__(self) -> int:
        return int(self.values.shape[0])

    def column(self, dim: str) -> np.ndarray:
        return self.values[:, self.dims.index(dim)]

    def counts_per_segment(self, n_segments: int) -> np.ndarray:
        return np.bincount(self.segment_index, minlength=n_segments)


@dataclass(frozen=True)
class Peak:
    """One fitted Gaussian mixture component."""

    index: int
    weight: float
    mean: Tuple[float, ...]
    covariance: Tuple[Tuple[float, ...], ...]
    dims: Tuple[str, ...]
    n_points: int = 0

    def _dim_mean(self, dim: str) -> Optional[float]:
        if dim not in self.dims:
            return None
        return self.mean[self.dims.index(dim)]

    def _dim_sd(self, dim: str) -> Optional[float]:
        if dim not in self.dims:
            return None
        i = self.dims.index(dim)
        return math.sqrt(max(self.covariance[i][i], 0.0))

    @property
    def copy_ratio_mean(self) -> Optional[float]:
        return self._dim_mean(COPY_RATIO)

    @property
    def copy_ratio_sd(self) -> Optional[float]:
        return self._dim_sd(COPY_RATIO)

    @property
    def allele_fraction_mean(self) -> Optional[float]:
        return self._dim_mean(ALLELE_FRACTION)

    @property
    def allele_fraction_sd(self) -> Optional[float]:
        return self._dim_sd(ALLELE_FRACTION)

    def sort_key(self) -> Tuple[float, int]:
        primary = self.copy_ratio_mean
        if primary is None:
            primary = self.allele_fraction_mean
        return (float(primary if primary is not None else 0.0), self.index)


@dataclass(frozen=True)
class MixtureFit:
    """Result of a mixture fit.

    ``peaks`` holds every fitted component (weights sum to 1), ordered by
    ascending copy ratio. ``usable`` is the subset that passed the minimum
    weight filter. ``labels[i]`` is the component index of sampled point ``i``.
    """

    peaks: Tuple[Peak, ...]
    usable: Tuple[Peak, ...]
    labels: np.ndarray
    dims: Tuple[str, ...]

    @classmethod
    def empty(cls, dims: Tuple[str, ...]) -> "MixtureFit":
        return cls(peaks=(), usable=(), labels=np.zeros(0, dtype=np.int64), dims=dims)

    @property
    def is_empty(self) -> bool:
        return len(self.usable) == 0

    def member_mask(self, peak: Peak) -> np.ndarray:
        return self.labels == peak.index


@dataclass(frozen=True)
class NormalPeakSet:
    """The peak judged to represent the normal population (if any)."""

    peak: Optional[Peak]
    tier: str
    candidates: Tuple[Peak, ...] = ()
    copy_ratio_range: Optional[Tuple[float, float]] = None

    @property
    def found(self) -> bool:
        return self.peak is not None


@dataclass(frozen=True)
class Classification:
    """Per-segment call."""

    segment: Segment
    label: Label
    peak_index: Optional[int] = None
    distance2: Optional[float] = None


@dataclass
class CallResult:
    """Everything one engine run produced; consumed by the report layer."""

    classifications: List[Classification]
    normal: NormalPeakSet
    points: SampledPoints
    copy_ratio_fit: Optional[MixtureFit] = None
    joint_fit: Optional[MixtureFit] = None
    allele_fraction_fit: Optional[MixtureFit] = None
    copy_ratio_reference: Optional[NormalPeakSet] = None
    mode: str = "joint"
    counts: dict = field(default_factory=dict)
