import math

import numpy as np
import pytest

from segcall.classifier import classify_segments, distance_cutoff, mahalanobis2, segment_moments
from segcall.models import (
    ALLELE_FRACTION,
    COPY_RATIO,
    Z90,
    Label,
    NormalPeakSet,
    Peak,
    PosteriorSummary,
    Segment,
)


def _seg(cr: float, maf=None, log2_sd: float = 0.02, start: int = 1) -> Segment:
    p50 = math.log2(cr)
    return Segment(
        contig="chr1",
        start=start,
        end=start + 999,
        num_points_copy_ratio=100,
        num_points_allele_fraction=0 if maf is None else 20,
        log2_copy_ratio=PosteriorSummary(p50 - Z90 * log2_sd, p50, p50 + Z90 * log2_sd),
        minor_allele_fraction=None if maf is None else PosteriorSummary(maf - 0.01, maf, maf + 0.01),
    )


CR_PEAK = Peak(index=3, weight=0.6, mean=(1.0,), covariance=((0.01,),), dims=(COPY_RATIO,))
JOINT_PEAK = Peak(
    index=1,
    weight=0.6,
    mean=(1.0, 0.48),
    covariance=((0.01, 0.0), (0.0, 0.0004)),
    dims=(COPY_RATIO, ALLELE_FRACTION),
)


def test_distance_cutoff_is_chi_square_quantile():
    assert distance_cutoff(0.99, 1) == pytest.approx(6.635, abs=1e-3)
    assert distance_cutoff(0.99, 2) == pytest.approx(9.210, abs=1e-3)


def test_segment_moments():
    seg = _seg(2.0, maf=0.3, log2_sd=0.1)
    mean, var = segment_moments(seg, (COPY_RATIO, ALLELE_FRACTION))
    assert mean == pytest.approx([2.0, 0.3])
    assert var[0] == pytest.approx((math.log(2.0) * 2.0 * 0.1) ** 2)
    assert segment_moments(_seg(1.0), (COPY_RATIO, ALLELE_FRACTION)) is None


def test_mahalanobis_includes_segment_uncertainty():
    narrow = mahalanobis2(_seg(1.3, log2_sd=0.01), CR_PEAK)
    wide = mahalanobis2(_seg(1.3, log2_sd=0.3), CR_PEAK)
    assert narrow > wide > 0.0
    assert mahalanobis2(_seg(1.0), CR_PEAK) == pytest.approx(0.0)


def test_copy_ratio_classification():
    segs = [_seg(1.0, start=1), _seg(2.0, start=2000), _seg(1.05, start=4000)]
    normal = NormalPeakSet(peak=CR_PEAK, tier="copy_ratio")
    calls = classify_segments(segs, normal, confidence=0.99)

    assert [c.segment for c in calls] == segs
    assert [c.label for c in calls] == [Label.NORMAL, Label.NOT_NORMAL, Label.NORMAL]
    assert calls[0].peak_index == 3
    assert calls[1].peak_index is None
    assert calls[1].distance2 > distance_cutoff(0.99, 1)


def test_confidence_controls_the_cutoff():
    seg = _seg(1.2)
    normal = NormalPeakSet(peak=CR_PEAK, tier="copy_ratio")
    d2 = mahalanobis2(seg, CR_PEAK)
    assert 2.706 < d2 < 6.635
    assert classify_segments([seg], normal, confidence=0.99)[0].label is Label.NORMAL
    assert classify_segments([seg], normal, confidence=0.90)[0].label is Label.NOT_NORMAL


def test_joint_classification_uses_allele_fraction():
    segs = [_seg(1.0, maf=0.48), _seg(1.0, maf=0.05), _seg(1.0)]
    normal = NormalPeakSet(peak=JOINT_PEAK, tier="joint")
    labels = [c.label for c in classify_segments(segs, normal)]
    # copy-neutral LOH is not normal; a segment without allele fraction cannot be judged
    assert labels == [Label.NORMAL, Label.NOT_NORMAL, Label.INDETERMINATE]


def test_no_normal_peak_makes_everything_indeterminate():
    segs = [_seg(1.0), _seg(2.0)]
    calls = classify_segments(segs, NormalPeakSet(peak=None, tier="copy_ratio"))
    assert [c.label for c in calls] == [Label.INDETERMINATE] * 2
    assert all(c.distance2 is None for c in calls)


def test_empty_input():
    assert classify_segments([], NormalPeakSet(peak=CR_PEAK, tier="copy_ratio")) == []


def test_distance_is_finite_for_degenerate_peak():
    peak = Peak(index=0, weight=1.0, mean=(1.0,), covariance=((0.0,),), dims=(COPY_RATIO,))
    d2 = mahalanobis2(_seg(1.1), peak)
    assert np.isfinite(d2)
