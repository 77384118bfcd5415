import numpy as np
import pytest

from segcall.models import ALLELE_FRACTION, COPY_RATIO, Z90, PosteriorSummary, Segment
from segcall.sampler import (
    _draw,
    fold_minor_allele_fraction,
    points_for_segment,
    sample_segments,
    sampling_density,
)


def _seg(cr: float, maf, n: int = 100, sd: float = 0.05) -> Segment:
    p50 = float(np.log2(cr))
    maf_post = None
    if maf is not None:
        maf_post = PosteriorSummary(maf - 0.01, maf, maf + 0.01)
    return Segment(
        contig="chr1",
        start=1,
        end=1000,
        num_points_copy_ratio=n,
        num_points_allele_fraction=0 if maf is None else n // 4,
        log2_copy_ratio=PosteriorSummary(p50 - Z90 * sd, p50, p50 + Z90 * sd),
        minor_allele_fraction=maf_post,
    )


def test_fold_minor_allele_fraction():
    out = fold_minor_allele_fraction(np.array([-0.1, 0.6, 0.3, 1.2, 0.5]))
    assert out == pytest.approx([0.1, 0.4, 0.3, 0.2, 0.5])


def test_sampling_density():
    segs = [_seg(1.0, 0.45, n=60), _seg(2.0, 0.3, n=40)]
    assert sampling_density(segs, 50) == pytest.approx(0.5)
    assert sampling_density(segs, 1000) == 1.0
    assert sampling_density([], 1000) == 0.0


def test_points_for_segment_rounds_up():
    seg = _seg(1.0, 0.45, n=3)
    assert points_for_segment(seg, 0.5) == 2
    assert points_for_segment(seg, 0.0) == 0


def test_points_proportional_to_probe_count():
    segs = [_seg(1.0, 0.45, n=100), _seg(2.0, 0.3, n=10)]
    pts = sample_segments(segs, seed=1)
    assert pts.dims == (COPY_RATIO, ALLELE_FRACTION)
    assert list(pts.counts_per_segment(2)) == [100, 10]


def test_points_are_capped():
    segs = [_seg(1.0, 0.45, n=500) for _ in range(4)]
    pts = sample_segments(segs, seed=1, max_points=100)
    assert len(pts) <= 100 + len(segs)
    assert list(pts.counts_per_segment(4)) == [25, 25, 25, 25]


def test_sampling_is_reproducible():
    segs = [_seg(1.0, 0.45), _seg(1.5, 0.33), _seg(0.5, 0.05)]
    a = sample_segments(segs, seed=42)
    b = sample_segments(segs, seed=42)
    c = sample_segments(segs, seed=43)
    np.testing.assert_array_equal(a.values, b.values)
    assert not np.array_equal(a.values, c.values)


def test_sampled_values_follow_posteriors():
    segs = [_seg(2.0, 0.49, n=4000, sd=0.05)]
    pts = sample_segments(segs, seed=3)
    cr = pts.column(COPY_RATIO)
    af = pts.column(ALLELE_FRACTION)
    assert np.all(cr > 0)
    assert np.median(cr) == pytest.approx(2.0, rel=0.02)
    assert np.all((af >= 0.0) & (af <= 0.5))


def test_segments_without_allele_fraction_are_skipped_in_joint_mode():
    segs = [_seg(1.0, None, n=50), _seg(1.0, 0.45, n=50)]
    pts = sample_segments(segs, seed=1)
    assert list(pts.counts_per_segment(2)) == [0, 50]

    cr_only = sample_segments(segs, seed=1, load_allele_fraction=False)
    assert cr_only.dims == (COPY_RATIO,)
    assert list(cr_only.counts_per_segment(2)) == [50, 50]


def test_no_segments_gives_empty_points():
    pts = sample_segments([], seed=1)
    assert len(pts) == 0
    assert pts.values.shape == (0, 2)


def test_segment_without_probes_contributes_no_points():
    segs = [_seg(1.0, 0.45, n=40), _seg(1.0, 0.45, n=0), _seg(2.0, 0.3, n=20)]
    pts = sample_segments(segs, seed=5)
    assert list(pts.counts_per_segment(3)) == [40, 0, 20]
    assert set(np.unique(pts.segment_index)) == {0, 2}


def test_all_segments_without_probes():
    segs = [_seg(1.0, 0.45, n=0), _seg(1.5, None, n=0)]
    assert sampling_density(segs, 1000) == 0.0
    for load_af in (True, False):
        pts = sample_segments(segs, seed=5, load_allele_fraction=load_af)
        assert len(pts) == 0
        assert list(pts.counts_per_segment(2)) == [0, 0]


def test_drawing_a_missing_posterior_raises():
    seg = _seg(1.0, None)
    rng = np.random.default_rng(0)
    with pytest.raises(ValueError, match="no allele_fraction posterior"):
        _draw(seg, 5, (COPY_RATIO, ALLELE_FRACTION), rng)
