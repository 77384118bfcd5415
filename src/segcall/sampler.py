from __future__ import annotations

import logging
import math
from typing import Iterable, List, Sequence, Tuple

import numpy as np
from tqdm import tqdm

from .models import ALLELE_FRACTION, COPY_RATIO, Segment, SampledPoints

logger = logging.getLogger(__name__)


def fold_minor_allele_fraction(x: np.ndarray) -> np.ndarray:
    """Fold arbitrary allele fractions into the minor-allele range [0, 0.5]."""
    x = np.abs(x) % 1.0
    return np.where(x > 0.5, 1.0 - x, x)


def sampling_density(segments: Sequence[Segment], max_points: int) -> float:
    """Points drawn per copy-ratio probe, capped so that the pool stays below ``max_points``."""
    total = sum(max(int(s.num_points_copy_ratio), 0) for s in segments)
    if total <= 0:
        return 0.0
    return min(1.0, float(max_points) / float(total))


def points_for_segment(seg: Segment, density: float) -> int:
    n = max(int(seg.num_points_copy_ratio), 0)
    if n == 0 or density <= 0.0:
        return 0
    return int(math.ceil(n * density))


def sample_dims(*, load_copy_ratio: bool, load_allele_fraction: bool) -> Tuple[str, ...]:
    dims: List[str] = []
    if load_copy_ratio:
        dims.append(COPY_RATIO)
    if load_allele_fraction:
        dims.append(ALLELE_FRACTION)
    return tuple(dims)


def segment_has_dims(seg: Segment, dims: Iterable[str]) -> bool:
    for d in dims:
        if d == COPY_RATIO and seg.log2_copy_ratio is None:
            return False
        if d == ALLELE_FRACTION and seg.minor_allele_fraction is None:
            return False
    return True


def _draw(seg: Segment, n: int, dims: Tuple[str, ...], rng: np.random.Generator) -> np.ndarray:
    cols = []
    for d in dims:
        if d == COPY_RATIO and seg.log2_copy_ratio is not None:
            post = seg.log2_copy_ratio
            cols.append(np.power(2.0, rng.normal(post.mean, post.sd, size=n)))
        elif d == ALLELE_FRACTION and seg.minor_allele_fraction is not None:
            post = seg.minor_allele_fraction
            cols.append(fold_minor_allele_fraction(rng.normal(post.mean, post.sd, size=n)))
        else:
            raise ValueError(f"Segment {seg.contig}:{seg.start}-{seg.end} has no {d} posterior")
    return np.column_stack(cols)


def sample_segments(
    segments: Sequence[Segment],
    *,
    load_copy_ratio: bool = True,
    load_allele_fraction: bool = True,
    seed: int = 1234,
    max_points: int = 20_000,
    progress: bool = False,
) -> SampledPoints:
    """Draw points from every segment's posteriors, proportionally to its probe count.

    Each segment gets its own generator spawned from ``SeedSequence(seed)``,
    so results do not depend on the order in which segments are processed.
    Segments lacking the posterior of a requested data type contribute no
    points.
    """
    dims = sample_dims(load_copy_ratio=load_copy_ratio, load_allele_fraction=load_allele_fraction)
    density = sampling_density(segments, max_points)
    children = np.random.SeedSequence(seed).spawn(len(segments))

    blocks: List[np.ndarray] = []
    owners: List[np.ndarray] = []
    skipped = 0

    it: Iterable[Tuple[int, Segment]] = enumerate(segments)
    if progress:
        it = tqdm(it, total=len(segments), unit="segment", desc="Sampling segments")

    for i, seg in it:
        n = points_for_segment(seg, density)
        if n == 0:
            continue
        if not segment_has_dims(seg, dims):
            skipped += 1
            continue
        rng = np.random.default_rng(children[i])
        blocks.append(_draw(seg, n, dims, rng))
        owners.append(np.full(n, i, dtype=np.int64))

    if skipped:
        logger.info("%d segment(s) lack %s posteriors and were not sampled.", skipped, "/".join(dims))

    if blocks:
        values = np.vstack(blocks)
        segment_index = np.concatenate(owners)
    else:
        values = np.zeros((0, len(dims)), dtype=float)
        segment_index = np.zeros(0, dtype=np.int64)

    logger.debug("Sampled %d points from %d segments (density %.4f).", len(values), len(segments), density)
    return SampledPoints(values=values, segment_index=segment_index, dims=dims)
