from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING, Iterable, Optional

from .models import PosteriorSummary, Segment

if TYPE_CHECKING:
    from .caller import CallerConfig

logger = logging.getLogger(__name__)


class ConfigurationError(ValueError):
    """Raised when caller options are out of range or inconsistent."""


class DataError(ValueError):
    """Raised when segment data cannot be used for the requested data types."""


def _check_closed(name: str, value: float, lo: float, hi: float) -> None:
    if not (isinstance(value, (int, float)) and lo <= value <= hi):
        raise ConfigurationError(f"{name} has to be between {lo:g} and {hi:g} (got {value!r}).")


def validate_config(config: "CallerConfig") -> None:
    """Check every threshold before any sampling or clustering happens."""
    if not (config.load_copy_ratio or config.load_allele_fraction):
        raise ConfigurationError(
            "At least one of load_copy_ratio / load_allele_fraction must be true."
        )

    _check_closed(
        "normal_minor_allele_fraction_threshold",
        config.normal_minor_allele_fraction_threshold,
        0.0,
        0.5,
    )
    _check_closed("copy_ratio_peak_min_weight", config.copy_ratio_peak_min_weight, 0.0, 1.0)
    _check_closed(
        "min_fraction_of_points_in_normal_allele_fraction_region",
        config.min_fraction_of_points_in_normal_allele_fraction_region,
        0.0,
        1.0,
    )
    _check_closed(
        "min_weight_first_cr_peak_cr_data_only",
        config.min_weight_first_cr_peak_cr_data_only,
        0.0,
        1.0,
    )
    _check_closed("min_weight_second_cr_peak", config.min_weight_second_cr_peak, 0.0, 1.0)

    if not (0.0 < config.classification_confidence < 1.0):
        raise ConfigurationError(
            "classification_confidence has to be strictly between 0 and 1 "
            f"(got {config.classification_confidence!r})."
        )
    if not (config.zero_copy_ratio_threshold >= 0.0):
        raise ConfigurationError(
            f"zero_copy_ratio_threshold has to be non-negative (got {config.zero_copy_ratio_threshold!r})."
        )
    if not (config.normal_range_sd > 0.0):
        raise ConfigurationError(f"normal_range_sd has to be positive (got {config.normal_range_sd!r}).")
    if not (config.peak_merge_sd >= 0.0):
        raise ConfigurationError(f"peak_merge_sd has to be non-negative (got {config.peak_merge_sd!r}).")
    if config.max_components < 1:
        raise ConfigurationError("max_components has to be at least 1.")
    if config.max_sampled_points < 1:
        raise ConfigurationError("max_sampled_points has to be at least 1.")
    if config.min_points < 1:
        raise ConfigurationError("min_points has to be at least 1.")


def _check_posterior(
    seg: Segment,
    name: str,
    post: PosteriorSummary,
    *,
    lo: Optional[float] = None,
    hi: Optional[float] = None,
) -> None:
    vals = (post.p10, post.p50, post.p90)
    where = f"{seg.contig}:{seg.start}-{seg.end}"
    if not all(math.isfinite(v) for v in vals):
        raise DataError(f"Segment {where}: {name} posterior has non-finite percentiles {vals}.")
    if not (post.p10 <= post.p50 <= post.p90):
        raise DataError(f"Segment {where}: {name} posterior percentiles are not ordered {vals}.")
    if lo is not None and post.p10 < lo or hi is not None and post.p90 > hi:
        raise DataError(
            f"Segment {where}: {name} posterior {vals} lies outside [{lo}, {hi}]."
        )


def validate_segments(
    segments: Iterable[Segment],
    *,
    load_copy_ratio: bool,
    load_allele_fraction: bool,
) -> None:
    """Reject segments with missing or inconsistent posteriors for the loaded data types.

    A segment without allele-fraction posterior is acceptable when it has no
    heterozygous sites (``num_points_allele_fraction == 0``); it is called
    indeterminate later on.
    """
    for seg in segments:
        where = f"{seg.contig}:{seg.start}-{seg.end}"
        if seg.end < seg.start:
            raise DataError(f"Segment {where}: end precedes start.")
        if seg.num_points_copy_ratio < 0 or seg.num_points_allele_fraction < 0:
            raise DataError(f"Segment {where}: negative number of points.")

        if load_copy_ratio:
            if seg.log2_copy_ratio is None:
                raise DataError(f"Segment {where}: copy ratio posterior is missing.")
            _check_posterior(seg, "log2 copy ratio", seg.log2_copy_ratio)

        if load_allele_fraction:
            if seg.minor_allele_fraction is None:
                if seg.num_points_allele_fraction > 0:
                    raise DataError(
                        f"Segment {where}: {seg.num_points_allele_fraction} allele fraction "
                        "points but no minor allele fraction posterior."
                    )
                continue
            _check_posterior(
                seg, "minor allele fraction", seg.minor_allele_fraction, lo=0.0, hi=0.5
            )


def check_allele_fraction_mean(mean: float, *, peak_index: int) -> None:
    """A fitted allele-fraction mean outside [0, 0.5] means the input data is invalid."""
    if not (0.0 <= mean <= 0.5):
        raise DataError(
            f"Peak {peak_index} has minor allele fraction mean {mean:.4f} outside [0, 0.5]; "
            "check the allele fraction columns of the input."
        )
