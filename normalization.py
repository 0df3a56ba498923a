"""
Percentile normalization module.
Stretches each index to 0-1 using its own 2nd and 98th percentiles within
the AOI, computed independently for every month.
"""

from typing import Dict, Sequence, Tuple

import numpy as np

import config
from exceptions import ResourceExhaustedError
from models import NormalizationBounds


def sample_index(
    index: np.ndarray,
    aoi_mask: np.ndarray,
    sample_step: int = 1
) -> np.ndarray:
    """
    Valid index values inside the AOI, sampled every ``sample_step`` pixels.

    Args:
        index: Index raster, masked pixels as NaN.
        aoi_mask: Boolean AOI mask on the same grid.
        sample_step: Row and column stride.

    Returns:
        np.ndarray: 1D array of finite sampled values.
    """
    step = max(1, int(sample_step))
    values = index[::step, ::step][aoi_mask[::step, ::step]]
    return values[np.isfinite(values)]


def compute_normalization_bounds(
    index: np.ndarray,
    aoi_mask: np.ndarray,
    sample_step: int = 1,
    max_pixels: float = None,
    percentiles: Sequence[float] = None,
    default_bounds: Tuple[float, float] = None,
    epsilon: float = None,
    year: int = 0,
    month: int = 0
) -> NormalizationBounds:
    """
    Compute the percentile bounds of one index for one month.

    Args:
        index: Index raster.
        aoi_mask: Boolean AOI mask.
        sample_step: Sampling stride.
        max_pixels: Pixel budget. Defaults to config.MAX_PIXELS.
        percentiles: Lower and upper percentile. Defaults to (2, 98).
        default_bounds: Bounds when no pixel is valid. Defaults to (0, 1).
        epsilon: Minimum span. Defaults to config.NORMALIZATION_EPSILON.
        year: Year for error reporting.
        month: Month for error reporting.

    Returns:
        NormalizationBounds: Lower and upper percentile values.

    Raises:
        ResourceExhaustedError: If the sample exceeds max_pixels.
    """
    budget = max_pixels if max_pixels is not None else config.MAX_PIXELS
    low, high = percentiles or config.NORMALIZATION_PERCENTILES
    fallback = default_bounds or config.DEFAULT_NORMALIZATION_BOUNDS
    eps = epsilon if epsilon is not None else config.NORMALIZATION_EPSILON

    values = sample_index(index, aoi_mask, sample_step)

    if values.size > budget:
        raise ResourceExhaustedError(
            year, month,
            f"percentile reduction over {values.size} pixels exceeds maxPixels={budget:g}"
        )

    if values.size == 0:
        return NormalizationBounds(float(fallback[0]), float(fallback[1]), defaulted=True, epsilon=eps)

    p_low, p_high = np.percentile(values, [low, high])
    return NormalizationBounds(float(p_low), float(p_high), epsilon=eps)


def normalize_index(index: np.ndarray, bounds: NormalizationBounds) -> np.ndarray:
    """
    Linear stretch of an index into [0, 1].

    normalized = clamp((index - p2) / max(p98 - p2, epsilon), 0, 1)

    Masked pixels stay NaN.

    Args:
        index: Index raster.
        bounds: Percentile bounds for this index and month.

    Returns:
        np.ndarray: Normalized raster.
    """
    with np.errstate(invalid="ignore"):
        stretched = (index - bounds.p2) / bounds.span
        normalized = np.clip(stretched, 0.0, 1.0)
    return np.where(np.isfinite(index), normalized, np.nan).astype("float32")


def normalize_indices(
    indices: Dict[str, np.ndarray],
    aoi_mask: np.ndarray,
    sample_step: int = 1,
    max_pixels: float = None,
    percentiles: Sequence[float] = None,
    default_bounds: Tuple[float, float] = None,
    epsilon: float = None,
    year: int = 0,
    month: int = 0
) -> Tuple[Dict[str, np.ndarray], Dict[str, NormalizationBounds]]:
    """
    Normalize every index with its own percentile bounds.

    Args:
        indices: Index name to raster.
        aoi_mask: Boolean AOI mask.
        sample_step: Sampling stride for the percentile reduction.
        max_pixels: Pixel budget per reduction.
        percentiles: Lower and upper percentile.
        default_bounds: Bounds for indices with no valid pixel.
        epsilon: Minimum span.
        year: Year for error reporting.
        month: Month for error reporting.

    Returns:
        tuple: ({"<name>_Normalized": raster}, {name: NormalizationBounds})
    """
    normalized = {}
    bounds = {}

    for name, values in indices.items():
        index_bounds = compute_normalization_bounds(
            values, aoi_mask,
            sample_step=sample_step,
            max_pixels=max_pixels,
            percentiles=percentiles,
            default_bounds=default_bounds,
            epsilon=epsilon,
            year=year,
            month=month,
        )
        bounds[name] = index_bounds
        normalized[f"{name}_Normalized"] = normalize_index(values, index_bounds)

    return normalized, bounds
