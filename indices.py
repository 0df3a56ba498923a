"""
Vegetation indices calculation module.
Implements NDVI, EVI and SAVI over median reflectance rasters.
"""

import warnings
from typing import Dict, List

import numpy as np

import config

# Plotting ranges for each index and band
INDEX_RANGES = {
    "NDVI": (-1, 1),
    "EVI": (-1, 1),
    "SAVI": (-1, 1),
    "NDVI_Normalized": (0, 1),
    "EVI_Normalized": (0, 1),
    "SAVI_Normalized": (0, 1),
    "B2": (0, 0.6),
    "B3": (0, 0.6),
    "B4": (0, 0.6),
    "B8": (0, 0.6),
}


def _ratio(numerator: np.ndarray, denominator: np.ndarray) -> np.ndarray:
    """Divide, leaving NaN where the denominator is zero or an input is masked."""
    with np.errstate(divide="ignore", invalid="ignore"):
        result = numerator / denominator
    result = np.where(denominator == 0, np.nan, result)
    return result.astype("float32")


def calculate_ndvi(bands: Dict[str, np.ndarray]) -> np.ndarray:
    """
    Calculate Normalized Difference Vegetation Index.

    NDVI = (NIR - Red) / (NIR + Red)

    Undefined (NaN) where NIR + Red = 0.

    Args:
        bands: Reflectance rasters with B8 and B4.

    Returns:
        np.ndarray: NDVI values (-1 to 1).
    """
    nir = bands[config.S2_BANDS["nir"]]
    red = bands[config.S2_BANDS["red"]]

    return _ratio(nir - red, nir + red)


def calculate_evi(bands: Dict[str, np.ndarray]) -> np.ndarray:
    """
    Calculate Enhanced Vegetation Index.

    EVI = 2.5 * (NIR - Red) / (NIR + 6*Red - 7.5*Blue + 1)

    Corrects for atmospheric and canopy background effects; less prone
    to saturation over dense canopy than NDVI.

    Args:
        bands: Reflectance rasters with B8, B4 and B2.

    Returns:
        np.ndarray: EVI values.
    """
    nir = bands[config.S2_BANDS["nir"]]
    red = bands[config.S2_BANDS["red"]]
    blue = bands[config.S2_BANDS["blue"]]

    return 2.5 * _ratio(nir - red, nir + 6 * red - 7.5 * blue + 1)


def calculate_savi(bands: Dict[str, np.ndarray], soil_factor: float = 0.5) -> np.ndarray:
    """
    Calculate Soil-Adjusted Vegetation Index.

    SAVI = (1 + L) * (NIR - Red) / (NIR + Red + L), with L = 0.5

    Args:
        bands: Reflectance rasters with B8 and B4.
        soil_factor: Soil brightness correction L.

    Returns:
        np.ndarray: SAVI values.
    """
    nir = bands[config.S2_BANDS["nir"]]
    red = bands[config.S2_BANDS["red"]]

    return (1 + soil_factor) * _ratio(nir - red, nir + red + soil_factor)


def calculate_selected_indices(
    bands: Dict[str, np.ndarray],
    indices: List[str] = None
) -> Dict[str, np.ndarray]:
    """
    Calculate selected vegetation indices.

    Each index is computed per pixel with no dependency on the others; a
    pixel masked in any input band is masked in the output.

    Args:
        bands: Median reflectance rasters.
        indices: List of index names to calculate.
                 Defaults to config.VEGETATION_INDICES.

    Returns:
        dict: Index name to raster.
    """
    indices_to_calc = indices or config.VEGETATION_INDICES

    index_functions = {
        "NDVI": calculate_ndvi,
        "EVI": calculate_evi,
        "SAVI": calculate_savi,
    }

    result = {}
    for index_name in indices_to_calc:
        if index_name in index_functions:
            with warnings.catch_warnings():
                warnings.simplefilter("ignore", category=RuntimeWarning)
                result[index_name] = index_functions[index_name](bands).astype("float32")
        else:
            print(f"  Warning: Unknown index '{index_name}'")

    return result


def get_index_statistics(
    composite_bands: Dict[str, np.ndarray],
    aoi_mask: np.ndarray,
    indices: List[str] = None
) -> Dict:
    """
    Calculate statistics for index bands within the AOI.

    Args:
        composite_bands: Composite rasters with index bands.
        aoi_mask: Boolean AOI mask.
        indices: List of band names to analyze.

    Returns:
        dict: Statistics (mean, min, max, stdDev, count) for each index.
    """
    indices = indices or config.VEGETATION_INDICES

    stats = {}
    for index_name in indices:
        if index_name not in composite_bands:
            print(f"  Warning: Could not calculate stats for {index_name}: band missing")
            continue

        values = composite_bands[index_name][aoi_mask]
        values = values[np.isfinite(values)]

        if values.size == 0:
            stats[index_name] = {"mean": None, "min": None, "max": None, "stdDev": None, "count": 0}
            continue

        stats[index_name] = {
            "mean": float(values.mean()),
            "min": float(values.min()),
            "max": float(values.max()),
            "stdDev": float(values.std()),
            "count": int(values.size),
        }

    return stats
