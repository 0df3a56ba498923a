"""
Compression and output formatting module.
Handles raster preparation for export with various compression options.
"""

from typing import Dict, List, Tuple

import numpy as np

import config
from models import COMPOSITE_BANDS, INDEX_BANDS, NORMALIZED_BANDS, RasterGrid

# Nodata values used for integer outputs
UINT8_NODATA = 0
UINT16_NODATA = 0


def _unit_scale(values: np.ndarray, min_val: float, max_val: float) -> np.ndarray:
    with np.errstate(invalid="ignore"):
        return np.clip((values - min_val) / (max_val - min_val), 0, 1)


def scale_to_uint16(values: np.ndarray, min_val: float = 0, max_val: float = 1) -> np.ndarray:
    """
    Scale values to unsigned 16-bit integer range.

    Useful for reducing file size while preserving data quality.
    Valid values map to 1-65535; 0 is reserved for masked pixels.

    Args:
        values: Input raster.
        min_val: Minimum expected value.
        max_val: Maximum expected value.

    Returns:
        np.ndarray: uint16 raster.
    """
    scaled = np.round(_unit_scale(values, min_val, max_val) * 65534) + 1
    return np.where(np.isfinite(values), scaled, UINT16_NODATA).astype("uint16")


def scale_to_uint8(values: np.ndarray, min_val: float = 0, max_val: float = 1) -> np.ndarray:
    """
    Scale values to unsigned 8-bit integer range.

    Maximum compression but loses precision. Good for visualization,
    not recommended for quantitative analysis. 0 is reserved for masked
    pixels.

    Args:
        values: Input raster.
        min_val: Minimum expected value.
        max_val: Maximum expected value.

    Returns:
        np.ndarray: uint8 raster.
    """
    scaled = np.round(_unit_scale(values, min_val, max_val) * 254) + 1
    return np.where(np.isfinite(values), scaled, UINT8_NODATA).astype("uint8")


def prepare_for_export(
    bands: Dict[str, np.ndarray],
    band_names: List[str] = None,
    scale_type: str = "float"
) -> Tuple[np.ndarray, str, float]:
    """
    Stack bands for export with specified scaling.

    Args:
        bands: Band name to raster.
        band_names: Bands to include, in order. Defaults to COMPOSITE_BANDS.
        scale_type: "float" (no scaling), "uint16", or "uint8".

    Returns:
        tuple: (stacked array, dtype name, nodata value)
    """
    band_names = band_names or COMPOSITE_BANDS
    missing = [b for b in band_names if b not in bands]
    if missing:
        raise ValueError(f"Bands not found: {missing}")

    if scale_type == "float":
        stack = np.stack([bands[b] for b in band_names]).astype("float32")
        return stack, "float32", float("nan")

    if scale_type not in ("uint16", "uint8"):
        raise ValueError(f"Unknown scale type: {scale_type}. Use 'float', 'uint16' or 'uint8'.")

    scaler = scale_to_uint16 if scale_type == "uint16" else scale_to_uint8
    layers = []
    for name in band_names:
        if name in NORMALIZED_BANDS:
            low, high = 0, 1
        elif name in INDEX_BANDS:
            low, high = -1, 1
        else:
            low, high = 0, 1
        layers.append(scaler(bands[name], low, high))
    return np.stack(layers), scale_type, 0


def get_optimal_bands(
    include_rgb: bool = True,
    include_indices: bool = True,
    include_normalized: bool = True
) -> List[str]:
    """
    Get band selection for export based on use case.

    Args:
        include_rgb: Include RGB and NIR reflectance bands.
        include_indices: Include raw index bands.
        include_normalized: Include normalized index bands.

    Returns:
        list: Band names to export, in composite order.
    """
    wanted = set()
    if include_indices:
        wanted.update(INDEX_BANDS)
    if include_normalized:
        wanted.update(NORMALIZED_BANDS)
    if include_rgb:
        wanted.update(config.RGB_BANDS + [config.NIR_BAND])

    return [b for b in COMPOSITE_BANDS if b in wanted]


def estimate_file_size(
    grid: RasterGrid,
    num_bands: int = None,
    bit_depth: int = 32
) -> dict:
    """
    Estimate output file size.

    Args:
        grid: Export grid.
        num_bands: Number of bands. Defaults to the composite band count.
        bit_depth: Bits per pixel (8, 16, or 32).

    Returns:
        dict: Size estimates in various units.
    """
    pixels = grid.pixel_count
    num_bands = num_bands or len(COMPOSITE_BANDS)

    bytes_per_pixel = bit_depth / 8
    raw_bytes = pixels * num_bands * bytes_per_pixel

    # LZW typically gives 30-50% compression for imagery
    compressed_bytes = raw_bytes * 0.6 if config.GEOTIFF_COMPRESSION else raw_bytes

    return {
        "pixels": int(pixels),
        "bands": num_bands,
        "raw_mb": raw_bytes / (1024 * 1024),
        "estimated_mb": compressed_bytes / (1024 * 1024),
        "estimated_gb": compressed_bytes / (1024 * 1024 * 1024),
    }


def create_export_params(
    grid: RasterGrid,
    count: int,
    dtype: str = "float32",
    nodata: float = float("nan"),
    crs: str = None,
    compression: str = None
) -> dict:
    """
    Create a rasterio profile for a GeoTIFF export.

    Args:
        grid: Export grid.
        count: Number of bands.
        dtype: Output data type.
        nodata: Nodata value.
        crs: Coordinate reference system. Defaults to config.EXPORT_CRS.
        compression: GeoTIFF compression. Defaults to config.GEOTIFF_COMPRESSION.

    Returns:
        dict: Keyword arguments for rasterio.open(..., "w").
    """
    rows, cols = grid.shape
    params = {
        "driver": "GTiff",
        "height": rows,
        "width": cols,
        "count": count,
        "dtype": dtype,
        "crs": crs or config.EXPORT_CRS,
        "transform": grid.transform,
        "nodata": nodata,
    }

    compress = compression if compression is not None else config.GEOTIFF_COMPRESSION
    if compress:
        params["compress"] = compress.lower()

    return params


def print_export_summary(description: str, params: dict, size_estimate: dict = None):
    """
    Print summary of planned export.

    Args:
        description: File name.
        params: Profile from create_export_params().
        size_estimate: Optional size estimate dictionary.
    """
    print("\nExport Summary:")
    print("-" * 40)
    print(f"  Description: {description}")
    print(f"  Size: {params['width']} x {params['height']} px, {params['count']} bands")
    print(f"  CRS: {params['crs']}")
    print(f"  Data type: {params['dtype']}")
    print(f"  Compression: {params.get('compress', 'None')}")

    if size_estimate:
        print("\n  Estimated size:")
        print(f"    Pixels: {size_estimate['pixels']:,}")
        print(f"    Bands: {size_estimate['bands']}")
        print(f"    Raw: {size_estimate['raw_mb']:.1f} MB")
        print(f"    Compressed: ~{size_estimate['estimated_mb']:.1f} MB")

    print("-" * 40)
