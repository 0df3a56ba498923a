"""
Export module.
Writes monthly composites to GeoTIFF files, one per data-bearing month,
plus a CSV summary of the whole series.
"""

import csv
import os
from typing import Dict, List, Optional, Sequence

import rasterio

import config
import compression
from models import COMPOSITE_BANDS, MonthlyComposite, MonthResult, RasterGrid


def export_name(composite: MonthlyComposite, prefix: str = None) -> str:
    """File name stem, e.g. ``Indices_RGB_2024_3``."""
    return f"{prefix or config.FILE_PREFIX}_{composite.year}_{composite.month}"


def export_composite(
    composite: MonthlyComposite,
    grid: RasterGrid,
    description: str = None,
    folder: str = None,
    bands: List[str] = None,
    scale_type: str = "float",
    verbose: bool = False
) -> str:
    """
    Export one composite to a GeoTIFF.

    Args:
        composite: Data-bearing monthly composite.
        grid: Grid the composite bands are on.
        description: File name without extension. Defaults to export_name().
        folder: Output folder. Defaults to config.OUTPUT_FOLDER.
        bands: Bands to export. Defaults to all ten composite bands.
        scale_type: "float", "uint16" or "uint8".
        verbose: Print the export summary.

    Returns:
        str: Path to the written file.

    Raises:
        ValueError: If the composite is a placeholder.
    """
    if composite.is_no_data:
        raise ValueError(f"{composite.key} is a placeholder month; nothing to export")

    folder = folder or config.OUTPUT_FOLDER
    description = description or export_name(composite)
    bands = bands or COMPOSITE_BANDS

    stack, dtype, nodata = compression.prepare_for_export(composite.bands, bands, scale_type)
    params = compression.create_export_params(grid, len(bands), dtype, nodata)

    if verbose:
        bit_depth = 32 if dtype == "float32" else (16 if dtype == "uint16" else 8)
        compression.print_export_summary(
            description, params,
            compression.estimate_file_size(grid, len(bands), bit_depth)
        )

    os.makedirs(folder, exist_ok=True)
    filepath = os.path.join(folder, f"{description}.tif")

    with rasterio.open(filepath, "w", **params) as dst:
        dst.write(stack)
        dst.descriptions = tuple(bands)
        dst.update_tags(**{k: str(v) for k, v in composite.metadata().items()})
        for i, name in enumerate(bands, start=1):
            if name in composite.bounds:
                b = composite.bounds[name]
                dst.update_tags(i, p2=str(b.p2), p98=str(b.p98), defaulted=str(b.defaulted))

    print(f"✓ Exported {composite.label}: {filepath}")
    return filepath


def export_time_series(
    results: Sequence,
    grid: RasterGrid,
    folder: str = None,
    prefix: str = None,
    bands: List[str] = None,
    scale_type: str = "float"
) -> Dict[str, str]:
    """
    Export every data-bearing month of a series.

    Placeholder and failed months are skipped.

    Args:
        results: MonthResults or MonthlyComposites.
        grid: Run grid.
        folder: Output folder. Defaults to config.OUTPUT_FOLDER.
        prefix: File prefix. Defaults to config.FILE_PREFIX.
        bands: Bands to export.
        scale_type: "float", "uint16" or "uint8".

    Returns:
        dict: Month key to file path.
    """
    folder = folder or config.OUTPUT_FOLDER

    paths = {}
    for item in results:
        composite = item.composite if isinstance(item, MonthResult) else item
        if composite is None or composite.is_no_data:
            continue
        paths[composite.key] = export_composite(
            composite, grid,
            description=export_name(composite, prefix),
            folder=folder,
            bands=bands,
            scale_type=scale_type,
        )

    print(f"\n✓ Exported {len(paths)} monthly composites to {folder}")
    return paths


def export_summary_csv(
    results: Sequence[MonthResult],
    filepath: str,
    bands: List[str] = None
) -> str:
    """
    Write one row per month with status, scene count, contamination and AOI means.

    Args:
        results: Month results of a run.
        filepath: Output CSV path.
        bands: Bands whose AOI mean is reported. Defaults to config.VEGETATION_INDICES.

    Returns:
        str: Path to saved file.
    """
    bands = bands or config.VEGETATION_INDICES
    directory = os.path.dirname(filepath)
    if directory:
        os.makedirs(directory, exist_ok=True)

    with open(filepath, "w", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(["month", "status", "count", "contamination", "noData", *bands, "error"])
        for r in results:
            c: Optional[MonthlyComposite] = r.composite
            if c is None:
                writer.writerow([r.key, r.status.value, "", "", "", *[""] * len(bands),
                                 f"{r.error_kind}: {r.error}"])
                continue
            means = [c.band_mean(b) for b in bands]
            writer.writerow([
                r.key, r.status.value, c.scene_count, f"{c.contamination:.2f}", int(c.is_no_data),
                *["" if m is None else f"{m:.6f}" for m in means], "",
            ])

    print(f"✓ Saved month summary to {filepath}")
    return filepath
