"""
Rainfall module.
Monthly and seasonal CHIRPS precipitation totals over the AOI, used as
context for the vegetation index series.
"""

import os
import warnings
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

import ee
import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt
import numpy as np

import config
from compositing import month_range
from exceptions import TileSourceError
from models import MONTH_NAMES, AreaOfInterest

# Season windows as (first month, last month), inclusive
SEASONS = {
    "wet": (3, 5),
    "dry": (6, 10),
}


class RainfallSource:
    """Source of precipitation totals over an AOI."""

    def fetch_precipitation(
        self,
        aoi: AreaOfInterest,
        start: datetime,
        end: datetime
    ) -> Optional[float]:
        """AOI-mean precipitation (mm) summed over [start, end), None without data."""
        raise NotImplementedError


class InMemoryRainfallSource(RainfallSource):
    """
    Rainfall source over pentad rasters that are already loaded.

    Each record is (start date, raster or scalar in mm). Rasters must be on
    the same grid; they are summed per pixel before the AOI mean.
    """

    def __init__(self, pentads: Sequence[Tuple[datetime, np.ndarray]], aoi_mask: np.ndarray = None):
        self.pentads = sorted(pentads, key=lambda p: p[0])
        self.aoi_mask = aoi_mask

    def fetch_precipitation(self, aoi, start, end):
        selected = [np.asarray(values, dtype=float) for date, values in self.pentads
                    if start <= date < end]
        if not selected:
            return None

        total = np.sum(np.stack(selected), axis=0)
        if self.aoi_mask is not None and total.shape == self.aoi_mask.shape:
            total = total[self.aoi_mask]
        total = total[np.isfinite(total)]
        if total.size == 0:
            return None
        return float(total.mean())


class EarthEngineRainfallSource(RainfallSource):
    """CHIRPS pentad precipitation from Earth Engine."""

    def __init__(self, collection: str = None, scale: float = None):
        self.collection = collection or config.CHIRPS_COLLECTION
        self.scale = scale or config.RAINFALL_SCALE

    def fetch_precipitation(self, aoi, start, end):
        total = (
            ee.ImageCollection(self.collection)
            .filterDate(start.strftime("%Y-%m-%d"), end.strftime("%Y-%m-%d"))
            .sum()
        )
        try:
            stats = total.reduceRegion(
                reducer=ee.Reducer.mean(),
                geometry=ee.Geometry(aoi.to_geojson()),
                scale=self.scale,
                maxPixels=1e13,
            ).getInfo()
        except ee.EEException as e:
            raise TileSourceError(f"Failed to reduce CHIRPS precipitation: {e}") from e

        value = stats.get("precipitation")
        return None if value is None else float(value)


def monthly_rainfall(
    source: RainfallSource,
    aoi: AreaOfInterest,
    year: int
) -> List[Dict]:
    """
    Total rainfall for each month of a year, averaged over the AOI.

    Args:
        source: Rainfall source.
        aoi: Region of interest.
        year: Calendar year.

    Returns:
        list: 12 dicts with month, monthName and precipitation (mm or None).
    """
    series = []
    for month in range(1, 13):
        start, end = month_range(year, month)
        series.append({
            "month": month,
            "monthName": MONTH_NAMES[month - 1],
            "precipitation": source.fetch_precipitation(aoi, start, end),
        })

    total = sum(m["precipitation"] or 0 for m in series)
    print(f"✓ Monthly rainfall {year}: {total:.0f} mm total")
    return series


def seasonal_rainfall(
    source: RainfallSource,
    aoi: AreaOfInterest,
    year: int
) -> Dict[str, Optional[float]]:
    """
    Annual, wet season (Mar-May) and dry season (Jun-Oct) totals.

    Args:
        source: Rainfall source.
        aoi: Region of interest.
        year: Calendar year.

    Returns:
        dict: rainfall, rainfall_wet and rainfall_dry in mm.
    """
    result = {"rainfall": source.fetch_precipitation(aoi, datetime(year, 1, 1), datetime(year + 1, 1, 1))}
    for season, (first, last) in SEASONS.items():
        start, _ = month_range(year, first)
        _, end = month_range(year, last)
        result[f"rainfall_{season}"] = source.fetch_precipitation(aoi, start, end)
    return result


def plot_rainfall_chart(
    series: List[Dict],
    filepath: str,
    year: int = None,
    title: str = None
) -> str:
    """
    Column chart of monthly rainfall.

    Args:
        series: Output of monthly_rainfall().
        filepath: Output PNG path.
        year: Year shown in the default title.
        title: Chart title.

    Returns:
        str: Path to saved file.
    """
    title = title or f"Monthly Total Rainfall (CHIRPS{', ' + str(year) if year else ''})"
    names = [m["monthName"] for m in series]
    values = [np.nan if m["precipitation"] is None else m["precipitation"] for m in series]

    fig, ax = plt.subplots(figsize=(12, 6))
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", category=RuntimeWarning)
        ax.bar(names, values, color="#1f77b4")
    ax.set_title(title, fontweight="bold")
    ax.set_xlabel("Month")
    ax.set_ylabel("Rainfall (mm)")
    ax.grid(True, axis="y", alpha=0.3, linestyle="--")

    directory = os.path.dirname(filepath)
    if directory:
        os.makedirs(directory, exist_ok=True)
    fig.tight_layout()
    fig.savefig(filepath, bbox_inches="tight", facecolor="white")
    plt.close(fig)

    print(f"  ✓ Saved: {os.path.basename(filepath)}")
    return filepath
