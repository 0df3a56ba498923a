"""
Time series analysis module.
Pipeline entry point: runs the monthly compositor over a year range and
summarizes the resulting sequence.
"""

import warnings
from dataclasses import dataclass
from typing import Dict, List, Optional

import numpy as np

import config
from compositing import create_monthly_composites
from config import PipelineSettings
from indices import get_index_statistics
from models import AreaOfInterest, MonthlyComposite, MonthResult, MonthStatus, RasterGrid


class AnalysisError(Exception):
    pass


@dataclass
class TimeSeriesResult:
    """Ordered month slots of one run plus the context they were built in."""

    results: List[MonthResult]
    aoi: AreaOfInterest
    grid: RasterGrid
    aoi_mask: np.ndarray
    settings: PipelineSettings

    def __len__(self) -> int:
        return len(self.results)

    def __iter__(self):
        return iter(self.results)

    @property
    def composites(self) -> List[MonthlyComposite]:
        """Composites of every non-failed month, placeholders included."""
        return [r.composite for r in self.results if r.composite is not None]

    @property
    def ok(self) -> List[MonthResult]:
        return [r for r in self.results if r.status == MonthStatus.OK]

    @property
    def empty(self) -> List[MonthResult]:
        return [r for r in self.results if r.status == MonthStatus.EMPTY]

    @property
    def failed(self) -> List[MonthResult]:
        return [r for r in self.results if r.status == MonthStatus.FAILED]

    def to_dict(self, bands: List[str] = None) -> Dict:
        """JSON-ready summary with AOI means per month for the given bands."""
        bands = bands or config.VEGETATION_INDICES
        statistics = get_month_statistics(self, bands)
        months = []
        for r in self.results:
            entry = {
                "key": r.key,
                "year": r.year,
                "month": r.month,
                "status": r.status.value,
            }
            if r.composite is not None:
                entry.update(r.composite.metadata())
                entry["means"] = {band: r.composite.band_mean(band) for band in bands}
                entry["statistics"] = statistics.get(r.key)
                entry["bounds"] = {name: b.to_dict() for name, b in r.composite.bounds.items()}
            else:
                entry["error_kind"] = r.error_kind
                entry["error"] = r.error
            months.append(entry)

        return {
            "aoi": {
                "name": self.aoi.name,
                "bounds": list(self.aoi.bounds),
                "grid_shape": list(self.grid.shape),
            },
            "settings": self.settings.to_dict(),
            "summary": summarize_run(self),
            "months": months,
        }


def analyze_time_series(
    source,
    aoi: AreaOfInterest,
    settings: PipelineSettings = None
) -> TimeSeriesResult:
    """
    Build the monthly composite sequence for an AOI.

    Args:
        source: Tile source.
        aoi: Region of interest.
        settings: Run settings. Defaults to PipelineSettings().

    Returns:
        TimeSeriesResult: Exactly (end_year - start_year + 1) * 12 slots.

    Raises:
        AnalysisError: If the year range or AOI is invalid.
    """
    settings = settings or PipelineSettings()

    if settings.start_year > settings.end_year:
        raise AnalysisError(
            f"start_year ({settings.start_year}) is after end_year ({settings.end_year})"
        )
    if aoi.geometry.is_empty or aoi.geometry.area == 0:
        raise AnalysisError("AOI geometry is empty")

    grid = aoi.grid(settings.scale)
    aoi_mask = aoi.pixel_mask(grid)
    if not aoi_mask.any():
        raise AnalysisError(f"AOI covers no pixels at {settings.scale}m scale")

    results = create_monthly_composites(source, aoi, settings=settings)

    return TimeSeriesResult(
        results=results,
        aoi=aoi,
        grid=grid,
        aoi_mask=aoi_mask,
        settings=settings,
    )


def summarize_run(result: TimeSeriesResult) -> Dict:
    """
    Count months per status.

    Args:
        result: Time series result.

    Returns:
        dict: Totals and month keys per status.
    """
    return {
        "total": len(result.results),
        "ok": len(result.ok),
        "empty": len(result.empty),
        "failed": len(result.failed),
        "empty_months": [r.key for r in result.empty],
        "failed_months": {r.key: r.error_kind for r in result.failed},
    }


def print_run_summary(result: TimeSeriesResult) -> None:
    """Print which months succeeded, were empty, or failed."""
    summary = summarize_run(result)

    print("\n" + "=" * 60)
    print("  RUN SUMMARY")
    print("=" * 60)
    print(f"  Months:  {summary['total']}")
    print(f"  ✓ OK:     {summary['ok']}")
    print(f"  ⚠ Empty:  {summary['empty']}")
    print(f"  ✗ Failed: {summary['failed']}")

    if summary["empty_months"]:
        print(f"\n  No scenes: {', '.join(summary['empty_months'])}")

    for r in result.failed:
        print(f"  ✗ {r.key} [{r.error_kind}] {r.error}")

    print("=" * 60)


def get_month_statistics(
    result: TimeSeriesResult,
    bands: List[str] = None
) -> Dict[str, Dict]:
    """
    AOI statistics of each band for every data-bearing month.

    Args:
        result: Time series result.
        bands: Band names. Defaults to config.VEGETATION_INDICES.

    Returns:
        dict: Month key to per-band statistics.
    """
    stats = {}
    for composite in result.composites:
        if composite.is_no_data:
            continue
        stats[composite.key] = get_index_statistics(composite.bands, result.aoi_mask, bands)
    return stats


def _stack_band(result: TimeSeriesResult, band: str) -> Optional[np.ndarray]:
    layers = [c.bands[band] for c in result.composites if not c.is_no_data]
    if not layers:
        return None
    return np.stack(layers)


def get_series_statistics(
    result: TimeSeriesResult,
    band: str,
    reducer: str = "median",
    percentiles: List[float] = None
) -> Dict:
    """
    Statistics of one band reduced across the whole series.

    The band is first reduced per pixel across months (median or mean),
    then min, max and percentiles are taken over the AOI.

    Args:
        result: Time series result.
        band: Band name, e.g. 'NDVI'.
        reducer: 'median' or 'mean'.
        percentiles: Percentiles to report. Defaults to config.SERIES_PERCENTILES.

    Returns:
        dict: min, max and percentile values (None when no pixel is valid).
    """
    percentiles = percentiles or config.SERIES_PERCENTILES
    reducers = {"median": np.nanmedian, "mean": np.nanmean}
    if reducer not in reducers:
        raise ValueError(f"Unknown reducer: {reducer}. Use 'median' or 'mean'.")

    empty = {"band": band, "reducer": reducer, "min": None, "max": None,
             "percentiles": {p: None for p in percentiles}}

    stack = _stack_band(result, band)
    if stack is None:
        return empty

    with warnings.catch_warnings():
        warnings.simplefilter("ignore", category=RuntimeWarning)
        reduced = reducers[reducer](stack, axis=0)

    values = reduced[result.aoi_mask]
    values = values[np.isfinite(values)]
    if values.size == 0:
        return empty

    return {
        "band": band,
        "reducer": reducer,
        "min": float(values.min()),
        "max": float(values.max()),
        "percentiles": {p: float(v) for p, v in zip(percentiles, np.percentile(values, percentiles))},
    }


def print_series_statistics(stats: Dict) -> None:
    print(f"\n  {stats['band']} ({stats['reducer']} across months):")
    if stats["min"] is None:
        print("    No valid pixels")
        return
    print(f"    min: {stats['min']:.4f}  max: {stats['max']:.4f}")
    for p, value in stats["percentiles"].items():
        print(f"    p{p}: {value:.4f}")
