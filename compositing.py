"""
Image compositing module.
Builds one median composite per calendar month across a year range and
fills months without scenes with schema-identical placeholders.
"""

import time
import warnings
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from datetime import datetime
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np

import config
from cloud import apply_cloud_mask
from config import PipelineSettings
from exceptions import MonthFailure, ReductionTimeoutError
from indices import calculate_selected_indices
from models import (
    COMPOSITE_BANDS,
    AreaOfInterest,
    MaskedScene,
    MonthlyComposite,
    MonthResult,
    MonthStatus,
    RasterGrid,
    Scene,
)
from normalization import normalize_indices


class Deadline:
    """Cooperative time budget for one month task."""

    def __init__(self, year: int, month: int, timeout_s: Optional[float]):
        self.year = year
        self.month = month
        self.timeout_s = timeout_s
        self.started = time.monotonic()

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.started

    def check(self, stage: str) -> None:
        if self.timeout_s is not None and self.elapsed > self.timeout_s:
            raise ReductionTimeoutError(
                self.year, self.month,
                f"exceeded {self.timeout_s}s budget during {stage} ({self.elapsed:.1f}s)"
            )


def month_range(year: int, month: int) -> Tuple[datetime, datetime]:
    """First instant of the month and first instant of the next month."""
    start = datetime(year, month, 1)
    if month == 12:
        end = datetime(year + 1, 1, 1)
    else:
        end = datetime(year, month + 1, 1)
    return start, end


def iter_months(start_year: int, end_year: int) -> Iterator[Tuple[int, int]]:
    """Every (year, month) from January of start_year to December of end_year."""
    for year in range(start_year, end_year + 1):
        for month in range(1, 13):
            yield year, month


def filter_scenes(
    scenes: Sequence[Scene],
    max_cloud_percent: float = None
) -> List[Scene]:
    """
    Scene-level pre-filter on provider-reported cloud cover.

    This is a cheap filter before per-pixel masking, not a replacement
    for it.

    Args:
        scenes: Candidate scenes.
        max_cloud_percent: Scenes at or above this percentage are dropped.
                           Defaults to config.MAX_SCENE_CLOUD_PERCENT.

    Returns:
        list: Scenes below the cloud cover limit.
    """
    max_cloud = max_cloud_percent if max_cloud_percent is not None else config.MAX_SCENE_CLOUD_PERCENT
    return [scene for scene in scenes if scene.cloud_cover < max_cloud]


def create_median_composite(
    masked_scenes: Sequence[MaskedScene],
    bands: List[str] = None
) -> Dict[str, np.ndarray]:
    """
    Create a median composite from masked scenes.

    The median of each pixel is taken only over scenes where that pixel is
    valid; pixels masked in every scene stay NaN.

    Args:
        masked_scenes: Masked scenes on the same grid.
        bands: Optional list of bands to include. If None, uses the bands
               shared by every scene.

    Returns:
        dict: Band name to median raster.
    """
    if not masked_scenes:
        raise ValueError("Cannot composite an empty set of scenes")

    if bands is None:
        shared = set(masked_scenes[0].bands)
        for scene in masked_scenes[1:]:
            shared &= set(scene.bands)
        bands = sorted(shared)

    composite = {}
    for band in bands:
        stack = np.stack([scene.bands[band] for scene in masked_scenes])
        with warnings.catch_warnings():
            # All-NaN pixels are expected where every scene is masked
            warnings.simplefilter("ignore", category=RuntimeWarning)
            composite[band] = np.nanmedian(stack, axis=0).astype("float32")

    return composite


def create_placeholder_composite(
    year: int,
    month: int,
    grid: RasterGrid
) -> MonthlyComposite:
    """
    Placeholder for a month with zero qualifying scenes.

    Carries the same ten bands as a data-bearing composite, every pixel
    masked (NaN).

    Args:
        year: Calendar year.
        month: Calendar month (1-12).
        grid: Run grid.

    Returns:
        MonthlyComposite: Composite with is_no_data=True.
    """
    bands = {name: np.full(grid.shape, np.nan, dtype="float32") for name in COMPOSITE_BANDS}
    return MonthlyComposite(
        year=year,
        month=month,
        scene_count=0,
        contamination=0.0,
        is_no_data=True,
        bands=bands,
    )


def create_monthly_composite(
    source,
    aoi: AreaOfInterest,
    year: int,
    month: int,
    settings: PipelineSettings = None,
    grid: RasterGrid = None,
    aoi_mask: np.ndarray = None
) -> MonthlyComposite:
    """
    Create the composite for one calendar month.

    Args:
        source: Tile source.
        aoi: Region of interest.
        year: Calendar year.
        month: Calendar month (1-12).
        settings: Run settings. Defaults to PipelineSettings().
        grid: Run grid. Defaults to aoi.grid(settings.scale).
        aoi_mask: Precomputed AOI mask on the grid.

    Returns:
        MonthlyComposite: Data-bearing composite or placeholder.

    Raises:
        ReductionTimeoutError: If the month exceeds settings.month_timeout_s.
        ResourceExhaustedError: If a percentile reduction exceeds settings.max_pixels.
    """
    settings = settings or PipelineSettings()
    grid = grid or aoi.grid(settings.scale)
    if aoi_mask is None:
        aoi_mask = aoi.pixel_mask(grid)

    deadline = Deadline(year, month, settings.month_timeout_s)

    scenes = source.fetch_scenes(
        aoi, month_range(year, month), settings.max_scene_cloud_percent, grid
    )
    scenes = filter_scenes(scenes, settings.max_scene_cloud_percent)
    deadline.check("retrieval")

    if not scenes:
        return create_placeholder_composite(year, month, grid)

    masked = apply_cloud_mask(
        scenes, source, aoi, grid,
        aoi_mask=aoi_mask,
        threshold=settings.cloud_probability_threshold,
        scale_factor=settings.scale_factor,
        scl_classes=settings.scl_masked_classes,
    )
    deadline.check("cloud masking")

    median = create_median_composite(masked)
    deadline.check("median reduction")

    # Clip to the AOI
    median = {name: np.where(aoi_mask, values, np.nan).astype("float32")
              for name, values in median.items()}

    indices = calculate_selected_indices(median)
    normalized, bounds = normalize_indices(
        indices, aoi_mask,
        sample_step=settings.sample_step,
        max_pixels=settings.max_pixels,
        percentiles=settings.percentiles,
        default_bounds=settings.default_bounds,
        epsilon=settings.epsilon,
        year=year,
        month=month,
    )
    deadline.check("percentile normalization")

    bands = {}
    bands.update(indices)
    bands.update(normalized)
    for name in config.RGB_BANDS + [config.NIR_BAND]:
        bands[name] = median[name]

    return MonthlyComposite(
        year=year,
        month=month,
        scene_count=len(masked),
        contamination=float(np.mean([scene.contamination for scene in masked])),
        is_no_data=False,
        bands={name: bands[name] for name in COMPOSITE_BANDS},
        bounds=bounds,
    )


def _run_month(source, aoi, year, month, settings, grid, aoi_mask) -> MonthResult:
    try:
        composite = create_monthly_composite(source, aoi, year, month, settings, grid, aoi_mask)
    except MonthFailure as e:
        print(f"  ✗ {year}-{month:02d} failed ({e.kind}): {e}")
        return MonthResult(year, month, MonthStatus.FAILED, error_kind=e.kind, error=str(e))
    except Exception as e:
        print(f"  ✗ {year}-{month:02d} failed ({type(e).__name__}): {e}")
        return MonthResult(year, month, MonthStatus.FAILED,
                           error_kind=type(e).__name__, error=str(e))

    if composite.is_no_data:
        print(f"  ⚠ {year}-{month:02d}: no scenes, placeholder inserted")
        return MonthResult(year, month, MonthStatus.EMPTY, composite=composite)

    print(f"  ✓ {year}-{month:02d}: {composite.scene_count} scenes, "
          f"{composite.contamination:.1f}% contaminated")
    return MonthResult(year, month, MonthStatus.OK, composite=composite)


def _poll_interval(timeout_s: Optional[float]) -> Optional[float]:
    if timeout_s is None:
        return None
    return min(max(timeout_s / 4, 0.01), 0.5)


def _timed_out_month(year: int, month: int, timeout_s: float, elapsed: float) -> MonthResult:
    error = ReductionTimeoutError(
        year, month, f"exceeded {timeout_s}s budget while still running ({elapsed:.1f}s)"
    )
    print(f"  ✗ {year}-{month:02d} failed ({error.kind}): {error}")
    return MonthResult(year, month, MonthStatus.FAILED, error_kind=error.kind, error=str(error))


def create_monthly_composites(
    source,
    aoi: AreaOfInterest,
    start_year: int = None,
    end_year: int = None,
    settings: PipelineSettings = None
) -> List[MonthResult]:
    """
    Create monthly composites for every month in the year range.

    Months are independent, so each runs as its own task in a thread pool.
    A failure in one month is recorded on that slot and does not stop the
    others. The result always holds one entry per (year, month), sorted.

    With settings.month_timeout_s set, a month still running past its
    budget is marked failed and no longer waited on, even if a tile source
    call inside it never returns. Its thread is abandoned. When every
    worker of the pool is held by abandoned months, the months not started
    yet move to a fresh pool.

    Args:
        source: Tile source.
        aoi: Region of interest.
        start_year: First year. Defaults to settings.start_year.
        end_year: Last year (inclusive). Defaults to settings.end_year.
        settings: Run settings. Defaults to PipelineSettings().

    Returns:
        list: MonthResult per month, ordered by (year, month).
    """
    settings = (settings or PipelineSettings()).with_overrides(
        start_year=start_year, end_year=end_year
    )
    grid = aoi.grid(settings.scale)
    aoi_mask = aoi.pixel_mask(grid)
    months = list(iter_months(settings.start_year, settings.end_year))
    workers = max(1, settings.max_workers)
    timeout_s = settings.month_timeout_s

    # Written by the worker thread when a month actually starts
    started: Dict[Tuple[int, int], float] = {}

    def run(year, month):
        started[(year, month)] = time.monotonic()
        return _run_month(source, aoi, year, month, settings, grid, aoi_mask)

    executors = []
    futures = {}

    def submit(keys) -> set:
        executor = ThreadPoolExecutor(max_workers=workers)
        executors.append(executor)
        submitted = set()
        for key in keys:
            future = executor.submit(run, *key)
            futures[future] = key
            submitted.add(future)
        return submitted

    results = {}
    pending = submit(months)
    abandoned = 0
    try:
        while pending:
            done, pending = wait(pending, timeout=_poll_interval(timeout_s), return_when=FIRST_COMPLETED)
            for future in done:
                results[futures[future]] = future.result()

            if timeout_s is None:
                continue

            now = time.monotonic()
            for future in list(pending):
                year, month = futures[future]
                if (year, month) in started and now - started[(year, month)] > timeout_s:
                    pending.discard(future)
                    results[(year, month)] = _timed_out_month(
                        year, month, timeout_s, now - started[(year, month)]
                    )
                    abandoned += 1

            if abandoned >= workers:
                queued = [future for future in pending if future.cancel()]
                if queued:
                    pending.difference_update(queued)
                    pending |= submit(futures[future] for future in queued)
                abandoned = 0
    finally:
        for executor in executors:
            executor.shutdown(wait=False, cancel_futures=True)

    ordered = [results[key] for key in sorted(results)]

    print(f"✓ Created {len(ordered)} monthly composites using median")
    return ordered
