import time
from dataclasses import replace
from datetime import datetime

import numpy as np
import pytest

from compositing import (
    create_median_composite,
    create_monthly_composite,
    create_monthly_composites,
    create_placeholder_composite,
    filter_scenes,
    iter_months,
    month_range,
)
from cloud import apply_cloud_mask
from exceptions import TileSourceError
from models import COMPOSITE_BANDS, NORMALIZED_BANDS, MonthStatus
from retrieval import InMemoryTileSource


class FailingMonthSource(InMemoryTileSource):
    """Raises for one month, behaves normally for the others."""

    def __init__(self, scenes, failing_month):
        super().__init__(scenes)
        self.failing_month = failing_month

    def fetch_scenes(self, aoi, date_range, max_cloud_percent, grid):
        if date_range[0].month == self.failing_month:
            raise TileSourceError("catalog unavailable")
        return super().fetch_scenes(aoi, date_range, max_cloud_percent, grid)


class SlowMonthSource(InMemoryTileSource):
    """Blocks in fetch_scenes for the given months."""

    def __init__(self, scenes, slow_months, delay_s):
        super().__init__(scenes)
        self.slow_months = set(slow_months)
        self.delay_s = delay_s

    def fetch_scenes(self, aoi, date_range, max_cloud_percent, grid):
        if date_range[0].month in self.slow_months:
            time.sleep(self.delay_s)
        return super().fetch_scenes(aoi, date_range, max_cloud_percent, grid)


def test_month_range_rolls_over_december():
    assert month_range(2024, 12) == (datetime(2024, 12, 1), datetime(2025, 1, 1))
    assert month_range(2024, 2) == (datetime(2024, 2, 1), datetime(2024, 3, 1))


def test_iter_months_covers_every_month():
    months = list(iter_months(2023, 2024))

    assert len(months) == 24
    assert months[0] == (2023, 1)
    assert months[-1] == (2024, 12)


def test_filter_scenes_keeps_strictly_below_limit(make_scene):
    scenes = [make_scene("a", cloud_cover=19.9), make_scene("b", cloud_cover=20), make_scene("c", cloud_cover=55)]
    assert [s.scene_id for s in filter_scenes(scenes, 20)] == ["a"]


def test_median_uses_only_valid_observations(make_scene, aoi, grid):
    scenes = [
        make_scene("a", red=1000),
        make_scene("b", red=2000),
        make_scene("c", red=9000, cloud_probability=100),
    ]
    masked = apply_cloud_mask(scenes, InMemoryTileSource(scenes), aoi, grid)

    median = create_median_composite(masked)

    assert np.allclose(median["B4"], 0.15)


def test_median_of_fully_masked_pixels_is_nan(make_scene, aoi, grid):
    scenes = [make_scene("a", cloud_probability=100)]
    masked = apply_cloud_mask(scenes, InMemoryTileSource(scenes), aoi, grid)

    assert np.isnan(create_median_composite(masked)["B8"]).all()


def test_median_of_no_scenes_raises():
    with pytest.raises(ValueError):
        create_median_composite([])


def test_placeholder_has_full_schema_and_is_masked(grid):
    placeholder = create_placeholder_composite(2024, 6, grid)

    assert placeholder.is_no_data
    assert placeholder.scene_count == 0
    assert placeholder.contamination == 0.0
    assert list(placeholder.bands) == COMPOSITE_BANDS
    for values in placeholder.bands.values():
        assert values.shape == grid.shape
        assert np.isnan(values).all()


def test_march_example(march_source, aoi, settings):
    composite = create_monthly_composite(march_source, aoi, 2024, 3, settings)

    assert composite.scene_count == 5
    assert composite.contamination == pytest.approx(40.0)
    assert not composite.is_no_data
    assert list(composite.bands) == COMPOSITE_BANDS
    assert set(composite.bounds) == {"NDVI", "EVI", "SAVI"}


def test_month_without_scenes_is_placeholder(march_source, aoi, settings, grid):
    composite = create_monthly_composite(march_source, aoi, 2024, 4, settings)

    assert composite.is_no_data
    assert composite.scene_count == 0
    assert all(np.isnan(v).all() for v in composite.bands.values())


def test_fully_clouded_month_is_not_a_placeholder(make_scene, aoi, settings):
    source = InMemoryTileSource([make_scene(cloud_probability=100)])

    composite = create_monthly_composite(source, aoi, 2024, 3, settings)

    assert composite.scene_count == 1
    assert not composite.is_no_data
    assert composite.contamination == 100.0
    assert composite.valid_pixel_count("NDVI") == 0
    assert all(b.defaulted for b in composite.bounds.values())


def test_series_has_one_slot_per_month(march_source, aoi, settings):
    results = create_monthly_composites(march_source, aoi, 2023, 2024, settings)

    assert len(results) == 24
    assert [r.sort_key for r in results] == list(iter_months(2023, 2024))


def test_series_statuses_and_no_data_flag(march_source, aoi, settings):
    results = create_monthly_composites(march_source, aoi, settings=settings)

    statuses = {r.month: r.status for r in results}
    assert statuses[3] == MonthStatus.OK
    assert all(status == MonthStatus.EMPTY for month, status in statuses.items() if month != 3)
    for r in results:
        assert r.composite.is_no_data == (r.composite.scene_count == 0)
        assert 0 <= r.composite.contamination <= 100


def test_normalized_bands_stay_in_unit_range(march_source, aoi, settings):
    results = create_monthly_composites(march_source, aoi, settings=settings)

    for r in results:
        for band in NORMALIZED_BANDS:
            values = r.composite.bands[band]
            valid = values[np.isfinite(values)]
            assert np.all((valid >= 0) & (valid <= 1))

    march = results[2].composite
    assert np.nanmax(march.bands["NDVI_Normalized"]) == pytest.approx(1.0)
    assert np.nanmin(march.bands["NDVI_Normalized"]) == pytest.approx(0.0)


def test_series_is_idempotent(march_source, aoi, settings):
    first = create_monthly_composites(march_source, aoi, settings=settings)
    second = create_monthly_composites(march_source, aoi, settings=replace(settings, max_workers=1))

    for a, b in zip(first, second):
        assert a.status == b.status
        assert a.composite.scene_count == b.composite.scene_count
        assert a.composite.contamination == b.composite.contamination
        for band in COMPOSITE_BANDS:
            assert np.array_equal(a.composite.bands[band], b.composite.bands[band], equal_nan=True)


def test_timeout_marks_months_failed_not_empty(march_source, aoi, settings):
    results = create_monthly_composites(march_source, aoi, settings=replace(settings, month_timeout_s=-1))

    assert len(results) == 12
    assert all(r.status == MonthStatus.FAILED for r in results)
    assert all(r.error_kind == "ReductionTimeout" for r in results)
    assert all(r.composite is None for r in results)


def test_pixel_budget_fails_only_months_with_data(march_source, aoi, settings):
    results = create_monthly_composites(march_source, aoi, settings=replace(settings, max_pixels=10))

    march = results[2]
    assert march.status == MonthStatus.FAILED
    assert march.error_kind == "ResourceExhausted"
    assert sum(r.status == MonthStatus.EMPTY for r in results) == 11


def test_tile_source_error_is_isolated_to_its_month(march_source, aoi, settings):
    source = FailingMonthSource(march_source.scenes, failing_month=7)

    results = create_monthly_composites(source, aoi, settings=settings)

    july = results[6]
    assert july.status == MonthStatus.FAILED
    assert july.error_kind == "TileSourceError"
    assert "catalog unavailable" in july.error
    assert results[2].status == MonthStatus.OK
    assert len(results) == 12


def test_blocking_month_fails_without_holding_up_the_run(march_source, aoi, settings):
    source = SlowMonthSource(march_source.scenes, slow_months=[5], delay_s=3.0)

    started = time.monotonic()
    results = create_monthly_composites(source, aoi, settings=replace(settings, month_timeout_s=0.3))
    elapsed = time.monotonic() - started

    assert elapsed < 2.0
    assert len(results) == 12
    may = results[4]
    assert may.status == MonthStatus.FAILED
    assert may.error_kind == "ReductionTimeout"
    assert may.composite is None
    assert results[2].status == MonthStatus.OK
    assert sum(r.status == MonthStatus.EMPTY for r in results) == 10


def test_every_worker_blocked_still_finishes(march_source, aoi, settings):
    source = SlowMonthSource(march_source.scenes, slow_months=range(1, 13), delay_s=3.0)

    started = time.monotonic()
    results = create_monthly_composites(
        source, aoi, settings=replace(settings, max_workers=2, month_timeout_s=0.2)
    )
    elapsed = time.monotonic() - started

    # Six rounds of two blocked months, far below 6 x 3s
    assert elapsed < 2.5
    assert [r.sort_key for r in results] == list(iter_months(2024, 2024))
    assert all(r.status == MonthStatus.FAILED for r in results)
    assert all(r.error_kind == "ReductionTimeout" for r in results)
