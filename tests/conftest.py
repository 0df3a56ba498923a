"""
Shared test fixtures: a small rectangular AOI and synthetic Sentinel-2
scenes on its grid.
"""

from datetime import datetime

import numpy as np
import pytest

from config import PipelineSettings
from models import AreaOfInterest, Scene
from retrieval import InMemoryTileSource

# Roughly 300m x 300m near Nairobi, 30 x 30 pixels at 10m
AOI_BOUNDS = (36.8000, -1.2500, 36.8027, -1.2473)


@pytest.fixture
def aoi():
    return AreaOfInterest.from_bounds(*AOI_BOUNDS, name="Test AOI")


@pytest.fixture
def grid(aoi):
    return aoi.grid(10)


@pytest.fixture
def aoi_mask(aoi, grid):
    return aoi.pixel_mask(grid)


@pytest.fixture
def settings():
    return PipelineSettings(start_year=2024, end_year=2024, max_workers=2, month_timeout_s=None)


@pytest.fixture
def make_scene(grid):
    """
    Build a scene on the test grid. Band values are digital numbers
    (reflectance x 10000); scalars are broadcast to the grid.
    """

    def _make(
        scene_id="S2A_20240305",
        timestamp=datetime(2024, 3, 5),
        nir=3000,
        red=1000,
        green=800,
        blue=500,
        scl=4,
        cloud_probability=0,
        cloud_cover=5.0,
        bounds=None,
    ):
        shape = grid.shape

        def band(value):
            return np.broadcast_to(np.asarray(value, dtype="float32"), shape).copy()

        bands = {
            "B2": band(blue),
            "B3": band(green),
            "B4": band(red),
            "B8": band(nir),
            "SCL": band(scl),
        }
        if cloud_probability is not None:
            bands["cloud_probability"] = band(cloud_probability)

        return Scene(
            scene_id=scene_id,
            timestamp=timestamp,
            bounds=bounds or grid.bounds,
            bands=bands,
            cloud_cover=cloud_cover,
        )

    return _make


@pytest.fixture
def gradient(grid):
    """NIR values rising left to right, for non-degenerate normalization."""
    rows, cols = grid.shape
    return np.tile(np.linspace(1500, 4500, cols, dtype="float32"), (rows, 1))


@pytest.fixture
def march_source(make_scene, gradient):
    """5 scenes in March 2024: 2 fully cloudy, 3 clean. Other months empty."""
    scenes = [
        make_scene(f"S2_202403{day:02d}", datetime(2024, 3, day), nir=gradient, cloud_probability=100)
        for day in (2, 7)
    ] + [
        make_scene(f"S2_202403{day:02d}", datetime(2024, 3, day), nir=gradient, cloud_probability=0)
        for day in (12, 17, 22)
    ]
    return InMemoryTileSource(scenes)
