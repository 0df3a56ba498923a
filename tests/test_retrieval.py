from datetime import datetime

import pytest

from exceptions import MissingCloudProductError
from models import AreaOfInterest
from retrieval import (
    InMemoryTileSource,
    create_bbox_roi,
    create_region_of_interest,
    get_collection_metadata,
    get_scene_dates,
)

MARCH = (datetime(2024, 3, 1), datetime(2024, 4, 1))


def test_fetch_scenes_filters_by_date_cloud_and_footprint(make_scene, aoi, grid):
    scenes = [
        make_scene("in", datetime(2024, 3, 10)),
        make_scene("april", datetime(2024, 4, 1)),
        make_scene("cloudy", datetime(2024, 3, 11), cloud_cover=35),
        make_scene("elsewhere", datetime(2024, 3, 12), bounds=(10.0, 10.0, 10.1, 10.1)),
    ]
    source = InMemoryTileSource(scenes)

    fetched = source.fetch_scenes(aoi, MARCH, 20, grid)

    assert [s.scene_id for s in fetched] == ["in"]


def test_fetch_scenes_sorted_by_time(make_scene, aoi, grid):
    scenes = [make_scene("b", datetime(2024, 3, 20)), make_scene("a", datetime(2024, 3, 2))]

    fetched = InMemoryTileSource(scenes).fetch_scenes(aoi, MARCH, 20, grid)

    assert [s.scene_id for s in fetched] == ["a", "b"]


def test_missing_cloud_probability_raises(make_scene, aoi, grid):
    scene = make_scene(cloud_probability=None)

    with pytest.raises(MissingCloudProductError) as excinfo:
        InMemoryTileSource([scene]).fetch_cloud_probability(aoi, scene, grid)

    assert excinfo.value.scene_id == scene.scene_id


def test_region_of_interest_is_circle_of_buffer_radius():
    roi = create_region_of_interest(-1.2406, 36.8370, 1500, "Karura")

    lat, lon = roi.centroid
    assert lat == pytest.approx(-1.2406, abs=1e-6)
    assert lon == pytest.approx(36.8370, abs=1e-6)
    min_lon, min_lat, max_lon, max_lat = roi.bounds
    assert (max_lat - min_lat) * 111320 == pytest.approx(3000, rel=0.01)


def test_bbox_roi_grid_and_mask():
    roi = create_bbox_roi(36.80, -1.25, 36.81, -1.24)
    grid = roi.grid(10)

    assert grid.shape[0] == pytest.approx(111, abs=2)
    assert roi.pixel_mask(grid).all()


def test_aoi_from_geojson_feature():
    feature = {
        "type": "Feature",
        "properties": {"name": "Plot 7"},
        "geometry": {
            "type": "Polygon",
            "coordinates": [[[36.8, -1.25], [36.81, -1.25], [36.81, -1.24], [36.8, -1.25]]],
        },
    }
    aoi = AreaOfInterest.from_geojson(feature)

    assert aoi.name == "Plot 7"
    mask = aoi.pixel_mask(aoi.grid(10))
    assert 0 < mask.sum() < mask.size


def test_collection_metadata(make_scene):
    scenes = [
        make_scene("a", datetime(2024, 3, 2), cloud_cover=2),
        make_scene("b", datetime(2024, 3, 2), cloud_cover=10),
        make_scene("c", datetime(2024, 3, 9), cloud_cover=6),
    ]

    metadata = get_collection_metadata(scenes)

    assert get_scene_dates(scenes) == ["2024-03-02", "2024-03-09"]
    assert metadata["count"] == 3
    assert metadata["date_range"] == "2024-03-02 to 2024-03-09"
    assert metadata["cloud_stats"]["mean"] == pytest.approx(6.0)
    assert get_collection_metadata([])["count"] == 0


def test_aoi_from_feature_with_null_properties():
    feature = {
        "type": "Feature",
        "properties": None,
        "geometry": {
            "type": "Polygon",
            "coordinates": [[[36.8, -1.25], [36.81, -1.25], [36.81, -1.24], [36.8, -1.25]]],
        },
    }

    aoi = AreaOfInterest.from_geojson(feature, name="Plot 9")

    assert aoi.name == "Plot 9"
    assert aoi.geometry.area > 0
