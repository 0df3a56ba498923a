import numpy as np
import pytest

from cloud import (
    add_cloud_probability,
    apply_cloud_mask,
    build_cloud_mask,
    compute_contamination,
    mask_scene,
)
from retrieval import InMemoryTileSource


def test_clear_scene_is_fully_valid(make_scene, aoi_mask):
    scene = make_scene()
    mask = build_cloud_mask(scene)

    assert mask.all()
    assert compute_contamination(scene, mask, aoi_mask) == 0.0


def test_cloud_probability_at_threshold_is_masked(make_scene):
    assert not build_cloud_mask(make_scene(cloud_probability=40)).any()
    assert build_cloud_mask(make_scene(cloud_probability=39.9)).all()


@pytest.mark.parametrize("scl_class", [3, 9, 10])
def test_scl_shadow_cloud_and_cirrus_are_masked(make_scene, scl_class):
    assert not build_cloud_mask(make_scene(scl=scl_class)).any()


@pytest.mark.parametrize("scl_class", [4, 5, 8])
def test_other_scl_classes_are_kept(make_scene, scl_class):
    assert build_cloud_mask(make_scene(scl=scl_class)).all()


def test_contamination_counts_invalid_fraction(make_scene, grid, aoi_mask):
    rows, cols = grid.shape
    scl = np.full(grid.shape, 4, dtype="float32")
    scl[:, : cols // 2] = 9
    scene = make_scene(scl=scl)

    contamination = compute_contamination(scene, build_cloud_mask(scene), aoi_mask)

    expected = 100.0 * rows * (cols // 2) / (rows * cols)
    assert contamination == pytest.approx(expected)
    assert 0 <= contamination <= 100


def test_contamination_without_data_is_zero(make_scene, aoi_mask):
    scene = make_scene(red=np.nan)
    assert compute_contamination(scene, build_cloud_mask(scene), aoi_mask) == 0.0


def test_mask_scene_scales_and_drops_auxiliary_bands(make_scene, aoi_mask):
    masked = mask_scene(make_scene(), aoi_mask)

    assert set(masked.bands) == {"B2", "B3", "B4", "B8"}
    assert np.allclose(masked.bands["B8"], 0.3)
    assert np.allclose(masked.bands["B4"], 0.1)
    assert masked.contamination == 0.0


def test_masked_pixels_become_nan(make_scene, aoi_mask):
    masked = mask_scene(make_scene(cloud_probability=90), aoi_mask)

    assert np.isnan(masked.bands["B4"]).all()
    assert masked.valid_count == 0
    assert masked.contamination == 100.0


def test_missing_cloud_product_falls_back_to_zero_band(make_scene, aoi, grid):
    scene = make_scene(cloud_probability=None)
    source = InMemoryTileSource([scene])

    with_prob, missing = add_cloud_probability(scene, source, aoi, grid)

    assert missing
    assert np.all(with_prob.bands["cloud_probability"] == 0)


def test_cloud_probability_looked_up_by_scene_id(make_scene, aoi, grid):
    scene = make_scene(cloud_probability=None)
    probability = np.full(grid.shape, 80, dtype="float32")
    source = InMemoryTileSource([scene], {scene.scene_id: probability})

    with_prob, missing = add_cloud_probability(scene, source, aoi, grid)

    assert not missing
    assert not build_cloud_mask(with_prob).any()


def test_apply_cloud_mask_recovers_missing_product(make_scene, aoi, grid):
    scenes = [make_scene(cloud_probability=None), make_scene("other", cloud_probability=0)]
    masked = apply_cloud_mask(scenes, InMemoryTileSource(scenes), aoi, grid)

    assert [m.cloud_product_missing for m in masked] == [True, False]
    assert all(m.contamination == 0.0 for m in masked)


def test_apply_cloud_mask_rejects_off_grid_rasters(make_scene, aoi, grid):
    scene = make_scene()
    bad = scene.with_band("B8", np.zeros((2, 2), dtype="float32"))

    with pytest.raises(ValueError, match="expected"):
        apply_cloud_mask([bad], InMemoryTileSource([bad]), aoi, grid)
