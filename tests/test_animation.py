import numpy as np
import pytest
from PIL import Image

from animation import (
    animation_frames,
    build_colormap,
    colorize_index,
    create_comparison_gif,
    create_index_gif,
    create_rgb_gif,
    render_comparison_frame,
    stretch_rgb,
)
from compositing import create_monthly_composites, create_placeholder_composite


def test_colormap_endpoints_match_palette():
    table = build_colormap(["#d9a679", "#238443"], steps=256)

    assert tuple(table[0]) == (0xd9, 0xa6, 0x79)
    assert tuple(table[-1]) == (0x23, 0x84, 0x43)


def test_colorize_masks_nan_as_black():
    rgb = colorize_index(np.array([[np.nan, 0.0, 1.0]], dtype="float32"))

    assert tuple(rgb[0, 0]) == (0, 0, 0)
    assert tuple(rgb[0, 1]) == (0xd9, 0xa6, 0x79)
    assert tuple(rgb[0, 2]) == (0x23, 0x84, 0x43)


def test_rgb_stretch_saturates_at_vis_max():
    band = np.array([[0.0, 0.3, 0.6]], dtype="float32")

    rgb = stretch_rgb(band, band, band)

    assert rgb[0, 0].tolist() == [0, 0, 0]
    assert rgb[0, 1].tolist() == [255, 255, 255]
    assert rgb[0, 2].tolist() == [255, 255, 255]


def test_frames_skip_placeholders_and_empty_months(march_source, aoi, settings, grid):
    results = create_monthly_composites(march_source, aoi, settings=settings)

    frames = animation_frames(results, "NDVI")

    assert [c.label for c in frames] == ["2024-Mar"]
    assert animation_frames([create_placeholder_composite(2024, 1, grid)], "NDVI") == []


def test_index_gif_is_written(march_source, aoi, settings, tmp_path):
    results = create_monthly_composites(march_source, aoi, settings=settings)

    path = create_index_gif(results, "NDVI_Normalized", str(tmp_path / "ndvi.gif"), dimensions=120)

    with Image.open(path) as gif:
        assert gif.format == "GIF"
        assert max(gif.size) == 120


def test_no_frames_returns_none(grid, tmp_path, capsys):
    placeholders = [create_placeholder_composite(2024, m, grid) for m in (1, 2)]

    assert create_index_gif(placeholders, "NDVI", str(tmp_path / "x.gif")) is None
    assert create_rgb_gif(placeholders, str(tmp_path / "rgb.gif")) is None
    assert "No NDVI data available" in capsys.readouterr().out
    assert not (tmp_path / "x.gif").exists()


def test_rgb_and_comparison_gifs(march_source, aoi, settings, tmp_path):
    results = create_monthly_composites(march_source, aoi, settings=settings)

    assert create_rgb_gif(results, str(tmp_path / "rgb.gif"), dimensions=100)
    path = create_comparison_gif(results, str(tmp_path / "cmp.gif"), panels=["sat", "ndvi"])

    with Image.open(path) as gif:
        width, height = gif.size
        assert width == pytest.approx(2 * height, abs=2)


def test_comparison_frame_rejects_unknown_panel(march_source, aoi, settings, tmp_path):
    results = create_monthly_composites(march_source, aoi, settings=settings)

    with pytest.raises(ValueError, match="Unknown panel"):
        create_comparison_gif(results, str(tmp_path / "cmp.gif"), panels=["sat", "ndwi"])

    frame = render_comparison_frame(results[2].composite, ["sat", "evi", "savi"], normalized=True, panel_size=90)
    assert frame.size[0] == 3 * frame.size[1]
