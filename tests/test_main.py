import os

import pytest
import rasterio

import main
from exceptions import TileSourceError
from models import INDEX_BANDS, NORMALIZED_BANDS
from rainfall import RainfallSource
from retrieval import InMemoryTileSource


class UnavailableSource(InMemoryTileSource):
    def fetch_scenes(self, aoi, date_range, max_cloud_percent, grid):
        raise TileSourceError("service unavailable")


def test_run_pipeline_writes_outputs(march_source, aoi, settings, tmp_path):
    output_dir = str(tmp_path)

    result = main.run_pipeline(
        march_source, aoi, settings, output_dir,
        charts=True, gifs=True, histograms=True, do_export=True,
    )

    assert len(result.ok) == 1
    for name in ("NDVI_time_series.png", "image_count.png", "NDVI.gif", "RGB.gif", "comparison.gif",
                 "histograms.html", "months.csv", "Indices_RGB_2024_3.tif"):
        assert os.path.exists(os.path.join(output_dir, name)), name
    assert os.path.exists(os.path.join(output_dir, "histograms", "histogram_NDVI_2024-03.png"))


def test_parser_flags():
    args = main.build_parser().parse_args(["--start-year", "2023", "--end-year", "2024", "--export", "--workers", "3"])

    assert (args.start_year, args.end_year, args.workers) == (2023, 2024, 3)
    assert args.export and not args.gifs


def test_main_exits_when_earth_engine_is_unavailable(monkeypatch):
    monkeypatch.setattr(main, "initialize_earth_engine", lambda project=None: False)

    with pytest.raises(SystemExit) as excinfo:
        main.main(["--start-year", "2024", "--end-year", "2024"])

    assert excinfo.value.code == 1


def test_main_exits_nonzero_when_months_fail(monkeypatch, aoi, tmp_path, capsys):
    monkeypatch.setattr(main, "initialize_earth_engine", lambda project=None: True)
    monkeypatch.setattr(main, "EarthEngineTileSource", lambda: UnavailableSource([]))
    monkeypatch.setattr(main, "create_region_of_interest", lambda lat, lon, buffer: aoi)

    with pytest.raises(SystemExit) as excinfo:
        main.main(["--start-year", "2024", "--end-year", "2024", "--output-dir", str(tmp_path)])

    assert excinfo.value.code == 2
    out = capsys.readouterr().out
    assert "2024-07 [TileSourceError]" in out
    assert "service unavailable" in out


def test_main_rejects_inverted_years(monkeypatch, aoi, march_source, tmp_path):
    monkeypatch.setattr(main, "initialize_earth_engine", lambda project=None: True)
    monkeypatch.setattr(main, "EarthEngineTileSource", lambda: march_source)
    monkeypatch.setattr(main, "create_region_of_interest", lambda lat, lon, buffer: aoi)

    with pytest.raises(SystemExit) as excinfo:
        main.main(["--start-year", "2025", "--end-year", "2024", "--output-dir", str(tmp_path)])

    assert excinfo.value.code == 1


class UnavailableRainfall(RainfallSource):
    def fetch_precipitation(self, aoi, start, end):
        raise TileSourceError("CHIRPS unavailable")


def test_zero_buffer_is_rejected(monkeypatch):
    monkeypatch.setattr(main, "initialize_earth_engine", lambda project=None: True)

    with pytest.raises(SystemExit) as excinfo:
        main.main(["--buffer", "0"])

    assert excinfo.value.code == 1


def test_rainfall_failure_does_not_abort(aoi, settings, tmp_path, capsys):
    main.run_rainfall(aoi, settings, str(tmp_path), source=UnavailableRainfall())

    assert "✗ Rainfall 2024 failed: CHIRPS unavailable" in capsys.readouterr().out
    assert not os.path.exists(os.path.join(str(tmp_path), "rainfall_2024.png"))


def test_bbox_export_of_index_bands(monkeypatch, aoi, march_source, tmp_path):
    monkeypatch.setattr(main, "initialize_earth_engine", lambda project=None: True)
    monkeypatch.setattr(main, "EarthEngineTileSource", lambda: march_source)
    bbox = [str(v) for v in aoi.bounds]

    main.main(["--bbox", *bbox, "--start-year", "2024", "--end-year", "2024", "--export",
               "--export-bands", "indices", "--scale-type", "uint16", "--output-dir", str(tmp_path)])

    with rasterio.open(os.path.join(str(tmp_path), "Indices_RGB_2024_3.tif")) as src:
        assert src.count == 6
        assert src.dtypes[0] == "uint16"
        assert list(src.descriptions) == INDEX_BANDS + NORMALIZED_BANDS
