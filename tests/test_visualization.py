import json
from dataclasses import replace

import numpy as np
import pytest

from compositing import create_monthly_composites
from visualization import (
    collect_monthly_histograms,
    get_histogram_data,
    get_time_series,
    plot_combined_chart,
    plot_contamination_chart,
    plot_image_count_chart,
    plot_monthly_histograms,
    plot_time_series,
    print_ascii_histogram,
    save_histogram_csv,
    save_histogram_html,
    save_histogram_json,
)


def test_time_series_shows_placeholders_as_gaps(march_source, aoi, settings):
    results = create_monthly_composites(march_source, aoi, settings=settings)

    data = get_time_series(results, ["NDVI", "B4"])

    assert len(data["dates"]) == 12
    assert data["labels"][2] == "2024-Mar"
    assert data["counts"][2] == 5
    assert data["series"]["NDVI"][0] is None
    assert data["series"]["NDVI"][2] is not None
    assert data["series"]["B4"][2] == pytest.approx(0.1, rel=1e-5)


def test_charts_are_written(march_source, aoi, settings, tmp_path):
    results = create_monthly_composites(march_source, aoi, settings=settings)

    paths = [
        plot_time_series(results, "NDVI", str(tmp_path / "ndvi.png")),
        plot_combined_chart(results, str(tmp_path / "combined.png")),
        plot_image_count_chart(results, str(tmp_path / "count.png")),
        plot_contamination_chart(results, str(tmp_path / "contamination.png")),
    ]

    for path in paths:
        with open(path, "rb") as f:
            assert f.read(8) == b"\x89PNG\r\n\x1a\n"


def test_monthly_histograms_skip_placeholders(march_source, aoi, settings, tmp_path):
    results = create_monthly_composites(march_source, aoi, settings=settings)

    paths = plot_monthly_histograms(results, "NDVI", str(tmp_path))

    assert len(paths) == 1
    assert paths[0].endswith("histogram_NDVI_2024-03.png")


def test_histogram_data_counts_valid_pixels():
    values = np.array([[0.1, 0.2], [np.nan, 0.9]], dtype="float32")

    hist = get_histogram_data(values, "NDVI", min_val=0, max_val=1, num_buckets=10)

    assert len(hist["buckets"]) == 10
    assert sum(hist["counts"]) == 3
    assert hist["buckets"][0] == pytest.approx(0.05)


def test_histogram_reports(march_source, aoi, settings, tmp_path, capsys):
    results = create_monthly_composites(march_source, aoi, settings=settings)
    histograms = collect_monthly_histograms(results)

    assert set(histograms) == {"NDVI 2024-Mar", "EVI 2024-Mar", "SAVI 2024-Mar"}

    save_histogram_html(histograms, str(tmp_path / "h.html"), "Test")
    save_histogram_csv(histograms, str(tmp_path / "h.csv"))
    save_histogram_json(histograms, str(tmp_path / "h.json"))

    assert "chart.js" in (tmp_path / "h.html").read_text(encoding="utf-8")
    assert (tmp_path / "h.csv").read_text().startswith("name,band,bucket_value,pixel_count")
    stats = json.loads((tmp_path / "h.json").read_text())["NDVI 2024-Mar"]["statistics"]
    assert stats["total_pixels"] > 0

    print_ascii_histogram(histograms["NDVI 2024-Mar"])
    assert "HISTOGRAM: NDVI" in capsys.readouterr().out


def test_failed_months_are_gaps(march_source, aoi, settings):
    results = create_monthly_composites(march_source, aoi, settings=replace(settings, max_pixels=10))

    data = get_time_series(results, ["NDVI"])

    assert len(data["dates"]) == 12
    assert data["labels"][2] == "2024-Mar"
    assert data["series"]["NDVI"][2] is None
    assert data["counts"][2] is None
    assert data["contamination"][2] is None
    assert data["counts"][3] == 0
