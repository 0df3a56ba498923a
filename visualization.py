"""
Visualization module.
Generates time series charts, histograms, and reports for the monthly
vegetation index composites.
"""

import csv
import json
import os
import warnings
from datetime import datetime
from html import escape
from typing import Dict, List, Optional, Sequence, Tuple

import matplotlib

matplotlib.use("Agg")

import matplotlib.dates as mdates
import matplotlib.pyplot as plt
import numpy as np

import config
from indices import INDEX_RANGES
from models import MONTH_NAMES, MonthlyComposite, MonthResult


def _composites(results: Sequence) -> List[MonthlyComposite]:
    """Accept MonthResults, MonthlyComposites or a TimeSeriesResult."""
    return [composite for _, _, composite in _slots(results) if composite is not None]


def _slots(results: Sequence) -> List[Tuple[int, int, Optional[MonthlyComposite]]]:
    """(year, month, composite) per month; composite is None for failed months."""
    slots = []
    for item in results:
        if isinstance(item, MonthResult):
            slots.append((item.year, item.month, item.composite))
        else:
            slots.append((item.year, item.month, item))
    return slots


def aoi_band_value(
    composite: MonthlyComposite,
    band: str,
    aoi_mask: np.ndarray = None,
    reducer: str = "mean"
) -> Optional[float]:
    """
    Reduce one band of a composite over the AOI.

    Args:
        composite: Monthly composite.
        band: Band name.
        aoi_mask: Boolean AOI mask. Bands are already clipped, so optional.
        reducer: 'mean' or 'median'.

    Returns:
        float or None: None for placeholders and months without valid pixels.
    """
    if composite.is_no_data:
        return None

    values = composite.bands[band]
    if aoi_mask is not None:
        values = values[aoi_mask]
    values = values[np.isfinite(values)]
    if values.size == 0:
        return None

    if reducer == "mean":
        return float(values.mean())
    elif reducer == "median":
        return float(np.median(values))
    else:
        raise ValueError(f"Unknown reducer: {reducer}. Use 'mean' or 'median'.")


def get_time_series(
    results: Sequence,
    bands: List[str] = None,
    aoi_mask: np.ndarray = None,
    reducer: str = "mean"
) -> Dict:
    """
    AOI-reduced value of each band for every month in the sequence.

    Placeholder and failed months are kept as None so charts show them as
    gaps. Failed months also have None for count and contamination.

    Args:
        results: MonthResults or MonthlyComposites.
        bands: Band names. Defaults to config.VEGETATION_INDICES.
        aoi_mask: Optional AOI mask.
        reducer: 'mean' or 'median'.

    Returns:
        dict: {'dates': [datetime], 'labels': [str], 'counts': [int],
               'contamination': [float], 'series': {band: [float or None]}}
    """
    bands = bands if bands is not None else config.VEGETATION_INDICES
    slots = _slots(results)

    series = {
        band: [None if c is None else aoi_band_value(c, band, aoi_mask, reducer) for _, _, c in slots]
        for band in bands
    }

    return {
        "dates": [datetime(year, month, 1) for year, month, _ in slots],
        "labels": [f"{year}-{MONTH_NAMES[month - 1]}" for year, month, _ in slots],
        "counts": [None if c is None else c.scene_count for _, _, c in slots],
        "contamination": [None if c is None else c.contamination for _, _, c in slots],
        "series": series,
    }


def _to_plot_values(values: List[Optional[float]]) -> np.ndarray:
    return np.array([np.nan if v is None else v for v in values], dtype=float)


def _save_figure(fig, filepath: str) -> str:
    directory = os.path.dirname(filepath)
    if directory:
        os.makedirs(directory, exist_ok=True)
    fig.tight_layout()
    fig.savefig(filepath, bbox_inches="tight", facecolor="white")
    plt.close(fig)
    print(f"  ✓ Saved: {os.path.basename(filepath)}")
    return filepath


def _format_date_axis(ax) -> None:
    ax.xaxis.set_major_locator(mdates.MonthLocator(interval=1))
    ax.xaxis.set_major_formatter(mdates.DateFormatter("%Y-%b"))
    for tick in ax.get_xticklabels():
        tick.set_rotation(45)
        tick.set_horizontalalignment("right")


def plot_time_series(
    results: Sequence,
    band: str,
    filepath: str,
    title: str = None,
    color: str = None,
    aoi_mask: np.ndarray = None
) -> str:
    """
    Line chart of one band's AOI mean per month.

    Args:
        results: MonthResults or MonthlyComposites.
        band: Band name.
        filepath: Output PNG path.
        title: Chart title. Defaults to '<band> Time Series'.
        color: Line color. Defaults to config.SERIES_COLORS.
        aoi_mask: Optional AOI mask.

    Returns:
        str: Path to saved file.
    """
    data = get_time_series(results, [band], aoi_mask)
    values = _to_plot_values(data["series"][band])

    fig, ax = plt.subplots(figsize=(12, 6))
    ax.plot(data["dates"], values, marker="o", linewidth=3,
            color=color or config.SERIES_COLORS.get(band, "#333333"))

    ax.set_title(title or f"{band} Time Series", fontweight="bold")
    ax.set_xlabel("Date")
    ax.set_ylabel(band)
    ax.grid(True, alpha=0.3, linestyle="--")
    _format_date_axis(ax)

    return _save_figure(fig, filepath)


def plot_combined_chart(
    results: Sequence,
    filepath: str,
    bands: List[str] = None,
    title: str = None,
    aoi_mask: np.ndarray = None
) -> str:
    """
    Line chart of several bands on one axis.

    Index bands are drawn solid, reflectance bands dashed.

    Args:
        results: MonthResults or MonthlyComposites.
        filepath: Output PNG path.
        bands: Bands to plot. Defaults to NDVI, EVI, B4 and B8.
        title: Chart title.
        aoi_mask: Optional AOI mask.

    Returns:
        str: Path to saved file.
    """
    bands = bands or ["NDVI", "EVI", "B4", "B8"]
    data = get_time_series(results, bands, aoi_mask)

    fig, ax = plt.subplots(figsize=(12, 6))
    for band in bands:
        is_reflectance = band.startswith("B")
        ax.plot(
            data["dates"], _to_plot_values(data["series"][band]),
            label=band,
            marker="o",
            linewidth=2 if is_reflectance else 3,
            linestyle="--" if is_reflectance else "-",
            color=config.SERIES_COLORS.get(band),
        )

    ax.set_title(title or f"{', '.join(bands)} Time Series", fontweight="bold")
    ax.set_xlabel("Date")
    ax.set_ylabel("VI and Reflectances")
    ax.grid(True, alpha=0.3, linestyle="--")
    ax.legend()
    _format_date_axis(ax)

    return _save_figure(fig, filepath)


def _plot_columns(dates, values, filepath, title, ylabel, color) -> str:
    fig, ax = plt.subplots(figsize=(12, 6))
    ax.bar(dates, values, width=20, color=color)
    ax.set_title(title, fontweight="bold")
    ax.set_xlabel("Date")
    ax.set_ylabel(ylabel)
    ax.grid(True, axis="y", alpha=0.3, linestyle="--")
    _format_date_axis(ax)
    return _save_figure(fig, filepath)


def plot_image_count_chart(results: Sequence, filepath: str) -> str:
    """Column chart of scenes per month."""
    data = get_time_series(results, [])
    return _plot_columns(data["dates"], _to_plot_values(data["counts"]), filepath,
                         "Monthly Image Count", "Image Count", "#1f77b4")


def plot_contamination_chart(results: Sequence, filepath: str) -> str:
    """Column chart of cloud/shadow contamination per month."""
    data = get_time_series(results, [])
    return _plot_columns(data["dates"], _to_plot_values(data["contamination"]), filepath,
                         "Monthly Cloud/Shadow Contamination (%)", "Contamination (%)", "#d62728")


def get_histogram_data(
    values: np.ndarray,
    band_name: str,
    aoi_mask: np.ndarray = None,
    min_val: float = -1,
    max_val: float = 1,
    num_buckets: int = None
) -> Dict:
    """
    Get histogram data for a single band/index.

    Args:
        values: Band raster.
        band_name: Name of the band.
        aoi_mask: Optional AOI mask.
        min_val: Minimum value for histogram range.
        max_val: Maximum value for histogram range.
        num_buckets: Number of histogram buckets. Defaults to config.HISTOGRAM_BUCKETS.

    Returns:
        dict: Histogram data with bucket means and counts.
    """
    num_buckets = num_buckets or config.HISTOGRAM_BUCKETS

    if aoi_mask is not None:
        values = values[aoi_mask]
    values = values[np.isfinite(values)]

    counts, edges = np.histogram(values, bins=num_buckets, range=(min_val, max_val))
    bucket_means = (edges[:-1] + edges[1:]) / 2

    return {
        "band": band_name,
        "buckets": [float(b) for b in bucket_means],
        "counts": [int(c) for c in counts],
        "min": min_val,
        "max": max_val,
    }


def get_all_indices_histograms(
    composite: MonthlyComposite,
    aoi_mask: np.ndarray = None,
    bands: List[str] = None,
    num_buckets: int = None
) -> Dict[str, Dict]:
    """
    Get histogram data for several bands of one composite.

    Args:
        composite: Monthly composite.
        aoi_mask: Optional AOI mask.
        bands: Band names. Defaults to config.VEGETATION_INDICES.
        num_buckets: Number of histogram buckets.

    Returns:
        dict: Band name to histogram data.
    """
    bands = bands or config.VEGETATION_INDICES

    histograms = {}
    for band in bands:
        min_val, max_val = INDEX_RANGES.get(band, (-1, 1))
        histograms[band] = get_histogram_data(
            composite.bands[band], band, aoi_mask, min_val, max_val, num_buckets
        )
    return histograms


def plot_histogram(hist_data: Dict, filepath: str, title: str = None) -> str:
    """
    Save a histogram chart from get_histogram_data() output.

    Args:
        hist_data: Histogram data.
        filepath: Output PNG path.
        title: Chart title. Defaults to '<band> Distribution'.

    Returns:
        str: Path to saved file.
    """
    band = hist_data["band"]
    buckets = hist_data["buckets"]
    width = (hist_data["max"] - hist_data["min"]) / max(len(buckets), 1)

    fig, ax = plt.subplots(figsize=(10, 5))
    ax.bar(buckets, hist_data["counts"], width=width,
           color=config.SERIES_COLORS.get(band, "#4bc0c0"), edgecolor="black", linewidth=0.3)
    ax.set_xlim(hist_data["min"], hist_data["max"])
    ax.set_title(title or f"{band} Distribution", fontweight="bold")
    ax.set_xlabel(band)
    ax.set_ylabel("Pixel Count")
    ax.grid(True, axis="y", alpha=0.3, linestyle="--")

    return _save_figure(fig, filepath)


def plot_monthly_histograms(
    results: Sequence,
    band: str,
    output_dir: str,
    title: str = None,
    aoi_mask: np.ndarray = None
) -> List[str]:
    """
    One histogram per month for a band, skipping months without valid pixels.

    Args:
        results: MonthResults or MonthlyComposites.
        band: Band name.
        output_dir: Folder for the PNG files.
        title: Title prefix. Defaults to the band name.
        aoi_mask: Optional AOI mask.

    Returns:
        list: Paths to saved files.
    """
    title = title or band
    min_val, max_val = INDEX_RANGES.get(band, (-1, 1))

    paths = []
    for composite in _composites(results):
        if composite.is_no_data:
            continue
        if composite.valid_pixel_count(band) == 0:
            print(f"  ⚠ No valid pixels for {title} ({composite.label})")
            continue

        hist = get_histogram_data(composite.bands[band], band, aoi_mask, min_val, max_val)
        filepath = os.path.join(output_dir, f"histogram_{band}_{composite.key}.png")
        paths.append(plot_histogram(hist, filepath, f"{title} - {composite.label}"))

    return paths


def print_ascii_histogram(
    hist_data: Dict,
    width: int = 40,
    rows: int = 12
) -> None:
    """
    Print the histogram sideways, one bar per value range.

    Args:
        hist_data: Histogram data from get_histogram_data().
        width: Length of the longest bar in characters.
        rows: Number of value ranges the buckets are merged into.
    """
    buckets = np.asarray(hist_data.get("buckets", []), dtype=float)
    counts = np.asarray(hist_data.get("counts", []), dtype=float)
    band = hist_data.get("band", "Unknown")

    if buckets.size == 0 or counts.sum() == 0:
        print(f"  ⚠ No data available for {band}")
        return

    groups = np.array_split(np.arange(buckets.size), min(rows, buckets.size))
    totals = [counts[g].sum() for g in groups]
    peak = max(totals)

    print(f"\n{'=' * 60}")
    print(f"  HISTOGRAM: {band}")
    print("=" * 60)
    for group, total in zip(groups, totals):
        bar = "█" * int(round(total / peak * width))
        print(f"  {buckets[group[0]]:>6.2f} │{bar} {int(total):,}")

    stats = _histogram_stats(hist_data)
    print(f"\n  Total pixels: {stats['total_pixels']:,}")
    print(f"  Mean value: {stats['mean']:.4f}")
    print("=" * 60 + "\n")


def _histogram_stats(hist_data: Dict) -> Dict:
    buckets = np.asarray(hist_data.get("buckets", []), dtype=float)
    counts = np.asarray(hist_data.get("counts", []), dtype=float)
    total = int(counts.sum())
    occupied = buckets[counts > 0]
    return {
        "total_pixels": total,
        "mean": float((buckets * counts).sum() / total) if total else 0.0,
        "min_observed": float(occupied.min()) if occupied.size else None,
        "max_observed": float(occupied.max()) if occupied.size else None,
    }


def _chart_config(name: str, hist_data: Dict) -> Dict:
    """Chart.js bar chart definition for one histogram."""
    band = hist_data.get("band", name)
    return {
        "type": "bar",
        "data": {
            "labels": [f"{b:.3f}" for b in hist_data["buckets"]],
            "datasets": [{
                "label": band,
                "data": [int(c) for c in hist_data["counts"]],
                "backgroundColor": config.SERIES_COLORS.get(band, "#4575b4"),
            }],
        },
        "options": {
            "plugins": {"title": {"display": True, "text": name}, "legend": {"display": False}},
            "scales": {
                "x": {"title": {"display": True, "text": band}, "ticks": {"maxTicksLimit": 10}},
                "y": {"title": {"display": True, "text": "Pixel count"}, "beginAtZero": True},
            },
        },
    }


def generate_histogram_html(
    histograms: Dict[str, Dict],
    title: str = "Vegetation Index Histograms",
    images: Dict[str, str] = None
) -> str:
    """
    Build an HTML report with one Chart.js histogram per entry.

    Entries named '<band> <month label>' are grouped into one section per
    month; other names go to a section called 'All'.

    Args:
        histograms: Chart name to histogram data.
        title: Page title.
        images: Optional image name to file path or URL, shown above the charts.

    Returns:
        str: HTML content.
    """
    sections: Dict[str, List[str]] = {}
    charts = {}
    for i, (name, hist_data) in enumerate(histograms.items()):
        if not hist_data.get("buckets") or not hist_data.get("counts"):
            continue
        _, _, group = name.partition(" ")
        stats = _histogram_stats(hist_data)
        canvas_id = f"hist_{i}"
        charts[canvas_id] = _chart_config(name, hist_data)
        sections.setdefault(group or "All", []).append(
            f'<figure><canvas id="{canvas_id}"></canvas>'
            f"<figcaption>{stats['total_pixels']:,} pixels, mean {stats['mean']:.4f}</figcaption></figure>"
        )

    gallery = ""
    if images:
        figures = "".join(
            f'<figure><img src="{escape(src)}" alt="{escape(name)}"><figcaption>{escape(name)}</figcaption></figure>'
            for name, src in images.items()
        )
        gallery = f'<section><h2>Animations and charts</h2><div class="grid">{figures}</div></section>'

    body = "\n".join(
        f'<section><h2>{escape(group)}</h2><div class="grid">{"".join(figures)}</div></section>'
        for group, figures in sections.items()
    )

    return f"""<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8">
<title>{escape(title)}</title>
<script src="https://cdn.jsdelivr.net/npm/chart.js"></script>
<style>
body {{ font-family: Arial, sans-serif; margin: 24px; color: #222; background: #fafafa; }}
h1 {{ font-size: 22px; }}
h2 {{ font-size: 16px; border-bottom: 1px solid #ccc; padding-bottom: 4px; }}
.grid {{ display: grid; grid-template-columns: repeat(auto-fill, minmax(380px, 1fr)); gap: 16px; }}
figure {{ margin: 0; padding: 12px; background: #fff; border: 1px solid #ddd; }}
figure img {{ width: 100%; }}
figcaption {{ font-size: 12px; color: #666; margin-top: 6px; }}
</style>
</head>
<body>
<h1>{escape(title)}</h1>
{gallery}
{body}
<script>
const charts = {json.dumps(charts)};
for (const [id, chart] of Object.entries(charts)) {{
    new Chart(document.getElementById(id), chart);
}}
</script>
</body>
</html>
"""


def save_histogram_html(
    histograms: Dict[str, Dict],
    filepath: str,
    title: str = "Vegetation Index Histograms",
    images: Dict[str, str] = None
) -> str:
    """Write generate_histogram_html() output to ``filepath``."""
    with open(filepath, "w", encoding="utf-8") as f:
        f.write(generate_histogram_html(histograms, title, images))

    print(f"✓ Saved histogram report to {filepath}")
    return filepath


def save_histogram_csv(
    histograms: Dict[str, Dict],
    filepath: str
) -> str:
    """
    Save histogram buckets as long-format CSV, one row per bucket.

    Args:
        histograms: Chart name to histogram data.
        filepath: Output file path.

    Returns:
        str: Path to saved file.
    """
    with open(filepath, "w", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(["name", "band", "bucket_value", "pixel_count"])
        for name, hist_data in histograms.items():
            band = hist_data.get("band", name)
            for bucket, count in zip(hist_data.get("buckets", []), hist_data.get("counts", [])):
                writer.writerow([name, band, f"{bucket:.6f}", int(count)])

    print(f"✓ Saved histogram data to {filepath}")
    return filepath


def save_histogram_json(
    histograms: Dict[str, Dict],
    filepath: str
) -> str:
    """
    Save histogram data as JSON with summary statistics.

    Args:
        histograms: Dictionary of histogram data.
        filepath: Output file path.

    Returns:
        str: Path to saved file.
    """
    output = {name: {**hist_data, "statistics": _histogram_stats(hist_data)}
              for name, hist_data in histograms.items()}

    with open(filepath, 'w') as f:
        json.dump(output, f, indent=2)

    print(f"✓ Saved histogram JSON to {filepath}")
    return filepath


def collect_monthly_histograms(
    results: Sequence,
    bands: List[str] = None,
    aoi_mask: np.ndarray = None
) -> Dict[str, Dict]:
    """
    Histogram data for every data-bearing month, keyed '<band> <label>'.

    Args:
        results: MonthResults or MonthlyComposites.
        bands: Band names. Defaults to config.VEGETATION_INDICES.
        aoi_mask: Optional AOI mask.

    Returns:
        dict: Chart name to histogram data.
    """
    bands = bands or config.VEGETATION_INDICES
    histograms = {}
    for composite in _composites(results):
        if composite.is_no_data:
            continue
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", category=RuntimeWarning)
            for band, hist in get_all_indices_histograms(composite, aoi_mask, bands).items():
                if sum(hist["counts"]) > 0:
                    histograms[f"{band} {composite.label}"] = hist
    return histograms
