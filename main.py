#!/usr/bin/env python3
"""
Vegetation Index Time Series
Main orchestration script for monthly NDVI/EVI/SAVI composites from
Sentinel-2 imagery.

Usage:
    python main.py                          # Run the series with default config
    python main.py --info                   # Show scene counts per month without processing
    python main.py --charts --gifs          # Run and render charts and animations
    python main.py --export                 # Run and write one GeoTIFF per month
    python main.py --start-year 2023 --end-year 2024 --rainfall
"""

import argparse
import os
import sys

import config
from analysis import (
    AnalysisError,
    analyze_time_series,
    get_series_statistics,
    print_run_summary,
    print_series_statistics,
)
from animation import create_comparison_gif, create_index_gif, create_rgb_gif
from compositing import iter_months, month_range
from compression import get_optimal_bands
from config import PipelineSettings
from exceptions import TileSourceError
from export import export_summary_csv, export_time_series
from rainfall import EarthEngineRainfallSource, monthly_rainfall, plot_rainfall_chart
from retrieval import (
    EarthEngineTileSource,
    create_bbox_roi,
    create_region_of_interest,
    initialize_earth_engine,
    print_collection_info,
)
from visualization import (
    collect_monthly_histograms,
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


# --export-bands choices, as get_optimal_bands() flags
EXPORT_BAND_SETS = {
    "all": {},
    "indices": {"include_rgb": False},
    "reflectance": {"include_indices": False, "include_normalized": False},
}


def print_header(settings: PipelineSettings, lat: float, lon: float, buffer: int, bbox=None):
    """Print application header."""
    print("\n" + "=" * 60)
    print("  VEGETATION INDEX TIME SERIES")
    print("  Monthly Sentinel-2 NDVI / EVI / SAVI composites")
    print("=" * 60)
    if bbox:
        print(f"\n  Bounding box: {bbox}")
    else:
        print(f"\n  Location: {lat}, {lon}")
        print(f"  Buffer: {buffer}m radius")
    print(f"  Years: {settings.start_year} to {settings.end_year} ({settings.month_count} months)")
    print(f"  Cloud threshold: {settings.cloud_probability_threshold}%")
    print(f"  Scene cloud limit: <{settings.max_scene_cloud_percent}%")
    print("\n" + "-" * 60 + "\n")


def run_info_mode(source, roi, settings: PipelineSettings):
    """Display scene availability per month without compositing."""
    print("\n[INFO MODE] Checking available imagery...\n")

    grid = roi.grid(settings.scale)
    all_scenes = []
    empty_months = []

    for year, month in iter_months(settings.start_year, settings.end_year):
        scenes = source.fetch_scenes(roi, month_range(year, month), settings.max_scene_cloud_percent, grid)
        all_scenes.extend(scenes)
        if not scenes:
            empty_months.append(f"{year}-{month:02d}")

    print_collection_info(all_scenes, "Sentinel-2")

    print("\n" + "=" * 40)
    print("SUMMARY")
    print("=" * 40)
    print(f"  Sentinel-2 scenes: {len(all_scenes)}")
    print(f"  Months without scenes: {len(empty_months)}")

    if not all_scenes:
        print("\n  ⚠ No Sentinel-2 images found!")
        print("  Try adjusting the year range or scene cloud limit.")
    elif empty_months:
        print(f"\n  ⚠ Placeholders will be inserted for: {', '.join(empty_months)}")
    else:
        print("\n  ✓ Every month has imagery")


def render_charts(result, output_dir: str):
    print("\n[CHARTS] Rendering time series charts...")
    print("-" * 40)

    for band in config.VEGETATION_INDICES:
        plot_time_series(result, band, os.path.join(output_dir, f"{band}_time_series.png"),
                         title=f"{band} Time Series - {result.aoi.name}")
    plot_combined_chart(result, os.path.join(output_dir, "combined_time_series.png"),
                        bands=["NDVI", "EVI"], title="NDVI and EVI Time Series")
    plot_combined_chart(result, os.path.join(output_dir, "index_reflectance_time_series.png"),
                        bands=["B4", "B8", "EVI", "NDVI"],
                        title="NDVI, EVI, B4-Red, and B8-NIR Time Series")
    plot_image_count_chart(result, os.path.join(output_dir, "image_count.png"))
    plot_contamination_chart(result, os.path.join(output_dir, "contamination.png"))

    for reducer in ("median", "mean"):
        for band in config.VEGETATION_INDICES:
            print_series_statistics(get_series_statistics(result, band, reducer))


def render_gifs(result, output_dir: str):
    print("\n[ANIMATIONS] Rendering GIFs...")
    print("-" * 40)

    for band in config.VEGETATION_INDICES:
        create_index_gif(result, f"{band}_Normalized", os.path.join(output_dir, f"{band}.gif"), title=band)
    create_rgb_gif(result, os.path.join(output_dir, "RGB.gif"), title=result.aoi.name)
    create_comparison_gif(result, os.path.join(output_dir, "comparison.gif"), title=result.aoi.name)


def render_histograms(result, output_dir: str):
    print("\n[HISTOGRAMS] Generating monthly index histograms...")
    print("-" * 40)

    for band in config.VEGETATION_INDICES:
        plot_monthly_histograms(result, band, os.path.join(output_dir, "histograms"),
                                title=f"{band} Histogram")

    histograms = collect_monthly_histograms(result)
    for hist in list(histograms.values())[:len(config.VEGETATION_INDICES)]:
        print_ascii_histogram(hist)

    images = {name: name for name in ("NDVI.gif", "RGB.gif", "NDVI_time_series.png")
              if os.path.exists(os.path.join(output_dir, name))}
    save_histogram_html(histograms, os.path.join(output_dir, "histograms.html"),
                        f"Vegetation Indices - {result.aoi.name}", images=images)
    save_histogram_csv(histograms, os.path.join(output_dir, "histograms.csv"))
    save_histogram_json(histograms, os.path.join(output_dir, "histograms.json"))


def run_rainfall(roi, settings: PipelineSettings, output_dir: str, source=None):
    print("\n[RAINFALL] CHIRPS monthly totals...")
    print("-" * 40)

    source = source or EarthEngineRainfallSource()
    for year in range(settings.start_year, settings.end_year + 1):
        try:
            series = monthly_rainfall(source, roi, year)
        except TileSourceError as e:
            print(f"  ✗ Rainfall {year} failed: {e}")
            continue
        plot_rainfall_chart(series, os.path.join(output_dir, f"rainfall_{year}.png"), year=year)


def run_pipeline(
    source,
    roi,
    settings: PipelineSettings,
    output_dir: str = None,
    charts: bool = False,
    gifs: bool = False,
    histograms: bool = False,
    do_export: bool = False,
    rainfall: bool = False,
    export_bands: list = None,
    scale_type: str = "float"
):
    """
    Run the monthly series and the requested outputs.

    Args:
        source: Tile source.
        roi: Region of interest.
        settings: Run settings.
        output_dir: Folder for charts, GIFs and exports. Defaults to config.OUTPUT_FOLDER.
        charts: Render line and column charts.
        gifs: Render animations.
        histograms: Render monthly histograms and reports.
        do_export: Write GeoTIFFs and the month summary CSV.
        rainfall: Chart CHIRPS monthly rainfall.
        export_bands: Bands written to each GeoTIFF. Defaults to all ten.
        scale_type: GeoTIFF data type, "float", "uint16" or "uint8".

    Returns:
        TimeSeriesResult: The run result.
    """
    output_dir = output_dir or config.OUTPUT_FOLDER
    os.makedirs(output_dir, exist_ok=True)

    print(f"\n[1/2] Building {settings.month_count} monthly composites...")
    print("-" * 40)
    result = analyze_time_series(source, roi, settings)

    print("\n[2/2] Summarizing run...")
    print_run_summary(result)

    if charts:
        render_charts(result, output_dir)
    if gifs:
        render_gifs(result, output_dir)
    if histograms:
        render_histograms(result, output_dir)
    if do_export:
        print("\n[EXPORT] Writing GeoTIFFs...")
        print("-" * 40)
        export_time_series(result, result.grid, folder=output_dir,
                           bands=export_bands, scale_type=scale_type)
        export_summary_csv(result.results, os.path.join(output_dir, "months.csv"))
    if rainfall:
        run_rainfall(roi, settings, output_dir)

    print("\n" + "=" * 60)
    print("  PROCESSING COMPLETE")
    print("=" * 60 + "\n")

    return result


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Vegetation Index Time Series")
    parser.add_argument("--info", action="store_true", help="Show imagery info without processing")
    parser.add_argument("--start-year", type=int, help="First year of the series")
    parser.add_argument("--end-year", type=int, help="Last year of the series (inclusive)")
    parser.add_argument("--lat", type=float, help="Override latitude")
    parser.add_argument("--lon", type=float, help="Override longitude")
    parser.add_argument("--buffer", type=int, help="Override buffer radius in meters")
    parser.add_argument("--bbox", type=float, nargs=4, metavar=("MIN_LON", "MIN_LAT", "MAX_LON", "MAX_LAT"),
                        help="Use a bounding box instead of a buffered point")
    parser.add_argument("--charts", action="store_true", help="Render time series charts")
    parser.add_argument("--gifs", action="store_true", help="Render GIF animations")
    parser.add_argument("--histograms", action="store_true", help="Generate monthly histograms")
    parser.add_argument("--export", action="store_true", help="Export monthly GeoTIFFs")
    parser.add_argument("--export-bands", choices=EXPORT_BAND_SETS, default="all",
                        help="Bands written to each GeoTIFF")
    parser.add_argument("--scale-type", choices=["float", "uint16", "uint8"], default="float",
                        help="GeoTIFF data type")
    parser.add_argument("--rainfall", action="store_true", help="Chart CHIRPS monthly rainfall")
    parser.add_argument("--workers", type=int, help="Parallel month tasks")
    parser.add_argument("--output-dir", help="Output folder")
    parser.add_argument("--project", help="Earth Engine project ID")
    return parser


def main(argv=None):
    """Main entry point."""
    args = build_parser().parse_args(argv)

    settings = PipelineSettings().with_overrides(
        start_year=args.start_year,
        end_year=args.end_year,
        max_workers=args.workers,
    )
    lat = args.lat if args.lat is not None else config.LATITUDE
    lon = args.lon if args.lon is not None else config.LONGITUDE
    buffer = args.buffer if args.buffer is not None else config.BUFFER_RADIUS_M
    if buffer <= 0:
        print(f"\n✗ Buffer must be positive, got {buffer}m")
        sys.exit(1)

    print_header(settings, lat, lon, buffer, args.bbox)

    print("[SETUP] Initializing Google Earth Engine...")
    print("-" * 40)

    if not initialize_earth_engine(args.project):
        print("\n✗ Failed to initialize GEE. Exiting.")
        sys.exit(1)

    source = EarthEngineTileSource()
    if args.bbox:
        roi = create_bbox_roi(*args.bbox)
    else:
        roi = create_region_of_interest(lat, lon, buffer)

    if args.info:
        run_info_mode(source, roi, settings)
        print("\nDone!")
        return

    try:
        result = run_pipeline(
            source, roi, settings,
            output_dir=args.output_dir,
            charts=args.charts,
            gifs=args.gifs,
            histograms=args.histograms,
            do_export=args.export,
            rainfall=args.rainfall,
            export_bands=get_optimal_bands(**EXPORT_BAND_SETS[args.export_bands]),
            scale_type=args.scale_type,
        )
    except AnalysisError as e:
        print(f"\n✗ {e}")
        sys.exit(1)

    print("Results summary:")
    print(f"  - Months: {len(result)}")
    print(f"  - With data: {len(result.ok)}")
    print(f"  - Placeholders: {len(result.empty)}")
    print(f"  - Failed: {len(result.failed)}")

    print("\nDone!")

    if result.failed:
        sys.exit(2)


if __name__ == "__main__":
    main()
