"""
Configuration settings for the vegetation index time series pipeline.
Modify these parameters to analyze different locations or time periods.
"""

import os
from dataclasses import dataclass, replace
from typing import Dict, Optional, Tuple

# =============================================================================
# LOCATION SETTINGS
# =============================================================================

# Target coordinates (latitude, longitude) - Karura Forest, Nairobi
LATITUDE = -1.2406
LONGITUDE = 36.8370

# Buffer radius around coordinates in meters
BUFFER_RADIUS_M = 1500

# Display name used in report titles
AOI_NAME = "Karura Forest"

# =============================================================================
# YEAR RANGE
# =============================================================================

# Analysis period, inclusive (January of START_YEAR to December of END_YEAR)
START_YEAR = 2024
END_YEAR = 2024

# =============================================================================
# SENTINEL-2 SETTINGS
# =============================================================================

# Sentinel-2 collection ID (Surface Reflectance)
S2_COLLECTION = "COPERNICUS/S2_SR_HARMONIZED"

# s2cloudless collection ID
S2_CLOUDLESS = "COPERNICUS/S2_CLOUD_PROBABILITY"

# Cloud probability threshold (0-100)
# Pixels with cloud probability at or above this are masked
CLOUD_PROBABILITY_THRESHOLD = 40

# Scenes whose CLOUDY_PIXEL_PERCENTAGE is not below this are skipped
MAX_SCENE_CLOUD_PERCENT = 20

# SCL classes to mask:
# 3 = Cloud Shadow
# 9 = Cloud High Probability
# 10 = Thin Cirrus
SCL_MASKED_CLASSES = (3, 9, 10)

# Digital numbers to reflectance
REFLECTANCE_SCALE_FACTOR = 10000

# Band used to count total vs clean pixels for contamination
CONTAMINATION_REFERENCE_BAND = "B4"

# Native resolution of the grid in meters
SCALE = 10

# =============================================================================
# NORMALIZATION SETTINGS
# =============================================================================

# Percentile bounds for the per-month contrast stretch
NORMALIZATION_PERCENTILES = (2, 98)

# Bounds used when a month has no valid pixels inside the AOI
DEFAULT_NORMALIZATION_BOUNDS = (0.0, 1.0)

# Floor for p98 - p2
NORMALIZATION_EPSILON = 1e-6

# Sampling resolution for percentile reduction in meters
PERCENTILE_SCALE = 10

# Maximum number of sampled pixels per percentile reduction
MAX_PIXELS = 1e9

# =============================================================================
# CONCURRENCY SETTINGS
# =============================================================================

# Parallel month tasks (bounded by tile source I/O)
MAX_WORKERS = min(4, (os.cpu_count() or 4))

# Time budget per month in seconds (None disables the check)
MONTH_TIMEOUT_S = 300

# =============================================================================
# VEGETATION INDICES
# =============================================================================

# Available indices:
# - NDVI: Normalized Difference Vegetation Index
# - EVI: Enhanced Vegetation Index
# - SAVI: Soil-Adjusted Vegetation Index
VEGETATION_INDICES = ["NDVI", "EVI", "SAVI"]

# =============================================================================
# BAND MAPPINGS
# =============================================================================

# Sentinel-2 band names for calculations
S2_BANDS = {
    "blue": "B2",
    "green": "B3",
    "red": "B4",
    "nir": "B8",
}

# Bands kept in every monthly composite besides the indices
RGB_BANDS = ["B4", "B3", "B2"]
NIR_BAND = "B8"

# Bands pulled from the catalog for each scene
SCENE_BANDS = ["B2", "B3", "B4", "B8", "SCL"]

# =============================================================================
# VISUALIZATION SETTINGS
# =============================================================================

# Palette for index frames and maps (bare soil -> dense vegetation)
INDEX_PALETTE = ["#d9a679", "#ffffb2", "#78c679", "#238443"]

# Index stretch for animation frames
INDEX_VIS_MIN = 0
INDEX_VIS_MAX = 1

# True color stretch (reflectance)
RGB_VIS_MIN = 0
RGB_VIS_MAX = 0.3
RGB_VIS_GAMMA = 1.2

# Animation settings
GIF_DIMENSIONS = 600
GIF_FRAMES_PER_SECOND = 1

# Series colors
SERIES_COLORS = {
    "NDVI": "#006400",
    "EVI": "#32CD32",
    "SAVI": "#4575b4",
    "NDVI_Normalized": "#2E8B57",
    "EVI_Normalized": "#1f77b4",
    "SAVI_Normalized": "#ff7f0e",
    "B4": "#d73027",
    "B8": "#800080",
}

# Percentiles reported for the whole series
SERIES_PERCENTILES = [2, 5, 10, 20, 30, 50, 70, 95, 98]

# Histogram bucket count
HISTOGRAM_BUCKETS = 50

# =============================================================================
# EXPORT SETTINGS
# =============================================================================

# Output folder (created if doesn't exist)
OUTPUT_FOLDER = "Indices_RGB_Exports"

# Export file prefix
FILE_PREFIX = "Indices_RGB"

# Export scale in meters (resolution)
EXPORT_SCALE = 10

# GeoTIFF compression: "LZW", "DEFLATE", or None
GEOTIFF_COMPRESSION = "LZW"

# Output CRS
EXPORT_CRS = "EPSG:4326"

# =============================================================================
# RAINFALL SETTINGS
# =============================================================================

# CHIRPS pentad precipitation collection
CHIRPS_COLLECTION = "UCSB-CHG/CHIRPS/PENTAD"

# CHIRPS native resolution in meters
RAINFALL_SCALE = 5000

# =============================================================================
# EARTH ENGINE
# =============================================================================

# Default project ID
GEE_PROJECT = os.environ.get("GEE_PROJECT")


@dataclass(frozen=True)
class PipelineSettings:
    """
    Explicit configuration for one time series run.

    Defaults come from the module constants above; override per run with
    ``dataclasses.replace`` or keyword arguments.
    """

    start_year: int = START_YEAR
    end_year: int = END_YEAR
    cloud_probability_threshold: float = CLOUD_PROBABILITY_THRESHOLD
    max_scene_cloud_percent: float = MAX_SCENE_CLOUD_PERCENT
    scl_masked_classes: Tuple[int, ...] = SCL_MASKED_CLASSES
    scale_factor: float = REFLECTANCE_SCALE_FACTOR
    scale: float = SCALE
    percentiles: Tuple[float, float] = NORMALIZATION_PERCENTILES
    default_bounds: Tuple[float, float] = DEFAULT_NORMALIZATION_BOUNDS
    epsilon: float = NORMALIZATION_EPSILON
    percentile_scale: float = PERCENTILE_SCALE
    max_pixels: float = MAX_PIXELS
    max_workers: int = MAX_WORKERS
    month_timeout_s: Optional[float] = MONTH_TIMEOUT_S

    @property
    def sample_step(self) -> int:
        """Pixel stride that approximates the percentile sampling resolution."""
        return max(1, int(round(self.percentile_scale / self.scale)))

    @property
    def month_count(self) -> int:
        return (self.end_year - self.start_year + 1) * 12

    def with_overrides(self, **overrides) -> "PipelineSettings":
        """Return a copy with the non-None overrides applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    def to_dict(self) -> Dict:
        return {
            "start_year": self.start_year,
            "end_year": self.end_year,
            "cloud_probability_threshold": self.cloud_probability_threshold,
            "max_scene_cloud_percent": self.max_scene_cloud_percent,
            "scale": self.scale,
            "percentiles": list(self.percentiles),
            "max_workers": self.max_workers,
            "month_timeout_s": self.month_timeout_s,
        }
