"""Data models for areas of interest, scenes and monthly composites."""

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Optional, Tuple

import numpy as np
from affine import Affine
from rasterio.features import geometry_mask
from rasterio.transform import from_bounds
from shapely import affinity
from shapely.geometry import Point, box, mapping, shape
from shapely.geometry.base import BaseGeometry

import config

# Band names of every MonthlyComposite, in order
INDEX_BANDS = ["NDVI", "EVI", "SAVI"]
NORMALIZED_BANDS = [f"{name}_Normalized" for name in INDEX_BANDS]
COMPOSITE_BANDS = INDEX_BANDS + NORMALIZED_BANDS + config.RGB_BANDS + [config.NIR_BAND]

# Approximate length of one degree of latitude
METERS_PER_DEGREE = 111320.0

MONTH_NAMES = ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
               "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]

Bounds = Tuple[float, float, float, float]


@dataclass(frozen=True)
class RasterGrid:
    """Pixel grid every raster of a run is aligned to (EPSG:4326)."""

    bounds: Bounds
    shape: Tuple[int, int]
    scale: float

    @property
    def transform(self) -> Affine:
        min_x, min_y, max_x, max_y = self.bounds
        rows, cols = self.shape
        return from_bounds(min_x, min_y, max_x, max_y, cols, rows)

    @property
    def pixel_count(self) -> int:
        return self.shape[0] * self.shape[1]


@dataclass(frozen=True)
class AreaOfInterest:
    """Immutable polygon all spatial reductions are scoped to."""

    geometry: BaseGeometry
    name: str = "AOI"

    @classmethod
    def from_bounds(cls, min_lon: float, min_lat: float, max_lon: float,
                    max_lat: float, name: str = "AOI") -> "AreaOfInterest":
        return cls(box(min_lon, min_lat, max_lon, max_lat), name)

    @classmethod
    def from_point(cls, latitude: float, longitude: float, buffer_m: float,
                   name: str = "AOI") -> "AreaOfInterest":
        """Circular AOI; the buffer is converted to degrees at the given latitude."""
        lat_deg = buffer_m / METERS_PER_DEGREE
        lon_deg = buffer_m / (METERS_PER_DEGREE * max(math.cos(math.radians(latitude)), 1e-6))
        circle = Point(longitude, latitude).buffer(1.0, resolution=32)
        return cls(affinity.scale(circle, xfact=lon_deg, yfact=lat_deg, origin=(longitude, latitude)), name)

    @classmethod
    def from_geojson(cls, geojson: Dict, name: str = "AOI") -> "AreaOfInterest":
        if geojson.get("type") == "Feature":
            name = (geojson.get("properties") or {}).get("name", name)
            geojson = geojson["geometry"]
        return cls(shape(geojson), name)

    @property
    def bounds(self) -> Bounds:
        return tuple(self.geometry.bounds)

    @property
    def centroid(self) -> Tuple[float, float]:
        """(latitude, longitude) of the centroid."""
        c = self.geometry.centroid
        return c.y, c.x

    def to_geojson(self) -> Dict:
        return mapping(self.geometry)

    def grid(self, scale: float = None) -> RasterGrid:
        """Grid covering the AOI bounds at ``scale`` meters per pixel."""
        scale = scale or config.SCALE
        min_x, min_y, max_x, max_y = self.bounds
        lat = (min_y + max_y) / 2
        width_m = (max_x - min_x) * METERS_PER_DEGREE * math.cos(math.radians(lat))
        height_m = (max_y - min_y) * METERS_PER_DEGREE
        cols = max(1, int(math.ceil(width_m / scale)))
        rows = max(1, int(math.ceil(height_m / scale)))
        return RasterGrid(self.bounds, (rows, cols), scale)

    def pixel_mask(self, grid: RasterGrid) -> np.ndarray:
        """Boolean array, True for pixels whose center falls inside the AOI."""
        return geometry_mask(
            [mapping(self.geometry)],
            out_shape=grid.shape,
            transform=grid.transform,
            invert=True,
        )


@dataclass(frozen=True)
class Scene:
    """One Sentinel-2 observation on the run grid."""

    scene_id: str
    timestamp: datetime
    bounds: Bounds
    bands: Dict[str, np.ndarray]
    cloud_cover: float

    @property
    def geometry(self) -> BaseGeometry:
        return box(*self.bounds)

    @property
    def date_str(self) -> str:
        return self.timestamp.strftime("%Y-%m-%d")

    def with_band(self, name: str, values: np.ndarray) -> "Scene":
        bands = dict(self.bands)
        bands[name] = values
        return Scene(self.scene_id, self.timestamp, self.bounds, bands, self.cloud_cover)


@dataclass(frozen=True)
class MaskedScene:
    """Scene with spectral bands in reflectance, invalid pixels as NaN."""

    scene: Scene
    bands: Dict[str, np.ndarray]
    mask: np.ndarray
    contamination: float
    cloud_product_missing: bool = False

    @property
    def timestamp(self) -> datetime:
        return self.scene.timestamp

    @property
    def valid_count(self) -> int:
        return int(self.mask.sum())


@dataclass(frozen=True)
class NormalizationBounds:
    """Per-month, per-index percentile pair used for the contrast stretch."""

    p2: float
    p98: float
    defaulted: bool = False
    epsilon: float = config.NORMALIZATION_EPSILON

    @property
    def span(self) -> float:
        return max(self.p98 - self.p2, self.epsilon)

    @property
    def degenerate(self) -> bool:
        return self.defaulted or (self.p98 - self.p2) < self.epsilon

    def to_dict(self) -> Dict:
        return {"p2": self.p2, "p98": self.p98, "defaulted": self.defaulted}


@dataclass
class MonthlyComposite:
    """
    One slot of the output series.

    Placeholders (``is_no_data``) carry the same ten bands as a data-bearing
    composite, entirely NaN, so consumers can filter on the flag instead of
    special-casing missing months.
    """

    year: int
    month: int
    scene_count: int
    contamination: float
    is_no_data: bool
    bands: Dict[str, np.ndarray]
    bounds: Dict[str, NormalizationBounds] = field(default_factory=dict)

    @property
    def timestamp(self) -> datetime:
        return datetime(self.year, self.month, 1)

    @property
    def label(self) -> str:
        """Frame label, e.g. ``2024-Mar``."""
        return f"{self.year}-{MONTH_NAMES[self.month - 1]}"

    @property
    def key(self) -> str:
        return f"{self.year}-{self.month:02d}"

    def band(self, name: str) -> np.ndarray:
        return self.bands[name]

    def valid_pixel_count(self, band: str) -> int:
        return int(np.isfinite(self.bands[band]).sum())

    def band_mean(self, band: str) -> Optional[float]:
        values = self.bands[band]
        valid = values[np.isfinite(values)]
        if valid.size == 0:
            return None
        return float(valid.mean())

    def metadata(self) -> Dict:
        return {
            "year": self.year,
            "month": self.month,
            "timestamp": self.timestamp.isoformat(),
            "count": self.scene_count,
            "contamination": self.contamination,
            "noData": int(self.is_no_data),
        }


class MonthStatus(str, Enum):
    OK = "ok"
    EMPTY = "empty"
    FAILED = "failed"


@dataclass
class MonthResult:
    """Outcome of one (year, month) task."""

    year: int
    month: int
    status: MonthStatus
    composite: Optional[MonthlyComposite] = None
    error_kind: Optional[str] = None
    error: Optional[str] = None

    @property
    def key(self) -> str:
        return f"{self.year}-{self.month:02d}"

    @property
    def sort_key(self) -> Tuple[int, int]:
        return self.year, self.month
