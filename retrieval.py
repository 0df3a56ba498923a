"""
Satellite imagery retrieval module.
Handles fetching Sentinel-2 scenes and s2cloudless probability rasters
onto the run grid.
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Tuple

import ee
import numpy as np

import config
from exceptions import MissingCloudProductError, TileSourceError
from models import AreaOfInterest, RasterGrid, Scene

DateRange = Tuple[datetime, datetime]

# Fill value for masked pixels in Earth Engine downloads
EE_NODATA = -9999.0


def create_region_of_interest(
    latitude: float = None,
    longitude: float = None,
    buffer_m: int = None,
    name: str = None
) -> AreaOfInterest:
    """
    Create a circular region of interest around given coordinates.

    Args:
        latitude: Center latitude. Defaults to config.LATITUDE.
        longitude: Center longitude. Defaults to config.LONGITUDE.
        buffer_m: Buffer radius in meters. Defaults to config.BUFFER_RADIUS_M.
        name: Display name. Defaults to config.AOI_NAME.

    Returns:
        AreaOfInterest: Circular AOI.
    """
    lat = latitude if latitude is not None else config.LATITUDE
    lon = longitude if longitude is not None else config.LONGITUDE
    buffer = buffer_m or config.BUFFER_RADIUS_M

    roi = AreaOfInterest.from_point(lat, lon, buffer, name or config.AOI_NAME)

    print(f"✓ Created ROI: center ({lat}, {lon}), radius {buffer}m")
    return roi


def create_bbox_roi(
    min_lon: float,
    min_lat: float,
    max_lon: float,
    max_lat: float,
    name: str = "AOI"
) -> AreaOfInterest:
    """
    Create a rectangular region of interest from bounding box.

    Args:
        min_lon: Western boundary longitude.
        min_lat: Southern boundary latitude.
        max_lon: Eastern boundary longitude.
        max_lat: Northern boundary latitude.
        name: Display name.

    Returns:
        AreaOfInterest: Rectangle AOI.
    """
    roi = AreaOfInterest.from_bounds(min_lon, min_lat, max_lon, max_lat, name)
    print(f"✓ Created bbox ROI: [{min_lon}, {min_lat}, {max_lon}, {max_lat}]")
    return roi


class TileSource:
    """
    Source of cloud-probability-annotated Sentinel-2 scenes.

    Implementations return rasters aligned to the grid passed in, one
    array per band.
    """

    def fetch_scenes(
        self,
        aoi: AreaOfInterest,
        date_range: DateRange,
        max_cloud_percent: float,
        grid: RasterGrid
    ) -> List[Scene]:
        raise NotImplementedError

    def fetch_cloud_probability(
        self,
        aoi: AreaOfInterest,
        scene: Scene,
        grid: RasterGrid
    ) -> np.ndarray:
        """Return the cloud probability raster or raise MissingCloudProductError."""
        raise NotImplementedError


class InMemoryTileSource(TileSource):
    """
    Tile source over scenes that are already loaded.

    Cloud probability rasters are looked up by scene id; scenes that carry
    their own ``cloud_probability`` band need no entry.
    """

    def __init__(
        self,
        scenes: Sequence[Scene],
        cloud_probabilities: Optional[Dict[str, np.ndarray]] = None
    ):
        self.scenes = list(scenes)
        self.cloud_probabilities = dict(cloud_probabilities or {})

    def fetch_scenes(self, aoi, date_range, max_cloud_percent, grid):
        start, end = date_range
        selected = [
            scene for scene in self.scenes
            if start <= scene.timestamp < end
            and scene.geometry.intersects(aoi.geometry)
            and scene.cloud_cover < max_cloud_percent
        ]
        return sorted(selected, key=lambda s: (s.timestamp, s.scene_id))

    def fetch_cloud_probability(self, aoi, scene, grid):
        if scene.scene_id in self.cloud_probabilities:
            return self.cloud_probabilities[scene.scene_id]
        if "cloud_probability" in scene.bands:
            return scene.bands["cloud_probability"]
        raise MissingCloudProductError(scene.scene_id)


def initialize_earth_engine(project_id: str = None) -> bool:
    """
    Initialize the Earth Engine client with existing credentials.

    Args:
        project_id: Cloud project ID. Defaults to config.GEE_PROJECT.

    Returns:
        bool: True if initialization successful, False otherwise.
    """
    project = project_id or config.GEE_PROJECT
    try:
        if project:
            ee.Initialize(project=project)
            print(f"✓ GEE initialized (project: {project})")
        else:
            ee.Initialize()
            print("✓ GEE initialized (default project)")
        return True
    except Exception as e:
        print(f"✗ GEE initialization failed: {e}")
        return False


def _grid_request(image: ee.Image, grid: RasterGrid) -> Dict:
    t = grid.transform
    rows, cols = grid.shape
    return {
        "expression": image,
        "fileFormat": "NUMPY_NDARRAY",
        "grid": {
            "dimensions": {"width": cols, "height": rows},
            "affineTransform": {
                "scaleX": t.a,
                "shearX": t.b,
                "translateX": t.c,
                "shearY": t.d,
                "scaleY": t.e,
                "translateY": t.f,
            },
            "crsCode": config.EXPORT_CRS,
        },
    }


def download_bands(image: ee.Image, bands: List[str], grid: RasterGrid) -> Dict[str, np.ndarray]:
    """
    Download image bands onto the grid as float arrays, masked pixels as NaN.

    Args:
        image: Earth Engine image.
        bands: Band names to download.
        grid: Target pixel grid.

    Returns:
        dict: Band name to 2D float array.
    """
    prepared = image.select(bands).toFloat().unmask(EE_NODATA, False)
    data = ee.data.computePixels(_grid_request(prepared, grid))

    arrays = {}
    for band in bands:
        values = np.asarray(data[band], dtype="float32")
        arrays[band] = np.where(values == EE_NODATA, np.nan, values)
    return arrays


class EarthEngineTileSource(TileSource):
    """Tile source backed by the Sentinel-2 SR and s2cloudless collections."""

    def __init__(self, bands: List[str] = None):
        self.bands = bands or list(config.SCENE_BANDS)

    def get_sentinel2_collection(
        self,
        aoi: AreaOfInterest,
        date_range: DateRange,
        max_cloud_percent: float
    ) -> ee.ImageCollection:
        start, end = date_range
        return (
            ee.ImageCollection(config.S2_COLLECTION)
            .filterBounds(ee.Geometry(aoi.to_geojson()))
            .filterDate(start.strftime("%Y-%m-%d"), end.strftime("%Y-%m-%d"))
            .filter(ee.Filter.lt("CLOUDY_PIXEL_PERCENTAGE", max_cloud_percent))
        )

    def fetch_scenes(self, aoi, date_range, max_cloud_percent, grid):
        collection = self.get_sentinel2_collection(aoi, date_range, max_cloud_percent)

        try:
            ids = collection.aggregate_array("system:index").getInfo()
            times = collection.aggregate_array("system:time_start").getInfo()
            clouds = collection.aggregate_array("CLOUDY_PIXEL_PERCENTAGE").getInfo()
        except ee.EEException as e:
            raise TileSourceError(f"Failed to list Sentinel-2 scenes: {e}") from e

        scenes = []
        for scene_id, millis, cloud in zip(ids, times, clouds):
            image = ee.Image(f"{config.S2_COLLECTION}/{scene_id}")
            try:
                bands = download_bands(image, self.bands, grid)
            except ee.EEException as e:
                raise TileSourceError(f"Failed to download scene {scene_id}: {e}") from e
            scenes.append(Scene(
                scene_id=scene_id,
                timestamp=datetime.fromtimestamp(millis / 1000, tz=timezone.utc).replace(tzinfo=None),
                bounds=grid.bounds,
                bands=bands,
                cloud_cover=float(cloud),
            ))

        start, end = date_range
        print(f"✓ Retrieved {len(scenes)} Sentinel-2 scenes ({start:%Y-%m-%d} to {end:%Y-%m-%d})")
        return sorted(scenes, key=lambda s: (s.timestamp, s.scene_id))

    def fetch_cloud_probability(self, aoi, scene, grid):
        # s2cloudless images share system:index with their S2 scene
        collection = (
            ee.ImageCollection(config.S2_CLOUDLESS)
            .filter(ee.Filter.eq("system:index", scene.scene_id))
        )
        if collection.size().getInfo() == 0:
            raise MissingCloudProductError(scene.scene_id)

        probability = download_bands(ee.Image(collection.first()), ["probability"], grid)
        return probability["probability"]


def get_scene_dates(scenes: Sequence[Scene]) -> list:
    """
    Get list of acquisition dates for scenes.

    Args:
        scenes: Scenes from a tile source.

    Returns:
        list: Sorted list of distinct date strings.
    """
    return sorted({scene.date_str for scene in scenes})


def get_collection_metadata(scenes: Sequence[Scene]) -> dict:
    """
    Get summary metadata for a set of scenes.

    Args:
        scenes: Scenes from a tile source.

    Returns:
        dict: Metadata including count, date range, and cloud stats.
    """
    count = len(scenes)

    if count == 0:
        return {"count": 0, "dates": [], "date_range": None, "cloud_stats": None}

    dates = get_scene_dates(scenes)
    clouds = [scene.cloud_cover for scene in scenes]

    return {
        "count": count,
        "dates": dates,
        "date_range": f"{dates[0]} to {dates[-1]}",
        "cloud_stats": {
            "mean": float(np.mean(clouds)),
            "min": float(np.min(clouds)),
            "max": float(np.max(clouds)),
        }
    }


def print_collection_info(scenes: Sequence[Scene], name: str = "Collection"):
    """
    Print detailed information about a set of scenes.

    Args:
        scenes: Scenes from a tile source.
        name: Display name for the collection.
    """
    metadata = get_collection_metadata(scenes)

    print(f"\n{name} Info:")
    print("-" * 40)
    print(f"  Image count: {metadata['count']}")

    if metadata['count'] > 0:
        print(f"  Date range: {metadata['date_range']}")

        cs = metadata['cloud_stats']
        print(f"  Cloud cover: {cs['min']:.1f}% - {cs['max']:.1f}% (mean: {cs['mean']:.1f}%)")

        print(f"  Acquisition dates:")
        for date in metadata['dates'][:10]:  # Show first 10 dates
            print(f"    - {date}")
        if len(metadata['dates']) > 10:
            print(f"    ... and {len(metadata['dates']) - 10} more")

    print("-" * 40)
