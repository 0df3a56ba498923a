"""
Cloud masking module.
Combines the s2cloudless probability band with the Scene Classification
Layer (SCL) to mask clouds, shadows and cirrus in Sentinel-2 scenes.
"""

import re
from typing import List, Sequence, Tuple

import numpy as np

import config
from exceptions import MissingCloudProductError
from models import AreaOfInterest, MaskedScene, RasterGrid, Scene

# Spectral bands kept after masking (B1..B12, B8A)
SPECTRAL_BAND = re.compile(r"^B\d+A?$")


def add_cloud_probability(
    scene: Scene,
    source,
    aoi: AreaOfInterest,
    grid: RasterGrid
) -> Tuple[Scene, bool]:
    """
    Attach the s2cloudless probability band to a scene.

    If the tile source has no matching cloud probability product, a
    constant 0 band (no clouds) is added instead.

    Args:
        scene: Sentinel-2 scene.
        source: Tile source providing fetch_cloud_probability().
        aoi: Region of interest.
        grid: Run grid.

    Returns:
        tuple: (scene with a 'cloud_probability' band, True if the product was missing)
    """
    if "cloud_probability" in scene.bands:
        return scene, False

    missing = False

    try:
        probability = source.fetch_cloud_probability(aoi, scene, grid)
    except MissingCloudProductError:
        print(f"  ⚠ No cloud probability for {scene.scene_id}, assuming no clouds")
        reference = scene.bands[config.CONTAMINATION_REFERENCE_BAND]
        probability = np.zeros(reference.shape, dtype="float32")
        missing = True

    return scene.with_band("cloud_probability", np.asarray(probability, dtype="float32")), missing


def build_cloud_mask(
    scene: Scene,
    threshold: float = None,
    scl_classes: Sequence[int] = None
) -> np.ndarray:
    """
    Build the per-pixel validity mask for a scene.

    A pixel is valid when its cloud probability is below the threshold,
    its SCL class is not cloud shadow (3), dense cloud (9) or cirrus (10),
    and the reference band has data.

    Args:
        scene: Scene with 'cloud_probability' and 'SCL' bands.
        threshold: Cloud probability threshold (0-100).
                   Defaults to config.CLOUD_PROBABILITY_THRESHOLD.
        scl_classes: SCL classes to mask. Defaults to config.SCL_MASKED_CLASSES.

    Returns:
        np.ndarray: Boolean mask, True for clear pixels.
    """
    thresh = threshold if threshold is not None else config.CLOUD_PROBABILITY_THRESHOLD
    classes = scl_classes if scl_classes is not None else config.SCL_MASKED_CLASSES

    cloud_prob = scene.bands["cloud_probability"]
    scl = scene.bands["SCL"]
    reference = scene.bands[config.CONTAMINATION_REFERENCE_BAND]

    # NaN comparisons are False, so missing probability or SCL masks the pixel
    mask = cloud_prob < thresh
    mask &= np.isfinite(scl) & ~np.isin(scl, classes)
    mask &= np.isfinite(reference)

    return mask


def compute_contamination(
    scene: Scene,
    mask: np.ndarray,
    aoi_mask: np.ndarray
) -> float:
    """
    Percentage of AOI pixels invalidated by cloud, shadow or cirrus.

    Counts are taken on the reference band (B4) inside the AOI.

    Args:
        scene: Unmasked scene.
        mask: Validity mask from build_cloud_mask().
        aoi_mask: Boolean AOI mask on the run grid.

    Returns:
        float: Contamination in [0, 100].
    """
    reference = scene.bands[config.CONTAMINATION_REFERENCE_BAND]
    has_data = np.isfinite(reference) & aoi_mask

    total_count = int(has_data.sum())
    clean_count = int((has_data & mask).sum())

    contamination = 100.0 * max(0, total_count - clean_count) / max(total_count, 1)
    return float(min(max(contamination, 0.0), 100.0))


def mask_scene(
    scene: Scene,
    aoi_mask: np.ndarray,
    threshold: float = None,
    scale_factor: float = None,
    scl_classes: Sequence[int] = None,
    cloud_product_missing: bool = False
) -> MaskedScene:
    """
    Mask clouds and shadows and scale reflectance to 0-1.

    Only spectral bands are kept; SCL and cloud probability are dropped
    after the mask is built.

    Args:
        scene: Scene with 'cloud_probability' and 'SCL' bands.
        aoi_mask: Boolean AOI mask on the run grid.
        threshold: Cloud probability threshold (0-100).
        scale_factor: Divisor from digital numbers to reflectance.
                      Defaults to config.REFLECTANCE_SCALE_FACTOR.
        scl_classes: SCL classes to mask.
        cloud_product_missing: Whether the probability band was substituted.

    Returns:
        MaskedScene: Masked scene with contamination statistic.
    """
    factor = scale_factor or config.REFLECTANCE_SCALE_FACTOR

    mask = build_cloud_mask(scene, threshold, scl_classes)
    contamination = compute_contamination(scene, mask, aoi_mask)

    bands = {}
    for name, values in scene.bands.items():
        if not SPECTRAL_BAND.match(name):
            continue
        scaled = np.asarray(values, dtype="float32") / factor
        bands[name] = np.where(mask, scaled, np.nan).astype("float32")

    return MaskedScene(
        scene=scene,
        bands=bands,
        mask=mask,
        contamination=contamination,
        cloud_product_missing=cloud_product_missing,
    )


def apply_cloud_mask(
    scenes: Sequence[Scene],
    source,
    aoi: AreaOfInterest,
    grid: RasterGrid,
    aoi_mask: np.ndarray = None,
    threshold: float = None,
    scale_factor: float = None,
    scl_classes: Sequence[int] = None
) -> List[MaskedScene]:
    """
    Apply cloud probability and SCL masking to every scene.

    This is the recommended function for production use. It:
    1. Joins s2cloudless probability (zero band when missing)
    2. Masks clouds using probability threshold and SCL classes
    3. Scales reflectance and records contamination

    Args:
        scenes: Scenes on the run grid.
        source: Tile source used for cloud probability lookups.
        aoi: Region of interest.
        grid: Run grid.
        aoi_mask: Precomputed AOI mask. Computed from the AOI if None.
        threshold: Cloud probability threshold.
        scale_factor: Reflectance scale factor.
        scl_classes: SCL classes to mask.

    Returns:
        list: Masked scenes, in input order.
    """
    if aoi_mask is None:
        aoi_mask = aoi.pixel_mask(grid)

    masked = []
    for scene in scenes:
        for name, values in scene.bands.items():
            if np.shape(values) != grid.shape:
                raise ValueError(
                    f"Band {name} of scene {scene.scene_id} has shape {np.shape(values)}, "
                    f"expected {grid.shape}"
                )
        with_prob, missing = add_cloud_probability(scene, source, aoi, grid)
        masked.append(mask_scene(
            with_prob, aoi_mask, threshold, scale_factor, scl_classes, missing
        ))

    return masked
