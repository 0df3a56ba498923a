"""
Animation module.
Renders monthly composites into date-labelled GIF animations: single
index, true color, and side-by-side comparison panels.
"""

import os
from typing import List, Optional, Sequence

import numpy as np
from PIL import Image, ImageDraw, ImageFont

import config
from models import MonthlyComposite, MonthResult

# Panel type to (band, label) for comparison GIFs
PANEL_BANDS = {
    "sat": (None, "RGB"),
    "ndvi": ("NDVI", "NDVI"),
    "evi": ("EVI", "EVI"),
    "savi": ("SAVI", "SAVI"),
}


def hex_to_rgb(color: str) -> tuple:
    color = color.lstrip("#")
    return tuple(int(color[i:i + 2], 16) for i in (0, 2, 4))


def build_colormap(palette: List[str] = None, steps: int = 256) -> np.ndarray:
    """
    Linear color ramp through the palette colors.

    Args:
        palette: Hex colors from low to high. Defaults to config.INDEX_PALETTE.
        steps: Number of entries.

    Returns:
        np.ndarray: (steps, 3) uint8 lookup table.
    """
    palette = palette or config.INDEX_PALETTE
    stops = np.array([hex_to_rgb(c) for c in palette], dtype=float)
    positions = np.linspace(0, 1, len(stops))
    samples = np.linspace(0, 1, steps)

    table = np.stack([np.interp(samples, positions, stops[:, ch]) for ch in range(3)], axis=1)
    return np.round(table).astype("uint8")


def colorize_index(
    values: np.ndarray,
    vmin: float = None,
    vmax: float = None,
    palette: List[str] = None
) -> np.ndarray:
    """
    Map an index raster to RGB through the palette. Masked pixels are black.

    Args:
        values: Index raster.
        vmin: Value mapped to the first palette color. Defaults to config.INDEX_VIS_MIN.
        vmax: Value mapped to the last palette color. Defaults to config.INDEX_VIS_MAX.
        palette: Hex colors.

    Returns:
        np.ndarray: (rows, cols, 3) uint8 image.
    """
    vmin = config.INDEX_VIS_MIN if vmin is None else vmin
    vmax = config.INDEX_VIS_MAX if vmax is None else vmax
    table = build_colormap(palette)

    valid = np.isfinite(values)
    with np.errstate(invalid="ignore"):
        scaled = np.clip((values - vmin) / max(vmax - vmin, 1e-12), 0, 1)
    idx = np.where(valid, np.round(scaled * (len(table) - 1)), 0).astype(int)

    rgb = table[idx]
    rgb[~valid] = 0
    return rgb


def stretch_rgb(
    red: np.ndarray,
    green: np.ndarray,
    blue: np.ndarray,
    vmin: float = None,
    vmax: float = None,
    gamma: float = None
) -> np.ndarray:
    """
    True color stretch of reflectance bands.

    Args:
        red, green, blue: Reflectance rasters (B4, B3, B2).
        vmin: Reflectance mapped to 0. Defaults to config.RGB_VIS_MIN.
        vmax: Reflectance mapped to 255. Defaults to config.RGB_VIS_MAX.
        gamma: Gamma correction. Defaults to config.RGB_VIS_GAMMA.

    Returns:
        np.ndarray: (rows, cols, 3) uint8 image.
    """
    vmin = config.RGB_VIS_MIN if vmin is None else vmin
    vmax = config.RGB_VIS_MAX if vmax is None else vmax
    gamma = gamma or config.RGB_VIS_GAMMA

    stack = np.stack([red, green, blue], axis=-1)
    valid = np.all(np.isfinite(stack), axis=-1)
    with np.errstate(invalid="ignore"):
        scaled = np.clip((stack - vmin) / (vmax - vmin), 0, 1) ** (1.0 / gamma)
    scaled = np.where(valid[..., None], scaled, 0)
    return np.round(scaled * 255).astype("uint8")


def _resize(image: Image.Image, dimensions: int) -> Image.Image:
    """Scale so the longer side equals ``dimensions``."""
    width, height = image.size
    factor = dimensions / max(width, height)
    size = (max(1, int(round(width * factor))), max(1, int(round(height * factor))))
    return image.resize(size, Image.NEAREST)


def _font(size: int):
    try:
        return ImageFont.load_default(size=size)
    except TypeError:
        return ImageFont.load_default()


def draw_date_label(image: Image.Image, label: str, font_size: int = 18) -> Image.Image:
    """Write the date label at the bottom-left corner, black with a white outline."""
    draw = ImageDraw.Draw(image)
    width, height = image.size
    x = int(width * 0.01) + 2
    y = height - int(height * 0.05) - font_size
    draw.text((x, y), label, fill=(0, 0, 0), font=_font(font_size),
              stroke_width=3, stroke_fill=(255, 255, 255))
    return image


def animation_frames(results: Sequence, band: str) -> List[MonthlyComposite]:
    """
    Composites that get a frame: data-bearing months with at least one
    valid pixel in ``band``, in time order.
    """
    frames = []
    for item in results:
        composite = item.composite if isinstance(item, MonthResult) else item
        if composite is None or composite.is_no_data:
            continue
        if composite.valid_pixel_count(band) == 0:
            continue
        frames.append(composite)
    return sorted(frames, key=lambda c: (c.year, c.month))


def save_gif(frames: List[Image.Image], filepath: str, fps: float = None) -> str:
    """Write frames as a looping GIF."""
    fps = fps or config.GIF_FRAMES_PER_SECOND
    directory = os.path.dirname(filepath)
    if directory:
        os.makedirs(directory, exist_ok=True)

    frames[0].save(
        filepath,
        save_all=True,
        append_images=frames[1:],
        duration=int(1000 / fps),
        loop=0,
    )
    return filepath


def render_index_frame(
    composite: MonthlyComposite,
    band: str,
    dimensions: int = None,
    palette: List[str] = None,
    vmin: float = None,
    vmax: float = None
) -> Image.Image:
    rgb = colorize_index(composite.bands[band], vmin, vmax, palette)
    image = _resize(Image.fromarray(rgb, "RGB"), dimensions or config.GIF_DIMENSIONS)
    return draw_date_label(image, composite.label)


def render_rgb_frame(composite: MonthlyComposite, dimensions: int = None) -> Image.Image:
    red, green, blue = (composite.bands[b] for b in config.RGB_BANDS)
    image = _resize(Image.fromarray(stretch_rgb(red, green, blue), "RGB"),
                    dimensions or config.GIF_DIMENSIONS)
    return draw_date_label(image, composite.label)


def create_index_gif(
    results: Sequence,
    band: str,
    filepath: str,
    title: str = None,
    dimensions: int = None,
    fps: float = None,
    palette: List[str] = None,
    vmin: float = None,
    vmax: float = None
) -> Optional[str]:
    """
    Animated GIF of one index band, one frame per data-bearing month.

    Args:
        results: MonthResults or MonthlyComposites.
        band: Band name, e.g. 'NDVI' or 'NDVI_Normalized'.
        filepath: Output GIF path.
        title: Name used in progress messages. Defaults to band.
        dimensions: Longer side in pixels. Defaults to config.GIF_DIMENSIONS.
        fps: Frames per second. Defaults to config.GIF_FRAMES_PER_SECOND.
        palette: Hex colors. Defaults to config.INDEX_PALETTE.
        vmin, vmax: Stretch range. Defaults to 0 and 1.

    Returns:
        str or None: Path to the GIF, None if no month has valid pixels.
    """
    title = title or band
    composites = animation_frames(results, band)

    if not composites:
        print(f"  ⚠ No {title} data available for animation.")
        return None

    frames = [render_index_frame(c, band, dimensions, palette, vmin, vmax) for c in composites]
    save_gif(frames, filepath, fps)

    print(f"  ✓ {title} animation: {len(frames)} frames -> {filepath}")
    return filepath


def create_rgb_gif(
    results: Sequence,
    filepath: str,
    title: str = "True Color",
    dimensions: int = None,
    fps: float = None
) -> Optional[str]:
    """
    Animated true color GIF (B4, B3, B2), one frame per data-bearing month.

    Args:
        results: MonthResults or MonthlyComposites.
        filepath: Output GIF path.
        title: Name used in progress messages.
        dimensions: Longer side in pixels.
        fps: Frames per second.

    Returns:
        str or None: Path to the GIF, None if no month has valid pixels.
    """
    composites = animation_frames(results, config.RGB_BANDS[0])

    if not composites:
        print(f"  ⚠ No {title} RGB data available for animation.")
        return None

    frames = [render_rgb_frame(c, dimensions) for c in composites]
    save_gif(frames, filepath, fps)

    print(f"  ✓ {title} RGB animation: {len(frames)} frames -> {filepath}")
    return filepath


def render_comparison_frame(
    composite: MonthlyComposite,
    panels: List[str],
    normalized: bool = False,
    panel_size: int = 500
) -> Image.Image:
    """
    Side-by-side panels for one month, each framed and labelled.

    Args:
        composite: Monthly composite.
        panels: Panel types from PANEL_BANDS, left to right.
        normalized: Use the *_Normalized index bands.
        panel_size: Longer side of each panel in pixels.

    Returns:
        Image.Image: Combined frame.
    """
    rendered = []
    for panel in panels:
        band, label = PANEL_BANDS[panel]
        if band is None:
            red, green, blue = (composite.bands[b] for b in config.RGB_BANDS)
            rgb = stretch_rgb(red, green, blue)
        else:
            rgb = colorize_index(composite.bands[f"{band}_Normalized" if normalized else band])

        image = _resize(Image.fromarray(rgb, "RGB"), panel_size)
        draw = ImageDraw.Draw(image)
        width, height = image.size
        draw.rectangle([0, 0, width - 1, height - 1], outline=(255, 255, 255), width=3)

        font = _font(24)
        text_width = draw.textlength(label, font=font)
        draw.text(((width - text_width) / 2, height - int(height * 0.1) - 24), label,
                  fill=(255, 255, 255), font=font, stroke_width=2, stroke_fill=(0, 0, 0))
        rendered.append(image)

    width, height = rendered[0].size
    combined = Image.new("RGB", (width * len(rendered), height))
    for i, image in enumerate(rendered):
        combined.paste(image, (i * width, 0))

    # Date label on top of the first panel
    return draw_date_label(combined, composite.label)


def create_comparison_gif(
    results: Sequence,
    filepath: str,
    panels: List[str] = None,
    title: str = "Comparison",
    normalized: bool = False,
    fps: float = None
) -> Optional[str]:
    """
    Animated multi-panel GIF, e.g. true color next to NDVI.

    Args:
        results: MonthResults or MonthlyComposites.
        filepath: Output GIF path.
        panels: Panel types ('sat', 'ndvi', 'evi', 'savi'). Defaults to all four.
        title: Name used in progress messages.
        normalized: Use the normalized index bands instead of the raw ones.
        fps: Frames per second.

    Returns:
        str or None: Path to the GIF, None if no month has valid pixels.
    """
    panels = panels or ["sat", "ndvi", "evi", "savi"]
    unknown = [p for p in panels if p not in PANEL_BANDS]
    if unknown:
        raise ValueError(f"Unknown panel types: {unknown}. Use {list(PANEL_BANDS)}.")

    composites = animation_frames(results, config.RGB_BANDS[0])

    if not composites:
        print(f"  ⚠ No {title} data available for animation.")
        return None

    frames = [render_comparison_frame(c, panels, normalized) for c in composites]
    save_gif(frames, filepath, fps)

    print(f"  ✓ {title} GIF ({', '.join(panels)}): {len(frames)} frames -> {filepath}")
    return filepath
