"""
Custom exceptions for the vegetation index time series pipeline.
"""


class PipelineError(Exception):
    """Base exception for the pipeline."""
    pass


class TileSourceError(PipelineError):
    """Raised when scenes cannot be fetched from a tile source."""
    pass


class MissingCloudProductError(TileSourceError):
    """Raised when a scene has no matching cloud probability product."""

    def __init__(self, scene_id: str):
        super().__init__(f"No cloud probability product for scene {scene_id}")
        self.scene_id = scene_id


class MonthFailure(PipelineError):
    """Base for failures that abort a single month of the series."""

    kind = "MonthFailure"

    def __init__(self, year: int, month: int, message: str):
        super().__init__(f"{year}-{month:02d}: {message}")
        self.year = year
        self.month = month


class ReductionTimeoutError(MonthFailure):
    """Raised when a month exceeds its time budget."""

    kind = "ReductionTimeout"


class ResourceExhaustedError(MonthFailure):
    """Raised when a reduction exceeds its pixel budget."""

    kind = "ResourceExhausted"
