"""
Error taxonomy for the frame processing pipeline.

Per-frame errors (detection, tracking, refinement) are recovered locally by
the pipeline. Only geometry configuration errors reach the caller.
"""


class RectTrackerError(Exception):
    """Base class for all pipeline errors."""

    stage = "pipeline"


class DetectionError(RectTrackerError):
    """Detector capability failed for a frame."""

    stage = "detection"


class TrackingError(RectTrackerError):
    """Tracker capability failed for a frame."""

    stage = "tracking"


class RefinementError(RectTrackerError):
    """Per-track refinement detection failed."""

    stage = "refinement"


class GeometryConfigurationError(RectTrackerError):
    """Viewport or capture geometry is unavailable or invalid at setup time."""

    stage = "geometry"
