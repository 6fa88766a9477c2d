"""
Core pipeline components for the rectangle tracker.

This package contains the detect/track state machine and everything it
needs that is independent of a concrete vision engine or UI: data types,
errors, track bookkeeping, overlay geometry, path emission, diagnostics
and the pipeline worker thread.
"""
from .diagnostics import LoggingDiagnosticsSink, MemoryDiagnosticsSink, PipelineStats
from .errors import (
    DetectionError,
    GeometryConfigurationError,
    RectTrackerError,
    RefinementError,
    TrackingError,
)
from .geometry import OverlayGeometry, aspect_fill_rect
from .overlay import OverlayEmitter, OverlayStyle, PathBatch
from .pipeline import FrameOutput, FramePipeline
from .tracks import Track, TrackSet, TrackUpdate
from .types import (
    DeviceOrientation,
    DiagnosticEvent,
    Frame,
    PipelineState,
    RectangleObservation,
    TrackerResult,
)
from .worker import OverlayChannel, OverlayUpdate, PipelineWorker

__all__ = [
    "LoggingDiagnosticsSink",
    "MemoryDiagnosticsSink",
    "PipelineStats",
    "DetectionError",
    "GeometryConfigurationError",
    "RectTrackerError",
    "RefinementError",
    "TrackingError",
    "OverlayGeometry",
    "aspect_fill_rect",
    "OverlayEmitter",
    "OverlayStyle",
    "PathBatch",
    "FrameOutput",
    "FramePipeline",
    "Track",
    "TrackSet",
    "TrackUpdate",
    "DeviceOrientation",
    "DiagnosticEvent",
    "Frame",
    "PipelineState",
    "RectangleObservation",
    "TrackerResult",
    "OverlayChannel",
    "OverlayUpdate",
    "PipelineWorker",
]
