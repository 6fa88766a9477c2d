"""
Rect-Tracker Package

Live rectangle detection and tracking for camera previews. Frames go through
a detect/track state machine; the resulting rectangles are mapped into the
preview's coordinate space and drawn as closed polygon overlays.

Key Features:
- Seek/track state machine with confidence-based track eviction
- Per-track refinement detection restricted to the track's region
- Orientation-aware geometry from normalized camera space to overlay space
- Drop-on-busy frame delivery and a single-writer pipeline worker
- OpenCV reference engine (contour detection + Lucas-Kanade corner tracking)
- PySide6 preview window and headless OpenCV video output
"""

__version__ = "1.0.0"

from .app.launcher import main, parse_arguments, setup_logging
from .core.pipeline import FrameOutput, FramePipeline
from .core.tracks import Track, TrackSet
from .core.types import DeviceOrientation, Frame, PipelineState, RectangleObservation

__all__ = [
    "main",
    "parse_arguments",
    "setup_logging",
    "DeviceOrientation",
    "Frame",
    "FrameOutput",
    "FramePipeline",
    "PipelineState",
    "RectangleObservation",
    "Track",
    "TrackSet",
]
