"""
Core data types and capability interfaces for the rectangle tracking pipeline.
"""

from __future__ import annotations

from concurrent.futures import Future
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, NamedTuple, Optional, Protocol, Sequence, Tuple, Union

import numpy as np

Point = Tuple[float, float]
Size = Tuple[float, float]
# Normalized region of interest: (x, y, width, height), bottom-left origin.
Region = Tuple[float, float, float, float]


class DeviceOrientation(Enum):
    """Physical device orientation at capture time."""

    UPRIGHT = "portrait"
    UPSIDE_DOWN = "portrait_upside_down"
    ROTATED_LEFT = "landscape_left"
    ROTATED_RIGHT = "landscape_right"
    FACE_UP = "face_up"
    FACE_DOWN = "face_down"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Union[str, "DeviceOrientation", None]) -> "DeviceOrientation":
        """Accept enum members, enum values or member names (case-insensitive)."""
        if value is None:
            return cls.UNKNOWN
        if isinstance(value, cls):
            return value
        text = str(value).strip().lower()
        for member in cls:
            if text in (member.value, member.name.lower()):
                return member
        raise ValueError(f"Unknown device orientation: {value!r}")


@dataclass(frozen=True)
class Frame:
    """One captured camera frame. Immutable once received."""

    image: Any  # opaque buffer, a HxWxC uint8 array for the OpenCV engine
    timestamp: float
    orientation: DeviceOrientation = DeviceOrientation.UPRIGHT
    # 3x3 camera matrix, if attached. Passed through to the capabilities;
    # the OpenCV engine works in pixel space and does not read it.
    intrinsics: Optional[np.ndarray] = None


@dataclass(frozen=True)
class RectangleObservation:
    """
    A detected or tracked rectangle.

    Corners are normalized to [0, 1] with a bottom-left origin and do not
    depend on device orientation.
    """

    bottom_left: Point
    bottom_right: Point
    top_right: Point
    top_left: Point
    confidence: float = 1.0

    @classmethod
    def from_corners(cls, corners: Sequence[Point], confidence: float = 1.0) -> "RectangleObservation":
        """Build from four corners ordered bottom-left, bottom-right, top-right, top-left."""
        pts = np.asarray(corners, dtype=np.float64).reshape(4, 2)
        return cls(
            bottom_left=(float(pts[0, 0]), float(pts[0, 1])),
            bottom_right=(float(pts[1, 0]), float(pts[1, 1])),
            top_right=(float(pts[2, 0]), float(pts[2, 1])),
            top_left=(float(pts[3, 0]), float(pts[3, 1])),
            confidence=float(confidence),
        )

    def corners(self) -> np.ndarray:
        """Corners as a (4, 2) array in the fixed emission order BL, BR, TR, TL."""
        return np.array(
            [self.bottom_left, self.bottom_right, self.top_right, self.top_left],
            dtype=np.float64,
        )

    def bounding_box(self) -> Region:
        """Axis-aligned normalized bounding box (x, y, width, height)."""
        pts = self.corners()
        x_min, y_min = pts.min(axis=0)
        x_max, y_max = pts.max(axis=0)
        return (float(x_min), float(y_min), float(x_max - x_min), float(y_max - y_min))

    def with_confidence(self, confidence: float) -> "RectangleObservation":
        return RectangleObservation(
            self.bottom_left, self.bottom_right, self.top_right, self.top_left, float(confidence)
        )


class TrackerResult(NamedTuple):
    """One tracker output, keyed by the index of the submitted observation."""

    index: int
    observation: RectangleObservation
    confidence: float


class PipelineState(Enum):
    SEEKING = "seeking"
    TRACKING = "tracking"


@dataclass(frozen=True)
class DiagnosticEvent:
    """Structured failure/log event handed to a diagnostics sink."""

    stage: str
    message: str
    frame_timestamp: Optional[float] = None
    error_type: Optional[str] = None
    details: dict = field(default_factory=dict)


DetectionResult = Union[List[RectangleObservation], "Future[List[RectangleObservation]]"]
TrackingResultSet = Union[List[TrackerResult], "Future[List[TrackerResult]]"]


class DetectorCapability(Protocol):
    """External rectangle detector."""

    def detect(self, frame: Frame, region: Optional[Region] = None) -> DetectionResult:
        """Detect rectangles, optionally restricted to a normalized region.

        ``region`` is optional: a detector whose ``detect`` takes only the
        frame is called without it and refinement searches the whole frame.

        Raises DetectionError on processing failure.
        """


class TrackerCapability(Protocol):
    """External sequence tracker."""

    def track(
        self, frame: Frame, previous_observations: Sequence[RectangleObservation]
    ) -> TrackingResultSet:
        """Advance every observation against ``frame``.

        Returns one result per input observation, in input order.
        Raises TrackingError on processing failure.
        """


class Renderer(Protocol):
    """Accepts a batch of closed polygons for display."""

    def render(self, batch: Any) -> None:
        """Display the batch. No return value."""


class DiagnosticsSink(Protocol):
    """Fire-and-forget receiver for failure/log events."""

    def report(self, event: DiagnosticEvent) -> None:
        """Record the event."""


class FrameSource(Protocol):
    """Delivers frames one at a time in capture order."""

    def start(self) -> None:
        """Begin delivering frames."""

    def stop(self) -> None:
        """Stop delivering frames and release the device."""
