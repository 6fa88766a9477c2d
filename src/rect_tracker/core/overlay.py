"""
Overlay emission: observations -> closed polygons in overlay space.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .geometry import OverlayGeometry
from .types import RectangleObservation

logger = logging.getLogger(__name__)


def box_path(points) -> np.ndarray:
    """
    Closed path through ``points``: move to the last point, then line to each
    point in order. The first segment returns to the starting corner, which
    closes the loop.

    Returns:
        np.ndarray: (N + 1, 2) path vertices, first row is the move-to point
    """
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    if len(pts) == 0:
        return pts
    return np.vstack([pts[-1:], pts])


@dataclass
class PathBatch:
    """All polygons for one frame, concatenated into a single batch."""

    paths: List[np.ndarray] = field(default_factory=list)
    frame_timestamp: Optional[float] = None

    def __len__(self) -> int:
        return len(self.paths)

    def __iter__(self):
        return iter(self.paths)

    @property
    def is_empty(self) -> bool:
        return not self.paths

    def polygons(self) -> List[np.ndarray]:
        """Corner polygons without the leading move-to vertex."""
        return [p[1:] for p in self.paths]


@dataclass(frozen=True)
class OverlayStyle:
    """Stroke and fill settings used by renderers."""

    fill_rgba: Tuple[int, int, int, float] = (255, 255, 255, 0.2)
    stroke_rgba: Tuple[int, int, int, float] = (0, 0, 255, 0.7)
    line_width: float = 25.0
    line_join: str = "round"
    shadow_opacity: float = 0.8
    shadow_radius: float = 8.0

    @classmethod
    def from_params(cls, params: dict) -> "OverlayStyle":
        default = cls()
        return cls(
            fill_rgba=tuple(params.get("OVERLAY_FILL_RGBA", default.fill_rgba)),
            stroke_rgba=tuple(params.get("OVERLAY_STROKE_RGBA", default.stroke_rgba)),
            line_width=float(params.get("OVERLAY_LINE_WIDTH", default.line_width)),
            line_join=str(params.get("OVERLAY_LINE_JOIN", default.line_join)),
            shadow_opacity=float(params.get("OVERLAY_SHADOW_OPACITY", default.shadow_opacity)),
            shadow_radius=float(params.get("OVERLAY_SHADOW_RADIUS", default.shadow_radius)),
        )


class OverlayEmitter:
    """
    Converts the current observation set into a renderable path batch.

    Corners are emitted in the fixed order bottom-left, bottom-right,
    top-right, top-left. Polygons of different tracks are never merged.
    """

    def __init__(self, geometry: OverlayGeometry, renderer=None):
        self.geometry = geometry
        self.renderer = renderer
        self.last_batch = PathBatch()

    def build(self, observations: Sequence[RectangleObservation], frame_timestamp=None) -> PathBatch:
        paths = []
        for obs in observations:
            converted = self.geometry.to_overlay(obs.corners())
            paths.append(box_path(converted))
        return PathBatch(paths=paths, frame_timestamp=frame_timestamp)

    def emit(self, observations, orientation=None, frame_timestamp=None) -> PathBatch:
        """
        Build the batch for this frame and hand it to the renderer.

        Args:
            observations: Observations to draw
            orientation: Current device orientation; refreshes the cached
                geometry when it changed
            frame_timestamp: Capture timestamp of the source frame

        Returns:
            PathBatch: the emitted batch (also kept as ``last_batch``)
        """
        if orientation is not None:
            self.geometry.update(orientation=orientation)
        batch = self.build(observations, frame_timestamp)
        self.last_batch = batch
        if self.renderer is not None:
            self.renderer.render(batch)
        return batch
