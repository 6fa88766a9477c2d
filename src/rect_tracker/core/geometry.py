"""
Geometry transforms between normalized detector space and overlay space.

Detector output is normalized to [0, 1] with a bottom-left origin. Rendering
happens in the overlay (screen) space of the preview viewport. The mapping is
composed in a fixed order:

1. normalized -> capture pixels: flip Y, then scale by the capture resolution.
2. capture pixels -> overlay: recentre on the capture bounds, scale by
   (sx, sy), rotate by the device orientation, then move to the viewport
   centre (the overlay is kept centered on the viewport).

All transforms are 3x3 homogeneous matrices acting on column vectors.
"""

import logging
import math

import numpy as np

from .errors import GeometryConfigurationError
from .types import DeviceOrientation

logger = logging.getLogger(__name__)


def radians_for_degrees(degrees: float) -> float:
    """Convert degrees to radians."""
    return degrees * math.pi / 180.0


def scale_matrix(sx: float, sy: float) -> np.ndarray:
    return np.array([[sx, 0.0, 0.0], [0.0, sy, 0.0], [0.0, 0.0, 1.0]], dtype=np.float64)


def translation_matrix(tx: float, ty: float) -> np.ndarray:
    return np.array([[1.0, 0.0, tx], [0.0, 1.0, ty], [0.0, 0.0, 1.0]], dtype=np.float64)


def rotation_matrix(degrees: float) -> np.ndarray:
    # Exact values for the tabulated quarter turns keep the transform bit-stable.
    quarter_turns = {0.0: (1.0, 0.0), 90.0: (0.0, 1.0), 180.0: (-1.0, 0.0), -90.0: (0.0, -1.0)}
    if float(degrees) in quarter_turns:
        c, s = quarter_turns[float(degrees)]
    else:
        theta = radians_for_degrees(degrees)
        c, s = math.cos(theta), math.sin(theta)
    return np.array([[c, -s, 0.0], [s, c, 0.0], [0.0, 0.0, 1.0]], dtype=np.float64)


def apply_transform(matrix: np.ndarray, points) -> np.ndarray:
    """Apply a 3x3 affine matrix to an (N, 2) array of points."""
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    homogeneous = np.hstack([pts, np.ones((len(pts), 1), dtype=np.float64)])
    out = homogeneous @ matrix.T
    return out[:, :2]


def camera_to_capture_matrix(capture_width: float, capture_height: float) -> np.ndarray:
    """
    Normalized bottom-left-origin coordinates -> capture pixels, top-left origin.

    Equivalent to flip(Y) applied after scale(w, h) and a downward shift, i.e.
    (x, y) -> (x * w, h - y * h).
    """
    return (
        scale_matrix(1.0, -1.0)
        @ translation_matrix(0.0, -capture_height)
        @ scale_matrix(capture_width, capture_height)
    )


def orientation_parameters(orientation, capture_size, preview_size):
    """
    Look up (rotation degrees, sx, sy) for a device orientation.

    Args:
        orientation (DeviceOrientation): Current device orientation
        capture_size (tuple): Capture resolution (width, height)
        preview_size (tuple): Size of the aspect-filled preview rectangle

    Returns:
        tuple: (rotation_degrees, scale_x, scale_y)
    """
    capture_width, capture_height = capture_size
    preview_width, preview_height = preview_size

    if orientation == DeviceOrientation.UPSIDE_DOWN:
        return 180.0, preview_width / capture_width, preview_height / capture_height
    if orientation == DeviceOrientation.ROTATED_LEFT:
        scale = preview_height / capture_width
        return 90.0, scale, scale
    if orientation == DeviceOrientation.ROTATED_RIGHT:
        scale = preview_height / capture_width
        return -90.0, scale, scale
    return 0.0, preview_width / capture_width, preview_height / capture_height


def aspect_fill_rect(video_size, viewport_size):
    """
    Rectangle occupied by a video under aspect-fill inside a viewport.

    The video is scaled uniformly until it covers the viewport and centered,
    so the rectangle may extend past the viewport edges.

    Returns:
        tuple: (x, y, width, height) in viewport coordinates
    """
    video_w, video_h = video_size
    view_w, view_h = viewport_size
    if min(video_w, video_h, view_w, view_h) <= 0:
        raise GeometryConfigurationError(
            f"Cannot aspect-fill video {video_size} into viewport {viewport_size}"
        )
    scale = max(view_w / video_w, view_h / video_h)
    width, height = video_w * scale, video_h * scale
    return ((view_w - width) / 2.0, (view_h - height) / 2.0, width, height)


def expand_region(box, margin):
    """Grow a normalized (x, y, w, h) box by ``margin`` of its size per side, clipped to [0, 1]."""
    x, y, w, h = box
    x0 = max(0.0, x - w * margin)
    y0 = max(0.0, y - h * margin)
    x1 = min(1.0, x + w * (1.0 + margin))
    y1 = min(1.0, y + h * (1.0 + margin))
    return (x0, y0, max(0.0, x1 - x0), max(0.0, y1 - y0))


def box_iou(a, b) -> float:
    """Intersection over union of two (x, y, w, h) boxes."""
    ax0, ay0, aw, ah = a
    bx0, by0, bw, bh = b
    ix = max(0.0, min(ax0 + aw, bx0 + bw) - max(ax0, bx0))
    iy = max(0.0, min(ay0 + ah, by0 + bh) - max(ay0, by0))
    inter = ix * iy
    union = aw * ah + bw * bh - inter
    if union <= 0:
        return 0.0
    return inter / union


def _require_size(name, size):
    if size is None:
        raise GeometryConfigurationError(f"{name} is not available")
    try:
        width, height = float(size[0]), float(size[1])
    except (TypeError, IndexError, ValueError) as exc:
        raise GeometryConfigurationError(f"{name} must be a (width, height) pair, got {size!r}") from exc
    if not (width > 0 and height > 0) or not (math.isfinite(width) and math.isfinite(height)):
        raise GeometryConfigurationError(f"{name} must be positive, got {size!r}")
    return (width, height)


class OverlayGeometry:
    """
    Cached transform from normalized observations to overlay space.

    Capture resolution is fixed for the session. The transform is recomputed
    only when orientation, viewport size or preview size change.
    """

    def __init__(self, capture_size, viewport_size, preview_size=None,
                 orientation=DeviceOrientation.UPRIGHT):
        """
        Args:
            capture_size (tuple): Capture resolution (width, height) in pixels
            viewport_size (tuple): Size of the view hosting the preview
            preview_size (tuple): Size of the aspect-filled preview rectangle;
                derived from the viewport when omitted
            orientation (DeviceOrientation): Initial device orientation

        Raises:
            GeometryConfigurationError: if any required size is missing or invalid
        """
        self.capture_size = _require_size("capture resolution", capture_size)
        self.viewport_size = _require_size("viewport size", viewport_size)
        self._explicit_preview = preview_size is not None
        self.preview_size = (
            _require_size("preview size", preview_size)
            if preview_size is not None
            else self._derive_preview_size(self.viewport_size)
        )
        self.orientation = DeviceOrientation.parse(orientation)
        self._key = None
        self._camera_matrix = camera_to_capture_matrix(*self.capture_size)
        self._overlay_matrix = None
        self._matrix = None
        self._inverse = None
        self.recompute_count = 0
        self._recompute_if_needed()

    def _derive_preview_size(self, viewport_size):
        # The preview shows the capture rotated into portrait, so width/height swap.
        capture_w, capture_h = self.capture_size
        _, _, width, height = aspect_fill_rect((capture_h, capture_w), viewport_size)
        return (width, height)

    def update(self, orientation=None, viewport_size=None, preview_size=None) -> bool:
        """
        Refresh inputs and recompute the transform if anything changed.

        Returns:
            bool: True if the transform was recomputed
        """
        if orientation is not None:
            self.orientation = DeviceOrientation.parse(orientation)
        if viewport_size is not None:
            self.viewport_size = _require_size("viewport size", viewport_size)
            if preview_size is None and not self._explicit_preview:
                self.preview_size = self._derive_preview_size(self.viewport_size)
        if preview_size is not None:
            self.preview_size = _require_size("preview size", preview_size)
            self._explicit_preview = True
        return self._recompute_if_needed()

    def _recompute_if_needed(self) -> bool:
        key = (self.orientation, self.viewport_size, self.preview_size)
        if key == self._key:
            return False

        rotation, sx, sy = orientation_parameters(self.orientation, self.capture_size, self.preview_size)
        capture_w, capture_h = self.capture_size
        view_w, view_h = self.viewport_size

        self.rotation_degrees = rotation
        self.scale = (sx, sy)
        self._overlay_matrix = (
            translation_matrix(view_w / 2.0, view_h / 2.0)
            @ rotation_matrix(rotation)
            @ scale_matrix(sx, sy)
            @ translation_matrix(-capture_w / 2.0, -capture_h / 2.0)
        )
        self._matrix = self._overlay_matrix @ self._camera_matrix
        self._inverse = np.linalg.inv(self._matrix)
        self._key = key
        self.recompute_count += 1
        logger.debug(
            "Overlay transform recomputed: orientation=%s rotation=%.0f scale=(%.4f, %.4f)",
            self.orientation.name, rotation, sx, sy,
        )
        return True

    @property
    def camera_matrix(self) -> np.ndarray:
        """Normalized -> capture pixel matrix."""
        return self._camera_matrix.copy()

    @property
    def overlay_matrix(self) -> np.ndarray:
        """Capture pixel -> overlay matrix (rotation and anisotropic scale)."""
        return self._overlay_matrix.copy()

    @property
    def matrix(self) -> np.ndarray:
        """Full normalized -> overlay matrix."""
        return self._matrix.copy()

    def to_capture(self, points) -> np.ndarray:
        return apply_transform(self._camera_matrix, points)

    def to_overlay(self, points) -> np.ndarray:
        """Map normalized bottom-left-origin points into overlay space."""
        return apply_transform(self._matrix, points)

    def from_overlay(self, points) -> np.ndarray:
        """Inverse of :meth:`to_overlay`."""
        return apply_transform(self._inverse, points)
