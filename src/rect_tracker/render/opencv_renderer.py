"""
OpenCV overlay renderer for headless runs and video export.
"""

import logging
import threading

import cv2
import numpy as np

from ..core.overlay import OverlayStyle, PathBatch

logger = logging.getLogger(__name__)


def rgba_to_bgr(rgba):
    """Split an (r, g, b, alpha) tuple into an OpenCV BGR color and alpha."""
    r, g, b, alpha = rgba
    return (int(b), int(g), int(r)), float(alpha)


def _blend(canvas, layer, alpha):
    if alpha >= 1.0:
        return layer
    return cv2.addWeighted(layer, alpha, canvas, 1.0 - alpha, 0)


class OpenCVOverlayRenderer:
    """
    Draws path batches onto BGR images.

    ``render`` only records the batch; ``compose`` warps a capture image into
    overlay space and draws the most recent batch on top of it.
    """

    def __init__(self, geometry, style=None):
        """
        Args:
            geometry (OverlayGeometry): Transform shared with the emitter
            style (OverlayStyle): Stroke/fill settings
        """
        self.geometry = geometry
        self.style = style or OverlayStyle()
        self._lock = threading.Lock()
        self._batch = PathBatch()
        self.batches_rendered = 0

    def render(self, batch) -> None:
        with self._lock:
            self._batch = batch
            self.batches_rendered += 1

    @property
    def last_batch(self) -> PathBatch:
        with self._lock:
            return self._batch

    def canvas_size(self):
        width, height = self.geometry.viewport_size
        return int(round(width)), int(round(height))

    def warp_image(self, image) -> np.ndarray:
        """Map a capture image into overlay space with the current overlay matrix."""
        width, height = self.canvas_size()
        if image is None:
            return np.zeros((height, width, 3), dtype=np.uint8)
        if image.ndim == 2:
            image = cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
        matrix = self.geometry.overlay_matrix[:2, :]
        return cv2.warpAffine(image, matrix, (width, height), flags=cv2.INTER_LINEAR)

    def draw(self, canvas, batch=None) -> np.ndarray:
        """
        Draw ``batch`` (the last rendered batch by default) onto a copy of ``canvas``.

        Returns:
            np.ndarray: New BGR image with the overlay applied
        """
        batch = self.last_batch if batch is None else batch
        out = canvas.copy()
        if batch is None or batch.is_empty:
            return out

        polygons = [np.round(p).astype(np.int32).reshape(-1, 1, 2) for p in batch.polygons()]
        thickness = max(1, int(round(self.style.line_width)))
        line_type = cv2.LINE_AA if self.style.line_join == "round" else cv2.LINE_8

        if self.style.shadow_opacity > 0 and self.style.shadow_radius > 0:
            mask = np.zeros(out.shape[:2], dtype=np.uint8)
            cv2.polylines(mask, polygons, isClosed=True, color=255, thickness=thickness, lineType=line_type)
            ksize = 2 * int(round(self.style.shadow_radius)) + 1
            mask = cv2.GaussianBlur(mask, (ksize, ksize), 0)
            shade = (mask.astype(np.float32) / 255.0 * self.style.shadow_opacity)[..., None]
            out = (out.astype(np.float32) * (1.0 - shade)).astype(np.uint8)

        fill_color, fill_alpha = rgba_to_bgr(self.style.fill_rgba)
        if fill_alpha > 0:
            layer = out.copy()
            cv2.fillPoly(layer, polygons, fill_color, lineType=line_type)
            out = _blend(out, layer, fill_alpha)

        stroke_color, stroke_alpha = rgba_to_bgr(self.style.stroke_rgba)
        if stroke_alpha > 0:
            layer = out.copy()
            cv2.polylines(layer, polygons, isClosed=True, color=stroke_color,
                          thickness=thickness, lineType=line_type)
            out = _blend(out, layer, stroke_alpha)
        return out

    def compose(self, image, batch=None) -> np.ndarray:
        """Warp ``image`` into overlay space and draw the overlay on it."""
        return self.draw(self.warp_image(image), batch)
