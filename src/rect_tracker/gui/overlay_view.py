"""
Qt preview widget that shows the camera image with the rectangle overlay.
"""

import logging

import cv2
import numpy as np
from PySide6.QtCore import Qt, QTimer
from PySide6.QtGui import QColor, QImage, QPainter, QPainterPath, QPen, QTransform
from PySide6.QtWidgets import QWidget

from ..core.overlay import OverlayStyle

logger = logging.getLogger(__name__)

_LINE_JOINS = {
    "round": Qt.RoundJoin,
    "miter": Qt.MiterJoin,
    "bevel": Qt.BevelJoin,
}


def build_painter_path(batch) -> QPainterPath:
    """
    Concatenate every path of a batch into one QPainterPath.

    Each path starts with its move-to vertex (the last corner) followed by
    one line per corner, which closes the polygon.
    """
    path = QPainterPath()
    for vertices in batch:
        if len(vertices) == 0:
            continue
        path.moveTo(float(vertices[0][0]), float(vertices[0][1]))
        for x, y in vertices[1:]:
            path.lineTo(float(x), float(y))
    return path


def matrix_to_qtransform(matrix) -> QTransform:
    """3x3 affine matrix (column-vector convention) -> QTransform."""
    m = np.asarray(matrix, dtype=np.float64)
    return QTransform(m[0, 0], m[1, 0], m[0, 1], m[1, 1], m[0, 2], m[1, 2])


def rgba_to_qcolor(rgba) -> QColor:
    r, g, b, alpha = rgba
    return QColor(int(r), int(g), int(b), int(round(float(alpha) * 255)))


def image_to_qimage(image):
    """Convert a BGR/gray numpy image into an owned QImage."""
    if image is None:
        return None
    if image.ndim == 2:
        rgb = cv2.cvtColor(image, cv2.COLOR_GRAY2RGB)
    else:
        rgb = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)
    rgb = np.ascontiguousarray(rgb)
    h, w, ch = rgb.shape
    bytes_per_line = ch * w
    return QImage(rgb.data, w, h, bytes_per_line, QImage.Format_RGB888).copy()


class OverlayView(QWidget):
    """
    Preview widget driven by an ``OverlayChannel``.

    A timer on the UI thread takes the newest overlay update from the channel
    and schedules a repaint. Widget resizes are reported through
    ``on_resize`` (normally ``PipelineWorker.resize_viewport``).
    """

    def __init__(self, channel, on_resize=None, style=None, poll_ms=15, parent=None):
        super().__init__(parent)
        self.channel = channel
        self.on_resize = on_resize
        self.style = style or OverlayStyle()
        self.current = None
        self._image = None
        self.setMinimumSize(160, 160)

        self._timer = QTimer(self)
        self._timer.timeout.connect(self.poll)
        self._timer.start(poll_ms)

    def poll(self) -> bool:
        """Pick up the newest update, if any. Returns True when a repaint was scheduled."""
        update = self.channel.latest()
        if update is None:
            return False
        self.current = update
        self._image = image_to_qimage(update.image)
        self.update()
        return True

    def resizeEvent(self, event):
        super().resizeEvent(event)
        size = event.size()
        if self.on_resize is not None and size.width() > 0 and size.height() > 0:
            self.on_resize((size.width(), size.height()))

    def _pen(self, rgba, width):
        pen = QPen(rgba_to_qcolor(rgba))
        pen.setWidthF(width)
        pen.setJoinStyle(_LINE_JOINS.get(self.style.line_join, Qt.RoundJoin))
        return pen

    def paintEvent(self, event):
        painter = QPainter(self)
        painter.setRenderHint(QPainter.Antialiasing)
        painter.fillRect(self.rect(), Qt.black)

        update = self.current
        if update is None:
            painter.end()
            return

        if self._image is not None and update.overlay_matrix is not None:
            painter.setTransform(matrix_to_qtransform(update.overlay_matrix))
            painter.drawImage(0, 0, self._image)
            painter.resetTransform()

        path = build_painter_path(update.batch)
        if not path.isEmpty():
            style = self.style
            if style.shadow_opacity > 0 and style.shadow_radius > 0:
                painter.setPen(self._pen((0, 0, 0, style.shadow_opacity * 0.5),
                                         style.line_width + style.shadow_radius))
                painter.setBrush(Qt.NoBrush)
                painter.drawPath(path)
            painter.setPen(self._pen(style.stroke_rgba, style.line_width))
            painter.setBrush(rgba_to_qcolor(style.fill_rgba))
            painter.drawPath(path)

        painter.setPen(QColor(255, 255, 255))
        painter.drawText(10, 20, update.state.value)
        painter.end()
