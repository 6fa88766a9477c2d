"""
Tests for the PySide6 overlay helpers. Skipped when PySide6 is unavailable.
"""

import numpy as np
import pytest

pytest.importorskip("PySide6.QtWidgets")

from rect_tracker.core.geometry import OverlayGeometry  # noqa: E402
from rect_tracker.core.overlay import OverlayEmitter, PathBatch  # noqa: E402
from rect_tracker.gui.overlay_view import (  # noqa: E402
    build_painter_path,
    image_to_qimage,
    matrix_to_qtransform,
    rgba_to_qcolor,
)
from tests.helpers.fakes import make_observation  # noqa: E402


def _batch(n=1):
    emitter = OverlayEmitter(OverlayGeometry((640, 480), (390, 844), preview_size=(390, 844)))
    return emitter.build([make_observation(x=0.1 + 0.4 * i, w=0.3) for i in range(n)])


def test_path_moves_to_last_corner_then_lines_through_all() -> None:
    batch = _batch()
    path = build_painter_path(batch)
    assert path.elementCount() == 5

    first = path.elementAt(0)
    assert first.isMoveTo()
    expected = batch.paths[0]
    assert (first.x, first.y) == pytest.approx(tuple(expected[0]))
    for i in range(1, 5):
        element = path.elementAt(i)
        assert element.isLineTo()
        assert (element.x, element.y) == pytest.approx(tuple(expected[i]))


def test_multiple_polygons_in_one_path() -> None:
    path = build_painter_path(_batch(2))
    assert path.elementCount() == 10
    assert path.elementAt(5).isMoveTo()


def test_empty_batch() -> None:
    assert build_painter_path(PathBatch()).isEmpty()


def test_matrix_to_qtransform_maps_like_numpy() -> None:
    geometry = OverlayGeometry((640, 480), (390, 844), preview_size=(390, 844))
    transform = matrix_to_qtransform(geometry.overlay_matrix)
    x, y = transform.map(640.0, 0.0)
    assert (x, y) == pytest.approx((390.0, 0.0))


def test_rgba_to_qcolor() -> None:
    color = rgba_to_qcolor((0, 0, 255, 0.7))
    assert (color.red(), color.green(), color.blue()) == (0, 0, 255)
    assert color.alpha() == round(0.7 * 255)


def test_image_to_qimage() -> None:
    image = np.zeros((10, 20, 3), dtype=np.uint8)
    image[..., 2] = 255  # red in BGR
    qimage = image_to_qimage(image)
    assert (qimage.width(), qimage.height()) == (20, 10)
    assert qimage.pixelColor(0, 0).red() == 255
    assert image_to_qimage(None) is None
