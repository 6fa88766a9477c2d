"""
Tests for overlay path emission.

Tests cover:
- Closed path construction (move to last corner, line to each corner)
- Fixed corner order and one path per observation
- Renderer hand-off and orientation refresh of the cached geometry
- Style construction from parameters
"""

import numpy as np

from rect_tracker.config import default_params
from rect_tracker.core.geometry import OverlayGeometry
from rect_tracker.core.overlay import OverlayEmitter, OverlayStyle, PathBatch, box_path
from rect_tracker.core.types import DeviceOrientation, RectangleObservation
from tests.helpers.fakes import RecordingRenderer, make_observation


def _emitter(renderer=None):
    geometry = OverlayGeometry((640, 480), (390, 844), preview_size=(390, 844))
    return OverlayEmitter(geometry, renderer)


def test_box_path_starts_at_last_point() -> None:
    points = [(0, 0), (1, 0), (1, 1), (0, 1)]
    path = box_path(points)
    assert path.shape == (5, 2)
    np.testing.assert_array_equal(path[0], (0, 1))
    np.testing.assert_array_equal(path[1:], points)


def test_box_path_empty() -> None:
    assert len(box_path([])) == 0


def test_unit_square_batch() -> None:
    observation = RectangleObservation.from_corners([(0, 0), (1, 0), (1, 1), (0, 1)])
    batch = _emitter().build([observation])
    assert len(batch) == 1
    np.testing.assert_allclose(
        batch.polygons()[0], [(0, 844), (390, 844), (390, 0), (0, 0)], atol=1e-9
    )
    np.testing.assert_allclose(batch.paths[0][0], (0, 0), atol=1e-9)


def test_one_path_per_observation() -> None:
    observations = [make_observation(x=0.1), make_observation(x=0.5), make_observation(y=0.6)]
    batch = _emitter().build(observations, frame_timestamp=3.5)
    assert len(batch) == 3
    assert batch.frame_timestamp == 3.5
    assert all(p.shape == (5, 2) for p in batch)


def test_empty_observations_give_empty_batch() -> None:
    renderer = RecordingRenderer()
    batch = _emitter(renderer).emit([])
    assert batch.is_empty
    assert renderer.batches == [batch]


def test_emit_hands_batch_to_renderer() -> None:
    renderer = RecordingRenderer()
    emitter = _emitter(renderer)
    batch = emitter.emit([make_observation()], frame_timestamp=1.0)
    assert renderer.batches == [batch]
    assert emitter.last_batch is batch


def test_emit_refreshes_orientation() -> None:
    emitter = _emitter()
    upright = emitter.emit([make_observation()]).paths[0]
    rotated = emitter.emit([make_observation()], orientation=DeviceOrientation.UPSIDE_DOWN).paths[0]
    assert emitter.geometry.rotation_degrees == 180.0
    assert not np.allclose(upright, rotated)


def test_style_from_params() -> None:
    params = default_params()
    params["OVERLAY_LINE_WIDTH"] = 4
    params["OVERLAY_STROKE_RGBA"] = [255, 0, 0, 1.0]
    style = OverlayStyle.from_params(params)
    assert style.line_width == 4.0
    assert style.stroke_rgba == (255, 0, 0, 1.0)
    assert style.fill_rgba == (255, 255, 255, 0.2)


def test_path_batch_defaults() -> None:
    batch = PathBatch()
    assert batch.is_empty
    assert batch.polygons() == []
