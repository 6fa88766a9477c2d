"""
Tests for CaptureFrameSource.

Tests cover:
- Frame stamping (timestamp, orientation, intrinsics)
- Lossless delivery for offline sources
- Drop-on-busy delivery for realtime sources
- End of stream, errors and cleanup
"""

import time

import cv2
import numpy as np

from rect_tracker.core.diagnostics import MemoryDiagnosticsSink
from rect_tracker.core.types import DeviceOrientation
from rect_tracker.utils.frame_source import CaptureFrameSource, FrameGate


class FakeCapture:
    """Minimal stand-in for cv2.VideoCapture."""

    def __init__(self, n_frames=5, width=64, height=48, fail_at=None):
        self.n_frames = n_frames
        self.width = width
        self.height = height
        self.fail_at = fail_at
        self.read_count = 0

    def read(self):
        if self.fail_at is not None and self.read_count == self.fail_at:
            raise IOError("device unplugged")
        if self.read_count >= self.n_frames:
            return False, None
        image = np.full((self.height, self.width, 3), self.read_count, dtype=np.uint8)
        self.read_count += 1
        return True, image

    def get(self, prop):
        if prop == cv2.CAP_PROP_FRAME_WIDTH:
            return float(self.width)
        if prop == cv2.CAP_PROP_FRAME_HEIGHT:
            return float(self.height)
        return 0.0


def _drain(gate, source, timeout=2.0):
    frames = []
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        frame = gate.take(timeout=0.05)
        if frame is not None:
            frames.append(frame)
            gate.done()
        elif source.finished.is_set() and gate.idle:
            break
    return frames


class TestCaptureFrameSource:
    def test_resolution(self):
        source = CaptureFrameSource(FakeCapture(width=320, height=240), FrameGate())
        assert source.resolution() == (320, 240)

    def test_offline_source_delivers_every_frame(self):
        gate = FrameGate()
        clock = iter(range(100)).__next__
        source = CaptureFrameSource(
            FakeCapture(n_frames=5),
            gate,
            orientation_provider=lambda: DeviceOrientation.ROTATED_LEFT,
            intrinsics=np.eye(3),
            realtime=False,
            clock=clock,
        )
        with source:
            frames = _drain(gate, source)

        assert [int(f.image[0, 0, 0]) for f in frames] == [0, 1, 2, 3, 4]
        assert [f.timestamp for f in frames] == [0, 1, 2, 3, 4]
        assert all(f.orientation == DeviceOrientation.ROTATED_LEFT for f in frames)
        np.testing.assert_array_equal(frames[0].intrinsics, np.eye(3))
        assert gate.dropped == 0
        assert source.frames_read == 5
        assert source.exception is None

    def test_realtime_source_drops_while_busy(self):
        gate = FrameGate()
        source = CaptureFrameSource(FakeCapture(n_frames=20), gate, realtime=True)
        source.start()
        try:
            # Consumer never calls take(); after the first frame every offer is dropped
            assert source.finished.wait(timeout=2.0)
        finally:
            source.stop()
        assert gate.offered == 20
        assert gate.dropped == 19

    def test_read_error_is_recorded(self):
        sink = MemoryDiagnosticsSink()
        source = CaptureFrameSource(FakeCapture(fail_at=2), FrameGate(), realtime=True, diagnostics=sink)
        source.start()
        try:
            assert source.finished.wait(timeout=2.0)
        finally:
            source.stop()
        assert isinstance(source.exception, IOError)
        assert source.frames_read == 2
        event, = sink.by_stage("capture")
        assert event.error_type == "OSError"
        assert event.details == {"frames_read": 2}

    def test_stop_is_idempotent(self):
        source = CaptureFrameSource(FakeCapture(), FrameGate())
        source.stop()
        source.start()
        source.stop()
        source.stop()
        assert not source.thread.is_alive()
