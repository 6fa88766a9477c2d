"""
Tests for frame delivery and the pipeline worker.

Tests cover:
- FrameGate drop-on-busy policy and blocking put
- One full worker turn (pipeline, overlay emission, publication)
- Control messages applied at the start of the next turn
- OverlayChannel discarding stale updates
- Worker thread start/stop
"""

import threading
import time

import pytest

from rect_tracker.core.diagnostics import MemoryDiagnosticsSink
from rect_tracker.core.geometry import OverlayGeometry
from rect_tracker.core.overlay import OverlayEmitter, PathBatch
from rect_tracker.core.pipeline import FramePipeline
from rect_tracker.core.types import DeviceOrientation, PipelineState
from rect_tracker.core.worker import OverlayChannel, OverlayUpdate, PipelineWorker, ThresholdChanged
from rect_tracker.utils.frame_source import FrameGate
from tests.helpers.fakes import ScriptedDetector, ScriptedTracker, make_frame, make_observation


def _worker(detector=None, tracker=None, gate=None, **kwargs):
    pipeline = FramePipeline(
        detector or ScriptedDetector([[make_observation()]]),
        tracker or ScriptedTracker(),
        {"ENABLE_REFINEMENT": False},
        diagnostics=MemoryDiagnosticsSink(),
    )
    emitter = OverlayEmitter(OverlayGeometry((640, 480), (390, 844)))
    return PipelineWorker(pipeline, emitter, gate or FrameGate(), **kwargs)


class TestFrameGate:
    def test_offer_then_take(self):
        gate = FrameGate()
        frame = make_frame(1.0)
        assert gate.offer(frame) is True
        assert gate.take(timeout=0.1) is frame

    def test_drops_when_frame_pending(self):
        gate = FrameGate()
        assert gate.offer(make_frame(1.0))
        assert gate.offer(make_frame(2.0)) is False
        assert gate.dropped == 1
        assert gate.take(timeout=0.1).timestamp == 1.0

    def test_drops_while_consumer_busy(self):
        gate = FrameGate()
        gate.offer(make_frame(1.0))
        gate.take(timeout=0.1)
        assert gate.idle is False
        assert gate.offer(make_frame(2.0)) is False
        gate.done()
        assert gate.idle is True
        assert gate.offer(make_frame(3.0)) is True
        assert gate.offered == 3
        assert gate.dropped == 1

    def test_take_times_out(self):
        assert FrameGate().take(timeout=0.01) is None

    def test_closed_gate(self):
        gate = FrameGate()
        gate.close()
        assert gate.offer(make_frame()) is False
        assert gate.take(timeout=0.01) is None
        assert gate.closed

    def test_put_waits_for_consumer(self):
        gate = FrameGate()
        gate.offer(make_frame(1.0))
        gate.take(timeout=0.1)
        assert gate.put(make_frame(2.0), timeout=0.01) is False

        timer = threading.Timer(0.05, gate.done)
        timer.start()
        try:
            assert gate.put(make_frame(3.0), timeout=2.0) is True
        finally:
            timer.cancel()
        assert gate.take(timeout=0.1).timestamp == 3.0
        assert gate.dropped == 0


class TestOverlayChannel:
    @staticmethod
    def _update(turn):
        return OverlayUpdate(turn=turn, frame_timestamp=float(turn), state=PipelineState.SEEKING, batch=PathBatch())

    def test_latest_returns_newest_and_discards_older(self):
        channel = OverlayChannel()
        for turn in (1, 2, 3):
            channel.publish(self._update(turn))
        assert channel.latest().turn == 3
        assert channel.discarded == 2
        assert channel.latest() is None

    def test_out_of_order_update_is_stale(self):
        channel = OverlayChannel()
        channel.publish(self._update(5))
        channel.latest()
        channel.publish(self._update(4))
        assert channel.latest() is None
        assert channel.discarded == 1


class TestPipelineWorker:
    def test_process_runs_one_turn(self):
        outputs = []
        worker = _worker(on_output=lambda output, update: outputs.append((output, update)))
        frame = make_frame(0.5)
        update = worker.process(frame)

        assert update.turn == 1
        assert update.frame_timestamp == 0.5
        assert update.state == PipelineState.TRACKING
        assert len(update.batch) == 1
        assert update.overlay_matrix.shape == (3, 3)
        assert worker.channel.latest() is update
        assert outputs[0][1] is update

    def test_turns_follow_frame_order(self):
        worker = _worker(tracker=ScriptedTracker([[0.9], [0.9]]))
        turns = [worker.process(make_frame(t)).turn for t in (0.0, 1.0, 2.0)]
        assert turns == [1, 2, 3]

    def test_keep_images_false(self):
        worker = _worker(keep_images=False)
        update = worker.process(make_frame(0.0))
        assert update.image is None

    def test_resize_applied_next_turn(self):
        worker = _worker()
        geometry = worker.emitter.geometry
        worker.resize_viewport((480, 640))
        assert geometry.viewport_size == (390.0, 844.0)
        worker.process(make_frame(0.0))
        assert geometry.viewport_size == (480.0, 640.0)

    def test_invalid_resize_is_reported_not_raised(self):
        worker = _worker()
        worker.resize_viewport((0, 0))
        worker.process(make_frame(0.0))
        assert worker.emitter.geometry.viewport_size == (390.0, 844.0)
        assert len(worker.pipeline.diagnostics.by_stage("geometry")) == 1

    def test_threshold_and_reset_messages(self):
        worker = _worker(detector=ScriptedDetector([[make_observation()], [make_observation()]]))
        worker.process(make_frame(0.0))
        worker.set_confidence_threshold(0.6)
        worker.reset()
        update = worker.process(make_frame(1.0))
        assert worker.pipeline.confidence_threshold == 0.6
        # Reset happened before the frame, so this frame was a detection frame
        assert update.state == PipelineState.TRACKING
        assert len(worker.pipeline.detector.calls) == 2

    def test_out_of_range_threshold(self):
        worker = _worker()
        with pytest.raises(ValueError):
            worker.set_confidence_threshold(1.5)
        # A message posted directly is ignored and the worker keeps going
        worker.post(ThresholdChanged(-1.0))
        update = worker.process(make_frame(0.0))
        assert worker.pipeline.confidence_threshold == 0.3
        assert update.state == PipelineState.TRACKING

    def test_orientation_override(self):
        worker = _worker()
        worker.override_orientation(DeviceOrientation.ROTATED_LEFT)
        worker.process(make_frame(0.0))
        assert worker.emitter.geometry.rotation_degrees == 90.0
        worker.override_orientation(None)
        worker.process(make_frame(1.0))
        assert worker.emitter.geometry.rotation_degrees == 0.0

    def test_thread_processes_offered_frames(self):
        gate = FrameGate()
        worker = _worker(gate=gate)
        worker.start()
        try:
            assert gate.put(make_frame(0.0), timeout=1.0)
            deadline = time.monotonic() + 2.0
            while worker.turn < 1 and time.monotonic() < deadline:
                time.sleep(0.01)
        finally:
            worker.stop()
        assert worker.turn == 1
        assert worker.exception is None
        assert not worker.thread.is_alive()

    def test_worker_exits_when_gate_closes(self):
        gate = FrameGate()
        worker = _worker(gate=gate, poll_interval=0.01)
        worker.start()
        gate.close()
        worker.join(timeout=2.0)
        assert not worker.thread.is_alive()

