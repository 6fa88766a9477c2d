"""
Pipeline worker thread and the message channels around it.

The worker is the single writer of the track set, the cached overlay
geometry and the last emitted path batch. Other threads talk to it only
through messages:

- control messages (viewport resize, threshold change, reset) are posted to
  the worker and drained at the start of its next turn;
- overlay updates are published to an ``OverlayChannel`` that the UI
  context drains; stale updates are discarded by turn number.
"""

import logging
import queue
import threading
from dataclasses import dataclass
from typing import Any, Optional

from .errors import GeometryConfigurationError
from .overlay import PathBatch
from .types import DeviceOrientation, DiagnosticEvent, PipelineState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OverlayUpdate:
    """Everything the UI needs to draw one processed frame."""

    turn: int
    frame_timestamp: float
    state: PipelineState
    batch: PathBatch
    image: Any = None
    overlay_matrix: Any = None  # capture pixels -> overlay, for drawing the image


@dataclass(frozen=True)
class ViewportResized:
    size: tuple
    preview_size: Optional[tuple] = None


@dataclass(frozen=True)
class ThresholdChanged:
    value: float


@dataclass(frozen=True)
class OrientationOverride:
    orientation: Optional[DeviceOrientation] = None  # None follows the frames again


@dataclass(frozen=True)
class ResetTracks:
    pass


class OverlayChannel:
    """Single-consumer channel of overlay updates."""

    def __init__(self):
        self._queue = queue.SimpleQueue()
        self.last_turn = -1
        self.discarded = 0

    def publish(self, update: OverlayUpdate) -> None:
        self._queue.put(update)

    def drain(self):
        """Return all pending updates in publish order."""
        items = []
        while True:
            try:
                items.append(self._queue.get_nowait())
            except queue.Empty:
                return items

    def latest(self) -> Optional[OverlayUpdate]:
        """
        Newest pending update, or None if nothing newer than the last one
        returned. Older and out-of-order updates are discarded.
        """
        newest = None
        for update in self.drain():
            if update.turn <= self.last_turn or (newest is not None and update.turn <= newest.turn):
                self.discarded += 1
                continue
            if newest is not None:
                self.discarded += 1
            newest = update
        if newest is not None:
            self.last_turn = newest.turn
        return newest


class PipelineWorker:
    """
    Runs the frame pipeline on its own thread, one frame per turn.

    Example:
        worker = PipelineWorker(pipeline, emitter, gate, channel)
        worker.start()
        ...
        worker.stop()
    """

    def __init__(self, pipeline, emitter, gate, channel=None, on_output=None,
                 keep_images=True, poll_interval=0.1):
        """
        Args:
            pipeline (FramePipeline): Owned pipeline
            emitter (OverlayEmitter): Owned overlay emitter
            gate (FrameGate): Source of frames
            channel (OverlayChannel): Destination of overlay updates
            on_output: Optional callback(FrameOutput, OverlayUpdate), called on the worker thread
            keep_images (bool): Attach frame images to overlay updates
            poll_interval (float): Seconds to wait for a frame before re-checking control messages
        """
        self.pipeline = pipeline
        self.emitter = emitter
        self.gate = gate
        self.channel = channel or OverlayChannel()
        self.on_output = on_output
        self.keep_images = keep_images
        self.poll_interval = poll_interval
        self.turn = 0
        self.orientation_override = None
        self.exception = None
        self._control = queue.SimpleQueue()
        self._stop_requested = threading.Event()
        self.thread = None

    # --- messages from other threads ---

    def post(self, message) -> None:
        self._control.put(message)

    def resize_viewport(self, size, preview_size=None) -> None:
        self.post(ViewportResized(tuple(size), None if preview_size is None else tuple(preview_size)))

    def set_confidence_threshold(self, value: float) -> None:
        value = float(value)
        if not 0.0 <= value <= 1.0:
            raise ValueError(f"CONFIDENCE_THRESHOLD must be in [0, 1], got {value}")
        self.post(ThresholdChanged(value))

    def override_orientation(self, orientation=None) -> None:
        self.post(OrientationOverride(None if orientation is None else DeviceOrientation.parse(orientation)))

    def reset(self) -> None:
        self.post(ResetTracks())

    # --- worker thread ---

    def _drain_control(self) -> None:
        while True:
            try:
                message = self._control.get_nowait()
            except queue.Empty:
                return
            self._apply(message)

    def _apply(self, message) -> None:
        if isinstance(message, ViewportResized):
            try:
                self.emitter.geometry.update(
                    viewport_size=message.size, preview_size=message.preview_size
                )
            except GeometryConfigurationError as exc:
                self.pipeline.diagnostics.report(
                    DiagnosticEvent(
                        stage=exc.stage,
                        message=f"Ignoring viewport resize: {exc}",
                        error_type=type(exc).__name__,
                        details={"size": message.size},
                    )
                )
        elif isinstance(message, ThresholdChanged):
            try:
                self.pipeline.set_confidence_threshold(message.value)
            except ValueError as exc:
                logger.warning("Ignoring threshold change: %s", exc)
        elif isinstance(message, ResetTracks):
            self.pipeline.reset()
        elif isinstance(message, OrientationOverride):
            self.orientation_override = message.orientation
            logger.info("Orientation override: %s", "off" if message.orientation is None else message.orientation.name)
        else:
            logger.warning("Unknown control message: %r", message)

    def process(self, frame) -> OverlayUpdate:
        """Run one full turn for ``frame``: control messages, pipeline, overlay."""
        self._drain_control()
        output = self.pipeline.advance(frame)
        orientation = self.orientation_override or frame.orientation
        batch = self.emitter.emit(
            output.observations, orientation=orientation, frame_timestamp=frame.timestamp
        )
        self.turn += 1
        update = OverlayUpdate(
            turn=self.turn,
            frame_timestamp=frame.timestamp,
            state=output.state,
            batch=batch,
            image=frame.image if self.keep_images else None,
            overlay_matrix=self.emitter.geometry.overlay_matrix,
        )
        self.channel.publish(update)
        if self.on_output is not None:
            self.on_output(output, update)
        return update

    def run(self) -> None:
        logger.debug("Pipeline worker running")
        try:
            while not self._stop_requested.is_set():
                self._drain_control()
                frame = self.gate.take(timeout=self.poll_interval)
                if frame is None:
                    if self.gate.closed:
                        break
                    continue
                try:
                    self.process(frame)
                finally:
                    self.pipeline.stats.frames_dropped = self.gate.dropped
                    self.gate.done()
        except Exception as e:
            self.exception = e
            logger.error("Exception in pipeline worker: %s", e, exc_info=True)
        logger.debug("Pipeline worker finished after %d turn(s)", self.turn)

    def start(self) -> None:
        if self.thread is not None and self.thread.is_alive():
            logger.warning("PipelineWorker already started")
            return
        self._stop_requested.clear()
        self.thread = threading.Thread(target=self.run, name="frame-pipeline", daemon=True)
        self.thread.start()

    def stop(self, timeout=2.0) -> None:
        self._stop_requested.set()
        if self.thread and self.thread.is_alive():
            self.thread.join(timeout=timeout)
            if self.thread.is_alive():
                logger.warning("Pipeline worker did not stop cleanly")

    def join(self, timeout=None) -> None:
        if self.thread is not None:
            self.thread.join(timeout)
