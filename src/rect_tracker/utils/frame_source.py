"""
Frame delivery with a discard-late policy.

A capture thread reads frames from an OpenCV ``VideoCapture`` and offers them
to a one-slot ``FrameGate``. The pipeline worker takes frames from the gate.
While the worker is still busy with a previous frame (or one is already
waiting), new frames are dropped instead of queued, so the effective
processing rate degrades under load but latency never grows.
"""

import logging
import threading
import time

import cv2

from ..core.types import DeviceOrientation, DiagnosticEvent, Frame

logger = logging.getLogger(__name__)


class FrameGate:
    """
    One-slot mailbox between a producer and a single consumer.

    Example:
        gate = FrameGate()
        gate.offer(frame)          # producer thread
        frame = gate.take(0.5)     # consumer thread
        ...process...
        gate.done()
    """

    def __init__(self):
        self._cond = threading.Condition()
        self._pending = None
        self._busy = False
        self._closed = False
        self.offered = 0
        self.dropped = 0

    def offer(self, frame) -> bool:
        """
        Hand a frame to the consumer.

        Returns:
            bool: False if the frame was discarded because the consumer is
                  busy or a frame is already waiting
        """
        with self._cond:
            self.offered += 1
            if self._closed or self._busy or self._pending is not None:
                self.dropped += 1
                return False
            self._pending = frame
            self._cond.notify_all()
            return True

    def put(self, frame, timeout=None) -> bool:
        """Blocking variant of :meth:`offer` that waits for the consumer instead of dropping."""
        with self._cond:
            ready = self._cond.wait_for(
                lambda: self._closed or (not self._busy and self._pending is None), timeout
            )
            if not ready or self._closed:
                return False
            self.offered += 1
            self._pending = frame
            self._cond.notify_all()
            return True

    def take(self, timeout=None):
        """
        Wait for the next frame and mark the consumer busy.

        Returns:
            Frame or None: None on timeout or when the gate is closed
        """
        with self._cond:
            if not self._cond.wait_for(lambda: self._pending is not None or self._closed, timeout):
                return None
            if self._pending is None:
                return None
            frame, self._pending = self._pending, None
            self._busy = True
            return frame

    def done(self) -> None:
        """Mark the consumer idle again so the next frame is accepted."""
        with self._cond:
            self._busy = False
            self._cond.notify_all()

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._pending = None
            self._cond.notify_all()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def idle(self) -> bool:
        """True when no frame is waiting and the consumer is not busy."""
        with self._cond:
            return self._pending is None and not self._busy


class CaptureFrameSource:
    """
    Background thread that reads a capture device into a FrameGate.

    Example:
        gate = FrameGate()
        source = CaptureFrameSource(cv2.VideoCapture(0), gate)
        source.start()
        ...
        source.stop()
    """

    def __init__(self, video_capture, gate, orientation_provider=None,
                 intrinsics=None, realtime=True, clock=time.monotonic, diagnostics=None):
        """
        Args:
            video_capture: OpenCV VideoCapture (or any object with ``read()``)
            gate (FrameGate): Destination for captured frames
            orientation_provider: Callable returning the current DeviceOrientation
            intrinsics: Optional 3x3 camera matrix attached to every frame
            realtime (bool): When False, wait for the gate to accept each frame
                instead of dropping (useful for offline video files)
            clock: Timestamp source
            diagnostics: Optional sink notified when the capture thread fails
        """
        self.cap = video_capture
        self.gate = gate
        self.orientation_provider = orientation_provider or (lambda: DeviceOrientation.UPRIGHT)
        self.intrinsics = intrinsics
        self.realtime = realtime
        self.clock = clock
        self.diagnostics = diagnostics
        self.stop_requested = threading.Event()
        self.finished = threading.Event()
        self.exception = None
        self.frames_read = 0
        self.thread = None
        self._started = False

    def resolution(self):
        """Capture resolution reported by the device, as (width, height)."""
        width = int(self.cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        height = int(self.cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        return width, height

    def start(self) -> None:
        if self._started:
            logger.warning("CaptureFrameSource already started")
            return
        self.stop_requested.clear()
        self.finished.clear()
        self.thread = threading.Thread(target=self._capture_loop, name="frame-capture", daemon=True)
        self.thread.start()
        self._started = True
        logger.debug("CaptureFrameSource started (realtime=%s)", self.realtime)

    def _capture_loop(self):
        try:
            while not self.stop_requested.is_set():
                ret, image = self.cap.read()
                if not ret:
                    logger.info("Capture ended after %d frame(s)", self.frames_read)
                    break
                self.frames_read += 1
                frame = Frame(
                    image=image,
                    timestamp=self.clock(),
                    orientation=self.orientation_provider(),
                    intrinsics=self.intrinsics,
                )
                if self.realtime:
                    self.gate.offer(frame)
                else:
                    while not self.stop_requested.is_set() and not self.gate.put(frame, timeout=0.1):
                        if self.gate.closed:
                            return
        except Exception as e:
            self.exception = e
            logger.error("Exception in capture thread: %s", e, exc_info=True)
            if self.diagnostics is not None:
                self.diagnostics.report(
                    DiagnosticEvent(
                        stage="capture",
                        message=str(e),
                        error_type=type(e).__name__,
                        details={"frames_read": self.frames_read},
                    )
                )
        finally:
            self.finished.set()

    def stop(self) -> None:
        if not self._started:
            return
        logger.debug("Stopping CaptureFrameSource...")
        self.stop_requested.set()
        if self.thread and self.thread.is_alive():
            self.thread.join(timeout=2.0)
            if self.thread.is_alive():
                logger.warning("Capture thread did not stop cleanly")
        self._started = False

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
        return False
