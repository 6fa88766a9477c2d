"""
Detect/track controller for the live rectangle pipeline.

The pipeline is a two-state machine driven by a single ``advance(frame)``
entry point:

- SEEKING: no active tracks. The frame goes to the detector and every
  returned observation seeds a new track.
- TRACKING: at least one track. All live tracks advance together against the
  same frame through one batched tracker call, then the eviction policy of
  ``TrackSet.advance`` rebuilds the set. Surviving tracks get one refinement
  detection each before the observation set is emitted.

Capability failures never abort the session: they are reported to the
diagnostics sink and only degrade the current frame.
"""

import inspect
import logging
import math
import numbers
from concurrent.futures import Future
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .diagnostics import LoggingDiagnosticsSink, PipelineStats
from .errors import DetectionError, RectTrackerError, RefinementError, TrackingError
from .geometry import box_iou, expand_region
from .tracks import Track, TrackSet, TrackUpdate
from .types import DiagnosticEvent, Frame, PipelineState, RectangleObservation

logger = logging.getLogger(__name__)


def accepts_region(detector) -> bool:
    """True if ``detector.detect`` takes a ``region`` keyword argument."""
    try:
        parameters = inspect.signature(detector.detect).parameters.values()
    except (AttributeError, TypeError, ValueError):
        return False
    return any(
        p.name == "region" or p.kind == inspect.Parameter.VAR_KEYWORD for p in parameters
    )


def checked_observations(error_cls, candidates) -> List[RectangleObservation]:
    """
    Validate detector output.

    Raises:
        error_cls: if the output is not a sequence of RectangleObservation
    """
    try:
        observations = list(candidates)
    except TypeError as exc:
        raise error_cls(f"Detector returned {type(candidates).__name__}, not a sequence") from exc
    for item in observations:
        if not isinstance(item, RectangleObservation):
            raise error_cls(f"Detector returned {type(item).__name__}, not a RectangleObservation")
    return observations


def checked_confidence(error_cls, value) -> float:
    """Return ``value`` as a finite float or raise ``error_cls``."""
    try:
        confidence = float(value)
    except (TypeError, ValueError) as exc:
        raise error_cls(f"Invalid confidence {value!r}") from exc
    if not math.isfinite(confidence):
        raise error_cls(f"Invalid confidence {value!r}")
    return confidence


@dataclass(frozen=True)
class FrameOutput:
    """Result of one pipeline turn."""

    frame_timestamp: float
    state: PipelineState
    observations: Tuple[RectangleObservation, ...]
    tracks: Tuple[Track, ...]
    stage: str  # "detection" or "tracking"


class FramePipeline:
    """
    Per-frame detect/track state machine.

    Not thread-safe: exactly one caller (the worker that owns it) may call
    ``advance``. Frames must be passed in arrival order.
    """

    def __init__(self, detector, tracker, params=None, diagnostics=None, stats=None):
        """
        Args:
            detector: Detector capability (``detect(frame)``, optionally with a
                ``region`` keyword used to scope refinement)
            tracker: Tracker capability (``track(frame, previous_observations)``)
            params (dict): Pipeline parameters (see ``rect_tracker.config``)
            diagnostics: Diagnostics sink; logs through ``logging`` by default
            stats (PipelineStats): Shared counters, created when omitted
        """
        self.detector = detector
        self.tracker = tracker
        self.params = dict(params or {})
        self.diagnostics = diagnostics or LoggingDiagnosticsSink()
        self.stats = stats or PipelineStats()
        self._tracks = TrackSet(self.params.get("CONFIDENCE_THRESHOLD", 0.3))
        self._detect_accepts_region = accepts_region(detector)
        if not self._detect_accepts_region:
            logger.info("Detector takes no region argument; refinement searches the full frame")

    @property
    def state(self) -> PipelineState:
        return PipelineState.SEEKING if self._tracks.is_empty else PipelineState.TRACKING

    @property
    def track_set(self) -> TrackSet:
        return self._tracks

    @property
    def confidence_threshold(self) -> float:
        return self._tracks.confidence_threshold

    def set_confidence_threshold(self, value: float) -> None:
        """Raises ValueError for a threshold outside [0, 1]; the current one is kept."""
        value = float(value)
        if not 0.0 <= value <= 1.0:
            raise ValueError(f"CONFIDENCE_THRESHOLD must be in [0, 1], got {value}")
        self.params["CONFIDENCE_THRESHOLD"] = value
        self._tracks = TrackSet(value, self._tracks.tracks)
        logger.info("Confidence threshold set to %.3f", value)

    def reset(self) -> None:
        """Drop all tracks and return to SEEKING."""
        self._tracks = TrackSet(self.confidence_threshold)

    def advance(self, frame: Frame) -> FrameOutput:
        """
        Process one frame and return the observation set to draw.

        Args:
            frame (Frame): The next frame in arrival order

        Returns:
            FrameOutput: emitted observations and the state after this frame
        """
        self.stats.frames_processed += 1
        if self.state == PipelineState.SEEKING:
            emitted = self._seek(frame)
            stage = "detection"
        else:
            emitted = self._track(frame)
            stage = "tracking"

        return FrameOutput(
            frame_timestamp=frame.timestamp,
            state=self.state,
            observations=tuple(obs for _, obs in emitted),
            tracks=tuple(track for track, _ in emitted),
            stage=stage,
        )

    # --- stages ---

    def _seek(self, frame) -> List[Tuple[Track, RectangleObservation]]:
        try:
            observations = checked_observations(
                DetectionError, self._call(DetectionError, self.detector.detect, frame)
            )
        except DetectionError as exc:
            self._report(exc, frame)
            observations = []

        self._tracks = self._tracks.seed(observations)
        self.stats.detections += len(observations)
        if observations:
            logger.info(
                "Detected %d rectangle(s) at t=%.3f, switching to tracking",
                len(observations), frame.timestamp,
            )
        return [(t, t.observation) for t in self._tracks]

    def _track(self, frame) -> List[Tuple[Track, RectangleObservation]]:
        live = self._tracks.live_tracks
        updates = []
        if live:
            try:
                results = self._call(
                    TrackingError, self.tracker.track, frame, [t.observation for t in live]
                )
                updates = self._match_results(live, results)
            except TrackingError as exc:
                self._report(exc, frame, tracks=[t.track_id for t in live])
                updates = []

        self._tracks = self._tracks.advance(updates)
        self.stats.tracker_updates += len(updates)
        if self._tracks.is_empty:
            logger.info("All tracks lost at t=%.3f, returning to seeking", frame.timestamp)
            return []

        emitted = []
        for track in self._tracks:
            if track.terminal:
                emitted.append((track, track.observation))
            else:
                emitted.append((track, self._refine(frame, track)))
        return emitted

    def _match_results(self, live, results) -> List[TrackUpdate]:
        """Raises TrackingError if any result is malformed; no update is applied then."""
        try:
            results = list(results)
        except TypeError as exc:
            raise TrackingError(f"Tracker returned {type(results).__name__}, not a sequence") from exc

        updates = []
        for result in results:
            try:
                index, observation, confidence = result
            except (TypeError, ValueError) as exc:
                raise TrackingError(f"Malformed tracker result {result!r}") from exc
            if isinstance(index, bool) or not isinstance(index, numbers.Integral):
                raise TrackingError(f"Tracker returned non-integer index {index!r}")
            if not 0 <= index < len(live):
                raise TrackingError(
                    f"Tracker returned index {index} for {len(live)} submitted observation(s)"
                )
            if not isinstance(observation, RectangleObservation):
                raise TrackingError(
                    f"Tracker returned {type(observation).__name__} for index {index}, "
                    "not a RectangleObservation"
                )
            confidence = checked_confidence(TrackingError, confidence)
            updates.append(TrackUpdate(live[int(index)], observation, confidence))
        return updates

    def _refine(self, frame, track: Track) -> RectangleObservation:
        if not self.params.get("ENABLE_REFINEMENT", True):
            return track.observation

        reference = track.observation.bounding_box()
        try:
            scope = self.params.get("REFINEMENT_SCOPE", "region")
            if scope == "full_frame" or not self._detect_accepts_region:
                candidates = self._call(RefinementError, self.detector.detect, frame)
            else:
                region = expand_region(reference, self.params.get("REFINEMENT_MARGIN", 0.1))
                candidates = self._call(RefinementError, self.detector.detect, frame, region=region)
            candidates = checked_observations(RefinementError, candidates)
        except RefinementError as exc:
            self._report(exc, frame, track=track.track_id)
            return track.observation

        min_iou = self.params.get("REFINEMENT_MIN_IOU", 0.3)
        best, best_iou = None, min_iou
        for candidate in candidates:
            iou = box_iou(reference, candidate.bounding_box())
            if iou >= best_iou:
                best, best_iou = candidate, iou

        if best is None:
            logger.debug("No refinement candidate for track %d", track.track_id)
            return track.observation
        self.stats.refinements += 1
        return best

    # --- helpers ---

    @staticmethod
    def _call(error_cls, fn, *args, **kwargs):
        """Invoke a capability and wait for it if it returns a future."""
        try:
            result = fn(*args, **kwargs)
            if isinstance(result, Future):
                result = result.result()
        except error_cls:
            raise
        except Exception as exc:
            raise error_cls(f"{type(exc).__name__}: {exc}") from exc
        return result if result is not None else []

    def _report(self, exc: RectTrackerError, frame: Optional[Frame], **details) -> None:
        self.stats.failures[exc.stage] += 1
        cause = exc.__cause__ if exc.__cause__ is not None else exc
        self.diagnostics.report(
            DiagnosticEvent(
                stage=exc.stage,
                message=str(exc),
                frame_timestamp=None if frame is None else frame.timestamp,
                error_type=type(cause).__name__,
                details=details,
            )
        )
