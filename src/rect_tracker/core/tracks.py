"""
Track records and the per-frame track pool.

A ``TrackSet`` is never mutated in place: ``seed`` and ``advance`` both build
a new set, so callers can keep iterating an old set while the next one is
produced.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, replace
from typing import Iterable, Iterator, List, NamedTuple, Optional, Sequence, Tuple

from .types import RectangleObservation

logger = logging.getLogger(__name__)

_track_ids = itertools.count(1)


@dataclass(frozen=True)
class Track:
    """One tracked rectangle, owned by value inside a TrackSet."""

    track_id: int
    observation: RectangleObservation
    confidence: float = 1.0
    terminal: bool = False
    age: int = 0  # tracker updates applied since the track was seeded


class TrackUpdate(NamedTuple):
    """Tracker output applied to one track."""

    track: Track
    observation: RectangleObservation
    confidence: float


class TrackSet:
    """
    Ordered pool of active tracks (insertion order = detection order).

    Applies the confidence eviction policy:

    - a track that is already terminal is dropped;
    - a track whose updated confidence is at or below the threshold is marked
      terminal and keeps its last good observation for one final emission;
    - otherwise the track takes the updated observation and confidence.
    """

    def __init__(self, confidence_threshold: float = 0.3, tracks: Iterable[Track] = ()):
        self.confidence_threshold = float(confidence_threshold)
        self._tracks: Tuple[Track, ...] = tuple(tracks)

    def __len__(self) -> int:
        return len(self._tracks)

    def __iter__(self) -> Iterator[Track]:
        return iter(self._tracks)

    def __repr__(self) -> str:
        ids = [t.track_id for t in self._tracks]
        return f"TrackSet(threshold={self.confidence_threshold}, ids={ids})"

    @property
    def tracks(self) -> Tuple[Track, ...]:
        return self._tracks

    @property
    def is_empty(self) -> bool:
        return not self._tracks

    @property
    def live_tracks(self) -> Tuple[Track, ...]:
        """Tracks that are not terminal."""
        return tuple(t for t in self._tracks if not t.terminal)

    def get(self, track_id: int) -> Optional[Track]:
        for track in self._tracks:
            if track.track_id == track_id:
                return track
        return None

    def observations(self) -> List[RectangleObservation]:
        return [t.observation for t in self._tracks]

    def _derive(self, tracks: Iterable[Track]) -> "TrackSet":
        return TrackSet(self.confidence_threshold, tracks)

    def seed(self, observations: Sequence[RectangleObservation]) -> "TrackSet":
        """
        Start a fresh set with one track per detected observation.

        Freshly detected tracks start at confidence 1.0 and are not terminal.
        """
        tracks = [
            Track(track_id=next(_track_ids), observation=obs, confidence=1.0)
            for obs in observations
        ]
        if tracks:
            logger.debug("Seeded %d track(s): %s", len(tracks), [t.track_id for t in tracks])
        return self._derive(tracks)

    def advance(self, updates: Sequence[Tuple[Track, RectangleObservation, float]]) -> "TrackSet":
        """
        Apply one frame of tracker updates and return the surviving set.

        Tracks without an update are carried over unchanged unless they are
        terminal. Updates for tracks that are not part of this set (stale
        results from an earlier frame) are ignored.

        Args:
            updates: (track, observation, confidence) triples

        Returns:
            TrackSet: the set to use for the next frame
        """
        by_id = {}
        for item in updates:
            track, observation, confidence = item
            current = self.get(track.track_id)
            if current is None:
                logger.debug("Ignoring stale update for track %d", track.track_id)
                continue
            by_id[track.track_id] = (observation, float(confidence))

        survivors = []
        for track in self._tracks:
            if track.terminal:
                logger.debug("Dropping terminal track %d", track.track_id)
                continue

            update = by_id.get(track.track_id)
            if update is None:
                survivors.append(track)
                continue

            observation, confidence = update
            if confidence <= self.confidence_threshold:
                logger.debug(
                    "Track %d confidence %.3f <= %.3f, marking terminal",
                    track.track_id, confidence, self.confidence_threshold,
                )
                survivors.append(replace(track, confidence=confidence, terminal=True, age=track.age + 1))
            else:
                survivors.append(
                    replace(
                        track,
                        observation=observation.with_confidence(confidence),
                        confidence=confidence,
                        age=track.age + 1,
                    )
                )
        return self._derive(survivors)
