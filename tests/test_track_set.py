"""
Tests for Track records and the TrackSet eviction policy.

Tests cover:
- Seeding from detections (fresh ids, full confidence, detection order)
- Confidence updates and inclusive threshold eviction
- Terminal tracks emitted once and then dropped
- Carry-over of tracks without updates and stale update handling
"""

import pytest

from rect_tracker.core.tracks import Track, TrackSet, TrackUpdate
from tests.helpers.fakes import make_observation


def _seed(n=1, threshold=0.3):
    observations = [make_observation(x=0.1 * i) for i in range(n)]
    return TrackSet(threshold).seed(observations)


class TestSeed:
    def test_one_track_per_observation_in_order(self):
        observations = [make_observation(x=0.1), make_observation(x=0.5)]
        tracks = TrackSet().seed(observations)
        assert len(tracks) == 2
        assert [t.observation for t in tracks] == observations
        assert all(t.confidence == 1.0 and not t.terminal for t in tracks)

    def test_ids_are_unique(self):
        first = _seed(2)
        second = _seed(2)
        ids = [t.track_id for t in first] + [t.track_id for t in second]
        assert len(set(ids)) == 4

    def test_seed_empty(self):
        assert TrackSet().seed([]).is_empty

    def test_seed_does_not_mutate_original(self):
        empty = TrackSet()
        empty.seed([make_observation()])
        assert empty.is_empty


class TestAdvance:
    def test_update_above_threshold_replaces_observation(self):
        tracks = _seed()
        track = tracks.tracks[0]
        moved = make_observation(x=0.3)
        after = tracks.advance([TrackUpdate(track, moved, 0.8)])
        updated = after.get(track.track_id)
        assert updated.confidence == 0.8
        assert updated.observation.bottom_left == moved.bottom_left
        assert updated.observation.confidence == 0.8
        assert updated.age == 1
        assert not updated.terminal

    def test_threshold_is_inclusive(self):
        tracks = _seed(threshold=0.3)
        track = tracks.tracks[0]
        after = tracks.advance([TrackUpdate(track, make_observation(x=0.6), 0.3)])
        assert after.get(track.track_id).terminal

    def test_terminal_track_keeps_last_good_observation(self):
        tracks = _seed()
        track = tracks.tracks[0]
        after = tracks.advance([TrackUpdate(track, make_observation(x=0.6), 0.1)])
        terminal = after.get(track.track_id)
        assert terminal.terminal
        assert terminal.observation == track.observation
        assert terminal.confidence == 0.1

    def test_terminal_track_is_dropped_next_frame(self):
        tracks = _seed()
        track = tracks.tracks[0]
        after = tracks.advance([TrackUpdate(track, track.observation, 0.1)])
        assert len(after) == 1
        assert after.advance([]).is_empty

    def test_confidence_sequence_lifecycle(self):
        """0.9, 0.6 survive; 0.2 marks terminal; next frame the track is gone."""
        tracks = _seed(threshold=0.3)
        track_id = tracks.tracks[0].track_id
        for confidence in (0.9, 0.6):
            current = tracks.get(track_id)
            tracks = tracks.advance([TrackUpdate(current, current.observation, confidence)])
            assert not tracks.get(track_id).terminal

        current = tracks.get(track_id)
        tracks = tracks.advance([TrackUpdate(current, current.observation, 0.2)])
        assert tracks.get(track_id).terminal

        tracks = tracks.advance([])
        assert tracks.get(track_id) is None

    def test_tracks_without_update_are_carried_over(self):
        tracks = _seed(2)
        a, b = tracks.tracks
        after = tracks.advance([TrackUpdate(a, make_observation(x=0.9), 0.7)])
        assert after.get(b.track_id) == b
        assert [t.track_id for t in after] == [a.track_id, b.track_id]

    def test_stale_update_is_ignored(self):
        tracks = _seed()
        stranger = Track(track_id=-1, observation=make_observation())
        after = tracks.advance([TrackUpdate(stranger, make_observation(x=0.5), 0.9)])
        assert [t.track_id for t in after] == [t.track_id for t in tracks]
        assert after.get(-1) is None

    def test_live_tracks_excludes_terminal(self):
        tracks = _seed(2)
        a, b = tracks.tracks
        after = tracks.advance([TrackUpdate(a, a.observation, 0.0), TrackUpdate(b, b.observation, 0.9)])
        assert [t.track_id for t in after.live_tracks] == [b.track_id]

    def test_advance_returns_new_set(self):
        tracks = _seed()
        track = tracks.tracks[0]
        tracks.advance([TrackUpdate(track, track.observation, 0.1)])
        assert not tracks.tracks[0].terminal

    @pytest.mark.parametrize("threshold, expected_terminal", [(0.5, True), (0.3, False)])
    def test_threshold_is_configurable(self, threshold, expected_terminal):
        tracks = _seed(threshold=threshold)
        track = tracks.tracks[0]
        after = tracks.advance([TrackUpdate(track, track.observation, 0.4)])
        assert after.get(track.track_id).terminal is expected_terminal
