from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from mshuffle.application.collective import SIMILAR_ARTISTS, CollectiveDataStore, StringSetValue
from mshuffle.domain.entities import Track
from mshuffle.domain.normalization import equal_odds
from mshuffle.domain.ports import ListeningFeature
from mshuffle.domain.session import ListeningSession


logger = logging.getLogger(__name__)

Adjustment = Callable[[Track, float], float]

TIERS = ('song', 'album', 'artist', 'similar_artist')


@dataclass(frozen=True)
class AdjustmentFactor:
    """Pair of probability adjustments applied when a track is enjoyed or disliked."""

    enjoy: Adjustment
    dislike: Adjustment

    def is_valid(self) -> bool:
        return callable(self.enjoy) and callable(self.dislike)


@dataclass(frozen=True)
class AdjustmentFactorSet:
    """Adjustment factors for each relationship tier to the current track."""

    song: AdjustmentFactor
    album: AdjustmentFactor
    artist: AdjustmentFactor
    similar_artist: AdjustmentFactor

    def is_valid(self) -> bool:
        return all(
            isinstance(getattr(self, tier), AdjustmentFactor) and getattr(self, tier).is_valid()
            for tier in TIERS
        )


def default_adjustments(track_count: int) -> AdjustmentFactorSet:
    """Every tier moves probability by the playlist's equal odds, never below 0."""
    odds = equal_odds(track_count)

    def enjoy(track: Track, probability: float) -> float:
        return probability + max(odds, -probability)

    def dislike(track: Track, probability: float) -> float:
        return probability + max(-odds, -probability)

    factor = AdjustmentFactor(enjoy=enjoy, dislike=dislike)
    return AdjustmentFactorSet(song=factor, album=factor, artist=factor, similar_artist=factor)


@dataclass
class SatisfactionSessionData:
    adjustments: AdjustmentFactorSet
    album_tracks: Dict[str, Set[str]] = field(default_factory=dict)
    artist_tracks: Dict[str, Set[str]] = field(default_factory=dict)


class SatisfactionFeature(ListeningFeature):
    """Propagates enjoy/dislike feedback from the current track to related tracks.

    The adjustment walks four tiers in order, each applied directly to the
    ledger so later tiers see the values left by earlier ones:

    1. the current track
    2. tracks on the same album
    3. tracks by any artist of the current track
    4. tracks by artists similar to those artists, as cached in the
       collective data store
    """

    feature_id = "Satisfaction"

    def __init__(self, adjustments: Optional[AdjustmentFactorSet] = None):
        self.adjustments = adjustments

    def load(self, session: ListeningSession, store: CollectiveDataStore, options: Any = None) -> None:
        adjustments = options if options is not None else self.adjustments
        if adjustments is not None and not (
                isinstance(adjustments, AdjustmentFactorSet) and adjustments.is_valid()):
            logger.warning("Ignoring malformed adjustment factor set, using default adjustments")
            adjustments = None
        if adjustments is None:
            adjustments = default_adjustments(len(session.tracks))

        session.feature_sessions[self.feature_id] = SatisfactionSessionData(
            adjustments=adjustments,
            album_tracks=self._index_albums(session.tracks),
            artist_tracks=self._index_artists(session.tracks),
        )

    def enjoy(self, session: ListeningSession, store: CollectiveDataStore) -> None:
        self._propagate(session, store, 'enjoy')

    def dislike(self, session: ListeningSession, store: CollectiveDataStore) -> None:
        self._propagate(session, store, 'dislike')

    def _propagate(self, session: ListeningSession, store: CollectiveDataStore, action: str) -> None:
        data = session.feature_sessions.get(self.feature_id)
        if not isinstance(data, SatisfactionSessionData):
            logger.error(f"Listening session {session.id[:8]} has no satisfaction data to {action}")
            return

        current = session.current_track
        if current is None:
            logger.error(f"Listening session {session.id[:8]} has no current track to {action}")
            return

        adjustments = data.adjustments
        tiers = (
            (adjustments.song, [current.id]),
            (adjustments.album, self.same_album_track_ids(current, data)),
            (adjustments.artist, self.same_artist_track_ids(current, data)),
            (adjustments.similar_artist, self.similar_artist_track_ids(current, data, store)),
        )
        for factor, track_ids in tiers:
            self._adjust(session, track_ids, getattr(factor, action))

    def same_album_track_ids(self, track: Track, data: SatisfactionSessionData) -> List[str]:
        if track.album is None:
            return []
        return list(data.album_tracks.get(track.album.id, ()))

    def same_artist_track_ids(self, track: Track, data: SatisfactionSessionData) -> List[str]:
        return self._tracks_by_artists(track.artist_ids, data)

    def similar_artist_track_ids(self, track: Track, data: SatisfactionSessionData,
                                 store: CollectiveDataStore) -> List[str]:
        similar: Dict[str, None] = {}
        for artist_id in track.artist_ids:
            value = store.get(SIMILAR_ARTISTS, artist_id)
            if isinstance(value, StringSetValue):
                similar.update(dict.fromkeys(sorted(value.value)))
        return self._tracks_by_artists(similar, data)

    @staticmethod
    def _tracks_by_artists(artist_ids: Iterable[str], data: SatisfactionSessionData) -> List[str]:
        track_ids: Dict[str, None] = {}
        for artist_id in artist_ids:
            track_ids.update(dict.fromkeys(data.artist_tracks.get(artist_id, ())))
        return list(track_ids)

    @staticmethod
    def _adjust(session: ListeningSession, track_ids: Iterable[str], adjustment: Adjustment) -> None:
        for track_id in track_ids:
            entry = session.ledger.get(track_id)
            if entry is None:
                continue
            entry.value = adjustment(session.track(track_id), entry.value)

    @staticmethod
    def _index_albums(tracks: List[Track]) -> Dict[str, Set[str]]:
        albums: Dict[str, Set[str]] = {}
        for track in tracks:
            if track.album is not None:
                albums.setdefault(track.album.id, set()).add(track.id)
        return albums

    @staticmethod
    def _index_artists(tracks: List[Track]) -> Dict[str, Set[str]]:
        artists: Dict[str, Set[str]] = {}
        for track in tracks:
            for artist_id in track.artist_ids:
                artists.setdefault(artist_id, set()).add(track.id)
        return artists
