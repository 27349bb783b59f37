import logging
import random
from typing import Any, Dict, List, Optional

from mshuffle.application.collective import (
    SIMILAR_ARTISTS, CollectiveDataStore, StringSetValue, create_default_store,
)
from mshuffle.application.features.history import HistoryFeature
from mshuffle.application.features.satisfaction import SatisfactionFeature
from mshuffle.application.sessions import SessionStore, hash_credential
from mshuffle.crosscutting.config import ShuffleSettings
from mshuffle.crosscutting.logging import (
    CorrelationContext, log_session_created, log_transition, log_with_fields,
)
from mshuffle.crosscutting.metrics import EngineMetrics
from mshuffle.domain.entities import Authorization, Distribution, Playlist, ProbabilityEntry, Track
from mshuffle.domain.errors import MusicProviderError, NoActiveTrack, SessionNotFound
from mshuffle.domain.normalization import equal_odds, normalize_probabilities, select_track_id
from mshuffle.domain.ports import ListeningFeature, MusicProvider
from mshuffle.domain.session import ListeningSession


logger = logging.getLogger(__name__)


class ListeningSessionEngine:
    """Runs smart shuffle listening sessions.

    Every listener action looks the session up by credential, runs the
    listening features in their fixed order, renormalizes the ledger and then
    either draws the next track (next/skip) or reports the updated
    distribution (enjoy/dislike).

    Actions on one session are serialized by the session's lock; different
    sessions proceed independently.
    """

    def __init__(self,
                 provider: MusicProvider,
                 store: Optional[CollectiveDataStore] = None,
                 features: Optional[List[ListeningFeature]] = None,
                 sessions: Optional[SessionStore] = None,
                 rng: Optional[random.Random] = None,
                 metrics: Optional[EngineMetrics] = None,
                 settings: Optional[ShuffleSettings] = None):
        """Initialize the engine.

        Args:
            provider: Music API used to resolve similar artists
            store: Collective data shared by all sessions
            features: Listening features in pipeline order
            sessions: Registry of live sessions
            rng: Random source for track draws
            metrics: Metrics collector
            settings: Engine settings, used for defaults of the above
        """
        self.settings = settings or ShuffleSettings()
        self.provider = provider
        self.store = store if store is not None else create_default_store()
        self.features = features if features is not None else [
            HistoryFeature(default_capacity=self.settings.history_capacity),
            SatisfactionFeature(),
        ]
        self.sessions = sessions if sessions is not None else SessionStore()
        self.rng = rng or random.Random(self.settings.random_seed)
        self.metrics = metrics or EngineMetrics()

    # -----------------------
    # session lifecycle
    # -----------------------
    def create_session(self, auth: Authorization, playlist: Playlist,
                       feature_options: Optional[Dict[str, Any]] = None) -> ListeningSession:
        """Start a listening session on a playlist with equal odds for every track.

        A playlist whose tracks are not loaded yields a session with an empty
        ledger; the caller has to load the playlist again.
        """
        session = ListeningSession(id=hash_credential(auth), playlist=playlist)
        feature_options = feature_options or {}

        if playlist.tracks is None:
            logger.warning(f"Playlist {playlist.id} has no loaded tracks, session has nothing to play")
        else:
            odds = equal_odds(len(playlist.tracks))
            for index, track in enumerate(playlist.tracks):
                session.ledger[track.id] = ProbabilityEntry(label=track.label, value=odds)
                session.track_index[track.id] = index

        for feature in self.features:
            feature.load(session, self.store, feature_options.get(feature.feature_id))

        self.sessions.save(session)
        self.metrics.record_session_created()
        log_session_created(logger, session.id, playlist.id, playlist.track_count,
                            features=[f.feature_id for f in self.features])
        return session

    def get_session(self, auth: Authorization) -> Optional[ListeningSession]:
        return self.sessions.get(hash_credential(auth))

    def delete_session(self, auth: Authorization) -> None:
        if self.sessions.delete(hash_credential(auth)):
            self.metrics.record_session_deleted()

    def reauthorize(self, old_auth: Authorization, new_auth: Authorization) -> bool:
        """Move the live session of ``old_auth`` to refreshed credentials.

        Returns whether there was a session to move.
        """
        old_id = hash_credential(old_auth)
        session = self.sessions.get(old_id)
        if session is None:
            return False

        with session.lock:
            self.sessions.delete(old_id)
            session.id = hash_credential(new_auth)
            self.sessions.save(session)
        logger.info("Listening session moved to refreshed credentials")
        return True

    # -----------------------
    # transitions
    # -----------------------
    def next(self, auth: Authorization) -> Optional[Track]:
        """Advance to a newly drawn track. Returns None when no track can be selected."""
        return self._advance(auth, 'next')

    def skip(self, auth: Authorization) -> Optional[Track]:
        """Skip the current track; behaves exactly like next."""
        return self._advance(auth, 'skip')

    def enjoy(self, auth: Authorization) -> Distribution:
        """Raise the odds of the current track and its relatives."""
        return self._rate(auth, 'enjoy')

    def dislike(self, auth: Authorization) -> Distribution:
        """Lower the odds of the current track and its relatives."""
        return self._rate(auth, 'dislike')

    def get_distribution(self, auth: Authorization) -> Optional[Distribution]:
        session = self.get_session(auth)
        if session is None:
            return None
        with session.lock:
            return session.distribution()

    def _advance(self, auth: Authorization, action: str) -> Optional[Track]:
        session = self._require_session(auth)
        with session.lock, CorrelationContext(session_id=session.id, stage=action):
            for feature in self.features:
                feature.next(session, self.store)

            normalize_probabilities(session.ledger)
            track = self._select(session)

            self.metrics.record_transition(action)
            log_transition(logger, session.id, action,
                           track_id=track.id if track else None)
            return track

    def _rate(self, auth: Authorization, action: str) -> Distribution:
        session = self._require_session(auth)
        with session.lock, CorrelationContext(session_id=session.id, stage=action):
            current = session.current_track
            if current is None:
                raise NoActiveTrack(action)

            self._ensure_similar_artists(auth, current)

            for feature in self.features:
                getattr(feature, action)(session, self.store)

            normalize_probabilities(session.ledger)

            self.metrics.record_transition(action)
            log_transition(logger, session.id, action, track_id=current.id)
            return session.distribution()

    def _require_session(self, auth: Authorization) -> ListeningSession:
        session = self.get_session(auth)
        if session is None:
            raise SessionNotFound()
        return session

    def _select(self, session: ListeningSession) -> Optional[Track]:
        track_id = select_track_id(session.ledger, self.rng.random())
        if track_id is None:
            self.metrics.record_empty_selection()
            logger.warning("No track available to select")
            return None

        session.current_track_id = track_id
        return session.track(track_id)

    # -----------------------
    # similar artists
    # -----------------------
    def _ensure_similar_artists(self, auth: Authorization, track: Track) -> None:
        """Make sure the store knows the similar artists of every artist on the track.

        Artists already resolved by any session are not looked up again. A
        failed lookup only costs that artist's similarity data.
        """
        for artist_id in track.artist_ids:
            cached = self.store.get(SIMILAR_ARTISTS, artist_id)
            if isinstance(cached, StringSetValue) and not cached.is_empty():
                self.metrics.record_similar_artists_cache_hit()
                continue

            try:
                similar = self.provider.get_similar_artists(auth, artist_id)
            except MusicProviderError as e:
                self.metrics.record_similar_artists_failure()
                log_with_fields(logger, 'WARNING', 'Similar artist lookup failed, continuing without it', {
                    'artist_id': artist_id,
                    'error_type': type(e).__name__,
                    'error_message': str(e),
                })
                continue

            self.metrics.record_similar_artists_fetched()
            if similar:
                self.store.put(SIMILAR_ARTISTS, StringSetValue(artist_id, similar))
