from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Protocol

from .entities import Authorization, Playlist
from .session import ListeningSession

if TYPE_CHECKING:
    from mshuffle.application.collective import CollectiveDataStore


class MusicProvider(Protocol):
    """Port defining the contract the shuffle needs from a music service.

    Implementations map provider-specific payloads into domain entities once,
    at the boundary, and report failures with the errors in
    ``mshuffle.domain.errors``.
    """

    def get_similar_artists(self, auth: Authorization, artist_id: str) -> List[str]:
        """Return ids of artists similar to the given artist."""

    def list_playlists(self, auth: Authorization) -> Iterable[Playlist]:
        """Return the listener's playlists without their tracks."""

    def get_playlist(self, auth: Authorization, owner_id: str, playlist_id: str) -> Playlist:
        """Return a playlist with every track loaded."""

    def get_user(self, auth: Authorization) -> Dict[str, Any]:
        """Return basic profile information for the listener."""

    def refresh_authorization(self, auth: Authorization) -> Optional[Authorization]:
        """Exchange the refresh token for a new authorization, None if not possible."""

    def renewed_authorization(self, auth: Authorization) -> Optional[Authorization]:
        """Credentials that replaced ``auth`` after an automatic refresh, None if unchanged."""


class LoadHook(Protocol):
    """Populates a feature's private state when a session is created."""

    def load(self, session: ListeningSession, store: "CollectiveDataStore",
             options: Any = None) -> None:
        """Install the feature's state in ``session.feature_sessions``."""


class TransitionHook(Protocol):
    """Reacts to listener actions on a loaded session."""

    def next(self, session: ListeningSession, store: "CollectiveDataStore") -> None:
        """The listener moves on to another track."""

    def enjoy(self, session: ListeningSession, store: "CollectiveDataStore") -> None:
        """The listener enjoys the current track."""

    def dislike(self, session: ListeningSession, store: "CollectiveDataStore") -> None:
        """The listener dislikes the current track."""


class ListeningFeature(LoadHook, TransitionHook, Protocol):
    """A pluggable step of the engine's transition pipeline.

    Subclasses override the hooks they care about; the rest stay no-ops.
    """

    feature_id: str
