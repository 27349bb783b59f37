import os
import logging
import threading
from collections import OrderedDict
from typing import Any, Callable, Dict, List, Optional

from requests.exceptions import RequestException
from urllib3.exceptions import ReadTimeoutError

import spotipy
from spotipy.exceptions import SpotifyException
from spotipy.oauth2 import SpotifyOAuth, SpotifyOauthError

from mshuffle.domain.entities import Album, Artist, Authorization, Playlist, Track
from mshuffle.domain.ports import MusicProvider
from mshuffle.domain.errors import NotFound, PermanentFailure, RateLimited, TemporaryFailure

logger = logging.getLogger(__name__)

PAGE_SIZE = 100
# Refreshed credentials remembered per expired access token
MAX_RENEWED_AUTHORIZATIONS = 1024


def _default_client_factory(access_token: str) -> spotipy.Spotify:
    return spotipy.Spotify(auth=access_token, requests_timeout=15)


class SpotifyProvider(MusicProvider):
    """Spotify music provider implementation.

    The provider is shared by all listeners, so every call takes the
    listener's authorization and builds a client for it.
    """

    def __init__(self,
                 client_id: Optional[str] = None,
                 client_secret: Optional[str] = None,
                 redirect_uri: Optional[str] = None,
                 scope: Optional[str] = None,
                 client_factory: Optional[Callable[[str], Any]] = None,
                 oauth_factory: Optional[Callable[..., Any]] = None):
        """Initialize Spotify provider.

        Args:
            client_id: Spotify client ID for token refresh
            client_secret: Spotify client secret for token refresh
            redirect_uri: Redirect URI registered for the client
            scope: Space separated scopes requested on login
            client_factory: Builds an API client from an access token
            oauth_factory: Builds the OAuth manager used for refreshes
        """
        self.client_id = client_id or os.getenv('SPOTIFY_CLIENT_ID')
        self.client_secret = client_secret or os.getenv('SPOTIFY_CLIENT_SECRET')
        self.redirect_uri = redirect_uri or os.getenv('SPOTIFY_REDIRECT_URI', 'http://localhost:8080/callback')
        self.scope = scope
        self._client_factory = client_factory or _default_client_factory
        self._oauth_factory = oauth_factory or SpotifyOAuth
        self._renewed: "OrderedDict[str, Authorization]" = OrderedDict()
        self._renewed_lock = threading.Lock()

    # -----------------------
    # authorization
    # -----------------------
    def refresh_authorization(self, auth: Authorization) -> Optional[Authorization]:
        """Refresh a Spotify access token.

        Returns:
            New authorization, or None if the token could not be refreshed
        """
        if not auth.refresh_token:
            logger.warning("Cannot refresh token: no refresh token")
            return None
        if not self.client_id or not self.client_secret:
            logger.warning("Cannot refresh token: missing client credentials")
            return None

        try:
            logger.info("Refreshing Spotify access token...")
            oauth_manager = self._oauth_factory(
                client_id=self.client_id,
                client_secret=self.client_secret,
                redirect_uri=self.redirect_uri,
                scope=self.scope,
            )
            token_info = oauth_manager.refresh_access_token(auth.refresh_token)
        except (SpotifyOauthError, SpotifyException, RequestException) as e:
            logger.error(f"Failed to refresh Spotify token: {e}")
            return None

        if not token_info or 'access_token' not in token_info:
            logger.error("Failed to refresh token: invalid response")
            return None

        logger.info("Spotify access token refreshed successfully")
        return Authorization(
            access_token=token_info['access_token'],
            refresh_token=token_info.get('refresh_token') or auth.refresh_token,
        )

    def _handle_spotify_error(self, error: Exception, operation: str) -> Exception:
        """Translate a Spotify API failure into a domain error.

        Args:
            error: The exception that occurred
            operation: Description of the operation being performed
        Returns:
            Domain error to raise
        """
        if isinstance(error, ReadTimeoutError):
            logger.warning(f"Read timeout during {operation}")
            return TemporaryFailure(f"Timed out during {operation}")

        if isinstance(error, SpotifyException):
            status = error.http_status
            if status == 429:
                headers = error.headers or {}
                retry_after = _retry_after_seconds(headers.get('Retry-After'))
                return RateLimited(retry_after_ms=retry_after * 1000)
            if status == 404:
                return NotFound(f"Not found during {operation}: {error.msg}")
            if status == 401:
                return PermanentFailure(f"Spotify authorization rejected during {operation}")
            if status is not None and 400 <= status < 500:
                return PermanentFailure(f"Spotify rejected {operation}: {error.msg}")

        logger.error(f"Failed to {operation}: {error}")
        return TemporaryFailure(f"Failed to {operation}: {error}")

    def _call(self, auth: Authorization, operation: str, fn: Callable[[Any], Any]) -> Any:
        """Run ``fn`` with a client for ``auth``, retrying once after a token refresh.

        Credentials refreshed here are remembered against the expired access
        token, so later calls with it skip the refresh round trip.
        """
        current = self.renewed_authorization(auth) or auth
        max_retries = 1
        for attempt in range(max_retries + 1):
            try:
                return fn(self._client_factory(current.access_token))
            except (SpotifyException, ReadTimeoutError, RequestException) as e:
                if (attempt < max_retries and isinstance(e, SpotifyException)
                        and e.http_status == 401):
                    logger.warning(f"Spotify token expired during {operation}, attempting refresh...")
                    refreshed = self.refresh_authorization(current)
                    if refreshed is not None:
                        self._remember_renewed(auth, refreshed)
                        current = refreshed
                        continue
                raise self._handle_spotify_error(e, operation) from e

    def renewed_authorization(self, auth: Authorization) -> Optional[Authorization]:
        """Credentials that replaced ``auth`` after an automatic refresh, if any."""
        with self._renewed_lock:
            return self._renewed.get(auth.access_token)

    def _remember_renewed(self, auth: Authorization, refreshed: Authorization) -> None:
        with self._renewed_lock:
            self._renewed[auth.access_token] = refreshed
            self._renewed.move_to_end(auth.access_token)
            while len(self._renewed) > MAX_RENEWED_AUTHORIZATIONS:
                self._renewed.popitem(last=False)

    # -----------------------
    # conversion
    # -----------------------
    def _spotify_track_to_domain(self, spotify_track: Dict[str, Any]) -> Optional[Track]:
        """Convert Spotify track to domain Track entity.

        Args:
            spotify_track: Spotify track object

        Returns:
            Domain Track entity or None for local files and removed tracks
        """
        track_id = spotify_track.get('id') if spotify_track else None
        if not track_id:
            return None

        album = spotify_track.get('album') or {}
        return Track(
            id=track_id,
            name=spotify_track.get('name', ''),
            album=Album(
                id=album['id'],
                name=album.get('name', ''),
                image=_first_image(album),
            ) if album.get('id') else None,
            artists=[
                Artist(id=artist['id'], name=artist.get('name', ''))
                for artist in spotify_track.get('artists', []) if artist.get('id')
            ],
            duration_ms=spotify_track.get('duration_ms', 0),
            uri=spotify_track.get('uri') or f"spotify:track:{track_id}",
            preview_url=spotify_track.get('preview_url'),
        )

    def _spotify_playlist_to_domain(self, playlist: Dict[str, Any],
                                    tracks: Optional[List[Track]] = None) -> Playlist:
        return Playlist(
            id=playlist['id'],
            name=playlist.get('name', ''),
            owner_id=(playlist.get('owner') or {}).get('id'),
            description=playlist.get('description'),
            image=_first_image(playlist),
            tracks=tracks,
        )

    # -----------------------
    # operations
    # -----------------------
    def get_similar_artists(self, auth: Authorization, artist_id: str) -> List[str]:
        """Get ids of artists related to an artist.

        Args:
            auth: Listener authorization
            artist_id: Spotify artist ID

        Returns:
            Related artist ids, possibly empty
        """
        result = self._call(auth, f"get similar artists of {artist_id}",
                            lambda client: client.artist_related_artists(artist_id))
        return [artist['id'] for artist in (result or {}).get('artists', []) if artist.get('id')]

    def list_playlists(self, auth: Authorization) -> List[Playlist]:
        """List playlists of the current user, without tracks."""
        def fetch(client):
            playlists = []
            offset = 0
            limit = 50

            while True:
                page = client.current_user_playlists(limit=limit, offset=offset)
                if not page or 'items' not in page:
                    break

                for playlist in page['items']:
                    if playlist and playlist.get('id'):
                        playlists.append(self._spotify_playlist_to_domain(playlist))

                if len(page['items']) < limit:
                    break
                offset += limit

            return playlists

        return self._call(auth, "list playlists", fetch)

    def get_playlist(self, auth: Authorization, owner_id: str, playlist_id: str) -> Playlist:
        """Get a playlist with all of its tracks.

        Args:
            auth: Listener authorization
            owner_id: Spotify user ID of the playlist owner
            playlist_id: Playlist ID

        Returns:
            Playlist with tracks loaded in playlist order
        """
        def fetch(client):
            playlist = client.playlist(playlist_id, fields='id,name,description,images,owner(id)')
            if playlist.get('owner') is None:
                playlist['owner'] = {'id': owner_id}

            tracks = []
            offset = 0
            while True:
                page = client.playlist_items(playlist_id, limit=PAGE_SIZE, offset=offset,
                                             additional_types=('track',))
                if not page or 'items' not in page:
                    break

                for item in page['items']:
                    track = self._spotify_track_to_domain(item.get('track'))
                    if track:
                        tracks.append(track)

                if len(page['items']) < PAGE_SIZE:
                    break
                offset += PAGE_SIZE

            logger.info(f"Loaded {len(tracks)} tracks from playlist {playlist_id}")
            return self._spotify_playlist_to_domain(playlist, tracks)

        return self._call(auth, f"get playlist {playlist_id}", fetch)

    def get_user(self, auth: Authorization) -> Dict[str, Any]:
        """Get profile of the current user."""
        user = self._call(auth, "get current user", lambda client: client.current_user())
        return {
            'id': user.get('id'),
            'display_name': user.get('display_name'),
            'country': user.get('country'),
            'product': user.get('product'),
            'image': _first_image(user),
        }


def _retry_after_seconds(value: Any) -> int:
    """Seconds from a Retry-After header; at least 1, and 1 when unparseable."""
    try:
        return max(1, int(value))
    except (TypeError, ValueError):
        return 1


def _first_image(payload: Dict[str, Any]) -> Optional[str]:
    images = payload.get('images') or []
    return images[0].get('url') if images else None
