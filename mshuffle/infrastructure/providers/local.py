import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from mshuffle.domain.entities import Authorization, Playlist
from mshuffle.domain.ports import MusicProvider
from mshuffle.domain.errors import NotFound, PermanentFailure

logger = logging.getLogger(__name__)


class LocalMusicProvider(MusicProvider):
    """Music provider backed by a JSON library file.

    The file holds ``playlists`` (serialized ``Playlist`` objects with their
    tracks), ``similar_artists`` (artist id -> list of artist ids) and an
    optional ``user`` profile. Authorization is accepted as-is.

    Example:
        {
          "user": {"id": "demo"},
          "playlists": [{"id": "p1", "name": "Mix", "owner_id": "demo", "tracks": [...]}],
          "similar_artists": {"a1": ["a2"]}
        }
    """

    def __init__(self, library: Dict[str, Any]):
        self._playlists = {p.id: p for p in (Playlist.from_dict(d) for d in library.get('playlists', []))}
        self._similar_artists = {k: list(v) for k, v in library.get('similar_artists', {}).items()}
        self._user = library.get('user') or {'id': 'local', 'display_name': 'Local listener'}

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "LocalMusicProvider":
        """Load a library file."""
        path = Path(path)
        try:
            with open(path, 'r', encoding='utf-8') as f:
                library = json.load(f)
        except FileNotFoundError:
            raise NotFound(f"Library file {path} does not exist")
        except json.JSONDecodeError as e:
            raise PermanentFailure(f"Library file {path} is not valid JSON: {e}")

        logger.info(f"Loaded local library from {path}")
        return cls(library)

    def get_similar_artists(self, auth: Authorization, artist_id: str) -> List[str]:
        return list(self._similar_artists.get(artist_id, []))

    def list_playlists(self, auth: Authorization) -> List[Playlist]:
        return [
            Playlist(id=p.id, name=p.name, owner_id=p.owner_id,
                     description=p.description, image=p.image)
            for p in self._playlists.values()
        ]

    def get_playlist(self, auth: Authorization, owner_id: str, playlist_id: str) -> Playlist:
        playlist = self._playlists.get(playlist_id)
        if playlist is None or (playlist.owner_id and owner_id and playlist.owner_id != owner_id):
            raise NotFound(f"Playlist {owner_id}/{playlist_id} not found")
        return playlist

    def get_user(self, auth: Authorization) -> Dict[str, Any]:
        return dict(self._user)

    def refresh_authorization(self, auth: Authorization) -> Optional[Authorization]:
        return auth

    def renewed_authorization(self, auth: Authorization) -> Optional[Authorization]:
        return None
