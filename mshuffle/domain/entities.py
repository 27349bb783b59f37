from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class Artist:
    """Domain entity representing an artist independent of providers."""

    id: str
    name: str = ""


@dataclass(frozen=True)
class Album:
    """Domain entity representing an album."""

    id: str
    name: str = ""
    image: Optional[str] = None


@dataclass(frozen=True)
class Track:
    """Domain entity representing a playable song of a playlist.

    ``preview_url`` is the playable media reference. Tracks without one
    cannot be played by the client and must be skipped.
    """

    id: str
    name: str = ""
    album: Optional[Album] = None
    artists: List[Artist] = None
    duration_ms: int = 0
    uri: Optional[str] = None
    preview_url: Optional[str] = None

    def __post_init__(self):
        if self.artists is None:
            object.__setattr__(self, 'artists', [])

    @property
    def artist_ids(self) -> List[str]:
        return [artist.id for artist in self.artists]

    @property
    def is_playable(self) -> bool:
        return self.preview_url is not None

    @property
    def label(self) -> str:
        """Display label used in distributions."""
        return f"'{self.name}' by {', '.join(artist.name for artist in self.artists)}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'album': {
                'id': self.album.id,
                'name': self.album.name,
                'image': self.album.image,
            } if self.album else None,
            'artists': [{'id': a.id, 'name': a.name} for a in self.artists],
            'duration_ms': self.duration_ms,
            'uri': self.uri,
            'preview_url': self.preview_url,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Track":
        album = data.get('album')
        return cls(
            id=data['id'],
            name=data.get('name', ''),
            album=Album(
                id=album['id'],
                name=album.get('name', ''),
                image=album.get('image'),
            ) if album else None,
            artists=[Artist(id=a['id'], name=a.get('name', '')) for a in data.get('artists', [])],
            duration_ms=data.get('duration_ms', 0),
            uri=data.get('uri'),
            preview_url=data.get('preview_url'),
        )


@dataclass(frozen=True)
class Playlist:
    """Domain entity representing a playlist.

    ``tracks`` stays ``None`` until the playlist has been fully paginated.
    """

    id: str
    name: str
    owner_id: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None
    tracks: Optional[List[Track]] = None

    @property
    def track_count(self) -> int:
        return len(self.tracks) if self.tracks is not None else 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'owner_id': self.owner_id,
            'description': self.description,
            'image': self.image,
            'tracks': [t.to_dict() for t in self.tracks] if self.tracks is not None else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Playlist":
        tracks = data.get('tracks')
        return cls(
            id=data['id'],
            name=data.get('name', ''),
            owner_id=data.get('owner_id'),
            description=data.get('description'),
            image=data.get('image'),
            tracks=[Track.from_dict(t) for t in tracks] if tracks is not None else None,
        )


@dataclass(frozen=True)
class Authorization:
    """Credentials of a listener as issued by the music service."""

    access_token: Optional[str]
    refresh_token: Optional[str] = None


@dataclass
class ProbabilityEntry:
    """Labeled probability of a single track in a session ledger."""

    label: str
    value: float

    def to_dict(self) -> Dict[str, Any]:
        return {'label': self.label, 'value': self.value}


Distribution = List[ProbabilityEntry]
