from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .entities import Distribution, Playlist, ProbabilityEntry, Track


@dataclass
class ListeningSession:
    """Aggregate root of one listener's shuffle over a playlist.

    ``ledger`` maps track ids to their probability in playlist order,
    ``track_index`` maps track ids to their position in ``playlist.tracks``
    and ``feature_sessions`` holds each listening feature's private state
    keyed by feature id.
    """

    id: str
    playlist: Playlist
    ledger: Dict[str, ProbabilityEntry] = field(default_factory=dict)
    current_track_id: Optional[str] = None
    track_index: Dict[str, int] = field(default_factory=dict)
    feature_sessions: Dict[str, Any] = field(default_factory=dict)
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)

    @property
    def tracks(self):
        return self.playlist.tracks or []

    def track(self, track_id: str) -> Optional[Track]:
        index = self.track_index.get(track_id)
        if index is None:
            return None
        return self.tracks[index]

    @property
    def current_track(self) -> Optional[Track]:
        if self.current_track_id is None:
            return None
        return self.track(self.current_track_id)

    def distribution(self) -> Distribution:
        """Snapshot of the ledger in playlist order."""
        return [ProbabilityEntry(label=e.label, value=e.value) for e in self.ledger.values()]
