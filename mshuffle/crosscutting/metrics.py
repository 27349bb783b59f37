import json
from datetime import datetime
from typing import Dict, Any, Optional
from dataclasses import dataclass, asdict, field
import threading


@dataclass
class TransitionCounts:
    """Listener actions applied to sessions."""
    next: int = 0
    skip: int = 0
    enjoy: int = 0
    dislike: int = 0

    @property
    def total(self) -> int:
        return self.next + self.skip + self.enjoy + self.dislike


@dataclass
class SimilarArtistCounts:
    """Outcome of similar-artist lookups."""
    cache_hits: int = 0
    fetched: int = 0
    failures: int = 0

    @property
    def hit_rate(self) -> float:
        """Share of lookups served from the collective data store."""
        lookups = self.cache_hits + self.fetched + self.failures
        if lookups == 0:
            return 0.0
        return self.cache_hits / lookups


@dataclass
class EngineSnapshot:
    """Aggregated engine metrics since start (or last reset)."""
    sessions_created: int = 0
    sessions_deleted: int = 0
    empty_selections: int = 0
    transitions: TransitionCounts = field(default_factory=TransitionCounts)
    similar_artists: SimilarArtistCounts = field(default_factory=SimilarArtistCounts)
    start_time: datetime = field(default_factory=datetime.now)

    @property
    def empty_selection_rate(self) -> float:
        """Share of next/skip calls that found no selectable track."""
        selections = self.transitions.next + self.transitions.skip
        if selections == 0:
            return 0.0
        return self.empty_selections / selections


class EngineMetrics:
    """Collects counters for the listening session engine."""

    def __init__(self):
        """Initialize metrics collector."""
        self._lock = threading.Lock()
        self._snapshot = EngineSnapshot()

    def record_session_created(self) -> None:
        with self._lock:
            self._snapshot.sessions_created += 1

    def record_session_deleted(self) -> None:
        with self._lock:
            self._snapshot.sessions_deleted += 1

    def record_transition(self, action: str) -> None:
        """Record a next/skip/enjoy/dislike call."""
        with self._lock:
            counts = self._snapshot.transitions
            setattr(counts, action, getattr(counts, action) + 1)

    def record_empty_selection(self) -> None:
        with self._lock:
            self._snapshot.empty_selections += 1

    def record_similar_artists_cache_hit(self) -> None:
        with self._lock:
            self._snapshot.similar_artists.cache_hits += 1

    def record_similar_artists_fetched(self) -> None:
        with self._lock:
            self._snapshot.similar_artists.fetched += 1

    def record_similar_artists_failure(self) -> None:
        with self._lock:
            self._snapshot.similar_artists.failures += 1

    def get_snapshot(self) -> EngineSnapshot:
        """Get current metrics."""
        with self._lock:
            return self._snapshot

    def reset(self) -> None:
        with self._lock:
            self._snapshot = EngineSnapshot()

    def to_dict(self, active_sessions: Optional[int] = None) -> Dict[str, Any]:
        """Convert metrics to dictionary for JSON serialization."""
        with self._lock:
            data = asdict(self._snapshot)
            data['start_time'] = self._snapshot.start_time.isoformat()
            data['transitions']['total'] = self._snapshot.transitions.total
            data['similar_artists']['hit_rate'] = self._snapshot.similar_artists.hit_rate
            data['empty_selection_rate'] = self._snapshot.empty_selection_rate
        if active_sessions is not None:
            data['active_sessions'] = active_sessions
        return data

    def save_to_file(self, file_path: str) -> None:
        """Save metrics to JSON file."""
        with open(file_path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2, ensure_ascii=False)
