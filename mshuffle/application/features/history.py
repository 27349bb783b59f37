from __future__ import annotations

import logging
import math
from collections import deque
from dataclasses import dataclass, field
from numbers import Real
from typing import Any, Deque, Dict, Optional, Set

from mshuffle.application.collective import CollectiveDataStore
from mshuffle.crosscutting.config import DEFAULT_HISTORY_CAPACITY
from mshuffle.domain.ports import ListeningFeature
from mshuffle.domain.session import ListeningSession


logger = logging.getLogger(__name__)


@dataclass
class HistoryQueue:
    """Recently played track ids that are temporarily excluded from selection.

    ``members`` mirrors ``queue`` for constant time containment checks and
    ``stored_probabilities`` keeps each queued track's probability from the
    moment it entered the queue.
    """

    capacity: int
    queue: Deque[str] = field(default_factory=deque)
    members: Set[str] = field(default_factory=set)
    stored_probabilities: Dict[str, float] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.queue)

    def __contains__(self, track_id: str) -> bool:
        return track_id in self.members

    @property
    def is_full(self) -> bool:
        return len(self.queue) >= self.capacity


def determine_capacity(size: float, track_count: int) -> int:
    """Number of tracks the history may hold.

    A size below 1 is a proportion of the playlist, anything else a fixed
    number of tracks. At least one track always stays selectable.
    """
    capacity = math.floor(size * track_count + 0.5) if size < 1 else int(size)
    return max(0, min(capacity, track_count - 1))


class HistoryFeature(ListeningFeature):
    """Keeps recently played tracks out of the draw until they age out."""

    feature_id = "History"

    def __init__(self, default_capacity: float = DEFAULT_HISTORY_CAPACITY):
        self.default_capacity = default_capacity

    def load(self, session: ListeningSession, store: CollectiveDataStore, options: Any = None) -> None:
        size = self._capacity_option(options)
        session.feature_sessions[self.feature_id] = HistoryQueue(
            capacity=determine_capacity(size, len(session.tracks))
        )

    def next(self, session: ListeningSession, store: CollectiveDataStore) -> None:
        self.push(session)

    def push(self, session: ListeningSession) -> None:
        """Queue the current track and zero its probability, evicting the oldest entry when full."""
        history = self._history(session, "push")
        if history is None:
            return

        track_id = session.current_track_id
        if track_id is None or track_id in history:
            logger.debug("No current track to push or track already in history")
            return
        if history.capacity <= 0:
            logger.debug("History capacity is 0, nothing to push")
            return

        if history.is_full:
            self.pop(session)

        history.queue.append(track_id)
        history.members.add(track_id)

        entry = session.ledger[track_id]
        history.stored_probabilities[track_id] = entry.value
        entry.value = 0.0

    def pop(self, session: ListeningSession) -> Optional[str]:
        """Release the oldest queued track and restore the probability it had when queued."""
        history = self._history(session, "pop")
        if history is None:
            return None

        if not history.queue:
            logger.warning("Cannot pop from an empty history queue")
            return None

        track_id = history.queue.popleft()
        history.members.discard(track_id)
        session.ledger[track_id].value = history.stored_probabilities.pop(track_id)
        return track_id

    def _history(self, session: ListeningSession, operation: str) -> Optional[HistoryQueue]:
        history = session.feature_sessions.get(self.feature_id)
        if not isinstance(history, HistoryQueue):
            logger.error(f"Listening session {session.id[:8]} has no history queue usable in {operation}()")
            return None
        return history

    def _capacity_option(self, options: Any) -> float:
        if isinstance(options, dict):
            options = options.get('capacity')
        if isinstance(options, Real) and not isinstance(options, bool) and math.isfinite(options):
            return options
        if options is not None:
            logger.warning(f"Ignoring invalid history capacity {options!r}, using {self.default_capacity}")
        return self.default_capacity
