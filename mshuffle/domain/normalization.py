from __future__ import annotations

from typing import Dict, Mapping, Optional

from .entities import ProbabilityEntry


Ledger = Dict[str, ProbabilityEntry]


def equal_odds(track_count: int) -> float:
    """Probability of each track under a uniform distribution, 0 for empty playlists."""
    return 1.0 / track_count if track_count > 0 else 0.0


def total_probability(ledger: Mapping[str, ProbabilityEntry]) -> float:
    return sum(entry.value for entry in ledger.values())


def normalize_probabilities(ledger: Mapping[str, ProbabilityEntry]) -> bool:
    """Rescale the ledger in place so its values sum to 1.

    A ledger whose total is not positive has nothing selectable and is left
    untouched. Returns whether the ledger was rescaled.
    """
    total = total_probability(ledger)
    if total <= 0:
        return False

    for entry in ledger.values():
        entry.value /= total
    return True


def select_track_id(ledger: Mapping[str, ProbabilityEntry], draw: float) -> Optional[str]:
    """Weighted pick of a track id for a uniform draw in [0, 1).

    Entries are accumulated in insertion order and the first one whose
    running total strictly exceeds the draw wins. Floating point drift can
    leave every running total at or below the draw, in which case nothing
    is selected.
    """
    accumulated = 0.0
    for track_id, entry in ledger.items():
        accumulated += entry.value
        if accumulated > draw:
            return track_id
    return None
