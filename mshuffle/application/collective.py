import logging
import threading
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional, Set


logger = logging.getLogger(__name__)

SIMILAR_ARTISTS = "SimilarArtists"


class CollectiveDataValue(ABC):
    """A value shared across listening sessions, identified by ``id``."""

    def __init__(self, id: str):
        self.id = id

    @abstractmethod
    def merge(self, other: "CollectiveDataValue") -> bool:
        """Fold ``other`` into this value. Returns whether the value was accepted."""


class StringSetValue(CollectiveDataValue):
    """Set of string ids, merged by union."""

    def __init__(self, id: str, value: Optional[Iterable[str]] = None):
        super().__init__(id)
        self.value: Set[str] = set(value or ())

    def merge(self, other: CollectiveDataValue) -> bool:
        if not isinstance(other, StringSetValue):
            logger.warning(f"Cannot merge {type(other).__name__} into string set '{self.id}'")
            return False
        # rebind rather than mutate, readers may hold the previous set
        self.value = self.value | other.value
        return True

    def is_empty(self) -> bool:
        return not self.value

    def __repr__(self) -> str:
        return f"StringSetValue(id={self.id!r}, value={sorted(self.value)!r})"


class CollectiveData:
    """A named dataset mapping value ids to values."""

    def __init__(self, id: str):
        self.id = id
        self._values: Dict[str, CollectiveDataValue] = {}

    def get(self, value_id: str) -> Optional[CollectiveDataValue]:
        return self._values.get(value_id)

    def put(self, value: CollectiveDataValue) -> bool:
        """Insert the value, or merge it into the value already stored under its id."""
        stored = self._values.get(value.id)
        if stored is None:
            self._values[value.id] = value
            return True
        return stored.merge(value)

    def __contains__(self, value_id: str) -> bool:
        return value_id in self._values

    def __len__(self) -> int:
        return len(self._values)


class CollectiveDataStore:
    """Process-wide registry of datasets shared by every listening session.

    Reads and merges go through a single lock so that sessions resolving the
    same value concurrently end up with the union of their results.
    """

    def __init__(self):
        self._datasets: Dict[str, CollectiveData] = {}
        self._lock = threading.Lock()

    def get(self, dataset_id: str, value_id: str) -> Optional[CollectiveDataValue]:
        with self._lock:
            dataset = self._datasets.get(dataset_id)
            if dataset is None:
                return None
            return dataset.get(value_id)

    def put(self, dataset_id: str, value: CollectiveDataValue) -> bool:
        with self._lock:
            dataset = self._datasets.get(dataset_id)
            if dataset is None:
                logger.error(f"Collective dataset '{dataset_id}' is not registered, dropping value '{value.id}'")
                return False
            return dataset.put(value)

    def set(self, dataset: CollectiveData) -> bool:
        """Install a dataset, replacing any dataset registered under the same id."""
        with self._lock:
            self._datasets[dataset.id] = dataset
        return True

    def dataset_ids(self) -> List[str]:
        with self._lock:
            return list(self._datasets)


def create_default_store() -> CollectiveDataStore:
    """Store with every dataset the listening features rely on."""
    store = CollectiveDataStore()
    # artist id => ids of similar artists
    store.set(CollectiveData(SIMILAR_ARTISTS))
    return store
