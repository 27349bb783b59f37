import base64
import hashlib
import threading
from typing import Dict, List, Optional

from mshuffle.domain.entities import Authorization
from mshuffle.domain.session import ListeningSession


def hash_credential(auth: Authorization) -> str:
    """Derive a stable, one-way session key from the listener's access token."""
    if not auth or not auth.access_token:
        raise ValueError("Authorization has no access token to derive a session id from")

    digest = hashlib.sha512(auth.access_token.encode('utf-8')).digest()
    return base64.b64encode(digest).decode('ascii')


class SessionStore:
    """In-memory registry of live listening sessions keyed by credential hash.

    Sessions do not survive a process restart.
    """

    def __init__(self):
        self._sessions: Dict[str, ListeningSession] = {}
        self._lock = threading.Lock()

    def get(self, session_id: str) -> Optional[ListeningSession]:
        with self._lock:
            return self._sessions.get(session_id)

    def save(self, session: ListeningSession) -> None:
        """Store a session, replacing any live session with the same id."""
        with self._lock:
            self._sessions[session.id] = session

    def delete(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def ids(self) -> List[str]:
        with self._lock:
            return list(self._sessions)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions
