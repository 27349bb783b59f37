class MusicProviderError(Exception):
    """Base class for failures reported by a music provider."""


class RateLimited(MusicProviderError):
    """Operation was rate limited by provider. Includes suggested wait time in milliseconds."""

    def __init__(self, retry_after_ms: int, message: str = "Rate limited") -> None:
        super().__init__(message)
        self.retry_after_ms = retry_after_ms


class TemporaryFailure(MusicProviderError):
    """Transient provider or network failure. Retrying may succeed."""


class PermanentFailure(MusicProviderError):
    """Non-retriable failure due to invalid input or authorization issues."""


class NotFound(MusicProviderError):
    """Requested resource was not found."""


class SessionError(Exception):
    """The listening session is not in a state that allows the operation."""


class SessionNotFound(SessionError):
    """No listening session is loaded for the credential."""

    def __init__(self, message: str = "No listening session loaded, load a playlist first") -> None:
        super().__init__(message)


class NoActiveTrack(SessionError):
    """Feedback was given while no track is playing."""

    def __init__(self, action: str = "rate") -> None:
        super().__init__(f"Cannot {action} without an active track")
        self.action = action
