"""Session proxy exceptions."""


class SessionProxyError(Exception):
    """Base exception for all session proxy operations."""


class MissingCredentialError(SessionProxyError):
    """Raised when a session is created without an API key."""

    def __init__(self) -> None:
        super().__init__("Missing API key")


class ConnectorStateError(SessionProxyError):
    """Raised when a connector operation is not valid in its current state."""

    def __init__(self, generation: int, message: str) -> None:
        self.generation = generation
        super().__init__(f"[generation:{generation}] {message}")


class UpstreamSendError(SessionProxyError):
    """Raised when a frame could not be written to the upstream connection."""

    def __init__(self, generation: int, message: str) -> None:
        self.generation = generation
        super().__init__(f"[generation:{generation}] {message}")


class BufferOverflowError(SessionProxyError):
    """Raised when the outbound buffer is full and the policy is to reject."""

    def __init__(self, capacity: int) -> None:
        self.capacity = capacity
        super().__init__(f"Outbound buffer full: {capacity} messages pending")


class SessionCapacityError(SessionProxyError):
    """Raised when the registry has no room for another session."""

    def __init__(self, max_sessions: int) -> None:
        self.max_sessions = max_sessions
        super().__init__(f"Session registry full: {max_sessions} concurrent sessions at capacity")
