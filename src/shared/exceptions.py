"""
Exception hierarchy for the assessment engine.
"""


class EngineError(Exception):
    """Base exception for all engine errors."""
    pass


class RepositoryError(EngineError):
    """Raised when the backing store rejects or cannot serve a request."""
    pass


class QuestionBankError(EngineError):
    """Raised when candidate questions cannot be fetched."""
    pass


class SessionError(EngineError):
    """Raised when a session operation fails."""
    pass


class SessionStateError(SessionError):
    """Raised when an operation is not valid in the session's current state."""
    pass


class SessionNotInitializedError(SessionStateError):
    """Raised when a quiz operation runs before initialize_session()."""
    pass


class SessionNotFoundError(SessionError):
    """Raised when a session key is not registered."""
    pass


class TelemetryError(EngineError):
    """Raised when an event is tracked on an inactive collector."""
    pass


class RemediationError(EngineError):
    """Base exception for remediation dispatch errors."""
    pass


class SuggestionNotFoundError(RemediationError):
    """Raised when a suggestion id is not in the active list."""
    pass
