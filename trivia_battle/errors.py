"""
Exception hierarchy for the trivia engines.
"""


class TriviaError(Exception):
    """Base exception for trivia engine errors."""
    pass


class ConflictError(TriviaError):
    """Raised when an active session or challenge already exists, or on a self-challenge."""
    pass


class PermissionDeniedError(TriviaError, PermissionError):
    """Raised when a caller is not allowed to stop, respond to or play a round."""
    pass


class ProviderError(TriviaError):
    """Raised when not enough usable questions can be obtained for a round."""
    pass


class NotFoundError(TriviaError):
    """Raised when an operation references an unknown or already finished round."""
    pass
