class EngineError(Exception):
    """Base class for errors raised by the variant engine."""


class ValidationError(EngineError, ValueError):
    """Caller-supplied input is invalid. Never retried."""


class ConcurrencyError(EngineError):
    """Transient storage conflict (write conflict or duplicate-key race).

    Retried by the transaction helper; only surfaced once the attempt budget
    is spent.
    """
