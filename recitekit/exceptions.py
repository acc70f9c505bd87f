"""Custom exceptions for recitekit."""


class RecitekitError(Exception):
    """Base exception for recitekit."""
    pass


class TransportError(RecitekitError):
    """Network or API unreachable, or a non-2xx response."""
    pass


class DecodingError(RecitekitError):
    """Response shape not recognized after all tolerant fallbacks."""
    pass


class MissingMediaError(RecitekitError):
    """No playable audio URL could be resolved."""
    pass


class CacheIOError(RecitekitError):
    """Error reading or writing the content cache on disk."""
    pass
