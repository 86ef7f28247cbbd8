class NewsdeskError(Exception):
    """Base application exception."""


class SourceConfigError(NewsdeskError):
    """Raised when the source registry cannot be loaded or is invalid."""


class FetchError(NewsdeskError):
    """Raised when an outbound fetch fails, times out or is cancelled."""
