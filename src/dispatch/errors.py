from __future__ import annotations


class ConfigurationError(ValueError):
    """Raised when the job input cannot be turned into a valid call.

    ``key`` names the offending field (dotted path) when one is known.
    """

    def __init__(self, message: str, key: str | None = None):
        super().__init__(message)
        self.key = key


__all__ = ["ConfigurationError"]
