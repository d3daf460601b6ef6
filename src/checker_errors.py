"""
checker_errors.py

Errors raised by the checker. FetchError and NotifyError are recoverable,
the loop logs them and moves on to the next check. ConfigError and
ConfigFileError are fatal at startup.
"""

from typing import List, Optional


class CheckerError(Exception):
    pass


class ConfigError(CheckerError):
    """All parameter violations found at startup, reported together."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("invalid params: " + "; ".join(self.errors))


class ConfigFileError(CheckerError):
    pass


class FetchError(CheckerError):
    pass


class NotifyError(CheckerError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)
