"""
Exception types for fpsimp.

Library code raises these; the request loop in fpsimp.protocol turns
any FpsimpError into an error response and carries on with the next record.
"""

from typing import Optional


class FpsimpError(Exception):
    """Base class for all errors reported back to a client."""


class ParseError(FpsimpError):
    """
    An expression or pattern could not be read.

    Attributes:
        text: The offending token or input text
    """

    def __init__(self, message: str, text: Optional[str] = None):
        super().__init__(message)
        self.text = text


class RewriteError(FpsimpError):
    """A rewrite rule is malformed (e.g. its right side uses unbound variables)."""


class NoRulesLoaded(FpsimpError):
    """Simplification was requested before any rewrites were installed."""

    def __init__(self, message: str = "You haven't loaded any rewrites yet!"):
        super().__init__(message)
