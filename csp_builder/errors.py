"""Exceptions raised by the CSP builder."""

from __future__ import annotations


class CSPBuilderError(Exception):
    """Base class for all csp_builder errors."""
    pass


class InvalidPolicyError(CSPBuilderError):
    """Raised when a policy document cannot be loaded or is malformed."""
    pass


class UnknownDirectiveError(CSPBuilderError):
    """Raised when a mutation names a directive outside the known set."""

    def __init__(self, directive: str) -> None:
        self.directive = directive
        super().__init__(f"Directive {directive} does not exist")


class UnsupportedFormatError(CSPBuilderError):
    """Raised when a snippet format other than nginx/apache is requested."""

    def __init__(self, fmt: str) -> None:
        self.format = fmt
        super().__init__(f"Unknown format: {fmt}")


class HeadersAlreadySentError(CSPBuilderError):
    """Raised when headers are emitted after the response head was flushed."""
    pass
