"""Error hierarchy for mid_network."""

from __future__ import annotations

from typing import Any, Mapping, Optional


class MidNetworkError(Exception):
    """Base exception for mid_network failures."""

    def __init__(self, message: str, *, context: Optional[Mapping[str, Any]] = None) -> None:
        super().__init__(message)
        self.context = dict(context) if context else {}

    def log_message(self) -> str:
        if not self.context:
            return str(self)
        return f"{self}: {self.context}"


class InvalidInputError(MidNetworkError, ValueError):
    """Malformed or degenerate input (empty MIDs, mismatched lengths, bad options)."""


class LibraryLoadError(MidNetworkError):
    """A spectral library could not be loaded."""


__all__ = ["MidNetworkError", "InvalidInputError", "LibraryLoadError"]
