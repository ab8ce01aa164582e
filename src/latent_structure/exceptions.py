"""
Exception hierarchy for the latent_structure package.

Only precondition violations are meant to reach the caller of a sweep.
Fitting errors are raised by the EM routine and converted into
``FitFailure`` outcomes by the fitting backend.
"""

from typing import Optional


class LatentStructureError(Exception):
    """Base class for all package errors."""


class PreconditionError(LatentStructureError, ValueError):
    """Raised when sweep inputs are malformed, before any fitting starts."""


class FitError(LatentStructureError):
    """Raised when a single model fit fails numerically."""

    def __init__(self, message: str, n_classes: Optional[int] = None):
        super().__init__(message)
        self.n_classes = n_classes


class BackendStateError(LatentStructureError, RuntimeError):
    """Raised when a fitting backend is used outside its open/close lifecycle."""
