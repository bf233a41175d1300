"""Exception hierarchy shared across MKL fetching, extraction, and verification.

The provisioning pipeline spans configuration parsing, HTTP retrieval, archive
materialisation, and digest verification. Each stage raises a dedicated
subclass of :class:`ProvisioningError` so the command line can turn any
failure into a single terminal diagnostic while library callers can still
react to the specific category.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Union

__all__ = [
    "ProvisioningError",
    "ConfigurationError",
    "NetworkError",
    "ArtifactIOError",
    "ArchiveFormatError",
    "UnsafeArchiveError",
    "IntegrityError",
]


class ProvisioningError(RuntimeError):
    """Base exception for MKL provisioning failures."""


class ConfigurationError(ProvisioningError):
    """Raised when settings, artifact tables, or platform selectors are invalid."""


class NetworkError(ProvisioningError):
    """Raised when a download fails to connect or ends with a non-200 status."""

    def __init__(
        self,
        message: str,
        *,
        url: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class ArtifactIOError(ProvisioningError):
    """Raised when a local file cannot be opened, read, or written."""


class ArchiveFormatError(ProvisioningError):
    """Raised when an archive is truncated, corrupted, or not a compressed tarball."""


class UnsafeArchiveError(ArchiveFormatError):
    """Raised when an archive entry would be written outside the destination."""


class IntegrityError(ProvisioningError):
    """Raised when a freshly downloaded archive does not match its expected digest."""

    def __init__(
        self,
        message: str,
        *,
        expected: str,
        actual: str,
        path: Optional[Union[str, Path]] = None,
    ) -> None:
        super().__init__(message)
        self.expected = expected
        self.actual = actual
        self.path = Path(path) if path is not None else None
