# === NAVMAP v1 ===
# {
#   "module": "MklSrc.Provisioning.checksums",
#   "purpose": "Normalise expected digests and compute file digests for archive verification",
#   "sections": [
#     {"id": "model", "name": "ExpectedChecksum", "anchor": "MOD", "kind": "api"},
#     {"id": "normalise", "name": "Normalisation Helpers", "anchor": "NRM", "kind": "helpers"},
#     {"id": "hashing", "name": "File Hashing", "anchor": "HAS", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Checksum normalisation and file hashing helpers.

Artifact tables declare expected digests as bare hexadecimal strings (the
conda channel publishes MD5 sums) or as ``algorithm:value`` pairs. This module
normalises those declarations and computes digests of local archives so the
cache gate and the provisioner compare like with like.
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Tuple, Type, Union

from .errors import ArtifactIOError, ConfigurationError, IntegrityError

__all__ = [
    "DEFAULT_ALGORITHM",
    "SUPPORTED_ALGORITHMS",
    "ExpectedChecksum",
    "normalize_algorithm",
    "normalize_checksum",
    "parse_checksum",
    "digest",
    "verify",
]

ErrorType = Type[Exception]

DEFAULT_ALGORITHM = "md5"
SUPPORTED_ALGORITHMS = frozenset({"md5", "sha1", "sha256", "sha512"})
_HEX_LENGTHS = {"md5": 32, "sha1": 40, "sha256": 64, "sha512": 128}
_HEX_PATTERN = re.compile(r"[0-9a-f]+")
_READ_CHUNK_SIZE = 1 << 20


@dataclass(slots=True, frozen=True)
class ExpectedChecksum:
    """Expected checksum declared for an artifact."""

    algorithm: str
    value: str

    def to_known_hash(self) -> str:
        """Return the ``algorithm:value`` form used in logs and tables."""

        return f"{self.algorithm}:{self.value}"


def normalize_algorithm(
    algorithm: str | None,
    *,
    context: str = "checksum",
    error_cls: ErrorType = ConfigurationError,
) -> str:
    candidate = (algorithm or DEFAULT_ALGORITHM).strip().lower()
    if candidate not in SUPPORTED_ALGORITHMS:
        raise error_cls(f"{context}: unsupported checksum algorithm '{candidate}'")
    return candidate


def normalize_checksum(
    algorithm: str | None,
    value: object,
    *,
    context: str = "checksum",
    error_cls: ErrorType = ConfigurationError,
) -> Tuple[str, str]:
    """Return a validated ``(algorithm, lower-case hex digest)`` pair."""

    normalized_algorithm = normalize_algorithm(algorithm, context=context, error_cls=error_cls)
    if not isinstance(value, str):
        raise error_cls(f"{context}: checksum value must be a string")
    checksum = value.strip().lower()
    if not _HEX_PATTERN.fullmatch(checksum):
        raise error_cls(f"{context}: checksum value must be a hexadecimal digest")
    expected_length = _HEX_LENGTHS[normalized_algorithm]
    if len(checksum) != expected_length:
        raise error_cls(
            f"{context}: {normalized_algorithm} digest must have {expected_length} "
            f"hex characters, got {len(checksum)}"
        )
    return normalized_algorithm, checksum


def parse_checksum(
    value: str,
    *,
    default_algorithm: str = DEFAULT_ALGORITHM,
    context: str = "checksum",
) -> ExpectedChecksum:
    """Parse ``value`` given either as ``algorithm:hex`` or as a bare hex digest."""

    if not isinstance(value, str):
        raise ConfigurationError(f"{context}: checksum must be provided as a string")
    algorithm = default_algorithm
    raw = value
    if ":" in value:
        algorithm, raw = value.split(":", 1)
    normalized_algorithm, checksum = normalize_checksum(algorithm, raw, context=context)
    return ExpectedChecksum(algorithm=normalized_algorithm, value=checksum)


def digest(path: Union[str, Path], algorithm: str = DEFAULT_ALGORITHM) -> str:
    """Return the hexadecimal ``algorithm`` digest of the file at ``path``."""

    hasher = hashlib.new(normalize_algorithm(algorithm))
    file_path = Path(path)
    try:
        with file_path.open("rb") as stream:
            for chunk in iter(lambda: stream.read(_READ_CHUNK_SIZE), b""):
                hasher.update(chunk)
    except OSError as exc:
        raise ArtifactIOError(f"Unable to read {file_path}: {exc}") from exc
    return hasher.hexdigest()


def verify(path: Union[str, Path], expected: ExpectedChecksum) -> str:
    """Compute the digest of ``path`` and raise :class:`IntegrityError` on mismatch.

    Returns:
        The computed digest, equal to ``expected.value``.
    """

    actual = digest(path, expected.algorithm)
    if actual != expected.value:
        raise IntegrityError(
            f"check sum of downloaded archive is incorrect: "
            f"{expected.algorithm}sum={actual} (expected {expected.value}) for {path}",
            expected=expected.value,
            actual=actual,
            path=path,
        )
    return actual
