"""Cache gate deciding whether a local archive can be reused."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

from .checksums import digest
from .errors import ArtifactIOError
from .logging_utils import LoggerLike
from .platforms import ArtifactSpec

__all__ = ["is_cached_and_valid"]

LOGGER = logging.getLogger("MklSrc.Provisioning")


def is_cached_and_valid(
    spec: ArtifactSpec,
    output_dir: Union[str, Path],
    *,
    logger: Optional[LoggerLike] = None,
) -> bool:
    """Return ``True`` when the archive for ``spec`` exists and hashes to its expected digest.

    The archive file itself is the only cache record. Missing, unreadable, and
    mismatched archives all report a miss so the caller downloads afresh.
    """

    log = logger or LOGGER
    archive = spec.archive_path(Path(output_dir))
    extra = {"stage": "cache", "artifact": spec.archive_name}
    if not archive.is_file():
        log.debug("archive not cached", extra=extra)
        return False
    try:
        actual = digest(archive, spec.algorithm)
    except ArtifactIOError as exc:
        log.warning("cached archive unreadable", extra={**extra, "error": str(exc)})
        return False
    if actual != spec.expected_digest:
        log.info(
            "cached archive digest mismatch",
            extra={**extra, "expected": spec.expected_digest, "actual": actual},
        )
        return False
    return True
