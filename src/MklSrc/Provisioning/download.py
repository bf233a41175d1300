"""
Archive Download

Streams a remote archive to disk over HTTP(S). The write target is opened
before the request is issued and the body is copied chunk by chunk, so large
distributions never sit in memory. Redirects are followed transparently and
any final status other than 200 aborts the build; there is no retry and no
resume. Content validation is the caller's job.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Optional, Union

import httpx

from .errors import ArtifactIOError, NetworkError, ProvisioningError
from .logging_utils import LoggerLike
from .net import get_http_client
from .settings import HttpSettings

__all__ = ["DownloadResult", "fetch", "part_path_for"]

LOGGER = logging.getLogger("MklSrc.Provisioning")


@dataclass(slots=True)
class DownloadResult:
    """Metadata describing a completed download.

    Attributes:
        path: Final archive path.
        status_code: Final HTTP status (always 200 for returned results).
        bytes_written: Number of body bytes written to ``path``.
        final_url: URL that served the body after redirects.
    """

    path: Path
    status_code: int
    bytes_written: int
    final_url: str


def part_path_for(destination: Path) -> Path:
    """Return the temporary path the body is streamed into before the final rename."""

    return destination.with_name(destination.name + ".part")


def _content_length(response: httpx.Response) -> Optional[int]:
    header = response.headers.get("Content-Length")
    if not header:
        return None
    try:
        return int(header)
    except ValueError:
        return None


def _open_target(path: Path) -> BinaryIO:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        return path.open("wb")
    except OSError as exc:
        raise ArtifactIOError(f"Unable to open {path} for writing: {exc}") from exc


def _stream_body(
    response: httpx.Response,
    target: BinaryIO,
    *,
    target_path: Path,
    settings: HttpSettings,
    logger: LoggerLike,
) -> int:
    total_bytes = _content_length(response)
    threshold = settings.progress_log_bytes_threshold
    next_report = threshold
    written = 0
    for chunk in response.iter_bytes(settings.chunk_size):
        if not chunk:
            continue
        try:
            target.write(chunk)
        except OSError as exc:
            raise ArtifactIOError(f"Failed to write {target_path}: {exc}") from exc
        written += len(chunk)
        if threshold and written >= next_report:
            logger.info(
                "download progress",
                extra={
                    "stage": "download",
                    "bytes_downloaded": written,
                    "bytes_total": total_bytes,
                },
            )
            next_report = written + threshold
    return written


def fetch(
    uri: str,
    destination: Union[str, Path],
    *,
    client: Optional[httpx.Client] = None,
    settings: Optional[HttpSettings] = None,
    logger: Optional[LoggerLike] = None,
) -> DownloadResult:
    """Download ``uri`` into ``destination``, replacing any previous file.

    Args:
        uri: Source URL; redirects are followed.
        destination: Archive path to create or overwrite.
        client: HTTPX client to use instead of the shared one.
        settings: HTTP settings controlling chunk size and progress cadence.
        logger: Logger for progress records.

    Returns:
        DownloadResult describing the written archive.

    Raises:
        NetworkError: On connection or TLS failure, or a non-200 final status.
        ArtifactIOError: When the archive cannot be written locally.
    """

    cfg = settings or HttpSettings()
    log = logger or LOGGER
    http = client or get_http_client(cfg)
    target_path = Path(destination)
    part_path = part_path_for(target_path)

    stream = _open_target(part_path)
    try:
        with stream as target:
            try:
                with http.stream("GET", uri) as response:
                    status_code = response.status_code
                    final_url = str(response.url)
                    if status_code != 200:
                        raise NetworkError(
                            f"Unexpected response code {status_code} for {uri}",
                            url=uri,
                            status_code=status_code,
                        )
                    written = _stream_body(
                        response, target, target_path=part_path, settings=cfg, logger=log
                    )
            except (httpx.HTTPError, httpx.InvalidURL) as exc:
                raise NetworkError(f"Failed to download {uri}: {exc}", url=uri) from exc
    except ProvisioningError:
        part_path.unlink(missing_ok=True)
        log.error("download failed", extra={"stage": "download", "url": uri})
        raise

    try:
        os.replace(part_path, target_path)
    except OSError as exc:
        part_path.unlink(missing_ok=True)
        raise ArtifactIOError(f"Failed to finalise download {target_path}: {exc}") from exc

    log.info(
        "downloaded archive",
        extra={
            "stage": "download",
            "url": uri,
            "final_url": final_url,
            "bytes": written,
            "path": str(target_path),
        },
    )
    return DownloadResult(
        path=target_path, status_code=status_code, bytes_written=written, final_url=final_url
    )
