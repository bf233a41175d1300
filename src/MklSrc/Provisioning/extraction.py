# === NAVMAP v1 ===
# {
#   "module": "MklSrc.Provisioning.extraction",
#   "purpose": "Unpack compressed tarballs into the output directory with traversal checks",
#   "sections": [
#     {"id": "validation", "name": "Member Validation", "anchor": "VAL", "kind": "helpers"},
#     {"id": "limits", "name": "Expansion Limits", "anchor": "LIM", "kind": "helpers"},
#     {"id": "unpack", "name": "unpack", "anchor": "function-unpack", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Archive extraction for downloaded MKL distributions.

Conda packages are bzip2-compressed tarballs. :func:`unpack` detects the
compression transparently, validates every member up front, and then writes
the whole archive into the destination while preserving its directory layout.
Entries that would land outside the destination (absolute names, ``..``
components, links pointing elsewhere) and device nodes are rejected before
anything is written.
"""

from __future__ import annotations

import logging
import lzma
import os
import posixpath
import shutil
import tarfile
import zlib
from pathlib import Path, PurePosixPath
from typing import IO, Dict, List, Optional, Sequence, Tuple, Union

from .errors import ArchiveFormatError, ArtifactIOError, UnsafeArchiveError
from .logging_utils import LoggerLike

__all__ = ["unpack"]

LOGGER = logging.getLogger("MklSrc.Provisioning")

_COPY_CHUNK_SIZE = 1 << 20
_MAX_LINK_HOPS = 40
_DECODE_ERRORS = (tarfile.TarError, EOFError, zlib.error, lzma.LZMAError, OSError)


def _validate_member_path(member_name: str) -> Path:
    """Return the relative path of ``member_name`` or raise for unsafe names."""

    normalized = member_name.replace("\\", "/")
    while normalized.startswith("./"):
        normalized = normalized[2:]
    relative = PurePosixPath(normalized)
    if relative.is_absolute() or PurePosixPath(member_name.replace("\\", "/")).is_absolute():
        raise UnsafeArchiveError(f"Unsafe absolute path detected in archive: {member_name}")
    if not relative.parts or normalized in {"", "."}:
        raise UnsafeArchiveError(f"Empty path detected in archive: {member_name}")
    if any(part in {"", ".."} for part in relative.parts):
        raise UnsafeArchiveError(f"Unsafe path detected in archive: {member_name}")
    if ":" in relative.parts[0]:
        raise UnsafeArchiveError(f"Drive-qualified path detected in archive: {member_name}")
    return Path(*relative.parts)


def _validate_link(member: tarfile.TarInfo, member_path: Path) -> str:
    """Ensure a link member resolves inside the destination and return its target."""

    linkname = member.linkname.replace("\\", "/")
    if not linkname or PurePosixPath(linkname).is_absolute():
        raise UnsafeArchiveError(
            f"Unsafe link target detected in archive: {member.name} -> {member.linkname}"
        )
    if member.issym():
        anchor = posixpath.dirname(member_path.as_posix())
        resolved = posixpath.normpath(posixpath.join(anchor, linkname))
    else:
        resolved = posixpath.normpath(linkname)
    if resolved == ".." or resolved.startswith("../"):
        raise UnsafeArchiveError(
            f"Link escapes destination in archive: {member.name} -> {member.linkname}"
        )
    return linkname


def _resolve_through_links(
    parts: Sequence[str], symlinks: Dict[str, str], member_name: str
) -> Tuple[str, ...]:
    """Resolve ``parts`` against the archive's own symlinks, as the filesystem would.

    ``symlinks`` maps each symlink member's relative path to its link target.
    Raises :class:`UnsafeArchiveError` when the walk leaves the destination root
    or follows too many links.
    """

    resolved: List[str] = []
    pending = list(parts)
    hops = 0
    while pending:
        part = pending.pop(0)
        if part in {"", "."}:
            continue
        if part == "..":
            if not resolved:
                raise UnsafeArchiveError(
                    f"Link chain escapes destination in archive: {member_name}"
                )
            resolved.pop()
            continue
        resolved.append(part)
        target = symlinks.get("/".join(resolved))
        if target is None:
            continue
        hops += 1
        if hops > _MAX_LINK_HOPS:
            raise UnsafeArchiveError(f"Too many levels of links in archive: {member_name}")
        # Symlink targets are relative to the directory holding the link.
        resolved.pop()
        pending = list(PurePosixPath(target).parts) + pending
    return tuple(resolved)


def _check_link_chains(planned: Sequence[Tuple[tarfile.TarInfo, Path]]) -> None:
    """Reject members whose path or link target escapes once symlinks are followed."""

    symlinks = {
        "/".join(member_path.parts): member.linkname.replace("\\", "/")
        for member, member_path in planned
        if member.issym()
    }
    if not symlinks:
        return
    for member, member_path in planned:
        parent_parts = member_path.parts[:-1]
        _resolve_through_links(parent_parts, symlinks, member.name)
        linkname = member.linkname.replace("\\", "/")
        if member.issym():
            _resolve_through_links(
                list(parent_parts) + list(PurePosixPath(linkname).parts), symlinks, member.name
            )
        elif member.islnk():
            _resolve_through_links(PurePosixPath(linkname).parts, symlinks, member.name)


def _ensure_within(path: Path, root: str, member_name: str) -> None:
    real = os.path.realpath(path)
    if os.path.commonpath([real, root]) != root:
        raise UnsafeArchiveError(
            f"Archive member resolves outside destination: {member_name} -> {real}"
        )


def _check_compression_ratio(
    *,
    total_uncompressed: int,
    archive: Path,
    limit: Optional[float],
    logger: LoggerLike,
) -> None:
    """Ensure the archive does not expand beyond ``limit`` times its size on disk."""

    if limit is None:
        return
    compressed_size = archive.stat().st_size
    if compressed_size <= 0:
        return
    ratio = total_uncompressed / float(compressed_size)
    if ratio > limit:
        logger.error(
            "archive compression ratio too high",
            extra={
                "stage": "extract",
                "archive": str(archive),
                "ratio": round(ratio, 2),
                "compressed_bytes": compressed_size,
                "uncompressed_bytes": total_uncompressed,
                "limit": limit,
            },
        )
        raise UnsafeArchiveError(
            f"archive {archive} expands to {total_uncompressed} bytes, "
            f"exceeding {limit}:1 compression ratio"
        )


def _plan_members(
    archive: tarfile.TarFile, archive_path: Path
) -> Tuple[List[Tuple[tarfile.TarInfo, Path]], int]:
    try:
        members = archive.getmembers()
    except _DECODE_ERRORS as exc:
        raise ArchiveFormatError(f"Failed to read tar archive {archive_path}: {exc}") from exc

    planned: List[Tuple[tarfile.TarInfo, Path]] = []
    total_uncompressed = 0
    for member in members:
        if member.isdir() and member.name.replace("\\", "/").strip("/") in {"", "."}:
            continue
        member_path = _validate_member_path(member.name)
        if member.issym() or member.islnk():
            _validate_link(member, member_path)
        elif member.isdev() or member.isfifo():
            raise UnsafeArchiveError(f"Unsupported special file detected in archive: {member.name}")
        elif not (member.isdir() or member.isfile()):
            raise ArchiveFormatError(f"Unsupported tar member type encountered: {member.name}")
        if member.isfile():
            total_uncompressed += int(member.size)
        planned.append((member, member_path))
    _check_link_chains(planned)
    return planned, total_uncompressed


def _remove_existing(target: Path) -> None:
    if target.is_symlink() or target.is_file():
        target.unlink()


def _copy_member(source: IO[bytes], target: Path, archive_path: Path, member_name: str) -> None:
    try:
        stream = target.open("wb")
    except OSError as exc:
        raise ArtifactIOError(f"Unable to create {target}: {exc}") from exc
    with stream:
        while True:
            try:
                chunk = source.read(_COPY_CHUNK_SIZE)
            except _DECODE_ERRORS as exc:
                raise ArchiveFormatError(
                    f"Failed to read {member_name} from {archive_path}: {exc}"
                ) from exc
            if not chunk:
                break
            try:
                stream.write(chunk)
            except OSError as exc:
                raise ArtifactIOError(f"Failed to write {target}: {exc}") from exc


def _write_member(
    archive: tarfile.TarFile,
    member: tarfile.TarInfo,
    member_path: Path,
    destination: Path,
    archive_path: Path,
    root: str,
) -> Optional[Path]:
    target = destination / member_path
    if member.isdir():
        target.mkdir(parents=True, exist_ok=True)
        _ensure_within(target, root, member.name)
        return None

    target.parent.mkdir(parents=True, exist_ok=True)
    _ensure_within(target.parent, root, member.name)
    _remove_existing(target)
    if member.issym():
        _ensure_within(target.parent / member.linkname, root, member.name)
        os.symlink(member.linkname, target)
        return target
    if member.islnk():
        source_path = destination / _validate_member_path(member.linkname)
        _ensure_within(source_path, root, member.name)
        shutil.copy2(source_path, target, follow_symlinks=True)
        return target

    try:
        extracted = archive.extractfile(member)
    except _DECODE_ERRORS as exc:
        raise ArchiveFormatError(f"Failed to read {member.name} from {archive_path}: {exc}") from exc
    if extracted is None:
        raise ArchiveFormatError(f"Failed to extract member: {member.name}")
    with extracted as source:
        _copy_member(source, target, archive_path, member.name)
    os.chmod(target, (member.mode & 0o777) | 0o200)
    return target


def unpack(
    archive_path: Union[str, Path],
    destination_dir: Union[str, Path],
    *,
    logger: Optional[LoggerLike] = None,
    max_compression_ratio: Optional[float] = None,
) -> List[Path]:
    """Extract every entry of a compressed tarball into ``destination_dir``.

    Args:
        archive_path: ``.tar``, ``.tar.gz``, ``.tar.bz2`` or ``.tar.xz`` archive.
        destination_dir: Directory that receives the archive's tree.
        logger: Logger for extraction records.
        max_compression_ratio: Optional expansion limit relative to the archive size.

    Returns:
        Paths of the regular files and links written, in archive order.

    Raises:
        ArtifactIOError: If the archive is missing or the destination is not writable.
        ArchiveFormatError: If the archive is truncated, corrupted, or not a tarball.
        UnsafeArchiveError: If an entry would escape ``destination_dir``.
    """

    log = logger or LOGGER
    archive = Path(archive_path)
    destination = Path(destination_dir)
    if not archive.is_file():
        raise ArtifactIOError(f"Archive not found: {archive}")

    try:
        tar = tarfile.open(archive, mode="r:*")
    except _DECODE_ERRORS as exc:
        raise ArchiveFormatError(f"Failed to open tar archive {archive}: {exc}") from exc

    extracted: List[Path] = []
    with tar:
        planned, total_uncompressed = _plan_members(tar, archive)
        _check_compression_ratio(
            total_uncompressed=total_uncompressed,
            archive=archive,
            limit=max_compression_ratio,
            logger=log,
        )
        try:
            destination.mkdir(parents=True, exist_ok=True)
            root = os.path.realpath(destination)
            for member, member_path in planned:
                written = _write_member(tar, member, member_path, destination, archive, root)
                if written is not None:
                    extracted.append(written)
        except (ArchiveFormatError, ArtifactIOError):
            raise
        except OSError as exc:
            raise ArtifactIOError(f"Failed to extract {archive} into {destination}: {exc}") from exc

    log.info(
        "extracted tar archive",
        extra={"stage": "extract", "archive": str(archive), "files": len(extracted)},
    )
    return extracted
