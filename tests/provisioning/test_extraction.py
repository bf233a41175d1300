# === NAVMAP v1 ===
# {
#   "module": "tests.provisioning.test_extraction",
#   "purpose": "Tarball extraction, traversal rejection and malformed archive handling",
#   "sections": [
#     {"id": "happy_paths", "name": "Happy Path Tests", "anchor": "HPT", "kind": "tests"},
#     {"id": "security", "name": "Security Tests", "anchor": "SEC", "kind": "tests"},
#     {"id": "malformed", "name": "Malformed Archive Tests", "anchor": "MAL", "kind": "tests"}
#   ]
# }
# === /NAVMAP ===

"""Tests for :func:`MklSrc.Provisioning.extraction.unpack`.

Tests cover:
- Nested trees in bz2, gz and xz tarballs, preserved relative to the destination
- Rejection of absolute names, ``..`` components, escaping links (including
  chains through other symlinks) and device nodes
- Truncated, corrupted and non-tar input
- Compression ratio guard
"""

from __future__ import annotations

import io
import logging
import random
import tarfile
from pathlib import Path

import pytest

from MklSrc.Provisioning.errors import (
    ArchiveFormatError,
    ArtifactIOError,
    UnsafeArchiveError,
)
from MklSrc.Provisioning.extraction import unpack
from MklSrc.Provisioning.testing import SAMPLE_MKL_FILES as MKL_FILES
from MklSrc.Provisioning.testing import build_tarball

_NOISE = random.Random(0).randbytes(200_000)


def _logger() -> logging.Logger:
    logger = logging.getLogger("test.extract")
    logger.setLevel(logging.DEBUG)
    return logger


# ============================================================================
# HAPPY PATH TESTS
# ============================================================================


@pytest.mark.parametrize("compression", ["bz2", "gz", "xz", ""])
def test_unpack_preserves_nested_tree(tmp_path: Path, compression: str) -> None:
    archive = build_tarball(
        tmp_path / f"mkl.tar.{compression or 'plain'}", MKL_FILES, compression=compression
    )
    destination = tmp_path / "out"

    extracted = unpack(archive, destination, logger=_logger())

    for name, payload in MKL_FILES.items():
        assert (destination / name).read_bytes() == payload
    assert extracted == [destination / name for name in MKL_FILES]


def test_unpack_overwrites_existing_files(tmp_path: Path) -> None:
    archive = build_tarball(tmp_path / "mkl.tar.bz2", {"lib/libmkl_core.a": b"fresh"})
    destination = tmp_path / "out"
    (destination / "lib").mkdir(parents=True)
    (destination / "lib" / "libmkl_core.a").write_bytes(b"stale and longer")

    unpack(archive, destination)

    assert (destination / "lib" / "libmkl_core.a").read_bytes() == b"fresh"


def test_unpack_accepts_dot_slash_prefix_and_internal_symlink(tmp_path: Path) -> None:
    link = tarfile.TarInfo("./lib/libmkl_rt.so")
    link.type = tarfile.SYMTYPE
    link.linkname = "libmkl_rt.so.1"
    archive = build_tarball(
        tmp_path / "mkl.tar.bz2",
        {"./lib/libmkl_rt.so.1": b"rt"},
        extra_members=(link,),
    )
    destination = tmp_path / "out"

    unpack(archive, destination)

    assert (destination / "lib" / "libmkl_rt.so").read_bytes() == b"rt"


def test_unpack_logs_file_count(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    archive = build_tarball(tmp_path / "mkl.tar.bz2", MKL_FILES)

    with caplog.at_level(logging.INFO, logger="MklSrc.Provisioning"):
        unpack(archive, tmp_path / "out")

    record = next(r for r in caplog.records if r.getMessage() == "extracted tar archive")
    assert record.stage == "extract"
    assert record.files == len(MKL_FILES)


# ============================================================================
# SECURITY TESTS
# ============================================================================


@pytest.mark.parametrize(
    "member_name",
    ["../escape.txt", "lib/../../escape.txt", "/etc/passwd", "C:/windows/evil.dll"],
)
def test_unpack_rejects_escaping_names(tmp_path: Path, member_name: str) -> None:
    archive = build_tarball(
        tmp_path / "evil.tar.bz2", {"lib/ok.a": b"ok", member_name: b"pwned"}
    )
    destination = tmp_path / "out"

    with pytest.raises(UnsafeArchiveError):
        unpack(archive, destination)

    assert not (tmp_path / "escape.txt").exists()
    assert not (destination / "lib" / "ok.a").exists()


@pytest.mark.parametrize("linkname", ["../../outside", "/etc/passwd"])
def test_unpack_rejects_symlink_escaping_destination(tmp_path: Path, linkname: str) -> None:
    link = tarfile.TarInfo("lib/evil")
    link.type = tarfile.SYMTYPE
    link.linkname = linkname
    archive = build_tarball(tmp_path / "evil.tar.bz2", {}, extra_members=(link,))

    with pytest.raises(UnsafeArchiveError):
        unpack(archive, tmp_path / "out")


def _link(name: str, target: str, *, kind: bytes = tarfile.SYMTYPE) -> tarfile.TarInfo:
    info = tarfile.TarInfo(name)
    info.type = kind
    info.linkname = target
    return info


def _ordered_tarball(path: Path, members: list) -> Path:
    """Write ``(TarInfo, payload-or-None)`` pairs in exactly the given order."""

    with tarfile.open(path, "w:bz2") as archive:
        for info, payload in members:
            if payload is None:
                archive.addfile(info)
            else:
                info.size = len(payload)
                archive.addfile(info, io.BytesIO(payload))
    return path


def test_unpack_rejects_symlink_chained_through_another_symlink(tmp_path: Path) -> None:
    directory = tarfile.TarInfo("x")
    directory.type = tarfile.DIRTYPE
    directory.mode = 0o755
    archive = _ordered_tarball(
        tmp_path / "chain.tar.bz2",
        [
            (directory, None),
            (_link("x/b", ".."), None),
            (_link("a", "x/b/.."), None),
            (tarfile.TarInfo("a/escaped.txt"), b"pwned"),
        ],
    )
    destination = tmp_path / "jail" / "out"

    with pytest.raises(UnsafeArchiveError):
        unpack(archive, destination)

    assert not (tmp_path / "jail" / "escaped.txt").exists()
    assert not (destination / "a").exists()


def test_unpack_rejects_hardlink_chained_through_symlink(tmp_path: Path) -> None:
    directory = tarfile.TarInfo("x")
    directory.type = tarfile.DIRTYPE
    (tmp_path / "jail").mkdir()
    (tmp_path / "jail" / "secret").write_bytes(b"secret")
    archive = _ordered_tarball(
        tmp_path / "hardlink.tar.bz2",
        [
            (directory, None),
            (_link("x/b", ".."), None),
            (_link("stolen", "x/b/../secret", kind=tarfile.LNKTYPE), None),
        ],
    )
    destination = tmp_path / "jail" / "out"

    with pytest.raises(UnsafeArchiveError):
        unpack(archive, destination)

    assert not (destination / "stolen").exists()


def test_unpack_rejects_symlink_loop(tmp_path: Path) -> None:
    archive = _ordered_tarball(
        tmp_path / "loop.tar.bz2",
        [(_link("lib/a", "b"), None), (_link("lib/b", "a"), None)],
    )

    with pytest.raises(UnsafeArchiveError):
        unpack(archive, tmp_path / "out")


def test_unpack_refuses_to_write_through_existing_outside_symlink(tmp_path: Path) -> None:
    outside = tmp_path / "outside"
    outside.mkdir()
    destination = tmp_path / "out"
    destination.mkdir()
    (destination / "lib").symlink_to(outside, target_is_directory=True)
    archive = build_tarball(tmp_path / "mkl.tar.bz2", {"lib/libmkl_core.a": b"core"})

    with pytest.raises(UnsafeArchiveError):
        unpack(archive, destination)

    assert not (outside / "libmkl_core.a").exists()


def test_unpack_rejects_device_entries(tmp_path: Path) -> None:
    device = tarfile.TarInfo("dev/null")
    device.type = tarfile.CHRTYPE
    archive = build_tarball(tmp_path / "dev.tar.bz2", {}, extra_members=(device,))

    with pytest.raises(UnsafeArchiveError):
        unpack(archive, tmp_path / "out")


def test_unpack_enforces_compression_ratio(tmp_path: Path) -> None:
    archive = build_tarball(tmp_path / "bomb.tar.bz2", {"zeros.bin": b"\0" * (2 << 20)})

    with pytest.raises(UnsafeArchiveError):
        unpack(archive, tmp_path / "out", max_compression_ratio=10.0)

    assert not (tmp_path / "out" / "zeros.bin").exists()


# ============================================================================
# MALFORMED ARCHIVE TESTS
# ============================================================================


def test_unpack_missing_archive_raises_io_error(tmp_path: Path) -> None:
    with pytest.raises(ArtifactIOError):
        unpack(tmp_path / "absent.tar.bz2", tmp_path / "out")


def test_unpack_rejects_non_tar_input(tmp_path: Path) -> None:
    archive = tmp_path / "page.tar.bz2"
    archive.write_bytes(b"<html><body>404 Not Found</body></html>")

    with pytest.raises(ArchiveFormatError):
        unpack(archive, tmp_path / "out")


def test_unpack_rejects_truncated_archive(tmp_path: Path) -> None:
    source = build_tarball(tmp_path / "full.tar.bz2", {"lib/big.a": _NOISE})
    truncated = tmp_path / "truncated.tar.bz2"
    truncated.write_bytes(source.read_bytes()[: source.stat().st_size // 2])

    with pytest.raises(ArchiveFormatError):
        unpack(truncated, tmp_path / "out")


def test_unpack_rejects_corrupted_stream(tmp_path: Path) -> None:
    source = build_tarball(tmp_path / "full.tar.bz2", {"lib/big.a": _NOISE})
    data = bytearray(source.read_bytes())
    for index in range(64, min(len(data), 256)):
        data[index] ^= 0xFF
    corrupted = tmp_path / "corrupted.tar.bz2"
    corrupted.write_bytes(bytes(data))

    with pytest.raises(ArchiveFormatError):
        unpack(corrupted, tmp_path / "out")
