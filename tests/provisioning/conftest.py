"""Shared fixtures for the provisioning test suite."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Iterator, Sequence

import pytest

from MklSrc.Provisioning.logging_utils import LOGGER_NAME
from MklSrc.Provisioning.net import reset_http_client
from MklSrc.Provisioning.platforms import (
    ArtifactSpec,
    LinkVariant,
    Platform,
    PlatformProfile,
)
from MklSrc.Provisioning.testing import SAMPLE_MKL_FILES, ArchiveRoutes, build_tarball, md5_of

_ENV_VARS = (
    "MKLFETCH_OUT_DIR",
    "MKLFETCH_PLATFORM",
    "MKLFETCH_VARIANT",
    "MKLFETCH_ARTIFACTS_FILE",
    "MKLFETCH_LOG_LEVEL",
    "MKLFETCH_LOG_DIR",
    "MKLFETCH_CONNECT_TIMEOUT_SEC",
    "MKLFETCH_READ_TIMEOUT_SEC",
    "MKLFETCH_CONFIG",
    "OUT_DIR",
)


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Clear provisioning env vars and undo logger/client state after each test."""

    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    yield
    reset_http_client()
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        if getattr(handler, "_mklfetch_managed", False):
            logger.removeHandler(handler)
            handler.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def out_dir(tmp_path: Path) -> Path:
    path = tmp_path / "out"
    path.mkdir()
    return path


@pytest.fixture
def mkl_archive(tmp_path: Path) -> bytes:
    """Bytes of a bzip2 tarball laid out like the mkl-static conda package."""

    path = build_tarball(tmp_path / "source" / "mkl-static.tar.bz2", SAMPLE_MKL_FILES)
    return path.read_bytes()


@pytest.fixture
def routes() -> ArchiveRoutes:
    return ArchiveRoutes()


@pytest.fixture
def make_spec() -> Callable[..., ArtifactSpec]:
    def _make(name: str, payload: bytes, *, url: str | None = None) -> ArtifactSpec:
        return ArtifactSpec(
            archive_name=name,
            source_uri=url or f"https://conda.example.org/intel/linux-64/{name}",
            expected_digest=md5_of(payload),
        )

    return _make


@pytest.fixture
def make_profile() -> Callable[[Sequence[ArtifactSpec]], PlatformProfile]:
    def _make(artifacts: Sequence[ArtifactSpec]) -> PlatformProfile:
        return PlatformProfile(
            platform=Platform.LINUX,
            variant=LinkVariant.STATIC,
            artifacts=tuple(artifacts),
        )

    return _make
