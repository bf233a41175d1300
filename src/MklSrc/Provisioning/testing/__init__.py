"""Testing utilities for exercising the provisioning pipeline without a network.

Provides a context manager that installs an HTTPX client backed by an
arbitrary transport, a route table transport that records every request it
serves, and a helper that writes compressed tarballs shaped like the MKL
conda packages.
"""

from __future__ import annotations

import contextlib
import hashlib
import io
import tarfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List, Mapping, Optional, Tuple, Union

import httpx

from ..net import configure_http_client, reset_http_client
from ..settings import HttpSettings

# Layout of the mkl-static conda package: static libraries under lib/.
SAMPLE_MKL_FILES: Dict[str, bytes] = {
    "lib/libmkl_intel_lp64.a": b"interface layer",
    "lib/libmkl_sequential.a": b"threading layer",
    "lib/libmkl_core.a": b"core layer" * 64,
    "include/mkl.h": b"#define MKL 1\n",
    "info/index.json": b'{"name": "mkl-static"}',
}

__all__ = [
    "ResponseSpec",
    "RequestRecord",
    "ArchiveRoutes",
    "SAMPLE_MKL_FILES",
    "use_mock_http_client",
    "build_tarball",
    "md5_of",
]


@contextlib.contextmanager
def use_mock_http_client(
    transport: httpx.BaseTransport, **client_kwargs: object
) -> Iterator[httpx.Client]:
    """Temporarily install an HTTPX client backed by ``transport``."""

    default_settings: Optional[HttpSettings] = client_kwargs.pop("default_settings", None)  # type: ignore[assignment]
    client_kwargs.setdefault("follow_redirects", True)
    client = httpx.Client(transport=transport, **client_kwargs)  # type: ignore[arg-type]
    configure_http_client(client=client, default_settings=default_settings)
    try:
        yield client
    finally:
        reset_http_client()
        client.close()


@dataclass
class ResponseSpec:
    """HTTP response served for one URL."""

    status: int = 200
    body: bytes = b""
    headers: Mapping[str, str] = field(default_factory=dict)


@dataclass
class RequestRecord:
    """Captured HTTP request emitted by the downloader during tests."""

    method: str
    url: str
    headers: Dict[str, str]


class ArchiveRoutes:
    """Route table usable as an ``httpx.MockTransport`` handler.

    Unknown URLs answer 404. ``redirect`` registers a 302 hop so tests can
    exercise the origin-to-CDN indirection.
    """

    def __init__(self) -> None:
        self._routes: Dict[str, ResponseSpec] = {}
        self.requests: List[RequestRecord] = []

    def add(self, url: str, response: Union[ResponseSpec, bytes]) -> "ArchiveRoutes":
        self._routes[url] = response if isinstance(response, ResponseSpec) else ResponseSpec(body=response)
        return self

    def redirect(self, url: str, location: str, status: int = 302) -> "ArchiveRoutes":
        self._routes[url] = ResponseSpec(status=status, headers={"Location": location})
        return self

    def requested(self, url: str) -> int:
        return sum(1 for record in self.requests if record.url == url)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests.append(
            RequestRecord(method=request.method, url=url, headers=dict(request.headers))
        )
        spec = self._routes.get(url)
        if spec is None:
            return httpx.Response(404, content=b"not found", request=request)
        return httpx.Response(
            spec.status, content=spec.body, headers=dict(spec.headers), request=request
        )

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


def build_tarball(
    path: Path,
    files: Mapping[str, bytes],
    *,
    compression: str = "bz2",
    extra_members: Tuple[tarfile.TarInfo, ...] = (),
) -> Path:
    """Write ``files`` (archive name -> content) into a compressed tarball at ``path``."""

    path.parent.mkdir(parents=True, exist_ok=True)
    mode = f"w:{compression}" if compression else "w"
    with tarfile.open(path, mode) as archive:
        for name, payload in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(payload)
            info.mode = 0o644
            archive.addfile(info, io.BytesIO(payload))
        for member in extra_members:
            archive.addfile(member)
    return path


def md5_of(payload: Union[bytes, Path]) -> str:
    """Return the MD5 hex digest of raw bytes or of a file's content."""

    data = payload.read_bytes() if isinstance(payload, Path) else payload
    return hashlib.md5(data).hexdigest()
