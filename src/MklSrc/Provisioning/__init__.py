"""Fetch, verify, cache and unpack Intel MKL archives for native builds.

The package downloads the MKL distribution declared for the target platform
into a build output directory, checks its digest, unpacks it and reports the
linker search path and libraries the downstream build needs. Heavy imports
(HTTPX, pydantic) are deferred until a public symbol is first accessed.
"""

from __future__ import annotations

from importlib import import_module
from typing import Any, List

from .exports import EXPORT_MAP, EXPORTS, PUBLIC_API_MANIFEST

__version__ = "0.1.0"

_PUBLIC_EXPORTS = tuple(spec.name for spec in EXPORTS if spec.include_in_manifest)

__all__ = [*_PUBLIC_EXPORTS, "PUBLIC_API_MANIFEST", "__version__"]


def __getattr__(name: str) -> Any:
    """Lazily import exports from their submodules."""

    spec = EXPORT_MAP.get(name)
    if spec is None:
        raise AttributeError(f"module '{__name__}' has no attribute '{name}'")
    module = import_module(f".{spec.module}", __name__)
    value = getattr(module, spec.name)
    globals()[name] = value
    return value


def __dir__() -> List[str]:
    """Expose lazily-populated attributes in ``dir()`` results."""

    return sorted(set(globals()) | set(EXPORT_MAP))
