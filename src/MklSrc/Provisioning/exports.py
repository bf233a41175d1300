"""Export manifest and public API surface.

This module defines which symbols ``MklSrc.Provisioning`` exposes lazily from
its submodules.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List

__all__ = [
    "ExportSpec",
    "EXPORT_MAP",
    "EXPORTS",
    "PUBLIC_API_MANIFEST",
]


@dataclass(frozen=True)
class ExportSpec:
    """Specification for an exported symbol."""

    name: str
    """Name of the symbol."""

    module: str
    """Submodule (relative to the package) where the symbol is defined."""

    include_in_manifest: bool = True
    """Whether to include this symbol in the public API manifest."""

    doc: str = ""
    """Short documentation string."""


EXPORTS: List[ExportSpec] = [
    ExportSpec("digest", "checksums", doc="Hex digest of a file"),
    ExportSpec("fetch", "download", doc="Stream a remote archive to disk"),
    ExportSpec("DownloadResult", "download", doc="Download metadata"),
    ExportSpec("unpack", "extraction", doc="Extract a compressed tarball"),
    ExportSpec("is_cached_and_valid", "cache", doc="Cache gate for a declared archive"),
    ExportSpec("Provisioner", "provisioning", doc="Per-artifact state machine driver"),
    ExportSpec("ProvisionResult", "provisioning", doc="Outcomes plus link directive"),
    ExportSpec("ArtifactSpec", "platforms", doc="Declared archive row"),
    ExportSpec("LinkDirective", "platforms", doc="Linker search path and libraries"),
    ExportSpec("Platform", "platforms", doc="Target platform selector"),
    ExportSpec("LinkVariant", "platforms", doc="Static or dynamic linking"),
    ExportSpec("resolve_profile", "platforms", doc="Select the artifact table for a target"),
    ExportSpec("render_directive", "formatters", doc="Render directives for the build tool"),
    ExportSpec("load_settings", "settings", doc="Layered settings loader"),
    ExportSpec("ProvisioningError", "errors", doc="Base exception"),
    ExportSpec("app", "cli", include_in_manifest=False, doc="Typer application"),
]

EXPORT_MAP: Dict[str, ExportSpec] = {spec.name: spec for spec in EXPORTS}

PUBLIC_API_MANIFEST: Dict[str, Any] = {
    "version": "1.0.0",
    "modules": sorted({spec.module for spec in EXPORTS}),
    "symbols": [spec.name for spec in EXPORTS if spec.include_in_manifest],
}
