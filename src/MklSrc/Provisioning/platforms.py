"""Platform selectors, declared artifact tables, and link layouts.

The platform and link variant are plain enum values resolved once at startup
and handed to the provisioner through a :class:`PlatformProfile`. Built-in
profiles cover the static conda packages; YAML artifact tables add or replace
profiles, which is also how tests run the pipeline against synthetic archives.
"""

from __future__ import annotations

import sys
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Mapping, Optional, Sequence, Tuple

import yaml

from .checksums import (
    DEFAULT_ALGORITHM,
    ExpectedChecksum,
    normalize_checksum,
    parse_checksum,
)
from .errors import ConfigurationError

__all__ = [
    "Platform",
    "LinkVariant",
    "LinkKind",
    "ArtifactSpec",
    "LinkDirective",
    "PlatformProfile",
    "BUILTIN_PROFILES",
    "STATIC_LIBRARIES",
    "load_artifact_table",
    "resolve_profile",
]

_CONDA_CHANNEL = "https://conda.anaconda.org/intel"
_MKL_STATIC_ARCHIVE = "mkl-static-2019.1-intel_144.tar.bz2"

# interface layer, threading layer, core layer
STATIC_LIBRARIES: Tuple[str, ...] = ("mkl_intel_lp64", "mkl_sequential", "mkl_core")


class Platform(str, Enum):
    """Target platforms with a published MKL distribution."""

    LINUX = "linux"
    MACOS = "macos"
    WINDOWS = "windows"

    @classmethod
    def detect(cls, platform_name: Optional[str] = None) -> "Platform":
        """Map ``sys.platform`` (or ``platform_name``) onto a supported target."""

        name = (platform_name or sys.platform).lower()
        if name.startswith("linux"):
            return cls.LINUX
        if name == "darwin" or name.startswith("mac"):
            return cls.MACOS
        if name.startswith("win") or name == "cygwin":
            return cls.WINDOWS
        raise ConfigurationError(f"Unsupported platform for MKL provisioning: {name}")

    @classmethod
    def parse(cls, value: "str | Platform") -> "Platform":
        if isinstance(value, Platform):
            return value
        if not isinstance(value, str):
            raise ConfigurationError(f"Platform must be a string, got {value!r}")
        try:
            return cls(value.strip().lower())
        except ValueError:
            return cls.detect(value)


class LinkVariant(str, Enum):
    """How the downstream library links against MKL."""

    STATIC = "static"
    DYNAMIC = "dynamic"

    @classmethod
    def parse(cls, value: "str | LinkVariant") -> "LinkVariant":
        if isinstance(value, LinkVariant):
            return value
        if not isinstance(value, str):
            raise ConfigurationError(f"Link variant must be a string, got {value!r}")
        try:
            return cls(value.strip().lower())
        except ValueError as exc:
            choices = ", ".join(item.value for item in cls)
            raise ConfigurationError(
                f"Unknown link variant '{value}'; expected one of {choices}"
            ) from exc


class LinkKind(str, Enum):
    STATIC = "static"
    DYLIB = "dylib"


@dataclass(frozen=True, slots=True)
class ArtifactSpec:
    """One declared archive: where it lives remotely and what it must hash to."""

    archive_name: str
    source_uri: str
    expected_digest: str
    algorithm: str = DEFAULT_ALGORITHM

    def __post_init__(self) -> None:
        context = f"artifact '{self.archive_name}'"
        if not self.archive_name or Path(self.archive_name).name != self.archive_name:
            raise ConfigurationError(f"{context}: archive_name must be a bare file name")
        if "\\" in self.archive_name or self.archive_name in {".", ".."}:
            raise ConfigurationError(f"{context}: archive_name must be a bare file name")
        if not self.source_uri:
            raise ConfigurationError(f"{context}: source_uri must not be empty")
        algorithm, value = normalize_checksum(
            self.algorithm, self.expected_digest, context=context
        )
        object.__setattr__(self, "algorithm", algorithm)
        object.__setattr__(self, "expected_digest", value)

    @property
    def expected_checksum(self) -> ExpectedChecksum:
        return ExpectedChecksum(algorithm=self.algorithm, value=self.expected_digest)

    def archive_path(self, output_dir: Path) -> Path:
        """Deterministic location of the local archive inside ``output_dir``."""

        return Path(output_dir) / self.archive_name

    @classmethod
    def from_mapping(cls, payload: Mapping[str, object], *, context: str) -> "ArtifactSpec":
        """Build a spec from one artifact-table row.

        ``expected_digest`` may be bare hex or ``algorithm:hex``. An explicit
        ``algorithm`` key wins; a prefix naming a different algorithm is rejected.
        """

        missing = [
            key
            for key in ("archive_name", "source_uri", "expected_digest")
            if not isinstance(payload.get(key), str)
        ]
        if missing:
            raise ConfigurationError(f"{context}: missing or non-string fields {missing}")
        algorithm = payload.get("algorithm")
        if algorithm is not None and not isinstance(algorithm, str):
            raise ConfigurationError(f"{context}: algorithm must be a string")
        checksum = parse_checksum(
            str(payload["expected_digest"]),
            default_algorithm=algorithm or DEFAULT_ALGORITHM,
            context=context,
        )
        if algorithm and checksum.algorithm != algorithm.strip().lower():
            raise ConfigurationError(
                f"{context}: digest prefix '{checksum.algorithm}' conflicts with "
                f"algorithm '{algorithm}'"
            )
        return cls(
            archive_name=str(payload["archive_name"]),
            source_uri=str(payload["source_uri"]),
            expected_digest=checksum.value,
            algorithm=checksum.algorithm,
        )


@dataclass(frozen=True, slots=True)
class LinkDirective:
    """Linker search path plus ordered libraries handed to the build orchestrator."""

    search_path: Path
    library_names: Tuple[str, ...]
    kind: LinkKind = LinkKind.STATIC
    system_libraries: Tuple[str, ...] = ()

    def to_mapping(self) -> Dict[str, object]:
        return {
            "search_path": str(self.search_path),
            "kind": self.kind.value,
            "libraries": list(self.library_names),
            "system_libraries": list(self.system_libraries),
        }


@dataclass(frozen=True, slots=True)
class PlatformProfile:
    """Artifact rows and link layout for one (platform, variant) pair."""

    platform: Platform
    variant: LinkVariant
    artifacts: Tuple[ArtifactSpec, ...]
    library_subdir: str = "lib"
    libraries: Tuple[str, ...] = STATIC_LIBRARIES
    system_libraries: Tuple[str, ...] = ()
    link_kind: LinkKind = field(default=LinkKind.STATIC)

    @property
    def key(self) -> Tuple[Platform, LinkVariant]:
        return (self.platform, self.variant)

    def directive(self, output_dir: Path) -> LinkDirective:
        """Derive the link directive; independent of artifact order."""

        return LinkDirective(
            search_path=Path(output_dir) / self.library_subdir,
            library_names=tuple(self.libraries),
            kind=self.link_kind,
            system_libraries=tuple(self.system_libraries),
        )


def _static_profile(platform: Platform, conda_subdir: str, md5: str) -> PlatformProfile:
    return PlatformProfile(
        platform=platform,
        variant=LinkVariant.STATIC,
        artifacts=(
            ArtifactSpec(
                archive_name=_MKL_STATIC_ARCHIVE,
                source_uri=f"{_CONDA_CHANNEL}/{conda_subdir}/{_MKL_STATIC_ARCHIVE}",
                expected_digest=md5,
            ),
        ),
    )


def _dynamic_layout(platform: Platform) -> PlatformProfile:
    return PlatformProfile(
        platform=platform,
        variant=LinkVariant.DYNAMIC,
        artifacts=(),
        link_kind=LinkKind.DYLIB,
        system_libraries=() if platform is Platform.WINDOWS else ("m",),
    )


# MD5 sums from `conda search --json --platform <subdir> mkl-static`.
BUILTIN_PROFILES: Dict[Tuple[Platform, LinkVariant], PlatformProfile] = {
    profile.key: profile
    for profile in (
        _static_profile(Platform.LINUX, "linux-64", "37e3a60ff2643cf40b5cf9d2c183588c"),
        _static_profile(Platform.MACOS, "osx-64", "74a186a5e325146c7de7e1e1c8fc3bc3"),
        _static_profile(Platform.WINDOWS, "win-64", "0b65a55b6bcda83392e9defff8e1edbe"),
        _dynamic_layout(Platform.LINUX),
        _dynamic_layout(Platform.MACOS),
        _dynamic_layout(Platform.WINDOWS),
    )
}


def _string_tuple(value: object, *, context: str, default: Sequence[str]) -> Tuple[str, ...]:
    if value is None:
        return tuple(default)
    if isinstance(value, str) or not isinstance(value, Sequence):
        raise ConfigurationError(f"{context}: expected a list of strings")
    if not all(isinstance(item, str) and item for item in value):
        raise ConfigurationError(f"{context}: expected a list of non-empty strings")
    return tuple(value)


def _profile_from_mapping(payload: object, *, index: int) -> PlatformProfile:
    context = f"profiles[{index}]"
    if not isinstance(payload, Mapping):
        raise ConfigurationError(f"{context}: profile must be a mapping")
    platform_raw = payload.get("platform")
    variant_raw = payload.get("variant", LinkVariant.STATIC.value)
    if not isinstance(platform_raw, str) or not isinstance(variant_raw, str):
        raise ConfigurationError(f"{context}: platform and variant must be strings")
    platform = Platform.parse(platform_raw)
    variant = LinkVariant.parse(variant_raw)
    base = BUILTIN_PROFILES[(platform, variant)]

    rows = payload.get("artifacts")
    if not isinstance(rows, list) or not rows:
        raise ConfigurationError(f"{context}: artifacts must be a non-empty list")
    parsed: list[ArtifactSpec] = []
    for row_index, row in enumerate(rows):
        row_context = f"{context}.artifacts[{row_index}]"
        if not isinstance(row, Mapping):
            raise ConfigurationError(f"{row_context}: artifact must be a mapping")
        parsed.append(ArtifactSpec.from_mapping(row, context=row_context))
    artifacts = tuple(parsed)
    names = [artifact.archive_name for artifact in artifacts]
    if len(set(names)) != len(names):
        raise ConfigurationError(f"{context}: duplicate archive_name entries")

    library_subdir = payload.get("library_subdir", base.library_subdir)
    if not isinstance(library_subdir, str) or not library_subdir:
        raise ConfigurationError(f"{context}: library_subdir must be a non-empty string")

    return PlatformProfile(
        platform=platform,
        variant=variant,
        artifacts=artifacts,
        library_subdir=library_subdir,
        libraries=_string_tuple(
            payload.get("libraries"), context=f"{context}.libraries", default=base.libraries
        ),
        system_libraries=_string_tuple(
            payload.get("system_libraries"),
            context=f"{context}.system_libraries",
            default=base.system_libraries,
        ),
        link_kind=base.link_kind,
    )


def load_artifact_table(path: Path) -> Dict[Tuple[Platform, LinkVariant], PlatformProfile]:
    """Load additional or replacement platform profiles from a YAML document."""

    table_path = Path(path)
    try:
        raw = yaml.safe_load(table_path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigurationError(f"Unable to read artifact table {table_path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Artifact table {table_path} is not valid YAML: {exc}") from exc

    if not isinstance(raw, Mapping) or not isinstance(raw.get("profiles"), list):
        raise ConfigurationError(f"Artifact table {table_path} must define a 'profiles' list")

    table: Dict[Tuple[Platform, LinkVariant], PlatformProfile] = {}
    for index, entry in enumerate(raw["profiles"]):
        profile = _profile_from_mapping(entry, index=index)
        if profile.key in table:
            raise ConfigurationError(
                f"Artifact table {table_path} declares {profile.platform.value}/"
                f"{profile.variant.value} more than once"
            )
        table[profile.key] = profile
    return table


def resolve_profile(
    platform: Platform,
    variant: LinkVariant = LinkVariant.STATIC,
    table: Optional[Mapping[Tuple[Platform, LinkVariant], PlatformProfile]] = None,
) -> PlatformProfile:
    """Return the profile for ``platform``/``variant``; table entries win over built-ins."""

    key = (Platform.parse(platform), LinkVariant.parse(variant))
    profile = (table or {}).get(key) or BUILTIN_PROFILES.get(key)
    if profile is None or not profile.artifacts:
        raise ConfigurationError(
            f"No artifacts declared for {key[0].value}/{key[1].value}; "
            "supply an artifact table with --artifacts"
        )
    return profile
