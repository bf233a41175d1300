"""Formatting helpers for link directives and per-artifact tables.

Directives are what the build orchestrator consumes on stdout, so every format
emits exactly the search path first and then the libraries in the order the
linker must see them. Tables are human-facing and are written by the CLI.
"""

from __future__ import annotations

import json
from typing import Iterable, List, Optional, Sequence, Tuple

from .errors import ConfigurationError
from .platforms import LinkDirective, Platform, PlatformProfile
from .provisioning import ArtifactOutcome

DIRECTIVE_FORMATS: Tuple[str, ...] = ("cargo", "json", "flags")

OUTCOME_FORMATS: Tuple[str, ...] = ("table", "json")

OUTCOME_TABLE_HEADERS: Tuple[str, ...] = ("archive", "state", "status", "digest", "files")

PROFILE_TABLE_HEADERS: Tuple[str, ...] = ("archive", "algorithm", "expected_digest", "source_uri")

__all__ = [
    "DIRECTIVE_FORMATS",
    "OUTCOME_FORMATS",
    "OUTCOME_TABLE_HEADERS",
    "PROFILE_TABLE_HEADERS",
    "format_table",
    "format_outcomes_table",
    "format_profile_table",
    "render_directive",
    "render_outcomes",
]


def format_table(headers: Sequence[str], rows: Sequence[Sequence[str]]) -> str:
    """Render a padded ASCII table."""

    column_widths = [len(header) for header in headers]
    for row in rows:
        for index, cell in enumerate(row):
            column_widths[index] = max(column_widths[index], len(cell))

    def _format_row(values: Sequence[str]) -> str:
        return " | ".join(value.ljust(column_widths[index]) for index, value in enumerate(values))

    separator = "-+-".join("-" * width for width in column_widths)
    lines = [_format_row(headers), separator]
    lines.extend(_format_row(row) for row in rows)
    return "\n".join(lines)


def format_outcomes_table(outcomes: Iterable[ArtifactOutcome]) -> str:
    """Render provisioning or cache-inspection outcomes as a table."""

    rows: List[Tuple[str, ...]] = []
    for outcome in outcomes:
        rows.append(
            (
                outcome.spec.archive_name,
                outcome.state.value,
                outcome.status or "",
                outcome.digest or "",
                str(len(outcome.files)) if outcome.files else "",
            )
        )
    return format_table(OUTCOME_TABLE_HEADERS, rows)


def render_outcomes(outcomes: Sequence[ArtifactOutcome], fmt: str = "table") -> str:
    """Render outcomes as the ASCII table or as a JSON array of records."""

    key = fmt.strip().lower()
    if key == "table":
        return format_outcomes_table(outcomes)
    if key == "json":
        return json.dumps([outcome.to_mapping() for outcome in outcomes], indent=2)
    raise ConfigurationError(
        f"Unknown status format '{fmt}'; expected one of {', '.join(OUTCOME_FORMATS)}"
    )


def format_profile_table(profile: PlatformProfile) -> str:
    """Render the declared artifacts of ``profile``."""

    rows = [
        (spec.archive_name, spec.algorithm, spec.expected_digest, spec.source_uri)
        for spec in profile.artifacts
    ]
    return format_table(PROFILE_TABLE_HEADERS, rows)


def _cargo_lines(directive: LinkDirective) -> List[str]:
    lines = [f"cargo:rustc-link-search={directive.search_path}"]
    lines.extend(
        f"cargo:rustc-link-lib={directive.kind.value}={name}" for name in directive.library_names
    )
    lines.extend(f"cargo:rustc-link-lib={name}" for name in directive.system_libraries)
    return lines


def _flag_tokens(directive: LinkDirective, platform: Optional[Platform]) -> List[str]:
    libraries = list(directive.library_names) + list(directive.system_libraries)
    if platform is Platform.WINDOWS:
        return [f"/LIBPATH:{directive.search_path}"] + [f"{name}.lib" for name in libraries]
    return [f"-L{directive.search_path}"] + [f"-l{name}" for name in libraries]


def render_directive(
    directive: LinkDirective,
    fmt: str = "cargo",
    *,
    platform: Optional[Platform] = None,
) -> str:
    """Render ``directive`` for the build orchestrator.

    Args:
        directive: Search path and ordered libraries.
        fmt: One of ``cargo``, ``json`` or ``flags``.
        platform: Target platform; Windows switches ``flags`` to MSVC syntax.

    Returns:
        Text to print on stdout, without a trailing newline.

    Raises:
        ConfigurationError: If ``fmt`` is not a known directive format.
    """

    key = fmt.strip().lower()
    if key == "cargo":
        return "\n".join(_cargo_lines(directive))
    if key == "json":
        return json.dumps(directive.to_mapping(), indent=2)
    if key == "flags":
        return " ".join(_flag_tokens(directive, platform))
    raise ConfigurationError(
        f"Unknown directive format '{fmt}'; expected one of {', '.join(DIRECTIVE_FORMATS)}"
    )
