"""Directive rendering and table output."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from MklSrc.Provisioning.errors import ConfigurationError
from MklSrc.Provisioning.formatters import (
    format_outcomes_table,
    format_profile_table,
    format_table,
    render_directive,
    render_outcomes,
)
from MklSrc.Provisioning.platforms import (
    STATIC_LIBRARIES,
    ArtifactSpec,
    LinkDirective,
    LinkKind,
    Platform,
    resolve_profile,
)
from MklSrc.Provisioning.provisioning import ArtifactOutcome, ArtifactState

STATIC = LinkDirective(search_path=Path("out") / "lib", library_names=STATIC_LIBRARIES)
DYNAMIC = LinkDirective(
    search_path=Path("out") / "lib",
    library_names=("mkl_rt",),
    kind=LinkKind.DYLIB,
    system_libraries=("m",),
)


def test_cargo_directives() -> None:
    lines = render_directive(STATIC, "cargo").splitlines()

    assert lines == [
        f"cargo:rustc-link-search={Path('out') / 'lib'}",
        "cargo:rustc-link-lib=static=mkl_intel_lp64",
        "cargo:rustc-link-lib=static=mkl_sequential",
        "cargo:rustc-link-lib=static=mkl_core",
    ]


def test_cargo_dynamic_directives_include_system_libraries() -> None:
    lines = render_directive(DYNAMIC).splitlines()

    assert lines[1:] == ["cargo:rustc-link-lib=dylib=mkl_rt", "cargo:rustc-link-lib=m"]


def test_json_directive() -> None:
    payload = json.loads(render_directive(DYNAMIC, "json"))

    assert payload == {
        "search_path": str(Path("out") / "lib"),
        "kind": "dylib",
        "libraries": ["mkl_rt"],
        "system_libraries": ["m"],
    }


def test_flags_directive_posix_and_windows() -> None:
    posix = render_directive(STATIC, "flags", platform=Platform.LINUX)
    windows = render_directive(STATIC, "FLAGS", platform=Platform.WINDOWS)

    assert posix.split() == [
        f"-L{Path('out') / 'lib'}",
        "-lmkl_intel_lp64",
        "-lmkl_sequential",
        "-lmkl_core",
    ]
    assert windows.split()[1:] == ["mkl_intel_lp64.lib", "mkl_sequential.lib", "mkl_core.lib"]
    assert windows.startswith("/LIBPATH:")


def test_unknown_format_is_rejected() -> None:
    with pytest.raises(ConfigurationError, match="cargo, json, flags"):
        render_directive(STATIC, "cmake")


def test_format_table_pads_columns() -> None:
    table = format_table(("a", "bb"), [("xxx", "y")])

    assert table.splitlines() == ["a   | bb", "----+---", "xxx | y "]


def test_outcomes_table_lists_each_artifact() -> None:
    spec = ArtifactSpec("mkl.tar.bz2", "https://example.org/mkl.tar.bz2", "a" * 32)
    outcomes = [
        ArtifactOutcome(
            spec=spec,
            state=ArtifactState.DONE,
            status="fresh",
            digest="a" * 32,
            files=[Path("lib/libmkl_core.a")],
        ),
        ArtifactOutcome(spec=spec, state=ArtifactState.CACHE_CHECK, status="missing"),
    ]

    lines = format_outcomes_table(outcomes).splitlines()

    assert lines[0].split(" | ")[0].strip() == "archive"
    assert "done" in lines[2] and "fresh" in lines[2] and lines[2].rstrip().endswith("1")
    assert "cache_check" in lines[3] and "missing" in lines[3]


def test_profile_table_shows_declared_digest() -> None:
    table = format_profile_table(resolve_profile(Platform.LINUX))

    assert "37e3a60ff2643cf40b5cf9d2c183588c" in table
    assert "mkl-static-2019.1-intel_144.tar.bz2" in table


def test_render_outcomes_json_uses_outcome_records() -> None:
    spec = ArtifactSpec("mkl.tar.bz2", "https://example.org/mkl.tar.bz2", "b" * 32)
    failed = ArtifactOutcome(
        spec=spec, state=ArtifactState.FATAL, digest="c" * 32, error="digest mismatch"
    )

    (record,) = json.loads(render_outcomes([failed], "JSON"))

    assert record == {
        "archive": "mkl.tar.bz2",
        "expected": f"md5:{'b' * 32}",
        "state": "fatal",
        "status": None,
        "digest": "c" * 32,
        "files": 0,
        "error": "digest mismatch",
    }
    assert render_outcomes([failed]) == format_outcomes_table([failed])


def test_render_outcomes_rejects_unknown_format() -> None:
    with pytest.raises(ConfigurationError, match="table, json"):
        render_outcomes([], "yaml")
