# === NAVMAP v1 ===
# {
#   "module": "MklSrc.Provisioning.cli",
#   "purpose": "Typer command line for provisioning MKL archives and printing link directives",
#   "sections": [
#     {"id": "clicontext", "name": "CliContext", "anchor": "class-clicontext", "kind": "class"},
#     {"id": "main", "name": "main", "anchor": "function-main", "kind": "function"},
#     {"id": "provision", "name": "provision", "anchor": "function-provision", "kind": "function"},
#     {"id": "status", "name": "status", "anchor": "function-status", "kind": "function"},
#     {"id": "show", "name": "show", "anchor": "function-show", "kind": "function"},
#     {"id": "version-cmd", "name": "version_cmd", "anchor": "function-version-cmd", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Command line entry point for MKL provisioning.

Stdout carries only machine-readable output (link directives, tables);
diagnostics and progress go to stderr. Any provisioning failure ends the
invocation with a single diagnostic and a non-zero exit status, so a build
script driving this command aborts instead of linking against a partial tree.

Example:
    $ mklfetch provision --out-dir target/mkl --format cargo
    cargo:rustc-link-search=target/mkl/lib
    cargo:rustc-link-lib=static=mkl_intel_lp64
    ...
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional

import typer
from rich.console import Console

from . import __version__
from .errors import ConfigurationError, ProvisioningError
from .formatters import (
    DIRECTIVE_FORMATS,
    OUTCOME_FORMATS,
    format_profile_table,
    render_directive,
    render_outcomes,
)
from .logging_utils import setup_logging
from .platforms import PlatformProfile, load_artifact_table, resolve_profile
from .provisioning import ArtifactState, Provisioner
from .settings import ProvisioningSettings, load_settings

# Diagnostics only; stdout is reserved for directives.
_console = Console(stderr=True)

_VERBOSITY_LEVELS = {1: "INFO", 2: "DEBUG"}


class CliContext:
    """Shared state for one invocation: config path, verbosity, and console."""

    def __init__(self, config: Optional[Path] = None, verbosity: int = 0):
        self.config = config
        self.verbosity = verbosity
        self.console = _console

    def load(self, **overrides: Any) -> ProvisioningSettings:
        """Resolve settings for a command and configure logging from them."""

        level = _VERBOSITY_LEVELS.get(min(self.verbosity, 2))
        if level is not None:
            overrides["logging"] = {"level": level}
        settings = load_settings(self.config, **overrides)
        setup_logging(settings.logging)
        return settings

    def fail(self, exc: ProvisioningError) -> typer.Exit:
        """Print ``exc`` as the single terminal diagnostic and return the exit to raise."""

        self.console.print(
            f"error: {exc}", style="bold red", markup=False, highlight=False, soft_wrap=True
        )
        return typer.Exit(2 if isinstance(exc, ConfigurationError) else 1)


app = typer.Typer(
    name="mklfetch",
    help="Download, verify and unpack Intel MKL archives, then print link directives",
    no_args_is_help=True,
)

_context: Optional[CliContext] = None


def get_context() -> CliContext:
    """Return the context created by the app callback."""

    if _context is None:
        raise RuntimeError("CLI context not initialized")
    return _context


def _resolve(settings: ProvisioningSettings) -> PlatformProfile:
    table = load_artifact_table(settings.artifacts_file) if settings.artifacts_file else None
    return resolve_profile(settings.platform, settings.variant, table)


def _selection(
    out_dir: Optional[Path],
    platform: Optional[str],
    variant: Optional[str],
    artifacts: Optional[Path],
) -> Dict[str, Any]:
    return {
        "out_dir": out_dir,
        "platform": platform,
        "variant": variant,
        "artifacts_file": artifacts,
    }


_OUT_DIR_OPTION = typer.Option(
    None, "--out-dir", "-o", help="Output directory (defaults to MKLFETCH_OUT_DIR or OUT_DIR)"
)
_PLATFORM_OPTION = typer.Option(
    None, "--platform", "-p", help="Target platform: linux, macos or windows (default: host)"
)
_VARIANT_OPTION = typer.Option(None, "--variant", help="Link variant: static or dynamic")
_ARTIFACTS_OPTION = typer.Option(
    None, "--artifacts", "-a", help="YAML artifact table overriding the built-in archives"
)


@app.callback(invoke_without_command=True)
def main(
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        envvar="MKLFETCH_CONFIG",
        help="Path to a YAML settings file",
    ),
    verbosity: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Increase verbosity (-v for INFO, -vv for DEBUG)",
    ),
    version: bool = typer.Option(False, "--version", "-V", help="Show version and exit"),
) -> None:
    """Provision Intel MKL for a native build."""

    global _context

    if version:
        typer.echo(f"mklfetch {__version__}")
        raise typer.Exit(0)

    _context = CliContext(config=config, verbosity=verbosity)


@app.command()
def provision(
    out_dir: Optional[Path] = _OUT_DIR_OPTION,
    platform: Optional[str] = _PLATFORM_OPTION,
    variant: Optional[str] = _VARIANT_OPTION,
    artifacts: Optional[Path] = _ARTIFACTS_OPTION,
    output_format: str = typer.Option(
        "cargo",
        "--format",
        "-f",
        help=f"Directive format: {', '.join(DIRECTIVE_FORMATS)}",
    ),
) -> None:
    """Fetch, verify and unpack every declared archive, then print link directives."""

    ctx = get_context()
    try:
        if output_format.strip().lower() not in DIRECTIVE_FORMATS:
            raise ConfigurationError(
                f"Unknown directive format '{output_format}'; "
                f"expected one of {', '.join(DIRECTIVE_FORMATS)}"
            )
        settings = ctx.load(**_selection(out_dir, platform, variant, artifacts))
        profile = _resolve(settings)
        result = Provisioner(profile, settings.require_out_dir(), settings=settings).run()
        rendered = render_directive(result.directive, output_format, platform=profile.platform)
    except ProvisioningError as exc:
        raise ctx.fail(exc) from exc
    typer.echo(rendered)


@app.command()
def status(
    out_dir: Optional[Path] = _OUT_DIR_OPTION,
    platform: Optional[str] = _PLATFORM_OPTION,
    variant: Optional[str] = _VARIANT_OPTION,
    artifacts: Optional[Path] = _ARTIFACTS_OPTION,
    output_format: str = typer.Option(
        "table",
        "--format",
        "-f",
        help=f"Output format: {', '.join(OUTCOME_FORMATS)}",
    ),
) -> None:
    """Report whether each declared archive is cached and valid. No network access."""

    ctx = get_context()
    try:
        if output_format.strip().lower() not in OUTCOME_FORMATS:
            raise ConfigurationError(
                f"Unknown status format '{output_format}'; "
                f"expected one of {', '.join(OUTCOME_FORMATS)}"
            )
        settings = ctx.load(**_selection(out_dir, platform, variant, artifacts))
        profile = _resolve(settings)
        outcomes = Provisioner(profile, settings.require_out_dir(), settings=settings).inspect()
        rendered = render_outcomes(outcomes, output_format)
    except ProvisioningError as exc:
        raise ctx.fail(exc) from exc
    typer.echo(rendered)
    if any(outcome.state is not ArtifactState.SKIP for outcome in outcomes):
        raise typer.Exit(1)


@app.command()
def show(
    platform: Optional[str] = _PLATFORM_OPTION,
    variant: Optional[str] = _VARIANT_OPTION,
    artifacts: Optional[Path] = _ARTIFACTS_OPTION,
) -> None:
    """Print the artifact table resolved for the selected platform."""

    ctx = get_context()
    try:
        settings = ctx.load(**_selection(None, platform, variant, artifacts))
        profile = _resolve(settings)
    except ProvisioningError as exc:
        raise ctx.fail(exc) from exc
    ctx.console.print(
        f"{profile.platform.value}/{profile.variant.value}: "
        f"{', '.join(profile.libraries)} in <out>/{profile.library_subdir}",
        markup=False,
        highlight=False,
        soft_wrap=True,
    )
    typer.echo(format_profile_table(profile))


@app.command("version")
def version_cmd() -> None:
    """Show version information."""

    typer.echo(f"mklfetch {__version__}")


__all__ = ["app", "CliContext", "get_context", "main"]
