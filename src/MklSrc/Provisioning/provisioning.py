# === NAVMAP v1 ===
# {
#   "module": "MklSrc.Provisioning.provisioning",
#   "purpose": "Drive each declared archive through cache check, download, extraction and verification",
#   "sections": [
#     {"id": "states", "name": "Artifact States", "anchor": "STA", "kind": "api"},
#     {"id": "results", "name": "Result Types", "anchor": "RES", "kind": "api"},
#     {"id": "provisioner", "name": "Provisioner", "anchor": "class-provisioner", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Provisioning orchestration.

Each artifact declared by a :class:`~MklSrc.Provisioning.platforms.PlatformProfile`
moves through ``START -> CACHE_CHECK -> (SKIP | FETCH) -> EXTRACT -> VERIFY ->
(DONE | FATAL)``. A cache hit skips the network and the extractor entirely. A
miss downloads the archive, unpacks it unconditionally and only then recomputes
the digest, so a corrupted-but-extractable archive is unpacked before the run
aborts. Once every artifact is done a single link directive is derived from
the profile; artifact order never affects it.

Artifacts are processed sequentially and the first failure stops the run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, List, Mapping, Optional, Sequence, Tuple, Union

import httpx

from .cache import is_cached_and_valid
from .checksums import verify
from .download import DownloadResult, fetch
from .errors import ArtifactIOError, IntegrityError, ProvisioningError
from .extraction import unpack
from .logging_utils import LOGGER_NAME, ContextLogger, generate_correlation_id
from .platforms import ArtifactSpec, LinkDirective, PlatformProfile
from .settings import ProvisioningSettings

__all__ = [
    "ArtifactState",
    "ArtifactOutcome",
    "ProvisionResult",
    "Provisioner",
]

Downloader = Callable[..., DownloadResult]
Extractor = Callable[..., List[Path]]

# --- Artifact States -------------------------------------------------------------


class ArtifactState(str, Enum):
    """Lifecycle positions of a single artifact during a run."""

    START = "start"
    CACHE_CHECK = "cache_check"
    SKIP = "skip"
    FETCH = "fetch"
    EXTRACT = "extract"
    VERIFY = "verify"
    DONE = "done"
    FATAL = "fatal"


# --- Result Types ----------------------------------------------------------------


@dataclass(slots=True)
class ArtifactOutcome:
    """Per-artifact record produced by :class:`Provisioner`.

    Attributes:
        spec: Artifact the record describes.
        state: Last state reached.
        status: ``cached`` for a reused archive, ``fresh`` for a new download,
            ``missing`` when only the cache gate ran and reported a miss.
        digest: Digest computed during verification, if any.
        files: Files written by the extractor.
        error: Diagnostic text when the artifact ended in ``FATAL``.
    """

    spec: ArtifactSpec
    state: ArtifactState = ArtifactState.START
    status: Optional[str] = None
    digest: Optional[str] = None
    files: List[Path] = field(default_factory=list)
    error: Optional[str] = None

    def to_mapping(self) -> Mapping[str, object]:
        return {
            "archive": self.spec.archive_name,
            "expected": self.spec.expected_checksum.to_known_hash(),
            "state": self.state.value,
            "status": self.status,
            "digest": self.digest,
            "files": len(self.files),
            "error": self.error,
        }


@dataclass(slots=True, frozen=True)
class ProvisionResult:
    """Outcomes for every artifact plus the directive handed to the linker."""

    outcomes: Tuple[ArtifactOutcome, ...]
    directive: LinkDirective

    @property
    def downloaded(self) -> Tuple[ArtifactOutcome, ...]:
        return tuple(outcome for outcome in self.outcomes if outcome.status == "fresh")


# --- Provisioner -----------------------------------------------------------------


class Provisioner:
    """Materialise the archives of one platform profile inside ``output_dir``.

    The downloader and extractor are injectable so tests (and alternative
    transports) can replace them without touching the state machine.
    """

    def __init__(
        self,
        profile: PlatformProfile,
        output_dir: Union[str, Path],
        *,
        settings: Optional[ProvisioningSettings] = None,
        client: Optional[httpx.Client] = None,
        downloader: Downloader = fetch,
        extractor: Extractor = unpack,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.profile = profile
        self.output_dir = Path(output_dir)
        self.settings = settings or ProvisioningSettings(
            platform=profile.platform, variant=profile.variant, out_dir=self.output_dir
        )
        self.client = client
        self.downloader = downloader
        self.extractor = extractor
        self.logger = ContextLogger(
            logger or logging.getLogger(LOGGER_NAME),
            {"correlation_id": generate_correlation_id()},
        )

    def _log(self, level: int, message: str, spec: Optional[ArtifactSpec], **extra: object) -> None:
        if spec is not None:
            extra.setdefault("artifact", spec.archive_name)
        self.logger.log(level, message, extra=extra)

    def _fail(self, outcome: ArtifactOutcome, exc: ProvisioningError) -> None:
        failed_in = outcome.state.value
        outcome.state = ArtifactState.FATAL
        outcome.error = str(exc)
        self._log(
            logging.ERROR, "provisioning failed", outcome.spec, stage=failed_in, error=str(exc)
        )

    def inspect(self) -> List[ArtifactOutcome]:
        """Run only the cache gate for every artifact; never touches the network."""

        outcomes: List[ArtifactOutcome] = []
        for spec in self.profile.artifacts:
            cached = is_cached_and_valid(spec, self.output_dir, logger=self.logger)
            outcomes.append(
                ArtifactOutcome(
                    spec=spec,
                    state=ArtifactState.SKIP if cached else ArtifactState.CACHE_CHECK,
                    status="cached" if cached else "missing",
                    digest=spec.expected_digest if cached else None,
                )
            )
        return outcomes

    def provision_artifact(self, spec: ArtifactSpec) -> ArtifactOutcome:
        """Drive ``spec`` to ``DONE`` or raise after recording ``FATAL``."""

        outcome = ArtifactOutcome(spec=spec)
        archive = spec.archive_path(self.output_dir)

        outcome.state = ArtifactState.CACHE_CHECK
        if is_cached_and_valid(spec, self.output_dir, logger=self.logger):
            outcome.state = ArtifactState.SKIP
            self._log(
                logging.INFO, "using existing archive", spec, stage="cache", path=str(archive)
            )
            outcome.status = "cached"
            outcome.digest = spec.expected_digest
            outcome.state = ArtifactState.DONE
            return outcome

        try:
            outcome.state = ArtifactState.FETCH
            self._log(
                logging.INFO, "downloading archive", spec, stage="download", url=spec.source_uri
            )
            self.downloader(
                spec.source_uri,
                archive,
                client=self.client,
                settings=self.settings.http,
                logger=self.logger,
            )

            outcome.state = ArtifactState.EXTRACT
            outcome.files = list(
                self.extractor(
                    archive,
                    self.output_dir,
                    logger=self.logger,
                    max_compression_ratio=self.settings.extraction.max_compression_ratio,
                )
            )

            outcome.state = ArtifactState.VERIFY
            try:
                outcome.digest = verify(archive, spec.expected_checksum)
            except IntegrityError as exc:
                outcome.digest = exc.actual
                raise
        except ProvisioningError as exc:
            self._fail(outcome, exc)
            raise

        self._log(
            logging.INFO,
            "verified archive",
            spec,
            stage="verify",
            digest=outcome.digest,
            files=len(outcome.files),
        )
        outcome.status = "fresh"
        outcome.state = ArtifactState.DONE
        return outcome

    def run(self) -> ProvisionResult:
        """Provision every artifact in declaration order and derive the link directive."""

        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ArtifactIOError(
                f"Unable to create output directory {self.output_dir}: {exc}"
            ) from exc

        self._log(
            logging.INFO,
            "starting provisioning run",
            None,
            stage="start",
            platform=self.profile.platform.value,
            variant=self.profile.variant.value,
            artifacts=len(self.profile.artifacts),
            config_hash=self.settings.config_hash(),
        )
        outcomes: Sequence[ArtifactOutcome] = [
            self.provision_artifact(spec) for spec in self.profile.artifacts
        ]
        directive = self.profile.directive(self.output_dir)
        self._log(
            logging.INFO,
            "emitting link directive",
            None,
            stage="emit",
            search_path=str(directive.search_path),
            libraries=",".join(directive.library_names),
        )
        return ProvisionResult(outcomes=tuple(outcomes), directive=directive)
