"""Build orchestrator — fans images out to part workers and commits the package.

State machine::

    INITIALIZING -> BUILDING -> COMMITTING -> COMMITTED
         |              |            |
         +--------------+------------+----> ABORTED

The orchestrator never inspects worker return values.  Workers report
failures through the reporter, and the orchestrator reads the aggregate
error count only after every worker has finished.  Any error aborts the
whole package.

Commit ordering: the manifest and its detached signature are written
and fsynced to hidden staging files, the temporary build directory is
renamed to ``<output>/<package_id>``, and only then are the signature
and the manifest renamed to their public names.  A visible manifest
therefore always has its part directory and signature beside it.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, wait
from datetime import datetime, timezone
from pathlib import Path
from urllib.parse import urlsplit

import nacl.signing

from hznpkg.bridge.credentials import CredentialSet
from hznpkg.bridge.crypto_bridge import key_fingerprint, load_private_key, sign_data
from hznpkg.bridge.docker_runtime import ContainerRuntime
from hznpkg.core.package_builder import PackageBuilder
from hznpkg.core.part_worker import PartWorker
from hznpkg.core.reporter import SynchronizedReporter
from hznpkg.errors import CommitError, ConfigurationError, KeyLoadError, PkgBuildError
from hznpkg.models.config import BuildConfig
from hznpkg.models.outcome import (
    VALID_TRANSITIONS,
    BuildOutcome,
    BuildState,
    DelegateError,
)

logger = logging.getLogger(__name__)

PACKAGE_DIR_MODE = 0o755
MANIFEST_FILE_MODE = 0o644
BUILD_DIR_PREFIX = "build-hznpkg-"


class InvalidTransitionError(RuntimeError):
    """Raised when a requested build state transition is not valid."""


def validate_url_base(url_base: str) -> None:
    """Raise ``ConfigurationError`` unless *url_base* is an absolute URL."""
    try:
        parts = urlsplit(url_base)
    except ValueError as exc:
        raise ConfigurationError(f"Part URL base {url_base!r} is not a valid URL: {exc}") from exc
    if not parts.scheme or not (parts.netloc or parts.scheme == "file"):
        raise ConfigurationError(
            f"Part URL base {url_base!r} must be an absolute URL (e.g. https://host/path)"
        )


class BuildOrchestrator:
    """Drives one package build from an image list to a committed or aborted outcome.

    The orchestrator installs itself as the reporter's error consumer, so
    each reporter serves exactly one orchestrator.

    Parameters
    ----------
    config:
        Build configuration.
    runtime:
        Container runtime the part workers pull and export from.
    reporter:
        Output and error funnel shared with the workers.
    credentials:
        Registry credentials for pulls.
    clock:
        Source of the build timestamp (part of the package id).
    """

    def __init__(
        self,
        config: BuildConfig,
        runtime: ContainerRuntime,
        reporter: SynchronizedReporter,
        *,
        credentials: CredentialSet | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.config = config
        self._runtime = runtime
        self._reporter = reporter
        self._credentials = credentials or CredentialSet()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self.state = BuildState.INITIALIZING
        self.package_id = ""
        self.build_dir: Path | None = None

        self._errors: list[DelegateError] = []
        self._errors_lock = threading.Lock()
        self._reporter.register_error_consumer(self._handle_error)

    # ------------------------------------------------------------------
    # Error channel
    # ------------------------------------------------------------------

    def _handle_error(self, error: DelegateError) -> None:
        """Runs on the reporter's consumer thread, once per reported error."""
        self._reporter.error(error.message.rstrip())
        with self._errors_lock:
            self._errors.append(error)

    @property
    def errors(self) -> tuple[DelegateError, ...]:
        with self._errors_lock:
            return tuple(self._errors)

    def _transition(self, to_state: BuildState) -> None:
        if to_state not in VALID_TRANSITIONS[self.state]:
            raise InvalidTransitionError(
                f"Cannot transition build from {self.state.value} to {to_state.value}"
            )
        logger.debug("Build %s: %s -> %s", self.package_id, self.state.value, to_state.value)
        self.state = to_state

    # ------------------------------------------------------------------
    # Build
    # ------------------------------------------------------------------

    def build(self, images: list[str]) -> BuildOutcome:
        """Build and publish a package from *images*.

        Returns a committed outcome carrying the package directory,
        manifest file and signature file, or an aborted outcome carrying
        the reported errors.
        """
        if self.state != BuildState.INITIALIZING:
            raise InvalidTransitionError("A BuildOrchestrator runs a single build")

        baseline = self._reporter.delegate_error_count
        try:
            signing_key, builder = self._initialize(images)
        except PkgBuildError as exc:
            self._reporter.report_error(exc.is_user_error, True, str(exc))
            return self._abort()

        self._transition(BuildState.BUILDING)
        worker = PartWorker(
            reporter=self._reporter,
            runtime=self._runtime,
            builder=builder,
            build_dir=self.build_dir,
            signing_key=signing_key,
            config=self.config,
            credentials=self._credentials,
        )
        self._run_workers(worker, images)

        if self._reporter.delegate_error_count - baseline > 0:
            self._reporter.error(
                "All parts not processed successfully, discontinuing operations"
            )
            return self._abort()

        self._transition(BuildState.COMMITTING)
        try:
            outcome = self._commit(builder, signing_key)
        except PkgBuildError as exc:
            self._reporter.report_error(exc.is_user_error, True, str(exc))
            return self._abort()

        self._transition(BuildState.COMMITTED)
        return outcome

    def _initialize(self, images: list[str]) -> tuple[nacl.signing.SigningKey, PackageBuilder]:
        """Validate inputs, load the key, allocate the package id and build dir."""
        if not images:
            raise ConfigurationError("At least one image is required")

        output_dir = self.config.output_dir
        if not output_dir.is_dir() or not os.access(output_dir, os.W_OK | os.X_OK):
            raise ConfigurationError(f"Directory path ({output_dir}) is unusable")

        key_path = self.config.private_key
        if not key_path.is_file() or not os.access(key_path, os.R_OK):
            raise KeyLoadError(f"File ({key_path}) is unusable")

        validate_url_base(self.config.part_url_base)

        signing_key = load_private_key(key_path)
        logger.debug("Signing with key fingerprint %s", key_fingerprint(signing_key.verify_key))

        builder = PackageBuilder(self.config.author, images, created=self._clock())
        self.package_id = builder.id

        try:
            self.build_dir = Path(
                tempfile.mkdtemp(prefix=f"{BUILD_DIR_PREFIX}{builder.id}-", dir=output_dir)
            )
        except OSError as exc:
            raise CommitError(f"Error creating temporary build directory: {exc}") from exc
        logger.info("Created temporary directory for packaging: %s", self.build_dir)
        return signing_key, builder

    def _run_workers(self, worker: PartWorker, images: list[str]) -> None:
        """Run one worker per image and wait for every one of them."""
        max_workers = self.config.max_workers or len(images)
        with ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="hznpkg-part"
        ) as pool:
            futures = [pool.submit(worker, image) for image in images]
            wait(futures)

        for image, future in zip(images, futures):
            exc = future.exception()
            if exc is not None:
                self._reporter.report_error(
                    False, True, f"Worker for image {image} crashed: {exc!r}"
                )

    # ------------------------------------------------------------------
    # Commit / abort
    # ------------------------------------------------------------------

    def _commit(
        self, builder: PackageBuilder, signing_key: nacl.signing.SigningKey
    ) -> BuildOutcome:
        if self.build_dir is None:
            raise CommitError(f"Package {builder.id} has no build directory to commit")
        output_dir = self.config.output_dir

        manifest, serialized = builder.build()
        logger.debug("Manifest for %s lists %d parts", builder.id, len(manifest.parts))
        package_dir = output_dir / builder.id
        manifest_file = output_dir / f"{builder.id}.json"
        signature_file = output_dir / f"{builder.id}.json.sig"
        for target in (package_dir, manifest_file, signature_file):
            if target.exists():
                raise CommitError(f"Refusing to overwrite existing {target}")

        signature = sign_data(serialized, signing_key)

        staged: list[Path] = []
        published = False
        try:
            staged_manifest = _write_staged(output_dir, manifest_file.name, serialized)
            staged.append(staged_manifest)
            staged_signature = _write_staged(
                output_dir, signature_file.name, signature.encode("ascii")
            )
            staged.append(staged_signature)
            logger.info("Wrote pkg metadata file to: %s", manifest_file)

            os.chmod(self.build_dir, PACKAGE_DIR_MODE)
            os.rename(self.build_dir, package_dir)
            try:
                os.replace(staged_signature, signature_file)
                os.replace(staged_manifest, manifest_file)
                published = True
            finally:
                if not published:
                    # Put the part dir back so the abort policy applies to it.
                    signature_file.unlink(missing_ok=True)
                    os.rename(package_dir, self.build_dir)
        except OSError as exc:
            raise CommitError(f"Error publishing package {builder.id}: {exc}") from exc
        finally:
            for path in staged:
                path.unlink(missing_ok=True)

        try:
            _fsync_dir(output_dir)
        except OSError as exc:
            logger.warning("Unable to fsync output directory %s: %s", output_dir, exc)

        logger.info(
            "Signed pkg metadata file and wrote signature to file: %s", signature_file
        )
        logger.info("Published package %s to %s", builder.id, package_dir)
        return BuildOutcome(
            state=BuildState.COMMITTED,
            package_id=builder.id,
            package_dir=package_dir,
            manifest_file=manifest_file,
            signature_file=signature_file,
        )

    def _abort(self) -> BuildOutcome:
        self._transition(BuildState.ABORTED)
        if self.build_dir is not None and self.build_dir.exists():
            if self.config.keep_failed_build_dir:
                self._reporter.info(
                    f"Kept temporary build directory for inspection: {self.build_dir}"
                )
            else:
                try:
                    shutil.rmtree(self.build_dir)
                except OSError as exc:
                    logger.warning(
                        "Unable to remove temporary build directory %s: %s",
                        self.build_dir,
                        exc,
                    )
        return BuildOutcome(
            state=BuildState.ABORTED,
            package_id=self.package_id,
            errors=self.errors,
        )


def _write_staged(directory: Path, name: str, data: bytes) -> Path:
    """Durably write *data* to a hidden staging file in *directory*."""
    fd, staged = tempfile.mkstemp(prefix=f".{name}.", suffix=".staged", dir=directory)
    with os.fdopen(fd, "wb") as fh:
        fh.write(data)
        fh.flush()
        os.fsync(fh.fileno())
    os.chmod(staged, MANIFEST_FILE_MODE)
    return Path(staged)


def _fsync_dir(directory: Path) -> None:
    fd = os.open(directory, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)
