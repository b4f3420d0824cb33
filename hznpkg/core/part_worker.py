"""Part worker — turns one image reference into one registered, signed part.

Protocol, sequential within a worker:

1. Parse the reference (before any runtime I/O) and make sure the image
   is present, pulling it per the pull policy and registry credentials.
2. Export the image to a temporary file while hashing the uncompressed
   stream.  The digest is always taken over the canonical export, never
   the compressed artifact.
3. Compress the export and store it as ``<digest><ext>`` in the build
   directory; the compressed size is the part's recorded size.
4. Sign the digest.
5. Compute the part's download URL from the URL base and package id.
6. Register the part with the shared accumulator.

Any failure is reported exactly once through the reporter, naming the
image, and the worker stops without registering anything.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

import nacl.signing

from hznpkg.bridge.credentials import CredentialSet
from hznpkg.bridge.crypto_bridge import sign_digest
from hznpkg.bridge.docker_runtime import ContainerRuntime
from hznpkg.core.compression import compress_file, extension_for
from hznpkg.core.hasher import HashingWriter
from hznpkg.core.package_builder import PackageBuilder
from hznpkg.core.reporter import SynchronizedReporter
from hznpkg.errors import PkgBuildError, RegistryAuthError, SystemFailure
from hznpkg.models.config import BuildConfig, PullPolicy
from hznpkg.models.parts import ImageRef, Part

logger = logging.getLogger(__name__)

PART_FILE_MODE = 0o644


def part_source_url(url_base: str, package_id: str, file_name: str) -> str:
    """Public URL of a part once the package directory is served at *url_base*."""
    return f"{url_base.rstrip('/')}/{package_id}/{file_name}"


def _safe_name(image: str) -> str:
    return image.replace("/", "_").replace(":", "_")


class PartWorker:
    """Processes images into parts of a single package.

    One instance is shared by all of a build's worker threads; it holds
    only read-only state plus the (internally synchronized) accumulator
    and reporter.

    Parameters
    ----------
    reporter:
        Where failures are reported.
    runtime:
        Container runtime to pull and export from.
    builder:
        The package's part accumulator.
    build_dir:
        Temporary build directory that parts are written into.
    signing_key:
        Key used to sign each part digest.
    config:
        Build configuration (pull policy, codec, URL base).
    credentials:
        Registry credentials for pulls.
    """

    def __init__(
        self,
        *,
        reporter: SynchronizedReporter,
        runtime: ContainerRuntime,
        builder: PackageBuilder,
        build_dir: Path,
        signing_key: nacl.signing.SigningKey,
        config: BuildConfig,
        credentials: CredentialSet | None = None,
    ) -> None:
        self._reporter = reporter
        self._runtime = runtime
        self._builder = builder
        self._build_dir = Path(build_dir)
        self._signing_key = signing_key
        self._config = config
        self._credentials = credentials or CredentialSet()

    def __call__(self, image: str) -> Part | None:
        """Run the full protocol for *image*; return the part or ``None`` on failure."""
        logger.info("Beginning processing Docker image: %s", image)
        try:
            return self.process(image)
        except PkgBuildError as exc:
            self._reporter.report_error(
                exc.is_user_error, True, f"Error processing image {image}: {exc}"
            )
        except Exception as exc:
            logger.debug("Unexpected failure processing %s", image, exc_info=True)
            self._reporter.report_error(
                False, True, f"Error processing image {image}: {type(exc).__name__}: {exc}"
            )
        return None

    def process(self, image: str) -> Part:
        """Run the protocol for *image*, raising on the first failure."""
        ref = ImageRef.parse(image)
        self.ensure_present(ref)

        export_path, digest = self.export(ref)
        try:
            file_name, size_bytes = self.compress(ref, export_path, digest)
        finally:
            export_path.unlink(missing_ok=True)
        logger.info("Wrote Docker image %s as: %s", image, file_name)

        signature = sign_digest(digest, self._signing_key)
        logger.info("Signed hash for image: %s", image)

        source_url = part_source_url(self._config.part_url_base, self._builder.id, file_name)
        part = self._builder.add_part(
            digest, digest, image, [signature], size_bytes, source_url
        )
        logger.info("Part added to pkg %s for image: %s", self._builder.id, image)
        return part

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def ensure_present(self, ref: ImageRef) -> None:
        """Pull *ref* unless the pull policy says it is already there."""
        policy = self._config.pull_policy
        if policy == PullPolicy.NEVER:
            logger.debug("Assuming %s is present; not pulling", ref)
            return

        if policy == PullPolicy.IF_MISSING and self._runtime.image_exists(ref.raw):
            logger.debug("Image %s present locally; skipping pull", ref)
            return

        creds = self._credentials.lookup(ref.server_address)
        if creds is None and not self._config.allow_unauthenticated_pull:
            raise RegistryAuthError(
                f"No credentials for registry {ref.server_address or '(default)'} "
                "and unauthenticated pulls are disabled"
            )
        self._runtime.pull(ref.repository, ref.tag, creds.auth_config() if creds else None)

    def export(self, ref: ImageRef) -> tuple[Path, str]:
        """Write the image's export stream to a temp file; return (path, sha256 hex)."""
        fd, name = tempfile.mkstemp(
            prefix=f"{_safe_name(ref.raw)}.", suffix=".tar", dir=self._build_dir
        )
        path = Path(name)
        try:
            with os.fdopen(fd, "wb") as fh:
                writer = HashingWriter(fh)
                for chunk in self._runtime.export(ref.raw):
                    writer.write(chunk)
                writer.flush()
                os.fsync(fh.fileno())
            if writer.bytes_written == 0:
                raise SystemFailure(f"Export of {ref} produced no data")
        except BaseException:
            path.unlink(missing_ok=True)
            raise
        return path, writer.hexdigest()

    def compress(self, ref: ImageRef, export_path: Path, digest: str) -> tuple[str, int]:
        """Compress the export into its permanent ``<digest><ext>`` name."""
        ext = extension_for(self._config.compression)
        fd, name = tempfile.mkstemp(
            prefix=f"{_safe_name(ref.raw)}.", suffix=f"{ext}.partial", dir=self._build_dir
        )
        os.close(fd)
        partial = Path(name)
        try:
            size_bytes = compress_file(export_path, partial, self._config.compression)
            os.chmod(partial, PART_FILE_MODE)
            file_name = f"{digest}{ext}"
            os.replace(partial, self._build_dir / file_name)
        except BaseException:
            partial.unlink(missing_ok=True)
            raise
        return file_name, size_bytes
