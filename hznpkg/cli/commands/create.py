"""``hznpkg create`` — build, sign and publish a package from container images.

On success prints ``<package dir> <manifest file> <signature file>`` on
stdout.  Exit status 2 marks an input error, 3 a system error.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import typer

from hznpkg.bridge.credentials import CredentialSet
from hznpkg.bridge.docker_runtime import DockerRuntime
from hznpkg.cli._logging import (
    EXIT_OK,
    attach_reporter_logging,
    detach_reporter_logging,
    exit_code_for,
)
from hznpkg.config import PkgBuildSettings
from hznpkg.core.orchestrator import BuildOrchestrator
from hznpkg.core.reporter import SynchronizedReporter
from hznpkg.errors import ConfigurationError, PkgBuildError
from hznpkg.models.config import Compression, PullPolicy


def create_cmd(
    ctx: typer.Context,
    images: List[str] = typer.Option(
        [],
        "--image",
        "-i",
        help="Image name and tag to package (e.g. 'registry.example.com/x86/db:0.1.0'). "
        "May be specified multiple times.",
    ),
    output_dir: Optional[Path] = typer.Option(
        None,
        "--output-dir",
        "-d",
        help="Directory the package files are written to. [env: HZNPKG_OUTPUTDIR]",
    ),
    part_url_base: Optional[str] = typer.Option(
        None,
        "--part-url-base",
        "-u",
        help="URL base (e.g. https://pkgs.example.com/hznpkg) at which the output "
        "directory will be served. [env: HZNPKG_URLBASE]",
    ),
    private_key: Optional[Path] = typer.Option(
        None,
        "--private-key",
        "-k",
        help="PEM-encoded Ed25519 private key to sign parts and manifest. "
        "[env: HZNPKG_PRIVATEKEY]",
    ),
    author: Optional[str] = typer.Option(
        None, "--author", "-a", help="Email address of the package author. [env: HZNPKG_AUTHOR]"
    ),
    docker_endpoint: Optional[str] = typer.Option(
        None,
        "--docker-endpoint",
        "-e",
        help="Docker API endpoint images are fetched from. [env: HZNPKG_DOCKERENDPOINT]",
    ),
    registry_auth: Optional[Path] = typer.Option(
        None,
        "--registry-auth",
        help="Docker config.json-style file with registry credentials.",
    ),
    pull_policy: Optional[PullPolicy] = typer.Option(
        None, "--pull-policy", help="When to pull images from their registry."
    ),
    require_auth: bool = typer.Option(
        False,
        "--require-auth",
        help="Fail instead of pulling anonymously when no credentials match a registry.",
    ),
    compression: Optional[Compression] = typer.Option(
        None, "--compression", help="Codec for stored parts."
    ),
    keep_failed: bool = typer.Option(
        False,
        "--keep-failed",
        help="Keep the temporary build directory when the build fails.",
    ),
    max_workers: Optional[int] = typer.Option(
        None, "--max-workers", min=1, help="Limit concurrent image workers."
    ),
) -> None:
    """Create a new package from container images."""
    try:
        settings = PkgBuildSettings.load()
    except ConfigurationError as exc:
        with SynchronizedReporter() as reporter:
            reporter.error(str(exc))
        raise typer.Exit(code=exit_code_for(exc.is_user_error))

    debug = bool(ctx.obj and ctx.obj.get("debug")) or settings.debug

    reporter = SynchronizedReporter(buffer_len=settings.reporter_buffer_len)
    handler = attach_reporter_logging(reporter, debug=debug, level=settings.log_level)
    if debug:
        reporter.info("debug output enabled.")
    try:
        code = _run_create(
            reporter,
            settings,
            images,
            output_dir=output_dir,
            part_url_base=part_url_base,
            private_key=private_key,
            author=author,
            docker_endpoint=docker_endpoint,
            registry_auth=registry_auth,
            pull_policy=pull_policy,
            require_auth=require_auth,
            compression=compression,
            keep_failed=keep_failed,
            max_workers=max_workers,
        )
    finally:
        detach_reporter_logging(handler)
        reporter.close()

    if code != EXIT_OK:
        raise typer.Exit(code=code)


def _run_create(
    reporter: SynchronizedReporter,
    settings: PkgBuildSettings,
    images: list[str],
    *,
    output_dir: Path | None,
    part_url_base: str | None,
    private_key: Path | None,
    author: str | None,
    docker_endpoint: str | None,
    registry_auth: Path | None,
    pull_policy: PullPolicy | None,
    require_auth: bool,
    compression: Compression | None,
    keep_failed: bool,
    max_workers: int | None,
) -> int:
    try:
        if not images:
            raise ConfigurationError(
                "Required option(s) 'image' not provided. Use the '--help' option for more information."
            )
        config = settings.to_build_config(
            output_dir=output_dir,
            part_url_base=part_url_base,
            private_key=private_key,
            author=author,
            pull_policy=pull_policy,
            allow_unauthenticated_pull=False if require_auth else None,
            compression=compression,
            keep_failed_build_dir=True if keep_failed else None,
            max_workers=max_workers,
        )
        auth_file = registry_auth or settings.registry_auth_file
        credentials = CredentialSet.from_file(auth_file) if auth_file else CredentialSet()
        runtime = DockerRuntime.from_endpoint(docker_endpoint or settings.docker_endpoint)
    except PkgBuildError as exc:
        reporter.error(str(exc))
        return exit_code_for(exc.is_user_error)

    orchestrator = BuildOrchestrator(config, runtime, reporter, credentials=credentials)
    outcome = orchestrator.build(images)
    if not outcome.committed:
        reporter.error("Failed to create Horizon Pkg")
        return exit_code_for(outcome.is_user_error)

    reporter.result(outcome.result_line())
    return EXIT_OK
