"""Environment-driven settings for the package builder.

Every setting can be overridden via HZNPKG_* environment variables or a
.env file in the working directory.  CLI options take precedence over
both.

Examples
--------
Override via environment::

    export HZNPKG_OUTPUTDIR=/srv/pkgs
    export HZNPKG_URLBASE=https://pkgs.example.com/hznpkg
    export HZNPKG_PRIVATEKEY=/etc/hznpkg/signing.pem
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import AliasChoices, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from hznpkg.errors import ConfigurationError
from hznpkg.models.config import BuildConfig, Compression, PullPolicy


class PkgBuildSettings(BaseSettings):
    """Defaults for ``hznpkg create`` drawn from the environment."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="HZNPKG_",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    output_dir: Path = Field(
        Path("."), validation_alias=AliasChoices("HZNPKG_OUTPUTDIR", "HZNPKG_OUTPUT_DIR")
    )
    part_url_base: str = Field(
        "", validation_alias=AliasChoices("HZNPKG_URLBASE", "HZNPKG_PART_URL_BASE")
    )
    private_key: Path | None = Field(
        None, validation_alias=AliasChoices("HZNPKG_PRIVATEKEY", "HZNPKG_PRIVATE_KEY")
    )
    author: str = ""
    docker_endpoint: str = Field(
        "unix:///var/run/docker.sock",
        validation_alias=AliasChoices("HZNPKG_DOCKERENDPOINT", "HZNPKG_DOCKER_ENDPOINT"),
    )
    registry_auth_file: Path | None = None

    pull_policy: PullPolicy = PullPolicy.IF_MISSING
    allow_unauthenticated_pull: bool = True
    compression: Compression = Compression.GZIP
    keep_failed_build_dir: bool = False
    max_workers: int | None = None

    # Reporter and logging
    reporter_buffer_len: int = 256
    log_level: str = "INFO"
    debug: bool = False

    def to_build_config(self, **overrides: Any) -> BuildConfig:
        """Merge non-None ``overrides`` over these settings into a BuildConfig.

        Raises ``ConfigurationError`` naming every missing required value.
        """
        values: dict[str, Any] = {
            "output_dir": self.output_dir,
            "private_key": self.private_key,
            "part_url_base": self.part_url_base,
            "author": self.author,
            "pull_policy": self.pull_policy,
            "allow_unauthenticated_pull": self.allow_unauthenticated_pull,
            "compression": self.compression,
            "keep_failed_build_dir": self.keep_failed_build_dir,
            "max_workers": self.max_workers,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})

        missing = [
            name
            for name in ("output_dir", "private_key", "part_url_base", "author")
            if not values.get(name)
        ]
        if missing:
            raise ConfigurationError(
                "Required option(s) not provided: "
                + ", ".join(missing)
                + ". Use the '--help' option for more information."
            )
        try:
            return BuildConfig(**values)
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid build configuration: {exc}") from exc

    @classmethod
    def load(cls) -> PkgBuildSettings:
        """Read settings from the environment, raising ``ConfigurationError`` on bad values."""
        try:
            return cls()
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid HZNPKG_* setting: {exc}") from exc
