"""Per-build configuration models."""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict


class PullPolicy(str, Enum):
    """When a worker pulls an image from its registry."""

    IF_MISSING = "if-missing"  # pull only when absent locally
    ALWAYS = "always"  # pull even when present locally
    NEVER = "never"  # assume present, never pull


class Compression(str, Enum):
    """Codec applied to an exported image before it is stored as a part."""

    GZIP = "gzip"
    BZIP2 = "bzip2"
    XZ = "xz"
    NONE = "none"


class BuildConfig(BaseModel):
    """Everything the orchestrator needs to run one package build.

    ``keep_failed_build_dir`` decides the fate of the temporary build
    directory on abort: kept for postmortem when True, removed otherwise.
    ``max_workers`` of ``None`` means one worker per image.
    """

    model_config = ConfigDict(frozen=True)

    output_dir: Path
    private_key: Path
    part_url_base: str
    author: str
    pull_policy: PullPolicy = PullPolicy.IF_MISSING
    allow_unauthenticated_pull: bool = True
    compression: Compression = Compression.GZIP
    keep_failed_build_dir: bool = False
    max_workers: int | None = None
