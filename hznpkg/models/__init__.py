"""hznpkg data models — all Pydantic v2, all frozen (immutable)."""

from hznpkg.models.config import BuildConfig, Compression, PullPolicy
from hznpkg.models.outcome import (
    VALID_TRANSITIONS,
    BuildOutcome,
    BuildState,
    DelegateError,
)
from hznpkg.models.package import PackageManifest
from hznpkg.models.parts import ImageRef, Part, PartSource
from hznpkg.models.verification import PartVerification, VerificationReport

__all__ = [
    # config
    "BuildConfig",
    "Compression",
    "PullPolicy",
    # outcome
    "BuildOutcome",
    "BuildState",
    "DelegateError",
    "VALID_TRANSITIONS",
    # package
    "PackageManifest",
    # parts
    "ImageRef",
    "Part",
    "PartSource",
    # verification
    "PartVerification",
    "VerificationReport",
]
