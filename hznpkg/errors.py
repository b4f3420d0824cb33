"""Error taxonomy for package builds.

Two families reach the operator: ``UserInputError`` (bad image reference,
missing configuration, unreadable key) and ``SystemFailure`` (runtime
unreachable, I/O, signing, manifest build).  Both are always breaking;
there is no retry policy.
"""

from __future__ import annotations


class PkgBuildError(Exception):
    """Base class for all errors raised by hznpkg."""

    is_user_error: bool = False


class UserInputError(PkgBuildError):
    """Raised for problems the operator can fix by changing their input."""

    is_user_error = True


class ImageReferenceError(UserInputError):
    """Raised when an image reference cannot be split into repository and tag."""


class KeyLoadError(UserInputError):
    """Raised when a signing or verification key cannot be read."""


class RegistryAuthError(UserInputError):
    """Raised when a pull requires credentials that were not supplied."""


class ConfigurationError(UserInputError):
    """Raised when build configuration fails validation."""


class SystemFailure(PkgBuildError):
    """Raised for failures outside the operator's input."""


class RuntimeUnavailableError(SystemFailure):
    """Raised when the container runtime cannot be reached."""


class ImageNotFoundError(SystemFailure):
    """Raised when an image exists neither locally nor in its registry."""


class SigningError(SystemFailure):
    """Raised when producing a signature fails."""


class PackageBuildError(SystemFailure):
    """Raised when the manifest accumulator rejects a part or a build."""


class CommitError(SystemFailure):
    """Raised when publishing the package into the output directory fails."""
