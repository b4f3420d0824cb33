"""Build state machine and outcome models."""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict


class DelegateError(BaseModel):
    """An error reported by a worker or other concurrent producer.

    ``is_breaking`` marks an error that halted further progress as
    opposed to a transient condition.  Every current error is breaking.
    """

    model_config = ConfigDict(frozen=True)

    is_user_error: bool
    is_breaking: bool
    message: str

    def __str__(self) -> str:
        return self.message


class BuildState(str, Enum):
    """Lifecycle of a single package build."""

    INITIALIZING = "initializing"
    BUILDING = "building"
    COMMITTING = "committing"
    COMMITTED = "committed"
    ABORTED = "aborted"


# Terminal states (COMMITTED, ABORTED) have no outgoing transitions.
VALID_TRANSITIONS: dict[BuildState, set[BuildState]] = {
    BuildState.INITIALIZING: {BuildState.BUILDING, BuildState.ABORTED},
    BuildState.BUILDING: {BuildState.COMMITTING, BuildState.ABORTED},
    BuildState.COMMITTING: {BuildState.COMMITTED, BuildState.ABORTED},
    BuildState.COMMITTED: set(),
    BuildState.ABORTED: set(),
}


class BuildOutcome(BaseModel):
    """Terminal result of a build.

    A committed outcome carries the published part directory, manifest
    file and detached signature file.  An aborted outcome carries the
    errors reported while the build ran.
    """

    model_config = ConfigDict(frozen=True)

    state: BuildState
    package_id: str = ""
    package_dir: Path | None = None
    manifest_file: Path | None = None
    signature_file: Path | None = None
    errors: tuple[DelegateError, ...] = ()

    @property
    def committed(self) -> bool:
        return self.state == BuildState.COMMITTED

    @property
    def is_user_error(self) -> bool:
        """True when any reported error was caused by operator input."""
        return any(e.is_user_error for e in self.errors)

    def result_line(self) -> str:
        """The machine-readable line printed on success."""
        return f"{self.package_dir} {self.manifest_file} {self.signature_file}"
