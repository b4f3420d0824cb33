"""Verification report models — output of ``hznpkg verify``."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict


class PartVerification(BaseModel):
    """Result of checking one part file against its manifest entry."""

    model_config = ConfigDict(frozen=True)

    part_id: str
    description: str
    path: Path | None = None
    found: bool = False
    digest_matches: bool = False
    signature_valid: bool = False
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.found and self.digest_matches and self.signature_valid


class VerificationReport(BaseModel):
    """Aggregate verification result for a package."""

    model_config = ConfigDict(frozen=True)

    package_id: str
    manifest_file: Path
    manifest_signature_valid: bool
    parts: list[PartVerification] = []

    @property
    def ok(self) -> bool:
        return self.manifest_signature_valid and all(p.ok for p in self.parts)
