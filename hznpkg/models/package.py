"""Package manifest model."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from hznpkg.core.hasher import canonical_json_bytes
from hznpkg.models.parts import Part


class PackageManifest(BaseModel):
    """The signed description of a package and all of its parts.

    ``id`` mixes the build time into its derivation, so two builds of the
    same images at different times have different package ids while
    their parts stay byte-identical.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    author: str
    created: datetime
    parts: list[Part]

    def serialize(self) -> bytes:
        """Canonical JSON bytes; these are exactly the bytes that get signed."""
        return canonical_json_bytes(self.model_dump(mode="json"))

    @classmethod
    def deserialize(cls, data: bytes) -> PackageManifest:
        return cls.model_validate_json(data)
