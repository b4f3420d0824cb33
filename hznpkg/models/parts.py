"""Image reference and part models.

A part's ``id`` and ``digest`` carry the same value: the SHA-256 of the
image's uncompressed export stream.  Identical image content therefore
always yields an identical, deduplicable part regardless of when it was
built or which codec stored it.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from hznpkg.errors import ImageReferenceError


class ImageRef(BaseModel):
    """A container image reference split into repository and tag."""

    model_config = ConfigDict(frozen=True)

    raw: str
    repository: str
    tag: str

    @property
    def server_address(self) -> str | None:
        """Registry host for credential lookup, if the repository names one."""
        segments = self.repository.split("/")
        if len(segments) > 1:
            return segments[0]
        return None

    @classmethod
    def parse(cls, raw: str) -> ImageRef:
        """Split ``raw`` into repository and tag.

        The tag follows the last ``:`` after the last ``/`` so registry
        ports (``host:5000/img:1.0``) survive.  A reference without a tag
        is an operator mistake, not a runtime failure.
        """
        slash = raw.rfind("/")
        colon = raw.rfind(":")
        if colon <= slash:
            raise ImageReferenceError(
                f"Unable to parse given image name: {raw} (expected <repository>:<tag>)"
            )
        repository, tag = raw[:colon], raw[colon + 1:]
        if not repository or not tag or "@" in raw:
            raise ImageReferenceError(
                f"Unable to parse given image name: {raw} (expected <repository>:<tag>)"
            )
        return cls(raw=raw, repository=repository, tag=tag)

    def __str__(self) -> str:
        return self.raw


class PartSource(BaseModel):
    """A location from which a part can be downloaded."""

    model_config = ConfigDict(frozen=True)

    url: str


class Part(BaseModel):
    """One content-addressed, signed image artifact within a package."""

    model_config = ConfigDict(frozen=True)

    id: str
    digest: str
    description: str  # the original image reference
    signatures: list[str] = Field(default_factory=list)
    size_bytes: int  # compressed size, what a client downloads
    sources: list[PartSource] = Field(default_factory=list)

    @property
    def source_url(self) -> str:
        """The primary download URL, or an empty string."""
        return self.sources[0].url if self.sources else ""
