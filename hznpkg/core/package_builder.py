"""In-process manifest builder — the shared accumulator for parts.

Every Part Worker registers its part here concurrently, so ``add_part``
is guarded by a lock.  Registered parts are immutable.  ``build`` takes
the final snapshot and enforces the referential constraints: every
declared image has exactly one part and no part id repeats.
"""

from __future__ import annotations

import threading
from datetime import datetime, timezone

from hznpkg.core.hasher import canonical_json_bytes, sha256_hex
from hznpkg.errors import ConfigurationError, PackageBuildError
from hznpkg.models.package import PackageManifest
from hznpkg.models.parts import Part, PartSource


def compute_package_id(author: str, images: list[str], created: datetime) -> str:
    """SHA-256 of canonical(author + sorted images + creation time).

    Creation time is an input, so the same image list built twice yields
    two different package ids.
    """
    payload = {
        "author": author,
        "images": sorted(images),
        "created": created.isoformat(),
    }
    return sha256_hex(canonical_json_bytes(payload))


class PackageBuilder:
    """Accumulates parts for one package and serializes its manifest.

    Parameters
    ----------
    author:
        Email address (or other identity) of the package author.
    images:
        The image references this package is declared to contain.
    created:
        Build timestamp.  Defaults to now (UTC).
    """

    def __init__(
        self,
        author: str,
        images: list[str],
        *,
        created: datetime | None = None,
    ) -> None:
        if not author:
            raise ConfigurationError("A package author is required")
        if not images:
            raise ConfigurationError("At least one image is required")
        duplicates = sorted({i for i in images if images.count(i) > 1})
        if duplicates:
            raise ConfigurationError(f"Images listed more than once: {', '.join(duplicates)}")

        self.author = author
        self.images = list(images)
        self.created = created or datetime.now(timezone.utc)
        self._id = compute_package_id(author, self.images, self.created)
        self._parts: dict[str, Part] = {}  # description -> Part
        self._part_ids: set[str] = set()
        self._lock = threading.Lock()

    @property
    def id(self) -> str:
        """Package identifier; stable for the life of the builder."""
        return self._id

    def add_part(
        self,
        part_id: str,
        digest: str,
        description: str,
        signatures: list[str],
        size_bytes: int,
        source_url: str,
    ) -> Part:
        """Register a part.  Safe to call concurrently from every worker."""
        part = Part(
            id=part_id,
            digest=digest,
            description=description,
            signatures=list(signatures),
            size_bytes=size_bytes,
            sources=[PartSource(url=source_url)],
        )
        with self._lock:
            if description not in self.images:
                raise PackageBuildError(
                    f"Part {part_id} describes {description}, which is not declared in package {self._id}"
                )
            if description in self._parts:
                raise PackageBuildError(f"A part for {description} is already registered")
            if part_id in self._part_ids:
                raise PackageBuildError(
                    f"Part {part_id} is already registered (duplicate image content)"
                )
            self._parts[description] = part
            self._part_ids.add(part_id)
        return part

    def parts(self) -> list[Part]:
        """Snapshot of registered parts in declared image order."""
        with self._lock:
            return [self._parts[i] for i in self.images if i in self._parts]

    def build(self) -> tuple[PackageManifest, bytes]:
        """Produce the manifest and its serialized bytes."""
        with self._lock:
            missing = [i for i in self.images if i not in self._parts]
            if missing:
                raise PackageBuildError(
                    f"Package {self._id} is missing parts for: {', '.join(missing)}"
                )
            manifest = PackageManifest(
                id=self._id,
                author=self.author,
                created=self.created,
                parts=[self._parts[i] for i in self.images],
            )
        return manifest, manifest.serialize()
