"""Container runtime bridge — existence checks, registry pulls and exports.

Workers talk to the runtime through the ``ContainerRuntime`` Protocol so
tests (and alternative runtimes) can stand in for Docker.  ``DockerRuntime``
is the production backend built on the docker SDK for Python.

Failures are translated into the hznpkg taxonomy.  An image missing from
every registry (``ImageNotFoundError``) and an unreachable runtime
(``RuntimeUnavailableError``) carry distinct messages so operators can
tell them apart.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import Protocol, runtime_checkable

import docker
from docker.errors import APIError, DockerException, ImageNotFound, NotFound

from hznpkg.errors import ImageNotFoundError, RuntimeUnavailableError, SystemFailure

logger = logging.getLogger(__name__)

EXPORT_CHUNK_SIZE = 2 * 1024 * 1024


@runtime_checkable
class ContainerRuntime(Protocol):
    """Protocol for container runtime backends."""

    def image_exists(self, ref: str) -> bool:
        """Return ``True`` if an image tagged exactly *ref* is present locally."""
        ...

    def pull(self, repository: str, tag: str, auth_config: dict[str, str] | None = None) -> None:
        """Pull ``repository:tag``, authenticating with *auth_config* if given."""
        ...

    def export(self, ref: str) -> Iterator[bytes]:
        """Stream the image's canonical (uncompressed) tar export."""
        ...


class DockerRuntime:
    """``ContainerRuntime`` backed by a docker engine.

    Parameters
    ----------
    client:
        A connected ``docker.DockerClient``.
    """

    def __init__(self, client: docker.DockerClient) -> None:
        self._client = client

    @classmethod
    def from_endpoint(cls, endpoint: str) -> DockerRuntime:
        """Connect to *endpoint* and confirm the engine answers."""
        try:
            client = docker.DockerClient(base_url=endpoint)
            client.ping()
        except (DockerException, OSError) as exc:
            raise RuntimeUnavailableError(
                f"Docker endpoint {endpoint} unreachable: {exc}"
            ) from exc
        return cls(client)

    def image_exists(self, ref: str) -> bool:
        try:
            images = self._client.images.list(name=ref, all=True)
        except (DockerException, OSError) as exc:
            raise RuntimeUnavailableError(
                f"Container runtime unreachable while looking up image {ref}: {exc}"
            ) from exc
        return any(ref in image.tags for image in images)

    def pull(self, repository: str, tag: str, auth_config: dict[str, str] | None = None) -> None:
        ref = f"{repository}:{tag}"
        logger.debug("Pulling %s (authenticated: %s)", ref, bool(auth_config))
        try:
            self._client.images.pull(repository, tag=tag, auth_config=auth_config)
        except (ImageNotFound, NotFound) as exc:
            raise ImageNotFoundError(
                f"Image {ref} not found in any registry: {exc}"
            ) from exc
        except APIError as exc:
            raise SystemFailure(f"Registry refused pull of {ref}: {exc}") from exc
        except (DockerException, OSError) as exc:
            raise RuntimeUnavailableError(
                f"Container runtime unreachable while pulling {ref}: {exc}"
            ) from exc

    def export(self, ref: str) -> Iterator[bytes]:
        try:
            image = self._client.images.get(ref)
        except (ImageNotFound, NotFound) as exc:
            raise ImageNotFoundError(f"Image {ref} not present in container runtime") from exc
        except (DockerException, OSError) as exc:
            raise RuntimeUnavailableError(
                f"Container runtime unreachable while exporting {ref}: {exc}"
            ) from exc
        return self._stream(ref, image.save(chunk_size=EXPORT_CHUNK_SIZE, named=True))

    @staticmethod
    def _stream(ref: str, chunks: Iterator[bytes]) -> Iterator[bytes]:
        try:
            yield from chunks
        except (DockerException, OSError) as exc:
            raise RuntimeUnavailableError(
                f"Container runtime failed mid-export of {ref}: {exc}"
            ) from exc
