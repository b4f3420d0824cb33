"""Shared test fixtures for hznpkg."""

from __future__ import annotations

import hashlib
import io
import threading
import time
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest

from hznpkg.bridge.crypto_bridge import generate_keypair
from hznpkg.core.reporter import SynchronizedReporter
from hznpkg.errors import ImageNotFoundError
from hznpkg.models.config import BuildConfig

URL_BASE = "https://pkgs.example.com/hznpkg/"


class FakeRuntime:
    """In-memory ``ContainerRuntime``.

    ``local`` holds images already present; ``registry`` holds images a
    pull can fetch.  Every call is recorded in ``calls``.
    """

    def __init__(
        self,
        local: dict[str, bytes] | None = None,
        registry: dict[str, bytes] | None = None,
        *,
        export_delay: float = 0.0,
        chunk_size: int = 7,
    ) -> None:
        self.local = dict(local or {})
        self.registry = dict(registry or {})
        self.export_delay = export_delay
        self.chunk_size = chunk_size
        self.calls: list[tuple[Any, ...]] = []
        self._lock = threading.Lock()

    def _record(self, *call: Any) -> None:
        with self._lock:
            self.calls.append(call)

    def calls_named(self, name: str) -> list[tuple[Any, ...]]:
        with self._lock:
            return [c for c in self.calls if c[0] == name]

    def image_exists(self, ref: str) -> bool:
        self._record("image_exists", ref)
        with self._lock:
            return ref in self.local

    def pull(self, repository: str, tag: str, auth_config: dict[str, str] | None = None) -> None:
        ref = f"{repository}:{tag}"
        self._record("pull", ref, auth_config)
        with self._lock:
            if ref not in self.registry:
                raise ImageNotFoundError(f"Image {ref} not found in any registry")
            self.local[ref] = self.registry[ref]

    def export(self, ref: str) -> Iterator[bytes]:
        self._record("export", ref)
        with self._lock:
            if ref not in self.local:
                raise ImageNotFoundError(f"Image {ref} not present in container runtime")
            content = self.local[ref]
        if self.export_delay:
            time.sleep(self.export_delay)
        for i in range(0, len(content), self.chunk_size):
            yield content[i:i + self.chunk_size]


def image_content(name: str, size: int = 4096) -> bytes:
    """Deterministic pseudo-tar content for an image name."""
    seed = hashlib.sha256(name.encode()).digest()
    return (seed * (size // len(seed) + 1))[:size]


@pytest.fixture
def key_pair(tmp_path: Path) -> tuple[Path, Path]:
    """Write a fresh Ed25519 key pair as PEM files; return (private, public)."""
    private_pem, public_pem = generate_keypair()
    keys = tmp_path / "keys"
    keys.mkdir()
    private_path = keys / "signing.pem"
    public_path = keys / "signing.pub.pem"
    private_path.write_bytes(private_pem)
    public_path.write_bytes(public_pem)
    return private_path, public_path


@pytest.fixture
def output_dir(tmp_path: Path) -> Path:
    out = tmp_path / "out"
    out.mkdir()
    return out


@pytest.fixture
def make_config(output_dir: Path, key_pair: tuple[Path, Path]) -> Callable[..., BuildConfig]:
    """Factory fixture: build a BuildConfig with test defaults."""

    def _factory(**overrides: Any) -> BuildConfig:
        defaults: dict[str, Any] = {
            "output_dir": output_dir,
            "private_key": key_pair[0],
            "part_url_base": URL_BASE,
            "author": "builder@example.com",
        }
        defaults.update(overrides)
        return BuildConfig(**defaults)

    return _factory


@pytest.fixture
def reporter() -> Iterator[SynchronizedReporter]:
    """A reporter writing to in-memory streams (``reporter.test_out`` / ``test_err``)."""
    out, err = io.StringIO(), io.StringIO()
    rep = SynchronizedReporter(out=out, err=err, buffer_len=16)
    rep.test_out = out  # type: ignore[attr-defined]
    rep.test_err = err  # type: ignore[attr-defined]
    yield rep
    rep.close()


@pytest.fixture
def collected_errors(reporter: SynchronizedReporter) -> list:
    """Register a consumer that collects every DelegateError."""
    errors: list = []
    reporter.register_error_consumer(errors.append)
    return errors
