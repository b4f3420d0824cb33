"""Registry credentials, matched to images by registry server address.

Credentials are read from a docker ``config.json``-style file::

    {"auths": {"registry.example.com": {"auth": "<base64 user:pass>"}}}

Entries may also spell out ``username`` / ``password`` / ``email``.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict

from hznpkg.errors import ConfigurationError

logger = logging.getLogger(__name__)


class RegistryCredentials(BaseModel):
    """Login for a single registry."""

    model_config = ConfigDict(frozen=True)

    server_address: str
    username: str = ""
    password: str = ""
    email: str = ""

    def auth_config(self) -> dict[str, str]:
        """The ``auth_config`` mapping the docker SDK expects."""
        config = {"username": self.username, "password": self.password}
        if self.email:
            config["email"] = self.email
        return config


def _normalize_server(server: str) -> str:
    # config.json keys are often full URLs ("https://index.docker.io/v1/")
    server = server.split("://", 1)[-1]
    return server.split("/", 1)[0]


class CredentialSet:
    """A set of registry credentials keyed by server address."""

    def __init__(self, credentials: list[RegistryCredentials] | None = None) -> None:
        self._by_server: dict[str, RegistryCredentials] = {}
        for cred in credentials or []:
            self._by_server[_normalize_server(cred.server_address)] = cred

    def __len__(self) -> int:
        return len(self._by_server)

    def lookup(self, server_address: str | None) -> RegistryCredentials | None:
        """Return credentials for *server_address*, or ``None`` if none match."""
        if not server_address:
            return None
        return self._by_server.get(_normalize_server(server_address))

    @classmethod
    def from_file(cls, path: Path) -> CredentialSet:
        try:
            data = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigurationError(f"Unable to read registry auth file {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigurationError(f"Registry auth file {path} must contain a JSON object")
        return cls.from_mapping(data.get("auths", {}))

    @classmethod
    def from_mapping(cls, auths: dict[str, Any]) -> CredentialSet:
        credentials: list[RegistryCredentials] = []
        for server, entry in auths.items():
            if not isinstance(entry, dict):
                raise ConfigurationError(f"Malformed auth entry for registry {server}")
            username = entry.get("username", "")
            password = entry.get("password", "")
            if entry.get("auth"):
                try:
                    decoded = base64.b64decode(entry["auth"]).decode("utf-8")
                except (binascii.Error, UnicodeDecodeError) as exc:
                    raise ConfigurationError(
                        f"Malformed auth token for registry {server}: {exc}"
                    ) from exc
                username, _, password = decoded.partition(":")
            credentials.append(
                RegistryCredentials(
                    server_address=server,
                    username=username,
                    password=password,
                    email=entry.get("email", ""),
                )
            )
        logger.debug("Loaded credentials for %d registries", len(credentials))
        return cls(credentials)
