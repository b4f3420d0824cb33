"""Crypto bridge — Ed25519 signing for parts and manifests.

Signing and verification use PyNaCl (libsodium).  Keys live on disk as
PEM (PKCS8 private keys, SubjectPublicKeyInfo public keys), parsed with
``cryptography``; a bare 64-character hex seed or public key is accepted
as well.

Signatures are hex-encoded (128 hex chars = 64 bytes).  Part signatures
cover the raw 32-byte SHA-256 digest of the uncompressed image stream;
the manifest signature covers the manifest file bytes.
"""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path

import nacl.exceptions
import nacl.signing
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from hznpkg.errors import KeyLoadError, SigningError

logger = logging.getLogger(__name__)

_PEM_MARKER = b"-----BEGIN"


def generate_keypair() -> tuple[bytes, bytes]:
    """Generate a signing key pair.

    Returns
    -------
    tuple[bytes, bytes]
        ``(private_key_pem, public_key_pem)``
    """
    sk = nacl.signing.SigningKey.generate()
    private = Ed25519PrivateKey.from_private_bytes(sk.encode())
    private_pem = private.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_pem = private.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return private_pem, public_pem


def _read_key_file(path: Path) -> bytes:
    try:
        return Path(path).read_bytes().strip()
    except OSError as exc:
        raise KeyLoadError(f"Unable to read key file {path}: {exc}") from exc


def load_private_key(path: Path) -> nacl.signing.SigningKey:
    """Load an Ed25519 signing key from a PEM or hex-seed file."""
    data = _read_key_file(path)
    try:
        if data.startswith(_PEM_MARKER):
            key = serialization.load_pem_private_key(data, password=None)
            if not isinstance(key, Ed25519PrivateKey):
                raise KeyLoadError(
                    f"Private key {path} is a {type(key).__name__}, expected Ed25519"
                )
            seed = key.private_bytes(
                encoding=serialization.Encoding.Raw,
                format=serialization.PrivateFormat.Raw,
                encryption_algorithm=serialization.NoEncryption(),
            )
        else:
            seed = bytes.fromhex(data.decode("ascii"))
        return nacl.signing.SigningKey(seed)
    except KeyLoadError:
        raise
    except (ValueError, TypeError, UnsupportedAlgorithm, nacl.exceptions.CryptoError) as exc:
        raise KeyLoadError(f"Error reading Ed25519 private key {path}: {exc}") from exc


def load_verify_key(path: Path) -> nacl.signing.VerifyKey:
    """Load an Ed25519 public key from a PEM or hex file."""
    data = _read_key_file(path)
    try:
        if data.startswith(_PEM_MARKER):
            key = serialization.load_pem_public_key(data)
            if not isinstance(key, Ed25519PublicKey):
                raise KeyLoadError(
                    f"Public key {path} is a {type(key).__name__}, expected Ed25519"
                )
            raw = key.public_bytes(
                encoding=serialization.Encoding.Raw,
                format=serialization.PublicFormat.Raw,
            )
        else:
            raw = bytes.fromhex(data.decode("ascii"))
        return nacl.signing.VerifyKey(raw)
    except KeyLoadError:
        raise
    except (ValueError, TypeError, UnsupportedAlgorithm, nacl.exceptions.CryptoError) as exc:
        raise KeyLoadError(f"Error reading Ed25519 public key {path}: {exc}") from exc


def sign_data(data: bytes, private_key: nacl.signing.SigningKey) -> str:
    """Sign *data* and return the hex-encoded signature."""
    try:
        return private_key.sign(data).signature.hex()
    except (nacl.exceptions.CryptoError, TypeError) as exc:
        raise SigningError(f"Signing failed: {exc}") from exc


def sign_digest(hex_digest: str, private_key: nacl.signing.SigningKey) -> str:
    """Sign the raw bytes of a hex SHA-256 digest."""
    return sign_data(bytes.fromhex(hex_digest), private_key)


def verify_data(data: bytes, signature: str, public_key: nacl.signing.VerifyKey) -> bool:
    """Return ``True`` if *signature* is valid for *data* under *public_key*.

    Fail-closed: an empty or malformed signature is simply invalid.
    """
    if not signature:
        return False
    try:
        public_key.verify(data, bytes.fromhex(signature))
        return True
    except (nacl.exceptions.BadSignatureError, ValueError):
        return False


def verify_digest(hex_digest: str, signature: str, public_key: nacl.signing.VerifyKey) -> bool:
    return verify_data(bytes.fromhex(hex_digest), signature, public_key)


def key_fingerprint(public_key: nacl.signing.VerifyKey) -> str:
    """First 16 hex characters of SHA-256 over the raw public key."""
    return hashlib.sha256(public_key.encode()).hexdigest()[:16]
