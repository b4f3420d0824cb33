"""Package verification — the consumer-side check of a published package.

Verifies the detached manifest signature, then each part: the stored
file is decompressed, its canonical stream rehashed, and both the digest
and the part signature are checked.  Because digests cover the
uncompressed stream, verification holds no matter which codec stored
the part.
"""

from __future__ import annotations

import logging
import lzma
import zlib
from pathlib import Path

import nacl.signing
from pydantic import ValidationError

from hznpkg.bridge.crypto_bridge import verify_data, verify_digest
from hznpkg.core.compression import EXTENSIONS, codec_for_path, open_decompressed_reader
from hznpkg.core.hasher import sha256_stream
from hznpkg.errors import UserInputError
from hznpkg.models.package import PackageManifest
from hznpkg.models.parts import Part
from hznpkg.models.verification import PartVerification, VerificationReport

logger = logging.getLogger(__name__)


class PackageVerifier:
    """Checks a published package against a public key.

    Parameters
    ----------
    public_key:
        Verification key matching the key the package was signed with.
    """

    def __init__(self, public_key: nacl.signing.VerifyKey) -> None:
        self._public_key = public_key

    def verify(
        self,
        manifest_file: Path,
        *,
        signature_file: Path | None = None,
        package_dir: Path | None = None,
    ) -> VerificationReport:
        """Verify *manifest_file* and every part it lists.

        ``signature_file`` defaults to ``<manifest_file>.sig`` and
        ``package_dir`` to ``<manifest dir>/<package id>``.
        """
        manifest_file = Path(manifest_file)
        signature_file = Path(signature_file or f"{manifest_file}.sig")
        try:
            manifest_bytes = manifest_file.read_bytes()
            signature_bytes = signature_file.read_bytes()
        except OSError as exc:
            raise UserInputError(f"Unable to read package files: {exc}") from exc
        try:
            signature = signature_bytes.decode("ascii").strip()
        except UnicodeDecodeError:
            # Not a hex signature; verify_data treats empty as invalid.
            signature = ""
        try:
            manifest = PackageManifest.deserialize(manifest_bytes)
        except ValidationError as exc:
            raise UserInputError(f"{manifest_file} is not a package manifest: {exc}") from exc

        manifest_ok = verify_data(manifest_bytes, signature, self._public_key)
        if not manifest_ok:
            logger.warning("Manifest signature check failed for %s", manifest_file)

        package_dir = Path(package_dir or manifest_file.parent / manifest.id)
        parts = [self.verify_part(part, package_dir) for part in manifest.parts]
        return VerificationReport(
            package_id=manifest.id,
            manifest_file=manifest_file,
            manifest_signature_valid=manifest_ok,
            parts=parts,
        )

    def verify_part(self, part: Part, package_dir: Path) -> PartVerification:
        path = _locate_part(part, package_dir)
        if path is None:
            return PartVerification(
                part_id=part.id,
                description=part.description,
                detail=f"no file for {part.digest} in {package_dir}",
            )

        codec = codec_for_path(path)
        try:
            with open_decompressed_reader(path, codec) as stream:
                actual = sha256_stream(stream)
        except (OSError, EOFError, lzma.LZMAError, zlib.error) as exc:
            return PartVerification(
                part_id=part.id,
                description=part.description,
                path=path,
                found=True,
                detail=f"unable to decompress: {exc}",
            )

        digest_ok = actual == part.digest
        signature_ok = any(
            verify_digest(part.digest, sig, self._public_key) for sig in part.signatures
        )
        detail = "" if digest_ok else f"content hashes to {actual}"
        return PartVerification(
            part_id=part.id,
            description=part.description,
            path=path,
            found=True,
            digest_matches=digest_ok,
            signature_valid=signature_ok,
            detail=detail,
        )


def _locate_part(part: Part, package_dir: Path) -> Path | None:
    for ext in EXTENSIONS.values():
        candidate = package_dir / f"{part.digest}{ext}"
        if candidate.is_file():
            return candidate
    return None
