"""Compression codecs for stored parts.

The codec only affects the stored artifact and its extension.  Part
digests are always taken over the uncompressed stream, so recompressing
a part with a different codec never invalidates its signature.
"""

from __future__ import annotations

import bz2
import gzip
import lzma
import shutil
from pathlib import Path
from typing import BinaryIO

from hznpkg.models.config import Compression

EXTENSIONS: dict[Compression, str] = {
    Compression.GZIP: ".tgz",
    Compression.BZIP2: ".tbz2",
    Compression.XZ: ".txz",
    Compression.NONE: ".tar",
}


def extension_for(codec: Compression) -> str:
    return EXTENSIONS[codec]


def codec_for_path(path: Path | str) -> Compression:
    """Infer the codec of a stored part from its file extension."""
    suffix = Path(path).suffix
    for codec, ext in EXTENSIONS.items():
        if ext == suffix:
            return codec
    raise ValueError(f"Unrecognized part extension: {suffix!r}")


def open_compressed_writer(target: BinaryIO, codec: Compression) -> BinaryIO:
    if codec == Compression.GZIP:
        return gzip.GzipFile(filename="", mode="wb", compresslevel=9, fileobj=target, mtime=0)
    if codec == Compression.BZIP2:
        return bz2.BZ2File(target, mode="wb", compresslevel=9)
    if codec == Compression.XZ:
        return lzma.LZMAFile(target, mode="wb")
    return _Passthrough(target)


def open_decompressed_reader(path: Path, codec: Compression) -> BinaryIO:
    if codec == Compression.GZIP:
        return gzip.open(path, "rb")
    if codec == Compression.BZIP2:
        return bz2.open(path, "rb")
    if codec == Compression.XZ:
        return lzma.open(path, "rb")
    return open(path, "rb")


def compress_file(source: Path, target: Path, codec: Compression) -> int:
    """Compress *source* into *target* and return the compressed size in bytes."""
    with open(source, "rb") as src, open(target, "wb") as raw:
        writer = open_compressed_writer(raw, codec)
        try:
            shutil.copyfileobj(src, writer)
        finally:
            writer.close()
        raw.flush()
    return target.stat().st_size


class _Passthrough:
    """Writer for the ``none`` codec; closing it leaves *target* open."""

    def __init__(self, target: BinaryIO) -> None:
        self._target = target

    def write(self, data: bytes) -> int:
        return self._target.write(data)

    def close(self) -> None:
        self._target.flush()
