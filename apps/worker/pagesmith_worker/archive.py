"""Zip packaging of multiple output files into one deliverable."""

from __future__ import annotations

import zipfile
from io import BytesIO
from typing import Iterable, Tuple


class ZipPackager:
    """Build a zip archive in memory."""

    def __init__(self) -> None:
        """Start an empty archive."""
        self._buffer = BytesIO()
        self._archive = zipfile.ZipFile(self._buffer, "w", compression=zipfile.ZIP_DEFLATED)
        self._names: set[str] = set()
        self._finalized = False

    def add_file(self, name: str, data: bytes) -> None:
        """Add one file under ``name``; names must be unique within the archive."""
        if self._finalized:
            raise RuntimeError("Archive is already finalized")
        if name in self._names:
            raise ValueError(f"Duplicate archive entry: {name}")
        self._archive.writestr(name, data)
        self._names.add(name)

    def finalize(self) -> bytes:
        """Close the archive and return its bytes."""
        if not self._finalized:
            self._archive.close()
            self._finalized = True
        return self._buffer.getvalue()


def zip_files(items: Iterable[Tuple[str, bytes]]) -> bytes:
    """Zip ``(name, data)`` pairs into a single archive."""
    packager = ZipPackager()
    for name, data in items:
        packager.add_file(name, data)
    return packager.finalize()
