from __future__ import annotations

"""In-memory EPUB archive.

`EpubArchive` keeps every entry of the ZIP container as bytes keyed by its
archive path, preserving the original entry order. Services read and edit
entries through it; `to_bytes` repackages the container.
"""

import io
import logging
import os
import zipfile
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Union

from repub_toolkit.core.exceptions import NotFoundError, StructuralError

logger = logging.getLogger(__name__)

__all__ = ["EpubArchive", "MIMETYPE_PATH", "EPUB_MIMETYPE"]

MIMETYPE_PATH = "mimetype"
EPUB_MIMETYPE = "application/epub+zip"


class EpubArchive:
    """Ordered mapping of archive paths to entry bytes."""

    def __init__(self, entries: Optional[Dict[str, bytes]] = None) -> None:
        self._entries: Dict[str, bytes] = dict(entries or {})

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------
    @classmethod
    def from_bytes(cls, data: bytes) -> "EpubArchive":
        """Read a ZIP container from *data*.

        Raises
        ------
        StructuralError
            When *data* is not a ZIP archive or holds unsafe member paths.
        """
        try:
            with zipfile.ZipFile(io.BytesIO(data), "r") as zip_ref:
                entries: Dict[str, bytes] = {}
                for info in zip_ref.infolist():
                    if info.is_dir():
                        continue
                    name = info.filename
                    # Security check: reject absolute and parent-relative members
                    if os.path.isabs(name) or name.startswith("/") or ".." in name.split("/"):
                        raise StructuralError(f"Unsafe path in archive: {name}", name)
                    entries[name] = zip_ref.read(info)
        except zipfile.BadZipFile as exc:
            raise StructuralError(f"Invalid EPUB archive: {exc}", cause=exc)
        logger.debug("Read archive with %d entries", len(entries))
        return cls(entries)

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> "EpubArchive":
        try:
            data = Path(path).read_bytes()
        except OSError as exc:
            raise StructuralError(f"Cannot read EPUB file: {exc}", str(path), exc)
        return cls.from_bytes(data)

    # ------------------------------------------------------------------
    # Entry access
    # ------------------------------------------------------------------
    def exists(self, path: str) -> bool:
        return path in self._entries

    def read(self, path: str) -> bytes:
        try:
            return self._entries[path]
        except KeyError:
            raise NotFoundError(f"Archive entry not found: {path}", path=path) from None

    def read_text(self, path: str, encoding: str = "utf-8") -> str:
        return self.read(path).decode(encoding, errors="replace")

    def write(self, path: str, data: Union[bytes, str]) -> None:
        if isinstance(data, str):
            data = data.encode("utf-8")
        self._entries[path] = data

    def delete(self, path: str) -> bool:
        """Remove *path*; returns whether an entry was actually deleted."""
        return self._entries.pop(path, None) is not None

    def paths(self) -> List[str]:
        return list(self._entries)

    def __contains__(self, path: object) -> bool:
        return path in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._entries))

    def __len__(self) -> int:
        return len(self._entries)

    # ------------------------------------------------------------------
    # Packaging
    # ------------------------------------------------------------------
    def to_bytes(self, compression_level: int = 9) -> bytes:
        """Package all entries as an EPUB container.

        ``mimetype`` goes first and is stored uncompressed; every other entry
        is deflated at *compression_level*.
        """
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w") as zip_out:
            mimetype = self._entries.get(MIMETYPE_PATH, EPUB_MIMETYPE.encode("ascii"))
            zip_out.writestr(zipfile.ZipInfo(MIMETYPE_PATH), mimetype, compress_type=zipfile.ZIP_STORED)
            for name, data in self._entries.items():
                if name == MIMETYPE_PATH:
                    continue
                zip_out.writestr(
                    name,
                    data,
                    compress_type=zipfile.ZIP_DEFLATED,
                    compresslevel=compression_level,
                )
        return buffer.getvalue()
