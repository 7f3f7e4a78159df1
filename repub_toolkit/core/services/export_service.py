from __future__ import annotations

"""Output assembly for edited books.

These utilities handle the final stages of EPUB preparation:
- Stamping provenance (contributor) and modification date metadata
- Removing orphaned media and repairing broken links
- Renumbering NCX play order and normalising whitespace
- Packaging the archive as bytes, base64 text, a stream or a file
"""

import base64
import io
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

from lxml import etree as ET

from repub_toolkit.config import ConfigManager
from repub_toolkit.core.models import Book, OperationResult
from repub_toolkit.core.services.asset_service import AssetService
from repub_toolkit.core.services.structure_editing_service import renumber_play_order
from repub_toolkit.core.utils import NS_DC, NS_OPF, generate_unique_id, strip_whitespace_text
from repub_toolkit.version import get_app_version

logger = logging.getLogger(__name__)

__all__ = ["ExportService", "OUTPUT_KINDS"]

OUTPUT_KINDS = ("bytes", "base64", "stream")

_OPF_ROLE = f"{{{NS_OPF}}}role"
_OPF_EVENT = f"{{{NS_OPF}}}event"


class ExportService:
    """Prepares a book for output and packages it."""

    def __init__(self, asset_service: Optional[AssetService] = None) -> None:
        self._assets = asset_service or AssetService()
        self._logger = logging.getLogger(f"{__name__}.ExportService")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def prepare_output(self, book: Book) -> OperationResult:
        """Bring every edited document into its final shape inside the archive."""
        self._logger.info("Export: prepare package=%s", book.package_path)
        self.stamp_metadata(book)
        orphans = self._assets.remove_orphaned_media(book)
        links = self._assets.fix_broken_links(book)
        if book.ncx is not None:
            renumber_play_order(book.ncx)

        for root in (book.package_document, book.navigation, book.ncx):
            if root is not None:
                strip_whitespace_text(root)
        book.flush(pretty=True)

        self._logger.info("Export OK: orphans_removed=%d links_fixed=%d", orphans, links)
        return OperationResult(
            True,
            "Package prepared for output.",
            {"orphans_removed": orphans, "links_fixed": links},
        )

    def get_output(self, book: Book, kind: str = "bytes") -> Union[bytes, str, io.BytesIO]:
        """Prepare and package *book*.

        ``kind`` selects the return type: ``"bytes"``, ``"base64"`` (ASCII
        text) or ``"stream"`` (a binary stream positioned at 0).
        """
        if kind not in OUTPUT_KINDS:
            raise ValueError(f"Unsupported output kind '{kind}'. Expected one of {OUTPUT_KINDS}")
        self.prepare_output(book)
        level = int(ConfigManager().get_export_config().get("compression_level", 9))
        data = book.archive.to_bytes(compression_level=level)
        if kind == "base64":
            return base64.b64encode(data).decode("ascii")
        if kind == "stream":
            return io.BytesIO(data)
        return data

    def save_as(self, book: Book, path: Union[str, Path]) -> Path:
        """Write the packaged book to *path*, creating parent folders."""
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        data = self.get_output(book, "bytes")
        try:
            target.write_bytes(data)
        except OSError:
            logger.error("I/O FAIL: write EPUB path=%s", target, exc_info=True)
            raise
        logger.info("EPUB saved to %s (%d bytes)", target, len(data))
        return target

    # ------------------------------------------------------------------
    # Metadata stamping
    # ------------------------------------------------------------------
    def stamp_metadata(self, book: Book) -> None:
        """Record the toolkit as contributor and set the modification date.

        An existing toolkit contributor is reused. ``dc:date`` (publication)
        is left untouched.
        """
        metadata = book.metadata_element
        if metadata is None:
            self._logger.warning("Package has no <metadata>; provenance not stamped")
            return

        config = ConfigManager().get_export_config()
        name = config.get("contributor_name", "repub-toolkit")
        role = config.get("contributor_role", "bkp")
        now = datetime.now(timezone.utc)

        contributor = next(
            (
                el for el in metadata.iterfind(f"{{{NS_DC}}}contributor")
                if "".join(el.itertext()).strip().startswith(name)
            ),
            None,
        )
        if contributor is None:
            contributor = ET.SubElement(metadata, f"{{{NS_DC}}}contributor", nsmap=_nsmap(book))
            if book.is_epub3:
                existing_ids = [el.get("id") for el in book.package_document.iter() if el.get("id")]
                contributor_id = generate_unique_id("repub-contributor", existing_ids)
                contributor.set("id", contributor_id)
                role_meta = ET.SubElement(metadata, _meta_tag(metadata))
                role_meta.set("refines", f"#{contributor_id}")
                role_meta.set("property", "role")
                role_meta.set("scheme", "marc:relators")
                role_meta.text = role
            else:
                contributor.set(_OPF_ROLE, role)
        contributor.text = f"{name} {get_app_version()}"

        if book.is_epub3:
            modified = next(
                (m for m in metadata.iterfind("{*}meta") if m.get("property") == "dcterms:modified"),
                None,
            )
            if modified is None:
                modified = ET.SubElement(metadata, _meta_tag(metadata))
                modified.set("property", "dcterms:modified")
            modified.text = now.strftime("%Y-%m-%dT%H:%M:%SZ")
        else:
            modified = next(
                (d for d in metadata.iterfind(f"{{{NS_DC}}}date") if d.get(_OPF_EVENT) == "modification"),
                None,
            )
            if modified is None:
                modified = ET.SubElement(metadata, f"{{{NS_DC}}}date", nsmap=_nsmap(book))
                modified.set(_OPF_EVENT, "modification")
            modified.text = now.strftime("%Y-%m-%d")
        self._logger.debug("Stamped provenance %s %s", name, get_app_version())


def _meta_tag(metadata: ET._Element) -> str:
    namespace = ET.QName(metadata).namespace
    return f"{{{namespace}}}meta" if namespace else "meta"


def _nsmap(book: Book) -> dict:
    # EPUB 2 attributes (opf:role, opf:event) need a prefixed OPF namespace
    if book.is_epub3:
        return {"dc": NS_DC}
    return {"dc": NS_DC, "opf": NS_OPF}
