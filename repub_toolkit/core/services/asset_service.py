from __future__ import annotations

"""Asset integrity: orphaned media, broken links, asset and cover access.

Orphan detection is a textual scan: every manifest-registered XHTML/HTML,
CSS and NCX document is searched (case-insensitively) for any of the forms a
media file can be referenced by. A media item nobody mentions is an orphan.
"""

import logging
import re
from typing import List, Optional, Union

from lxml import etree as ET

from repub_toolkit.core import paths
from repub_toolkit.core.exceptions import NotFoundError
from repub_toolkit.core.models import Asset, Book, CoverImage
from repub_toolkit.core.utils import generate_unique_id, guess_media_type, parse_xml, serialize_xml

__all__ = ["AssetService"]

logger = logging.getLogger(__name__)

MEDIA_PREFIXES = ("image/", "audio/", "video/")
SCANNED_MEDIA_TYPES = frozenset({
    "application/xhtml+xml",
    "text/html",
    "text/css",
    "application/x-dtbncx+xml",
})
LINKED_MEDIA_TYPES = frozenset({"application/xhtml+xml", "text/html"})


class AssetService:
    """Orphan detection/removal, link repair, asset insertion and lookup."""

    def __init__(self) -> None:
        self._logger = logging.getLogger(f"{__name__}.AssetService")

    # ------------------------------------------------------------------
    # Orphaned media
    # ------------------------------------------------------------------
    def find_orphaned_media(self, book: Book, remove: bool = False) -> List[str]:
        """Return manifest ids of media items no document references.

        With ``remove=True`` the orphans are deleted from the archive and the
        manifest. Spine and navigation are left alone.
        """
        cover = self.get_cover_item(book)
        cover_id = cover.get("id") if cover is not None else None

        candidates = [
            item for item in book.manifest_items()
            if (item.get("media-type") or "").startswith(MEDIA_PREFIXES)
            and item.get("id") and item.get("href")
            and item.get("id") != cover_id
        ]
        if not candidates:
            return []

        documents = []
        for item in book.manifest_items():
            if item.get("media-type") not in SCANNED_MEDIA_TYPES or not item.get("href"):
                continue
            doc_path = book.item_path(item)
            if not book.archive.exists(doc_path):
                continue
            documents.append((doc_path, book.archive.read_text(doc_path).lower()))

        orphans = []
        for item in candidates:
            media_path = book.item_path(item)
            if not any(self._is_referenced(item, media_path, doc_path, text) for doc_path, text in documents):
                orphans.append(item)

        orphan_ids = [item.get("id") for item in orphans]
        if orphan_ids:
            self._logger.info("Orphaned media: %s", orphan_ids)
        if remove:
            for item in orphans:
                book.archive.delete(book.item_path(item))
                item.getparent().remove(item)
                self._logger.debug("Removed orphaned media id=%s", item.get("id"))
            if orphans:
                book.flush()
        return orphan_ids

    def remove_orphaned_media(self, book: Book) -> int:
        return len(self.find_orphaned_media(book, remove=True))

    @staticmethod
    def _is_referenced(item: ET._Element, media_path: str, doc_path: str, text: str) -> bool:
        href = item.get("href", "")
        media_id = item.get("id", "")
        relative = paths.relative(paths.dirname(doc_path), media_path)
        literals = [
            href,
            relative,
            media_path,
            f"#{media_id}",
            f'="{media_id}"',
            f"='{media_id}'",
        ]
        if any(literal and literal.lower() in text for literal in literals):
            return True
        for form in {href, relative}:
            escaped = re.escape(form.lower())
            if re.search(r"url\(\s*['\"]?" + escaped + r"['\"]?\s*\)", text):
                return True
            if re.search(r"xlink:href\s*=\s*['\"]" + escaped + r"['\"]", text):
                return True
        return False

    # ------------------------------------------------------------------
    # Broken links
    # ------------------------------------------------------------------
    def fix_broken_links(self, book: Book) -> int:
        """Point links to files outside the manifest at ``#``.

        Empty links, in-document fragments and absolute URLs are left alone.
        The navigation document is maintained by the mutation engine and is
        not touched here. Returns the number of rewritten links.
        """
        valid = {book.item_path(item) for item in book.manifest_items() if item.get("href")}
        rewritten = 0
        for item in book.manifest_items():
            if item.get("media-type") not in LINKED_MEDIA_TYPES or not item.get("href"):
                continue
            doc_path = book.item_path(item)
            if doc_path == book.navigation_path or not book.archive.exists(doc_path):
                continue
            try:
                root = parse_xml(book.archive.read(doc_path))
            except (ET.XMLSyntaxError, ValueError) as exc:
                self._logger.warning("Skipping unparseable document %s: %s", doc_path, exc)
                continue

            base_dir = paths.dirname(doc_path)
            changed = 0
            for element in root.iter():
                link = element.get("href") if isinstance(element.tag, str) else None
                if not link or link.startswith("#") or paths.is_external(link):
                    continue
                if paths.resolve(base_dir, link) not in valid:
                    element.set("href", "#")
                    changed += 1
            if changed:
                book.archive.write(doc_path, serialize_xml(root, pretty=False))
                self._logger.debug("Rewrote %d broken link(s) in %s", changed, doc_path)
                rewritten += changed
        return rewritten

    # ------------------------------------------------------------------
    # Assets
    # ------------------------------------------------------------------
    def insert_asset(self, book: Book, path: str, data: Union[bytes, str]) -> Asset:
        """Add or overwrite an asset at *path* (relative to the package document)."""
        href = paths.normalize(path)
        if not href:
            raise ValueError(f"Invalid asset path: {path!r}")
        full_path = paths.join(book.package_dir, href)
        media_type = guess_media_type(href)
        if isinstance(data, str):
            data = data.encode("utf-8")
        book.archive.write(full_path, data)

        item = book.find_item_by_path(full_path)
        if item is not None:
            item.set("media-type", media_type)
            self._logger.info("Updated asset %s (%s)", full_path, media_type)
        else:
            stem = href.rsplit("/", 1)[-1].split(".", 1)[0] or "item"
            existing = [i.get("id", "") for i in book.manifest_items()]
            namespace = ET.QName(book.manifest).namespace
            item = ET.SubElement(book.manifest, f"{{{namespace}}}item" if namespace else "item")
            item.set("id", generate_unique_id(stem, existing))
            item.set("href", href)
            item.set("media-type", media_type)
            self._logger.info("Inserted asset %s (%s)", full_path, media_type)
        book.flush()
        return Asset(data=data, media_type=media_type, href=item.get("href"), id=item.get("id"))

    def get_asset(self, book: Book, href: str) -> Asset:
        """Return an asset by manifest href or package-relative path.

        Raises
        ------
        NotFoundError
            When the manifest or the archive lacks it.
        """
        wanted = paths.strip_fragment(href)
        resolved = paths.resolve(book.package_dir, wanted)
        item = next(
            (
                i for i in book.manifest_items()
                if i.get("href") and (
                    i.get("href") == wanted
                    or book.item_path(i) == resolved
                    or i.get("href").endswith("/" + wanted)
                )
            ),
            None,
        )
        if item is None:
            raise NotFoundError(f"Asset not found: {href}", href)
        asset_path = book.item_path(item)
        if not book.archive.exists(asset_path):
            raise NotFoundError(f"Asset file not found in EPUB: {asset_path}", href, asset_path)
        return Asset(
            data=book.archive.read(asset_path),
            media_type=item.get("media-type") or guess_media_type(asset_path),
            href=item.get("href"),
            id=item.get("id", ""),
        )

    # ------------------------------------------------------------------
    # Cover
    # ------------------------------------------------------------------
    def get_cover_item(self, book: Book) -> Optional[ET._Element]:
        """Manifest item of the cover.

        Resolution order: ``<meta name="cover">``, ``properties="cover-image"``,
        then the guide's cover reference.
        """
        metadata = book.metadata_element
        if metadata is not None:
            meta = next((m for m in metadata.iterfind("{*}meta") if m.get("name") == "cover"), None)
            if meta is not None and meta.get("content"):
                item = book.find_item_by_id(meta.get("content"))
                if item is not None:
                    return item

        for item in book.manifest_items():
            if "cover-image" in (item.get("properties") or "").split():
                return item

        guide = book.guide
        if guide is not None:
            for reference in guide.iterfind("{*}reference"):
                if reference.get("type") == "cover" and reference.get("href"):
                    item = book.find_item_by_path(paths.resolve(book.package_dir, reference.get("href")))
                    if item is not None:
                        return item
        return None

    def get_cover(self, book: Book) -> Optional[CoverImage]:
        item = self.get_cover_item(book)
        if item is None or not item.get("href") or not item.get("media-type"):
            return None
        cover_path = book.item_path(item)
        if not book.archive.exists(cover_path):
            return None
        return CoverImage(data=book.archive.read(cover_path), media_type=item.get("media-type"), href=item.get("href"))
