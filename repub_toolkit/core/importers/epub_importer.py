from __future__ import annotations

"""EPUB package importer.

Reads an EPUB container (file on disk or raw bytes) into a `Book`: checks for
DRM markers, locates the package document through ``META-INF/container.xml``,
parses the manifest/spine plus the optional navigation document and NCX,
then builds the content tree.
"""

import logging
import zipfile
from pathlib import Path
from typing import Optional, Tuple, Union

from lxml import etree as ET

from repub_toolkit.core import paths
from repub_toolkit.core.archive import EpubArchive
from repub_toolkit.core.exceptions import ProtectionError, RePubError, StructuralError
from repub_toolkit.core.models import Book
from repub_toolkit.core.services.content_tree_service import ContentTreeService
from repub_toolkit.core.utils import parse_xml

logger = logging.getLogger(__name__)

__all__ = ["EpubPackageImporter", "CONTAINER_PATH", "NCX_MEDIA_TYPE"]

CONTAINER_PATH = "META-INF/container.xml"
ENCRYPTION_PATH = "META-INF/encryption.xml"
NCX_MEDIA_TYPE = "application/x-dtbncx+xml"

# Presence of any of these files marks a protected book
_DRM_MARKER_FILES = (
    "META-INF/rights.xml",
    "META-INF/adept.xml",
    "META-INF/fairplay.xml",
    "META-INF/sinf.xml",
)

# Font obfuscation is not DRM
_FONT_OBFUSCATION_ALGORITHMS = frozenset({
    "http://www.idpf.org/2008/embedding",
    "http://ns.adobe.com/pdf/enc#RC",
})

_DRM_RIGHTS_MARKERS = ("drm", "encrypted", "adept", "fairplay")


class EpubPackageImporter:
    """Importer for EPUB 2 and EPUB 3 containers.

    The importer supports:
    - EPUB 3 books with a navigation document (optionally with a legacy NCX)
    - EPUB 2 books with an NCX only
    - Package documents placed in any folder of the container
    """

    def __init__(self, tree_service: Optional[ContentTreeService] = None) -> None:
        self.logger = logging.getLogger(f"{__name__}.EpubPackageImporter")
        self._tree_service = tree_service or ContentTreeService()

    def can_import(self, file_path: Path) -> bool:
        """Check if this importer can handle the given file.

        Args:
            file_path: Path to the file to check

        Returns:
            True if the file is a ZIP archive holding a container index
        """
        file_path = Path(file_path)
        if not file_path.exists() or not file_path.is_file():
            return False

        try:
            with zipfile.ZipFile(file_path, "r") as zip_ref:
                return CONTAINER_PATH in zip_ref.namelist()
        except (zipfile.BadZipFile, OSError):
            return False

    def import_package(self, source: Union[str, Path, bytes, bytearray]) -> Book:
        """Import an EPUB into a `Book`.

        Args:
            source: Path to an ``.epub`` file or the raw archive bytes

        Returns:
            Book with its content tree built

        Raises:
            ProtectionError: If DRM markers are found
            StructuralError: If the container, package, manifest or spine is
                missing or unreadable
        """
        if isinstance(source, (bytes, bytearray)):
            self.logger.debug("Importing EPUB from %d bytes", len(source))
            archive = EpubArchive.from_bytes(bytes(source))
        else:
            self.logger.debug("Importing EPUB package: %s", source)
            archive = EpubArchive.from_path(source)
        return self.import_archive(archive)

    def import_archive(self, archive: EpubArchive) -> Book:
        try:
            self._check_protection(archive)

            package_path = self._find_package_path(archive)
            package_document = self._parse_entry(archive, package_path, "package document")
            if package_document.find("{*}manifest") is None or package_document.find("{*}spine") is None:
                raise StructuralError("Invalid EPUB: missing spine or manifest", package_path)

            book = Book(archive=archive, package_path=package_path, package_document=package_document)
            book.navigation_path, book.navigation = self._load_navigation(book)
            book.ncx_path, book.ncx = self._load_ncx(book)
        except RePubError:
            raise
        except Exception as e:
            raise StructuralError(f"Failed to import EPUB package: {e}", cause=e)

        self._tree_service.build(book)
        self.logger.debug(
            "Imported EPUB: package=%s manifest=%d spine=%d contents=%d nav=%s ncx=%s",
            book.package_path,
            len(book.manifest_items()),
            len(book.spine_entries()),
            len(book.toc_handles),
            book.navigation_path,
            book.ncx_path,
        )
        return book

    # ------------------------------------------------------------------
    # Protection detection
    # ------------------------------------------------------------------
    def _check_protection(self, archive: EpubArchive) -> None:
        reason = self._detect_protection(archive)
        if reason:
            self.logger.warning("DRM detected: %s", reason)
            raise ProtectionError(
                "This EPUB file is protected by DRM and cannot be modified", reason
            )

    def _detect_protection(self, archive: EpubArchive) -> Optional[str]:
        """Return the archive path carrying a DRM marker, else ``None``."""
        if archive.exists(ENCRYPTION_PATH):
            try:
                root = parse_xml(archive.read(ENCRYPTION_PATH))
            except (ET.XMLSyntaxError, ValueError):
                # Unreadable encryption manifest: assume content is encrypted
                return ENCRYPTION_PATH
            for method in root.iter("{*}EncryptionMethod"):
                if (method.get("Algorithm") or "").strip() not in _FONT_OBFUSCATION_ALGORITHMS:
                    return ENCRYPTION_PATH

        for marker in _DRM_MARKER_FILES:
            if archive.exists(marker):
                return marker

        try:
            package_path = self._find_package_path(archive)
            package_document = parse_xml(archive.read(package_path))
        except (RePubError, ET.XMLSyntaxError, ValueError):
            # Structural problems are reported by the structural parse
            return None
        metadata = package_document.find("{*}metadata")
        if metadata is None:
            return None
        candidates = list(metadata.iterfind("{*}rights"))
        for meta in metadata.iterfind("{*}meta"):
            prop = (meta.get("property") or meta.get("name") or "").lower()
            if "rights" in prop or "encrypted" in prop or "protection" in prop:
                candidates.append(meta)
        for element in candidates:
            text = ("".join(element.itertext()) + " " + (element.get("content") or "")).lower()
            if any(marker in text for marker in _DRM_RIGHTS_MARKERS):
                return package_path
        return None

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------
    def _find_package_path(self, archive: EpubArchive) -> str:
        if not archive.exists(CONTAINER_PATH):
            raise StructuralError("Invalid EPUB: missing container.xml", CONTAINER_PATH)
        container = self._parse_entry(archive, CONTAINER_PATH, "container")
        rootfile = next(container.iter("{*}rootfile"), None)
        if rootfile is None:
            raise StructuralError("Invalid EPUB: no rootfile found", CONTAINER_PATH)
        full_path = paths.normalize(rootfile.get("full-path") or "")
        if not full_path:
            raise StructuralError("Invalid EPUB: missing rootfile path", CONTAINER_PATH)
        if not archive.exists(full_path):
            raise StructuralError("Invalid EPUB: missing package document", full_path)
        return full_path

    def _parse_entry(self, archive: EpubArchive, path: str, what: str) -> ET._Element:
        try:
            return parse_xml(archive.read(path))
        except (ET.XMLSyntaxError, ValueError) as e:
            raise StructuralError(f"Invalid EPUB: unreadable {what}: {e}", path, e)

    def _load_optional(self, book: Book, item: Optional[ET._Element], what: str) -> Tuple[Optional[str], Optional[ET._Element]]:
        if item is None or not item.get("href"):
            return None, None
        path = book.item_path(item)
        if not book.archive.exists(path):
            self.logger.warning("Manifest lists %s %s but the archive lacks it", what, path)
            return None, None
        try:
            return path, parse_xml(book.archive.read(path))
        except (ET.XMLSyntaxError, ValueError) as e:
            self.logger.warning("Ignoring unreadable %s %s: %s", what, path, e)
            return None, None

    def _load_navigation(self, book: Book) -> Tuple[Optional[str], Optional[ET._Element]]:
        nav_item = next(
            (item for item in book.manifest_items() if "nav" in (item.get("properties") or "").split()),
            None,
        )
        return self._load_optional(book, nav_item, "navigation document")

    def _load_ncx(self, book: Book) -> Tuple[Optional[str], Optional[ET._Element]]:
        ncx_item = next(
            (item for item in book.manifest_items() if item.get("media-type") == NCX_MEDIA_TYPE),
            None,
        )
        if ncx_item is None:
            # EPUB 2 books may only reference the NCX through spine@toc
            toc_id = book.spine.get("toc")
            ncx_item = book.find_item_by_id(toc_id) if toc_id else None
        return self._load_optional(book, ncx_item, "NCX")
