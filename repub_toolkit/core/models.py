from __future__ import annotations

"""Shared data structures used across the repub-toolkit core.

The objects only touch the in-memory archive, never the file system, so they
can be reused in any context (unit-tests, CLI, embedding applications).
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from lxml import etree as ET

from repub_toolkit.core import paths
from repub_toolkit.core.archive import EpubArchive
from repub_toolkit.core.utils import serialize_xml

__all__ = [
    "ContentType",
    "ContentElement",
    "TocHandle",
    "ManifestEntry",
    "SpineEntry",
    "ById",
    "ByIndex",
    "Identifier",
    "as_identifier",
    "ContentOptions",
    "MetadataProperty",
    "CoreMetadata",
    "CoverImage",
    "Asset",
    "OperationResult",
    "Book",
]


class ContentType(str, Enum):
    FRONT_MATTER = "frontmatter"
    BODY_MATTER = "bodymatter"
    BACK_MATTER = "backmatter"

    @classmethod
    def from_epub_type(cls, value: Optional[str]) -> Optional["ContentType"]:
        """Map an ``epub:type`` value to a content type (``None`` when unrelated)."""
        if not value:
            return None
        lowered = value.lower()
        if "front" in lowered:
            return cls.FRONT_MATTER
        if "back" in lowered:
            return cls.BACK_MATTER
        if "body" in lowered:
            return cls.BODY_MATTER
        return None


@dataclass(frozen=True)
class ContentElement:
    """One entry of the book's table of contents.

    Attributes
    ----------
    id
        Referenced file path with the fragment stripped, as authored in the
        navigation source. Stable across mutations.
    label
        Display text of the entry.
    href
        Reference as authored, may carry a ``#fragment``.
    index
        Pre-order position across the whole tree. Only valid until the next
        mutation.
    content_type
        Front/body/back matter classification when known.
    role
        Raw ``epub:type`` string the classification was derived from.
    children
        Nested entries; empty for leaves.
    """

    id: str
    label: str
    href: str
    index: int
    content_type: Optional[ContentType] = None
    role: Optional[str] = None
    children: Tuple["ContentElement", ...] = ()

    @property
    def is_group(self) -> bool:
        return bool(self.children)

    def as_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "label": self.label,
            "href": self.href,
            "index": self.index,
        }
        if self.content_type is not None:
            data["type"] = self.content_type.value
        if self.role:
            data["role"] = self.role
        if self.children:
            data["children"] = [child.as_dict() for child in self.children]
        return data


@dataclass(frozen=True)
class TocHandle:
    """On-disk node behind a ContentElement (``source`` is ``"nav"`` or ``"ncx"``)."""

    node: ET._Element
    archive_path: str
    source: str


@dataclass(frozen=True)
class ManifestEntry:
    id: str
    href: str
    media_type: str
    properties: Tuple[str, ...] = ()


@dataclass(frozen=True)
class SpineEntry:
    idref: str
    linear: bool = True


@dataclass(frozen=True)
class ById:
    id: str


@dataclass(frozen=True)
class ByIndex:
    index: int


Identifier = Union[ById, ByIndex]


def as_identifier(value: Union[Identifier, str, int]) -> Identifier:
    """Wrap plain ``str`` / ``int`` values into an identifier."""
    if isinstance(value, (ById, ByIndex)):
        return value
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool):
        raise TypeError(f"Unsupported identifier: {value!r}")
    if isinstance(value, int):
        return ByIndex(value)
    if isinstance(value, str):
        return ById(value)
    raise TypeError(f"Unsupported identifier: {value!r}")


@dataclass
class ContentOptions:
    """Options for inserted content. ``type`` is ``"html"`` or ``"md"``."""

    id: Optional[str] = None
    title: Optional[str] = None
    type: str = "html"
    css: Optional[str] = None


@dataclass
class MetadataProperty:
    value: str
    id: Optional[str] = None
    refinements: Dict[str, str] = field(default_factory=dict)


@dataclass
class CoreMetadata:
    title: Optional[str] = None
    subtitle: Optional[str] = None
    authors: List[str] = field(default_factory=list)
    language: Optional[str] = None
    identifier: Optional[str] = None
    publisher: Optional[str] = None
    date: Optional[str] = None


@dataclass(frozen=True)
class CoverImage:
    data: bytes
    media_type: str
    href: str


@dataclass(frozen=True)
class Asset:
    data: bytes
    media_type: str
    href: str
    id: str


@dataclass(frozen=True)
class OperationResult:
    """Result of a structural editing operation.

    Attributes
    ----------
    success
        Whether the operation completed successfully.
    message
        Human-readable summary suitable for logs.
    details
        Optional structured details (removed ids, inserted id/href...).
    """
    success: bool
    message: str
    details: Optional[Dict[str, Any]] = None


@dataclass
class Book:
    """In-memory representation of a loaded EPUB.

    Attributes
    ----------
    archive
        All archive entries, edited in place.
    package_path
        Archive path of the package document (``.opf``).
    package_document
        Parsed package document root.
    navigation / navigation_path
        Parsed EPUB3 navigation document and its archive path, when present.
    ncx / ncx_path
        Parsed NCX and its archive path, when present.
    contents
        Content tree, rebuilt after every mutation.
    toc_handles
        On-disk node of each content element, addressed by flat index.
    """

    archive: EpubArchive
    package_path: str
    package_document: ET._Element
    navigation: Optional[ET._Element] = None
    navigation_path: Optional[str] = None
    ncx: Optional[ET._Element] = None
    ncx_path: Optional[str] = None
    contents: List[ContentElement] = field(default_factory=list)
    toc_handles: List[TocHandle] = field(default_factory=list)

    @property
    def package_dir(self) -> str:
        """Directory of the package document; manifest hrefs are relative to it."""
        return paths.dirname(self.package_path)

    @property
    def metadata_element(self) -> Optional[ET._Element]:
        return self.package_document.find("{*}metadata")

    @property
    def manifest(self) -> ET._Element:
        return self.package_document.find("{*}manifest")

    @property
    def spine(self) -> ET._Element:
        return self.package_document.find("{*}spine")

    @property
    def guide(self) -> Optional[ET._Element]:
        return self.package_document.find("{*}guide")

    @property
    def epub_version(self) -> str:
        return (self.package_document.get("version") or "2.0").strip()

    @property
    def is_epub3(self) -> bool:
        return self.epub_version.startswith("3")

    # ------------------------------------------------------------------
    # Manifest / spine lookups
    # ------------------------------------------------------------------
    def manifest_items(self) -> List[ET._Element]:
        return list(self.manifest.iterfind("{*}item"))

    def manifest_entries(self) -> List[ManifestEntry]:
        return [
            ManifestEntry(
                id=item.get("id", ""),
                href=item.get("href", ""),
                media_type=item.get("media-type", ""),
                properties=tuple((item.get("properties") or "").split()),
            )
            for item in self.manifest_items()
        ]

    def spine_entries(self) -> List[SpineEntry]:
        return [
            SpineEntry(ref.get("idref", ""), (ref.get("linear") or "yes") != "no")
            for ref in self.spine.iterfind("{*}itemref")
        ]

    def item_path(self, item: ET._Element) -> str:
        """Archive path of a manifest item."""
        return paths.resolve(self.package_dir, item.get("href", ""))

    def find_item_by_id(self, item_id: str) -> Optional[ET._Element]:
        for item in self.manifest_items():
            if item.get("id") == item_id:
                return item
        return None

    def find_item_by_path(self, archive_path: str) -> Optional[ET._Element]:
        for item in self.manifest_items():
            if self.item_path(item) == archive_path:
                return item
        return None

    def spine_paths(self) -> List[str]:
        """Archive paths in reading order (itemrefs without a manifest item are skipped)."""
        result: List[str] = []
        for entry in self.spine_entries():
            item = self.find_item_by_id(entry.idref)
            if item is not None:
                result.append(self.item_path(item))
        return result

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def flush(self, pretty: bool = False) -> None:
        """Write the parsed package, navigation and NCX trees back into the archive."""
        self.archive.write(self.package_path, serialize_xml(self.package_document, pretty=pretty))
        if self.navigation is not None and self.navigation_path:
            self.archive.write(self.navigation_path, serialize_xml(self.navigation, pretty=pretty))
        if self.ncx is not None and self.ncx_path:
            self.archive.write(self.ncx_path, serialize_xml(self.ncx, pretty=pretty))
