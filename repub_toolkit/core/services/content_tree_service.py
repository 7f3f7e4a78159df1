from __future__ import annotations

"""Builds the content tree of a book from its navigation sources.

The EPUB 3 navigation document is preferred; books without one fall back to
the NCX ``navMap``. Every included entry receives a pre-order index and a
`TocHandle` pointing at the list item or navPoint it came from, so the
mutation engine can reach the on-disk node by flat index.

Content types come from the landmarks section first, then from the
``epub:type`` of the content document's ``<body>`` (or root element).
"""

import dataclasses
import logging
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from lxml import etree as ET

from repub_toolkit.core import paths
from repub_toolkit.core.exceptions import NotFoundError
from repub_toolkit.core.models import (
    Book,
    ByIndex,
    ContentElement,
    ContentType,
    Identifier,
    TocHandle,
    as_identifier,
)
from repub_toolkit.core.utils import get_epub_type, normalize_whitespace, parse_xml

__all__ = ["ContentTreeService", "walk"]

logger = logging.getLogger(__name__)


def walk(elements: Sequence[ContentElement]) -> Iterator[ContentElement]:
    """Yield *elements* and their descendants in pre-order."""
    for element in elements:
        yield element
        yield from walk(element.children)


class _BuildState:
    """Per-build counters and caches."""

    def __init__(self, book: Book) -> None:
        self.book = book
        self.handles: List[TocHandle] = []
        self.landmarks: List[Tuple[str, str, str]] = []
        self.type_cache: Dict[str, Tuple[Optional[ContentType], Optional[str]]] = {}

    @property
    def next_index(self) -> int:
        return len(self.handles)


class ContentTreeService:
    """Rebuilds and queries ``book.contents``."""

    def __init__(self) -> None:
        self._logger = logging.getLogger(f"{__name__}.ContentTreeService")

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def build(self, book: Book) -> List[ContentElement]:
        """Rebuild ``book.contents`` and ``book.toc_handles`` from the documents."""
        state = _BuildState(book)
        contents: List[ContentElement] = []

        if book.navigation is not None:
            state.landmarks = self._collect_landmarks(book)
            toc_list = self.find_toc_list(book.navigation)
            if toc_list is not None:
                contents = self._walk_nav_list(state, toc_list)
            source = "nav"
        elif book.ncx is not None:
            nav_map = book.ncx.find("{*}navMap")
            if nav_map is not None:
                contents = self._walk_nav_points(state, nav_map)
            source = "ncx"
        else:
            source = "none"

        book.contents = contents
        book.toc_handles = state.handles
        self._logger.debug("Content tree rebuilt: source=%s elements=%d", source, len(state.handles))
        return contents

    def flatten(self, contents: Sequence[ContentElement], include_parents: bool = True) -> List[ContentElement]:
        """Pre-order list of childless copies.

        Copies keep their tree indices. With ``include_parents=False`` grouping
        nodes are left out.
        """
        return [
            dataclasses.replace(element, children=())
            for element in walk(contents)
            if include_parents or not element.children
        ]

    def list_contents(self, book: Book, flatten: bool = False, include_parents: bool = True) -> List[ContentElement]:
        if not flatten:
            return list(book.contents)
        return self.flatten(book.contents, include_parents=include_parents)

    def find_by_index(self, contents: Sequence[ContentElement], index: int) -> Optional[ContentElement]:
        for element in walk(contents):
            if element.index == index:
                return element
        return None

    def find_by_id(self, contents: Sequence[ContentElement], element_id: str) -> Optional[ContentElement]:
        """First element (pre-order) whose id matches *element_id*.

        The id is compared as authored, then in normalized form.
        """
        normalized = paths.normalize(element_id)
        fallback: Optional[ContentElement] = None
        for element in walk(contents):
            if element.id == element_id:
                return element
            if fallback is None and paths.normalize(element.id) == normalized:
                fallback = element
        return fallback

    def resolve(self, book: Book, identifier) -> ContentElement:
        """Resolve *identifier* (``ById``/``ByIndex``/``str``/``int``) to an element.

        Raises
        ------
        NotFoundError
            When nothing matches.
        """
        ident: Identifier = as_identifier(identifier)
        if isinstance(ident, ByIndex):
            element = self.find_by_index(book.contents, ident.index)
        else:
            element = self.find_by_id(book.contents, ident.id)
        if element is None:
            raise NotFoundError(f"Content element not found: {identifier!r}", identifier)
        return element

    def subtree(self, element: ContentElement) -> List[ContentElement]:
        """*element* and all its descendants in pre-order."""
        return list(walk([element]))

    def target_path(self, book: Book, element: ContentElement) -> str:
        """Archive path of the file an element points to."""
        handle = book.toc_handles[element.index]
        return paths.resolve(paths.dirname(handle.archive_path), element.href)

    def find_by_path(self, book: Book, archive_path: str) -> Optional[ContentElement]:
        """First element (pre-order) pointing at *archive_path*."""
        for element in walk(book.contents):
            if self.target_path(book, element) == archive_path:
                return element
        return None

    # -------------------------------------------------------------------------
    # Navigation document
    # -------------------------------------------------------------------------

    @staticmethod
    def find_toc_list(navigation: ET._Element) -> Optional[ET._Element]:
        navs = list(navigation.iter("{*}nav"))
        toc_nav = next((nav for nav in navs if "toc" in (get_epub_type(nav) or "").split()), None)
        if toc_nav is None and navs:
            toc_nav = navs[0]
        scope = toc_nav if toc_nav is not None else navigation
        return scope.find(".//{*}ol")

    def _walk_nav_list(self, state: _BuildState, ol: ET._Element) -> List[ContentElement]:
        elements: List[ContentElement] = []
        nav_path = state.book.navigation_path or ""
        for li in ol.iterfind("{*}li"):
            anchor = li.find("{*}a")
            nested = li.find("{*}ol")
            href = anchor.get("href") if anchor is not None else None
            if not href:
                # Entries without a target are skipped; their children move up
                if nested is not None:
                    elements.extend(self._walk_nav_list(state, nested))
                continue

            index = state.next_index
            state.handles.append(TocHandle(li, nav_path, "nav"))
            children = self._walk_nav_list(state, nested) if nested is not None else []
            label = normalize_whitespace("".join(anchor.itertext())) or f"Item {index}"
            elements.append(self._make_element(state, href, label, index, nav_path, children))
        return elements

    def _collect_landmarks(self, book: Book) -> List[Tuple[str, str, str]]:
        """(archive path, fragment-bearing resolved href, epub:type) per landmark link."""
        base_dir = paths.dirname(book.navigation_path or "")
        landmarks: List[Tuple[str, str, str]] = []
        for nav in book.navigation.iter("{*}nav"):
            if "landmarks" not in (get_epub_type(nav) or "").split():
                continue
            for anchor in nav.iter("{*}a"):
                href = anchor.get("href")
                epub_type = get_epub_type(anchor)
                if not href or not epub_type:
                    continue
                target = paths.resolve(base_dir, href)
                _, fragment = paths.split_fragment(href)
                full = f"{target}#{fragment}" if fragment else target
                landmarks.append((target, full, epub_type))
        return landmarks

    # -------------------------------------------------------------------------
    # NCX
    # -------------------------------------------------------------------------

    def _walk_nav_points(self, state: _BuildState, parent: ET._Element) -> List[ContentElement]:
        elements: List[ContentElement] = []
        ncx_path = state.book.ncx_path or ""
        for nav_point in parent.iterfind("{*}navPoint"):
            content = nav_point.find("{*}content")
            src = content.get("src") if content is not None else None
            if not src:
                elements.extend(self._walk_nav_points(state, nav_point))
                continue

            index = state.next_index
            state.handles.append(TocHandle(nav_point, ncx_path, "ncx"))
            children = self._walk_nav_points(state, nav_point)
            text = nav_point.find("{*}navLabel/{*}text")
            label = normalize_whitespace("".join(text.itertext())) if text is not None else ""
            elements.append(self._make_element(state, src, label or f"Item {index}", index, ncx_path, children))
        return elements

    # -------------------------------------------------------------------------
    # Classification
    # -------------------------------------------------------------------------

    def _make_element(
        self,
        state: _BuildState,
        href: str,
        label: str,
        index: int,
        source_path: str,
        children: List[ContentElement],
    ) -> ContentElement:
        target = paths.resolve(paths.dirname(source_path), href)
        content_type, role = self._classify(state, href, target)
        return ContentElement(
            id=paths.strip_fragment(href),
            label=label,
            href=href,
            index=index,
            content_type=content_type,
            role=role,
            children=tuple(children),
        )

    def _classify(self, state: _BuildState, href: str, target: str) -> Tuple[Optional[ContentType], Optional[str]]:
        _, fragment = paths.split_fragment(href)
        full = f"{target}#{fragment}" if fragment else target
        for landmark_path, landmark_full, epub_type in state.landmarks:
            if landmark_full == full or landmark_path == target:
                content_type = ContentType.from_epub_type(epub_type)
                if content_type is not None:
                    return content_type, epub_type

        if target not in state.type_cache:
            state.type_cache[target] = self._classify_document(state.book, target)
        return state.type_cache[target]

    def _classify_document(self, book: Book, target: str) -> Tuple[Optional[ContentType], Optional[str]]:
        if not book.archive.exists(target):
            return None, None
        try:
            root = parse_xml(book.archive.read(target))
        except (ET.XMLSyntaxError, ValueError):
            self._logger.debug("Unreadable content document %s; type left unset", target)
            return None, None
        body = root.find("{*}body")
        epub_type = get_epub_type(body) or get_epub_type(root)
        if not epub_type:
            return None, None
        return ContentType.from_epub_type(epub_type), epub_type
