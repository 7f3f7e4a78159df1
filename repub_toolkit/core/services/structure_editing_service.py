from __future__ import annotations

"""Service layer for structural edits on a loaded EPUB.

Keeps the archive, package manifest, spine, navigation document and NCX
consistent while content elements are removed or inserted.

Scope and guarantees:
- Every identifier is resolved before any document or archive entry is
  touched; a `NotFoundError`, `RangeFormatError` or `DuplicateIdError`
  leaves the book unchanged.
- Errors raised after edits started are not rolled back; callers discard
  the book in that case.
- The content tree is rebuilt from the documents after every successful
  mutation. Indices are only valid until then; ids are stable.

Examples
--------
Basic usage:

    service = StructureEditingService()
    result = service.remove_element(book, "chapter3.xhtml")
    service.remove_range(book, "5...")

"""

import logging
import re
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from lxml import etree as ET

from repub_toolkit.core import paths
from repub_toolkit.core.conversion import markdown_to_xhtml, wrap_xhtml_document
from repub_toolkit.core.exceptions import DuplicateIdError, NotFoundError, RangeFormatError
from repub_toolkit.core.models import Book, ContentElement, ContentOptions, OperationResult
from repub_toolkit.core.services.content_tree_service import ContentTreeService, walk
from repub_toolkit.core.utils import generate_content_id, local_name


__all__ = ["StructureEditingService", "parse_range"]

logger = logging.getLogger(__name__)

XHTML_MEDIA_TYPE = "application/xhtml+xml"

_OPEN_RANGE = re.compile(r"^\s*(\d+)\s*\.\.\.\s*$")
_CLOSED_RANGE = re.compile(r"^\s*(\d+)\s*\.\.\s*(\d+)\s*$")


def parse_range(range_spec: str) -> Tuple[int, Optional[int]]:
    """Parse ``"n..."`` into ``(n, None)`` and ``"n..m"`` into ``(n, m)``.

    Raises
    ------
    RangeFormatError
        For any other shape, or when ``m < n``.
    """
    if not isinstance(range_spec, str):
        raise RangeFormatError(repr(range_spec), "not a string")
    match = _OPEN_RANGE.match(range_spec)
    if match:
        return int(match.group(1)), None
    match = _CLOSED_RANGE.match(range_spec)
    if match:
        start, end = int(match.group(1)), int(match.group(2))
        if end < start:
            raise RangeFormatError(range_spec, "end is lower than start")
        return start, end
    raise RangeFormatError(range_spec)


class StructureEditingService:
    """Encapsulates structural edit operations on a `Book`.

    Removal works on sets of archive paths: every file reached by the
    targeted elements' subtrees is deleted from the archive, manifest, spine,
    guide, navigation document and NCX in one pass. Navigation entries that
    survive below a removed entry are hoisted into its place.

    Insertion writes a new XHTML document and registers it in the manifest,
    spine, navigation document and NCX before the element currently holding
    the requested index.
    """

    def __init__(self, tree_service: Optional[ContentTreeService] = None) -> None:
        self._tree = tree_service or ContentTreeService()
        self._logger = logging.getLogger(f"{__name__}.StructureEditingService")

    # -------------------------------------------------------------------------
    # Public API: removal
    # -------------------------------------------------------------------------

    def remove_element(self, book: Book, identifier, with_splits: bool = False) -> OperationResult:
        """Remove one element (and its subtree) by id or index.

        With ``with_splits=True`` every spine file belonging to the same NCX
        chapter is removed as well.
        """
        logger.info("Edit: remove_element id=%s with_splits=%s", identifier, with_splits)
        try:
            element = self._tree.resolve(book, identifier)
        except NotFoundError:
            logger.warning("Edit FAIL: remove_element not_found id=%s", identifier)
            raise
        targets = self._collect_paths(book, [element], with_splits)
        removed = self._remove_paths(book, targets)
        self._commit(book)
        logger.info("Edit OK: remove_element id=%s files=%d", element.id, len(removed))
        return OperationResult(True, f"Removed '{element.label}'.", {"ids": [element.id], "paths": removed})

    def remove_elements(self, book: Book, identifiers: Iterable, with_splits: bool = False) -> OperationResult:
        """Remove several elements with a single rebuild."""
        identifiers = list(identifiers)
        logger.info("Edit: remove_elements count=%d with_splits=%s", len(identifiers), with_splits)
        try:
            elements = [self._tree.resolve(book, identifier) for identifier in identifiers]
        except NotFoundError as exc:
            logger.warning("Edit FAIL: remove_elements not_found id=%s", exc.identifier)
            raise
        targets = self._collect_paths(book, elements, with_splits)
        removed = self._remove_paths(book, targets)
        self._commit(book)
        ids = [element.id for element in elements]
        logger.info("Edit OK: remove_elements ids=%s files=%d", ids, len(removed))
        return OperationResult(True, f"Removed {len(elements)} element(s).", {"ids": ids, "paths": removed})

    def remove_range(self, book: Book, range_spec: str) -> OperationResult:
        """Remove elements by index range: ``"n..."`` or ``"n..m"`` (inclusive)."""
        logger.info("Edit: remove_range range=%s", range_spec)
        try:
            start, end = parse_range(range_spec)
        except RangeFormatError:
            logger.warning("Edit FAIL: remove_range invalid_format range=%s", range_spec)
            raise

        elements = sorted(walk(book.contents), key=lambda el: el.index)
        if not any(el.index == start for el in elements):
            logger.warning("Edit FAIL: remove_range start_not_found start=%d", start)
            raise NotFoundError(f"Start index {start} not found", start)
        if end is None:
            end = elements[-1].index

        selected = [el for el in elements if start <= el.index <= end]
        selected.reverse()
        targets = self._collect_paths(book, selected, with_splits=False)
        removed = self._remove_paths(book, targets)
        self._commit(book)
        ids = [el.id for el in selected]
        logger.info("Edit OK: remove_range range=%d..%d elements=%d files=%d", start, end, len(selected), len(removed))
        return OperationResult(True, f"Removed elements {start}..{end}.", {"ids": ids, "paths": removed})

    def remove_except(self, book: Book, keep: Iterable, with_splits: bool = False) -> OperationResult:
        """Remove every top-level element whose id is not in *keep*.

        *keep* holds ids or indices. Kept elements nested below a removed
        element survive and move up into its place.
        """
        keep = list(keep)
        logger.info("Edit: remove_except keep=%s", keep)
        kept_ids: Set[str] = set()
        for identifier in keep:
            try:
                kept_ids.add(self._tree.resolve(book, identifier).id)
            except NotFoundError:
                logger.warning("Edit FAIL: remove_except not_found id=%s", identifier)
                raise
        return self._remove_top_level(book, lambda el: el.id in kept_ids, with_splits, "remove_except")

    def remove_except_where(
        self,
        book: Book,
        predicate: Callable[[ContentElement], bool],
        with_splits: bool = False,
    ) -> OperationResult:
        """Remove every top-level element for which *predicate* is false."""
        logger.info("Edit: remove_except_where")
        return self._remove_top_level(book, predicate, with_splits, "remove_except_where")

    # -------------------------------------------------------------------------
    # Public API: insertion
    # -------------------------------------------------------------------------

    def insert_content(
        self,
        book: Book,
        content: str,
        at_index: int,
        options: Optional[ContentOptions] = None,
    ) -> OperationResult:
        """Insert a new content document before the element at *at_index*.

        An index at or past the end appends. ``options.type == "md"`` converts
        markdown first.
        """
        options = options or ContentOptions()
        logger.info("Edit: insert_content at=%s id=%s type=%s", at_index, options.id, options.type)
        if options.type not in ("html", "md"):
            raise ValueError(f"Unsupported content type '{options.type}'. Expected 'html' or 'md'")

        content_id = options.id or generate_content_id()
        file_name = f"{content_id}.xhtml"
        path = paths.join(book.package_dir, file_name)
        if book.find_item_by_id(content_id) is not None:
            logger.warning("Edit FAIL: insert_content duplicate_id id=%s", content_id)
            raise DuplicateIdError(f"Manifest id already exists: {content_id}", path)
        if book.archive.exists(path) or book.find_item_by_path(path) is not None:
            logger.warning("Edit FAIL: insert_content duplicate_file path=%s", path)
            raise DuplicateIdError(f"Archive entry already exists: {path}", path)

        reference = self._tree.find_by_index(book.contents, max(at_index, 0))
        reference_path = self._tree.target_path(book, reference) if reference is not None else None

        body = markdown_to_xhtml(content) if options.type == "md" else content
        book.archive.write(path, wrap_xhtml_document(body, options.title or "New Content", options.css))

        item = ET.SubElement(book.manifest, _sibling_tag(book.manifest, "item"))
        item.set("id", content_id)
        item.set("href", paths.relative(book.package_dir, path))
        item.set("media-type", XHTML_MEDIA_TYPE)

        self._insert_spine_ref(book, content_id, reference_path)
        label = options.title or f"Content {content_id}"
        if book.navigation is not None:
            self._insert_nav_entry(book, reference, reference_path, path, label)
        if book.ncx is not None:
            self._insert_ncx_entry(book, reference, reference_path, path, label, content_id)

        self._commit(book)
        inserted = self._tree.find_by_path(book, path)
        index = inserted.index if inserted is not None else None
        logger.info("Edit OK: insert_content id=%s path=%s index=%s", content_id, path, index)
        return OperationResult(
            True,
            f"Inserted '{label}'.",
            {"id": content_id, "href": item.get("href"), "path": path, "index": index},
        )

    def append_content(self, book: Book, content: str, options: Optional[ContentOptions] = None) -> OperationResult:
        return self.insert_content(book, content, len(book.toc_handles), options)

    def prepend_content(self, book: Book, content: str, options: Optional[ContentOptions] = None) -> OperationResult:
        return self.insert_content(book, content, 0, options)

    # -------------------------------------------------------------------------
    # Chapter boundaries
    # -------------------------------------------------------------------------

    def chapter_boundaries(self, book: Book) -> Dict[str, List[str]]:
        """Map each NCX chapter file to the spine files making up the chapter.

        A chapter runs from its own spine position up to (excluding) the file
        of the next navPoint that appears later in the spine, or to the end of
        the spine for the last one. Empty without an NCX.
        """
        boundaries: Dict[str, List[str]] = {}
        if book.ncx is None:
            return boundaries

        spine = book.spine_paths()
        positions = {}
        for position, path in enumerate(spine):
            positions.setdefault(path, position)

        base_dir = paths.dirname(book.ncx_path or "")
        starts: List[Tuple[str, int]] = []
        for nav_point in book.ncx.iter("{*}navPoint"):
            content = nav_point.find("{*}content")
            src = content.get("src") if content is not None else None
            if not src:
                continue
            path = paths.resolve(base_dir, src)
            if path in positions:
                starts.append((path, positions[path]))

        for i, (path, start) in enumerate(starts):
            end = next((pos for _, pos in starts[i + 1:] if pos > start), len(spine))
            members = spine[start:end] or [path]
            boundaries.setdefault(path, members)
        return boundaries

    # -------------------------------------------------------------------------
    # Internal helpers: target collection
    # -------------------------------------------------------------------------

    def _remove_top_level(
        self,
        book: Book,
        keep: Callable[[ContentElement], bool],
        with_splits: bool,
        operation: str,
    ) -> OperationResult:
        kept_roots = [el for el in book.contents if keep(el)]
        # Kept elements nested below removed ones survive with their subtree
        kept_roots.extend(
            el
            for top in book.contents
            if not keep(top)
            for el in walk(top.children)
            if keep(el)
        )
        protected = self._collect_paths(book, kept_roots, with_splits=False)

        doomed = [el for el in book.contents if not keep(el)]
        doomed.sort(key=lambda el: el.index, reverse=True)
        targets = [p for p in self._collect_paths(book, doomed, with_splits) if p not in protected]
        removed = self._remove_paths(book, targets)
        self._commit(book)
        ids = [el.id for el in doomed]
        logger.info("Edit OK: %s removed=%d files=%d", operation, len(ids), len(removed))
        return OperationResult(True, f"Removed {len(ids)} top-level element(s).", {"ids": ids, "paths": removed})

    def _collect_paths(self, book: Book, elements: Sequence[ContentElement], with_splits: bool) -> List[str]:
        """Archive paths reached by *elements* and their subtrees, in order, without duplicates."""
        boundaries = self.chapter_boundaries(book) if with_splits else {}
        collected: List[str] = []
        seen: Set[str] = set()
        for element in elements:
            for member in self._tree.subtree(element):
                path = self._tree.target_path(book, member)
                for target in boundaries.get(path, [path]):
                    if target not in seen:
                        seen.add(target)
                        collected.append(target)
        # Never delete the package, navigation document or NCX themselves
        reserved = {book.package_path, book.navigation_path, book.ncx_path}
        return [path for path in collected if path not in reserved]

    # -------------------------------------------------------------------------
    # Internal helpers: removal
    # -------------------------------------------------------------------------

    def _remove_paths(self, book: Book, targets: Sequence[str]) -> List[str]:
        target_set = set(targets)
        if not target_set:
            return []

        removed_ids: Set[str] = set()
        for item in book.manifest_items():
            if book.item_path(item) in target_set:
                removed_ids.add(item.get("id", ""))
                item.getparent().remove(item)
        for itemref in list(book.spine.iterfind("{*}itemref")):
            if itemref.get("idref") in removed_ids:
                book.spine.remove(itemref)

        guide = book.guide
        if guide is not None:
            for reference in list(guide.iterfind("{*}reference")):
                if paths.resolve(book.package_dir, reference.get("href", "")) in target_set:
                    guide.remove(reference)

        if book.navigation is not None:
            self._strip_navigation(book, target_set)
        if book.ncx is not None:
            self._strip_ncx(book, target_set)

        for path in targets:
            if book.archive.delete(path):
                self._logger.debug("Deleted archive entry %s", path)
        return list(targets)

    def _strip_navigation(self, book: Book, target_set: Set[str]) -> None:
        base_dir = paths.dirname(book.navigation_path or "")
        for nav in book.navigation.iter("{*}nav"):
            # Reverse document order visits nested entries before their parents
            for li in reversed(list(nav.iter("{*}li"))):
                anchor = li.find("{*}a")
                href = anchor.get("href") if anchor is not None else None
                if href and paths.resolve(base_dir, href) in target_set:
                    _hoist_and_remove(li, li.find("{*}ol"), "li")

            top_lists = set(nav.iterfind("{*}ol"))
            for ol in reversed(list(nav.iter("{*}ol"))):
                if ol in top_lists or ol.find("{*}li") is not None:
                    continue
                parent = ol.getparent()
                if parent is None:
                    continue
                parent.remove(ol)
                if local_name(parent) == "li":
                    anchor = parent.find("{*}a")
                    if (anchor is None or not anchor.get("href")) and parent.find("{*}ol") is None:
                        parent.getparent().remove(parent)

    def _strip_ncx(self, book: Book, target_set: Set[str]) -> None:
        base_dir = paths.dirname(book.ncx_path or "")
        for point in reversed(list(book.ncx.iter("{*}navPoint", "{*}pageTarget", "{*}navTarget"))):
            content = point.find("{*}content")
            src = content.get("src") if content is not None else None
            if src and paths.resolve(base_dir, src) in target_set:
                _hoist_and_remove(point, point, "navPoint")

    # -------------------------------------------------------------------------
    # Internal helpers: insertion
    # -------------------------------------------------------------------------

    def _insert_spine_ref(self, book: Book, content_id: str, reference_path: Optional[str]) -> None:
        itemref = ET.Element(_sibling_tag(book.spine, "itemref"))
        itemref.set("idref", content_id)
        anchor = None
        if reference_path is not None:
            ref_item = book.find_item_by_path(reference_path)
            if ref_item is not None:
                anchor = next(
                    (ref for ref in book.spine.iterfind("{*}itemref") if ref.get("idref") == ref_item.get("id")),
                    None,
                )
        if anchor is not None:
            anchor.addprevious(itemref)
        else:
            book.spine.append(itemref)

    def _insert_nav_entry(
        self,
        book: Book,
        reference: Optional[ContentElement],
        reference_path: Optional[str],
        path: str,
        label: str,
    ) -> None:
        toc_list = self._tree.find_toc_list(book.navigation)
        if toc_list is None:
            self._logger.debug("Navigation document has no list; entry not added")
            return
        base_dir = paths.dirname(book.navigation_path or "")
        li = ET.Element(_sibling_tag(toc_list, "li"))
        anchor = ET.SubElement(li, _sibling_tag(toc_list, "a"))
        anchor.set("href", paths.relative(base_dir, path))
        anchor.text = label

        ref_li = None
        if reference is not None:
            handle = book.toc_handles[reference.index]
            if handle.source == "nav":
                ref_li = handle.node
            else:
                ref_li = next(
                    (
                        node for node in toc_list.iter("{*}li")
                        if node.find("{*}a") is not None
                        and paths.resolve(base_dir, node.find("{*}a").get("href", "")) == reference_path
                    ),
                    None,
                )
        if ref_li is not None:
            ref_li.addprevious(li)
        else:
            toc_list.append(li)

    def _insert_ncx_entry(
        self,
        book: Book,
        reference: Optional[ContentElement],
        reference_path: Optional[str],
        path: str,
        label: str,
        content_id: str,
    ) -> None:
        nav_map = book.ncx.find("{*}navMap")
        if nav_map is None:
            self._logger.debug("NCX has no navMap; entry not added")
            return
        base_dir = paths.dirname(book.ncx_path or "")
        uses_play_order = any(point.get("playOrder") for point in nav_map.iter("{*}navPoint"))

        nav_point = ET.Element(_sibling_tag(nav_map, "navPoint"))
        nav_point.set("id", f"navPoint-{content_id}")
        nav_point.set("class", "chapter")
        if uses_play_order:
            nav_point.set("playOrder", "0")
        nav_label = ET.SubElement(nav_point, _sibling_tag(nav_map, "navLabel"))
        ET.SubElement(nav_label, _sibling_tag(nav_map, "text")).text = label
        ET.SubElement(nav_point, _sibling_tag(nav_map, "content")).set("src", paths.relative(base_dir, path))

        ref_point = None
        if reference is not None:
            handle = book.toc_handles[reference.index]
            if handle.source == "ncx":
                ref_point = handle.node
            else:
                for candidate in nav_map.iter("{*}navPoint"):
                    content = candidate.find("{*}content")
                    if content is not None and paths.resolve(base_dir, content.get("src", "")) == reference_path:
                        ref_point = candidate
                        break
        if ref_point is not None:
            ref_point.addprevious(nav_point)
        else:
            nav_map.append(nav_point)

        if uses_play_order:
            renumber_play_order(book.ncx)

    # -------------------------------------------------------------------------
    # Commit
    # -------------------------------------------------------------------------

    def _commit(self, book: Book) -> None:
        if book.ncx is not None:
            renumber_play_order(book.ncx)
        book.flush()
        self._tree.build(book)


def renumber_play_order(ncx: ET._Element) -> None:
    """Assign consecutive ``playOrder`` values in document order when the NCX uses them."""
    points = list(ncx.iter("{*}navPoint"))
    if not any(point.get("playOrder") for point in points):
        return
    for order, point in enumerate(points, start=1):
        point.set("playOrder", str(order))


def _sibling_tag(parent: ET._Element, name: str) -> str:
    """Tag for a new child of *parent* in *parent*'s namespace."""
    namespace = ET.QName(parent).namespace
    return f"{{{namespace}}}{name}" if namespace else name


def _hoist_and_remove(node: ET._Element, container: Optional[ET._Element], child_name: str) -> None:
    """Move *container*'s *child_name* children into *node*'s place, then drop *node*."""
    parent = node.getparent()
    if parent is None:
        return
    if container is not None:
        for child in list(container):
            if isinstance(child.tag, str) and local_name(child) == child_name:
                node.addprevious(child)
    parent.remove(node)
