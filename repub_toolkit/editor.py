from __future__ import annotations

"""High-level editing facade.

`EpubEditor` owns one loaded `Book` and exposes every operation of the
toolkit under a single object:

    editor = EpubEditor.open("book.epub")
    editor.remove_range("5...")
    editor.append_content("# Notes", ContentOptions(type="md", title="Notes"))
    editor.save_as("out.epub")

A book is not thread-safe; callers serialize access per editor.
"""

import io
import logging
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Union

from lxml import etree as ET

from repub_toolkit.core.importers.epub_importer import EpubPackageImporter
from repub_toolkit.core.models import (
    Asset,
    Book,
    ContentElement,
    ContentOptions,
    CoreMetadata,
    CoverImage,
    OperationResult,
)
from repub_toolkit.core.services import (
    AssetService,
    ContentService,
    ContentTreeService,
    ExportService,
    MetadataService,
    StructureEditingService,
)
from repub_toolkit.core.services.metadata_service import MetadataValue

__all__ = ["EpubEditor"]

logger = logging.getLogger(__name__)


class EpubEditor:
    """One loaded EPUB plus the services operating on it."""

    def __init__(self, book: Book) -> None:
        self.book = book
        self._tree = ContentTreeService()
        self._editing = StructureEditingService(self._tree)
        self._assets = AssetService()
        self._metadata = MetadataService()
        self._contents = ContentService(self._tree)
        self._export = ExportService(self._assets)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------
    @classmethod
    def open(cls, path: Union[str, Path]) -> "EpubEditor":
        """Load an EPUB file from disk."""
        return cls(EpubPackageImporter().import_package(Path(path)))

    @classmethod
    def load(cls, data: Union[bytes, bytearray]) -> "EpubEditor":
        """Load an EPUB from raw archive bytes."""
        return cls(EpubPackageImporter().import_package(bytes(data)))

    # ------------------------------------------------------------------
    # Contents
    # ------------------------------------------------------------------
    def list_contents(self, flatten: bool = False, include_parents: bool = True) -> List[ContentElement]:
        return self._tree.list_contents(self.book, flatten=flatten, include_parents=include_parents)

    def find_element(self, identifier) -> ContentElement:
        return self._tree.resolve(self.book, identifier)

    def get_contents(
        self,
        identifiers: Optional[Iterable] = None,
        merge: bool = False,
        flatten: bool = True,
        include_parents: bool = True,
    ) -> Union[Dict[str, str], str]:
        return self._contents.get_contents(
            self.book, identifiers, merge=merge, flatten=flatten, include_parents=include_parents
        )

    # ------------------------------------------------------------------
    # Structural edits
    # ------------------------------------------------------------------
    def remove_element(self, identifier, with_splits: bool = False) -> OperationResult:
        return self._editing.remove_element(self.book, identifier, with_splits=with_splits)

    def remove_elements(self, identifiers: Iterable, with_splits: bool = False) -> OperationResult:
        return self._editing.remove_elements(self.book, identifiers, with_splits=with_splits)

    def remove_range(self, range_spec: str) -> OperationResult:
        return self._editing.remove_range(self.book, range_spec)

    def remove_except(self, keep: Iterable, with_splits: bool = False) -> OperationResult:
        return self._editing.remove_except(self.book, keep, with_splits=with_splits)

    def remove_except_where(
        self, predicate: Callable[[ContentElement], bool], with_splits: bool = False
    ) -> OperationResult:
        return self._editing.remove_except_where(self.book, predicate, with_splits=with_splits)

    def insert_content(self, content: str, at_index: int, options: Optional[ContentOptions] = None) -> OperationResult:
        return self._editing.insert_content(self.book, content, at_index, options)

    def append_content(self, content: str, options: Optional[ContentOptions] = None) -> OperationResult:
        return self._editing.append_content(self.book, content, options)

    def prepend_content(self, content: str, options: Optional[ContentOptions] = None) -> OperationResult:
        return self._editing.prepend_content(self.book, content, options)

    # ------------------------------------------------------------------
    # Assets
    # ------------------------------------------------------------------
    def find_orphaned_media(self, remove: bool = False) -> List[str]:
        return self._assets.find_orphaned_media(self.book, remove=remove)

    def remove_orphaned_media(self) -> int:
        return self._assets.remove_orphaned_media(self.book)

    def fix_broken_links(self) -> int:
        return self._assets.fix_broken_links(self.book)

    def insert_asset(self, path: str, data: Union[bytes, str]) -> Asset:
        return self._assets.insert_asset(self.book, path, data)

    def get_asset(self, href: str) -> Asset:
        return self._assets.get_asset(self.book, href)

    def get_cover_item(self) -> Optional[ET._Element]:
        return self._assets.get_cover_item(self.book)

    def get_cover(self) -> Optional[CoverImage]:
        return self._assets.get_cover(self.book)

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------
    def get_metadata(self) -> Dict[str, MetadataValue]:
        return self._metadata.get_metadata(self.book)

    def get_core_metadata(self) -> CoreMetadata:
        return self._metadata.get_core_metadata(self.book)

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------
    def prepare_output(self) -> OperationResult:
        return self._export.prepare_output(self.book)

    def get_output(self, kind: str = "bytes") -> Union[bytes, str, io.BytesIO]:
        return self._export.get_output(self.book, kind)

    def save_as(self, path: Union[str, Path]) -> Path:
        return self._export.save_as(self.book, path)
