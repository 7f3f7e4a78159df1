from __future__ import annotations

"""Markdown extraction of content documents."""

import logging
from typing import Dict, Iterable, Optional, Union

from lxml import etree as ET

from repub_toolkit.config import ConfigManager
from repub_toolkit.core.conversion import xhtml_to_markdown
from repub_toolkit.core.exceptions import NotFoundError
from repub_toolkit.core.models import Book, ContentElement
from repub_toolkit.core.services.content_tree_service import ContentTreeService

__all__ = ["ContentService"]

logger = logging.getLogger(__name__)

DEFAULT_SEPARATOR = "\n\n---\n\n"


class ContentService:
    """Returns the markdown text of content elements."""

    def __init__(self, tree_service: Optional[ContentTreeService] = None) -> None:
        self._tree = tree_service or ContentTreeService()
        self._logger = logging.getLogger(f"{__name__}.ContentService")

    def get_contents(
        self,
        book: Book,
        identifiers: Optional[Iterable] = None,
        merge: bool = False,
        flatten: bool = True,
        include_parents: bool = True,
    ) -> Union[Dict[str, str], str]:
        """Markdown of each selected element's ``<body>``, keyed by element id.

        Without *identifiers* every element is used in pre-order, grouping
        nodes included (``include_parents=False`` keeps the leaves only,
        ``flatten=False`` the top-level elements). Elements sharing a file
        yield one entry. ``merge=True`` joins
        the texts with the configured separator.

        Raises
        ------
        NotFoundError
            For unknown identifiers or missing content files.
        """
        if identifiers is not None:
            elements = [self._tree.resolve(book, identifier) for identifier in identifiers]
        elif flatten:
            elements = self._tree.flatten(book.contents, include_parents=include_parents)
        else:
            elements = list(book.contents)

        texts: Dict[str, str] = {}
        for element in elements:
            if element.id in texts:
                continue
            texts[element.id] = self._element_markdown(book, element)

        if merge:
            separator = ConfigManager().get_export_config().get("merge_separator", DEFAULT_SEPARATOR)
            return separator.join(texts.values())
        return texts

    def _element_markdown(self, book: Book, element: ContentElement) -> str:
        path = self._tree.target_path(book, element)
        if not book.archive.exists(path):
            raise NotFoundError(f"Content file not found: {path}", element.id, path)
        try:
            return xhtml_to_markdown(book.archive.read(path))
        except (ET.XMLSyntaxError, ValueError) as exc:
            self._logger.warning("Unreadable content document %s: %s", path, exc)
            return ""
