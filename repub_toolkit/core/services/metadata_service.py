from __future__ import annotations

"""Read-only projections of the package metadata."""

import logging
from typing import Dict, List, Optional, Union

from lxml import etree as ET

from repub_toolkit.core.models import Book, CoreMetadata, MetadataProperty
from repub_toolkit.core.utils import NS_DC, NS_OPF, local_name, normalize_whitespace

__all__ = ["MetadataService", "MetadataValue"]

logger = logging.getLogger(__name__)

MetadataValue = Union[MetadataProperty, List[MetadataProperty]]

_OPF_ROLE = f"{{{NS_OPF}}}role"


def _first(value: Optional[MetadataValue]) -> Optional[MetadataProperty]:
    if value is None:
        return None
    return value[0] if isinstance(value, list) else value


def _as_list(value: Optional[MetadataValue]) -> List[MetadataProperty]:
    if value is None:
        return []
    return value if isinstance(value, list) else [value]


class MetadataService:
    """Projects ``<metadata>`` into `MetadataProperty` records."""

    def get_metadata(self, book: Book) -> Dict[str, MetadataValue]:
        """Mapping of property name to one record, or a list when repeated.

        ``dc:*`` elements are keyed by local name (``title``, ``creator``...),
        EPUB 3 ``<meta property>`` by property and EPUB 2 ``<meta name>`` by
        name. Refining metas land in the refined record's ``refinements``.
        """
        result: Dict[str, MetadataValue] = {}
        metadata = book.metadata_element
        if metadata is None:
            return result

        metas = list(metadata.iter("{*}meta"))
        refinements: Dict[str, Dict[str, str]] = {}
        for meta in metas:
            refines = meta.get("refines")
            if refines and refines.startswith("#") and meta.get("property"):
                refinements.setdefault(refines[1:], {})[meta.get("property")] = _text(meta)

        def record(element: ET._Element, value: str) -> MetadataProperty:
            element_id = element.get("id")
            prop = MetadataProperty(value=value, id=element_id)
            if element_id and element_id in refinements:
                prop.refinements = dict(refinements[element_id])
            # EPUB 2 carries the role as an attribute
            role = element.get(_OPF_ROLE)
            if role and "role" not in prop.refinements:
                prop.refinements["role"] = role
            return prop

        def add(name: str, prop: MetadataProperty) -> None:
            existing = result.get(name)
            if existing is None:
                result[name] = prop
            elif isinstance(existing, list):
                existing.append(prop)
            else:
                result[name] = [existing, prop]

        for element in metadata.iter(f"{{{NS_DC}}}*"):
            add(local_name(element), record(element, _text(element)))

        for meta in metas:
            if meta.get("refines"):
                continue
            if meta.get("property"):
                result[meta.get("property")] = record(meta, _text(meta))
            elif meta.get("name"):
                result[meta.get("name")] = record(meta, meta.get("content") or "")
        return result

    def get_core_metadata(self, book: Book) -> CoreMetadata:
        metadata = self.get_metadata(book)

        titles = _as_list(metadata.get("title"))
        subtitle = next((t.value for t in titles if t.refinements.get("title-type") == "subtitle"), None)

        authors = [
            creator.value
            for creator in _as_list(metadata.get("creator"))
            if creator.refinements.get("role", "aut") == "aut"
        ]

        def first_value(name: str) -> Optional[str]:
            prop = _first(metadata.get(name))
            return prop.value if prop is not None and prop.value else None

        return CoreMetadata(
            title=titles[0].value if titles else None,
            subtitle=subtitle,
            authors=authors,
            language=first_value("language"),
            identifier=first_value("identifier"),
            publisher=first_value("publisher"),
            date=first_value("date") or first_value("dcterms:modified"),
        )


def _text(element: ET._Element) -> str:
    return normalize_whitespace("".join(element.itertext()))
