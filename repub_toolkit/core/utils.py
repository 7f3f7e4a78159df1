from __future__ import annotations

"""Simple reusable helper functions.

XML parsing/serialisation wrappers, namespace constants and small text
helpers shared by the importer and the services. No archive I/O happens here.
"""

from typing import Iterable, Optional
import logging
import random
import re
import time

from lxml import etree as ET

from repub_toolkit.config import ConfigManager

__all__ = [
    "NS_OPF",
    "NS_DC",
    "NS_XHTML",
    "NS_OPS",
    "NS_NCX",
    "NS_CONTAINER",
    "EPUB_TYPE",
    "parse_xml",
    "serialize_xml",
    "strip_whitespace_text",
    "normalize_whitespace",
    "local_name",
    "get_epub_type",
    "slugify",
    "generate_content_id",
    "generate_unique_id",
    "guess_media_type",
]

logger = logging.getLogger(__name__)

NS_OPF = "http://www.idpf.org/2007/opf"
NS_DC = "http://purl.org/dc/elements/1.1/"
NS_XHTML = "http://www.w3.org/1999/xhtml"
NS_OPS = "http://www.idpf.org/2007/ops"
NS_NCX = "http://www.daisy.org/z3986/2005/ncx/"
NS_CONTAINER = "urn:oasis:names:tc:opendocument:xmlns:container"

EPUB_TYPE = f"{{{NS_OPS}}}type"


# ---------------------------------------------------------------------------
# XML convenience wrappers
# ---------------------------------------------------------------------------

def _parser() -> ET.XMLParser:
    # Entities are never expanded; malformed markup is recovered where possible
    return ET.XMLParser(resolve_entities=False, no_network=True, recover=True, huge_tree=True)


def parse_xml(data: bytes) -> ET._Element:
    """Parse *data* and return the root element.

    Raises ``ET.XMLSyntaxError`` (or ``ValueError`` for empty input) when
    nothing could be recovered.
    """
    if not data or not data.strip():
        raise ValueError("empty document")
    root = ET.fromstring(data, parser=_parser())
    if root is None:
        raise ValueError("no root element could be parsed")
    return root


def serialize_xml(element: ET._Element, *, pretty: bool = True) -> bytes:
    """Return *element*'s document as UTF-8 bytes with an XML declaration.

    The doctype of the parsed document, if any, is kept.
    """
    tree = element.getroottree()
    doctype = tree.docinfo.doctype or None
    xml_bytes = ET.tostring(
        tree,
        pretty_print=pretty,
        xml_declaration=True,
        encoding="UTF-8",
        doctype=doctype,
    )
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug("I/O: serialised XML root=%s bytes=%d", local_name(element), len(xml_bytes))
    return xml_bytes


def strip_whitespace_text(element: ET._Element) -> None:
    """Drop whitespace-only text and tails so pretty printing can re-indent."""
    for node in element.iter():
        if node.text is not None and not node.text.strip() and len(node):
            node.text = None
        if node.tail is not None and not node.tail.strip():
            node.tail = None


def normalize_whitespace(text: Optional[str]) -> str:
    """Collapse runs of whitespace to single spaces and trim."""
    if not text:
        return ""
    return re.sub(r"\s+", " ", text).strip()


def local_name(element: ET._Element) -> str:
    tag = element.tag
    if not isinstance(tag, str):
        return ""
    return ET.QName(tag).localname


def get_epub_type(element: Optional[ET._Element]) -> Optional[str]:
    """Return the ``epub:type`` attribute of *element* (namespaced or literal)."""
    if element is None:
        return None
    return element.get(EPUB_TYPE) or element.get("epub:type")


# ---------------------------------------------------------------------------
# Identifiers
# ---------------------------------------------------------------------------

def slugify(text: str) -> str:
    """Return a file-system-safe slug version of *text*.

    Removes non-alphanumeric chars, converts whitespace/dashes to underscores,
    and lower-cases the result.
    """
    text = re.sub(r"[^\w\s-]", "", text).strip().lower()
    return re.sub(r"[-\s]+", "_", text)


def generate_content_id() -> str:
    """Default id of inserted content: ``content-<epoch-ms>-<0..9999>``."""
    return f"content-{int(time.time() * 1000)}-{random.randint(0, 9999)}"


def generate_unique_id(base: str, existing: Iterable[str]) -> str:
    """Return an XML-name-safe id derived from *base* not present in *existing*."""
    taken = set(existing)
    candidate = re.sub(r"[^\w.-]", "_", base) or "item"
    if not re.match(r"[A-Za-z_]", candidate):
        candidate = f"id_{candidate}"
    if candidate not in taken:
        return candidate
    counter = 1
    while f"{candidate}_{counter}" in taken:
        counter += 1
    return f"{candidate}_{counter}"


def guess_media_type(href: str) -> str:
    """Media type for *href* from the configured extension table."""
    config = ConfigManager()
    name = href.rsplit("/", 1)[-1]
    ext = name.rsplit(".", 1)[-1].lower() if "." in name else ""
    return config.get_media_types().get(ext, config.get_default_media_type())
