from __future__ import annotations

"""Markup conversion between markdown and XHTML content documents."""

import copy
import html
import logging
from typing import Optional

import markdown as markdown_lib
from lxml import etree as ET
from markdownify import markdownify as md

from repub_toolkit.core.utils import NS_OPS, NS_XHTML, parse_xml

logger = logging.getLogger(__name__)

__all__ = ["markdown_to_xhtml", "xhtml_to_markdown", "wrap_xhtml_document"]


def markdown_to_xhtml(text: str) -> str:
    """Render markdown *text* as an XHTML fragment."""
    return markdown_lib.markdown(text, extensions=["extra"], output_format="xhtml")


def wrap_xhtml_document(body: str, title: Optional[str] = None, css: Optional[str] = None) -> str:
    """Wrap an XHTML fragment into a minimal standalone content document."""
    head = [f"<title>{html.escape(title or '')}</title>"]
    if css:
        head.append(f'<style type="text/css">{css}</style>')
    return (
        '<?xml version="1.0" encoding="utf-8"?>\n'
        "<!DOCTYPE html>\n"
        f'<html xmlns="{NS_XHTML}" xmlns:epub="{NS_OPS}">\n'
        f"<head>\n{''.join(head)}\n</head>\n"
        f"<body>\n{body}\n</body>\n"
        "</html>\n"
    )


def _strip_namespaces(element: ET._Element) -> ET._Element:
    clean = copy.deepcopy(element)
    for node in clean.iter():
        if isinstance(node.tag, str):
            node.tag = ET.QName(node).localname
    ET.cleanup_namespaces(clean)
    return clean


def xhtml_to_markdown(data: bytes) -> str:
    """Convert the ``<body>`` of an XHTML document to markdown.

    Documents without a body are converted as a whole.
    """
    root = parse_xml(data)
    body = root.find(".//{*}body")
    if body is None:
        body = root
    markup = ET.tostring(_strip_namespaces(body), method="html", encoding="unicode")
    markdown = md(markup, heading_style="ATX", bullets="*")

    # Collapse runs of blank lines
    lines = [line.rstrip() for line in markdown.split("\n")]
    cleaned = []
    prev_blank = False
    for line in lines:
        is_blank = not line.strip()
        if is_blank and prev_blank:
            continue
        cleaned.append(line)
        prev_blank = is_blank
    return "\n".join(cleaned).strip()
