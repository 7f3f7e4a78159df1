from __future__ import annotations

"""Archive path helpers.

Archive entries always use forward slashes and are relative to the archive
root. Hrefs found inside documents are relative to the document that holds
them and may carry a fragment; these helpers convert between both forms.
"""

import posixpath
from typing import Optional, Tuple
from urllib.parse import unquote, urlsplit

__all__ = [
    "normalize",
    "join",
    "dirname",
    "split_fragment",
    "strip_fragment",
    "resolve",
    "relative",
    "is_external",
]


def normalize(path: str) -> str:
    """Return *path* as a clean archive path.

    Backslashes become slashes, leading ``./`` and ``/`` are dropped, ``.`` and
    ``..`` segments are collapsed. Segments climbing above the archive root are
    discarded.
    """
    if not path:
        return ""
    cleaned = path.replace("\\", "/").lstrip("/")
    while cleaned.startswith("./"):
        cleaned = cleaned[2:].lstrip("/")
    if not cleaned or cleaned == ".":
        return ""
    cleaned = posixpath.normpath(cleaned)
    parts = cleaned.split("/")
    while parts and parts[0] in ("..", "."):
        parts.pop(0)
    return "/".join(parts)


def join(*parts: str) -> str:
    """Join path segments, ignoring empty ones, and normalize the result."""
    segments = [p.replace("\\", "/").strip("/") for p in parts if p]
    segments = [s for s in segments if s]
    if not segments:
        return ""
    return normalize("/".join(segments))


def dirname(path: str) -> str:
    """Directory part of an archive path (``""`` for root-level files)."""
    return posixpath.dirname(path.replace("\\", "/"))


def split_fragment(href: str) -> Tuple[str, Optional[str]]:
    """Split ``"a.xhtml#sec"`` into ``("a.xhtml", "sec")``."""
    if "#" not in href:
        return href, None
    path, fragment = href.split("#", 1)
    return path, fragment


def strip_fragment(href: str) -> str:
    return href.split("#", 1)[0]


def is_external(href: str) -> bool:
    """True for hrefs with a URL scheme (http:, mailto:, data:, ...) or protocol-relative ones."""
    if href.startswith("//"):
        return True
    scheme = urlsplit(href).scheme
    # Single letters are Windows drive names, not schemes
    return len(scheme) > 1


def resolve(base_dir: str, href: str) -> str:
    """Resolve a document-relative *href* to an archive path.

    The fragment and query are dropped and percent-escapes decoded. An href
    starting with ``/`` is taken as archive-absolute.
    """
    path = strip_fragment(href).split("?", 1)[0]
    path = unquote(path)
    if path.startswith("/"):
        return normalize(path)
    return join(base_dir, path)


def relative(from_dir: str, target: str) -> str:
    """Href that reaches archive path *target* from a document in *from_dir*."""
    if not from_dir:
        return target
    return posixpath.relpath(target, from_dir)
