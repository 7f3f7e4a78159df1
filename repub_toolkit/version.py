# -*- coding: utf-8 -*-
"""Application version detection utilities.

Provides ``get_app_version()``, used when the export stamps the provenance
contributor into a book's metadata.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

__version__ = "1.0.0"

_CACHED_VERSION: Optional[str] = None


def get_app_version() -> str:
    """Return the toolkit version string (e.g., ``1.2.3``).

    Packaged builds: read version.txt written next to the package root.
    Otherwise: the in-source ``__version__``.
    """
    global _CACHED_VERSION
    if _CACHED_VERSION:
        return _CACHED_VERSION

    version_file = Path(__file__).resolve().parent.parent / "version.txt"
    try:
        text = version_file.read_text(encoding="ascii", errors="ignore").strip()
    except OSError:
        text = ""

    _CACHED_VERSION = text.lstrip("v") if text else __version__
    return _CACHED_VERSION
