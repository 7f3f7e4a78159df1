"""Top-level package for repub-toolkit.

Keeps an EPUB's table of contents, manifest, spine, navigation document and
NCX consistent while content is inserted, removed or reclassified.
Applications should depend on the public API exposed here rather than
importing internal modules directly.
"""

from .core.exceptions import (
    DuplicateIdError,
    NotFoundError,
    ProtectionError,
    RangeFormatError,
    RePubError,
    StructuralError,
)
from .core.models import Book, ById, ByIndex, ContentElement, ContentOptions, ContentType
from .editor import EpubEditor
from .version import __version__

__all__: list[str] = [
    "EpubEditor",
    "Book",
    "ById",
    "ByIndex",
    "ContentElement",
    "ContentOptions",
    "ContentType",
    "RePubError",
    "StructuralError",
    "ProtectionError",
    "NotFoundError",
    "RangeFormatError",
    "DuplicateIdError",
    "__version__",
]
