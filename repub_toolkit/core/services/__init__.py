from __future__ import annotations

"""Services operating on a loaded `Book`.

Each service is stateless apart from its logger and receives the book as
first argument. `EpubEditor` wires them together for the common case.
"""

from .content_tree_service import ContentTreeService  # noqa: F401
from .structure_editing_service import StructureEditingService  # noqa: F401
from .asset_service import AssetService  # noqa: F401
from .metadata_service import MetadataService  # noqa: F401
from .content_service import ContentService  # noqa: F401
from .export_service import ExportService  # noqa: F401

__all__: list[str] = [
    "ContentTreeService",
    "StructureEditingService",
    "AssetService",
    "MetadataService",
    "ContentService",
    "ExportService",
]
