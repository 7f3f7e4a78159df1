import os
import sys
import pytest

# Ensure project root is importable when running pytest from repository root
# Insert the repository root (one level up from tests/) to sys.path
_THIS_DIR = os.path.dirname(__file__)
_REPO_ROOT = os.path.abspath(os.path.join(_THIS_DIR, "..", "..", ".."))
if _REPO_ROOT not in sys.path:
    sys.path.insert(0, _REPO_ROOT)

lxml = pytest.importorskip("lxml")

from repub_toolkit.core.services import (
    AssetService,
    ContentService,
    ContentTreeService,
    ExportService,
    MetadataService,
    StructureEditingService,
)


@pytest.fixture
def tree_service():
    return ContentTreeService()


@pytest.fixture
def editing_service(tree_service):
    return StructureEditingService(tree_service)


@pytest.fixture
def asset_service():
    return AssetService()


@pytest.fixture
def metadata_service():
    return MetadataService()


@pytest.fixture
def content_service(tree_service):
    return ContentService(tree_service)


@pytest.fixture
def export_service(asset_service):
    return ExportService(asset_service)


