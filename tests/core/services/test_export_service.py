import base64
import io
import re
import zipfile

import pytest

from repub_toolkit.config import ConfigManager
from repub_toolkit.core.importers import EpubPackageImporter
from repub_toolkit.core.services.content_tree_service import walk
from repub_toolkit.version import get_app_version

DC = "{http://purl.org/dc/elements/1.1/}"
OPF = "{http://www.idpf.org/2007/opf}"


def _contributors(book):
    return list(book.metadata_element.iterfind(f"{DC}contributor"))


class TestStampMetadata:
    def test_epub3_contributor_and_modified(self, export_service, nav_book):
        export_service.stamp_metadata(nav_book)
        contributors = _contributors(nav_book)
        assert len(contributors) == 1
        assert contributors[0].text == f"repub-toolkit {get_app_version()}"
        contributor_id = contributors[0].get("id")
        role = [m for m in nav_book.metadata_element.iterfind("{*}meta") if m.get("refines") == f"#{contributor_id}"]
        assert role[0].get("property") == "role"
        assert role[0].text == "bkp"

        modified = [m for m in nav_book.metadata_element.iterfind("{*}meta") if m.get("property") == "dcterms:modified"]
        assert len(modified) == 1
        assert re.match(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}Z$", modified[0].text)
        assert modified[0].text != "2021-01-01T00:00:00Z"
        # Publication date is left alone
        assert nav_book.metadata_element.find(f"{DC}date").text == "2020-01-01"

    def test_epub2_role_attribute_and_modification_date(self, export_service, ncx_book):
        export_service.stamp_metadata(ncx_book)
        contributor = _contributors(ncx_book)[0]
        assert contributor.get(f"{OPF}role") == "bkp"
        dates = [d for d in ncx_book.metadata_element.iterfind(f"{DC}date") if d.get(f"{OPF}event") == "modification"]
        assert len(dates) == 1
        assert re.match(r"^\d{4}-\d{2}-\d{2}$", dates[0].text)

    def test_contributor_reused(self, export_service, nav_book):
        export_service.stamp_metadata(nav_book)
        export_service.stamp_metadata(nav_book)
        assert len(_contributors(nav_book)) == 1
        refining = [m for m in nav_book.metadata_element.iterfind("{*}meta") if m.get("property") == "role"]
        assert len(refining) == 3

    def test_configured_contributor_name(self, export_service, nav_book, tmp_path, monkeypatch):
        override_dir = tmp_path / "override"
        override_dir.mkdir()
        (override_dir / "export.yml").write_text("contributor_name: Shop Tools\n", encoding="utf-8")
        monkeypatch.setenv("REPUB_CONFIG_DIR", str(override_dir))
        ConfigManager.reset()

        export_service.stamp_metadata(nav_book)
        assert _contributors(nav_book)[0].text.startswith("Shop Tools ")


class TestPrepareOutput:
    def test_cleans_package(self, export_service, editing_service, nav_book):
        editing_service.remove_element(nav_book, "text/part2.xhtml")
        result = export_service.prepare_output(nav_book)
        assert result.success
        assert result.details == {"orphans_removed": 1, "links_fixed": 1}
        assert nav_book.find_item_by_id("orphan") is None

    def test_pretty_printed_package(self, export_service, nav_book):
        export_service.prepare_output(nav_book)
        text = nav_book.archive.read_text("OEBPS/content.opf")
        assert "\n  <metadata" in text


class TestOutput:
    def test_bytes(self, export_service, nav_book):
        data = export_service.get_output(nav_book)
        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            first = zf.infolist()[0]
            assert first.filename == "mimetype"
            assert first.compress_type == zipfile.ZIP_STORED
            assert zf.read("mimetype") == b"application/epub+zip"

    def test_base64_and_stream(self, export_service, nav_book):
        encoded = export_service.get_output(nav_book, "base64")
        assert isinstance(encoded, str)
        assert zipfile.is_zipfile(io.BytesIO(base64.b64decode(encoded)))

        stream = export_service.get_output(nav_book, "stream")
        assert stream.tell() == 0
        assert zipfile.is_zipfile(stream)

    def test_unknown_kind(self, export_service, nav_book):
        with pytest.raises(ValueError):
            export_service.get_output(nav_book, "blob")

    def test_save_as(self, export_service, nav_book, tmp_path):
        target = export_service.save_as(nav_book, tmp_path / "out" / "book.epub")
        assert target.exists()
        assert EpubPackageImporter().can_import(target)


class TestRoundTrip:
    @pytest.mark.parametrize("book_fixture", ["nav_book", "ncx_book"])
    def test_entry_sets_survive_export(self, export_service, request, book_fixture):
        book = request.getfixturevalue(book_fixture)
        manifest = {item.get("id") for item in book.manifest_items()} - {"orphan"}
        spine = [entry.idref for entry in book.spine_entries()]
        contents = [element.as_dict() for element in book.contents]

        reloaded = EpubPackageImporter().import_package(export_service.get_output(book))

        assert {item.get("id") for item in reloaded.manifest_items()} == manifest
        assert [entry.idref for entry in reloaded.spine_entries()] == spine
        assert [element.as_dict() for element in reloaded.contents] == contents

    def test_edited_book_reloads_consistently(self, export_service, editing_service, nav_book):
        editing_service.remove_range(nav_book, "2..4")
        editing_service.append_content(nav_book, "# Appendix", options=None)
        expected = [(el.label, el.index) for el in walk(nav_book.contents)]

        reloaded = EpubPackageImporter().import_package(export_service.get_output(nav_book))
        assert [(el.label, el.index) for el in walk(reloaded.contents)] == expected
