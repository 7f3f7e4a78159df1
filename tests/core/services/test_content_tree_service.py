import pytest

from repub_toolkit.core.exceptions import NotFoundError
from repub_toolkit.core.models import ById, ByIndex, ContentType
from repub_toolkit.core.services.content_tree_service import walk


class TestBuildFromNavigation:
    def test_preorder_indices(self, nav_book):
        flat = list(walk(nav_book.contents))
        assert [el.index for el in flat] == list(range(8))
        assert [el.label for el in flat] == [
            "Cover",
            "Title Page",
            "Part One",
            "Chapter 1",
            "Chapter 2",
            "Part Two",
            "Chapter 3",
            "Chapter 4",
        ]

    def test_ids_strip_fragments(self, nav_book):
        chapter2 = list(walk(nav_book.contents))[4]
        assert chapter2.id == "text/ch2.xhtml"
        assert chapter2.href == "text/ch2.xhtml#start"

    def test_hierarchy(self, nav_book):
        part_one = nav_book.contents[2]
        assert part_one.is_group
        assert [child.label for child in part_one.children] == ["Chapter 1", "Chapter 2"]
        assert not nav_book.contents[0].is_group

    def test_handles_point_at_list_items(self, nav_book):
        handle = nav_book.toc_handles[3]
        assert handle.source == "nav"
        assert handle.archive_path == "OEBPS/nav.xhtml"
        assert handle.node.find("{*}a").get("href") == "text/ch1.xhtml"

    def test_content_types(self, nav_book):
        flat = list(walk(nav_book.contents))
        # Landmark "cover" has no matter type and the document carries none
        assert flat[0].content_type is None
        assert flat[1].content_type == ContentType.FRONT_MATTER
        assert flat[2].content_type == ContentType.BODY_MATTER
        assert flat[2].role == "bodymatter"
        # From the body epub:type of the content document
        assert flat[7].content_type == ContentType.BACK_MATTER
        assert flat[3].content_type is None

    def test_as_dict(self, nav_book):
        data = nav_book.contents[2].as_dict()
        assert data["id"] == "text/part1.xhtml"
        assert data["type"] == "bodymatter"
        assert [child["index"] for child in data["children"]] == [3, 4]
        assert "children" not in nav_book.contents[0].as_dict()

    def test_entries_without_href_are_hoisted(self, tree_service, nav_book):
        toc_list = tree_service.find_toc_list(nav_book.navigation)
        part_two_anchor = toc_list.findall("{*}li")[3].find("{*}a")
        del part_two_anchor.attrib["href"]
        tree_service.build(nav_book)

        assert [el.label for el in nav_book.contents] == [
            "Cover", "Title Page", "Part One", "Chapter 3", "Chapter 4",
        ]
        assert [el.index for el in walk(nav_book.contents)] == list(range(7))

    def test_empty_label_defaults(self, tree_service, nav_book):
        toc_list = tree_service.find_toc_list(nav_book.navigation)
        anchor = toc_list.find("{*}li/{*}a")
        anchor.text = "   "
        tree_service.build(nav_book)
        assert nav_book.contents[0].label == "Item 0"


class TestBuildFromNcx:
    def test_navpoint_without_content_is_hoisted(self, ncx_book):
        flat = list(walk(ncx_book.contents))
        assert [el.label for el in flat] == ["Chapter One", "Chapter Two", "Chapter Three"]
        assert [el.index for el in flat] == [0, 1, 2]
        assert all(not el.children for el in ncx_book.contents)

    def test_types_from_documents(self, ncx_book):
        assert ncx_book.contents[2].content_type == ContentType.BACK_MATTER
        assert ncx_book.contents[0].content_type is None

    def test_handles(self, ncx_book):
        assert {handle.source for handle in ncx_book.toc_handles} == {"ncx"}


class TestQueries:
    def test_flatten(self, tree_service, nav_book):
        flat = tree_service.flatten(nav_book.contents)
        assert len(flat) == 8
        assert all(not el.children for el in flat)

        leaves = tree_service.list_contents(nav_book, flatten=True, include_parents=False)
        assert [el.index for el in leaves] == [0, 1, 3, 4, 6, 7]

    def test_list_contents_tree(self, tree_service, nav_book):
        assert len(tree_service.list_contents(nav_book)) == 4

    def test_resolve_by_index_and_id(self, tree_service, nav_book):
        assert tree_service.resolve(nav_book, 6).label == "Chapter 3"
        assert tree_service.resolve(nav_book, ByIndex(6)).label == "Chapter 3"
        assert tree_service.resolve(nav_book, "text/ch1.xhtml").label == "Chapter 1"
        assert tree_service.resolve(nav_book, ById("./text/ch1.xhtml")).label == "Chapter 1"

    @pytest.mark.parametrize("identifier", [42, -1, "text/missing.xhtml"])
    def test_resolve_missing(self, tree_service, nav_book, identifier):
        with pytest.raises(NotFoundError):
            tree_service.resolve(nav_book, identifier)

    def test_resolve_rejects_bool(self, tree_service, nav_book):
        with pytest.raises(TypeError):
            tree_service.resolve(nav_book, True)

    def test_subtree_and_paths(self, tree_service, nav_book):
        part_two = tree_service.resolve(nav_book, 5)
        assert [el.index for el in tree_service.subtree(part_two)] == [5, 6, 7]
        assert tree_service.target_path(nav_book, part_two) == "OEBPS/text/part2.xhtml"
        assert tree_service.find_by_path(nav_book, "OEBPS/text/ch2.xhtml").index == 4
        assert tree_service.find_by_path(nav_book, "OEBPS/text/none.xhtml") is None
