"""Shared fixtures: small EPUB books built in memory.

``nav_epub_bytes`` is an EPUB 3 book with a navigation document, landmarks,
an NCX, nested parts and a few media files. ``ncx_epub_bytes`` is an EPUB 2
book with an NCX only, whose first chapter is split over three files.
"""

import io
import sys
import zipfile
from pathlib import Path
from typing import Dict, Optional

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from repub_toolkit.config import ConfigManager
from repub_toolkit.core.importers.epub_importer import EpubPackageImporter

CONTAINER_XML = """<?xml version="1.0" encoding="UTF-8"?>
<container version="1.0" xmlns="urn:oasis:names:tc:opendocument:xmlns:container">
  <rootfiles>
    <rootfile full-path="{opf}" media-type="application/oebps-package+xml"/>
  </rootfiles>
</container>
"""


def make_epub(files: Dict[str, object], opf_path: Optional[str] = "OEBPS/content.opf") -> bytes:
    """Zip *files* into an EPUB container; ``mimetype`` goes first, stored."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        zf.writestr(zipfile.ZipInfo("mimetype"), "application/epub+zip", compress_type=zipfile.ZIP_STORED)
        if opf_path is not None and "META-INF/container.xml" not in files:
            zf.writestr("META-INF/container.xml", CONTAINER_XML.format(opf=opf_path))
        for name, data in files.items():
            zf.writestr(name, data, compress_type=zipfile.ZIP_DEFLATED)
    return buffer.getvalue()


def xhtml(title: str, body: str, body_type: Optional[str] = None, head: str = "") -> str:
    type_attr = f' epub:type="{body_type}"' if body_type else ""
    return f"""<?xml version="1.0" encoding="utf-8"?>
<!DOCTYPE html>
<html xmlns="http://www.w3.org/1999/xhtml" xmlns:epub="http://www.idpf.org/2007/ops">
<head><title>{title}</title>{head}</head>
<body{type_attr}>
{body}
</body>
</html>
"""


NAV_OPF = """<?xml version="1.0" encoding="UTF-8"?>
<package xmlns="http://www.idpf.org/2007/opf" version="3.0" unique-identifier="bookid">
  <metadata xmlns:dc="http://purl.org/dc/elements/1.1/">
    <dc:title id="main-title">Test Book</dc:title>
    <dc:title id="sub-title">A Subtitle</dc:title>
    <meta refines="#sub-title" property="title-type">subtitle</meta>
    <dc:creator id="creator1">Jane Author</dc:creator>
    <meta refines="#creator1" property="role" scheme="marc:relators">aut</meta>
    <dc:creator id="creator2">Ed Itor</dc:creator>
    <meta refines="#creator2" property="role" scheme="marc:relators">edt</meta>
    <dc:creator>Sam Plain</dc:creator>
    <dc:language>en</dc:language>
    <dc:identifier id="bookid">urn:uuid:12345678</dc:identifier>
    <dc:publisher>Test Press</dc:publisher>
    <dc:date>2020-01-01</dc:date>
    <dc:rights>All rights reserved</dc:rights>
    <meta property="dcterms:modified">2021-01-01T00:00:00Z</meta>
    <meta name="cover" content="cover-img"/>
  </metadata>
  <manifest>
    <item id="nav" href="nav.xhtml" media-type="application/xhtml+xml" properties="nav"/>
    <item id="ncx" href="toc.ncx" media-type="application/x-dtbncx+xml"/>
    <item id="cover" href="text/cover.xhtml" media-type="application/xhtml+xml"/>
    <item id="title" href="text/title.xhtml" media-type="application/xhtml+xml"/>
    <item id="part1" href="text/part1.xhtml" media-type="application/xhtml+xml"/>
    <item id="ch1" href="text/ch1.xhtml" media-type="application/xhtml+xml"/>
    <item id="ch2" href="text/ch2.xhtml" media-type="application/xhtml+xml"/>
    <item id="part2" href="text/part2.xhtml" media-type="application/xhtml+xml"/>
    <item id="ch3" href="text/ch3.xhtml" media-type="application/xhtml+xml"/>
    <item id="ch4" href="text/ch4.xhtml" media-type="application/xhtml+xml"/>
    <item id="css" href="styles/style.css" media-type="text/css"/>
    <item id="cover-img" href="images/cover.jpg" media-type="image/jpeg"/>
    <item id="image1" href="images/image1.png" media-type="image/png"/>
    <item id="image2" href="images/image2.png" media-type="image/png"/>
    <item id="orphan" href="images/orphan.png" media-type="image/png"/>
  </manifest>
  <spine toc="ncx">
    <itemref idref="cover"/>
    <itemref idref="title"/>
    <itemref idref="part1"/>
    <itemref idref="ch1"/>
    <itemref idref="ch2"/>
    <itemref idref="part2"/>
    <itemref idref="ch3"/>
    <itemref idref="ch4"/>
  </spine>
  <guide>
    <reference type="cover" title="Cover" href="text/cover.xhtml"/>
    <reference type="text" title="Part Two" href="text/part2.xhtml"/>
  </guide>
</package>
"""

NAV_XHTML = """<?xml version="1.0" encoding="utf-8"?>
<!DOCTYPE html>
<html xmlns="http://www.w3.org/1999/xhtml" xmlns:epub="http://www.idpf.org/2007/ops">
<head><title>Contents</title></head>
<body>
  <nav epub:type="toc" id="toc">
    <h1>Contents</h1>
    <ol>
      <li><a href="text/cover.xhtml">Cover</a></li>
      <li><a href="text/title.xhtml">Title Page</a></li>
      <li><a href="text/part1.xhtml">Part One</a>
        <ol>
          <li><a href="text/ch1.xhtml">Chapter 1</a></li>
          <li><a href="text/ch2.xhtml#start">Chapter
              2</a></li>
        </ol>
      </li>
      <li><a href="text/part2.xhtml">Part Two</a>
        <ol>
          <li><a href="text/ch3.xhtml">Chapter 3</a></li>
          <li><a href="text/ch4.xhtml">Chapter 4</a></li>
        </ol>
      </li>
    </ol>
  </nav>
  <nav epub:type="landmarks" id="landmarks">
    <ol>
      <li><a epub:type="cover" href="text/cover.xhtml">Cover</a></li>
      <li><a epub:type="frontmatter" href="text/title.xhtml">Title Page</a></li>
      <li><a epub:type="bodymatter" href="text/part1.xhtml">Start</a></li>
    </ol>
  </nav>
</body>
</html>
"""

NAV_NCX = """<?xml version="1.0" encoding="UTF-8"?>
<ncx xmlns="http://www.daisy.org/z3986/2005/ncx/" version="2005-1">
  <head><meta name="dtb:uid" content="urn:uuid:12345678"/></head>
  <docTitle><text>Test Book</text></docTitle>
  <navMap>
    <navPoint id="np1" playOrder="1"><navLabel><text>Cover</text></navLabel><content src="text/cover.xhtml"/></navPoint>
    <navPoint id="np2" playOrder="2"><navLabel><text>Title Page</text></navLabel><content src="text/title.xhtml"/></navPoint>
    <navPoint id="np3" playOrder="3"><navLabel><text>Part One</text></navLabel><content src="text/part1.xhtml"/>
      <navPoint id="np4" playOrder="4"><navLabel><text>Chapter 1</text></navLabel><content src="text/ch1.xhtml"/></navPoint>
      <navPoint id="np5" playOrder="5"><navLabel><text>Chapter 2</text></navLabel><content src="text/ch2.xhtml#start"/></navPoint>
    </navPoint>
    <navPoint id="np6" playOrder="6"><navLabel><text>Part Two</text></navLabel><content src="text/part2.xhtml"/>
      <navPoint id="np7" playOrder="7"><navLabel><text>Chapter 3</text></navLabel><content src="text/ch3.xhtml"/></navPoint>
      <navPoint id="np8" playOrder="8"><navLabel><text>Chapter 4</text></navLabel><content src="text/ch4.xhtml"/></navPoint>
    </navPoint>
  </navMap>
</ncx>
"""

STYLE_CSS = """body { font-family: serif; }
.banner { background: url("../images/image2.png") no-repeat; }
"""


def nav_book_files() -> Dict[str, object]:
    css_link = '<link rel="stylesheet" type="text/css" href="../styles/style.css"/>'
    return {
        "OEBPS/content.opf": NAV_OPF,
        "OEBPS/nav.xhtml": NAV_XHTML,
        "OEBPS/toc.ncx": NAV_NCX,
        "OEBPS/text/cover.xhtml": xhtml("Cover", "<p>Cover page</p>"),
        "OEBPS/text/title.xhtml": xhtml("Title", "<h1>Test Book</h1>"),
        "OEBPS/text/part1.xhtml": xhtml("Part One", "<h1>Part One</h1>"),
        "OEBPS/text/ch1.xhtml": xhtml(
            "Chapter 1",
            '<h1>Chapter 1</h1>\n<p>First <strong>chapter</strong> text.</p>\n'
            '<p><img src="../images/image1.png" alt="one"/></p>\n'
            '<p><a href="ch2.xhtml#start">next</a> <a href="part2.xhtml">part two</a> '
            '<a href="#top">top</a> <a href="https://example.com/">site</a></p>',
            head=css_link,
        ),
        "OEBPS/text/ch2.xhtml": xhtml("Chapter 2", '<h1 id="start">Chapter 2</h1>\n<ul><li>alpha</li><li>beta</li></ul>'),
        "OEBPS/text/part2.xhtml": xhtml("Part Two", "<h1>Part Two</h1>"),
        "OEBPS/text/ch3.xhtml": xhtml("Chapter 3", "<h1>Chapter 3</h1>"),
        "OEBPS/text/ch4.xhtml": xhtml("Chapter 4", "<h1>Chapter 4</h1>", body_type="backmatter"),
        "OEBPS/styles/style.css": STYLE_CSS,
        "OEBPS/images/cover.jpg": b"\xff\xd8\xff\xe0cover",
        "OEBPS/images/image1.png": b"\x89PNG image1",
        "OEBPS/images/image2.png": b"\x89PNG image2",
        "OEBPS/images/orphan.png": b"\x89PNG orphan",
    }


NCX_OPF = """<?xml version="1.0" encoding="UTF-8"?>
<package xmlns="http://www.idpf.org/2007/opf" version="2.0" unique-identifier="uid">
  <metadata xmlns:dc="http://purl.org/dc/elements/1.1/" xmlns:opf="http://www.idpf.org/2007/opf">
    <dc:title>Legacy Book</dc:title>
    <dc:creator opf:role="aut">John Writer</dc:creator>
    <dc:creator opf:role="ill">Ill Lustrator</dc:creator>
    <dc:language>fr</dc:language>
    <dc:identifier id="uid">isbn-0000</dc:identifier>
    <dc:publisher></dc:publisher>
    <meta name="generator" content="Handmade"/>
  </metadata>
  <manifest>
    <item id="ncx" href="toc.ncx" media-type="application/x-dtbncx+xml"/>
    <item id="ch1" href="ch1.xhtml" media-type="application/xhtml+xml"/>
    <item id="ch1a" href="ch1_split1.xhtml" media-type="application/xhtml+xml"/>
    <item id="ch1b" href="ch1_split2.xhtml" media-type="application/xhtml+xml"/>
    <item id="ch2" href="ch2.xhtml" media-type="application/xhtml+xml"/>
    <item id="ch3" href="ch3.xhtml" media-type="application/xhtml+xml"/>
  </manifest>
  <spine toc="ncx">
    <itemref idref="ch1"/>
    <itemref idref="ch1a"/>
    <itemref idref="ch1b"/>
    <itemref idref="ch2"/>
    <itemref idref="ch3"/>
  </spine>
</package>
"""

NCX_ONLY = """<?xml version="1.0" encoding="UTF-8"?>
<ncx xmlns="http://www.daisy.org/z3986/2005/ncx/" version="2005-1">
  <head/>
  <docTitle><text>Legacy Book</text></docTitle>
  <navMap>
    <navPoint id="n1" playOrder="1"><navLabel><text>Chapter One</text></navLabel><content src="ch1.xhtml"/></navPoint>
    <navPoint id="n2" playOrder="2"><navLabel><text>Chapter Two</text></navLabel><content src="ch2.xhtml"/></navPoint>
    <navPoint id="n3" playOrder="3"><navLabel><text>Appendices</text></navLabel>
      <navPoint id="n4" playOrder="4"><navLabel><text>Chapter Three</text></navLabel><content src="ch3.xhtml"/></navPoint>
    </navPoint>
  </navMap>
</ncx>
"""


def ncx_book_files() -> Dict[str, object]:
    return {
        "OEBPS/content.opf": NCX_OPF,
        "OEBPS/toc.ncx": NCX_ONLY,
        "OEBPS/ch1.xhtml": xhtml("One", "<h1>One</h1>"),
        "OEBPS/ch1_split1.xhtml": xhtml("One (2)", "<p>One continued</p>"),
        "OEBPS/ch1_split2.xhtml": xhtml("One (3)", "<p>One ends</p>"),
        "OEBPS/ch2.xhtml": xhtml("Two", "<h1>Two</h1>"),
        "OEBPS/ch3.xhtml": xhtml("Three", "<h1>Three</h1>", body_type="backmatter"),
    }


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Point user overrides to an empty folder and reload configuration."""
    monkeypatch.setenv("REPUB_CONFIG_DIR", str(tmp_path / "repub_config"))
    ConfigManager.reset()
    yield
    ConfigManager.reset()


@pytest.fixture
def nav_epub_bytes() -> bytes:
    return make_epub(nav_book_files())


@pytest.fixture
def ncx_epub_bytes() -> bytes:
    return make_epub(ncx_book_files())


@pytest.fixture
def nav_book(nav_epub_bytes):
    return EpubPackageImporter().import_package(nav_epub_bytes)


@pytest.fixture
def ncx_book(ncx_epub_bytes):
    return EpubPackageImporter().import_package(ncx_epub_bytes)


@pytest.fixture
def epub_factory():
    """``make_epub`` for tests that assemble their own container."""
    return make_epub


@pytest.fixture
def nav_files() -> Dict[str, object]:
    return nav_book_files()


@pytest.fixture
def ncx_files() -> Dict[str, object]:
    return ncx_book_files()
