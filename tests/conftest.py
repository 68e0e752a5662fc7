from __future__ import annotations

import zipfile
from pathlib import Path
from typing import Callable, Mapping

import pytest

MIMETYPE = "application/epub+zip"

CONTAINER_XML = """<?xml version="1.0" encoding="UTF-8"?>
<container version="1.0" xmlns="urn:oasis:names:tc:opendocument:xmlns:container">
  <rootfiles>
    <rootfile full-path="OEBPS/content.opf" media-type="application/oebps-package+xml"/>
  </rootfiles>
</container>
"""

OPF_XML = """<?xml version="1.0" encoding="UTF-8"?>
<package version="3.0" unique-identifier="BookId" xmlns="http://www.idpf.org/2007/opf">
  <metadata xmlns:dc="http://purl.org/dc/elements/1.1/">
    <dc:title>Sample Book</dc:title>
    <dc:creator>Sample Author</dc:creator>
  </metadata>
  <manifest>
    <item id="ch1" href="Text/ch1.xhtml" media-type="application/xhtml+xml"/>
    <item id="ch2" href="Text/ch2.htm" media-type="text/html"/>
    <item id="css" href="Styles/style.css" media-type="text/css"/>
    <item id="cover" href="Images/cover.png" media-type="image/png"/>
  </manifest>
  <spine>
    <itemref idref="ch1"/>
    <itemref idref="ch2"/>
  </spine>
</package>
"""

CHAPTER_XHTML = """<?xml version="1.0" encoding="utf-8"?>
<!DOCTYPE html>
<html xmlns="http://www.w3.org/1999/xhtml" xmlns:epub="http://www.idpf.org/2007/ops">
  <head>
    <title>Chapter One</title>
    <link rel="stylesheet" type="text/css" href="../Styles/style.css"/>
  </head>
  <body>
    <h1>  Hello world.  </h1>
    <p class="chapter-title">Opening remarks</p>
    <p>This reading test has NASA and AI words.</p>
    <p><img src="../Images/cover.png" alt="cover"/></p>
  </body>
</html>
"""

CHAPTER_HTM = """<html><head><title>Second</title></head>
<body><p>Simple reading</p></body></html>
"""

STYLE_CSS = b"p { font-weight: normal; }\nh1 { text-align: center; }\n"
COVER_PNG = b"\x89PNG\r\n\x1a\n" + bytes(range(256)) * 4


def default_entries() -> dict[str, bytes | str]:
    return {
        "mimetype": MIMETYPE,
        "META-INF/container.xml": CONTAINER_XML,
        "OEBPS/content.opf": OPF_XML,
        "OEBPS/Text/ch1.xhtml": CHAPTER_XHTML,
        "OEBPS/Text/ch2.htm": CHAPTER_HTM,
        "OEBPS/Styles/style.css": STYLE_CSS,
        "OEBPS/Images/cover.png": COVER_PNG,
    }


def write_epub(path: Path, entries: Mapping[str, bytes | str], *, directories: bool = True) -> Path:
    with zipfile.ZipFile(path, "w") as zf:
        zf.writestr("mimetype", entries.get("mimetype", MIMETYPE), compress_type=zipfile.ZIP_STORED)
        if directories:
            zf.writestr("OEBPS/", b"")
        for name, payload in entries.items():
            if name == "mimetype":
                continue
            zf.writestr(name, payload, compress_type=zipfile.ZIP_DEFLATED)
    return path


@pytest.fixture
def epub_factory(tmp_path: Path) -> Callable[..., Path]:
    def _build(name: str = "sample.epub", entries: Mapping[str, bytes | str] | None = None) -> Path:
        return write_epub(tmp_path / name, entries if entries is not None else default_entries())

    return _build
