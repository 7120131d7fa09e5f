"""Shared fixtures for vaultport tests.

``FakeConverter`` satisfies the :class:`~vaultport.converter.FormatConverter`
protocol without running pandoc.  Markdown "conversion" returns the file's
text plus one extracted image.  HTML rendering emits the shapes pandoc
emits for the constructs the tests use: ``<ul><li>`` lists, ``<p>``
paragraphs, headings, ``<em>``, ``<a href>``, ``<img src alt>`` and, for an
image standing alone, ``<figure>`` with a hidden ``<figcaption>``.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

import pytest

from vaultport.errors import ConversionFailure

EMBEDDED_IMAGE = b"EMBEDDED-IMAGE-BYTES"

_HEADING_RE = re.compile(r"^(#{1,6}|\*{1,6})[ \t]+(.*)$")
_IMAGE_RE = re.compile(r"!\[([^\[\]]*)\]\(<?([^()<>\s]+)>?\)")
_LINK_RE = re.compile(r"\[([^\[\]]*)\]\(<?([^()<>\s]+)>?\)")
_ORG_LINK_RE = re.compile(r"\[\[(?:file:)?([^\[\]]+?)\](?:\[([^\[\]]*)\])?\]")
_EMPHASIS_RE = re.compile(r"(?<![\w*])\*([^*\s](?:[^*]*[^*\s])?)\*(?![\w*])")
_IMAGE_SUFFIXES = (".png", ".jpg", ".jpeg", ".gif", ".svg", ".webp")


def _org_link(m: re.Match[str]) -> str:
    target, label = m.group(1), m.group(2)
    if not label and target.lower().endswith(_IMAGE_SUFFIXES):
        return f'<img src="{target}" />'
    return f'<a href="{target}">{label or target}</a>'


def _inline(text: str, fmt: str) -> str:
    text = _IMAGE_RE.sub(r'<img src="\2" alt="\1" />', text)
    text = _LINK_RE.sub(r'<a href="\2">\1</a>', text)
    if fmt == "org":
        text = _ORG_LINK_RE.sub(_org_link, text)
    return _EMPHASIS_RE.sub(r"<em>\1</em>", text)


def _block(text: str, fmt: str) -> str:
    """Content of one paragraph or list item."""
    image = _IMAGE_RE.fullmatch(text)
    if image is None:
        return _inline(text, fmt)
    alt, src = image.groups()
    caption = f'\n<figcaption aria-hidden="true">{alt}</figcaption>' if alt else ""
    return f'<figure>\n<img src="{src}" alt="{alt}" />{caption}\n</figure>'


def fake_html(text: str, fmt: str) -> str:
    blocks: list[str] = []
    items: list[str] = []
    for line in text.splitlines():
        stripped = line.strip()
        if stripped.startswith("- "):
            items.append(f"<li>{_block(stripped[2:].strip(), fmt)}</li>")
            continue
        if items:
            blocks.append("<ul>\n" + "\n".join(items) + "\n</ul>")
            items = []
        if not stripped:
            continue
        heading = _HEADING_RE.match(stripped)
        if heading and (fmt == "org") == heading.group(1).startswith("*"):
            level = len(heading.group(1))
            blocks.append(f"<h{level}>{_inline(heading.group(2), fmt)}</h{level}>")
        else:
            blocks.append(f"<p>{_block(stripped, fmt)}</p>")
    if items:
        blocks.append("<ul>\n" + "\n".join(items) + "\n</ul>")
    return "\n".join(blocks)


class FakeConverter:
    embedded_image = EMBEDDED_IMAGE

    def __init__(
        self,
        *,
        fail_markdown: bool = False,
        fail_html: bool = False,
        explode_on: str | None = None,
    ) -> None:
        self.fail_markdown = fail_markdown
        self.fail_html = fail_html
        self.explode_on = explode_on
        self.html_calls: list[tuple[str, str]] = []

    def check(self) -> None:
        pass

    def to_markdown(self, path: Path, media_dir: Path) -> str:
        if self.fail_markdown:
            raise ConversionFailure(str(path), 1, "cannot read document")
        (media_dir / "media").mkdir(parents=True, exist_ok=True)
        (media_dir / "media" / "image1.png").write_bytes(self.embedded_image)
        return path.read_text(encoding="utf-8") + "\n\n![](./media/image1.png)\n"

    def to_html(self, text: str, fmt: str) -> str:
        self.html_calls.append((text, fmt))
        if self.fail_html:
            raise ConversionFailure(f"<{fmt} text>", 2, "bad input")
        if self.explode_on and self.explode_on in text:
            raise RuntimeError("converter crashed")
        return fake_html(text, fmt)


@pytest.fixture()
def converter() -> FakeConverter:
    return FakeConverter()


@pytest.fixture()
def converter_cls() -> type[FakeConverter]:
    return FakeConverter


@pytest.fixture(autouse=True)
def _reset_vaultport_logger():
    """The CLI installs its own handler; undo that between tests."""
    yield
    logger = logging.getLogger("vaultport")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
