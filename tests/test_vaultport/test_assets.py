"""Tests for vaultport.assets."""

import hashlib
from pathlib import Path

import pytest

from vaultport.assets import (
    AssetLocator,
    AssetResolver,
    EnexMediaRewriter,
    FolderAssetRewriter,
    clean_reference,
    is_absolute_reference,
    resolve_assets,
    sanitize_filename,
)
from vaultport.errors import AssetNotFound, Diagnostics

PNG = b"\x89PNG-fake-image"


def _media(path: Path, data: bytes = PNG) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return path


def _en_media(data: bytes = PNG, mime: str = "image/png") -> str:
    return f'<en-media type="{mime}" hash="{hashlib.md5(data).hexdigest()}"/>'


# ---------------------------------------------------------------------------
# ENEX media
# ---------------------------------------------------------------------------


class TestEnexMedia:
    def test_identical_bytes_become_one_resource(self, tmp_path):
        _media(tmp_path / "pic.png")
        _media(tmp_path / "copy.png")
        text, resources = resolve_assets("![a](pic.png) and ![b](copy.png)", [tmp_path])
        assert text == f"{_en_media()} and {_en_media()}"
        assert list(resources) == [hashlib.md5(PNG).hexdigest()]
        [resource] = resources.values()
        assert resource.display_name == "pic.png"
        assert resource.mime_type == "image/png"
        assert resource.size == len(PNG)

    def test_img_tag(self, tmp_path):
        _media(tmp_path / "pic.png")
        text, resources = resolve_assets('<p><img src="pic.png" alt="x"></p>', [tmp_path])
        assert text == f"<p>{_en_media()}</p>"
        assert len(resources) == 1

    def test_wiki_embed(self, tmp_path):
        _media(tmp_path / "pic.png")
        text, _ = resolve_assets("![[pic.png|300]]", [tmp_path])
        assert text == _en_media()

    def test_url_encoded_reference(self, tmp_path):
        _media(tmp_path / "my pic.png")
        text, resources = resolve_assets("![a](my%20pic.png)", [tmp_path])
        assert text == _en_media()
        assert [r.display_name for r in resources.values()] == ["my pic.png"]

    def test_relative_path_from_note_dir(self, tmp_path):
        _media(tmp_path / "assets" / "shot.png")
        (tmp_path / "pages").mkdir()
        text, _ = resolve_assets("![s](../assets/shot.png)", [tmp_path / "pages"])
        assert text == _en_media()

    def test_non_image_attachment(self, tmp_path):
        _media(tmp_path / "paper.pdf", b"%PDF-1.4")
        text, resources = resolve_assets("[the paper](paper.pdf)", [tmp_path])
        assert text == _en_media(b"%PDF-1.4", "application/pdf")
        assert len(resources) == 1

    def test_anchor_to_attachment(self, tmp_path):
        _media(tmp_path / "paper.pdf", b"%PDF-1.4")
        text, resources = resolve_assets('<li><a href="paper.pdf">the paper</a></li>', [tmp_path])
        assert text == f'<li>{_en_media(b"%PDF-1.4", "application/pdf")}</li>'
        assert len(resources) == 1

    def test_missing_attachment_is_reported(self, tmp_path):
        diagnostics = Diagnostics()
        content = '[a](gone.pdf) <a href="lost.docx">b</a>'
        text, _ = resolve_assets(content, [tmp_path], diagnostics=diagnostics)
        assert text == content
        assert [p.reference for p in diagnostics.of_type(AssetNotFound)] == ["gone.pdf", "lost.docx"]

    @pytest.mark.parametrize(
        "content",
        ["[[pic.png]]", "[[file:pic.png]]", "[[FILE:pic.png]]", "[[file:pic.png][a picture]]", "[[./pic.png::1]]"],
    )
    def test_org_file_link(self, tmp_path, content):
        _media(tmp_path / "pic.png")
        text, resources = resolve_assets(content, [tmp_path])
        assert text == _en_media()
        assert len(resources) == 1

    def test_placeholders_restored_after_rendering(self, tmp_path):
        _media(tmp_path / "pic.png")
        _media(tmp_path / "paper.pdf", b"%PDF")
        rewriter = EnexMediaRewriter(placeholders=True)
        text, _ = resolve_assets("![a](pic.png) [b](paper.pdf)", [tmp_path], rewriter)
        assert "<en-media" not in text
        rendered = f"<p>{text} VAULTPORTMEDIA7X</p>"
        assert rewriter.restore(rendered) == (
            f'<p>{_en_media()} {_en_media(b"%PDF", "application/pdf")} VAULTPORTMEDIA7X</p>'
        )

    def test_search_dirs_in_order(self, tmp_path):
        _media(tmp_path / "media" / "pic.png", b"first")
        _media(tmp_path / "note" / "pic.png", b"second")
        _, resources = resolve_assets("![](pic.png)", [tmp_path / "media", tmp_path / "note"])
        assert list(resources) == [hashlib.md5(b"first").hexdigest()]

    def test_corpus_name_fallback(self, tmp_path):
        _media(tmp_path / "assets" / "deep" / "pic.png")
        (tmp_path / "pages").mkdir()
        text, _ = resolve_assets("![](pic.png)", [tmp_path / "pages"], corpus_root=tmp_path)
        assert text == _en_media()

    def test_missing_asset_keeps_reference(self, tmp_path):
        diagnostics = Diagnostics()
        text, resources = resolve_assets("![m](missing.png)", [tmp_path], diagnostics=diagnostics)
        assert text == "![m](missing.png)"
        assert resources == {}
        [problem] = diagnostics.of_type(AssetNotFound)
        assert problem.reference == "missing.png"

    @pytest.mark.parametrize(
        "content",
        [
            "![x](https://example.com/a.png)",
            "![y](/abs/p.png)",
            "[z](#anchor)",
            "[mail](mailto:someone@example.com)",
            "[other note](Other%20Note.md)",
            "[section](somewhere)",
            "[docs](guide.html)",
            "[site](example.com)",
            '<a href="guide.html">docs</a>',
            '<a href="https://example.com/paper.pdf">remote</a>',
            "[[Some Page]]",
            "[[v1.2]]",
            "[[https://example.com/a.png]]",
        ],
    )
    def test_pass_through_references(self, tmp_path, content):
        diagnostics = Diagnostics()
        text, resources = resolve_assets(content, [tmp_path], diagnostics=diagnostics)
        assert text == content
        assert resources == {}
        assert len(diagnostics) == 0

    def test_locator_is_shared_between_notes(self, tmp_path):
        _media(tmp_path / "deep" / "pic.png")
        locator = AssetLocator(tmp_path)
        for _ in range(2):
            resolver = AssetResolver([tmp_path / "nowhere"], locator=locator)
            assert resolver.rewrite("![](pic.png)") == _en_media()


# ---------------------------------------------------------------------------
# Folder assets
# ---------------------------------------------------------------------------


class TestFolderAssets:
    def test_copies_once_and_relinks(self, tmp_path):
        src = tmp_path / "src"
        _media(src / "pic.png")
        _media(src / "copy.png")
        out = tmp_path / "out"
        text, _ = resolve_assets("![a](pic.png) ![b](copy.png)", [src], FolderAssetRewriter(out))
        assert text == "![a](assets/pic.png) ![b](assets/pic.png)"
        assert [p.name for p in (out / "assets").iterdir()] == ["pic.png"]
        assert (out / "assets" / "pic.png").read_bytes() == PNG

    def test_wiki_embed_becomes_markdown_image(self, tmp_path):
        _media(tmp_path / "src" / "pic.png")
        text, _ = resolve_assets("![[pic.png]]", [tmp_path / "src"], FolderAssetRewriter(tmp_path / "out"))
        assert text == "![pic.png](assets/pic.png)"

    def test_img_tag_src_replaced(self, tmp_path):
        _media(tmp_path / "src" / "pic.png")
        text, _ = resolve_assets('<img src="pic.png">', [tmp_path / "src"], FolderAssetRewriter(tmp_path / "out"))
        assert text == '<img src="assets/pic.png">'

    def test_attachment_link_has_no_bang(self, tmp_path):
        _media(tmp_path / "src" / "paper.pdf", b"%PDF")
        text, _ = resolve_assets("[paper](paper.pdf)", [tmp_path / "src"], FolderAssetRewriter(tmp_path / "out"))
        assert text == "[paper](assets/paper.pdf)"

    def test_anchor_href_replaced(self, tmp_path):
        _media(tmp_path / "src" / "paper.pdf", b"%PDF")
        content = '<a href="paper.pdf">paper</a>'
        text, _ = resolve_assets(content, [tmp_path / "src"], FolderAssetRewriter(tmp_path / "out"))
        assert text == '<a href="assets/paper.pdf">paper</a>'

    @pytest.mark.parametrize(
        "content, expected",
        [
            ("[[../src/pic.png]]", "[[file:assets/pic.png]]"),
            ("[[file:pic.png][a picture]]", "[[file:assets/pic.png][a picture]]"),
        ],
    )
    def test_org_link_points_at_copy(self, tmp_path, content, expected):
        _media(tmp_path / "src" / "pic.png")
        text, _ = resolve_assets(content, [tmp_path / "src"], FolderAssetRewriter(tmp_path / "out"))
        assert text == expected

    def test_name_collision_gets_suffix(self, tmp_path):
        _media(tmp_path / "one" / "pic.png", b"1")
        _media(tmp_path / "two" / "pic.png", b"2")
        rewriter = FolderAssetRewriter(tmp_path / "out")
        first, _ = resolve_assets("![](pic.png)", [tmp_path / "one"], rewriter)
        second, _ = resolve_assets("![](pic.png)", [tmp_path / "two"], rewriter)
        assert first == "![pic.png](assets/pic.png)"
        assert second == "![pic.png](assets/pic_1.png)"
        assert (tmp_path / "out" / "assets" / "pic_1.png").read_bytes() == b"2"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestHelpers:
    @pytest.mark.parametrize(
        "url, expected",
        [
            ("https://x.org/a.png", True),
            ("file:///tmp/a.png", True),
            ("/rooted.png", True),
            ("~/home.png", True),
            ("#heading", True),
            ("../assets/a.png", False),
            ("a.png", False),
        ],
    )
    def test_is_absolute_reference(self, url, expected):
        assert is_absolute_reference(url) is expected

    def test_clean_reference(self):
        assert clean_reference("<my%20file.png?raw=1#x>") == "my file.png"

    def test_sanitize_filename(self):
        assert sanitize_filename("my pic (1).png") == "my_pic_1.png"
        assert sanitize_filename("???") == "asset"
