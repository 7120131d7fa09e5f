"""Media lookup, content-hash deduplication and reference rewriting.

Recognised references:

- Markdown ``![alt](path)`` and ``[text](path)``
- HTML ``<img src="path">`` and ``<a href="path">``
- wiki-style ``![[path]]`` embeds
- Org ``[[file:path]]`` / ``[[path][description]]`` links

Absolute references (URL schemes, rooted paths, ``#anchors``) and links to
other notes pass through untouched, as do plain links whose suffix is not a
known attachment type (``guide.html``, ``example.com``).  Everything else
is looked up in the candidate directories, then by file name anywhere
under the corpus root.  Files are keyed by the MD5 digest of their bytes,
so the same image referenced twice becomes one
:class:`~vaultport.note.Resource`.

How a resolved reference is written back depends on the output:
:class:`EnexMediaRewriter` emits ``<en-media>`` elements keyed by digest,
:class:`FolderAssetRewriter` copies the file into an ``assets/`` folder
and points the reference at it.
"""

from __future__ import annotations

import hashlib
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Protocol, runtime_checkable
from urllib.parse import unquote

from vaultport.errors import AssetNotFound, Diagnostics
from vaultport.media import FILE_LINK_PREFIX, is_attachment_suffix, mime_type_for
from vaultport.note import Resource
from vaultport.resolver import rewrite_spans

logger = logging.getLogger(__name__)

ASSETS_DIRNAME = "assets"

NOTE_SUFFIXES = {".md", ".markdown", ".org"}

# ![alt](url "title") / [text](url); one level of balanced parentheses in url
_MD_LINK_RE = re.compile(
    r"(?P<bang>!?)\[(?P<label>[^\[\]]*)\]\((?P<url><[^<>\n]*>|(?:[^()\s\\]|\\.|\([^()\s]*\))+)(?P<title>[ \t]+\"[^\"\n]*\")?\)"
)
_IMG_TAG_RE = re.compile(r"<img\b[^>]*?\bsrc\s*=\s*(?P<q>[\"'])(?P<src>.*?)(?P=q)[^>]*>", re.IGNORECASE | re.DOTALL)
_ANCHOR_TAG_RE = re.compile(
    r"<a\b[^>]*?\bhref\s*=\s*(?P<aq>[\"'])(?P<href>.*?)(?P=aq)[^>]*>(?P<atext>.*?)</a\s*>", re.IGNORECASE | re.DOTALL
)
_WIKI_EMBED_RE = re.compile(r"!\[\[(?P<wurl>[^\[\]|]+?)(?:\|(?P<wlabel>[^\[\]]*))?\]\]")
# [[file:x.png]] / [[x.pdf][description]]
_ORG_LINK_RE = re.compile(r"\[\[(?P<ourl>[^\[\]]+?)\](?:\[(?P<olabel>[^\[\]]*)\])?\]")
# All in one pass, so rewritten output is never scanned again
_ASSET_REF_RE = re.compile(
    rf"(?P<wiki>{_WIKI_EMBED_RE.pattern})|(?P<md>{_MD_LINK_RE.pattern})|(?P<img>{_IMG_TAG_RE.pattern})"
    rf"|(?P<anchor>{_ANCHOR_TAG_RE.pattern})|(?P<org>{_ORG_LINK_RE.pattern})",
    re.IGNORECASE | re.DOTALL,
)

# Stand-in for an <en-media> element while the text goes through pandoc
_PLACEHOLDER_RE = re.compile(r"VAULTPORTMEDIA(\d+)X")
_SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*:")
_UNSAFE_NAME_RE = re.compile(r"[^\w.-]+")


def content_hash(data: bytes) -> str:
    return hashlib.md5(data).hexdigest()


def is_absolute_reference(url: str) -> bool:
    return bool(_SCHEME_RE.match(url)) or url.startswith(("/", "\\", "~", "#"))


def clean_reference(url: str) -> str:
    """Strip angle brackets, ``?query`` and ``#fragment``, and URL-unquote."""
    url = url.strip()
    if url.startswith("<") and url.endswith(">"):
        url = url[1:-1]
    url = re.split(r"[?#]", url, maxsplit=1)[0]
    return unquote(url).replace("\\ ", " ")


def sanitize_filename(name: str) -> str:
    stem, dot, suffix = name.rpartition(".")
    if not dot:
        stem, suffix = name, ""
    stem = _UNSAFE_NAME_RE.sub("_", stem).strip("._") or "asset"
    suffix = _UNSAFE_NAME_RE.sub("", suffix)
    return f"{stem}.{suffix}" if suffix else stem


# ---------------------------------------------------------------------------
# Locating files
# ---------------------------------------------------------------------------


class AssetLocator:
    """Finds referenced files: candidate directories first, then the corpus."""

    def __init__(self, corpus_root: Path | None = None) -> None:
        self.corpus_root = Path(corpus_root) if corpus_root else None
        self._by_name: dict[str, list[Path]] | None = None

    def _name_index(self) -> dict[str, list[Path]]:
        if self._by_name is None:
            self._by_name = {}
            if self.corpus_root is not None:
                for path in sorted(self.corpus_root.rglob("*")):
                    if path.is_file():
                        self._by_name.setdefault(path.name.lower(), []).append(path)
        return self._by_name

    def find(self, reference: str, search_dirs: Iterable[Path]) -> Path | None:
        rel = Path(reference)
        for base in search_dirs:
            for candidate in (base / rel, base / rel.name):
                if candidate.is_file():
                    return candidate
        matches = self._name_index().get(rel.name.lower(), [])
        return matches[0] if matches else None


# ---------------------------------------------------------------------------
# Rewriting
# ---------------------------------------------------------------------------


@dataclass
class AssetRef:
    """One reference found in the text."""

    kind: str  # "markdown", "img", "anchor", "wiki" or "org"
    original: str
    url: str
    label: str = ""
    is_image: bool = True

    @property
    def is_plain_link(self) -> bool:
        """A link that only counts as an attachment when its suffix says so."""
        if self.is_image:
            return False
        if self.kind == "org":
            return not self.original[2:].lower().startswith(FILE_LINK_PREFIX)
        return self.kind in ("markdown", "anchor")


@runtime_checkable
class AssetRewriter(Protocol):
    """Turns a resolved reference into output text."""

    def render(self, ref: AssetRef, resource: Resource, source: Path) -> str: ...


class EnexMediaRewriter:
    """Replace the whole reference with an ``<en-media>`` element.

    With ``placeholders=True`` each element is parked behind a plain-word
    token instead, so the text can still be rendered to HTML by pandoc;
    :meth:`restore` then puts the elements into the rendered markup.
    """

    def __init__(self, *, placeholders: bool = False) -> None:
        self.placeholders = placeholders
        self._parked: list[str] = []

    def render(self, ref: AssetRef, resource: Resource, source: Path) -> str:
        element = f'<en-media type="{resource.mime_type}" hash="{resource.content_hash}"/>'
        if not self.placeholders:
            return element
        self._parked.append(element)
        return f"VAULTPORTMEDIA{len(self._parked) - 1}X"

    def restore(self, markup: str) -> str:
        def swap(m: re.Match[str]) -> str:
            i = int(m.group(1))
            return self._parked[i] if i < len(self._parked) else m.group(0)

        return _PLACEHOLDER_RE.sub(swap, markup)


class FolderAssetRewriter:
    """Copy each unique file into ``<folder>/assets/`` and link to it.

    One instance covers one destination folder, so notes written into the
    same folder share their copies.
    """

    def __init__(self, folder: Path) -> None:
        self.folder = Path(folder)
        self.assets_dir = self.folder / ASSETS_DIRNAME
        self._names: dict[str, str] = {}  # content hash -> file name

    def _store(self, resource: Resource) -> str:
        name = self._names.get(resource.content_hash)
        if name is not None:
            return name
        name = sanitize_filename(resource.display_name)
        taken = set(self._names.values())
        stem, dot, suffix = name.rpartition(".")
        if not dot:
            stem, suffix = name, ""
        n = 1
        while name in taken or (self.assets_dir / name).exists():
            name = f"{stem}_{n}.{suffix}" if suffix else f"{stem}_{n}"
            n += 1
        self.assets_dir.mkdir(parents=True, exist_ok=True)
        (self.assets_dir / name).write_bytes(resource.data)
        self._names[resource.content_hash] = name
        return name

    def render(self, ref: AssetRef, resource: Resource, source: Path) -> str:
        target = f"{ASSETS_DIRNAME}/{self._store(resource)}"
        if ref.kind in ("img", "anchor"):
            return ref.original.replace(ref.url, target, 1)
        if ref.kind == "org":
            description = f"[{ref.label}]" if ref.label else ""
            return f"[[{FILE_LINK_PREFIX}{target}]{description}]"
        label = ref.label or resource.display_name
        bang = "!" if ref.is_image else ""
        return f"{bang}[{label}]({target})"


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


class AssetResolver:
    """Resolves the media references of one note into a resource map."""

    def __init__(
        self,
        search_dirs: Iterable[Path],
        rewriter: AssetRewriter | None = None,
        *,
        locator: AssetLocator | None = None,
        diagnostics: Diagnostics | None = None,
    ) -> None:
        self.search_dirs = [Path(d) for d in search_dirs if d is not None]
        self.rewriter = rewriter if rewriter is not None else EnexMediaRewriter()
        self.locator = locator if locator is not None else AssetLocator()
        self.diagnostics = Diagnostics() if diagnostics is None else diagnostics
        self.resources: dict[str, Resource] = {}

    def _resource_for(self, path: Path) -> Resource | None:
        try:
            data = path.read_bytes()
        except OSError as exc:
            logger.warning("Cannot read asset %s: %s", path, exc)
            return None
        digest = content_hash(data)
        resource = self.resources.get(digest)
        if resource is None:
            resource = Resource(
                content_hash=digest,
                mime_type=mime_type_for(path),
                display_name=path.name,
                data=data,
            )
            self.resources[digest] = resource
        return resource

    def _resolve(self, ref: AssetRef) -> str:
        url = ref.url.strip()
        if not url or is_absolute_reference(url.lstrip("<")):
            return ref.original
        reference = clean_reference(url)
        suffix = Path(reference).suffix.lower()
        if suffix in NOTE_SUFFIXES or (not ref.is_image and not suffix):
            return ref.original
        # [docs](guide.html) and [site](example.com) are links, not attachments
        if ref.is_plain_link and not is_attachment_suffix(Path(reference)):
            return ref.original
        path = self.locator.find(reference, self.search_dirs)
        resource = self._resource_for(path) if path is not None else None
        if resource is None:
            self.diagnostics.record(AssetNotFound(reference))
            return ref.original
        return self.rewriter.render(ref, resource, path)

    @staticmethod
    def _ref_for(m: re.Match[str]) -> AssetRef:
        if m.group("wiki") is not None:
            url = m.group("wurl")
            label = m.group("wlabel") or ""
            # ![[image.png|300]] carries a display width, not a caption
            if label.strip().isdigit():
                label = ""
            is_image = mime_type_for(Path(clean_reference(url))).startswith("image/")
            return AssetRef("wiki", m.group(0), url, label, is_image=is_image)
        if m.group("md") is not None:
            return AssetRef("markdown", m.group(0), m.group("url"), m.group("label"), is_image=bool(m.group("bang")))
        if m.group("img") is not None:
            return AssetRef("img", m.group(0), m.group("src"))
        if m.group("anchor") is not None:
            return AssetRef("anchor", m.group(0), m.group("href"), m.group("atext"), is_image=False)
        url = m.group("ourl").strip()
        if url.lower().startswith(FILE_LINK_PREFIX):
            url = url[len(FILE_LINK_PREFIX):]
        # [[file:paper.pdf::12]] carries a search option after "::"
        url = url.split("::", 1)[0]
        label = m.group("olabel") or ""
        # Org shows a described image link as a link, not inline
        is_image = not label and mime_type_for(Path(clean_reference(url))).startswith("image/")
        return AssetRef("org", m.group(0), url, label, is_image=is_image)

    def rewrite(self, content: str) -> str:
        return rewrite_spans(_ASSET_REF_RE, content, lambda m: self._resolve(self._ref_for(m)))


def resolve_assets(
    content: str,
    search_dirs: Iterable[Path],
    rewriter: AssetRewriter | None = None,
    *,
    corpus_root: Path | None = None,
    locator: AssetLocator | None = None,
    diagnostics: Diagnostics | None = None,
) -> tuple[str, dict[str, Resource]]:
    """Rewrite the media references in *content*; return ``(text, {hash: Resource})``."""
    if locator is None:
        locator = AssetLocator(corpus_root)
    resolver = AssetResolver(search_dirs, rewriter, locator=locator, diagnostics=diagnostics)
    return resolver.rewrite(content), resolver.resources
