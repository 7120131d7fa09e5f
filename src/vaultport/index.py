"""CorpusIndex: page-name and block-id tables for a note corpus."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from pathlib import Path

from vaultport.config import LINKED_EXTENSIONS
from vaultport.errors import IOFailure
from vaultport.note import Block, Page
from vaultport.parser import page_name

logger = logging.getLogger(__name__)

UUID_PATTERN = r"[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}"

# Files whose text is scanned for block markers
TEXT_SUFFIXES = {".md", ".markdown", ".org", ".txt"}

# "Some text ^0f3c…"
_CARET_RE = re.compile(rf"^(.*?)[ \t]*\^({UUID_PATTERN})[ \t]*$")
_DRAWER_OPEN_RE = re.compile(r"^[ \t]*:PROPERTIES:[ \t]*$", re.IGNORECASE)
_DRAWER_CLOSE_RE = re.compile(r"^[ \t]*:END:[ \t]*$", re.IGNORECASE)
_DRAWER_ID_RE = re.compile(rf"^[ \t]*:ID:[ \t]*({UUID_PATTERN})[ \t]*$", re.IGNORECASE)
# Outline property line "id:: 0f3c…"
_ID_PROPERTY_RE = re.compile(rf"^[ \t]*id::[ \t]*({UUID_PATTERN})[ \t]*$", re.IGNORECASE)
_PROPERTY_LINE_RE = re.compile(r"^[ \t]*[\w+-]+::(?:[ \t]|$)")

_ORG_HEADING_RE = re.compile(r"^(\*+)[ \t]+")
_MD_HEADING_RE = re.compile(r"^(#{1,6})[ \t]+")
_BULLET_RE = re.compile(r"^([ \t]*)(?:[-*+]|\d+[.)])(?:[ \t]+|$)")
_LEADING_MARKUP_RE = re.compile(r"^[ \t]*(?:(?:[-*+]|\d+[.)])[ \t]+)?(?:\*+[ \t]+|#{1,6}[ \t]+)?")


def strip_markup(line: str) -> str:
    """Remove leading bullet/heading markup and surrounding whitespace."""
    return _LEADING_MARKUP_RE.sub("", line, count=1).strip()


def _outline_depth(line: str, org: bool) -> int | None:
    """Nesting depth of a heading or list item line; ``None`` for other lines."""
    if org:
        m = _ORG_HEADING_RE.match(line)
        return len(m.group(1)) if m else None
    m = _BULLET_RE.match(line)
    if m:
        return len(m.group(1).expandtabs(4))
    m = _MD_HEADING_RE.match(line)
    # Headings sit above every bullet, shallower ones first.
    return len(m.group(1)) - 7 if m else None


class CorpusIndex:
    """Scans a corpus once and builds the page and block tables.

    The tables are plain dicts that are read-only once :meth:`build` has
    returned; the index is passed explicitly to everything that needs it.
    """

    def __init__(
        self,
        root: Path,
        *,
        extensions: tuple[str, ...] = LINKED_EXTENSIONS,
        backup_dir: str | None = "logseq/bak",
        include_backups: bool = True,
        include_children: bool = True,
        exclude: tuple[Path, ...] = (),
    ) -> None:
        self.root = Path(root)
        self.extensions = tuple(e.lower() for e in extensions)
        self.backup_dir = backup_dir
        self.include_backups = include_backups
        self.include_children = include_children
        self.exclude = tuple(Path(p).resolve() for p in exclude)
        self.files: list[Path] = []
        self.pages: dict[str, Page] = {}
        self.blocks: dict[str, Block] = {}

    # ------------------------------------------------------------------
    # Build
    # ------------------------------------------------------------------

    def build(self) -> "CorpusIndex":
        """(Re-)scan the corpus and rebuild both tables."""
        self.files = self._enumerate()
        self.pages = {}
        self.blocks = {}
        for path in self.files:
            name = page_name(path)
            self.pages.setdefault(name, Page(name=name, source_path=path))
            if path.suffix.lower() not in TEXT_SUFFIXES:
                continue
            try:
                text = read_note_text(path)
            except IOFailure as exc:
                logger.warning("Skipping blocks of unreadable file %s", exc)
                continue
            self._scan_blocks(text, name, org=path.suffix.lower() == ".org")
        logger.info(
            "Indexed %d file(s), %d page(s), %d block(s) under %s",
            len(self.files), len(self.pages), len(self.blocks), self.root,
        )
        return self

    def _enumerate(self) -> list[Path]:
        backup = self.root / self.backup_dir if self.backup_dir else None
        app_dir = Path(self.backup_dir).parts[0] if self.backup_dir else None
        primary = [
            p for p in self._note_files(self.root)
            if not (app_dir and p.relative_to(self.root).parts[0] == app_dir)
        ]
        backups: list[Path] = []
        if self.include_backups and backup is not None and backup.is_dir():
            backups = self._note_files(backup)
        return primary + backups

    def _note_files(self, base: Path) -> list[Path]:
        result = []
        for path in base.rglob("*"):
            rel = path.relative_to(base)
            if any(part.startswith(".") for part in rel.parts):
                continue
            if path.suffix.lower() not in self.extensions or not path.is_file():
                continue
            if self.exclude and any(path.resolve().is_relative_to(ex) for ex in self.exclude):
                continue
            result.append(path)
        return sorted(result, key=lambda p: p.relative_to(base).as_posix())

    def _register(self, block_id: str, content: str, page: str) -> None:
        block_id = block_id.lower()
        if block_id in self.blocks:
            logger.debug(
                "Duplicate block id %s in %s ignored (first seen in %s)",
                block_id, page, self.blocks[block_id].source_page,
            )
            return
        self.blocks[block_id] = Block(id=block_id, content=content.strip(), source_page=page)

    def _scan_blocks(self, text: str, page: str, *, org: bool) -> None:
        lines = text.lstrip("\ufeff").splitlines()
        i = 0
        while i < len(lines):
            line = lines[i]

            m = _CARET_RE.match(line)
            if m:
                self._register(m.group(2), strip_markup(m.group(1)), page)
                i += 1
                continue

            if _DRAWER_OPEN_RE.match(line):
                end = i + 1
                block_id = None
                while end < len(lines) and not _DRAWER_CLOSE_RE.match(lines[end]):
                    id_match = _DRAWER_ID_RE.match(lines[end])
                    if id_match and block_id is None:
                        block_id = id_match.group(1)
                    end += 1
                if block_id is not None:
                    owner = _previous_content_line(lines, i)
                    if owner is not None:
                        self._register(block_id, self._block_text(lines, owner, end + 1, org), page)
                i = end + 1
                continue

            m = _ID_PROPERTY_RE.match(line)
            if m:
                owner = _owning_bullet(lines, i, org)
                if owner is not None:
                    self._register(m.group(1), self._block_text(lines, owner, i + 1, org), page)
            i += 1

    def _block_text(self, lines: list[str], owner: int, start: int, org: bool) -> str:
        """Owner line text, plus following lines nested below it."""
        parts = [strip_markup(lines[owner])]
        if not self.include_children:
            return parts[0]
        depth = _outline_depth(lines[owner], org)
        in_drawer = False
        for line in lines[start:]:
            line_depth = _outline_depth(line, org)
            if line_depth is not None and depth is not None and line_depth <= depth:
                break
            if _DRAWER_OPEN_RE.match(line):
                in_drawer = True
                continue
            if in_drawer:
                in_drawer = not _DRAWER_CLOSE_RE.match(line)
                continue
            if _PROPERTY_LINE_RE.match(line) or not line.strip():
                continue
            parts.append(strip_markup(line))
        return "\n".join(parts)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def block_content(self, block_id: str) -> str | None:
        block = self.blocks.get(block_id.lower())
        return block.content if block else None

    def page_for(self, path: Path) -> Page | None:
        page = self.pages.get(page_name(path))
        return page if page and page.source_path == path else None


def _previous_content_line(lines: list[str], before: int) -> int | None:
    for j in range(before - 1, -1, -1):
        if lines[j].strip():
            return j
    return None


def _owning_bullet(lines: list[str], prop_line: int, org: bool) -> int | None:
    """Index of the heading/list item a property line belongs to."""
    for j in range(prop_line - 1, -1, -1):
        if _outline_depth(lines[j], org) is not None:
            return j
    return None


def index_corpus(root: Path, **kwargs) -> CorpusIndex:
    """Build and return a :class:`CorpusIndex` for *root*."""
    return CorpusIndex(root, **kwargs).build()


# ---------------------------------------------------------------------------
# Corpus reader
# ---------------------------------------------------------------------------


def read_note_text(path: Path) -> str:
    """Read a note as UTF-8, dropping a byte-order mark."""
    try:
        return path.read_text(encoding="utf-8-sig", errors="replace")
    except OSError as exc:
        raise IOFailure(path, exc) from exc


def file_times(path: Path) -> tuple[datetime, datetime]:
    """Return ``(created, modified)`` as UTC datetimes."""
    try:
        st = path.stat()
    except OSError as exc:
        raise IOFailure(path, exc) from exc
    created = getattr(st, "st_birthtime", None) or st.st_ctime
    return (
        datetime.fromtimestamp(min(created, st.st_mtime), tz=timezone.utc),
        datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
    )
