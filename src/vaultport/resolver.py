"""Placeholder resolution for outline note bodies.

Three placeholder syntaxes are rewritten, in this order:

1. ``{{embed ((uuid))}}`` is replaced by the block's content in a single pass.
2. ``((uuid))`` is replaced by the block's content.  A substitution can
   bring in new references, so the *first* remaining reference is resolved
   and the whole text is scanned again, until none remain or ``max_depth``
   substitutions have been made.
3. ``[[Page]]`` is rendered as ``*Page*``.  Pages are never expanded.
   Org file links such as ``[[file:pic.png]]`` are left for the asset
   resolver.

A fixed cleanup pass then removes outline metadata (property drawers,
``collapsed::``/``heading::``/``id::`` lines), turns ``{{cloze …}}`` into
emphasis and normalises blank lines.

:func:`resolve` runs everything; :func:`expand_blocks` and :func:`finalize`
expose the two halves so callers can look at the text in between.
"""

from __future__ import annotations

import re
from typing import Callable, Mapping

from vaultport.errors import Diagnostics, MissingReference, ResolutionDepthExceeded
from vaultport.index import UUID_PATTERN
from vaultport.media import is_file_link
from vaultport.note import Block

DEFAULT_MAX_DEPTH = 20

_EMBED_RE = re.compile(rf"\{{\{{[ \t]*embed[ \t]+\(\([ \t]*({UUID_PATTERN})[ \t]*\)\)[ \t]*\}}\}}", re.IGNORECASE)
_PAGE_EMBED_RE = re.compile(r"\{\{[ \t]*embed[ \t]+\[\[([^\[\]]+?)\]\][ \t]*\}\}", re.IGNORECASE)
_BLOCK_REF_RE = re.compile(rf"\(\(({UUID_PATTERN})\)\)")
_PAGE_LINK_RE = re.compile(r"(?<!!)(#?)\[\[([^\[\]]+?)\]\]")

_DRAWER_RE = re.compile(
    r"^[ \t]*:PROPERTIES:[ \t]*\n.*?^[ \t]*:END:[ \t]*(?:\n|\Z)",
    re.IGNORECASE | re.MULTILINE | re.DOTALL,
)
_META_LINE_RE = re.compile(
    rf"^[ \t]*(?:collapsed::[^\n]*|heading::[^\n]*|id::[ \t]*{UUID_PATTERN}[ \t]*)(?:\n|\Z)",
    re.IGNORECASE | re.MULTILINE,
)
_CLOZE_RE = re.compile(r"\{\{[ \t]*cloze[ \t]+(.*?)[ \t]*\}\}", re.IGNORECASE | re.DOTALL)
_EXCESS_BLANK_LINES_RE = re.compile(r"\n(?:[ \t]*\n){3,}")

BlockTable = Mapping[str, Block]


def not_found_marker(block_id: str) -> str:
    return f"[block not found: {block_id}]"


def rewrite_spans(pattern: re.Pattern[str], text: str, render: Callable[[re.Match[str]], str]) -> str:
    """Copy *text* into a new buffer, replacing every *pattern* match with ``render(match)``."""
    out: list[str] = []
    pos = 0
    for m in pattern.finditer(text):
        out.append(text[pos : m.start()])
        out.append(render(m))
        pos = m.end()
    out.append(text[pos:])
    return "".join(out)


def _lookup(
    blocks: BlockTable,
    block_id: str,
    diagnostics: Diagnostics,
) -> tuple[str, bool]:
    """Return ``(replacement, found)`` for *block_id*."""
    block = blocks.get(block_id.lower())
    if block is None:
        diagnostics.record(MissingReference(block_id))
        return not_found_marker(block_id), False
    return block.content, True


# ---------------------------------------------------------------------------
# Substitution
# ---------------------------------------------------------------------------


def expand_embeds(text: str, blocks: BlockTable, diagnostics: Diagnostics | None = None) -> str:
    diagnostics = Diagnostics() if diagnostics is None else diagnostics
    return rewrite_spans(_EMBED_RE, text, lambda m: _lookup(blocks, m.group(1), diagnostics)[0])


def expand_block_refs(
    text: str,
    blocks: BlockTable,
    *,
    max_depth: int = DEFAULT_MAX_DEPTH,
    diagnostics: Diagnostics | None = None,
) -> str:
    """Resolve ``((uuid))`` references until none are left or the bound is hit."""
    diagnostics = Diagnostics() if diagnostics is None else diagnostics
    expansions = 0
    while True:
        m = _BLOCK_REF_RE.search(text)
        if m is None:
            return text
        if expansions >= max_depth:
            remaining = sum(1 for _ in _BLOCK_REF_RE.finditer(text))
            diagnostics.record(ResolutionDepthExceeded(max_depth, remaining))
            return text
        replacement, found = _lookup(blocks, m.group(1), diagnostics)
        text = text[: m.start()] + replacement + text[m.end() :]
        # A not-found marker cannot introduce new references.
        if found:
            expansions += 1


def expand_blocks(
    text: str,
    blocks: BlockTable,
    *,
    max_depth: int = DEFAULT_MAX_DEPTH,
    diagnostics: Diagnostics | None = None,
) -> str:
    """Embeds first, then bare block references."""
    diagnostics = Diagnostics() if diagnostics is None else diagnostics
    text = expand_embeds(text, blocks, diagnostics)
    return expand_block_refs(text, blocks, max_depth=max_depth, diagnostics=diagnostics)


def _render_page_link(m: re.Match[str]) -> str:
    target, _, alias = m.group(2).partition("|")
    label = (alias or target).strip()
    if m.group(1):
        return f"#{label}"
    if is_file_link(target):
        return m.group(0)
    return f"*{label}*"


def render_page_links(text: str) -> str:
    text = rewrite_spans(_PAGE_EMBED_RE, text, lambda m: f"*{m.group(1).strip()}*")
    return rewrite_spans(_PAGE_LINK_RE, text, _render_page_link)


# ---------------------------------------------------------------------------
# Cleanup
# ---------------------------------------------------------------------------


def cleanup(text: str) -> str:
    text = text.lstrip("\ufeff")
    text = _DRAWER_RE.sub("", text)
    text = _META_LINE_RE.sub("", text)
    text = rewrite_spans(_CLOZE_RE, text, lambda m: f"*{m.group(1)}*")
    text = _EXCESS_BLANK_LINES_RE.sub("\n\n", text)
    return text.strip()


def finalize(text: str) -> str:
    """Render page links and apply the cleanup pass."""
    return cleanup(render_page_links(text))


def resolve(
    text: str,
    blocks: BlockTable,
    *,
    max_depth: int = DEFAULT_MAX_DEPTH,
    diagnostics: Diagnostics | None = None,
) -> str:
    """Resolve every placeholder in *text* against *blocks* and clean up."""
    expanded = expand_blocks(text, blocks, max_depth=max_depth, diagnostics=diagnostics)
    return finalize(expanded)
