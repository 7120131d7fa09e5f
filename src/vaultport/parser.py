"""Tag, title and YAML-frontmatter parsing for outline notes.

Tags come from several coexisting conventions and are unioned in the order
they first appear in the text:

- ``[[link]]`` brackets, when :func:`looks_like_tag` (or a caller-supplied
  predicate) accepts the link target
- inline ``#tags`` and ``#[[multi word]]`` tags
- ``tags::`` / ``+tags::`` property lines (bracket links and plain lists)
- Org ``#+tags:`` / ``#+filetags:`` header lines
- a YAML front-matter ``tags`` key (always first)
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Callable
from urllib.parse import unquote

import yaml

from vaultport.media import is_file_link

TagPredicate = Callable[[str], bool]

# [[Target]] or [[Target|Alias]], not ![[embeds]]
_BRACKET_LINK_RE = re.compile(r"(?<!!)\[\[([^\[\]]+?)\]\]")
# Inline #tags (not inside code-spans, URLs or headings)
_TAG_RE = re.compile(r"(?<![`\w/#])#([\w/-]+)")
# #[[multi word tag]]
_BRACKET_TAG_RE = re.compile(r"(?<![`\w/#])#\[\[([^\[\]]+?)\]\]")
# tags:: a, [[b]]   /   +tags:: ...
_TAGS_PROPERTY_RE = re.compile(r"^[ \t]*(?:[-*][ \t]+)?\+?tags::[ \t]*(.*)$", re.IGNORECASE | re.MULTILINE)
# #+tags: a, b   /   #+filetags: :a:b:
_ORG_TAGS_RE = re.compile(r"^[ \t]*#\+(?:file)?tags:[ \t]*(.*)$", re.IGNORECASE | re.MULTILINE)
# YAML front-matter block
_FRONTMATTER_RE = re.compile(r"^---[ \t]*\n(.*?)\n---[ \t]*\n", re.DOTALL)

_TITLE_PROPERTY_RE = re.compile(r"^[ \t]*title::[ \t]*(.+?)[ \t]*$", re.IGNORECASE | re.MULTILINE)
_ORG_TITLE_RE = re.compile(r"^[ \t]*#\+title:[ \t]*(.+?)[ \t]*$", re.IGNORECASE | re.MULTILINE)

# Characters that cannot appear in a path segment on common filesystems
_ILLEGAL_PATH_CHARS_RE = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
_WHITESPACE_RE = re.compile(r"\s+")


def parse_frontmatter(content: str) -> tuple[dict[str, Any], str]:
    """Split YAML front-matter from body text.

    Returns ``(metadata_dict, body)``; ``metadata_dict`` is empty when there
    is no front-matter block.
    """
    content = content.lstrip("\ufeff")
    match = _FRONTMATTER_RE.match(content)
    if not match:
        return {}, content
    try:
        meta = yaml.safe_load(match.group(1)) or {}
    except yaml.YAMLError:
        meta = {}
    if not isinstance(meta, dict):
        meta = {}
    return meta, content[match.end() :]


# ---------------------------------------------------------------------------
# Tags
# ---------------------------------------------------------------------------


def looks_like_tag(target: str) -> bool:
    """Default bracket-link policy: hierarchical or a single whitespace-free token."""
    return "/" in target or not any(ch.isspace() for ch in target)


def _clean_tag(raw: str) -> str:
    tag = raw.strip()
    if tag.startswith("#"):
        tag = tag[1:].strip()
    return tag


def _link_target(inner: str) -> str:
    return _clean_tag(inner.split("|", 1)[0])


def _split_plain_list(value: str, separators: str = ",") -> list[str]:
    return [_clean_tag(part) for part in re.split(f"[{re.escape(separators)}]", value)]


def _frontmatter_tags(meta: dict[str, Any]) -> list[str]:
    tags = meta.get("tags") or []
    if isinstance(tags, str):
        tags = tags.split(",")
    if not isinstance(tags, list):
        return []
    return [_clean_tag(str(t)) for t in tags]


def extract_tags(content: str, *, is_tag_link: TagPredicate = looks_like_tag) -> list[str]:
    """Return the tags found in *content* (de-duped, first-seen order).

    *is_tag_link* decides whether a ``[[bracket link]]`` target counts as a
    tag; ordinary multi-word page links are rejected by the default.
    """
    meta, _ = parse_frontmatter(content)
    found: list[tuple[int, str]] = [(-1, t) for t in _frontmatter_tags(meta)]

    for m in _BRACKET_LINK_RE.finditer(content):
        target = _link_target(m.group(1))
        if target and not is_file_link(target) and is_tag_link(target):
            found.append((m.start(), target))

    for m in _BRACKET_TAG_RE.finditer(content):
        found.append((m.start(), _link_target(m.group(1))))

    for m in _TAG_RE.finditer(content):
        found.append((m.start(), m.group(1)))

    for m in _TAGS_PROPERTY_RE.finditer(content):
        value = m.group(1)
        for link in _BRACKET_LINK_RE.finditer(value):
            found.append((m.start(), _link_target(link.group(1))))
        plain = _BRACKET_LINK_RE.sub(",", value)
        found.extend((m.start(), t) for t in _split_plain_list(plain))

    for m in _ORG_TAGS_RE.finditer(content):
        found.extend((m.start(), t) for t in _split_plain_list(m.group(1), ",: \t"))

    found.sort(key=lambda item: item[0])
    return list(dict.fromkeys(tag for _, tag in found if tag))


def tag_to_path(tag: str) -> str:
    """Turn a (possibly hierarchical) tag into a relative directory path.

    >>> tag_to_path("a:b*c")
    'a-b-c'
    """
    segments: list[str] = []
    for segment in tag.split("/"):
        segment = _ILLEGAL_PATH_CHARS_RE.sub("-", segment.strip())
        segment = _WHITESPACE_RE.sub(" ", segment).strip()
        if segment and segment not in {".", ".."}:
            segments.append(segment)
    return os.sep.join(segments)


# ---------------------------------------------------------------------------
# Titles
# ---------------------------------------------------------------------------


def page_name(path: Path) -> str:
    """Page name derived from a file's base name.

    Outline tools encode namespace separators in file names as ``___`` or
    ``%2F``; both are decoded back to ``/``.
    """
    return unquote(path.stem.replace("___", "/"))


def note_title(content: str, path: Path) -> str:
    """Title from front-matter, a ``title::`` property, ``#+title:``, or the page name."""
    meta, body = parse_frontmatter(content)
    title = meta.get("title")
    if title:
        return str(title).strip()
    head = body[:2048]
    for pattern in (_TITLE_PROPERTY_RE, _ORG_TITLE_RE):
        m = pattern.search(head)
        if m:
            return m.group(1)
    return page_name(path)
