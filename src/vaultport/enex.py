"""Evernote ``.enex`` container writing.

An export is one XML document::

    <?xml version="1.0" encoding="UTF-8"?>
    <!DOCTYPE en-export SYSTEM "http://xml.evernote.com/pub/evernote-export4.dtd">
    <en-export export-date="20240101T120000Z" application="vaultport" version="0.1.0">
    <note>…</note>
    …
    </en-export>

Each note body is ENML wrapped in a CDATA section together with its own
XML declaration and DOCTYPE.  Evernote checks these strings literally, so
:data:`ENML_PREFIX` and :data:`ENML_SUFFIX` must not be reformatted.
"""

from __future__ import annotations

import base64
import re
from datetime import datetime, timezone
from typing import IO, Iterable, Mapping
from xml.sax.saxutils import escape

from vaultport.note import ResolvedNote, Resource

ENEX_DOCTYPE = '<!DOCTYPE en-export SYSTEM "http://xml.evernote.com/pub/evernote-export4.dtd">'
ENML_PREFIX = (
    '<?xml version="1.0" encoding="UTF-8" standalone="no"?>\n'
    '<!DOCTYPE en-note SYSTEM "http://xml.evernote.com/pub/enml2.dtd">\n'
    "<en-note>"
)
ENML_SUFFIX = "</en-note>"
ENEX_FOOTER = "</en-export>\n"

_ATTR_ENTITIES = {'"': "&quot;", "'": "&apos;"}

# Attributes ENML rejects
_DISALLOWED_ATTR_RE = re.compile(
    r"""\s(?:id|class|role|data-[\w-]+|aria-[\w-]+|on\w+)\s*=\s*(?:"[^"]*"|'[^']*')""", re.IGNORECASE
)
# pandoc repeats an image's alt text as a hidden caption
_HIDDEN_CAPTION_RE = re.compile(
    r"""\s*<figcaption\b[^>]*\baria-hidden\s*=\s*["']true["'][^>]*>.*?</figcaption\s*>""",
    re.IGNORECASE | re.DOTALL,
)
# HTML5 elements enml2.dtd does not know
_SECTIONING_TAG_RE = re.compile(
    r"<(/?)(?:figure|figcaption|section|article|aside|header|footer|nav|main)\b([^>]*)>", re.IGNORECASE
)
_VOID_TAG_RE = re.compile(r"<(br|hr|img|col)\b([^>]*?)\s*/?>", re.IGNORECASE)


def enml_safe(html: str) -> str:
    """Make pandoc's HTML acceptable to enml2.dtd.

    Drops forbidden attributes (``id``, ``class``, ``role``, ``data-*``,
    ``aria-*``, event handlers), removes pandoc's hidden figure captions,
    turns HTML5 sectioning elements into ``div`` and self-closes void
    elements.
    """
    html = _HIDDEN_CAPTION_RE.sub("", html)
    html = _DISALLOWED_ATTR_RE.sub("", html)
    html = _SECTIONING_TAG_RE.sub(r"<\1div\2>", html)
    return _VOID_TAG_RE.sub(r"<\1\2/>", html)


def escape_xml(text: str) -> str:
    """Escape ``& < > " '`` for element text and attribute values."""
    return escape(text, _ATTR_ENTITIES)


def format_timestamp(moment: datetime) -> str:
    """Compact UTC form ``YYYYMMDDTHHMMSSZ``; naive datetimes are taken as UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def _cdata(text: str) -> str:
    return "<![CDATA[" + text.replace("]]>", "]]]]><![CDATA[>") + "]]>"


def enml_document(body: str) -> str:
    return ENML_PREFIX + body + ENML_SUFFIX


def _resource_element(resource: Resource) -> str:
    payload = base64.b64encode(resource.data).decode("ascii")
    return (
        "<resource>"
        f'<data encoding="base64">{payload}</data>'
        f"<mime>{escape_xml(resource.mime_type)}</mime>"
        "<resource-attributes>"
        f"<file-name>{escape_xml(resource.display_name)}</file-name>"
        "</resource-attributes>"
        "</resource>"
    )


def assemble(
    title: str,
    body: str,
    resources: Mapping[str, Resource],
    tags: Iterable[str],
    created_at: datetime,
    updated_at: datetime,
) -> str:
    """Return one ``<note>…</note>`` record."""
    parts = [
        "<note>",
        f"<title>{escape_xml(title)}</title>",
        f"<content>{_cdata(enml_document(body))}</content>",
        f"<created>{format_timestamp(created_at)}</created>",
        f"<updated>{format_timestamp(updated_at)}</updated>",
    ]
    parts.extend(f"<tag>{escape_xml(tag)}</tag>" for tag in tags)
    parts.extend(_resource_element(r) for r in resources.values())
    parts.append("</note>")
    return "\n".join(parts) + "\n"


def assemble_note(note: ResolvedNote) -> str:
    return assemble(note.title, note.body, note.resources, note.tags, note.created_at, note.updated_at)


def enex_header(exported_at: datetime, application: str, version: str) -> str:
    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        f"{ENEX_DOCTYPE}\n"
        f'<en-export export-date="{format_timestamp(exported_at)}" '
        f'application="{escape_xml(application)}" version="{escape_xml(version)}">\n'
    )


class EnexWriter:
    """Single writer for an ``.enex`` stream; notes are appended in order."""

    def __init__(self, stream: IO[str], *, application: str, version: str, exported_at: datetime | None = None) -> None:
        self.stream = stream
        self.count = 0
        self.stream.write(enex_header(exported_at or datetime.now(timezone.utc), application, version))

    def write(self, note: ResolvedNote) -> None:
        self.stream.write(assemble_note(note))
        self.count += 1

    def close(self) -> None:
        self.stream.write(ENEX_FOOTER)
        self.stream.flush()

    def __enter__(self) -> "EnexWriter":
        return self

    def __exit__(self, *_: object) -> None:
        self.close()
