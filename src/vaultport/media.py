"""File types the exporter attaches, and how bracket links to them look."""

from __future__ import annotations

from pathlib import Path

DEFAULT_MIME = "application/octet-stream"

MIME_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".svg": "image/svg+xml",
    ".bmp": "image/bmp",
    ".tif": "image/tiff",
    ".tiff": "image/tiff",
    ".heic": "image/heic",
    ".pdf": "application/pdf",
    ".mp3": "audio/mpeg",
    ".m4a": "audio/mp4",
    ".wav": "audio/wav",
    ".mp4": "video/mp4",
    ".mov": "video/quicktime",
    ".zip": "application/zip",
    ".txt": "text/plain",
    ".csv": "text/csv",
    ".json": "application/json",
    ".doc": "application/msword",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".odt": "application/vnd.oasis.opendocument.text",
    ".rtf": "application/rtf",
    ".epub": "application/epub+zip",
    ".xls": "application/vnd.ms-excel",
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ".ppt": "application/vnd.ms-powerpoint",
    ".pptx": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
}

FILE_LINK_PREFIX = "file:"


def mime_type_for(path: Path) -> str:
    return MIME_TYPES.get(path.suffix.lower(), DEFAULT_MIME)


def is_attachment_suffix(path: Path) -> bool:
    return path.suffix.lower() in MIME_TYPES


def is_file_link(target: str) -> bool:
    """True for a ``[[target]]`` that points at a file rather than a page.

    Org writes images and attachments as ``[[file:../assets/x.png]]`` or
    plain ``[[../assets/x.png]]``; neither is a page link nor a tag.
    """
    target = target.strip()
    if target.lower().startswith(FILE_LINK_PREFIX):
        return True
    return is_attachment_suffix(Path(target.split("|", 1)[0].strip()))
