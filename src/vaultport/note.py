"""Core dataclasses: pages, blocks, resources and resolved notes."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from vaultport.errors import Diagnostics


@dataclass(frozen=True)
class Page:
    """A note file in the corpus, keyed by its base name."""

    name: str
    source_path: Path


@dataclass(frozen=True)
class Block:
    """An addressable content unit identified by a UUID."""

    id: str
    content: str
    #: Name of the page the block was first registered from
    source_page: str


@dataclass
class Resource:
    """A deduplicated media file attached to an output note."""

    content_hash: str
    mime_type: str
    display_name: str
    data: bytes = field(repr=False)

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class ResolvedNote:
    """A note after placeholder, tag and asset resolution."""

    title: str
    body: str
    created_at: datetime
    updated_at: datetime
    tags: list[str] = field(default_factory=list)
    #: content hash -> resource, in first-seen order
    resources: dict[str, Resource] = field(default_factory=dict)
    source_path: Path | None = None
    diagnostics: Diagnostics = field(default_factory=Diagnostics)

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "tags": self.tags,
            "resources": [r.display_name for r in self.resources.values()],
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "source_path": str(self.source_path) if self.source_path else None,
            "warnings": len(self.diagnostics),
        }
