"""Export configuration.

Settings are read from an optional TOML file::

    [export]
    mode                  = "linked"     # or "generic"
    output_format         = "enex"       # or "folders"
    layout                = "tags"       # folder export: "tags" or "paths" (default depends on mode)
    tag_placement         = "first"      # or "every"
    max_depth             = 20
    include_backups       = true
    backup_dir            = "logseq/bak"
    on_conversion_failure = "skip"       # or "fallback"
    pandoc_path           = "pandoc"

and then from environment variables (all optional; they override the file):

    VAULTPORT_MODE, VAULTPORT_OUTPUT_FORMAT, VAULTPORT_LAYOUT,
    VAULTPORT_TAG_PLACEMENT, VAULTPORT_MAX_DEPTH, VAULTPORT_INCLUDE_BACKUPS,
    VAULTPORT_ON_CONVERSION_FAILURE, VAULTPORT_PANDOC
"""

from __future__ import annotations

import enum
import os
import tomllib
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

LINKED_EXTENSIONS = (".md", ".org")
GENERIC_EXTENSIONS = (
    ".md", ".markdown", ".org", ".txt",
    ".docx", ".odt", ".rtf", ".html", ".htm", ".opml", ".rst", ".epub",
)

_ENV_PREFIX = "VAULTPORT_"
_ENV_KEYS = {
    "mode": "MODE",
    "output_format": "OUTPUT_FORMAT",
    "layout": "LAYOUT",
    "tag_placement": "TAG_PLACEMENT",
    "max_depth": "MAX_DEPTH",
    "include_backups": "INCLUDE_BACKUPS",
    "on_conversion_failure": "ON_CONVERSION_FAILURE",
    "pandoc_path": "PANDOC",
}


class Mode(str, enum.Enum):
    LINKED = "linked"
    GENERIC = "generic"


class OutputFormat(str, enum.Enum):
    ENEX = "enex"
    FOLDERS = "folders"


class Layout(str, enum.Enum):
    TAGS = "tags"
    PATHS = "paths"


class TagPlacement(str, enum.Enum):
    """Where a tagged note lands in a tag-derived folder tree."""

    FIRST = "first"  # under its first tag only
    EVERY = "every"  # a full copy under every tag folder


class ConversionFailurePolicy(str, enum.Enum):
    SKIP = "skip"
    FALLBACK = "fallback"


@dataclass
class ExportConfig:
    mode: Mode = Mode.LINKED
    output_format: OutputFormat = OutputFormat.ENEX
    layout: Layout | None = None
    tag_placement: TagPlacement = TagPlacement.FIRST
    max_depth: int = 20
    include_backups: bool = True
    backup_dir: str = "logseq/bak"
    on_conversion_failure: ConversionFailurePolicy = ConversionFailurePolicy.SKIP
    pandoc_path: str = "pandoc"
    application: str = "vaultport"
    extensions: tuple[str, ...] = field(default=())

    def __post_init__(self) -> None:
        self.mode = Mode(self.mode)
        self.output_format = OutputFormat(self.output_format)
        if self.layout is not None:
            self.layout = Layout(self.layout)
        self.tag_placement = TagPlacement(self.tag_placement)
        self.on_conversion_failure = ConversionFailurePolicy(self.on_conversion_failure)
        self.max_depth = int(self.max_depth)
        if self.max_depth < 1:
            raise ValueError(f"max_depth must be at least 1, got {self.max_depth}")
        self.extensions = tuple(e.lower() if e.startswith(".") else f".{e.lower()}" for e in self.extensions)

    @property
    def note_extensions(self) -> tuple[str, ...]:
        """File extensions treated as notes; the default depends on :attr:`mode`."""
        if self.extensions:
            return self.extensions
        return LINKED_EXTENSIONS if self.mode is Mode.LINKED else GENERIC_EXTENSIONS

    @property
    def folder_layout(self) -> Layout:
        if self.layout is not None:
            return self.layout
        return Layout.TAGS if self.mode is Mode.LINKED else Layout.PATHS

    @property
    def backup_subdir(self) -> str | None:
        """Backup directory to index; generic directories have none."""
        if self.mode is Mode.GENERIC or not self.backup_dir:
            return None
        return self.backup_dir

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ExportConfig":
        table = data.get("export", data)
        known = {f.name for f in fields(cls)}
        unknown = set(table) - known
        if unknown:
            raise ValueError(f"Unknown export setting(s): {', '.join(sorted(unknown))}")
        values = dict(table)
        if "extensions" in values:
            values["extensions"] = tuple(values["extensions"])
        return cls(**values)

    @classmethod
    def from_toml(cls, path: Path) -> "ExportConfig":
        with open(path, "rb") as fh:
            data = tomllib.load(fh)
        return cls.from_dict(data)

    def with_env(self, environ: dict[str, str] | None = None) -> "ExportConfig":
        """Return a copy with ``VAULTPORT_*`` environment overrides applied."""
        env = os.environ if environ is None else environ
        overrides: dict[str, Any] = {}
        for name, suffix in _ENV_KEYS.items():
            raw = env.get(_ENV_PREFIX + suffix)
            if raw is None or raw == "":
                continue
            if name == "include_backups":
                overrides[name] = raw.strip().lower() in {"1", "true", "yes", "on"}
            else:
                overrides[name] = raw.strip()
        return replace(self, **overrides) if overrides else self


def load_config(path: Path | None = None, environ: dict[str, str] | None = None) -> ExportConfig:
    """Build the effective configuration: defaults, then *path*, then environment."""
    config = ExportConfig.from_toml(path) if path is not None else ExportConfig()
    return config.with_env(environ)
