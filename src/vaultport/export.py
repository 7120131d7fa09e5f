"""Corpus export: the per-note pipeline and the two output writers.

For every note the pipeline is::

    read (or convert to Markdown)
      -> expand block embeds/references
      -> extract tags
      -> render page links + cleanup
      -> resolve and deduplicate assets
      -> [container only] render HTML, then swap in <en-media>
      -> write

Errors are isolated per note: a note that cannot be read, converted or
written is recorded in the :class:`~vaultport.report.ExportReport` and the
run moves on to the next one.
"""

from __future__ import annotations

import html
import logging
import os
import re
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable

import yaml

from vaultport import __version__
from vaultport.assets import AssetLocator, EnexMediaRewriter, FolderAssetRewriter, resolve_assets
from vaultport.config import ConversionFailurePolicy, ExportConfig, Layout, OutputFormat, TagPlacement
from vaultport.converter import FormatConverter, source_format
from vaultport.enex import EnexWriter, enml_safe
from vaultport.errors import ConversionFailure, Diagnostics, VaultportError
from vaultport.index import TEXT_SUFFIXES, CorpusIndex, file_times, read_note_text
from vaultport.note import ResolvedNote
from vaultport.parser import TagPredicate, extract_tags, looks_like_tag, note_title, parse_frontmatter, tag_to_path
from vaultport.report import FAILED, SKIPPED, ExportReport, NoteOutcome
from vaultport.resolver import expand_blocks, finalize

logger = logging.getLogger(__name__)

LOG_FILENAME = "export_log.csv"

_UNSAFE_TITLE_RE = re.compile(r'[<>:"/\\|?*\x00-\x1f]+')


def default_output(root: Path, output_format: OutputFormat) -> Path:
    root = Path(root).resolve()
    if output_format is OutputFormat.ENEX:
        return root.parent / f"{root.name}.enex"
    return root.parent / f"{root.name}_export"


def log_path_for(container: Path) -> Path:
    """``notes.enex`` -> ``notes_log.csv`` beside it."""
    return container.with_name(f"{container.stem}_log.csv")


def plain_html(text: str) -> str:
    """Escaped text with line breaks, used when HTML rendering fails."""
    return "<div>" + "<br/>\n".join(html.escape(line, quote=False) for line in text.splitlines()) + "</div>"


def safe_filename(title: str, suffix: str) -> str:
    stem = _UNSAFE_TITLE_RE.sub("-", title).strip(" .") or "untitled"
    return f"{stem[:180]}{suffix}"


def prune_empty_dirs(root: Path) -> int:
    """Remove empty directories below *root*; return how many were removed."""
    removed = 0
    for dirpath, _, _ in os.walk(root, topdown=False):
        path = Path(dirpath)
        if path == root:
            continue
        try:
            next(path.iterdir())
        except StopIteration:
            path.rmdir()
            removed += 1
    return removed


@dataclass
class PreparedNote:
    """A note after placeholder resolution, before assets and output."""

    source: Path
    title: str
    body: str
    fmt: str
    tags: list[str]
    created_at: datetime
    updated_at: datetime
    search_dirs: list[Path]
    diagnostics: Diagnostics


class Exporter:
    """Exports one corpus with one configuration."""

    def __init__(
        self,
        root: Path,
        config: ExportConfig,
        converter: FormatConverter,
        *,
        output: Path | None = None,
        is_tag_link: TagPredicate = looks_like_tag,
    ) -> None:
        self.root = Path(root)
        self.config = config
        self.converter = converter
        self.output = Path(output) if output else default_output(self.root, config.output_format)
        self.is_tag_link = is_tag_link
        self.index: CorpusIndex | None = None
        self.locator = AssetLocator(self.root)
        self.report = ExportReport(self.output)

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def build_index(self) -> CorpusIndex:
        self.index = CorpusIndex(
            self.root,
            extensions=self.config.note_extensions,
            backup_dir=self.config.backup_subdir,
            include_backups=self.config.include_backups,
            exclude=(self.output,),
        ).build()
        return self.index

    def run(self) -> ExportReport:
        """Index the corpus and export every note; per-note errors never propagate."""
        index = self.index or self.build_index()
        if self.config.output_format is OutputFormat.ENEX:
            self._export_enex(index)
            log_path = log_path_for(self.output)
        else:
            self._export_folders(index)
            log_path = self.output / LOG_FILENAME
        self.report.write_csv(log_path)
        self.report.log_summary()
        return self.report

    # ------------------------------------------------------------------
    # Per-note pipeline
    # ------------------------------------------------------------------

    def _read(self, path: Path, workdir: Path) -> tuple[str, str, list[Path]]:
        """Return ``(text, pandoc format, extra asset search dirs)``."""
        if path.suffix.lower() in TEXT_SUFFIXES:
            return read_note_text(path), source_format(path), []
        media_dir = workdir / "media"
        try:
            return self.converter.to_markdown(path, media_dir), "markdown", [media_dir]
        except ConversionFailure:
            if self.config.on_conversion_failure is ConversionFailurePolicy.SKIP:
                raise
            logger.warning("Conversion of %s failed; attaching the original document instead", path)
            # The original file becomes the note's only attachment; an embed
            # is attached whatever its suffix, a plain link would not be.
            return f"![[{path.name}]]", "markdown", []

    def prepare(self, path: Path, index: CorpusIndex, workdir: Path) -> PreparedNote:
        diagnostics = Diagnostics(context=self._relative(path))
        text, fmt, media_dirs = self._read(path, workdir)
        title = note_title(text, path)
        expanded = expand_blocks(text, index.blocks, max_depth=self.config.max_depth, diagnostics=diagnostics)
        tags = extract_tags(expanded, is_tag_link=self.is_tag_link)
        _, body = parse_frontmatter(expanded)
        created_at, updated_at = file_times(path)
        return PreparedNote(
            source=path,
            title=title,
            body=finalize(body),
            fmt=fmt,
            tags=tags,
            created_at=created_at,
            updated_at=updated_at,
            search_dirs=[*media_dirs, path.parent],
            diagnostics=diagnostics,
        )

    def to_enex_note(self, prepared: PreparedNote) -> ResolvedNote:
        # Assets are resolved on the source text, where every reference
        # syntax is still recognisable; the HTML only carries placeholders.
        rewriter = EnexMediaRewriter(placeholders=True)
        body, resources = resolve_assets(
            prepared.body,
            prepared.search_dirs,
            rewriter,
            locator=self.locator,
            diagnostics=prepared.diagnostics,
        )
        try:
            markup = self.converter.to_html(body, prepared.fmt)
        except ConversionFailure:
            if self.config.on_conversion_failure is ConversionFailurePolicy.SKIP:
                raise
            logger.warning("HTML rendering of %s failed; using plain text", prepared.source)
            markup = plain_html(body)
        markup = rewriter.restore(markup)
        return ResolvedNote(
            title=prepared.title,
            body=enml_safe(markup.strip()),
            created_at=prepared.created_at,
            updated_at=prepared.updated_at,
            tags=prepared.tags,
            resources=resources,
            source_path=prepared.source,
            diagnostics=prepared.diagnostics,
        )

    def _relative(self, path: Path) -> str:
        try:
            return path.relative_to(self.root).as_posix()
        except ValueError:
            return str(path)

    def _process(
        self,
        path: Path,
        index: CorpusIndex,
        handle: Callable[[PreparedNote, NoteOutcome], None],
    ) -> None:
        outcome = NoteOutcome(source=path, title=path.stem)
        logger.debug("Processing %s", self._relative(path))
        try:
            with tempfile.TemporaryDirectory(prefix="vaultport-") as tmp:
                prepared = self.prepare(path, index, Path(tmp))
                outcome.title = prepared.title
                outcome.tags = prepared.tags
                outcome.diagnostics = prepared.diagnostics
                handle(prepared, outcome)
        except ConversionFailure as exc:
            outcome.status = SKIPPED
            outcome.error = str(exc)
            logger.warning("Skipped %s: %s", self._relative(path), exc)
        except (VaultportError, OSError) as exc:
            outcome.status = FAILED
            outcome.error = str(exc)
            logger.warning("Failed %s: %s", self._relative(path), exc)
        except Exception as exc:  # noqa: BLE001
            # Keep going so the remaining notes are still exported
            outcome.status = FAILED
            outcome.error = f"{type(exc).__name__}: {exc}"
            logger.exception("Unexpected error while exporting %s", self._relative(path))
        self.report.add(outcome)

    # ------------------------------------------------------------------
    # Container export
    # ------------------------------------------------------------------

    def _export_enex(self, index: CorpusIndex) -> None:
        self.output.parent.mkdir(parents=True, exist_ok=True)
        with open(self.output, "w", encoding="utf-8", newline="\n") as fh:
            with EnexWriter(fh, application=self.config.application, version=__version__) as writer:

                def handle(prepared: PreparedNote, outcome: NoteOutcome) -> None:
                    note = self.to_enex_note(prepared)
                    writer.write(note)
                    outcome.resources = len(note.resources)
                    outcome.destinations = [self.output]

                for path in index.files:
                    self._process(path, index, handle)
        logger.info("Wrote %d note(s) to %s", writer.count, self.output)

    # ------------------------------------------------------------------
    # Folder export
    # ------------------------------------------------------------------

    def destinations(self, path: Path, tags: list[str]) -> list[Path]:
        """Directories a note is written to."""
        if self.config.folder_layout is Layout.PATHS:
            return [self.output / Path(self._relative(path)).parent]
        tag_dirs = [tag_to_path(t) for t in tags]
        tag_dirs = [d for d in dict.fromkeys(tag_dirs) if d]
        if not tag_dirs:
            return [self.output]
        if self.config.tag_placement is TagPlacement.FIRST:
            tag_dirs = tag_dirs[:1]
        return [self.output / d for d in tag_dirs]

    def _write_folder_note(self, prepared: PreparedNote, body: str, folder: Path, taken: set[Path]) -> Path:
        suffix = ".org" if prepared.fmt == "org" else ".md"
        name = safe_filename(prepared.title, suffix)
        target = folder / name
        n = 1
        while target in taken or target.exists():
            target = folder / safe_filename(f"{prepared.title}_{n}", suffix)
            n += 1
        taken.add(target)
        if suffix == ".md":
            meta = {
                "title": prepared.title,
                "tags": prepared.tags,
                "created": prepared.created_at.isoformat(),
                "updated": prepared.updated_at.isoformat(),
            }
            front = yaml.safe_dump(meta, sort_keys=False, allow_unicode=True)
            body = f"---\n{front}---\n\n{body}\n"
        else:
            body = body + "\n"
        folder.mkdir(parents=True, exist_ok=True)
        target.write_text(body, encoding="utf-8")
        mtime = prepared.updated_at.timestamp()
        os.utime(target, (mtime, mtime))
        return target

    def _export_folders(self, index: CorpusIndex) -> None:
        self.output.mkdir(parents=True, exist_ok=True)
        rewriters: dict[Path, FolderAssetRewriter] = {}
        taken: set[Path] = set()

        def handle(prepared: PreparedNote, outcome: NoteOutcome) -> None:
            for i, folder in enumerate(self.destinations(prepared.source, prepared.tags)):
                rewriter = rewriters.setdefault(folder, FolderAssetRewriter(folder))
                # Report missing assets once, not once per copy.
                diagnostics = prepared.diagnostics if i == 0 else Diagnostics()
                body, resources = resolve_assets(
                    prepared.body,
                    prepared.search_dirs,
                    rewriter,
                    locator=self.locator,
                    diagnostics=diagnostics,
                )
                outcome.resources = max(outcome.resources, len(resources))
                outcome.destinations.append(self._write_folder_note(prepared, body, folder, taken))

        for path in index.files:
            self._process(path, index, handle)
        removed = prune_empty_dirs(self.output)
        logger.debug("Pruned %d empty director(ies) under %s", removed, self.output)


def export_corpus(
    root: Path,
    config: ExportConfig | None = None,
    converter: FormatConverter | None = None,
    *,
    output: Path | None = None,
) -> ExportReport:
    """Convenience wrapper: build an :class:`Exporter` and run it."""
    from vaultport.converter import PandocConverter

    config = config or ExportConfig()
    converter = converter or PandocConverter(config.pandoc_path)
    return Exporter(root, config, converter, output=output).run()
