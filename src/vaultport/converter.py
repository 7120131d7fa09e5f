"""External format conversion.

Office and outline documents are turned into Markdown before resolution,
and resolved Markdown/Org bodies are turned into HTML for the ``.enex``
container.  The exporter only talks to the :class:`FormatConverter`
protocol; :class:`PandocConverter` implements it on top of the ``pandoc``
command-line tool.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from pathlib import Path
from typing import Protocol, Sequence, runtime_checkable

from vaultport.errors import ConversionFailure, DependencyMissing

logger = logging.getLogger(__name__)

# File suffix -> pandoc reader
PANDOC_READERS = {
    ".md": "markdown",
    ".markdown": "markdown",
    ".txt": "markdown",
    ".org": "org",
    ".docx": "docx",
    ".odt": "odt",
    ".rtf": "rtf",
    ".html": "html",
    ".htm": "html",
    ".opml": "opml",
    ".rst": "rst",
    ".epub": "epub",
}


def source_format(path: Path) -> str:
    return PANDOC_READERS.get(path.suffix.lower(), "markdown")


@runtime_checkable
class FormatConverter(Protocol):
    """Common interface for document converters."""

    def check(self) -> None:
        """Raise :class:`DependencyMissing` when the converter cannot run."""
        ...

    def to_markdown(self, path: Path, media_dir: Path) -> str:
        """Convert the document at *path* to Markdown.

        Embedded media is extracted below *media_dir*, and the returned
        text refers to it with paths relative to *media_dir*.
        """
        ...

    def to_html(self, text: str, fmt: str) -> str:
        """Render *text* (in pandoc reader format *fmt*) as an HTML fragment."""
        ...


class PandocConverter:
    """:class:`FormatConverter` backed by the ``pandoc`` executable."""

    def __init__(
        self,
        pandoc_path: str = "pandoc",
        *,
        extra_args: Sequence[str] = (),
        timeout: float | None = None,
    ) -> None:
        self.pandoc_path = pandoc_path
        self.extra_args = list(extra_args)
        self.timeout = timeout

    def check(self) -> None:
        if shutil.which(self.pandoc_path) is None:
            raise DependencyMissing(
                f"'{self.pandoc_path}' was not found on PATH; install pandoc (https://pandoc.org) "
                "or set VAULTPORT_PANDOC"
            )

    def _run(self, args: list[str], source: str, *, stdin: str | None = None, cwd: Path | None = None) -> str:
        cmd = [self.pandoc_path, *args, *self.extra_args]
        logger.debug("Running %s", " ".join(cmd))
        try:
            proc = subprocess.run(
                cmd,
                input=stdin,
                capture_output=True,
                text=True,
                encoding="utf-8",
                cwd=str(cwd) if cwd else None,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as exc:
            raise ConversionFailure(source, None, f"timed out after {exc.timeout}s") from exc
        except OSError as exc:
            raise ConversionFailure(source, None, str(exc)) from exc
        if proc.returncode != 0:
            raise ConversionFailure(source, proc.returncode, proc.stderr)
        if proc.stderr.strip():
            logger.debug("pandoc: %s", proc.stderr.strip())
        return proc.stdout

    def to_markdown(self, path: Path, media_dir: Path) -> str:
        media_dir.mkdir(parents=True, exist_ok=True)
        args = [
            str(Path(path).resolve()),
            "--from", source_format(path),
            "--to", "gfm",
            "--wrap=none",
            "--extract-media=.",
        ]
        return self._run(args, str(path), cwd=media_dir)

    def to_html(self, text: str, fmt: str) -> str:
        return self._run(["--from", fmt, "--to", "html", "--wrap=none"], f"<{fmt} text>", stdin=text)
