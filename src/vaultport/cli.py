"""Command-line interface.

Usage:
    vaultport ~/notes                      # linked corpus -> ~/notes.enex
    vaultport ~/notes --folders            # linked corpus -> ~/notes_export/
    vaultport ~/documents --mode generic   # any pandoc-readable documents
"""

import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Annotated, Any, Optional

import typer

from vaultport.config import ExportConfig, Layout, Mode, OutputFormat, TagPlacement, load_config
from vaultport.converter import PandocConverter
from vaultport.errors import DependencyMissing
from vaultport.export import Exporter

app = typer.Typer(add_completion=False, help="Export interlinked outline notes to Evernote (.enex) or folders.")

logger = logging.getLogger("vaultport")


def setup_logging(verbose: bool) -> None:
    # Avoid duplicate handlers when invoked more than once in a process
    if logger.handlers:
        logger.setLevel(logging.DEBUG if verbose else logging.INFO)
        return
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter(fmt="%(asctime)s | %(levelname)s | %(message)s", datefmt="%Y-%m-%d %H:%M:%S")
    )
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.propagate = False


def _effective_config(config_file: Optional[Path], overrides: dict[str, Any]) -> ExportConfig:
    config = load_config(config_file)
    values = {k: v for k, v in overrides.items() if v is not None}
    if not values:
        return config
    return replace(config, **values)


@app.command()
def export(
    root: Annotated[Path, typer.Argument(help="Corpus root directory")],
    mode: Annotated[Optional[Mode], typer.Option("--mode", "-m", help="linked corpus or generic directory")] = None,
    folders: Annotated[bool, typer.Option("--folders", "-f", help="Write a folder tree instead of one .enex file")] = False,
    output: Annotated[Optional[Path], typer.Option("--output", "-o", help="Output file or directory")] = None,
    config_file: Annotated[Optional[Path], typer.Option("--config", "-c", help="TOML settings file")] = None,
    layout: Annotated[Optional[Layout], typer.Option("--layout", help="Folder tree from tags or source paths")] = None,
    tag_placement: Annotated[
        Optional[TagPlacement], typer.Option("--tag-placement", help="First tag only, or a copy per tag")
    ] = None,
    max_depth: Annotated[Optional[int], typer.Option("--max-depth", help="Block reference expansion limit")] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Debug logging")] = False,
) -> None:
    """Convert the notes under ROOT."""
    setup_logging(verbose)

    if not root.exists() or not root.is_dir():
        logger.error("Root path %s does not exist or is not a directory", root)
        raise typer.Exit(code=1)

    try:
        config = _effective_config(
            config_file,
            {
                "mode": mode,
                "output_format": OutputFormat.FOLDERS if folders else None,
                "layout": layout,
                "tag_placement": tag_placement,
                "max_depth": max_depth,
            },
        )
    except (OSError, ValueError) as exc:
        logger.error("Invalid configuration: %s", exc)
        raise typer.Exit(code=1)

    converter = PandocConverter(config.pandoc_path)
    try:
        converter.check()
    except DependencyMissing as exc:
        logger.error("%s", exc)
        raise typer.Exit(code=1)

    report = Exporter(root, config, converter, output=output).run()
    typer.echo(
        f"{report.succeeded}/{report.total} note(s) exported, {report.failed} failed, "
        f"{report.skipped} skipped, {report.warnings} warning(s) -> {report.output}"
    )


def main() -> None:
    app()


if __name__ == "__main__":
    main()
