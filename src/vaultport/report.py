"""Per-note run report.

Every processed note leaves a :class:`NoteOutcome`.  The report turns them
into a :mod:`polars` DataFrame, writes it as CSV (``<container>_log.csv``
beside a container, ``export_log.csv`` inside a folder export) and logs
the end-of-run summary.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import polars as pl

from vaultport.errors import Diagnostics

logger = logging.getLogger(__name__)

OK = "ok"
FAILED = "failed"
SKIPPED = "skipped"

_SCHEMA: dict[str, Any] = {
    "source": pl.Utf8,
    "title": pl.Utf8,
    "status": pl.Utf8,
    "warnings": pl.Int64,
    "missing_references": pl.Int64,
    "depth_exceeded": pl.Int64,
    "assets_not_found": pl.Int64,
    "resources": pl.Int64,
    "tags": pl.Utf8,
    "destinations": pl.Utf8,
    "error": pl.Utf8,
}


@dataclass
class NoteOutcome:
    source: Path
    title: str
    status: str = OK
    diagnostics: Diagnostics = field(default_factory=Diagnostics)
    resources: int = 0
    tags: list[str] = field(default_factory=list)
    destinations: list[Path] = field(default_factory=list)
    error: str = ""

    def to_dict(self) -> dict[str, Any]:
        counts = self.diagnostics.counts()
        return {
            "source": str(self.source),
            "title": self.title,
            "status": self.status,
            "warnings": len(self.diagnostics),
            "missing_references": counts.get("MissingReference", 0),
            "depth_exceeded": counts.get("ResolutionDepthExceeded", 0),
            "assets_not_found": counts.get("AssetNotFound", 0),
            "resources": self.resources,
            "tags": "; ".join(self.tags),
            "destinations": "; ".join(str(d) for d in self.destinations),
            "error": self.error,
        }


class ExportReport:
    """Outcomes of one export run."""

    def __init__(self, output: Path) -> None:
        self.output = Path(output)
        self.outcomes: list[NoteOutcome] = []

    def add(self, outcome: NoteOutcome) -> None:
        self.outcomes.append(outcome)

    # ------------------------------------------------------------------
    # Totals
    # ------------------------------------------------------------------

    @property
    def total(self) -> int:
        return len(self.outcomes)

    def _count(self, status: str) -> int:
        return sum(1 for o in self.outcomes if o.status == status)

    @property
    def succeeded(self) -> int:
        return self._count(OK)

    @property
    def failed(self) -> int:
        return self._count(FAILED)

    @property
    def skipped(self) -> int:
        return self._count(SKIPPED)

    @property
    def warnings(self) -> int:
        return sum(len(o.diagnostics) for o in self.outcomes)

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def to_frame(self) -> pl.DataFrame:
        """One row per note, columns as in the CSV log."""
        return pl.DataFrame([o.to_dict() for o in self.outcomes], schema=_SCHEMA)

    def warning_counts(self) -> pl.DataFrame:
        """Totals per warning kind across the run."""
        df = self.to_frame()
        return df.select(
            pl.col("missing_references").sum(),
            pl.col("depth_exceeded").sum(),
            pl.col("assets_not_found").sum(),
        )

    def write_csv(self, path: Path) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        self.to_frame().write_csv(path)
        return path

    def log_summary(self) -> None:
        logger.info(
            "Processed %d note(s): %d succeeded, %d failed, %d skipped, %d warning(s)",
            self.total, self.succeeded, self.failed, self.skipped, self.warnings,
        )
        for outcome in self.outcomes:
            if outcome.status == FAILED:
                logger.info("  failed: %s (%s)", outcome.source, outcome.error)
        logger.info("Output: %s", self.output)
