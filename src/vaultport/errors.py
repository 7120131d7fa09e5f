"""Error taxonomy and the per-note diagnostics side channel.

Three of the errors below never propagate out of the core: unknown block
ids, an exhausted reference-expansion budget and missing media are
*recorded* into a :class:`Diagnostics` collector and logged as warnings,
while the text keeps an inline marker (or the original reference).

The remaining errors are raised.  ``ConversionFailure`` and ``IOFailure``
are caught at the note boundary by :mod:`vaultport.export`;
``DependencyMissing`` is a pre-flight failure that aborts the run.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Iterator

logger = logging.getLogger(__name__)


class VaultportError(Exception):
    """Base class for every error raised or recorded by vaultport."""


# ---------------------------------------------------------------------------
# Non-fatal (recorded)
# ---------------------------------------------------------------------------


class MissingReference(VaultportError):
    def __init__(self, block_id: str) -> None:
        super().__init__(f"block reference not found: {block_id}")
        self.block_id = block_id


class ResolutionDepthExceeded(VaultportError):
    def __init__(self, max_depth: int, remaining: int) -> None:
        super().__init__(
            f"block reference expansion stopped after {max_depth} substitutions; "
            f"{remaining} reference(s) left unresolved"
        )
        self.max_depth = max_depth
        self.remaining = remaining


class AssetNotFound(VaultportError):
    def __init__(self, reference: str) -> None:
        super().__init__(f"asset not found: {reference}")
        self.reference = reference


# ---------------------------------------------------------------------------
# Per-note and fatal (raised)
# ---------------------------------------------------------------------------


class ConversionFailure(VaultportError):
    """The external format converter reported a failure."""

    def __init__(self, source: str, returncode: int | None, stderr: str = "") -> None:
        detail = stderr.strip().splitlines()[-1] if stderr.strip() else "no output"
        super().__init__(f"conversion of {source} failed (exit {returncode}): {detail}")
        self.source = source
        self.returncode = returncode
        self.stderr = stderr


class IOFailure(VaultportError):
    """Reading or writing a specific file failed."""

    def __init__(self, path: object, cause: OSError) -> None:
        super().__init__(f"{path}: {cause.strerror or cause}")
        self.path = path
        self.cause = cause


class DependencyMissing(VaultportError):
    """A required external program is not available."""


# ---------------------------------------------------------------------------
# Collector
# ---------------------------------------------------------------------------


class Diagnostics:
    """Ordered list of non-fatal problems found while processing one note."""

    def __init__(self, context: str = "") -> None:
        self.context = context
        self.items: list[VaultportError] = []

    def record(self, problem: VaultportError) -> None:
        self.items.append(problem)
        if self.context:
            logger.warning("%s: %s", self.context, problem)
        else:
            logger.warning("%s", problem)

    def of_type(self, kind: type[VaultportError]) -> list[VaultportError]:
        return [p for p in self.items if isinstance(p, kind)]

    def counts(self) -> Counter[str]:
        """Return ``{error class name: count}``."""
        return Counter(type(p).__name__ for p in self.items)

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self) -> Iterator[VaultportError]:
        return iter(self.items)
