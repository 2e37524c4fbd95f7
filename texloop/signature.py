"""Content signatures over the relevant lines of generated files.

A signature is a cheap change detector: the number of relevant lines plus a
SHA-256 digest over them, accumulated line by line in file order. Included
files are folded into the same running digest, so the signature covers the
whole inclusion closure. Collisions would hide a needed rerun; that risk is
accepted.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from pathlib import Path
from re import Pattern
from typing import Any, ClassVar, Optional, Set

from .diagnostics import DiagnosticLog
from .logging import get_logger
from .patterns import AUX_INCLUDE

logger = get_logger("signature")


@dataclass(frozen=True)
class ContentSignature:
    """Opaque ``(line_count, digest)`` pair; equal iff both parts are equal."""

    line_count: int
    digest: bytes

    EMPTY: ClassVar["ContentSignature"]

    def __str__(self) -> str:
        if not self.digest:
            return "<empty>"
        return f"{self.digest.hex()[:12]}/{self.line_count}"


ContentSignature.EMPTY = ContentSignature(line_count=0, digest=b"")


@dataclass(frozen=True)
class LineFilter:
    """Selects the lines of a file that take part in its signature.

    ``pattern`` of ``None`` makes every line relevant. A ``companion`` pattern
    must define the named group ``ext``; each relevant line it matches pulls
    the sibling file with that extension into the signature in full.
    """

    pattern: Optional[Pattern[str]] = None
    companion: Optional[Pattern[str]] = None

    def is_relevant(self, line: str) -> bool:
        return self.pattern is None or self.pattern.search(line) is not None

    def companion_suffix(self, line: str) -> Optional[str]:
        if self.companion is None:
            return None
        match = self.companion.search(line)
        if match is None:
            return None
        return match.group("ext")


ALL_LINES = LineFilter()


class _ReadFailure(Exception):
    def __init__(self, path: Path, cause: BaseException) -> None:
        super().__init__(f"{path}: {cause}")
        self.path = path


@dataclass
class _Accumulator:
    digest: Any = field(default_factory=hashlib.sha256)
    line_count: int = 0
    visited: Set[Path] = field(default_factory=set)

    def feed(self, line: str) -> None:
        self.digest.update(line.encode("utf-8", errors="surrogateescape"))
        self.digest.update(b"\n")
        self.line_count += 1

    def seal(self) -> ContentSignature:
        return ContentSignature(line_count=self.line_count, digest=self.digest.digest())


def compute_signature(
    path: Path,
    line_filter: LineFilter = ALL_LINES,
    *,
    recurse: bool = False,
    log: DiagnosticLog | None = None,
) -> ContentSignature:
    """Return the signature of ``path`` restricted to ``line_filter``.

    With ``recurse`` set, ``\\@input{...}`` directives fold the referenced file
    into the signature using the same filter. If any file cannot be read the
    result is :attr:`ContentSignature.EMPTY` and a ``WFU01`` warning is
    recorded.
    """
    accumulator = _Accumulator()
    try:
        _scan(Path(path), line_filter, recurse, accumulator, required=True)
    except _ReadFailure as failure:
        message = (
            f"Cannot read '{failure.path.name}' to compute its signature; "
            "rerun detection may miss a needed run."
        )
        if log is not None:
            log.warning("WFU01", message)
        else:
            logger.warning("WFU01: %s", message)
        return ContentSignature.EMPTY
    signature = accumulator.seal()
    logger.debug("Signature of %s: %s", path, signature)
    return signature


def _scan(
    path: Path,
    line_filter: LineFilter,
    recurse: bool,
    accumulator: _Accumulator,
    *,
    required: bool,
) -> None:
    resolved = path.resolve()
    if resolved in accumulator.visited:
        return
    accumulator.visited.add(resolved)
    if not required and not path.exists():
        logger.debug("Skipping missing file %s", path)
        return
    try:
        with path.open("r", encoding="utf-8", errors="surrogateescape") as handle:
            for raw in handle:
                line = raw.rstrip("\n")
                if line_filter.is_relevant(line):
                    accumulator.feed(line)
                    suffix = line_filter.companion_suffix(line)
                    if suffix:
                        companion = path.with_suffix(f".{suffix}")
                        _scan(companion, ALL_LINES, False, accumulator, required=False)
                if recurse:
                    match = AUX_INCLUDE.search(line)
                    if match:
                        included = path.parent / match.group("file")
                        _scan(included, line_filter, True, accumulator, required=False)
    except OSError as exc:
        raise _ReadFailure(path, exc) from exc


__all__ = ["ALL_LINES", "ContentSignature", "LineFilter", "compute_signature"]
