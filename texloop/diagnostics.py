"""Structured warnings and errors collected while building a document."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, List, Optional, Sequence

from .logging import get_logger


class Severity(str, Enum):
    """How serious a diagnostic is for the overall build result."""

    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class Diagnostic:
    """A single build irregularity keyed by a short code such as ``EEX03``."""

    code: str
    severity: Severity
    message: str

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class DiagnosticLog:
    """Accumulates diagnostics for one document and mirrors them to the logger.

    One instance belongs to one document build. It is not synchronised, which
    matches the single-threaded processing of a document.
    """

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self._logger = logger or get_logger("diagnostics")
        self._entries: List[Diagnostic] = []

    def error(self, code: str, message: str) -> Diagnostic:
        return self._record(Diagnostic(code=code, severity=Severity.ERROR, message=message))

    def warning(self, code: str, message: str) -> Diagnostic:
        return self._record(Diagnostic(code=code, severity=Severity.WARNING, message=message))

    @property
    def entries(self) -> Sequence[Diagnostic]:
        return tuple(self._entries)

    @property
    def has_errors(self) -> bool:
        return any(entry.severity is Severity.ERROR for entry in self._entries)

    def codes(self) -> List[str]:
        """Return the diagnostic codes in the order they were recorded."""
        return [entry.code for entry in self._entries]

    def with_code(self, code: str) -> List[Diagnostic]:
        return [entry for entry in self._entries if entry.code == code]

    def __iter__(self) -> Iterator[Diagnostic]:
        return iter(tuple(self._entries))

    def __len__(self) -> int:
        return len(self._entries)

    def _record(self, diagnostic: Diagnostic) -> Diagnostic:
        self._entries.append(diagnostic)
        level = logging.ERROR if diagnostic.severity is Severity.ERROR else logging.WARNING
        self._logger.log(level, "%s", diagnostic)
        return diagnostic


__all__ = ["Diagnostic", "DiagnosticLog", "Severity"]
