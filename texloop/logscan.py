"""Scanning of compiler and tool log files."""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional

from .config import PatternConfig
from .diagnostics import DiagnosticLog
from .logging import get_logger

logger = get_logger("logscan")


@dataclass(frozen=True)
class LogFindings:
    """Which pattern families matched a log file."""

    errors: bool = False
    warnings: bool = False
    bad_boxes: bool = False


def needs_rerun(log_file: Path, pattern: str) -> bool:
    """Return True if the compiler log asks for another pass."""
    text = _read_log(log_file)
    if text is None:
        return False
    return _compile(pattern).search(text) is not None


def scan_latex_log(
    log_file: Path,
    patterns: PatternConfig,
    log: DiagnosticLog,
) -> LogFindings:
    findings = _scan(
        log_file,
        error=patterns.latex_error,
        warning=patterns.latex_warning,
        bad_box=patterns.latex_bad_box,
    )
    if findings is None:
        return LogFindings()
    name = log_file.name
    if findings.errors:
        log.error("EAP01", f"Running LaTeX failed. Errors logged in '{name}'.")
    if findings.bad_boxes:
        log.warning("WAP02", f"Running LaTeX emitted bad boxes logged in '{name}'.")
    if findings.warnings:
        log.warning("WAP03", f"Running LaTeX emitted warnings logged in '{name}'.")
    return findings


def scan_tool_log(
    log_file: Path,
    tool: str,
    error: str,
    warning: str,
    log: DiagnosticLog,
) -> LogFindings:
    """Scan the transcript of an auxiliary tool such as ``.blg`` or ``.ilg``."""
    findings = _scan(log_file, error=error, warning=warning)
    if findings is None:
        return LogFindings()
    name = log_file.name
    if findings.errors:
        log.error("EAP01", f"Running {tool} failed. Errors logged in '{name}'.")
    if findings.warnings:
        log.warning("WAP03", f"Running {tool} emitted warnings logged in '{name}'.")
    return findings


# ----------------------------------------------------------------------
# Internals


def _scan(
    log_file: Path,
    *,
    error: str,
    warning: str,
    bad_box: Optional[str] = None,
) -> Optional[LogFindings]:
    text = _read_log(log_file)
    if text is None:
        return None
    return LogFindings(
        errors=_compile(error).search(text) is not None,
        warnings=_compile(warning).search(text) is not None,
        bad_boxes=bad_box is not None and _compile(bad_box).search(text) is not None,
    )


def _read_log(log_file: Path) -> Optional[str]:
    if not log_file.exists():
        logger.info("No log file %s to scan", log_file.name)
        return None
    try:
        return log_file.read_text(encoding="utf-8", errors="replace")
    except OSError as exc:
        logger.warning("Failed to read log file %s: %s", log_file, exc)
        return None


@lru_cache(maxsize=64)
def _compile(pattern: str) -> re.Pattern[str]:
    return re.compile(pattern, re.MULTILINE)


__all__ = ["LogFindings", "needs_rerun", "scan_latex_log", "scan_tool_log"]
