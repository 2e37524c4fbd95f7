"""Auxiliary programs run between LaTeX passes.

Each :class:`AuxiliaryKind` is described by a row of ``_BEHAVIOURS``: the
file whose existence triggers it, the predicate deciding whether it is
needed, the lines its signature covers, and how its tool is invoked.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from re import Pattern
from typing import Callable, Dict, Optional, Sequence

from .config import TexLoopConfig, ToolConfig
from .diagnostics import DiagnosticLog
from .logging import get_logger
from .logscan import scan_tool_log
from .models import SUFFIX_AUX, SUFFIX_IDX, SUFFIX_PYTXCODE, DocumentDescriptor
from .patterns import (
    BIBLIOGRAPHY_NEEDED,
    BIBLIOGRAPHY_RELEVANT,
    GLOSSARY_DECLARED,
    GLOSSARY_NEEDED,
    SPLIT_INDEX_ENTRY,
)
from .process import ProcessRunner
from .signature import ALL_LINES, ContentSignature, LineFilter, compute_signature

logger = get_logger("auxiliary")


class KindState(Enum):
    """Progress of one auxiliary kind within a single driver iteration."""

    NOT_CHECKED = "not_checked"
    CHECKED_NOT_NEEDED = "checked_not_needed"
    CHECKED_NEEDED_UNCHANGED = "checked_needed_unchanged"
    CHECKED_NEEDED_CHANGED = "checked_needed_changed"
    TOOL_INVOKED = "tool_invoked"
    TOOL_OUTPUT_VERIFIED = "tool_output_verified"


class AuxiliaryKind(Enum):
    """Closed set of auxiliary programs, checked in declaration order."""

    BIBLIOGRAPHY = "bibliography"
    INDEX = "index"
    GLOSSARY = "glossary"
    EMBEDDED_CODE = "embedded_code"

    @property
    def reruns_after(self) -> int:
        return _BEHAVIOURS[self].reruns_after

    @property
    def toc_entry(self) -> bool:
        return _BEHAVIOURS[self].toc_entry

    def trigger_file(self, descriptor: DocumentDescriptor) -> Path:
        return descriptor.with_suffix(_BEHAVIOURS[self].trigger_suffix)

    def must_run(self, descriptor: DocumentDescriptor, log: DiagnosticLog) -> bool:
        """Return whether the tool is needed at all for ``descriptor``.

        Kinds without a marker pattern are needed whenever their trigger file
        exists. If the trigger cannot be read the answer is ``True`` and a
        ``WFU02`` warning is recorded.
        """
        behaviour = _BEHAVIOURS[self]
        trigger = self.trigger_file(descriptor)
        if behaviour.needed is None:
            return trigger.exists()
        try:
            return _file_contains(trigger, behaviour.needed)
        except OSError as exc:
            log.warning(
                "WFU02",
                f"Cannot read '{trigger.name}' to decide whether to run the "
                f"{self.value} tool; running it anyway ({exc}).",
            )
            return True

    def signature(self, descriptor: DocumentDescriptor, log: DiagnosticLog) -> ContentSignature:
        behaviour = _BEHAVIOURS[self]
        return compute_signature(
            self.trigger_file(descriptor),
            behaviour.line_filter,
            recurse=behaviour.recurse,
            log=log,
        )

    def invoke_tool(
        self,
        descriptor: DocumentDescriptor,
        runner: ProcessRunner,
        config: TexLoopConfig,
    ) -> bool:
        """Run this kind's tool; returns ``False`` when the tool is disabled.

        :class:`~texloop.process.ExecutionFailure` propagates to the caller.
        """
        return _BEHAVIOURS[self].invoke(descriptor, runner, config)


@dataclass(frozen=True)
class _KindBehaviour:
    trigger_suffix: str
    needed: Optional[Pattern[str]]
    line_filter: LineFilter
    recurse: bool
    invoke: Callable[[DocumentDescriptor, ProcessRunner, TexLoopConfig], bool]
    reruns_after: int
    toc_entry: bool


# ----------------------------------------------------------------------
# Tool invocations


def _run_bibtex(
    descriptor: DocumentDescriptor, runner: ProcessRunner, config: TexLoopConfig
) -> bool:
    if not _run_tool(
        "bibtex",
        config.bibtex,
        descriptor.stem,
        descriptor,
        runner,
        config,
        outputs=(descriptor.bbl_file, descriptor.blg_file),
    ):
        return False
    scan_tool_log(
        descriptor.blg_file,
        config.bibtex.command or "bibtex",
        config.patterns.bibtex_error,
        config.patterns.bibtex_warning,
        runner.log,
    )
    return True


def _run_index(
    descriptor: DocumentDescriptor, runner: ProcessRunner, config: TexLoopConfig
) -> bool:
    idx_name = descriptor.idx_file.name
    if _is_split_index(descriptor.idx_file):
        # splitindex writes one index per name; their files are not predictable.
        return _run_tool("splitindex", config.splitindex, idx_name, descriptor, runner, config)
    if not _run_tool(
        "makeindex",
        config.makeindex,
        idx_name,
        descriptor,
        runner,
        config,
        outputs=(descriptor.ind_file, descriptor.ilg_file),
    ):
        return False
    scan_tool_log(
        descriptor.ilg_file,
        config.makeindex.command or "makeindex",
        config.patterns.makeindex_error,
        config.patterns.makeindex_warning,
        runner.log,
    )
    return True


def _run_glossary(
    descriptor: DocumentDescriptor, runner: ProcessRunner, config: TexLoopConfig
) -> bool:
    if not _run_tool(
        "makeglossaries",
        config.makeglossaries,
        descriptor.stem,
        descriptor,
        runner,
        config,
        outputs=(descriptor.gls_file, descriptor.glg_file),
    ):
        return False
    scan_tool_log(
        descriptor.glg_file,
        config.makeglossaries.command or "makeglossaries",
        config.patterns.makeindex_error,
        config.patterns.makeindex_warning,
        runner.log,
    )
    return True


def _run_embedded_code(
    descriptor: DocumentDescriptor, runner: ProcessRunner, config: TexLoopConfig
) -> bool:
    return _run_tool("pythontex", config.pythontex, descriptor.stem, descriptor, runner, config)


def _run_tool(
    label: str,
    tool: ToolConfig,
    target: str,
    descriptor: DocumentDescriptor,
    runner: ProcessRunner,
    config: TexLoopConfig,
    *,
    outputs: Sequence[Path] = (),
) -> bool:
    if not tool.enabled:
        logger.info("Skipping %s for %s: no command configured", label, descriptor)
        return False
    command = str(tool.command)
    logger.info("Running %s on %s", command, target)
    runner.run(
        descriptor.parent_dir,
        command,
        [*tool.args, target],
        path_to_executable=config.tex_path,
        declared_outputs=outputs,
    )
    return True


def _is_split_index(idx_file: Path) -> bool:
    try:
        return _file_contains(idx_file, SPLIT_INDEX_ENTRY)
    except OSError as exc:
        logger.warning("Cannot inspect %s for named indices: %s", idx_file.name, exc)
        return False


def _file_contains(path: Path, pattern: Pattern[str]) -> bool:
    with path.open("r", encoding="utf-8", errors="surrogateescape") as handle:
        return any(pattern.search(line.rstrip("\n")) for line in handle)


_BEHAVIOURS: Dict[AuxiliaryKind, _KindBehaviour] = {
    AuxiliaryKind.BIBLIOGRAPHY: _KindBehaviour(
        trigger_suffix=SUFFIX_AUX,
        needed=BIBLIOGRAPHY_NEEDED,
        line_filter=LineFilter(pattern=BIBLIOGRAPHY_RELEVANT),
        recurse=True,
        invoke=_run_bibtex,
        reruns_after=2,
        toc_entry=True,
    ),
    AuxiliaryKind.INDEX: _KindBehaviour(
        trigger_suffix=SUFFIX_IDX,
        needed=None,
        line_filter=ALL_LINES,
        recurse=False,
        invoke=_run_index,
        reruns_after=1,
        toc_entry=True,
    ),
    AuxiliaryKind.GLOSSARY: _KindBehaviour(
        trigger_suffix=SUFFIX_AUX,
        needed=GLOSSARY_NEEDED,
        line_filter=LineFilter(pattern=GLOSSARY_DECLARED, companion=GLOSSARY_DECLARED),
        recurse=False,
        invoke=_run_glossary,
        reruns_after=1,
        toc_entry=True,
    ),
    AuxiliaryKind.EMBEDDED_CODE: _KindBehaviour(
        trigger_suffix=SUFFIX_PYTXCODE,
        needed=None,
        line_filter=ALL_LINES,
        recurse=False,
        invoke=_run_embedded_code,
        reruns_after=1,
        toc_entry=False,
    ),
}


__all__ = ["AuxiliaryKind", "KindState"]
