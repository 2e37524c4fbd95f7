"""Fixed-point loop of LaTeX passes and auxiliary tool runs."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from .auxiliary import AuxiliaryKind, KindState
from .config import DEFAULT_MAX_RERUNS, TexLoopConfig
from .diagnostics import Diagnostic, Severity
from .logging import get_logger
from .logscan import needs_rerun, scan_latex_log
from .models import DocumentDescriptor
from .process import ExecutionFailure, ProcessRunner
from .signature import ContentSignature


class BuildFailure(RuntimeError):
    """Raised when a build is aborted because a tool could not be executed."""

    def __init__(
        self,
        descriptor: DocumentDescriptor,
        cause: ExecutionFailure,
        *,
        compiler_runs: int = 0,
    ) -> None:
        super().__init__(f"Building {descriptor} failed: {cause}")
        self.descriptor = descriptor
        self.cause = cause
        self.compiler_runs = compiler_runs


@dataclass
class BuildOutcome:
    """Summary of one document build."""

    descriptor: DocumentDescriptor
    converged: bool
    compiler_runs: int
    tool_runs: Dict[AuxiliaryKind, int]
    diagnostics: Tuple[Diagnostic, ...]
    output_file: Path
    trace: List[Dict[AuxiliaryKind, KindState]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not any(entry.severity is Severity.ERROR for entry in self.diagnostics)


@dataclass
class _LoopState:
    signatures: Dict[AuxiliaryKind, ContentSignature] = field(default_factory=dict)
    tool_runs: Dict[AuxiliaryKind, int] = field(
        default_factory=lambda: {kind: 0 for kind in AuxiliaryKind}
    )
    trace: List[Dict[AuxiliaryKind, KindState]] = field(default_factory=list)
    compiler_runs: int = 0
    owed: int = 0


class ConvergenceDriver:
    """Alternates compiler passes and auxiliary tools until nothing changes.

    After every pass each :class:`AuxiliaryKind` is checked in declaration
    order. A kind whose input signature changed has its tool run and makes
    the driver owe that kind's number of further passes. The loop ends when
    an iteration neither invokes a tool nor owes a pass, or when the rerun
    budget is spent.
    """

    def __init__(self, runner: ProcessRunner, config: TexLoopConfig | None = None) -> None:
        self.runner = runner
        self.config = config or TexLoopConfig(root=Path.cwd())
        self.logger = get_logger("driver")

    def build(
        self,
        descriptor: DocumentDescriptor,
        max_reruns: Optional[int] = DEFAULT_MAX_RERUNS,
    ) -> BuildOutcome:
        """Build ``descriptor``; ``max_reruns`` of ``None`` or ``-1`` is unbounded.

        At most ``max_reruns + 1`` compiler passes are made. Raises
        :class:`BuildFailure` if a tool cannot be executed and ``ValueError``
        for any other negative budget.
        """
        if max_reruns == -1:
            max_reruns = None
        elif max_reruns is not None and max_reruns < 0:
            raise ValueError(f"max_reruns must be non-negative or -1, got {max_reruns}")
        log = self.runner.log
        state = _LoopState()
        converged = False

        self.logger.info("Building %s", descriptor)
        try:
            self._compile(descriptor, state)
            while True:
                invoked = self._run_auxiliaries(descriptor, state)
                if needs_rerun(descriptor.log_file, self.config.patterns.latex_needs_rerun):
                    self.logger.debug("Compiler log of %s requests a rerun", descriptor)
                    state.owed = max(state.owed, 1)

                if not invoked and state.owed == 0:
                    converged = True
                    break
                if max_reruns is not None and state.compiler_runs - 1 >= max_reruns:
                    log.warning(
                        "WLP01",
                        f"Stopped building '{descriptor}' after {max_reruns} reruns; "
                        "output may not be up to date.",
                    )
                    break
                self._compile(descriptor, state)
                state.owed = max(state.owed - 1, 0)
        except ExecutionFailure as exc:
            raise BuildFailure(descriptor, exc, compiler_runs=state.compiler_runs) from exc

        scan_latex_log(descriptor.log_file, self.config.patterns, log)
        self.logger.info(
            "Finished %s after %d compiler run(s)%s",
            descriptor,
            state.compiler_runs,
            "" if converged else " without converging",
        )
        return BuildOutcome(
            descriptor=descriptor,
            converged=converged,
            compiler_runs=state.compiler_runs,
            tool_runs=dict(state.tool_runs),
            diagnostics=tuple(log.entries),
            output_file=descriptor.output_file(self.config.latex.output_format),
            trace=state.trace,
        )

    # ------------------------------------------------------------------
    # Internals

    def _compile(self, descriptor: DocumentDescriptor, state: _LoopState) -> None:
        latex = self.config.latex
        state.compiler_runs += 1
        self.logger.info("Running %s on %s (pass %d)", latex.command, descriptor, state.compiler_runs)
        self.runner.run(
            descriptor.parent_dir,
            latex.command,
            [*latex.args, descriptor.tex_file.name],
            path_to_executable=self.config.tex_path,
            declared_outputs=(descriptor.log_file, descriptor.output_file(latex.output_format)),
            timestamp_ms=self.config.timestamp_ms,
        )

    def _run_auxiliaries(self, descriptor: DocumentDescriptor, state: _LoopState) -> bool:
        log = self.runner.log
        states: Dict[AuxiliaryKind, KindState] = {kind: KindState.NOT_CHECKED for kind in AuxiliaryKind}
        state.trace.append(states)
        invoked = False

        for kind in AuxiliaryKind:
            if not kind.trigger_file(descriptor).exists() or not kind.must_run(descriptor, log):
                states[kind] = KindState.CHECKED_NOT_NEEDED
                continue
            signature = kind.signature(descriptor, log)
            if state.signatures.get(kind) == signature:
                states[kind] = KindState.CHECKED_NEEDED_UNCHANGED
                continue
            states[kind] = KindState.CHECKED_NEEDED_CHANGED

            errors_before = _error_count(log.entries)
            if not kind.invoke_tool(descriptor, self.runner, self.config):
                continue
            invoked = True
            state.tool_runs[kind] += 1
            state.signatures[kind] = signature
            states[kind] = (
                KindState.TOOL_OUTPUT_VERIFIED
                if _error_count(log.entries) == errors_before
                else KindState.TOOL_INVOKED
            )

            owed = kind.reruns_after
            if kind.toc_entry and descriptor.toc_file.exists():
                owed += 1
            state.owed = max(state.owed, owed)
        return invoked


def _error_count(entries: Sequence[Diagnostic]) -> int:
    return sum(1 for entry in entries if entry.severity is Severity.ERROR)


__all__ = ["BuildFailure", "BuildOutcome", "ConvergenceDriver"]
