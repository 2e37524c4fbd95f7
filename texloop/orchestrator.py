"""Builds one or more LaTeX main documents."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from .config import TexLoopConfig
from .diagnostics import DiagnosticLog
from .driver import BuildFailure, BuildOutcome, ConvergenceDriver
from .logging import document_logger, get_logger
from .models import DocumentDescriptor
from .process import ProcessRunner
from .process.runner import Executor


@dataclass
class DocumentResult:
    """Outcome of one document, or the failure that aborted it."""

    descriptor: DocumentDescriptor
    outcome: Optional[BuildOutcome]
    log: DiagnosticLog
    failure: Optional[BuildFailure] = None

    @property
    def success(self) -> bool:
        return self.failure is None and self.outcome is not None and not self.log.has_errors


class Orchestrator:
    """Runs a :class:`ConvergenceDriver` per document.

    Every document gets its own runner and diagnostic log, so documents can
    be built on worker threads without sharing mutable state.
    """

    def __init__(
        self,
        config: TexLoopConfig,
        *,
        executor: Executor | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self.config = config
        self._executor = executor
        self._sleep = sleep
        self.logger = get_logger("orchestrator")

    def build(
        self,
        paths: Sequence[Path | str],
        *,
        jobs: Optional[int] = None,
        max_reruns: Optional[int] = None,
    ) -> List[DocumentResult]:
        """Build every main file in ``paths``; results keep the input order."""
        descriptors = [DocumentDescriptor.from_main_file(path) for path in paths]
        missing = [d.tex_file for d in descriptors if not d.tex_file.is_file()]
        if missing:
            raise FileNotFoundError(
                "LaTeX main file not found: " + ", ".join(str(path) for path in missing)
            )
        workers = max(1, jobs if jobs is not None else self.config.jobs)
        budget = max_reruns if max_reruns is not None else self.config.latex.max_reruns

        if workers == 1 or len(descriptors) <= 1:
            return [self._build_one(descriptor, budget) for descriptor in descriptors]

        self.logger.debug("Building %d documents with %d workers", len(descriptors), workers)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="texloop") as pool:
            return list(pool.map(lambda d: self._build_one(d, budget), descriptors))

    def _build_one(self, descriptor: DocumentDescriptor, max_reruns: Optional[int]) -> DocumentResult:
        log = DiagnosticLog(document_logger(descriptor.stem))
        runner = ProcessRunner(
            log,
            executor=self._executor,
            timeout=self.config.timeout,
            sleep=self._sleep,
        )
        driver = ConvergenceDriver(runner, self.config)
        try:
            outcome = driver.build(descriptor, max_reruns=max_reruns)
        except BuildFailure as exc:
            log.error("TEX01", f"Error running {exc.cause.command}: {exc.cause.detail}")
            return DocumentResult(descriptor=descriptor, outcome=None, log=log, failure=exc)
        return DocumentResult(descriptor=descriptor, outcome=outcome, log=log)


__all__ = ["DocumentResult", "Orchestrator"]
