"""Subprocess execution with return-code policies and output freshness checks."""

from __future__ import annotations

import os
import subprocess
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Sequence

from ..diagnostics import DiagnosticLog
from ..logging import get_logger

# Many filesystems advance modification times in whole seconds only.
MTIME_RESOLUTION_MS = 1001

ENV_SOURCE_DATE_EPOCH = "SOURCE_DATE_EPOCH"
ENV_FORCE_SOURCE_DATE = "FORCE_SOURCE_DATE"
ENV_TIMEZONE = "TZ"

Executor = Callable[..., "subprocess.CompletedProcess[str]"]


class ExecutionFailure(RuntimeError):
    """Raised when a command cannot be started or awaited (TEX01)."""

    def __init__(self, command: str, detail: str) -> None:
        super().__init__(f"TEX01: Error running {command}: {detail}")
        self.command = command
        self.detail = detail


class SuccessPolicy(Enum):
    """How a return code is interpreted; each member is a pure predicate."""

    NEVER = "never"
    IS_NONZERO = "is_nonzero"
    # chktex: 1 is an execution error, 2 and 3 report findings.
    IS_ONE = "is_one"
    # diff: 0 same, 1 different, anything else is trouble.
    IS_NOT_ZERO_OR_ONE = "is_not_zero_or_one"

    def has_failed(self, returncode: int) -> bool:
        return _POLICY_CHECKS[self](returncode)


_POLICY_CHECKS: Dict[SuccessPolicy, Callable[[int], bool]] = {
    SuccessPolicy.NEVER: lambda code: False,
    SuccessPolicy.IS_NONZERO: lambda code: code != 0,
    SuccessPolicy.IS_ONE: lambda code: code == 1,
    SuccessPolicy.IS_NOT_ZERO_OR_ONE: lambda code: code not in (0, 1),
}


@dataclass(frozen=True)
class CmdResult:
    """Captured output and return code of one invocation."""

    output: str
    returncode: int
    policy: SuccessPolicy = SuccessPolicy.IS_NONZERO

    @property
    def success(self) -> bool:
        return not self.policy.has_failed(self.returncode)


@dataclass(frozen=True)
class _TargetState:
    path: Path
    existed: bool
    mtime_ms: Optional[int]


def reproducible_env(timestamp_ms: int) -> Dict[str, str]:
    """Environment that makes TeX tools embed ``timestamp_ms`` instead of now."""
    return {
        ENV_SOURCE_DATE_EPOCH: str(timestamp_ms // 1000),
        ENV_FORCE_SOURCE_DATE: "1",
        ENV_TIMEZONE: "UTC",
    }


class ProcessRunner:
    """Runs external tools and verifies that declared outputs were refreshed.

    Diagnostics go to ``log``. Instances are meant for one document at a time
    and must not be shared between threads.

    ``sleep`` waits out the modification-time resolution before a run. The
    default ``time.sleep`` is never cut short; a replacement that can be
    cancelled signals an early return by raising ``InterruptedError``, which
    is recorded as ``WEX05``.
    """

    def __init__(
        self,
        log: DiagnosticLog | None = None,
        *,
        executor: Executor | None = None,
        timeout: Optional[float] = None,
        clock: Callable[[], float] | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self.log = log if log is not None else DiagnosticLog()
        self.timeout = timeout
        self._executor = executor or self._default_executor
        self._clock = clock or time.time
        self._sleep = sleep or time.sleep
        self.logger = get_logger("process")

    def run(
        self,
        working_dir: Path | None,
        command: str,
        args: Sequence[str] = (),
        *,
        path_to_executable: Path | None = None,
        env: Mapping[str, str] | None = None,
        policy: SuccessPolicy = SuccessPolicy.IS_NONZERO,
        declared_outputs: Sequence[Path] = (),
        timestamp_ms: Optional[int] = None,
        inherit_env: bool = True,
    ) -> CmdResult:
        """Run ``command`` with ``args`` in ``working_dir``.

        Raises :class:`ExecutionFailure` only if the process cannot be started
        or awaited. A failing return code per ``policy`` is recorded as EEX01.
        Each declared output is checked afterwards: EEX02 if it is missing,
        EEX03 if it existed and was not updated, WEX04 if its modification
        time cannot be read.
        """
        if declared_outputs and working_dir is None:
            raise ValueError("A working directory is required when outputs are declared.")

        states = [self._target_state(Path(target)) for target in declared_outputs]
        self._await_timestamp_resolution(states)

        result = self._execute(
            working_dir,
            command,
            args,
            path_to_executable=path_to_executable,
            env=env,
            policy=policy,
            timestamp_ms=timestamp_ms,
            inherit_env=inherit_env,
        )

        for state in states:
            self._is_updated_or_warn(command, state)
        return result

    # ------------------------------------------------------------------
    # Internals

    def _execute(
        self,
        working_dir: Path | None,
        command: str,
        args: Sequence[str],
        *,
        path_to_executable: Path | None,
        env: Mapping[str, str] | None,
        policy: SuccessPolicy,
        timestamp_ms: Optional[int],
        inherit_env: bool,
    ) -> CmdResult:
        executable = str(Path(path_to_executable) / command) if path_to_executable else command
        argv: List[str] = [executable, *args]

        overlay: Dict[str, str] = dict(env or {})
        if timestamp_ms is not None:
            stamp = datetime.fromtimestamp(timestamp_ms / 1000, tz=UTC)
            self.logger.info(
                "Run with timestamp %s (%dms)", stamp.strftime("%Y %m %d %H:%M:%S"), timestamp_ms
            )
            overlay.update(reproducible_env(timestamp_ms))
        full_env: Optional[Dict[str, str]] = None
        if overlay or not inherit_env:
            full_env = dict(os.environ) if inherit_env else {}
            full_env.update(overlay)

        self.logger.debug("Executing: %s in: %s", " ".join(argv), working_dir)
        try:
            completed = self._executor(
                argv,
                cwd=working_dir,
                env=full_env,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as exc:
            raise ExecutionFailure(command, f"timed out after {exc.timeout}s") from exc
        except (OSError, subprocess.SubprocessError) as exc:
            raise ExecutionFailure(command, str(exc)) from exc

        output = completed.stdout or ""
        returncode = completed.returncode
        if policy.has_failed(returncode):
            self.log.error(
                "EEX01", f"Running {command} failed with return code {returncode}."
            )
        self.logger.debug("Output:\n%s", output)
        return CmdResult(output=output, returncode=returncode, policy=policy)

    def _target_state(self, target: Path) -> _TargetState:
        if not target.exists():
            return _TargetState(path=target, existed=False, mtime_ms=None)
        return _TargetState(path=target, existed=True, mtime_ms=self._mtime_ms_or_none(target))

    def _await_timestamp_resolution(self, states: Sequence[_TargetState]) -> None:
        now_ms = int(self._clock() * 1000)
        ages = [now_ms - state.mtime_ms for state in states if state.mtime_ms is not None]
        if not ages:
            return
        # An mtime in the future counts as just written; the wait never exceeds
        # one resolution interval.
        youngest = max(min(ages), 0)
        if youngest >= MTIME_RESOLUTION_MS:
            return
        delay_ms = MTIME_RESOLUTION_MS - youngest
        self.logger.debug("Sleeping %dms so that target updates are detectable", delay_ms)
        try:
            self._sleep(delay_ms / 1000)
        except InterruptedError:
            self.log.warning("WEX05", "Update control may emit false warnings.")

    def _mtime_ms_or_none(self, target: Path) -> Optional[int]:
        try:
            return target.lstat().st_mtime_ns // 1_000_000
        except OSError:
            self.log.warning(
                "WEX04", f"Cannot read target file '{target.name}'; may be outdated."
            )
            return None

    def _exists_or_error(self, command: str, target: Path) -> bool:
        if target.exists():
            return True
        self.log.error(
            "EEX02", f"Running {command} failed: No target file '{target.name}' written."
        )
        return False

    def _is_updated_or_warn(self, command: str, state: _TargetState) -> bool:
        if not self._exists_or_error(command, state.path):
            return False
        if not state.existed:
            return True
        if state.mtime_ms is None:
            return False
        after_ms = self._mtime_ms_or_none(state.path)
        if after_ms is None:
            return False
        if after_ms <= state.mtime_ms:
            self.log.error(
                "EEX03",
                f"Running {command} failed: Target file '{state.path.name}' is not updated.",
            )
            return False
        return True

    @staticmethod
    def _default_executor(
        args: Sequence[str],
        *,
        cwd: Path | None,
        env: Mapping[str, str] | None = None,
        timeout: Optional[float] = None,
    ) -> "subprocess.CompletedProcess[str]":
        return subprocess.run(
            list(args),
            cwd=str(cwd) if cwd is not None else None,
            env=dict(env) if env is not None else None,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            errors="replace",
            timeout=timeout,
            check=False,
        )


__all__ = [
    "CmdResult",
    "ExecutionFailure",
    "MTIME_RESOLUTION_MS",
    "ProcessRunner",
    "SuccessPolicy",
    "reproducible_env",
]
