"""Signal delivery: the ``kill`` path.

``kill`` takes a list of targets, each either a raw PID or a ``%N``
job reference, and forcefully terminates each one with SIGKILL.

Resolution rules:
    - ``%N`` is looked up in the job table.  An unknown job is reported
      and skipped.
    - Anything else must be an integer PID.  PIDs need not be tracked;
      untracked PIDs are signalled all the same.  A negative PID
      (after ``--``) addresses a whole process group.

Design choices:
    - **SIGKILL only**: uncatchable, immediate, no shutdown handshake.
      ``-9``, ``-KILL`` and ``-SIGKILL`` are accepted for familiarity;
      other signals are rejected.
    - **Partial failure is fine**: one bad token never stops the rest
      of the batch.  Errors are collected, not raised.
    - **The table is the single source of truth**: the dispatcher only
      uses its public id/pid operations and never holds a job object.
"""

import os
import signal
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TypeAlias

from py_shell.jobs import JobError, JobTable, parse_job_id
from py_shell.logging import Logger, LogLevel

_SOURCE = "kill"
_JOB_PREFIX = "%"
_END_OF_OPTIONS = "--"
_SIGKILL_SPELLINGS: frozenset[str] = frozenset({"9", "KILL", "SIGKILL"})

KillFunc: TypeAlias = Callable[[int, int], None]


@dataclass
class KillResult:
    """Outcome of one ``kill`` invocation.

    Attributes:
        killed: PIDs that were successfully signalled, in order.
        errors: One diagnostic line per failed token.

    """

    killed: list[int] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """Return whether every token succeeded."""
        return not self.errors


class SignalDispatcher:
    """Resolve ``kill`` targets and terminate them."""

    def __init__(self, jobs: JobTable, *, logger: Logger, kill: KillFunc = os.kill) -> None:
        """Create a dispatcher.

        Args:
            jobs: Job table used to resolve ``%N`` references.
            logger: Event log.
            kill: Function delivering a signal, ``os.kill`` by default.

        """
        self._jobs = jobs
        self._logger = logger
        self._kill = kill

    def kill(self, tokens: list[str]) -> KillResult:
        """Terminate every target named in *tokens*."""
        result = KillResult()
        targets = self._strip_options(tokens, result)
        if targets is None:
            return result
        if not targets:
            result.errors.append("kill: usage: kill [-9] <pid|%job>...")
            return result
        for token in targets:
            pid = self.resolve(token, result)
            if pid is not None:
                self._terminate(pid, result)
        return result

    def resolve(self, token: str, result: KillResult) -> int | None:
        """Turn *token* into a PID, recording an error if it cannot."""
        if token.startswith(_JOB_PREFIX):
            try:
                job = self._jobs.get_by_id(parse_job_id(token))
            except JobError:
                job = None
            if job is None:
                result.errors.append(f"kill: {token}: no such job")
                return None
            return job.pid
        try:
            return int(token)
        except ValueError:
            result.errors.append(f"kill: {token}: arguments must be process or job IDs")
            return None

    def _terminate(self, pid: int, result: KillResult) -> None:
        try:
            self._kill(pid, signal.SIGKILL)
        except (OSError, OverflowError) as e:
            # Pids beyond the platform's pid_t range overflow before reaching the OS.
            reason = (getattr(e, "strerror", None) or str(e)).lower()
            result.errors.append(f"kill: unable to terminate {pid}: {reason}")
            self._logger.log(LogLevel.WARNING, f"SIGKILL failed: {reason}", source=_SOURCE, pid=pid)
            return
        result.killed.append(pid)
        tracked = self._jobs.remove_by_pid(pid)
        self._logger.log(
            LogLevel.INFO,
            "killed tracked job" if tracked else "killed untracked process",
            source=_SOURCE,
            pid=pid,
        )

    @staticmethod
    def _strip_options(tokens: list[str], result: KillResult) -> list[str] | None:
        """Drop a leading signal option and ``--``.

        Returns ``None`` (with an error recorded) for an unsupported
        signal.
        """
        targets = list(tokens)
        if targets and targets[0] == _END_OF_OPTIONS:
            return targets[1:]
        if targets and targets[0].startswith("-"):
            spec = targets[0][1:].upper()
            if spec not in _SIGKILL_SPELLINGS:
                result.errors.append(f"kill: {targets[0]}: only SIGKILL is supported")
                return None
            targets = targets[1:]
            if targets and targets[0] == _END_OF_OPTIONS:
                targets = targets[1:]
        return targets
