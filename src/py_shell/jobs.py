"""Job control: shell-level tracking of background pipelines.

In Unix, a "job" is a shell concept layered on top of OS processes.
When you run ``sleep 60 &``, the shell spawns a process *and* records
a job entry so you can refer to it later as ``%1``.

Key ideas:
    - **Jobs are not processes**: a job wraps the *last* stage of a
      backgrounded pipeline, whose exit status represents the job.
    - **Job numbers are small**: ``[1]``, ``[2]``, etc., for human
      convenience (unlike PIDs which can be large).
    - **Job status**: RUNNING until the job is explicitly removed
      (waited on by ``fg``, killed, or removed by id/pid), then DONE.
      There is no polling of external exit and no STOPPED state.

Design choices:
    - ``JobTable`` is owned by the shell, not by any global: several
      shells can coexist in one test process.
    - Auto-incrementing job IDs via ``itertools.count``; ids are never
      reused, even after removal.
    - One lock guards every operation, and readers receive *copies*
      of jobs so nobody holds a reference into the table.
"""

import threading
from dataclasses import dataclass, replace
from enum import StrEnum
from itertools import count

_JOB_PREFIX = "%"


class JobError(Exception):
    """Raised for invalid job references or job table conflicts."""


class JobStatus(StrEnum):
    """Status of a shell job."""

    RUNNING = "Running"
    DONE = "Done"


@dataclass
class Job:
    """A shell job wrapping the last process of a background pipeline.

    Attributes:
        job_id: Small human-friendly job number ([1], [2], ...).
        pid: OS process id of the pipeline's last stage.
        command: The full command line, used as the display label.
        status: Current job status.

    """

    job_id: int
    pid: int
    command: str
    status: JobStatus = JobStatus.RUNNING

    def __str__(self) -> str:
        """Format as ``[id] (pid) status command``."""
        return f"[{self.job_id}] ({self.pid}) {self.status} {self.command}"


def parse_job_id(token: str) -> int:
    """Parse a job reference such as ``3`` or ``%3``.

    Raises:
        JobError: If the token is not a positive integer reference.

    """
    raw = token.removeprefix(_JOB_PREFIX)
    if not (raw.isascii() and raw.isdigit()):
        msg = f"{token}: no such job"
        raise JobError(msg)
    return int(raw)


class JobTable:
    """Track background jobs for the shell.

    The table maps job ids to jobs.  It is safe to call from several
    threads: ``add`` from the executor may race with ``list_jobs`` or
    ``remove_by_pid`` from the kill path.
    """

    def __init__(self) -> None:
        """Create an empty job table."""
        self._jobs: dict[int, Job] = {}
        self._counter = count(start=1)
        self._lock = threading.Lock()

    def add(self, *, pid: int, command: str) -> int:
        """Register a newly spawned background pipeline.

        Args:
            pid: OS process id of the pipeline's last stage.
            command: The command line that started the job.

        Returns:
            The newly issued job id.

        Raises:
            JobError: If a running job already tracks *pid*.

        """
        with self._lock:
            if any(j.pid == pid for j in self._jobs.values()):
                msg = f"pid {pid} is already tracked"
                raise JobError(msg)
            job_id = next(self._counter)
            self._jobs[job_id] = Job(job_id=job_id, pid=pid, command=command)
            return job_id

    def get_by_id(self, job_id: int) -> Job | None:
        """Return a copy of the job with *job_id*, or None."""
        with self._lock:
            job = self._jobs.get(job_id)
            return replace(job) if job is not None else None

    def get_by_pid(self, pid: int) -> Job | None:
        """Return a copy of the job tracking *pid*, or None.

        A linear scan; job counts are small.
        """
        with self._lock:
            job = self._find_pid(pid)
            return replace(job) if job is not None else None

    def remove_by_id(self, job_id: int) -> bool:
        """Remove a job by id.  Return whether it was tracked."""
        with self._lock:
            job = self._jobs.pop(job_id, None)
            if job is None:
                return False
            job.status = JobStatus.DONE
            return True

    def remove_by_pid(self, pid: int) -> bool:
        """Remove the job tracking *pid*.  Return whether one was tracked."""
        with self._lock:
            job = self._find_pid(pid)
            if job is None:
                return False
            del self._jobs[job.job_id]
            job.status = JobStatus.DONE
            return True

    def list_jobs(self) -> list[Job]:
        """Return a snapshot of all tracked jobs in insertion order."""
        with self._lock:
            return [replace(j) for j in self._jobs.values()]

    def __len__(self) -> int:
        """Return the number of tracked jobs."""
        with self._lock:
            return len(self._jobs)

    def _find_pid(self, pid: int) -> Job | None:
        # Caller holds the lock.
        return next((j for j in self._jobs.values() if j.pid == pid), None)
