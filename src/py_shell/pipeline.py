"""Pipeline execution: spawning stages and wiring their streams.

A pipeline such as ``cat log | grep error | wc -l`` becomes one OS
process per stage.  Stage *i*'s standard output is connected to stage
*i+1*'s standard input, and the last stage's output is what the user
sees.

Two ways to connect adjacent stages:

    - **Native pipes** (default): the downstream process is spawned
      with the upstream's stdout pipe as its stdin.  The kernel moves
      the bytes; the shell never touches them.
    - **Relay threads**: every stage gets its own pipes and a daemon
      thread per link copies bytes from upstream to downstream.  The
      relays run *concurrently* with the stages; copying only after a
      stage exits would deadlock once an OS pipe buffer fills up.

Foreground vs background:
    - **Foreground**: an output pump thread drains the last stage and
      echoes it to the shell's stdout.  It is started before any wait
      so output streams while the stages run.  Every stage is waited
      so no zombies are left behind.
    - **Background**: the stages get their own process group and
      ``/dev/null`` as input, a job is registered for the last stage,
      ``[job] pid`` is printed and control returns at once.  A reaper
      thread collects exit statuses; the job table is not touched until
      the user removes the job.

Spawn failure:
    If any stage cannot be started, the remaining stages are skipped
    and the ones already running are killed and reaped.  No job is
    registered.
"""

import codecs
import contextlib
import os
import subprocess
import threading
from dataclasses import dataclass, field
from typing import IO, TextIO

from py_shell.jobs import JobError, JobTable
from py_shell.logging import Logger, LogLevel
from py_shell.parser import ParsedCommand, Pipeline

_SOURCE = "executor"

# Bytes moved per read by relay and output threads.
_CHUNK_SIZE = 64 * 1024

# Conventional shell exit statuses.
EXIT_NOT_EXECUTABLE = 126
EXIT_NOT_FOUND = 127
_SIGNAL_BASE = 128


class SpawnError(Exception):
    """Raised when a pipeline stage cannot be started.

    Attributes:
        name: The command that failed to start.
        reason: Human-readable cause.
        status: Shell exit status for the failure (126 or 127).

    """

    def __init__(self, name: str, reason: str, *, status: int) -> None:
        """Create a spawn error for command *name*."""
        super().__init__(f"{name}: {reason}")
        self.name = name
        self.reason = reason
        self.status = status


def exit_status(returncode: int) -> int:
    """Convert a ``Popen.returncode`` to a shell exit status.

    Processes killed by signal *N* report ``-N``; shells show ``128+N``.
    """
    return returncode if returncode >= 0 else _SIGNAL_BASE - returncode


@dataclass
class _Launch:
    """The processes and helper threads belonging to one pipeline."""

    processes: list[subprocess.Popen[bytes]] = field(default_factory=list)
    threads: list[threading.Thread] = field(default_factory=list)

    @property
    def last(self) -> subprocess.Popen[bytes]:
        return self.processes[-1]

    def wait_all(self) -> int:
        """Wait for every stage; return the last stage's exit status."""
        for proc in self.processes:
            proc.wait()
        return exit_status(self.last.returncode)

    def kill_all(self) -> None:
        for proc in self.processes:
            with contextlib.suppress(ProcessLookupError):
                proc.kill()

    def join_threads(self) -> None:
        for thread in self.threads:
            thread.join()

    def close_pipes(self) -> None:
        for proc in self.processes:
            for stream in (proc.stdin, proc.stdout):
                if stream is not None:
                    with contextlib.suppress(OSError):
                        stream.close()


@dataclass
class _Detached:
    """A background pipeline and the thread reaping its stages."""

    launch: _Launch
    reaper: threading.Thread


class PipelineExecutor:
    """Spawn pipelines of external commands and manage their lifetime.

    The executor is owned by a shell.  It writes job notifications and
    foreground output to the shell's ``stdout`` and diagnostics from
    its helper threads to ``stderr``.
    """

    def __init__(
        self,
        *,
        jobs: JobTable,
        logger: Logger,
        stdout: TextIO,
        stderr: TextIO,
        native_pipes: bool = True,
    ) -> None:
        """Create an executor.

        Args:
            jobs: Table that background pipelines are registered in.
            logger: Event log for spawn/relay/exit events.
            stdout: Stream receiving foreground output and job notices.
            stderr: Stream receiving relay diagnostics.
            native_pipes: Connect stages with OS pipes (``True``) or
                with relay threads (``False``).

        """
        self._jobs = jobs
        self._logger = logger
        self._stdout = stdout
        self._stderr = stderr
        self._native_pipes = native_pipes
        self._detached: dict[int, _Detached] = {}
        self._lock = threading.Lock()

    @property
    def native_pipes(self) -> bool:
        """Return whether stages are connected with OS pipes."""
        return self._native_pipes

    def run(self, pipeline: Pipeline, *, cwd: str, env: dict[str, str]) -> int:
        """Execute *pipeline* in directory *cwd* with environment *env*.

        Returns:
            The last stage's exit status for a foreground pipeline, or
            ``0`` once a background pipeline has been spawned.

        Raises:
            SpawnError: If a stage could not be started.

        """
        launch = self._spawn_all(pipeline, cwd=cwd, env=env)
        if pipeline.background:
            return self._detach(pipeline, launch)
        return self._wait_foreground(launch)

    def wait(self, pid: int) -> int:
        """Block until the background pipeline ending in *pid* exits.

        Returns:
            The exit status of the pipeline's last stage.

        Raises:
            JobError: If *pid* was not started in the background here.

        """
        with self._lock:
            record = self._detached.pop(pid, None)
        if record is None:
            msg = f"pid {pid} is not a background child of this shell"
            raise JobError(msg)
        try:
            status = record.launch.wait_all()
        except KeyboardInterrupt:
            with self._lock:
                self._detached[pid] = record
            raise
        record.reaper.join()
        self._logger.log(LogLevel.INFO, f"exited with status {status}", source=_SOURCE, pid=pid)
        return status

    def discard(self, pid: int) -> None:
        """Forget the background pipeline ending in *pid*, if any."""
        with self._lock:
            self._detached.pop(pid, None)

    # -- spawning ----------------------------------------------------------

    def _spawn_all(self, pipeline: Pipeline, *, cwd: str, env: dict[str, str]) -> _Launch:
        launch = _Launch()
        last_index = len(pipeline) - 1
        try:
            for index, stage in enumerate(pipeline.stages):
                upstream = launch.processes[-1] if launch.processes else None
                if upstream is None:
                    stdin: int | IO[bytes] | None = (
                        subprocess.DEVNULL if pipeline.background else None
                    )
                elif self._native_pipes:
                    stdin = upstream.stdout
                else:
                    stdin = subprocess.PIPE
                # A background pipeline's last stage writes straight to the terminal.
                last_inherits = index == last_index and pipeline.background
                proc = self._spawn(
                    stage,
                    cwd=cwd,
                    env=env,
                    stdin=stdin,
                    stdout=None if last_inherits else subprocess.PIPE,
                    process_group=self._group_for(launch, background=pipeline.background),
                )
                launch.processes.append(proc)
                if upstream is not None:
                    self._connect(upstream, proc, launch)
        except SpawnError:
            self._abort(launch)
            raise
        return launch

    @staticmethod
    def _group_for(launch: _Launch, *, background: bool) -> int | None:
        """Return the process group a new stage should join."""
        if not background:
            return None
        # 0 makes the first stage a group leader; later stages join it.
        return launch.processes[0].pid if launch.processes else 0

    def _spawn(
        self,
        stage: ParsedCommand,
        *,
        cwd: str,
        env: dict[str, str],
        stdin: int | IO[bytes] | None,
        stdout: int | None,
        process_group: int | None,
    ) -> subprocess.Popen[bytes]:
        try:
            proc = subprocess.Popen(  # noqa: S603
                stage.argv,
                cwd=cwd,
                env=env,
                stdin=stdin,
                stdout=stdout,
                process_group=process_group,
            )
        except FileNotFoundError as e:
            reason = f"{cwd}: no such directory" if e.filename == cwd else "command not found"
            raise SpawnError(stage.name, reason, status=EXIT_NOT_FOUND) from e
        except OSError as e:
            reason = (e.strerror or str(e)).lower()
            raise SpawnError(stage.name, reason, status=EXIT_NOT_EXECUTABLE) from e
        except (ValueError, subprocess.SubprocessError) as e:
            raise SpawnError(stage.name, str(e), status=EXIT_NOT_EXECUTABLE) from e
        self._logger.log(LogLevel.INFO, f"spawned {stage.original}", source=_SOURCE, pid=proc.pid)
        return proc

    def _connect(
        self,
        upstream: subprocess.Popen[bytes],
        downstream: subprocess.Popen[bytes],
        launch: _Launch,
    ) -> None:
        """Link *upstream*'s output to *downstream*'s input."""
        source = upstream.stdout
        assert source is not None
        if self._native_pipes:
            # The downstream process now holds the read end; drop ours so
            # the upstream sees SIGPIPE if the downstream exits early.
            source.close()
            return
        sink = downstream.stdin
        assert sink is not None
        relay = threading.Thread(
            target=self._relay,
            args=(source, sink, upstream.pid),
            name=f"relay-{upstream.pid}-{downstream.pid}",
            daemon=True,
        )
        relay.start()
        launch.threads.append(relay)

    def _abort(self, launch: _Launch) -> None:
        """Kill and reap the stages of a partially spawned pipeline."""
        launch.kill_all()
        for proc in launch.processes:
            proc.wait()
        launch.join_threads()
        launch.close_pipes()
        self._logger.log(
            LogLevel.WARNING,
            f"aborted pipeline after spawning {len(launch.processes)} stage(s)",
            source=_SOURCE,
        )

    # -- completion --------------------------------------------------------

    def _wait_foreground(self, launch: _Launch) -> int:
        output = launch.last.stdout
        assert output is not None
        pump = threading.Thread(
            target=self._pump_output,
            args=(output,),
            name=f"output-{launch.last.pid}",
            daemon=True,
        )
        pump.start()
        launch.threads.append(pump)
        try:
            status = launch.wait_all()
        except KeyboardInterrupt:
            launch.kill_all()
            launch.wait_all()
            launch.join_threads()
            raise
        launch.join_threads()
        self._logger.log(
            LogLevel.DEBUG, f"exited with status {status}", source=_SOURCE, pid=launch.last.pid
        )
        return status

    def _detach(self, pipeline: Pipeline, launch: _Launch) -> int:
        pid = launch.last.pid
        if self._jobs.remove_by_pid(pid):
            # The OS recycled the pid of a job whose process already exited.
            self._logger.log(LogLevel.WARNING, "dropped stale job", source=_SOURCE, pid=pid)
        job_id = self._jobs.add(pid=pid, command=pipeline.original)
        reaper = threading.Thread(target=launch.wait_all, name=f"reaper-{pid}", daemon=True)
        reaper.start()
        with self._lock:
            self._detached[pid] = _Detached(launch=launch, reaper=reaper)
        self._stdout.write(f"[{job_id}] {pid}\n")
        self._stdout.flush()
        self._logger.log(
            LogLevel.INFO, f"job [{job_id}] started: {pipeline.original}", source=_SOURCE, pid=pid
        )
        return 0

    # -- helper threads ----------------------------------------------------

    def _relay(self, source: IO[bytes], sink: IO[bytes], pid: int) -> None:
        """Copy *source* to *sink* until end of stream, then close *sink*."""
        try:
            while chunk := os.read(source.fileno(), _CHUNK_SIZE):
                sink.write(chunk)
                sink.flush()
        except BrokenPipeError:
            # Downstream stopped reading; closing our end lets the
            # upstream process see the broken pipe too.
            self._logger.log(LogLevel.DEBUG, "downstream closed its input", source=_SOURCE, pid=pid)
        except OSError as e:
            self._report(f"pipe: {e}", pid=pid)
        finally:
            with contextlib.suppress(OSError):
                sink.close()
            source.close()

    def _pump_output(self, source: IO[bytes]) -> None:
        """Echo the last stage's output to the shell's stdout as it arrives."""
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            while chunk := os.read(source.fileno(), _CHUNK_SIZE):
                self._emit(decoder.decode(chunk))
            self._emit(decoder.decode(b"", final=True))
        except OSError as e:
            self._report(f"output: {e}")
        finally:
            source.close()

    def _emit(self, text: str) -> None:
        if text:
            self._stdout.write(text)
            self._stdout.flush()

    def _report(self, message: str, *, pid: int | None = None) -> None:
        self._logger.log(LogLevel.ERROR, message, source=_SOURCE, pid=pid)
        self._stderr.write(f"{message}\n")
        self._stderr.flush()
