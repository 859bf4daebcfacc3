"""The shell: command dispatcher for the interactive loop.

The shell takes one input line, parses it, and routes it:

    - A **single builtin** (``cd``, ``jobs``, ``kill``, ...) runs inline,
      in this process.  Builtins are never jobs, even with ``&``.
    - Anything else (an external command or any multi-stage pipeline)
      goes to the ``PipelineExecutor``, which spawns real processes.

Design choices:
    - **Command dispatch via a dict.**  Adding a builtin means writing
      a method and adding one dict entry.
    - **Handlers return their output as a string.**  The dispatcher
      writes it to the shell's stdout; failures go to stderr as
      ``<verb>: <reason>``.
    - **No globals.**  The working directory, environment, job table,
      logger and executor all belong to the ``Shell`` instance, so two
      shells can coexist in one test.
    - **Errors never escape.**  A bad command prints a diagnostic and
      the loop moves on; only ``exit`` ends the session.
"""

import sys
from collections.abc import Callable
from pathlib import Path
from typing import TextIO, TypeAlias

from py_shell.env import Environment
from py_shell.jobs import JobError, JobTable, parse_job_id
from py_shell.logging import Logger, LogLevel
from py_shell.parser import ParsedCommand, Pipeline, parse_line
from py_shell.pipeline import PipelineExecutor, SpawnError
from py_shell.signals import SignalDispatcher

# Type alias for a command handler: takes a list of args, returns output.
_Handler: TypeAlias = Callable[[list[str]], str]

_SOURCE = "shell"
_CLEAR_SCREEN = "\033[H\033[J"


class ShellError(Exception):
    """Raised by a builtin to report a failure to the user."""


def _describe(error: OSError) -> str:
    """Return a short lowercase reason for an OS error."""
    return (error.strerror or str(error)).lower()


class Shell:
    """Interpret command lines against a working directory and job table."""

    def __init__(
        self,
        *,
        cwd: str | Path | None = None,
        env: Environment | None = None,
        stdout: TextIO | None = None,
        stderr: TextIO | None = None,
        native_pipes: bool = True,
    ) -> None:
        """Create a shell.

        Args:
            cwd: Starting directory (defaults to the process's cwd).
            env: Environment for spawned commands (defaults to a copy
                of ``os.environ``).
            stdout: Stream for command output (defaults to ``sys.stdout``).
            stderr: Stream for diagnostics (defaults to ``sys.stderr``).
            native_pipes: Connect pipeline stages with OS pipes rather
                than relay threads.

        """
        self._cwd = Path(cwd if cwd is not None else Path.cwd()).resolve()
        self._env = env if env is not None else Environment.from_os()
        self._stdout = stdout if stdout is not None else sys.stdout
        self._stderr = stderr if stderr is not None else sys.stderr
        self._logger = Logger()
        self._jobs = JobTable()
        self._executor = PipelineExecutor(
            jobs=self._jobs,
            logger=self._logger,
            stdout=self._stdout,
            stderr=self._stderr,
            native_pipes=native_pipes,
        )
        self._signals = SignalDispatcher(self._jobs, logger=self._logger)
        self._history: list[str] = []
        self._failed = False

        # Command dispatch table: maps builtin names to handler methods.
        self._commands: dict[str, _Handler] = {
            "cd": self._cmd_cd,
            "pwd": self._cmd_pwd,
            "exit": self._cmd_exit,
            "echo": self._cmd_echo,
            "clear": self._cmd_clear,
            "ls": self._cmd_ls,
            "cat": self._cmd_cat,
            "mkdir": self._cmd_mkdir,
            "rmdir": self._cmd_rmdir,
            "rm": self._cmd_rm,
            "touch": self._cmd_touch,
            "jobs": self._cmd_jobs,
            "kill": self._cmd_kill,
            "fg": self._cmd_fg,
            "bg": self._cmd_bg,
            "help": self._cmd_help,
            "history": self._cmd_history,
            "log": self._cmd_log,
            "env": self._cmd_env,
            "export": self._cmd_export,
            "unset": self._cmd_unset,
        }

    # -- public surface ----------------------------------------------------

    @property
    def cwd(self) -> Path:
        """Return the shell's current working directory."""
        return self._cwd

    @property
    def environment(self) -> Environment:
        """Return the environment handed to spawned commands."""
        return self._env

    @property
    def jobs(self) -> JobTable:
        """Return the job table."""
        return self._jobs

    @property
    def logger(self) -> Logger:
        """Return the shell's event log."""
        return self._logger

    @property
    def command_names(self) -> list[str]:
        """Return the builtin command names, sorted."""
        return sorted(self._commands)

    def is_builtin(self, name: str) -> bool:
        """Return whether *name* is handled inline by the shell."""
        return name in self._commands

    def execute(self, line: str) -> int:
        """Parse and run one input line.

        Args:
            line: Raw text such as ``ls | grep txt &``.

        Returns:
            The exit status of the line (0 for success).

        Raises:
            SystemExit: When the ``exit`` builtin runs.

        """
        stripped = line.strip()
        if not stripped:
            return 0
        self._history.append(stripped)
        parsed = parse_line(stripped)
        if parsed is None:
            self._logger.log(LogLevel.DEBUG, f"nothing to run in {stripped!r}", source="parser")
            return 0
        return self.dispatch(parsed)

    def dispatch(self, parsed: ParsedCommand | Pipeline) -> int:
        """Run an already parsed command or pipeline.

        A single builtin runs inline; everything else is spawned.
        """
        if isinstance(parsed, ParsedCommand):
            if self.is_builtin(parsed.name):
                return self._run_builtin(parsed)
            pipeline = Pipeline.single(parsed)
        else:
            pipeline = parsed
        try:
            return self._executor.run(pipeline, cwd=str(self._cwd), env=self._env.as_dict())
        except SpawnError as e:
            self._error(str(e))
            return e.status
        except (JobError, OSError) as e:
            self._error(f"{pipeline.stages[0].name}: {e}")
            return 1

    # -- plumbing ----------------------------------------------------------

    def _run_builtin(self, command: ParsedCommand) -> int:
        handler = self._commands[command.name]
        self._failed = False
        try:
            output = handler(list(command.args))
        except (ShellError, JobError) as e:
            self._error(f"{command.name}: {e}")
            return 1
        except OSError as e:
            self._error(f"{command.name}: {_describe(e)}")
            return 1
        except ValueError as e:
            # Paths with embedded NUL bytes are rejected before any system call.
            self._error(f"{command.name}: {e}")
            return 1
        if output:
            self._write(output)
        return 1 if self._failed else 0

    def _write(self, text: str) -> None:
        self._stdout.write(text if text.endswith("\n") else f"{text}\n")
        self._stdout.flush()

    def _error(self, message: str) -> None:
        """Report a diagnostic on stderr and mark the builtin as failed."""
        self._failed = True
        self._logger.log(LogLevel.WARNING, message, source=_SOURCE)
        self._stderr.write(f"{message}\n")
        self._stderr.flush()

    def _resolve(self, name: str) -> Path:
        return self._cwd / name

    def _require_args(self, args: list[str], usage: str) -> None:
        if not args:
            msg = f"usage: {usage}"
            raise ShellError(msg)

    def _lookup_job(self, args: list[str], usage: str) -> tuple[int, int, str]:
        """Resolve ``<id|%id>`` to ``(job_id, pid, command)``."""
        self._require_args(args, usage)
        try:
            job_id = parse_job_id(args[0])
        except JobError:
            job_id = None
        job = self._jobs.get_by_id(job_id) if job_id is not None else None
        if job is None:
            msg = "no such job"
            raise ShellError(msg)
        return job.job_id, job.pid, job.command

    # -- directory and session builtins ------------------------------------

    def _cmd_cd(self, args: list[str]) -> str:
        """Change the working directory (default: ``$HOME``)."""
        target = args[0] if args else (self._env.get("HOME") or str(Path.home()))
        path = self._resolve(target).resolve()
        if not path.is_dir():
            msg = f"no such directory: {target}"
            raise ShellError(msg)
        self._cwd = path
        self._env.set("PWD", str(path))
        return ""

    def _cmd_pwd(self, _args: list[str]) -> str:
        """Print the working directory."""
        return str(self._cwd)

    def _cmd_exit(self, _args: list[str]) -> str:
        """Terminate the shell at once; background jobs are left running."""
        self._logger.log(LogLevel.INFO, "exit", source=_SOURCE)
        sys.exit(0)

    def _cmd_echo(self, args: list[str]) -> str:
        """Echo arguments back as output."""
        return " ".join(args) + "\n"

    def _cmd_clear(self, _args: list[str]) -> str:
        """Clear the terminal."""
        self._stdout.write(_CLEAR_SCREEN)
        self._stdout.flush()
        return ""

    def _cmd_help(self, _args: list[str]) -> str:
        """List available builtins."""
        return "Available commands: " + ", ".join(self.command_names)

    def _cmd_history(self, _args: list[str]) -> str:
        """Show command history."""
        return "\n".join(f"  {i + 1}  {cmd}" for i, cmd in enumerate(self._history))

    def _cmd_log(self, _args: list[str]) -> str:
        """Show log entries at INFO and above."""
        entries = self._logger.filter(min_level=LogLevel.INFO)
        return "\n".join(str(e) for e in entries) if entries else "No log entries."

    # -- filesystem builtins -----------------------------------------------

    def _cmd_ls(self, args: list[str]) -> str:
        """List directory contents."""
        targets = args or ["."]
        blocks: list[str] = []
        for target in targets:
            try:
                names = sorted(p.name for p in self._resolve(target).iterdir())
            except OSError as e:
                self._error(f"ls: {target}: {_describe(e)}")
                continue
            listing = "\n".join(names)
            blocks.append(f"{target}:\n{listing}" if len(targets) > 1 else listing)
        return "\n\n".join(b for b in blocks if b)

    def _cmd_cat(self, args: list[str]) -> str:
        """Print file contents."""
        self._require_args(args, "cat <file>...")
        chunks: list[str] = []
        for name in args:
            try:
                chunks.append(self._resolve(name).read_text(errors="replace"))
            except OSError as e:
                self._error(f"cat: {name}: {_describe(e)}")
        return "".join(chunks)

    def _cmd_mkdir(self, args: list[str]) -> str:
        """Create directories."""
        self._require_args(args, "mkdir <dir>...")
        self._each_path("mkdir", args, Path.mkdir)
        return ""

    def _cmd_rmdir(self, args: list[str]) -> str:
        """Remove empty directories."""
        self._require_args(args, "rmdir <dir>...")
        self._each_path("rmdir", args, Path.rmdir)
        return ""

    def _cmd_rm(self, args: list[str]) -> str:
        """Remove files."""
        self._require_args(args, "rm <file>...")
        self._each_path("rm", args, Path.unlink)
        return ""

    def _cmd_touch(self, args: list[str]) -> str:
        """Create files or update their modification time."""
        self._require_args(args, "touch <file>...")
        self._each_path("touch", args, Path.touch)
        return ""

    def _each_path(self, verb: str, names: list[str], action: Callable[[Path], None]) -> None:
        """Apply *action* to every path, reporting failures one by one."""
        for name in names:
            try:
                action(self._resolve(name))
            except OSError as e:
                self._error(f"{verb}: {name}: {_describe(e)}")

    # -- job control builtins ----------------------------------------------

    def _cmd_jobs(self, _args: list[str]) -> str:
        """List background jobs as ``[id] (pid) status command``."""
        return "\n".join(str(j) for j in self._jobs.list_jobs())

    def _cmd_fg(self, args: list[str]) -> str:
        """Wait for a background job to finish, then forget it."""
        job_id, pid, command = self._lookup_job(args, "fg <id|%id>")
        self._write(command)
        status = self._executor.wait(pid)
        self._jobs.remove_by_id(job_id)
        self._logger.log(LogLevel.INFO, f"job [{job_id}] done ({status})", source=_SOURCE, pid=pid)
        return ""

    def _cmd_bg(self, args: list[str]) -> str:
        """Report a job as running in the background.

        There is no suspend/resume, so every job is already running;
        this only echoes the job back.
        """
        job_id, pid, command = self._lookup_job(args, "bg <id|%id>")
        return f"Resuming job [{job_id}] ({pid}) in background: {command}"

    def _cmd_kill(self, args: list[str]) -> str:
        """Send SIGKILL to PIDs and ``%job`` references."""
        result = self._signals.kill(args)
        for pid in result.killed:
            self._executor.discard(pid)
        for line in result.errors:
            self._error(line)
        return ""

    # -- environment builtins ----------------------------------------------

    def _cmd_env(self, _args: list[str]) -> str:
        """Show environment variables."""
        return "\n".join(f"{k}={v}" for k, v in self._env.items())

    def _cmd_export(self, args: list[str]) -> str:
        """Set environment variables: ``export KEY=VALUE ...``."""
        self._require_args(args, "export KEY=VALUE...")
        for assignment in args:
            key, sep, value = assignment.partition("=")
            if not sep or not key:
                self._error(f"export: {assignment}: not a valid assignment")
                continue
            self._env.set(key, value)
        return ""

    def _cmd_unset(self, args: list[str]) -> str:
        """Remove environment variables."""
        self._require_args(args, "unset KEY...")
        for key in args:
            try:
                self._env.delete(key)
            except KeyError:
                self._error(f"unset: {key}: not set")
        return ""
