"""Context-aware tab completer for the shell.

The completer separates **what to complete** (pure logic, fully
testable) from **how to wire it** (readline integration in the REPL).

The ``complete(text, state)`` method is the readline callback.  It
delegates to ``completions(text, line)`` which looks at the word being
typed and the command it belongs to.
"""

from __future__ import annotations

import readline
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from py_shell.shell import Shell

# Builtins whose arguments are filesystem paths.
_PATH_COMMANDS: frozenset[str] = frozenset(
    ["cd", "ls", "cat", "mkdir", "rmdir", "rm", "touch"]
)

# Builtins whose arguments are job references.
_JOB_COMMANDS: frozenset[str] = frozenset(["fg", "bg", "kill"])


class Completer:
    """Context-aware tab completer for the shell."""

    def __init__(self, shell: Shell) -> None:
        """Create a completer attached to a shell instance.

        Args:
            shell: The shell whose builtins, jobs, environment and
                   working directory feed the candidates.

        """
        self._shell = shell

    def complete(self, text: str, state: int) -> str | None:
        """Readline callback: return the *state*-th candidate for *text*."""
        line = readline.get_line_buffer()
        candidates = self.completions(text, line)
        if state < len(candidates):
            return candidates[state]
        return None

    def completions(self, text: str, line: str) -> list[str]:
        """Return completion candidates based on context.

        Args:
            text: The partial word under the cursor.
            line: The full input line so far.

        Returns:
            Sorted list of matching candidates.

        """
        # Only the current pipeline stage matters.
        stage = line.rsplit("|", 1)[-1]
        words = stage.lstrip().split()

        if not words or (len(words) == 1 and not stage.endswith(" ")):
            return self._complete_commands(text)

        cmd = words[0]
        if cmd in _JOB_COMMANDS and text.startswith("%"):
            return self._complete_jobs(text)
        if cmd == "unset":
            keys = (key for key, _val in self._shell.environment.items())
            return sorted(key for key in keys if key.startswith(text))
        if cmd in _PATH_COMMANDS or "/" in text:
            return self._complete_paths(text)
        return []

    def _complete_commands(self, text: str) -> list[str]:
        """Complete builtin names from the shell's dispatch table."""
        return [cmd for cmd in self._shell.command_names if cmd.startswith(text)]

    def _complete_jobs(self, text: str) -> list[str]:
        """Complete ``%N`` job references."""
        refs = (f"%{job.job_id}" for job in self._shell.jobs.list_jobs())
        return sorted(ref for ref in refs if ref.startswith(text))

    def _complete_paths(self, text: str) -> list[str]:
        """Complete paths relative to the shell's working directory.

        Directories get a trailing ``/`` suffix.
        """
        directory, sep, prefix = text.rpartition("/")
        if sep:
            directory += "/"
        base = self._shell.cwd / directory if directory else self._shell.cwd
        try:
            entries = list(base.iterdir())
        except OSError:
            return []
        candidates = [
            f"{directory}{entry.name}/" if entry.is_dir() else f"{directory}{entry.name}"
            for entry in entries
            if entry.name.startswith(prefix)
        ]
        return sorted(candidates)


def install(completer: Completer) -> None:
    """Wire *completer* into readline."""
    readline.set_completer(completer.complete)
    readline.set_completer_delims(" \t|")
    readline.parse_and_bind("tab: complete")
