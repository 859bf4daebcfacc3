"""Tests for the shell's dispatcher and builtins.

The shell writes to the streams it is given, so every test hands it
``io.StringIO`` buffers and a temporary working directory.
"""

import io
import sys
from pathlib import Path

import pytest

from py_shell.env import Environment
from py_shell.shell import Shell

_PY = sys.executable


def _shell(cwd: Path, **kwargs: object) -> tuple[Shell, io.StringIO, io.StringIO]:
    """Create a shell in *cwd* writing to fresh buffers."""
    out = io.StringIO()
    err = io.StringIO()
    return Shell(cwd=cwd, stdout=out, stderr=err, **kwargs), out, err  # type: ignore[arg-type]


class TestDispatch:
    """Verify routing between builtins and external commands."""

    def test_is_builtin(self, tmp_path: Path) -> None:
        """Builtins are recognised by name."""
        shell, _out, _err = _shell(tmp_path)
        for name in ("cd", "pwd", "exit", "echo", "jobs", "kill", "fg", "bg", "ls"):
            assert shell.is_builtin(name)
        assert not shell.is_builtin("grep")

    def test_blank_line_does_nothing(self, tmp_path: Path) -> None:
        """Empty input succeeds silently and is not in history."""
        shell, out, err = _shell(tmp_path)
        assert shell.execute("   ") == 0
        assert out.getvalue() == ""
        assert err.getvalue() == ""

    def test_only_pipes_is_dropped(self, tmp_path: Path) -> None:
        """A line with no real stage is skipped without error."""
        shell, out, err = _shell(tmp_path)
        assert shell.execute(" | | ") == 0
        assert out.getvalue() == err.getvalue() == ""

    def test_external_command(self, tmp_path: Path) -> None:
        """Unknown names run as external executables."""
        shell, out, _err = _shell(tmp_path)
        status = shell.execute(f'{_PY} -c "print(42)"')
        assert status == 0
        assert out.getvalue() == "42\n"

    def test_external_exit_status(self, tmp_path: Path) -> None:
        """The line's status is the command's exit status."""
        shell, _out, _err = _shell(tmp_path)
        assert shell.execute(f'{_PY} -c "raise SystemExit(5)"') == 5

    def test_command_not_found(self, tmp_path: Path) -> None:
        """A missing executable is reported, not raised."""
        shell, _out, err = _shell(tmp_path)
        status = shell.execute("py-shell-no-such-command arg")
        assert status == 127
        assert err.getvalue() == "py-shell-no-such-command: command not found\n"

    def test_external_nul_byte(self, tmp_path: Path) -> None:
        """An argument with a NUL byte fails that line only."""
        shell, _out, err = _shell(tmp_path)
        assert shell.execute(f"{sys.executable} a\x00b") == 126
        assert err.getvalue().startswith(f"{sys.executable}: ")
        assert shell.execute("pwd") == 0

    def test_external_pipeline(self, tmp_path: Path) -> None:
        """Pipelines connect external stages."""
        shell, out, _err = _shell(tmp_path)
        shell.execute(
            f"{_PY} -c \"print('hello')\" | "
            f'{_PY} -c "import sys; sys.stdout.write(sys.stdin.read().upper())"'
        )
        assert out.getvalue() == "HELLO\n"

    def test_relay_mode_pipeline(self, tmp_path: Path) -> None:
        """Relay threads give the same result as native pipes."""
        shell, out, _err = _shell(tmp_path, native_pipes=False)
        shell.execute(
            f"{_PY} -c \"print('hello')\" | "
            f'{_PY} -c "import sys; sys.stdout.write(sys.stdin.read().upper())"'
        )
        assert out.getvalue() == "HELLO\n"

    def test_builtin_with_ampersand_runs_inline(self, tmp_path: Path) -> None:
        """Builtins are never jobs, even with ``&``."""
        shell, out, _err = _shell(tmp_path)
        shell.execute("echo hi &")
        assert out.getvalue() == "hi\n"
        assert len(shell.jobs) == 0

    def test_exit(self, tmp_path: Path) -> None:
        """``exit`` ends the session with status 0."""
        shell, _out, _err = _shell(tmp_path)
        with pytest.raises(SystemExit) as excinfo:
            shell.execute("exit")
        assert excinfo.value.code == 0

    def test_failures_are_logged(self, tmp_path: Path) -> None:
        """Diagnostics also land in the shell's log."""
        shell, _out, _err = _shell(tmp_path)
        shell.execute("cd nowhere")
        assert any("cd: no such directory" in e.message for e in shell.logger.entries)


class TestDirectoryBuiltins:
    """Verify cd and pwd."""

    def test_pwd(self, tmp_path: Path) -> None:
        """``pwd`` prints the working directory."""
        shell, out, _err = _shell(tmp_path)
        shell.execute("pwd")
        assert out.getvalue() == f"{tmp_path.resolve()}\n"

    def test_cd_relative(self, tmp_path: Path) -> None:
        """``cd`` resolves against the current directory."""
        (tmp_path / "sub").mkdir()
        shell, _out, _err = _shell(tmp_path)
        assert shell.execute("cd sub") == 0
        assert shell.cwd == (tmp_path / "sub").resolve()
        shell.execute("cd ..")
        assert shell.cwd == tmp_path.resolve()

    def test_cd_missing(self, tmp_path: Path) -> None:
        """A missing directory is reported and cwd is unchanged."""
        shell, _out, err = _shell(tmp_path)
        assert shell.execute("cd nope") == 1
        assert err.getvalue() == "cd: no such directory: nope\n"
        assert shell.cwd == tmp_path.resolve()

    def test_cd_nul_byte(self, tmp_path: Path) -> None:
        """A path with a NUL byte is reported, not raised."""
        shell, _out, err = _shell(tmp_path)
        assert shell.execute("cd a\x00b") == 1
        assert err.getvalue().startswith("cd: ")
        assert shell.cwd == tmp_path.resolve()

    def test_cd_home(self, tmp_path: Path) -> None:
        """``cd`` alone goes to ``$HOME``."""
        home = tmp_path / "home"
        home.mkdir()
        shell = Shell(
            cwd=tmp_path,
            env=Environment({"HOME": str(home)}),
            stdout=io.StringIO(),
            stderr=io.StringIO(),
        )
        shell.execute("cd")
        assert shell.cwd == home.resolve()

    def test_external_commands_use_cwd(self, tmp_path: Path) -> None:
        """Spawned commands start in the shell's directory."""
        (tmp_path / "sub").mkdir()
        shell, out, _err = _shell(tmp_path)
        shell.execute("cd sub")
        shell.execute(f'{_PY} -c "import os; print(os.getcwd())"')
        assert out.getvalue().strip() == str((tmp_path / "sub").resolve())

    def test_shells_are_independent(self, tmp_path: Path) -> None:
        """Two shells keep separate directories and job tables."""
        (tmp_path / "a").mkdir()
        first, _o1, _e1 = _shell(tmp_path)
        second, _o2, _e2 = _shell(tmp_path)
        first.execute("cd a")
        first.jobs.add(pid=1, command="x")
        assert second.cwd == tmp_path.resolve()
        assert len(second.jobs) == 0


class TestFileBuiltins:
    """Verify the filesystem builtins."""

    def test_echo(self, tmp_path: Path) -> None:
        """``echo`` joins its arguments."""
        shell, out, _err = _shell(tmp_path)
        shell.execute('echo a "b  c" d')
        assert out.getvalue() == "a b  c d\n"

    def test_touch_and_ls(self, tmp_path: Path) -> None:
        """``touch`` creates files that ``ls`` lists sorted."""
        shell, out, _err = _shell(tmp_path)
        shell.execute("touch b.txt a.txt")
        shell.execute("ls")
        assert out.getvalue() == "a.txt\nb.txt\n"

    def test_cat(self, tmp_path: Path) -> None:
        """``cat`` prints each file in turn."""
        (tmp_path / "one").write_text("1\n")
        (tmp_path / "two").write_text("2\n")
        shell, out, _err = _shell(tmp_path)
        shell.execute("cat one two")
        assert out.getvalue() == "1\n2\n"

    def test_cat_missing_continues(self, tmp_path: Path) -> None:
        """A missing file is reported; the others are still printed."""
        (tmp_path / "one").write_text("1\n")
        shell, out, err = _shell(tmp_path)
        assert shell.execute("cat missing one") == 1
        assert out.getvalue() == "1\n"
        assert err.getvalue().startswith("cat: missing: ")

    def test_mkdir_and_rmdir(self, tmp_path: Path) -> None:
        """Directories can be created and removed."""
        shell, _out, _err = _shell(tmp_path)
        shell.execute("mkdir d1 d2")
        assert (tmp_path / "d1").is_dir()
        assert (tmp_path / "d2").is_dir()
        shell.execute("rmdir d1")
        assert not (tmp_path / "d1").exists()

    def test_rm(self, tmp_path: Path) -> None:
        """``rm`` deletes files."""
        (tmp_path / "f").write_text("x")
        shell, _out, _err = _shell(tmp_path)
        assert shell.execute("rm f") == 0
        assert not (tmp_path / "f").exists()

    def test_rm_missing(self, tmp_path: Path) -> None:
        """Errors are prefixed with the builtin's name."""
        shell, _out, err = _shell(tmp_path)
        assert shell.execute("rm ghost") == 1
        assert err.getvalue().startswith("rm: ghost: ")

    def test_usage_without_args(self, tmp_path: Path) -> None:
        """File builtins need at least one argument."""
        shell, _out, err = _shell(tmp_path)
        assert shell.execute("mkdir") == 1
        assert err.getvalue() == "mkdir: usage: mkdir <dir>...\n"

    def test_clear(self, tmp_path: Path) -> None:
        """``clear`` emits the ANSI clear sequence."""
        shell, out, _err = _shell(tmp_path)
        shell.execute("clear")
        assert out.getvalue() == "\033[H\033[J"


class TestSessionBuiltins:
    """Verify help, history, log and the environment builtins."""

    def test_help_lists_job_commands(self, tmp_path: Path) -> None:
        """Help lists jobs, fg, bg and kill."""
        shell, out, _err = _shell(tmp_path)
        shell.execute("help")
        for name in ("jobs", "fg", "bg", "kill"):
            assert name in out.getvalue()

    def test_history(self, tmp_path: Path) -> None:
        """History numbers previous lines."""
        shell, out, _err = _shell(tmp_path)
        shell.execute("echo one")
        shell.execute("history")
        assert "1  echo one" in out.getvalue()
        assert "2  history" in out.getvalue()

    def test_log_shows_spawns(self, tmp_path: Path) -> None:
        """The log records spawned processes."""
        shell, out, _err = _shell(tmp_path)
        shell.execute(f'{_PY} -c "pass"')
        shell.execute("log")
        assert "spawned" in out.getvalue()

    def test_export_reaches_children(self, tmp_path: Path) -> None:
        """Exported variables are visible to spawned commands."""
        shell, out, _err = _shell(tmp_path)
        shell.execute("export PY_SHELL_GREETING=hi")
        shell.execute(f"{_PY} -c \"import os; print(os.environ['PY_SHELL_GREETING'])\"")
        assert out.getvalue() == "hi\n"

    def test_export_invalid(self, tmp_path: Path) -> None:
        """An assignment without ``=`` is rejected."""
        shell, _out, err = _shell(tmp_path)
        assert shell.execute("export NOPE") == 1
        assert "not a valid assignment" in err.getvalue()

    def test_unset_and_env(self, tmp_path: Path) -> None:
        """``unset`` removes a variable that ``env`` then omits."""
        shell = Shell(
            cwd=tmp_path,
            env=Environment({"A": "1", "B": "2"}),
            stdout=(out := io.StringIO()),
            stderr=io.StringIO(),
        )
        shell.execute("unset A")
        shell.execute("env")
        assert out.getvalue() == "B=2\n"

    def test_unset_missing(self, tmp_path: Path) -> None:
        """Unsetting an unknown variable is reported."""
        shell, _out, err = _shell(tmp_path)
        shell.execute("unset PY_SHELL_NEVER_SET")
        assert err.getvalue() == "unset: PY_SHELL_NEVER_SET: not set\n"
