"""Interactive REPL (Read-Eval-Print Loop) for the shell.

The classic loop:

    1. **Read**: display a prompt and read one line.
    2. **Eval**: pass the line to ``shell.execute()``, which parses and
       dispatches it completely before returning.
    3. **Loop**: repeat until end of input or ``exit``.

This module keeps the terminal I/O separate from the shell logic.  The
helper functions (``build_prompt``, ``relay_requested``) are pure and
testable; ``run()`` is the I/O entrypoint.
"""

import readline

from py_shell.completer import Completer, install
from py_shell.env import Environment
from py_shell.shell import Shell

_DEFAULT_PROMPT = "mysh> "
_RELAY_VARIABLE = "PY_SHELL_RELAY"
_TRUTHY: frozenset[str] = frozenset({"1", "true", "yes", "on"})


def build_prompt(shell: Shell) -> str:
    """Return the prompt: ``$PS1`` if set, else ``mysh> ``."""
    return shell.environment.get("PS1") or _DEFAULT_PROMPT


def relay_requested(env: Environment) -> bool:
    """Return whether ``$PY_SHELL_RELAY`` asks for relay-thread pipes."""
    value = env.get(_RELAY_VARIABLE) or ""
    return value.strip().lower() in _TRUTHY


def run() -> None:
    """Run the interactive shell until end of input or ``exit``.

    Ctrl+C abandons the current line (or foreground pipeline) and
    returns to the prompt.  Ctrl+D ends the session.
    """
    env = Environment.from_os()
    shell = Shell(env=env, native_pipes=not relay_requested(env))

    # Wire up tab completion via readline.
    install(Completer(shell))
    readline.set_history_length(1000)

    while True:
        try:
            line = input(build_prompt(shell))
        except EOFError:
            # Ctrl+D: end of input
            print()  # noqa: T201
            break
        except KeyboardInterrupt:
            print()  # noqa: T201
            continue

        try:
            shell.execute(line)
        except KeyboardInterrupt:
            print()  # noqa: T201
