"""Environment variables: configuration handed to spawned commands.

Every process the shell launches receives the shell's environment: a
set of ``KEY=VALUE`` string pairs.  ``PATH`` decides where external
commands are found, and ``PS1`` sets the prompt.

Key design properties:
    - **Seeded from the host**: ``Environment.from_os()`` copies
      ``os.environ`` once; later changes to either side are independent.
    - **Strings only**: both keys and values are strings.
    - **Per-shell**: each shell owns its own environment, so two
      shells in one test never see each other's ``export``.
"""

import os


class Environment:
    """A key-value store for environment variables."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        """Create an environment, optionally pre-populated.

        Args:
            initial: Starting variables (copied, not referenced).

        """
        self._vars: dict[str, str] = dict(initial) if initial else {}

    @classmethod
    def from_os(cls) -> "Environment":
        """Return an environment copied from the host process."""
        return cls(initial=dict(os.environ))

    def get(self, key: str, default: str | None = None) -> str | None:
        """Return the value for *key*, or *default* if not set."""
        return self._vars.get(key, default)

    def set(self, key: str, value: str) -> None:
        """Set *key* to *value* (creates or overwrites)."""
        self._vars[key] = value

    def delete(self, key: str) -> None:
        """Remove *key* from the environment.

        Raises:
            KeyError: If *key* does not exist.

        """
        del self._vars[key]

    def items(self) -> list[tuple[str, str]]:
        """Return all (key, value) pairs sorted by key."""
        return sorted(self._vars.items())

    def as_dict(self) -> dict[str, str]:
        """Return a fresh dict suitable for ``subprocess`` ``env=``."""
        return dict(self._vars)

    def __contains__(self, key: object) -> bool:
        """Return whether *key* is set."""
        return key in self._vars

    def __len__(self) -> int:
        """Return the number of variables."""
        return len(self._vars)
