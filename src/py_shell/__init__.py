"""py-shell: an interactive command shell with pipelines and job control.

Subsystems:

- ``parser``: lines to commands and pipelines.
- ``jobs``: the background job table.
- ``pipeline``: spawning and wiring external processes.
- ``signals``: the ``kill`` path.
- ``shell``: builtin dispatch.
- ``repl``: the interactive loop.
"""
