"""Browser-based front end for the shell.

This package provides a Flask application that exposes one shell
session over HTTP.  It is an **optional** extra: install with::

    pip install py-shell[web]

The ``create_app`` factory in ``app.py`` creates a shell writing into
in-memory buffers and serves three endpoints:

- ``GET /``: HTML terminal page.
- ``POST /api/execute``: run one command line and return JSON.
- ``GET /api/jobs``: the current job table.
"""
