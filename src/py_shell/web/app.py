"""Flask application factory for the shell's web front end.

The ``create_app`` function creates a shell whose output and error
streams are in-memory buffers, and returns a Flask app with three
endpoints:

- ``GET /``: render the terminal HTML page.
- ``POST /api/execute``: execute a command line and return JSON.
- ``GET /api/jobs``: list tracked background jobs.
"""

from __future__ import annotations

import io
import threading
from pathlib import Path

from flask import Flask, Response, jsonify, render_template, request

from py_shell.shell import Shell

_HTTP_BAD_REQUEST = 400
_HTTP_GONE = 410


def _drain(buffer: io.StringIO) -> str:
    """Return everything written to *buffer* and empty it."""
    text = buffer.getvalue()
    buffer.seek(0)
    buffer.truncate()
    return text


def create_app(*, cwd: str | Path | None = None) -> Flask:
    """Create and configure the Flask application.

    Args:
        cwd: Starting directory of the shell session.

    Returns:
        A configured Flask application ready to serve.

    """
    stdout = io.StringIO()
    stderr = io.StringIO()
    shell = Shell(cwd=cwd, stdout=stdout, stderr=stderr)
    # One command line at a time; the buffers are shared.
    lock = threading.Lock()
    halted = threading.Event()

    app = Flask(__name__)

    @app.route("/")
    def index() -> str:  # pyright: ignore[reportUnusedFunction]
        """Render the terminal HTML page."""
        return render_template("index.html", cwd=str(shell.cwd))

    @app.route("/api/execute", methods=["POST"])
    def execute() -> tuple[Response, int] | Response:  # pyright: ignore[reportUnusedFunction]
        """Execute a command line and return its output as JSON.

        Expects JSON body: ``{"command": "..."}``

        Returns:
            JSON with ``stdout``, ``stderr``, ``status`` and ``halted``.

        """
        data = request.get_json(silent=True)
        if data is None or "command" not in data:
            return jsonify({"error": "Missing 'command' field"}), _HTTP_BAD_REQUEST

        if halted.is_set():
            return jsonify({"error": "Session has exited", "halted": True}), _HTTP_GONE

        command: str = data["command"]
        with lock:
            try:
                status = shell.execute(command)
            except SystemExit as e:
                halted.set()
                status = e.code if isinstance(e.code, int) else 0
            out, err = _drain(stdout), _drain(stderr)

        return jsonify(
            {"stdout": out, "stderr": err, "status": status, "halted": halted.is_set()}
        )

    @app.route("/api/jobs")
    def jobs() -> Response:  # pyright: ignore[reportUnusedFunction]
        """Return the job table as JSON."""
        return jsonify(
            [
                {
                    "id": job.job_id,
                    "pid": job.pid,
                    "status": str(job.status),
                    "command": job.command,
                }
                for job in shell.jobs.list_jobs()
            ]
        )

    return app


def main() -> None:
    """Run the web front end development server.

    This is the ``py-shell-web`` console entry point.
    """
    app = create_app()
    app.run(debug=True, port=8080)
