"""External dump and restore tools.

``Dumper`` and ``Restorer`` are the seams the pipeline depends on.  The
concrete implementations shell out to ``pg_dump`` and ``psql``.  The
password is handed to the child process through ``PGPASSWORD`` in a copy
of the environment and never appears on the command line.

Usage:
    from dr_orchestrator.backup.tools import PgDumpTool, PsqlRestoreTool

    PgDumpTool().dump(params, "/backups/app.sql")
    PsqlRestoreTool().restore(params, "/tmp/app.sql", "app_restored")
"""

import logging
import os
import subprocess
from pathlib import Path
from typing import Protocol

from dr_orchestrator.backup.models import ConnectionParams
from dr_orchestrator.errors import DumpError, RestoreToolError

logger = logging.getLogger(__name__)

# Lines of stderr kept in error messages
_STDERR_TAIL = 5


class Dumper(Protocol):
    """Writes a plain SQL dump of ``params.database`` to ``output_path``."""

    def dump(self, params: ConnectionParams, output_path: Path) -> None:
        ...


class Restorer(Protocol):
    """Applies the SQL file at ``sql_path`` to ``database``."""

    def restore(self, params: ConnectionParams, sql_path: Path, database: str) -> None:
        ...


def _tool_env(params: ConnectionParams) -> dict[str, str]:
    env = dict(os.environ)
    if params.password:
        env["PGPASSWORD"] = params.password
    return env


def _stderr_tail(stderr: str | None) -> str:
    lines = [line for line in (stderr or "").strip().splitlines() if line.strip()]
    return "\n".join(lines[-_STDERR_TAIL:])


def _run(args: list[str], params: ConnectionParams) -> subprocess.CompletedProcess:
    logger.debug(f"Running: {' '.join(args)}")
    return subprocess.run(
        args,
        env=_tool_env(params),
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        check=False,
    )


class PgDumpTool:
    """``Dumper`` backed by the ``pg_dump`` executable."""

    def __init__(self, executable: str = "pg_dump", verbose: bool = False) -> None:
        self.executable = executable
        self.verbose = verbose

    def build_args(self, params: ConnectionParams, output_path: Path) -> list[str]:
        args = [
            self.executable,
            "-h", params.host,
            "-p", str(params.port),
            "-U", params.user,
            "-d", params.database,
            "-f", str(output_path),
            "--format=plain",
        ]
        if self.verbose:
            args.append("--verbose")
        return args

    def dump(self, params: ConnectionParams, output_path: Path) -> None:
        """Run ``pg_dump``.

        Raises:
            DumpError: If the executable is missing or exits nonzero.
        """
        try:
            result = _run(self.build_args(params, output_path), params)
        except OSError as e:
            raise DumpError(f"Failed to run {self.executable}: {e}") from e

        if result.returncode != 0:
            raise DumpError(
                f"{self.executable} exited with status {result.returncode}: "
                f"{_stderr_tail(result.stderr)}"
            )
        if result.stderr:
            logger.debug(result.stderr.strip())


class PsqlRestoreTool:
    """``Restorer`` backed by the ``psql`` executable."""

    def __init__(self, executable: str = "psql") -> None:
        self.executable = executable

    def build_args(self, params: ConnectionParams, sql_path: Path, database: str) -> list[str]:
        return [
            self.executable,
            "-h", params.host,
            "-p", str(params.port),
            "-U", params.user,
            "-d", database,
            "-f", str(sql_path),
            "-v", "ON_ERROR_STOP=1",
            "--quiet",
        ]

    def restore(self, params: ConnectionParams, sql_path: Path, database: str) -> None:
        """Run ``psql`` against ``database``.

        Raises:
            RestoreToolError: If the executable is missing or exits nonzero.
        """
        try:
            result = _run(self.build_args(params, sql_path, database), params)
        except OSError as e:
            raise RestoreToolError(f"Failed to run {self.executable}: {e}") from e

        if result.returncode != 0:
            raise RestoreToolError(
                f"{self.executable} exited with status {result.returncode}: "
                f"{_stderr_tail(result.stderr)}"
            )
