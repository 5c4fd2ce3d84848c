"""Tests for the pg_dump / psql wrappers."""

import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest

from dr_orchestrator.backup.models import ConnectionParams
from dr_orchestrator.backup.tools import PgDumpTool, PsqlRestoreTool
from dr_orchestrator.errors import DumpError, RestoreToolError


@pytest.fixture
def params():
    return ConnectionParams(
        host="db.internal", port=6543, user="backup", password="s3cret", database="app"
    )


def _completed(returncode: int = 0, stderr: str = "") -> subprocess.CompletedProcess:
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout="", stderr=stderr)


class TestPgDumpTool:
    """Command line and error handling for pg_dump."""

    def test_build_args(self, params):
        args = PgDumpTool().build_args(params, Path("/backups/app.sql"))

        assert args == [
            "pg_dump",
            "-h", "db.internal",
            "-p", "6543",
            "-U", "backup",
            "-d", "app",
            "-f", "/backups/app.sql",
            "--format=plain",
        ]

    def test_verbose_flag(self, params):
        args = PgDumpTool(verbose=True).build_args(params, Path("out.sql"))

        assert args[-1] == "--verbose"

    def test_password_passed_via_environment_only(self, params):
        with patch("dr_orchestrator.backup.tools.subprocess.run", return_value=_completed()) as run:
            PgDumpTool().dump(params, Path("out.sql"))

        argv = run.call_args.args[0]
        env = run.call_args.kwargs["env"]
        assert "s3cret" not in argv
        assert env["PGPASSWORD"] == "s3cret"

    def test_no_password_leaves_environment_alone(self, params, monkeypatch):
        monkeypatch.delenv("PGPASSWORD", raising=False)
        no_pw = params.model_copy(update={"password": None})

        with patch("dr_orchestrator.backup.tools.subprocess.run", return_value=_completed()) as run:
            PgDumpTool().dump(no_pw, Path("out.sql"))

        assert "PGPASSWORD" not in run.call_args.kwargs["env"]

    def test_nonzero_exit_raises_with_stderr_tail(self, params):
        stderr = "\n".join(f"line {i}" for i in range(10))
        with patch(
            "dr_orchestrator.backup.tools.subprocess.run",
            return_value=_completed(returncode=1, stderr=stderr),
        ):
            with pytest.raises(DumpError) as exc_info:
                PgDumpTool().dump(params, Path("out.sql"))

        message = str(exc_info.value)
        assert "status 1" in message
        assert "line 9" in message
        assert "line 4" not in message

    def test_missing_executable(self, params):
        with pytest.raises(DumpError, match="Failed to run"):
            PgDumpTool(executable="/nonexistent/pg_dump").dump(params, Path("out.sql"))

    def test_password_not_in_repr(self, params):
        assert "s3cret" not in repr(params)


class TestPsqlRestoreTool:
    """Command line and error handling for psql."""

    def test_build_args_targets_given_database(self, params):
        args = PsqlRestoreTool().build_args(params, Path("/tmp/app.sql"), "app_restored")

        assert args[:9] == [
            "psql",
            "-h", "db.internal",
            "-p", "6543",
            "-U", "backup",
            "-d", "app_restored",
        ]
        assert "ON_ERROR_STOP=1" in args
        assert args[args.index("-f") + 1] == "/tmp/app.sql"

    def test_nonzero_exit_raises(self, params):
        with patch(
            "dr_orchestrator.backup.tools.subprocess.run",
            return_value=_completed(returncode=3, stderr="ERROR: syntax error"),
        ):
            with pytest.raises(RestoreToolError, match="syntax error"):
                PsqlRestoreTool().restore(params, Path("app.sql"), "app")

    def test_success(self, params):
        with patch(
            "dr_orchestrator.backup.tools.subprocess.run", return_value=_completed()
        ) as run:
            PsqlRestoreTool().restore(params, Path("app.sql"), "app")

        assert run.call_args.kwargs["stdin"] == subprocess.DEVNULL
