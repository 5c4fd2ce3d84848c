"""Backup schedules: YAML job files, crontab rendering, and cronify.

A schedule file lists cron jobs::

    jobs:
      - name: daily-backup
        schedule: "0 0 * * *"
        command: dr-orchestrator backup --name prod-db --db-name myapp --encrypt
        env:
          BACKUP_ENCRYPTION_KEY: your-encryption-key-here

Files are checked locally by ``load_schedule`` and then handed to the
external ``cronify`` tool for validation (``--file``) or deployment
(``--deploy``).

Usage:
    from dr_orchestrator.schedule import load_schedule, render_crontab, validate_schedule

    config = load_schedule("backup-schedule.yaml")
    print(render_crontab(config))
    validate_schedule("backup-schedule.yaml", simulate=True)
"""

import logging
import re
import shutil
import subprocess
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from dr_orchestrator.errors import ScheduleError, ValidationError

logger = logging.getLogger(__name__)

CRONIFY = "cronify"
DEFAULT_SCHEDULE_FILE = "backup-schedule.yaml"

_CRON_FIELD = re.compile(r"^[0-9A-Za-z*/,\-]+$")


# ============================================================================
# Models
# ============================================================================


class Job(BaseModel):
    """One scheduled command."""

    name: str = Field(min_length=1)
    schedule: str
    command: str = Field(min_length=1)
    env: dict[str, str] = Field(default_factory=dict)

    @field_validator("schedule")
    @classmethod
    def _check_cron(cls, value: str) -> str:
        fields = value.split()
        if len(fields) != 5 or not all(_CRON_FIELD.match(f) for f in fields):
            raise ValueError(f"invalid cron expression '{value}' (expected 5 fields)")
        return " ".join(fields)


class ScheduleConfig(BaseModel):
    """Contents of a schedule file."""

    jobs: list[Job] = Field(default_factory=list)


_EXAMPLE_KEY_ENV = {"BACKUP_ENCRYPTION_KEY": "your-encryption-key-here"}
_EXAMPLE_DB_FLAGS = "--db-name myapp --db-host localhost --db-user postgres --encrypt"

EXAMPLE_SCHEDULE = ScheduleConfig(
    jobs=[
        Job(
            name="daily-backup",
            schedule="0 0 * * *",
            command=(
                f"dr-orchestrator backup --name prod-db {_EXAMPLE_DB_FLAGS} "
                "--upload --bucket my-bucket --compartment ocid1.compartment.oc1..xxx"
            ),
            env={**_EXAMPLE_KEY_ENV, "PATH": "/usr/local/bin:/usr/bin:/bin"},
        ),
        Job(
            name="weekly-backup",
            schedule="0 3 * * 0",
            command=f"dr-orchestrator backup --name prod-db-weekly {_EXAMPLE_DB_FLAGS}",
            env=dict(_EXAMPLE_KEY_ENV),
        ),
        Job(
            name="monthly-backup",
            schedule="0 2 1 * *",
            command=f"dr-orchestrator backup --name prod-db-monthly {_EXAMPLE_DB_FLAGS}",
            env=dict(_EXAMPLE_KEY_ENV),
        ),
    ]
)


# ============================================================================
# Files
# ============================================================================


def write_example_schedule(path: str | Path = DEFAULT_SCHEDULE_FILE) -> ScheduleConfig:
    """Write an example schedule with daily, weekly and monthly backups."""
    path = Path(path)
    data = {
        "jobs": [
            job.model_dump(exclude={"env"} if not job.env else None)
            for job in EXAMPLE_SCHEDULE.jobs
        ]
    }
    path.write_text(yaml.safe_dump(data, sort_keys=False))
    logger.info(f"Wrote example schedule to {path}")
    return EXAMPLE_SCHEDULE


def load_schedule(path: str | Path) -> ScheduleConfig:
    """Load and check a schedule file.

    Raises:
        ValidationError: If the file is missing, is not valid YAML, a job
            lacks a field or has a malformed cron expression, or two jobs
            share a name.
    """
    path = Path(path)
    if not path.is_file():
        raise ValidationError(f"Schedule file does not exist: {path}")

    try:
        data = yaml.safe_load(path.read_text())
    except yaml.YAMLError as e:
        raise ValidationError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ValidationError(f"Schedule file {path} must contain a 'jobs' list")

    try:
        config = ScheduleConfig(**data)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid schedule in {path}: {e}") from e

    seen: set[str] = set()
    for job in config.jobs:
        if job.name in seen:
            raise ValidationError(f"Duplicate job name in {path}: {job.name}")
        seen.add(job.name)

    return config


def render_crontab(config: ScheduleConfig) -> str:
    """Render a schedule as crontab text, one block per job."""
    blocks = []
    for job in config.jobs:
        lines = [f"# {job.name}"]
        lines.extend(f"{key}={value}" for key, value in job.env.items())
        lines.append(f"{job.schedule} {job.command}")
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks) + "\n" if blocks else ""


# ============================================================================
# Cronify
# ============================================================================


def run_cronify(args: list[str], executable: str = CRONIFY) -> None:
    """Run the cronify tool with ``args``; its output goes to the terminal.

    Raises:
        ValidationError: If cronify is not on PATH.
        ScheduleError: If cronify exits with a nonzero status.
    """
    resolved = shutil.which(executable)
    if resolved is None:
        raise ValidationError(
            f"{executable} is not installed. "
            "Install it from https://github.com/Kobeep/Cronify"
        )

    logger.debug(f"Running: {executable} {' '.join(args)}")
    try:
        result = subprocess.run([resolved, *args], check=False)
    except OSError as e:
        raise ScheduleError(f"Failed to run {executable}: {e}") from e

    if result.returncode != 0:
        raise ScheduleError(f"{executable} exited with status {result.returncode}")


def validate_schedule(path: str | Path, simulate: bool = False) -> ScheduleConfig:
    """Check a schedule locally, then with ``cronify --file``."""
    config = load_schedule(path)
    args = ["--file", str(path)]
    if simulate:
        args.append("--simulate")
    run_cronify(args)
    return config


def deploy_schedule(path: str | Path, dry_run: bool = False) -> ScheduleConfig:
    """Check a schedule locally, then install it with ``cronify --deploy``.

    ``dry_run`` passes ``--simulate`` so nothing is installed.
    """
    config = load_schedule(path)
    args = ["--deploy", str(path)]
    if dry_run:
        args.append("--simulate")
    run_cronify(args)
    return config
