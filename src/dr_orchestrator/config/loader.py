"""Configuration loading for dr-orchestrator."""

import tomllib
from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings

from dr_orchestrator.config.models import OrchestratorConfig

DEFAULT_CONFIG_FILE = "dr.toml"


class Settings(BaseSettings):
    """Settings read from the process environment.

    These are layered over dr.toml by ``load_config``:
    - DR_CONFIG: config file location when none is given explicitly
    - BACKUP_ENCRYPTION_KEY: overrides ``[backup] encryption_key``
    - PGPASSWORD: database password when ``[database]`` has none
    """

    config_path: str | None = Field(
        default=None,
        validation_alias=AliasChoices("DR_CONFIG"),
    )
    encryption_key: str | None = Field(
        default=None,
        repr=False,
        validation_alias=AliasChoices("BACKUP_ENCRYPTION_KEY"),
    )
    database_password: str | None = Field(
        default=None,
        repr=False,
        validation_alias=AliasChoices("PGPASSWORD"),
    )


def get_settings() -> Settings:
    """Read environment settings.  Not cached, so each load sees the current env."""
    return Settings()


def _resolve_path(config_path: Path | None, settings: Settings) -> Path | None:
    if config_path is not None:
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
        return config_path

    if settings.config_path:
        path = Path(settings.config_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path} (from $DR_CONFIG)")
        return path

    default = Path.cwd() / DEFAULT_CONFIG_FILE
    return default if default.exists() else None


def load_config(config_path: Path | None = None) -> OrchestratorConfig:
    """Load orchestrator configuration from a TOML file and the environment.

    Lookup order when ``config_path`` is not given: ``$DR_CONFIG``, then
    ``./dr.toml``; when neither exists the defaults are used.

    Environment variables override the file: ``BACKUP_ENCRYPTION_KEY``
    sets the encryption key, and ``PGPASSWORD`` sets the database password
    when the file does not.

    Args:
        config_path: Path to dr.toml.

    Returns:
        OrchestratorConfig with all sections populated.

    Raises:
        FileNotFoundError: If an explicitly given config file doesn't exist
        ValueError: If the config format is invalid
    """
    settings = get_settings()
    path = _resolve_path(config_path, settings)

    data: dict = {}
    if path is not None:
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"Invalid config file {path}: {e}") from e

    try:
        config = OrchestratorConfig(**data)
    except (PydanticValidationError, TypeError) as e:
        raise ValueError(f"Invalid config file {path}: {e}") from e

    updates: dict = {}
    if settings.encryption_key:
        updates["backup"] = config.backup.model_copy(
            update={"encryption_key": settings.encryption_key}
        )
    if settings.database_password and not config.database.password:
        updates["database"] = config.database.model_copy(
            update={"password": settings.database_password}
        )

    return config.model_copy(update=updates) if updates else config
