"""Tests for dr.toml loading and environment overrides."""

import textwrap

import pytest

from dr_orchestrator.config import OrchestratorConfig, load_config
from dr_orchestrator.config.loader import Settings


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch, tmp_path):
    """Isolate from the caller's environment and working directory."""
    for var in ("DR_CONFIG", "BACKUP_ENCRYPTION_KEY", "PGPASSWORD"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)


def _write(path, content: str):
    path.write_text(textwrap.dedent(content))
    return path


class TestLoadConfig:
    """File lookup and parsing."""

    def test_defaults_without_file(self):
        config = load_config()

        assert config == OrchestratorConfig()
        assert config.backup.output_dir == "./backups"
        assert config.metrics.port == 9090
        assert config.storage.oci_profile == "DEFAULT"

    def test_explicit_path(self, tmp_path):
        path = _write(
            tmp_path / "custom.toml",
            """
            [database]
            host = "db.internal"
            port = 6543
            name = "app"

            [storage]
            bucket = "dr-backups"
            compartment = "ocid1.compartment.oc1..xxx"

            [backup]
            output_dir = "/var/backups"
            exclude = ["*.log", "tmp/*"]

            [metrics]
            port = 9100
            """,
        )

        config = load_config(path)

        assert config.database.host == "db.internal"
        assert config.database.port == 6543
        assert config.storage.bucket == "dr-backups"
        assert config.backup.exclude == ["*.log", "tmp/*"]
        assert config.metrics.port == 9100

    def test_explicit_missing_path(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "missing.toml")

    def test_dr_toml_in_working_directory(self, tmp_path):
        _write(tmp_path / "dr.toml", '[database]\nname = "from-cwd"\n')

        assert load_config().database.name == "from-cwd"

    def test_env_var_path_takes_precedence(self, tmp_path, monkeypatch):
        _write(tmp_path / "dr.toml", '[database]\nname = "from-cwd"\n')
        env_path = _write(tmp_path / "env.toml", '[database]\nname = "from-env"\n')
        monkeypatch.setenv("DR_CONFIG", str(env_path))

        assert load_config().database.name == "from-env"

    def test_invalid_toml(self, tmp_path):
        path = _write(tmp_path / "bad.toml", "[database\nname = \n")

        with pytest.raises(ValueError, match="Invalid config"):
            load_config(path)

    def test_invalid_value_type(self, tmp_path):
        path = _write(tmp_path / "bad.toml", '[database]\nport = "not-a-port"\n')

        with pytest.raises(ValueError):
            load_config(path)


class TestEnvironmentOverrides:
    """BACKUP_ENCRYPTION_KEY and PGPASSWORD."""

    def test_encryption_key_from_env_overrides_file(self, tmp_path, monkeypatch):
        path = _write(tmp_path / "dr.toml", '[backup]\nencryption_key = "from-file"\n')
        monkeypatch.setenv("BACKUP_ENCRYPTION_KEY", "from-env")

        assert load_config(path).backup.encryption_key == "from-env"

    def test_pgpassword_fills_missing_password(self, monkeypatch):
        monkeypatch.setenv("PGPASSWORD", "env-pw")

        assert load_config().database.password == "env-pw"

    def test_file_password_wins_over_pgpassword(self, tmp_path, monkeypatch):
        path = _write(tmp_path / "dr.toml", '[database]\npassword = "file-pw"\n')
        monkeypatch.setenv("PGPASSWORD", "env-pw")

        assert load_config(path).database.password == "file-pw"

    def test_secrets_not_in_repr(self, monkeypatch):
        monkeypatch.setenv("PGPASSWORD", "env-pw")
        monkeypatch.setenv("BACKUP_ENCRYPTION_KEY", "env-key")

        text = repr(load_config())

        assert "env-pw" not in text
        assert "env-key" not in text

    def test_settings_read_environment(self, monkeypatch, tmp_path):
        monkeypatch.setenv("DR_CONFIG", str(tmp_path / "dr.toml"))
        monkeypatch.setenv("BACKUP_ENCRYPTION_KEY", "env-key")
        monkeypatch.setenv("PGPASSWORD", "env-pw")

        settings = Settings()

        assert settings.config_path == str(tmp_path / "dr.toml")
        assert settings.encryption_key == "env-key"
        assert settings.database_password == "env-pw"
        assert "env-pw" not in repr(settings)

    def test_settings_default_to_none(self):
        settings = Settings()

        assert settings.config_path is None
        assert settings.encryption_key is None
        assert settings.database_password is None

    def test_missing_dr_config_target(self, monkeypatch, tmp_path):
        monkeypatch.setenv("DR_CONFIG", str(tmp_path / "missing.toml"))

        with pytest.raises(FileNotFoundError, match="DR_CONFIG"):
            load_config()


class TestConnectionParams:
    def test_override_database(self):
        config = OrchestratorConfig()
        config.database.name = "app"

        assert config.database.connection_params().database == "app"
        assert config.database.connection_params("other").database == "other"
