"""Tests for configuration loading."""
from pathlib import Path

import pytest
from dotenv import load_dotenv

from flux_notes.config import _USER_ENV, FluxNotesConfig


class TestFluxNotesConfig:
    def test_defaults(self, monkeypatch):
        for name in (
            "FLUX_NOTES_DATABASE_PATH",
            "FLUX_NOTES_LOG_LEVEL",
            "FLUX_NOTES_SQLITE_CACHE_KB",
            "FLUX_NOTES_SERVER_NAME",
        ):
            monkeypatch.delenv(name, raising=False)

        cfg = FluxNotesConfig()

        assert cfg.database_path == Path("data/flux-notes.db")
        assert cfg.log_level == "INFO"
        assert cfg.sqlite_cache_size_kb == 64000
        assert cfg.server_name == "flux-notes"

    def test_environment_overrides(self, monkeypatch, tmp_path):
        monkeypatch.setenv("FLUX_NOTES_DATABASE_PATH", str(tmp_path / "custom.db"))
        monkeypatch.setenv("FLUX_NOTES_LOG_LEVEL", "debug")
        monkeypatch.setenv("FLUX_NOTES_SQLITE_BUSY_TIMEOUT_MS", "250")

        cfg = FluxNotesConfig()

        assert cfg.get_database_path() == tmp_path / "custom.db"
        assert cfg.log_level == "DEBUG"
        assert cfg.sqlite_busy_timeout_ms == 250

    def test_user_env_file_is_read(self, monkeypatch, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("FLUX_NOTES_SERVER_NAME=from-dotenv\n")
        monkeypatch.delenv("FLUX_NOTES_SERVER_NAME", raising=False)
        load_dotenv(env_file)
        try:
            assert FluxNotesConfig().server_name == "from-dotenv"
        finally:
            monkeypatch.delenv("FLUX_NOTES_SERVER_NAME", raising=False)

    def test_user_env_location(self):
        assert _USER_ENV == Path.home() / ".flux-notes" / ".env"

    def test_unknown_log_level_falls_back(self, monkeypatch):
        monkeypatch.setenv("FLUX_NOTES_LOG_LEVEL", "chatty")
        assert FluxNotesConfig().log_level == "INFO"

    @pytest.mark.parametrize(
        "name, value",
        [("FLUX_NOTES_SQLITE_CACHE_KB", "0"), ("FLUX_NOTES_SQLITE_BUSY_TIMEOUT_MS", "-1")],
    )
    def test_invalid_sqlite_settings(self, monkeypatch, name, value):
        monkeypatch.setenv(name, value)
        with pytest.raises(ValueError):
            FluxNotesConfig()

    def test_relative_paths_resolve_against_base_dir(self, tmp_path):
        cfg = FluxNotesConfig(base_dir=tmp_path, database_path=Path("db/notes.db"))

        assert cfg.get_database_path() == tmp_path / "db" / "notes.db"
        assert cfg.get_db_url() == f"sqlite:///{tmp_path / 'db' / 'notes.db'}"
        assert (tmp_path / "db").is_dir()
