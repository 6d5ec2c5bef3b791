"""Tests for the command line entry point."""
import logging
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from flux_notes import main as main_module
from flux_notes.config import config
from flux_notes.exceptions import StorageError


@pytest.fixture
def isolated_config(monkeypatch):
    """Let main() mutate the global config without leaking into other tests."""
    for field in ("database_path", "log_dir", "log_level", "server_version"):
        monkeypatch.setattr(config, field, getattr(config, field))
    root = logging.getLogger("flux_notes")
    handlers, level = list(root.handlers), root.level
    yield config
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers = handlers
    root.setLevel(level)


class TestArguments:
    def test_parse_args(self):
        args = main_module.parse_args(
            ["--database-path", "/tmp/x.db", "--log-level", "DEBUG", "--log-dir", "/tmp/logs"]
        )
        assert args.database_path == "/tmp/x.db"
        assert args.log_level == "DEBUG"
        assert args.log_dir == "/tmp/logs"

    def test_update_config(self, isolated_config):
        args = main_module.parse_args(["--database-path", "/tmp/x.db", "--log-level", "ERROR"])
        main_module.update_config(args)

        assert config.database_path == Path("/tmp/x.db")
        assert config.log_level == "ERROR"


class TestMain:
    def test_runs_server_on_initialized_engine(self, isolated_config, tmp_path):
        engine = MagicMock()
        server = MagicMock()
        argv = [
            "--database-path", str(tmp_path / "flux.db"),
            "--log-dir", str(tmp_path / "logs"),
        ]
        with patch.object(main_module, "init_db", return_value=engine) as init_db, \
                patch.object(main_module, "FluxNotesMcpServer", return_value=server) as server_cls, \
                patch.object(main_module.atexit, "register"):
            main_module.main(argv)

        init_db.assert_called_once_with()
        server_cls.assert_called_once_with(engine)
        server.run.assert_called_once()
        assert (tmp_path / "logs" / "flux-notes.log").exists()

    def test_logs_configured_server_version(self, isolated_config, tmp_path, caplog):
        config.server_version = "9.9.9"
        argv = ["--log-dir", str(tmp_path / "logs")]
        with patch.object(main_module, "init_db", return_value=MagicMock()), \
                patch.object(main_module, "FluxNotesMcpServer"), \
                patch.object(main_module.atexit, "register"), \
                caplog.at_level(logging.INFO, logger="flux_notes.main"):
            main_module.main(argv)

        assert f"{config.server_name} MCP server 9.9.9" in caplog.text

    def test_exits_when_database_cannot_be_opened(self, isolated_config, tmp_path):
        failure = StorageError("Failed to open or initialize database", operation="init_db")
        with patch.object(main_module, "init_db", side_effect=failure), \
                patch.object(main_module, "FluxNotesMcpServer") as server_cls, \
                patch.object(main_module.atexit, "register"):
            with pytest.raises(SystemExit) as exc_info:
                main_module.main(["--log-dir", str(tmp_path / "logs")])

        assert exc_info.value.code == 1
        server_cls.assert_not_called()
