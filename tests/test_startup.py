"""Tests for the command line interface."""

import pytest
from sqlalchemy import create_engine, inspect

from automation_engine.config import LogLevel
from automation_engine.startup import create_argument_parser, load_configuration, main


QUIET = ["--log-level", "WARNING"]


class TestLoadConfiguration:

    def test_preset_with_overrides(self):
        args = create_argument_parser().parse_args(
            ["--env", "testing", "--port", "9001", "--max-concurrent-executions", "5", "run"]
        )

        config = load_configuration(args)

        assert config.database_url == "sqlite:///:memory:"
        assert config.port == 9001
        assert config.max_concurrent_executions == 5

    def test_log_level_override(self):
        args = create_argument_parser().parse_args(["--env", "development", "--log-level", "ERROR"])
        assert load_configuration(args).log_level == LogLevel.ERROR

    def test_invalid_override_is_rejected(self):
        args = create_argument_parser().parse_args(["--env", "testing", "--database-url", "oracle://db"])
        with pytest.raises(ValueError):
            load_configuration(args)


class TestCommands:

    def test_db_init_creates_tables(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'cli.db'}"

        main(["--database-url", url, *QUIET, "db", "init"])

        engine = create_engine(url)
        try:
            assert {"workflows", "workflow_executions", "workflow_templates", "contacts"} <= set(
                inspect(engine).get_table_names()
            )
        finally:
            engine.dispose()

    def test_config_show(self, capsys):
        main(["--env", "testing", *QUIET, "config", "show"])

        output = capsys.readouterr().out
        assert "Database URL: sqlite:///:memory:" in output
        assert "Max Concurrent Executions: 2" in output

    def test_config_validate_failure(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["--env", "testing", *QUIET, "--max-concurrent-executions", "150", "config", "validate"])

        assert exc_info.value.code == 1
        assert "Configuration validation: FAILED" in capsys.readouterr().out

    def test_invalid_database_url_exits(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["--env", "testing", "--database-url", "oracle://db", "config", "show"])

        assert exc_info.value.code == 1
        assert "Unsupported database scheme" in capsys.readouterr().out
