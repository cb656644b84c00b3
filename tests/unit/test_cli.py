"""
Tests for contentbridge.cli.main module.
"""

import json
from pathlib import Path
from typing import Any

import pytest
from click.testing import CliRunner

from contentbridge.cli.main import cli
from contentbridge.core.config import ContentBridgeConfig
from contentbridge.core.session import Session

from conftest import RecordingFetcher


@pytest.fixture
def config_file(sample_config: ContentBridgeConfig, temp_dir: Path) -> Path:
    path = temp_dir / "config.json"
    sample_config.save(path)
    return path


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def local_session(mocker: Any, fetcher: RecordingFetcher) -> None:
    """Sessions created by the CLI read from the in-process export service."""

    def factory(config: ContentBridgeConfig) -> Session:
        return Session(config=config, fetcher=fetcher)

    mocker.patch("contentbridge.cli.main.Session", side_effect=factory)


class TestCli:
    def test_status_empty(self, runner: CliRunner, config_file: Path) -> None:
        result = runner.invoke(cli, ["--config", str(config_file), "--json", "status"], obj={})
        assert result.exit_code == 0
        assert json.loads(result.output) == {}

    def test_step_prints_protocol_json(
        self, runner: CliRunner, config_file: Path, local_session: None
    ) -> None:
        result = runner.invoke(cli, ["--config", str(config_file), "step", "-b", "5"], obj={})

        assert result.exit_code == 0
        assert json.loads(result.output) == {"imported": 5, "lastID": 5, "done": False}

        result = runner.invoke(cli, ["--config", str(config_file), "--json", "status"], obj={})
        assert json.loads(result.output) == {"post": 5}

    def test_reset_watermark(
        self, runner: CliRunner, config_file: Path, sample_config: ContentBridgeConfig
    ) -> None:
        sample_config.state_file.write_text(json.dumps({"post": 9}))

        result = runner.invoke(
            cli, ["--config", str(config_file), "reset-watermark", "post", "--value", "3", "--yes"], obj={}
        )

        assert result.exit_code == 0
        assert json.loads(sample_config.state_file.read_text()) == {"post": 3}

    def test_reset_watermark_aborts_without_confirmation(
        self, runner: CliRunner, config_file: Path, sample_config: ContentBridgeConfig
    ) -> None:
        sample_config.state_file.write_text(json.dumps({"post": 9}))

        result = runner.invoke(
            cli, ["--config", str(config_file), "reset-watermark", "post"], obj={}, input="n\n"
        )

        assert result.exit_code != 0
        assert json.loads(sample_config.state_file.read_text()) == {"post": 9}

    def test_set_remote_and_show(self, runner: CliRunner, config_file: Path) -> None:
        result = runner.invoke(
            cli,
            ["--config", str(config_file), "config", "set-remote", "https://old.example/wp-json/x/posts", "tok123"],
            obj={},
        )
        assert result.exit_code == 0

        saved = json.loads(config_file.read_text())["remote"]
        assert saved["posts_url"] == "https://old.example/wp-json/x/posts"
        assert saved["token"] == "tok123"

        result = runner.invoke(cli, ["--config", str(config_file), "config", "show"], obj={})
        shown = json.loads(result.output)
        assert shown["remote"]["token"] == "***"

    def test_import_without_remote_fails(self, runner: CliRunner, config_file: Path) -> None:
        result = runner.invoke(cli, ["--config", str(config_file), "--quiet", "import"], obj={})
        assert result.exit_code == 1
        assert "not configured" in result.output

    def test_import_json(
        self, runner: CliRunner, config_file: Path, local_session: None, mocker: Any
    ) -> None:
        mocker.patch.object(Session, "client", new_callable=mocker.PropertyMock)

        result = runner.invoke(
            cli, ["--config", str(config_file), "--json", "import", "--total", "7"], obj={}
        )

        assert result.exit_code == 0
        body = json.loads(result.output)
        assert body["success"] is True
        assert body["report"]["records_imported"] == 7

    def test_export_token(self, runner: CliRunner, config_file: Path) -> None:
        first = runner.invoke(cli, ["--config", str(config_file), "export-token"], obj={})
        second = runner.invoke(cli, ["--config", str(config_file), "export-token"], obj={})

        token = first.output.strip().splitlines()[-1]
        assert len(token) == 64
        assert second.output.strip().splitlines()[-1] == token
