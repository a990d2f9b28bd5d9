"""
Tests for the records CLI.

Runs commands in-process with typer's CliRunner against a temporary config
directory. ``--offline`` keeps writes local so no git remote is needed.
"""

import json

import pytest
from typer.testing import CliRunner

from gitrecords.cli import app
from gitrecords.config import CONFIG_FILENAME, load_config


runner = CliRunner()


@pytest.fixture
def cli(tmp_path):
    """Invoke the CLI offline against an initialised config directory."""
    config_dir = tmp_path / "config"

    def _invoke(*args):
        return runner.invoke(app, ["--config", str(config_dir), "--offline", *args])

    result = _invoke("init", "--owner", "acme", "--repo", "content", "--token", "test-token")
    assert result.exit_code == 0, result.output
    return _invoke


class TestInit:

    def test_writes_config(self, tmp_path, cli):
        config = load_config(tmp_path / "config")
        assert config.remote.owner == "acme"
        assert config.remote.token == "test-token"
        assert (tmp_path / "config" / CONFIG_FILENAME).exists()

    def test_refuses_to_overwrite(self, cli):
        result = cli("init", "--owner", "x", "--repo", "y", "--token", "t")
        assert result.exit_code == 1
        assert "--force" in result.output

    def test_requires_token(self, tmp_path):
        result = runner.invoke(app, [
            "--config", str(tmp_path / "cfg"), "--offline",
            "init", "--owner", "acme", "--repo", "content",
        ])
        assert result.exit_code == 1
        assert "token" in result.output
        assert not (tmp_path / "cfg" / CONFIG_FILENAME).exists()

    def test_token_can_stay_in_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("GITRECORDS_TOKEN", "env-token")
        config_dir = tmp_path / "cfg"
        result = runner.invoke(app, [
            "--config", str(config_dir), "--offline",
            "init", "--owner", "acme", "--repo", "content", "--no-store-token",
        ])
        assert result.exit_code == 0, result.output
        assert "env-token" not in (config_dir / CONFIG_FILENAME).read_text()

    def test_commands_need_init(self, tmp_path):
        result = runner.invoke(app, ["--config", str(tmp_path / "none"), "list", "tags"])
        assert result.exit_code == 1
        assert "records init" in result.output


class TestWrites:

    def test_create_and_list(self, cli):
        result = cli("create", "tags", "tools", "Tools", "--set", "icon=wrench", "--set", "weight=3")
        assert result.exit_code == 0, result.output
        assert "id: tools" in result.output

        result = cli("list", "tags")
        assert result.exit_code == 0
        assert "tools" in result.output
        assert "Tools" in result.output

    def test_json_list(self, tmp_path, cli):
        cli("create", "tags", "tools", "Tools", "--set", "weight=3")
        result = runner.invoke(app, ["--config", str(tmp_path / "config"), "--json", "list", "tags"])

        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout) == [
            {"id": "tools", "name": "Tools", "isActive": True, "weight": 3},
        ]

    def test_json_output_of_date_field(self, tmp_path, cli):
        result = cli("create", "tags", "tools", "Tools", "--set", "since=2024-01-01")
        assert result.exit_code == 0, result.output

        result = runner.invoke(app, ["--config", str(tmp_path / "config"), "--json", "list", "tags"])
        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout)[0]["since"] == "2024-01-01"

        result = runner.invoke(app, ["--config", str(tmp_path / "config"), "--json", "show", "tags", "tools"])
        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout)["since"] == "2024-01-01"

    def test_duplicate_is_an_error(self, cli):
        cli("create", "tags", "tools", "Tools")
        result = cli("create", "tags", "other", "TOOLS")
        assert result.exit_code == 1
        assert "already exists" in result.output

    def test_invalid_id(self, cli):
        result = cli("create", "tags", "Bad_Id", "Bad")
        assert result.exit_code == 1
        assert "lowercase" in result.output

    def test_update(self, cli):
        cli("create", "tags", "tools", "Tools", "--set", "icon=wrench")
        result = cli("update", "tags", "tools", "--name", "Dev Tools", "--inactive", "--unset", "icon")

        assert result.exit_code == 0, result.output
        assert "name: Dev Tools" in result.output
        assert "isActive: false" in result.output
        assert "icon" not in result.output

    def test_update_needs_changes(self, cli):
        cli("create", "tags", "tools", "Tools")
        result = cli("update", "tags", "tools")
        assert result.exit_code == 1

    def test_update_missing(self, cli):
        result = cli("update", "tags", "ghost", "--name", "Ghost")
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_show(self, cli):
        cli("create", "categories", "news", "News")
        assert "id: news" in cli("show", "categories", "news").output
        assert "id: news" in cli("show", "categories", "NEWS", "--name").output
        assert cli("show", "categories", "ghost").exit_code == 1

    def test_reorder(self, cli):
        for id in ("aaa", "bbb", "ccc"):
            cli("create", "tags", id, id.upper())

        result = cli("reorder", "tags", "ccc", "aaa")

        assert result.exit_code == 0, result.output
        lines = [line.split()[0] for line in cli("list", "tags").output.splitlines()]
        assert lines == ["ccc", "aaa", "bbb"]

    def test_delete(self, cli):
        cli("create", "tags", "tools", "Tools")
        cli("create", "tags", "design", "Design")

        result = cli("del", "tags", "tools", "ghost")

        assert result.exit_code == 1
        assert "Deleted tools" in result.output
        assert "ghost" in result.output
        assert "tools" not in cli("list", "tags").output

    def test_delete_alias(self, cli):
        cli("create", "tags", "tools", "Tools")
        assert cli("delete", "tags", "tools").exit_code == 0

    def test_active_only_and_pages(self, cli):
        cli("create", "tags", "aaa", "A")
        cli("create", "tags", "bbb", "B", "--inactive")
        cli("create", "tags", "ccc", "C")

        assert "bbb" not in cli("list", "tags", "--active-only").output
        result = cli("list", "tags", "--page", "2", "--limit", "2")
        assert "ccc" in result.output
        assert "page 2/2" in result.output

    def test_invalid_kind(self, cli):
        result = cli("list", "Bad Kind")
        assert result.exit_code == 1


class TestStatus:

    def test_status_lists_collections(self, cli):
        cli("create", "tags", "tools", "Tools")
        result = cli("status")
        assert result.exit_code == 0, result.output
        assert "tags: 1 records" in result.output
        assert "categories: 0 records" in result.output

    def test_sync_offline_succeeds(self, cli):
        result = cli("sync", "tags")
        assert result.exit_code == 0, result.output
        assert "tags: idle" in result.output
