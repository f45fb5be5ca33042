"""Tests for the hostbreaker CLI."""

from __future__ import annotations

import json

import pytest
from typer.testing import CliRunner

from hostbreaker.cli import app

runner = CliRunner()


@pytest.fixture
def yaml_path(tmp_path):
    path = tmp_path / "breakers.yaml"
    path.write_text(
        "defaults:\n"
        "  failure_threshold: 4\n"
        "include_port: true\n"
        "hosts:\n"
        "  api.example.com:\n"
        "    failure_threshold: 1\n",
        encoding="utf-8",
    )
    return path


class TestKeysCommand:
    def test_prints_keys(self):
        result = runner.invoke(app, ["keys", "http://A.EXAMPLE:81/x"])
        assert result.exit_code == 0
        assert "a.example:81" in result.stdout

    def test_no_include_port(self):
        result = runner.invoke(app, ["keys", "--no-include-port", "http://B.EXAMPLE:81/"])
        assert result.exit_code == 0
        assert "b.example:81" not in result.stdout
        assert "b.example" in result.stdout

    def test_bad_url_exits_2(self):
        result = runner.invoke(app, ["keys", "http://ok.example/", "mailto:x@y"])
        assert result.exit_code == 2
        assert "missing_host" in result.stdout

    def test_bad_config_exits_1(self, tmp_path):
        result = runner.invoke(
            app, ["keys", "--config", str(tmp_path / "missing.yaml"), "http://a.example/"]
        )
        assert result.exit_code == 1
        assert "Config error" in result.stdout


class TestConfigCommand:
    def test_raw_json(self, yaml_path):
        result = runner.invoke(app, ["config", "--config", str(yaml_path), "--raw"])
        assert result.exit_code == 0
        doc = json.loads(result.stdout)
        assert doc["defaults"]["failure_threshold"] == 4
        assert doc["hosts"]["api.example.com"]["failure_threshold"] == 1
        assert doc["include_port"] is True
        assert doc["advanced"]["lock_timeout_s"] == 5.0

    def test_env_path_and_overlay(self, yaml_path):
        env = {"HOSTBREAKER_YAML": str(yaml_path), "HOSTBREAKER_DEFAULTS": "success:7"}
        result = runner.invoke(app, ["config", "--raw"], env=env)
        assert result.exit_code == 0
        doc = json.loads(result.stdout)
        assert doc["defaults"]["success_threshold"] == 7

    def test_table_output(self, yaml_path):
        result = runner.invoke(app, ["config", "--config", str(yaml_path)])
        assert result.exit_code == 0
        assert "Breaker policies" in result.stdout
        assert "include_port: True" in result.stdout
