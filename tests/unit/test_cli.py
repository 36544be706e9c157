"""CLI 单元测试（不启动浏览器）"""

import json

import pytest
from typer.testing import CliRunner

from scoutmind.cli import app
from scoutmind.common.config import config

runner = CliRunner()


@pytest.fixture
def settings_file(tmp_path, monkeypatch):
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"llm_provider": "ollama"}), encoding="utf-8")
    monkeypatch.setattr(config.settings, "settings_file", str(path))
    return path


class TestCli:
    def test_config_show(self, settings_file):
        result = runner.invoke(app, ["config-show"])
        assert result.exit_code == 0

    def test_extract_rejects_invalid_url(self, settings_file):
        result = runner.invoke(app, ["extract", "提取标题", "not-a-url"])
        assert result.exit_code == 1

    def test_extract_rejects_empty_instruction(self, settings_file):
        result = runner.invoke(app, ["extract", "   ", "https://example.com"])
        assert result.exit_code == 1

    def test_validate_key_unregistered_provider(self, settings_file):
        result = runner.invoke(app, ["validate-key", "unknown-provider", "sk-test"])
        assert result.exit_code == 1
