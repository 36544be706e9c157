"""配置加载单元测试"""

from scoutmind.common.config import Config


class TestConfigLoad:
    """环境变量读取测试"""

    def test_env_overrides(self, monkeypatch):
        """测试环境变量覆盖默认值"""
        monkeypatch.setenv("SCOUT_LLM_PROVIDER", "openai")
        monkeypatch.setenv("SCOUT_LLM_FALLBACK_PROVIDER", "ollama")
        monkeypatch.setenv("SCOUT_LLM_TEMPERATURE", "0.1")
        monkeypatch.setenv("HEADLESS", "false")
        monkeypatch.setenv("RECOVERY_MAX_ATTEMPTS", "5")

        cfg = Config.load()

        assert cfg.llm.provider == "openai"
        assert cfg.llm.fallback_provider == "ollama"
        assert cfg.llm.temperature == 0.1
        assert cfg.browser.headless is False
        assert cfg.recovery.max_attempts_per_field == 5

    def test_defaults(self, monkeypatch):
        """测试未设置环境变量时的默认值"""
        for name in (
            "SCOUT_LLM_PROVIDER",
            "SCOUT_LLM_FALLBACK_PROVIDER",
            "OLLAMA_BASE_URL",
            "FETCH_TIMEOUT_MS",
            "LLM_TRACE_ENABLED",
            "PLANNER_MAX_HTML",
            "EXTRACTOR_FALLBACK_TO_MODEL",
        ):
            monkeypatch.delenv(name, raising=False)

        cfg = Config.load()

        assert cfg.llm.provider == "ollama"
        assert cfg.llm.fallback_provider is None
        assert cfg.llm.trace_enabled is False
        assert cfg.ollama.base_url == "http://localhost:11434"
        assert cfg.browser.fetch_timeout_ms == 30000
        assert cfg.extractor.fallback_to_model is True
        assert cfg.planner.max_html_sample_length == 30000

