"""恢复 Agent 单元测试"""

import pytest
from scoutmind.agents import RecoveryAgent
from scoutmind.agents.models import FieldDefinition
from scoutmind.common.config import config
from scoutmind.common.llm import LLMResponse

FIELD = FieldDefinition("title", description="Page title")


async def from_list(field, failed_selector, error_message, html_sample):
    return ["table", "h1", "h1", " h2.name ", ""]


async def nothing_matches(field, failed_selector, error_message, html_sample):
    return ["table", "ul > li"]


async def boom(field, failed_selector, error_message, html_sample):
    raise RuntimeError("strategy crashed")


class TestAttemptRecovery:
    """策略执行与候选验证测试"""

    @pytest.mark.asyncio
    async def test_only_matching_candidates_accepted(self, make_gateway, sample_page):
        gateway, _ = make_gateway()
        agent = RecoveryAgent(gateway, strategies=[from_list])

        result = await agent.attempt_recovery(FIELD, "h1.title", "No elements", "", sample_page)

        assert result.recovery_successful
        assert result.alternative_selectors == ["h1", "h2.name"]
        assert result.strategy_used == "from_list"

    @pytest.mark.asyncio
    async def test_failing_strategy_skipped(self, make_gateway, sample_page):
        gateway, _ = make_gateway()
        agent = RecoveryAgent(gateway, strategies=[boom, nothing_matches, from_list])

        result = await agent.attempt_recovery(FIELD, "h1.title", None, "", sample_page)

        assert result.recovery_successful
        assert result.strategy_used == "from_list"

    @pytest.mark.asyncio
    async def test_all_strategies_fail(self, make_gateway, sample_page):
        gateway, _ = make_gateway()
        agent = RecoveryAgent(gateway, strategies=[boom, nothing_matches])

        result = await agent.attempt_recovery(FIELD, "h1.title", None, "", sample_page)

        assert not result.recovery_successful
        assert result.alternative_selectors == []
        assert result.strategy_used is None

    @pytest.mark.asyncio
    async def test_html_sample_truncated(self, make_gateway, sample_page):
        seen = []

        async def capture(field, failed_selector, error_message, html_sample):
            seen.append(html_sample)
            return []

        gateway, _ = make_gateway()
        agent = RecoveryAgent(gateway, strategies=[capture])
        limit = config.recovery.max_html_length

        await agent.attempt_recovery(FIELD, None, None, "x" * (limit + 500), sample_page)

        assert len(seen[0]) == limit + 3
        assert seen[0].endswith("...")

    @pytest.mark.asyncio
    async def test_invalid_selector_is_not_valid(self, make_gateway, sample_page):
        gateway, _ = make_gateway()
        agent = RecoveryAgent(gateway)
        assert await agent.test_selector(sample_page, "h1")
        assert not await agent.test_selector(sample_page, "table")
        assert not await agent.test_selector(sample_page, "div[")


class TestModelStrategy:
    """模型备选选择器策略测试"""

    @pytest.mark.asyncio
    async def test_model_alternatives(self, make_gateway, sample_page, sample_html):
        gateway, provider = make_gateway(['["table", "div.product h2.name", ".price"]'])
        agent = RecoveryAgent(gateway)

        result = await agent.attempt_recovery(
            FIELD, "h1.title", "No elements found", sample_html, sample_page
        )

        assert result.recovery_successful
        assert result.alternative_selectors == ["div.product h2.name", ".price"]
        assert result.strategy_used == "alternative_selectors_via_model"

        prompt = provider.prompts[0]
        assert "JSON Alternative Selectors:" in prompt
        assert 'Original Failed Selector: "h1.title"' in prompt
        assert "Data Point Description: Page title (string)" in prompt
        assert provider.options[0].temperature == config.recovery.temperature
        assert provider.options[0].system_prompt is None

    @pytest.mark.asyncio
    async def test_fenced_array(self, make_gateway, sample_page):
        gateway, _ = make_gateway(['```json\n["h1"]\n```'])
        candidates = await RecoveryAgent(gateway).alternative_selectors_via_model(
            FIELD, None, None, "<h1>Hello</h1>"
        )
        assert candidates == ["h1"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ['{"selector": "h1"}', "[1, 2]", "no idea"])
    async def test_unusable_output(self, make_gateway, text):
        gateway, _ = make_gateway([text])
        candidates = await RecoveryAgent(gateway).alternative_selectors_via_model(
            FIELD, "h1.title", None, "<h1>Hello</h1>"
        )
        assert candidates == []

    @pytest.mark.asyncio
    async def test_gateway_error_means_no_recovery(self, make_gateway, sample_page):
        gateway, _ = make_gateway([LLMResponse(error="provider down")])
        result = await RecoveryAgent(gateway).attempt_recovery(
            FIELD, "h1.title", None, "", sample_page
        )
        assert not result.recovery_successful

    @pytest.mark.asyncio
    async def test_with_provider_rebinds_strategy(
        self, make_gateway, scripted_provider, sample_page
    ):
        """测试 with_provider 之后内置策略使用新的 provider"""
        gateway, default = make_gateway(['["table"]'])
        other = scripted_provider(['["h1"]'])
        gateway.register_provider("other", other)

        result = await RecoveryAgent(gateway).with_provider("other").attempt_recovery(
            FIELD, "h1.title", None, "", sample_page
        )

        assert result.alternative_selectors == ["h1"]
        assert other.call_count == 1
        assert default.call_count == 0
