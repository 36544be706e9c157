"""Prompt 模板加载与渲染测试"""

import pytest
from scoutmind.common.utils import get_prompt_path, render_template
from scoutmind.common.utils.prompt_template import get_template_sections, render_text

EXPECTED_SECTIONS = {
    "planner.yaml": {"system_prompt", "create_plan", "refine_plan", "multi_page_plan"},
    "selector.yaml": {"system_prompt", "generate", "refine", "robust", "convert"},
    "extractor.yaml": {"system_prompt", "extract_data"},
    "recovery.yaml": {"alternative_selectors"},
}


class TestPromptFiles:
    """提示词文件测试"""

    @pytest.mark.parametrize("name", sorted(EXPECTED_SECTIONS))
    def test_sections_present(self, name):
        """测试每个模板文件包含所需 section"""
        sections = set(get_template_sections(get_prompt_path(name)))
        assert EXPECTED_SECTIONS[name] <= sections

    def test_render_create_plan(self):
        """测试渲染规划提示词"""
        text = render_template(
            get_prompt_path("planner.yaml"),
            section="create_plan",
            variables={
                "target_url": "https://example.com",
                "extraction_goal": "提取标题",
                "html_sample": "<h1>Hello</h1>",
            },
        )
        assert "https://example.com" in text
        assert "提取标题" in text
        assert "<h1>Hello</h1>" in text
        assert "{{" not in text

    def test_render_recovery_list_flag(self):
        """测试恢复提示词中的列表标记"""
        path = get_prompt_path("recovery.yaml")
        base = {
            "description": "Product price",
            "field_type": "number",
            "failed_selector": "span.cost",
            "error_message": None,
            "extraction_notes": None,
            "html_sample": "<span class='price'>1</span>",
        }
        single = render_template(path, section="alternative_selectors", variables={**base, "is_list": False})
        multiple = render_template(path, section="alternative_selectors", variables={**base, "is_list": True})
        assert "(number)" in single
        assert "(number, list)" in multiple
        assert "Error Message (if available): N/A" in single

    def test_missing_section_renders_empty(self):
        """测试不存在的 section 返回空字符串"""
        assert render_template(get_prompt_path("extractor.yaml"), section="nope") == ""


def test_render_text_without_variables_is_identity():
    assert render_text("{{ untouched }}") == "{{ untouched }}"


def test_prompts_dir_override(monkeypatch, tmp_path):
    custom = tmp_path / "custom.yaml"
    custom.write_text("greet: |\n  Hello {{ name }}\n", encoding="utf-8")
    monkeypatch.setenv("SCOUT_PROMPTS_DIR", str(tmp_path))

    path = get_prompt_path("custom.yaml")

    assert path == str(custom.resolve())
    assert render_template(path, section="greet", variables={"name": "Ada"}) == "Hello Ada\n"


def test_non_mapping_file_is_config_error(tmp_path):
    from scoutmind.common.exceptions import ConfigError

    bad = tmp_path / "bad.yaml"
    bad.write_text("- just\n- a list\n", encoding="utf-8")

    with pytest.raises(ConfigError):
        get_template_sections(str(bad))
