"""全局常量"""

from __future__ import annotations

# ============================================================================
# 输入验证
# ============================================================================

MAX_INSTRUCTION_LENGTH = 2000
MAX_URL_LENGTH = 2048
VALID_URL_SCHEMES = ("http", "https")

# ============================================================================
# HTML 截断
# ============================================================================

HTML_TRUNCATION_MARKER = "<!-- HTML truncated for size limits -->"

# ============================================================================
# Provider
# ============================================================================

PROVIDER_OLLAMA = "ollama"
PROVIDER_OPENAI = "openai"
PROVIDER_MISTRAL = "mistral"
PROVIDER_ANTHROPIC = "anthropic"
EXTERNAL_PROVIDERS = (PROVIDER_OPENAI, PROVIDER_MISTRAL, PROVIDER_ANTHROPIC)

# ============================================================================
# 字段类型与转换
# ============================================================================

TRUTHY_TOKENS = frozenset({"true", "yes", "1", "on"})
FALSY_TOKENS = frozenset({"false", "no", "0", "off"})

# ============================================================================
# 编排问题来源
# ============================================================================

ISSUE_SELECTION = "selection"
ISSUE_EXTRACTION = "extraction"
ISSUE_VALIDATION = "validation"
ISSUE_ORCHESTRATION = "orchestration"
