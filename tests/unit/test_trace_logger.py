"""LLM 追踪日志单元测试"""

from __future__ import annotations

from pathlib import Path

import pytest
from scoutmind.agents.base import BaseAgent
from scoutmind.common.config import config
from scoutmind.common.llm import append_llm_trace, read_llm_traces


def _enable_trace(monkeypatch, trace_path: Path, max_chars: int = 20000) -> None:
    monkeypatch.setattr(config.llm, "trace_enabled", True)
    monkeypatch.setattr(config.llm, "trace_file", str(trace_path))
    monkeypatch.setattr(config.llm, "trace_max_chars", max_chars)


def test_append_llm_trace_writes_json_lines(monkeypatch, tmp_path):
    trace_path = tmp_path / "traces" / "llm_trace.jsonl"
    _enable_trace(monkeypatch, trace_path)

    append_llm_trace("Planner.plan creation", {"input": {"k": "v"}})
    append_llm_trace("Selector.selector generation", {"output": {"ok": True}})

    lines = trace_path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 2

    records = read_llm_traces(trace_path)
    assert records[0]["component"] == "Planner.plan creation"
    assert records[0]["input"] == {"k": "v"}
    assert records[1]["component"] == "Selector.selector generation"
    assert "timestamp" in records[0]


def test_append_llm_trace_truncates_long_strings(monkeypatch, tmp_path):
    trace_path = tmp_path / "llm_trace.jsonl"
    _enable_trace(monkeypatch, trace_path, max_chars=10)

    append_llm_trace("Extractor.extract_data", {"output": {"raw_response": "x" * 5000}})

    raw = read_llm_traces(trace_path)[0]["output"]["raw_response"]
    # 截断下限为 2000
    assert raw.startswith("x" * 2000)
    assert raw.endswith("...[truncated 3000 chars]")


def test_read_skips_corrupt_lines(monkeypatch, tmp_path):
    trace_path = tmp_path / "llm_trace.jsonl"
    trace_path.write_text("{not json\n\n", encoding="utf-8")
    _enable_trace(monkeypatch, trace_path)

    append_llm_trace("Recovery.alternative_selectors", {"input": {}})

    assert [r["component"] for r in read_llm_traces(trace_path)] == [
        "Recovery.alternative_selectors"
    ]


def test_append_llm_trace_disabled(monkeypatch, tmp_path):
    trace_path = tmp_path / "llm_trace.jsonl"
    _enable_trace(monkeypatch, trace_path)
    monkeypatch.setattr(config.llm, "trace_enabled", False)

    append_llm_trace("Planner.plan creation", {"input": {}})

    assert not trace_path.exists()
    assert read_llm_traces(trace_path) == []


@pytest.mark.asyncio
async def test_agent_call_is_traced(monkeypatch, tmp_path, make_gateway):
    """测试 Agent 每次调用都记录一条追踪"""
    trace_path = tmp_path / "llm_trace.jsonl"
    _enable_trace(monkeypatch, trace_path)
    gateway, _ = make_gateway(["answer"])

    class EchoAgent(BaseAgent):
        component = "Echo"

    response = await EchoAgent(gateway)._ask(
        "question", operation="ask", temperature=0.1, trace_input={"extra": 1}
    )

    assert response.text == "answer"
    (record,) = read_llm_traces(trace_path)
    assert record["component"] == "Echo.ask"
    assert record["provider"] == "scripted"
    assert record["model"] == "test-model"
    assert record["input"]["prompt"] == "question"
    assert record["input"]["extra"] == 1
    assert record["output"]["raw_response"] == "answer"
    assert record["duration_ms"] >= 0
