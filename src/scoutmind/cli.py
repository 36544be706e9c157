"""CLI 入口"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import typer
from rich.panel import Panel
from rich.table import Table

from .agents import Orchestrator, OrchestrationResult, PlannerAgent
from .common.browser import (
    PlaywrightPageFetcher,
    PlaywrightPageQuery,
    create_browser_session,
)
from .common.config import config
from .common.exceptions import ValidationError
from .common.llm import ModelGateway, build_gateway
from .common.logger import console, get_logger, set_log_level, setup_file_logging
from .common.settings import JsonFileSettingsStore
from .common.validators import validate_instruction, validate_url

logger = get_logger(__name__)

app = typer.Typer(
    name="scoutmind",
    help="ScoutMind CLI - 基于 LLM 的网页数据提取",
    add_completion=False,
)


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="输出 DEBUG 级别日志"),
    log_file: str | None = typer.Option(None, "--log-file", help="同时把日志写入该文件"),
):
    """全局日志选项"""
    if verbose:
        set_log_level("DEBUG")
    if log_file:
        setup_file_logging(log_file)
        logger.debug(f"[CLI] 日志同时写入: {log_file}")


def _create_gateway(fallback_provider: str | None = None) -> ModelGateway:
    store = JsonFileSettingsStore(config.settings.settings_file)
    gateway = build_gateway(settings_store=store)
    if fallback_provider:
        gateway.update_config(fallback_provider=fallback_provider)
    return gateway


def _format_value(value: object) -> str:
    if isinstance(value, (list, dict)):
        return json.dumps(value, ensure_ascii=False)
    return "" if value is None else str(value)


def _build_data_table(result: OrchestrationResult) -> Table:
    table = Table(title="提取结果")
    table.add_column("字段", style="cyan")
    table.add_column("选择器", style="magenta")
    table.add_column("值", style="green")
    for field_id, value in result.data.items():
        table.add_row(field_id, result.selectors.get(field_id) or "-", _format_value(value))
    return table


def _build_issues_table(result: OrchestrationResult) -> Table:
    table = Table(title="问题")
    table.add_column("来源", style="yellow")
    table.add_column("字段", style="cyan")
    table.add_column("描述", style="red")
    for issue in result.issues:
        table.add_row(issue.type, issue.dp_id, issue.issue)
    return table


def _print_error(message: str) -> None:
    console.print(Panel(f"[red]{message}[/red]", title="执行错误", style="red"))


@app.command("extract")
def extract_command(
    instruction: str = typer.Argument(..., help="自然语言提取指令，例如：提取商品名称和价格"),
    url: str = typer.Argument(..., help="目标页面 URL"),
    provider: str | None = typer.Option(None, "--provider", "-p", help="本次请求使用的 provider"),
    fallback_provider: str | None = typer.Option(
        None,
        "--fallback-provider",
        help="主 provider 失败时切换的 provider",
    ),
    headless: bool = typer.Option(
        True,
        "--headless/--no-headless",
        help="是否使用无头模式",
    ),
    output: str | None = typer.Option(None, "--output", "-o", help="结果 JSON 输出文件"),
):
    """
    运行完整的提取流水线

    示例:
        scoutmind extract "提取文章标题和发布日期" "https://example.com/post/1"
    """
    try:
        instruction = validate_instruction(instruction)
        url = validate_url(url)
    except ValidationError as exc:
        _print_error(str(exc))
        raise typer.Exit(1)

    console.print(
        Panel(
            f"[bold]目标 URL:[/bold] {url}\n"
            f"[bold]提取指令:[/bold] {instruction}\n"
            f"[bold]Provider:[/bold] {provider or '默认'}\n"
            f"[bold]无头模式:[/bold] {headless}",
            title="ScoutMind",
            style="cyan",
        )
    )

    try:
        result = asyncio.run(
            _run_extract(instruction, url, provider, fallback_provider, headless)
        )
    except KeyboardInterrupt:
        console.print("\n[yellow]用户中断[/yellow]")
        raise typer.Exit(130)
    except Exception as exc:  # noqa: BLE001
        _print_error(str(exc))
        raise typer.Exit(1)

    if result.data:
        console.print(_build_data_table(result))
    if result.issues:
        console.print(_build_issues_table(result))

    if output:
        path = Path(output)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(result.to_dict(), ensure_ascii=False, indent=2), encoding="utf-8")
        console.print(f"结果已保存: {path}")

    if not result.success:
        _print_error(result.error or "提取失败")
        raise typer.Exit(1)
    console.print(Panel("[green]提取完成[/green]", title="完成", style="green"))


async def _run_extract(
    instruction: str,
    url: str,
    provider: str | None,
    fallback_provider: str | None,
    headless: bool,
) -> OrchestrationResult:
    gateway = _create_gateway(fallback_provider)
    async with create_browser_session(headless=headless) as session:
        await session.navigate(url)
        orchestrator = Orchestrator(gateway, PlaywrightPageFetcher(session.context))
        return await orchestrator.process_request(
            instruction,
            url,
            PlaywrightPageQuery(session.page, config.browser.element_timeout_ms),
            provider_hint=provider,
        )


@app.command("plan")
def plan_command(
    instruction: str = typer.Argument(..., help="自然语言提取指令"),
    url: str = typer.Argument(..., help="目标页面 URL"),
    provider: str | None = typer.Option(None, "--provider", "-p", help="使用的 provider"),
    headless: bool = typer.Option(True, "--headless/--no-headless", help="是否使用无头模式"),
):
    """
    只生成提取计划

    示例:
        scoutmind plan "提取商品列表" "https://example.com/list"
    """
    try:
        plan = asyncio.run(_run_plan(instruction, url, provider, headless))
    except KeyboardInterrupt:
        console.print("\n[yellow]用户中断[/yellow]")
        raise typer.Exit(130)
    except Exception as exc:  # noqa: BLE001
        _print_error(str(exc))
        raise typer.Exit(1)

    console.print_json(json.dumps(plan.to_dict(), ensure_ascii=False))
    if not plan.success:
        _print_error(plan.error or "计划生成失败")
        raise typer.Exit(1)


async def _run_plan(instruction: str, url: str, provider: str | None, headless: bool):
    instruction = validate_instruction(instruction)
    url = validate_url(url)
    gateway = _create_gateway()
    async with create_browser_session(headless=headless) as session:
        fetched = await PlaywrightPageFetcher(session.context).fetch(url)
        if not fetched.success:
            raise RuntimeError(f"Failed to fetch page content: {fetched.error}")
        planner = PlannerAgent(gateway, provider=provider)
        return await planner.create_plan(url, instruction, fetched.html_content or "")


@app.command("validate-key")
def validate_key_command(
    provider: str = typer.Argument(..., help="provider id，例如 openai"),
    api_key: str = typer.Argument(..., help="待校验的 API Key"),
):
    """
    校验 provider 的 API Key
    """
    gateway = _create_gateway()
    try:
        result = asyncio.run(gateway.validate_api_key(provider, api_key))
    except KeyboardInterrupt:
        console.print("\n[yellow]用户中断[/yellow]")
        raise typer.Exit(130)

    if result.success:
        console.print(Panel(f"[green]{result.message}[/green]", title=provider, style="green"))
        return
    _print_error(result.error or result.message or "API Key 校验失败")
    raise typer.Exit(1)


@app.command("config-show")
def config_show_command():
    """
    显示生效的网关配置（API Key 只显示是否已设置）
    """
    gateway = _create_gateway()
    gateway_config = gateway.config

    table = Table(title="Provider 配置")
    table.add_column("provider", style="cyan")
    table.add_column("base_url", style="green")
    table.add_column("model", style="magenta")
    table.add_column("api_key", style="yellow")
    table.add_column("已注册")
    registered = set(gateway.provider_ids())
    for provider_id, settings in gateway_config.providers.items():
        table.add_row(
            provider_id,
            settings.base_url,
            settings.model,
            "已设置" if settings.api_key else "-",
            "是" if provider_id in registered else "否",
        )

    console.print(
        Panel(
            f"[bold]默认 provider:[/bold] {gateway.default_provider}\n"
            f"[bold]Fallback provider:[/bold] {gateway_config.fallback_provider or '-'}\n"
            f"[bold]temperature:[/bold] {gateway_config.temperature}\n"
            f"[bold]max_tokens:[/bold] {gateway_config.max_tokens}\n"
            f"[bold]设置文件:[/bold] {config.settings.settings_file}",
            title="网关配置",
            style="cyan",
        )
    )
    console.print(table)


def main():
    """CLI 入口点

    供 pyproject.toml 中 [project.scripts] 调用。
    """
    app()


if __name__ == "__main__":
    main()
