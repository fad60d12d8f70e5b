"""
RunbookOps 命令行入口模块。

提供 CLI 命令：serve（启动 MCP 服务）、detect（对目标执行一次异常检测）、
runbook（查看某类异常的修复计划）和 check（探测编排后端）。
日志写到 stderr，stdout 留给 stdio 传输。
"""
import asyncio
import json
import logging
import sys

import click

from runbookops import __version__
from runbookops.core.config import settings
from runbookops.core.exceptions import RemediationError


@click.group(invoke_without_command=True)
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.version_option(version=__version__)
@click.pass_context
def cli(ctx, verbose):
    """RunbookOps - 带安全闸门的自动修复引擎。"""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose

    level = logging.DEBUG if verbose else getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )

    # 未指定子命令时，显示基本信息
    if ctx.invoked_subcommand is None:
        click.echo(f"RunbookOps v{__version__}")
        click.echo(f"Backend: {settings.backend}")
        click.echo(f"Service: {settings.service_name}")
        click.echo("Use --help for available commands")


def _build_runtime():
    from runbookops.mcp.server import RunbookOpsRuntime

    try:
        return RunbookOpsRuntime.from_settings(settings)
    except RemediationError as e:
        click.echo(f"Error: {e.message}", err=True)
        if e.detail:
            click.echo(f"   {e.detail}", err=True)
        sys.exit(1)


@cli.command()
@click.argument("role", type=click.Choice(["monitor", "executor"]))
@click.option("--transport", type=click.Choice(["stdio", "http"]), default="stdio", show_default=True)
@click.option("--host", default="127.0.0.1", show_default=True, help="Host to bind (http transport)")
@click.option("--port", type=int, default=8003, show_default=True, help="Port to bind (http transport)")
def serve(role, transport, host, port):
    """启动 monitor 或 executor MCP 服务。"""
    from runbookops.mcp.server import SERVER_FACTORIES

    logger = logging.getLogger("runbookops")
    runtime = _build_runtime()
    server = SERVER_FACTORIES[role](runtime)

    logger.info("Starting RunbookOps %s server v%s (%s)", role, __version__, transport)
    logger.info("Backend: %s, service: %s", runtime.backend.kind, settings.service_name)
    try:
        if transport == "stdio":
            server.run(transport="stdio")
        else:
            server.run(transport="streamable-http", host=host, port=port)
    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down...")


@cli.command()
@click.argument("target")
def detect(target):
    """对目标执行一次异常检测。"""
    runtime = _build_runtime()
    result = asyncio.run(runtime.detect_anomaly(target))
    click.echo(json.dumps(result, indent=2, ensure_ascii=False))
    if not result["success"]:
        sys.exit(1)


@cli.command()
@click.argument("anomaly_type")
@click.option("--runbook-dir", default=None, help="Directory of markdown runbooks")
def runbook(anomaly_type, runbook_dir):
    """显示某类异常的修复计划。"""
    from runbookops.monitor.runbook_registry import RunbookRegistry

    registry = RunbookRegistry(runbook_dir or settings.runbook_dir)
    try:
        rb = registry.select(anomaly_type.upper())
    except RemediationError as e:
        click.echo(f"❌ {e.message}", err=True)
        sys.exit(1)

    click.echo(f"{rb.name} [{rb.trigger.value}]")
    click.echo(f"   {rb.description}")
    for step in rb.steps:
        optional = "" if step.required else " (optional)"
        click.echo(f"   {step.step_number}. [{step.action_kind.value}] {step.description}{optional}")
    if rb.rollback_plan:
        click.echo("Rollback plan:")
        for line in rb.rollback_plan.splitlines():
            click.echo(f"   {line}")


@cli.command()
def check():
    """探测编排后端并显示其能力。"""
    from runbookops.backends import build_backend

    try:
        backend = build_backend(settings)
    except RemediationError as e:
        click.echo(f"❌ Backend error: {e.message}", err=True)
        sys.exit(1)

    info = backend.describe()
    click.echo(f"✅ Backend OK: {info['kind']}")
    click.echo(f"   Service: {info['service_name']}")
    for name, enabled in info["capabilities"].items():
        click.echo(f"   {name}: {'yes' if enabled else 'no'}")


def main():
    """CLI 入口函数。"""
    cli()


if __name__ == "__main__":
    main()
