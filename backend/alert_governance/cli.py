"""
告警治理引擎命令行入口模块。

提供 CLI 命令：run（前台运行引擎后台任务）、seed-policies（从 YAML 导入策略）和 stats（输出限流统计）。
"""
import asyncio
import json
import logging
import signal
import sys

import click

from alert_governance import __version__
from alert_governance.core.database import Base, engine as db_engine
from alert_governance.core.exceptions import GovernanceError
from alert_governance.services.governance import build_engine
from alert_governance.services.policy_seed import apply_policies, load_policy_file


async def _create_tables():
    import alert_governance.models  # noqa: F401

    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@click.group(invoke_without_command=True)
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.version_option(version=__version__)
@click.pass_context
def cli(ctx, verbose):
    """Alert Governance Engine - 告警限流、路由与升级。"""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose

    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    if ctx.invoked_subcommand is None:
        click.echo(f"Alert Governance Engine v{__version__}")
        click.echo("Use --help for available commands")


@cli.command()
def run():
    """以前台模式运行引擎的后台任务。"""
    logger = logging.getLogger("alert-governance")

    async def _run():
        await _create_tables()
        engine = build_engine()
        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        # 注册信号处理，优雅关闭
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop.set)
        await engine.start(run_background_tasks=True)
        logger.info(f"Alert Governance Engine v{__version__} running")
        try:
            await stop.wait()
        finally:
            logger.info("Shutting down...")
            await engine.stop()
            await db_engine.dispose()

    try:
        asyncio.run(_run())
    except Exception:
        logger.exception("Engine crashed")
        sys.exit(1)


@cli.command("seed-policies")
@click.argument("path", type=click.Path())
@click.option("--defaults/--no-defaults", default=False, help="Also insert the default severity rules")
def seed_policies(path, defaults):
    """从 YAML 文件导入严重程度规则、值班排期和团队配置。"""
    try:
        data = load_policy_file(path)
    except FileNotFoundError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    async def _seed():
        await _create_tables()
        engine = build_engine()
        try:
            return await apply_policies(engine.store, data, engine.clock.now(), with_defaults=defaults)
        finally:
            await db_engine.dispose()

    try:
        counts = asyncio.run(_seed())
    except GovernanceError as e:
        click.echo(f"❌ Policy error: {e.message} ({e.detail})", err=True)
        sys.exit(1)
    click.echo(f"✅ Policies applied: {path}")
    for name, count in counts.items():
        click.echo(f"   {name}: {count}")


@cli.command()
def stats():
    """输出限流统计。"""

    async def _stats():
        engine = build_engine()
        try:
            return await engine.rate_limiter.get_statistics()
        finally:
            await db_engine.dispose()

    click.echo(json.dumps(asyncio.run(_stats()), indent=2))


def main():
    """CLI 入口函数。"""
    cli()


if __name__ == "__main__":
    main()
