"""
程序主入口：队列 worker、手动投递任务、单次检测三个功能。
"""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import Optional

import click
from kombu.exceptions import OperationalError

from broker import job_queue, make_app
from cancellation import CancelToken, JobCancelled
from consumer.channels import KombuChannel
from consumer.worker import Worker
from detection.client import DetectionClient
from detection.errors import DetectionError
from detection.models import DetectionResult
from image_ops import read_image_file
from log_setup import configure_logging
from producer.producer import JobPublisher
from settings import CONFIG_PATH, ConfigError, Settings, load_settings


def _load_settings(ctx: click.Context, require_queue: bool = True, require_detection: bool = True) -> Settings:
    try:
        settings = load_settings(ctx.obj["config_path"])
        settings.validate(require_queue=require_queue, require_detection=require_detection)
    except (FileNotFoundError, ConfigError) as e:
        click.echo(f"配置错误: {e}", err=True)
        sys.exit(1)
    configure_logging(settings.logging.level)
    return settings


def _make_client(settings: Settings) -> DetectionClient:
    return DetectionClient(
        api_key=settings.detection.api_key,
        model=settings.detection.model,
        api_url=settings.detection.api_url,
        timeout=settings.detection.timeout_seconds,
    )


async def _serve(settings: Settings, channel: KombuChannel) -> None:
    token = CancelToken()
    token.install_signal_handlers()
    async with _make_client(settings) as client:
        worker = Worker(client, requeue_permanent_failures=settings.queue.requeue_permanent_failures)
        try:
            await worker.process_messages(token, channel)
        finally:
            channel.stop()


async def _detect_once(settings: Settings, url: Optional[str], image_bytes: Optional[bytes]) -> DetectionResult:
    token = CancelToken()
    token.install_signal_handlers()
    async with _make_client(settings) as client:
        if image_bytes is not None:
            return await client.infer(token, image_bytes)
        return await client.detect(token, url)


@click.group()
@click.option(
    "--config",
    "-C",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=CONFIG_PATH,
    show_default=True,
    help="配置文件路径",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Path) -> None:
    """图片检测任务：队列消费、投递与单次检测"""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


@cli.command()
@click.pass_context
def worker(ctx: click.Context) -> None:
    """启动 worker，持续消费队列直到收到 SIGINT/SIGTERM 或连接断开"""
    settings = _load_settings(ctx)
    app = make_app(settings.queue.broker_url)

    with app.connection_for_read() as connection:
        try:
            connection.ensure_connection(max_retries=3)
        except (OperationalError, *connection.connection_errors) as e:
            click.echo(f"无法连接消息代理: {e}", err=True)
            sys.exit(1)

        channel = KombuChannel(
            connection,
            job_queue(settings.queue.queue_name),
            prefetch_count=settings.queue.prefetch_count,
            poll_interval=settings.queue.poll_interval_seconds,
        )
        click.echo("已连接到消息代理")
        click.echo("[*] 等待消息...")
        try:
            asyncio.run(_serve(settings, channel))
        finally:
            channel.close()
    click.echo("worker 已停止")


@cli.command()
@click.option("--image-url", "-u", required=True, help="可公开访问的图片地址")
@click.option("--job-id", default=None, help="任务 ID（默认自动生成）")
@click.pass_context
def enqueue(ctx: click.Context, image_url: str, job_id: Optional[str]) -> None:
    """向队列投递一个检测任务，输出任务 ID"""
    settings = _load_settings(ctx, require_detection=False)
    app = make_app(settings.queue.broker_url)
    publisher = JobPublisher(app, settings.queue.queue_name)
    try:
        job = publisher.publish(image_url, job_id=job_id)
    except OperationalError as e:
        click.echo(f"投递失败: {e}", err=True)
        sys.exit(1)
    click.echo(job.job_id)


@cli.command()
@click.option("--url", "-u", default=None, help="图片地址")
@click.option(
    "--file",
    "-f",
    "file_path",
    default=None,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="本地图片文件",
)
@click.pass_context
def detect(ctx: click.Context, url: Optional[str], file_path: Optional[Path]) -> None:
    """直接调用检测服务（不经过队列），以 JSON 输出结果"""
    if bool(url) == bool(file_path):
        raise click.UsageError("需要且只能指定 --url 或 --file 之一")
    settings = _load_settings(ctx, require_queue=False)

    image_bytes = None
    if file_path is not None:
        try:
            image_bytes = read_image_file(file_path)
        except ValueError as e:
            click.echo(f"错误: {e}", err=True)
            sys.exit(1)

    try:
        result = asyncio.run(_detect_once(settings, url, image_bytes))
    except DetectionError as e:
        click.echo(f"检测失败 [{e.kind.value}]: {e}", err=True)
        sys.exit(1)
    except JobCancelled:
        click.echo("已取消", err=True)
        sys.exit(130)

    click.echo(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))


if __name__ == "__main__":
    cli()
