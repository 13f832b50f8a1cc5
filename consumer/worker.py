"""
消费者端：逐条处理队列中的检测任务。

状态只有 RUNNING / STOPPED 两种。取消令牌触发或投递通道关闭时进入 STOPPED，
且不会再恢复。处理严格串行：当前消息 ack / nack 之后才取下一条。

处理结果：
- 消息无法解码        -> nack，不重新入队
- 检测成功            -> ack
- 检测失败（任意类别）-> nack，重新入队
- 处理中被取消        -> 不 ack 也不 nack，交给消息代理在断开后重新投递
"""

from __future__ import annotations

import asyncio
import json
import logging
from enum import Enum
from typing import Optional, Protocol

from cancellation import CancelToken, JobCancelled
from consumer.channels import ChannelClosed, Delivery
from consumer.messages import decode_job_message
from detection.errors import DecodeError, DetectionError, ErrorKind
from detection.models import DetectionResult

logger = logging.getLogger(__name__)


class WorkerState(str, Enum):
    RUNNING = "running"
    STOPPED = "stopped"


class Detector(Protocol):
    async def detect(self, token: CancelToken, image_url: str) -> DetectionResult:
        ...


class InboundChannel(Protocol):
    async def receive(self) -> Optional[Delivery]:
        ...


class Worker:
    def __init__(self, client: Detector, requeue_permanent_failures: bool = True) -> None:
        self.client = client
        self.requeue_permanent_failures = requeue_permanent_failures
        self.state = WorkerState.RUNNING

    async def process_messages(self, token: CancelToken, channel: InboundChannel) -> None:
        if self.state is WorkerState.STOPPED:
            raise RuntimeError("worker has already stopped")

        try:
            while True:
                delivery = await self._next_delivery(token, channel)
                if delivery is None:
                    return
                try:
                    await self.handle_message(token, delivery)
                except JobCancelled:
                    logger.info("处理中收到取消，消息保持未确认，停止 worker")
                    return
                except ChannelClosed as exc:
                    logger.error("%s，停止 worker", exc)
                    return
        finally:
            self.state = WorkerState.STOPPED

    async def _next_delivery(self, token: CancelToken, channel: InboundChannel) -> Optional[Delivery]:
        if token.cancelled:
            logger.info("取消令牌已触发，停止 worker")
            return None

        receive = asyncio.ensure_future(channel.receive())
        stop = asyncio.ensure_future(token.wait())
        try:
            done, _ = await asyncio.wait({receive, stop}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            receive.cancel()
            raise
        finally:
            stop.cancel()

        if stop in done:
            receive.cancel()
            logger.info("取消令牌已触发，停止 worker")
            return None

        delivery = receive.result()
        if delivery is None:
            logger.info("投递通道已关闭，停止 worker")
        return delivery

    async def handle_message(self, token: CancelToken, delivery: Delivery) -> Optional[str]:
        """处理一条投递并返回最终结果（ack / reject / requeue）。

        被取消时抛出 JobCancelled，投递保持未处理。
        """
        try:
            job = decode_job_message(delivery.body)
        except DecodeError as exc:
            logger.error("消息解码失败，丢弃且不重新入队: %s", exc)
            delivery.nack(requeue=False)
            return delivery.outcome

        logger.info("处理任务 %s | 图片: %s", job.job_id, job.image_url)

        try:
            result = await self.client.detect(token, job.image_url)
        except DetectionError as exc:
            requeue = self._should_requeue(exc)
            logger.error(
                "任务 %s 失败 [%s] requeue=%s: %s", job.job_id, exc.kind.value, requeue, exc
            )
            if requeue and exc.kind is ErrorKind.PERMANENT:
                logger.warning("任务 %s 的错误不可重试，但仍按配置重新入队", job.job_id)
            delivery.nack(requeue=requeue)
            return delivery.outcome

        logger.info("任务 %s 完成，%d 个预测结果", job.job_id, len(result.predictions))
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "任务 %s 结果:\n%s",
                job.job_id,
                json.dumps(result.to_dict(), indent=2, ensure_ascii=False),
            )
        delivery.ack()
        return delivery.outcome

    def _should_requeue(self, exc: DetectionError) -> bool:
        if exc.kind is ErrorKind.PERMANENT:
            return self.requeue_permanent_failures
        return True
