"""
投递通道与投递句柄。

- Delivery：一条消息加上“必须且只能 ack / nack 一次”的义务
- MemoryChannel：进程内通道（asyncio.Queue），用于本地运行和测试
- KombuChannel：通过 kombu 从 AMQP 队列逐条拉取消息
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional, Tuple, Type, Union

from kombu import Connection, Queue

logger = logging.getLogger(__name__)

ACKED = "ack"
REJECTED = "reject"
REQUEUED = "requeue"


class ChannelClosed(Exception):
    """The upstream broker connection is gone."""


class DeliveryAlreadySettled(RuntimeError):
    """A second terminal operation was attempted on the same delivery."""


class Delivery:
    def __init__(self, body: Union[bytes, str]) -> None:
        self.body = body
        self.outcome: Optional[str] = None
        self._attempted: Optional[str] = None

    @property
    def settled(self) -> bool:
        return self.outcome is not None

    def ack(self) -> None:
        self._begin(ACKED)
        self._ack()
        self.outcome = ACKED

    def nack(self, requeue: bool) -> None:
        outcome = REQUEUED if requeue else REJECTED
        self._begin(outcome)
        self._nack(requeue)
        self.outcome = outcome

    def _begin(self, outcome: str) -> None:
        # 只允许一次终结操作，即使上一次在传输层失败
        if self._attempted is not None:
            raise DeliveryAlreadySettled(
                f"delivery already settled as {self._attempted!r}, refusing {outcome!r}"
            )
        self._attempted = outcome

    def _ack(self) -> None:
        raise NotImplementedError

    def _nack(self, requeue: bool) -> None:
        raise NotImplementedError


class MemoryDelivery(Delivery):
    def _ack(self) -> None:
        pass

    def _nack(self, requeue: bool) -> None:
        pass


class KombuDelivery(Delivery):
    def __init__(self, message: Any, connection_errors: Tuple[Type[BaseException], ...] = ()) -> None:
        super().__init__(message.body)
        self.message = message
        self._connection_errors = connection_errors

    def _ack(self) -> None:
        self._call(self.message.ack)

    def _nack(self, requeue: bool) -> None:
        if requeue:
            self._call(self.message.requeue)
        else:
            self._call(self.message.reject, requeue=False)

    def _call(self, method: Callable[..., Any], **kwargs: Any) -> None:
        try:
            method(**kwargs)
        except self._connection_errors as exc:
            raise ChannelClosed(f"broker connection lost while settling delivery: {exc}") from exc


_CLOSED = object()


class MemoryChannel:
    def __init__(self) -> None:
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, delivery: Delivery) -> None:
        if self._closed:
            raise ChannelClosed("channel is closed")
        self._queue.put_nowait(delivery)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(_CLOSED)

    async def receive(self) -> Optional[Delivery]:
        item = await self._queue.get()
        if item is _CLOSED:
            # 让之后的 receive 也立刻看到关闭
            self._queue.put_nowait(_CLOSED)
            return None
        return item


class KombuChannel:
    """从 AMQP 队列拉取消息。

    阻塞的 `get` 在线程里执行，一次只有一个；ack / nack 只会在两次 receive
    之间调用，所以同一个连接不会被两个线程同时使用。
    """

    def __init__(
        self,
        connection: Connection,
        queue: Queue,
        prefetch_count: int = 1,
        poll_interval: float = 1.0,
    ) -> None:
        self._connection = connection
        self._errors = tuple(connection.connection_errors) + tuple(connection.channel_errors)
        self._queue = connection.SimpleQueue(queue)
        self._queue.consumer.qos(prefetch_count=prefetch_count)
        self.poll_interval = poll_interval
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def receive(self) -> Optional[Delivery]:
        return await asyncio.to_thread(self._poll)

    def _poll(self) -> Optional[Delivery]:
        while not self._closed:
            try:
                message = self._queue.get(block=True, timeout=self.poll_interval)
            except self._queue.Empty:
                continue
            except self._errors as exc:
                logger.error("与消息代理的连接中断: %s", exc)
                self._closed = True
                return None
            return KombuDelivery(message, self._errors)
        return None

    def stop(self) -> None:
        """让正在轮询的线程在下一个 poll 间隔内退出。"""
        self._closed = True

    def close(self) -> None:
        self.stop()
        self._queue.close()
