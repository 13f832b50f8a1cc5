"""
进程级取消令牌。

启动时创建一次，由 SIGINT/SIGTERM 触发，并作为参数传给每一个会挂起的调用
（取队列消息、下载、推理请求）。Worker 和推理客户端内部不读取任何全局状态。
"""

from __future__ import annotations

import asyncio
import logging
import signal
from typing import Iterable, Optional

logger = logging.getLogger(__name__)

DEFAULT_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class JobCancelled(Exception):
    """The cancellation token fired while a call was suspended."""


class CancelToken:
    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    def install_signal_handlers(
        self,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        signals: Iterable[signal.Signals] = DEFAULT_SIGNALS,
    ) -> None:
        """收到信号时触发取消；平台不支持时（如 Windows）退回 signal.signal。"""
        loop = loop or asyncio.get_running_loop()

        for sig in signals:
            def _handler(sig: signal.Signals = sig) -> None:
                logger.info("收到信号 %s，准备停止", sig.name)
                self.cancel(f"signal {sig.name}")

            try:
                loop.add_signal_handler(sig, _handler)
            except NotImplementedError:
                signal.signal(sig, lambda signum, frame, h=_handler: loop.call_soon_threadsafe(h))
