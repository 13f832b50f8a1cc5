"""
检测服务客户端：下载图片 -> base64 -> POST 到检测服务。

每次 `detect` 只有一个截止时间，下载和推理两步共用剩余时间。
两步都以独立任务运行，并与取消令牌竞争：谁先完成就返回谁的结果。
令牌先触发时，输掉的任务只会被 cancel，不会被 await，它可能在 `detect`
返回后仍在后台跑完，结果被丢弃，最长受限于 HTTP 超时。
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
from typing import Any, Awaitable, Optional, Set

import aiohttp

from cancellation import CancelToken, JobCancelled
from detection.errors import DownloadError, InferenceRejectedError, InferenceTransportError
from detection.models import DetectionResult

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://detect.roboflow.com"
DEFAULT_TIMEOUT = 30.0

# 检测服务的约定：整个请求体就是 base64 文本，不是 key=value 表单
FORM_HEADERS = {"Content-Type": "application/x-www-form-urlencoded"}


class DetectionClient:
    def __init__(
        self,
        api_key: str,
        model: str,
        api_url: str = DEFAULT_API_URL,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.api_url = api_url.rstrip("/")
        self.timeout = float(timeout)
        self._session = session
        self._owns_session = session is None
        self._abandoned: Set[asyncio.Future] = set()

    async def __aenter__(self) -> "DetectionClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @property
    def endpoint(self) -> str:
        return f"{self.api_url}/{self.model}"

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()

    async def detect(self, token: CancelToken, image_url: str) -> DetectionResult:
        deadline = self._deadline()

        logger.info("下载图片: %s", image_url)
        image_bytes = await self._download_image(token, image_url, deadline)

        logger.info("图片已下载（%d 字节），发送到检测服务...", len(image_bytes))
        result = await self._infer(token, image_bytes, deadline)

        logger.info("推理完成，返回 %d 个预测结果", len(result.predictions))
        return result

    async def infer(self, token: CancelToken, image_bytes: bytes) -> DetectionResult:
        """只做第二步：对已在本地的图片字节做推理。"""
        return await self._infer(token, image_bytes, self._deadline())

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    def _deadline(self) -> float:
        return asyncio.get_running_loop().time() + self.timeout

    def _remaining(self, deadline: float) -> float:
        return max(0.0, deadline - asyncio.get_running_loop().time())

    def _client_timeout(self, deadline: float) -> aiohttp.ClientTimeout:
        # total=0 在 aiohttp 中表示不限时
        return aiohttp.ClientTimeout(total=max(self._remaining(deadline), 0.001))

    async def _race(self, token: CancelToken, step: Awaitable[Any], deadline: float) -> Any:
        """运行 step，与取消令牌和截止时间竞争。

        step 先完成：返回其结果（或重新抛出其分类异常）。
        令牌先触发（或与 step 同时就绪）：抛出 JobCancelled，step 被放弃。
        截止时间先到：抛出 asyncio.TimeoutError，由调用方归类。
        """
        if token.cancelled:
            if asyncio.iscoroutine(step):
                step.close()
            raise JobCancelled(token.reason or "cancelled")

        task = asyncio.ensure_future(step)
        waiter = asyncio.ensure_future(token.wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter},
                timeout=self._remaining(deadline),
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        # 同一轮里两者都就绪时以令牌为准
        if task in done and not token.cancelled:
            return task.result()

        self._abandon(task)
        if token.cancelled:
            raise JobCancelled(token.reason or "cancelled")
        raise asyncio.TimeoutError()

    def _abandon(self, task: asyncio.Future) -> None:
        task.cancel()
        self._abandoned.add(task)
        task.add_done_callback(self._discard_abandoned)

    def _discard_abandoned(self, task: asyncio.Future) -> None:
        self._abandoned.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.debug("丢弃被放弃任务的异常: %r", exc)

    async def _download_image(self, token: CancelToken, image_url: str, deadline: float) -> bytes:
        try:
            return await self._race(token, self._fetch_image(image_url, deadline), deadline)
        except asyncio.TimeoutError as exc:
            raise DownloadError(f"timed out downloading image after {self.timeout:g}s") from exc

    async def _fetch_image(self, image_url: str, deadline: float) -> bytes:
        session = self._get_session()
        try:
            async with session.get(image_url, timeout=self._client_timeout(deadline)) as resp:
                if not 200 <= resp.status < 300:
                    raise DownloadError(
                        f"unexpected status {resp.status} when downloading image",
                        status_code=resp.status,
                    )
                return await resp.read()
        except aiohttp.ClientError as exc:
            raise DownloadError(f"failed to download image: {exc}") from exc
        except asyncio.TimeoutError as exc:
            raise DownloadError("timed out downloading image") from exc

    async def _infer(self, token: CancelToken, image_bytes: bytes, deadline: float) -> DetectionResult:
        try:
            return await self._race(token, self._post_image(image_bytes, deadline), deadline)
        except asyncio.TimeoutError as exc:
            raise InferenceTransportError(
                f"request to detection service timed out after {self.timeout:g}s"
            ) from exc

    async def _post_image(self, image_bytes: bytes, deadline: float) -> DetectionResult:
        encoded = base64.b64encode(image_bytes).decode("ascii")
        session = self._get_session()
        try:
            async with session.post(
                self.endpoint,
                params={"api_key": self.api_key},
                data=encoded,
                headers=FORM_HEADERS,
                timeout=self._client_timeout(deadline),
            ) as resp:
                status = resp.status
                body = (await resp.read()).decode("utf-8", errors="replace")
        except aiohttp.ClientError as exc:
            raise InferenceTransportError(f"request to detection service failed: {exc}") from exc
        except asyncio.TimeoutError as exc:
            raise InferenceTransportError("request to detection service timed out") from exc

        if not 200 <= status < 300:
            raise InferenceRejectedError(status, body)

        try:
            return DetectionResult.from_payload(json.loads(body))
        except (ValueError, RecursionError) as exc:
            raise InferenceRejectedError(
                status, body, reason=f"failed to decode detection response: {exc}"
            ) from exc
