from __future__ import annotations

import asyncio
import base64
from typing import Any, Callable, Dict, List, Optional

import pytest
from aiohttp import web

from cancellation import CancelToken, JobCancelled
from consumer.channels import MemoryDelivery
from consumer.messages import JobMessage, encode_job_message
from detection.models import DetectionResult

IMAGE_BYTES = b"\x89PNG\r\n\x1a\n" + bytes(1016)
CAT_BODY = '{"predictions":[{"class":"cat","confidence":0.91}]}'


def job_payload(job_id: str = "01JABCDEF", image_url: str = "https://img.example/a.png") -> bytes:
    return encode_job_message(JobMessage(job_id=job_id, image_url=image_url))


class FakeClient:
    """Stands in for DetectionClient inside worker tests."""

    def __init__(self, outcome: Any = None, wait_for_cancel: bool = False) -> None:
        self.outcome = outcome if outcome is not None else DetectionResult(predictions=({"class": "cat"},))
        self.wait_for_cancel = wait_for_cancel
        self.calls: List[str] = []

    async def detect(self, token: CancelToken, image_url: str) -> DetectionResult:
        self.calls.append(image_url)
        if self.wait_for_cancel:
            await token.wait()
            raise JobCancelled(token.reason or "cancelled")
        if isinstance(self.outcome, BaseException):
            raise self.outcome
        return self.outcome


class RecordingDelivery(MemoryDelivery):
    def __init__(self, body: bytes, log: List[tuple]) -> None:
        super().__init__(body)
        self.log = log

    def _ack(self) -> None:
        self.log.append((self.body, "ack"))

    def _nack(self, requeue: bool) -> None:
        self.log.append((self.body, "requeue" if requeue else "reject"))


class DetectionServer:
    """aiohttp app playing both the image store and the detection service."""

    def __init__(
        self,
        image_status: int = 200,
        image_delay: float = 0.0,
        infer_status: int = 200,
        infer_body: str = CAT_BODY,
        infer_delay: float = 0.0,
    ) -> None:
        self.image_status = image_status
        self.image_delay = image_delay
        self.infer_status = infer_status
        self.infer_body = infer_body
        self.infer_delay = infer_delay
        self.image_requests = 0
        self.infer_requests: List[Dict[str, Any]] = []

    def make_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/a.png", self._image)
        app.router.add_post("/cats/1", self._infer)
        return app

    async def _image(self, request: web.Request) -> web.Response:
        self.image_requests += 1
        if self.image_delay:
            await asyncio.sleep(self.image_delay)
        if self.image_status != 200:
            return web.Response(status=self.image_status, text="not found")
        return web.Response(body=IMAGE_BYTES, content_type="image/png")

    async def _infer(self, request: web.Request) -> web.Response:
        body = await request.text()
        self.infer_requests.append(
            {
                "query": dict(request.query),
                "content_type": request.headers.get("Content-Type"),
                "body": body,
                "image": base64.b64decode(body),
            }
        )
        if self.infer_delay:
            await asyncio.sleep(self.infer_delay)
        return web.Response(status=self.infer_status, text=self.infer_body, content_type="application/json")


def run(coro: Any) -> Any:
    return asyncio.run(coro)


@pytest.fixture
def delivery_log() -> List[tuple]:
    return []


def cancel_when(token: CancelToken, predicate: Callable[[], bool], reason: Optional[str] = None) -> asyncio.Future:
    """Fire the token once predicate() holds; the caller cancels the returned watcher."""

    async def watch() -> None:
        while not predicate():
            await asyncio.sleep(0.005)
        token.cancel(reason or "test")

    return asyncio.ensure_future(watch())
