"""
Producer 端：把 {job_id, image_url} 发布到持久化队列。

图片上传和图床属于外部服务，这里只负责生成任务 ID 并投递消息。
"""

from __future__ import annotations

import logging
import uuid
from typing import Optional

from celery import Celery

from broker import job_queue
from consumer.messages import JobMessage, encode_job_message

logger = logging.getLogger(__name__)


def new_job_id() -> str:
    return uuid.uuid4().hex


class JobPublisher:
    def __init__(self, app: Celery, queue_name: str) -> None:
        self.app = app
        self.queue = job_queue(queue_name)

    def publish(self, image_url: str, job_id: Optional[str] = None) -> JobMessage:
        job = JobMessage(job_id=job_id or new_job_id(), image_url=image_url)
        with self.app.producer_or_acquire() as producer:
            producer.publish(
                encode_job_message(job),
                exchange="",
                routing_key=self.queue.name,
                declare=[self.queue],
                content_type="application/json",
                content_encoding="utf-8",
                delivery_mode=2,
                retry=True,
            )
        logger.info("任务已入队 %s -> %s", job.job_id, self.queue.name)
        return job
