"""
消息代理配置：Celery 应用只用来持有 broker 配置和连接池，任务队列本身是
一条持久化的 AMQP 队列，消息体为 JSON。
"""

from __future__ import annotations

from celery import Celery
from kombu import Queue


def make_app(broker_url: str, name: str = "vision_worker") -> Celery:
    app = Celery(name, broker=broker_url)
    app.conf.update(
        accept_content=["json"],
        task_serializer="json",
        broker_connection_retry_on_startup=True,
    )
    return app


def job_queue(name: str) -> Queue:
    return Queue(name, durable=True)
