"""
Consumer 侧模块。

- messages: 任务消息的解码 / 编码
- channels: 投递句柄与投递通道（进程内 / AMQP）
- worker: 逐条处理投递，决定 ack / nack / requeue
"""

from .channels import ChannelClosed, Delivery, KombuChannel, MemoryChannel, MemoryDelivery
from .messages import JobMessage, decode_job_message, encode_job_message
from .worker import Worker, WorkerState

__all__ = [
    "ChannelClosed",
    "Delivery",
    "JobMessage",
    "KombuChannel",
    "MemoryChannel",
    "MemoryDelivery",
    "Worker",
    "WorkerState",
    "decode_job_message",
    "encode_job_message",
]
