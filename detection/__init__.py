"""
检测服务侧模块。

- client: 下载图片并调用检测服务
- models: DetectionResult
- errors: 按 DECODE / TRANSIENT / PERMANENT 分类的异常
"""

from .client import DetectionClient
from .errors import (
    DecodeError,
    DetectionError,
    DownloadError,
    ErrorKind,
    InferenceRejectedError,
    InferenceTransportError,
    WorkerError,
)
from .models import DetectionResult

__all__ = [
    "DecodeError",
    "DetectionClient",
    "DetectionError",
    "DetectionResult",
    "DownloadError",
    "ErrorKind",
    "InferenceRejectedError",
    "InferenceTransportError",
    "WorkerError",
]
