"""
错误分类：DECODE / TRANSIENT / PERMANENT。

Worker 只根据 `kind` 决定 ack / nack / requeue，不关心具体异常类型。
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    DECODE = "decode"
    TRANSIENT = "transient"
    PERMANENT = "permanent"


class WorkerError(Exception):
    kind: ErrorKind = ErrorKind.TRANSIENT


class DecodeError(WorkerError):
    """Job payload is not a well-formed job message."""

    kind = ErrorKind.DECODE


class DetectionError(WorkerError):
    """Base class for everything the detection client raises."""


class DownloadError(DetectionError):
    """Image fetch failed; the image store may not be consistent yet."""

    kind = ErrorKind.TRANSIENT

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class InferenceTransportError(DetectionError):
    """The inference request failed before a response was received."""

    kind = ErrorKind.TRANSIENT


class InferenceRejectedError(DetectionError):
    """Detection service answered with a non-2xx status or an unusable body."""

    kind = ErrorKind.PERMANENT

    def __init__(self, status_code: int, body: str, reason: str = "") -> None:
        self.status_code = status_code
        self.body = body
        self.reason = reason
        detail = f"detection service returned status {status_code}: {body}"
        if reason:
            detail = f"{reason} (status {status_code}): {body}"
        super().__init__(detail)
