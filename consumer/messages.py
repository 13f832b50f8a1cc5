"""
队列消息格式：{"job_id": "...", "image_url": "..."}。
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from typing import Union

from detection.errors import DecodeError

REQUIRED_FIELDS = ("job_id", "image_url")


@dataclass(frozen=True)
class JobMessage:
    job_id: str
    image_url: str


def decode_job_message(payload: Union[bytes, str]) -> JobMessage:
    if isinstance(payload, (bytes, bytearray, memoryview)):
        try:
            payload = bytes(payload).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecodeError(f"payload is not valid UTF-8: {exc}") from exc

    try:
        data = json.loads(payload)
    except (ValueError, RecursionError) as exc:
        raise DecodeError(f"payload is not valid JSON: {exc}") from exc

    if not isinstance(data, dict):
        raise DecodeError(f"payload must be a JSON object, got {type(data).__name__}")

    values = {}
    for name in REQUIRED_FIELDS:
        value = data.get(name)
        if not isinstance(value, str) or not value.strip():
            raise DecodeError(f"missing or invalid field {name!r}")
        values[name] = value
    return JobMessage(**values)


def encode_job_message(job: JobMessage) -> bytes:
    return json.dumps(asdict(job), separators=(",", ":"), ensure_ascii=False).encode("utf-8")
