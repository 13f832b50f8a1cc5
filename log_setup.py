"""
日志初始化：控制台输出，带毫秒时间戳和源文件行号。
"""

from __future__ import annotations

import logging
import sys

LOG_FORMAT = "%(asctime)s.%(msecs)03d | %(levelname)s | %(name)s | %(filename)s:%(lineno)d | %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"


def configure_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    root.setLevel(level.upper())
    for handler in list(root.handlers):
        if getattr(handler, "_vision_worker", False):
            root.removeHandler(handler)

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
    console._vision_worker = True  # type: ignore[attr-defined]
    root.addHandler(console)

    # aiohttp 的访问日志在 INFO 级别过于嘈杂
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
