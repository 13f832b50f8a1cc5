"""
Producer 侧：`JobPublisher` 把检测任务投递到队列。
"""

from .producer import JobPublisher, new_job_id


__all__ = ["JobPublisher", "new_job_id"]
