from __future__ import annotations

import os
from typing import Any, Dict, Optional

from arq.connections import RedisSettings
from dotenv import find_dotenv, load_dotenv

from aiworker.application.services.task_processor import TaskProcessor, task_timeout_from_env
from aiworker.utils.logging_config import configure_logging


def _redis_settings() -> RedisSettings:
    return RedisSettings(
        host=os.getenv("AIWORKER_REDIS_HOST", "127.0.0.1"),
        port=int(os.getenv("AIWORKER_REDIS_PORT", "6379")),
        database=int(os.getenv("AIWORKER_REDIS_DB", "0")),
        password=os.getenv("AIWORKER_REDIS_PASSWORD") or None,
    )


# arq must outlive the task deadline so the error envelope is still returned
JOB_TIMEOUT_MARGIN = 60


def _job_timeout() -> int:
    return int(task_timeout_from_env(os.environ)) + JOB_TIMEOUT_MARGIN


async def startup(ctx) -> None:
    load_dotenv(find_dotenv(usecwd=True), override=False)
    configure_logging()
    ctx["processor"] = TaskProcessor.from_env()


async def shutdown(ctx) -> None:
    processor: Optional[TaskProcessor] = ctx.get("processor")
    if processor is not None:
        await processor.aclose()


async def ai_request_job(ctx, message: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    ARQ job: run one task message through the worker's processor.

    Returns the response/error message as the job result; non-request
    messages return None.
    """
    processor: Optional[TaskProcessor] = ctx.get("processor")
    if processor is None:
        processor = TaskProcessor.from_env()
        ctx["processor"] = processor
    return await processor.handle_message(message)


class WorkerSettings:
    functions = [ai_request_job]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = _redis_settings()
    # one worker process is one context: tasks run strictly one at a time
    max_jobs = 1
    job_timeout = _job_timeout()
