"""
Isolated worker contexts.

A context owns one TaskProcessor (and so one adapter registry with its own
provider clients), reads task messages from an ordered inbound channel and
posts responses in receipt order. A task is fully processed before the next
message is read.

Two hostings live here:
- WorkerContext: an asyncio task on the caller's loop
- ThreadedWorkerContext: a dedicated OS thread running its own event loop
The arq hosting is in ``aiworker.infrastructure.queue.arq_worker``.
"""

from __future__ import annotations

import asyncio
import logging
import queue
import threading
from typing import Any, Callable, Dict, Mapping, Optional

from aiworker.application.services.task_processor import TaskProcessor

logger = logging.getLogger(__name__)

_STOP = object()

ProcessorFactory = Callable[[], TaskProcessor]


class WorkerContext:
    def __init__(
        self,
        processor: Optional[TaskProcessor] = None,
        *,
        name: str = "worker-0",
        env: Optional[Mapping[str, str]] = None,
        emit_progress: bool = True,
    ):
        self.name = name
        self.inbound: "asyncio.Queue[Any]" = asyncio.Queue()
        self.outbound: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue()
        self.processor = processor or TaskProcessor.from_env(env)
        if emit_progress and self.processor.on_progress is None:
            self.processor.on_progress = self.outbound.put
        self._task: Optional[asyncio.Task] = None
        self.processed = 0

    async def submit(self, message: Mapping[str, Any]) -> None:
        await self.inbound.put(dict(message))

    async def next_message(self) -> Dict[str, Any]:
        return await self.outbound.get()

    async def next_response(self) -> Dict[str, Any]:
        """Next response or error message, skipping progress updates."""
        while True:
            message = await self.outbound.get()
            if message.get("type") != "progress":
                return message

    async def run(self) -> None:
        logger.info("Worker context %s started", self.name)
        while True:
            message = await self.inbound.get()
            try:
                if message is _STOP:
                    break
                response = await self.processor.handle_message(message)
                if response is not None:
                    await self.outbound.put(response)
                    self.processed += 1
            finally:
                self.inbound.task_done()
        await self.processor.aclose()
        logger.info("Worker context %s stopped after %s task(s)", self.name, self.processed)

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name=f"aiworker-{self.name}")
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        await self.inbound.put(_STOP)
        await self._task
        self._task = None


class ThreadedWorkerContext:
    """
    Context hosted on its own thread and event loop.

    The processor is built inside the thread so provider clients (aiohttp
    sessions in particular) are bound to that thread's loop.
    """

    def __init__(
        self,
        processor_factory: Optional[ProcessorFactory] = None,
        *,
        name: str = "worker-thread-0",
        env: Optional[Mapping[str, str]] = None,
        emit_progress: bool = True,
    ):
        self.name = name
        self._factory = processor_factory or (lambda: TaskProcessor.from_env(env))
        self._emit_progress = emit_progress
        self.inbound: "queue.Queue[Any]" = queue.Queue()
        self.outbound: "queue.Queue[Dict[str, Any]]" = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self._error: Optional[BaseException] = None

    def submit(self, message: Mapping[str, Any]) -> None:
        self.inbound.put(dict(message))

    def next_response(self, timeout: Optional[float] = None) -> Dict[str, Any]:
        while True:
            message = self.outbound.get(timeout=timeout)
            if message.get("type") != "progress":
                return message

    def start(self) -> threading.Thread:
        if self._thread is None or not self._thread.is_alive():
            self._thread = threading.Thread(target=self._run_thread, name=f"aiworker-{self.name}", daemon=True)
            self._thread.start()
        return self._thread

    def stop(self, timeout: Optional[float] = None) -> None:
        if self._thread is None:
            return
        self.inbound.put(_STOP)
        self._thread.join(timeout)
        if self._thread.is_alive():
            # still busy with a task; the stop marker is queued behind it
            logger.warning("Worker context %s did not stop within %ss", self.name, timeout)
            return
        self._thread = None
        if self._error is not None:
            raise RuntimeError(f"worker context {self.name} crashed: {self._error}") from self._error

    def _run_thread(self) -> None:
        try:
            asyncio.run(self._main())
        except BaseException as exc:
            logger.exception("Worker context %s crashed", self.name)
            self._error = exc

    async def _main(self) -> None:
        processor = self._factory()
        if self._emit_progress and processor.on_progress is None:
            processor.on_progress = self.outbound.put
        logger.info("Threaded worker context %s started", self.name)
        try:
            while True:
                message = await asyncio.to_thread(self.inbound.get)
                if message is _STOP:
                    break
                response = await processor.handle_message(message)
                if response is not None:
                    self.outbound.put(response)
        finally:
            await processor.aclose()
            logger.info("Threaded worker context %s stopped", self.name)
