import asyncio
import time
from abc import ABC, abstractmethod

from scene_regen.core.errors import GenerationFailure, GenerationTimeout
from scene_regen.core.models import GenerationRequest, GenerationResult, TaskStatus
from scene_regen.utils.logger import get_logger

logger = get_logger("generators")

PENDING = "pending"
SUCCEEDED = "succeeded"
FAILED = "failed"


class VideoGenerator(ABC):
    """
    Abstract interface for all video generation backends.

    Providers work on a create-task/poll-status model. Subclasses implement
    the two blocking SDK calls; `generate` runs them off the event loop and
    owns the bounded wait.
    """

    name = "base"

    def __init__(self, poll_interval: float = 5.0, timeout: float = 300.0):
        self.poll_interval = poll_interval
        self.timeout = timeout

    @abstractmethod
    def submit(self, request: GenerationRequest) -> str:
        """
        Starts a generation task.

        Returns:
            Provider task id.

        Raises:
            ConnectionError: For retryable network issues.
            ValueError: For non-retryable configuration issues.
        """
        pass

    @abstractmethod
    def poll(self, task_id: str) -> TaskStatus:
        pass

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        """
        Submits and waits for one task.

        Raises:
            GenerationFailure: The provider reported a failed task.
            GenerationTimeout: The task did not finish within `timeout`.
        """
        task_id = await asyncio.to_thread(self.submit, request)
        logger.info(f"⏳ Task {task_id} submitted to {request.provider}. Polling for results...")

        deadline = time.monotonic() + self.timeout
        while True:
            status = await asyncio.to_thread(self.poll, task_id)

            if status.state == SUCCEEDED:
                logger.info(f"🎬 Task {task_id} finished: {status.media_url}")
                return GenerationResult(
                    success=True,
                    media_url=status.media_url,
                    provider=request.provider,
                    task_id=task_id,
                )
            if status.state == FAILED:
                raise GenerationFailure(request.provider, status.error or "Generation failed", task_id)

            if time.monotonic() + self.poll_interval > deadline:
                raise GenerationTimeout(request.provider, self.timeout, task_id)
            await asyncio.sleep(self.poll_interval)
