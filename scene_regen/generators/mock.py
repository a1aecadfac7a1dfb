import hashlib
import itertools
import threading
from typing import Dict, Iterable, List, Optional

from scene_regen.core.models import GenerationRequest, TaskStatus
from scene_regen.generators.base import FAILED, PENDING, SUCCEEDED, VideoGenerator
from scene_regen.utils.logger import get_logger

logger = get_logger("generators")


class MockVideoGenerator(VideoGenerator):
    """
    Deterministic in-process generator used for tests and local runs.

    Media URLs are derived from the request, so the same request always
    yields the same `mock://` URL. `outcomes` scripts task results in
    submission order ("succeeded", "failed" or "pending"); once exhausted
    every task succeeds.
    """

    name = "mock"

    def __init__(
        self,
        outcomes: Optional[Iterable[str]] = None,
        pending_polls: int = 0,
        poll_interval: float = 0.0,
        timeout: float = 5.0,
    ):
        super().__init__(poll_interval=poll_interval, timeout=timeout)
        self.outcomes: List[str] = list(outcomes or [])
        self.pending_polls = pending_polls
        self.requests: List[GenerationRequest] = []
        self._tasks: Dict[str, dict] = {}
        self._counter = itertools.count(1)
        self._lock = threading.Lock()

    def submit(self, request: GenerationRequest) -> str:
        with self._lock:
            self.requests.append(request)
            outcome = self.outcomes.pop(0) if self.outcomes else SUCCEEDED
            digest = hashlib.md5(
                f"{request.provider}|{request.prompt}|{request.image_url}".encode("utf-8")
            ).hexdigest()[:10]
            task_id = f"mock-{next(self._counter)}-{digest}"
            self._tasks[task_id] = {
                "outcome": outcome,
                "polls_left": self.pending_polls,
                "url": f"mock://{request.provider}/{digest}.mp4",
            }
        logger.debug(f"🧪 Mock task {task_id} -> {outcome}")
        return task_id

    def poll(self, task_id: str) -> TaskStatus:
        with self._lock:
            task = self._tasks[task_id]
            if task["outcome"] == PENDING:
                return TaskStatus(state=PENDING)
            if task["polls_left"] > 0:
                task["polls_left"] -= 1
                return TaskStatus(state=PENDING)

        if task["outcome"] == FAILED:
            return TaskStatus(state=FAILED, error="Simulated provider failure")
        return TaskStatus(state=SUCCEEDED, media_url=task["url"])
