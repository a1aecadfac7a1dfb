from typing import Dict, Optional, Tuple

import runwayml
from runwayml import RunwayML

from scene_regen.core.models import GenerationRequest, GenerationResult, TaskStatus
from scene_regen.generators.base import FAILED, PENDING, SUCCEEDED, VideoGenerator
from scene_regen.utils.decorators import smart_retry
from scene_regen.utils.logger import get_logger

logger = get_logger("generators")

TRANSIENT_RUNWAY_ERRORS = (
    runwayml.APIConnectionError,
    runwayml.APITimeoutError,
    runwayml.RateLimitError,
)

# Runway expects pixel ratios rather than aspect strings
RUNWAY_RATIOS = {
    "16:9": "1280:720",
    "9:16": "720:1280",
    "1:1": "960:960",
}


def runway_duration(seconds: float) -> int:
    """Runway renders fixed 5s or 10s clips."""
    return 5 if seconds <= 5 else 10


class RunwayVideoGenerator(VideoGenerator):
    """
    Runway integration via the official SDK.
    Image-to-video when the request carries an image, text-to-video otherwise.
    """

    name = "runway"

    def __init__(
        self,
        api_secret: Optional[str] = None,
        client: Optional[RunwayML] = None,
        image_model: str = "gen4_turbo",
        text_model: str = "veo3.1_fast",
        poll_interval: float = 5.0,
        timeout: float = 300.0,
    ):
        super().__init__(poll_interval=poll_interval, timeout=timeout)
        # Without an explicit secret the SDK reads RUNWAYML_API_SECRET
        self.client = client or (RunwayML(api_key=api_secret) if api_secret else RunwayML())
        self.image_model = image_model
        self.text_model = text_model

    @smart_retry(retries=3, delay=2, transient=TRANSIENT_RUNWAY_ERRORS)
    def submit(self, request: GenerationRequest) -> str:
        ratio = RUNWAY_RATIOS.get(request.aspect_ratio, RUNWAY_RATIOS["16:9"])
        duration = runway_duration(request.duration)

        logger.info(f"🎨 Submitting job to Runway (Prompt: {request.prompt[:30]}...)")
        if request.image_url:
            task = self.client.image_to_video.create(
                model=self.image_model,
                prompt_image=request.image_url,
                prompt_text=request.prompt[:1000],
                ratio=ratio,
                duration=duration,
            )
        else:
            task = self.client.text_to_video.create(
                model=self.text_model,
                prompt_text=request.prompt[:1000],
                ratio=ratio,
                duration=duration,
            )
        return task.id

    @smart_retry(retries=3, delay=2, transient=TRANSIENT_RUNWAY_ERRORS)
    def poll(self, task_id: str) -> TaskStatus:
        task = self.client.tasks.retrieve(task_id)
        status = task.status

        if status == "SUCCEEDED":
            return TaskStatus(state=SUCCEEDED, media_url=task.output[0])
        if status == "FAILED":
            return TaskStatus(state=FAILED, error=str(getattr(task, "failure", None) or "Runway generation failed"))
        # PENDING, THROTTLED and RUNNING all keep waiting
        return TaskStatus(state=PENDING)


TASK_SEPARATOR = "::"


def split_task_id(task_id: str) -> Tuple[str, str]:
    provider, sep, backend_task_id = task_id.partition(TASK_SEPARATOR)
    if not sep:
        raise ValueError(f"Task id {task_id!r} carries no provider tag")
    return provider, backend_task_id


class RoutingVideoGenerator(VideoGenerator):
    """
    Dispatches each request to the generator registered for its provider,
    falling back to `default` for providers without a dedicated backend.

    `generate` hands the whole request to the backend so each keeps its own
    poll cadence and timeout. Task ids from `submit` are tagged
    "<provider>::<backend task id>" so `poll` reaches the same backend.
    """

    name = "router"

    def __init__(self, routes: Dict[str, VideoGenerator], default: VideoGenerator):
        super().__init__(poll_interval=default.poll_interval, timeout=default.timeout)
        self.routes = dict(routes)
        self.default = default

    def resolve(self, provider: str) -> VideoGenerator:
        return self.routes.get(provider, self.default)

    def submit(self, request: GenerationRequest) -> str:
        task_id = self.resolve(request.provider).submit(request)
        return f"{request.provider}{TASK_SEPARATOR}{task_id}"

    def poll(self, task_id: str) -> TaskStatus:
        provider, backend_task_id = split_task_id(task_id)
        return self.resolve(provider).poll(backend_task_id)

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        backend = self.resolve(request.provider)
        logger.debug(f"🔀 {request.provider} -> {backend.name}")
        return await backend.generate(request)
