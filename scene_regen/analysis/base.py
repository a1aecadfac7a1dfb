from abc import ABC, abstractmethod
from typing import Any

from scene_regen.core.models import Scene, SceneContext


class SceneReanalyzer(ABC):
    """
    Re-analyzes freshly generated media so downstream steps see what was
    actually rendered. The result is opaque to the regeneration core.
    """

    @abstractmethod
    async def analyze(self, media_url: str, context: SceneContext) -> Any:
        pass


class CompositionPlanner(ABC):
    """Turns a scene analysis into overlay and layout instructions."""

    @abstractmethod
    async def plan(self, scene: Scene, analysis: Any) -> Any:
        pass
