import asyncio
import base64
import json
from typing import Any, Dict, Optional, Union

import openai
from openai import OpenAI

from scene_regen.config.settings import Settings
from scene_regen.core.errors import EvaluatorUnavailable
from scene_regen.evaluation.scorer import EvaluationRequest, VisionEvaluator
from scene_regen.utils.decorators import smart_retry
from scene_regen.utils.logger import get_logger

logger = get_logger("evaluation")

SYSTEM_PROMPT = (
    "You are an expert broadcast video quality reviewer. "
    "You judge single frames from AI-generated video scenes and answer only with JSON."
)

TRANSIENT_OPENAI_ERRORS = (
    openai.APIConnectionError,
    openai.APITimeoutError,
    openai.RateLimitError,
)


class OpenAIVisionEvaluator(VisionEvaluator):
    """
    Vision-language evaluator on the OpenAI chat completions API
    (GPT-4o, or any compatible server such as vLLM via base_url).
    """

    def __init__(self, client: Optional[OpenAI] = None, model: str = "gpt-4o", max_tokens: int = 800):
        self.client = client
        self.model = model
        self.max_tokens = max_tokens

    @classmethod
    def from_settings(cls, config: Settings) -> "OpenAIVisionEvaluator":
        if not config.openai_api_key and not config.vllm_api_url:
            logger.warning("⚠️ No OpenAI key or vLLM URL configured. Vision evaluation disabled.")
            return cls(client=None, model=config.vision_model)

        client = OpenAI(
            api_key=config.openai_api_key or "sk-local",
            base_url=config.vllm_api_url or None,  # None -> OpenAI public API
        )
        return cls(client=client, model=config.vision_model)

    async def evaluate(self, frame: bytes, request: EvaluationRequest) -> Union[str, Dict[str, Any]]:
        if self.client is None:
            raise EvaluatorUnavailable("Vision evaluator has no client configured")
        content = await self._complete(frame, request.prompt)
        try:
            return json.loads(content)
        except (TypeError, json.JSONDecodeError):
            # Scorer recovers JSON embedded in free text
            return content or ""

    @smart_retry(retries=3, delay=2, transient=TRANSIENT_OPENAI_ERRORS)
    async def _complete(self, frame: bytes, prompt: str) -> str:
        return await asyncio.to_thread(self._complete_sync, frame, prompt)

    def _complete_sync(self, frame: bytes, prompt: str) -> str:
        image_b64 = base64.b64encode(frame).decode("utf-8")
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt},
                        {"type": "image_url", "image_url": {"url": f"data:image/jpeg;base64,{image_b64}"}},
                    ],
                },
            ],
            max_tokens=self.max_tokens,
            temperature=0.2,
            response_format={"type": "json_object"},
        )
        return response.choices[0].message.content
