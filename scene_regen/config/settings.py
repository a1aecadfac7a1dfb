import os
from typing import Optional

from pydantic import BaseModel, Field

TRUTHY = {"1", "true", "yes", "on"}


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in TRUTHY


class Settings(BaseModel):
    # Quality gate
    quality_threshold: int = Field(default=70, description="Minimum overall score (0-100) for a scene to pass")

    # Regeneration limits
    max_attempts: int = Field(default=2, description="Recorded attempts per scene before stock footage is recommended")
    history_limit: int = Field(default=10, description="Prior attempts consulted per decision")
    project_attempt_budget: Optional[int] = Field(
        default=None, description="Generation attempts allowed per batch; None for unbounded"
    )

    # Generation
    default_provider: str = Field(default="kling-2.5-turbo", description="Provider used when nothing better is known")
    default_aspect_ratio: str = Field(default="16:9")
    negative_prompt_max_length: int = Field(default=500, description="Provider-safe negative prompt length")
    generation_poll_interval: float = Field(default=5.0, description="Seconds between task status polls")
    generation_timeout: float = Field(default=300.0, description="Bounded total wait per generation task")
    evaluate_after_generation: bool = Field(default=True, description="Score regenerated media before recording it")

    # Ledger
    ledger_db_path: str = Field(default="regeneration_history.db", description="SQLite file for the attempt ledger")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")

    # Evaluation
    enable_vision_evaluator: bool = False
    vision_model: str = Field(default="gpt-4o")
    openai_api_key: Optional[str] = Field(default=None)
    vllm_api_url: Optional[str] = Field(default=None)

    # Providers
    runway_api_secret: Optional[str] = Field(default=None)

    @staticmethod
    def load() -> "Settings":
        """
        Load settings from environment variables or defaults.
        Values that fail to parse keep their default.
        """
        overrides = {}

        env_map = {
            "REGEN_QUALITY_THRESHOLD": ("quality_threshold", int),
            "REGEN_MAX_ATTEMPTS": ("max_attempts", int),
            "REGEN_HISTORY_LIMIT": ("history_limit", int),
            "REGEN_PROJECT_ATTEMPT_BUDGET": ("project_attempt_budget", int),
            "REGEN_DEFAULT_PROVIDER": ("default_provider", str),
            "REGEN_DEFAULT_ASPECT_RATIO": ("default_aspect_ratio", str),
            "REGEN_NEGATIVE_PROMPT_MAX_LENGTH": ("negative_prompt_max_length", int),
            "REGEN_GENERATION_POLL_INTERVAL": ("generation_poll_interval", float),
            "REGEN_GENERATION_TIMEOUT": ("generation_timeout", float),
            "REGEN_EVALUATE_AFTER_GENERATION": ("evaluate_after_generation", _parse_bool),
            "REGEN_LEDGER_DB_PATH": ("ledger_db_path", str),
            "REGEN_LOG_LEVEL": ("log_level", str),
            "REGEN_ENABLE_VISION_EVALUATOR": ("enable_vision_evaluator", _parse_bool),
            "REGEN_VISION_MODEL": ("vision_model", str),
            "OPENAI_API_KEY": ("openai_api_key", str),
            "VLLM_API_URL": ("vllm_api_url", str),
            "RUNWAYML_API_SECRET": ("runway_api_secret", str),
        }

        for env_var, (field, type_) in env_map.items():
            val = os.getenv(env_var)
            if val is not None:
                try:
                    overrides[field] = type_(val)
                except ValueError:
                    pass

        return Settings(**overrides)


# Built once per process; pass a Settings instance explicitly to override.
settings = Settings.load()
