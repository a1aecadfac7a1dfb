from datetime import datetime, timezone
from typing import Iterable, List, Optional

from scene_regen.core.models import AttemptResult, QualityIssue, RegenerationAttempt
from scene_regen.core.persistence import AttemptStore
from scene_regen.utils.logger import get_logger

logger = get_logger("ledger")


class AttemptLedger:
    """
    Append-only history of regeneration attempts per scene.

    Attempt numbers are assigned by the caller (prior attempts + 1) and are
    stored as given. Correct numbering relies on one writer per scene.
    """

    def __init__(self, store: AttemptStore):
        self.store = store

    def record_attempt(
        self,
        scene_id: str,
        project_id: Optional[str],
        attempt_number: int,
        *,
        provider: str,
        strategy: str,
        prompt: str,
        result: AttemptResult,
        quality_score: Optional[float] = None,
        issues: Iterable[QualityIssue] = (),
        reasoning: Optional[str] = None,
        confidence_score: Optional[float] = None,
    ) -> RegenerationAttempt:
        attempt = RegenerationAttempt(
            scene_id=scene_id,
            project_id=project_id,
            attempt_number=attempt_number,
            timestamp=datetime.now(timezone.utc),
            provider=provider,
            strategy=strategy,
            prompt=prompt,
            result=result,
            quality_score=quality_score,
            issues=tuple(issues),
            reasoning=reasoning,
            confidence_score=confidence_score,
        )
        self.store.insert(attempt)
        logger.info(f"📝 Recorded attempt #{attempt_number} for scene {scene_id} ({result.value}, {provider})")
        return attempt

    def get_attempts(self, scene_id: str, limit: int = 10) -> List[RegenerationAttempt]:
        if limit <= 0:
            return []
        attempts = self.store.query(scene_id, limit)
        attempts.sort(key=lambda a: (a.timestamp, a.attempt_number), reverse=True)
        return attempts[:limit]

    def clear_history(self, scene_id: str) -> int:
        """Admin reset. Never called by the regeneration loop."""
        removed = self.store.delete(scene_id)
        logger.warning(f"🧹 Cleared {removed} attempt(s) for scene {scene_id}")
        return removed
