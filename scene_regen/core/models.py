import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple


def round_half_up(value: float) -> int:
    """Half-up rounding for non-negative scores; 70.5 -> 71."""
    return int(math.floor(value + 0.5))


class IssueType(Enum):
    TEXT_OVERLAP = "text-overlap"
    FACE_BLOCKED = "face-blocked"
    POOR_VISIBILITY = "poor-visibility"
    BAD_COMPOSITION = "bad-composition"
    TECHNICAL = "technical"
    CONTENT_MISMATCH = "content-mismatch"
    AI_TEXT_DETECTED = "ai-text-detected"
    AI_UI_DETECTED = "ai-ui-detected"
    OFF_BRAND_CONTENT = "off-brand-content"
    MISSING_BRAND_ELEMENT = "missing-brand-element"
    WRONG_FRAMING = "wrong-framing"
    MISSING_TEXT_OVERLAY = "missing-text-overlay"


class Severity(Enum):
    CRITICAL = "critical"
    MAJOR = "major"
    MINOR = "minor"


class AttemptResult(Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    PARTIAL = "partial"
    RECOMMENDATION = "recommendation"


class ComplexityCategory(Enum):
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"
    IMPOSSIBLE = "impossible"


class Difficulty(Enum):
    EASY = "easy"
    HARD = "hard"
    VERY_HARD = "very-hard"


class AlternativeApproach(Enum):
    STOCK_FOOTAGE = "stock-footage"
    REFERENCE_IMAGE = "reference-image"


class StrategyApproach(Enum):
    STOCK_FOOTAGE = "stock-footage"
    ENHANCED_NEGATIVE_PROMPT = "regenerate-with-enhanced-negative-prompt"
    CONTENT_RESTRICTIONS = "regenerate-with-content-restrictions"
    BRAND_GUIDANCE = "regenerate-with-brand-guidance"
    REFERENCE_IMAGE = "regenerate-with-reference-image"
    COMPOSITION_FIXES = "regenerate-with-composition-fixes"
    RETRY_SAME = "retry-same"


class QualityRecommendation(Enum):
    PASS = "pass"
    ADJUST = "adjust"
    REGENERATE = "regenerate"


# =========================
# SCENES
# =========================

@dataclass(frozen=True)
class Scene:
    """Owned by the upstream content pipeline; read-only here."""
    id: str
    type: str
    duration: float
    narration: str = ""
    visual_direction: str = ""
    text_overlays: Tuple[str, ...] = ()
    media_url: Optional[str] = None
    expected_framing: Optional[str] = None
    use_product_overlay: bool = False

    def base_prompt(self) -> str:
        return self.visual_direction or f"{self.type} scene for {self.narration or 'video'}"


@dataclass(frozen=True)
class Project:
    id: str
    scenes: Tuple[Scene, ...] = ()
    aspect_ratio: Optional[str] = None

    def find_scene(self, scene_id: str, scene_index: int) -> Optional[Scene]:
        for scene in self.scenes:
            if scene.id == scene_id:
                return scene
        if 0 <= scene_index < len(self.scenes):
            return self.scenes[scene_index]
        return None


@dataclass(frozen=True)
class SceneContext:
    scene_type: str
    narration: str
    expected_overlays: Tuple[str, ...] = ()
    expected_framing: Optional[str] = None

    @classmethod
    def from_scene(cls, scene: Scene) -> "SceneContext":
        return cls(
            scene_type=scene.type,
            narration=scene.narration,
            expected_overlays=tuple(scene.text_overlays),
            expected_framing=scene.expected_framing,
        )


# =========================
# QUALITY
# =========================

@dataclass(frozen=True)
class QualityIssue:
    type: IssueType
    severity: Severity
    description: str
    scene_index: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "severity": self.severity.value,
            "description": self.description,
            "scene_index": self.scene_index,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QualityIssue":
        return cls(
            type=IssueType(data["type"]),
            severity=Severity(data["severity"]),
            description=data.get("description", ""),
            scene_index=data.get("scene_index"),
        )

    @property
    def is_critical(self) -> bool:
        return self.severity is Severity.CRITICAL


@dataclass(frozen=True)
class SceneScores:
    composition: float
    visibility: float
    technical_quality: float
    content_match: float
    professional_look: float

    def values(self) -> Tuple[float, ...]:
        return (
            self.composition,
            self.visibility,
            self.technical_quality,
            self.content_match,
            self.professional_look,
        )

    def overall(self) -> int:
        values = self.values()
        return round_half_up(sum(values) / len(values))


@dataclass(frozen=True)
class SceneQualityScore:
    """One evaluation pass of one scene."""
    scene_id: str
    scene_index: int
    scores: SceneScores
    overall_score: int
    issues: Tuple[QualityIssue, ...]
    passes_threshold: bool
    needs_regeneration: bool

    @property
    def critical_issues(self) -> Tuple[QualityIssue, ...]:
        return tuple(i for i in self.issues if i.is_critical)


@dataclass(frozen=True)
class VideoQualityReport:
    project_id: str
    overall_score: int
    passes_quality: bool
    scene_scores: Tuple[SceneQualityScore, ...]
    critical_issues: Tuple[QualityIssue, ...]
    recommendations: Tuple[str, ...]
    evaluated_at: datetime


@dataclass(frozen=True)
class BrandComplianceResult:
    score: float
    issues: Tuple[QualityIssue, ...] = ()


@dataclass(frozen=True)
class SceneEvaluation:
    overall_score: int
    composition_score: int
    brand_compliance_score: float
    issues: Tuple[QualityIssue, ...]
    recommendation: QualityRecommendation


# =========================
# LEDGER
# =========================

@dataclass(frozen=True)
class RegenerationAttempt:
    scene_id: str
    attempt_number: int
    timestamp: datetime
    provider: str
    strategy: str
    prompt: str
    result: AttemptResult
    project_id: Optional[str] = None
    quality_score: Optional[float] = None
    issues: Tuple[QualityIssue, ...] = ()
    reasoning: Optional[str] = None
    confidence_score: Optional[float] = None

    @property
    def used_reference(self) -> bool:
        return self.strategy == StrategyApproach.REFERENCE_IMAGE.value


# =========================
# COMPLEXITY
# =========================

@dataclass(frozen=True)
class FactorFinding:
    detected: bool
    matches: Tuple[str, ...] = ()
    difficulty: Difficulty = Difficulty.EASY


@dataclass(frozen=True)
class ComplexityFactors:
    specific_action: FactorFinding
    material_properties: FactorFinding
    motion_requirements: FactorFinding
    element_count: int
    temporal_sequence: bool


@dataclass(frozen=True)
class ComplexityAnalysis:
    score: float
    category: ComplexityCategory
    factors: ComplexityFactors
    best_providers: Tuple[str, ...] = ()
    avoid_providers: Tuple[str, ...] = ()
    simplified_prompt: Optional[str] = None
    alternative_approach: Optional[AlternativeApproach] = None
    warning: Optional[str] = None


# =========================
# STRATEGY
# =========================

@dataclass(frozen=True)
class StrategyChanges:
    provider: Optional[str] = None
    prompt: Optional[str] = None
    prompt_additions: Tuple[str, ...] = ()
    use_reference: bool = False
    reference_url: Optional[str] = None


@dataclass(frozen=True)
class RegenerationStrategy:
    approach: StrategyApproach
    confidence_score: float
    reasoning: str
    changes: StrategyChanges = field(default_factory=StrategyChanges)
    warning: Optional[str] = None


# =========================
# GENERATION
# =========================

@dataclass(frozen=True)
class GenerationRequest:
    prompt: str
    negative_prompt: str
    duration: float
    aspect_ratio: str
    provider: str
    image_url: Optional[str] = None


@dataclass(frozen=True)
class TaskStatus:
    state: str  # "pending" | "succeeded" | "failed"
    media_url: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class GenerationResult:
    success: bool
    media_url: Optional[str] = None
    error: Optional[str] = None
    provider: Optional[str] = None
    task_id: Optional[str] = None


@dataclass(frozen=True)
class RegenerationResult:
    """Per-scene outcome handed back to the calling pipeline."""
    success: bool
    scene_id: str
    scene_index: int
    attempt: int
    strategy: RegenerationStrategy
    new_media_url: Optional[str] = None
    new_analysis: Any = None
    new_instructions: Any = None
    quality_score: Optional[SceneQualityScore] = None
    error: Optional[str] = None
    used_stock_footage: bool = False
