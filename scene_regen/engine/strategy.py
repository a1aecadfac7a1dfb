from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, List, Optional, Tuple

from scene_regen.config.providers import display_name, image_to_video_providers
from scene_regen.core.models import (AlternativeApproach, AttemptResult,
                                     ComplexityAnalysis, ComplexityCategory,
                                     Difficulty, IssueType, QualityIssue,
                                     RegenerationAttempt, RegenerationStrategy,
                                     StrategyApproach, StrategyChanges)
from scene_regen.engine.synthesizer import PromptSynthesizer
from scene_regen.utils.logger import get_logger

logger = get_logger("strategy")


class IssueFamily(Enum):
    BRAND_SAFETY = "brand-safety"
    COMPOSITION = "composition"
    TECHNICAL = "technical"
    BRAND_ELEMENT = "brand-element"


ISSUE_FAMILY: Dict[IssueType, IssueFamily] = {
    IssueType.AI_TEXT_DETECTED: IssueFamily.BRAND_SAFETY,
    IssueType.AI_UI_DETECTED: IssueFamily.BRAND_SAFETY,
    IssueType.OFF_BRAND_CONTENT: IssueFamily.BRAND_SAFETY,
    IssueType.TEXT_OVERLAP: IssueFamily.COMPOSITION,
    IssueType.FACE_BLOCKED: IssueFamily.COMPOSITION,
    IssueType.POOR_VISIBILITY: IssueFamily.COMPOSITION,
    IssueType.BAD_COMPOSITION: IssueFamily.COMPOSITION,
    IssueType.CONTENT_MISMATCH: IssueFamily.COMPOSITION,
    IssueType.WRONG_FRAMING: IssueFamily.COMPOSITION,
    IssueType.MISSING_TEXT_OVERLAY: IssueFamily.COMPOSITION,
    IssueType.TECHNICAL: IssueFamily.TECHNICAL,
    IssueType.MISSING_BRAND_ELEMENT: IssueFamily.BRAND_ELEMENT,
}


@dataclass(frozen=True)
class BrandSafetyRule:
    issue_type: IssueType
    approach: StrategyApproach
    confidence: float
    clauses: Tuple[str, ...]
    reason: str


# Highest priority first; every matching rule contributes its clauses.
BRAND_SAFETY_RULES = (
    BrandSafetyRule(
        IssueType.AI_TEXT_DETECTED,
        StrategyApproach.ENHANCED_NEGATIVE_PROMPT,
        0.75,
        ("No words, no letters, no writing, no captions of any kind.",),
        "garbled AI-rendered text",
    ),
    BrandSafetyRule(
        IssueType.AI_UI_DETECTED,
        StrategyApproach.CONTENT_RESTRICTIONS,
        0.7,
        ("Natural scene only, no digital elements.",),
        "fake interface elements",
    ),
    BrandSafetyRule(
        IssueType.OFF_BRAND_CONTENT,
        StrategyApproach.BRAND_GUIDANCE,
        0.65,
        ("Warm natural aesthetic, no corporate or finance imagery.",),
        "off-brand imagery",
    ),
)

PERTURBATION_CLAUSES = (
    "Cinematic quality, sharp focus.",
    "Professional lighting, steady camera.",
    "Fresh composition with natural color grading.",
    "High detail, smooth natural motion.",
)

STOCK_CONFIDENCE_BUDGET = 0.8
STOCK_CONFIDENCE_IMPOSSIBLE = 0.85
REFERENCE_CONFIDENCE = 0.7
COMPOSITION_CONFIDENCE = 0.6
RETRY_CONFIDENCE = 0.4

STOCK_WARNING = "AI generation is unsuitable for this shot. Please search for stock footage."
FALLBACK_I2V_PROVIDER = "kling-2.5-turbo"


@dataclass(frozen=True)
class StrategyContext:
    scene_id: str
    prior_attempts: Tuple[RegenerationAttempt, ...]
    complexity: ComplexityAnalysis
    current_prompt: str
    original_prompt: str
    current_media_url: Optional[str] = None
    issues: Tuple[QualityIssue, ...] = ()
    budget_remaining: Optional[int] = None

    @property
    def base_prompt(self) -> str:
        return self.original_prompt or self.current_prompt

    @property
    def latest_issues(self) -> Tuple[QualityIssue, ...]:
        """Issues that triggered this decision, else those recorded on the newest attempt."""
        if self.issues:
            return self.issues
        if self.prior_attempts:
            return self.prior_attempts[0].issues
        return ()

    @property
    def reference_tried(self) -> bool:
        return any(a.used_reference for a in self.prior_attempts)


class StrategyEngine:
    """
    Chooses the next regeneration action for one scene.

    Pure: the same context always yields the same strategy. Rules are
    checked in order and the first match wins:

    0. project budget spent               -> stock-footage
    1. attempts >= max_attempts           -> stock-footage
    2. impossible, no reference tried     -> stock-footage
    3. AI text / AI UI / off-brand issues -> brand-safety regeneration
    4. reference image suggested + usable -> image-conditioned regeneration
    5. critical composition issue         -> composition fixes
    6. otherwise                          -> retry-same with a perturbed prompt
    """

    def __init__(
        self,
        synthesizer: Optional[PromptSynthesizer] = None,
        max_attempts: int = 2,
        default_provider: str = "kling-2.5-turbo",
    ):
        self.synthesizer = synthesizer or PromptSynthesizer()
        self.max_attempts = max_attempts
        self.default_provider = default_provider

    def determine_strategy(self, context: StrategyContext) -> RegenerationStrategy:
        logger.info(
            f"🧠 Strategy for scene {context.scene_id} attempt #{len(context.prior_attempts) + 1} "
            f"(complexity {context.complexity.category.value}, {context.complexity.score:.2f})"
        )

        strategy = (
            self._budget_exhausted(context)
            or self._attempts_exhausted(context)
            or self._impossible(context)
            or self._brand_safety(context)
            or self._reference_image(context)
            or self._composition_fixes(context)
            or self._retry_same(context)
        )

        if strategy.approach is not StrategyApproach.STOCK_FOOTAGE:
            strategy = self._ensure_novel(strategy, context)

        logger.info(
            f"🎯 {strategy.approach.value} (confidence {strategy.confidence_score:.2f}): {strategy.reasoning}"
        )
        return strategy

    # =========================
    # RULES
    # =========================

    def _budget_exhausted(self, context: StrategyContext) -> Optional[RegenerationStrategy]:
        if context.budget_remaining is None or context.budget_remaining > 0:
            return None
        return RegenerationStrategy(
            approach=StrategyApproach.STOCK_FOOTAGE,
            confidence_score=STOCK_CONFIDENCE_BUDGET,
            reasoning="The project's regeneration budget is spent. Stock footage is recommended.",
            warning=STOCK_WARNING,
        )

    def _attempts_exhausted(self, context: StrategyContext) -> Optional[RegenerationStrategy]:
        count = len(context.prior_attempts)
        if count < self.max_attempts:
            return None
        return RegenerationStrategy(
            approach=StrategyApproach.STOCK_FOOTAGE,
            confidence_score=STOCK_CONFIDENCE_BUDGET,
            reasoning=(
                f"{count} regeneration attempt(s) already recorded (limit {self.max_attempts}). "
                "Stock footage is recommended."
            ),
            warning=STOCK_WARNING,
        )

    def _impossible(self, context: StrategyContext) -> Optional[RegenerationStrategy]:
        complexity = context.complexity
        if complexity.category is not ComplexityCategory.IMPOSSIBLE or context.reference_tried:
            return None
        return RegenerationStrategy(
            approach=StrategyApproach.STOCK_FOOTAGE,
            confidence_score=STOCK_CONFIDENCE_IMPOSSIBLE,
            reasoning=(
                f"Visual direction complexity is {complexity.score:.2f} (impossible) and no reference "
                "image has been tried. Current AI models are unlikely to render it."
            ),
            warning=complexity.warning or STOCK_WARNING,
        )

    def _brand_safety(self, context: StrategyContext) -> Optional[RegenerationStrategy]:
        found = {i.type for i in context.latest_issues}
        matched = [rule for rule in BRAND_SAFETY_RULES if rule.issue_type in found]
        if not matched:
            return None

        lead = matched[0]
        clauses: List[str] = []
        for rule in matched:
            clauses.extend(rule.clauses)

        provider, switched = self._brand_safe_provider(context)
        reasons = ", ".join(rule.reason for rule in matched)
        reasoning = f"Previous output showed {reasons}. Regenerating with explicit restrictions"
        if switched:
            reasoning += f" on {display_name(provider)}, which suits this content better."
        else:
            reasoning += f" on the same provider ({display_name(provider)})."

        return RegenerationStrategy(
            approach=lead.approach,
            confidence_score=lead.confidence,
            reasoning=reasoning,
            changes=StrategyChanges(
                provider=provider,
                prompt=context.base_prompt,
                prompt_additions=tuple(clauses),
            ),
        )

    def _reference_image(self, context: StrategyContext) -> Optional[RegenerationStrategy]:
        complexity = context.complexity
        if complexity.alternative_approach is not AlternativeApproach.REFERENCE_IMAGE:
            return None
        if not context.current_media_url or context.reference_tried:
            return None

        provider = self._image_to_video_provider(complexity)
        return RegenerationStrategy(
            approach=StrategyApproach.REFERENCE_IMAGE,
            confidence_score=REFERENCE_CONFIDENCE,
            reasoning=(
                "Material properties in this shot are hard to synthesize from text. Conditioning "
                f"{display_name(provider)} on the current media as a reference image."
            ),
            changes=StrategyChanges(
                provider=provider,
                prompt=complexity.simplified_prompt or context.base_prompt,
                use_reference=True,
                reference_url=context.current_media_url,
            ),
            warning=complexity.warning,
        )

    def _composition_fixes(self, context: StrategyContext) -> Optional[RegenerationStrategy]:
        critical = [
            i for i in context.latest_issues
            if i.is_critical and ISSUE_FAMILY[i.type] is IssueFamily.COMPOSITION
        ]
        if not critical:
            return None

        provider = self._current_provider(context)
        kinds = ", ".join(sorted({i.type.value for i in critical}))
        return RegenerationStrategy(
            approach=StrategyApproach.COMPOSITION_FIXES,
            confidence_score=COMPOSITION_CONFIDENCE,
            reasoning=f"Critical composition issue(s) ({kinds}). Regenerating with framing and layout guidance.",
            changes=StrategyChanges(provider=provider, prompt=context.base_prompt),
        )

    def _retry_same(self, context: StrategyContext) -> RegenerationStrategy:
        provider = self._current_provider(context)
        clause = PERTURBATION_CLAUSES[len(context.prior_attempts) % len(PERTURBATION_CLAUSES)]
        return RegenerationStrategy(
            approach=StrategyApproach.RETRY_SAME,
            confidence_score=RETRY_CONFIDENCE,
            reasoning=(
                f"No decisive failure pattern. Retrying {display_name(provider)} with a lightly varied prompt."
            ),
            changes=StrategyChanges(
                provider=provider,
                prompt=context.base_prompt,
                prompt_additions=(clause,),
            ),
            warning=context.complexity.warning,
        )

    # =========================
    # HELPERS
    # =========================

    def _ensure_novel(self, strategy: RegenerationStrategy, context: StrategyContext) -> RegenerationStrategy:
        """Resolve the concrete prompt and vary it until (prompt, provider) is unseen."""
        changes = strategy.changes
        provider = changes.provider or self.default_provider
        base = changes.prompt or context.base_prompt
        issues = context.latest_issues
        additions = list(changes.prompt_additions)
        seen = {(a.prompt, a.provider) for a in context.prior_attempts}

        prompt = self.synthesizer.improve_prompt(base, issues, additions)
        step = 0
        while (prompt, provider) in seen:
            additions.append(self._perturbation(step))
            step += 1
            prompt = self.synthesizer.improve_prompt(base, issues, additions)

        if step:
            logger.info(f"🔀 Varied prompt {step}x to avoid repeating a recorded attempt")

        return replace(
            strategy,
            changes=replace(changes, provider=provider, prompt=prompt, prompt_additions=tuple(additions)),
        )

    @staticmethod
    def _perturbation(step: int) -> str:
        if step < len(PERTURBATION_CLAUSES):
            return PERTURBATION_CLAUSES[step]
        return f"Variation {step - len(PERTURBATION_CLAUSES) + 2}."

    def _current_provider(self, context: StrategyContext) -> str:
        for attempt in context.prior_attempts:
            if attempt.result is not AttemptResult.RECOMMENDATION:
                return attempt.provider
        avoid = set(context.complexity.avoid_providers)
        for provider in context.complexity.best_providers:
            if provider not in avoid:
                return provider
        return self.default_provider

    def _brand_safe_provider(self, context: StrategyContext) -> Tuple[str, bool]:
        current = self._current_provider(context)
        avoid = set(context.complexity.avoid_providers)
        if current not in avoid:
            return current, False
        for provider in context.complexity.best_providers:
            if provider not in avoid and provider != current:
                return provider, True
        if self.default_provider not in avoid and self.default_provider != current:
            return self.default_provider, True
        return current, False

    def _image_to_video_provider(self, complexity: ComplexityAnalysis) -> str:
        if complexity.factors.specific_action.difficulty is Difficulty.VERY_HARD:
            return FALLBACK_I2V_PROVIDER
        avoid = set(complexity.avoid_providers)
        capable = image_to_video_providers(p for p in complexity.best_providers if p not in avoid)
        if capable:
            return capable[0]
        if image_to_video_providers([self.default_provider]):
            return self.default_provider
        return FALLBACK_I2V_PROVIDER


def next_suggestion(strategy: RegenerationStrategy) -> str:
    approach = strategy.approach
    if approach is StrategyApproach.STOCK_FOOTAGE:
        return "AI generation may not be suitable for this shot. Consider searching for stock footage."
    if approach is StrategyApproach.REFERENCE_IMAGE:
        return "Try using the current result as a reference to refine further."
    if approach is StrategyApproach.COMPOSITION_FIXES:
        return "Review text placement and framing before the next render."
    if approach in (
        StrategyApproach.ENHANCED_NEGATIVE_PROMPT,
        StrategyApproach.CONTENT_RESTRICTIONS,
        StrategyApproach.BRAND_GUIDANCE,
    ):
        return "Check the regenerated scene for stray text, interface elements and brand fit."
    return "Try regenerating with adjusted settings."
