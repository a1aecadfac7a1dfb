import re
from typing import Iterable, List, Optional, Tuple

from scene_regen.core.models import (AlternativeApproach, ComplexityAnalysis,
                                     ComplexityCategory, ComplexityFactors,
                                     Difficulty, FactorFinding)
from scene_regen.utils.logger import get_logger

logger = get_logger()

SPECIFIC_ACTION_TERMS = [
    "stretching", "pulling", "kneading", "folding", "twisting",
    "pouring", "dripping", "splashing", "melting", "freezing",
    "cracking", "breaking", "tearing", "cutting", "slicing",
    "threading", "weaving", "sewing", "typing", "writing",
    "peeling", "rolling", "flipping", "tossing", "catching",
    "stirring", "mixing", "whisking", "grinding", "chopping",
]

MATERIAL_PROPERTY_TERMS = [
    "translucent", "transparent", "opaque", "glossy", "matte",
    "liquid", "viscous", "stretchy", "elastic", "rigid",
    "soft", "fluffy", "crispy", "crunchy", "smooth",
    "wet", "dry", "steaming", "bubbling", "fizzing",
    "shiny", "reflective", "glowing", "sparkling", "shimmering",
]

# Light transport and fluids that current video models render poorly
HARD_MATERIAL_TERMS = {"translucent", "transparent", "liquid", "viscous", "reflective", "glowing"}

PRECISE_MOTION_TERMS = [
    "outward", "inward", "clockwise", "counter-clockwise",
    "slowly", "quickly", "precisely", "carefully",
    "from left to right", "from top to bottom",
    "in circular motion", "back and forth",
    "upward", "downward", "sideways", "diagonal",
]

SPECIFIC_ELEMENT_TERMS = [
    "pizza dough", "bread dough", "pasta", "rolling pin",
    "wooden spoon", "chef knife", "cutting board",
    "mortar and pestle", "whisk", "spatula", "ladle",
    "herbs", "spices", "flour", "sugar", "salt",
]

TEMPORAL_TERMS = ["then", "after", "before", "while", "during", "until", "as soon as", "next", "finally"]

HAND_TERMS = ["hand", "hands", "finger", "fingers"]

DIFFICULTY_WEIGHTS = {
    "specific_action": {Difficulty.VERY_HARD: 0.4, Difficulty.HARD: 0.3, Difficulty.EASY: 0.2},
    "material_properties": {Difficulty.VERY_HARD: 0.4, Difficulty.HARD: 0.3, Difficulty.EASY: 0.2},
    "motion_requirements": {Difficulty.VERY_HARD: 0.3, Difficulty.HARD: 0.2, Difficulty.EASY: 0.1},
}
ELEMENT_WEIGHT = 0.05
ELEMENT_CAP = 0.2
TEMPORAL_WEIGHT = 0.1

CATEGORY_THRESHOLDS = [
    (0.8, ComplexityCategory.IMPOSSIBLE),
    (0.5, ComplexityCategory.COMPLEX),
    (0.3, ComplexityCategory.MODERATE),
]

# Evaluated in order; a later matching subject replaces the earlier lists.
PROVIDER_RULES = [
    (["hand", "hands", "finger", "fingers"], ["kling-2.5-turbo", "runway-gen3"], ["hailuo-minimax", "wan-2.1"]),
    (["food", "dough", "cooking"], ["kling-2.5-turbo", "luma-dream-machine"], ["seedance-1.0"]),
    (["product", "bottle", "package"], ["luma-dream-machine", "kling-2.1", "veo-3.1"], None),
    (["nature", "forest", "landscape"], ["veo-3.1", "veo-2", "hailuo-minimax"], None),
    (["person", "face", "people"], ["kling-2.5-turbo", "kling-2.1", "runway-gen3"], ["hailuo-minimax"]),
    (["cinematic", "dramatic", "epic"], ["veo-3.1", "runway-gen3", "kling-2.0"], None),
]

IMPOSSIBLE_WARNING = (
    "This visual direction is extremely specific and may be impossible for current AI video models. "
    "Consider using stock footage or simplifying the requirements."
)


def _term_pattern(term: str) -> str:
    return rf"\b{re.escape(term)}\b"


def find_terms(text: str, terms: Iterable[str]) -> List[str]:
    return [t for t in terms if re.search(_term_pattern(t), text)]


def remove_terms(text: str, terms: Iterable[str]) -> str:
    for term in terms:
        text = re.sub(_term_pattern(term), "", text, flags=re.IGNORECASE)
    return text


def tidy_prompt(text: str) -> str:
    text = re.sub(r"\s+", " ", text)
    text = re.sub(r"\s+,", ",", text)
    text = re.sub(r",(\s*,)+", ",", text)
    text = re.sub(r"^[\s,]+|[\s,]+$", "", text)
    return text.strip()


class ComplexityAnalyzer:
    """
    Heuristic difficulty score for a visual direction.
    Pure and deterministic; unmatched text scores 0 ("simple").
    """

    def analyze(self, visual_direction: str) -> ComplexityAnalysis:
        text = (visual_direction or "").lower()

        factors = ComplexityFactors(
            specific_action=self._specific_actions(text),
            material_properties=self._material_properties(text),
            motion_requirements=self._motion_requirements(text),
            element_count=len(find_terms(text, SPECIFIC_ELEMENT_TERMS)),
            temporal_sequence=bool(find_terms(text, TEMPORAL_TERMS)),
        )

        score = self.score(factors)
        category = self.categorize(score)
        best, avoid = self._provider_recommendations(text)

        simplified: Optional[str] = None
        alternative: Optional[AlternativeApproach] = None
        if category in (ComplexityCategory.COMPLEX, ComplexityCategory.IMPOSSIBLE):
            simplified = self.simplify(visual_direction or "", factors)
            if factors.specific_action.difficulty is Difficulty.VERY_HARD:
                alternative = AlternativeApproach.STOCK_FOOTAGE
            elif factors.material_properties.difficulty is Difficulty.VERY_HARD:
                alternative = AlternativeApproach.REFERENCE_IMAGE

        logger.info(
            f"🧮 Complexity {score:.2f} ({category.value}) for \"{(visual_direction or '')[:60]}\""
        )

        return ComplexityAnalysis(
            score=score,
            category=category,
            factors=factors,
            best_providers=best,
            avoid_providers=avoid,
            simplified_prompt=simplified,
            alternative_approach=alternative,
            warning=self._warning(category, factors),
        )

    def score(self, factors: ComplexityFactors) -> float:
        total = 0.0
        for name in ("specific_action", "material_properties", "motion_requirements"):
            finding: FactorFinding = getattr(factors, name)
            if finding.detected:
                total += DIFFICULTY_WEIGHTS[name][finding.difficulty]
        total += min(factors.element_count * ELEMENT_WEIGHT, ELEMENT_CAP)
        if factors.temporal_sequence:
            total += TEMPORAL_WEIGHT
        # Rounded so category boundaries compare exactly
        return round(max(0.0, min(total, 1.0)), 2)

    @staticmethod
    def categorize(score: float) -> ComplexityCategory:
        for threshold, category in CATEGORY_THRESHOLDS:
            if score >= threshold:
                return category
        return ComplexityCategory.SIMPLE

    def simplify(self, visual_direction: str, factors: ComplexityFactors) -> str:
        simplified = remove_terms(visual_direction, factors.material_properties.matches)
        simplified = remove_terms(simplified, sorted(PRECISE_MOTION_TERMS, key=len, reverse=True))
        simplified = tidy_prompt(simplified)
        return simplified or visual_direction

    def _specific_actions(self, text: str) -> FactorFinding:
        found = find_terms(text, SPECIFIC_ACTION_TERMS)
        if not found:
            return FactorFinding(detected=False)
        if find_terms(text, HAND_TERMS):
            difficulty = Difficulty.VERY_HARD
        elif len(found) > 1:
            difficulty = Difficulty.HARD
        else:
            difficulty = Difficulty.EASY
        return FactorFinding(detected=True, matches=tuple(found), difficulty=difficulty)

    def _material_properties(self, text: str) -> FactorFinding:
        found = find_terms(text, MATERIAL_PROPERTY_TERMS)
        if not found:
            return FactorFinding(detected=False)
        if any(p in HARD_MATERIAL_TERMS for p in found):
            difficulty = Difficulty.VERY_HARD
        elif len(found) > 1:
            difficulty = Difficulty.HARD
        else:
            difficulty = Difficulty.EASY
        return FactorFinding(detected=True, matches=tuple(found), difficulty=difficulty)

    def _motion_requirements(self, text: str) -> FactorFinding:
        found = find_terms(text, PRECISE_MOTION_TERMS)
        if not found:
            return FactorFinding(detected=False)
        difficulty = Difficulty.VERY_HARD if len(found) > 1 else Difficulty.HARD
        return FactorFinding(detected=True, matches=tuple(found), difficulty=difficulty)

    def _provider_recommendations(self, text: str) -> Tuple[Tuple[str, ...], Tuple[str, ...]]:
        best: List[str] = []
        avoid: List[str] = []
        for subjects, recommended, avoided in PROVIDER_RULES:
            if find_terms(text, subjects):
                best = list(recommended)
                if avoided is not None:
                    avoid = list(avoided)
        return tuple(best), tuple(avoid)

    def _warning(self, category: ComplexityCategory, factors: ComplexityFactors) -> Optional[str]:
        if category is ComplexityCategory.IMPOSSIBLE:
            return IMPOSSIBLE_WARNING

        if category is ComplexityCategory.COMPLEX:
            hard_parts = []
            if factors.specific_action.difficulty is Difficulty.VERY_HARD:
                hard_parts.append("specific hand/body actions")
            if factors.material_properties.difficulty is Difficulty.VERY_HARD:
                hard_parts.append("material properties (translucent, liquid, etc.)")
            if factors.motion_requirements.difficulty is Difficulty.VERY_HARD:
                hard_parts.append("precise motion direction")
            if hard_parts:
                return (
                    f"This prompt has complex requirements ({', '.join(hard_parts)}) that AI video models "
                    "struggle with. Results may not match expectations. "
                    "Consider simplifying or using a reference image."
                )

        return None
