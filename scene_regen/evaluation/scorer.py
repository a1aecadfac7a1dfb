import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from scene_regen.core.errors import EvaluatorParseError
from scene_regen.core.models import (BrandComplianceResult, IssueType, Project,
                                     QualityIssue, QualityRecommendation, Scene,
                                     SceneContext, SceneEvaluation,
                                     SceneQualityScore, SceneScores, Severity,
                                     VideoQualityReport, round_half_up)
from scene_regen.utils.logger import get_logger
from scene_regen.vision.frame_extractor import FrameExtractor

logger = get_logger("evaluation")

DEFAULT_SUBSCORE = 70
PLACEHOLDER_SCORE = 75
PLACEHOLDER_DESCRIPTION = "Could not evaluate frame - using placeholder score"
NEUTRAL_BRAND_SCORE = 70

# Payload key -> SceneScores field
SUBSCORE_KEYS = {
    "composition": "composition",
    "visibility": "visibility",
    "technicalQuality": "technical_quality",
    "contentMatch": "content_match",
    "professionalLook": "professional_look",
}

# Payload key -> (issue type, severity, penalty)
BRAND_CHECKS = [
    ("aiTextDetected", IssueType.AI_TEXT_DETECTED, Severity.CRITICAL, 40),
    ("aiUIDetected", IssueType.AI_UI_DETECTED, Severity.MAJOR, 25),
    ("offBrandContent", IssueType.OFF_BRAND_CONTENT, Severity.MAJOR, 20),
    ("missingBrandElements", IssueType.MISSING_BRAND_ELEMENT, Severity.MINOR, 10),
]

JSON_BLOCK = re.compile(r"\{[\s\S]*\}")


@dataclass(frozen=True)
class EvaluationRequest:
    """What the vision evaluator is asked, built deterministically from scene context."""
    context: SceneContext
    prompt: str


class VisionEvaluator(ABC):
    """
    Black-box frame judge. Returns either the parsed JSON object or the raw
    model text; raises when it cannot answer.
    """

    @abstractmethod
    async def evaluate(self, frame: bytes, request: EvaluationRequest) -> Union[str, Dict[str, Any]]:
        pass


# =========================
# REQUESTS
# =========================

def build_evaluation_request(context: SceneContext) -> EvaluationRequest:
    expected_text = ", ".join(context.expected_overlays) or "None"
    framing = context.expected_framing or "Not specified"
    issue_types = " | ".join(t.value for t in IssueType)

    prompt = f"""Evaluate this video frame for broadcast quality. Be critical but fair.

SCENE CONTEXT:
- Scene type: {context.scene_type}
- Expected narration topic: "{context.narration[:100]}..."
- Expected text overlays: {expected_text}
- Expected shot framing: {framing}

Rate each aspect 0-100 and identify any issues:

{{
  "scores": {{
    "composition": <0-100 - Is the visual layout professional? Text placed well?>,
    "visibility": <0-100 - Is all text clearly readable? Good contrast?>,
    "technicalQuality": <0-100 - No blur, artifacts, good resolution?>,
    "contentMatch": <0-100 - Does visual match the narration topic?>,
    "professionalLook": <0-100 - Would this look good on TV?>
  }},
  "issues": [
    {{
      "type": "{issue_types}",
      "severity": "critical | major | minor",
      "description": "Specific description of the issue"
    }}
  ],
  "notes": "Brief overall assessment"
}}

CRITICAL ISSUES (score impact):
- Text overlapping a face = critical, -30 points
- Text unreadable = critical, -25 points
- Content completely mismatched = critical, -40 points
- Poor image quality = major, -15 points
- Awkward composition = minor, -10 points

Return ONLY the JSON object."""

    return EvaluationRequest(context=context, prompt=prompt)


def build_brand_compliance_request(
    context: SceneContext,
    is_first_scene: bool = False,
    is_last_scene: bool = False,
    should_have_watermark: bool = False,
) -> EvaluationRequest:
    prompt = f"""Analyze this video frame for brand compliance and AI generation artifacts.

SCENE CONTEXT:
- Scene type: {context.scene_type}
- Expected content: {context.narration[:100]}
- First scene (should have logo intro): {str(is_first_scene).lower()}
- Last scene (should have CTA): {str(is_last_scene).lower()}
- Should have watermark: {str(should_have_watermark).lower()}

CHECK FOR THESE SPECIFIC ISSUES:

1. AI-GENERATED TEXT (CRITICAL): garbled, misspelled or nonsensical text, character soup.
2. AI-GENERATED UI ELEMENTS (MAJOR): fake calendars, charts, spreadsheets, app screens, random data.
3. OFF-BRAND CONTENT (MAJOR): finance or business graphics, unrelated stock imagery.
4. MISSING BRAND ELEMENTS (MINOR): expected logo, watermark, brand colors or CTA missing.

Return a JSON object with this EXACT structure:
{{
  "aiTextDetected": {{"found": true/false, "examples": ["garbled", "text"], "severity": "critical"}},
  "aiUIDetected": {{"found": true/false, "description": "what was found", "severity": "major"}},
  "offBrandContent": {{"found": true/false, "description": "what doesn't match", "severity": "major"}},
  "missingBrandElements": {{"found": true/false, "description": "what's missing", "severity": "minor"}},
  "brandComplianceScore": 0-100,
  "overallAssessment": "brief summary"
}}

SCORING GUIDE:
- AI text detected: -40 points (critical issue)
- AI UI detected: -25 points (major issue)
- Off-brand content: -20 points (major issue)
- Missing brand elements: -10 points (minor issue)
- Start at 100, subtract for issues found

Return ONLY the JSON object, no other text."""

    return EvaluationRequest(context=context, prompt=prompt)


# =========================
# PARSING
# =========================

def extract_json(payload: Union[str, Dict[str, Any]]) -> Dict[str, Any]:
    """Accepts a parsed object or raw model text containing one JSON object."""
    if isinstance(payload, dict):
        return payload
    if not isinstance(payload, str):
        raise EvaluatorParseError("Unsupported evaluator payload", {"type": type(payload).__name__})

    match = JSON_BLOCK.search(payload)
    if not match:
        raise EvaluatorParseError("No JSON found in evaluator response")
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise EvaluatorParseError("Malformed JSON in evaluator response", {"error": str(e)})
    if not isinstance(data, dict):
        raise EvaluatorParseError("Evaluator response is not a JSON object")
    return data


def _subscore(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return DEFAULT_SUBSCORE
    return max(0.0, min(float(value), 100.0))


def _issue_type(value: Any) -> IssueType:
    try:
        return IssueType(value)
    except ValueError:
        return IssueType.TECHNICAL


def _severity(value: Any) -> Severity:
    try:
        return Severity(value)
    except ValueError:
        return Severity.MINOR


def build_score(
    scene_id: str,
    scene_index: int,
    scores: SceneScores,
    issues: Sequence[QualityIssue],
    threshold: int,
) -> SceneQualityScore:
    overall = scores.overall()
    passes = overall >= threshold and not any(i.is_critical for i in issues)
    return SceneQualityScore(
        scene_id=scene_id,
        scene_index=scene_index,
        scores=scores,
        overall_score=overall,
        issues=tuple(issues),
        passes_threshold=passes,
        needs_regeneration=not passes,
    )


def parse_evaluation(
    payload: Union[str, Dict[str, Any]],
    scene_id: str,
    scene_index: int,
    threshold: int = 70,
) -> SceneQualityScore:
    """
    Defensive parse of a vision evaluator answer.

    Missing or non-numeric sub-scores become 70, numeric ones are clamped to
    0-100. Unknown issue types fall back to technical, unknown severities to
    minor. Raises EvaluatorParseError only when no JSON object is recoverable.
    """
    data = extract_json(payload)

    raw_scores = data.get("scores")
    if not isinstance(raw_scores, dict):
        raw_scores = {}
    scores = SceneScores(**{field: _subscore(raw_scores.get(key)) for key, field in SUBSCORE_KEYS.items()})

    issues: List[QualityIssue] = []
    raw_issues = data.get("issues")
    for raw in raw_issues if isinstance(raw_issues, list) else []:
        if not isinstance(raw, dict):
            continue
        issues.append(QualityIssue(
            type=_issue_type(raw.get("type")),
            severity=_severity(raw.get("severity")),
            description=raw.get("description") or "Unknown issue",
            scene_index=scene_index,
        ))

    return build_score(scene_id, scene_index, scores, issues, threshold)


def parse_brand_compliance(payload: Union[str, Dict[str, Any]], scene_index: Optional[int] = None) -> BrandComplianceResult:
    try:
        data = extract_json(payload)
    except EvaluatorParseError as e:
        logger.warning(f"⚠️ Brand compliance response unusable, using neutral score: {e}")
        return BrandComplianceResult(score=NEUTRAL_BRAND_SCORE)

    issues: List[QualityIssue] = []
    score = 100
    for key, issue_type, severity, penalty in BRAND_CHECKS:
        finding = data.get(key)
        if not isinstance(finding, dict) or not finding.get("found"):
            continue
        detail = finding.get("description")
        if issue_type is IssueType.AI_TEXT_DETECTED:
            examples = finding.get("examples") or []
            detail = ", ".join(str(e) for e in examples) if examples else None
        description = _BRAND_DESCRIPTIONS[issue_type]
        if detail:
            description = f"{description}: {detail}"
        issues.append(QualityIssue(type=issue_type, severity=severity, description=description, scene_index=scene_index))
        score -= penalty

    explicit = data.get("brandComplianceScore")
    if isinstance(explicit, (int, float)) and not isinstance(explicit, bool):
        final = max(0.0, min(float(explicit), 100.0))
    else:
        final = float(max(0, score))

    if issues:
        logger.info(f"🏷️ Brand issues: {', '.join(f'{i.type.value} ({i.severity.value})' for i in issues)}")
    return BrandComplianceResult(score=final, issues=tuple(issues))


_BRAND_DESCRIPTIONS = {
    IssueType.AI_TEXT_DETECTED: "AI-generated garbled text detected in video frame",
    IssueType.AI_UI_DETECTED: "AI-generated UI elements detected",
    IssueType.OFF_BRAND_CONTENT: "Off-brand content",
    IssueType.MISSING_BRAND_ELEMENT: "Missing brand element",
}


def placeholder_score(scene_id: str, scene_index: int) -> SceneQualityScore:
    scores = SceneScores(*([PLACEHOLDER_SCORE] * len(SUBSCORE_KEYS)))
    issue = QualityIssue(
        type=IssueType.TECHNICAL,
        severity=Severity.MINOR,
        description=PLACEHOLDER_DESCRIPTION,
        scene_index=scene_index,
    )
    return SceneQualityScore(
        scene_id=scene_id,
        scene_index=scene_index,
        scores=scores,
        overall_score=PLACEHOLDER_SCORE,
        issues=(issue,),
        passes_threshold=True,
        needs_regeneration=False,
    )


# =========================
# SELECTION & REPORTING
# =========================

def select_scenes_for_regeneration(
    scores: Iterable[SceneQualityScore], max_scenes: int = 3
) -> List[SceneQualityScore]:
    """Worst first: most critical issues, then lowest overall score."""
    failing = [s for s in scores if s.needs_regeneration]
    failing.sort(key=lambda s: (-len(s.critical_issues), s.overall_score))
    return failing[:max(max_scenes, 0)]


def build_recommendations(scene_scores: Sequence[SceneQualityScore]) -> List[str]:
    if not scene_scores:
        return ["No scenes to evaluate"]

    count = len(scene_scores)
    avg_composition = sum(s.scores.composition for s in scene_scores) / count
    avg_visibility = sum(s.scores.visibility for s in scene_scores) / count
    avg_content = sum(s.scores.content_match for s in scene_scores) / count

    recommendations = []
    if avg_composition < 70:
        recommendations.append("Consider adjusting text placement algorithm - composition scores are low")
    if avg_visibility < 70:
        recommendations.append("Text visibility needs improvement - try adding more shadow or background")
    if avg_content < 70:
        recommendations.append("Video content often mismatches narration - improve visual direction prompts")

    overlaps = [i for s in scene_scores for i in s.issues if i.type is IssueType.TEXT_OVERLAP]
    if overlaps:
        recommendations.append(f"{len(overlaps)} scene(s) have text overlapping faces - check face detection")

    regen = [s for s in scene_scores if s.needs_regeneration]
    if regen:
        numbers = ", ".join(str(s.scene_index + 1) for s in regen)
        recommendations.append(f"{len(regen)} scene(s) need regeneration: scenes {numbers}")

    if not recommendations:
        recommendations.append("Video passes quality checks - ready for distribution")
    return recommendations


class QualityScorer:
    """
    Scores single frames through an injected VisionEvaluator.

    Never raises on evaluator trouble: a missing evaluator, a missing frame,
    a failed call or an unparseable answer all degrade to the placeholder.
    """

    def __init__(
        self,
        evaluator: Optional[VisionEvaluator] = None,
        frame_extractor: Optional[FrameExtractor] = None,
        threshold: int = 70,
    ):
        self.evaluator = evaluator
        self.frame_extractor = frame_extractor
        self.threshold = threshold

    async def evaluate(self, scene: Scene, frame: Optional[bytes], scene_index: int = 0) -> SceneQualityScore:
        if self.evaluator is None:
            logger.warning(f"⚠️ No vision evaluator configured. Placeholder score for scene {scene.id}.")
            return placeholder_score(scene.id, scene_index)
        if frame is None:
            logger.warning(f"⚠️ No frame for scene {scene.id}. Placeholder score.")
            return placeholder_score(scene.id, scene_index)

        request = build_evaluation_request(SceneContext.from_scene(scene))
        try:
            payload = await self.evaluator.evaluate(frame, request)
            score = parse_evaluation(payload, scene.id, scene_index, self.threshold)
        except Exception as e:
            logger.error(f"❌ Frame evaluation failed for scene {scene.id}: {e}")
            return placeholder_score(scene.id, scene_index)

        status = "✅ passes" if score.passes_threshold else "❌ fails"
        logger.info(f"🔍 Scene {scene_index + 1} ({scene.id}) scored {score.overall_score} and {status}")
        return score

    async def evaluate_brand_compliance(
        self,
        scene: Scene,
        frame: Optional[bytes],
        scene_index: int = 0,
        is_first_scene: bool = False,
        is_last_scene: bool = False,
        should_have_watermark: bool = False,
    ) -> BrandComplianceResult:
        if self.evaluator is None or frame is None:
            logger.warning(f"⚠️ Brand compliance check skipped for scene {scene.id}")
            return BrandComplianceResult(score=NEUTRAL_BRAND_SCORE)

        request = build_brand_compliance_request(
            SceneContext.from_scene(scene), is_first_scene, is_last_scene, should_have_watermark
        )
        try:
            payload = await self.evaluator.evaluate(frame, request)
        except Exception as e:
            logger.error(f"❌ Brand compliance check failed for scene {scene.id}: {e}")
            return BrandComplianceResult(score=NEUTRAL_BRAND_SCORE)
        return parse_brand_compliance(payload, scene_index)

    async def evaluate_scene_complete(
        self,
        scene: Scene,
        frame: Optional[bytes],
        scene_index: int = 0,
        is_first_scene: bool = False,
        is_last_scene: bool = False,
    ) -> SceneEvaluation:
        composition = await self.evaluate(scene, frame, scene_index)
        brand = await self.evaluate_brand_compliance(
            scene, frame, scene_index, is_first_scene, is_last_scene, scene.use_product_overlay
        )

        critical_brand = any(i.is_critical for i in brand.issues)
        if critical_brand:
            overall = min(composition.overall_score * 0.3 + brand.score * 0.7, 50)
        else:
            overall = composition.overall_score * 0.6 + brand.score * 0.4

        if overall >= 70 and not critical_brand:
            recommendation = QualityRecommendation.PASS
        elif critical_brand or overall < 50:
            recommendation = QualityRecommendation.REGENERATE
        else:
            recommendation = QualityRecommendation.ADJUST

        logger.info(f"🧾 Scene {scene_index + 1} complete: {round_half_up(overall)} -> {recommendation.value}")
        return SceneEvaluation(
            overall_score=round_half_up(overall),
            composition_score=composition.overall_score,
            brand_compliance_score=brand.score,
            issues=composition.issues + brand.issues,
            recommendation=recommendation,
        )

    async def evaluate_video(self, project: Project, media_url: str) -> VideoQualityReport:
        logger.info(f"🎞️ Evaluating {len(project.scenes)} scene(s) of project {project.id}")

        scene_scores: List[SceneQualityScore] = []
        start = 0.0
        for index, scene in enumerate(project.scenes):
            frame = None
            if self.frame_extractor is not None:
                frame = await self.frame_extractor.extract_frame(media_url, start + scene.duration / 2)
            scene_scores.append(await self.evaluate(scene, frame, index))
            start += scene.duration

        critical = tuple(i for s in scene_scores for i in s.critical_issues)
        overall = round_half_up(sum(s.overall_score for s in scene_scores) / len(scene_scores)) if scene_scores else 0
        passes = bool(scene_scores) and overall >= self.threshold and not critical

        report = VideoQualityReport(
            project_id=project.id,
            overall_score=overall,
            passes_quality=passes,
            scene_scores=tuple(scene_scores),
            critical_issues=critical,
            recommendations=tuple(build_recommendations(scene_scores)),
            evaluated_at=datetime.now(timezone.utc),
        )
        logger.info(f"🏁 Project {project.id} scored {overall} ({'passes' if passes else 'needs work'})")
        return report
