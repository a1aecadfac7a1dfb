import asyncio
import json
from unittest.mock import MagicMock

import pytest

from scene_regen.config.settings import Settings
from scene_regen.core.errors import EvaluatorParseError, EvaluatorUnavailable
from scene_regen.core.models import (IssueType, Project, QualityIssue,
                                     QualityRecommendation, Scene, SceneContext,
                                     SceneQualityScore, SceneScores, Severity)
from scene_regen.evaluation.scorer import (PLACEHOLDER_DESCRIPTION,
                                           EvaluationRequest, QualityScorer,
                                           VisionEvaluator,
                                           build_evaluation_request,
                                           parse_brand_compliance,
                                           parse_evaluation,
                                           select_scenes_for_regeneration)
from scene_regen.evaluation.vision import OpenAIVisionEvaluator
from scene_regen.vision.frame_extractor import FrameExtractor

SCENARIO_B = {
    "scores": {
        "composition": 72,
        "visibility": 68,
        "technicalQuality": 80,
        "contentMatch": 75,
        "professionalLook": 70,
    },
    "issues": [{"type": "bad-composition", "severity": "minor", "description": "Slightly off-center"}],
}


class FakeEvaluator(VisionEvaluator):
    def __init__(self, payload=None, brand_payload=None, error=None):
        self.payload = payload
        self.brand_payload = brand_payload
        self.error = error
        self.requests = []

    async def evaluate(self, frame, request):
        self.requests.append(request)
        if self.error:
            raise self.error
        if "brand compliance" in request.prompt and self.brand_payload is not None:
            return self.brand_payload
        return self.payload


class FakeFrameExtractor(FrameExtractor):
    def __init__(self):
        self.timestamps = []

    async def extract_frame(self, media_url, timestamp):
        self.timestamps.append(timestamp)
        return b"jpeg"


@pytest.fixture
def scene():
    return Scene(
        id="s1",
        type="hook",
        duration=5.0,
        narration="Start every morning with a glass of warm lemon water",
        visual_direction="a glass of lemon water on a sunny kitchen table",
        text_overlays=("Morning ritual",),
    )


def test_scenario_b_scores_73_and_passes():
    score = parse_evaluation(SCENARIO_B, "s1", 0)

    assert score.overall_score == 73
    assert score.passes_threshold is True
    assert score.needs_regeneration is False
    assert score.issues[0].severity is Severity.MINOR


def test_critical_issue_fails_even_with_high_scores():
    payload = {
        "scores": {k: 95 for k in ("composition", "visibility", "technicalQuality", "contentMatch", "professionalLook")},
        "issues": [{"type": "text-overlap", "severity": "critical", "description": "Title covers face"}],
    }
    score = parse_evaluation(payload, "s1", 0)

    assert score.overall_score == 95
    assert score.passes_threshold is False
    assert score.needs_regeneration is True


def test_missing_scores_default_and_out_of_range_are_clamped():
    payload = {"scores": {"composition": 150, "visibility": -5, "technicalQuality": "high"}}
    score = parse_evaluation(payload, "s1", 0)

    assert score.scores == SceneScores(100, 0, 70, 70, 70)
    assert score.overall_score == 62
    assert score.issues == ()


def test_half_point_means_round_up():
    payload = {"scores": {k: 70.5 for k in ("composition", "visibility", "technicalQuality", "contentMatch", "professionalLook")}}
    score = parse_evaluation(payload, "s1", 0)

    assert score.overall_score == 71
    assert SceneScores(72, 73, 72, 73, 72.5).overall() == 73


def test_json_is_recovered_from_surrounding_text():
    text = "Here is my assessment:\n" + json.dumps(SCENARIO_B) + "\nHope this helps."
    assert parse_evaluation(text, "s1", 0).overall_score == 73


def test_unknown_issue_fields_fall_back():
    payload = {"scores": {}, "issues": [{"type": "lens-flare", "severity": "catastrophic"}]}
    issue = parse_evaluation(payload, "s1", 4).issues[0]

    assert issue.type is IssueType.TECHNICAL
    assert issue.severity is Severity.MINOR
    assert issue.description == "Unknown issue"
    assert issue.scene_index == 4


def test_payload_without_json_raises_parse_error():
    with pytest.raises(EvaluatorParseError):
        parse_evaluation("I cannot evaluate this image.", "s1", 0)


def test_evaluation_request_is_built_from_scene_context():
    context = SceneContext.from_scene(Scene(id="x", type="cta", duration=3.0, narration="n" * 150))
    request = build_evaluation_request(context)

    assert "Scene type: cta" in request.prompt
    assert f'"{"n" * 100}..."' in request.prompt
    assert "Expected text overlays: None" in request.prompt
    assert "ai-text-detected" in request.prompt
    assert build_evaluation_request(context) == request


def test_scorer_without_evaluator_returns_placeholder(scene):
    score = asyncio.run(QualityScorer().evaluate(scene, b"jpeg", 2))

    assert score.overall_score == 75
    assert score.passes_threshold is True
    assert score.issues[0].description == PLACEHOLDER_DESCRIPTION
    assert score.issues[0].type is IssueType.TECHNICAL
    assert score.scene_index == 2


@pytest.mark.parametrize("evaluator", [
    FakeEvaluator(error=EvaluatorUnavailable("down")),
    FakeEvaluator(error=ConnectionError("reset")),
    FakeEvaluator(payload="no json here"),
])
def test_scorer_degrades_to_placeholder(scene, evaluator):
    score = asyncio.run(QualityScorer(evaluator).evaluate(scene, b"jpeg"))
    assert score.issues[0].description == PLACEHOLDER_DESCRIPTION
    assert score.passes_threshold is True


def test_scorer_without_frame_skips_evaluator(scene):
    evaluator = FakeEvaluator(payload=SCENARIO_B)
    score = asyncio.run(QualityScorer(evaluator).evaluate(scene, None))

    assert evaluator.requests == []
    assert score.overall_score == 75


def test_scorer_uses_configured_threshold(scene):
    score = asyncio.run(QualityScorer(FakeEvaluator(payload=SCENARIO_B), threshold=80).evaluate(scene, b"jpeg"))
    assert score.overall_score == 73
    assert score.passes_threshold is False


# =========================
# BRAND COMPLIANCE
# =========================

def test_brand_penalties_accumulate_from_100():
    result = parse_brand_compliance({
        "aiTextDetected": {"found": True, "examples": ["Noney", "Fioliday"]},
        "missingBrandElements": {"found": True, "description": "no logo"},
    })

    assert result.score == 50
    assert [i.type for i in result.issues] == [IssueType.AI_TEXT_DETECTED, IssueType.MISSING_BRAND_ELEMENT]
    assert result.issues[0].severity is Severity.CRITICAL
    assert "Noney" in result.issues[0].description


def test_explicit_brand_score_wins():
    result = parse_brand_compliance({"aiUIDetected": {"found": True, "description": "fake calendar"}, "brandComplianceScore": 85})
    assert result.score == 85
    assert result.issues[0].severity is Severity.MAJOR


def test_malformed_brand_response_is_neutral():
    result = parse_brand_compliance("not json")
    assert result.score == 70
    assert result.issues == ()


def test_complete_evaluation_with_ai_text_must_regenerate(scene):
    evaluator = FakeEvaluator(payload=SCENARIO_B, brand_payload={"aiTextDetected": {"found": True}})
    result = asyncio.run(QualityScorer(evaluator).evaluate_scene_complete(scene, b"jpeg"))

    assert result.composition_score == 73
    assert result.brand_compliance_score == 60
    assert result.overall_score == 50
    assert result.recommendation is QualityRecommendation.REGENERATE
    assert any(i.type is IssueType.AI_TEXT_DETECTED for i in result.issues)


def test_complete_evaluation_blends_clean_scores(scene):
    evaluator = FakeEvaluator(payload=SCENARIO_B, brand_payload={})
    result = asyncio.run(QualityScorer(evaluator).evaluate_scene_complete(scene, b"jpeg"))

    assert result.brand_compliance_score == 100
    assert result.overall_score == 84
    assert result.recommendation is QualityRecommendation.PASS


def test_complete_evaluation_middle_band_is_adjust(scene):
    low = {"scores": {k: 50 for k in ("composition", "visibility", "technicalQuality", "contentMatch", "professionalLook")}}
    evaluator = FakeEvaluator(payload=low, brand_payload={"brandComplianceScore": 80})
    result = asyncio.run(QualityScorer(evaluator).evaluate_scene_complete(scene, b"jpeg"))

    assert result.overall_score == 62
    assert result.recommendation is QualityRecommendation.ADJUST


# =========================
# VIDEO REPORT & SELECTION
# =========================

def test_video_report_samples_each_scene_midpoint():
    project = Project(
        id="p1",
        scenes=(
            Scene(id="a", type="hook", duration=4.0, narration="one"),
            Scene(id="b", type="cta", duration=6.0, narration="two"),
        ),
    )
    extractor = FakeFrameExtractor()
    scorer = QualityScorer(FakeEvaluator(payload=SCENARIO_B), frame_extractor=extractor)

    report = asyncio.run(scorer.evaluate_video(project, "/tmp/video.mp4"))

    assert extractor.timestamps == [2.0, 7.0]
    assert report.overall_score == 73
    assert report.passes_quality is True
    assert [s.scene_id for s in report.scene_scores] == ["a", "b"]
    assert "Text visibility needs improvement - try adding more shadow or background" in report.recommendations


def test_video_report_flags_critical_issues():
    payload = dict(SCENARIO_B, issues=[{"type": "text-overlap", "severity": "critical", "description": "x"}])
    project = Project(id="p1", scenes=(Scene(id="a", type="hook", duration=4.0),))
    scorer = QualityScorer(FakeEvaluator(payload=payload), frame_extractor=FakeFrameExtractor())

    report = asyncio.run(scorer.evaluate_video(project, "/tmp/video.mp4"))

    assert report.passes_quality is False
    assert len(report.critical_issues) == 1
    assert "1 scene(s) need regeneration: scenes 1" in report.recommendations
    assert "1 scene(s) have text overlapping faces - check face detection" in report.recommendations


def _score(scene_id, overall, critical=0, passes=False):
    issues = tuple(
        QualityIssue(IssueType.FACE_BLOCKED, Severity.CRITICAL, "blocked") for _ in range(critical)
    )
    return SceneQualityScore(
        scene_id=scene_id,
        scene_index=0,
        scores=SceneScores(overall, overall, overall, overall, overall),
        overall_score=overall,
        issues=issues,
        passes_threshold=passes,
        needs_regeneration=not passes,
    )


def test_selection_orders_by_critical_count_then_score():
    scores = [
        _score("low", 60),
        _score("critical", 65, critical=1),
        _score("lowest", 40),
        _score("fine", 90, passes=True),
    ]

    selected = select_scenes_for_regeneration(scores, max_scenes=2)

    assert [s.scene_id for s in selected] == ["critical", "lowest"]
    assert [s.scene_id for s in select_scenes_for_regeneration(scores)] == ["critical", "lowest", "low"]


# =========================
# OPENAI EVALUATOR
# =========================

def test_openai_evaluator_sends_frame_as_data_uri():
    client = MagicMock()
    response = MagicMock()
    response.choices[0].message.content = json.dumps(SCENARIO_B)
    client.chat.completions.create.return_value = response

    evaluator = OpenAIVisionEvaluator(client=client, model="gpt-4o")
    request = EvaluationRequest(context=SceneContext("hook", "n"), prompt="Rate it")
    payload = asyncio.run(evaluator.evaluate(b"jpeg-bytes", request))

    assert payload == SCENARIO_B
    kwargs = client.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == "gpt-4o"
    assert kwargs["response_format"] == {"type": "json_object"}
    image_part = kwargs["messages"][1]["content"][1]
    assert image_part["image_url"]["url"].startswith("data:image/jpeg;base64,")


def test_openai_evaluator_returns_raw_text_when_not_json():
    client = MagicMock()
    client.chat.completions.create.return_value.choices[0].message.content = "Sure! {\"scores\": {}}"

    payload = asyncio.run(OpenAIVisionEvaluator(client=client).evaluate(b"x", EvaluationRequest(SceneContext("a", "b"), "p")))
    assert payload == "Sure! {\"scores\": {}}"


def test_openai_evaluator_without_client_is_unavailable():
    evaluator = OpenAIVisionEvaluator.from_settings(Settings(openai_api_key=None, vllm_api_url=None))

    assert evaluator.client is None
    with pytest.raises(EvaluatorUnavailable):
        asyncio.run(evaluator.evaluate(b"x", EvaluationRequest(SceneContext("a", "b"), "p")))
