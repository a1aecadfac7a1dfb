from datetime import datetime, timedelta, timezone

import pytest

from scene_regen.config.providers import get_provider_profile
from scene_regen.core.models import (AttemptResult, IssueType, QualityIssue,
                                     RegenerationAttempt, RegenerationStrategy,
                                     Severity, StrategyApproach)
from scene_regen.engine.complexity import ComplexityAnalyzer
from scene_regen.engine.strategy import (ISSUE_FAMILY, PERTURBATION_CLAUSES,
                                         StrategyContext, StrategyEngine,
                                         next_suggestion)

SIMPLE = "a sunny kitchen table"
IMPOSSIBLE = "hands kneading translucent pizza dough, twisting outward slowly"
T0 = datetime(2025, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def engine():
    return StrategyEngine(max_attempts=2, default_provider="kling-2.5-turbo")


def attempt(number, prompt="old prompt", provider="kling-2.5-turbo", strategy="retry-same",
            result=AttemptResult.FAILURE, issues=()):
    return RegenerationAttempt(
        scene_id="s1",
        attempt_number=number,
        timestamp=T0 + timedelta(minutes=number),
        provider=provider,
        strategy=strategy,
        prompt=prompt,
        result=result,
        issues=tuple(issues),
    )


def context(text=SIMPLE, prior=(), issues=(), media_url=None, budget=None):
    # Ledger order: newest first
    prior = tuple(sorted(prior, key=lambda a: a.attempt_number, reverse=True))
    return StrategyContext(
        scene_id="s1",
        prior_attempts=prior,
        complexity=ComplexityAnalyzer().analyze(text),
        current_prompt=prior[0].prompt if prior else text,
        original_prompt=text,
        current_media_url=media_url,
        issues=tuple(issues),
        budget_remaining=budget,
    )


def issue(issue_type, severity=Severity.MAJOR):
    return QualityIssue(type=issue_type, severity=severity, description="test")


def test_impossible_scene_with_no_history_goes_to_stock_footage(engine):
    strategy = engine.determine_strategy(context(IMPOSSIBLE))

    assert strategy.approach is StrategyApproach.STOCK_FOOTAGE
    assert strategy.confidence_score >= 0.8
    assert strategy.reasoning
    assert strategy.warning


def test_exhausted_attempts_go_to_stock_footage_even_when_simple(engine):
    prior = [attempt(1), attempt(2)]
    strategy = engine.determine_strategy(context(SIMPLE, prior=prior))

    assert strategy.approach is StrategyApproach.STOCK_FOOTAGE
    assert "limit 2" in strategy.reasoning


def test_attempt_limit_outranks_impossible_complexity(engine):
    strategy = engine.determine_strategy(context(IMPOSSIBLE, prior=[attempt(1), attempt(2)]))

    assert strategy.approach is StrategyApproach.STOCK_FOOTAGE
    assert "limit 2" in strategy.reasoning


def test_spent_project_budget_goes_to_stock_footage(engine):
    strategy = engine.determine_strategy(context(SIMPLE, budget=0))

    assert strategy.approach is StrategyApproach.STOCK_FOOTAGE
    assert "budget" in strategy.reasoning


def test_impossible_scene_gets_another_try_after_reference_image(engine):
    prior = [attempt(1, strategy=StrategyApproach.REFERENCE_IMAGE.value)]
    strategy = engine.determine_strategy(context(IMPOSSIBLE, prior=prior))

    assert strategy.approach is not StrategyApproach.STOCK_FOOTAGE


def test_ai_text_and_ui_merge_their_clauses(engine):
    issues = [issue(IssueType.AI_TEXT_DETECTED, Severity.CRITICAL), issue(IssueType.AI_UI_DETECTED)]
    strategy = engine.determine_strategy(context(SIMPLE, issues=issues))

    assert strategy.approach is StrategyApproach.ENHANCED_NEGATIVE_PROMPT
    assert strategy.confidence_score == pytest.approx(0.75)
    assert "No words, no letters" in strategy.changes.prompt
    assert "Natural scene only, no digital elements." in strategy.changes.prompt
    assert strategy.changes.provider == "kling-2.5-turbo"


def test_off_brand_alone_selects_brand_guidance(engine):
    strategy = engine.determine_strategy(context(SIMPLE, issues=[issue(IssueType.OFF_BRAND_CONTENT)]))
    assert strategy.approach is StrategyApproach.BRAND_GUIDANCE


def test_brand_safety_reads_issues_from_latest_attempt(engine):
    prior = [attempt(1, issues=[issue(IssueType.AI_UI_DETECTED)])]
    strategy = engine.determine_strategy(context(SIMPLE, prior=prior))
    assert strategy.approach is StrategyApproach.CONTENT_RESTRICTIONS


def test_brand_safety_leaves_a_provider_to_avoid(engine):
    prior = [attempt(1, provider="hailuo-minimax", issues=[issue(IssueType.AI_TEXT_DETECTED, Severity.CRITICAL)])]
    strategy = engine.determine_strategy(context("hands folding a towel", prior=prior))

    assert strategy.approach is StrategyApproach.ENHANCED_NEGATIVE_PROMPT
    assert strategy.changes.provider == "kling-2.5-turbo"


def test_brand_safety_keeps_current_provider_otherwise(engine):
    prior = [attempt(1, provider="veo-3.1", issues=[issue(IssueType.OFF_BRAND_CONTENT)])]
    strategy = engine.determine_strategy(context(SIMPLE, prior=prior))
    assert strategy.changes.provider == "veo-3.1"


def test_reference_image_when_material_is_hard_and_media_exists(engine):
    strategy = engine.determine_strategy(context("liquid splashing", media_url="https://cdn.example/s1.mp4"))

    assert strategy.approach is StrategyApproach.REFERENCE_IMAGE
    assert strategy.changes.use_reference is True
    assert strategy.changes.reference_url == "https://cdn.example/s1.mp4"
    assert get_provider_profile(strategy.changes.provider).supports_image_to_video


def test_reference_image_needs_existing_media(engine):
    strategy = engine.determine_strategy(context("liquid splashing"))
    assert strategy.approach is StrategyApproach.RETRY_SAME


def test_reference_image_is_not_repeated(engine):
    prior = [attempt(1, strategy=StrategyApproach.REFERENCE_IMAGE.value)]
    strategy = engine.determine_strategy(context("liquid splashing", prior=prior, media_url="https://cdn.example/s1.mp4"))
    assert strategy.approach is not StrategyApproach.REFERENCE_IMAGE


def test_critical_composition_issue_selects_composition_fixes(engine):
    strategy = engine.determine_strategy(context(SIMPLE, issues=[issue(IssueType.TEXT_OVERLAP, Severity.CRITICAL)]))

    assert strategy.approach is StrategyApproach.COMPOSITION_FIXES
    assert strategy.confidence_score == pytest.approx(0.6)
    assert "Leave clear space in the lower third" in strategy.changes.prompt


def test_non_critical_issue_falls_back_to_retry(engine):
    strategy = engine.determine_strategy(context(SIMPLE, issues=[issue(IssueType.TEXT_OVERLAP, Severity.MINOR)]))
    assert strategy.approach is StrategyApproach.RETRY_SAME


def test_retry_same_is_low_confidence_and_perturbed(engine):
    strategy = engine.determine_strategy(context(SIMPLE))

    assert strategy.approach is StrategyApproach.RETRY_SAME
    assert strategy.confidence_score == pytest.approx(0.4)
    assert strategy.reasoning
    assert strategy.changes.prompt == f"{SIMPLE} {PERTURBATION_CLAUSES[0]}"


def test_never_repeats_a_recorded_prompt_and_provider():
    engine = StrategyEngine(max_attempts=10)
    # Seed history with the prompts the engine would otherwise propose
    prior = [
        attempt(1, prompt=f"{SIMPLE} {PERTURBATION_CLAUSES[3]}"),
        attempt(2, prompt=f"{SIMPLE} {PERTURBATION_CLAUSES[3]} {PERTURBATION_CLAUSES[0]}"),
        attempt(3, prompt=f"{SIMPLE} {PERTURBATION_CLAUSES[3]} {PERTURBATION_CLAUSES[0]} {PERTURBATION_CLAUSES[1]}"),
    ]
    ctx = context(SIMPLE, prior=prior)
    strategy = engine.determine_strategy(ctx)

    seen = {(a.prompt, a.provider) for a in prior}
    assert (strategy.changes.prompt, strategy.changes.provider) not in seen


@pytest.mark.parametrize("issues", [
    [],
    [QualityIssue(IssueType.TEXT_OVERLAP, Severity.CRITICAL, "overlap")],
    [QualityIssue(IssueType.AI_TEXT_DETECTED, Severity.CRITICAL, "garbled")],
])
def test_second_attempt_differs_from_first(engine, issues):
    first = engine.determine_strategy(context(SIMPLE, issues=issues))
    prior = [attempt(1, prompt=first.changes.prompt, provider=first.changes.provider, strategy=first.approach.value)]
    second = engine.determine_strategy(context(SIMPLE, prior=prior, issues=issues))

    assert (second.changes.prompt, second.changes.provider) != (first.changes.prompt, first.changes.provider)


def test_strategy_is_deterministic(engine):
    issues = [issue(IssueType.POOR_VISIBILITY, Severity.CRITICAL)]
    prior = [attempt(1, issues=issues)]

    first = engine.determine_strategy(context(SIMPLE, prior=prior, issues=issues))
    second = engine.determine_strategy(context(SIMPLE, prior=prior, issues=issues))

    assert first == second


def test_every_issue_type_has_a_family():
    assert set(ISSUE_FAMILY) == set(IssueType)


@pytest.mark.parametrize("approach", list(StrategyApproach))
def test_every_approach_has_a_suggestion(approach):
    suggestion = next_suggestion(RegenerationStrategy(approach=approach, confidence_score=0.5, reasoning="x"))
    assert isinstance(suggestion, str) and suggestion
