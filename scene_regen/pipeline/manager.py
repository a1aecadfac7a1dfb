import asyncio
from typing import Dict, Iterable, List, Optional, Sequence

from scene_regen.analysis.base import CompositionPlanner, SceneReanalyzer
from scene_regen.config.providers import get_provider_profile
from scene_regen.config.settings import Settings, settings
from scene_regen.core.ledger import AttemptLedger
from scene_regen.core.models import (AttemptResult, ComplexityAnalysis,
                                     GenerationRequest, GenerationResult,
                                     Project, QualityIssue, RegenerationAttempt,
                                     RegenerationResult, RegenerationStrategy,
                                     Scene, SceneContext, SceneQualityScore,
                                     StrategyApproach, VideoQualityReport)
from scene_regen.core.persistence import SQLiteAttemptStore
from scene_regen.engine.complexity import ComplexityAnalyzer
from scene_regen.engine.strategy import (StrategyContext, StrategyEngine,
                                         next_suggestion)
from scene_regen.engine.synthesizer import PromptSynthesizer
from scene_regen.evaluation import scorer as scoring
from scene_regen.evaluation.scorer import QualityScorer
from scene_regen.evaluation.vision import OpenAIVisionEvaluator
from scene_regen.generators.base import VideoGenerator
from scene_regen.generators.integrations import RunwayVideoGenerator
from scene_regen.generators.mock import MockVideoGenerator
from scene_regen.utils.logger import get_logger, setup_logging
from scene_regen.vision.frame_extractor import FrameExtractor, OpenCVFrameExtractor

logger = get_logger()

STOCK_PROVIDER = "stock-footage"
STOCK_ERROR = "AI generation not suitable - stock footage recommended"


class RegenerationPipeline:
    """
    Orchestrates quality-driven regeneration of failing scenes.

    Build one per process and share it. Collaborators not passed in are
    built from `config`. Attempts for one scene are serialized by a
    per-scene lock; a batch is processed sequentially.
    """

    def __init__(
        self,
        generator: Optional[VideoGenerator] = None,
        scorer: Optional[QualityScorer] = None,
        ledger: Optional[AttemptLedger] = None,
        complexity_analyzer: Optional[ComplexityAnalyzer] = None,
        strategy_engine: Optional[StrategyEngine] = None,
        synthesizer: Optional[PromptSynthesizer] = None,
        reanalyzer: Optional[SceneReanalyzer] = None,
        composition_planner: Optional[CompositionPlanner] = None,
        frame_extractor: Optional[FrameExtractor] = None,
        config: Optional[Settings] = None,
    ):
        self.config = config or settings
        setup_logging(self.config.log_level)

        self.synthesizer = synthesizer or PromptSynthesizer(self.config.negative_prompt_max_length)
        self.complexity_analyzer = complexity_analyzer or ComplexityAnalyzer()
        self.strategy_engine = strategy_engine or StrategyEngine(
            synthesizer=self.synthesizer,
            max_attempts=self.config.max_attempts,
            default_provider=self.config.default_provider,
        )
        self.ledger = ledger or AttemptLedger(SQLiteAttemptStore(self.config.ledger_db_path))

        if frame_extractor is None and self.config.enable_vision_evaluator:
            frame_extractor = OpenCVFrameExtractor()
        self.frame_extractor = frame_extractor

        if scorer is None:
            evaluator = None
            if self.config.enable_vision_evaluator:
                evaluator = OpenAIVisionEvaluator.from_settings(self.config)
            scorer = QualityScorer(evaluator, self.frame_extractor, self.config.quality_threshold)
        self.scorer = scorer

        self.generator = generator or self._default_generator()
        self.reanalyzer = reanalyzer
        self.composition_planner = composition_planner

        self._scene_locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    def _default_generator(self) -> VideoGenerator:
        if self.config.runway_api_secret:
            return RunwayVideoGenerator(
                api_secret=self.config.runway_api_secret,
                poll_interval=self.config.generation_poll_interval,
                timeout=self.config.generation_timeout,
            )
        logger.warning("⚠️ No generation provider configured. Using MockVideoGenerator.")
        return MockVideoGenerator()

    # =========================
    # PUBLIC API
    # =========================

    async def evaluate_scene(self, scene: Scene, frame: Optional[bytes], scene_index: int = 0) -> SceneQualityScore:
        return await self.scorer.evaluate(scene, frame, scene_index)

    async def evaluate_video(self, project: Project, media_url: str) -> VideoQualityReport:
        return await self.scorer.evaluate_video(project, media_url)

    def analyze_complexity(self, text: str) -> ComplexityAnalysis:
        return self.complexity_analyzer.analyze(text)

    def get_scene_history(self, scene_id: str, limit: Optional[int] = None) -> List[RegenerationAttempt]:
        return self.ledger.get_attempts(scene_id, limit if limit is not None else self.config.history_limit)

    def clear_scene_history(self, scene_id: str) -> int:
        return self.ledger.clear_history(scene_id)

    @staticmethod
    def select_scenes_for_regeneration(
        scores: Iterable[SceneQualityScore], max_scenes: int = 3
    ) -> List[SceneQualityScore]:
        return scoring.select_scenes_for_regeneration(scores, max_scenes)

    def run(self, project: Project, failed_scenes: Sequence[SceneQualityScore]) -> List[RegenerationResult]:
        """
        Synchronous entry point for one batch.
        """
        return asyncio.run(self.regenerate_failed_scenes(project, failed_scenes))

    async def regenerate_failed_scenes(
        self,
        project: Project,
        failed_scenes: Sequence[SceneQualityScore],
        cancel_event: Optional[asyncio.Event] = None,
    ) -> List[RegenerationResult]:
        """
        Regenerates failing scenes one after another.

        The project budget (if configured) is owned by this call and spent
        by every real generation attempt. Cancellation is honored between
        scenes only.
        """
        budget = self.config.project_attempt_budget
        logger.info(
            f"🚀 Regenerating {len(failed_scenes)} scene(s) of project {project.id}"
            + (f" (budget {budget})" if budget is not None else "")
        )

        results: List[RegenerationResult] = []
        for failed in failed_scenes:
            if cancel_event is not None and cancel_event.is_set():
                logger.warning(f"🛑 Batch for project {project.id} cancelled after {len(results)} scene(s)")
                break

            scene = project.find_scene(failed.scene_id, failed.scene_index)
            if scene is None:
                logger.warning(f"⚠️ Scene {failed.scene_id} (#{failed.scene_index + 1}) not in project {project.id}. Skipping.")
                continue

            result = await self.regenerate_scene(
                scene, project, failed.issues, failed.scene_index, budget_remaining=budget
            )
            results.append(result)

            if budget is not None and not result.used_stock_footage:
                budget -= 1

        succeeded = sum(1 for r in results if r.success)
        logger.info(f"🏁 Batch complete | Regenerated: {succeeded}/{len(results)}")
        return results

    async def regenerate_scene(
        self,
        scene: Scene,
        project: Project,
        issues: Iterable[QualityIssue] = (),
        scene_index: int = 0,
        budget_remaining: Optional[int] = None,
    ) -> RegenerationResult:
        """Runs one strategy -> generate -> record cycle for a scene. Never raises on provider errors."""
        lock = self._scene_locks.setdefault(scene.id, asyncio.Lock())
        self._lock_users[scene.id] = self._lock_users.get(scene.id, 0) + 1
        try:
            async with lock:
                return await self._regenerate(scene, project, tuple(issues), scene_index, budget_remaining)
        finally:
            self._release_scene_lock(scene.id)

    # =========================
    # INTERNALS
    # =========================

    def _release_scene_lock(self, scene_id: str):
        remaining = self._lock_users[scene_id] - 1
        if remaining:
            self._lock_users[scene_id] = remaining
            return
        # Last holder or waiter gone
        del self._lock_users[scene_id]
        del self._scene_locks[scene_id]

    async def _regenerate(
        self,
        scene: Scene,
        project: Project,
        issues: tuple,
        scene_index: int,
        budget_remaining: Optional[int],
    ) -> RegenerationResult:
        prior = self.ledger.get_attempts(scene.id, self.config.history_limit)
        # Newest first; numbering continues past the history window
        attempt_number = (prior[0].attempt_number if prior else 0) + 1
        original_prompt = scene.base_prompt()
        current_prompt = prior[0].prompt if prior else original_prompt

        logger.info(f"🔁 Scene {scene_index + 1} ({scene.id}) attempt #{attempt_number}")

        complexity = self.complexity_analyzer.analyze(scene.visual_direction or original_prompt)
        context = StrategyContext(
            scene_id=scene.id,
            prior_attempts=tuple(prior),
            complexity=complexity,
            current_prompt=current_prompt,
            original_prompt=original_prompt,
            current_media_url=scene.media_url,
            issues=issues,
            budget_remaining=budget_remaining,
        )
        strategy = self.strategy_engine.determine_strategy(context)

        if strategy.approach is StrategyApproach.STOCK_FOOTAGE:
            return self._recommend_stock_footage(scene, project, scene_index, attempt_number, strategy, context)

        changes = strategy.changes
        provider = changes.provider or self.config.default_provider
        profile = get_provider_profile(provider)

        synthesized = self.synthesizer.synthesize(
            changes.prompt or original_prompt,
            context.latest_issues,
            strategy.approach,
            changes.prompt_additions,
        )
        request = GenerationRequest(
            prompt=synthesized.prompt,
            negative_prompt=synthesized.negative_prompt if profile.supports_negative_prompt else "",
            duration=min(scene.duration, profile.max_duration),
            aspect_ratio=project.aspect_ratio or self.config.default_aspect_ratio,
            provider=provider,
            image_url=changes.reference_url if changes.use_reference else None,
        )

        try:
            generation = await self.generator.generate(request)
        except Exception as e:
            logger.error(f"❌ Generation failed for scene {scene.id} on {provider}: {e}")
            generation = GenerationResult(success=False, error=str(e), provider=provider)

        new_analysis = None
        new_instructions = None
        quality = None
        recorded_issues = context.latest_issues

        if generation.success and generation.media_url:
            new_analysis, new_instructions = await self._refresh_instructions(scene, generation.media_url)
            quality = await self._evaluate_new_media(scene, generation.media_url, scene_index, request.duration)
            if quality is None:
                result = AttemptResult.SUCCESS
            else:
                result = AttemptResult.SUCCESS if quality.passes_threshold else AttemptResult.PARTIAL
                recorded_issues = quality.issues
        elif generation.media_url:
            result = AttemptResult.PARTIAL
        else:
            result = AttemptResult.FAILURE

        self.ledger.record_attempt(
            scene.id,
            project.id,
            attempt_number,
            provider=provider,
            strategy=strategy.approach.value,
            prompt=request.prompt,
            result=result,
            quality_score=quality.overall_score if quality else None,
            issues=recorded_issues,
            reasoning=strategy.reasoning,
            confidence_score=strategy.confidence_score,
        )
        logger.info(f"💡 {next_suggestion(strategy)}")

        return RegenerationResult(
            success=generation.success,
            scene_id=scene.id,
            scene_index=scene_index,
            attempt=attempt_number,
            strategy=strategy,
            new_media_url=generation.media_url,
            new_analysis=new_analysis,
            new_instructions=new_instructions,
            quality_score=quality,
            error=generation.error,
        )

    def _recommend_stock_footage(
        self,
        scene: Scene,
        project: Project,
        scene_index: int,
        attempt_number: int,
        strategy: RegenerationStrategy,
        context: StrategyContext,
    ) -> RegenerationResult:
        self.ledger.record_attempt(
            scene.id,
            project.id,
            attempt_number,
            provider=STOCK_PROVIDER,
            strategy=strategy.approach.value,
            prompt=context.current_prompt,
            result=AttemptResult.RECOMMENDATION,
            issues=context.latest_issues,
            reasoning=strategy.reasoning,
            confidence_score=strategy.confidence_score,
        )
        logger.warning(f"📼 Scene {scene.id}: stock footage recommended. {strategy.reasoning}")
        return RegenerationResult(
            success=False,
            scene_id=scene.id,
            scene_index=scene_index,
            attempt=attempt_number,
            strategy=strategy,
            error=strategy.warning or STOCK_ERROR,
            used_stock_footage=True,
        )

    async def _refresh_instructions(self, scene: Scene, media_url: str):
        if self.reanalyzer is None:
            return None, None

        try:
            analysis = await self.reanalyzer.analyze(media_url, SceneContext.from_scene(scene))
        except Exception as e:
            logger.error(f"⚠️ Re-analysis failed for scene {scene.id}: {e}")
            return None, None

        instructions = None
        if self.composition_planner is not None:
            try:
                instructions = await self.composition_planner.plan(scene, analysis)
            except Exception as e:
                logger.error(f"⚠️ Composition planning failed for scene {scene.id}: {e}")
        return analysis, instructions

    async def _evaluate_new_media(
        self, scene: Scene, media_url: str, scene_index: int, duration: float
    ) -> Optional[SceneQualityScore]:
        if self.frame_extractor is None or not self.config.evaluate_after_generation:
            return None

        try:
            frame = await self.frame_extractor.extract_frame(media_url, duration / 2)
        except Exception as e:
            logger.error(f"⚠️ Frame extraction failed for {media_url}: {e}")
            frame = None
        return await self.scorer.evaluate(scene, frame, scene_index)
