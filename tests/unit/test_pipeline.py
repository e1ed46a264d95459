"""
Unit tests for the Pipeline orchestrator.

Covers the happy path, fatal versus degradable stage failures, the
content fallback chain, the quality loop as driven by the pipeline,
optimization acceptance and status tracking.
"""

import asyncio
from typing import Any, Dict

import pytest

from siteforge.config import PipelineSettings
from siteforge.pipeline import (
    ExtractionTimeoutError,
    Pipeline,
    PipelineError,
    PipelineOptions,
    PipelineStage,
)
from siteforge.protocols import ErrorSeverity, ValidationReport
from siteforge.storage import CheckpointStore, job_id_for
from siteforge.tracking import EventStatusTracker, NullStatusTracker
from tests.helpers import (
    SITE_DATA,
    FakeAssessor,
    FakeExtractor,
    FakeGenerator,
    FakeImageSelector,
    FakeOptimizer,
    FakeStore,
    FakeTemplates,
    FakeValidator,
    HTTPStatusError,
    metric_increases,
)

URL = "https://acme.test"


@pytest.fixture
def make_pipeline(collaborators, scrape_cache, checkpoints, breakers, fast_policies):
    def _make(**kwargs: Any) -> Pipeline:
        return Pipeline(
            collaborators,
            scrape_cache=scrape_cache,
            checkpoints=checkpoints,
            breakers=breakers,
            retry_policies=fast_policies,
            **kwargs,
        )

    return _make


class ExplodingTracker(NullStatusTracker):
    def _boom(self, *args: Any, **kwargs: Any) -> None:
        raise RuntimeError("tracker down")

    queued = scraping = scrape_fallback = analyzing = generating = _boom
    building = deploying = complete = error = _boom


@pytest.mark.unit
class TestPipelineError:
    def test_error_info_uses_cause(self):
        cause = HTTPStatusError(503)
        try:
            try:
                raise cause
            except HTTPStatusError as e:
                raise PipelineError("Failed to scrape site: HTTP 503", stage="scrape", url=URL) from e
        except PipelineError as error:
            info = error.to_error_info()

        assert info.error_type == "HTTPStatusError"
        assert info.error_message == "Failed to scrape site: HTTP 503"
        assert info.severity is ErrorSeverity.HIGH
        assert info.context == {"stage": "scrape", "url": URL, "industry": None}
        assert info.is_retryable is True

    def test_error_info_without_cause(self):
        info = PipelineError("boom", stage="save", url=URL, industry="legal").to_error_info()
        assert info.error_type == "PipelineError"
        assert info.is_retryable is False
        assert info.context["industry"] == "legal"

    def test_stage_tags(self):
        assert [s.value for s in PipelineStage] == [
            "scrape", "hero", "build", "ai", "quality", "optimize", "generate", "validate", "save",
        ]


@pytest.mark.unit
class TestPipelineHappyPath:
    @pytest.mark.asyncio
    async def test_run_produces_stored_preview(self, make_pipeline, collaborators):
        result = await make_pipeline().run(URL)

        assert result.status == "complete"
        assert result.preview_id == "preview-1"
        assert result.preview == f"/preview/{result.slug}"
        assert result.slug.startswith("acme-plumbing-")
        assert result.industry == "plumbing"
        assert result.html == "<html><h1>Fast, Friendly Plumbing</h1></html>"
        assert result.slots["cta_text"] == "Book Today"
        assert result.slots["phone"] == "555-0100"
        assert result.validation.quality_score == 88
        assert result.quality["passed"] is True
        assert result.optimization is None
        assert result.resumed_stages == []
        assert result.duration >= 0

    @pytest.mark.asyncio
    async def test_persisted_record_and_deployment_summary(self, make_pipeline, collaborators):
        result = await make_pipeline().run(URL)

        record = collaborators.store.previews[0]
        assert record["slug"] == result.slug
        assert record["original_url"] == URL
        assert record["business_name"] == "Acme Plumbing"
        assert record["status"] == "complete"
        assert record["validation"]["is_valid"] is True
        assert record["expires_at"] == result.expires_at
        assert record["html"] == result.html

        summary = collaborators.store.deployments[0]
        assert summary["site_id"] == "preview-1"
        assert summary["site_name"] == result.slug
        assert summary["preview"] == result.preview
        assert summary["city"] == "Springfield"
        assert summary["phone"] == "555-0100"

    @pytest.mark.asyncio
    async def test_hero_image_is_prepended(self, make_pipeline):
        result = await make_pipeline().run(URL)

        assert result.site_data["images"][0] == {
            "src": "https://img.test/hero.jpg",
            "alt": "Hero",
            "source": "stock",
        }
        assert result.site_data["industry"] == "plumbing"

    @pytest.mark.asyncio
    async def test_status_transitions(self, make_pipeline):
        tracker = EventStatusTracker("job")
        await make_pipeline(tracker=tracker).run(URL)

        assert [entry["status"] for entry in tracker.history] == [
            "queued",
            "scraping",
            "analyzing",
            "building",
            "generating",
            "generating",
            "building",
            "building",
            "deploying",
            "complete",
        ]
        assert tracker.history[1]["url"] == URL
        assert tracker.history[-1]["preview_id"] == "preview-1"
        assert tracker.history[-1]["result_status"] == "complete"

    @pytest.mark.asyncio
    async def test_complete_reaches_listeners(self, make_pipeline):
        tracker = EventStatusTracker("job")
        finished = []
        tracker.on("complete", finished.append)

        result = await make_pipeline(tracker=tracker).run(URL)

        assert len(finished) == 1
        assert finished[0]["preview"] == result.preview
        assert tracker.current_status == "complete"

    @pytest.mark.asyncio
    async def test_second_job_uses_scrape_cache(self, make_pipeline, collaborators):
        pipeline = make_pipeline()
        await pipeline.run(URL)
        second = await pipeline.run(URL)

        assert collaborators.extractor.calls == 1
        assert len(second.site_data["images"]) == 1

    @pytest.mark.asyncio
    async def test_performance_stats(self, make_pipeline):
        pipeline = make_pipeline()
        await pipeline.run(URL)

        stats = pipeline.get_performance_stats()

        assert set(stats) == {"scrape", "hero", "build", "ai", "quality", "generate", "validate", "save"}
        assert stats["scrape"]["count"] == 1
        assert stats["scrape"]["min_duration"] <= stats["scrape"]["max_duration"]

    @pytest.mark.asyncio
    async def test_successful_run_is_counted(self, make_pipeline):
        with metric_increases("siteforge_pipeline_runs_total", {"status": "complete"}):
            await make_pipeline().run(URL)


@pytest.mark.unit
class TestFatalStages:
    @pytest.mark.asyncio
    async def test_extraction_timeout(self, make_pipeline, collaborators):
        class SlowExtractor:
            calls = 0

            async def extract(self, url: str) -> Dict[str, Any]:
                SlowExtractor.calls += 1
                await asyncio.sleep(10)
                return {}

        collaborators.extractor = SlowExtractor()
        pipeline = make_pipeline(settings=PipelineSettings(extraction_timeout=0.05))

        with pytest.raises(PipelineError) as exc_info:
            await pipeline.run(URL)

        assert exc_info.value.stage == "scrape"
        assert str(exc_info.value) == "Failed to scrape site: Scraping timed out after 0.05s"
        assert isinstance(exc_info.value.__cause__, ExtractionTimeoutError)
        # Timeouts are retryable
        assert SlowExtractor.calls == 3

    @pytest.mark.asyncio
    async def test_non_mapping_extraction_is_fatal(self, make_pipeline, collaborators):
        collaborators.extractor = FakeExtractor("<html>not a mapping</html>")

        with pytest.raises(PipelineError) as exc_info:
            await make_pipeline().run(URL)

        assert exc_info.value.stage == "scrape"
        assert collaborators.extractor.calls == 1

    @pytest.mark.asyncio
    async def test_structure_failure(self, make_pipeline, collaborators):
        collaborators.templates = FakeTemplates(build_error=ValueError("no template"))
        tracker = EventStatusTracker("job")

        with pytest.raises(PipelineError) as exc_info:
            await make_pipeline(tracker=tracker).run(URL)

        assert exc_info.value.stage == "build"
        assert exc_info.value.industry == "plumbing"
        assert str(exc_info.value) == "Failed to build template: no template"
        assert tracker.current_status == "error"
        assert tracker.history[-1]["stage"] == "build"

    @pytest.mark.asyncio
    async def test_render_failure(self, make_pipeline, collaborators):
        collaborators.templates = FakeTemplates(render_error=RuntimeError("jinja exploded"))

        with pytest.raises(PipelineError) as exc_info:
            await make_pipeline().run(URL)

        assert exc_info.value.stage == "generate"
        assert collaborators.store.previews == []

    @pytest.mark.asyncio
    async def test_persistence_failure(self, make_pipeline, collaborators):
        collaborators.store = FakeStore(create_error=RuntimeError("db down"))

        with metric_increases("siteforge_pipeline_runs_total", {"status": "failed"}):
            with pytest.raises(PipelineError) as exc_info:
                await make_pipeline().run(URL)

        assert exc_info.value.stage == "save"

    @pytest.mark.asyncio
    async def test_persistence_without_record_id(self, make_pipeline, collaborators):
        class NoIdStore(FakeStore):
            async def create_preview(self, record):
                return {"slug": record["slug"]}

        collaborators.store = NoIdStore()

        with pytest.raises(PipelineError) as exc_info:
            await make_pipeline().run(URL)

        assert exc_info.value.stage == "save"


@pytest.mark.unit
class TestDegradableStages:
    @pytest.mark.asyncio
    async def test_image_failure_continues_without_hero(self, make_pipeline, collaborators):
        collaborators.image_selector = FakeImageSelector(ValueError("no images"))

        result = await make_pipeline().run(URL)

        assert result.status == "complete"
        assert "images" not in result.site_data
        assert result.industry == "plumbing"

    @pytest.mark.asyncio
    async def test_no_hero_available(self, make_pipeline, collaborators):
        collaborators.image_selector = FakeImageSelector(None)

        result = await make_pipeline().run(URL)

        assert "images" not in result.site_data

    @pytest.mark.asyncio
    async def test_generator_failure_falls_back_to_legacy_polish(self, make_pipeline, collaborators):
        collaborators.generator = FakeGenerator(HTTPStatusError(400, "bad request"))

        result = await make_pipeline().run(URL)

        assert result.status == "complete"
        assert result.slots["headline"] == "Polished headline"
        assert result.slots["phone"] == "555-0100"
        assert collaborators.generator.calls == 1

    @pytest.mark.asyncio
    async def test_both_content_paths_failing_uses_structural_slots(self, make_pipeline, collaborators):
        collaborators.generator = FakeGenerator(HTTPStatusError(400))
        collaborators.polisher = None

        result = await make_pipeline().run(URL)

        assert result.slots["headline"] == "Acme Plumbing"
        assert result.html == "<html><h1>Acme Plumbing</h1></html>"

    @pytest.mark.asyncio
    async def test_skip_polish_skips_generation(self, make_pipeline, collaborators):
        result = await make_pipeline().run(URL, PipelineOptions(skip_polish=True))

        assert collaborators.generator.requests == []
        assert result.slots["headline"] == "Acme Plumbing"
        assert result.quality["attempts"] == 1

    @pytest.mark.asyncio
    async def test_ai_disabled_by_settings(self, make_pipeline, collaborators):
        await make_pipeline(settings=PipelineSettings(ai_enabled=False)).run(URL)
        assert collaborators.generator.requests == []

    @pytest.mark.asyncio
    async def test_validator_exception_flags_for_review(self, make_pipeline, collaborators):
        collaborators.validator = FakeValidator(RuntimeError("validator crashed"))

        result = await make_pipeline().run(URL)

        assert result.status == "review_needed"
        assert result.validation.is_valid is False
        assert result.validation.issues == ["Validator error: validator crashed"]
        assert collaborators.store.previews[0]["status"] == "review_needed"

    @pytest.mark.asyncio
    async def test_missing_validator_counts_as_valid(self, make_pipeline, collaborators):
        collaborators.validator = None

        result = await make_pipeline().run(URL)

        assert result.status == "complete"

    @pytest.mark.asyncio
    async def test_validator_mapping_result(self, make_pipeline, collaborators):
        collaborators.validator = FakeValidator({"isValid": False, "issues": ["Missing phone"], "qualityScore": 40})

        result = await make_pipeline().run(URL)

        assert result.status == "review_needed"
        assert result.validation == ValidationReport(is_valid=False, issues=["Missing phone"], quality_score=40)

    @pytest.mark.asyncio
    async def test_deployment_summary_failure_is_not_fatal(self, make_pipeline, collaborators):
        collaborators.store = FakeStore(deployment_error=RuntimeError("legacy table gone"))

        result = await make_pipeline().run(URL)

        assert result.preview_id == "preview-1"

    @pytest.mark.asyncio
    async def test_tracker_failures_are_ignored(self, make_pipeline):
        result = await make_pipeline(tracker=ExplodingTracker()).run(URL)
        assert result.status == "complete"


@pytest.mark.unit
class TestQualityAndOptimization:
    @pytest.mark.asyncio
    async def test_low_quality_content_is_regenerated_with_feedback(self, make_pipeline, collaborators):
        collaborators.generator = FakeGenerator({"headline": "Weak"}, {"headline": "Improved"})
        collaborators.assessor = FakeAssessor(scores={"Weak": 50, "Improved": 90})
        tracker = EventStatusTracker("job")

        result = await make_pipeline(tracker=tracker).run(URL)

        assert collaborators.generator.requests == [
            {"industry": "plumbing", "retry_budget": 2, "feedback": None},
            {"industry": "plumbing", "retry_budget": 0, "feedback": "Generic copy"},
        ]
        assert result.html == "<html><h1>Improved</h1></html>"
        assert result.quality["regenerations"] == 1
        assert result.quality["final_score"] == 90
        labels = [entry.get("label") for entry in tracker.history]
        assert "Improving content (attempt 2)..." in labels

    @pytest.mark.asyncio
    async def test_quality_below_threshold_still_publishes(self, make_pipeline, collaborators):
        collaborators.assessor = FakeAssessor(default=30)

        result = await make_pipeline().run(URL)

        assert result.quality["passed"] is False
        assert result.quality["regenerations"] == 2
        assert result.preview_id == "preview-1"

    @pytest.mark.asyncio
    async def test_optimization_accepted_when_score_improves(self, make_pipeline, collaborators):
        collaborators.optimizer = FakeOptimizer({"headline": "Optimized headline", "phone": "000-0000"})
        collaborators.assessor = FakeAssessor(scores={"Fast, Friendly Plumbing": 80, "Optimized headline": 88})

        result = await make_pipeline().run(URL)

        assert result.optimization == {"accepted": True, "before": 80, "after": 88}
        assert result.slots["headline"] == "Optimized headline"
        assert result.slots["phone"] == "555-0100"

    @pytest.mark.asyncio
    async def test_optimization_rejected_when_score_drops(self, make_pipeline, collaborators):
        collaborators.optimizer = FakeOptimizer({"headline": "Optimized headline"})
        collaborators.assessor = FakeAssessor(scores={"Fast, Friendly Plumbing": 80, "Optimized headline": 70})

        result = await make_pipeline().run(URL)

        assert result.optimization["accepted"] is False
        assert result.slots["headline"] == "Fast, Friendly Plumbing"

    @pytest.mark.asyncio
    async def test_optimizer_failure_keeps_content(self, make_pipeline, collaborators):
        collaborators.optimizer = FakeOptimizer(HTTPStatusError(400))

        result = await make_pipeline().run(URL)

        assert result.optimization is None
        assert result.slots["headline"] == "Fast, Friendly Plumbing"

    @pytest.mark.asyncio
    async def test_skip_optimize(self, make_pipeline, collaborators):
        collaborators.optimizer = FakeOptimizer()

        await make_pipeline().run(URL, PipelineOptions(skip_optimize=True))

        assert collaborators.optimizer.calls == 0

    @pytest.mark.asyncio
    async def test_optimization_needs_generated_content(self, make_pipeline, collaborators):
        collaborators.optimizer = FakeOptimizer()
        collaborators.generator = FakeGenerator(HTTPStatusError(400))

        await make_pipeline().run(URL)

        assert collaborators.optimizer.calls == 0


class Opaque:
    """A value with no JSON representation."""


@pytest.mark.unit
class TestCheckpointing:
    @pytest.fixture
    def disabled_pipeline(self, collaborators, scrape_cache, breakers, fast_policies, tmp_path, clock):
        return Pipeline(
            collaborators,
            scrape_cache=scrape_cache,
            checkpoints=CheckpointStore(tmp_path / "disabled", enabled=False, clock=clock),
            breakers=breakers,
            retry_policies=fast_policies,
        )

    @pytest.mark.asyncio
    async def test_unserializable_stage_output_does_not_fail_the_run(self, make_pipeline, collaborators, checkpoints):
        collaborators.extractor = FakeExtractor({**SITE_DATA, "raw": Opaque()})

        with metric_increases("siteforge_checkpoint_write_failures_total"):
            result = await make_pipeline().run(URL)

        assert result.status == "complete"
        assert isinstance(result.site_data["raw"], Opaque)
        assert await checkpoints.load_checkpoint(job_id_for(URL), "scrape") is None

    @pytest.mark.asyncio
    async def test_disabled_checkpoints_happy_path(self, disabled_pipeline, tmp_path):
        result = await disabled_pipeline.run(URL)

        assert result.status == "complete"
        assert result.resumed_stages == []
        assert result.slots["phone"] == "555-0100"
        assert not (tmp_path / "disabled").exists()

    @pytest.mark.asyncio
    async def test_disabled_checkpoints_rerun_after_failure_starts_over(self, disabled_pipeline, collaborators):
        collaborators.templates.render_error = RuntimeError("template engine crashed")
        with pytest.raises(PipelineError) as exc_info:
            await disabled_pipeline.run(URL)
        assert exc_info.value.stage == "generate"

        collaborators.templates.render_error = None
        result = await disabled_pipeline.run(URL)

        assert result.status == "complete"
        assert result.resumed_stages == []
        # Scrape data comes from the cache, everything after it runs again.
        assert collaborators.extractor.calls == 1
        assert collaborators.templates.build_calls == 2
        assert collaborators.generator.calls == 2
        assert len(result.site_data["images"]) == 1
