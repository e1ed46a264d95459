"""
Pipeline orchestration for SiteForge.

One job turns a source URL into a stored preview by running an ordered
list of stages. Each stage is described by a :class:`StageSpec`; a single
loop restores checkpointed stages, runs the rest, and decides whether a
failure is fatal (wrapped in :class:`PipelineError` with the stage tag) or
degradable (logged, the job continues with fallback content).
"""

from __future__ import annotations

import asyncio
import copy
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

import structlog

from siteforge.config import PipelineSettings
from siteforge.observability import histogram, increment
from siteforge.protocols import (
    Collaborators,
    ErrorInfo,
    ErrorSeverity,
    GeneratedContent,
    JobStatus,
    SiteData,
    Slots,
    StructureResult,
    ValidationReport,
)
from siteforge.quality import (
    OptimizationDecision,
    QualityGate,
    QualityGateResult,
    merge_generated_content,
    protect_contact_fields,
)
from siteforge.recovery import CircuitBreakerRegistry, RetryPolicy, is_retryable_error
from siteforge.storage import CheckpointStore, ScrapeCache, job_id_for
from siteforge.tracking import NullStatusTracker, StatusTracker
from siteforge.utils import city_for, generate_preview_slug

logger = structlog.get_logger(__name__)

EXTRACTION = "extraction"
AI = "ai"
IMAGE = "image"


class PipelineStage(Enum):
    """Pipeline stages; values are the tags used for checkpoints and errors."""

    EXTRACT = "scrape"
    ENRICH = "hero"
    STRUCTURE = "build"
    CONTENT = "ai"
    QUALITY = "quality"
    OPTIMIZE = "optimize"
    RENDER = "generate"
    VALIDATE = "validate"
    PERSIST = "save"


class PipelineError(Exception):
    """A stage-fatal failure. The original exception is chained as ``__cause__``."""

    def __init__(self, message: str, stage: str, url: str, industry: Optional[str] = None) -> None:
        super().__init__(message)
        self.stage = stage
        self.url = url
        self.industry = industry

    def to_error_info(self) -> ErrorInfo:
        cause = self.__cause__
        return ErrorInfo(
            error_type=type(cause).__name__ if cause else type(self).__name__,
            error_message=str(self),
            severity=ErrorSeverity.HIGH,
            context={"stage": self.stage, "url": self.url, "industry": self.industry},
            is_retryable=is_retryable_error(cause) if cause else False,
        )


class ExtractionTimeoutError(TimeoutError):
    def __init__(self, url: str, timeout: float) -> None:
        super().__init__(f"Scraping timed out after {timeout:g}s")
        self.url = url
        self.timeout = timeout


@dataclass
class PipelineOptions:
    skip_polish: bool = False
    skip_optimize: bool = False


@dataclass
class JobContext:
    """Mutable state of one job as it moves through the stages."""

    url: str
    job_id: str
    options: PipelineOptions
    generation_enabled: bool = False
    site_data: SiteData = field(default_factory=dict)
    industry: Optional[str] = None
    slots: Slots = field(default_factory=dict)
    polished_slots: Slots = field(default_factory=dict)
    ai_content: Optional[GeneratedContent] = None
    quality: Optional[QualityGateResult] = None
    optimization: Optional[OptimizationDecision] = None
    html: Optional[str] = None
    validation: Optional[ValidationReport] = None
    preview: Dict[str, Any] = field(default_factory=dict)
    slug: Optional[str] = None
    expires_at: Optional[datetime] = None
    resumed_stages: List[str] = field(default_factory=list)


# Returns the payload to checkpoint, or None.
StageExecutor = Callable[[JobContext], Awaitable[Optional[Any]]]
StageRestorer = Callable[[JobContext, Any], None]


@dataclass
class StageSpec:
    stage: PipelineStage
    execute: StageExecutor
    restore: Optional[StageRestorer] = None
    fatal: bool = True
    failure_message: str = ""
    enabled: Callable[[JobContext], bool] = lambda ctx: True
    status: Optional[str] = None
    status_details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PipelineResult:
    original_url: str
    html: str
    site_data: SiteData
    industry: Optional[str]
    slots: Slots
    duration: float
    preview: str
    slug: str
    preview_id: Any
    expires_at: str
    validation: ValidationReport
    status: str
    job_id: str
    quality: Optional[Dict[str, Any]] = None
    optimization: Optional[Dict[str, Any]] = None
    resumed_stages: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class Pipeline:
    """
    Runs jobs through extract, enrich, structure, content, quality,
    optimize, render, validate and persist.

    Shared state (scrape cache, checkpoint store, circuit breakers) is
    injected so several pipelines can share or isolate it.
    """

    def __init__(
        self,
        collaborators: Collaborators,
        *,
        scrape_cache: ScrapeCache,
        checkpoints: CheckpointStore,
        breakers: Optional[CircuitBreakerRegistry] = None,
        retry_policies: Optional[Mapping[str, RetryPolicy]] = None,
        quality_gate: Optional[QualityGate] = None,
        settings: Optional[PipelineSettings] = None,
        tracker: Optional[StatusTracker] = None,
    ) -> None:
        self.collaborators = collaborators
        self.scrape_cache = scrape_cache
        self.checkpoints = checkpoints
        self.breakers = breakers or CircuitBreakerRegistry()
        self.retry_policies: Dict[str, RetryPolicy] = dict(retry_policies or {})
        self.settings = settings or PipelineSettings()
        self.tracker: StatusTracker = tracker or NullStatusTracker()
        if quality_gate is None and collaborators.assessor is not None:
            quality_gate = QualityGate(collaborators.assessor)
        self.quality_gate = quality_gate
        self.stage_timings: Dict[str, List[float]] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run(self, url: str, options: Optional[PipelineOptions] = None) -> PipelineResult:
        """
        Rebuild the site at ``url``.

        Raises:
            PipelineError: when extraction, structure generation, final
                render or persistence fails. Checkpoints of completed stages
                are kept so a retry of the same URL resumes after them.
        """
        options = options or PipelineOptions()
        ctx = JobContext(
            url=url,
            job_id=job_id_for(url),
            options=options,
            generation_enabled=(
                self.settings.ai_enabled and self.collaborators.generator is not None and not options.skip_polish
            ),
        )
        started = time.monotonic()

        with structlog.contextvars.bound_contextvars(job_id=ctx.job_id, url=url):
            logger.info("Pipeline started")
            self._notify("queued", url=url, job_id=ctx.job_id)

            try:
                for spec in self._stages():
                    await self._run_stage(spec, ctx)
            except PipelineError as e:
                increment("pipeline_runs", labels={"status": "failed"})
                logger.error("Pipeline failed", stage=e.stage, error=str(e))
                raise

            await self.checkpoints.clear_checkpoint(ctx.job_id)

            result = self._build_result(ctx, time.monotonic() - started)
            await self._save_legacy_deployment(ctx, result)

            increment("pipeline_runs", labels={"status": result.status})
            logger.info(
                "Pipeline complete",
                duration=round(result.duration, 1),
                status=result.status,
                preview=result.preview,
                resumed=ctx.resumed_stages,
            )
            self._notify(
                "complete", preview=result.preview, result_status=result.status, preview_id=result.preview_id
            )
            return result

    def get_performance_stats(self) -> Dict[str, Any]:
        """Get performance statistics for all stages."""
        stats: Dict[str, Any] = {}
        for stage, timings in self.stage_timings.items():
            if timings:
                stats[stage] = {
                    "count": len(timings),
                    "avg_duration": sum(timings) / len(timings),
                    "min_duration": min(timings),
                    "max_duration": max(timings),
                    "total_duration": sum(timings),
                }
        return stats

    # ------------------------------------------------------------------
    # Stage loop
    # ------------------------------------------------------------------

    def _stages(self) -> List[StageSpec]:
        return [
            StageSpec(
                PipelineStage.EXTRACT,
                self._extract,
                restore=self._restore_extract,
                failure_message="Failed to scrape site",
                status="scraping",
            ),
            StageSpec(
                PipelineStage.ENRICH,
                self._enrich,
                restore=self._restore_enrich,
                fatal=False,
                failure_message="Image enhancement failed",
                status="analyzing",
                status_details={"label": "Selecting images..."},
            ),
            StageSpec(
                PipelineStage.STRUCTURE,
                self._structure,
                restore=self._restore_structure,
                failure_message="Failed to build template",
                status="building",
                status_details={"label": "Building template..."},
            ),
            StageSpec(
                PipelineStage.CONTENT,
                self._generate_content,
                restore=self._restore_content,
                fatal=False,
                failure_message="AI content generation failed",
                enabled=lambda ctx: ctx.generation_enabled,
                status="generating",
                status_details={"label": "Creating professional content..."},
            ),
            StageSpec(
                PipelineStage.QUALITY,
                self._quality_gate,
                fatal=False,
                failure_message="Quality gate failed",
                enabled=lambda ctx: self.quality_gate is not None,
                status="generating",
                status_details={"label": "Validating quality..."},
            ),
            StageSpec(
                PipelineStage.OPTIMIZE,
                self._optimize,
                fatal=False,
                failure_message="Optimization failed, using unmodified content",
                enabled=self._should_optimize,
                status="generating",
                status_details={"label": "Optimizing for conversions..."},
            ),
            StageSpec(
                PipelineStage.RENDER,
                self._render,
                failure_message="Failed to generate HTML",
                status="building",
                status_details={"label": "Generating final HTML...", "progress": 75},
            ),
            StageSpec(
                PipelineStage.VALIDATE,
                self._validate,
                fatal=False,
                failure_message="Structural validation failed",
                status="building",
                status_details={"label": "Checking quality...", "progress": 85},
            ),
            StageSpec(
                PipelineStage.PERSIST,
                self._persist,
                failure_message="Failed to save preview",
                status="deploying",
                status_details={"label": "Saving preview..."},
            ),
        ]

    async def _run_stage(self, spec: StageSpec, ctx: JobContext) -> None:
        stage = spec.stage.value
        if not spec.enabled(ctx):
            logger.info("Stage skipped", stage=stage)
            return

        if spec.status:
            details = {"url": ctx.url} if spec.stage is PipelineStage.EXTRACT else spec.status_details
            self._notify(spec.status, **details)

        if spec.restore is not None and await self._try_restore(spec, ctx):
            return

        stage_start = time.monotonic()
        try:
            payload = await spec.execute(ctx)
        except Exception as e:
            if not spec.fatal:
                logger.warning(f"{spec.failure_message}, continuing", stage=stage, error=str(e))
                return
            self._notify("error", e, stage)
            raise PipelineError(
                f"{spec.failure_message}: {e}", stage=stage, url=ctx.url, industry=ctx.industry
            ) from e
        finally:
            self._record_stage_timing(stage, time.monotonic() - stage_start)

        if spec.restore is not None and payload is not None:
            await self.checkpoints.save_checkpoint(ctx.job_id, stage, payload)

    async def _try_restore(self, spec: StageSpec, ctx: JobContext) -> bool:
        stage = spec.stage.value
        payload = await self.checkpoints.load_checkpoint(ctx.job_id, stage)
        if payload is None:
            return False
        try:
            assert spec.restore is not None
            spec.restore(ctx, payload)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning("Checkpoint payload unusable, re-running stage", stage=stage, error=str(e))
            return False
        ctx.resumed_stages.append(stage)
        increment("stage_resumed", labels={"stage": stage})
        logger.info("Resuming from checkpoint", stage=stage)
        return True

    def _record_stage_timing(self, stage: str, duration: float) -> None:
        """Record timing for a pipeline stage."""
        if stage not in self.stage_timings:
            self.stage_timings[stage] = []
        self.stage_timings[stage].append(duration)
        histogram("stage_duration", duration, labels={"stage": stage})

    def _notify(self, hook: str, *args: Any, **kwargs: Any) -> None:
        callback = getattr(self.tracker, hook, None)
        if callback is None:
            return
        try:
            callback(*args, **kwargs)
        except Exception as e:
            logger.warning("Status tracker hook failed", hook=hook, error=str(e))

    def _policy(self, dependency: str) -> RetryPolicy:
        if dependency not in self.retry_policies:
            self.retry_policies[dependency] = RetryPolicy()
        return self.retry_policies[dependency]

    async def _guarded(
        self,
        dependency: str,
        operation: Callable[[], Awaitable[Any]],
        *,
        context: str,
        on_retry: Optional[Callable[[BaseException, int, float], Any]] = None,
    ) -> Any:
        """Call a dependency through its retry policy and circuit breaker."""
        breaker = self.breakers.get(dependency)

        def _log_retry(error: BaseException, attempt: int, delay: float) -> None:
            logger.warning(f"{context} retry {attempt}", error=str(error), delay=round(delay, 2))
            if on_retry is not None:
                on_retry(error, attempt, delay)

        return await self._policy(dependency).execute(
            lambda: breaker.execute(operation),
            context=context,
            on_retry=_log_retry,
        )

    # ------------------------------------------------------------------
    # Stage 1: extraction
    # ------------------------------------------------------------------

    async def _extract(self, ctx: JobContext) -> SiteData:
        cached = await self.scrape_cache.get(ctx.url)
        if cached is not None:
            logger.info("Using cached scrape data")
            ctx.site_data = cached
        else:
            site_data = await self._guarded(
                EXTRACTION,
                lambda: self._extract_with_deadline(ctx.url),
                context="scrape",
                on_retry=lambda error, attempt, delay: self._notify("scrape_fallback", attempt=attempt),
            )
            if not isinstance(site_data, Mapping):
                raise TypeError(f"Extraction returned {type(site_data).__name__}, expected a mapping")
            ctx.site_data = dict(site_data)
            await self.scrape_cache.set(ctx.url, ctx.site_data)

        logger.info(
            "Site data extracted",
            business=ctx.site_data.get("business_name") or "Unknown",
            phone=ctx.site_data.get("phone") or "Not found",
            email=ctx.site_data.get("email") or "Not found",
        )
        return ctx.site_data

    async def _extract_with_deadline(self, url: str) -> SiteData:
        # Cancels the awaiting coroutine on expiry. Blocking work the
        # extractor pushed to a thread keeps running until it returns.
        timeout = self.settings.extraction_timeout
        deadline = asyncio.timeout(timeout)
        try:
            async with deadline:
                return await self.collaborators.extractor.extract(url)
        except TimeoutError as e:
            if deadline.expired():
                raise ExtractionTimeoutError(url, timeout) from e
            raise

    def _restore_extract(self, ctx: JobContext, payload: Any) -> None:
        if not isinstance(payload, dict):
            raise TypeError("scrape checkpoint must be a mapping")
        ctx.site_data = payload

    # ------------------------------------------------------------------
    # Stage 2: enrichment
    # ------------------------------------------------------------------

    async def _enrich(self, ctx: JobContext) -> Dict[str, Any]:
        site = ctx.site_data
        hero_image: Optional[Dict[str, Any]] = None
        try:
            site["industry"] = self.collaborators.templates.detect_industry(site)
            ctx.industry = site["industry"]

            selector = self.collaborators.image_selector
            if selector is not None:
                hero = await self._guarded(IMAGE, lambda: selector.select_hero_image(site), context="hero_image")
                if hero:
                    hero_image = {"src": hero.get("url"), "alt": hero.get("alt"), "source": hero.get("source")}
                    site.setdefault("images", []).insert(0, hero_image)
                    if hero.get("attribution"):
                        site["hero_attribution"] = hero["attribution"]
                    logger.info("Hero image selected", source=hero.get("source"))
                else:
                    logger.debug("No hero image available, template will use gradient")
        except Exception as e:
            logger.warning("Image enhancement failed, continuing", error=str(e))

        return {
            "industry": site.get("industry"),
            "hero_image": hero_image,
            "hero_attribution": site.get("hero_attribution"),
        }

    def _restore_enrich(self, ctx: JobContext, payload: Any) -> None:
        site = ctx.site_data
        site["industry"] = payload["industry"]
        ctx.industry = payload["industry"]
        if payload.get("hero_image"):
            site.setdefault("images", []).insert(0, payload["hero_image"])
            if payload.get("hero_attribution"):
                site["hero_attribution"] = payload["hero_attribution"]

    # ------------------------------------------------------------------
    # Stage 3: structure
    # ------------------------------------------------------------------

    async def _structure(self, ctx: JobContext) -> Dict[str, Any]:
        result = StructureResult.from_value(await self.collaborators.templates.build(ctx.site_data))
        self._apply_structure(ctx, result.slots, result.industry)
        logger.info("Template built", industry=ctx.industry)
        return {"slots": ctx.slots, "industry": ctx.industry}

    def _restore_structure(self, ctx: JobContext, payload: Any) -> None:
        self._apply_structure(ctx, dict(payload["slots"]), payload["industry"])

    @staticmethod
    def _apply_structure(ctx: JobContext, slots: Slots, industry: str) -> None:
        ctx.slots = slots
        ctx.polished_slots = copy.deepcopy(slots)
        ctx.industry = industry
        ctx.site_data["industry"] = industry

    # ------------------------------------------------------------------
    # Stage 4: content generation
    # ------------------------------------------------------------------

    async def _call_generator(self, ctx: JobContext, *, retry_budget: int, feedback: Optional[str]) -> GeneratedContent:
        generator = self.collaborators.generator
        assert generator is not None
        generated = await self._guarded(
            AI,
            lambda: generator.generate_all_content(
                ctx.site_data, ctx.industry or "general", retry_budget=retry_budget, feedback=feedback
            ),
            context="ai_content" if feedback is None else "ai_content_retry",
        )
        if not isinstance(generated, Mapping):
            raise TypeError(f"Generator returned {type(generated).__name__}, expected a mapping")
        return dict(generated)

    async def _generate_content(self, ctx: JobContext) -> Dict[str, Any]:
        try:
            generated = await self._call_generator(
                ctx, retry_budget=self.settings.generator_retry_budget, feedback=None
            )
            ctx.ai_content = generated
            ctx.polished_slots = merge_generated_content(ctx.slots, generated, ctx.site_data)
            logger.info(
                "AI content generated",
                headline=str(generated.get("headline") or "")[:50],
                services=len(generated.get("services") or []),
            )
        except Exception as e:
            logger.warning("AI content generation failed, using scraped content", error=str(e))
            await self._legacy_polish(ctx)

        return {"polished_slots": ctx.polished_slots, "ai_content": ctx.ai_content}

    async def _legacy_polish(self, ctx: JobContext) -> None:
        polisher = self.collaborators.polisher
        if polisher is None:
            return
        try:
            polished = await polisher.polish_all(copy.deepcopy(ctx.slots), ctx.site_data)
            ctx.polished_slots = protect_contact_fields(dict(polished), ctx.site_data)
        except Exception as e:
            logger.warning("Legacy AI polish also failed", error=str(e))

    def _restore_content(self, ctx: JobContext, payload: Any) -> None:
        ctx.polished_slots = dict(payload["polished_slots"])
        ctx.ai_content = payload.get("ai_content")

    # ------------------------------------------------------------------
    # Stage 4b / 4c: quality gate and optimization
    # ------------------------------------------------------------------

    async def _quality_gate(self, ctx: JobContext) -> None:
        assert self.quality_gate is not None
        regenerate: Optional[Callable[[str], Awaitable[GeneratedContent]]] = None
        if ctx.generation_enabled:
            attempt = 1

            async def _regenerate(feedback: str) -> GeneratedContent:
                nonlocal attempt
                attempt += 1
                self._notify("generating", label=f"Improving content (attempt {attempt})...")
                return await self._call_generator(ctx, retry_budget=0, feedback=feedback)

            regenerate = _regenerate

        result = await self.quality_gate.run(
            ctx.polished_slots,
            base_slots=ctx.slots,
            site_data=ctx.site_data,
            industry=ctx.industry or "general",
            regenerate=regenerate,
        )
        ctx.quality = result
        ctx.polished_slots = result.slots

    def _should_optimize(self, ctx: JobContext) -> bool:
        return (
            ctx.generation_enabled
            and not ctx.options.skip_optimize
            and ctx.ai_content is not None
            and self.collaborators.optimizer is not None
            and self.quality_gate is not None
        )

    async def _optimize(self, ctx: JobContext) -> None:
        optimizer = self.collaborators.optimizer
        assert optimizer is not None and self.quality_gate is not None
        current = ctx.polished_slots
        candidate = await self._guarded(
            AI,
            lambda: optimizer.optimize_content(copy.deepcopy(current), ctx.site_data, ctx.industry or "general"),
            context="optimize",
        )
        candidate = protect_contact_fields(dict(candidate), ctx.site_data)

        decision = self.quality_gate.compare(
            current, candidate, site_data=ctx.site_data, industry=ctx.industry or "general"
        )
        ctx.optimization = decision
        if decision.accepted:
            ctx.polished_slots = candidate
            logger.info(
                "Content optimized",
                before_score=decision.before,
                after_score=decision.after,
                improvement=decision.after - decision.before,
            )
        else:
            logger.info("Optimization skipped - no improvement", before_score=decision.before, after_score=decision.after)

    # ------------------------------------------------------------------
    # Stages 5-7: render, validate, persist
    # ------------------------------------------------------------------

    async def _render(self, ctx: JobContext) -> None:
        ctx.html = await self.collaborators.templates.build_with_slots(ctx.site_data, ctx.polished_slots)

    async def _validate(self, ctx: JobContext) -> None:
        validator = self.collaborators.validator
        if validator is None:
            ctx.validation = ValidationReport(is_valid=True)
            return
        try:
            report = ValidationReport.from_value(
                validator.validate(ctx.site_data, ctx.polished_slots, ctx.industry or "general")
            )
        except Exception as e:
            logger.error("Preview validator raised, flagging for review", error=str(e))
            report = ValidationReport.from_exception(e)

        if not report.is_valid:
            logger.warning("Preview validation failed", issues=report.issues, quality_score=report.quality_score)
        elif report.warnings:
            logger.info("Preview validation passed with warnings", warnings=report.warnings)
        else:
            logger.info("Preview validation passed", quality_score=report.quality_score)
        ctx.validation = report

    @staticmethod
    def _status_for(ctx: JobContext) -> JobStatus:
        if ctx.validation is not None and ctx.validation.is_valid:
            return JobStatus.COMPLETE
        return JobStatus.REVIEW_NEEDED

    async def _persist(self, ctx: JobContext) -> None:
        if ctx.validation is None:
            ctx.validation = ValidationReport(is_valid=False, issues=["Validation did not run"])
        ctx.slug = generate_preview_slug(ctx.site_data.get("business_name"))
        ctx.expires_at = datetime.now(timezone.utc) + timedelta(days=self.settings.preview_ttl_days)

        record = {
            "slug": ctx.slug,
            "original_url": ctx.url,
            "business_name": ctx.site_data.get("business_name"),
            "industry": ctx.industry,
            "html": ctx.html,
            "site_data": ctx.site_data,
            "slots": ctx.polished_slots,
            "status": self._status_for(ctx).value,
            "validation": ctx.validation.to_dict(),
            "expires_at": ctx.expires_at.isoformat(),
        }
        stored = await self.collaborators.store.create_preview(record)
        if not isinstance(stored, Mapping) or stored.get("id") is None:
            raise ValueError("Persistence returned no record id")
        ctx.preview = dict(stored)
        logger.info("Preview saved", slug=ctx.slug, id=stored["id"], status=record["status"])

    async def _save_legacy_deployment(self, ctx: JobContext, result: PipelineResult) -> None:
        summary = {
            "site_id": result.preview_id,
            "site_name": result.slug,
            "original": ctx.url,
            "preview": result.preview,
            "business_name": ctx.site_data.get("business_name"),
            "industry": ctx.industry,
            "phone": ctx.site_data.get("phone"),
            "email": ctx.site_data.get("email"),
            "address": ctx.site_data.get("address"),
            "city": city_for(ctx.site_data),
        }
        try:
            await self.collaborators.store.save_deployment(summary)
        except Exception as e:
            logger.warning("Failed to save to deployments table", error=str(e))

    def _build_result(self, ctx: JobContext, duration: float) -> PipelineResult:
        assert ctx.html is not None and ctx.validation is not None and ctx.slug and ctx.expires_at
        return PipelineResult(
            original_url=ctx.url,
            html=ctx.html,
            site_data=ctx.site_data,
            industry=ctx.industry,
            slots=ctx.polished_slots,
            duration=duration,
            preview=f"/preview/{ctx.slug}",
            slug=ctx.slug,
            preview_id=ctx.preview["id"],
            expires_at=ctx.expires_at.isoformat(),
            validation=ctx.validation,
            status=self._status_for(ctx).value,
            job_id=ctx.job_id,
            quality=ctx.quality.summary() if ctx.quality else None,
            optimization=ctx.optimization.to_dict() if ctx.optimization else None,
            resumed_stages=list(ctx.resumed_stages),
        )
