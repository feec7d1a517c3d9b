"""Multi-Stage Extractor - drives one extraction run end to end.

SCHEDULING:
- One asyncio task per registered stage, all started at once
- Each task waits only on the context slots of its own dependencies, so a
  stage starts the moment its inputs exist rather than when a whole "layer"
  finishes
- Suspension happens only at inference calls and slot waits

FAILURE POLICY:
- Timeouts, rate limits and malformed output are retried with exponential
  backoff up to ``stage_max_attempts`` (tenacity)
- A critical stage that still fails aborts the run: every stage depending
  on it (directly or transitively) is cancelled, status becomes ``failed``,
  and outputs produced so far are kept for diagnostics
- A best-effort stage that still fails leaves its slot absent and degrades
  the run to ``partial``; independent branches finish normally

Nothing is thrown out of ``run_extraction`` except registry configuration
errors, which indicate a deployment defect.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from freight_intel.config.settings import Settings, get_settings
from freight_intel.llm.inference import InferenceService, OllamaInferenceService
from freight_intel.logging_config import bound_run_context
from freight_intel.models.result import (
    ExtractionResult,
    RunStatus,
    StageRecord,
    StageStatus,
    TokenUsage,
)
from freight_intel.models.transcript import RunMetadata, Transcript
from freight_intel.pipeline.context import ContextView, ExtractionContext
from freight_intel.pipeline.errors import (
    RETRYABLE_ERRORS,
    BestEffortStageFailure,
    CriticalStageFailure,
)
from freight_intel.pipeline.registry import StageRegistry, get_stage_registry
from freight_intel.pipeline.stage import Stage

logger = structlog.get_logger(__name__)


@dataclass
class _RunState:
    """Bookkeeping for one run; owned by the event loop thread."""
    context: ExtractionContext
    tasks: dict[str, asyncio.Task] = field(default_factory=dict)
    records: dict[str, StageRecord] = field(default_factory=dict)


class MultiStageExtractor:
    """Runs the registered stages over one transcript."""

    def __init__(
        self,
        registry: Optional[StageRegistry] = None,
        inference: Optional[InferenceService] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.registry = registry or get_stage_registry()
        self._inference = inference

    @property
    def inference(self) -> InferenceService:
        if self._inference is None:
            self._inference = OllamaInferenceService(self.settings)
        return self._inference

    async def run(self, transcript: Transcript, metadata: RunMetadata) -> ExtractionResult:
        """Execute every reachable stage and assemble the result.

        Args:
            transcript: Immutable call transcript.
            metadata: Run identifiers and call type hint.

        Returns:
            The frozen ExtractionResult.
        """
        with bound_run_context(metadata.call_id, metadata.organization_id):
            started_at = datetime.now(timezone.utc)
            order = self.registry.resolve_order()
            state = _RunState(
                context=ExtractionContext(transcript, metadata, order, self.inference, self.settings)
            )

            logger.info(
                "extraction_start",
                stages=len(order),
                utterances=len(transcript.utterances),
                call_type_hint=metadata.call_type.value,
            )

            for name in order:
                state.tasks[name] = asyncio.create_task(
                    self._run_stage(self.registry[name], state), name=f"stage:{name}"
                )
            results = await asyncio.gather(*state.tasks.values(), return_exceptions=True)

            for name, outcome in zip(state.tasks, results):
                if isinstance(outcome, Exception):
                    logger.error("stage_task_crashed", stage=name, error=str(outcome))
                    self._finish(state, self.registry[name], StageStatus.FAILED, error=outcome)

            result = self._assemble(state, order, started_at)

            logger.info(
                "extraction_complete",
                status=result.status.value,
                duration_seconds=round(result.duration_seconds, 2),
                llm_calls=result.usage.calls,
                total_tokens=result.usage.total_tokens,
                cost_usd=result.usage.cost_usd,
                should_generate_rate_confirmation=result.should_generate_rate_confirmation,
            )
            return result

    # -------------------------------------------------------------------------
    # Per-stage execution
    # -------------------------------------------------------------------------

    async def _run_stage(self, stage: Stage, state: _RunState) -> None:
        context = state.context

        for dependency in stage.dependencies:
            outcome = await context.wait_for(dependency)
            if outcome.blocks_dependents:
                logger.info("stage_skipped", stage=stage.name, blocked_by=dependency)
                self._finish(
                    state, stage, StageStatus.SKIPPED_DEPENDENCY_FAILED,
                    message=f"Dependency '{dependency}' failed",
                )
                return

        view = context.view_for(stage.name, stage.dependencies)
        start = time.perf_counter()
        attempts = 0

        try:
            if not stage.is_applicable(view):
                logger.info("stage_not_applicable", stage=stage.name)
                self._finish(state, stage, StageStatus.SKIPPED_NOT_APPLICABLE, view=view)
                return

            logger.debug("stage_start", stage=stage.name)
            async for attempt in self._retrying(stage):
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    output = await stage.execute(view)

        except Exception as e:
            failure_type = CriticalStageFailure if stage.critical else BestEffortStageFailure
            failure = failure_type(stage.name, attempts, e)
            log = logger.error if stage.critical else logger.warning
            log(
                "stage_failed" if stage.critical else "stage_partial_failure",
                stage=stage.name,
                attempts=attempts,
                error=str(e),
                error_type=type(e).__name__,
            )
            self._finish(
                state, stage, StageStatus.FAILED,
                error=e, failure=failure, attempts=attempts, view=view,
                duration=time.perf_counter() - start,
            )
            if stage.critical:
                self._abort_dependents(stage, state)
            return

        duration = time.perf_counter() - start
        self._finish(
            state, stage, StageStatus.COMPLETED,
            output=output, attempts=attempts, view=view, duration=duration,
        )
        logger.info(
            "stage_complete",
            stage=stage.name,
            attempts=attempts,
            duration_seconds=round(duration, 3),
            confidence=getattr(output, "confidence", None),
        )

    def _retrying(self, stage: Stage) -> AsyncRetrying:
        settings = self.settings

        def log_retry(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            logger.warning(
                "stage_retry",
                stage=stage.name,
                attempt=retry_state.attempt_number,
                error=str(error),
                error_type=type(error).__name__,
                sleep_seconds=retry_state.next_action.sleep if retry_state.next_action else 0,
            )

        return AsyncRetrying(
            stop=stop_after_attempt(max(1, settings.stage_max_attempts)),
            wait=wait_exponential(
                multiplier=settings.retry_backoff_multiplier,
                min=settings.retry_backoff_min_seconds,
                max=settings.retry_backoff_max_seconds,
            ),
            retry=retry_if_exception_type(RETRYABLE_ERRORS),
            before_sleep=log_retry,
            reraise=True,
        )

    def _finish(
        self,
        state: _RunState,
        stage: Stage,
        status: StageStatus,
        output=None,
        error: Optional[BaseException] = None,
        failure: Optional[Exception] = None,
        message: Optional[str] = None,
        attempts: int = 0,
        view: Optional[ContextView] = None,
        duration: float = 0.0,
    ) -> None:
        """Record a stage's terminal outcome in the context and the run records."""
        if state.context.is_recorded(stage.name):
            return
        state.context.record(stage.name, status, output=output, critical=stage.critical)
        state.records[stage.name] = StageRecord(
            stage=stage.name,
            status=status,
            critical=stage.critical,
            attempts=attempts,
            duration_seconds=round(duration, 4),
            error=str(failure or error) if (failure or error) else message,
            error_type=type(error).__name__ if error else None,
            usage=view.usage if view else TokenUsage(),
        )

    def _abort_dependents(self, failed: Stage, state: _RunState) -> None:
        """Cancel every still-pending stage that depends on a failed critical stage."""
        for name in self.registry.dependents_of(failed.name):
            if state.context.is_recorded(name):
                continue
            state.tasks[name].cancel()
            self._finish(
                state, self.registry[name], StageStatus.SKIPPED_DEPENDENCY_FAILED,
                message=f"Cancelled after critical failure of '{failed.name}'",
            )
            logger.info("stage_cancelled", stage=name, failed_stage=failed.name)

    # -------------------------------------------------------------------------
    # Result assembly
    # -------------------------------------------------------------------------

    def _assemble(self, state: _RunState, order: list[str], started_at: datetime) -> ExtractionResult:
        records = [state.records[name] for name in order if name in state.records]
        failed = [r for r in records if r.status == StageStatus.FAILED]

        if any(r.critical for r in failed):
            status = RunStatus.FAILED
        elif failed:
            status = RunStatus.PARTIAL
        else:
            status = RunStatus.COMPLETE

        produced = state.context.produced_outputs()
        outputs = {name: produced[name] for name in order if name in produced}
        validation = outputs.get("validation")

        return ExtractionResult(
            call_id=state.context.metadata.call_id,
            status=status,
            outputs=outputs,
            negotiation=outputs.get("negotiation"),
            should_generate_rate_confirmation=bool(
                validation and status != RunStatus.FAILED and validation.should_generate_rate_confirmation
            ),
            warnings=validation.warnings if validation else (),
            stage_records=tuple(records),
            usage=state.context.usage,
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
        )


def run_extraction(
    transcript: Transcript,
    metadata: RunMetadata,
    *,
    inference: Optional[InferenceService] = None,
    registry: Optional[StageRegistry] = None,
    settings: Optional[Settings] = None,
) -> ExtractionResult:
    """Run one extraction and return once every reachable stage terminated.

    Args:
        transcript: The call transcript.
        metadata: Run identifiers and call type hint.
        inference: Inference service; defaults to the Ollama-backed service.
        registry: Stage registry; defaults to the built-in stages.
        settings: Settings; defaults to the cached environment settings.

    Returns:
        ExtractionResult with status complete, partial or failed.

    Raises:
        RegistryConfigurationError: If the stage set is invalid.
    """
    extractor = MultiStageExtractor(registry=registry, inference=inference, settings=settings)
    return asyncio.run(extractor.run(transcript, metadata))
