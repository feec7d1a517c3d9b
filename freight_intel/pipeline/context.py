"""Run-scoped shared state.

The context is an arena of write-once slots, one per registered stage. A slot
is written exactly once, after its stage terminated, and its event is set only
after the write; consumers wait on the specific slots they need, so they can
never observe a partially produced output.

Stages never see the context directly. They get a ``ContextView`` that only
exposes the transcript, the metadata, the outputs of declared dependencies and
the metered inference call.
"""

import asyncio
import threading
from dataclasses import dataclass
from typing import Iterable, Optional

from langchain_core.prompts import ChatPromptTemplate
from pydantic import BaseModel

from freight_intel.config.settings import Settings
from freight_intel.llm.inference import InferenceRequest, InferenceService
from freight_intel.models.result import StageStatus, TokenUsage
from freight_intel.models.transcript import RunMetadata, Transcript
from freight_intel.pipeline.errors import SlotAlreadyWrittenError, UndeclaredDependencyError


@dataclass(frozen=True)
class SlotOutcome:
    """Recorded outcome of a stage slot."""
    status: StageStatus
    output: Optional[BaseModel] = None
    critical: bool = False

    @property
    def blocks_dependents(self) -> bool:
        """Critical failures (and anything skipped because of one) block dependents."""
        if self.status == StageStatus.SKIPPED_DEPENDENCY_FAILED:
            return True
        return self.status == StageStatus.FAILED and self.critical


class ExtractionContext:
    """Write-once slot arena plus the run-wide usage counter."""

    def __init__(
        self,
        transcript: Transcript,
        metadata: RunMetadata,
        stage_names: Iterable[str],
        inference: InferenceService,
        settings: Settings,
    ):
        self.transcript = transcript
        self.metadata = metadata
        self.inference = inference
        self.settings = settings
        self._outcomes: dict[str, SlotOutcome] = {}
        self._events: dict[str, asyncio.Event] = {name: asyncio.Event() for name in stage_names}
        self._usage = TokenUsage()
        self._usage_lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Slots
    # -------------------------------------------------------------------------

    def record(
        self,
        stage: str,
        status: StageStatus,
        output: Optional[BaseModel] = None,
        critical: bool = False,
    ) -> SlotOutcome:
        """Write a stage's slot and release anything waiting on it.

        Raises:
            SlotAlreadyWrittenError: If the slot was already written.
        """
        if stage in self._outcomes:
            raise SlotAlreadyWrittenError(stage)
        outcome = SlotOutcome(status=status, output=output, critical=critical)
        self._outcomes[stage] = outcome
        self._events[stage].set()
        return outcome

    def is_recorded(self, stage: str) -> bool:
        return stage in self._outcomes

    async def wait_for(self, stage: str) -> SlotOutcome:
        """Suspend until ``stage`` has a recorded outcome."""
        await self._events[stage].wait()
        return self._outcomes[stage]

    def outcome(self, stage: str) -> Optional[SlotOutcome]:
        return self._outcomes.get(stage)

    def output(self, stage: str) -> Optional[BaseModel]:
        outcome = self._outcomes.get(stage)
        return outcome.output if outcome else None

    def produced_outputs(self) -> dict[str, BaseModel]:
        return {
            name: outcome.output
            for name, outcome in self._outcomes.items()
            if outcome.status == StageStatus.COMPLETED and outcome.output is not None
        }

    # -------------------------------------------------------------------------
    # Usage
    # -------------------------------------------------------------------------

    def add_usage(self, usage: TokenUsage) -> None:
        with self._usage_lock:
            self._usage = self._usage.plus(usage)

    @property
    def usage(self) -> TokenUsage:
        with self._usage_lock:
            return self._usage

    def view_for(self, stage_name: str, dependencies: Iterable[str]) -> "ContextView":
        return ContextView(self, stage_name, tuple(dependencies))


class ContextView:
    """What a single stage is allowed to see and do."""

    def __init__(self, context: ExtractionContext, stage_name: str, dependencies: tuple[str, ...]):
        self._context = context
        self.stage_name = stage_name
        self.dependencies = dependencies
        self.usage = TokenUsage()

    @property
    def transcript(self) -> Transcript:
        return self._context.transcript

    @property
    def metadata(self) -> RunMetadata:
        return self._context.metadata

    @property
    def settings(self) -> Settings:
        return self._context.settings

    def _check_declared(self, stage: str) -> None:
        if stage not in self.dependencies:
            raise UndeclaredDependencyError(self.stage_name, stage)

    def output(self, stage: str) -> Optional[BaseModel]:
        """Output of a declared dependency, or None if its slot is absent.

        Raises:
            UndeclaredDependencyError: If ``stage`` is not a declared dependency.
        """
        self._check_declared(stage)
        return self._context.output(stage)

    def status(self, stage: str) -> Optional[StageStatus]:
        self._check_declared(stage)
        outcome = self._context.outcome(stage)
        return outcome.status if outcome else None

    async def infer(
        self,
        prompt: ChatPromptTemplate,
        variables: dict,
        response_model: type[BaseModel],
    ) -> BaseModel:
        """Call the inference service and meter the call against the run."""
        response = await self._context.inference.complete(
            InferenceRequest(
                stage=self.stage_name,
                prompt=prompt,
                variables=variables,
                response_model=response_model,
            )
        )
        self.usage = self.usage.plus(response.usage)
        self._context.add_usage(response.usage)
        return response.payload
