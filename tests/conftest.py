"""Pytest configuration and fixtures."""

import asyncio
import time
from typing import Callable, Optional

import pytest
from langchain_core.prompts import ChatPromptTemplate
from pydantic import BaseModel

from freight_intel.config.settings import Settings
from freight_intel.llm.inference import InferenceRequest, InferenceResponse, validate_payload
from freight_intel.models.outputs import ActionItemList
from freight_intel.models.result import TokenUsage
from freight_intel.models.transcript import CallType, RunMetadata, Transcript, Utterance
from freight_intel.pipeline.context import ContextView
from freight_intel.pipeline.stage import Stage


# =============================================================================
# Inference test double
# =============================================================================

CALL_USAGE = TokenUsage(calls=1, prompt_tokens=100, completion_tokens=20, cost_usd=0.001)


class ScriptedInference:
    """Inference service that answers from canned payloads.

    Payloads are keyed by stage name; stages without one get ``{}``, which
    every response schema accepts. ``failures`` maps a stage to
    ``(exception_type, times)``: the first ``times`` calls raise, or every
    call when ``times`` is None. Calls are logged with monotonic timestamps
    so tests can check ordering and overlap.
    """

    def __init__(
        self,
        payloads: Optional[dict[str, dict]] = None,
        failures: Optional[dict[str, tuple[type[Exception], Optional[int]]]] = None,
        delay: float = 0.0,
    ):
        self.payloads = payloads or {}
        self.failures = failures or {}
        self.delay = delay
        self.calls: list[str] = []
        self.events: list[tuple[str, str, float]] = []

    def call_count(self, stage: str) -> int:
        return self.calls.count(stage)

    def first(self, stage: str, kind: str) -> Optional[int]:
        """Index in ``events`` of the first event of ``kind`` for ``stage``."""
        return next((i for i, e in enumerate(self.events) if e[0] == stage and e[1] == kind), None)

    async def complete(self, request: InferenceRequest) -> InferenceResponse:
        stage = request.stage
        self.calls.append(stage)
        self.events.append((stage, "start", time.monotonic()))
        if self.delay:
            await asyncio.sleep(self.delay)

        if stage in self.failures:
            error, times = self.failures[stage]
            if times is None or self.call_count(stage) <= times:
                self.events.append((stage, "error", time.monotonic()))
                raise error(f"scripted failure for {stage}")

        payload = validate_payload(request, self.payloads.get(stage, {}))
        self.events.append((stage, "end", time.monotonic()))
        return InferenceResponse(payload=payload, usage=CALL_USAGE)


@pytest.fixture
def make_inference() -> Callable[..., ScriptedInference]:
    return ScriptedInference


# =============================================================================
# Minimal stage for orchestration tests
# =============================================================================

class EchoResponse(BaseModel):
    text: str = ""


class EchoStage(Stage):
    """Calls the inference service once and lists the dependencies it saw."""

    response_model = EchoResponse

    def __init__(self, name: str, dependencies: tuple[str, ...] = (), critical: bool = False):
        self.name = name
        self.dependencies = tuple(dependencies)
        self.critical = critical

    def is_applicable(self, view: ContextView) -> bool:
        return True

    def build_prompt(self, view: ContextView) -> tuple[ChatPromptTemplate, dict]:
        return ChatPromptTemplate.from_messages([("human", "echo {stage}")]), {"stage": self.name}

    async def execute(self, view: ContextView) -> ActionItemList:
        seen = tuple(name for name in self.dependencies if view.output(name) is not None)
        await self._infer(view)
        return ActionItemList(callbacks=(self.name, *seen))


@pytest.fixture
def make_stage() -> Callable[..., EchoStage]:
    return EchoStage


# =============================================================================
# Settings and inputs
# =============================================================================

@pytest.fixture
def settings() -> Settings:
    """Settings with retry backoff disabled so retries run instantly."""
    return Settings(
        retry_backoff_multiplier=0,
        retry_backoff_min_seconds=0,
        retry_backoff_max_seconds=0,
    )


def _transcript(*turns: tuple[str, str]) -> Transcript:
    return Transcript(
        utterances=tuple(
            Utterance(speaker_label=label, text=text, start_ms=i * 5000, end_ms=i * 5000 + 4000)
            for i, (label, text) in enumerate(turns)
        )
    )


@pytest.fixture
def make_transcript() -> Callable[..., Transcript]:
    """Build a transcript from ``(speaker_label, text)`` turns."""
    return _transcript


@pytest.fixture
def carrier_metadata() -> RunMetadata:
    return RunMetadata(
        call_id="call-001",
        organization_id="org-1",
        user_id="user-1",
        call_type=CallType.CARRIER,
    )


@pytest.fixture
def agreed_transcript() -> Transcript:
    """Broker and carrier meet at $2,150 and the carrier books it."""
    return _transcript(
        ("A", "Hi, this is Mike with Summit Freight. I've got a dry van from Dallas, TX to Atlanta, GA "
              "picking up tomorrow morning. Rate is $1,800."),
        ("B", "Hey Mike, this is Blue Line Trucking, MC 123456. That's too light for me, I need $2,300 on it."),
        ("A", "Best I can do is $2,150."),
        ("B", "Okay, $2,150 works. Book it."),
        ("A", "Great, I'll send the rate con over."),
    )


@pytest.fixture
def rejected_transcript() -> Transcript:
    """Carrier declines the only offer with a reason."""
    return _transcript(
        ("A", "I have a load from Chicago to Denver, paying $1,500."),
        ("B", "That doesn't cover my fuel, I'll have to pass."),
        ("A", "Understood, thanks anyway."),
    )


@pytest.fixture
def callback_transcript() -> Transcript:
    """Carrier defers to the driver after a counter-offer."""
    return _transcript(
        ("A", "Load from Memphis to Nashville, rate is $900."),
        ("B", "Can you do $1,100?"),
        ("A", "I can do $1,000."),
        ("B", "Let me check with my driver and call you back."),
    )


@pytest.fixture
def pending_transcript() -> Transcript:
    """Opening positions only; nobody commits."""
    return _transcript(
        ("A", "I've got a load from Houston to Phoenix paying $2,000."),
        ("B", "I need $2,600 on that one."),
    )


@pytest.fixture
def agreed_payloads() -> dict[str, dict]:
    """Model answers consistent with ``agreed_transcript``."""
    return {
        "classification": {
            "call_type": "carrier",
            "confidence": 90,
            "indicators": ["load offer", "rate negotiation", "mc number"],
        },
        "speaker_identification": {
            "speakers": [
                {"label": "A", "role": "broker", "name": "Mike", "confidence": 95},
                {"label": "B", "role": "carrier", "company": "Blue Line Trucking", "confidence": 90},
            ],
            "broker_label": "A",
        },
        "load_extraction": {
            "loads": [{
                "origin_city": "Dallas",
                "origin_state": "TX",
                "destination_city": "Atlanta",
                "destination_state": "GA",
                "equipment_type": "dry van",
                "confidence": 85,
            }],
        },
        "carrier_information": {
            "company_name": "Blue Line Trucking",
            "mc_number": "123456",
            "confidence": 85,
        },
    }
