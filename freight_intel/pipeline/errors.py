"""Exception hierarchy for the extraction engine.

Per-stage errors never escape ``run_extraction``: the orchestrator converts
them into stage records and the run status. Registry configuration errors
are the exception; they mean the deployment itself is broken.

Hierarchy::

    ExtractionError
    ├── InferenceError
    │   ├── TransientInferenceError      (retried)
    │   │   ├── InferenceTimeoutError
    │   │   └── RateLimitedError
    │   └── MalformedOutputError         (retried)
    ├── StageFailure
    │   ├── CriticalStageFailure         (aborts the run)
    │   └── BestEffortStageFailure       (slot left absent, run degrades)
    ├── RegistryConfigurationError       (raised at startup)
    │   ├── CyclicDependencyError
    │   ├── UnknownDependencyError
    │   └── DuplicateStageError
    └── ContextError
        ├── SlotAlreadyWrittenError
        └── UndeclaredDependencyError
"""

from typing import Optional, Sequence


class ExtractionError(Exception):
    """Base class for all engine errors."""

    pass


# =============================================================================
# Inference collaborator failures
# =============================================================================

class InferenceError(ExtractionError):
    """The inference service failed to produce a usable payload."""

    def __init__(self, message: str, stage: Optional[str] = None):
        super().__init__(message)
        self.stage = stage


class TransientInferenceError(InferenceError):
    """A failure that may succeed on retry."""

    pass


class InferenceTimeoutError(TransientInferenceError):
    """A single inference call exceeded its timeout."""

    pass


class RateLimitedError(TransientInferenceError):
    """The inference service refused the call due to rate limiting."""

    pass


class MalformedOutputError(InferenceError):
    """The inference result could not be parsed or failed schema validation."""

    def __init__(self, message: str, stage: Optional[str] = None, raw_preview: str = ""):
        super().__init__(message, stage=stage)
        self.raw_preview = raw_preview


RETRYABLE_ERRORS = (TransientInferenceError, MalformedOutputError)


# =============================================================================
# Stage failures (recorded by the orchestrator)
# =============================================================================

class StageFailure(ExtractionError):
    """A stage failed permanently after its retry budget."""

    def __init__(self, stage: str, attempts: int, cause: BaseException):
        super().__init__(f"Stage '{stage}' failed after {attempts} attempt(s): {cause}")
        self.stage = stage
        self.attempts = attempts
        self.cause = cause


class CriticalStageFailure(StageFailure):
    """A critical stage failed; the run is aborted."""

    pass


class BestEffortStageFailure(StageFailure):
    """A best-effort stage failed; its context slot stays absent."""

    pass


# =============================================================================
# Registry configuration
# =============================================================================

class RegistryConfigurationError(ExtractionError):
    """The registered stage set is invalid."""

    pass


class CyclicDependencyError(RegistryConfigurationError):
    """Stage dependencies form a cycle."""

    def __init__(self, cycle: Sequence[str]):
        self.cycle = list(cycle)
        super().__init__("Cyclic stage dependency: " + " -> ".join(self.cycle))


class UnknownDependencyError(RegistryConfigurationError):
    """A stage depends on a name that is not registered."""

    def __init__(self, stage: str, dependency: str):
        self.stage = stage
        self.dependency = dependency
        super().__init__(f"Stage '{stage}' depends on unregistered stage '{dependency}'")


class DuplicateStageError(RegistryConfigurationError):
    """Two stages were registered under the same name."""

    def __init__(self, stage: str):
        self.stage = stage
        super().__init__(f"Stage '{stage}' is registered more than once")


# =============================================================================
# Context access violations
# =============================================================================

class ContextError(ExtractionError):
    """A stage broke the context's read/write rules."""

    pass


class SlotAlreadyWrittenError(ContextError):
    """A stage slot was written a second time."""

    def __init__(self, stage: str):
        self.stage = stage
        super().__init__(f"Output slot for '{stage}' has already been written")


class UndeclaredDependencyError(ContextError):
    """A stage read the output of a stage it did not declare as a dependency."""

    def __init__(self, reader: str, target: str):
        self.reader = reader
        self.target = target
        super().__init__(f"Stage '{reader}' read '{target}' without declaring it as a dependency")
