"""Stage contract.

A stage declares a unique name, the stages whose outputs it reads, and
whether its failure aborts the run (critical) or only degrades it
(best-effort). ``execute`` is a function of the visible context only: it may
call the inference service through the view, and nothing else.
"""

from abc import ABC, abstractmethod
from typing import ClassVar, Optional

from langchain_core.prompts import ChatPromptTemplate
from pydantic import BaseModel

from freight_intel.models.outputs import ClassificationResult
from freight_intel.models.transcript import CallType
from freight_intel.pipeline.context import ContextView


class Stage(ABC):
    """Base class for extraction stages."""

    name: ClassVar[str]
    dependencies: ClassVar[tuple[str, ...]] = ()
    critical: ClassVar[bool] = False
    response_model: ClassVar[Optional[type[BaseModel]]] = None
    # Call types this stage applies to; None means every call type
    applies_to: ClassVar[Optional[frozenset[CallType]]] = None

    def is_applicable(self, view: ContextView) -> bool:
        """Whether the stage has anything to do for this run."""
        if view.transcript.is_empty:
            return False
        if self.applies_to is None:
            return True
        return call_type_of(view) in self.applies_to

    def build_prompt(self, view: ContextView) -> tuple[ChatPromptTemplate, dict]:
        """Return the prompt template and its variables."""
        raise NotImplementedError(f"Stage '{self.name}' does not call the inference service")

    @abstractmethod
    async def execute(self, view: ContextView) -> BaseModel:
        """Produce this stage's output from the visible context."""

    async def _infer(self, view: ContextView) -> BaseModel:
        prompt, variables = self.build_prompt(view)
        return await view.infer(prompt, variables, self.response_model)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, critical={self.critical})"


def call_type_of(view: ContextView) -> CallType:
    """Classified call type, falling back to the caller's hint."""
    if "classification" in view.dependencies:
        classification = view.output("classification")
        if isinstance(classification, ClassificationResult):
            return classification.call_type
    return view.metadata.call_type
