"""Freight Call Intelligence - multi-stage extraction engine for brokerage calls."""

__version__ = "0.1.0"

from freight_intel.pipeline.orchestrator import MultiStageExtractor, run_extraction

__all__ = ["MultiStageExtractor", "run_extraction", "__version__"]
