"""Extraction pipeline: stage contract, context, registry and orchestrator."""
