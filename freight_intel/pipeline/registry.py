"""Stage registry.

Holds the complete, closed set of stages keyed by name and resolves one
execution order from their declared dependencies. All validation happens at
construction, so a bad stage set fails process startup rather than a run.
"""

from functools import lru_cache
from typing import Iterable, Iterator

import structlog

from freight_intel.pipeline.errors import (
    CyclicDependencyError,
    DuplicateStageError,
    UnknownDependencyError,
)
from freight_intel.pipeline.stage import Stage

logger = structlog.get_logger(__name__)


class StageRegistry:
    """Immutable name -> stage table with a precomputed topological order."""

    def __init__(self, stages: Iterable[Stage]):
        table: dict[str, Stage] = {}
        for stage in stages:
            if stage.name in table:
                raise DuplicateStageError(stage.name)
            table[stage.name] = stage
        self._stages = table

        for stage in table.values():
            for dependency in stage.dependencies:
                if dependency not in table:
                    raise UnknownDependencyError(stage.name, dependency)

        self._order = tuple(self._topological_sort())
        self._dependents = self._build_dependents()

        logger.debug("stage_registry_built", order=list(self._order))

    def _topological_sort(self) -> list[str]:
        """Kahn's algorithm; ties broken by registration order for determinism."""
        in_degree = {name: len(set(stage.dependencies)) for name, stage in self._stages.items()}
        order: list[str] = []
        ready = [name for name in self._stages if in_degree[name] == 0]

        while ready:
            name = ready.pop(0)
            order.append(name)
            for candidate, stage in self._stages.items():
                if name in stage.dependencies:
                    in_degree[candidate] -= 1
                    if in_degree[candidate] == 0:
                        ready.append(candidate)
            ready.sort(key=self._registration_index)

        if len(order) != len(self._stages):
            remaining = [name for name in self._stages if name not in order]
            raise CyclicDependencyError(self._find_cycle(remaining))

        return order

    def _registration_index(self, name: str) -> int:
        return list(self._stages).index(name)

    def _find_cycle(self, remaining: list[str]) -> list[str]:
        """Walk dependency edges among unsorted stages until a name repeats."""
        path: list[str] = []
        current = remaining[0]
        while current not in path:
            path.append(current)
            current = next(d for d in self._stages[current].dependencies if d in remaining)
        return path[path.index(current):] + [current]

    def _build_dependents(self) -> dict[str, frozenset[str]]:
        direct: dict[str, set[str]] = {name: set() for name in self._stages}
        for name, stage in self._stages.items():
            for dependency in stage.dependencies:
                direct[dependency].add(name)

        closure: dict[str, frozenset[str]] = {}
        for name in reversed(self._order):
            found = set(direct[name])
            for child in direct[name]:
                found |= closure[child]
            closure[name] = frozenset(found)
        return closure

    # -------------------------------------------------------------------------
    # Read-only access
    # -------------------------------------------------------------------------

    def resolve_order(self) -> list[str]:
        """Stage names such that every stage follows all of its dependencies."""
        return list(self._order)

    def dependents_of(self, name: str) -> frozenset[str]:
        """All stages that depend on ``name`` directly or transitively."""
        return self._dependents[name]

    def __getitem__(self, name: str) -> Stage:
        return self._stages[name]

    def __contains__(self, name: object) -> bool:
        return name in self._stages

    def __iter__(self) -> Iterator[Stage]:
        return (self._stages[name] for name in self._order)

    def __len__(self) -> int:
        return len(self._stages)


@lru_cache
def get_stage_registry() -> StageRegistry:
    """Process-wide registry of the built-in stages."""
    from freight_intel.pipeline.stages import default_stages

    return StageRegistry(default_stages())
