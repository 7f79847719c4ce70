"""Index-based stage dependency graph.

Stages live in one arena tuple and edges are stored as index pairs, so
parallel executors never hold references into each other's records.
"""

from __future__ import annotations

from dataclasses import dataclass

from core.errors import PipelineSpecError
from core.types import DependencyEdge, PipelineSpec, StageSpec


@dataclass(frozen=True)
class GraphEdge:
    """Dependency edge resolved to arena indexes."""

    producer: int
    consumer: int
    edge: DependencyEdge


class StageGraph:
    """Acyclic producer/consumer graph over pipeline stages."""

    def __init__(self, stages: tuple[StageSpec, ...], edges: tuple[DependencyEdge, ...]) -> None:
        self._stages = stages
        self._index = _build_index(stages)
        self._edges = tuple(self._resolve_edge(edge) for edge in edges)

    @classmethod
    def from_spec(cls, spec: PipelineSpec) -> "StageGraph":
        """Build a graph from a validated pipeline definition."""
        return cls(spec.stages, spec.edges)

    @property
    def stages(self) -> tuple[StageSpec, ...]:
        """Stages in declaration order."""
        return self._stages

    def index_of(self, stage_name: str) -> int:
        """Return the arena index of *stage_name*."""
        try:
            return self._index[stage_name]
        except KeyError as error:
            raise PipelineSpecError(f"Unknown stage '{stage_name}'.") from error

    def producers_of(self, consumer: int) -> tuple[int, ...]:
        """Distinct producer indexes feeding *consumer*, in edge order."""
        seen: list[int] = []
        for row in self._edges:
            if row.consumer == consumer and row.producer not in seen:
                seen.append(row.producer)
        return tuple(seen)

    def consumers_of(self, producer: int) -> tuple[int, ...]:
        """Distinct consumer indexes reading from *producer*."""
        seen: list[int] = []
        for row in self._edges:
            if row.producer == producer and row.consumer not in seen:
                seen.append(row.consumer)
        return tuple(seen)

    def imports_for(self, consumer: int) -> tuple[GraphEdge, ...]:
        """Edges into *consumer* in declaration order."""
        return tuple(row for row in self._edges if row.consumer == consumer)

    def execution_batches(self) -> tuple[tuple[int, ...], ...]:
        """Group stages into dependency levels using Kahn's algorithm.

        Stages inside one batch have no edges between them and keep their
        declaration order.

        Returns:
            Ordered batches of stage indexes.

        Raises:
            PipelineSpecError: If the graph contains a cycle.
        """
        remaining = {index: set(self.producers_of(index)) for index in range(len(self._stages))}
        batches: list[tuple[int, ...]] = []
        while remaining:
            ready = tuple(index for index in sorted(remaining) if not remaining[index])
            if not ready:
                cycle_names = ", ".join(self._stages[index].name for index in sorted(remaining))
                raise PipelineSpecError(
                    f"Pipeline stage graph contains a cycle among: {cycle_names}. "
                    "Remove the circular artifact edges."
                )
            for index in ready:
                del remaining[index]
            for producers in remaining.values():
                producers.difference_update(ready)
            batches.append(ready)
        return tuple(batches)

    def batch_names(self) -> tuple[tuple[str, ...], ...]:
        """Execution batches rendered as stage names."""
        return tuple(
            tuple(self._stages[index].name for index in batch)
            for batch in self.execution_batches()
        )

    def _resolve_edge(self, edge: DependencyEdge) -> GraphEdge:
        producer = self.index_of(edge.producer)
        consumer = self.index_of(edge.consumer)
        if producer == consumer:
            raise PipelineSpecError(
                f"Stage '{edge.producer}' cannot import artifacts from itself."
            )
        return GraphEdge(producer=producer, consumer=consumer, edge=edge)


def _build_index(stages: tuple[StageSpec, ...]) -> dict[str, int]:
    index: dict[str, int] = {}
    for position, stage in enumerate(stages):
        if stage.name in index:
            raise PipelineSpecError(
                f"Stage name '{stage.name}' is declared more than once. Stage names must be unique."
            )
        index[stage.name] = position
    return index
