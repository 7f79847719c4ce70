"""Topological stage scheduler.

The scheduler submits a stage once every producer it imports from has
succeeded, so independent stages build concurrently. The first failure
stops all further submissions: stages that have not started are
cancelled, running siblings finish, and the failure is re-raised naming
its stage and step.
"""

from __future__ import annotations

from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Callable

from core.config import KilnConfig
from core.errors import KilnError, StageCommandFailedError
from core.logging_config import get_logger
from core.types import StageOutcome, StageSpec
from fetch.git_fetcher import GitFetcher, SourceFetcher
from fetch.source_acquirer import SourceAcquirer
from stages.artifacts import import_edge
from stages.stage_executor import StageExecutor
from stages.stage_graph import StageGraph
from stages.work_tree import WorkTree, WorkTreeEscapeError

_LOGGER = get_logger(__name__)


@dataclass(frozen=True)
class SchedulerResult:
    """Successful scheduling result."""

    final_tree: WorkTree
    outcomes: tuple[StageOutcome, ...]


@dataclass(frozen=True)
class _StageRun:
    outcome: StageOutcome
    tree: WorkTree | None
    error: KilnError | None


class PipelineScheduler:
    """Runs every stage of a graph, respecting producer/consumer order."""

    def __init__(
        self,
        graph: StageGraph,
        final_stage: str,
        config: KilnConfig,
        executor: StageExecutor,
        fetcher: SourceFetcher | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self._graph = graph
        self._final_index = graph.index_of(final_stage)
        self._config = config
        self._executor = executor
        self._fetcher = fetcher or GitFetcher()
        self._sleep = sleep

    def run(self) -> SchedulerResult:
        """Execute all stages and return the final stage's tree.

        At most ``max_parallel_stages`` stages are handed to the worker pool
        at a time; the rest wait in the scheduler's own queue so a failure
        can stop them before they start.

        Raises:
            KilnError: The first stage failure, after running siblings finish.
                Its ``outcomes`` attribute lists every stage's outcome.
        """
        self._graph.execution_batches()
        self._prepare_build_root()
        stage_count = len(self._graph.stages)
        pending = list(range(stage_count))
        trees: dict[int, WorkTree] = {}
        outcomes: dict[int, StageOutcome] = {}
        remaining_consumers = {
            index: len(self._graph.consumers_of(index)) for index in range(stage_count)
        }
        failure: KilnError | None = None
        with ThreadPoolExecutor(
            max_workers=self._config.max_parallel_stages,
            thread_name_prefix="kiln-stage",
        ) as pool:
            in_flight: dict[Future[_StageRun], int] = {}
            self._submit_ready(pool, pending, trees, in_flight)
            while in_flight:
                done, _ = wait(tuple(in_flight), return_when=FIRST_COMPLETED)
                for index, future in sorted((in_flight.pop(item), item) for item in done):
                    stage_run = future.result()
                    outcomes[index] = stage_run.outcome
                    if stage_run.error is not None:
                        failure = failure or stage_run.error
                        continue
                    if stage_run.tree is not None:
                        trees[index] = stage_run.tree
                    self._release_producers(index, trees, remaining_consumers)
                if failure is None:
                    self._submit_ready(pool, pending, trees, in_flight)
        for index in pending:
            outcomes[index] = StageOutcome(
                stage_name=self._graph.stages[index].name, status="cancelled"
            )
        ordered_outcomes = tuple(outcomes[index] for index in range(stage_count))
        if failure is not None:
            failure.outcomes = ordered_outcomes
            self._abort(failure, ordered_outcomes, trees)
            raise failure
        return SchedulerResult(final_tree=trees[self._final_index], outcomes=ordered_outcomes)

    def _prepare_build_root(self) -> None:
        self._config.stages_root.mkdir(parents=True, exist_ok=True)
        self._config.logs_root.mkdir(parents=True, exist_ok=True)
        for stage in self._graph.stages:
            self._executor.log_path(stage.name).unlink(missing_ok=True)

    def _submit_ready(
        self,
        pool: ThreadPoolExecutor,
        pending: list[int],
        trees: dict[int, WorkTree],
        in_flight: dict[Future[_StageRun], int],
    ) -> None:
        for index in list(pending):
            if len(in_flight) >= self._config.max_parallel_stages:
                return
            producers = self._graph.producers_of(index)
            if not all(producer in trees for producer in producers):
                continue
            pending.remove(index)
            producer_trees = {producer: trees[producer] for producer in producers}
            in_flight[pool.submit(self._run_stage, index, producer_trees)] = index

    def _run_stage(self, index: int, producer_trees: dict[int, WorkTree]) -> _StageRun:
        """Build one stage in its own tree; runs on a worker thread."""
        stage = self._graph.stages[index]
        _LOGGER.info(
            "stage_started",
            stage_name=stage.name,
            base_environment=stage.base_environment,
            command_count=len(stage.commands),
        )
        tree: WorkTree | None = None
        try:
            tree = self._create_tree(stage)
            self._populate_tree(index, stage, tree, producer_trees)
        except KilnError as error:
            if tree is not None:
                tree.discard()
            _LOGGER.error("stage_failed", stage_name=stage.name, error=str(error))
            return _StageRun(
                outcome=StageOutcome(stage_name=stage.name, status="failed", error=str(error)),
                tree=None,
                error=error,
            )
        _LOGGER.info("stage_completed", stage_name=stage.name, work_tree=str(tree.root))
        return _StageRun(
            outcome=StageOutcome(stage_name=stage.name, status="succeeded", work_tree=tree.root),
            tree=tree,
            error=None,
        )

    def _create_tree(self, stage: StageSpec) -> WorkTree:
        try:
            return WorkTree.create(stage.name, self._config.stages_root)
        except (OSError, WorkTreeEscapeError) as error:
            raise StageCommandFailedError(
                stage.name, "prepare-work-tree", None, detail=str(error)
            ) from error

    def _populate_tree(
        self,
        index: int,
        stage: StageSpec,
        tree: WorkTree,
        producer_trees: dict[int, WorkTree],
    ) -> None:
        """Fetch sources, import artifacts, then run the stage commands."""
        phase = "fetch-sources"
        try:
            self._acquire_sources(stage, tree)
            phase = "import-artifacts"
            for row in self._graph.imports_for(index):
                import_edge(row.edge, producer_trees[row.producer], tree)
            phase = "commands"
            self._executor.run(stage, tree)
        except KilnError:
            raise
        except Exception as error:
            raise StageCommandFailedError(
                stage.name,
                phase,
                None,
                detail=f"unexpected {type(error).__name__}: {error}",
            ) from error

    def _acquire_sources(self, stage: StageSpec, tree: WorkTree) -> None:
        for source in stage.sources:
            acquirer = SourceAcquirer(
                source=source,
                destination=tree.resolve(source.path),
                fetcher=self._fetcher,
                max_attempts=source.max_attempts or self._config.fetch_attempts,
                backoff_seconds=(
                    self._config.fetch_backoff_seconds
                    if source.backoff_seconds is None
                    else source.backoff_seconds
                ),
                sleep=self._sleep,
                stage_name=stage.name,
            )
            acquirer.run()

    def _release_producers(
        self,
        consumer: int,
        trees: dict[int, WorkTree],
        remaining_consumers: dict[int, int],
    ) -> None:
        """Discard producer trees whose consumers have all completed."""
        for producer in self._graph.producers_of(consumer):
            remaining_consumers[producer] -= 1
            if remaining_consumers[producer] == 0:
                self._discard_tree(producer, trees)
        if remaining_consumers[consumer] == 0:
            self._discard_tree(consumer, trees)

    def _discard_tree(self, index: int, trees: dict[int, WorkTree]) -> None:
        if index == self._final_index or self._config.keep_work_trees:
            return
        tree = trees.get(index)
        if tree is None or not tree.exists():
            return
        tree.discard()
        _LOGGER.info("work_tree_discarded", stage_name=tree.stage_name)

    def _abort(
        self,
        failure: KilnError,
        outcomes: tuple[StageOutcome, ...],
        trees: dict[int, WorkTree],
    ) -> None:
        failed_stages = [row.stage_name for row in outcomes if row.status == "failed"]
        cancelled_stages = [row.stage_name for row in outcomes if row.status == "cancelled"]
        _LOGGER.error(
            "pipeline_failed",
            failed_stages=failed_stages,
            cancelled_stages=cancelled_stages,
            error=str(failure),
        )
        if self._config.keep_work_trees:
            return
        for tree in trees.values():
            tree.discard()
