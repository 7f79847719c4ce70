"""End-to-end pipeline driver.

Schedules every stage, provisions the final stage's tree when the
pipeline declares a runtime layout, and records the image manifest.
"""

from __future__ import annotations

from typing import Callable

from core.config import KilnConfig
from core.logging_config import get_logger
from core.types import PipelineResult, PipelineSpec
from fetch.git_fetcher import SourceFetcher
from provision.image_manifest import build_image_manifest, write_image_manifest
from provision.ownership import OwnershipApplier
from provision.provisioner import RuntimeProvisioner
from stages.command_runner import CommandRunner
from stages.scheduler import PipelineScheduler
from stages.stage_executor import StageExecutor
from stages.stage_graph import StageGraph

_LOGGER = get_logger(__name__)


def build_image(
    spec: PipelineSpec,
    config: KilnConfig,
    runner: CommandRunner | None = None,
    fetcher: SourceFetcher | None = None,
    ownership: OwnershipApplier | None = None,
    sleep: Callable[[float], None] | None = None,
) -> PipelineResult:
    """Build *spec* into a runtime image under ``config.build_root``.

    Args:
        spec: Validated pipeline definition.
        config: Runtime configuration.
        runner: Optional command runner override.
        fetcher: Optional source fetcher override.
        ownership: Optional ownership applier override.
        sleep: Optional sleep function used between fetch attempts.

    Returns:
        Final image root, manifest path, and per-stage outcomes.

    Raises:
        KilnError: The first stage or provisioning failure.
    """
    graph = StageGraph.from_spec(spec)
    _LOGGER.info(
        "pipeline_started",
        pipeline_name=spec.name,
        stage_count=len(spec.stages),
        batches=graph.batch_names(),
        build_root=str(config.build_root),
    )
    executor = StageExecutor(config.logs_root, config.jobs, runner=runner)
    scheduler = PipelineScheduler(
        graph,
        spec.final_stage,
        config,
        executor,
        fetcher=fetcher,
        sleep=sleep,
    )
    scheduled = scheduler.run()
    manifest_path = None
    if spec.runtime is not None:
        provisioner = RuntimeProvisioner(
            spec.runtime,
            overwrite_config=config.overwrite_runtime_config,
            ownership=ownership,
        )
        provisioner.provision(scheduled.final_tree)
        manifest = build_image_manifest(spec.name, spec.runtime)
        manifest_path = write_image_manifest(config.build_root, manifest)
    _LOGGER.info(
        "pipeline_completed",
        pipeline_name=spec.name,
        image_root=str(scheduled.final_tree.root),
        image_manifest=str(manifest_path) if manifest_path else None,
    )
    return PipelineResult(
        image_root=scheduled.final_tree.root,
        image_manifest_path=manifest_path,
        outcomes=scheduled.outcomes,
    )
