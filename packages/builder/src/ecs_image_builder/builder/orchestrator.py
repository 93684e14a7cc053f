"""
Wires the image build steps and runs them through the pipeline runner.

The step sequence is fixed:

    pre_validate
    check_source_image
    create_instance
    delete_existing_images   (force_delete only)
    create_snapshot          (image_ignore_data_disks only)
    create_image
    region_copy_image        (destination regions only)
    delete_build_instance
"""

from __future__ import annotations

import threading
from typing import Any, Optional

from ecs_image_builder.cloud import CloudClient
from ecs_image_builder.core import ILogger
from ecs_image_builder.pipeline import (
    PipelineResult,
    PipelineRunner,
    RunnerConfig,
    StateBag,
    Step,
)
from ecs_image_builder.steps import (
    BUILD_STATE_CONTRACT,
    StateKey,
    StepCheckSourceImage,
    StepCreateImage,
    StepCreateInstance,
    StepCreateSnapshot,
    StepDeleteBuildInstance,
    StepDeleteExistingImages,
    StepPreValidate,
    StepRegionCopyImage,
)

from .config import BuildConfig


def build_steps(cfg: BuildConfig, client: CloudClient) -> list[Step]:
    destinations = tuple(cfg.destination_regions)
    t = cfg.timeouts

    instance_step = StepCreateInstance(
        client=client,
        region=cfg.region,
        instance_type=cfg.instance_type,
        source_image=cfg.source_image,
        security_group_id=cfg.network.security_group_id,
        instance_name=cfg.instance_name,
        zone_id=cfg.zone_id,
        vpc=cfg.vpc,
        vswitch_id=cfg.network.vswitch_id,
        user_data=cfg.user_data,
        user_data_file=cfg.user_data_file,
        internet_charge_type=cfg.internet_charge_type,
        internet_max_bandwidth_out=cfg.internet_max_bandwidth_out,
        io_optimized=cfg.io_optimized,
        password=cfg.password,
        system_disk=cfg.system_disk,
        data_disks=tuple(cfg.data_disks),
        wait_timeout_s=t.instance,
        cleanup_timeout_s=t.cleanup,
    )
    steps: list[Step] = [
        StepPreValidate(
            client=client,
            region=cfg.region,
            image_name=cfg.image_name,
            destination_regions=destinations,
            skip_region_validation=cfg.skip_region_validation,
            force_delete=cfg.force_delete,
        ),
        StepCheckSourceImage(client=client, region=cfg.region, source_image=cfg.source_image),
        instance_step,
    ]
    # existing images go only once the instance they are replaced from is Stopped
    if cfg.force_delete:
        steps.append(
            StepDeleteExistingImages(
                client=client,
                region=cfg.region,
                image_name=cfg.image_name,
                destination_regions=destinations,
                delete_snapshots=cfg.force_delete_snapshots,
                timeout_s=t.cleanup,
            )
        )
    if cfg.image_ignore_data_disks:
        steps.append(
            StepCreateSnapshot(
                client=client,
                region=cfg.region,
                snapshot_name=cfg.image_name,
                wait_timeout_s=t.image,
                cleanup_timeout_s=t.cleanup,
            )
        )
    steps.append(
        StepCreateImage(
            client=client,
            region=cfg.region,
            image_name=cfg.image_name,
            image_version=cfg.image_version,
            image_description=cfg.image_description,
            ignore_data_disks=cfg.image_ignore_data_disks,
            wait_timeout_s=t.image,
            cleanup_timeout_s=t.cleanup,
        )
    )
    if any(r != cfg.region for r in destinations):
        steps.append(
            StepRegionCopyImage(
                client=client,
                region=cfg.region,
                image_name=cfg.image_name,
                destination_regions=destinations,
                destination_names=tuple(cfg.destination_names),
                wait_timeout_s=t.copy_,
                cleanup_timeout_s=t.cleanup,
            )
        )
    steps.append(
        StepDeleteBuildInstance(
            instance_step=instance_step,
            client=client,
            region=cfg.region,
            timeout_s=t.cleanup,
        )
    )
    return steps


def collect_artifacts(state: StateBag) -> dict[str, Any]:
    return {
        "image_id": state.get(StateKey.IMAGE_ID),
        "images": dict(state.get(StateKey.IMAGES) or {}),
        "snapshots": list(state.get(StateKey.SNAPSHOTS) or []),
    }


def build_image(
    cfg: BuildConfig,
    client: CloudClient,
    *,
    runner_cfg: RunnerConfig | None = None,
    logger: ILogger | None = None,
    cancel: threading.Event | None = None,
    run_id: Optional[str] = None,
    steps: list[Step] | None = None,
    meta: dict[str, Any] | None = None,
) -> PipelineResult:
    """
    Build one image from `cfg`.

    `steps` replaces the default sequence; callers use it to wrap steps (the
    CLI shows a spinner per step) without changing what they do.
    """
    runner = PipelineRunner(
        steps=steps if steps is not None else build_steps(cfg, client),
        cfg=runner_cfg,
        logger=logger,
        state_contract=BUILD_STATE_CONTRACT,
        collect_artifacts=collect_artifacts,
    )
    return runner.run(
        run_id=run_id,
        cancel=cancel,
        meta={
            "region": cfg.region,
            "image_name": cfg.image_name,
            "destination_regions": list(cfg.destination_regions),
            **(meta or {}),
        },
    )
