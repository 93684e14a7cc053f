from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ecs_image_builder.cloud import CloudClient, CreateSnapshotRequest, DiskType, Instance
from ecs_image_builder.cloud import waiters
from ecs_image_builder.core import BuilderError, new_client_token
from ecs_image_builder.core.config import DEFAULT_WAIT_TIMEOUT_S
from ecs_image_builder.pipeline import EventType, RunContext, StepAction, halt

from .common import delete_best_effort, should_compensate
from .keys import StateKey


@dataclass(slots=True)
class StepCreateSnapshot:
    """
    Snapshot the build instance's system disk.

    Only wired when data disks are left out of the image; the image is then
    created from this snapshot.
    """

    client: CloudClient
    region: str
    snapshot_name: Optional[str] = None
    wait_timeout_s: int = DEFAULT_WAIT_TIMEOUT_S
    cleanup_timeout_s: int = DEFAULT_WAIT_TIMEOUT_S

    step_id: str = "create_snapshot"
    snapshot_id: Optional[str] = None

    def run(self, ctx: RunContext) -> StepAction:
        log = ctx.step_logger()

        try:
            instance = ctx.state.require(StateKey.INSTANCE, Instance)
        except (KeyError, TypeError) as e:
            return halt(ctx, e)

        try:
            disks = self.client.describe_instance_disks(
                self.region, instance.instance_id, disk_type=DiskType.SYSTEM.value
            )
        except BuilderError as e:
            return halt(ctx, e, "Error querying the system disk")
        if not disks:
            return halt(
                ctx,
                BuilderError(f"instance {instance.instance_id} has no system disk"),
                "Error querying the system disk",
            )

        disk_id = disks[0].disk_id
        log.info("Creating snapshot", disk_id=disk_id)
        req = CreateSnapshotRequest(
            client_token=new_client_token(),
            region_id=self.region,
            disk_id=disk_id,
            snapshot_name=self.snapshot_name,
        )
        try:
            attempt = ctx.poll(
                waiters.snapshot_created(self.client, req, timeout_s=self.wait_timeout_s)
            )
        except BuilderError as e:
            return halt(ctx, e, "Error creating snapshot")
        self.snapshot_id = attempt.resource_id

        ctx.emit(EventType.RESOURCE_CREATED, resource="snapshot", resource_id=self.snapshot_id)

        try:
            ctx.poll(
                waiters.snapshot_ready(
                    self.client, self.region, self.snapshot_id, timeout_s=self.wait_timeout_s
                )
            )
        except BuilderError as e:
            return halt(ctx, e, "Timeout waiting for snapshot to be created")

        ctx.emit(EventType.RESOURCE_READY, resource="snapshot", resource_id=self.snapshot_id)
        ctx.state.put(StateKey.SNAPSHOT_ID, self.snapshot_id)
        return StepAction.CONTINUE

    def cleanup(self, ctx: RunContext) -> None:
        if self.snapshot_id is None or not should_compensate(ctx):
            return

        snapshot_id, self.snapshot_id = self.snapshot_id, None
        ctx.step_logger().info(
            "Deleting the snapshot because of cancellation or error", snapshot_id=snapshot_id
        )
        delete_best_effort(
            ctx,
            waiters.snapshot_deleted(
                self.client, self.region, snapshot_id, timeout_s=self.cleanup_timeout_s, force=True
            ),
            resource="snapshot",
            resource_id=snapshot_id,
        )
