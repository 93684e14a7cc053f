from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ecs_image_builder.cloud import CloudClient, CreateImageRequest, Image, Instance
from ecs_image_builder.cloud import waiters
from ecs_image_builder.core import BuilderError, new_client_token
from ecs_image_builder.core.config import DEFAULT_WAIT_TIMEOUT_S
from ecs_image_builder.pipeline import EventType, RunContext, StepAction, halt

from .common import delete_best_effort, should_compensate
from .keys import StateKey


@dataclass(slots=True)
class StepCreateImage:
    client: CloudClient
    region: str
    image_name: str
    image_version: Optional[str] = None
    image_description: Optional[str] = None
    ignore_data_disks: bool = False
    wait_timeout_s: int = DEFAULT_WAIT_TIMEOUT_S
    cleanup_timeout_s: int = DEFAULT_WAIT_TIMEOUT_S

    step_id: str = "create_image"
    image_id: Optional[str] = None
    image: Optional[Image] = None

    def run(self, ctx: RunContext) -> StepAction:
        log = ctx.step_logger()
        log.info("Creating image", image_name=self.image_name)

        try:
            instance = ctx.state.require(StateKey.INSTANCE, Instance)
        except (KeyError, TypeError) as e:
            return halt(ctx, e)

        source: dict[str, str] = {"instance_id": instance.instance_id}
        if self.ignore_data_disks:
            # system disk only: build from its snapshot instead of the instance
            try:
                source = {"snapshot_id": ctx.state.require(StateKey.SNAPSHOT_ID, str)}
            except (KeyError, TypeError) as e:
                return halt(ctx, e)

        req = CreateImageRequest(
            client_token=new_client_token(),
            region_id=self.region,
            image_name=self.image_name,
            image_version=self.image_version,
            description=self.image_description,
            **source,
        )
        try:
            attempt = ctx.poll(
                waiters.image_created(self.client, req, timeout_s=self.wait_timeout_s)
            )
        except BuilderError as e:
            return halt(ctx, e, "Error creating image")
        self.image_id = attempt.resource_id

        ctx.emit(EventType.RESOURCE_CREATED, resource="image", resource_id=self.image_id)

        try:
            self.image = ctx.poll(
                waiters.image_ready(
                    self.client, self.region, self.image_id, timeout_s=self.wait_timeout_s
                )
            )
        except BuilderError as e:
            return halt(ctx, e, "Timeout waiting for image to be created")

        ctx.emit(EventType.RESOURCE_READY, resource="image", resource_id=self.image_id)
        log.info("Image ready", image_id=self.image_id, snapshots=self.image.snapshot_ids)

        ctx.state.put(StateKey.IMAGE, self.image)
        ctx.state.put(StateKey.IMAGE_ID, self.image_id)
        ctx.state.put(StateKey.SNAPSHOTS, list(self.image.snapshot_ids))
        ctx.state.put(StateKey.IMAGES, {self.region: self.image_id})
        return StepAction.CONTINUE

    def cleanup(self, ctx: RunContext) -> None:
        if self.image_id is None or not should_compensate(ctx):
            return

        image_id = self.image_id
        ctx.step_logger().info(
            "Deleting the image because of cancellation or error", image_id=image_id
        )
        deleted = delete_best_effort(
            ctx,
            waiters.image_deleted(
                self.client, self.region, image_id, timeout_s=self.cleanup_timeout_s
            ),
            resource="image",
            resource_id=image_id,
        )
        self.image_id = None

        # snapshots outlive their image and cannot be deleted while it exists
        if deleted and self.image is not None:
            for snapshot_id in self.image.snapshot_ids:
                delete_best_effort(
                    ctx,
                    waiters.snapshot_deleted(
                        self.client,
                        self.region,
                        snapshot_id,
                        timeout_s=self.cleanup_timeout_s,
                        force=True,
                    ),
                    resource="snapshot",
                    resource_id=snapshot_id,
                )
