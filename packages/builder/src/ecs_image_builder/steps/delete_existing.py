from __future__ import annotations

from dataclasses import dataclass

from ecs_image_builder.cloud import CloudClient, Image
from ecs_image_builder.cloud import waiters
from ecs_image_builder.core import BuilderError
from ecs_image_builder.core.config import DEFAULT_WAIT_TIMEOUT_S
from ecs_image_builder.pipeline import EventType, RunContext, StepAction, halt


@dataclass(slots=True)
class StepDeleteExistingImages:
    """Remove images (and optionally snapshots) already using the target name."""

    client: CloudClient
    region: str
    image_name: str
    destination_regions: tuple[str, ...] = ()
    delete_snapshots: bool = False
    timeout_s: int = DEFAULT_WAIT_TIMEOUT_S

    step_id: str = "delete_existing_images"

    def regions(self) -> list[str]:
        out = [self.region]
        out.extend(r for r in self.destination_regions if r not in out)
        return out

    def run(self, ctx: RunContext) -> StepAction:
        log = ctx.step_logger()
        for region in self.regions():
            try:
                images = self.client.describe_images(region, name=self.image_name)
            except BuilderError as e:
                return halt(ctx, e, f"Error querying alicloud images in {region}")

            for image in images:
                log.info("Deleting existing image", image_id=image.image_id, region=region)
                try:
                    self.delete(ctx, region, image)
                except BuilderError as e:
                    return halt(ctx, e, f"Failed to delete existing image {image.image_id}")
        return StepAction.CONTINUE

    def delete(self, ctx: RunContext, region: str, image: Image) -> None:
        ctx.poll(
            waiters.image_deleted(
                self.client, region, image.image_id, timeout_s=self.timeout_s, force=True
            )
        )
        ctx.emit(EventType.RESOURCE_DELETED, resource="image", resource_id=image.image_id)

        if not self.delete_snapshots:
            return
        for snapshot_id in image.snapshot_ids:
            ctx.poll(
                waiters.snapshot_deleted(
                    self.client, region, snapshot_id, timeout_s=self.timeout_s, force=True
                )
            )
            ctx.emit(EventType.RESOURCE_DELETED, resource="snapshot", resource_id=snapshot_id)

    def cleanup(self, ctx: RunContext) -> None:
        return
