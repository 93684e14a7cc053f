from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from ecs_image_builder.cloud import CloudApiError, CloudClient, CopyImageRequest
from ecs_image_builder.cloud import waiters
from ecs_image_builder.core import BuilderError
from ecs_image_builder.core.config import DEFAULT_WAIT_TIMEOUT_S
from ecs_image_builder.pipeline import EventType, RunContext, StepAction, halt

from .common import delete_best_effort, should_compensate
from .keys import StateKey


@dataclass(slots=True)
class StepRegionCopyImage:
    """
    Copy the built image to every destination region.

    All copies are started before any is waited on. Copies that were started
    are cancelled and deleted when the run is stopped.
    """

    client: CloudClient
    region: str
    image_name: str
    destination_regions: tuple[str, ...] = ()
    destination_names: tuple[str, ...] = ()
    wait_timeout_s: int = DEFAULT_WAIT_TIMEOUT_S
    cleanup_timeout_s: int = DEFAULT_WAIT_TIMEOUT_S

    step_id: str = "region_copy_image"
    # destination region -> copied image id
    copies: dict[str, str] = field(default_factory=dict)

    def destination_name(self, idx: int) -> Optional[str]:
        if idx < len(self.destination_names) and self.destination_names[idx]:
            return self.destination_names[idx]
        return self.image_name

    def run(self, ctx: RunContext) -> StepAction:
        log = ctx.step_logger()
        try:
            image_id = ctx.state.require(StateKey.IMAGE_ID, str)
        except (KeyError, TypeError) as e:
            return halt(ctx, e)

        images: dict[str, str] = dict(ctx.state.get(StateKey.IMAGES) or {})

        for idx, dest in enumerate(self.destination_regions):
            if dest == self.region:
                continue
            log.info("Copying image", image_id=image_id, destination=dest)
            req = CopyImageRequest(
                region_id=self.region,
                image_id=image_id,
                destination_region_id=dest,
                destination_image_name=self.destination_name(idx),
            )
            try:
                self.copies[dest] = self.client.copy_image(req)
            except BuilderError as e:
                return halt(ctx, e, f"Error copying image to {dest}")
            ctx.emit(
                EventType.RESOURCE_CREATED,
                resource="image",
                resource_id=self.copies[dest],
                region=dest,
            )

        for dest, copy_id in self.copies.items():
            log.info("Waiting for image copy", image_id=copy_id, destination=dest)
            try:
                ctx.poll(
                    waiters.image_ready(
                        self.client, dest, copy_id, timeout_s=self.wait_timeout_s
                    )
                )
            except BuilderError as e:
                return halt(ctx, e, f"Timeout waiting for image copy in {dest}")
            ctx.emit(EventType.RESOURCE_READY, resource="image", resource_id=copy_id, region=dest)
            images[dest] = copy_id

        ctx.state.put(StateKey.IMAGES, images)
        return StepAction.CONTINUE

    def cleanup(self, ctx: RunContext) -> None:
        if not self.copies or not should_compensate(ctx):
            return

        log = ctx.step_logger()
        log.info("Stopping copy image because of cancellation or error", copies=self.copies)
        for dest, copy_id in list(self.copies.items()):
            try:
                self.client.cancel_copy_image(dest, copy_id)
            except CloudApiError as e:
                # finished copies cannot be cancelled; deleting them is enough
                log.debug("Cancel copy image failed", image_id=copy_id, region=dest, code=e.code)

            delete_best_effort(
                ctx,
                waiters.image_deleted(
                    self.client, dest, copy_id, timeout_s=self.cleanup_timeout_s, force=True
                ),
                resource="image",
                resource_id=copy_id,
            )
            del self.copies[dest]
