from __future__ import annotations

from dataclasses import dataclass

from ecs_image_builder.cloud import CloudClient
from ecs_image_builder.core import BuilderError, ConfigurationError
from ecs_image_builder.pipeline import RunContext, StepAction, halt

from .keys import StateKey


@dataclass(slots=True)
class StepCheckSourceImage:
    client: CloudClient
    region: str
    source_image: str

    step_id: str = "check_source_image"

    def run(self, ctx: RunContext) -> StepAction:
        try:
            image = self.client.describe_image(self.region, self.source_image)
        except BuilderError as e:
            return halt(ctx, e, "Error querying source image")

        if image is None:
            err = ConfigurationError(
                f"No alicloud image was found matching: {self.source_image} in {self.region}"
            )
            return halt(ctx, err)

        ctx.step_logger().info(
            "Found source image", image_id=image.image_id, image_name=image.image_name
        )
        ctx.state.put(StateKey.SOURCE_IMAGE, image)
        return StepAction.CONTINUE

    def cleanup(self, ctx: RunContext) -> None:
        return
