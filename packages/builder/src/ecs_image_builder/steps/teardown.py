from __future__ import annotations

from dataclasses import dataclass

from ecs_image_builder.cloud import CloudClient
from ecs_image_builder.cloud import waiters
from ecs_image_builder.core.config import DEFAULT_WAIT_TIMEOUT_S
from ecs_image_builder.pipeline import RunContext, StepAction

from .common import delete_best_effort
from .create_instance import StepCreateInstance


@dataclass(slots=True)
class StepDeleteBuildInstance:
    """
    Delete the temporary build instance once the image exists.

    Takes ownership of the instance from the create step. A failed delete is
    reported as a cleanup warning; the image is already built so the run
    still succeeds.
    """

    instance_step: StepCreateInstance
    client: CloudClient
    region: str
    timeout_s: int = DEFAULT_WAIT_TIMEOUT_S

    step_id: str = "delete_build_instance"

    def run(self, ctx: RunContext) -> StepAction:
        instance_id = self.instance_step.release()
        if instance_id is None:
            return StepAction.CONTINUE

        ctx.step_logger().info("Deleting build instance", instance_id=instance_id)
        delete_best_effort(
            ctx,
            waiters.instance_deleted(
                self.client, self.region, instance_id, timeout_s=self.timeout_s
            ),
            resource="instance",
            resource_id=instance_id,
        )
        return StepAction.CONTINUE

    def cleanup(self, ctx: RunContext) -> None:
        return
