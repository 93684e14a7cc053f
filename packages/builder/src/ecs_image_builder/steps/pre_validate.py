from __future__ import annotations

from dataclasses import dataclass

from ecs_image_builder.cloud import CloudClient
from ecs_image_builder.core import BuilderError, ConfigurationError, ValidationErrors
from ecs_image_builder.pipeline import EventType, RunContext, StepAction, halt


@dataclass(slots=True)
class StepPreValidate:
    """
    Checks that need no resources: regions exist, the image name is free.

    Both checks always run so one invocation reports every problem.
    """

    client: CloudClient
    region: str
    image_name: str
    destination_regions: tuple[str, ...] = ()
    skip_region_validation: bool = False
    force_delete: bool = False

    step_id: str = "pre_validate"

    def run(self, ctx: RunContext) -> StepAction:
        log = ctx.step_logger()
        errs: list[BaseException] = []

        if self.skip_region_validation:
            log.info("Skip region validation flag found, skipping prevalidating regions")
        else:
            log.info("Prevalidating regions", regions=[self.region, *self.destination_regions])
            errs.extend(self.validate_regions())

        if self.force_delete:
            log.info("Force delete flag found, skipping prevalidating image name")
        else:
            log.info("Prevalidating image name", image_name=self.image_name)
            errs.extend(self.validate_image_name())

        ctx.emit(EventType.VALIDATE_FINISH, errors=len(errs))
        if errs:
            return halt(ctx, ValidationErrors(errs), "Pre-validation failed")
        return StepAction.CONTINUE

    def validate_regions(self) -> list[ConfigurationError]:
        try:
            supported = {r.region_id for r in self.client.describe_regions()}
        except BuilderError as e:
            return [ConfigurationError(f"Unable to query supported regions: {e}")]

        return [
            ConfigurationError(f"Not a valid alicloud region: {region}")
            for region in dict.fromkeys((self.region, *self.destination_regions))
            if region not in supported
        ]

    def validate_image_name(self) -> list[ConfigurationError]:
        try:
            images = self.client.describe_images(self.region, name=self.image_name)
        except BuilderError as e:
            return [ConfigurationError(f"Error querying alicloud image: {e}")]

        if images:
            return [
                ConfigurationError(
                    f"Image name {self.image_name!r} is used by an existing "
                    f"alicloud image: {images[0].image_id}"
                )
            ]
        return []

    def cleanup(self, ctx: RunContext) -> None:
        return
