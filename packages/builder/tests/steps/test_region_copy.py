from __future__ import annotations

from ecs_image_builder.cloud import CopyImageRequest, InMemoryCloud, cloud_error
from ecs_image_builder.pipeline import CoreKey, RunContext, StepAction
from ecs_image_builder.steps import StateKey, StepRegionCopyImage


def _seed(ctx: RunContext, cloud: InMemoryCloud) -> str:
    image_id = cloud.add_existing_image("cn-hangzhou", "my-image")
    ctx.state.put(StateKey.IMAGE_ID, image_id)
    ctx.state.put(StateKey.IMAGES, {"cn-hangzhou": image_id})
    return image_id


def test_copies_to_each_destination(ctx: RunContext, cloud: InMemoryCloud) -> None:
    image_id = _seed(ctx, cloud)
    step = StepRegionCopyImage(
        client=cloud,
        region="cn-hangzhou",
        image_name="my-image",
        destination_regions=("cn-beijing", "cn-hangzhou", "cn-shanghai"),
        destination_names=("bj-image",),
    )

    assert step.run(ctx) is StepAction.CONTINUE

    images = ctx.state[StateKey.IMAGES]
    assert set(images) == {"cn-hangzhou", "cn-beijing", "cn-shanghai"}
    assert images["cn-hangzhou"] == image_id
    assert cloud.count("copy_image") == 2
    assert cloud.describe_image("cn-beijing", images["cn-beijing"]).image_name == "bj-image"
    assert cloud.describe_image("cn-shanghai", images["cn-shanghai"]).image_name == "my-image"


def test_all_copies_start_before_waiting(ctx: RunContext, cloud: InMemoryCloud) -> None:
    _seed(ctx, cloud)
    step = StepRegionCopyImage(
        client=cloud,
        region="cn-hangzhou",
        image_name="my-image",
        destination_regions=("cn-beijing", "cn-shanghai"),
    )

    assert step.run(ctx) is StepAction.CONTINUE

    names = [n for n, _ in cloud.calls if n in ("copy_image", "describe_image")]
    assert names[:2] == ["copy_image", "copy_image"]


def test_copy_error_halts_and_cleanup_removes_started_copies(
    ctx: RunContext, cloud: InMemoryCloud
) -> None:
    class _NoShanghai(InMemoryCloud):
        def copy_image(self, req: CopyImageRequest) -> str:
            if req.destination_region_id == "cn-shanghai":
                raise cloud_error(code="InvalidRegionId.Malformed", message="bad region")
            return super().copy_image(req)

    flaky = _NoShanghai()
    _seed(ctx, flaky)
    step = StepRegionCopyImage(
        client=flaky,
        region="cn-hangzhou",
        image_name="my-image",
        destination_regions=("cn-beijing", "cn-shanghai"),
    )

    assert step.run(ctx) is StepAction.HALT
    bj_copy = step.copies["cn-beijing"]

    ctx.state.put(CoreKey.HALTED, True)
    step.cleanup(ctx)

    assert flaky.count("cancel_copy_image") == 1
    assert flaky.describe_image("cn-beijing", bj_copy) is None
    assert step.copies == {}
    assert ctx.cleanup_warnings == []


def test_cleanup_without_halt_keeps_copies(ctx: RunContext, cloud: InMemoryCloud) -> None:
    _seed(ctx, cloud)
    step = StepRegionCopyImage(
        client=cloud,
        region="cn-hangzhou",
        image_name="my-image",
        destination_regions=("cn-beijing",),
    )
    assert step.run(ctx) is StepAction.CONTINUE

    step.cleanup(ctx)

    assert cloud.count("cancel_copy_image") == 0
    assert cloud.count("delete_image") == 0
