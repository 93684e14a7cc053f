from __future__ import annotations

from ecs_image_builder.core import BuilderError, CleanupError
from ecs_image_builder.pipeline import EventType, RunContext
from ecs_image_builder.polling import PollSpec


def delete_best_effort(
    ctx: RunContext,
    spec: PollSpec,
    *,
    resource: str,
    resource_id: str,
) -> bool:
    """
    Run a delete-and-retry wait; a failure becomes a cleanup warning.

    Returns True when the provider accepted the delete.
    """
    try:
        ctx.poll(spec, cancellable=False)
    except BuilderError as e:
        ctx.warn_cleanup(
            CleanupError(
                f"Failed to clean up {resource} {resource_id}: {e}",
                resource=resource,
                resource_id=resource_id,
            )
        )
        return False

    ctx.emit(EventType.RESOURCE_DELETED, resource=resource, resource_id=resource_id)
    ctx.step_logger().info("Deleted", resource=resource, resource_id=resource_id)
    return True


def should_compensate(ctx: RunContext) -> bool:
    """Build outputs are only removed when the run halted or was cancelled."""
    return ctx.halted or ctx.cancelled
