from __future__ import annotations

from enum import StrEnum

from ecs_image_builder.cloud.models import Image, Instance


class StateKey(StrEnum):
    SOURCE_IMAGE = "source_image"
    INSTANCE = "instance"
    IMAGE = "image"
    IMAGE_ID = "image_id"
    IMAGES = "images"
    SNAPSHOTS = "snapshots"
    SNAPSHOT_ID = "snapshot_id"


BUILD_STATE_CONTRACT: dict[str, type | tuple[type, ...]] = {
    StateKey.SOURCE_IMAGE: Image,
    StateKey.INSTANCE: Instance,
    StateKey.IMAGE: Image,
    StateKey.IMAGE_ID: str,
    StateKey.IMAGES: dict,
    StateKey.SNAPSHOTS: list,
    StateKey.SNAPSHOT_ID: str,
}
