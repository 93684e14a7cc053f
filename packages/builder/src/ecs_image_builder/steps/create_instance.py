from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from ecs_image_builder.cloud import (
    CloudClient,
    CreateInstanceRequest,
    DiskMapping,
    Image,
    Instance,
    InstanceStatus,
    IOOptimized,
)
from ecs_image_builder.cloud import waiters
from ecs_image_builder.core import BuilderError, new_client_token
from ecs_image_builder.core.config import DEFAULT_WAIT_TIMEOUT_S
from ecs_image_builder.pipeline import EventType, RunContext, StepAction, halt

from .common import delete_best_effort
from .keys import StateKey

DEFAULT_INTERNET_CHARGE_TYPE = "PayByTraffic"
DEFAULT_INTERNET_MAX_BANDWIDTH_OUT = 5


@dataclass(slots=True)
class StepCreateInstance:
    """
    Launch the temporary build instance and wait until it is Stopped.

    The instance id is owned from the moment CreateInstance returns, so a
    failed wait still leaves something for `cleanup` to delete.
    """

    client: CloudClient
    region: str
    instance_type: str
    source_image: str
    security_group_id: Optional[str] = None
    instance_name: Optional[str] = None
    zone_id: Optional[str] = None
    vpc: bool = False
    vswitch_id: Optional[str] = None
    user_data: Optional[str] = None
    user_data_file: Optional[Path] = None
    internet_charge_type: Optional[str] = None
    internet_max_bandwidth_out: Optional[int] = None
    io_optimized: bool = False
    password: Optional[str] = None
    system_disk: DiskMapping = field(default_factory=DiskMapping)
    data_disks: tuple[DiskMapping, ...] = ()
    wait_timeout_s: int = DEFAULT_WAIT_TIMEOUT_S
    cleanup_timeout_s: int = DEFAULT_WAIT_TIMEOUT_S

    step_id: str = "create_instance"
    instance_id: Optional[str] = None
    instance: Optional[Instance] = None

    def build_request(self, ctx: RunContext) -> CreateInstanceRequest:
        source = ctx.state.get(StateKey.SOURCE_IMAGE)
        image_id = source.image_id if isinstance(source, Image) else self.source_image

        charge_type = self.internet_charge_type
        bandwidth = self.internet_max_bandwidth_out
        user_data = None
        if self.vpc:
            user_data = self.read_user_data()
        else:
            charge_type = charge_type or DEFAULT_INTERNET_CHARGE_TYPE
            bandwidth = bandwidth or DEFAULT_INTERNET_MAX_BANDWIDTH_OUT

        return CreateInstanceRequest(
            client_token=new_client_token(),
            region_id=self.region,
            instance_type=self.instance_type,
            image_id=image_id,
            security_group_id=self.security_group_id,
            instance_name=self.instance_name,
            zone_id=self.zone_id,
            vswitch_id=self.vswitch_id if self.vpc else None,
            user_data=user_data,
            internet_charge_type=charge_type,
            internet_max_bandwidth_out=bandwidth,
            io_optimized=IOOptimized.OPTIMIZED if self.io_optimized else IOOptimized.NONE,
            password=self.password,
            system_disk=self.system_disk,
            data_disks=list(self.data_disks),
        )

    def read_user_data(self) -> Optional[str]:
        if self.user_data_file is not None:
            return Path(self.user_data_file).read_text(encoding="utf-8")
        return self.user_data

    def run(self, ctx: RunContext) -> StepAction:
        log = ctx.step_logger()
        log.info("Creating instance", instance_type=self.instance_type, region=self.region)

        try:
            req = self.build_request(ctx)
        except (OSError, ValueError) as e:
            return halt(ctx, e, "Invalid instance request")

        try:
            self.instance_id = self.client.create_instance(req)
        except BuilderError as e:
            return halt(ctx, e, "Error creating instance")

        ctx.emit(EventType.RESOURCE_CREATED, resource="instance", resource_id=self.instance_id)
        log.info("Instance created, waiting for it to stop", instance_id=self.instance_id)

        try:
            self.instance = ctx.poll(
                waiters.instance_status(
                    self.client,
                    self.region,
                    self.instance_id,
                    InstanceStatus.STOPPED,
                    timeout_s=self.wait_timeout_s,
                )
            )
        except BuilderError as e:
            return halt(ctx, e, "Error waiting create instance")

        ctx.emit(EventType.RESOURCE_READY, resource="instance", resource_id=self.instance_id)
        ctx.state.put(StateKey.INSTANCE, self.instance)
        return StepAction.CONTINUE

    def release(self) -> Optional[str]:
        """Hand the instance over to another step; this step stops owning it."""
        instance_id, self.instance_id = self.instance_id, None
        return instance_id

    def cleanup(self, ctx: RunContext) -> None:
        if self.instance_id is None:
            return

        instance_id = self.instance_id
        ctx.step_logger().info(
            "Deleting instance because of cancellation or error", instance_id=instance_id
        )
        delete_best_effort(
            ctx,
            waiters.instance_deleted(
                self.client, self.region, instance_id, timeout_s=self.cleanup_timeout_s
            ),
            resource="instance",
            resource_id=instance_id,
        )
        self.instance_id = None
