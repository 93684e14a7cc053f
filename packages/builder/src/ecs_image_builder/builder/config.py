from __future__ import annotations

import json
from enum import StrEnum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from ecs_image_builder.cloud import DiskMapping
from ecs_image_builder.core import ConfigurationError
from ecs_image_builder.core.config import DEFAULT_WAIT_TIMEOUT_S


class NetworkMode(StrEnum):
    CLASSIC = "classic"
    VPC = "vpc"


class NetworkConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    mode: NetworkMode = NetworkMode.CLASSIC
    security_group_id: Optional[str] = None
    vswitch_id: Optional[str] = None

    @model_validator(mode="after")
    def _vpc_needs_vswitch(self) -> "NetworkConfig":
        if self.mode is NetworkMode.VPC and not self.vswitch_id:
            raise ValueError("network.vswitch_id is required in vpc mode")
        return self


class TimeoutsConfig(BaseModel):
    """Seconds. Zero or negative values fall back to the poll default."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    instance: int = 1800
    image: int = 3600
    copy_: int = Field(default=3600, alias="copy")
    cleanup: int = DEFAULT_WAIT_TIMEOUT_S


class BuildConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    region: str
    image_name: str = Field(min_length=2, max_length=128)
    image_version: Optional[str] = None
    image_description: Optional[str] = None
    # build the image from the system disk snapshot only
    image_ignore_data_disks: bool = False
    source_image: str
    instance_type: str
    instance_name: Optional[str] = None
    zone_id: Optional[str] = None
    io_optimized: bool = False
    internet_charge_type: Optional[str] = None
    internet_max_bandwidth_out: Optional[int] = Field(default=None, ge=0)
    network: NetworkConfig = Field(default_factory=NetworkConfig)
    user_data: Optional[str] = None
    user_data_file: Optional[Path] = None
    password: Optional[str] = None
    system_disk: DiskMapping = Field(default_factory=DiskMapping)
    data_disks: list[DiskMapping] = Field(default_factory=list)

    destination_regions: list[str] = Field(default_factory=list)
    destination_names: list[str] = Field(default_factory=list)

    skip_region_validation: bool = False
    force_delete: bool = False
    force_delete_snapshots: bool = False

    timeouts: TimeoutsConfig = Field(default_factory=TimeoutsConfig)

    @model_validator(mode="after")
    def _check(self) -> "BuildConfig":
        if len(self.destination_names) > len(self.destination_regions):
            raise ValueError("destination_names is longer than destination_regions")
        if len(set(self.destination_regions)) != len(self.destination_regions):
            raise ValueError("destination_regions contains duplicates")
        if self.user_data and self.user_data_file:
            raise ValueError("only one of user_data and user_data_file may be set")
        if self.force_delete_snapshots and not self.force_delete:
            raise ValueError("force_delete_snapshots requires force_delete")
        return self

    @property
    def vpc(self) -> bool:
        return self.network.mode is NetworkMode.VPC


def load_build_config(path: Path, *, region: Optional[str] = None) -> BuildConfig:
    """
    Read and validate a JSON build config.

    `region` overrides the file's region (CLI --region).
    """
    path = Path(path)
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Cannot read build config {path}: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigurationError(f"Build config {path} must be a JSON object")
    if region:
        raw["region"] = region

    try:
        return BuildConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid build config {path}:\n{e}") from e
