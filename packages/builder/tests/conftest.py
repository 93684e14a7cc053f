from __future__ import annotations

import threading

import pytest
from ecs_image_builder.cloud import InMemoryCloud, SimulationProfile
from ecs_image_builder.core import get_logger
from ecs_image_builder.pipeline import RunContext, RunnerConfig, StateBag
from ecs_image_builder.steps import BUILD_STATE_CONTRACT


def _no_sleep(_: float) -> None:
    return None


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def ctx(sleeps: list[float]) -> RunContext:
    return RunContext(
        run_id="test-run",
        logger=get_logger("test"),
        state=StateBag(BUILD_STATE_CONTRACT),
        cancel=threading.Event(),
        poll_interval_s=5,
        sleep=sleeps.append,
    )


@pytest.fixture
def runner_cfg() -> RunnerConfig:
    return RunnerConfig(poll_interval_s=5, sleep=_no_sleep)


@pytest.fixture
def cloud() -> InMemoryCloud:
    cloud = InMemoryCloud(profile=SimulationProfile())
    cloud.add_existing_image("cn-hangzhou", "ubuntu_22_04", image_id="ubuntu_22_04_x64")
    return cloud
