from __future__ import annotations

import pytest
from ecs_image_builder.cloud import Instance
from ecs_image_builder.pipeline import CoreKey, StateBag
from ecs_image_builder.steps import BUILD_STATE_CONTRACT, StateKey


def test_contract_rejects_wrong_type() -> None:
    bag = StateBag(BUILD_STATE_CONTRACT)

    with pytest.raises(TypeError):
        bag.put(StateKey.IMAGE_ID, 123)
    with pytest.raises(TypeError):
        bag[StateKey.INSTANCE] = {"InstanceId": "i-1"}

    bag.put(StateKey.IMAGE_ID, "m-1")
    assert bag[StateKey.IMAGE_ID] == "m-1"


def test_keys_outside_contract_keep_first_type() -> None:
    bag = StateBag()
    bag.put("attempts", 1)
    bag.put("attempts", 2)

    with pytest.raises(TypeError):
        bag.put("attempts", "three")


def test_require_distinguishes_missing_and_mistyped() -> None:
    bag = StateBag()
    bag.put("instance", "i-1")

    with pytest.raises(KeyError):
        bag.require("image", str)
    with pytest.raises(TypeError):
        bag.require("instance", Instance)
    assert bag.require("instance", str) == "i-1"


def test_core_keys_are_typed() -> None:
    bag = StateBag()

    with pytest.raises(TypeError):
        bag.put(CoreKey.ERROR, "boom")
    bag.put(CoreKey.ERROR, RuntimeError("boom"))
    bag.put(CoreKey.HALTED, True)

    assert bag.flag(CoreKey.HALTED)
    assert not bag.flag(CoreKey.CANCELLED)
    assert "error" in bag
