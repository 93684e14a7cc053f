from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest
from ecs_image_builder import cli
from ecs_image_builder.core import load_settings


@pytest.fixture(autouse=True)
def _settings(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("ECS_IMAGE_BUILDER_RUN_ROOT", str(tmp_path / "runs"))
    load_settings.cache_clear()
    yield
    load_settings.cache_clear()


def _write_config(tmp_path: Path, **overrides: Any) -> Path:
    raw: dict[str, Any] = {
        "region": "cn-hangzhou",
        "image_name": "my-image",
        "source_image": "ubuntu_22_04_x64",
        "instance_type": "ecs.n1.tiny",
        "destination_regions": ["cn-beijing"],
    }
    raw.update(overrides)
    path = tmp_path / "build.json"
    path.write_text(json.dumps(raw), encoding="utf-8")
    return path


def test_simulated_build_succeeds(tmp_path: Path) -> None:
    path = _write_config(tmp_path)

    code = cli.main(["build", "--config", str(path), "--simulate", "--run-id", "sim1"])

    assert code == 0
    report = json.loads((tmp_path / "runs" / "sim1" / "run_report.json").read_text("utf-8"))
    assert report["status"] == "success"
    assert set(report["artifacts"]["images"]) == {"cn-hangzhou", "cn-beijing"}
    assert report["meta"]["provenance"]["run_id"] == "sim1"
    assert report["meta"]["simulate"] is True


def test_validate_runs_only_prevalidation(tmp_path: Path) -> None:
    path = _write_config(tmp_path)

    code = cli.main(["validate", "--config", str(path), "--simulate", "--run-id", "v1"])

    assert code == 0
    report = json.loads((tmp_path / "runs" / "v1" / "run_report.json").read_text("utf-8"))
    assert [s["step"] for s in report["steps"]] == ["pre_validate"]


def test_invalid_destination_is_a_configuration_error(tmp_path: Path) -> None:
    path = _write_config(tmp_path, destination_regions=["xx-nowhere-1"])

    code = cli.main(["validate", "--config", str(path), "--simulate", "--run-id", "v2"])

    assert code == 2
    report = json.loads((tmp_path / "runs" / "v2" / "run_report.json").read_text("utf-8"))
    assert report["error"]["exc_type"] == "ValidationErrors"


def test_region_override_is_used(tmp_path: Path) -> None:
    path = _write_config(tmp_path, destination_regions=[])

    code = cli.main(
        ["build", "--config", str(path), "--simulate", "--region", "cn-shanghai", "--run-id", "r"]
    )

    assert code == 0
    report = json.loads((tmp_path / "runs" / "r" / "run_report.json").read_text("utf-8"))
    assert list(report["artifacts"]["images"]) == ["cn-shanghai"]


def test_missing_config_exits_with_two(tmp_path: Path) -> None:
    assert cli.main(["build", "--config", str(tmp_path / "nope.json"), "--simulate"]) == 2


def test_missing_credentials_exit_with_two(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.delenv("ALICLOUD_ACCESS_KEY", raising=False)
    monkeypatch.delenv("ALICLOUD_SECRET_KEY", raising=False)
    path = _write_config(tmp_path)

    assert cli.main(["build", "--config", str(path)]) == 2
