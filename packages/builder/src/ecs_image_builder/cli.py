from __future__ import annotations

import argparse
import signal
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

from ecs_image_builder.builder import BuildConfig, build_image, build_steps, load_build_config
from ecs_image_builder.cloud import CloudClient, EcsRpcClient, InMemoryCloud, SimulationProfile
from ecs_image_builder.cloud.inmemory import DEFAULT_REGIONS
from ecs_image_builder.core import (
    AccessConfig,
    ConfigurationError,
    RunProvenance,
    bind,
    configure_logging,
    get_logger,
    load_settings,
    new_run_id,
    utc_now_iso,
)
from ecs_image_builder.pipeline import PipelineResult, RunContext, RunnerConfig, Step, StepAction
from ecs_image_builder.steps import StepPreValidate
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

console = Console()

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2


@dataclass(slots=True)
class _StatusStep:
    """Shows a spinner while the wrapped step runs."""

    inner: Step

    @property
    def step_id(self) -> str:
        return self.inner.step_id

    def run(self, ctx: RunContext) -> StepAction:
        with console.status(f"[bold]{self.step_id}[/]", spinner="dots"):
            return self.inner.run(ctx)

    def cleanup(self, ctx: RunContext) -> None:
        with console.status(f"[bold]cleanup {self.step_id}[/]", spinner="dots"):
            self.inner.cleanup(ctx)


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="ecs-image-builder")
    sub = p.add_subparsers(dest="cmd", required=True)

    commands: dict[str, str] = {
        "build": "Build a custom image and copy it to destination regions",
        "validate": "Run pre-validation only; nothing is created",
    }
    for cmd, help_text in commands.items():
        sp = sub.add_parser(cmd, help=help_text)
        sp.add_argument("--config", required=True, type=Path, help="Build config JSON file")
        sp.add_argument("--region", default=None, help="Override the config's region")
        sp.add_argument(
            "--simulate",
            action="store_true",
            help="Run against an in-memory cloud instead of the ECS API",
        )
        sp.add_argument("--run-id", default=None, help="Run id (default: generated)")

    return p


def _make_client(cfg: BuildConfig, *, simulate: bool) -> CloudClient:
    if simulate:
        regions = tuple(dict.fromkeys([*DEFAULT_REGIONS, cfg.region]))
        cloud = InMemoryCloud(profile=SimulationProfile(regions=regions))
        cloud.add_existing_image(cfg.region, cfg.source_image, image_id=cfg.source_image)
        return cloud

    s = load_settings()
    access = AccessConfig(region=cfg.region).prepare()
    return EcsRpcClient(
        access=access,
        endpoint=s.endpoint,
        max_attempts=s.max_attempts,
        request_timeout_s=s.request_timeout_s,
    )


@contextmanager
def _cancel_on_sigint(cancel: threading.Event) -> Iterator[None]:
    """Ctrl-C asks the running build to stop and clean up instead of aborting."""

    def _handler(signum, frame) -> None:
        console.print("[yellow]Cancelling, cleaning up resources...[/yellow]")
        cancel.set()

    previous = signal.signal(signal.SIGINT, _handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def _steps_for(cmd: str, cfg: BuildConfig, client: CloudClient) -> list[Step]:
    steps = build_steps(cfg, client)
    if cmd == "validate":
        steps = [s for s in steps if isinstance(s, StepPreValidate)]
    return [_StatusStep(s) for s in steps]


def _print_result(result: PipelineResult) -> None:
    colour = {"success": "green", "failed": "red", "cancelled": "yellow"}[result.status.value]
    tbl = Table(title="Result", show_header=True, box=None)
    tbl.add_row("status", f"[{colour}]{result.status.value}[/{colour}]")
    for region, image_id in sorted(result.artifacts.get("images", {}).items()):
        tbl.add_row(f"image ({region})", image_id)
    if result.error is not None:
        tbl.add_row("failed step", result.error.step)
        tbl.add_row("error", result.error.message)
    for w in result.cleanup_warnings:
        tbl.add_row("cleanup warning", f"{w.resource} {w.resource_id or ''}: {w.message}")
    if result.events_jsonl:
        tbl.add_row("events", result.events_jsonl)
    console.print(tbl)


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    s = load_settings()
    configure_logging(level=s.log_level, fmt=s.log_format)
    log = get_logger("ecs_image_builder")

    run_id = args.run_id or new_run_id()
    bind(run_id=run_id, command=args.cmd)

    try:
        cfg = load_build_config(args.config, region=args.region)
        client = _make_client(cfg, simulate=args.simulate)
    except ConfigurationError as e:
        log.error("Configuration error", error=str(e))
        console.print(Panel.fit(Text(str(e), style="red"), title="Configuration error"))
        return EXIT_CONFIG

    console.print(
        Panel.fit(
            Text(
                f"ecs-image-builder - {args.cmd}\nrun_id={run_id}\n"
                f"image={cfg.image_name}\nregion={cfg.region}",
                style="bold",
            ),
            title="Run",
        )
    )

    runner_cfg = RunnerConfig(
        poll_interval_s=s.poll_interval_s,
        run_root=Path(s.run_root),
        sleep=(lambda _: None) if args.simulate else None,
    )
    provenance = RunProvenance(run_id=run_id, started_at_utc=utc_now_iso())
    cancel = threading.Event()

    try:
        with _cancel_on_sigint(cancel):
            result = build_image(
                cfg,
                client,
                runner_cfg=runner_cfg,
                logger=log,
                cancel=cancel,
                run_id=run_id,
                steps=_steps_for(args.cmd, cfg, client),
                meta={"provenance": provenance.to_dict(), "simulate": args.simulate},
            )
    finally:
        if isinstance(client, EcsRpcClient):
            client.close()

    _print_result(result)

    if result.ok:
        return EXIT_OK
    if isinstance(result.exception, ConfigurationError):
        return EXIT_CONFIG
    return EXIT_FAILED


if __name__ == "__main__":
    raise SystemExit(main())
