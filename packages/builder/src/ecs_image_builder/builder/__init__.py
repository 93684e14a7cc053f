from .config import BuildConfig, NetworkConfig, NetworkMode, TimeoutsConfig, load_build_config
from .orchestrator import build_image, build_steps, collect_artifacts

__all__ = [
    "BuildConfig",
    "NetworkConfig",
    "NetworkMode",
    "TimeoutsConfig",
    "load_build_config",
    "build_image",
    "build_steps",
    "collect_artifacts",
]
