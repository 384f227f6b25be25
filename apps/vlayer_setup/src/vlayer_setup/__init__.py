from vlayer_setup.config import NetworkProfile, SetupConfig, build_config, load_profiles
from vlayer_setup.orchestrator import RunSummary, run

__all__ = [
    "NetworkProfile",
    "RunSummary",
    "SetupConfig",
    "build_config",
    "load_profiles",
    "run",
]
