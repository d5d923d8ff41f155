from .model import SetupConfig, SupervisorDirective, parse_deps, parse_supervisor, resolve_cache_key
from .runner import PhaseFailure, Runtime, run_setup
from .teardown import run_teardown

__all__ = [
    "SetupConfig", "SupervisorDirective", "parse_deps", "parse_supervisor", "resolve_cache_key",
    "PhaseFailure", "Runtime", "run_setup", "run_teardown",
]
