# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

TRUTHY_SUPERVISOR = "true"
DEFAULT_CACHE_KEY_PREFIX = "hab-artifacts-cache"


@dataclass(frozen=True)
class SupervisorDirective:
    """
    Whether to start a Biome supervisor, and which services to load into it.

      - disabled:                 enabled=False
      - enabled, no services:     enabled=True, services=()
      - enabled, with services:   enabled=True, services=("core/redis", ...)

    Each service string may carry its own `bio svc load` options,
    e.g. "core/postgresql --strategy at-once".
    """
    enabled: bool = False
    services: tuple[str, ...] = ()

    @classmethod
    def disabled(cls) -> SupervisorDirective:
        return cls(enabled=False)

    @property
    def has_services(self) -> bool:
        return self.enabled and bool(self.services)


@dataclass(frozen=True)
class SetupConfig:
    """Parsed inputs for the setup routine."""
    deps: List[str] = field(default_factory=list)
    supervisor: SupervisorDirective = field(default_factory=SupervisorDirective)
    cache_key: str = field(default_factory=lambda: default_cache_key(None))


def parse_deps(text: Optional[str]) -> List[str]:
    """Split a whitespace-delimited package list; order and duplicates are kept."""
    return [pkg for pkg in (text or "").split() if pkg]


def parse_supervisor(text: Optional[str]) -> SupervisorDirective:
    value = (text or "").strip()
    if not value:
        return SupervisorDirective.disabled()
    if value == TRUTHY_SUPERVISOR:
        return SupervisorDirective(enabled=True)

    services = [line.strip() for line in value.split("\n")]
    return SupervisorDirective(enabled=True, services=tuple(s for s in services if s))


def default_cache_key(workflow: Optional[str]) -> str:
    return f"{DEFAULT_CACHE_KEY_PREFIX}:{workflow or ''}"


def resolve_cache_key(explicit: Optional[str], workflow: Optional[str]) -> str:
    """Explicit key wins; otherwise derive one from the workflow name."""
    if explicit and explicit.strip():
        return explicit.strip()
    return default_cache_key(workflow)
