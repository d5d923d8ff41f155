from __future__ import annotations

import os
import platform
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from pydantic import BaseModel, field_validator

from .model import SetupConfig, parse_deps, parse_supervisor, resolve_cache_key

BIO_VERSION = "1.6.372"
BLDR_URL = "https://bldr.biome.sh"
RELEASE_URL = "https://github.com/biome-sh/biome/releases/download/v{version}/{archive}"
DEFAULT_HAB_ROOT = "/hab"
DEFAULT_SAVE_CACHE_KEY = "hab-pkgs"

# platform.machine() / platform.system() -> release archive naming
_ARCHES = {
    "x86_64": "x86_64",
    "amd64": "x86_64",
    "aarch64": "aarch64",
    "arm64": "aarch64",
}
_SYSTEMS = {
    "linux": "linux",
    "darwin": "darwin",
}


# ---------------------------------------------------------------------
# Action inputs
# ---------------------------------------------------------------------

class ActionInputs(BaseModel):
    """Raw string inputs as handed to the step by the CI platform."""
    deps: str = ""
    supervisor: str = ""
    cache_key: str = ""

    @field_validator("deps", "supervisor", "cache_key", mode="before")
    @classmethod
    def _trim(cls, value: Optional[str]) -> str:
        return (value or "").strip()

    def to_config(self, workflow: Optional[str] = None) -> SetupConfig:
        if workflow is None:
            workflow = os.environ.get("GITHUB_WORKFLOW", "")
        return SetupConfig(
            deps=parse_deps(self.deps),
            supervisor=parse_supervisor(self.supervisor),
            cache_key=resolve_cache_key(self.cache_key, workflow),
        )


# ---------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------

def release_archive(version: str, machine: str | None = None, system: str | None = None) -> str:
    machine = (machine or platform.machine()).lower()
    system = (system or platform.system()).lower()
    if machine not in _ARCHES:
        raise ValueError(f"Unsupported architecture for Biome release: {machine}")
    if system not in _SYSTEMS:
        raise ValueError(f"Unsupported operating system for Biome release: {system}")
    return f"bio-{version}-{_ARCHES[machine]}-{_SYSTEMS[system]}.tar.gz"


@dataclass(frozen=True)
class Settings:
    bio_version: str = BIO_VERSION
    bldr_url: str = BLDR_URL
    studio_type: str = "default"
    bin_dir: str = "/usr/bin"

    # ownership handed to the CI runner so later steps work without sudo
    runner_user: str = "runner"
    runner_group: str = "docker"

    hab_user: str = "hab"
    hab_group: str = "hab"

    save_cache_key: str = DEFAULT_SAVE_CACHE_KEY
    chmod_depth: int = 3

    # supervisor readiness polling
    supervisor_timeout: float = 120.0
    poll_interval: float = 0.1
    poll_backoff: float = 1.5
    poll_max_interval: float = 2.0

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        env = os.environ if environ is None else environ
        return cls(
            bio_version=env.get("BIOME_VERSION", BIO_VERSION),
            bldr_url=env.get("BIOME_BLDR_URL", BLDR_URL),
            supervisor_timeout=float(env.get("BIOME_SUPERVISOR_TIMEOUT", "120")),
        )

    @property
    def owner(self) -> str:
        return f"{self.runner_user}:{self.runner_group}"

    @property
    def bio_path(self) -> str:
        return f"{self.bin_dir.rstrip('/')}/bio"

    def archive(self) -> str:
        return release_archive(self.bio_version)

    def release_url(self) -> str:
        return RELEASE_URL.format(version=self.bio_version, archive=self.archive())

    def exported_env(self) -> dict[str, str]:
        """Variables exported to this and every later step of the job."""
        return {
            "HAB_NONINTERACTIVE": "true",
            "HAB_BLDR_URL": self.bldr_url,
            "STUDIO_TYPE": self.studio_type,
        }


# ---------------------------------------------------------------------
# Well-known paths
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class HabLayout:
    root: Path = Path(DEFAULT_HAB_ROOT)
    home: Path = field(default_factory=Path.home)

    @classmethod
    def from_root(cls, root: str | Path = DEFAULT_HAB_ROOT, home: str | Path | None = None) -> HabLayout:
        return cls(
            root=Path(root),
            home=Path(home) if home is not None else Path(os.environ.get("HOME") or Path.home()),
        )

    @property
    def cache(self) -> Path:
        return self.root / "cache"

    @property
    def artifacts(self) -> Path:
        return self.cache / "artifacts"

    @property
    def restore_marker(self) -> Path:
        return self.artifacts / ".restored"

    @property
    def pkgs(self) -> Path:
        return self.root / "pkgs"

    @property
    def save_marker(self) -> Path:
        return self.pkgs / ".cached"

    @property
    def sup_dir(self) -> Path:
        return self.root / "sup" / "default"

    @property
    def sup_log(self) -> Path:
        return self.sup_dir / "sup.log"

    @property
    def ctl_secret(self) -> Path:
        return self.sup_dir / "CTL_SECRET"

    @property
    def user_hab(self) -> Path:
        return self.home / ".hab"

    @property
    def user_cache_link(self) -> Path:
        return self.user_hab / "cache"


def default_cache_store(environ: Mapping[str, str] | None = None) -> Path:
    env = os.environ if environ is None else environ
    if env.get("BIOME_CACHE_STORE"):
        return Path(env["BIOME_CACHE_STORE"])
    if env.get("RUNNER_TOOL_CACHE"):
        return Path(env["RUNNER_TOOL_CACHE"]) / "setup-biome"
    return Path.home() / ".cache" / "setup-biome"
