# runner.py
from __future__ import annotations

import os
import shlex
import time
from contextlib import contextmanager, nullcontext
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterator, Optional

from .cache import ArtifactCache, Marker
from .config import HabLayout, Settings
from .model import SetupConfig
from .shell import Shell, sudo
from .ui.console import get_console

# job start ---> setup (install, restore, deps, supervisor) ---> steps ---> teardown (save)


# ----------------------------------------------------------------------
# Errors
# ----------------------------------------------------------------------

@dataclass
class PhaseFailure(Exception):
    """A setup/teardown phase failed; nothing after it runs."""
    message: str
    reason: str

    def __str__(self) -> str:
        return f"{self.message}: {self.reason}"


class ReadinessTimeout(TimeoutError):
    pass


@contextmanager
def phase(message: str, title: Optional[str] = None) -> Iterator[None]:
    """
    Run one phase: optionally inside a log group, with any error re-raised
    as PhaseFailure carrying the phase's message.
    """
    with get_console().group(title) if title else nullcontext():
        try:
            yield
        except PhaseFailure:
            raise
        except Exception as e:
            raise PhaseFailure(message=message, reason=str(e)) from e


# ----------------------------------------------------------------------
# Runtime
# ----------------------------------------------------------------------

@dataclass
class Runtime:
    """Everything a routine touches outside its own arguments."""
    cache: ArtifactCache
    settings: Settings = field(default_factory=Settings)
    layout: HabLayout = field(default_factory=HabLayout)
    shell: Shell = field(default_factory=Shell)
    workdir: Path = field(default_factory=Path.cwd)
    sleep: Callable[[float], None] = time.sleep
    clock: Callable[[], float] = time.monotonic

    def hab_env(self) -> Dict[str, str]:
        env = dict(self.settings.exported_env())
        env.update(os.environ)
        return env


def wait_until(
    check: Callable[[], bool],
    *,
    what: str,
    timeout: float,
    interval: float = 0.1,
    backoff: float = 1.5,
    max_interval: float = 2.0,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> int:
    """
    Poll check() until it returns True or timeout seconds pass.

    Returns the number of attempts it took.

    Raises:
        ReadinessTimeout: check() never succeeded in time
    """
    console = get_console()
    deadline = clock() + timeout
    attempts = 0
    delay = interval

    while True:
        attempts += 1
        if check():
            console.debug(f"{what}: ready after {attempts} attempt(s)")
            return attempts

        remaining = deadline - clock()
        if remaining <= 0:
            raise ReadinessTimeout(f"Timed out after {timeout:g}s waiting for {what}")

        sleep(min(delay, remaining))
        delay = min(delay * backoff, max_interval)


# ----------------------------------------------------------------------
# Phases
# ----------------------------------------------------------------------

def export_environment(rt: Runtime) -> None:
    console = get_console()
    with phase("Failed to export environment"):
        for name, value in rt.settings.exported_env().items():
            console.export_variable(name, value)


def install_biome(rt: Runtime) -> bool:
    """
    Install the bio binary and bootstrap the hab user and user cache link.

    Returns False when bio was already on PATH and nothing was done.
    """
    console = get_console()
    s = rt.settings
    sh = rt.shell

    if sh.which("bio"):
        console.info("Biome already installed!")
        return False

    with phase("Failed to install Biome", "Installing Biome"):
        archive = s.archive()
        sh.run(["wget", s.release_url()], cwd=rt.workdir)
        sh.run(["tar", "xf", archive], cwd=rt.workdir)
        sh.run(sudo("mv", "bio", s.bin_dir), cwd=rt.workdir)
        sh.run(sudo("chmod", "+x", s.bio_path))
        (rt.workdir / archive).unlink(missing_ok=True)

    with phase("Failed to create hab user", "Creating hab user"):
        sh.run(sudo("groupadd", s.hab_group))
        sh.run(sudo("useradd", "-g", s.hab_group, "-G", s.runner_group, s.hab_user))

    # also accepts the license on first run (HAB_NONINTERACTIVE is exported)
    with phase("Failed to verify bio installation"):
        version = sh.output(["bio", "--version"], env=rt.hab_env())
        console.info(f"Installed {version}")

    layout = rt.layout
    with phase("Failed to link ~/.hab/cache", f"Linking ~/.hab/cache to {layout.cache}"):
        layout.user_hab.mkdir(parents=True, exist_ok=True)
        link = layout.user_cache_link
        if link.is_symlink() or link.is_file():
            link.unlink()
        link.symlink_to(layout.cache, target_is_directory=True)

    return True


def provision_cache_dir(rt: Runtime) -> None:
    cache_dir = str(rt.layout.cache)
    with phase("Failed to update cache ownership", "Updating cache ownership"):
        rt.shell.run(sudo("mkdir", "-p", cache_dir))
        rt.shell.run(sudo("chown", "-R", rt.settings.owner, cache_dir))
        rt.shell.run(sudo("chmod", "g+s", cache_dir))


def restore_cache(rt: Runtime, cache_key: str) -> Optional[str]:
    """
    Restore the artifact cache at most once per job.

    The restore marker is written before the restore starts, so a crash
    mid-restore still prevents a second attempt.
    """
    console = get_console()
    layout = rt.layout
    restore_marker = Marker(layout.restore_marker)
    save_marker = Marker(layout.save_marker)

    if restore_marker.exists():
        console.info(f"Skipping restoring, {restore_marker} already exists")
        return None

    with phase("Failed to restore package cache", "Restoring package cache"):
        console.info(f"Initializing runner-writable {layout.cache}")
        layout.artifacts.mkdir(parents=True, exist_ok=True)

        console.info(f"Writing restore lock: {restore_marker}")
        if not restore_marker.claim():
            console.info(f"Skipping restoring, {restore_marker} already exists")
            return None

        console.info(f"Restoring cache key: {cache_key}")
        restored = rt.cache.restore([str(layout.artifacts)], cache_key)
        console.info(f"Restored cache {restored}" if restored else "No cache restored")

        console.info(f"Re-writing restore lock: {restore_marker}")
        restore_marker.touch()

        # a save marker left by an earlier job would wrongly skip this job's save
        if save_marker.exists():
            console.info(f"Erasing cache lock: {save_marker}")
            save_marker.clear()

    return restored


def install_deps(rt: Runtime, deps: list[str]) -> None:
    if not deps:
        return
    with phase("Failed to install deps", f"Installing deps: {' '.join(deps)}"):
        rt.shell.run(
            sudo("bio", "pkg", "install", *deps, preserve_env=True),
            env=rt.hab_env(),
        )


def start_supervisor(rt: Runtime) -> None:
    console = get_console()
    layout = rt.layout
    s = rt.settings
    sh = rt.shell

    with phase("Failed to start supervisor", "Starting supervisor"):
        sh.run(sudo("mkdir", "-p", str(layout.sup_dir)))
        launch = f"bio sup run > {shlex.quote(str(layout.sup_log))} 2>&1 &"
        sh.run(sudo("setsid", "bash", "-c", launch, preserve_env=True), env=rt.hab_env())

        console.info("Waiting for supervisor secret...")
        wait_until(
            layout.ctl_secret.exists,
            what=f"supervisor secret {layout.ctl_secret}",
            timeout=s.supervisor_timeout,
            interval=s.poll_interval,
            backoff=s.poll_backoff,
            max_interval=s.poll_max_interval,
            sleep=rt.sleep,
            clock=rt.clock,
        )

        console.info("Enabling sudoless access to supervisor API...")
        sh.run(sudo("chgrp", s.runner_group, str(layout.ctl_secret)))
        sh.run(sudo("chmod", "g+r", str(layout.ctl_secret)))

        console.info("Waiting for supervisor...")
        env = rt.hab_env()
        wait_until(
            lambda: sh.succeeds(["bio", "svc", "status"], env=env),
            what="supervisor status",
            timeout=s.supervisor_timeout,
            interval=s.poll_interval,
            backoff=s.poll_backoff,
            max_interval=s.poll_max_interval,
            sleep=rt.sleep,
            clock=rt.clock,
        )


def load_services(rt: Runtime, services: tuple[str, ...]) -> None:
    env = rt.hab_env()
    for svc in services:
        with phase("Failed to load service", f"Loading service: {svc}"):
            rt.shell.run(["bio", "svc", "load", *shlex.split(svc)], env=env)


def enable_sudoless_install(rt: Runtime) -> None:
    pkgs = str(rt.layout.pkgs)
    with phase("Failed to enable sudoless package installation", "Enabling sudoless package installation"):
        rt.shell.run(sudo("chown", "-R", rt.settings.owner, pkgs))
        rt.shell.run([
            "find", pkgs,
            "-maxdepth", str(rt.settings.chmod_depth),
            "-type", "d",
            "-exec", "sudo", "chmod", "g+ws", "{}", ";",
        ])


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

def run_setup(config: SetupConfig, rt: Runtime) -> None:
    """
    Bring the runner to a state where bio is installed, its artifact cache
    is warm, deps are installed and (optionally) a supervisor is running.

    Phases run strictly in order; the first PhaseFailure propagates and
    nothing after it runs. Changes already applied are left in place.
    """
    export_environment(rt)
    install_biome(rt)
    provision_cache_dir(rt)
    restore_cache(rt, config.cache_key)
    install_deps(rt, config.deps)

    if config.supervisor.enabled:
        start_supervisor(rt)
        if config.supervisor.has_services:
            load_services(rt, config.supervisor.services)

    enable_sudoless_install(rt)
