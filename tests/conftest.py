from __future__ import annotations

from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest

from biome_setup.cache import LocalArtifactCache
from biome_setup.config import HabLayout, Settings
from biome_setup.runner import Runtime
from biome_setup.shell import CommandFailure
from biome_setup.ui.console import Console, set_console


class FakeShell:
    """Records every command instead of running it."""

    def __init__(self, *, bio_installed: bool = True):
        self.bio_installed = bio_installed
        self.calls: List[List[str]] = []
        self.envs: List[Optional[Dict[str, str]]] = []
        self.status_calls = 0
        self.status_ready_after = 1
        self.fail_when: Callable[[List[str]], bool] = lambda args: False
        self.on_run: Callable[[List[str]], None] = lambda args: None
        self.outputs: Dict[str, str] = {"bio --version": "bio 1.6.372/20210930"}

    def which(self, name: str) -> Optional[str]:
        if name == "bio" and self.bio_installed:
            return "/usr/bin/bio"
        return None

    def _record(self, args, env) -> List[str]:
        args = [str(a) for a in args]
        self.calls.append(args)
        self.envs.append(dict(env) if env is not None else None)
        if self.fail_when(args):
            raise CommandFailure(cmd=" ".join(args), exit_code=1)
        self.on_run(args)
        return args

    def run(self, args, *, env=None, cwd=None) -> None:
        self._record(args, env)

    def output(self, args, *, env=None, cwd=None) -> str:
        args = self._record(args, env)
        return self.outputs.get(" ".join(args), "")

    def succeeds(self, args, *, env=None) -> bool:
        if list(args) == ["bio", "svc", "status"]:
            self.status_calls += 1
            return self.status_calls >= self.status_ready_after
        return True

    def commands(self) -> List[str]:
        return [" ".join(c) for c in self.calls]

    def ran(self, prefix: str) -> bool:
        return any(c.startswith(prefix) for c in self.commands())


class FakeCache:
    def __init__(self, hit: Optional[str] = None, saved: Optional[str] = "42"):
        self.hit = hit
        self.saved = saved
        self.restores: List[tuple] = []
        self.saves: List[tuple] = []
        self.fail_save: Optional[Exception] = None

    def restore(self, paths, key):
        self.restores.append((list(paths), key))
        return self.hit

    def save(self, paths, key):
        self.saves.append((list(paths), key))
        if self.fail_save is not None:
            raise self.fail_save
        return self.saved


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture(autouse=True)
def console(monkeypatch, tmp_path):
    # keep exports out of the real environment and in a per-test GITHUB_ENV file
    for name in ("HAB_NONINTERACTIVE", "HAB_BLDR_URL", "STUDIO_TYPE"):
        # setenv first so monkeypatch removes whatever the test exports
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    monkeypatch.setenv("GITHUB_ENV", str(tmp_path / "github_env"))
    c = Console()
    set_console(c)
    return c


@pytest.fixture
def layout(tmp_path) -> HabLayout:
    layout = HabLayout(root=tmp_path / "hab", home=tmp_path / "home")
    layout.pkgs.mkdir(parents=True)
    return layout


@pytest.fixture
def shell() -> FakeShell:
    return FakeShell()


@pytest.fixture
def fake_cache() -> FakeCache:
    return FakeCache()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def rt(layout, shell, fake_cache, clock, tmp_path) -> Runtime:
    workdir = tmp_path / "work"
    workdir.mkdir()
    return Runtime(
        cache=fake_cache,
        settings=Settings(supervisor_timeout=5.0),
        layout=layout,
        shell=shell,
        workdir=workdir,
        sleep=clock.sleep,
        clock=clock,
    )


@pytest.fixture
def local_cache(tmp_path) -> LocalArtifactCache:
    return LocalArtifactCache(tmp_path / "store")
