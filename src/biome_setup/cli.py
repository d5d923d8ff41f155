# cli.py
from __future__ import annotations

import sys
from dataclasses import replace
from pathlib import Path

import click

from biome_setup.cache import LocalArtifactCache
from biome_setup.config import ActionInputs, HabLayout, Settings, default_cache_store
from biome_setup.runner import PhaseFailure, Runtime, run_setup
from biome_setup.teardown import run_teardown
from biome_setup.ui.console import Console, set_console, get_console


def _build_runtime(hab_root: str, cache_store: str | None, supervisor_timeout: float | None) -> Runtime:
    settings = Settings.from_env()
    if supervisor_timeout is not None:
        settings = replace(settings, supervisor_timeout=supervisor_timeout)
    store = Path(cache_store) if cache_store else default_cache_store()
    return Runtime(
        cache=LocalArtifactCache(store),
        settings=settings,
        layout=HabLayout.from_root(hab_root),
    )


def _fail(ctx: click.Context, exc: BaseException) -> None:
    """Top-level error boundary: report through the step-failure channel and exit 1."""
    console = get_console()
    console.set_failed(str(exc))
    if ctx.obj.get("debug", False) and not isinstance(exc, PhaseFailure):
        console.print_exception(exc)
    sys.exit(1)


hab_root_option = click.option(
    "--hab-root",
    envvar="BIOME_HAB_ROOT",
    default="/hab",
    show_default=True,
    help="Root of the hab filesystem layout",
)
cache_store_option = click.option(
    "--cache-store",
    envvar="BIOME_CACHE_STORE",
    default=None,
    help="Artifact cache directory (defaults to $RUNNER_TOOL_CACHE/setup-biome)",
)


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    envvar="RUNNER_DEBUG",
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """setup-biome: provision Biome and its package cache in a CI job."""
    set_console(Console(debug=debug))
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option("--deps", envvar="INPUT_DEPS", default="", help="Whitespace-separated packages to install")
@click.option(
    "--supervisor",
    envvar="INPUT_SUPERVISOR",
    default="",
    help='"true" to start a supervisor, or newline-separated services to load into it',
)
@click.option("--cache-key", envvar="INPUT_CACHE-KEY", default="", help="Artifact cache key")
@click.option("--supervisor-timeout", type=float, default=None, help="Seconds to wait for the supervisor")
@hab_root_option
@cache_store_option
@click.pass_context
def setup(ctx, deps, supervisor, cache_key, supervisor_timeout, hab_root, cache_store):
    """Install Biome, restore its cache, install deps and start services."""
    try:
        config = ActionInputs(deps=deps, supervisor=supervisor, cache_key=cache_key).to_config()
        rt = _build_runtime(hab_root, cache_store, supervisor_timeout)
        run_setup(config, rt)
    except KeyboardInterrupt:
        get_console().info("\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        _fail(ctx, e)


@cli.command()
@hab_root_option
@cache_store_option
@click.pass_context
def teardown(ctx, hab_root, cache_store):
    """Save the installed packages as a cache entry, once per job."""
    try:
        rt = _build_runtime(hab_root, cache_store, None)
        run_teardown(rt)
    except KeyboardInterrupt:
        get_console().info("\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        _fail(ctx, e)


if __name__ == "__main__":
    cli()
