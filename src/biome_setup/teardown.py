# teardown.py
from __future__ import annotations

from typing import Optional

from .cache import Marker
from .runner import Runtime, phase
from .ui.console import get_console


def run_teardown(rt: Runtime) -> Optional[str]:
    """
    Save the installed-packages directory as a cache entry, once per job.

    The save marker is written before saving and stays written on failure,
    so repeated teardown invocations never attempt a second save.
    Returns the new cache id, if any.
    """
    console = get_console()
    pkgs = rt.layout.pkgs
    save_marker = Marker(rt.layout.save_marker)

    if save_marker.exists():
        console.info(f"Skipping caching, {save_marker} already exists")
        return None

    with phase("Failed to save package cache", "Saving package cache"):
        if not save_marker.claim():
            console.info(f"Skipping caching, {save_marker} already exists")
            return None
        cache_id = rt.cache.save([str(pkgs)], rt.settings.save_cache_key)
        console.info(f"Saved cache {cache_id}" if cache_id else "No cache saved")

    return cache_id
