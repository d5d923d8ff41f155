import json
import tomllib
from pathlib import Path

from biome_setup.cache import Marker


def _populate(root):
    (root / "core" / "git").mkdir(parents=True)
    (root / "core" / "git" / "bio.hart").write_text("hart")
    (root / "top.txt").write_text("top")


def test_save_then_restore(tmp_path, local_cache):
    artifacts = tmp_path / "hab" / "cache" / "artifacts"
    _populate(artifacts)

    cache_id = local_cache.save([artifacts], "hab-artifacts-cache:CI")
    assert cache_id

    # wipe and restore
    (artifacts / "core" / "git" / "bio.hart").unlink()
    (artifacts / "top.txt").write_text("changed")

    assert local_cache.restore([artifacts], "hab-artifacts-cache:CI") == "hab-artifacts-cache:CI"
    assert (artifacts / "core" / "git" / "bio.hart").read_text() == "hart"
    assert (artifacts / "top.txt").read_text() == "top"
    manifest = json.loads(local_cache.manifest_path("hab-artifacts-cache:CI").read_text())
    assert manifest["cache_id"] == cache_id


def test_restore_miss(tmp_path, local_cache):
    assert local_cache.restore([tmp_path / "nothing"], "missing-key") is None


def test_entries_are_immutable(tmp_path, local_cache):
    pkgs = tmp_path / "hab" / "pkgs"
    _populate(pkgs)

    assert local_cache.save([pkgs], "hab-pkgs")
    assert local_cache.save([pkgs], "hab-pkgs") is None


def test_save_with_no_existing_paths(tmp_path, local_cache):
    assert local_cache.save([tmp_path / "nope"], "hab-pkgs") is None
    assert not local_cache.has("hab-pkgs")


def test_restore_only_extracts_requested_paths(tmp_path, local_cache):
    a = tmp_path / "a"
    b = tmp_path / "b"
    _populate(a)
    _populate(b)
    local_cache.save([a, b], "both")

    (a / "top.txt").unlink()
    (b / "top.txt").unlink()
    local_cache.restore([a], "both")

    assert (a / "top.txt").exists()
    assert not (b / "top.txt").exists()


def test_marker_claim_is_exclusive(tmp_path):
    marker = Marker(tmp_path / ".restored")
    assert not marker.exists()
    assert marker.claim() is True
    assert marker.claim() is False
    assert marker.path.read_bytes() == b""

    marker.touch()
    assert marker.clear() is True
    assert marker.clear() is False


def test_declared_python_supports_extraction_filter():
    # tarfile's extractall(filter=...) exists from 3.12 on every patch release
    pyproject = Path(__file__).resolve().parents[1] / "pyproject.toml"
    declared = tomllib.loads(pyproject.read_text())["project"]["requires-python"]
    assert declared == ">=3.12"
