from __future__ import annotations

import importlib
import sys
from importlib.machinery import PathFinder
from pathlib import Path


def _repo_root() -> Path:
    return Path(__file__).resolve().parents[1]


def test_package_is_importable_without_install() -> None:
    root = _repo_root()
    sdk_src = root / "packages" / "action-runtime-sdk-python" / "src"

    sys.path.insert(0, str(sdk_src))

    assert PathFinder.find_spec("action_runtime", [str(sdk_src)]) is not None
    for mod in (
        "action_runtime.engine",
        "action_runtime.safety",
        "action_runtime.actions",
        "action_runtime.parsing",
        "action_runtime.config.loader",
    ):
        importlib.import_module(mod)


def test_default_config_asset_is_shipped_in_src() -> None:
    root = _repo_root()
    asset = root / "packages" / "action-runtime-sdk-python" / "src" / "action_runtime" / "assets" / "default.yaml"
    assert asset.exists()
