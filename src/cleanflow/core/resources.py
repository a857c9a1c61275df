"""importlib.resources helpers for the data files shipped inside the package.

Works both in development (editable install) and in a packaged wheel.
"""

from __future__ import annotations

from pathlib import Path


def _resources_dir() -> Path:
    import importlib.resources as _ir

    # hatchling ships resources/ as plain files, so this is a real directory
    return Path(str(_ir.files("cleanflow.resources")))


def get_resource_path(filename: str) -> Path:
    """Return the absolute Path to a file under ``cleanflow/resources/``."""
    return _resources_dir() / filename


def get_rules_catalogue_path() -> Path:
    return get_resource_path("rules.yml")


def get_editor_defaults_path() -> Path:
    return get_resource_path("editor_defaults.yml")
