"""EditorConfig: load the packaged YAML defaults and deep-merge an overlay."""

from __future__ import annotations

import logging
import os
from copy import deepcopy
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from cleanflow.core.csv_parser import available_parsers
from cleanflow.core.resources import get_editor_defaults_path

_log = logging.getLogger(__name__)

#: Environment variable naming an overlay YAML file
CONFIG_ENV_VAR = "CLEANFLOW_EDITOR_CONFIG"


def deep_merge(base: dict, overlay: dict) -> dict:
    """Merge overlay into base. Overlay wins on scalar conflicts.

    Dicts are merged recursively. Lists are replaced (not concatenated).
    """
    result = deepcopy(base)
    for key, val in overlay.items():
        if key in result and isinstance(result[key], dict) and isinstance(val, dict):
            result[key] = deep_merge(result[key], val)
        else:
            result[key] = deepcopy(val)
    return result


@dataclass
class EditorConfig:
    """Tunable constants for quarantine editing sessions."""

    page_size: int = 200
    max_rows_in_memory: int = 10000
    max_edits_per_batch: int = 1000
    autosave_debounce_ms: int = 800
    non_editable_columns: list[str] = field(default_factory=lambda: ["row_id"])
    history_depth: int = 500
    default_parser: str = "advanced"

    @classmethod
    def from_dict(cls, data: dict) -> "EditorConfig":
        paging = data.get("paging", {}) or {}
        saving = data.get("saving", {}) or {}
        editing = data.get("editing", {}) or {}
        parsing = data.get("parsing", {}) or {}
        defaults = cls()
        config = cls(
            page_size=int(paging.get("page_size", defaults.page_size)),
            max_rows_in_memory=int(paging.get("max_rows_in_memory", defaults.max_rows_in_memory)),
            max_edits_per_batch=int(saving.get("max_edits_per_batch", defaults.max_edits_per_batch)),
            autosave_debounce_ms=int(
                saving.get("autosave_debounce_ms", defaults.autosave_debounce_ms)
            ),
            non_editable_columns=[
                str(c) for c in editing.get("non_editable_columns", defaults.non_editable_columns)
            ],
            history_depth=int(editing.get("history_depth", defaults.history_depth)),
            default_parser=str(parsing.get("default_parser", defaults.default_parser)),
        )
        config.check()
        return config

    def check(self) -> None:
        for name in ("page_size", "max_rows_in_memory", "max_edits_per_batch", "history_depth"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be >= 1, got {getattr(self, name)}")
        if self.autosave_debounce_ms < 0:
            raise ValueError("autosave_debounce_ms must be >= 0")
        if self.default_parser not in available_parsers():
            raise ValueError(
                f"default_parser must be one of {available_parsers()}, got {self.default_parser!r}"
            )


def _read_yaml(path: Path) -> dict:
    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at the top level")
    return data


def load_editor_config(overlay_path: str | Path | None = None) -> EditorConfig:
    """Return packaged defaults, overlaid by *overlay_path* or ``$CLEANFLOW_EDITOR_CONFIG``."""
    config = _read_yaml(get_editor_defaults_path())

    if overlay_path is None:
        overlay_path = os.environ.get(CONFIG_ENV_VAR) or None

    if overlay_path is not None:
        overlay_path = Path(overlay_path)
        if overlay_path.exists():
            config = deep_merge(config, _read_yaml(overlay_path))
            _log.info("Editor config overlay applied from %s", overlay_path)
        else:
            _log.warning("Editor config overlay %s not found; using defaults", overlay_path)

    return EditorConfig.from_dict(config)
