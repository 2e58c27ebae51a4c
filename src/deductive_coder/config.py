"""Configuration loader.

Settings come from YAML files with priority resolution:
1. User config: ~/.config/{app_name}/config.yaml (highest priority)
2. Project config: .{app_name}/config.yaml in current directory
3. Package defaults: shipped with deductive-coder (fallback)

Files are merged key by key, so an override file only needs the keys it
changes. Secrets and site identity come from the environment.
"""

from __future__ import annotations

import copy
import os
from pathlib import Path
from typing import Any

# Lazy import yaml to avoid startup cost
_yaml = None

CONFIG_FILENAME = "config.yaml"


def _get_yaml():
    """Lazy-load PyYAML."""
    global _yaml
    if _yaml is None:
        import yaml

        _yaml = yaml
    return _yaml


def _get_package_defaults_path():
    """Get path to the packaged defaults using importlib.resources."""
    try:
        from importlib.resources import files

        return files("deductive_coder.config_data") / "defaults.yaml"
    except (ImportError, TypeError):
        return Path(__file__).parent / "config_data" / "defaults.yaml"


def _merge(base: dict, override: dict) -> dict:
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = value
    return base


class CoderConfig:
    """Merged configuration for a coding session.

    Config locations are applied in order, lowest priority first:
    package defaults, then ``.{app_name}/config.yaml``, then
    ``~/.config/{app_name}/config.yaml``. An explicit *path* is applied last
    and must exist; the other locations are optional.

    Raises:
        FileNotFoundError: If *path* is given but is not a file.
    """

    def __init__(self, path: str | Path | None = None, app_name: str = "deductive-coder"):
        self._app_name = app_name
        self._config_locations = [
            Path.cwd() / f".{app_name}" / CONFIG_FILENAME,  # Project config
            Path.home() / ".config" / app_name / CONFIG_FILENAME,  # User overrides
        ]
        if path is not None:
            explicit = Path(path)
            if not explicit.is_file():
                raise FileNotFoundError(f"Config file not found: {explicit}")
            self._config_locations.append(explicit)

        self._data: dict[str, Any] = {}
        self.sources: list[str] = []
        self._load_all()

    def _load_all(self) -> None:
        self._apply(_get_package_defaults_path(), "defaults")
        for location in self._config_locations:
            if location.is_file():
                self._apply(location, str(location))

    def _apply(self, config_file, label: str) -> None:
        yaml = _get_yaml()
        content = config_file.read_text(encoding="utf-8")
        data = yaml.safe_load(content)
        if not data:
            return
        if not isinstance(data, dict):
            raise ValueError(f"Config file {label} must contain a mapping")
        _merge(self._data, copy.deepcopy(data))
        self.sources.append(label)

    def get(self, key: str, default: Any = None) -> Any:
        """Look up a dotted key, e.g. ``suggestions.model``."""
        node: Any = self._data
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    @property
    def palette(self) -> list[str]:
        return list(self.get("palette", []))

    @property
    def default_color(self) -> str:
        return self.get("default_color", "#3b82f6")

    @property
    def context_window(self) -> int:
        return int(self.get("context_window", 200))

    @property
    def paragraphs(self) -> bool:
        return bool(self.get("paragraphs", False))

    @property
    def suggestions(self) -> dict[str, Any]:
        return dict(self.get("suggestions", {}))

    # Environment ---------------------------------------------------------

    @property
    def api_key(self) -> str:
        return os.getenv("OPENROUTER_API_KEY", "")

    @property
    def site_url(self) -> str:
        return os.getenv("SITE_URL") or "https://deductive-coder.local"

    @property
    def site_name(self) -> str:
        return os.getenv("SITE_NAME") or "DeductiveCoder"
