"""Data-directory-aware configuration loading for vaultsync.

Repository defaults (``config/*.yml``) are overlaid with the machine's
``<data_dir>/config/*.yml``, validated against ``CONFIG_SCHEMA`` and then
checked for sync-specific mistakes. Nothing here raises: every problem becomes
a ``Diagnostic`` and the offending value falls back to its default.
"""

from __future__ import annotations

from copy import deepcopy
from dataclasses import dataclass, field
import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Mapping, MutableMapping, Optional, Tuple
from urllib.parse import urlparse

import yaml

REPO_ROOT = Path(__file__).resolve().parent.parent
DEFAULT_CONFIG_DIR = REPO_ROOT / "config"

DiagnosticLevel = Literal["info", "warning", "error"]
ConfigurationStatus = Literal["ready", "missing", "invalid"]

SchemaSpec = Dict[str, Any]

CREDENTIAL_ENV_VARS = {
    "username": "VAULTSYNC_USERNAME",
    "passphrase": "VAULTSYNC_PASSPHRASE",
}
NUMBER = (int, float)


def _section(**schema: SchemaSpec) -> SchemaSpec:
    return {"type": dict, "schema": schema, "default": {}}


CONFIG_SCHEMA: SchemaSpec = {
    "logging": _section(
        level={"type": str, "default": "INFO"},
        structured={"type": bool, "default": True},
    ),
    "ui": _section(
        verbose={"type": bool, "default": True},
    ),
    "sync": _section(
        enabled={"type": bool, "default": False},
        server_url={"type": str, "default": ""},
        timeout={"type": NUMBER, "default": 30, "min": 1},
        username={"type": str, "default": ""},
        passphrase={"type": str, "default": ""},
    ),
    "checkpoints": _section(
        directory={"type": str, "default": "state/checkpoints"},
        max_auto_saves={"type": int, "default": 10, "min": 1, "max": 10},
        lock_timeout={"type": NUMBER, "default": 5.0, "min": 0},
        lock_retry_delay={"type": NUMBER, "default": 0.05, "min": 0},
    ),
    "server": _section(
        host={"type": str, "default": "127.0.0.1"},
        port={"type": int, "default": 8000, "min": 1, "max": 65535},
        base_path={"type": str, "default": "/sync"},
        data_path={"type": str, "default": "server/blobs"},
        database_path={"type": str, "default": "server/metadata.sqlite3"},
        rate_limit_max={"type": int, "default": 3, "min": 1},
        rate_limit_window={"type": int, "default": 3600, "min": 1},
        max_identifier_length={"type": int, "default": 512, "min": 1, "max": 512},
        cors_origins={"type": list, "item_type": str, "default_factory": lambda: ["*"]},
    ),
}


@dataclass
class Diagnostic:
    """Represents a configuration validation or loading issue."""

    level: DiagnosticLevel
    message: str
    source: Optional[Path] = None


@dataclass
class ConfigurationBundle:
    """All configuration data vaultsync needs at runtime."""

    data_dir: Path
    status: ConfigurationStatus
    merged: Dict[str, Any] = field(default_factory=dict)
    repo_defaults: Dict[str, Any] = field(default_factory=dict)
    local_overrides: Dict[str, Any] = field(default_factory=dict)
    files_loaded: List[Path] = field(default_factory=list)
    diagnostics: List[Diagnostic] = field(default_factory=list)
    log_path: Optional[Path] = None


def resolve_data_dir(env: Optional[Mapping[str, str]] = None) -> Path:
    """``VAULTSYNC_DATA_PATH``, else ``$XDG_DATA_HOME/vaultsync``, else ``~/.local/share/vaultsync``."""

    env_source = env if env is not None else os.environ
    explicit = env_source.get("VAULTSYNC_DATA_PATH")
    if explicit:
        return Path(explicit).expanduser()
    xdg_data = env_source.get("XDG_DATA_HOME")
    if xdg_data:
        return Path(xdg_data).expanduser() / "vaultsync"
    return Path("~/.local/share/vaultsync").expanduser()


def load_runtime_configuration(
    data_dir: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
) -> ConfigurationBundle:
    """Load configuration defaults and data-directory overrides."""

    env_source = env if env is not None else os.environ
    resolved_dir = data_dir or resolve_data_dir(env_source)
    diagnostics: List[Diagnostic] = []

    repo_defaults, files_loaded = _load_directory_configs(DEFAULT_CONFIG_DIR, diagnostics, "repo defaults")

    status: ConfigurationStatus = "ready"
    local_overrides: Dict[str, Any] = {}
    if not resolved_dir.exists():
        diagnostics.append(Diagnostic("error", f"Data directory '{resolved_dir}' does not exist."))
        status = "missing"
    elif not resolved_dir.is_dir():
        diagnostics.append(Diagnostic("error", f"Data path '{resolved_dir}' is not a directory."))
        status = "invalid"
    else:
        local_overrides, override_files = _load_directory_configs(
            resolved_dir / "config", diagnostics, "local overrides"
        )
        files_loaded.extend(override_files)

    merged = deepcopy(repo_defaults)
    _deep_merge_dicts(merged, local_overrides)
    _validate_section(merged, CONFIG_SCHEMA, "config", diagnostics)
    _check_sync_settings(merged, local_overrides, diagnostics)
    _apply_credential_env(merged, env_source)

    if status == "ready" and any(diag.level == "error" for diag in diagnostics):
        status = "invalid"

    return ConfigurationBundle(
        data_dir=resolved_dir,
        status=status,
        merged=merged,
        repo_defaults=repo_defaults,
        local_overrides=local_overrides,
        files_loaded=files_loaded,
        diagnostics=diagnostics,
    )


def _apply_credential_env(config: Dict[str, Any], env: Mapping[str, str]) -> None:
    sync_section = config.setdefault("sync", {})
    for key, env_name in CREDENTIAL_ENV_VARS.items():
        value = env.get(env_name)
        if value:
            sync_section[key] = value


def _check_sync_settings(
    config: Dict[str, Any],
    local_overrides: Mapping[str, Any],
    diagnostics: List[Diagnostic],
) -> None:
    """Cross-field checks the schema cannot express."""

    sync = config["sync"]
    server_url = sync["server_url"]
    if server_url and urlparse(server_url).scheme not in ("http", "https"):
        diagnostics.append(Diagnostic("error", f"'config.sync.server_url' must be an http(s) URL, got '{server_url}'."))
        sync["server_url"] = ""
    if sync["enabled"] and not sync["server_url"]:
        diagnostics.append(Diagnostic("warning", "Sync is enabled but 'config.sync.server_url' is empty."))

    local_sync = local_overrides.get("sync")
    if isinstance(local_sync, Mapping) and local_sync.get("passphrase"):
        diagnostics.append(
            Diagnostic(
                "warning",
                "A sync passphrase is stored in a config file; prefer VAULTSYNC_PASSPHRASE.",
            )
        )

    server = config["server"]
    base_path = server["base_path"]
    if not base_path.startswith("/") or base_path.rstrip("/") == "":
        diagnostics.append(
            Diagnostic("error", f"'config.server.base_path' must start with '/' and name a path, got '{base_path}'.")
        )
        server["base_path"] = CONFIG_SCHEMA["server"]["schema"]["base_path"]["default"]


def _load_directory_configs(
    directory: Path,
    diagnostics: List[Diagnostic],
    label: str,
) -> Tuple[Dict[str, Any], List[Path]]:
    """Load all YAML files from a directory, merging them in name order."""

    data: Dict[str, Any] = {}
    loaded_files: List[Path] = []

    if not directory.exists():
        diagnostics.append(
            Diagnostic("warning", f"No configuration directory found at '{directory}' ({label}).", directory)
        )
        return data, loaded_files
    if not directory.is_dir():
        diagnostics.append(
            Diagnostic("error", f"Configuration path '{directory}' ({label}) is not a directory.", directory)
        )
        return data, loaded_files

    for yaml_file in sorted(directory.glob("*.yml")) + sorted(directory.glob("*.yaml")):
        try:
            content = yaml.safe_load(yaml_file.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:
            diagnostics.append(Diagnostic("error", f"Failed to parse '{yaml_file}': {exc}", yaml_file))
            continue

        if content is not None and not isinstance(content, MutableMapping):
            diagnostics.append(
                Diagnostic("warning", f"Ignoring '{yaml_file}' because it does not contain a mapping.", yaml_file)
            )
            continue
        _deep_merge_dicts(data, dict(content or {}))
        loaded_files.append(yaml_file)

    if not loaded_files:
        diagnostics.append(Diagnostic("info", f"No YAML files found under '{directory}' ({label}).", directory))
    return data, loaded_files


def _deep_merge_dicts(dest: MutableMapping[str, Any], source: Mapping[str, Any]) -> None:
    for key, value in source.items():
        if isinstance(dest.get(key), MutableMapping) and isinstance(value, Mapping):
            _deep_merge_dicts(dest[key], value)
        else:
            dest[key] = deepcopy(value)


def _default_from_spec(spec: SchemaSpec) -> Any:
    if callable(spec.get("default_factory")):
        return spec["default_factory"]()
    return deepcopy(spec.get("default"))


def _type_name(expected_type: Any) -> str:
    if isinstance(expected_type, tuple):
        return ", ".join(t.__name__ for t in expected_type)
    return expected_type.__name__


def _matches_type(value: Any, expected_type: Any) -> bool:
    # bool is an int subclass; never accept it where a number is expected
    if isinstance(value, bool) and expected_type is not bool:
        return isinstance(expected_type, tuple) and bool in expected_type
    return isinstance(value, expected_type)


def _out_of_bounds(value: Any, spec: SchemaSpec) -> Optional[str]:
    if "min" in spec and value < spec["min"]:
        return f"at least {spec['min']}"
    if "max" in spec and value > spec["max"]:
        return f"at most {spec['max']}"
    return None


def _validate_section(
    target: Dict[str, Any],
    schema: SchemaSpec,
    path: str,
    diagnostics: List[Diagnostic],
) -> None:
    for key in target:
        if key not in schema:
            diagnostics.append(Diagnostic("warning", f"Unknown configuration key '{path}.{key}'."))

    for key, spec in schema.items():
        child_path = f"{path}.{key}"
        expected_type = spec.get("type")
        if key not in target:
            target[key] = _default_from_spec(spec)
        value = target[key]

        if expected_type is dict:
            if not isinstance(value, dict):
                diagnostics.append(Diagnostic("error", f"'{child_path}' must be a mapping."))
                target[key] = value = _default_from_spec(spec) or {}
            _validate_section(value, spec.get("schema", {}), child_path, diagnostics)
        elif expected_type is list:
            target[key] = _validate_list(value, spec, child_path, diagnostics)
        elif not _matches_type(value, expected_type):
            diagnostics.append(Diagnostic("error", f"'{child_path}' must be of type {_type_name(expected_type)}."))
            target[key] = _default_from_spec(spec)
        else:
            bound = _out_of_bounds(value, spec)
            if bound:
                diagnostics.append(Diagnostic("error", f"'{child_path}' must be {bound}, got {value}."))
                target[key] = _default_from_spec(spec)


def _validate_list(value: Any, spec: SchemaSpec, path: str, diagnostics: List[Diagnostic]) -> List[Any]:
    if not isinstance(value, list):
        diagnostics.append(Diagnostic("error", f"'{path}' must be a list."))
        return _default_from_spec(spec) or []
    item_type = spec.get("item_type")
    if item_type is None:
        return value
    kept: List[Any] = []
    for idx, item in enumerate(value):
        if isinstance(item, item_type):
            kept.append(item)
        else:
            diagnostics.append(Diagnostic("error", f"'{path}[{idx}]' must be of type {item_type.__name__}."))
    return kept


__all__ = [
    "CONFIG_SCHEMA",
    "ConfigurationBundle",
    "ConfigurationStatus",
    "DEFAULT_CONFIG_DIR",
    "Diagnostic",
    "load_runtime_configuration",
    "resolve_data_dir",
]
