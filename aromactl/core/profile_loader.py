"""Device profile loading and validation for YAML-based aromactl profiles."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from aromactl.core.errors import ConfigValidationError, ProfileLoadError, ProfileValidationError
from aromactl.core.gatt import normalize_uuid
from aromactl.core.model import (
    DEFAULT_CONFIG,
    ConfigPayload,
    DeviceProfile,
    GattSpec,
    ScanFilter,
    Timing,
)

LOGGER = logging.getLogger(__name__)

_BOOL_WORDS = {"true": True, "false": False}


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys."""


# Only literal true/false are booleans; _normalize_bool parses them.
UniqueKeyLoader.yaml_implicit_resolvers = {
    first_char: [(tag, regexp) for tag, regexp in resolvers if tag != "tag:yaml.org,2002:bool"]
    for first_char, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}


def _construct_mapping(loader: UniqueKeyLoader, node: yaml.Node, deep: bool = False) -> dict[str, Any]:
    mapping: dict[str, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in mapping:
            raise ProfileValidationError(f"Duplicate key '{key}' in YAML document")
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping,
)


@dataclass(frozen=True)
class LoadedProfiles:
    profiles: dict[str, DeviceProfile]
    warnings: tuple[str, ...]


@lru_cache(maxsize=1)
def _profile_validator() -> Any:
    schema_file = resources.files("aromactl.schemas") / "profile.schema.json"
    schema = json.loads(schema_file.read_text(encoding="utf-8"))
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def _profile_dirs() -> tuple[Path, Path]:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    xdg_data = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local/share"))
    return xdg_config / "aromactl/profiles", xdg_data / "aromactl/profiles"


def _read_yaml(path: Path | Traversable) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ProfileLoadError(f"Could not read profile file {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise ProfileValidationError(f"Invalid YAML in {path}: {exc}") from exc

    if not isinstance(loaded, dict):
        raise ProfileValidationError(f"Profile file {path} must contain a mapping at root")
    return loaded


def _normalize_uuid(value: str, *, context: str) -> str:
    try:
        return normalize_uuid(value)
    except ValueError as exc:
        raise ProfileValidationError(
            f"{context} must be a 16-bit, 32-bit, or 128-bit UUID string"
        ) from exc


def _normalize_bool(value: Any, *, context: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in _BOOL_WORDS:
        return _BOOL_WORDS[value.strip().lower()]
    raise ProfileValidationError(f"{context} must be boolean true/false")


def _build_timing(doc: dict[str, Any]) -> Timing:
    defaults = Timing()
    timing = doc.get("timing", {})
    return Timing(
        scan_window_s=float(timing.get("scan_window_s", defaults.scan_window_s)),
        connect_timeout_s=float(timing.get("connect_timeout_s", defaults.connect_timeout_s)),
        discovery_timeout_s=float(timing.get("discovery_timeout_s", defaults.discovery_timeout_s)),
        ack_timeout_s=float(timing.get("ack_timeout_s", defaults.ack_timeout_s)),
        max_retries=int(timing.get("max_retries", defaults.max_retries)),
        backoff_s=float(timing.get("backoff_s", defaults.backoff_s)),
    )


def _build_defaults(doc: dict[str, Any], source: Path | Traversable) -> ConfigPayload:
    if "defaults" not in doc:
        return DEFAULT_CONFIG
    try:
        return ConfigPayload(
            intensity=doc["defaults"]["intensity"],
            interval=doc["defaults"]["interval"],
        )
    except ConfigValidationError as exc:
        raise ProfileValidationError(f"Invalid defaults in {source}: {exc}") from exc


def _build_profile(doc: dict[str, Any], source: Path | Traversable) -> DeviceProfile:
    validator = _profile_validator()
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise ProfileValidationError(f"Schema validation failed for {source}{where}: {exc.message}") from exc

    profile_id = doc["id"]
    gatt = doc["gatt"]
    match = doc["match"]
    return DeviceProfile(
        id=profile_id,
        name=doc["name"],
        match=ScanFilter(
            name_contains=tuple(match.get("name_contains", [])),
            service_uuids=tuple(
                _normalize_uuid(uuid, context=f"{profile_id}.match.service_uuids")
                for uuid in match.get("service_uuids", [])
            ),
        ),
        gatt=GattSpec(
            service_uuid=_normalize_uuid(gatt["service_uuid"], context=f"{profile_id}.gatt.service_uuid"),
            config_char_uuid=_normalize_uuid(
                gatt["config_char_uuid"],
                context=f"{profile_id}.gatt.config_char_uuid",
            ),
            status_char_uuid=_normalize_uuid(
                gatt["status_char_uuid"],
                context=f"{profile_id}.gatt.status_char_uuid",
            )
            if "status_char_uuid" in gatt
            else None,
            write_with_response=_normalize_bool(
                gatt.get("write_with_response", True),
                context=f"{profile_id}.gatt.write_with_response",
            ),
        ),
        timing=_build_timing(doc),
        defaults=_build_defaults(doc, source),
    )


def _iter_packaged_profile_paths() -> list[Traversable]:
    profile_root = resources.files("aromactl.profiles")
    return [item for item in profile_root.iterdir() if item.name.endswith((".yml", ".yaml"))]


def _iter_user_profile_paths() -> list[Path]:
    paths: list[Path] = []
    for directory in _profile_dirs():
        if not directory.exists() or not directory.is_dir():
            continue
        paths.extend(sorted(p for p in directory.iterdir() if p.suffix in {".yml", ".yaml"}))
    return paths


def load_profiles() -> LoadedProfiles:
    profiles: dict[str, DeviceProfile] = {}
    warnings: list[str] = []

    for path in sorted(_iter_packaged_profile_paths(), key=lambda p: p.name):
        doc = _read_yaml(path)
        profile = _build_profile(doc, path)
        profiles[profile.id] = profile

    for path in _iter_user_profile_paths():
        doc = _read_yaml(path)
        profile = _build_profile(doc, path)
        if profile.id in profiles:
            warning = f"User profile '{profile.id}' overrides packaged profile"
            LOGGER.warning(warning)
            warnings.append(warning)
        profiles[profile.id] = profile

    return LoadedProfiles(profiles=profiles, warnings=tuple(warnings))
