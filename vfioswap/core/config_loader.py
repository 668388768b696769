"""Config file discovery, YAML parsing and schema validation."""

from __future__ import annotations

import json
import logging
import os
import pwd
from dataclasses import dataclass
from importlib import resources
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from vfioswap.core.errors import ConfigError
from vfioswap.core.model import ConsumerIdentity, SwapConfig

LOGGER = logging.getLogger(__name__)

SYSTEM_CONFIG = Path("/etc/vfioswap/config.yaml")


class UniqueKeyLoader(yaml.SafeLoader):
    """SafeLoader that rejects duplicate keys and keeps yes/no/on/off as strings."""


# Booleans are normalized after schema validation, so "on"/"yes" stay strings here.
UniqueKeyLoader.yaml_implicit_resolvers = {
    first_char: [(tag, regexp) for tag, regexp in resolvers if tag != "tag:yaml.org,2002:bool"]
    for first_char, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}


def _construct_mapping(loader: UniqueKeyLoader, node: yaml.Node, deep: bool = False) -> dict[str, Any]:
    keys: set[Any] = set()
    pairs: list[tuple[Any, Any]] = []
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in keys:
            raise ConfigError(f"Duplicate key '{key}' in YAML document")
        keys.add(key)
        pairs.append((key, loader.construct_object(value_node, deep=deep)))
    return dict(pairs)


UniqueKeyLoader.add_constructor(yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG, _construct_mapping)


@dataclass(frozen=True)
class LoadedConfig:
    config: SwapConfig
    source: Path | None
    warnings: tuple[str, ...]


def _load_schema_validator() -> Any:
    schema_text = resources.files("vfioswap.schemas").joinpath("config.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def _invoking_user_home() -> Path:
    sudo_user = os.environ.get("SUDO_USER")
    if sudo_user:
        try:
            return Path(pwd.getpwnam(sudo_user).pw_dir)
        except KeyError:
            LOGGER.debug("SUDO_USER %s has no passwd entry", sudo_user)
    return Path.home()


def _config_candidates() -> tuple[Path, ...]:
    home = _invoking_user_home()
    if os.environ.get("SUDO_USER"):
        # XDG_CONFIG_HOME under sudo belongs to root, not the invoking user.
        xdg_config = home / ".config"
    else:
        xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", home / ".config"))
    return xdg_config / "vfioswap/config.yaml", SYSTEM_CONFIG


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Could not read config file {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc

    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigError(f"Config file {path} must contain a mapping at root")
    return loaded


def _normalize_bool(value: Any, *, context: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
    raise ConfigError(f"{context} must be boolean true/false")


def _build_config(doc: dict[str, Any], source: Path) -> SwapConfig:
    validator = _load_schema_validator()
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise ConfigError(f"Schema validation failed for {source}{where}: {exc.message}") from exc

    defaults = SwapConfig()
    consumer = doc.get("consumer", {})
    return SwapConfig(
        devices=tuple(doc.get("devices", defaults.devices)),
        isolation_driver=doc.get("isolation_driver", defaults.isolation_driver),
        consumer=ConsumerIdentity(
            user=consumer.get("user", defaults.consumer.user),
            group=consumer.get("group", defaults.consumer.group),
        ),
        ledger_path=Path(doc.get("ledger_path", defaults.ledger_path)),
        companion_service=doc.get("companion_service", defaults.companion_service),
        restart_companion=_normalize_bool(
            doc.get("restart_companion", defaults.restart_companion),
            context="restart_companion",
        ),
        optional_modules=tuple(doc.get("optional_modules", defaults.optional_modules)),
        extra_handles=tuple(Path(p) for p in doc.get("extra_handles", defaults.extra_handles)),
    )


def load_config(path: Path | None = None) -> LoadedConfig:
    """Load the first config file found, or defaults when there is none.

    An explicit ``path`` must exist. Symlinked config files are ignored.
    """
    warnings: list[str] = []
    if path is not None:
        if not path.exists():
            raise ConfigError(f"Config file {path} does not exist")
        candidates: tuple[Path, ...] = (path,)
    else:
        candidates = tuple(p for p in _config_candidates() if p.is_file())

    for candidate in candidates:
        if candidate.is_symlink():
            warning = f"Config file {candidate} is a symlink. Ignoring for security."
            LOGGER.warning(warning)
            warnings.append(warning)
            continue
        LOGGER.debug("Loading config from %s", candidate)
        config = _build_config(_read_yaml(candidate), candidate)
        return LoadedConfig(config=config, source=candidate, warnings=tuple(warnings))

    LOGGER.debug("No config file found, using defaults")
    return LoadedConfig(config=SwapConfig(), source=None, warnings=tuple(warnings))
