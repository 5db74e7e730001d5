"""Configuration loading and validation for fridactl."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, replace
from importlib import resources
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from fridactl.core.errors import ConfigLoadError, ConfigValidationError
from fridactl.core.probes import DEFAULT_POLL_ATTEMPTS, DEFAULT_POLL_INTERVAL_S, FRIDA_VERSION

LOGGER = logging.getLogger(__name__)

DEFAULT_DOWNLOAD_URL = (
    "https://github.com/frida/frida/releases/download/"
    "{version}/frida-server-{version}-{platform}-{arch}.xz"
)


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys."""


UniqueKeyLoader.yaml_implicit_resolvers = {
    key: list(value) for key, value in yaml.SafeLoader.yaml_implicit_resolvers.items()
}

for first_char, mappings in list(UniqueKeyLoader.yaml_implicit_resolvers.items()):
    UniqueKeyLoader.yaml_implicit_resolvers[first_char] = [
        (tag, regexp)
        for tag, regexp in mappings
        if tag != "tag:yaml.org,2002:bool"
    ]


def _construct_mapping(loader: UniqueKeyLoader, node: yaml.Node, deep: bool = False) -> dict[str, Any]:
    mapping: dict[str, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in mapping:
            raise ConfigValidationError(f"Duplicate key '{key}' in YAML document")
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping,
)


@dataclass(frozen=True)
class Settings:
    server_version: str = FRIDA_VERSION
    download_url: str = DEFAULT_DOWNLOAD_URL
    poll_interval_s: float = DEFAULT_POLL_INTERVAL_S
    poll_attempts: int = DEFAULT_POLL_ATTEMPTS
    adb_host: str = "127.0.0.1"
    adb_port: int = 5037
    proxy_host: str | None = None
    certificate_path: Path | None = None
    activation_timeout_s: float = 3.0

    def read_certificate(self) -> str:
        if self.certificate_path is None:
            raise ConfigLoadError(
                "No CA certificate configured. Set proxy.certificate_path or pass --cert."
            )
        try:
            return self.certificate_path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigLoadError(f"Could not read certificate {self.certificate_path}: {exc}") from exc


@dataclass(frozen=True)
class LoadedSettings:
    settings: Settings
    source: Path | None
    warnings: tuple[str, ...]


def _load_schema_validator() -> Any:
    schema_text = resources.files("fridactl.schemas").joinpath("config.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def config_path() -> Path:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return xdg_config / "fridactl/config.yaml"


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigLoadError(f"Could not read config file {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise ConfigValidationError(f"Invalid YAML in {path}: {exc}") from exc

    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigValidationError(f"Config file {path} must contain a mapping at root")
    return loaded


def _build_settings(doc: dict[str, Any], source: Path) -> tuple[Settings, list[str]]:
    validator = _load_schema_validator()
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise ConfigValidationError(f"Schema validation failed for {source}{where}: {exc.message}") from exc

    warnings: list[str] = []
    server = doc.get("server", {})
    launch = doc.get("launch", {})
    adb = doc.get("adb", {})
    proxy = doc.get("proxy", {})

    certificate_path: Path | None = None
    if proxy.get("certificate_path"):
        certificate_path = Path(proxy["certificate_path"]).expanduser()
        if not certificate_path.is_file():
            warning = f"Configured certificate {certificate_path} does not exist"
            LOGGER.warning(warning)
            warnings.append(warning)

    defaults = Settings()
    settings = Settings(
        server_version=server.get("version", defaults.server_version),
        download_url=server.get("download_url", defaults.download_url),
        poll_interval_s=float(launch.get("poll_interval_s", defaults.poll_interval_s)),
        poll_attempts=int(launch.get("poll_attempts", defaults.poll_attempts)),
        adb_host=adb.get("host", defaults.adb_host),
        adb_port=int(adb.get("port", defaults.adb_port)),
        proxy_host=proxy.get("host", defaults.proxy_host),
        certificate_path=certificate_path,
        activation_timeout_s=float(doc.get("activation_timeout_s", defaults.activation_timeout_s)),
    )
    return settings, warnings


def load_settings(path: Path | None = None) -> LoadedSettings:
    """Load settings from ``path``, or the XDG config file if it exists, else defaults."""
    explicit = path is not None
    source = path or config_path()

    if not source.exists():
        if explicit:
            raise ConfigLoadError(f"Config file {source} does not exist")
        return LoadedSettings(settings=Settings(), source=None, warnings=())

    settings, warnings = _build_settings(_read_yaml(source), source)
    LOGGER.debug("Loaded settings from %s", source)
    return LoadedSettings(settings=settings, source=source, warnings=tuple(warnings))


def with_overrides(settings: Settings, **overrides: Any) -> Settings:
    """Return ``settings`` with every non-None override applied."""
    applied = {key: value for key, value in overrides.items() if value is not None}
    return replace(settings, **applied) if applied else settings
