#!/usr/bin/env python3
"""
tierup configuration loading.

Layering (lowest to highest precedence):
1. DEFAULT_CONFIG (built in)
2. tierup.defaults.toml.j2 (committed, required)
3. tierup.toml.j2 (operator overrides, created from defaults if missing)

Each template is rendered with Jinja2 (context: config merged so far + env),
$VAR / ${VAR} placeholders are expanded fail-fast, and the result is parsed as
TOML and deep-merged key by key. The merged config is written to tierup.toml.

Secret directives (ASK_VAULT:, ASK_EXTERNAL:) are kept verbatim here; they are
resolved only at apply time by the stage that needs them.
"""

from __future__ import annotations

import copy
import logging
import os
import re
import shutil
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from .config_constants import (
    CONFIG_DEFAULTS,
    CONFIG_OVERRIDES,
    CONFIG_RENDERED,
    DIRECTIVE_EXTERNAL,
    DIRECTIVE_VAULT,
    STATE_FILE,
)
from .errors import ConfigError

logger = logging.getLogger(__name__)


DEFAULT_CONFIG: dict = {
    'app': {
        'name': 'app',
        'public_host': 'localhost',
    },
    'host': {
        'manage_packages': True,
        'package_manager': 'apt-get',
        'runtime_packages': ['docker.io'],
        'vcs_packages': ['git'],
    },
    'source': {
        'branch': 'main',
        'target_dir': '/opt/app',
        'depth': 1,
    },
    'network': {
        'name': 'appnet',
        'driver': 'bridge',
    },
    'database': {
        'container_name': 'mongodb',
        'image': 'mongo:6.0',
        'port': 27017,
        'container_port': 27017,
        'volume': 'mongo-data',
        'data_path': '/data/db',
        'db_name': 'app',
        'username': '',
        'password': '',
        'env': {},
        'readiness': {'host': '127.0.0.1', 'timeout': 60, 'poll_interval': 2},
    },
    'api': {
        'container_name': 'backend',
        'image': 'app-backend:latest',
        'build_context': 'backend',
        'port': 5000,
        'container_port': 5000,
        'env_file': 'backend.env',
        'connection_env': 'MONGO_URI',
        'env': {},
        'readiness': {'host': '127.0.0.1', 'timeout': 120, 'poll_interval': 3},
    },
    'frontend': {
        'container_name': 'frontend',
        'image': 'app-frontend:latest',
        'build_context': 'frontend',
        'port': 3000,
        'container_port': 3000,
        'env': {},
        'readiness': {'host': '127.0.0.1', 'timeout': 300, 'poll_interval': 5},
    },
    'vault': {
        'addr': '',
        'mount': 'secret',
    },
}


# ============================================================================
# Template rendering / parsing (Phase 1-3)
# ============================================================================


def parse_toml_string(toml_text: str, source: str) -> dict:
    """
    Parse TOML from a string with fail-fast error context.
    """
    try:
        return tomllib.loads(toml_text)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(
            f"Failed to parse TOML from {source}\n"
            f"TOML syntax error: {e}"
        ) from e


ENV_VAR_PATTERN = re.compile(r"\$(\w+)|\$\{([^}]+)\}")


def expand_env_vars_or_fail(raw_text: str, source: str, environ: Optional[dict] = None) -> str:
    """
    Expand $VAR / ${VAR} using the environment; fail-fast on missing values.
    """
    environ = os.environ if environ is None else environ
    missing = set()

    def _replace(match: re.Match) -> str:
        var_name = match.group(1) or match.group(2)
        value = environ.get(var_name)
        if value is None or value == "":
            missing.add(var_name)
            return match.group(0)
        return value

    expanded = ENV_VAR_PATTERN.sub(_replace, raw_text)

    if missing:
        missing_list = ", ".join(sorted(missing))
        raise ConfigError(
            f"Missing required environment values in {source}: {missing_list}"
        )

    return expanded


def render_jinja2(template_path: Path, context: dict) -> str:
    """
    Render a Jinja2 template file with the given context.
    """
    from jinja2 import StrictUndefined, Template, TemplateError

    logger.debug(f"Rendering Jinja2 template: {template_path}")

    if not template_path.exists():
        raise FileNotFoundError(f"Template file not found: {template_path}")

    template_content = template_path.read_text()
    logger.debug(f"  Template size: {len(template_content)} bytes")

    try:
        return Template(template_content, undefined=StrictUndefined).render(**context)
    except TemplateError as e:
        raise ConfigError(f"Failed to render template {template_path}: {e}") from e


def build_template_context(config: dict) -> dict:
    """
    Build Jinja2 template context with config + env.
    """
    return {
        **config,
        "env": dict(os.environ),
    }


def render_toml_template(template_path: Path, context: dict) -> dict:
    """
    Render a TOML Jinja2 template, expand env vars, and parse.
    """
    rendered = render_jinja2(template_path, build_template_context(context))
    expanded = expand_env_vars_or_fail(rendered, str(template_path))
    return parse_toml_string(expanded, str(template_path))


def ensure_override_template(defaults_path: Path, overrides_path: Path) -> None:
    """
    Ensure the override template exists by copying defaults if missing.
    """
    if overrides_path.exists() or not defaults_path.exists():
        return

    overrides_path.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(defaults_path, overrides_path)
    logger.info(f"Created override template from defaults: {overrides_path}")


def write_rendered_toml(output_path: Path, config: dict) -> None:
    """
    Write rendered TOML to disk using tomli_w.
    """
    import tomli_w

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, 'wb') as f:
        tomli_w.dump(config, f)


def deep_merge_configs(base: dict, override: dict) -> dict:
    """
    Deep merge two configs (key-level merge). Scalars and lists in ``override`` win.
    """
    result = copy.deepcopy(base)

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge_configs(result[key], value)
        else:
            if key in result:
                logger.debug(f"  Override: {key} = {value!r} (was: {result[key]!r})")
            result[key] = copy.deepcopy(value)
    return result


def render_config_chain(working_dir: Path) -> dict:
    """
    Render defaults + overrides templates in ``working_dir`` on top of DEFAULT_CONFIG.
    """
    defaults_path = working_dir / CONFIG_DEFAULTS
    overrides_path = working_dir / CONFIG_OVERRIDES

    if not defaults_path.exists():
        raise ConfigError(f"{CONFIG_DEFAULTS} not found in {working_dir}")

    ensure_override_template(defaults_path, overrides_path)

    merged = copy.deepcopy(DEFAULT_CONFIG)
    merged = deep_merge_configs(merged, render_toml_template(defaults_path, merged))

    if overrides_path.exists():
        merged = deep_merge_configs(merged, render_toml_template(overrides_path, merged))

    write_rendered_toml(working_dir / CONFIG_RENDERED, merged)
    return merged


# ============================================================================
# Typed view
# ============================================================================


@dataclass(frozen=True)
class ReadinessConfig:
    host: str
    timeout: float
    poll_interval: float


@dataclass(frozen=True)
class ServiceConfig:
    container_name: str
    image: str
    port: int
    container_port: int
    readiness: ReadinessConfig
    env: dict[str, str] = field(default_factory=dict)
    build_context: Optional[str] = None


@dataclass(frozen=True)
class DeployConfig:
    working_dir: Path
    raw: dict

    @property
    def app_name(self) -> str:
        return self.raw['app']['name']

    @property
    def public_host(self) -> str:
        return self.raw['app']['public_host']

    @property
    def host(self) -> dict:
        return self.raw['host']

    @property
    def source(self) -> dict:
        return self.raw['source']

    @property
    def target_dir(self) -> Path:
        return Path(self.raw['source']['target_dir'])

    @property
    def network_name(self) -> str:
        return self.raw['network']['name']

    @property
    def network_driver(self) -> str:
        return self.raw['network']['driver']

    @property
    def database(self) -> dict:
        return self.raw['database']

    @property
    def vault(self) -> dict:
        return self.raw['vault']

    @property
    def state_path(self) -> Path:
        return self.working_dir / STATE_FILE

    def service(self, key: str) -> ServiceConfig:
        section = self.raw[key]
        readiness = section['readiness']
        return ServiceConfig(
            container_name=section['container_name'],
            image=section['image'],
            port=int(section['port']),
            container_port=int(section.get('container_port', section['port'])),
            readiness=ReadinessConfig(
                host=readiness['host'],
                timeout=float(readiness['timeout']),
                poll_interval=float(readiness['poll_interval']),
            ),
            env={k: str(v) for k, v in section.get('env', {}).items()},
            build_context=section.get('build_context'),
        )


SERVICE_SECTIONS = ('database', 'api', 'frontend')


def _require(config: dict, dotted: str) -> Any:
    current: Any = config
    for part in dotted.split('.'):
        if not isinstance(current, dict) or part not in current:
            raise ConfigError(f"Missing required config value: {dotted}")
        current = current[part]
    if current in ('', None):
        raise ConfigError(f"Missing required config value: {dotted}")
    return current


def _check_port(value: Any, dotted: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or not 1 <= value <= 65535:
        raise ConfigError(f"{dotted} must be an integer port in 1..65535 (got {value!r})")


def _check_positive(value: Any, dotted: str) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ConfigError(f"{dotted} must be a positive number (got {value!r})")


def validate_config(config: dict) -> None:
    """
    Validate merged config; raise ConfigError on the first problem found.
    """
    _require(config, 'app.name')
    _require(config, 'source.repo_url')
    _require(config, 'source.branch')
    _require(config, 'source.target_dir')
    _require(config, 'network.name')
    _require(config, 'database.volume')

    host_ports: dict[int, str] = {}
    for section in SERVICE_SECTIONS:
        _require(config, f'{section}.container_name')
        _require(config, f'{section}.image')
        port = _require(config, f'{section}.port')
        _check_port(port, f'{section}.port')
        _check_port(config[section].get('container_port', port), f'{section}.container_port')
        if port in host_ports:
            raise ConfigError(f"{section}.port {port} collides with {host_ports[port]}.port")
        host_ports[port] = section

        readiness = config[section].get('readiness', {})
        _require(config, f'{section}.readiness.host')
        _check_positive(readiness.get('timeout'), f'{section}.readiness.timeout')
        _check_positive(readiness.get('poll_interval'), f'{section}.readiness.poll_interval')

    for section in ('api', 'frontend'):
        _require(config, f'{section}.build_context')


def load_config(working_dir: Path) -> DeployConfig:
    """
    Render, merge and validate the deployment configuration in ``working_dir``.
    """
    working_dir = Path(working_dir).resolve()
    raw = render_config_chain(working_dir)
    validate_config(raw)
    return DeployConfig(working_dir=working_dir, raw=raw)


def is_secret_directive(value: Any) -> bool:
    return isinstance(value, str) and value.startswith((DIRECTIVE_VAULT, DIRECTIVE_EXTERNAL))


SENSITIVE_KEY_PATTERN = re.compile(r"(password|secret|token|key)", re.IGNORECASE)


def mask_secrets(data: Any, key: str = "") -> Any:
    """Copy of ``data`` with literal secrets masked (directives stay visible)."""
    if isinstance(data, dict):
        return {k: mask_secrets(v, k) for k, v in data.items()}
    if isinstance(data, list):
        return [mask_secrets(item, key) for item in data]
    if isinstance(data, str) and data and SENSITIVE_KEY_PATTERN.search(key) and not is_secret_directive(data):
        return '***'
    return data
