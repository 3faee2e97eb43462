#!/usr/bin/env python3
"""
The six deployment stages and the context they run against.

    1 bootstrap   container runtime present and usable
    2 source      git present; fresh checkout of the application source
    3 network     isolated network for name resolution between services
    4 database    volume + database container; gate on database port
    5 api         runtime config + image build + container; gate on API port
    6 frontend    image build + container; gate on frontend port; report URLs
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional
from urllib.parse import quote

from jinja2 import Template

from . import console
from .config import DeployConfig, ServiceConfig
from .config_constants import LABEL_APP
from .converge import ensure_container, ensure_image, ensure_network, ensure_source_tree, ensure_volume
from .errors import ResourceApplyFailure
from .models import (
    ContainerSpec,
    NetworkHandle,
    PortBinding,
    Readiness,
    ServiceEndpoint,
    SourceSpec,
    StageDescriptor,
    VolumeHandle,
)
from .packages import PackageManager
from .readiness import tcp_probe
from .runtime import ContainerRuntime
from .secret_resolver import SecretResolver
from .vcs import GitClient

logger = logging.getLogger(__name__)


RUNTIME_CONFIG_TEMPLATE = """\
# Generated by tierup - do not edit
{% for key, value in env | dictsort %}{{ key }}={{ value }}
{% endfor %}"""


@dataclass
class StageContext:
    config: DeployConfig
    runtime: ContainerRuntime
    git: GitClient
    packages: PackageManager
    secrets: SecretResolver
    dry_run: bool = False
    probe: Callable[[ServiceEndpoint], bool] = tcp_probe
    facts: dict = field(default_factory=dict)


def build_context(config: DeployConfig, dry_run: bool = False) -> StageContext:
    return StageContext(
        config=config,
        runtime=ContainerRuntime(dry_run=dry_run),
        git=GitClient(dry_run=dry_run),
        packages=PackageManager(config.host.get('package_manager', 'apt-get'), dry_run=dry_run),
        secrets=SecretResolver(config.vault),
        dry_run=dry_run,
    )


# ============================================================================
# Spec builders (config -> handles/specs)
# ============================================================================


def app_labels(config: DeployConfig) -> dict[str, str]:
    return {LABEL_APP: config.app_name}


def network_handle(config: DeployConfig) -> NetworkHandle:
    return NetworkHandle(config.network_name, config.network_driver, app_labels(config))


def volume_handle(config: DeployConfig) -> VolumeHandle:
    return VolumeHandle(config.database['volume'], app_labels(config))


def source_spec(config: DeployConfig) -> SourceSpec:
    source = config.source
    return SourceSpec(
        repo_url=source['repo_url'],
        branch=source['branch'],
        target_dir=config.target_dir,
        depth=int(source.get('depth', 1)),
    )


def service_readiness(name: str, service: ServiceConfig) -> Readiness:
    endpoint = ServiceEndpoint(name=name, host=service.readiness.host, port=service.port)
    return Readiness(endpoint, timeout=service.readiness.timeout, poll_interval=service.readiness.poll_interval)


def build_context_dir(config: DeployConfig, service: ServiceConfig) -> Path:
    context = Path(service.build_context or '.')
    return context if context.is_absolute() else config.target_dir / context


def container_spec(
    config: DeployConfig,
    service: ServiceConfig,
    env: dict[str, str],
    volumes: Optional[dict[str, str]] = None,
    build: bool = True,
) -> ContainerSpec:
    return ContainerSpec(
        name=service.container_name,
        image=service.image,
        network=config.network_name,
        build_context=build_context_dir(config, service) if build else None,
        ports=(PortBinding(service.port, service.container_port),),
        env=env,
        volumes=volumes or {},
        labels=app_labels(config),
    )


def database_env(ctx: StageContext) -> dict[str, str]:
    database = ctx.config.database
    env = ctx.secrets.resolve_mapping(database.get('env', {}))
    username = ctx.secrets.resolve(database.get('username', ''))
    password = ctx.secrets.resolve(database.get('password', ''))
    if username and password:
        env['MONGO_INITDB_ROOT_USERNAME'] = username
        env['MONGO_INITDB_ROOT_PASSWORD'] = password
    return env


def connection_string(ctx: StageContext) -> str:
    """MongoDB URI for the API; credentials are resolved here, at apply time."""
    database = ctx.config.database
    service = ctx.config.service('database')
    username = ctx.secrets.resolve(database.get('username', ''))
    password = ctx.secrets.resolve(database.get('password', ''))
    host = f"{service.container_name}:{service.container_port}"
    db_name = database.get('db_name', '')

    if username and password:
        credentials = f"{quote(username, safe='')}:{quote(password, safe='')}@"
        return f"mongodb://{credentials}{host}/{db_name}?authSource=admin"
    return f"mongodb://{host}/{db_name}"


def access_endpoints(config: DeployConfig) -> dict[str, str]:
    host = config.public_host
    return {
        'frontend': f"http://{host}:{config.service('frontend').port}",
        'api': f"http://{host}:{config.service('api').port}",
    }


def runtime_config_path(config: DeployConfig, env_file: str) -> Path:
    """Runtime config lives in the deployment directory, never in a build context."""
    path = Path(env_file)
    return path if path.is_absolute() else config.working_dir / path


def write_runtime_config(path: Path, env: dict[str, str], dry_run: bool) -> None:
    rendered = Template(RUNTIME_CONFIG_TEMPLATE).render(env=env)
    if dry_run:
        console.info(f"[dry-run] would write runtime config {path} ({len(env)} keys)")
        return
    if not path.parent.is_dir():
        raise ResourceApplyFailure("runtime config", f"directory not found: {path.parent}")

    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    os.fchmod(fd, 0o600)
    with os.fdopen(fd, 'w') as f:
        f.write(rendered)
    console.info(f"Runtime config written: {path}")


# ============================================================================
# Stage apply functions
# ============================================================================


def apply_bootstrap(ctx: StageContext) -> None:
    host = ctx.config.host
    if not ctx.runtime.is_installed():
        if not host.get('manage_packages', True):
            raise ResourceApplyFailure(
                "container runtime", "docker not found and host.manage_packages is disabled"
            )
        console.info("Container runtime not found, installing...")
        ctx.packages.install(host.get('runtime_packages', []))
    else:
        console.success("Container runtime present")

    ctx.runtime.daemon_info()
    console.success("Container runtime is usable")


def apply_source(ctx: StageContext) -> None:
    host = ctx.config.host
    if not ctx.packages.is_available(ctx.git.binary):
        if not host.get('manage_packages', True):
            raise ResourceApplyFailure("version control", "git not found and host.manage_packages is disabled")
        console.info("git not found, installing...")
        ctx.packages.install(host.get('vcs_packages', []))

    source = source_spec(ctx.config)
    ensure_source_tree(ctx.git, source)
    if not ctx.dry_run:
        ctx.facts['source_commit'] = ctx.git.head_commit(source.target_dir)
        logger.debug(f"Source commit: {ctx.facts['source_commit']}")


def apply_network(ctx: StageContext) -> None:
    ensure_network(ctx.runtime, network_handle(ctx.config))


def apply_database(ctx: StageContext) -> None:
    config = ctx.config
    volume = volume_handle(config)
    ensure_volume(ctx.runtime, volume)

    service = config.service('database')
    spec = container_spec(
        config,
        service,
        env=database_env(ctx),
        volumes={volume.name: config.database.get('data_path', '/data/db')},
        build=False,
    )
    image_id = ensure_image(ctx.runtime, spec.image)
    ensure_container(ctx.runtime, spec, image_id)


def apply_api(ctx: StageContext) -> None:
    config = ctx.config
    service = config.service('api')
    api_section = config.raw['api']

    env = ctx.secrets.resolve_mapping(service.env)
    env[api_section.get('connection_env', 'MONGO_URI')] = connection_string(ctx)
    env.setdefault('PORT', str(service.container_port))

    logger.debug(f"API runtime config keys: {sorted(env)}")
    spec = container_spec(config, service, env=env)
    env_file = api_section.get('env_file')
    if env_file:
        path = runtime_config_path(config, env_file)
        if path.resolve().is_relative_to(spec.build_context.resolve()):
            raise ResourceApplyFailure(
                "runtime config",
                f"{path} is inside the build context {spec.build_context}; move api.env_file out of it"
            )
        write_runtime_config(path, env, ctx.dry_run)

    image_id = ensure_image(ctx.runtime, spec.image, spec.build_context)
    ensure_container(ctx.runtime, spec, image_id)


def apply_frontend(ctx: StageContext) -> None:
    config = ctx.config
    service = config.service('frontend')
    spec = container_spec(config, service, env=ctx.secrets.resolve_mapping(service.env))
    image_id = ensure_image(ctx.runtime, spec.image, spec.build_context)
    ensure_container(ctx.runtime, spec, image_id)


def report_access(config: DeployConfig) -> None:
    console.banner("ACCESS ENDPOINTS")
    for name, url in access_endpoints(config).items():
        console.info(f"{name}: {url}")


# ============================================================================
# Postconditions (re-observed when a stage is skipped)
# ============================================================================


def _service_up(ctx: StageContext, key: str) -> bool:
    service = ctx.config.service(key)
    observed = ctx.runtime.inspect_container(service.container_name)
    if observed is None or not observed.running:
        return False
    return ctx.probe(service_readiness(key, service).endpoint)


# ============================================================================
# Pipeline
# ============================================================================


def build_pipeline(config: DeployConfig) -> list[StageDescriptor]:
    return [
        StageDescriptor(
            name='bootstrap',
            ordinal=1,
            apply=apply_bootstrap,
            postcondition=lambda ctx: ctx.runtime.daemon_available(),
            tags=('host', 'docker'),
            description="Ensure the container runtime is present and usable",
        ),
        StageDescriptor(
            name='source',
            ordinal=2,
            apply=apply_source,
            predecessors=('bootstrap',),
            postcondition=lambda ctx: ctx.config.target_dir.is_dir(),
            tags=('git', 'clone'),
            description=f"Fetch {config.source['repo_url']} ({config.source['branch']}) into {config.target_dir}",
        ),
        StageDescriptor(
            name='network',
            ordinal=3,
            apply=apply_network,
            predecessors=('source',),
            postcondition=lambda ctx: ctx.runtime.inspect_network(ctx.config.network_name) is not None,
            tags=('docker', 'net'),
            description=f"Ensure network '{config.network_name}' exists",
        ),
        StageDescriptor(
            name='database',
            ordinal=4,
            apply=apply_database,
            predecessors=('network',),
            readiness=service_readiness('database', config.service('database')),
            postcondition=lambda ctx: _service_up(ctx, 'database'),
            tags=('db', 'mongo', 'containers'),
            description="Deploy the database container with its persistent volume",
        ),
        StageDescriptor(
            name='api',
            ordinal=5,
            apply=apply_api,
            predecessors=('database', 'source'),
            readiness=service_readiness('api', config.service('api')),
            postcondition=lambda ctx: _service_up(ctx, 'api'),
            tags=('backend', 'containers'),
            description="Build and deploy the API container",
        ),
        StageDescriptor(
            name='frontend',
            ordinal=6,
            apply=apply_frontend,
            predecessors=('api',),
            readiness=service_readiness('frontend', config.service('frontend')),
            postcondition=lambda ctx: _service_up(ctx, 'frontend'),
            tags=('web', 'containers'),
            description="Build and deploy the frontend container",
        ),
    ]
