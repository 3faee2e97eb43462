"""
Shared fixtures: in-memory container runtime, git client and stage context.
"""

import copy
import shutil
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))
from tierup.config import DEFAULT_CONFIG, DeployConfig, deep_merge_configs  # noqa: E402
from tierup.models import ObservedContainer  # noqa: E402
from tierup.readiness import GateResult, GateStatus  # noqa: E402
from tierup.secret_resolver import SecretResolver  # noqa: E402
from tierup.stages import StageContext  # noqa: E402


class FakeRuntime:
    """Docker stand-in that keeps networks, volumes, images and containers in memory."""

    def __init__(self) -> None:
        self.dry_run = False
        self.networks: dict[str, dict] = {}
        self.volumes: dict[str, dict] = {}
        self.images: dict[str, str] = {}
        self.image_revision: dict[str, int] = {}
        self.containers: dict[str, ObservedContainer] = {}
        self.runs: list[str] = []
        self.removed: list[str] = []
        self.started: list[str] = []
        self.builds: list[str] = []
        self.pulls: list[str] = []

    def is_installed(self) -> bool:
        return True

    def daemon_info(self) -> None:
        return None

    def daemon_available(self) -> bool:
        return True

    def inspect_network(self, name):
        return self.networks.get(name)

    def create_network(self, network) -> None:
        self.networks[network.name] = {'Name': network.name, 'Driver': network.driver}

    def inspect_volume(self, name):
        return self.volumes.get(name)

    def create_volume(self, volume) -> None:
        self.volumes[volume.name] = {'Name': volume.name}

    def image_id(self, reference):
        return self.images.get(reference)

    def pull_image(self, reference) -> None:
        self.pulls.append(reference)
        self.images[reference] = f"sha256:{reference}-pulled"

    def build_image(self, tag, context) -> None:
        self.builds.append(tag)
        self.images[tag] = f"sha256:{tag}-r{self.image_revision.get(tag, 0)}"

    def inspect_container(self, name):
        return self.containers.get(name)

    def remove_container(self, name) -> None:
        self.removed.append(name)
        self.containers.pop(name, None)

    def start_container(self, name) -> None:
        self.started.append(name)
        observed = self.containers[name]
        self.containers[name] = ObservedContainer(
            observed.name, observed.image_id, True, observed.labels, observed.networks
        )

    def run_container(self, spec) -> None:
        if spec.name in self.containers:
            raise AssertionError(f"container name {spec.name} already in use")
        self.runs.append(spec.name)
        self.containers[spec.name] = ObservedContainer(
            name=spec.name,
            image_id=self.images[spec.image],
            running=True,
            labels=spec.all_labels(),
            networks=(spec.network,),
        )

    def stop(self, name) -> None:
        observed = self.containers[name]
        self.containers[name] = ObservedContainer(
            observed.name, observed.image_id, False, observed.labels, observed.networks
        )


class FakeGit:
    """Clones by creating the target tree with backend/ and frontend/ build contexts."""

    binary = "git"

    def __init__(self) -> None:
        self.dry_run = False
        self.clones: list[tuple[str, str]] = []
        self.removed: list[Path] = []

    def clone(self, source) -> None:
        self.clones.append((source.repo_url, source.branch))
        (source.target_dir / "backend").mkdir(parents=True)
        (source.target_dir / "frontend").mkdir(parents=True)
        (source.target_dir / "BRANCH").write_text(source.branch)

    def remove_tree(self, target_dir) -> None:
        self.removed.append(target_dir)
        shutil.rmtree(target_dir)

    def head_commit(self, target_dir):
        return "deadbeef"


class FakePackages:
    def __init__(self) -> None:
        self.installed: list[str] = []

    def is_available(self, command) -> bool:
        return True

    def install(self, packages) -> None:
        self.installed.extend(packages)


def make_config(tmp_path: Path, **overrides) -> DeployConfig:
    raw = deep_merge_configs(copy.deepcopy(DEFAULT_CONFIG), {
        'app': {'name': 'shop'},
        'source': {
            'repo_url': 'https://example.com/shop.git',
            'branch': 'main',
            'target_dir': str(tmp_path / "checkout"),
        },
        'database': {'username': 'root', 'password': 'example'},
    })
    raw = deep_merge_configs(raw, overrides)
    return DeployConfig(working_dir=tmp_path, raw=raw)


class RecordingGate:
    """Readiness gate stand-in: READY unless the endpoint name is listed in ``fail``."""

    def __init__(self, fail=(), on_ready=None) -> None:
        self.fail = set(fail)
        self.on_ready = on_ready
        self.calls: list = []

    def __call__(self, endpoint, poll_interval, timeout):
        self.calls.append(endpoint)
        if endpoint.name in self.fail:
            return GateResult(GateStatus.TIMED_OUT, timeout, 3)
        if self.on_ready is not None:
            self.on_ready(endpoint)
        return GateResult(GateStatus.READY, 0.1, 1)


@pytest.fixture
def runtime():
    return FakeRuntime()


@pytest.fixture
def git():
    return FakeGit()


@pytest.fixture
def config(tmp_path):
    return make_config(tmp_path)


@pytest.fixture
def ctx(config, runtime, git):
    return StageContext(
        config=config,
        runtime=runtime,
        git=git,
        packages=FakePackages(),
        secrets=SecretResolver(config.vault, environ={}),
        probe=lambda endpoint: True,
    )
